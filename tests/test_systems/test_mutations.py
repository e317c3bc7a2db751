"""Tests for sheet mutation operations."""

import pytest
from structlog.testing import capture_logs

from sheetforge.game.character.attributes import AttributeName, BaseValueName
from sheetforge.game.character.sheet import CharacterSheet
from sheetforge.game.character.skills import CostCategory, LearningMethod, SkillCategory
from sheetforge.game.errors import ErrorKind
from sheetforge.game.systems.gate import GateOutcome, InitialIncreased, InitialNew
from sheetforge.game.systems.history import RecordType
from sheetforge.game.systems.mutations import (
    add_special_ability,
    create_character_sheet,
    skill_increase_cost,
    update_attribute,
    update_base_value,
    update_calculation_points,
    update_combat_stats,
    update_skill,
)


def _increase(initial, points):
    return InitialIncreased(initial_value=initial, increased_points=points)


def _set(initial, new):
    return InitialNew(initial_value=initial, new_value=new)


class TestUpdateAttribute:
    """Test attribute changes."""

    def test_increase_costs_attribute_points(self, funded_sheet):
        """Test raising current spends one point per point."""
        result = update_attribute(funded_sheet, "strength", current=_increase(5, 2))

        assert result.applied
        strength = result.sheet.attributes[AttributeName.STRENGTH]
        assert strength.current == 7
        assert strength.total_cost == 7
        assert result.sheet.calculation_points.attribute_points.available == 8
        assert result.spent.attribute_points.new.available == 8
        assert result.record_type == RecordType.ATTRIBUTE_CHANGED
        assert result.changes.new["attribute"]["current"] == 7
        assert result.changes.new["baseValues"]["healthPoints"]["current"] == 37

    def test_points_are_conserved(self, funded_sheet):
        """Test available plus spent always equals the granted total."""
        sheet = funded_sheet
        for name, points in (("strength", 2), ("courage", 3), ("dexterity", 4)):
            current = sheet.attributes[AttributeName(name)].current
            sheet = update_attribute(sheet, name, current=_increase(current, points)).sheet

        ledger = sheet.calculation_points.attribute_points
        spent = sum(attribute.total_cost for attribute in sheet.attributes.values())
        assert ledger.available == 1
        assert ledger.available + spent == ledger.total

    def test_mod_change_is_free(self, sheet):
        """Test mod changes spend nothing."""
        result = update_attribute(sheet, "endurance", mod=_set(0, 4))

        assert result.applied
        assert result.sheet.attributes[AttributeName.ENDURANCE].total_cost == 5
        assert result.spent.attribute_points is None
        assert result.sheet.base_values[BaseValueName.HEALTH_POINTS].current == 43

    def test_not_enough_points(self, sheet):
        """Test an unaffordable increase is rejected whole."""
        result = update_attribute(sheet, "strength", current=_increase(5, 1), mod=_set(0, 2))

        assert result.error.kind == ErrorKind.INSUFFICIENT_POINTS
        assert result.error.message == "Not enough attribute points to increase the attribute!"
        assert result.sheet == sheet
        assert result.changes is None

    def test_replay_is_no_op(self, funded_sheet):
        """Test resubmitting an applied request changes nothing."""
        first = update_attribute(funded_sheet, "strength", current=_increase(5, 2))

        replay = update_attribute(first.sheet, "strength", current=_increase(5, 2))

        assert replay.outcome == GateOutcome.NO_OP
        assert replay.ok
        assert replay.sheet == first.sheet
        assert replay.changes is None
        assert replay.spent is None

    def test_stale_baseline(self, funded_sheet):
        """Test a request computed against an old value conflicts."""
        result = update_attribute(funded_sheet, "strength", current=_increase(4, 2))

        assert result.outcome == GateOutcome.CONFLICT
        assert result.error.kind == ErrorKind.CONFLICT
        assert result.error.message == "strength.current doesn't match the value in the backend"

    def test_invalid_increment(self, funded_sheet):
        """Test zero increments are invalid input."""
        result = update_attribute(funded_sheet, "strength", current=_increase(5, 0))

        assert result.outcome == GateOutcome.INVALID
        assert result.error.message == "Invalid input values!"

    def test_unknown_attribute(self, sheet):
        """Test unknown attribute names."""
        result = update_attribute(sheet, "luck", mod=_set(0, 1))

        assert result.error.kind == ErrorKind.UNKNOWN_ENTITY

    @pytest.mark.parametrize(
        "changes",
        [{"mod": _set(0, 1.5)}, {"start": _set(5, 5.5)}, {"mod": _set(0.5, 2)}],
    )
    def test_fractional_values_rejected(self, sheet, changes):
        """Test whole-number fields refuse fractional baselines and targets."""
        result = update_attribute(sheet, "strength", **changes)

        assert result.outcome == GateOutcome.INVALID
        assert result.error.kind == ErrorKind.INVALID_INPUT
        assert result.error.message == "Invalid input values!"
        assert result.sheet is sheet

    def test_whole_float_stored_as_int(self, sheet):
        """Test a whole float target is stored as an int and the sheet still loads."""
        result = update_attribute(sheet, "strength", mod=_set(0, 2.0))

        strength = result.sheet.attributes[AttributeName.STRENGTH]
        assert strength.mod == 2
        assert isinstance(strength.mod, int)
        assert isinstance(result.sheet.base_values[BaseValueName.HEALTH_POINTS].current, int)
        reloaded = CharacterSheet.from_document(result.sheet.to_document())
        assert reloaded.attributes[AttributeName.STRENGTH].mod == 2

    def test_logs_base_value_names(self, sheet):
        """Test the update event lists moved base values by their plain names."""
        with capture_logs() as logs:
            update_attribute(sheet, "endurance", mod=_set(0, 2))

        event = next(entry for entry in logs if entry["event"] == "attribute_updated")
        assert "healthPoints" in event["base_values"]
        assert all(type(name) is str for name in event["base_values"])


class TestUpdateBaseValue:
    """Test direct base value changes."""

    def test_mod_on_formula_value_moves_current(self, sheet):
        """Test mod changes of formula-governed values shift current."""
        result = update_base_value(sheet, "healthPoints", mod=_set(0, 3))

        health = result.sheet.base_values[BaseValueName.HEALTH_POINTS]
        assert health.mod == 3
        assert health.current == 38
        assert result.changes.old["baseValues"]["healthPoints"]["current"] == 35

    def test_mod_on_free_value_keeps_current(self, sheet):
        """Test mod changes of free base values leave current alone."""
        result = update_base_value(sheet, "armorLevel", mod=_set(0, 2))

        armor = result.sheet.base_values[BaseValueName.ARMOR_LEVEL]
        assert armor.mod == 2
        assert armor.current == 0

    def test_by_lvl_up_moves_current(self, sheet):
        """Test level-up corrections shift current by the delta."""
        result = update_base_value(sheet, "luckPoints", by_lvl_up=_set(0, 2))

        luck = result.sheet.base_values[BaseValueName.LUCK_POINTS]
        assert luck.by_lvl_up == 2
        assert luck.current == 2

    def test_by_lvl_up_not_allowed(self, sheet):
        """Test level-up corrections of values that never level up."""
        result = update_base_value(sheet, "mentalHealth", by_lvl_up=_set(0, 2))

        assert result.error.kind == ErrorKind.INVALID_INPUT
        assert result.error.message == "'By level up' changes are not allowed for this base value!"

    def test_attack_base_value_reaches_combat(self, sheet):
        """Test melee combat stats follow the attack base value."""
        result = update_base_value(sheet, "attackBaseValue", mod=_set(0, 2))

        # attack value adds the base value's current and its mod
        assert result.sheet.base_values[BaseValueName.ATTACK_BASE_VALUE].current == 32
        assert result.sheet.combat.melee["daggers"].attack_value == 34
        assert result.sheet.combat.ranged["missile"].attack_value == 30
        assert set(result.changes.new["combat"]) == {"melee"}

    def test_replay_is_no_op(self, sheet):
        """Test setting the stored value again."""
        result = update_base_value(sheet, "armorLevel", start=_set(3, 0))

        assert result.outcome == GateOutcome.NO_OP

    @pytest.mark.parametrize(
        "name, changes",
        [
            ("armorLevel", {"mod": _set(0, 0.5)}),
            ("armorLevel", {"start": _set(0, 2.5)}),
            ("luckPoints", {"by_lvl_up": _set(0, 1.5)}),
            ("healthPoints", {"mod": _set(0, 0.5)}),
        ],
    )
    def test_fractional_values_rejected(self, sheet, name, changes):
        """Test fractional targets are refused instead of being truncated."""
        result = update_base_value(sheet, name, **changes)

        assert result.outcome == GateOutcome.INVALID
        assert result.error.message == "Invalid input values!"
        assert result.changes is None
        assert result.sheet is sheet


class TestUpdateSkill:
    """Test skill activation and increases."""

    def test_activate(self, sheet):
        """Test activation at the normal price."""
        result = update_skill(sheet, "body", "juggleries", activated=True, learning_method="NORMAL")

        skill = result.sheet.skills[SkillCategory.BODY]["juggleries"]
        assert skill.activated
        assert skill.total_cost == 50
        assert result.sheet.calculation_points.adventure_points.available == 450
        assert result.learning_method == "NORMAL"
        assert result.name == "body/juggleries"

    def test_activate_again_is_no_op(self, sheet):
        """Test activating an active skill is a replay."""
        result = update_skill(sheet, "body", "athletics", activated=True, learning_method="NORMAL")

        assert result.outcome == GateOutcome.NO_OP

    def test_increase(self, sheet):
        """Test increasing current at the normal price."""
        result = update_skill(
            sheet, "body", "athletics", current=_increase(0, 3), learning_method="NORMAL"
        )

        skill = result.sheet.skills[SkillCategory.BODY]["athletics"]
        assert skill.current == 3
        assert skill.total_cost == 3
        assert result.spent.adventure_points.new.available == 497

    def test_low_priced_increase(self, sheet):
        """Test a cheaper learning method lowers the cost."""
        result = update_skill(
            sheet, "body", "athletics", current=_increase(0, 3), learning_method="LOW_PRICED"
        )

        assert result.sheet.calculation_points.adventure_points.available == 498.5

    def test_mod_change_is_free(self, sheet):
        """Test mod changes need no learning method and cost nothing."""
        result = update_skill(sheet, "body", "athletics", mod=_set(0, 2))

        assert result.applied
        assert result.spent.adventure_points is None

    def test_learning_method_required(self, sheet):
        """Test increases without a learning method."""
        result = update_skill(sheet, "body", "athletics", current=_increase(0, 1))

        assert result.error.kind == ErrorKind.INVALID_INPUT
        assert result.error.message.startswith("Learning method must be given")

    def test_not_activated(self, sheet):
        """Test changing an inactive skill conflicts."""
        result = update_skill(
            sheet, "body", "juggleries", current=_increase(0, 1), learning_method="NORMAL"
        )

        assert result.error.kind == ErrorKind.CONFLICT
        assert result.error.message == (
            "Skill is not activated yet! Activate it before it can be updated."
        )

    def test_deactivation_rejected(self, sheet):
        """Test skills cannot be deactivated."""
        result = update_skill(sheet, "body", "athletics", activated=False)

        assert result.error.kind == ErrorKind.INVALID_INPUT

    def test_not_enough_adventure_points(self, balanced_attributes):
        """Test unaffordable activation."""
        from sheetforge.game.character.creation import new_character_sheet

        poor = new_character_sheet(balanced_attributes, adventure_points=10)

        result = update_skill(poor, "body", "juggleries", activated=True, learning_method="NORMAL")

        assert result.error.kind == ErrorKind.INSUFFICIENT_POINTS
        assert result.sheet == poor

    def test_combat_skill_moves_available_points(self, sheet):
        """Test combat skill increases feed the distributable combat points."""
        result = update_skill(
            sheet, "combat", "daggers", current=_increase(0, 2), learning_method="NORMAL"
        )

        assert result.sheet.combat.melee["daggers"].available_points == 20
        assert result.sheet.calculation_points.adventure_points.available == 496
        assert result.changes.new["combat"]["melee"]["daggers"]["availablePoints"] == 20

    def test_unknown_skill(self, sheet):
        """Test unknown skills and categories."""
        assert update_skill(sheet, "body", "flying", mod=_set(0, 1)).error.kind == ErrorKind.UNKNOWN_ENTITY
        assert update_skill(sheet, "cooking", "x", mod=_set(0, 1)).error.kind == ErrorKind.UNKNOWN_ENTITY

    @pytest.mark.parametrize("changes", [{"mod": _set(0, 1.5)}, {"start": _set(0, 0.5)}])
    def test_fractional_values_rejected(self, sheet, changes):
        """Test skill values only take whole numbers."""
        result = update_skill(sheet, "combat", "daggers", **changes)

        assert result.outcome == GateOutcome.INVALID
        assert result.error.kind == ErrorKind.INVALID_INPUT
        assert result.sheet is sheet


class TestSkillIncreaseCost:
    """Test quoting the price of a skill's next point."""

    @pytest.mark.parametrize(
        "method, category, cost",
        [
            ("NORMAL", CostCategory.CAT_2, 1),
            ("LOW_PRICED", CostCategory.CAT_1, 0.5),
            ("EXPENSIVE", CostCategory.CAT_3, 2),
            ("FREE", CostCategory.CAT_0, 0),
        ],
    )
    def test_learning_method_shifts_category(self, sheet, method, category, cost):
        """Test the default category is shifted by the learning method."""
        quote = skill_increase_cost(sheet, "body", "athletics", method)

        assert quote.ok
        assert quote.skill == "body/athletics"
        assert quote.learning_method == LearningMethod(method)
        assert quote.cost_category == category
        assert quote.increase_cost == cost

    def test_priced_at_current_value(self, sheet):
        """Test the price follows the skill's current value."""
        raised = update_skill(
            sheet, "body", "athletics", current=_increase(0, 50), learning_method="FREE"
        ).sheet

        assert skill_increase_cost(raised, "body", "athletics", "NORMAL").increase_cost == 2

    def test_unknown_skill(self, sheet):
        """Test unknown skills and categories."""
        assert skill_increase_cost(sheet, "body", "flying", "NORMAL").error.kind == ErrorKind.UNKNOWN_ENTITY
        assert skill_increase_cost(sheet, "cooking", "x", "NORMAL").error.kind == ErrorKind.UNKNOWN_ENTITY

    def test_unknown_learning_method(self, sheet):
        """Test unknown learning methods are invalid input."""
        quote = skill_increase_cost(sheet, "body", "athletics", "BARGAIN")

        assert quote.error.kind == ErrorKind.INVALID_INPUT
        assert quote.increase_cost is None


class TestUpdateCombatStats:
    """Test distributing combat points."""

    def test_skilled_attack(self, sheet):
        """Test skilled points raise the attack value."""
        result = update_combat_stats(sheet, "melee", "daggers", skilled_attack_value=_increase(0, 5))

        stats = result.sheet.combat.melee["daggers"]
        assert stats.skilled_attack_value == 5
        assert stats.attack_value == 35
        assert stats.available_points == 13
        assert result.changes.old["combatStats"]["availablePoints"] == 18

    def test_attack_and_parade(self, sheet):
        """Test both values in one request."""
        result = update_combat_stats(
            sheet,
            "melee",
            "martialArts",
            skilled_attack_value=_increase(0, 6),
            skilled_parade_value=_increase(0, 6),
        )

        stats = result.sheet.combat.melee["martialArts"]
        assert stats.available_points == 0
        assert stats.parade_value == 36

    def test_not_enough_points(self, sheet):
        """Test spending more than available."""
        result = update_combat_stats(sheet, "melee", "martialArts", skilled_attack_value=_increase(0, 13))

        assert result.error.kind == ErrorKind.INSUFFICIENT_POINTS

    def test_ranged_parade_rejected(self, sheet):
        """Test ranged skills have no parade to raise."""
        result = update_combat_stats(sheet, "ranged", "missile", skilled_parade_value=_increase(0, 1))

        assert result.error.kind == ErrorKind.INVALID_INPUT
        assert result.error.message == "Parade values cannot be increased for ranged combat skills!"

    def test_ranged_attack(self, sheet):
        """Test ranged attack keeps parade at 0."""
        result = update_combat_stats(sheet, "ranged", "missile", skilled_attack_value=_increase(0, 3))

        stats = result.sheet.combat.ranged["missile"]
        assert stats.attack_value == 33
        assert stats.parade_value == 0


class TestUpdateCalculationPoints:
    """Test granting points."""

    def test_grant_adventure_points(self, sheet):
        """Test raising total raises available."""
        result = update_calculation_points(sheet, adventure_points_total=_increase(500, 100))

        points = result.sheet.calculation_points.adventure_points
        assert points.total == 600
        assert points.available == 600
        assert set(result.changes.new) == {"adventurePoints"}
        assert result.spent.attribute_points is None

    def test_replay_is_no_op(self, sheet):
        """Test granting again after the grant landed."""
        result = update_calculation_points(sheet, adventure_points_total=_increase(400, 100))

        assert result.outcome == GateOutcome.NO_OP

    def test_invalid_grant(self, sheet):
        """Test non-positive grants."""
        result = update_calculation_points(sheet, attribute_points_total=_increase(40, -5))

        assert result.error.kind == ErrorKind.INVALID_INPUT

    def test_fractional_start(self, sheet):
        """Test ledgers accept fractional values, unlike sheet fields."""
        result = update_calculation_points(sheet, adventure_points_start=_set(500, 512.5))

        assert result.applied
        assert result.sheet.calculation_points.adventure_points.start == 512.5


class TestSpecialAbilities:
    """Test adding special abilities."""

    def test_add(self, sheet):
        """Test adding a new ability."""
        result = add_special_ability(sheet, "Night Vision")

        assert result.sheet.special_abilities == ["Night Vision"]
        assert result.changes.old["specialAbilities"] == []

    def test_add_twice_is_no_op(self, sheet):
        """Test adding an owned ability again."""
        sheet = add_special_ability(sheet, "Night Vision").sheet

        assert add_special_ability(sheet, "Night Vision").outcome == GateOutcome.NO_OP

    def test_blank_ability(self, sheet):
        """Test blank names are invalid."""
        assert add_special_ability(sheet, "  ").error.kind == ErrorKind.INVALID_INPUT


class TestCreateCharacterSheet:
    """Test creation as an engine operation."""

    def test_success(self, balanced_attributes):
        """Test the new sheet is reported as the change."""
        result = create_character_sheet(balanced_attributes, adventure_points=100)

        assert result.applied
        assert result.changes.old == {}
        assert result.changes.new["characterSheet"]["level"] == 1

    @pytest.mark.parametrize("strength", [0, 9])
    def test_rejected(self, balanced_attributes, strength):
        """Test rejected creation carries no sheet."""
        balanced_attributes["strength"] = strength

        result = create_character_sheet(balanced_attributes)

        assert result.sheet is None
        assert result.error.kind == ErrorKind.INVALID_INPUT
