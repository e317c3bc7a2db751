"""Tests for the derived-value cascade."""

from sheetforge.game.character.attributes import AttributeName, BaseValueName
from sheetforge.game.character.sheet import CombatStats
from sheetforge.game.character.skills import CombatSectionName
from sheetforge.game.systems.cascade import (
    apply_cascade,
    cascade,
    cascade_base_values,
    compute_combat_stats,
)
from sheetforge.game.systems.gate import InitialIncreased, InitialNew
from sheetforge.game.systems.mutations import update_attribute

HP = BaseValueName.HEALTH_POINTS
PARADE = BaseValueName.PARADE_BASE_VALUE
INITIATIVE = BaseValueName.INITIATIVE_BASE_VALUE


class TestCombatStats:
    """Test combat value derivation."""

    def test_melee_adds_base_values(self, sheet):
        """Test melee attack and parade include their base values."""
        stats = CombatStats(skilled_attack_value=3, skilled_parade_value=2)

        updated = compute_combat_stats(stats, CombatSectionName.MELEE, sheet.base_values)

        assert updated.attack_value == 33
        assert updated.parade_value == 32

    def test_ranged_has_no_parade(self, sheet):
        """Test ranged parade stays 0 even with skilled parade points."""
        stats = CombatStats(skilled_attack_value=4, skilled_parade_value=5, parade_value=7)

        updated = compute_combat_stats(stats, CombatSectionName.RANGED, sheet.base_values)

        assert updated.attack_value == 34
        assert updated.parade_value == 0

    def test_unchanged_stats_are_returned_as_is(self, sheet):
        """Test recomputing settled stats returns the same object."""
        stats = sheet.combat.melee["daggers"]

        assert compute_combat_stats(stats, CombatSectionName.MELEE, sheet.base_values) is stats


class TestAttributeCascade:
    """Test cascading attribute changes."""

    def test_endurance_fixture(self, endurance_sheet):
        """Test a net endurance change of 5 moves exactly its dependents."""
        old_values = endurance_sheet.base_values
        endurance = endurance_sheet.attributes[AttributeName.ENDURANCE]
        assert (endurance.current, endurance.mod) == (10, 3)

        new_endurance = endurance.model_copy(update={"current": 13, "mod": 5})
        diff = cascade(endurance_sheet, AttributeName.ENDURANCE, new_endurance)

        assert diff.changed_base_values == {HP, PARADE, INITIATIVE}
        assert diff.new.base_values[HP].current == old_values[HP].current + 10
        assert diff.new.base_values[PARADE].current == old_values[PARADE].current + 10
        assert diff.new.base_values[INITIATIVE].current == old_values[INITIATIVE].current + 1
        assert diff.old.base_values[HP] == old_values[HP]

    def test_endurance_moves_melee_parade_only(self, endurance_sheet):
        """Test combat fallout is limited to melee skills."""
        endurance = endurance_sheet.attributes[AttributeName.ENDURANCE]
        new_endurance = endurance.model_copy(update={"current": 13, "mod": 5})

        diff = cascade(endurance_sheet, AttributeName.ENDURANCE, new_endurance)

        assert set(diff.new.combat) == {CombatSectionName.MELEE}
        for name, stats in diff.new.combat[CombatSectionName.MELEE].items():
            old = endurance_sheet.combat.melee[name]
            assert stats.parade_value == old.parade_value + 10
            assert stats.attack_value == old.attack_value

    def test_fixture_through_mutation(self, endurance_sheet):
        """Test the endurance fixture end to end with its point cost."""
        result = update_attribute(
            endurance_sheet,
            "endurance",
            current=InitialIncreased(initial_value=10, increased_points=3),
            mod=InitialNew(initial_value=3, new_value=5),
        )

        assert result.applied
        new_values = result.sheet.base_values
        old_values = endurance_sheet.base_values
        assert new_values[HP].current - old_values[HP].current == 10
        assert new_values[PARADE].current - old_values[PARADE].current == 10
        assert new_values[INITIATIVE].current - old_values[INITIATIVE].current == 1
        for untouched in (
            BaseValueName.MENTAL_HEALTH,
            BaseValueName.ATTACK_BASE_VALUE,
            BaseValueName.RANGED_ATTACK_BASE_VALUE,
        ):
            assert new_values[untouched] == old_values[untouched]
            assert untouched.value not in result.changes.new["baseValues"]
        assert result.sheet.calculation_points.attribute_points.available == 0
        assert result.spent.attribute_points.old.available == 3

    def test_unrelated_attribute_moves_nothing(self, sheet):
        """Test an attribute without dependents yields an empty diff."""
        charisma = sheet.attributes[AttributeName.CHARISMA]

        diff = cascade(sheet, AttributeName.CHARISMA, charisma.model_copy(update={"current": 9}))

        assert diff.is_empty
        assert diff.old.base_values is None

    def test_skips_base_values_without_formula_value(self, sheet):
        """Test base values with unset by_formula are left alone."""
        health = sheet.base_values[HP].model_copy(update={"by_formula": None})
        sheet = sheet.with_base_values({HP: health})
        endurance = sheet.attributes[AttributeName.ENDURANCE]

        diff = cascade(sheet, AttributeName.ENDURANCE, endurance.model_copy(update={"current": 8}))

        assert HP not in diff.changed_base_values
        assert PARADE in diff.changed_base_values

    def test_level_up_bonus_and_mod_are_kept(self, sheet):
        """Test current is formula plus level-up bonus plus mod."""
        health = sheet.base_values[HP].model_copy(update={"by_lvl_up": 4, "mod": 2, "current": 41})
        sheet = sheet.with_base_values({HP: health})
        endurance = sheet.attributes[AttributeName.ENDURANCE]

        diff = cascade(sheet, AttributeName.ENDURANCE, endurance.model_copy(update={"current": 6}))

        assert diff.new.base_values[HP].by_formula == 37
        assert diff.new.base_values[HP].current == 43


class TestBaseValueCascade:
    """Test cascading direct base value changes."""

    def test_ranged_base_value_moves_ranged_attack(self, sheet):
        """Test the ranged attack base value reaches ranged skills only."""
        ranged = sheet.base_values[BaseValueName.RANGED_ATTACK_BASE_VALUE]

        diff = cascade_base_values(
            sheet, {BaseValueName.RANGED_ATTACK_BASE_VALUE: ranged.model_copy(update={"mod": 2})}
        )

        assert set(diff.new.combat) == {CombatSectionName.RANGED}
        assert diff.new.combat[CombatSectionName.RANGED]["missile"].attack_value == 32
        assert diff.new.combat[CombatSectionName.RANGED]["missile"].parade_value == 0

    def test_unchanged_values_are_dropped(self, sheet):
        """Test identical base values produce an empty diff."""
        diff = cascade_base_values(sheet, {HP: sheet.base_values[HP]})

        assert diff.is_empty

    def test_apply_cascade(self, sheet):
        """Test writing the new side of a diff into the sheet."""
        attack = sheet.base_values[BaseValueName.ATTACK_BASE_VALUE]
        diff = cascade_base_values(
            sheet, {BaseValueName.ATTACK_BASE_VALUE: attack.model_copy(update={"current": 31})}
        )

        updated = apply_cascade(sheet, diff)

        assert updated.base_values[BaseValueName.ATTACK_BASE_VALUE].current == 31
        assert updated.combat.melee["daggers"].attack_value == 31
        assert updated.combat.ranged == sheet.combat.ranged
        assert sheet.combat.melee["daggers"].attack_value == 30
