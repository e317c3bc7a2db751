"""Sheet mutation operations for sheetforge.

Every operation takes the current sheet and a typed request and returns a
``MutationResult``. Operations are pure: they never touch storage and never
raise for rule violations. The flow for each request is:

1. gate the requested sub-fields (replay, stale baseline, malformed input)
2. check the affected point ledger can pay for the change
3. build the new entity and run the cascade
4. report the minimal old/new diff and the ledger movement
"""

from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from typing import Any

import structlog

from sheetforge.game.character.attributes import (
    BASE_VALUES_UPDATABLE_BY_LVL_UP,
    AttributeName,
    BaseValueName,
)
from sheetforge.game.character.creation import new_character_sheet
from sheetforge.game.character.sheet import CalculationPoints, CharacterSheet
from sheetforge.game.character.skills import (
    CombatSectionName,
    CostCategory,
    LearningMethod,
    SkillCategory,
    adjust_cost_category,
    get_skill_activation_cost,
    get_skill_catalog,
    get_skill_increase_cost,
    get_skill_increase_total_cost,
)
from sheetforge.game.errors import (
    ConflictError,
    EngineError,
    InsufficientPointsError,
    InvalidInputError,
    ProgressionError,
    UnknownEntityError,
)
from sheetforge.game.systems.cascade import (
    apply_cascade,
    cascade,
    cascade_base_values,
    compute_combat_stats,
)
from sheetforge.game.systems.gate import (
    INVALID_INPUT_MESSAGE,
    GateOutcome,
    InitialIncreased,
    InitialNew,
    gate,
)
from sheetforge.game.systems.history import Changes, RecordType, SpentPoints, points_change
from sheetforge.game.systems.results import (
    MutationResult,
    dump_combat,
    dump_group,
    no_op,
    rejected,
)

logger = structlog.get_logger(__name__)

INCREASE_COST_COMBAT_STATS = 1

LEARNING_METHOD_REQUIRED_MESSAGE = (
    "Learning method must be given if skill should be activated or the current "
    "value should be increased!"
)


def _reject(
    sheet: CharacterSheet, record_type: RecordType, name: str, error: ProgressionError
) -> MutationResult:
    log = logger.error if isinstance(error, UnknownEntityError) else logger.warning
    log(
        "mutation_rejected",
        record_type=record_type.name,
        name=name,
        kind=error.kind.value,
        reason=error.message,
    )
    return rejected(sheet, record_type, name, error)


def _with_groups(changes: dict[str, Any], base_values: Any = None, combat: Any = None) -> dict[str, Any]:
    if base_values:
        changes["baseValues"] = dump_group(base_values)
    if combat:
        changes["combat"] = dump_combat(combat)
    return changes


def _attribute_name(name: str) -> AttributeName:
    try:
        return AttributeName(name)
    except ValueError as e:
        raise UnknownEntityError(f"Unknown attribute '{name}'", attribute=name) from e


def _base_value_name(name: str) -> BaseValueName:
    try:
        return BaseValueName(name)
    except ValueError as e:
        raise UnknownEntityError(f"Unknown base value '{name}'", base_value=name) from e


# Attributes


def update_attribute(
    sheet: CharacterSheet,
    name: str,
    *,
    start: InitialNew | None = None,
    current: InitialIncreased | None = None,
    mod: InitialNew | None = None,
) -> MutationResult:
    """Change an attribute and cascade into base values and combat stats.

    Raising ``current`` costs one attribute point per point; ``start`` and
    ``mod`` changes are free.

    Args:
        sheet: Sheet before the change
        name: Attribute name (e.g. ``"endurance"``)
        start: Direct set of the start value
        current: Increase of the current value
        mod: Direct set of the modifier

    Returns:
        MutationResult with the attribute, the moved base values and combat stats
    """
    record_type = RecordType.ATTRIBUTE_CHANGED
    try:
        attribute_name = _attribute_name(name)
        old = sheet.attributes[attribute_name]
        verdict = gate(
            name,
            {"start": old.start, "current": old.current, "mod": old.mod},
            {"start": start, "current": current, "mod": mod},
        )
        verdict.raise_for_rejection()
        if verdict.outcome == GateOutcome.NO_OP:
            logger.info("attribute_unchanged", attribute=name)
            return no_op(sheet, record_type, name)

        points_old = sheet.calculation_points.attribute_points
        points_new = points_old
        updates: dict[str, Any] = {}
        if verdict.applies("start"):
            updates["start"] = verdict.target("start")
        if verdict.applies("current"):
            increase = verdict.target("current") - old.current
            if increase > points_old.available:
                raise InsufficientPointsError(
                    "Not enough attribute points to increase the attribute!",
                    requested=increase,
                    available=points_old.available,
                )
            updates["current"] = old.current + increase
            updates["total_cost"] = old.total_cost + increase
            points_new = points_old.model_copy(
                update={"available": points_old.available - increase}
            )
        if verdict.applies("mod"):
            updates["mod"] = verdict.target("mod")
    except ProgressionError as e:
        return _reject(sheet, record_type, name, e)

    new = old.model_copy(update=updates)
    diff = cascade(sheet, attribute_name, new)
    new_sheet = apply_cascade(sheet.with_attribute(attribute_name, new), diff)
    new_sheet = new_sheet.with_calculation_points(attribute_points=points_new)

    logger.info(
        "attribute_updated",
        attribute=name,
        old_total=old.total,
        new_total=new.total,
        spent=new.total_cost - old.total_cost,
        base_values=sorted(name.value for name in diff.changed_base_values),
    )
    return MutationResult(
        GateOutcome.APPLY,
        new_sheet,
        record_type,
        name,
        changes=Changes(
            old=_with_groups(
                {"attribute": old.model_dump(mode="json", by_alias=True)},
                diff.old.base_values,
                diff.old.combat,
            ),
            new=_with_groups(
                {"attribute": new.model_dump(mode="json", by_alias=True)},
                diff.new.base_values,
                diff.new.combat,
            ),
        ),
        spent=SpentPoints(attribute_points=points_change(points_old, points_new)),
    )


# Base values


def update_base_value(
    sheet: CharacterSheet,
    name: str,
    *,
    start: InitialNew | None = None,
    by_lvl_up: InitialNew | None = None,
    mod: InitialNew | None = None,
) -> MutationResult:
    """Change a base value directly.

    ``current`` follows the ``by_lvl_up`` delta, and the ``mod`` delta for
    formula-governed base values. Combat stats are refreshed when an attack,
    parade or ranged attack base value moves.
    """
    record_type = RecordType.BASE_VALUE_CHANGED
    try:
        base_value_name = _base_value_name(name)
        old = sheet.base_values[base_value_name]
        if by_lvl_up is not None and base_value_name not in BASE_VALUES_UPDATABLE_BY_LVL_UP:
            raise InvalidInputError(
                "'By level up' changes are not allowed for this base value!", base_value=name
            )

        verdict = gate(
            name,
            {"start": old.start, "byLvlUp": old.by_lvl_up or 0, "mod": old.mod},
            {"start": start, "byLvlUp": by_lvl_up, "mod": mod},
        )
        verdict.raise_for_rejection()
    except ProgressionError as e:
        return _reject(sheet, record_type, name, e)

    if verdict.outcome == GateOutcome.NO_OP:
        logger.info("base_value_unchanged", base_value=name)
        return no_op(sheet, record_type, name)

    updates: dict[str, Any] = {}
    current = old.current
    if verdict.applies("start"):
        updates["start"] = verdict.target("start")
    if verdict.applies("byLvlUp"):
        target = verdict.target("byLvlUp")
        current += target - (old.by_lvl_up or 0)
        updates["by_lvl_up"] = target
    if verdict.applies("mod"):
        target = verdict.target("mod")
        if old.by_formula is not None:
            current += target - old.mod
        updates["mod"] = target
    updates["current"] = current

    diff = cascade_base_values(sheet, {base_value_name: old.model_copy(update=updates)})
    new_sheet = apply_cascade(sheet, diff)

    logger.info(
        "base_value_updated",
        base_value=name,
        old_current=old.current,
        new_current=current,
        combat_changed=diff.new.combat is not None,
    )
    return MutationResult(
        GateOutcome.APPLY,
        new_sheet,
        record_type,
        name,
        changes=Changes(
            old=_with_groups({}, diff.old.base_values, diff.old.combat),
            new=_with_groups({}, diff.new.base_values, diff.new.combat),
        ),
    )


# Skills


def _parse_learning_method(method: LearningMethod | str | None) -> LearningMethod | None:
    if method is None or isinstance(method, LearningMethod):
        return method
    try:
        return LearningMethod(method)
    except ValueError as e:
        raise InvalidInputError(INVALID_INPUT_MESSAGE, learning_method=method) from e


def update_skill(
    sheet: CharacterSheet,
    category: str,
    name: str,
    *,
    activated: bool | None = None,
    start: InitialNew | None = None,
    current: InitialIncreased | None = None,
    mod: InitialNew | None = None,
    learning_method: LearningMethod | str | None = None,
) -> MutationResult:
    """Activate or change a skill, paying with adventure points.

    Activation and increases of ``current`` are paid from the adventure-point
    ledger at the skill's cost category shifted by the learning method. A
    combat skill's change moves its distributable combat points by the same
    amount as its value.

    Args:
        sheet: Sheet before the change
        category: Skill category (e.g. ``"body"``)
        name: Skill name (e.g. ``"athletics"``)
        activated: True to activate the skill
        start: Direct set of the start value
        current: Increase of the current value
        mod: Direct set of the modifier
        learning_method: Required when activating or increasing

    Returns:
        MutationResult with the skill, its combat stats and the ledger movement
    """
    record_type = RecordType.SKILL_CHANGED
    path = f"{category}/{name}"
    try:
        try:
            skill_category = SkillCategory(category)
        except ValueError as e:
            raise UnknownEntityError(f"Unknown skill category '{category}'", skill=path) from e
        old = sheet.skills.get(skill_category, {}).get(name)
        if old is None:
            raise UnknownEntityError(f"Unknown skill '{path}'", skill=path)

        if activated is False:
            raise InvalidInputError("Deactivating a skill is not allowed!", skill=path)
        method = _parse_learning_method(learning_method)
        if (activated or current is not None) and method is None:
            raise InvalidInputError(LEARNING_METHOD_REQUIRED_MESSAGE, skill=path)

        verdict = gate(
            name,
            {"start": old.start, "current": old.current, "mod": old.mod},
            {"start": start, "current": current, "mod": mod},
        )
        verdict.raise_for_rejection()

        activate = bool(activated) and not old.activated
        if verdict.outcome == GateOutcome.NO_OP and not activate:
            logger.info("skill_unchanged", skill=path)
            return no_op(sheet, record_type, path)

        if verdict.outcome == GateOutcome.APPLY and not (old.activated or activate):
            raise ConflictError(
                "Skill is not activated yet! Activate it before it can be updated.", skill=path
            )

        points_old = sheet.calculation_points.adventure_points
        available = points_old.available
        updates: dict[str, Any] = {}
        total_cost = old.total_cost
        cost_category = (
            adjust_cost_category(old.default_cost_category, method) if method is not None else None
        )

        if activate:
            if cost_category is None:
                raise InvalidInputError(LEARNING_METHOD_REQUIRED_MESSAGE, skill=path)
            activation_cost = get_skill_activation_cost(cost_category)
            if activation_cost > available:
                raise InsufficientPointsError(
                    "Not enough adventure points to activate the skill!",
                    cost=activation_cost,
                    available=available,
                )
            updates["activated"] = True
            total_cost += activation_cost
            available -= activation_cost

        if verdict.applies("start"):
            updates["start"] = verdict.target("start")

        if verdict.applies("current"):
            if cost_category is None:
                raise InvalidInputError(LEARNING_METHOD_REQUIRED_MESSAGE, skill=path)
            increase = verdict.target("current") - old.current
            increase_cost = get_skill_increase_total_cost(old.current, increase, cost_category)
            if increase_cost > available:
                raise InsufficientPointsError(
                    "Not enough adventure points to increase the skill!",
                    cost=increase_cost,
                    available=available,
                )
            updates["current"] = old.current + increase
            total_cost += increase_cost
            available -= increase_cost

        if verdict.applies("mod"):
            updates["mod"] = verdict.target("mod")
    except ProgressionError as e:
        return _reject(sheet, record_type, path, e)

    updates["total_cost"] = total_cost
    new = old.model_copy(update=updates)
    points_new = points_old.model_copy(update={"available": available})
    new_sheet = sheet.with_skill(skill_category, name, new).with_calculation_points(
        adventure_points=points_new
    )

    old_changes: dict[str, Any] = {"skill": old.model_dump(mode="json", by_alias=True)}
    new_changes: dict[str, Any] = {"skill": new.model_dump(mode="json", by_alias=True)}

    if skill_category == SkillCategory.COMBAT:
        section = get_skill_catalog().combat_section(name)
        if section is not None:
            stats_old = sheet.combat.section(section)[name]
            delta = (new.current - old.current) + (new.mod - old.mod)
            stats_new = compute_combat_stats(
                stats_old.model_copy(update={"available_points": stats_old.available_points + delta}),
                section,
                sheet.base_values,
            )
            if stats_new != stats_old:
                new_sheet = new_sheet.with_combat(**{section.value: {name: stats_new}})
                old_changes = _with_groups(old_changes, combat={section: {name: stats_old}})
                new_changes = _with_groups(new_changes, combat={section: {name: stats_new}})

    logger.info(
        "skill_updated",
        skill=path,
        activated=new.activated,
        old_current=old.current,
        new_current=new.current,
        cost=total_cost - old.total_cost,
        learning_method=method.value if method else None,
    )
    return MutationResult(
        GateOutcome.APPLY,
        new_sheet,
        record_type,
        path,
        changes=Changes(old=old_changes, new=new_changes),
        spent=SpentPoints(adventure_points=points_change(points_old, points_new)),
        learning_method=method.value if method else None,
    )


@dataclass(frozen=True)
class SkillIncreaseCost:
    """Price of raising a skill by one point, or why it cannot be quoted."""

    skill: str
    learning_method: LearningMethod | None = None
    cost_category: CostCategory | None = None
    increase_cost: float | None = None
    error: EngineError | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


def skill_increase_cost(
    sheet: CharacterSheet,
    category: str,
    name: str,
    learning_method: LearningMethod | str,
) -> SkillIncreaseCost:
    """Quote the adventure-point cost of the skill's next point.

    The skill's default cost category is shifted by the learning method and
    priced at the skill's current value. Activation is not included.

    Args:
        sheet: Sheet to quote against
        category: Skill category (e.g. ``"body"``)
        name: Skill name (e.g. ``"athletics"``)
        learning_method: Learning method the increase would use

    Returns:
        SkillIncreaseCost with the price, or ``error`` set for unknown skills
        and unknown learning methods
    """
    path = f"{category}/{name}"
    try:
        try:
            skill_category = SkillCategory(category)
        except ValueError as e:
            raise UnknownEntityError(f"Unknown skill category '{category}'", skill=path) from e
        skill = sheet.skills.get(skill_category, {}).get(name)
        if skill is None:
            raise UnknownEntityError(f"Unknown skill '{path}'", skill=path)
        method = _parse_learning_method(learning_method)
        if method is None:
            raise InvalidInputError(INVALID_INPUT_MESSAGE, skill=path)
    except ProgressionError as e:
        log = logger.error if isinstance(e, UnknownEntityError) else logger.warning
        log("skill_cost_rejected", skill=path, kind=e.kind.value, reason=e.message)
        return SkillIncreaseCost(path, error=e.to_error())

    cost_category = adjust_cost_category(skill.default_cost_category, method)
    cost = get_skill_increase_cost(skill.current, cost_category)
    logger.debug(
        "skill_cost_quoted",
        skill=path,
        learning_method=method.value,
        cost_category=int(cost_category),
        cost=cost,
    )
    return SkillIncreaseCost(path, method, cost_category, cost)


# Combat stats


def update_combat_stats(
    sheet: CharacterSheet,
    section: str,
    name: str,
    *,
    skilled_attack_value: InitialIncreased | None = None,
    skilled_parade_value: InitialIncreased | None = None,
) -> MutationResult:
    """Distribute a combat skill's available points onto attack and parade.

    Each skilled point costs one available point of that combat skill.
    Ranged skills have no parade value.
    """
    record_type = RecordType.COMBAT_STATS_CHANGED
    path = f"{section}/{name}"
    try:
        try:
            combat_section = CombatSectionName(section)
        except ValueError as e:
            raise UnknownEntityError(f"Unknown combat section '{section}'", skill=path) from e
        old = sheet.combat.section(combat_section).get(name)
        if old is None:
            raise UnknownEntityError(f"Unknown combat skill '{path}'", skill=path)
        if combat_section == CombatSectionName.RANGED and skilled_parade_value is not None:
            raise InvalidInputError(
                "Parade values cannot be increased for ranged combat skills!", skill=path
            )

        verdict = gate(
            name,
            {
                "skilledAttackValue": old.skilled_attack_value,
                "skilledParadeValue": old.skilled_parade_value,
            },
            {
                "skilledAttackValue": skilled_attack_value,
                "skilledParadeValue": skilled_parade_value,
            },
        )
        verdict.raise_for_rejection()
        if verdict.outcome == GateOutcome.NO_OP:
            logger.info("combat_stats_unchanged", skill=path)
            return no_op(sheet, record_type, path)

        available = old.available_points
        updates: dict[str, Any] = {}
        if verdict.applies("skilledAttackValue"):
            increase = verdict.target("skilledAttackValue") - old.skilled_attack_value
            if increase * INCREASE_COST_COMBAT_STATS > available:
                raise InsufficientPointsError(
                    "Not enough points to increase the attack value!",
                    skill=path,
                    available_points=available,
                )
            updates["skilled_attack_value"] = old.skilled_attack_value + increase
            available -= increase * INCREASE_COST_COMBAT_STATS
        if verdict.applies("skilledParadeValue"):
            increase = verdict.target("skilledParadeValue") - old.skilled_parade_value
            if increase * INCREASE_COST_COMBAT_STATS > available:
                raise InsufficientPointsError(
                    "Not enough points to increase the parade value!",
                    skill=path,
                    available_points=available,
                )
            updates["skilled_parade_value"] = old.skilled_parade_value + increase
            available -= increase * INCREASE_COST_COMBAT_STATS
    except ProgressionError as e:
        return _reject(sheet, record_type, path, e)

    updates["available_points"] = available
    new = compute_combat_stats(old.model_copy(update=updates), combat_section, sheet.base_values)
    new_sheet = sheet.with_combat(**{combat_section.value: {name: new}})

    logger.info(
        "combat_stats_updated",
        skill=path,
        attack_value=new.attack_value,
        parade_value=new.parade_value,
        available_points=new.available_points,
    )
    return MutationResult(
        GateOutcome.APPLY,
        new_sheet,
        record_type,
        path,
        changes=Changes(
            old={"combatStats": old.model_dump(mode="json", by_alias=True)},
            new={"combatStats": new.model_dump(mode="json", by_alias=True)},
        ),
    )


# Calculation points


def _ledger_updates(
    ledger: str,
    old: CalculationPoints,
    start: InitialNew | None,
    total: InitialIncreased | None,
) -> tuple[Any, CalculationPoints]:
    verdict = gate(
        ledger,
        {"start": old.start, "total": old.total},
        {"start": start, "total": total},
        integral=False,
    )
    verdict.raise_for_rejection()
    updates: dict[str, Any] = {}
    if verdict.applies("start"):
        updates["start"] = verdict.target("start")
    if verdict.applies("total"):
        increase = verdict.target("total") - old.total
        updates["total"] = old.total + increase
        updates["available"] = old.available + increase
    return verdict, old.model_copy(update=updates)


def update_calculation_points(
    sheet: CharacterSheet,
    *,
    adventure_points_start: InitialNew | None = None,
    adventure_points_total: InitialIncreased | None = None,
    attribute_points_start: InitialNew | None = None,
    attribute_points_total: InitialIncreased | None = None,
) -> MutationResult:
    """Grant points or correct a ledger's start value.

    Raising ``total`` raises ``available`` by the same amount.
    """
    record_type = RecordType.CALCULATION_POINTS_CHANGED
    name = "calculationPoints"
    adventure_old = sheet.calculation_points.adventure_points
    attribute_old = sheet.calculation_points.attribute_points
    try:
        adventure_verdict, adventure_new = _ledger_updates(
            "adventurePoints", adventure_old, adventure_points_start, adventure_points_total
        )
        attribute_verdict, attribute_new = _ledger_updates(
            "attributePoints", attribute_old, attribute_points_start, attribute_points_total
        )
    except ProgressionError as e:
        return _reject(sheet, record_type, name, e)

    if adventure_verdict.outcome == attribute_verdict.outcome == GateOutcome.NO_OP:
        logger.info("calculation_points_unchanged")
        return no_op(sheet, record_type, name)

    new_sheet = sheet.with_calculation_points(
        adventure_points=adventure_new, attribute_points=attribute_new
    )
    old_changes: dict[str, Any] = {}
    new_changes: dict[str, Any] = {}
    for key, before, after in (
        ("adventurePoints", adventure_old, adventure_new),
        ("attributePoints", attribute_old, attribute_new),
    ):
        if before != after:
            old_changes[key] = before.model_dump(mode="json", by_alias=True)
            new_changes[key] = after.model_dump(mode="json", by_alias=True)

    logger.info("calculation_points_updated", changed=sorted(new_changes))
    return MutationResult(
        GateOutcome.APPLY,
        new_sheet,
        record_type,
        name,
        changes=Changes(old=old_changes, new=new_changes),
        spent=SpentPoints(
            adventure_points=points_change(adventure_old, adventure_new),
            attribute_points=points_change(attribute_old, attribute_new),
        ),
    )


# Special abilities


def add_special_ability(sheet: CharacterSheet, ability: str) -> MutationResult:
    """Add a special ability; adding one the character already has is a replay."""
    record_type = RecordType.SPECIAL_ABILITIES_CHANGED
    ability = ability.strip()
    if not ability:
        return _reject(sheet, record_type, ability, InvalidInputError(INVALID_INPUT_MESSAGE))
    if ability in sheet.special_abilities:
        logger.info("special_ability_unchanged", ability=ability)
        return no_op(sheet, record_type, ability)

    abilities = [*sheet.special_abilities, ability]
    logger.info("special_ability_added", ability=ability)
    return MutationResult(
        GateOutcome.APPLY,
        sheet.model_copy(update={"special_abilities": abilities}),
        record_type,
        ability,
        changes=Changes(
            old={"specialAbilities": list(sheet.special_abilities)},
            new={"specialAbilities": abilities},
        ),
    )


# Creation


def create_character_sheet(
    attributes: Mapping[str, int],
    *,
    activated_skills: Iterable[str] = (),
    combat_skill_start_values: Mapping[str, int] | None = None,
    adventure_points: int = 0,
) -> MutationResult:
    """Create a new sheet, reporting creation errors as a rejected result."""
    record_type = RecordType.CHARACTER_CREATED
    name = "character"
    try:
        sheet = new_character_sheet(
            attributes,
            activated_skills=activated_skills,
            combat_skill_start_values=combat_skill_start_values,
            adventure_points=adventure_points,
        )
    except ProgressionError as e:
        logger.warning("character_creation_rejected", kind=e.kind.value, reason=e.message)
        return rejected(None, record_type, name, e)

    logger.info("character_sheet_created", level=sheet.level)
    return MutationResult(
        GateOutcome.APPLY,
        sheet,
        record_type,
        name,
        changes=Changes(old={}, new={"characterSheet": sheet.to_document()}),
    )
