"""Derived-value cascade for sheetforge.

After an attribute or base value changes, every dependent base value and
combat stat is recomputed and the result is reported as a minimal old/new
diff. Groups in the diff are None when no member of that group changed.
"""

from collections.abc import Iterable, Mapping
from dataclasses import dataclass

import structlog

from sheetforge.game.character.attributes import (
    BASE_VALUE_FORMULAS,
    MELEE_BASE_VALUES,
    RANGED_BASE_VALUES,
    AttributeName,
    BaseValueName,
    attribute_totals,
    calculate_base_values,
)
from sheetforge.game.character.sheet import Attribute, BaseValue, CharacterSheet, CombatStats
from sheetforge.game.character.skills import CombatSectionName

logger = structlog.get_logger(__name__)

CombatGroup = dict[CombatSectionName, dict[str, CombatStats]]


@dataclass(frozen=True)
class CascadeSide:
    """One side (old or new) of a cascade diff."""

    base_values: dict[BaseValueName, BaseValue] | None = None
    combat: CombatGroup | None = None


@dataclass(frozen=True)
class CascadeDiff:
    """Entities that moved, before and after."""

    old: CascadeSide
    new: CascadeSide

    @property
    def is_empty(self) -> bool:
        return self.new.base_values is None and self.new.combat is None

    @property
    def changed_base_values(self) -> frozenset[BaseValueName]:
        return frozenset(self.new.base_values or {})


def compute_combat_stats(
    stats: CombatStats,
    section: CombatSectionName,
    base_values: Mapping[BaseValueName, BaseValue],
) -> CombatStats:
    """Recompute a combat skill's attack and parade values.

    Melee skills add the attack and parade base values; ranged skills add the
    ranged attack base value and never have a parade value.

    Args:
        stats: Current combat stats of the skill
        section: Combat section the skill belongs to
        base_values: Base values to derive from

    Returns:
        The combat stats with attack_value and parade_value refreshed
    """
    if section == CombatSectionName.MELEE:
        attack = base_values[BaseValueName.ATTACK_BASE_VALUE]
        parade = base_values[BaseValueName.PARADE_BASE_VALUE]
        attack_value = stats.skilled_attack_value + attack.current + attack.mod
        parade_value = stats.skilled_parade_value + parade.current + parade.mod
    else:
        ranged = base_values[BaseValueName.RANGED_ATTACK_BASE_VALUE]
        attack_value = stats.skilled_attack_value + ranged.current + ranged.mod
        parade_value = 0

    if attack_value == stats.attack_value and parade_value == stats.parade_value:
        return stats
    return stats.model_copy(update={"attack_value": attack_value, "parade_value": parade_value})


def recalculate_base_values(
    sheet: CharacterSheet,
    attributes: Mapping[AttributeName, Attribute],
) -> dict[BaseValueName, BaseValue]:
    """Recompute formula-governed base values from a full attribute set.

    Base values whose ``by_formula`` is unset are not formula-governed on this
    sheet and are left alone.

    Returns:
        The new models of base values that moved, keyed by name
    """
    formula_values = calculate_base_values(attribute_totals(attributes))
    changed: dict[BaseValueName, BaseValue] = {}

    for name in BASE_VALUE_FORMULAS:
        old = sheet.base_values[name]
        if old.by_formula is None:
            continue

        by_formula = formula_values[name]
        current = by_formula + (old.by_lvl_up or 0) + old.mod
        if by_formula == old.by_formula and current == old.current:
            continue

        changed[name] = old.model_copy(update={"by_formula": by_formula, "current": current})

    return changed


def recalculate_combat(
    sheet: CharacterSheet,
    base_values: Mapping[BaseValueName, BaseValue],
    changed: Iterable[BaseValueName],
) -> tuple[CombatGroup, CombatGroup]:
    """Recompute combat stats affected by changed base values.

    Args:
        sheet: Sheet holding the current combat stats
        base_values: Full set of base values after the change
        changed: Names of base values that moved

    Returns:
        Tuple of (old, new) combat groups holding only skills that moved
    """
    changed = set(changed)
    sections = []
    if changed & MELEE_BASE_VALUES:
        sections.append(CombatSectionName.MELEE)
    if changed & RANGED_BASE_VALUES:
        sections.append(CombatSectionName.RANGED)

    old_group: CombatGroup = {}
    new_group: CombatGroup = {}
    for section in sections:
        for skill_name, stats in sheet.combat.section(section).items():
            updated = compute_combat_stats(stats, section, base_values)
            if updated == stats:
                continue
            old_group.setdefault(section, {})[skill_name] = stats
            new_group.setdefault(section, {})[skill_name] = updated

    return old_group, new_group


def cascade_base_values(
    sheet: CharacterSheet,
    changes: Mapping[BaseValueName, BaseValue],
) -> CascadeDiff:
    """Build the diff for a set of base value changes and their combat fallout."""
    moved = {name: value for name, value in changes.items() if sheet.base_values[name] != value}
    base_values = {**sheet.base_values, **moved}
    old_combat, new_combat = recalculate_combat(sheet, base_values, moved)

    return CascadeDiff(
        old=CascadeSide(
            base_values={name: sheet.base_values[name] for name in moved} or None,
            combat=old_combat or None,
        ),
        new=CascadeSide(base_values=moved or None, combat=new_combat or None),
    )


def cascade(
    sheet: CharacterSheet,
    attribute_name: AttributeName,
    new_attribute: Attribute,
) -> CascadeDiff:
    """Compute everything that moves when one attribute changes.

    Args:
        sheet: Sheet before the change
        attribute_name: The attribute being changed
        new_attribute: Its new value

    Returns:
        CascadeDiff restricted to base values and combat stats that moved
    """
    attributes = {**sheet.attributes, attribute_name: new_attribute}
    diff = cascade_base_values(sheet, recalculate_base_values(sheet, attributes))

    logger.debug(
        "cascade_computed",
        attribute=attribute_name.value,
        base_values=sorted(name.value for name in diff.changed_base_values),
        combat={
            section.value: sorted(skills) for section, skills in (diff.new.combat or {}).items()
        },
    )
    return diff


def apply_cascade(sheet: CharacterSheet, diff: CascadeDiff) -> CharacterSheet:
    """Return a copy of the sheet with the new side of a diff written in."""
    sheet = sheet.with_base_values(diff.new.base_values or {})
    combat = diff.new.combat or {}
    return sheet.with_combat(
        melee=combat.get(CombatSectionName.MELEE),
        ranged=combat.get(CombatSectionName.RANGED),
    )
