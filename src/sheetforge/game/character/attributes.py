"""Character attributes and formula-derived base values for sheetforge.

This module owns the closed sets of attribute and base-value keys and the
canonical formulas that derive base values from attribute totals. Every base
value is either governed by an entry in ``BASE_VALUE_FORMULAS`` or listed in
``FREE_BASE_VALUES``; the module refuses to import if a key is unaccounted for.
"""

from collections.abc import Mapping
from dataclasses import dataclass, field
from enum import StrEnum
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from sheetforge.game.character.sheet import Attribute


class AttributeName(StrEnum):
    """Core point-buy attributes."""

    COURAGE = "courage"
    INTELLIGENCE = "intelligence"
    CONCENTRATION = "concentration"
    CHARISMA = "charisma"
    MENTAL_RESILIENCE = "mentalResilience"
    DEXTERITY = "dexterity"
    ENDURANCE = "endurance"
    STRENGTH = "strength"


class BaseValueName(StrEnum):
    """Derived and free-standing base values."""

    HEALTH_POINTS = "healthPoints"
    MENTAL_HEALTH = "mentalHealth"
    ARMOR_LEVEL = "armorLevel"
    NATURAL_ARMOR = "naturalArmor"
    INITIATIVE_BASE_VALUE = "initiativeBaseValue"
    ATTACK_BASE_VALUE = "attackBaseValue"
    PARADE_BASE_VALUE = "paradeBaseValue"
    RANGED_ATTACK_BASE_VALUE = "rangedAttackBaseValue"
    LUCK_POINTS = "luckPoints"
    BONUS_ACTIONS_PER_COMBAT_ROUND = "bonusActionsPerCombatRound"
    LEGENDARY_ACTIONS = "legendaryActions"


# Constant attribute names for easy import
ATTRIBUTE_NAMES = [attr.value for attr in AttributeName]
BASE_VALUE_NAMES = [name.value for name in BaseValueName]


@dataclass(frozen=True)
class BaseValueFormula:
    """Linear formula over attribute totals, divided once and rounded half up.

    value = round((offset + sum(weight * total(attribute))) / divisor)
    """

    weights: Mapping[AttributeName, int] = field(default_factory=dict)
    offset: int = 0
    divisor: int = 1

    @property
    def depends_on(self) -> frozenset[AttributeName]:
        """Attributes this formula reads."""
        return frozenset(self.weights)

    def evaluate(self, totals: Mapping[AttributeName, int]) -> int:
        """Evaluate the formula against a full set of attribute totals.

        Args:
            totals: Attribute total (current + mod) for every attribute

        Returns:
            The rounded formula value
        """
        numerator = self.offset + sum(
            weight * totals[name] for name, weight in self.weights.items()
        )
        return round_half_up(numerator, self.divisor)


A = AttributeName

BASE_VALUE_FORMULAS: dict[BaseValueName, BaseValueFormula] = {
    BaseValueName.HEALTH_POINTS: BaseValueFormula(
        weights={A.ENDURANCE: 2, A.STRENGTH: 1}, offset=20
    ),
    BaseValueName.MENTAL_HEALTH: BaseValueFormula(
        weights={A.COURAGE: 1, A.MENTAL_RESILIENCE: 2}, offset=8
    ),
    BaseValueName.INITIATIVE_BASE_VALUE: BaseValueFormula(
        weights={A.COURAGE: 2, A.DEXTERITY: 1, A.ENDURANCE: 1}, divisor=5
    ),
    BaseValueName.ATTACK_BASE_VALUE: BaseValueFormula(
        weights={A.COURAGE: 10, A.DEXTERITY: 10, A.STRENGTH: 10}, divisor=5
    ),
    BaseValueName.PARADE_BASE_VALUE: BaseValueFormula(
        weights={A.ENDURANCE: 10, A.DEXTERITY: 10, A.STRENGTH: 10}, divisor=5
    ),
    BaseValueName.RANGED_ATTACK_BASE_VALUE: BaseValueFormula(
        weights={A.CONCENTRATION: 10, A.DEXTERITY: 10, A.STRENGTH: 10}, divisor=5
    ),
    BaseValueName.LEGENDARY_ACTIONS: BaseValueFormula(offset=1),
}

del A

# Base values without a formula; they only move through direct edits or level-ups
FREE_BASE_VALUES: frozenset[BaseValueName] = frozenset(
    {
        BaseValueName.ARMOR_LEVEL,
        BaseValueName.NATURAL_ARMOR,
        BaseValueName.LUCK_POINTS,
        BaseValueName.BONUS_ACTIONS_PER_COMBAT_ROUND,
    }
)

BASE_VALUES_UPDATABLE_BY_LVL_UP: frozenset[BaseValueName] = frozenset(
    {
        BaseValueName.HEALTH_POINTS,
        BaseValueName.ARMOR_LEVEL,
        BaseValueName.INITIATIVE_BASE_VALUE,
        BaseValueName.LUCK_POINTS,
        BaseValueName.BONUS_ACTIONS_PER_COMBAT_ROUND,
        BaseValueName.LEGENDARY_ACTIONS,
    }
)

# Base values feeding melee and ranged combat values
MELEE_BASE_VALUES: frozenset[BaseValueName] = frozenset(
    {BaseValueName.ATTACK_BASE_VALUE, BaseValueName.PARADE_BASE_VALUE}
)
RANGED_BASE_VALUES: frozenset[BaseValueName] = frozenset(
    {BaseValueName.RANGED_ATTACK_BASE_VALUE}
)

_unaccounted = set(BaseValueName) - set(BASE_VALUE_FORMULAS) - FREE_BASE_VALUES
_overlapping = set(BASE_VALUE_FORMULAS) & FREE_BASE_VALUES
if _unaccounted or _overlapping:
    raise RuntimeError(
        f"Base value table is inconsistent: unaccounted={sorted(_unaccounted)}, "
        f"overlapping={sorted(_overlapping)}"
    )


def round_half_up(numerator: int, divisor: int) -> int:
    """Divide two integers and round the quotient half up.

    Examples:
        >>> round_half_up(52, 5)
        10
        >>> round_half_up(53, 5)
        11
        >>> round_half_up(-5, 2)
        -2
    """
    return (2 * numerator + divisor) // (2 * divisor)


def attribute_totals(attributes: Mapping[AttributeName, "Attribute"]) -> dict[AttributeName, int]:
    """Collect ``current + mod`` for every attribute.

    Args:
        attributes: Mapping of attribute name to its sheet entry

    Returns:
        Dictionary mapping each attribute name to its total

    Raises:
        KeyError: If an attribute is missing from the mapping
    """
    return {
        name: attributes[name].current + attributes[name].mod for name in AttributeName
    }


def calculate_base_values(totals: Mapping[AttributeName, int]) -> dict[BaseValueName, int]:
    """Evaluate every formula-governed base value from attribute totals.

    Values are always recomputed from the full attribute set so repeated
    mutations never accumulate rounding drift.

    Args:
        totals: Attribute total for every attribute

    Returns:
        Dictionary mapping formula-governed base values to their formula value
    """
    return {name: formula.evaluate(totals) for name, formula in BASE_VALUE_FORMULAS.items()}


def dependent_base_values(attribute: AttributeName) -> frozenset[BaseValueName]:
    """Get the base values whose formula reads the given attribute."""
    return frozenset(
        name for name, formula in BASE_VALUE_FORMULAS.items() if attribute in formula.depends_on
    )
