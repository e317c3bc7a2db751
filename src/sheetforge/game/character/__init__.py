"""Character sheet model, attributes and skills."""

from .attributes import (
    ATTRIBUTE_NAMES,
    BASE_VALUE_NAMES,
    AttributeName,
    BaseValueName,
    calculate_base_values,
)
from .sheet import MAX_LEVEL, MIN_LEVEL, CharacterSheet
from .skills import LearningMethod, SkillCategory, get_skill_catalog

__all__ = [
    "ATTRIBUTE_NAMES",
    "BASE_VALUE_NAMES",
    "MAX_LEVEL",
    "MIN_LEVEL",
    "AttributeName",
    "BaseValueName",
    "CharacterSheet",
    "LearningMethod",
    "SkillCategory",
    "calculate_base_values",
    "get_skill_catalog",
]
