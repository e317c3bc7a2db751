"""Skills system for sheetforge.

Implements the static skill catalog (loaded from YAML), the learning-method
adjusted cost categories, and the adventure-point cost tables for activating
and increasing skills.
"""

from enum import IntEnum, StrEnum
from functools import lru_cache
from pathlib import Path
from typing import Any

import structlog
import yaml
from pydantic import BaseModel, Field, ValidationError

from sheetforge.config import get_settings

logger = structlog.get_logger(__name__)


class CatalogLoadError(Exception):
    """Raised when a rules catalog cannot be loaded or validated."""

    pass


class SkillCategory(StrEnum):
    """Skill categories on the character sheet."""

    COMBAT = "combat"
    BODY = "body"
    SOCIAL = "social"
    NATURE = "nature"
    KNOWLEDGE = "knowledge"
    HANDCRAFT = "handcraft"


class CombatSectionName(StrEnum):
    """Partitions of the combat section."""

    MELEE = "melee"
    RANGED = "ranged"


class CostCategory(IntEnum):
    """Adventure-point cost category of a skill, cheapest first."""

    CAT_0 = 0
    CAT_1 = 1
    CAT_2 = 2
    CAT_3 = 3
    CAT_4 = 4


class LearningMethod(StrEnum):
    """How a character learns a skill; shifts its cost category."""

    FREE = "FREE"
    LOW_PRICED = "LOW_PRICED"
    NORMAL = "NORMAL"
    EXPENSIVE = "EXPENSIVE"


COST_CATEGORY_DEFAULT = CostCategory.CAT_2
COST_CATEGORY_COMBAT_SKILLS = CostCategory.CAT_3

# Upper bounds (exclusive) of the skill-value columns in COST_MATRIX
SKILL_THRESHOLDS = [50, 75, 99999]

# Adventure points per skill point, rows by cost category, columns by threshold
COST_MATRIX: list[list[float]] = [
    [0, 0, 0],
    [0.5, 1, 2],
    [1, 2, 3],
    [2, 3, 4],
    [3, 4, 5],
]

# One-off adventure-point cost of activating a skill, by cost category
SKILL_ACTIVATION_COSTS: list[int] = [0, 40, 50, 60, 70]

_LEARNING_METHOD_SHIFT = {
    LearningMethod.LOW_PRICED: -1,
    LearningMethod.NORMAL: 0,
    LearningMethod.EXPENSIVE: 1,
}


class SkillDefinition(BaseModel):
    """
    Static definition of a single skill.

    Attributes:
        start: Whether the skill is activated on character creation
        section: Combat section for combat skills, None otherwise
        handling: Handling value for combat skills, None otherwise
    """

    start: bool = Field(default=False, description="Activated on character creation")
    section: CombatSectionName | None = Field(default=None, description="Combat section")
    handling: int | None = Field(default=None, ge=0, description="Combat handling value")


class SkillCategoryDefinition(BaseModel):
    """Skills of one category and their shared default cost category."""

    default_cost_category: CostCategory = Field(..., description="Default cost category")
    skills: dict[str, SkillDefinition] = Field(..., description="Skill name to definition")


class SkillCatalog(BaseModel):
    """The full skill catalog keyed by category."""

    categories: dict[SkillCategory, SkillCategoryDefinition]

    def get(self, category: SkillCategory | str, name: str) -> SkillDefinition | None:
        """Get a skill definition, or None when the category has no such skill."""
        try:
            category = SkillCategory(category)
        except ValueError:
            return None
        definition = self.categories.get(category)
        if definition is None:
            return None
        return definition.skills.get(name)

    def combat_section(self, name: str) -> CombatSectionName | None:
        """Get the combat section a combat skill belongs to."""
        definition = self.get(SkillCategory.COMBAT, name)
        return definition.section if definition else None

    def combat_skills(self, section: CombatSectionName) -> list[str]:
        """List the combat skills of one combat section, in catalog order."""
        combat = self.categories[SkillCategory.COMBAT]
        return [name for name, skill in combat.skills.items() if skill.section == section]


def _read_catalog_file(file_path: Path) -> dict[str, Any]:
    try:
        with open(file_path, encoding="utf-8") as f:
            data = yaml.safe_load(f)
    except FileNotFoundError as e:
        raise CatalogLoadError(f"Catalog file not found: {file_path}") from e
    except yaml.YAMLError as e:
        raise CatalogLoadError(f"Invalid YAML in {file_path}: {e}") from e

    if not isinstance(data, dict):
        raise CatalogLoadError(f"Expected a mapping at the top of {file_path}")
    return data


def load_skill_catalog(file_path: Path | None = None) -> SkillCatalog:
    """Load and validate the skill catalog.

    Args:
        file_path: YAML file to read; defaults to the configured or bundled catalog

    Returns:
        The validated SkillCatalog

    Raises:
        CatalogLoadError: If the file is missing, malformed, or fails validation
    """
    if file_path is None:
        settings = get_settings()
        file_path = settings.skill_catalog_path or settings.data_dir / "skills.yaml"

    data = _read_catalog_file(file_path)
    try:
        catalog = SkillCatalog(categories=data)
    except ValidationError as e:
        raise CatalogLoadError(f"Invalid skill catalog in {file_path}: {e}") from e

    combat = catalog.categories.get(SkillCategory.COMBAT)
    if combat is not None:
        for name, skill in combat.skills.items():
            if skill.section is None or skill.handling is None:
                raise CatalogLoadError(f"Combat skill '{name}' needs a section and a handling value")

    logger.debug(
        "skill_catalog_loaded",
        path=str(file_path),
        skills=sum(len(c.skills) for c in catalog.categories.values()),
    )
    return catalog


@lru_cache
def get_skill_catalog() -> SkillCatalog:
    """Get the cached default skill catalog."""
    return load_skill_catalog()


def adjust_cost_category(default: CostCategory | int, method: LearningMethod) -> CostCategory:
    """Shift a skill's default cost category by the learning method.

    Args:
        default: The skill's default cost category
        method: The learning method used

    Returns:
        The adjusted cost category, clamped to the valid range

    Examples:
        >>> adjust_cost_category(CostCategory.CAT_2, LearningMethod.FREE)
        <CostCategory.CAT_0: 0>
        >>> adjust_cost_category(CostCategory.CAT_4, LearningMethod.EXPENSIVE)
        <CostCategory.CAT_4: 4>
    """
    if method == LearningMethod.FREE:
        return CostCategory.CAT_0

    shifted = int(default) + _LEARNING_METHOD_SHIFT[method]
    return CostCategory(max(CostCategory.CAT_0, min(CostCategory.CAT_4, shifted)))


def get_skill_increase_cost(skill_value: int, category: CostCategory | int) -> float:
    """Get the adventure-point cost of raising a skill by one point.

    Args:
        skill_value: The skill value before the increase
        category: The (adjusted) cost category

    Returns:
        Cost of the single point
    """
    column = next(i for i, threshold in enumerate(SKILL_THRESHOLDS) if skill_value < threshold)
    return COST_MATRIX[int(category)][column]


def get_skill_increase_total_cost(skill_value: int, points: int, category: CostCategory | int) -> float:
    """Get the cost of raising a skill by several points, one point at a time."""
    return sum(get_skill_increase_cost(skill_value + i, category) for i in range(points))


def get_skill_activation_cost(category: CostCategory | int) -> int:
    """Get the adventure-point cost of activating a skill."""
    return SKILL_ACTIVATION_COSTS[int(category)]
