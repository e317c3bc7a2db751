"""Character creation for sheetforge.

Builds a fresh sheet from distributed attribute points: formula-driven base
values are seeded from the attributes, start skills are activated and every
combat skill gets its handling value as distributable points.
"""

from collections.abc import Iterable, Mapping

import structlog

from sheetforge.game.errors import InvalidInputError, UnknownEntityError
from sheetforge.game.systems.cascade import compute_combat_stats
from sheetforge.game.systems.gate import is_integral

from .attributes import (
    BASE_VALUE_FORMULAS,
    BASE_VALUES_UPDATABLE_BY_LVL_UP,
    AttributeName,
    BaseValueName,
    calculate_base_values,
)
from .sheet import (
    ATTRIBUTE_POINTS_FOR_CREATION,
    MIN_LEVEL,
    Attribute,
    BaseValue,
    CalculationPoints,
    CalculationPointsSection,
    CharacterSheet,
    CombatSection,
    CombatStats,
    Skill,
)
from .skills import (
    CatalogLoadError,
    CombatSectionName,
    SkillCatalog,
    SkillCategory,
    get_skill_catalog,
)

logger = structlog.get_logger(__name__)


def parse_skill_path(path: str) -> tuple[SkillCategory, str]:
    """Split a ``"category/name"`` skill path.

    Raises:
        UnknownEntityError: If the category is unknown or the path is malformed
    """
    category, _, name = path.partition("/")
    try:
        return SkillCategory(category), name
    except ValueError as e:
        raise UnknownEntityError(f"Unknown skill category in '{path}'", skill=path) from e


def _build_attributes(points: Mapping[str, int]) -> dict[AttributeName, Attribute]:
    unknown = set(points) - set(AttributeName)
    if unknown:
        raise UnknownEntityError(f"Unknown attributes: {sorted(unknown)}", attributes=sorted(unknown))
    if set(points) != set(AttributeName) or any(
        not is_integral(value) or value < 0 for value in points.values()
    ):
        raise InvalidInputError("Invalid input values!")

    spent = sum(points.values())
    if spent != ATTRIBUTE_POINTS_FOR_CREATION:
        raise InvalidInputError(
            f"Expected {ATTRIBUTE_POINTS_FOR_CREATION} distributed attribute points, "
            f"but got {spent} points.",
            spent=spent,
        )

    return {
        AttributeName(name): Attribute(start=value, current=value, mod=0, total_cost=value)
        for name, value in points.items()
    }


def _build_base_values(attributes: Mapping[AttributeName, Attribute]) -> dict[BaseValueName, BaseValue]:
    formula_values = calculate_base_values({name: attr.total for name, attr in attributes.items()})
    base_values = {}
    for name in BaseValueName:
        by_formula = formula_values[name] if name in BASE_VALUE_FORMULAS else None
        value = by_formula or 0
        base_values[name] = BaseValue(
            start=value,
            current=value,
            by_formula=by_formula,
            by_lvl_up=0 if name in BASE_VALUES_UPDATABLE_BY_LVL_UP else None,
            mod=0,
        )
    return base_values


def _build_skills(
    catalog: SkillCatalog,
    activated_skills: Iterable[str],
    combat_start_values: Mapping[str, int],
) -> dict[SkillCategory, dict[str, Skill]]:
    skills = {
        category: {
            name: Skill(
                activated=definition.start,
                default_cost_category=category_definition.default_cost_category,
            )
            for name, definition in category_definition.skills.items()
        }
        for category, category_definition in catalog.categories.items()
    }

    for path in activated_skills:
        category, name = parse_skill_path(path)
        skill = skills.get(category, {}).get(name)
        if skill is None:
            raise UnknownEntityError(f"Unknown skill '{path}'", skill=path)
        if skill.activated:
            raise InvalidInputError(f"Skill '{path}' is already activated.", skill=path)
        skills[category][name] = skill.model_copy(update={"activated": True})

    combat = skills.get(SkillCategory.COMBAT, {})
    for name, start in combat_start_values.items():
        if name not in combat:
            raise UnknownEntityError(f"Unknown combat skill '{name}'", skill=name)
        if not is_integral(start) or start < 0:
            raise InvalidInputError("Invalid input values!", skill=name)
        skill = combat[name]
        combat[name] = skill.model_copy(
            update={"start": skill.start + start, "current": skill.current + start}
        )

    return skills


def _build_combat(
    catalog: SkillCatalog,
    combat_skills: Mapping[str, Skill],
    base_values: Mapping[BaseValueName, BaseValue],
) -> CombatSection:
    sections: dict[CombatSectionName, dict[str, CombatStats]] = {
        CombatSectionName.MELEE: {},
        CombatSectionName.RANGED: {},
    }
    for name, skill in combat_skills.items():
        definition = catalog.get(SkillCategory.COMBAT, name)
        if definition is None or definition.section is None:
            raise CatalogLoadError(f"Combat skill '{name}' needs a section in the skill catalog")
        handling = definition.handling or 0
        stats = CombatStats(
            available_points=handling + skill.current + skill.mod,
            handling=handling,
        )
        sections[definition.section][name] = compute_combat_stats(
            stats, definition.section, base_values
        )
    return CombatSection(
        melee=sections[CombatSectionName.MELEE],
        ranged=sections[CombatSectionName.RANGED],
    )


def new_character_sheet(
    attributes: Mapping[str, int],
    *,
    activated_skills: Iterable[str] = (),
    combat_skill_start_values: Mapping[str, int] | None = None,
    adventure_points: int = 0,
    catalog: SkillCatalog | None = None,
) -> CharacterSheet:
    """Create a character sheet from distributed attribute points.

    Args:
        attributes: Points per attribute; every attribute must be given and the
            points must add up to the creation budget
        activated_skills: Extra skills to activate, as ``"category/name"`` paths
        combat_skill_start_values: Start value per combat skill
        adventure_points: Adventure points granted at creation
        catalog: Skill catalog; defaults to the configured catalog

    Returns:
        The new CharacterSheet at level 1

    Raises:
        InvalidInputError: If the distribution or a skill selection is invalid
        UnknownEntityError: If an attribute or skill name is not in the catalog
    """
    catalog = catalog if catalog is not None else get_skill_catalog()
    if adventure_points < 0:
        raise InvalidInputError("Invalid input values!", adventure_points=adventure_points)

    attribute_map = _build_attributes(attributes)
    base_values = _build_base_values(attribute_map)
    skills = _build_skills(catalog, activated_skills, combat_skill_start_values or {})
    combat = _build_combat(catalog, skills.get(SkillCategory.COMBAT, {}), base_values)

    sheet = CharacterSheet(
        level=MIN_LEVEL,
        special_abilities=[],
        attributes=attribute_map,
        base_values=base_values,
        skills=skills,
        combat=combat,
        calculation_points=CalculationPointsSection(
            adventure_points=CalculationPoints(
                start=adventure_points, available=adventure_points, total=adventure_points
            ),
            attribute_points=CalculationPoints(
                start=ATTRIBUTE_POINTS_FOR_CREATION,
                available=0,
                total=ATTRIBUTE_POINTS_FOR_CREATION,
            ),
        ),
    )
    logger.debug(
        "character_sheet_built",
        health_points=sheet.base_values[BaseValueName.HEALTH_POINTS].current,
        activated_skills=sum(s.activated for c in skills.values() for s in c.values()),
    )
    return sheet
