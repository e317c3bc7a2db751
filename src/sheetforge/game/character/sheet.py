"""Character sheet data model for sheetforge.

The sheet is an immutable aggregate of pydantic models. Engine operations never
modify a sheet in place; they build a new one with the ``with_*`` helpers so a
rejected request can never leave a half-applied sheet behind.

Field names are snake_case in Python and camelCase in the persisted document.
"""

from typing import Any

from pydantic import BaseModel, ConfigDict, Field, model_validator
from pydantic.alias_generators import to_camel

from .attributes import AttributeName, BaseValueName
from .skills import CombatSectionName, CostCategory, SkillCategory

MIN_LEVEL = 1
MAX_LEVEL = 1000

ATTRIBUTE_POINTS_FOR_CREATION = 40

Number = int | float


class SheetModel(BaseModel):
    """Base for every sheet model: frozen, camelCase aliases, strict keys."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        frozen=True,
        extra="forbid",
    )


class Attribute(SheetModel):
    """A point-buy attribute."""

    start: int = Field(default=0, description="Value bought at creation")
    current: int = Field(default=0, description="Value including purchased increases")
    mod: int = Field(default=0, description="Free flat modifier")
    total_cost: int = Field(default=0, ge=0, description="Attribute points spent on current")

    @property
    def total(self) -> int:
        """Value used by formulas."""
        return self.current + self.mod


class BaseValue(SheetModel):
    """A derived or free-standing base value."""

    start: int = Field(default=0, description="Value at creation")
    current: int = Field(default=0, description="Effective value")
    by_formula: int | None = Field(default=None, description="Formula contribution, if governed")
    by_lvl_up: int | None = Field(default=None, description="Accumulated level-up bonuses")
    mod: int = Field(default=0, description="Free flat modifier")


class CombatStats(SheetModel):
    """Combat values of one combat skill."""

    available_points: int = Field(default=0, description="Points left for skilled values")
    handling: int = Field(default=0, ge=0, description="Handling value of the weapon class")
    attack_value: int = Field(default=0, description="Skilled attack plus attack base value")
    skilled_attack_value: int = Field(default=0, ge=0, description="Purchased attack points")
    parade_value: int = Field(default=0, description="Skilled parade plus parade base value")
    skilled_parade_value: int = Field(default=0, ge=0, description="Purchased parade points")


class CalculationPoints(SheetModel):
    """A point ledger; available = total minus everything spent."""

    start: Number = Field(default=0, description="Points granted at creation")
    available: Number = Field(default=0, description="Points left to spend")
    total: Number = Field(default=0, description="Points granted overall")


class Skill(SheetModel):
    """A learnable skill."""

    activated: bool = Field(default=False, description="Whether the skill can be used and raised")
    start: int = Field(default=0, description="Value at creation")
    current: int = Field(default=0, description="Value including purchased increases")
    mod: int = Field(default=0, description="Free flat modifier")
    total_cost: Number = Field(default=0, ge=0, description="Adventure points spent")
    default_cost_category: CostCategory = Field(
        default=CostCategory.CAT_2, description="Cost category before learning method"
    )


class CombatSection(SheetModel):
    """Combat stats per combat skill, partitioned into melee and ranged."""

    melee: dict[str, CombatStats] = Field(default_factory=dict)
    ranged: dict[str, CombatStats] = Field(default_factory=dict)

    def section(self, name: CombatSectionName) -> dict[str, CombatStats]:
        """Get one partition by name."""
        return self.melee if name == CombatSectionName.MELEE else self.ranged


class CalculationPointsSection(SheetModel):
    """The two independent point ledgers."""

    adventure_points: CalculationPoints = Field(default_factory=CalculationPoints)
    attribute_points: CalculationPoints = Field(default_factory=CalculationPoints)


class CharacterSheet(SheetModel):
    """Aggregate root of a character's rules data."""

    level: int = Field(default=MIN_LEVEL, ge=MIN_LEVEL, le=MAX_LEVEL, description="Character level")
    special_abilities: list[str] = Field(default_factory=list, description="Unlocked abilities")
    attributes: dict[AttributeName, Attribute]
    base_values: dict[BaseValueName, BaseValue]
    skills: dict[SkillCategory, dict[str, Skill]]
    combat: CombatSection = Field(default_factory=CombatSection)
    calculation_points: CalculationPointsSection = Field(default_factory=CalculationPointsSection)

    @model_validator(mode="after")
    def _require_fixed_keys(self) -> "CharacterSheet":
        missing_attributes = set(AttributeName) - set(self.attributes)
        if missing_attributes:
            raise ValueError(f"Missing attributes: {sorted(missing_attributes)}")
        missing_base_values = set(BaseValueName) - set(self.base_values)
        if missing_base_values:
            raise ValueError(f"Missing base values: {sorted(missing_base_values)}")
        return self

    # Copy-on-write helpers

    def with_attribute(self, name: AttributeName, attribute: Attribute) -> "CharacterSheet":
        """Return a copy with one attribute replaced."""
        return self.model_copy(update={"attributes": {**self.attributes, name: attribute}})

    def with_base_values(self, changes: dict[BaseValueName, BaseValue]) -> "CharacterSheet":
        """Return a copy with the given base values replaced."""
        if not changes:
            return self
        return self.model_copy(update={"base_values": {**self.base_values, **changes}})

    def with_skill(self, category: SkillCategory, name: str, skill: Skill) -> "CharacterSheet":
        """Return a copy with one skill replaced."""
        skills = {**self.skills, category: {**self.skills[category], name: skill}}
        return self.model_copy(update={"skills": skills})

    def with_combat(
        self,
        melee: dict[str, CombatStats] | None = None,
        ranged: dict[str, CombatStats] | None = None,
    ) -> "CharacterSheet":
        """Return a copy with the given combat stats replaced."""
        if not melee and not ranged:
            return self
        combat = CombatSection(
            melee={**self.combat.melee, **(melee or {})},
            ranged={**self.combat.ranged, **(ranged or {})},
        )
        return self.model_copy(update={"combat": combat})

    def with_calculation_points(
        self,
        adventure_points: CalculationPoints | None = None,
        attribute_points: CalculationPoints | None = None,
    ) -> "CharacterSheet":
        """Return a copy with the given ledgers replaced."""
        points = CalculationPointsSection(
            adventure_points=(
                adventure_points
                if adventure_points is not None
                else self.calculation_points.adventure_points
            ),
            attribute_points=(
                attribute_points
                if attribute_points is not None
                else self.calculation_points.attribute_points
            ),
        )
        return self.model_copy(update={"calculation_points": points})

    # Persistence

    def to_document(self) -> dict[str, Any]:
        """Serialize to the camelCase JSON document stored by the sheet store."""
        return self.model_dump(mode="json", by_alias=True)

    @classmethod
    def from_document(cls, document: dict[str, Any]) -> "CharacterSheet":
        """Validate a stored camelCase JSON document."""
        return cls.model_validate(document)
