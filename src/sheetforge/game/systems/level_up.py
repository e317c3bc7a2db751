"""Level-up eligibility and commit for sheetforge.

Each level a character may claim one effect from a fixed catalog. Whether an
effect is available at the next level depends only on the catalog entry and
the levels at which the effect was chosen before:

- unlocked: the next level has reached the entry's first level
- under cap: the effect was chosen fewer times than its maximum
- cooldown over: enough levels passed since it was last chosen

Denied options carry a human-readable reason. The option list is fingerprinted
so a commit computed against stale options is rejected.
"""

import hashlib
import json
from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from datetime import UTC, datetime
from enum import StrEnum
from functools import lru_cache
from pathlib import Path
from typing import Annotated, Any, Literal

import structlog
import yaml
from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, ValidationError
from pydantic.alias_generators import to_camel

from sheetforge.config import get_settings
from sheetforge.game.character.attributes import BaseValueName
from sheetforge.game.character.sheet import MAX_LEVEL, CharacterSheet
from sheetforge.game.character.skills import CatalogLoadError
from sheetforge.game.errors import (
    ConflictError,
    InvalidInputError,
    ProgressionError,
    UnknownEntityError,
)
from sheetforge.game.systems.cascade import apply_cascade, cascade_base_values
from sheetforge.game.systems.gate import (
    INVALID_INPUT_MESSAGE,
    GateOutcome,
    InitialIncreased,
    classify,
)
from sheetforge.game.systems.history import Changes, RecordType
from sheetforge.game.systems.results import (
    MutationResult,
    dump_combat,
    dump_group,
    no_op,
    rejected,
)

logger = structlog.get_logger(__name__)

LEVEL_UP_DICE_EXPRESSION = "1d4+2"
LEVEL_UP_DICE_MIN_TOTAL = 3
LEVEL_UP_DICE_MAX_TOTAL = 6

REROLL_ABILITY = "Reroll"

INITIAL_LEVEL_CONFLICT_MESSAGE = "The passed initial level doesn't match the value in the backend!"
OPTIONS_CHANGED_MESSAGE = "Options have changed. Please refresh level-up options and retry."


class LevelUpEffectKind(StrEnum):
    """Effects a character can claim on level-up."""

    HP_ROLL = "hpRoll"
    ARMOR_LEVEL_ROLL = "armorLevelRoll"
    INITIATIVE_PLUS_ONE = "initiativePlusOne"
    LUCK_PLUS_ONE = "luckPlusOne"
    BONUS_ACTION_PLUS_ONE = "bonusActionPlusOne"
    LEGENDARY_ACTION_PLUS_ONE = "legendaryActionPlusOne"
    REROLL_UNLOCK = "rerollUnlock"


# Base value raised by each effect; rerollUnlock unlocks an ability instead
EFFECT_TARGETS: dict[LevelUpEffectKind, BaseValueName] = {
    LevelUpEffectKind.HP_ROLL: BaseValueName.HEALTH_POINTS,
    LevelUpEffectKind.ARMOR_LEVEL_ROLL: BaseValueName.ARMOR_LEVEL,
    LevelUpEffectKind.INITIATIVE_PLUS_ONE: BaseValueName.INITIATIVE_BASE_VALUE,
    LevelUpEffectKind.LUCK_PLUS_ONE: BaseValueName.LUCK_POINTS,
    LevelUpEffectKind.BONUS_ACTION_PLUS_ONE: BaseValueName.BONUS_ACTIONS_PER_COMBAT_ROUND,
    LevelUpEffectKind.LEGENDARY_ACTION_PLUS_ONE: BaseValueName.LEGENDARY_ACTIONS,
}


class LevelUpModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)


class LevelUpCatalogEntry(LevelUpModel):
    """
    Static configuration of one level-up effect.

    Attributes:
        description: Text shown to players
        first_level: First level at which the effect can be chosen
        max_selection_count: How often the effect can be chosen overall
        cooldown_levels: Levels that must pass between two selections
        dice_expression: Dice rolled for the effect, if any
    """

    description: str = Field(..., description="Text shown to players")
    first_level: int = Field(..., ge=1, description="First level the effect is available")
    max_selection_count: int = Field(..., ge=0, description="Maximum number of selections")
    cooldown_levels: int = Field(..., ge=0, description="Levels between two selections")
    dice_expression: str | None = Field(default=None, description="Dice rolled, if any")


LevelUpCatalog = dict[LevelUpEffectKind, LevelUpCatalogEntry]


class LevelUpSelection(LevelUpModel):
    """One committed choice of an effect."""

    level: int = Field(..., ge=1, description="Level at which the effect was chosen")
    timestamp: datetime


class LevelUpOption(LevelUpModel):
    """An effect as offered for the next level."""

    kind: LevelUpEffectKind
    description: str
    first_level: int
    max_selection_count: int
    cooldown_levels: int
    dice_expression: str | None = None
    selection_count: int = 0
    first_chosen_level: int | None = None
    last_chosen_level: int | None = None
    allowed: bool
    reason_if_denied: str | None = None


@dataclass(frozen=True)
class LevelUpEvaluation:
    """Options for the next level and their fingerprint."""

    next_level: int
    options: list[LevelUpOption]
    options_hash: str

    def option(self, kind: LevelUpEffectKind) -> LevelUpOption | None:
        return next((o for o in self.options if o.kind == kind), None)


# Effects as submitted with a commit


class DiceRoll(LevelUpModel):
    dice: Literal["1d4+2"]
    value: int = Field(..., ge=LEVEL_UP_DICE_MIN_TOTAL, le=LEVEL_UP_DICE_MAX_TOTAL)


class DiceEffect(LevelUpModel):
    kind: Literal["hpRoll", "armorLevelRoll"]
    roll: DiceRoll

    @property
    def amount(self) -> int:
        return self.roll.value


class IncrementEffect(LevelUpModel):
    kind: Literal[
        "initiativePlusOne", "luckPlusOne", "bonusActionPlusOne", "legendaryActionPlusOne"
    ]
    delta: Literal[1]

    @property
    def amount(self) -> int:
        return self.delta


class RerollUnlockEffect(LevelUpModel):
    kind: Literal["rerollUnlock"]

    @property
    def amount(self) -> int:
        return 0


LevelUpEffect = Annotated[
    DiceEffect | IncrementEffect | RerollUnlockEffect, Field(discriminator="kind")
]

_effect_adapter: TypeAdapter[DiceEffect | IncrementEffect | RerollUnlockEffect] = TypeAdapter(
    LevelUpEffect
)


def parse_level_up_effect(data: Mapping[str, Any]) -> DiceEffect | IncrementEffect | RerollUnlockEffect:
    """Validate a submitted effect payload.

    Raises:
        InvalidInputError: If the payload does not describe a valid effect
    """
    try:
        return _effect_adapter.validate_python(data)
    except ValidationError as e:
        raise InvalidInputError(INVALID_INPUT_MESSAGE, errors=e.errors(include_url=False)) from e


# Catalog loading


def load_level_up_catalog(file_path: Path | None = None) -> LevelUpCatalog:
    """Load and validate the level-up effect catalog.

    Args:
        file_path: YAML file to read; defaults to the configured or bundled catalog

    Returns:
        Catalog entry per effect kind

    Raises:
        CatalogLoadError: If the file is unreadable, invalid, or misses an effect kind
    """
    if file_path is None:
        settings = get_settings()
        file_path = settings.level_up_catalog_path or settings.data_dir / "level_up_catalog.yaml"

    try:
        with open(file_path, encoding="utf-8") as f:
            data = yaml.safe_load(f)
    except FileNotFoundError as e:
        raise CatalogLoadError(f"Level-up catalog not found: {file_path}") from e
    except yaml.YAMLError as e:
        raise CatalogLoadError(f"Invalid YAML in {file_path}: {e}") from e

    try:
        catalog = TypeAdapter(LevelUpCatalog).validate_python(data)
    except ValidationError as e:
        raise CatalogLoadError(f"Invalid level-up catalog in {file_path}: {e}") from e

    missing = set(LevelUpEffectKind) - set(catalog)
    if missing:
        raise CatalogLoadError(f"Level-up catalog misses effect kinds: {sorted(missing)}")

    logger.debug("level_up_catalog_loaded", path=str(file_path), kinds=len(catalog))
    return catalog


@lru_cache
def get_level_up_catalog() -> LevelUpCatalog:
    """Get the cached default level-up catalog."""
    return load_level_up_catalog()


# Eligibility


def next_available_level(entry: LevelUpCatalogEntry, last_chosen_level: int) -> int:
    """First level at which an effect chosen at ``last_chosen_level`` is off cooldown."""
    return last_chosen_level + entry.cooldown_levels + 1


def denial_reason(
    entry: LevelUpCatalogEntry,
    next_level: int,
    selection_count: int,
    last_chosen_level: int | None,
) -> str | None:
    """Compose the reason an effect is denied, or None if it is allowed.

    Clauses appear in a fixed order and are joined by a single space: the
    unlock clause, then the cooldown clause, then the cap clause.

    Examples:
        >>> entry = LevelUpCatalogEntry(
        ...     description="+1 Luck", first_level=2, max_selection_count=3, cooldown_levels=2
        ... )
        >>> denial_reason(entry, 10, 2, 9)
        'Next available at level 12.'
        >>> denial_reason(entry, 12, 3, 9)
        'Maximum of 3 reached.'
    """
    clauses = []
    if next_level < entry.first_level:
        clauses.append(f"Only available at level {entry.first_level}.")
    if selection_count > 0 and last_chosen_level is not None:
        available_at = next_available_level(entry, last_chosen_level)
        if next_level < available_at:
            clauses.append(f"Next available at level {available_at}.")
    if selection_count >= entry.max_selection_count:
        clauses.append(f"Maximum of {entry.max_selection_count} reached.")
    return " ".join(clauses) or None


def evaluate_option(
    kind: LevelUpEffectKind,
    entry: LevelUpCatalogEntry,
    next_level: int,
    selections: Sequence[LevelUpSelection],
) -> LevelUpOption:
    """Evaluate one catalog entry against its selection history."""
    levels = sorted(selection.level for selection in selections)
    selection_count = len(levels)
    first_chosen_level = levels[0] if levels else None
    last_chosen_level = levels[-1] if levels else None

    reason = denial_reason(entry, next_level, selection_count, last_chosen_level)
    return LevelUpOption(
        kind=kind,
        description=entry.description,
        first_level=entry.first_level,
        max_selection_count=entry.max_selection_count,
        cooldown_levels=entry.cooldown_levels,
        dice_expression=entry.dice_expression,
        selection_count=selection_count,
        first_chosen_level=first_chosen_level,
        last_chosen_level=last_chosen_level,
        allowed=reason is None,
        reason_if_denied=reason,
    )


def compute_options_hash(character_id: str, next_level: int, options: Sequence[LevelUpOption]) -> str:
    """Fingerprint an option list with SHA-256 over canonical JSON."""
    payload = {
        "characterId": str(character_id),
        "nextLevel": next_level,
        "options": [option.model_dump(mode="json", by_alias=True) for option in options],
    }
    canonical = json.dumps(payload, separators=(",", ":"), sort_keys=True, ensure_ascii=False)
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()


def evaluate(
    catalog: LevelUpCatalog,
    next_level: int,
    history_per_kind: Mapping[LevelUpEffectKind, Sequence[LevelUpSelection]],
    character_id: str,
) -> LevelUpEvaluation:
    """Compute every catalog option for the next level.

    Args:
        catalog: Catalog entry per effect kind
        next_level: Level the character would reach
        history_per_kind: Committed selections per effect kind
        character_id: Character the options are computed for

    Returns:
        LevelUpEvaluation with options in catalog order and their hash
    """
    options = [
        evaluate_option(kind, entry, next_level, history_per_kind.get(kind, ()))
        for kind, entry in catalog.items()
    ]
    options_hash = compute_options_hash(character_id, next_level, options)
    logger.debug(
        "level_up_options_evaluated",
        character_id=str(character_id),
        next_level=next_level,
        allowed=[o.kind.value for o in options if o.allowed],
    )
    return LevelUpEvaluation(next_level=next_level, options=options, options_hash=options_hash)


# Commit


@dataclass(frozen=True)
class LevelUpCommit:
    """An applied level-up: the result plus the selection to append."""

    result: MutationResult
    kind: LevelUpEffectKind | None
    selection: LevelUpSelection | None = None


def _is_replay(
    sheet: CharacterSheet,
    initial_level: int,
    kind: LevelUpEffectKind,
    history_per_kind: Mapping[LevelUpEffectKind, Sequence[LevelUpSelection]],
) -> bool:
    decision = classify(
        "level", sheet.level, InitialIncreased(initial_value=initial_level, increased_points=1)
    )
    if decision.outcome != GateOutcome.NO_OP:
        return False
    return any(s.level == sheet.level for s in history_per_kind.get(kind, ()))


def apply_level_up(
    sheet: CharacterSheet,
    character_id: str,
    initial_level: int,
    options_hash: str,
    effect: Mapping[str, Any] | DiceEffect | IncrementEffect | RerollUnlockEffect,
    history_per_kind: Mapping[LevelUpEffectKind, Sequence[LevelUpSelection]],
    catalog: LevelUpCatalog | None = None,
    now: datetime | None = None,
) -> LevelUpCommit:
    """Commit one level-up effect.

    Args:
        sheet: Sheet before the level-up
        character_id: Character being levelled
        initial_level: Level the client believes the character has
        options_hash: Hash of the options the client chose from
        effect: Chosen effect (model or raw payload)
        history_per_kind: Committed selections per effect kind
        catalog: Level-up catalog; defaults to the configured catalog
        now: Timestamp override for the new selection

    Returns:
        LevelUpCommit; on APPLY it holds the new sheet, the diff and the selection
    """
    catalog = catalog if catalog is not None else get_level_up_catalog()
    record_type = RecordType.LEVEL_CHANGED
    name = "level"

    try:
        if not isinstance(effect, DiceEffect | IncrementEffect | RerollUnlockEffect):
            effect = parse_level_up_effect(effect)
        kind = LevelUpEffectKind(effect.kind)
        if kind not in catalog:
            raise UnknownEntityError(f"Level-up effect '{kind}' is not in the catalog", kind=kind.value)

        if _is_replay(sheet, initial_level, kind, history_per_kind):
            logger.info("level_up_replayed", character_id=str(character_id), level=sheet.level)
            return LevelUpCommit(no_op(sheet, record_type, name), kind)

        if initial_level != sheet.level:
            raise ConflictError(
                INITIAL_LEVEL_CONFLICT_MESSAGE,
                passed_initial_level=initial_level,
                backend_initial_level=sheet.level,
            )
        if sheet.level >= MAX_LEVEL:
            raise InvalidInputError("Maximum level reached!", level=sheet.level)

        evaluation = evaluate(catalog, sheet.level + 1, history_per_kind, character_id)
        if evaluation.options_hash != options_hash:
            raise ConflictError(
                OPTIONS_CHANGED_MESSAGE,
                passed_options_hash=options_hash,
                backend_options_hash=evaluation.options_hash,
            )

        option = evaluation.option(kind)
        if option is None or not option.allowed:
            raise InvalidInputError(
                f"Selected effect '{kind}' is not allowed for this level",
                selected_effect=kind.value,
                next_level=evaluation.next_level,
            )
    except ProgressionError as e:
        log = logger.error if isinstance(e, UnknownEntityError) else logger.warning
        log("level_up_rejected", character_id=str(character_id), kind=e.kind.value, reason=e.message)
        return LevelUpCommit(rejected(sheet, record_type, name, e), None)

    next_level = sheet.level + 1
    new_sheet = sheet.model_copy(update={"level": next_level})
    old: dict[str, Any] = {"level": sheet.level}
    new: dict[str, Any] = {"level": next_level, "effect": effect.model_dump(mode="json", by_alias=True)}

    target = EFFECT_TARGETS.get(kind)
    if target is not None:
        base_value = sheet.base_values[target]
        updated = base_value.model_copy(
            update={
                "by_lvl_up": (base_value.by_lvl_up or 0) + effect.amount,
                "current": base_value.current + effect.amount,
            }
        )
        diff = cascade_base_values(sheet, {target: updated})
        new_sheet = apply_cascade(new_sheet, diff)
        old["baseValues"] = dump_group(diff.old.base_values)
        new["baseValues"] = dump_group(diff.new.base_values)
        if diff.new.combat:
            old["combat"] = dump_combat(diff.old.combat)
            new["combat"] = dump_combat(diff.new.combat)
    else:
        abilities = [*sheet.special_abilities, REROLL_ABILITY]
        new_sheet = new_sheet.model_copy(update={"special_abilities": abilities})
        old["specialAbilities"] = list(sheet.special_abilities)
        new["specialAbilities"] = abilities

    selection = LevelUpSelection(level=next_level, timestamp=now or datetime.now(UTC))
    logger.info(
        "level_up_applied",
        character_id=str(character_id),
        old_level=sheet.level,
        new_level=next_level,
        kind=kind.value,
        amount=effect.amount,
    )
    result = MutationResult(
        GateOutcome.APPLY,
        new_sheet,
        record_type,
        name,
        changes=Changes(old=old, new=new),
    )
    return LevelUpCommit(result, kind, selection)
