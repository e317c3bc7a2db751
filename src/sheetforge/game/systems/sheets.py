"""Sheet store and request orchestration for sheetforge.

Wires the pure engine to the database: read the sheet, run an operation,
write the new sheet conditionally on the version that was read, and append
the history record, all in one transaction.
"""

import uuid
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from typing import Any

import structlog
from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from sheetforge.database.models import CharacterDocument, HistoryEntry, LevelUpSelectionEntry
from sheetforge.game.character.sheet import CharacterSheet
from sheetforge.game.errors import CharacterNotFoundError, EngineError, ErrorKind
from sheetforge.game.systems.gate import GateOutcome
from sheetforge.game.systems.history import (
    Changes,
    HistoryRecord,
    RecordType,
    SpentPoints,
    assemble,
)
from sheetforge.game.systems.level_up import (
    LevelUpCatalog,
    LevelUpEffectKind,
    LevelUpEvaluation,
    LevelUpSelection,
    apply_level_up,
    evaluate,
    get_level_up_catalog,
)
from sheetforge.game.systems.mutations import (
    SkillIncreaseCost,
    create_character_sheet,
    skill_increase_cost,
)
from sheetforge.game.systems.results import MutationResult

logger = structlog.get_logger(__name__)

CONCURRENT_MODIFICATION_MESSAGE = "Character sheet was modified concurrently. Reload and retry."

CLONE_NAME_SUFFIX = " (Copy)"


@dataclass(frozen=True)
class MutationResponse:
    """What a caller gets back for a mutation request."""

    changes: Changes | None = None
    calculation_points: SpentPoints | None = None
    history_record: HistoryRecord | None = None
    error: EngineError | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


# Collaborator primitives


async def get_sheet(session: AsyncSession, character_id: uuid.UUID) -> tuple[CharacterSheet, int]:
    """Read a character's sheet and its version.

    Raises:
        CharacterNotFoundError: If the character does not exist
    """
    document = await session.get(CharacterDocument, character_id, populate_existing=True)
    if document is None:
        raise CharacterNotFoundError(f"Character {character_id} not found")
    return CharacterSheet.from_document(document.sheet), document.version


async def put_sheet(
    session: AsyncSession,
    character_id: uuid.UUID,
    sheet: CharacterSheet,
    expected_version: int,
) -> bool:
    """Write a sheet if the stored version still equals ``expected_version``.

    Returns:
        True if written, False on a version conflict
    """
    result = await session.execute(
        update(CharacterDocument)
        .where(
            CharacterDocument.id == character_id,
            CharacterDocument.version == expected_version,
        )
        .values(sheet=sheet.to_document(), level=sheet.level, version=expected_version + 1)
        .execution_options(synchronize_session="fetch")
    )
    return result.rowcount == 1


async def latest_record_number(session: AsyncSession, character_id: uuid.UUID) -> int:
    """Number of the latest history record, 0 if there is none."""
    result = await session.execute(
        select(func.max(HistoryEntry.number)).where(HistoryEntry.character_id == character_id)
    )
    return result.scalar_one_or_none() or 0


async def append_record(
    session: AsyncSession, character_id: uuid.UUID, record: HistoryRecord
) -> int:
    """Append a history record and return its position."""
    entry = HistoryEntry(
        id=record.id,
        character_id=character_id,
        number=record.number,
        record_type=int(record.type),
        name=record.name,
        data=record.data.model_dump(mode="json", by_alias=True),
        learning_method=record.learning_method,
        calculation_points=record.calculation_points.model_dump(mode="json", by_alias=True),
        comment=record.comment,
        timestamp=record.timestamp,
    )
    session.add(entry)
    await session.flush()
    return record.number


async def get_history(session: AsyncSession, character_id: uuid.UUID) -> list[HistoryRecord]:
    """Read a character's history in order."""
    result = await session.execute(
        select(HistoryEntry)
        .where(HistoryEntry.character_id == character_id)
        .order_by(HistoryEntry.number)
    )
    return [
        HistoryRecord(
            type=RecordType(entry.record_type),
            name=entry.name,
            number=entry.number,
            id=entry.id,
            data=Changes.model_validate(entry.data),
            learning_method=entry.learning_method,
            calculation_points=SpentPoints.model_validate(entry.calculation_points),
            comment=entry.comment,
            timestamp=entry.timestamp,
        )
        for entry in result.scalars()
    ]


async def recent_selections(
    session: AsyncSession, character_id: uuid.UUID, kind: LevelUpEffectKind
) -> list[LevelUpSelection]:
    """Read the committed selections of one effect kind, oldest first."""
    result = await session.execute(
        select(LevelUpSelectionEntry)
        .where(
            LevelUpSelectionEntry.character_id == character_id,
            LevelUpSelectionEntry.kind == kind.value,
        )
        .order_by(LevelUpSelectionEntry.level)
    )
    return [
        LevelUpSelection(level=entry.level, timestamp=entry.chosen_at)
        for entry in result.scalars()
    ]


async def selection_history(
    session: AsyncSession, character_id: uuid.UUID
) -> dict[LevelUpEffectKind, list[LevelUpSelection]]:
    """Read the committed selections of every effect kind."""
    return {kind: await recent_selections(session, character_id, kind) for kind in LevelUpEffectKind}


# Orchestration


async def _persist(
    session: AsyncSession,
    character_id: uuid.UUID,
    result: MutationResult,
    version: int,
    comment: str | None,
) -> MutationResponse:
    if not result.applied or result.sheet is None or result.changes is None:
        raise RuntimeError(f"Cannot persist a {result.outcome.value} result")
    if not await put_sheet(session, character_id, result.sheet, version):
        await session.rollback()
        logger.warning("sheet_version_conflict", character_id=str(character_id), version=version)
        return MutationResponse(
            error=EngineError(
                ErrorKind.CONFLICT,
                CONCURRENT_MODIFICATION_MESSAGE,
                {"expected_version": version},
            )
        )

    record = assemble(
        result.outcome,
        result.changes,
        result.spent,
        record_type=result.record_type,
        name=result.name,
        latest_number=await latest_record_number(session, character_id),
        comment=comment,
        learning_method=result.learning_method,
    )
    if record is None:
        raise RuntimeError("Applied results always produce a history record")
    await append_record(session, character_id, record)
    return MutationResponse(
        changes=result.changes, calculation_points=result.spent, history_record=record
    )


async def create_character(
    session: AsyncSession,
    owner_id: str,
    name: str,
    attributes: Mapping[str, int],
    **options: Any,
) -> tuple[uuid.UUID | None, MutationResponse]:
    """Create and store a new character.

    Args:
        session: Database session
        owner_id: Identifier of the owning user
        name: Character name
        attributes: Points per attribute
        **options: Further creation options (activated skills, combat start values,
            adventure points)

    Returns:
        Tuple of (character id or None on rejection, response)
    """
    result = create_character_sheet(attributes, **options)
    if result.error is not None:
        return None, MutationResponse(error=result.error)
    if result.sheet is None or result.changes is None:
        raise RuntimeError("Character creation returned no sheet")

    document = CharacterDocument(
        owner_id=owner_id,
        name=name,
        level=result.sheet.level,
        sheet=result.sheet.to_document(),
        version=1,
    )
    session.add(document)
    await session.flush()

    record = assemble(
        result.outcome,
        result.changes,
        None,
        record_type=RecordType.CHARACTER_CREATED,
        name=name,
        latest_number=0,
    )
    if record is None:
        raise RuntimeError("Character creation always produces a history record")
    await append_record(session, document.id, record)
    await session.commit()

    logger.info("character_created", character_id=str(document.id), owner_id=owner_id, name=name)
    return document.id, MutationResponse(changes=result.changes, history_record=record)


async def clone_character(
    session: AsyncSession, character_id: uuid.UUID, owner_id: str
) -> CharacterDocument:
    """Copy a character, its history and its level-up selections.

    The copy gets a new id, belongs to ``owner_id`` and is named after the
    source with a " (Copy)" suffix. History records keep their numbers and
    timestamps but get new ids.

    Args:
        session: Database session
        character_id: Character to copy
        owner_id: Identifier of the user who owns the copy

    Returns:
        The stored copy

    Raises:
        CharacterNotFoundError: If the character does not exist
    """
    source = await session.get(CharacterDocument, character_id, populate_existing=True)
    if source is None:
        raise CharacterNotFoundError(f"Character {character_id} not found")

    clone = CharacterDocument(
        owner_id=owner_id,
        name=f"{source.name}{CLONE_NAME_SUFFIX}",
        level=source.level,
        sheet=source.sheet,
        version=1,
    )
    session.add(clone)
    await session.flush()

    history = await session.execute(
        select(HistoryEntry)
        .where(HistoryEntry.character_id == character_id)
        .order_by(HistoryEntry.number)
    )
    records = 0
    for entry in history.scalars():
        session.add(
            HistoryEntry(
                id=uuid.uuid4(),
                character_id=clone.id,
                number=entry.number,
                record_type=entry.record_type,
                name=entry.name,
                data=entry.data,
                learning_method=entry.learning_method,
                calculation_points=entry.calculation_points,
                comment=entry.comment,
                timestamp=entry.timestamp,
            )
        )
        records += 1

    selections = await session.execute(
        select(LevelUpSelectionEntry).where(LevelUpSelectionEntry.character_id == character_id)
    )
    for selection in selections.scalars():
        session.add(
            LevelUpSelectionEntry(
                character_id=clone.id,
                kind=selection.kind,
                level=selection.level,
                effect=selection.effect,
                chosen_at=selection.chosen_at,
            )
        )
    await session.commit()

    logger.info(
        "character_cloned",
        source_id=str(character_id),
        character_id=str(clone.id),
        owner_id=owner_id,
        records=records,
    )
    return clone


async def mutate_character(
    session: AsyncSession,
    character_id: uuid.UUID,
    operation: Callable[[CharacterSheet], MutationResult],
    *,
    comment: str | None = None,
) -> MutationResponse:
    """Run one mutation operation against a stored character.

    Args:
        session: Database session
        character_id: Character to change
        operation: Engine operation taking the current sheet, e.g.
            ``functools.partial(update_attribute, name="endurance", current=...)``
        comment: Optional comment stored on the history record

    Returns:
        MutationResponse; empty for replays, with ``error`` set for rejections

    Raises:
        CharacterNotFoundError: If the character does not exist
    """
    sheet, version = await get_sheet(session, character_id)
    result = operation(sheet)

    if result.error is not None:
        return MutationResponse(error=result.error)
    if result.outcome == GateOutcome.NO_OP:
        return MutationResponse()

    response = await _persist(session, character_id, result, version, comment)
    if response.ok:
        await session.commit()
        logger.info(
            "character_mutated",
            character_id=str(character_id),
            record_type=result.record_type.name,
            name=result.name,
            number=response.history_record.number if response.history_record else None,
        )
    return response


async def get_level_up_options(
    session: AsyncSession,
    character_id: uuid.UUID,
    catalog: LevelUpCatalog | None = None,
) -> LevelUpEvaluation:
    """Evaluate the level-up options for a character's next level."""
    sheet, _ = await get_sheet(session, character_id)
    history = await selection_history(session, character_id)
    return evaluate(
        catalog if catalog is not None else get_level_up_catalog(),
        sheet.level + 1,
        history,
        str(character_id),
    )


async def get_skill_cost(
    session: AsyncSession,
    character_id: uuid.UUID,
    category: str,
    name: str,
    learning_method: str,
) -> SkillIncreaseCost:
    """Quote the cost of a stored character's next skill point."""
    sheet, _ = await get_sheet(session, character_id)
    return skill_increase_cost(sheet, category, name, learning_method)


async def commit_level_up(
    session: AsyncSession,
    character_id: uuid.UUID,
    initial_level: int,
    options_hash: str,
    effect: Mapping[str, Any],
    *,
    catalog: LevelUpCatalog | None = None,
    comment: str | None = None,
) -> MutationResponse:
    """Commit a level-up choice for a stored character.

    Raises:
        CharacterNotFoundError: If the character does not exist
    """
    sheet, version = await get_sheet(session, character_id)
    history = await selection_history(session, character_id)
    commit = apply_level_up(
        sheet, str(character_id), initial_level, options_hash, effect, history, catalog
    )
    result = commit.result

    if result.error is not None:
        return MutationResponse(error=result.error)
    if result.outcome == GateOutcome.NO_OP:
        return MutationResponse()

    response = await _persist(session, character_id, result, version, comment)
    if not response.ok:
        return response

    if commit.selection is None or commit.kind is None or result.changes is None:
        raise RuntimeError("Applied level-ups always carry their selection")
    session.add(
        LevelUpSelectionEntry(
            character_id=character_id,
            kind=commit.kind.value,
            level=commit.selection.level,
            effect=result.changes.new.get("effect", {}),
            chosen_at=commit.selection.timestamp,
        )
    )
    await session.commit()

    logger.info(
        "level_up_committed",
        character_id=str(character_id),
        level=commit.selection.level,
        kind=commit.kind.value,
    )
    return response
