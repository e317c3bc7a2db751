"""History record assembly for sheetforge.

Every applied mutation produces exactly one immutable, numbered audit entry.
Replays (NO_OP) produce none.
"""

import uuid
from datetime import UTC, datetime
from enum import IntEnum
from typing import Any

import structlog
from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from sheetforge.game.character.sheet import CalculationPoints
from sheetforge.game.systems.gate import GateOutcome

logger = structlog.get_logger(__name__)


class RecordType(IntEnum):
    """Kinds of history records."""

    CHARACTER_CREATED = 0
    LEVEL_CHANGED = 1
    CALCULATION_POINTS_CHANGED = 2
    BASE_VALUE_CHANGED = 3
    SPECIAL_ABILITIES_CHANGED = 4
    ATTRIBUTE_CHANGED = 5
    SKILL_CHANGED = 6
    COMBAT_STATS_CHANGED = 7


class HistoryModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)


class Changes(HistoryModel):
    """Old and new state of everything a mutation moved."""

    old: dict[str, Any] = Field(default_factory=dict)
    new: dict[str, Any] = Field(default_factory=dict)


class PointsChange(HistoryModel):
    """A ledger before and after a debit."""

    old: CalculationPoints
    new: CalculationPoints


class SpentPoints(HistoryModel):
    """Ledgers debited by a mutation; untouched ledgers are None."""

    adventure_points: PointsChange | None = None
    attribute_points: PointsChange | None = None


class HistoryRecord(HistoryModel):
    """Immutable audit entry."""

    type: RecordType
    name: str
    number: int = Field(..., ge=1)
    id: uuid.UUID
    data: Changes
    learning_method: str | None = None
    calculation_points: SpentPoints = Field(default_factory=SpentPoints)
    comment: str | None = None
    timestamp: datetime


def points_change(old: CalculationPoints, new: CalculationPoints) -> PointsChange | None:
    """Build a ledger change, or None when the ledger did not move."""
    if old == new:
        return None
    return PointsChange(old=old, new=new)


def assemble(
    outcome: GateOutcome,
    changes: Changes,
    spent: SpentPoints | None,
    *,
    record_type: RecordType,
    name: str,
    latest_number: int,
    comment: str | None = None,
    learning_method: str | None = None,
    now: datetime | None = None,
) -> HistoryRecord | None:
    """Turn an applied mutation into its history record.

    Args:
        outcome: Gate outcome of the originating request
        changes: Exactly the diff produced by the mutation
        spent: Ledgers debited by the mutation
        record_type: Kind of record
        name: Name of the changed entity (e.g. ``"endurance"``)
        latest_number: Number of the latest stored record, 0 if none
        comment: Optional user comment
        learning_method: Learning method used for skill changes
        now: Timestamp override

    Returns:
        The new HistoryRecord, or None if the request was a replay
    """
    if outcome == GateOutcome.NO_OP:
        return None
    if outcome != GateOutcome.APPLY:
        raise ValueError(f"Cannot record a rejected request ({outcome})")

    record = HistoryRecord(
        type=record_type,
        name=name,
        number=latest_number + 1,
        id=uuid.uuid4(),
        data=changes,
        learning_method=learning_method,
        calculation_points=spent or SpentPoints(),
        comment=comment,
        timestamp=now or datetime.now(UTC),
    )
    logger.debug("history_record_assembled", type=record_type.name, name=name, number=record.number)
    return record
