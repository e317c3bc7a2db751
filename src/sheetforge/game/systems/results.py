"""Result type shared by all engine operations."""

from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any

from pydantic import BaseModel

from sheetforge.game.character.sheet import CharacterSheet
from sheetforge.game.errors import EngineError, ErrorKind, ProgressionError
from sheetforge.game.systems.gate import GateOutcome
from sheetforge.game.systems.history import Changes, RecordType, SpentPoints


@dataclass(frozen=True)
class MutationResult:
    """Outcome of one engine operation.

    On APPLY ``sheet`` is the new sheet and ``changes`` the minimal diff. On
    NO_OP ``sheet`` is the unchanged input. On rejection ``error`` is set and
    ``sheet`` is the unchanged input (None when creating a character failed).
    """

    outcome: GateOutcome
    sheet: CharacterSheet | None
    record_type: RecordType
    name: str
    changes: Changes | None = None
    spent: SpentPoints | None = None
    learning_method: str | None = None
    error: EngineError | None = None

    @property
    def ok(self) -> bool:
        return self.error is None

    @property
    def applied(self) -> bool:
        return self.outcome == GateOutcome.APPLY


def no_op(sheet: CharacterSheet, record_type: RecordType, name: str) -> MutationResult:
    """Result of a replayed request."""
    return MutationResult(GateOutcome.NO_OP, sheet, record_type, name)


def rejected(
    sheet: CharacterSheet | None, record_type: RecordType, name: str, error: ProgressionError
) -> MutationResult:
    """Result of a request rejected with an engine error."""
    outcome = GateOutcome.CONFLICT if error.kind == ErrorKind.CONFLICT else GateOutcome.INVALID
    return MutationResult(outcome, sheet, record_type, name, error=error.to_error())


def dump_group(group: Mapping[Any, BaseModel] | None) -> dict[str, Any] | None:
    """Serialize a keyed group of sheet models to camelCase JSON."""
    if group is None:
        return None
    return {str(key): value.model_dump(mode="json", by_alias=True) for key, value in group.items()}


def dump_combat(group: Mapping[Any, Mapping[str, BaseModel]] | None) -> dict[str, Any] | None:
    """Serialize a combat group (section to skill to stats)."""
    if group is None:
        return None
    return {str(section): dump_group(skills) for section, skills in group.items()}
