"""Error taxonomy for the sheetforge rules engine.

Rule violations are raised internally as ``ProgressionError`` subclasses and
converted into an ``EngineError`` value at the boundary of every engine
operation, so callers always receive a typed result instead of an exception.
"""

from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any


class ErrorKind(StrEnum):
    """Categories of rejected engine requests."""

    INVALID_INPUT = "INVALID_INPUT"
    CONFLICT = "CONFLICT"
    INSUFFICIENT_POINTS = "INSUFFICIENT_POINTS"
    UNKNOWN_ENTITY = "UNKNOWN_ENTITY"


@dataclass(frozen=True)
class EngineError:
    """A rejected request as returned to the caller."""

    kind: ErrorKind
    message: str
    context: dict[str, Any] = field(default_factory=dict)


class ProgressionError(Exception):
    """Base class for rule violations raised inside the engine."""

    kind: ErrorKind = ErrorKind.INVALID_INPUT

    def __init__(self, message: str, **context: Any) -> None:
        super().__init__(message)
        self.message = message
        self.context = context

    def to_error(self) -> EngineError:
        """Convert the exception into the value handed back to callers."""
        return EngineError(kind=self.kind, message=self.message, context=dict(self.context))


class InvalidInputError(ProgressionError):
    """Malformed or out-of-range request values."""

    kind = ErrorKind.INVALID_INPUT


class ConflictError(ProgressionError):
    """The request was computed against a stale view of the sheet."""

    kind = ErrorKind.CONFLICT


class InsufficientPointsError(ProgressionError):
    """The requested spend exceeds the available points."""

    kind = ErrorKind.INSUFFICIENT_POINTS


class UnknownEntityError(ProgressionError):
    """A name outside the fixed attribute, base value, skill or effect catalogs."""

    kind = ErrorKind.UNKNOWN_ENTITY


class CharacterNotFoundError(ValueError):
    """Raised by the sheet store when a character id does not exist."""

    pass
