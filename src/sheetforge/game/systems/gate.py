"""Idempotency and optimistic-concurrency gate for sheet mutations.

Every requested field change carries the value the client believes is stored
(``initial_value``). The gate compares it with the stored value and classifies
the change before anything else runs:

- the stored value already equals the requested target: NO_OP (replay)
- the baseline is stale and the target differs: CONFLICT
- the baseline matches: APPLY
- the increment is not a positive integer, or an integer field is given a
  fractional value: INVALID
"""

from collections.abc import Mapping
from dataclasses import dataclass, field
from enum import StrEnum

import structlog
from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel

from sheetforge.game.errors import ConflictError, InvalidInputError

logger = structlog.get_logger(__name__)

INVALID_INPUT_MESSAGE = "Invalid input values!"

Number = int | float


class GateOutcome(StrEnum):
    """Classification of a requested change."""

    NO_OP = "NO_OP"
    APPLY = "APPLY"
    CONFLICT = "CONFLICT"
    INVALID = "INVALID"


# Higher wins when combining several sub-field decisions
_PRECEDENCE = {
    GateOutcome.NO_OP: 0,
    GateOutcome.APPLY: 1,
    GateOutcome.CONFLICT: 2,
    GateOutcome.INVALID: 3,
}


class ChangeRequest(BaseModel):
    """Base for requested field changes."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    initial_value: Number

    @property
    def target(self) -> Number:
        raise NotImplementedError


class InitialNew(ChangeRequest):
    """Direct set: replace ``initial_value`` by ``new_value``."""

    new_value: Number

    @property
    def target(self) -> Number:
        return self.new_value


class InitialIncreased(ChangeRequest):
    """Incremental change: add ``increased_points`` to ``initial_value``."""

    increased_points: Number

    @property
    def target(self) -> Number:
        return self.initial_value + self.increased_points

    @property
    def is_valid(self) -> bool:
        """Whether the increment is a positive integer."""
        points = self.increased_points
        return isinstance(points, int) and not isinstance(points, bool) and points > 0


@dataclass(frozen=True)
class GateDecision:
    """The gate's verdict on a single field."""

    outcome: GateOutcome
    field: str
    stored_value: Number | None = None
    target_value: Number | None = None
    message: str | None = None


@dataclass(frozen=True)
class GateVerdict:
    """The combined verdict on a multi-field request."""

    outcome: GateOutcome
    decisions: dict[str, GateDecision] = field(default_factory=dict)
    rejection: GateDecision | None = None

    def applies(self, name: str) -> bool:
        """Whether the named sub-field is to be applied."""
        decision = self.decisions.get(name)
        return decision is not None and decision.outcome == GateOutcome.APPLY

    def target(self, name: str) -> Number:
        """Target value of an applied sub-field.

        Raises:
            KeyError: If the sub-field was not requested or was rejected
        """
        decision = self.decisions[name]
        if decision.target_value is None:
            raise KeyError(f"{decision.field} has no target value ({decision.outcome.value})")
        return decision.target_value

    def raise_for_rejection(self) -> None:
        """Raise the matching engine error for INVALID or CONFLICT verdicts.

        Raises:
            InvalidInputError: If any sub-field was invalid
            ConflictError: If any sub-field was stale
        """
        if self.rejection is None:
            return
        context = {
            "field": self.rejection.field,
            "stored_value": self.rejection.stored_value,
        }
        if self.outcome == GateOutcome.INVALID:
            raise InvalidInputError(self.rejection.message or INVALID_INPUT_MESSAGE, **context)
        raise ConflictError(self.rejection.message or "", **context)


def is_integral(value: Number) -> bool:
    """Whether a value is a whole number (bools are not numbers here)."""
    if isinstance(value, bool):
        return False
    return isinstance(value, int) or (isinstance(value, float) and value.is_integer())


def classify(
    field: str,
    stored_value: Number | None,
    change: ChangeRequest,
    *,
    integral: bool = True,
) -> GateDecision:
    """Classify a requested change against the stored value.

    Args:
        field: Field path used in messages (e.g. ``"strength.current"``)
        stored_value: Value currently stored on the sheet
        change: The requested change
        integral: Whether the field only holds whole numbers; a fractional
            baseline or target is INVALID and whole floats become ints

    Returns:
        A GateDecision; ``target_value`` is set for APPLY and NO_OP
    """
    if isinstance(change, InitialIncreased) and not change.is_valid:
        return GateDecision(
            GateOutcome.INVALID, field, stored_value, message=INVALID_INPUT_MESSAGE
        )

    target = change.target
    if integral:
        if not (is_integral(change.initial_value) and is_integral(target)):
            return GateDecision(
                GateOutcome.INVALID, field, stored_value, message=INVALID_INPUT_MESSAGE
            )
        target = int(target)
    if target == stored_value:
        return GateDecision(GateOutcome.NO_OP, field, stored_value, target_value=target)

    if change.initial_value != stored_value:
        return GateDecision(
            GateOutcome.CONFLICT,
            field,
            stored_value,
            message=f"{field} doesn't match the value in the backend",
        )

    return GateDecision(GateOutcome.APPLY, field, stored_value, target_value=target)


def combine(decisions: Mapping[str, GateDecision]) -> GateVerdict:
    """Fold sub-field decisions into one verdict.

    INVALID beats CONFLICT, CONFLICT beats APPLY, and APPLY beats NO_OP. An
    empty request is a NO_OP.
    """
    outcome = GateOutcome.NO_OP
    rejection: GateDecision | None = None
    for decision in decisions.values():
        if _PRECEDENCE[decision.outcome] > _PRECEDENCE[outcome]:
            outcome = decision.outcome
            if outcome in (GateOutcome.INVALID, GateOutcome.CONFLICT):
                rejection = decision
    return GateVerdict(outcome=outcome, decisions=dict(decisions), rejection=rejection)


def gate(
    entity: str,
    stored: Mapping[str, Number | None],
    changes: Mapping[str, ChangeRequest | None],
    *,
    integral: bool = True,
) -> GateVerdict:
    """Classify every requested sub-field of one entity and combine them.

    Args:
        entity: Entity name used as the field-path prefix (e.g. ``"strength"``)
        stored: Stored values keyed by sub-field name
        changes: Requested changes keyed by sub-field name; None means untouched
        integral: Whether the entity's fields only hold whole numbers

    Returns:
        The combined GateVerdict
    """
    decisions = {
        name: classify(f"{entity}.{name}", stored.get(name), change, integral=integral)
        for name, change in changes.items()
        if change is not None
    }
    verdict = combine(decisions)
    logger.debug(
        "gate_classified",
        entity=entity,
        outcome=verdict.outcome.value,
        fields={name: d.outcome.value for name, d in decisions.items()},
    )
    return verdict
