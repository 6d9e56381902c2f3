# buyermatch/domain/errors.py
from __future__ import annotations


class InvariantViolation(ValueError):
    """
    Rejected synchronously; the only error class that single-pair operations
    propagate to the caller. `invariant` names the rule that failed.
    """

    invariant: str = "unknown"

    def __init__(self, message: str, *, invariant: str | None = None) -> None:
        super().__init__(message)
        if invariant is not None:
            self.invariant = invariant


class InvalidCoordinates(InvariantViolation):
    invariant = "coordinates_range"


class InvalidStageTransition(InvariantViolation):
    invariant = "stage_monotonic"

    def __init__(self, from_stage: object, to_stage: object) -> None:
        self.from_stage = from_stage
        self.to_stage = to_stage
        super().__init__(f"cannot move from {_label(from_stage)} to {_label(to_stage)}")


class RecordNotFound(LookupError):
    kind = "record"

    def __init__(self, key: object) -> None:
        self.key = key
        super().__init__(f"{self.kind} {key!r} not found")


class BuyerNotFound(RecordNotFound):
    kind = "buyer"


class PropertyNotFound(RecordNotFound):
    kind = "property"


class MatchNotFound(RecordNotFound):
    kind = "match"


class MatchAlreadyExists(Exception):
    """A concurrent run created the (buyer, property) match first."""

    def __init__(self, buyer_id: str, property_id: str) -> None:
        self.buyer_id = buyer_id
        self.property_id = property_id
        super().__init__(f"match for {buyer_id}:{property_id} already exists")


class StaleMatchState(Exception):
    """The stored stage changed between validation and write."""


def _label(stage: object) -> str:
    if stage is None:
        return "Not Yet Sent"
    return str(getattr(stage, "value", stage))
