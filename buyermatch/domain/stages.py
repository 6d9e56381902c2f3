# buyermatch/domain/stages.py
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Mapping, Protocol

from .errors import InvalidStageTransition
from .types import ActivityType, MatchActivity, MatchDealStage


@dataclass(frozen=True)
class StageConfig:
    stage: MatchDealStage
    short_label: str
    order: int
    is_exit: bool
    description: str


STAGE_CONFIGS: dict[MatchDealStage, StageConfig] = {
    c.stage: c
    for c in (
        StageConfig(MatchDealStage.sent_to_buyer, "Sent", 1, False, "Property details sent to buyer"),
        StageConfig(MatchDealStage.buyer_responded, "Responded", 2, False, "Buyer replied with interest"),
        StageConfig(MatchDealStage.showing_scheduled, "Scheduled", 3, False, "Property showing scheduled"),
        StageConfig(MatchDealStage.property_viewed, "Viewed", 4, False, "Buyer has viewed property"),
        StageConfig(MatchDealStage.underwriting, "Underwriting", 5, False, "Numbers being prepared"),
        StageConfig(MatchDealStage.contracts, "Contracts", 6, False, "Contracts in progress"),
        StageConfig(MatchDealStage.qualified, "Qualified", 7, False, "Buyer qualified for property"),
        StageConfig(MatchDealStage.closed_won, "Closed", 8, False, "Deal completed successfully"),
        StageConfig(MatchDealStage.not_interested, "Not Interested", 99, True, "Buyer not interested in property"),
    )
}

PIPELINE_STAGES: tuple[MatchDealStage, ...] = tuple(
    sorted((c.stage for c in STAGE_CONFIGS.values() if not c.is_exit), key=lambda s: STAGE_CONFIGS[s].order)
)
EXIT_STAGE = MatchDealStage.not_interested
INITIAL_STAGE = PIPELINE_STAGES[0]
FINAL_STAGE = PIPELINE_STAGES[-1]
TERMINAL_STAGES: frozenset[MatchDealStage] = frozenset({FINAL_STAGE, EXIT_STAGE})


def stage_order(stage: MatchDealStage) -> int:
    return STAGE_CONFIGS[stage].order


def is_exit(stage: MatchDealStage | None) -> bool:
    return stage is not None and STAGE_CONFIGS[stage].is_exit


def is_terminal(stage: MatchDealStage | None) -> bool:
    return stage in TERMINAL_STAGES


def is_valid_transition(from_stage: MatchDealStage | None, to_stage: MatchDealStage) -> bool:
    """
    Monotonic pipeline:
      - nothing leaves the exit stage (not even to itself)
      - the exit stage is reachable from everywhere else
      - otherwise forward or stay, never backward
      - an unsent match (None) can only start at the first stage
    """
    if is_exit(from_stage):
        return False
    if is_exit(to_stage):
        return True
    if from_stage is None:
        return to_stage == INITIAL_STAGE
    return stage_order(to_stage) >= stage_order(from_stage)


def validate_transition(from_stage: MatchDealStage | None, to_stage: MatchDealStage) -> None:
    if not is_valid_transition(from_stage, to_stage):
        raise InvalidStageTransition(from_stage, to_stage)


def next_stage(current: MatchDealStage | None) -> MatchDealStage | None:
    if current is None:
        return INITIAL_STAGE
    if is_exit(current):
        return None
    want = stage_order(current) + 1
    for s in PIPELINE_STAGES:
        if stage_order(s) == want:
            return s
    return None


def furthest_stage(stages: list[MatchDealStage | None]) -> MatchDealStage | None:
    """Most advanced stage; the exit stage ranks below every pipeline stage."""
    best: MatchDealStage | None = None
    best_rank = -1
    for s in stages:
        if s is None:
            continue
        rank = 0 if is_exit(s) else stage_order(s)
        if rank > best_rank:
            best, best_rank = s, rank
    return best


# -----------------------------
# External sync mapping
# -----------------------------
class StageSyncResolver(Protocol):
    def association_id(self, stage: MatchDealStage) -> str | None:
        ...


class MappingStageSyncResolver:
    """Stage -> external association id, from a plain mapping keyed by stage value."""

    def __init__(self, mapping: Mapping[str, str]) -> None:
        self._mapping = {str(k): v for k, v in mapping.items()}

    def association_id(self, stage: MatchDealStage) -> str | None:
        return self._mapping.get(stage.value)


@dataclass(frozen=True)
class StageSyncIntent:
    """What the external pipeline sync should do; the engine only emits it."""
    match_id: int
    buyer_id: str
    property_id: str
    from_stage: MatchDealStage | None
    to_stage: MatchDealStage
    from_association_id: str | None
    to_association_id: str | None
    previous_relation_id: str | None = None

    def as_payload(self) -> dict[str, object]:
        return {
            "match_id": self.match_id,
            "buyer_id": self.buyer_id,
            "property_id": self.property_id,
            "from_stage": self.from_stage.value if self.from_stage else None,
            "to_stage": self.to_stage.value,
            "from_association_id": self.from_association_id,
            "to_association_id": self.to_association_id,
            "previous_relation_id": self.previous_relation_id,
        }


@dataclass(frozen=True)
class StageTransition:
    activity: MatchActivity
    intent: StageSyncIntent


class StageMachine:
    """
    Validates and records transitions. Sync is left to the caller: the returned
    intent says which association to create and which relation to drop.
    """

    def __init__(self, resolver: StageSyncResolver | None = None) -> None:
        self.resolver = resolver

    def _assoc(self, stage: MatchDealStage | None) -> str | None:
        if stage is None or self.resolver is None:
            return None
        return self.resolver.association_id(stage)

    def transition(
        self,
        *,
        match_id: int,
        buyer_id: str,
        property_id: str,
        from_stage: MatchDealStage | None,
        to_stage: MatchDealStage,
        previous_relation_id: str | None = None,
        user: str | None = None,
        note: str | None = None,
        at: datetime | None = None,
    ) -> StageTransition:
        validate_transition(from_stage, to_stage)

        from_label = from_stage.value if from_stage else "Not Yet Sent"
        details = f"Stage changed from {from_label} to {to_stage.value}"
        metadata: dict[str, object] = {
            "fromStage": from_stage.value if from_stage else None,
            "toStage": to_stage.value,
        }
        if note:
            metadata["note"] = note

        activity = MatchActivity.new(
            ActivityType.stage_change,
            details,
            user=user,
            metadata=metadata,
            at=at,
        )
        intent = StageSyncIntent(
            match_id=match_id,
            buyer_id=buyer_id,
            property_id=property_id,
            from_stage=from_stage,
            to_stage=to_stage,
            from_association_id=self._assoc(from_stage),
            to_association_id=self._assoc(to_stage),
            previous_relation_id=previous_relation_id,
        )
        return StageTransition(activity=activity, intent=intent)
