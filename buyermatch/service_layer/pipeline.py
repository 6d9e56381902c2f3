# buyermatch/service_layer/pipeline.py
from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Awaitable, Callable

from ..domain import deals as deal_views
from ..domain.deals import Deal, DealFilters
from ..domain.errors import InvariantViolation, MatchNotFound
from ..domain.ports import RecordStore
from ..domain.stages import StageMachine, StageSyncIntent
from ..domain.types import ActivityType, MatchActivity, MatchDealStage, PropertyMatch

log = logging.getLogger(__name__)

IntentEmitter = Callable[[StageSyncIntent], Awaitable[Any]]


async def change_stage(
    store: RecordStore,
    match_id: int,
    to_stage: MatchDealStage,
    *,
    machine: StageMachine,
    user: str | None = None,
    note: str | None = None,
    emit: IntentEmitter | None = None,
) -> PropertyMatch:
    """
    Validate, write conditionally, record the activity, and hand the sync
    intent to `emit` (typically the outbox) in the same transaction.

    Raises InvalidStageTransition, MatchNotFound or StaleMatchState; nothing
    is committed in those cases.
    """
    match = await store.get_match_by_id(match_id)
    if match is None:
        raise MatchNotFound(match_id)

    transition = machine.transition(
        match_id=match.id,
        buyer_id=match.buyer_id,
        property_id=match.property_id,
        from_stage=match.stage,
        to_stage=to_stage,
        previous_relation_id=match.sync_relation_id,
        user=user,
        note=note,
    )

    try:
        await store.set_stage(match.id, expected=match.stage, stage=to_stage)
        await store.append_activity(match.id, transition.activity)
        if emit is not None:
            await emit(transition.intent)
        await store.commit()
    except Exception:
        await store.rollback()
        raise

    log.info(
        "match %s: %s -> %s",
        match.id,
        match.stage.value if match.stage else "unsent",
        to_stage.value,
    )
    updated = await store.get_match_by_id(match.id)
    assert updated is not None
    return updated


async def log_activity(
    store: RecordStore,
    match_id: int,
    activity_type: ActivityType,
    details: str,
    *,
    user: str | None = None,
    metadata: dict[str, Any] | None = None,
    at: datetime | None = None,
) -> MatchActivity:
    """Append a non-stage activity (note, email, showing, offer)."""
    if activity_type in (ActivityType.stage_change, ActivityType.match_created):
        raise InvariantViolation(
            f"{activity_type.value} activities are recorded by the engine",
            invariant="activity_type",
        )
    match = await store.get_match_by_id(match_id)
    if match is None:
        raise MatchNotFound(match_id)

    activity = MatchActivity.new(activity_type, details, user=user, metadata=metadata, at=at)
    await store.append_activity(match_id, activity)
    await store.commit()
    return activity


async def load_deals(
    store: RecordStore,
    *,
    buyer_id: str | None = None,
    property_id: str | None = None,
    now: datetime | None = None,
) -> list[Deal]:
    """
    Project every match (optionally scoped) into a Deal. Matches whose buyer
    or property record is gone are left out.
    """
    matches = await store.list_matches(buyer_id=buyer_id, property_id=property_id)
    if not matches:
        return []

    buyers = {b.contact_id: b for b in await store.list_buyers()}
    props = {p.property_code: p for p in await store.list_properties()}

    out: list[Deal] = []
    for m in matches:
        b = buyers.get(m.buyer_id)
        p = props.get(m.property_id)
        if b is None or p is None:
            log.debug("match %s references a missing record; skipped", m.id)
            continue
        out.append(deal_views.project(m, p, b, m.activities, now=now))
    return out


async def find_deals(store: RecordStore, filters: DealFilters, *, now: datetime | None = None) -> list[Deal]:
    deals = await load_deals(store, buyer_id=filters.buyer_id, property_id=filters.property_id, now=now)
    return deal_views.filter_deals(deals, filters)
