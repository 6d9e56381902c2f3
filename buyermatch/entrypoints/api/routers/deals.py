# buyermatch/entrypoints/api/routers/deals.py
from __future__ import annotations

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from ..deps import get_stage_machine, get_store, translate_errors
from ....adapters.repos.records import SqlAlchemyRecordStore
from ....domain import deals as deal_views
from ....domain.deals import DealFilters
from ....domain.stages import StageMachine, StageSyncIntent
from ....domain.types import MatchDealStage
from ....integrations.services.outbox import STAGE_CHANGED, enqueue_event
from ....schemas import (
    ActivityIn,
    ActivityOut,
    DealOut,
    DealsByBuyerOut,
    DealsByPropertyOut,
    MatchOut,
    PipelineStatsOut,
    StageChangeIn,
)
from ....service_layer.pipeline import change_stage, find_deals, load_deals, log_activity

router = APIRouter(prefix="/deals", tags=["deals"])


def _outbox_emitter(session: AsyncSession):
    async def emit(intent: StageSyncIntent) -> None:
        await enqueue_event(session, STAGE_CHANGED, intent.as_payload())

    return emit


@router.get("", response_model=list[DealOut])
async def list_deals(
    stage: MatchDealStage | None = Query(None),
    buyer_id: str | None = Query(None, alias="buyerId"),
    property_id: str | None = Query(None, alias="propertyId"),
    min_score: int | None = Query(None, alias="minScore", ge=0, le=100),
    stale_only: bool = Query(False, alias="staleOnly"),
    search: str | None = Query(None),
    store: SqlAlchemyRecordStore = Depends(get_store),
) -> list[DealOut]:
    filters = DealFilters(
        stage=stage,
        buyer_id=buyer_id,
        property_id=property_id,
        min_score=min_score,
        stale_only=stale_only,
        search=search,
    )
    return [DealOut.from_domain(d) for d in await find_deals(store, filters)]


@router.get("/stats", response_model=PipelineStatsOut)
async def deal_stats(store: SqlAlchemyRecordStore = Depends(get_store)) -> PipelineStatsOut:
    deals = await load_deals(store)
    return PipelineStatsOut.from_domain(deal_views.pipeline_stats(deals))


@router.get("/by-stage", response_model=dict[str, list[DealOut]])
async def deals_by_stage(store: SqlAlchemyRecordStore = Depends(get_store)) -> dict[str, list[DealOut]]:
    buckets = deal_views.by_stage(await load_deals(store))
    return {k: [DealOut.from_domain(d) for d in v] for k, v in buckets.items()}


@router.get("/by-buyer", response_model=list[DealsByBuyerOut])
async def deals_by_buyer(store: SqlAlchemyRecordStore = Depends(get_store)) -> list[DealsByBuyerOut]:
    return [DealsByBuyerOut.from_domain(g) for g in deal_views.by_buyer(await load_deals(store))]


@router.get("/by-property", response_model=list[DealsByPropertyOut])
async def deals_by_property(store: SqlAlchemyRecordStore = Depends(get_store)) -> list[DealsByPropertyOut]:
    return [DealsByPropertyOut.from_domain(g) for g in deal_views.by_property(await load_deals(store))]


@router.post("/{match_id}/stage", response_model=MatchOut)
async def set_deal_stage(
    match_id: int,
    body: StageChangeIn,
    store: SqlAlchemyRecordStore = Depends(get_store),
    machine: StageMachine = Depends(get_stage_machine),
) -> MatchOut:
    with translate_errors():
        match = await change_stage(
            store,
            match_id,
            body.stage,
            machine=machine,
            user=body.user,
            note=body.note,
            emit=_outbox_emitter(store.session),
        )
    return MatchOut.from_domain(match)


@router.post("/{match_id}/activities", response_model=ActivityOut, status_code=201)
async def add_deal_activity(
    match_id: int,
    body: ActivityIn,
    store: SqlAlchemyRecordStore = Depends(get_store),
) -> ActivityOut:
    with translate_errors():
        activity = await log_activity(
            store,
            match_id,
            body.type,
            body.details,
            user=body.user,
            metadata=body.metadata,
        )
    return ActivityOut.from_domain(activity)
