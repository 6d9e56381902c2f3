# buyermatch/entrypoints/api/routers/matching.py
from __future__ import annotations

from fastapi import APIRouter, Depends, Query

from ..deps import get_resolver, get_store, translate_errors
from ....adapters.repos.records import SqlAlchemyRecordStore
from ....geo.resolver import GeoResolver
from ....schemas import BuyerPropertiesOut, ClearMatchesOut, MatchOut, MatchRunIn, MatchRunOut
from ....service_layer.jobruns import finish_job_fail, finish_job_success, start_job
from ....service_layer.matching import (
    MatchBatchRunner,
    MatchRunRequest,
    clear_matches,
    rank_properties_for_buyer,
)

router = APIRouter(prefix="/matching", tags=["matching"])


@router.post("/run", response_model=MatchRunOut)
async def run_matching(
    body: MatchRunIn,
    store: SqlAlchemyRecordStore = Depends(get_store),
    resolver: GeoResolver = Depends(get_resolver),
) -> MatchRunOut:
    req = MatchRunRequest(
        buyer_id=body.buyer_id,
        property_id=body.property_id,
        min_score=body.min_score,
        refresh_all=body.refresh_all,
    )

    session = store.session
    jr = await start_job(session, "match_api", meta=body.model_dump())
    await session.commit()

    try:
        with translate_errors():
            result = await MatchBatchRunner(store, resolver).run(req)
    except Exception as e:
        await session.rollback()
        await finish_job_fail(session, jr, e)
        await session.commit()
        raise

    await finish_job_success(session, jr, result.as_dict())
    await session.commit()
    return MatchRunOut(**result.as_dict())


@router.get("", response_model=list[MatchOut])
async def list_matches(
    buyer_id: str | None = Query(None, alias="buyerId"),
    property_id: str | None = Query(None, alias="propertyId"),
    store: SqlAlchemyRecordStore = Depends(get_store),
) -> list[MatchOut]:
    matches = await store.list_matches(buyer_id=buyer_id, property_id=property_id)
    return [MatchOut.from_domain(m) for m in matches]


@router.get("/buyers/{buyer_id}/properties", response_model=BuyerPropertiesOut)
async def buyer_properties(
    buyer_id: str,
    sort: str = Query("score", pattern="^(score|proximity)$"),
    store: SqlAlchemyRecordStore = Depends(get_store),
    resolver: GeoResolver = Depends(get_resolver),
) -> BuyerPropertiesOut:
    with translate_errors():
        ranking = await rank_properties_for_buyer(store, buyer_id, resolver=resolver, order=sort)
    return BuyerPropertiesOut.from_domain(ranking)


@router.delete("", response_model=ClearMatchesOut)
async def delete_matches(
    buyer_id: str | None = Query(None, alias="buyerId"),
    property_id: str | None = Query(None, alias="propertyId"),
    include_advanced: bool = Query(False, alias="includeAdvanced"),
    store: SqlAlchemyRecordStore = Depends(get_store),
) -> ClearMatchesOut:
    n = await clear_matches(
        store,
        buyer_id=buyer_id,
        property_id=property_id,
        include_advanced=include_advanced,
    )
    return ClearMatchesOut(deleted=n)
