# buyermatch/jobs/tasks.py
from __future__ import annotations

import logging
from typing import Any, Sequence

from sqlalchemy.ext.asyncio import AsyncSession

from ..adapters.repos.records import SqlAlchemyRecordStore
from ..geo.resolver import GeoResolver
from ..integrations.base import PipelineSyncSink
from ..integrations.services.outbox import dispatch_pending_events
from ..service_layer.jobruns import finish_job_fail, finish_job_success, start_job
from ..service_layer.matching import MatchBatchRunner, MatchRunRequest, MatchRunResult

log = logging.getLogger(__name__)


async def run_matching_job(
    session: AsyncSession,
    *,
    resolver: GeoResolver | None,
    request: MatchRunRequest,
    job_name: str = "match_batch",
) -> MatchRunResult:
    """Batch matching with a job_runs row around it."""
    jr = await start_job(
        session,
        job_name,
        meta={
            "buyer_id": request.buyer_id,
            "property_id": request.property_id,
            "min_score": request.min_score,
            "refresh_all": request.refresh_all,
        },
    )
    await session.commit()

    try:
        result = await MatchBatchRunner(SqlAlchemyRecordStore(session), resolver).run(request)
    except Exception as e:
        await session.rollback()
        await finish_job_fail(session, jr, e)
        await session.commit()
        raise

    await finish_job_success(session, jr, result.as_dict())
    await session.commit()
    return result


async def run_dispatch_job(
    session: AsyncSession,
    *,
    sinks: Sequence[PipelineSyncSink] | None = None,
    batch_size: int | None = None,
) -> dict[str, Any]:
    jr = await start_job(session, "outbox_dispatch")
    try:
        result = await dispatch_pending_events(session, sinks=sinks, batch_size=batch_size)
    except Exception as e:
        await session.rollback()
        await finish_job_fail(session, jr, e)
        await session.commit()
        raise
    await finish_job_success(session, jr, result)
    await session.commit()
    return result
