# buyermatch/entrypoints/api/routers/jobs.py
from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends, Query, Request
from sqlalchemy.ext.asyncio import AsyncSession

from ....db import get_session
from ....integrations.services.outbox import dispatch_pending_events
from ....schemas import DispatchResult
from ....service_layer.jobruns import finish_job_fail, finish_job_success, recent_jobs, start_job

router = APIRouter(prefix="/jobs", tags=["jobs"])


@router.post("/dispatch", response_model=DispatchResult)
async def dispatch_outbox(
    request: Request,
    batch_size: int = Query(50, ge=1, le=500),
    session: AsyncSession = Depends(get_session),
) -> DispatchResult:
    jr = await start_job(session, "dispatch_api")
    try:
        result = await dispatch_pending_events(
            session,
            sinks=request.app.state.sync_sinks,
            batch_size=batch_size,
        )
        await finish_job_success(session, jr, result)
        await session.commit()
        return DispatchResult(**result)
    except Exception as e:
        await finish_job_fail(session, jr, e)
        await session.commit()
        raise


@router.get("/recent")
async def jobs_recent(
    job_name: str | None = Query(None),
    limit: int = Query(20, ge=1, le=200),
    session: AsyncSession = Depends(get_session),
) -> list[dict[str, Any]]:
    rows = await recent_jobs(session, job_name=job_name, limit=limit)
    return [
        {
            "id": r.id,
            "job_name": r.job_name,
            "status": r.status.value,
            "started_at": r.started_at,
            "finished_at": r.finished_at,
            "error": r.error,
            "summary_json": r.summary_json,
        }
        for r in rows
    ]
