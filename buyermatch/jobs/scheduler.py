# buyermatch/jobs/scheduler.py
from __future__ import annotations

import asyncio
import logging

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from sqlalchemy import func, select

from ..adapters.clients.mapbox import MapboxGeocoder
from ..config import settings
from ..db import async_session
from ..geo.cache import GeocodeCache
from ..geo.resolver import GeoResolver
from ..integrations.services.outbox import build_sinks_from_settings
from ..models import OutboxEvent, OutboxStatus, utcnow
from ..service_layer.matching import MatchRunRequest
from .tasks import run_dispatch_job, run_matching_job

log = logging.getLogger(__name__)


async def _run_matching(resolver: GeoResolver) -> None:
    async with async_session() as session:
        await run_matching_job(
            session,
            resolver=resolver,
            request=MatchRunRequest(min_score=int(settings.SCHED_MATCH_MIN_SCORE)),
            job_name="match_scheduled",
        )


async def _run_dispatch_quiet() -> None:
    """
    Nothing configured or nothing due => no job row, no HTTP.
    """
    sinks = build_sinks_from_settings()
    if not sinks:
        return

    async with async_session() as session:
        pending = (
            await session.execute(
                select(func.count())
                .select_from(OutboxEvent)
                .where(OutboxEvent.status == OutboxStatus.pending)
                .where(OutboxEvent.next_attempt_at <= utcnow())
            )
        ).scalar_one()

    if int(pending) == 0:
        return

    async with async_session() as session:
        res = await run_dispatch_job(session, sinks=sinks, batch_size=int(settings.SCHED_DISPATCH_BATCH_SIZE))
        log.info("outbox dispatch: %s", res)


def build_scheduler(resolver: GeoResolver | None = None) -> AsyncIOScheduler:
    resolver = resolver or GeoResolver(MapboxGeocoder.from_settings(), GeocodeCache())
    sched = AsyncIOScheduler()

    sched.add_job(
        lambda: asyncio.create_task(_run_matching(resolver)),
        "interval",
        minutes=int(settings.SCHED_MATCH_INTERVAL_MINUTES),
        id="match_batch",
    )
    sched.add_job(
        lambda: asyncio.create_task(_run_dispatch_quiet()),
        "interval",
        minutes=int(settings.SCHED_DISPATCH_INTERVAL_MINUTES),
        id="outbox_dispatch",
    )
    return sched
