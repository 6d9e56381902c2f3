# buyermatch/integrations/services/outbox.py
from __future__ import annotations

import asyncio
import json
import logging
import os
import random
from dataclasses import dataclass
from datetime import timedelta
from typing import Any, Sequence

from sqlalchemy import or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from ...config import settings
from ...models import Match, OutboxEvent, OutboxStatus, utcnow
from ..base import PipelineSyncSink
from ..webhook import WebhookSink

log = logging.getLogger(__name__)

STAGE_CHANGED = "match.stage_changed"

BATCH_SIZE = int(os.getenv("OUTBOX_BATCH_SIZE", "50"))
MAX_ATTEMPTS = int(os.getenv("OUTBOX_MAX_ATTEMPTS", "10"))
# pacing between sink calls, per process
SINK_RPS = float(os.getenv("OUTBOX_WEBHOOK_RPS", "2.0"))
BACKOFF_BASE_S = float(os.getenv("OUTBOX_BACKOFF_BASE_SECONDS", "5.0"))
BACKOFF_CAP_S = float(os.getenv("OUTBOX_BACKOFF_CAP_SECONDS", "3600.0"))


@dataclass
class _Fanout:
    ok: bool = True
    error: str | None = None
    relation_id: str | None = None


async def enqueue_event(session: AsyncSession, topic: str, payload: dict[str, Any]) -> OutboxEvent:
    """Flushed in the caller's transaction: the event commits or rolls back with the change."""
    now = utcnow()
    row = OutboxEvent(
        topic=topic,
        payload_json=json.dumps(payload, default=str),
        status=OutboxStatus.pending,
        attempts=0,
        next_attempt_at=now,
        created_at=now,
        updated_at=now,
    )
    session.add(row)
    await session.flush()
    return row


def build_sinks_from_settings() -> list[PipelineSyncSink]:
    url = settings.PIPELINE_SYNC_WEBHOOK_URL
    return [WebhookSink(url=url, secret=settings.PIPELINE_SYNC_WEBHOOK_SECRET)] if url else []


def compute_backoff_seconds(attempt: int) -> float:
    """
    Delay before retry number `attempt` (1-based): base * 2^(attempt-1), capped,
    plus up to one base interval of jitter.
    """
    delay = min(BACKOFF_BASE_S * (2 ** max(0, attempt - 1)), BACKOFF_CAP_S)
    return delay + random.uniform(0.0, min(BACKOFF_BASE_S, delay))


async def _due_events(session: AsyncSession, *, limit: int, max_attempts: int) -> list[OutboxEvent]:
    now = utcnow()
    q = (
        select(OutboxEvent)
        .where(
            OutboxEvent.status == OutboxStatus.pending,
            OutboxEvent.attempts < max_attempts,
            or_(OutboxEvent.next_attempt_at.is_(None), OutboxEvent.next_attempt_at <= now),
        )
        .order_by(OutboxEvent.id)
        .limit(limit)
    )
    return list((await session.execute(q)).scalars().all())


async def _fan_out(
    sinks: Sequence[PipelineSyncSink],
    topic: str,
    payload: dict[str, Any],
    gap_s: float,
) -> _Fanout:
    out = _Fanout()
    for n, sink in enumerate(sinks):
        if n and gap_s:
            await asyncio.sleep(gap_s)
        res = await sink.deliver(topic, payload)
        if not res.ok:
            out.ok = False
            out.error = res.error
        elif res.relation_id:
            out.relation_id = res.relation_id
    return out


async def _record_relation(session: AsyncSession, payload: dict[str, Any], relation_id: str) -> None:
    match_id = payload.get("match_id")
    if match_id is None:
        return
    await session.execute(update(Match).where(Match.id == int(match_id)).values(sync_relation_id=relation_id))


async def dispatch_pending_events(
    session: AsyncSession,
    *,
    sinks: Sequence[PipelineSyncSink] | None = None,
    batch_size: int | None = None,
    max_attempts: int | None = None,
    rps: float | None = None,
) -> dict[str, Any]:
    """
    Deliver due pending events to every sink. An event counts as delivered
    only when all sinks accept it; otherwise it is retried with backoff until
    `max_attempts`, then parked as failed. With no sinks nothing is touched.
    The caller commits.
    """
    targets = list(build_sinks_from_settings() if sinks is None else sinks)
    summary: dict[str, Any] = {
        "delivered": 0,
        "failed": 0,
        "retrying": 0,
        "sinks": len(targets),
        "events": 0,
        "skipped_no_sinks": 0,
    }
    if not targets:
        summary["skipped_no_sinks"] = 1
        return summary

    max_attempts = max_attempts or MAX_ATTEMPTS
    rate = SINK_RPS if rps is None else rps
    gap_s = 1.0 / rate if rate > 0 else 0.0

    events = await _due_events(session, limit=batch_size or BATCH_SIZE, max_attempts=max_attempts)
    summary["events"] = len(events)

    for i, ev in enumerate(events):
        if i and gap_s:
            await asyncio.sleep(gap_s)

        payload = json.loads(ev.payload_json)
        fan = await _fan_out(targets, ev.topic, {"event_id": ev.id, **payload}, gap_s)

        ev.attempts += 1
        ev.last_error = fan.error
        ev.updated_at = utcnow()

        if fan.ok:
            ev.status = OutboxStatus.delivered
            ev.next_attempt_at = None
            summary["delivered"] += 1
            if fan.relation_id and ev.topic == STAGE_CHANGED:
                await _record_relation(session, payload, fan.relation_id)
        elif ev.attempts >= max_attempts:
            ev.status = OutboxStatus.failed
            ev.next_attempt_at = None
            summary["failed"] += 1
            log.warning("outbox event %s gave up after %d attempts: %s", ev.id, ev.attempts, fan.error)
        else:
            ev.next_attempt_at = utcnow() + timedelta(seconds=compute_backoff_seconds(ev.attempts))
            summary["retrying"] += 1
            log.warning("outbox event %s not delivered (attempt %d): %s", ev.id, ev.attempts, fan.error)

        await session.flush()

    return summary
