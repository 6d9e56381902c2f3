import json

import pytest
from sqlalchemy import select

from buyermatch.domain.scoring import score
from buyermatch.integrations.services.outbox import (
    STAGE_CHANGED,
    compute_backoff_seconds,
    dispatch_pending_events,
    enqueue_event,
)
from buyermatch.models import JobRunStatus, OutboxEvent, OutboxStatus
from buyermatch.service_layer.jobruns import finish_job_fail, finish_job_success, recent_jobs, start_job


async def _stage_event(session, store, make_buyer, make_property):
    b, p = make_buyer(), make_property()
    await store.upsert_buyer(b)
    await store.upsert_property(p)
    m = await store.create_match(b.contact_id, p.property_code, score(b, p))
    ev = await enqueue_event(session, STAGE_CHANGED, {"match_id": m.id, "to_stage": "Sent to Buyer"})
    await session.commit()
    return m, ev


@pytest.mark.asyncio
async def test_no_sinks_touches_nothing(session, store, make_buyer, make_property):
    await _stage_event(session, store, make_buyer, make_property)

    res = await dispatch_pending_events(session, sinks=[])

    assert res["skipped_no_sinks"] == 1
    [ev] = (await session.execute(select(OutboxEvent))).scalars().all()
    assert ev.status == OutboxStatus.pending
    assert ev.attempts == 0


@pytest.mark.asyncio
async def test_delivery_stores_relation_id(session, store, make_buyer, make_property, fake_sink):
    m, _ = await _stage_event(session, store, make_buyer, make_property)
    sink = fake_sink(relation_id="rel-42")

    res = await dispatch_pending_events(session, sinks=[sink], rps=0)
    await session.commit()

    assert res["delivered"] == 1
    assert res["events"] == 1
    [(topic, payload)] = sink.delivered
    assert topic == STAGE_CHANGED
    assert payload["match_id"] == m.id
    assert "event_id" in payload

    assert (await store.get_match_by_id(m.id)).sync_relation_id == "rel-42"
    [ev] = (await session.execute(select(OutboxEvent))).scalars().all()
    assert ev.status == OutboxStatus.delivered


@pytest.mark.asyncio
async def test_failed_delivery_backs_off_then_gives_up(session, store, make_buyer, make_property, fake_sink):
    await _stage_event(session, store, make_buyer, make_property)
    sink = fake_sink(ok=False, error="HTTP 503")

    res = await dispatch_pending_events(session, sinks=[sink], max_attempts=2, rps=0)
    await session.commit()
    assert res["retrying"] == 1

    [ev] = (await session.execute(select(OutboxEvent))).scalars().all()
    assert ev.status == OutboxStatus.pending
    assert ev.attempts == 1
    assert ev.last_error == "HTTP 503"
    assert ev.next_attempt_at is not None

    # not due yet
    res = await dispatch_pending_events(session, sinks=[sink], max_attempts=2, rps=0)
    assert res["events"] == 0

    ev.next_attempt_at = None
    await session.commit()
    res = await dispatch_pending_events(session, sinks=[sink], max_attempts=2, rps=0)
    await session.commit()
    assert res["failed"] == 1
    assert ev.status == OutboxStatus.failed


@pytest.mark.asyncio
async def test_every_sink_must_accept(session, store, make_buyer, make_property, fake_sink):
    await _stage_event(session, store, make_buyer, make_property)

    res = await dispatch_pending_events(session, sinks=[fake_sink(), fake_sink(ok=False)], rps=0)

    assert res["delivered"] == 0
    assert res["retrying"] == 1


def test_backoff_grows_and_is_capped():
    first = compute_backoff_seconds(1)
    assert 5.0 <= first <= 10.0
    assert compute_backoff_seconds(4) >= 40.0
    assert compute_backoff_seconds(50) <= 3600.0 + 5.0


@pytest.mark.asyncio
async def test_job_run_bookkeeping(session):
    ok = await start_job(session, "match_batch", meta={"min_score": 60})
    await finish_job_success(session, ok, {"matches_created": 3})
    bad = await start_job(session, "match_batch")
    await finish_job_fail(session, bad, RuntimeError("no db"))
    await start_job(session, "outbox_dispatch")
    await session.commit()

    rows = await recent_jobs(session, job_name="match_batch")
    assert {r.id for r in rows} == {ok.id, bad.id}
    assert ok.status == JobRunStatus.success
    assert json.loads(ok.summary_json) == {"matches_created": 3}
    assert bad.status == JobRunStatus.failed
    assert bad.error == "RuntimeError: no db"
    assert len(await recent_jobs(session, limit=1)) == 1
