import asyncio

import pytest

from buyermatch.config import settings
from buyermatch.domain.errors import BuyerNotFound, PropertyNotFound
from buyermatch.domain.types import ActivityType, Coordinates, MatchDealStage as S
from buyermatch.geo.cache import GeocodeCache
from buyermatch.geo.resolver import GeoResolver
from buyermatch.service_layer.matching import (
    MatchBatchRunner,
    MatchRunRequest,
    clear_matches,
    rank_properties_for_buyer,
)


async def _seed(store, make_buyer, make_property, *, buyers=("B1", "B2"), props=("P1", "P2", "P3")):
    for bid in buyers:
        await store.upsert_buyer(make_buyer(bid))
    for pid in props:
        await store.upsert_property(make_property(pid))
    await store.commit()


@pytest.mark.asyncio
async def test_first_run_creates_every_qualifying_pair(store, make_buyer, make_property):
    await _seed(store, make_buyer, make_property)

    res = await MatchBatchRunner(store).run(MatchRunRequest(min_score=0))

    assert res.buyers_processed == 2
    assert res.properties_processed == 3
    assert res.matches_created == 6
    assert res.matches_updated == 0
    assert res.within_radius == 6
    assert res.failed == 0

    matches = await store.list_matches()
    assert len(matches) == 6
    m = matches[0]
    assert m.stage is None
    assert [a.type for a in m.activities] == [ActivityType.match_created]
    assert m.activities[0].details == f"Matched with score {m.score}/100"


@pytest.mark.asyncio
async def test_rerun_leaves_advanced_matches_alone(store, make_buyer, make_property):
    await _seed(store, make_buyer, make_property)
    runner = MatchBatchRunner(store)
    await runner.run(MatchRunRequest(min_score=0))

    for m in await store.list_matches():
        await store.set_stage(m.id, expected=None, stage=S.sent_to_buyer)
    await store.commit()

    res = await runner.run(MatchRunRequest(min_score=0))

    assert res.matches_created == 0
    assert res.matches_updated == 0
    assert res.duplicates_skipped == 6
    assert len(await store.list_matches()) == 6


@pytest.mark.asyncio
async def test_rerun_rescores_unsent_matches(store, make_buyer, make_property):
    await _seed(store, make_buyer, make_property, buyers=("B1",), props=("P1",))
    runner = MatchBatchRunner(store)
    await runner.run(MatchRunRequest(min_score=0))

    await store.upsert_property(make_property("P1", price=400000))
    await store.commit()
    res = await runner.run(MatchRunRequest(min_score=0))

    assert res.matches_created == 0
    assert res.matches_updated == 1
    [m] = await store.list_matches()
    assert m.score < 100
    assert len(m.activities) == 1


@pytest.mark.asyncio
async def test_refresh_all_rescores_open_pipeline_but_not_terminal(store, make_buyer, make_property):
    await _seed(store, make_buyer, make_property, buyers=("B1",))
    runner = MatchBatchRunner(store)
    await runner.run(MatchRunRequest(min_score=0))

    by_prop = {m.property_id: m for m in await store.list_matches()}
    await store.set_stage(by_prop["P1"].id, expected=None, stage=S.sent_to_buyer)
    await store.set_stage(by_prop["P2"].id, expected=None, stage=S.not_interested)
    await store.commit()

    res = await runner.run(MatchRunRequest(min_score=0, refresh_all=True))

    assert res.matches_updated == 2  # P1 (open) and P3 (unsent)
    assert res.duplicates_skipped == 1  # P2 (terminal)
    assert (await store.get_match("B1", "P1")).stage == S.sent_to_buyer


@pytest.mark.asyncio
async def test_min_score_filters_weak_pairs(store, make_buyer, make_property):
    await store.upsert_buyer(make_buyer("B1"))
    await store.upsert_property(make_property("GOOD"))
    await store.upsert_property(make_property("BAD", beds=0, baths=0, price=9_000_000))
    await store.commit()

    res = await MatchBatchRunner(store).run(MatchRunRequest(min_score=70))

    assert res.matches_created == 1
    assert res.below_threshold == 1
    assert [m.property_id for m in await store.list_matches()] == ["GOOD"]


class FlakyStore:
    """Delegates to a real store; create_match blows up for one property."""

    def __init__(self, inner, bad_property):
        self.inner = inner
        self.bad_property = bad_property

    def __getattr__(self, name):
        return getattr(self.inner, name)

    async def create_match(self, buyer_id, property_id, score, activity=None):
        if property_id == self.bad_property:
            raise RuntimeError("disk on fire")
        return await self.inner.create_match(buyer_id, property_id, score, activity)


@pytest.mark.asyncio
async def test_one_failing_pair_does_not_abort_the_batch(store, make_buyer, make_property):
    await _seed(store, make_buyer, make_property, buyers=("B1",))

    res = await MatchBatchRunner(FlakyStore(store, "P2")).run(MatchRunRequest(min_score=0))

    assert res.failed == 1
    assert res.matches_created == 2
    assert res.concerns == ["B1/P2: RuntimeError: disk on fire"]
    assert sorted(m.property_id for m in await store.list_matches()) == ["P1", "P3"]


@pytest.mark.asyncio
async def test_cancelled_run_stops_before_next_pair(store, make_buyer, make_property):
    await _seed(store, make_buyer, make_property)
    cancel = asyncio.Event()
    cancel.set()

    res = await MatchBatchRunner(store).run(MatchRunRequest(min_score=0), cancel=cancel)

    assert res.cancelled is True
    assert res.matches_created == 0
    assert await store.list_matches() == []


@pytest.mark.asyncio
async def test_scoped_run_requires_existing_records(store, make_buyer, make_property):
    await _seed(store, make_buyer, make_property)
    runner = MatchBatchRunner(store)

    with pytest.raises(BuyerNotFound):
        await runner.run(MatchRunRequest(buyer_id="nope"))
    with pytest.raises(PropertyNotFound):
        await runner.run(MatchRunRequest(property_id="nope"))

    res = await runner.run(MatchRunRequest(property_id="P1", min_score=0))
    assert res.buyers_processed == 2
    assert res.properties_processed == 1
    assert res.matches_created == 2


@pytest.mark.asyncio
async def test_missing_coordinates_are_resolved_and_written_back(store, make_buyer, make_property, fake_geocoder):
    await store.upsert_buyer(make_buyer("B1", coordinates=None))
    await store.upsert_property(make_property("P1", coordinates=None))
    await store.commit()

    geo = fake_geocoder()
    runner = MatchBatchRunner(store, GeoResolver(geo, GeocodeCache()))
    res = await runner.run(MatchRunRequest(min_score=0))

    assert res.matches_created == 1
    assert geo.calls == []  # both ZIPs are in the static table
    assert (await store.get_buyer("B1")).coordinates is not None
    assert (await store.get_property("P1")).coordinates is not None
    [m] = await store.list_matches()
    assert m.distance_miles is not None


@pytest.mark.asyncio
async def test_rank_and_clear(store, make_buyer, make_property):
    await _seed(store, make_buyer, make_property, buyers=("B1",))
    await MatchBatchRunner(store).run(MatchRunRequest(min_score=0))

    ranking = await rank_properties_for_buyer(store, "B1")
    assert ranking.total == 3

    [first, *_] = await store.list_matches()
    await store.set_stage(first.id, expected=None, stage=S.sent_to_buyer)
    await store.commit()

    assert await clear_matches(store, buyer_id="B1") == 2
    assert await clear_matches(store, buyer_id="B1", include_advanced=True) == 1


class ClockedGeocoder:
    def __init__(self):
        self.stamps: list[float] = []
        self.queries: list[str] = []

    async def geocode(self, query):
        self.stamps.append(asyncio.get_running_loop().time())
        self.queries.append(query)
        return Coordinates(33.45, -112.07)


@pytest.mark.asyncio
async def test_geocoder_calls_are_spaced_during_a_batch(store, make_buyer, make_property, monkeypatch):
    monkeypatch.setattr(settings, "GEOCODE_BATCH_DELAY_S", 0.05)
    for i in range(4):
        await store.upsert_buyer(make_buyer(f"B{i}", zip_code=None, location=f"Town {i}"))
    await store.upsert_property(make_property("P1"))
    await store.commit()

    geo = ClockedGeocoder()
    res = await MatchBatchRunner(store, GeoResolver(geo, GeocodeCache())).run(MatchRunRequest(min_score=0))

    assert geo.queries == [f"Town {i}, AZ" for i in range(4)]
    gaps = [b - a for a, b in zip(geo.stamps, geo.stamps[1:])]
    assert min(gaps) >= 0.04
    assert res.matches_created == 4
    assert all(b.coordinates is not None for b in await store.list_buyers())


@pytest.mark.asyncio
async def test_records_with_coordinates_skip_the_geocoder(store, make_buyer, make_property, monkeypatch):
    monkeypatch.setattr(settings, "GEOCODE_BATCH_DELAY_S", 0)
    await store.upsert_buyer(make_buyer("B1"))
    await store.upsert_buyer(make_buyer("B2", zip_code=None, location="Gilbert"))
    await store.upsert_property(make_property("P1"))
    await store.commit()

    geo = ClockedGeocoder()
    await MatchBatchRunner(store, GeoResolver(geo, GeocodeCache())).run(MatchRunRequest(min_score=0))

    assert geo.queries == ["Gilbert, AZ"]
