import pytest
from httpx import ASGITransport, AsyncClient

from buyermatch.adapters.repos.records import SqlAlchemyRecordStore
from buyermatch.db import get_session
from buyermatch.entrypoints.fastapi_app import create_app


@pytest.fixture
def sink(fake_sink):
    return fake_sink(relation_id="rel-1")


@pytest.fixture
async def client(async_session_maker, fake_geocoder, sink):
    app = create_app(geocoder=fake_geocoder(), sinks=[sink])

    async def _session():
        async with async_session_maker() as s:
            yield s

    app.dependency_overrides[get_session] = _session
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as c:
        yield c


@pytest.fixture
async def seeded(async_session_maker, make_buyer, make_property):
    async with async_session_maker() as s:
        store = SqlAlchemyRecordStore(s)
        await store.upsert_buyer(make_buyer("B1", coordinates=None))
        await store.upsert_property(make_property("P1"))
        await store.upsert_property(make_property("P2", zip_code="85255", price=230000, beds=2, baths=3))
        await store.commit()


@pytest.mark.asyncio
async def test_health(client):
    r = await client.get("/health")
    assert r.status_code == 200
    assert r.json()["status"] == "ok"


@pytest.mark.asyncio
async def test_run_matching_speaks_camel_case(client, seeded):
    r = await client.post("/matching/run", json={"minScore": 0})
    assert r.status_code == 200, r.text
    body = r.json()
    assert body["buyersProcessed"] == 1
    assert body["propertiesProcessed"] == 2
    assert body["matchesCreated"] == 2
    assert body["withinRadius"] == 2

    r = await client.get("/matching", params={"buyerId": "B1"})
    matches = r.json()
    assert [m["propertyId"] for m in matches] == ["P1", "P2"]
    assert matches[0]["score"] == 100
    assert matches[0]["stage"] is None
    assert matches[0]["activities"][0]["type"] == "match-created"

    r = await client.get("/jobs/recent", params={"job_name": "match_api"})
    assert r.json()[0]["status"] == "success"


@pytest.mark.asyncio
async def test_run_for_unknown_buyer_is_404(client, seeded):
    r = await client.post("/matching/run", json={"buyerId": "ghost"})
    assert r.status_code == 404

    r = await client.get("/jobs/recent", params={"job_name": "match_api"})
    assert r.json()[0]["status"] == "failed"


@pytest.mark.asyncio
async def test_buyer_property_ranking(client, seeded):
    r = await client.get("/matching/buyers/B1/properties")
    assert r.status_code == 200
    body = r.json()
    assert body["total"] == 2
    assert body["buyer"]["latitude"] is not None
    assert [p["property"]["propertyCode"] for p in body["priority"]] == ["P1", "P2"]
    assert body["priority"][0]["tier"] == "nearby"

    assert (await client.get("/matching/buyers/ghost/properties")).status_code == 404


@pytest.mark.asyncio
async def test_buyer_property_ranking_by_proximity(client, seeded):
    r = await client.get("/matching/buyers/B1/properties", params={"sort": "proximity"})
    assert r.status_code == 200, r.text
    body = r.json()
    assert [p["tier"] for p in body["priority"]] == ["nearby", "close"]

    r = await client.get("/matching/buyers/B1/properties", params={"sort": "price"})
    assert r.status_code == 422


@pytest.mark.asyncio
async def test_stage_changes_and_deal_views(client, seeded, sink):
    await client.post("/matching/run", json={"minScore": 0})
    match_id = (await client.get("/matching", params={"propertyId": "P1"})).json()[0]["id"]

    r = await client.post(f"/deals/{match_id}/stage", json={"stage": "Sent to Buyer", "user": "agent"})
    assert r.status_code == 200, r.text
    assert r.json()["stage"] == "Sent to Buyer"

    r = await client.post(f"/deals/{match_id}/stage", json={"stage": "Showing Scheduled"})
    assert r.status_code == 200

    r = await client.post(f"/deals/{match_id}/stage", json={"stage": "Buyer Responded"})
    assert r.status_code == 409
    assert r.json()["detail"]["invariant"] == "stage_monotonic"

    r = await client.post(f"/deals/{match_id}/stage", json={"stage": "Not A Stage"})
    assert r.status_code == 422

    r = await client.post(
        f"/deals/{match_id}/activities",
        json={"type": "note-added", "details": "Buyer loved the kitchen", "user": "agent"},
    )
    assert r.status_code == 201
    assert r.json()["type"] == "note-added"

    r = await client.post(f"/deals/{match_id}/activities", json={"type": "stage-change", "details": "x"})
    assert r.status_code == 422

    deals = (await client.get("/deals", params={"stage": "Showing Scheduled"})).json()
    assert [d["id"] for d in deals] == [match_id]
    assert deals[0]["isStale"] is False
    assert len(deals[0]["match"]["activities"]) == 4

    buckets = (await client.get("/deals/by-stage")).json()
    assert list(buckets)[0] == "unsent"
    assert len(buckets["unsent"]) == 1
    assert [d["id"] for d in buckets["Showing Scheduled"]] == [match_id]

    stats = (await client.get("/deals/stats")).json()
    assert stats["totalDeals"] == 2
    assert stats["activePipelineValue"] == 410000
    assert stats["byStage"]["Showing Scheduled"] == 1

    by_buyer = (await client.get("/deals/by-buyer")).json()
    assert by_buyer[0]["totalDeals"] == 2
    by_property = (await client.get("/deals/by-property")).json()
    assert {g["property"]["propertyCode"]: g["furthestStage"] for g in by_property} == {
        "P1": "Showing Scheduled",
        "P2": None,
    }

    # two accepted stage changes => two sync events
    r = await client.post("/jobs/dispatch")
    assert r.status_code == 200
    assert r.json()["delivered"] == 2
    assert [p["to_stage"] for _, p in sink.delivered] == ["Sent to Buyer", "Showing Scheduled"]

    match = (await client.get("/matching", params={"propertyId": "P1"})).json()[0]
    assert match["syncRelationId"] == "rel-1"


@pytest.mark.asyncio
async def test_unknown_deal_is_404(client):
    r = await client.post("/deals/12345/stage", json={"stage": "Sent to Buyer"})
    assert r.status_code == 404


@pytest.mark.asyncio
async def test_clear_matches_endpoint(client, seeded):
    await client.post("/matching/run", json={"minScore": 0})
    match_id = (await client.get("/matching", params={"propertyId": "P1"})).json()[0]["id"]
    await client.post(f"/deals/{match_id}/stage", json={"stage": "Sent to Buyer"})

    r = await client.delete("/matching", params={"buyerId": "B1"})
    assert r.json() == {"deleted": 1}
    remaining = (await client.get("/matching")).json()
    assert [m["id"] for m in remaining] == [match_id]


@pytest.mark.asyncio
async def test_geocode_status(client, seeded):
    await client.get("/matching/buyers/B1/properties")
    body = (await client.get("/debug/geocode-status")).json()
    assert body["geocoderConfigured"] is True
    assert body["zipTableSize"] > 0
    assert set(body["cache"]) == {"size", "hits", "misses"}
