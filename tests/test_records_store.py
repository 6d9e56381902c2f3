import dataclasses

import pytest

from buyermatch.domain.errors import MatchAlreadyExists, MatchNotFound, StaleMatchState
from buyermatch.domain.scoring import score
from buyermatch.domain.types import ActivityType, Coordinates, MatchActivity, MatchDealStage as S


@pytest.mark.asyncio
async def test_upsert_buyer_is_idempotent(store, make_buyer):
    b = make_buyer("B1")
    _, created = await store.upsert_buyer(b)
    again, created_again = await store.upsert_buyer(b)
    await store.commit()

    assert created is True
    assert created_again is False
    assert again == b
    assert len(await store.list_buyers()) == 1


@pytest.mark.asyncio
async def test_moving_a_record_clears_stale_coordinates(store, make_buyer, make_property):
    await store.upsert_buyer(make_buyer("B1"))
    moved, _ = await store.upsert_buyer(make_buyer("B1", zip_code=None, city="Mesa"))
    assert moved.coordinates is None

    await store.upsert_property(make_property("P1"))
    same, _ = await store.upsert_property(make_property("P1", coordinates=None))
    assert same.coordinates is not None

    await store.set_property_coordinates("P1", Coordinates(1.0, 2.0))
    p = await store.get_property("P1")
    assert p.coordinates == Coordinates(1.0, 2.0)


@pytest.mark.asyncio
async def test_create_match_enforces_pair_uniqueness(store, make_buyer, make_property):
    b, p = make_buyer(), make_property()
    await store.upsert_buyer(b)
    await store.upsert_property(p)
    s = score(b, p)
    act = MatchActivity.new(ActivityType.match_created, "Matched")

    m = await store.create_match(b.contact_id, p.property_code, s, act)
    await store.commit()
    assert m.stage is None
    assert m.score == s.total

    with pytest.raises(MatchAlreadyExists):
        await store.create_match(b.contact_id, p.property_code, s)

    # the failed insert only rolled back its savepoint
    stored = await store.get_match(b.contact_id, p.property_code)
    assert stored.id == m.id
    assert [a.type for a in stored.activities] == [ActivityType.match_created]


@pytest.mark.asyncio
async def test_set_stage_is_conditional(store, make_buyer, make_property):
    b, p = make_buyer(), make_property()
    await store.upsert_buyer(b)
    await store.upsert_property(p)
    m = await store.create_match(b.contact_id, p.property_code, score(b, p))

    await store.set_stage(m.id, expected=None, stage=S.sent_to_buyer)
    with pytest.raises(StaleMatchState):
        await store.set_stage(m.id, expected=None, stage=S.sent_to_buyer)
    with pytest.raises(MatchNotFound):
        await store.set_stage(m.id + 100, expected=None, stage=S.sent_to_buyer)

    assert (await store.get_match_by_id(m.id)).stage == S.sent_to_buyer


@pytest.mark.asyncio
async def test_update_score_keeps_stage_and_activities(store, make_buyer, make_property):
    b, p = make_buyer(), make_property()
    await store.upsert_buyer(b)
    await store.upsert_property(p)
    m = await store.create_match(b.contact_id, p.property_code, score(b, p))
    await store.set_stage(m.id, expected=None, stage=S.sent_to_buyer)
    await store.append_activity(m.id, MatchActivity.new(ActivityType.note_added, "hi"))

    cheaper = dataclasses.replace(p, price=500000)
    updated = await store.update_match_score(m.id, score(b, cheaper))

    assert updated.stage == S.sent_to_buyer
    assert updated.score < m.score
    assert len(updated.activities) == 1


@pytest.mark.asyncio
async def test_delete_matches_spares_advanced_by_default(store, make_buyer, make_property):
    b = make_buyer()
    await store.upsert_buyer(b)
    ids = []
    for code in ("P1", "P2"):
        p = make_property(code)
        await store.upsert_property(p)
        ids.append((await store.create_match(b.contact_id, code, score(b, p))).id)
    await store.set_stage(ids[1], expected=None, stage=S.sent_to_buyer)
    await store.append_activity(ids[1], MatchActivity.new(ActivityType.note_added, "keep"))

    assert await store.delete_matches(buyer_id=b.contact_id) == 1
    assert [m.id for m in await store.list_matches()] == [ids[1]]

    assert await store.delete_matches(buyer_id=b.contact_id, include_advanced=True) == 1
    assert await store.list_matches() == []
    assert await store.list_activities(ids[1]) == []
