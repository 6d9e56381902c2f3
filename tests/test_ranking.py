import itertools

from buyermatch.domain.distance import ProximityTier
from buyermatch.domain.ranking import RankedProperty, rank_for_buyer, sort_by_proximity
from buyermatch.domain.scoring import score
from buyermatch.domain.types import Coordinates


def test_rank_splits_priority_from_explore(make_buyer, make_property):
    buyer = make_buyer(zip_code="85001")
    near = make_property("NEAR", zip_code="85004")
    mid = make_property("MID", zip_code="85255", price=230000, beds=2, baths=3)
    far = make_property("FAR", zip_code=None, coordinates=Coordinates(29.9511, -90.0715))

    r = rank_for_buyer(buyer, [far, mid, near])

    assert [x.property.property_code for x in r.priority] == ["NEAR", "MID"]
    assert [x.property.property_code for x in r.explore] == ["FAR"]
    assert r.total == 3
    assert r.priority[0].tier == ProximityTier.nearby


def test_proximity_sort_prefers_tier_then_big_score_gaps(make_buyer, make_property):
    buyer = make_buyer(zip_code="85001")

    def ranked(code, zip_code, **kw):
        p = make_property(code, zip_code=zip_code, **kw)
        return RankedProperty(property=p, score=score(buyer, p))

    close_weak = ranked("CLOSE_WEAK", "85004", beds=1, baths=1, price=400000)
    close_strong = ranked("CLOSE_STRONG", "85004")
    suburb = ranked("SUBURB", "85255")
    unknown = ranked("UNKNOWN", None)

    out = sort_by_proximity([unknown, suburb, close_weak, close_strong])

    assert [r.property.property_code for r in out] == ["CLOSE_STRONG", "CLOSE_WEAK", "SUBURB", "UNKNOWN"]
    assert out[-1].tier is None


def test_proximity_sort_does_not_depend_on_input_order(make_buyer, make_property):
    buyer = make_buyer(zip_code="85001")

    def ranked(code, **kw):
        p = make_property(code, **kw)
        return RankedProperty(property=p, score=score(buyer, p))

    # same tier, scores a few points apart, distances in the opposite order
    items = [
        ranked("A", zip_code="85004", beds=3, baths=2, price=180000),
        ranked("B", zip_code="85004", beds=3, baths=2.5, price=180000),
        ranked("C", zip_code="85004", beds=4, baths=2, price=180000),
        ranked("D", zip_code=None, coordinates=Coordinates(33.46, -112.08)),
    ]

    orders = {tuple(r.property.property_code for r in sort_by_proximity(list(p))) for p in itertools.permutations(items)}

    assert len(orders) == 1
