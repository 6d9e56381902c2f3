# buyermatch/domain/ranking.py
from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable, Sequence

from .distance import TIER_ORDER, ProximityTier, tier_of
from .scoring import DEFAULT_WEIGHTS, ScoringWeights, score
from .types import BuyerCriteria, MatchScore, PropertyDetails

# Scores in the same band of this many points count as equally good and
# proximity decides.
SCORE_TIE_POINTS = 5


@dataclass(frozen=True)
class RankedProperty:
    property: PropertyDetails
    score: MatchScore

    @property
    def tier(self) -> ProximityTier | None:
        d = self.score.distance_miles
        return tier_of(d) if d is not None else None


@dataclass(frozen=True)
class BuyerPropertyRanking:
    buyer: BuyerCriteria
    priority: tuple[RankedProperty, ...]
    explore: tuple[RankedProperty, ...]

    @property
    def total(self) -> int:
        return len(self.priority) + len(self.explore)


def _by_score(r: RankedProperty) -> tuple[int, float]:
    d = r.score.distance_miles
    return (-r.score.total, d if d is not None else float("inf"))


def rank_for_buyer(
    buyer: BuyerCriteria,
    properties: Iterable[PropertyDetails],
    *,
    weights: ScoringWeights = DEFAULT_WEIGHTS,
) -> BuyerPropertyRanking:
    """
    Score every property for one buyer. Highest score first, distance breaks
    ties. Priority matches (close by or in a preferred ZIP) are split from the
    rest.
    """
    ranked = sorted(
        (RankedProperty(property=p, score=score(buyer, p, weights)) for p in properties),
        key=_by_score,
    )
    return BuyerPropertyRanking(
        buyer=buyer,
        priority=tuple(r for r in ranked if r.score.is_priority),
        explore=tuple(r for r in ranked if not r.score.is_priority),
    )


def sort_by_proximity(items: Sequence[RankedProperty]) -> list[RankedProperty]:
    """
    Tier first (unknown distance last), then score in SCORE_TIE_POINTS-wide
    bands (higher first), then raw distance; exact score and property code
    settle whatever is left.
    """
    unknown = len(TIER_ORDER)

    def key(r: RankedProperty) -> tuple[int, int, float, int, str]:
        tier_rank = TIER_ORDER[r.tier] if r.tier is not None else unknown
        band = r.score.total // SCORE_TIE_POINTS
        dist = r.score.distance_miles if r.score.distance_miles is not None else float("inf")
        return tier_rank, -band, dist, -r.score.total, r.property.property_code

    return sorted(items, key=key)
