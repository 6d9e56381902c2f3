# buyermatch/domain/distance.py
from __future__ import annotations

import math
from enum import Enum
from typing import Sequence

from .types import Coordinates

EARTH_RADIUS_MILES = 3959.0
AVERAGE_COMMUTE_MPH = 40.0


class ProximityTier(str, Enum):
    exact = "exact"
    nearby = "nearby"
    close = "close"
    moderate = "moderate"
    far = "far"


# Upper bounds are inclusive. Checked in order.
TIER_BOUNDS: tuple[tuple[ProximityTier, float], ...] = (
    (ProximityTier.exact, 0.0),
    (ProximityTier.nearby, 10.0),
    (ProximityTier.close, 25.0),
    (ProximityTier.moderate, 50.0),
)

TIER_ORDER: dict[ProximityTier, int] = {t: i for i, t in enumerate(ProximityTier)}


def distance_miles(a: Coordinates, b: Coordinates) -> float:
    """
    Great-circle distance (haversine), in miles.
    """
    d_lat = math.radians(b.latitude - a.latitude)
    d_lng = math.radians(b.longitude - a.longitude)

    h = (
        math.sin(d_lat / 2) ** 2
        + math.cos(math.radians(a.latitude)) * math.cos(math.radians(b.latitude)) * math.sin(d_lng / 2) ** 2
    )
    h = min(1.0, max(0.0, h))  # rounding can push near-antipodal pairs past 1
    c = 2 * math.atan2(math.sqrt(h), math.sqrt(1 - h))
    return EARTH_RADIUS_MILES * c


def tier_of(distance: float) -> ProximityTier:
    if distance < 0:
        raise ValueError(f"distance must be >= 0, got {distance}")
    for tier, upper in TIER_BOUNDS:
        if distance <= upper:
            return tier
    return ProximityTier.far


def is_within_radius(a: Coordinates, b: Coordinates, radius_miles: float) -> bool:
    return distance_miles(a, b) <= radius_miles


def closest_index(origin: Coordinates, points: Sequence[Coordinates]) -> int:
    """Index of the closest point, or -1 for an empty sequence."""
    if not points:
        return -1
    best_i, best_d = 0, math.inf
    for i, p in enumerate(points):
        d = distance_miles(origin, p)
        if d < best_d:
            best_i, best_d = i, d
    return best_i


def estimate_commute_minutes(distance: float) -> int:
    return int(round(distance / AVERAGE_COMMUTE_MPH * 60))


def format_distance(distance: float) -> str:
    if distance == 0:
        return "Same area"
    if distance < 1:
        return f"{distance * 5280:.0f} ft"
    return f"{distance:.1f} mi"
