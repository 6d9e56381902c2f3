# buyermatch/domain/scoring.py
from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Any

from .affordability import has_valid_down_payment, max_affordable_price
from .distance import distance_miles, format_distance
from .types import BuyerCriteria, MatchScore, PropertyDetails
from .zipcodes import in_preferred_zip


@dataclass(frozen=True)
class ScoringWeights:
    """
    Hand-tuned constants. Bands sum to 100.
    """
    location_max: float = 40.0
    beds_max: float = 25.0
    baths_max: float = 15.0
    budget_max: float = 20.0

    # location decays linearly to zero at this distance
    location_zero_miles: float = 50.0
    # band share used when a component cannot be evaluated
    neutral_ratio: float = 0.5

    beds_step: float = 0.25  # per bedroom of mismatch
    baths_step: float = 0.20  # per bathroom of mismatch
    # budget decays to zero when price exceeds the ceiling by this fraction
    budget_zero_overage: float = 0.50

    priority_radius_miles: float = 50.0

    highlight_ratio: float = 0.80
    concern_ratio: float = 0.40


DEFAULT_WEIGHTS = ScoringWeights()

FALLBACK_HIGHLIGHT = "Good overall property match"


def _num(x: Any) -> float | None:
    """
    Missing => None (component degrades to neutral).
    Malformed => 0.0 so a batch never dies on one bad record.
    """
    if x is None or x == "":
        return None
    try:
        v = float(x)
    except (TypeError, ValueError):
        return 0.0
    return v if math.isfinite(v) else 0.0


def _fmt_count(x: float) -> str:
    return str(int(x)) if float(x).is_integer() else f"{x:g}"


def _linear(max_pts: float, mismatch: float, step: float) -> float:
    return max_pts * max(0.0, 1.0 - mismatch * step)


def _quality_label(total: int) -> str:
    if total >= 80:
        return "Excellent Match"
    if total >= 60:
        return "Good Match"
    if total >= 40:
        return "Fair Match"
    return "Limited Match"


def score(
    buyer: BuyerCriteria,
    prop: PropertyDetails,
    weights: ScoringWeights = DEFAULT_WEIGHTS,
) -> MatchScore:
    """
    Deterministic, side-effect free. Coordinates must already be resolved on
    both records for the location band to be distance based.
    """
    w = weights
    highlights: list[str] = []
    concerns: list[str] = []
    breakdown: list[str] = []

    in_zip = in_preferred_zip(prop.zip_code, prop.address, buyer.preferred_zip_codes)

    # ====================
    # LOCATION (0-40)
    # ====================
    distance: float | None = None
    if buyer.coordinates is not None and prop.coordinates is not None:
        distance = distance_miles(buyer.coordinates, prop.coordinates)
        location = w.location_max * max(0.0, 1.0 - distance / w.location_zero_miles)
        location_reason = f"{format_distance(distance)} from buyer's area"
        ratio = location / w.location_max
        if ratio > w.highlight_ratio:
            highlights.append(f"Within {distance:.1f} mi of buyer's area")
        elif ratio < w.concern_ratio:
            concerns.append(f"{distance:.1f} mi from buyer's area")
        breakdown.append(f"Location: {location:.1f}/{w.location_max:g} pts ({distance:.1f} mi away)")
    else:
        location = w.location_max * w.neutral_ratio
        location_reason = "Location not verified (missing coordinates)"
        breakdown.append(f"Location: {location:.1f}/{w.location_max:g} pts (distance unknown)")

    if in_zip:
        highlights.append("In preferred ZIP code")

    # ====================
    # BEDS (0-25)
    # ====================
    desired_beds = _num(buyer.desired_beds)
    prop_beds = _num(prop.beds)
    if not desired_beds:
        beds = w.beds_max
        breakdown.append(f"Beds: {beds:.1f}/{w.beds_max:g} pts (no preference)")
    elif prop_beds is None:
        beds = w.beds_max * w.neutral_ratio
        breakdown.append(f"Beds: {beds:.1f}/{w.beds_max:g} pts (bed count unknown)")
    else:
        diff = prop_beds - desired_beds
        beds = _linear(w.beds_max, abs(diff), w.beds_step)
        ratio = beds / w.beds_max
        if diff == 0:
            highlights.append(f"Exact bed count: {_fmt_count(prop_beds)} beds")
        elif ratio > w.highlight_ratio:
            highlights.append(f"Close bed count: {_fmt_count(prop_beds)} beds")
        elif ratio < w.concern_ratio:
            concerns.append(
                f"Bedroom mismatch: {_fmt_count(prop_beds)} vs {_fmt_count(desired_beds)} desired"
            )
        sign = "+" if diff > 0 else ""
        breakdown.append(
            f"Beds: {beds:.1f}/{w.beds_max:g} pts ({_fmt_count(prop_beds)} beds, {sign}{_fmt_count(diff)} vs desired)"
        )

    # ====================
    # BATHS (0-15)
    # ====================
    desired_baths = _num(buyer.desired_baths)
    prop_baths = _num(prop.baths)
    if not desired_baths:
        baths = w.baths_max
        breakdown.append(f"Baths: {baths:.1f}/{w.baths_max:g} pts (no preference)")
    elif prop_baths is None:
        baths = w.baths_max * w.neutral_ratio
        breakdown.append(f"Baths: {baths:.1f}/{w.baths_max:g} pts (bath count unknown)")
    else:
        diff = prop_baths - desired_baths
        baths = _linear(w.baths_max, abs(diff), w.baths_step)
        ratio = baths / w.baths_max
        if ratio > w.highlight_ratio:
            highlights.append(f"{_fmt_count(prop_baths)} baths")
        elif ratio < w.concern_ratio:
            concerns.append(
                f"Bathroom mismatch: {_fmt_count(prop_baths)} vs {_fmt_count(desired_baths)} desired"
            )
        breakdown.append(f"Baths: {baths:.1f}/{w.baths_max:g} pts ({_fmt_count(prop_baths)} baths)")

    # ====================
    # BUDGET (0-20)
    # ====================
    price = _num(prop.price)
    down_payment = _num(buyer.down_payment)
    ceiling = max_affordable_price(down_payment) if has_valid_down_payment(down_payment) else None

    if not price or price <= 0 or ceiling is None or ceiling <= 0:
        budget = w.budget_max * w.neutral_ratio
        breakdown.append(f"Budget: {budget:.1f}/{w.budget_max:g} pts (cannot evaluate)")
    else:
        overage = max(0.0, (price - ceiling) / ceiling)
        budget = w.budget_max * max(0.0, 1.0 - overage / w.budget_zero_overage)
        ratio = budget / w.budget_max
        if ratio > w.highlight_ratio:
            highlights.append(f"Within budget: ${price:,.0f} vs ${ceiling:,.0f} max")
        elif ratio < w.concern_ratio:
            concerns.append(f"Over budget: ${price:,.0f} vs ${ceiling:,.0f} max")
        breakdown.append(f"Budget: {budget:.1f}/{w.budget_max:g} pts (max affordable ${ceiling:,.0f})")

    # ====================
    # TOTAL (0-100)
    # ====================
    raw_total = location + beds + baths + budget
    total = int(min(100, max(0, math.floor(raw_total + 0.5))))

    if distance is not None:
        is_priority = distance <= w.priority_radius_miles
    else:
        is_priority = in_zip

    if not highlights:
        highlights.append(FALLBACK_HIGHLIGHT)

    reasoning = f"{_quality_label(total)} (Score: {total}/100)\n\n"
    reasoning += "Score Breakdown:\n" + "\n".join(f"• {line}" for line in breakdown)
    if is_priority:
        reasoning = f"[PRIORITY] {reasoning}"

    return MatchScore(
        total=total,
        location_score=round(location, 2),
        beds_score=round(beds, 2),
        baths_score=round(baths, 2),
        budget_score=round(budget, 2),
        distance_miles=round(distance, 2) if distance is not None else None,
        is_priority=is_priority,
        highlights=tuple(highlights),
        concerns=tuple(concerns),
        reasoning=reasoning,
        location_reason=location_reason,
    )
