# buyermatch/domain/deals.py
from __future__ import annotations

import math
from collections import OrderedDict
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Iterable, Sequence

from .stages import STAGE_CONFIGS, furthest_stage, is_terminal
from .types import BuyerCriteria, MatchActivity, MatchDealStage, PropertyDetails, PropertyMatch

STALE_THRESHOLD_DAYS = 7
UNSENT_KEY = "unsent"


def _aware(dt: datetime) -> datetime:
    # SQLite hands back naive datetimes; everything here is UTC.
    return dt if dt.tzinfo is not None else dt.replace(tzinfo=timezone.utc)


@dataclass(frozen=True)
class Deal:
    match: PropertyMatch
    property: PropertyDetails
    buyer: BuyerCriteria
    activities: tuple[MatchActivity, ...]
    days_since_activity: int | None
    is_stale: bool

    @property
    def id(self) -> int:
        return self.match.id

    @property
    def stage(self) -> MatchDealStage | None:
        return self.match.stage

    @property
    def score(self) -> int:
        return self.match.score

    @property
    def last_activity_at(self) -> datetime | None:
        return self.activities[-1].timestamp if self.activities else None


@dataclass(frozen=True)
class DealsByBuyer:
    buyer: BuyerCriteria
    deals: tuple[Deal, ...]
    total_deals: int
    total_value: float
    active_stages: tuple[MatchDealStage, ...]


@dataclass(frozen=True)
class DealsByProperty:
    property: PropertyDetails
    deals: tuple[Deal, ...]
    total_buyers: int
    highest_score: int
    furthest_stage: MatchDealStage | None


@dataclass(frozen=True)
class PipelineStats:
    total_deals: int
    active_pipeline_value: float
    closing_soon: int
    needs_attention: int
    new_this_week: int
    by_stage: dict[str, int] = field(default_factory=dict)


@dataclass(frozen=True)
class DealFilters:
    stage: MatchDealStage | None = None
    buyer_id: str | None = None
    property_id: str | None = None
    min_score: int | None = None
    stale_only: bool = False
    search: str | None = None


def project(
    match: PropertyMatch,
    prop: PropertyDetails,
    buyer: BuyerCriteria,
    activities: Iterable[MatchActivity],
    *,
    now: datetime | None = None,
) -> Deal:
    """
    Pure join of a match with its records. With no activity at all the
    match's creation time stands in; with neither, the deal has no age.
    """
    now = _aware(now or datetime.now(timezone.utc))
    ordered = tuple(sorted(activities, key=lambda a: _aware(a.timestamp)))

    if ordered:
        last = _aware(ordered[-1].timestamp)
    elif match.created_at is not None:
        last = _aware(match.created_at)
    else:
        last = None

    if last is None:
        days = None
    else:
        days = max(0, math.floor((now - last) / timedelta(days=1)))

    return Deal(
        match=match,
        property=prop,
        buyer=buyer,
        activities=ordered,
        days_since_activity=days,
        is_stale=days is not None and days >= STALE_THRESHOLD_DAYS,
    )


def _price(deal: Deal) -> float:
    p = deal.property.price
    return float(p) if p else 0.0


def _distinct_stages(deals: Iterable[Deal]) -> tuple[MatchDealStage, ...]:
    seen: list[MatchDealStage] = []
    for d in deals:
        if d.stage is not None and d.stage not in seen:
            seen.append(d.stage)
    return tuple(seen)


def by_buyer(deals: Sequence[Deal]) -> list[DealsByBuyer]:
    groups: "OrderedDict[str, list[Deal]]" = OrderedDict()
    for d in deals:
        groups.setdefault(d.buyer.contact_id, []).append(d)

    out = [
        DealsByBuyer(
            buyer=items[0].buyer,
            deals=tuple(items),
            total_deals=len(items),
            total_value=sum(_price(d) for d in items),
            active_stages=_distinct_stages(items),
        )
        for items in groups.values()
    ]
    out.sort(key=lambda g: g.total_deals, reverse=True)
    return out


def by_property(deals: Sequence[Deal]) -> list[DealsByProperty]:
    groups: "OrderedDict[str, list[Deal]]" = OrderedDict()
    for d in deals:
        groups.setdefault(d.property.property_code, []).append(d)

    out = [
        DealsByProperty(
            property=items[0].property,
            deals=tuple(items),
            total_buyers=len({d.buyer.contact_id for d in items}),
            highest_score=max(d.score for d in items),
            furthest_stage=furthest_stage([d.stage for d in items]),
        )
        for items in groups.values()
    ]
    out.sort(key=lambda g: g.total_buyers, reverse=True)
    return out


def by_stage(deals: Sequence[Deal]) -> dict[str, list[Deal]]:
    """Kanban buckets keyed by stage value, in pipeline order; unsent first."""
    buckets: dict[str, list[Deal]] = {UNSENT_KEY: []}
    for s in sorted(STAGE_CONFIGS, key=lambda s: STAGE_CONFIGS[s].order):
        buckets[s.value] = []
    for d in deals:
        buckets[d.stage.value if d.stage else UNSENT_KEY].append(d)
    for items in buckets.values():
        items.sort(key=lambda d: d.score, reverse=True)
    return buckets


def pipeline_stats(deals: Sequence[Deal], *, now: datetime | None = None) -> PipelineStats:
    now = _aware(now or datetime.now(timezone.utc))
    week_ago = now - timedelta(days=7)

    active = [d for d in deals if not is_terminal(d.stage)]
    counts = {k: len(v) for k, v in by_stage(deals).items()}

    new_this_week = sum(
        1 for d in deals if d.match.created_at is not None and _aware(d.match.created_at) >= week_ago
    )

    return PipelineStats(
        total_deals=len(deals),
        active_pipeline_value=sum(_price(d) for d in active),
        closing_soon=sum(1 for d in deals if d.stage == MatchDealStage.contracts),
        needs_attention=sum(1 for d in active if d.is_stale),
        new_this_week=new_this_week,
        by_stage=counts,
    )


def filter_deals(deals: Iterable[Deal], filters: DealFilters) -> list[Deal]:
    f = filters
    needle = (f.search or "").strip().lower()
    out: list[Deal] = []
    for d in deals:
        if f.stage is not None and d.stage != f.stage:
            continue
        if f.buyer_id and d.buyer.contact_id != f.buyer_id:
            continue
        if f.property_id and d.property.property_code != f.property_id:
            continue
        if f.min_score is not None and d.score < f.min_score:
            continue
        if f.stale_only and not d.is_stale:
            continue
        if needle:
            hay = " ".join(
                [
                    d.buyer.full_name,
                    d.buyer.email,
                    d.property.property_code,
                    d.property.full_address,
                ]
            ).lower()
            if needle not in hay:
                continue
        out.append(d)
    return out

