from __future__ import annotations

from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from .config import settings
from .domain.deals import Deal, DealsByBuyer, DealsByProperty, PipelineStats
from .domain.ranking import BuyerPropertyRanking, RankedProperty
from .domain.types import (
    ActivityType,
    BuyerCriteria,
    MatchActivity,
    MatchDealStage,
    PropertyDetails,
    PropertyMatch,
)


class CamelModel(BaseModel):
    """Wire shapes use camelCase; Python code uses snake_case."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# -----------------------------
# Batch matching
# -----------------------------
class MatchRunIn(CamelModel):
    buyer_id: str | None = None
    property_id: str | None = None
    min_score: int = Field(default_factory=lambda: int(settings.MATCH_MIN_SCORE), ge=0, le=100)
    refresh_all: bool = False


class MatchRunOut(CamelModel):
    buyers_processed: int = Field(..., ge=0)
    properties_processed: int = Field(..., ge=0)
    matches_created: int = Field(..., ge=0)
    matches_updated: int = Field(..., ge=0)
    duplicates_skipped: int = Field(..., ge=0)
    within_radius: int = Field(..., ge=0)
    below_threshold: int = 0
    failed: int = 0
    cancelled: bool = False
    concerns: list[str] = Field(default_factory=list)


class ClearMatchesOut(CamelModel):
    deleted: int


# -----------------------------
# Records
# -----------------------------
class BuyerOut(CamelModel):
    contact_id: str
    name: str
    email: str
    desired_beds: float | None = None
    desired_baths: float | None = None
    down_payment: float | None = None
    city: str | None = None
    state: str | None = None
    location: str | None = None
    preferred_zip_codes: list[str] = Field(default_factory=list)
    latitude: float | None = None
    longitude: float | None = None

    @classmethod
    def from_domain(cls, b: BuyerCriteria) -> "BuyerOut":
        return cls(
            contact_id=b.contact_id,
            name=b.full_name,
            email=b.email,
            desired_beds=b.desired_beds,
            desired_baths=b.desired_baths,
            down_payment=b.down_payment,
            city=b.city,
            state=b.state,
            location=b.location,
            preferred_zip_codes=list(b.preferred_zip_codes),
            latitude=b.coordinates.latitude if b.coordinates else None,
            longitude=b.coordinates.longitude if b.coordinates else None,
        )


class PropertyOut(CamelModel):
    property_code: str
    address: str
    city: str
    state: str | None = None
    zip_code: str | None = None
    price: float | None = None
    beds: float | None = None
    baths: float | None = None
    sqft: float | None = None
    source: str | None = None
    zillow_url: str | None = None
    days_on_market: int | None = None
    latitude: float | None = None
    longitude: float | None = None

    @classmethod
    def from_domain(cls, p: PropertyDetails) -> "PropertyOut":
        return cls(
            property_code=p.property_code,
            address=p.address,
            city=p.city,
            state=p.state,
            zip_code=p.zip_code,
            price=p.price,
            beds=p.beds,
            baths=p.baths,
            sqft=p.sqft,
            source=p.source.value if p.source else None,
            zillow_url=p.zillow_url,
            days_on_market=p.days_on_market,
            latitude=p.coordinates.latitude if p.coordinates else None,
            longitude=p.coordinates.longitude if p.coordinates else None,
        )


class ActivityOut(CamelModel):
    id: str
    type: str
    timestamp: datetime
    details: str
    user: str | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)

    @classmethod
    def from_domain(cls, a: MatchActivity) -> "ActivityOut":
        return cls(
            id=a.id,
            type=a.type.value,
            timestamp=a.timestamp,
            details=a.details,
            user=a.user,
            metadata=dict(a.metadata),
        )


class MatchOut(CamelModel):
    id: int
    buyer_id: str
    property_id: str
    score: int
    location_score: float
    beds_score: float
    baths_score: float
    budget_score: float
    distance_miles: float | None = None
    is_priority: bool
    reasoning: str
    highlights: list[str]
    concerns: list[str]
    stage: str | None = None
    sync_relation_id: str | None = None
    activities: list[ActivityOut] = Field(default_factory=list)
    created_at: datetime | None = None
    updated_at: datetime | None = None

    @classmethod
    def from_domain(cls, m: PropertyMatch) -> "MatchOut":
        return cls(
            id=m.id,
            buyer_id=m.buyer_id,
            property_id=m.property_id,
            score=m.score,
            location_score=m.location_score,
            beds_score=m.beds_score,
            baths_score=m.baths_score,
            budget_score=m.budget_score,
            distance_miles=m.distance_miles,
            is_priority=m.is_priority,
            reasoning=m.reasoning,
            highlights=list(m.highlights),
            concerns=list(m.concerns),
            stage=m.stage.value if m.stage else None,
            sync_relation_id=m.sync_relation_id,
            activities=[ActivityOut.from_domain(a) for a in m.activities],
            created_at=m.created_at,
            updated_at=m.updated_at,
        )


# -----------------------------
# Buyer -> properties ranking
# -----------------------------
class RankedPropertyOut(CamelModel):
    property: PropertyOut
    score: int
    location_score: float
    beds_score: float
    baths_score: float
    budget_score: float
    distance_miles: float | None = None
    tier: str | None = None
    is_priority: bool
    highlights: list[str]
    concerns: list[str]
    reasoning: str
    location_reason: str

    @classmethod
    def from_domain(cls, r: RankedProperty) -> "RankedPropertyOut":
        s = r.score
        return cls(
            property=PropertyOut.from_domain(r.property),
            score=s.total,
            location_score=s.location_score,
            beds_score=s.beds_score,
            baths_score=s.baths_score,
            budget_score=s.budget_score,
            distance_miles=s.distance_miles,
            tier=r.tier.value if r.tier else None,
            is_priority=s.is_priority,
            highlights=list(s.highlights),
            concerns=list(s.concerns),
            reasoning=s.reasoning,
            location_reason=s.location_reason,
        )


class BuyerPropertiesOut(CamelModel):
    buyer: BuyerOut
    priority: list[RankedPropertyOut]
    explore: list[RankedPropertyOut]
    total: int

    @classmethod
    def from_domain(cls, r: BuyerPropertyRanking) -> "BuyerPropertiesOut":
        return cls(
            buyer=BuyerOut.from_domain(r.buyer),
            priority=[RankedPropertyOut.from_domain(x) for x in r.priority],
            explore=[RankedPropertyOut.from_domain(x) for x in r.explore],
            total=r.total,
        )


# -----------------------------
# Deals
# -----------------------------
class DealOut(CamelModel):
    id: int
    match: MatchOut
    property: PropertyOut
    buyer: BuyerOut
    days_since_activity: int | None = None
    is_stale: bool
    last_activity_at: datetime | None = None

    @classmethod
    def from_domain(cls, d: Deal) -> "DealOut":
        return cls(
            id=d.id,
            match=MatchOut.from_domain(d.match),
            property=PropertyOut.from_domain(d.property),
            buyer=BuyerOut.from_domain(d.buyer),
            days_since_activity=d.days_since_activity,
            is_stale=d.is_stale,
            last_activity_at=d.last_activity_at,
        )


class DealsByBuyerOut(CamelModel):
    buyer: BuyerOut
    deals: list[DealOut]
    total_deals: int
    total_value: float
    active_stages: list[str]

    @classmethod
    def from_domain(cls, g: DealsByBuyer) -> "DealsByBuyerOut":
        return cls(
            buyer=BuyerOut.from_domain(g.buyer),
            deals=[DealOut.from_domain(d) for d in g.deals],
            total_deals=g.total_deals,
            total_value=g.total_value,
            active_stages=[s.value for s in g.active_stages],
        )


class DealsByPropertyOut(CamelModel):
    property: PropertyOut
    deals: list[DealOut]
    total_buyers: int
    highest_score: int
    furthest_stage: str | None = None

    @classmethod
    def from_domain(cls, g: DealsByProperty) -> "DealsByPropertyOut":
        return cls(
            property=PropertyOut.from_domain(g.property),
            deals=[DealOut.from_domain(d) for d in g.deals],
            total_buyers=g.total_buyers,
            highest_score=g.highest_score,
            furthest_stage=g.furthest_stage.value if g.furthest_stage else None,
        )


class PipelineStatsOut(CamelModel):
    total_deals: int
    active_pipeline_value: float
    closing_soon: int
    needs_attention: int
    new_this_week: int
    by_stage: dict[str, int]

    @classmethod
    def from_domain(cls, s: PipelineStats) -> "PipelineStatsOut":
        return cls(
            total_deals=s.total_deals,
            active_pipeline_value=s.active_pipeline_value,
            closing_soon=s.closing_soon,
            needs_attention=s.needs_attention,
            new_this_week=s.new_this_week,
            by_stage=dict(s.by_stage),
        )


class StageChangeIn(CamelModel):
    stage: MatchDealStage
    user: str | None = None
    note: str | None = None


class ActivityIn(CamelModel):
    type: ActivityType
    details: str = Field(..., min_length=1)
    user: str | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)


# -----------------------------
# Jobs / debug
# -----------------------------
class DispatchResult(BaseModel):
    delivered: int
    failed: int
    retrying: int | None = None
    sinks: int | None = None
    events: int | None = None
    skipped_no_sinks: int | None = None


class GeocodeStatusOut(CamelModel):
    geocoder_configured: bool
    zip_table_size: int
    cache: dict[str, int]
