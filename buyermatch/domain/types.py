# buyermatch/domain/types.py
from __future__ import annotations

import math
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any

from .errors import InvalidCoordinates


@dataclass(frozen=True)
class Coordinates:
    latitude: float
    longitude: float

    def __post_init__(self) -> None:
        lat, lng = self.latitude, self.longitude
        if not _finite(lat) or not _finite(lng):
            raise InvalidCoordinates(f"non-numeric coordinates: lat={lat!r}, lng={lng!r}")
        if not (-90.0 <= lat <= 90.0) or not (-180.0 <= lng <= 180.0):
            raise InvalidCoordinates(f"coordinates out of range: lat={lat}, lng={lng}")


def _finite(x: Any) -> bool:
    return isinstance(x, (int, float)) and not isinstance(x, bool) and math.isfinite(x)


def coordinates_or_none(lat: Any, lng: Any) -> Coordinates | None:
    """Build Coordinates from loose values; missing or out-of-range => None."""
    if lat is None or lng is None:
        return None
    try:
        return Coordinates(float(lat), float(lng))
    except (TypeError, ValueError):
        return None


class PropertySource(str, Enum):
    inventory = "Inventory"
    lead = "Lead"
    zillow = "Zillow"


class ZillowSearchType(str, Enum):
    keywords = "Keywords"
    formula = "Formula"
    dom = "DOM"


class MatchDealStage(str, Enum):
    sent_to_buyer = "Sent to Buyer"
    buyer_responded = "Buyer Responded"
    showing_scheduled = "Showing Scheduled"
    property_viewed = "Property Viewed"
    underwriting = "Underwriting"
    contracts = "Contracts"
    qualified = "Qualified"
    closed_won = "Closed Deal / Won"
    # exit stage
    not_interested = "Not Interested"


class ActivityType(str, Enum):
    stage_change = "stage-change"
    email_sent = "email-sent"
    showing_scheduled = "showing-scheduled"
    showing_completed = "showing-completed"
    note_added = "note-added"
    offer_submitted = "offer-submitted"
    match_created = "match-created"


@dataclass(frozen=True)
class BuyerCriteria:
    contact_id: str
    first_name: str = ""
    last_name: str = ""
    email: str = ""
    record_id: str | None = None

    desired_beds: float | None = None
    desired_baths: float | None = None
    down_payment: float | None = None
    monthly_income: float | None = None
    monthly_liabilities: float | None = None

    city: str | None = None
    state: str | None = None
    location: str | None = None  # free text, e.g. "Metairie" or "near downtown Phoenix"
    preferred_zip_codes: tuple[str, ...] = ()
    buyer_type: str | None = None

    coordinates: Coordinates | None = None

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()


@dataclass(frozen=True)
class PropertyDetails:
    property_code: str
    address: str = ""
    city: str = ""
    state: str | None = None
    zip_code: str | None = None

    price: float | None = None
    beds: float | None = None
    baths: float | None = None
    sqft: float | None = None

    coordinates: Coordinates | None = None

    source: PropertySource | None = None
    record_id: str | None = None
    opportunity_id: str | None = None

    # Zillow provenance (source == PropertySource.zillow)
    zillow_type: ZillowSearchType | None = None
    zillow_zpid: str | None = None
    zillow_url: str | None = None
    days_on_market: int | None = None

    @property
    def full_address(self) -> str:
        tail = " ".join(p for p in (self.state or "", self.zip_code or "") if p)
        return ", ".join(p for p in (self.address, self.city, tail) if p)


@dataclass(frozen=True)
class MatchScore:
    total: int
    location_score: float
    beds_score: float
    baths_score: float
    budget_score: float
    distance_miles: float | None
    is_priority: bool
    highlights: tuple[str, ...]
    concerns: tuple[str, ...]
    reasoning: str
    location_reason: str = ""


@dataclass(frozen=True)
class MatchActivity:
    id: str
    type: ActivityType
    timestamp: datetime
    details: str
    user: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def new(
        cls,
        type: ActivityType,
        details: str,
        *,
        user: str | None = None,
        metadata: dict[str, Any] | None = None,
        at: datetime | None = None,
    ) -> "MatchActivity":
        return cls(
            id=uuid.uuid4().hex,
            type=type,
            timestamp=at or datetime.now(timezone.utc),
            details=details,
            user=user,
            metadata=dict(metadata or {}),
        )


@dataclass(frozen=True)
class PropertyMatch:
    """
    Durable buyer/property pairing. Score fields are flattened from MatchScore;
    `stage` is None until the match is first sent.
    """
    id: int
    buyer_id: str
    property_id: str

    score: int
    location_score: float
    beds_score: float
    baths_score: float
    budget_score: float
    distance_miles: float | None
    is_priority: bool
    reasoning: str
    highlights: tuple[str, ...] = ()
    concerns: tuple[str, ...] = ()

    stage: MatchDealStage | None = None
    activities: tuple[MatchActivity, ...] = ()
    sync_relation_id: str | None = None

    created_at: datetime | None = None
    updated_at: datetime | None = None
