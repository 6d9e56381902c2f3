# buyermatch/models.py
from __future__ import annotations

import enum
from datetime import datetime, timezone

from sqlalchemy import (
    Boolean,
    DateTime,
    Enum,
    Float,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

from .domain.types import ActivityType, MatchDealStage, PropertySource, ZillowSearchType


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Base(DeclarativeBase):
    pass


# -----------------------------
# Enums (persistence only)
# -----------------------------
class OutboxStatus(str, enum.Enum):
    pending = "pending"
    delivered = "delivered"
    failed = "failed"


class JobRunStatus(str, enum.Enum):
    running = "running"
    success = "success"
    failed = "failed"


# -----------------------------
# Records fed from the CRM
# -----------------------------
class Buyer(Base):
    __tablename__ = "buyers"
    __table_args__ = (UniqueConstraint("contact_id", name="uq_buyer_contact"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    contact_id: Mapped[str] = mapped_column(String(64), index=True)
    record_id: Mapped[str | None] = mapped_column(String(64), nullable=True)

    first_name: Mapped[str] = mapped_column(String(120), default="")
    last_name: Mapped[str] = mapped_column(String(120), default="")
    email: Mapped[str] = mapped_column(String(255), default="")

    desired_beds: Mapped[float | None] = mapped_column(Float, nullable=True)
    desired_baths: Mapped[float | None] = mapped_column(Float, nullable=True)
    down_payment: Mapped[float | None] = mapped_column(Float, nullable=True)
    monthly_income: Mapped[float | None] = mapped_column(Float, nullable=True)
    monthly_liabilities: Mapped[float | None] = mapped_column(Float, nullable=True)

    city: Mapped[str | None] = mapped_column(String(80), nullable=True)
    state: Mapped[str | None] = mapped_column(String(40), nullable=True)
    location: Mapped[str | None] = mapped_column(String(255), nullable=True)
    # JSON list of 5-digit ZIPs
    preferred_zips_json: Mapped[str] = mapped_column(Text, default="[]")
    buyer_type: Mapped[str | None] = mapped_column(String(40), nullable=True)

    lat: Mapped[float | None] = mapped_column(Float, nullable=True)
    lng: Mapped[float | None] = mapped_column(Float, nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)


class Property(Base):
    __tablename__ = "properties"
    __table_args__ = (UniqueConstraint("property_code", name="uq_property_code"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    property_code: Mapped[str] = mapped_column(String(64), index=True)
    record_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    opportunity_id: Mapped[str | None] = mapped_column(String(64), nullable=True)

    address: Mapped[str] = mapped_column(String(255), default="")
    city: Mapped[str] = mapped_column(String(80), default="")
    state: Mapped[str | None] = mapped_column(String(40), nullable=True)
    zip_code: Mapped[str | None] = mapped_column(String(10), nullable=True)

    price: Mapped[float | None] = mapped_column(Float, nullable=True)
    beds: Mapped[float | None] = mapped_column(Float, nullable=True)
    baths: Mapped[float | None] = mapped_column(Float, nullable=True)
    sqft: Mapped[float | None] = mapped_column(Float, nullable=True)

    lat: Mapped[float | None] = mapped_column(Float, nullable=True)
    lng: Mapped[float | None] = mapped_column(Float, nullable=True)

    source: Mapped[PropertySource | None] = mapped_column(Enum(PropertySource), nullable=True)
    zillow_type: Mapped[ZillowSearchType | None] = mapped_column(Enum(ZillowSearchType), nullable=True)
    zillow_zpid: Mapped[str | None] = mapped_column(String(40), nullable=True)
    zillow_url: Mapped[str | None] = mapped_column(String(500), nullable=True)
    days_on_market: Mapped[int | None] = mapped_column(Integer, nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)


# -----------------------------
# Engine-owned records
# -----------------------------
class Match(Base):
    __tablename__ = "matches"
    __table_args__ = (UniqueConstraint("buyer_id", "property_id", name="uq_match_buyer_property"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    buyer_id: Mapped[str] = mapped_column(String(64), index=True)
    property_id: Mapped[str] = mapped_column(String(64), index=True)

    score: Mapped[int] = mapped_column(Integer, default=0, index=True)
    location_score: Mapped[float] = mapped_column(Float, default=0.0)
    beds_score: Mapped[float] = mapped_column(Float, default=0.0)
    baths_score: Mapped[float] = mapped_column(Float, default=0.0)
    budget_score: Mapped[float] = mapped_column(Float, default=0.0)
    distance_miles: Mapped[float | None] = mapped_column(Float, nullable=True)
    is_priority: Mapped[bool] = mapped_column(Boolean, default=False)

    reasoning: Mapped[str] = mapped_column(Text, default="")
    highlights_json: Mapped[str] = mapped_column(Text, default="[]")
    concerns_json: Mapped[str] = mapped_column(Text, default="[]")

    # NULL until first sent
    stage: Mapped[MatchDealStage | None] = mapped_column(Enum(MatchDealStage), nullable=True, index=True)
    sync_relation_id: Mapped[str | None] = mapped_column(String(120), nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)


class MatchActivityRow(Base):
    """Append-only; never updated once written."""
    __tablename__ = "match_activities"
    __table_args__ = (Index("ix_match_activity_match_ts", "match_id", "timestamp"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    activity_id: Mapped[str] = mapped_column(String(40), unique=True)
    match_id: Mapped[int] = mapped_column(Integer, index=True)

    type: Mapped[ActivityType] = mapped_column(Enum(ActivityType))
    timestamp: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
    details: Mapped[str] = mapped_column(Text, default="")
    user: Mapped[str | None] = mapped_column(String(120), nullable=True)
    metadata_json: Mapped[str] = mapped_column(Text, default="{}")


class OutboxEvent(Base):
    __tablename__ = "outbox_events"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    topic: Mapped[str] = mapped_column(String(120), index=True)
    payload_json: Mapped[str] = mapped_column(Text)

    status: Mapped[OutboxStatus] = mapped_column(Enum(OutboxStatus), default=OutboxStatus.pending, index=True)
    attempts: Mapped[int] = mapped_column(Integer, default=0)

    next_attempt_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, index=True)
    last_error: Mapped[str | None] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)


class JobRun(Base):
    """
    One row per matching batch / outbox dispatch run.
    """
    __tablename__ = "job_runs"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    job_name: Mapped[str] = mapped_column(String(80), index=True)

    status: Mapped[JobRunStatus] = mapped_column(Enum(JobRunStatus), default=JobRunStatus.running, index=True)

    started_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, index=True)
    finished_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    error: Mapped[str | None] = mapped_column(Text, nullable=True)

    # request scope going in, result summary coming out
    meta_json: Mapped[str | None] = mapped_column(Text, nullable=True)
    summary_json: Mapped[str | None] = mapped_column(Text, nullable=True)
