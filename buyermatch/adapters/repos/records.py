# buyermatch/adapters/repos/records.py
from __future__ import annotations

import json
from datetime import datetime, timezone
from typing import Any, Iterable

from sqlalchemy import delete, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from ...domain.errors import MatchAlreadyExists, MatchNotFound, StaleMatchState
from ...domain.types import (
    BuyerCriteria,
    Coordinates,
    MatchActivity,
    MatchDealStage,
    MatchScore,
    PropertyDetails,
    PropertyMatch,
    coordinates_or_none,
)
from ...domain.zipcodes import parse_zip_list
from ...models import Buyer, Match, MatchActivityRow, Property, utcnow


def _aware(dt: datetime | None) -> datetime | None:
    if dt is None:
        return None
    return dt if dt.tzinfo is not None else dt.replace(tzinfo=timezone.utc)


def _loads(raw: str | None, default: Any) -> Any:
    if not raw:
        return default
    try:
        return json.loads(raw)
    except ValueError:
        return default


# -----------------------------
# Row -> domain
# -----------------------------
def buyer_to_domain(row: Buyer) -> BuyerCriteria:
    return BuyerCriteria(
        contact_id=row.contact_id,
        first_name=row.first_name or "",
        last_name=row.last_name or "",
        email=row.email or "",
        record_id=row.record_id,
        desired_beds=row.desired_beds,
        desired_baths=row.desired_baths,
        down_payment=row.down_payment,
        monthly_income=row.monthly_income,
        monthly_liabilities=row.monthly_liabilities,
        city=row.city,
        state=row.state,
        location=row.location,
        preferred_zip_codes=parse_zip_list(_loads(row.preferred_zips_json, [])),
        buyer_type=row.buyer_type,
        coordinates=coordinates_or_none(row.lat, row.lng),
    )


def property_to_domain(row: Property) -> PropertyDetails:
    return PropertyDetails(
        property_code=row.property_code,
        address=row.address or "",
        city=row.city or "",
        state=row.state,
        zip_code=row.zip_code,
        price=row.price,
        beds=row.beds,
        baths=row.baths,
        sqft=row.sqft,
        coordinates=coordinates_or_none(row.lat, row.lng),
        source=row.source,
        record_id=row.record_id,
        opportunity_id=row.opportunity_id,
        zillow_type=row.zillow_type,
        zillow_zpid=row.zillow_zpid,
        zillow_url=row.zillow_url,
        days_on_market=row.days_on_market,
    )


def activity_to_domain(row: MatchActivityRow) -> MatchActivity:
    return MatchActivity(
        id=row.activity_id,
        type=row.type,
        timestamp=_aware(row.timestamp),
        details=row.details or "",
        user=row.user,
        metadata=_loads(row.metadata_json, {}),
    )


def match_to_domain(row: Match, activities: Iterable[MatchActivity] = ()) -> PropertyMatch:
    return PropertyMatch(
        id=row.id,
        buyer_id=row.buyer_id,
        property_id=row.property_id,
        score=int(row.score or 0),
        location_score=float(row.location_score or 0.0),
        beds_score=float(row.beds_score or 0.0),
        baths_score=float(row.baths_score or 0.0),
        budget_score=float(row.budget_score or 0.0),
        distance_miles=row.distance_miles,
        is_priority=bool(row.is_priority),
        reasoning=row.reasoning or "",
        highlights=tuple(_loads(row.highlights_json, [])),
        concerns=tuple(_loads(row.concerns_json, [])),
        stage=row.stage,
        activities=tuple(activities),
        sync_relation_id=row.sync_relation_id,
        created_at=_aware(row.created_at),
        updated_at=_aware(row.updated_at),
    )


def _apply_score(row: Match, s: MatchScore) -> None:
    row.score = s.total
    row.location_score = s.location_score
    row.beds_score = s.beds_score
    row.baths_score = s.baths_score
    row.budget_score = s.budget_score
    row.distance_miles = s.distance_miles
    row.is_priority = s.is_priority
    row.reasoning = s.reasoning
    row.highlights_json = json.dumps(list(s.highlights), ensure_ascii=False)
    row.concerns_json = json.dumps(list(s.concerns), ensure_ascii=False)


def _activity_row(match_id: int, a: MatchActivity) -> MatchActivityRow:
    return MatchActivityRow(
        activity_id=a.id,
        match_id=match_id,
        type=a.type,
        timestamp=a.timestamp,
        details=a.details,
        user=a.user,
        metadata_json=json.dumps(a.metadata or {}, ensure_ascii=False, default=str),
    )


class SqlAlchemyRecordStore:
    """
    RecordStore over an AsyncSession. Methods flush; the caller decides when
    to commit (the batch runner commits per pair).
    """

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    # ---------------------------
    # Buyers
    # ---------------------------
    async def _buyer_row(self, contact_id: str) -> Buyer | None:
        q = select(Buyer).where(Buyer.contact_id == contact_id)
        return (await self.session.execute(q)).scalars().first()

    async def get_buyer(self, contact_id: str) -> BuyerCriteria | None:
        row = await self._buyer_row(contact_id)
        return buyer_to_domain(row) if row else None

    async def list_buyers(self) -> list[BuyerCriteria]:
        rows = (await self.session.execute(select(Buyer).order_by(Buyer.id))).scalars().all()
        return [buyer_to_domain(r) for r in rows]

    async def upsert_buyer(self, buyer: BuyerCriteria) -> tuple[BuyerCriteria, bool]:
        """
        Natural key: contact_id. Stored coordinates survive a re-sync unless
        the buyer's location changed or new coordinates are supplied.
        """
        row = await self._buyer_row(buyer.contact_id)
        created = row is None
        if row is None:
            row = Buyer(contact_id=buyer.contact_id)
            self.session.add(row)

        zips = list(buyer.preferred_zip_codes)
        moved = not created and (
            (row.city, row.state, row.location, _loads(row.preferred_zips_json, []))
            != (buyer.city, buyer.state, buyer.location, zips)
        )

        row.record_id = buyer.record_id
        row.first_name = buyer.first_name
        row.last_name = buyer.last_name
        row.email = buyer.email
        row.desired_beds = buyer.desired_beds
        row.desired_baths = buyer.desired_baths
        row.down_payment = buyer.down_payment
        row.monthly_income = buyer.monthly_income
        row.monthly_liabilities = buyer.monthly_liabilities
        row.city = buyer.city
        row.state = buyer.state
        row.location = buyer.location
        row.preferred_zips_json = json.dumps(zips)
        row.buyer_type = buyer.buyer_type

        if buyer.coordinates is not None:
            row.lat, row.lng = buyer.coordinates.latitude, buyer.coordinates.longitude
        elif moved:
            row.lat, row.lng = None, None

        row.updated_at = utcnow()
        await self.session.flush()
        return buyer_to_domain(row), created

    async def set_buyer_coordinates(self, contact_id: str, coords: Coordinates) -> None:
        await self.session.execute(
            update(Buyer)
            .where(Buyer.contact_id == contact_id)
            .values(lat=coords.latitude, lng=coords.longitude, updated_at=utcnow())
        )

    # ---------------------------
    # Properties
    # ---------------------------
    async def _property_row(self, property_code: str) -> Property | None:
        q = select(Property).where(Property.property_code == property_code)
        return (await self.session.execute(q)).scalars().first()

    async def get_property(self, property_code: str) -> PropertyDetails | None:
        row = await self._property_row(property_code)
        return property_to_domain(row) if row else None

    async def list_properties(self) -> list[PropertyDetails]:
        rows = (await self.session.execute(select(Property).order_by(Property.id))).scalars().all()
        return [property_to_domain(r) for r in rows]

    async def upsert_property(self, prop: PropertyDetails) -> tuple[PropertyDetails, bool]:
        row = await self._property_row(prop.property_code)
        created = row is None
        if row is None:
            row = Property(property_code=prop.property_code)
            self.session.add(row)

        moved = not created and (row.address, row.city, row.state, row.zip_code) != (
            prop.address,
            prop.city,
            prop.state,
            prop.zip_code,
        )

        row.record_id = prop.record_id
        row.opportunity_id = prop.opportunity_id
        row.address = prop.address
        row.city = prop.city
        row.state = prop.state
        row.zip_code = prop.zip_code
        row.price = prop.price
        row.beds = prop.beds
        row.baths = prop.baths
        row.sqft = prop.sqft
        row.source = prop.source
        row.zillow_type = prop.zillow_type
        row.zillow_zpid = prop.zillow_zpid
        row.zillow_url = prop.zillow_url
        row.days_on_market = prop.days_on_market

        if prop.coordinates is not None:
            row.lat, row.lng = prop.coordinates.latitude, prop.coordinates.longitude
        elif moved:
            row.lat, row.lng = None, None

        row.updated_at = utcnow()
        await self.session.flush()
        return property_to_domain(row), created

    async def set_property_coordinates(self, property_code: str, coords: Coordinates) -> None:
        await self.session.execute(
            update(Property)
            .where(Property.property_code == property_code)
            .values(lat=coords.latitude, lng=coords.longitude, updated_at=utcnow())
        )

    # ---------------------------
    # Activities
    # ---------------------------
    async def _activities_for(self, match_ids: list[int]) -> dict[int, list[MatchActivity]]:
        out: dict[int, list[MatchActivity]] = {mid: [] for mid in match_ids}
        if not match_ids:
            return out
        q = (
            select(MatchActivityRow)
            .where(MatchActivityRow.match_id.in_(match_ids))
            .order_by(MatchActivityRow.timestamp.asc(), MatchActivityRow.id.asc())
        )
        for row in (await self.session.execute(q)).scalars().all():
            out[row.match_id].append(activity_to_domain(row))
        return out

    async def append_activity(self, match_id: int, activity: MatchActivity) -> None:
        self.session.add(_activity_row(match_id, activity))
        await self.session.execute(update(Match).where(Match.id == match_id).values(updated_at=utcnow()))
        await self.session.flush()

    async def list_activities(self, match_id: int) -> list[MatchActivity]:
        return (await self._activities_for([match_id]))[match_id]

    # ---------------------------
    # Matches
    # ---------------------------
    async def _to_domain(self, rows: list[Match]) -> list[PropertyMatch]:
        acts = await self._activities_for([r.id for r in rows])
        return [match_to_domain(r, acts[r.id]) for r in rows]

    async def get_match(self, buyer_id: str, property_id: str) -> PropertyMatch | None:
        q = (
            select(Match)
            .where(Match.buyer_id == buyer_id, Match.property_id == property_id)
            .execution_options(populate_existing=True)
        )
        row = (await self.session.execute(q)).scalars().first()
        return (await self._to_domain([row]))[0] if row else None

    async def get_match_by_id(self, match_id: int) -> PropertyMatch | None:
        q = select(Match).where(Match.id == match_id).execution_options(populate_existing=True)
        row = (await self.session.execute(q)).scalars().first()
        return (await self._to_domain([row]))[0] if row else None

    async def list_matches(
        self,
        *,
        buyer_id: str | None = None,
        property_id: str | None = None,
    ) -> list[PropertyMatch]:
        q = select(Match).execution_options(populate_existing=True)
        if buyer_id:
            q = q.where(Match.buyer_id == buyer_id)
        if property_id:
            q = q.where(Match.property_id == property_id)
        q = q.order_by(Match.score.desc(), Match.id.asc())
        rows = list((await self.session.execute(q)).scalars().all())
        return await self._to_domain(rows)

    async def create_match(
        self,
        buyer_id: str,
        property_id: str,
        score: MatchScore,
        activity: MatchActivity | None = None,
    ) -> PropertyMatch:
        now = utcnow()
        row = Match(buyer_id=buyer_id, property_id=property_id, stage=None, created_at=now, updated_at=now)
        _apply_score(row, score)
        try:
            async with self.session.begin_nested():
                self.session.add(row)
                await self.session.flush()
                if activity is not None:
                    self.session.add(_activity_row(row.id, activity))
                    await self.session.flush()
        except IntegrityError as e:
            raise MatchAlreadyExists(buyer_id, property_id) from e

        return match_to_domain(row, [activity] if activity else [])

    async def update_match_score(self, match_id: int, score: MatchScore) -> PropertyMatch:
        q = select(Match).where(Match.id == match_id).execution_options(populate_existing=True)
        row = (await self.session.execute(q)).scalars().first()
        if row is None:
            raise MatchNotFound(match_id)
        _apply_score(row, score)
        row.updated_at = utcnow()
        await self.session.flush()
        return (await self._to_domain([row]))[0]

    async def set_stage(
        self,
        match_id: int,
        *,
        expected: MatchDealStage | None,
        stage: MatchDealStage,
    ) -> None:
        cond = Match.stage.is_(None) if expected is None else Match.stage == expected
        res = await self.session.execute(
            update(Match)
            .where(Match.id == match_id, cond)
            .values(stage=stage, updated_at=utcnow())
        )
        if res.rowcount == 0:
            exists = (await self.session.execute(select(Match.id).where(Match.id == match_id))).first()
            if exists is None:
                raise MatchNotFound(match_id)
            raise StaleMatchState(f"match {match_id} is no longer in stage {expected.value if expected else None!r}")

    async def set_sync_relation_id(self, match_id: int, relation_id: str | None) -> None:
        await self.session.execute(
            update(Match)
            .where(Match.id == match_id)
            .values(sync_relation_id=relation_id)
        )

    async def delete_matches(
        self,
        *,
        buyer_id: str | None = None,
        property_id: str | None = None,
        include_advanced: bool = False,
    ) -> int:
        q = select(Match.id)
        if buyer_id:
            q = q.where(Match.buyer_id == buyer_id)
        if property_id:
            q = q.where(Match.property_id == property_id)
        if not include_advanced:
            q = q.where(Match.stage.is_(None))
        ids = [int(i) for i in (await self.session.execute(q)).scalars().all()]
        if not ids:
            return 0

        await self.session.execute(
            delete(MatchActivityRow)
            .where(MatchActivityRow.match_id.in_(ids))
        )
        await self.session.execute(
            delete(Match).where(Match.id.in_(ids))
        )
        return len(ids)

    async def commit(self) -> None:
        await self.session.commit()

    async def rollback(self) -> None:
        await self.session.rollback()
