# scripts/run_matching.py
"""
One-off batch matching from the command line.

    python scripts/run_matching.py --load records.json
    python scripts/run_matching.py --buyer C-123 --min-score 70 --refresh-all

records.json: {"buyers": [...], "properties": [...]} with snake_case keys
matching BuyerCriteria / PropertyDetails.
"""
from __future__ import annotations

import argparse
import asyncio
import json
import logging
from pathlib import Path
from typing import Any

from buyermatch.adapters.clients.mapbox import MapboxGeocoder
from buyermatch.adapters.repos.records import SqlAlchemyRecordStore
from buyermatch.config import settings
from buyermatch.db import async_session, create_tables
from buyermatch.domain.types import (
    BuyerCriteria,
    PropertyDetails,
    PropertySource,
    coordinates_or_none,
)
from buyermatch.domain.zipcodes import parse_zip_list
from buyermatch.geo.cache import GeocodeCache
from buyermatch.geo.resolver import GeoResolver
from buyermatch.jobs.tasks import run_matching_job
from buyermatch.logging_config import configure_logging
from buyermatch.service_layer.matching import MatchRunRequest

log = logging.getLogger("run_matching")


def _buyer(d: dict[str, Any]) -> BuyerCriteria:
    return BuyerCriteria(
        contact_id=str(d["contact_id"]),
        first_name=d.get("first_name", ""),
        last_name=d.get("last_name", ""),
        email=d.get("email", ""),
        desired_beds=d.get("desired_beds"),
        desired_baths=d.get("desired_baths"),
        down_payment=d.get("down_payment"),
        monthly_income=d.get("monthly_income"),
        monthly_liabilities=d.get("monthly_liabilities"),
        city=d.get("city"),
        state=d.get("state"),
        location=d.get("location"),
        preferred_zip_codes=parse_zip_list(d.get("preferred_zip_codes")),
        coordinates=coordinates_or_none(d.get("lat"), d.get("lng")),
    )


def _property(d: dict[str, Any]) -> PropertyDetails:
    src = d.get("source")
    return PropertyDetails(
        property_code=str(d["property_code"]),
        address=d.get("address", ""),
        city=d.get("city", ""),
        state=d.get("state"),
        zip_code=d.get("zip_code"),
        price=d.get("price"),
        beds=d.get("beds"),
        baths=d.get("baths"),
        sqft=d.get("sqft"),
        source=PropertySource(src) if src else None,
        coordinates=coordinates_or_none(d.get("lat"), d.get("lng")),
    )


async def _load(path: Path) -> None:
    data = json.loads(path.read_text(encoding="utf-8"))
    async with async_session() as session:
        store = SqlAlchemyRecordStore(session)
        for b in data.get("buyers", []):
            await store.upsert_buyer(_buyer(b))
        for p in data.get("properties", []):
            await store.upsert_property(_property(p))
        await session.commit()
    log.info("loaded %d buyers, %d properties", len(data.get("buyers", [])), len(data.get("properties", [])))


async def main() -> None:
    parser = argparse.ArgumentParser(description="Run buyer/property matching once.")
    parser.add_argument("--load", type=Path, help="JSON file of buyers/properties to upsert first")
    parser.add_argument("--buyer", dest="buyer_id")
    parser.add_argument("--property", dest="property_id")
    parser.add_argument("--min-score", type=int, default=int(settings.MATCH_MIN_SCORE))
    parser.add_argument("--refresh-all", action="store_true")
    args = parser.parse_args()

    configure_logging()

    await create_tables()

    if args.load:
        await _load(args.load)

    resolver = GeoResolver(MapboxGeocoder.from_settings(), GeocodeCache())
    async with async_session() as session:
        result = await run_matching_job(
            session,
            resolver=resolver,
            request=MatchRunRequest(
                buyer_id=args.buyer_id,
                property_id=args.property_id,
                min_score=args.min_score,
                refresh_all=args.refresh_all,
            ),
            job_name="match_cli",
        )
    print(json.dumps(result.as_dict(), indent=2))


if __name__ == "__main__":
    asyncio.run(main())
