# buyermatch/geo/resolver.py
from __future__ import annotations

import asyncio
import logging
import re
from typing import Any, Iterable, Mapping

from ..config import settings
from ..domain.ports import Geocoder
from ..domain.types import BuyerCriteria, Coordinates, PropertyDetails, coordinates_or_none
from ..domain.zipcodes import ZIP_COORDINATES, looks_like_zip, normalize_zip
from .cache import GeocodeCache

log = logging.getLogger(__name__)


def normalize_query(location: str) -> str:
    return re.sub(r"\s+", " ", (location or "").strip()).lower()


def _coerce(result: Any) -> Coordinates | None:
    """Geocoders may hand back Coordinates, a (lat, lng) pair or a mapping."""
    if result is None:
        return None
    if isinstance(result, Coordinates):
        return result
    if isinstance(result, Mapping):
        lat = result.get("latitude", result.get("lat"))
        lng = result.get("longitude", result.get("lng", result.get("lon")))
        return coordinates_or_none(lat, lng)
    try:
        lat, lng = result
    except (TypeError, ValueError):
        return None
    return coordinates_or_none(lat, lng)


class GeoResolver:
    """
    ZIP or free-text location -> Coordinates | None.

      - 5-digit ZIP (or ZIP+4): static table first, geocoder as fallback
      - anything else: geocoder, cached by normalized query string
      - only successful lookups are cached; a miss is retried next time
      - never raises for lookup failures
    """

    def __init__(
        self,
        geocoder: Geocoder | None,
        cache: GeocodeCache,
        *,
        zip_table: Mapping[str, Coordinates] = ZIP_COORDINATES,
        default_state: str | None = None,
    ) -> None:
        self.geocoder = geocoder
        self.cache = cache
        self.zip_table = zip_table
        self.default_state = default_state if default_state is not None else settings.GEOCODE_DEFAULT_STATE

    async def resolve(self, location: str | None) -> Coordinates | None:
        if not location or not location.strip():
            return None

        if looks_like_zip(location.strip()):
            z = normalize_zip(location.strip())
            hit = self.zip_table.get(z)
            if hit is not None:
                return hit
            return await self._geocode_cached(z, z)

        return await self._geocode_cached(normalize_query(location), location.strip())

    async def _geocode_cached(self, key: str, query: str) -> Coordinates | None:
        hit = self.cache.get(key)
        if hit is not None:
            return hit

        if self.geocoder is None:
            return None

        try:
            raw = await self.geocoder.geocode(query)
        except Exception as e:
            log.warning("geocode failed for %r: %s", query, e)
            return None

        coords = _coerce(raw)
        if coords is None:
            if raw is not None:
                log.warning("geocoder returned invalid coordinates for %r: %r", query, raw)
            else:
                log.info("no geocode result for %r", query)
            return None

        self.cache.set(key, coords)
        return coords

    async def resolve_many(
        self,
        locations: Iterable[str | None],
        *,
        delay_s: float | None = None,
    ) -> list[Coordinates | None]:
        """
        Sequential, with a fixed pause between entries. A failing entry is
        recorded as None and the batch carries on.
        """
        delay = settings.GEOCODE_BATCH_DELAY_S if delay_s is None else float(delay_s)
        out: list[Coordinates | None] = []
        for i, loc in enumerate(locations):
            if i > 0 and delay > 0:
                await asyncio.sleep(delay)
            try:
                out.append(await self.resolve(loc))
            except Exception:
                log.exception("batch geocode entry %d failed", i)
                out.append(None)
        return out

    # ---------------------------
    # Record helpers
    # ---------------------------
    def buyer_query(self, buyer: BuyerCriteria) -> str | None:
        if buyer.preferred_zip_codes:
            return buyer.preferred_zip_codes[0]
        state = buyer.state or self.default_state
        if buyer.location and buyer.location.strip():
            loc = buyer.location.strip()
            if state and "," not in loc and not looks_like_zip(loc):
                return f"{loc}, {state}"
            return loc
        if buyer.city:
            return f"{buyer.city}, {state}" if state else buyer.city
        return None

    def property_query(self, prop: PropertyDetails) -> str | None:
        if prop.zip_code and looks_like_zip(prop.zip_code.strip()):
            return prop.zip_code.strip()
        return prop.full_address or None

    async def resolve_buyer(self, buyer: BuyerCriteria) -> Coordinates | None:
        if buyer.coordinates is not None:
            return buyer.coordinates
        return await self.resolve(self.buyer_query(buyer))

    async def resolve_property(self, prop: PropertyDetails) -> Coordinates | None:
        if prop.coordinates is not None:
            return prop.coordinates
        return await self.resolve(self.property_query(prop))
