# buyermatch/adapters/clients/mapbox.py
from __future__ import annotations

import logging
from urllib.parse import quote

import httpx

from ...config import settings
from ...domain.types import Coordinates, coordinates_or_none
from .http_resilience import resilient_request

log = logging.getLogger(__name__)

DEFAULT_TYPES = ("address", "place", "postcode")


class MapboxGeocoder:
    """
    Forward geocoding against Mapbox. Returns the first feature's center or
    None; network and parse failures are logged, never raised.
    """

    def __init__(
        self,
        access_token: str | None,
        *,
        base_url: str = "https://api.mapbox.com/geocoding/v5/mapbox.places",
        country: str = "US",
        types: tuple[str, ...] = DEFAULT_TYPES,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.access_token = access_token
        self.base_url = base_url.rstrip("/")
        self.country = country
        self.types = types
        self.transport = transport

    @classmethod
    def from_settings(cls) -> "MapboxGeocoder":
        return cls(
            settings.MAPBOX_ACCESS_TOKEN,
            base_url=settings.MAPBOX_BASE_URL,
            country=settings.GEOCODE_COUNTRY,
        )

    @property
    def configured(self) -> bool:
        return bool(self.access_token)

    async def geocode(self, query: str) -> Coordinates | None:
        if not self.access_token:
            log.warning("mapbox access token not configured")
            return None
        q = (query or "").strip()
        if not q:
            return None

        url = f"{self.base_url}/{quote(q, safe='')}.json"
        params = {
            "access_token": self.access_token,
            "country": self.country.lower(),
            "types": ",".join(self.types),
            "limit": 1,
        }

        try:
            resp = await resilient_request("GET", url, params=params, transport=self.transport)
            data = resp.json()
        except (httpx.HTTPError, ValueError) as e:
            log.warning("mapbox geocode failed for %r: %s", q, e)
            return None

        features = (data.get("features") or []) if isinstance(data, dict) else []
        if not features:
            return None

        center = features[0].get("center") or []
        if len(center) != 2:
            return None
        lng, lat = center
        coords = coordinates_or_none(lat, lng)
        if coords is None:
            log.warning("mapbox returned out-of-range center for %r: %r", q, center)
        return coords
