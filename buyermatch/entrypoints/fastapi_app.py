# buyermatch/entrypoints/fastapi_app.py
from __future__ import annotations

from typing import Sequence

from fastapi import FastAPI

from ..adapters.clients.mapbox import MapboxGeocoder
from ..config import settings
from ..db import create_tables
from ..domain.ports import Geocoder
from ..domain.stages import MappingStageSyncResolver, StageMachine
from ..geo.cache import GeocodeCache
from ..geo.resolver import GeoResolver
from ..integrations.base import PipelineSyncSink
from .api.routers import deals, debug, health, jobs, matching


def create_app(
    *,
    geocoder: Geocoder | None = None,
    sinks: Sequence[PipelineSyncSink] | None = None,
) -> FastAPI:
    app = FastAPI(title="BuyerMatch - Buyer/Property Matching & Deal Pipeline")

    # Process-lifetime collaborators; one geocode cache per app.
    app.state.geocode_cache = GeocodeCache()
    app.state.geo_resolver = GeoResolver(
        geocoder if geocoder is not None else MapboxGeocoder.from_settings(),
        app.state.geocode_cache,
    )
    app.state.stage_machine = StageMachine(MappingStageSyncResolver(settings.STAGE_ASSOCIATION_IDS))
    # None => sinks come from settings at dispatch time
    app.state.sync_sinks = list(sinks) if sinks is not None else None

    @app.on_event("startup")
    async def _startup() -> None:
        await create_tables()

    app.include_router(health.router)
    app.include_router(matching.router)
    app.include_router(deals.router)
    app.include_router(jobs.router)
    app.include_router(debug.router)

    return app
