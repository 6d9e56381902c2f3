# buyermatch/entrypoints/api/routers/debug.py
from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends, Query, Request

from ..deps import get_resolver
from ....config import settings
from ....geo.resolver import GeoResolver
from ....schemas import GeocodeStatusOut

router = APIRouter(prefix="/debug", tags=["debug"])


@router.get("/geocode-status", response_model=GeocodeStatusOut)
def geocode_status(
    reset: bool = Query(default=False),
    resolver: GeoResolver = Depends(get_resolver),
) -> GeocodeStatusOut:
    if reset:
        resolver.cache.clear()
    configured = resolver.geocoder is not None and bool(getattr(resolver.geocoder, "configured", True))
    return GeocodeStatusOut(
        geocoder_configured=configured,
        zip_table_size=len(resolver.zip_table),
        cache=resolver.cache.snapshot(),
    )


@router.get("/config")
def debug_config() -> dict[str, Any]:
    """
    Settings of the running process, secrets redacted.
    """
    def _redact(v: str | None) -> str | None:
        if not v:
            return v
        if len(v) <= 8:
            return "***"
        return v[:4] + "***" + v[-4:]

    return {
        "ENV": settings.ENV,
        "MATCH_DB_URL": settings.MATCH_DB_URL,
        "MATCH_MIN_SCORE": settings.MATCH_MIN_SCORE,
        "MAPBOX_ACCESS_TOKEN": _redact(settings.MAPBOX_ACCESS_TOKEN),
        "GEOCODE_BATCH_DELAY_S": settings.GEOCODE_BATCH_DELAY_S,
        "PIPELINE_SYNC_WEBHOOK_URL": settings.PIPELINE_SYNC_WEBHOOK_URL,
        "PIPELINE_SYNC_WEBHOOK_SECRET_SET": bool(settings.PIPELINE_SYNC_WEBHOOK_SECRET),
    }


@router.get("/routes")
def debug_routes(request: Request) -> dict[str, Any]:
    routes: list[str] = []
    for r in request.app.routes:
        methods = getattr(r, "methods", None)
        path = getattr(r, "path", None)
        if path:
            routes.append(f"{sorted(methods)} {path}" if methods else path)
    return {"count": len(routes), "routes": sorted(routes)}
