# buyermatch/domain/zipcodes.py
from __future__ import annotations

import re
from typing import Any, Iterable

from .types import Coordinates

_ZIP_RE = re.compile(r"\b\d{5}\b")
_ZIP_EXACT_RE = re.compile(r"^\d{5}$")
_ZIP_LOOSE_RE = re.compile(r"^\s*\d{5}(?:-\d{4})?\s*$")

# Static lookup: major-city sample set + Phoenix metro (Phoenix, Scottsdale, Mesa,
# Tempe, Gilbert, Chandler, Glendale, Peoria). Misses fall back to the geocoder.
_RAW_ZIP_COORDINATES: dict[str, tuple[float, float]] = {
    "10001": (40.7506, -73.9971),
    "90001": (33.9731, -118.2479),
    "60601": (41.8858, -87.6234),
    "77001": (29.7604, -95.3698),
    "19019": (39.9526, -75.1652),
    "78201": (29.4241, -98.4936),
    "92101": (32.7157, -117.1611),
    "75201": (32.7767, -96.7970),
    "95101": (37.3382, -121.8863),
    "85001": (33.4484, -112.0740),
    "85003": (33.4500, -112.0733),
    "85004": (33.4483, -112.0713),
    "85006": (33.4652, -112.0503),
    "85007": (33.4519, -112.0950),
    "85008": (33.4669, -112.0436),
    "85013": (33.5053, -112.0739),
    "85014": (33.5095, -112.0448),
    "85015": (33.5053, -112.1017),
    "85016": (33.5095, -111.9989),
    "85020": (33.5795, -112.0314),
    "85028": (33.6331, -112.0292),
    "85032": (33.6331, -112.0031),
    "85050": (33.6795, -111.9714),
    "85250": (33.4942, -111.9261),
    "85251": (33.4942, -111.9261),
    "85254": (33.6331, -111.8992),
    "85255": (33.7181, -111.8875),
    "85257": (33.4942, -111.8714),
    "85201": (33.4152, -111.8315),
    "85202": (33.4255, -111.8167),
    "85203": (33.4269, -111.7539),
    "85204": (33.3895, -111.7539),
    "85205": (33.3895, -111.7219),
    "85206": (33.3789, -111.6772),
    "85281": (33.4255, -111.9400),
    "85282": (33.3895, -111.9089),
    "85283": (33.3789, -111.8950),
    "85284": (33.3628, -111.9400),
    "85233": (33.3528, -111.7890),
    "85234": (33.3106, -111.7481),
    "85295": (33.2728, -111.7481),
    "85296": (33.2728, -111.6772),
    "85224": (33.3062, -111.8413),
    "85225": (33.2728, -111.8717),
    "85226": (33.2439, -111.8950),
    "85286": (33.2439, -111.7219),
    "85301": (33.5387, -112.1859),
    "85302": (33.5795, -112.2231),
    "85303": (33.6331, -112.2450),
    "85304": (33.6795, -112.1859),
    "85345": (33.5795, -112.2450),
    "85381": (33.6331, -112.2859),
    "85382": (33.6795, -112.2450),
    "85383": (33.7181, -112.2859),
}

ZIP_COORDINATES: dict[str, Coordinates] = {
    z: Coordinates(lat, lng) for z, (lat, lng) in _RAW_ZIP_COORDINATES.items()
}


def normalize_zip(zip_code: str) -> str:
    """Strip spaces/dashes and keep the 5-digit prefix ("85001-1234" -> "85001")."""
    return re.sub(r"[\s-]", "", zip_code)[:5]


def is_valid_zip(zip_code: str) -> bool:
    return bool(_ZIP_EXACT_RE.match(zip_code or ""))


def looks_like_zip(location: str) -> bool:
    """True for "85001" and ZIP+4 forms."""
    return bool(_ZIP_LOOSE_RE.match(location or ""))


def extract_zip(address: str | None) -> str | None:
    if not address:
        return None
    m = _ZIP_RE.search(address)
    return m.group(0) if m else None


def zip_coordinates(zip_code: str) -> Coordinates | None:
    return ZIP_COORDINATES.get(normalize_zip(re.sub(r"\D", "", zip_code or "")))


def parse_zip_list(raw: Any) -> tuple[str, ...]:
    """
    Preferred ZIPs arrive either as a list or as a comma-separated string.
    """
    if raw is None:
        return ()
    items: Iterable[Any]
    if isinstance(raw, str):
        items = raw.split(",")
    else:
        items = raw
    out: list[str] = []
    for item in items:
        z = normalize_zip(str(item).strip())
        if is_valid_zip(z) and z not in out:
            out.append(z)
    return tuple(out)


def in_preferred_zip(
    property_zip: str | None,
    property_address: str | None,
    preferred: Iterable[str],
) -> bool:
    """
    Dedicated ZIP field first, address extraction as fallback.
    """
    preferred_set = set(preferred)
    if not preferred_set:
        return False
    z = normalize_zip(property_zip) if property_zip else extract_zip(property_address)
    return bool(z) and z in preferred_set
