"""Geodesy helpers used by the geofence.

Coordinates are plain WGS84 degrees. Distances are meters on a sphere of
mean Earth radius, which is accurate to well under a percent at the scale of
an event venue.
"""
from __future__ import annotations
import math
import re
from dataclasses import dataclass

EARTH_RADIUS_M = 6_371_000.0

_LAT_LNG_RE = re.compile(r"^-?\d+\.?\d*,-?\d+\.?\d*$")


@dataclass(frozen=True)
class Coordinates:
    lat: float
    lng: float


def haversine_m(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """Great-circle distance in meters between two points."""
    phi1, phi2 = math.radians(lat1), math.radians(lat2)
    dphi = math.radians(lat2 - lat1)
    dlam = math.radians(lon2 - lon1)
    a = math.sin(dphi / 2) ** 2 + math.cos(phi1) * math.cos(phi2) * math.sin(dlam / 2) ** 2
    return EARTH_RADIUS_M * 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))


def is_valid_lat_lng(lat: object, lng: object) -> bool:
    """True for real, finite numbers inside [-90, 90] x [-180, 180].

    bool is an int subclass and is rejected explicitly.
    """
    for v in (lat, lng):
        if isinstance(v, bool) or not isinstance(v, (int, float)):
            return False
        if not math.isfinite(v):
            return False
    return -90 <= lat <= 90 and -180 <= lng <= 180


def parse_coordinate_text(text: str | None) -> Coordinates | None:
    """Parse a literal ``"lat,lng"`` string; None if it is anything else."""
    if not text or not isinstance(text, str):
        return None
    trimmed = text.strip()
    if not _LAT_LNG_RE.match(trimmed):
        return None
    lat_s, lng_s = trimmed.split(",")
    lat, lng = float(lat_s), float(lng_s)
    if not is_valid_lat_lng(lat, lng):
        return None
    return Coordinates(lat=lat, lng=lng)
