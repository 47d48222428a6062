"""
Great-circle distance and nearest-resource ranking.

Pure functions: nothing here mutates its inputs or keeps state. Callers are
responsible for passing valid coordinates; the schema layer range-checks
everything that arrives over the wire.
"""
import math
from typing import Any, Iterable, List, Optional, Tuple

from pydantic import BaseModel

EARTH_RADIUS_KM = 6371.0
DEFAULT_LIMIT = 5


def _round_km(value: float) -> float:
    # half-up to one decimal, so 0.05 reports as 0.1 rather than banker's 0.0
    return math.floor(value * 10 + 0.5) / 10


def _point(obj: Any) -> Tuple[float, float]:
    if isinstance(obj, (tuple, list)):
        return float(obj[0]), float(obj[1])
    if isinstance(obj, dict):
        lat = obj["latitude"] if "latitude" in obj else obj["lat"]
        lng = obj["longitude"] if "longitude" in obj else obj["lng"]
        return lat, lng
    if hasattr(obj, "latitude"):
        return obj.latitude, obj.longitude
    return obj.lat, obj.lng


def haversine_km(a, b) -> float:
    """Distance in km between two points, rounded to one decimal place.

    Points may be ``(lat, lng)`` tuples, dicts, or models exposing
    ``latitude``/``longitude`` or ``lat``/``lng``.
    """
    lat1, lng1 = _point(a)
    lat2, lng2 = _point(b)
    d_lat = math.radians(lat2 - lat1)
    d_lng = math.radians(lng2 - lng1)
    h = (
        math.sin(d_lat / 2) ** 2
        + math.cos(math.radians(lat1)) * math.cos(math.radians(lat2)) * math.sin(d_lng / 2) ** 2
    )
    c = 2 * math.atan2(math.sqrt(h), math.sqrt(1 - h))
    return _round_km(EARTH_RADIUS_KM * c)


def _with_distance(candidate: Any, distance: float) -> Any:
    if isinstance(candidate, BaseModel):
        return candidate.model_copy(update={"distance": distance})
    if isinstance(candidate, dict):
        return {**candidate, "distance": distance}
    raise TypeError(f"Cannot annotate {type(candidate).__name__} with a distance")


def _is_available(candidate: Any) -> bool:
    if isinstance(candidate, dict):
        return bool(candidate.get("available", False))
    return bool(getattr(candidate, "available", False))


def find_nearest(reference, candidates: Iterable[Any], limit: int = DEFAULT_LIMIT,
                 available_only: bool = False) -> List[Any]:
    """Return up to ``limit`` candidates nearest ``reference``, ascending by distance.

    Each returned item is a copy annotated with ``distance`` (km). ``sorted``
    is stable, so equal distances keep their input order.
    """
    pool = [c for c in candidates if not available_only or _is_available(c)]
    annotated = [_with_distance(c, haversine_km(reference, c)) for c in pool]
    ranked = sorted(annotated, key=lambda c: c["distance"] if isinstance(c, dict) else c.distance)
    return ranked[:max(limit, 0)]


def find_nearest_ambulances(reference, ambulances, limit: int = DEFAULT_LIMIT, available_only: bool = False):
    return find_nearest(reference, ambulances, limit, available_only)


def find_nearest_hospitals(reference, hospitals, limit: int = DEFAULT_LIMIT, available_only: bool = False):
    return find_nearest(reference, hospitals, limit, available_only)


def first_available(ranked: Iterable[Any]) -> Optional[Any]:
    return next((c for c in ranked if _is_available(c)), None)
