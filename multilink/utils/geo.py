import math
from typing import Optional

EARTH_RADIUS_M = 6_371_000.0


def haversine_m(lat1: float, lng1: float, lat2: float, lng2: float) -> float:
    """Great-circle distance in meters between two lat/lng points."""
    phi1 = math.radians(lat1)
    phi2 = math.radians(lat2)
    d_phi = math.radians(lat2 - lat1)
    d_lambda = math.radians(lng2 - lng1)

    a = math.sin(d_phi / 2.0) ** 2 + math.cos(phi1) * math.cos(phi2) * math.sin(d_lambda / 2.0) ** 2
    c = 2.0 * math.atan2(math.sqrt(a), math.sqrt(1.0 - a))
    return EARTH_RADIUS_M * c


def route_distance_m(
    start_lat: Optional[float],
    start_lng: Optional[float],
    end_lat: Optional[float],
    end_lng: Optional[float],
) -> Optional[float]:
    # A latitude of exactly 0.0 is treated as "not resolved yet"
    if not start_lat or not end_lat or start_lng is None or end_lng is None:
        return None
    return haversine_m(start_lat, start_lng, end_lat, end_lng)


def format_distance(meters: Optional[float]) -> str:
    if meters is None:
        return "N/A"
    if meters >= 1000:
        return f"{meters / 1000:.1f} km"
    return f"{meters:.0f} m"


def speed_mps(
    prev_lat: float,
    prev_lng: float,
    prev_ms: int,
    lat: float,
    lng: float,
    at_ms: int,
) -> float:
    """Average speed between two fixes; 0.0 when it can't be derived."""
    elapsed = (at_ms - prev_ms) / 1000.0
    if prev_ms <= 0 or elapsed <= 0 or (prev_lat == 0.0 and prev_lng == 0.0):
        return 0.0
    return haversine_m(prev_lat, prev_lng, lat, lng) / elapsed
