"""
Geometry kernel: great-circle distance, bearings, projection, turn angles, polyline codec.
Pure functions. Malformed input (NaN, empty sequences) yields 0 / empty results instead of raising.
"""

import math
from typing import Iterable, List, Optional, Sequence

import polyline
from geopy.distance import great_circle

from .models import Coordinate

EARTH_RADIUS_KM = 6371.0
EARTH_RADIUS_M = EARTH_RADIUS_KM * 1000.0


def _finite(*values: float) -> bool:
    try:
        return all(math.isfinite(v) for v in values)
    except TypeError:
        return False


def haversine_m(p1: Coordinate, p2: Coordinate) -> float:
    """Great-circle distance in meters."""
    if not _finite(p1.lat, p1.lng, p2.lat, p2.lng):
        return 0.0
    phi1, phi2 = math.radians(p1.lat), math.radians(p2.lat)
    dphi = math.radians(p2.lat - p1.lat)
    dlam = math.radians(p2.lng - p1.lng)
    a = math.sin(dphi / 2) ** 2 + math.cos(phi1) * math.cos(phi2) * math.sin(dlam / 2) ** 2
    return EARTH_RADIUS_M * 2 * math.atan2(math.sqrt(a), math.sqrt(max(0.0, 1 - a)))


def haversine_km(p1: Coordinate, p2: Coordinate) -> float:
    return haversine_m(p1, p2) / 1000.0


def path_length_m(points: Sequence[Coordinate]) -> float:
    """Total distance in meters along consecutive points."""
    if len(points) < 2:
        return 0.0
    return sum(haversine_m(points[i], points[i + 1]) for i in range(len(points) - 1))


def cumulative_distances_m(points: Sequence[Coordinate]) -> List[float]:
    out = [0.0] * len(points)
    for i in range(1, len(points)):
        out[i] = out[i - 1] + haversine_m(points[i - 1], points[i])
    return out


def bearing_deg(p1: Coordinate, p2: Coordinate) -> float:
    """Initial bearing from p1 to p2, normalized to [0, 360)."""
    if not _finite(p1.lat, p1.lng, p2.lat, p2.lng):
        return 0.0
    phi1, phi2 = math.radians(p1.lat), math.radians(p2.lat)
    dlam = math.radians(p2.lng - p1.lng)
    y = math.sin(dlam) * math.cos(phi2)
    x = math.cos(phi1) * math.sin(phi2) - math.sin(phi1) * math.cos(phi2) * math.cos(dlam)
    return (math.degrees(math.atan2(y, x)) + 360.0) % 360.0


def angle_between(p1: Coordinate, p2: Coordinate, p3: Coordinate) -> float:
    """Turn angle at p2: 0 = straight on, 180 = exact reversal."""
    angle = abs(bearing_deg(p2, p3) - bearing_deg(p1, p2))
    if angle > 180.0:
        angle = 360.0 - angle
    return angle


def project(origin: Coordinate, bearing: float, distance_km: float) -> Coordinate:
    """Destination reached from origin after distance_km along bearing (spherical earth)."""
    if not _finite(origin.lat, origin.lng, bearing, distance_km):
        return origin
    dest = great_circle(kilometers=distance_km, radius=EARTH_RADIUS_KM).destination(
        point=(origin.lat, origin.lng), bearing=bearing
    )
    return Coordinate(dest.latitude, dest.longitude)


def scale_from(origin: Coordinate, point: Coordinate, scale: float) -> Coordinate:
    """Move point along its offset from origin: origin + (point - origin) * scale."""
    return Coordinate(
        origin.lat + (point.lat - origin.lat) * scale,
        origin.lng + (point.lng - origin.lng) * scale,
    )


def encode_polyline(points: Iterable[Coordinate]) -> str:
    """Google-style polyline (5 decimal precision)."""
    pairs = [(p.lat, p.lng) for p in points if _finite(p.lat, p.lng)]
    if not pairs:
        return ""
    return polyline.encode(pairs, 5)


def decode_polyline(encoded: str) -> List[Coordinate]:
    """Inverse of encode_polyline. Malformed input decodes to an empty list."""
    if not encoded:
        return []
    try:
        return [Coordinate(lat, lng) for lat, lng in polyline.decode(encoded, 5)]
    except (IndexError, ValueError, TypeError):
        return []


def grid_cell(point: Coordinate, grid_deg: float) -> Optional[tuple]:
    """Integer grid cell of a point, or None when the point is not finite."""
    if not _finite(point.lat, point.lng):
        return None
    return (round(point.lat / grid_deg), round(point.lng / grid_deg))
