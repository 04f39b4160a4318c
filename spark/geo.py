"""Great-circle distance and walking-time helpers."""

from __future__ import annotations

import math
from typing import Mapping, Optional, Sequence

from .models import Coordinate

EARTH_RADIUS_M = 6_371_000.0
DEFAULT_WALKING_SPEED_MPS = 5.0


def haversine_distance(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """Return the distance in meters between two points given in degrees."""

    d_lat = math.radians(lat2 - lat1)
    d_lon = math.radians(lon2 - lon1)
    a = (
        math.sin(d_lat / 2) ** 2
        + math.cos(math.radians(lat1))
        * math.cos(math.radians(lat2))
        * math.sin(d_lon / 2) ** 2
    )
    c = 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))
    return EARTH_RADIUS_M * c


def distance_between(origin: Coordinate, target: Coordinate) -> float:
    return haversine_distance(origin.latitude, origin.longitude, target.latitude, target.longitude)


def estimate_minutes(distance_m: float, speed_mps: float = DEFAULT_WALKING_SPEED_MPS) -> int:
    """Whole minutes needed to cover ``distance_m`` at ``speed_mps``, rounded up."""

    minutes = math.ceil(distance_m / speed_mps / 60)
    if distance_m > 0:
        return max(1, minutes)
    return minutes


def _centroid(points: Sequence[Mapping[str, object]]) -> Optional[Coordinate]:
    lats = []
    lons = []
    for point in points:
        lat = point.get("lat")
        lon = point.get("lon")
        if lat is None or lon is None:
            continue
        lats.append(float(lat))  # type: ignore[arg-type]
        lons.append(float(lon))  # type: ignore[arg-type]
    if not lats:
        return None
    return Coordinate(sum(lats) / len(lats), sum(lons) / len(lons))


def element_coordinates(element: Mapping[str, object]) -> Optional[Coordinate]:
    """Resolve an OSM element to a single coordinate.

    Nodes carry ``lat``/``lon`` directly. Ways and relations queried with
    ``out center`` carry a ``center`` object, and ``out geom`` results carry a
    ``geometry`` vertex list whose centroid is used instead.
    """

    lat = element.get("lat")
    lon = element.get("lon")
    if lat is not None and lon is not None:
        return Coordinate(float(lat), float(lon))  # type: ignore[arg-type]

    center = element.get("center")
    if isinstance(center, Mapping):
        lat = center.get("lat")
        lon = center.get("lon")
        if lat is not None and lon is not None:
            return Coordinate(float(lat), float(lon))  # type: ignore[arg-type]

    geometry = element.get("geometry")
    if isinstance(geometry, list):
        return _centroid([point for point in geometry if isinstance(point, Mapping)])

    return None


__all__ = [
    "DEFAULT_WALKING_SPEED_MPS",
    "EARTH_RADIUS_M",
    "distance_between",
    "element_coordinates",
    "estimate_minutes",
    "haversine_distance",
]
