"""Nearby-parking ranking and the per-user refresh tracker."""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, replace
from typing import Iterable, List, Mapping, Optional, Tuple

from .geo import distance_between, element_coordinates
from .models import Coordinate, GeocodeResult, ParkingCandidate
from .places import PlacesClient, PlacesError

logger = logging.getLogger("spark.parking")

DEFAULT_RADIUS_M = 1000.0
MAX_RESULTS = 30


class RefreshFailed(RuntimeError):
    """The lookup failed; the previous result set is still in place."""


class LocationNotFound(LookupError):
    """A free-text search did not match any known place."""


def to_candidate(element: Mapping[str, object], origin: Optional[Coordinate] = None) -> Optional[ParkingCandidate]:
    """Shape an Overpass element into a :class:`ParkingCandidate`."""

    coordinate = element_coordinates(element)
    if coordinate is None:
        return None

    tags = element.get("tags")
    if not isinstance(tags, Mapping):
        tags = {}
    name = str(tags.get("name") or "").strip()
    if not name:
        ref = str(tags.get("ref") or "").strip()
        name = f"Parking {ref}" if ref else "Parking"

    element_type = str(element.get("type") or "node")
    candidate = ParkingCandidate(
        id=f"{element_type}/{element.get('id')}",
        name=name,
        latitude=coordinate.latitude,
        longitude=coordinate.longitude,
    )
    if origin is not None:
        candidate = replace(candidate, distance=distance_between(origin, coordinate))
    return candidate


def rank_nearby(
    candidates: Iterable[ParkingCandidate],
    origin: Coordinate,
    radius: float = DEFAULT_RADIUS_M,
    limit: int = MAX_RESULTS,
) -> List[ParkingCandidate]:
    """Return candidates within ``radius`` of ``origin``, closest first, at most ``limit``."""

    ranked = []
    for candidate in candidates:
        distance = distance_between(origin, candidate.coordinate)
        if distance <= radius:
            ranked.append(replace(candidate, distance=distance))
    ranked.sort(key=lambda candidate: candidate.distance)
    return ranked[:limit]


def filter_by_name(candidates: Iterable[ParkingCandidate], text: str) -> List[ParkingCandidate]:
    needle = (text or "").strip().lower()
    if not needle:
        return list(candidates)
    return [candidate for candidate in candidates if needle in candidate.name.lower()]


@dataclass(frozen=True)
class RefreshResult:
    candidates: Tuple[ParkingCandidate, ...]
    origin: Optional[Coordinate]
    generation: int
    stale: bool = False
    place: Optional[GeocodeResult] = None


class NearbyParkingTracker:
    """Keep the latest parking result set for one user.

    Refreshes can overlap when location updates and searches arrive close
    together. Each refresh takes a generation number when it starts and its
    results are discarded if a newer refresh has already been applied.
    """

    def __init__(
        self,
        places: PlacesClient,
        *,
        radius: float = DEFAULT_RADIUS_M,
        limit: int = MAX_RESULTS,
    ) -> None:
        if radius <= 0:
            raise ValueError("radius must be positive")
        if limit < 1:
            raise ValueError("limit must be at least 1")
        self._places = places
        self._radius = radius
        self._limit = limit
        self._lock = threading.Lock()
        self._issued = 0
        self._applied = 0
        self._results: Tuple[ParkingCandidate, ...] = ()
        self._origin: Optional[Coordinate] = None

    @property
    def results(self) -> Tuple[ParkingCandidate, ...]:
        with self._lock:
            return self._results

    @property
    def origin(self) -> Optional[Coordinate]:
        with self._lock:
            return self._origin

    @property
    def generation(self) -> int:
        with self._lock:
            return self._applied

    def snapshot(self) -> RefreshResult:
        with self._lock:
            return RefreshResult(self._results, self._origin, self._applied)

    def refresh(self, lat: float, lon: float, radius: Optional[float] = None) -> RefreshResult:
        radius = self._radius if radius is None else radius
        generation = self._begin()
        try:
            elements = self._places.find_parking(lat, lon, radius)
        except PlacesError as exc:
            logger.warning("Parking refresh %d failed: %s", generation, exc)
            raise RefreshFailed(str(exc)) from exc

        origin = Coordinate(lat, lon)
        shaped = [candidate for candidate in (to_candidate(element) for element in elements) if candidate]
        ranked = rank_nearby(shaped, origin, radius, self._limit)
        return self._apply(generation, origin, ranked)

    def search(self, query: str, radius: Optional[float] = None) -> RefreshResult:
        try:
            place = self._places.geocode(query)
        except PlacesError as exc:
            logger.warning("Geocoding %r failed: %s", query, exc)
            raise RefreshFailed(str(exc)) from exc
        if place is None:
            raise LocationNotFound(f"No place found matching '{query.strip()}'")

        result = self.refresh(place.latitude, place.longitude, radius)
        return replace(result, place=place)

    def _begin(self) -> int:
        with self._lock:
            self._issued += 1
            return self._issued

    def _apply(self, generation: int, origin: Coordinate, ranked: List[ParkingCandidate]) -> RefreshResult:
        with self._lock:
            if generation < self._applied:
                logger.debug("Discarding stale parking refresh %d (current %d)", generation, self._applied)
                return RefreshResult(self._results, self._origin, self._applied, stale=True)
            self._applied = generation
            self._results = tuple(ranked)
            self._origin = origin
            return RefreshResult(self._results, origin, generation)


__all__ = [
    "DEFAULT_RADIUS_M",
    "LocationNotFound",
    "MAX_RESULTS",
    "NearbyParkingTracker",
    "RefreshFailed",
    "RefreshResult",
    "filter_by_name",
    "rank_nearby",
    "to_candidate",
]
