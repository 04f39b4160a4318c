"""Position stream fed by the client device."""

from __future__ import annotations

import threading
from typing import Callable, Dict, Optional

from .geo import distance_between
from .models import Coordinate

LocationCallback = Callable[[Coordinate], None]


class LocationPermissionError(PermissionError):
    """The device reported that location access was denied."""

    def __init__(self, message: str = "Location permission is required to find nearby parking.") -> None:
        super().__init__(message)


class Subscription:
    """Handle returned by :meth:`LocationWatcher.subscribe`."""

    def __init__(self, watcher: "LocationWatcher", key: int) -> None:
        self._watcher = watcher
        self._key = key

    @property
    def active(self) -> bool:
        return self._watcher._has(self._key)

    def remove(self) -> None:
        self._watcher._remove(self._key)


class LocationWatcher:
    """Deliver positions to subscribers once they move at least ``min_distance`` meters."""

    def __init__(self, *, min_distance: float = 10.0) -> None:
        if min_distance < 0:
            raise ValueError("min_distance must not be negative")
        self._min_distance = min_distance
        self._lock = threading.Lock()
        self._callbacks: Dict[int, LocationCallback] = {}
        self._next_key = 0
        self._last: Optional[Coordinate] = None

    @property
    def last_position(self) -> Optional[Coordinate]:
        with self._lock:
            return self._last

    def subscribe(self, callback: LocationCallback) -> Subscription:
        with self._lock:
            self._next_key += 1
            key = self._next_key
            self._callbacks[key] = callback
        return Subscription(self, key)

    def push(self, position: Coordinate) -> bool:
        """Record ``position``; return ``True`` when it was delivered to subscribers."""

        with self._lock:
            if self._last is not None and distance_between(self._last, position) < self._min_distance:
                return False
            callbacks = list(self._callbacks.values())

        # The last position only advances once every subscriber accepted it.
        for callback in callbacks:
            callback(position)
        with self._lock:
            self._last = position
        return True

    def _has(self, key: int) -> bool:
        with self._lock:
            return key in self._callbacks

    def _remove(self, key: int) -> None:
        with self._lock:
            self._callbacks.pop(key, None)


__all__ = ["LocationCallback", "LocationPermissionError", "LocationWatcher", "Subscription"]
