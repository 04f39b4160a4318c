"""In-memory session handling for signed-in Spark users."""

from __future__ import annotations

import secrets
import threading
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Callable, Dict, Optional

from .location import LocationWatcher, Subscription
from .models import AuthSession, Coordinate
from .parking import NearbyParkingTracker


@dataclass
class UserSession:
    """Per-user state: hosted tokens, the parking result set and the position stream."""

    auth: AuthSession
    tracker: NearbyParkingTracker
    watcher: LocationWatcher
    subscription: Optional[Subscription] = None

    @property
    def user_id(self) -> str:
        return self.auth.user_id

    def close(self) -> None:
        if self.subscription is not None:
            self.subscription.remove()
            self.subscription = None


@dataclass
class _SessionRecord:
    session: UserSession
    expires_at: datetime


class SessionManager:
    """Generate, validate, and revoke API sessions."""

    def __init__(
        self,
        tracker_factory: Callable[[], NearbyParkingTracker],
        *,
        ttl: timedelta = timedelta(hours=8),
        min_distance: float = 10.0,
    ) -> None:
        self._tracker_factory = tracker_factory
        self._ttl = ttl
        self._min_distance = min_distance
        self._sessions: Dict[str, _SessionRecord] = {}
        self._lock = threading.Lock()

    @property
    def ttl(self) -> timedelta:
        return self._ttl

    def create(self, auth: AuthSession) -> str:
        tracker = self._tracker_factory()
        watcher = LocationWatcher(min_distance=self._min_distance)

        def _on_position(position: Coordinate) -> None:
            tracker.refresh(position.latitude, position.longitude)

        session = UserSession(auth=auth, tracker=tracker, watcher=watcher)
        session.subscription = watcher.subscribe(_on_position)

        token = secrets.token_urlsafe(32)
        now = self._now()
        record = _SessionRecord(session=session, expires_at=now + self._ttl)
        with self._lock:
            expired = [key for key, existing in self._sessions.items() if existing.expires_at <= now]
            stale = [self._sessions.pop(key).session for key in expired]
            self._sessions[token] = record
        for old in stale:
            old.close()
        return token

    def resolve(self, token: str) -> Optional[UserSession]:
        now = self._now()
        with self._lock:
            record = self._sessions.get(token)
            if record is None:
                return None
            if record.expires_at <= now:
                self._sessions.pop(token, None)
                expired = record.session
            else:
                record.expires_at = now + self._ttl
                return record.session
        expired.close()
        return None

    def destroy(self, token: str) -> Optional[UserSession]:
        with self._lock:
            record = self._sessions.pop(token, None)
        if record is None:
            return None
        record.session.close()
        return record.session

    def __len__(self) -> int:
        with self._lock:
            return len(self._sessions)

    def _now(self) -> datetime:
        return datetime.now(timezone.utc)


__all__ = ["SessionManager", "UserSession"]
