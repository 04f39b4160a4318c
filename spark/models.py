"""Domain records shared by the parking lookup and the account flows."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Optional


@dataclass(frozen=True)
class Coordinate:
    latitude: float
    longitude: float


@dataclass(frozen=True)
class ParkingCandidate:
    """A parking lot ranked against the user's current position."""

    id: str
    name: str
    latitude: float
    longitude: float
    distance: float = 0.0

    @property
    def coordinate(self) -> Coordinate:
        return Coordinate(self.latitude, self.longitude)


@dataclass(frozen=True)
class GeocodeResult:
    display_name: str
    latitude: float
    longitude: float


@dataclass(frozen=True)
class UserAccount:
    """Represents the profile row mirrored into the hosted ``users`` table."""

    id: str
    full_name: str
    email: str


@dataclass(frozen=True)
class AuthSession:
    """Tokens issued by the hosted auth provider for a signed-in user."""

    access_token: str
    user_id: str
    email: Optional[str]
    refresh_token: Optional[str] = None
    expires_at: Optional[datetime] = None


__all__ = ["AuthSession", "Coordinate", "GeocodeResult", "ParkingCandidate", "UserAccount"]
