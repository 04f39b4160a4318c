"""Writes for saved parking spots and parking history."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Dict, Optional

from .backend import BackendClient
from .models import AuthSession, ParkingCandidate

SAVED_SPOTS_TABLE = "saved_parking_spots"
HISTORY_TABLE = "parking_history"


def _timestamp(now: Optional[datetime] = None) -> str:
    return (now or datetime.now(timezone.utc)).isoformat()


def _spot_row(session: AuthSession, spot: ParkingCandidate) -> Dict[str, object]:
    return {
        "user_id": session.user_id,
        "parking_id": spot.id,
        "name": spot.name,
        "latitude": spot.latitude,
        "longitude": spot.longitude,
    }


def save_parking_spot(
    backend: BackendClient,
    session: AuthSession,
    spot: ParkingCandidate,
    *,
    now: Optional[datetime] = None,
) -> Dict[str, object]:
    row = _spot_row(session, spot)
    row["saved_at"] = _timestamp(now)
    backend.upsert(
        SAVED_SPOTS_TABLE,
        row,
        on_conflict=("user_id", "parking_id"),
        access_token=session.access_token,
    )
    return row


def add_parking_history(
    backend: BackendClient,
    session: AuthSession,
    spot: ParkingCandidate,
    *,
    now: Optional[datetime] = None,
) -> Dict[str, object]:
    row = _spot_row(session, spot)
    row["parked_at"] = _timestamp(now)
    backend.insert(HISTORY_TABLE, [row], access_token=session.access_token)
    return row


__all__ = ["HISTORY_TABLE", "SAVED_SPOTS_TABLE", "add_parking_history", "save_parking_spot"]
