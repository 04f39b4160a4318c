"""Bearer-token authentication for the Spark API."""
from __future__ import annotations

from fastapi import HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from .sessions import SessionManager, UserSession


class SessionAuth:
    """Resolve ``Authorization: Bearer <token>`` to the caller's session."""

    def __init__(self, sessions: SessionManager):
        self._sessions = sessions
        self._bearer = HTTPBearer(auto_error=False)

    async def __call__(self, request: Request) -> UserSession:
        credentials: HTTPAuthorizationCredentials | None = await self._bearer(request)  # type: ignore[assignment]
        if credentials is None or credentials.scheme.lower() != "bearer":
            raise HTTPException(
                status_code=status.HTTP_401_UNAUTHORIZED,
                detail="Missing bearer token",
                headers={"WWW-Authenticate": "Bearer"},
            )

        session = self._sessions.resolve(credentials.credentials)
        if session is None:
            raise HTTPException(
                status_code=status.HTTP_401_UNAUTHORIZED,
                detail="Session expired or invalid. Please log in again.",
                headers={"WWW-Authenticate": "Bearer"},
            )
        return session


def bearer_token(request: Request) -> str | None:
    header = request.headers.get("authorization")
    if not header:
        return None
    parts = header.strip().split(" ", 1)
    if len(parts) != 2 or parts[0].lower() != "bearer":
        return None
    return parts[1].strip() or None


__all__ = ["SessionAuth", "bearer_token"]
