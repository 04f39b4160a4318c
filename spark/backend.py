"""Client for the hosted auth and table backend (GoTrue + PostgREST)."""

from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from typing import Dict, Mapping, Optional, Sequence, Tuple

import httpx

from .config import SparkConfig
from .models import AuthSession

logger = logging.getLogger("spark.backend")


class BackendError(RuntimeError):
    """Raised when the hosted backend rejects a request or cannot be reached."""

    def __init__(self, message: str, *, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


def _normalize_base_url(base_url: str) -> str:
    cleaned = (base_url or "").strip()
    if not cleaned:
        raise ValueError("Backend URL must not be empty")
    return cleaned.rstrip("/")


def _extract_error_message(payload: object, default: str) -> str:
    if isinstance(payload, dict):
        for key in ("msg", "message", "error_description", "error"):
            value = payload.get(key)
            if isinstance(value, str) and value.strip():
                return value.strip()
    if isinstance(payload, str) and payload.strip():
        return payload.strip()
    return default


def _session_from_payload(payload: Mapping[str, object]) -> AuthSession:
    user = payload.get("user")
    if not isinstance(user, Mapping):
        raise BackendError("Backend response did not include a user")
    access_token = payload.get("access_token")
    if not isinstance(access_token, str) or not access_token:
        raise BackendError("Backend response did not include an access token")

    expires_at: Optional[datetime] = None
    expires_in = payload.get("expires_in")
    if isinstance(expires_in, (int, float)):
        expires_at = datetime.now(timezone.utc) + timedelta(seconds=float(expires_in))

    refresh_token = payload.get("refresh_token")
    email = user.get("email")
    return AuthSession(
        access_token=access_token,
        refresh_token=str(refresh_token) if refresh_token else None,
        user_id=str(user.get("id")),
        email=str(email) if email else None,
        expires_at=expires_at,
    )


class BackendClient:
    """Thin wrapper around the hosted backend's REST endpoints."""

    def __init__(
        self,
        base_url: str,
        api_key: str,
        *,
        timeout: float = 10.0,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        self._base_url = _normalize_base_url(base_url)
        self._api_key = (api_key or "").strip()
        if not self._api_key:
            raise ValueError("Backend API key must not be empty")
        self._client = httpx.Client(
            base_url=self._base_url,
            timeout=timeout,
            headers={"apikey": self._api_key},
            transport=transport,
        )

    @classmethod
    def from_config(cls, config: SparkConfig, *, transport: httpx.BaseTransport | None = None) -> "BackendClient":
        return cls(config.backend_url, config.backend_key, timeout=config.http_timeout, transport=transport)

    def close(self) -> None:
        self._client.close()

    # ------------------------------------------------------------------
    # Auth
    # ------------------------------------------------------------------
    def sign_up(self, email: str, password: str) -> Tuple[Dict[str, object], Optional[str]]:
        """Register a new account.

        Returns the created user record and, when the backend signs the user in
        straight away, the access token of that session (``None`` while the
        address still awaits confirmation).
        """

        payload = self._request("POST", "/auth/v1/signup", json={"email": email, "password": password})
        if not isinstance(payload, dict):
            raise BackendError("Backend returned an unexpected sign-up response")
        access_token = payload.get("access_token")
        token = access_token if isinstance(access_token, str) and access_token else None
        user = payload.get("user")
        if isinstance(user, dict):
            return user, token
        return payload, token

    def refresh_session(self, refresh_token: str) -> AuthSession:
        payload = self._request(
            "POST",
            "/auth/v1/token",
            params={"grant_type": "refresh_token"},
            json={"refresh_token": refresh_token},
        )
        if not isinstance(payload, dict):
            raise BackendError("Backend returned an unexpected refresh response")
        return _session_from_payload(payload)

    def sign_in(self, email: str, password: str) -> AuthSession:
        payload = self._request(
            "POST",
            "/auth/v1/token",
            params={"grant_type": "password"},
            json={"email": email, "password": password},
        )
        if not isinstance(payload, dict):
            raise BackendError("Backend returned an unexpected sign-in response")
        return _session_from_payload(payload)

    def reset_password_for_email(self, email: str, redirect_to: str | None = None) -> None:
        params = {"redirect_to": redirect_to} if redirect_to else None
        self._request("POST", "/auth/v1/recover", params=params, json={"email": email})

    def update_password(self, access_token: str, password: str) -> None:
        self._request("PUT", "/auth/v1/user", access_token=access_token, json={"password": password})

    def sign_out(self, access_token: str) -> None:
        self._request("POST", "/auth/v1/logout", access_token=access_token)

    # ------------------------------------------------------------------
    # Tables
    # ------------------------------------------------------------------
    def insert(
        self,
        table: str,
        rows: Sequence[Mapping[str, object]],
        *,
        access_token: str | None = None,
    ) -> None:
        if not rows:
            raise ValueError("At least one row must be provided")
        self._request(
            "POST",
            f"/rest/v1/{table}",
            access_token=access_token,
            json=[dict(row) for row in rows],
            headers={"Prefer": "return=minimal"},
        )

    def upsert(
        self,
        table: str,
        row: Mapping[str, object],
        *,
        on_conflict: Sequence[str],
        access_token: str | None = None,
    ) -> None:
        if not on_conflict:
            raise ValueError("Upsert requires at least one conflict column")
        self._request(
            "POST",
            f"/rest/v1/{table}",
            access_token=access_token,
            params={"on_conflict": ",".join(on_conflict)},
            json=[dict(row)],
            headers={"Prefer": "resolution=merge-duplicates,return=minimal"},
        )

    def _request(
        self,
        method: str,
        path: str,
        *,
        access_token: str | None = None,
        headers: Dict[str, str] | None = None,
        **kwargs: object,
    ) -> object:
        request_headers: Dict[str, str] = dict(headers or {})
        request_headers["Authorization"] = f"Bearer {access_token or self._api_key}"

        try:
            response = self._client.request(method, path, headers=request_headers, **kwargs)  # type: ignore[arg-type]
        except httpx.TimeoutException as exc:
            logger.warning("Timed out calling backend %s %s", method, path)
            raise BackendError("The account service took too long to respond.") from exc
        except httpx.RequestError as exc:
            logger.warning("Failed to contact backend %s %s: %s", method, path, exc)
            raise BackendError("Unable to reach the account service.") from exc

        if response.status_code >= 400:
            try:
                parsed: object = response.json()
            except ValueError:
                parsed = response.text
            message = _extract_error_message(
                parsed, f"Backend request failed with status {response.status_code}"
            )
            logger.info("Backend %s %s rejected with %s: %s", method, path, response.status_code, message)
            raise BackendError(message, status_code=response.status_code)

        if not response.content:
            return None
        try:
            return response.json()
        except ValueError as exc:
            raise BackendError("Backend returned an invalid response") from exc


__all__ = ["BackendClient", "BackendError"]
