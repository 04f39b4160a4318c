"""Sign-up, sign-in and password flows against the hosted auth provider."""

from __future__ import annotations

import logging
import re
from datetime import datetime, timedelta, timezone
from typing import Dict, Mapping, Optional

from .backend import BackendClient, BackendError
from .models import AuthSession, UserAccount

logger = logging.getLogger("spark.accounts")

USERS_TABLE = "users"

_EMAIL_PATTERN = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")
_PASSWORD_PATTERN = re.compile(
    r"^(?=.*[a-z])(?=.*[A-Z])(?=.*\d)(?=.*[@$!%*?&])[A-Za-z\d@$!%*?&]{8,}$"
)

EMAIL_MESSAGE = "Please enter a valid email address."
PASSWORD_MESSAGE = "Password must be 8+ chars, include upper, lower, number & special char."
MISMATCH_MESSAGE = "Passwords do not match."
EXPIRED_MESSAGE = "Your session has expired. Please sign in again."

# Access tokens are renewed this long before the expiry the backend reported.
TOKEN_REFRESH_MARGIN = timedelta(seconds=60)


class ValidationError(ValueError):
    """One or more form fields failed validation."""

    def __init__(self, errors: Mapping[str, str]) -> None:
        self.errors: Dict[str, str] = dict(errors)
        super().__init__("; ".join(self.errors.values()))


class AccountError(RuntimeError):
    """The hosted backend accepted the request but the flow could not complete."""


def sanitize_email(email: str) -> str:
    return (email or "").strip().lower()


def is_valid_email(email: str) -> bool:
    return bool(_EMAIL_PATTERN.match((email or "").strip()))


def is_valid_password(password: str) -> bool:
    return bool(_PASSWORD_PATTERN.match(password or ""))


def mask_email(email: str) -> str:
    """Hide the middle of the local part, e.g. ``jo****hn@example.com``."""

    local, _, domain = sanitize_email(email).partition("@")
    return f"{local[:2]}****{local[-2:]}@{domain}"


def validate_credentials(
    email: str,
    password: str,
    *,
    confirm: Optional[str] = None,
    full_name: Optional[str] = None,
    check_strength: bool = True,
) -> None:
    errors: Dict[str, str] = {}
    if full_name is not None and not full_name.strip():
        errors["full_name"] = "Please enter your full name."
    if not is_valid_email(email):
        errors["email"] = EMAIL_MESSAGE
    if not password:
        errors["password"] = "Please enter your password."
    elif check_strength and not is_valid_password(password):
        errors["password"] = PASSWORD_MESSAGE
    if confirm is not None and confirm != password:
        errors["confirm_password"] = MISMATCH_MESSAGE
    if errors:
        raise ValidationError(errors)


class AccountService:
    """Account operations composed from hosted auth calls and table writes."""

    def __init__(self, backend: BackendClient, *, reset_redirect: Optional[str] = None) -> None:
        self._backend = backend
        self._reset_redirect = reset_redirect

    def sign_up(self, full_name: str, email: str, password: str, confirm: str) -> UserAccount:
        sanitized_name = (full_name or "").strip()
        sanitized_email = sanitize_email(email)
        validate_credentials(sanitized_email, password, confirm=confirm, full_name=sanitized_name)

        user, access_token = self._backend.sign_up(sanitized_email, password)
        user_id = user.get("id")
        if not user_id:
            raise AccountError("No user ID returned from the backend.")

        account = UserAccount(id=str(user_id), full_name=sanitized_name, email=sanitized_email)
        self._backend.insert(
            USERS_TABLE,
            [{"user_id": account.id, "full_name": account.full_name, "email": account.email}],
            access_token=access_token,
        )
        logger.info("Created account %s", account.id)
        return account

    def sign_in(self, email: str, password: str) -> AuthSession:
        sanitized_email = sanitize_email(email)
        validate_credentials(sanitized_email, password, check_strength=False)
        session = self._backend.sign_in(sanitized_email, password)
        logger.info("User %s signed in", session.user_id)
        return session

    def request_password_reset(self, email: str) -> str:
        """Send the reset mail and return the masked address it went to."""

        sanitized_email = sanitize_email(email)
        if not is_valid_email(sanitized_email):
            raise ValidationError({"email": EMAIL_MESSAGE})
        self._backend.reset_password_for_email(sanitized_email, self._reset_redirect)
        return mask_email(sanitized_email)

    def update_password(self, session: AuthSession, password: str, confirm: str) -> None:
        if not password or not confirm:
            raise ValidationError({"password": "Please fill in both fields."})
        if password != confirm:
            raise ValidationError({"confirm_password": MISMATCH_MESSAGE})
        if not is_valid_password(password):
            raise ValidationError({"password": PASSWORD_MESSAGE})
        self._backend.update_password(session.access_token, password)
        logger.info("User %s updated their password", session.user_id)

    def ensure_fresh(self, session: AuthSession, *, now: Optional[datetime] = None) -> AuthSession:
        """Return ``session`` or, once its access token is about to expire, a renewed one."""

        if session.expires_at is None:
            return session
        current = now or datetime.now(timezone.utc)
        if session.expires_at - TOKEN_REFRESH_MARGIN > current:
            return session
        if not session.refresh_token:
            raise BackendError(EXPIRED_MESSAGE, status_code=401)

        refreshed = self._backend.refresh_session(session.refresh_token)
        logger.info("Renewed access token for user %s", refreshed.user_id)
        return refreshed

    def sign_out(self, session: AuthSession) -> None:
        self._backend.sign_out(session.access_token)


__all__ = [
    "AccountError",
    "AccountService",
    "ValidationError",
    "is_valid_email",
    "is_valid_password",
    "mask_email",
    "sanitize_email",
    "validate_credentials",
]
