"""FastAPI application exposing the Spark parking and account endpoints."""
from __future__ import annotations

import logging
from datetime import timedelta
from typing import Dict, List, Optional

import anyio
from fastapi import Depends, FastAPI, HTTPException, Query, Request, status
from pydantic import BaseModel, Field, field_validator

from .accounts import EXPIRED_MESSAGE, AccountError, AccountService, ValidationError
from .backend import BackendClient, BackendError
from .config import SparkConfig, load_config
from .geo import estimate_minutes
from .location import LocationPermissionError
from .models import Coordinate, ParkingCandidate
from .parking import (
    LocationNotFound,
    NearbyParkingTracker,
    RefreshFailed,
    RefreshResult,
    filter_by_name,
)
from .places import PlacesClient, PlacesError
from .security import SessionAuth, bearer_token
from .sessions import SessionManager, UserSession
from .spots import add_parking_history, save_parking_spot

logger = logging.getLogger("spark.api")


class SignUpRequest(BaseModel):
    full_name: str = Field(..., max_length=200)
    email: str = Field(..., max_length=320)
    password: str = Field(..., max_length=256)
    confirm_password: str = Field(..., max_length=256)


class AccountResponse(BaseModel):
    id: str
    full_name: str
    email: str


class LoginRequest(BaseModel):
    email: str = Field(..., max_length=320)
    password: str = Field(..., max_length=256)


class LoginResponse(BaseModel):
    token: str
    user_id: str
    email: Optional[str]
    expires_in: int


class PasswordResetRequest(BaseModel):
    email: str = Field(..., max_length=320)


class PasswordResetResponse(BaseModel):
    sent_to: str


class PasswordUpdateRequest(BaseModel):
    password: str = Field(..., max_length=256)
    confirm_password: str = Field(..., max_length=256)


class CoordinateView(BaseModel):
    latitude: float
    longitude: float


class ParkingSpotView(BaseModel):
    id: str
    name: str
    latitude: float
    longitude: float
    distance: int
    minutes: int


class ParkingListResponse(BaseModel):
    origin: Optional[CoordinateView]
    place: Optional[str] = None
    generation: int
    stale: bool = False
    spots: List[ParkingSpotView]


class LocationUpdateRequest(BaseModel):
    latitude: float = Field(..., ge=-90, le=90)
    longitude: float = Field(..., ge=-180, le=180)
    permission_granted: bool = True


class LocationUpdateResponse(ParkingListResponse):
    refreshed: bool


class SpotRequest(BaseModel):
    id: str = Field(..., min_length=1, max_length=128)
    name: str = Field(..., min_length=1, max_length=255)
    latitude: float = Field(..., ge=-90, le=90)
    longitude: float = Field(..., ge=-180, le=180)

    @field_validator("id", "name")
    @classmethod
    def _strip(cls, value: str) -> str:
        stripped = value.strip()
        if not stripped:
            raise ValueError("must not be blank")
        return stripped


class ReverseGeocodeResponse(BaseModel):
    display_name: Optional[str]


def _spot_view(candidate: ParkingCandidate, walking_speed: float) -> ParkingSpotView:
    return ParkingSpotView(
        id=candidate.id,
        name=candidate.name,
        latitude=candidate.latitude,
        longitude=candidate.longitude,
        distance=int(round(candidate.distance)),
        minutes=estimate_minutes(candidate.distance, walking_speed),
    )


def _coordinate_view(origin: Optional[Coordinate]) -> Optional[CoordinateView]:
    if origin is None:
        return None
    return CoordinateView(latitude=origin.latitude, longitude=origin.longitude)


def _backend_status(exc: BackendError) -> int:
    if exc.status_code is not None and 400 <= exc.status_code < 500:
        return exc.status_code
    return status.HTTP_502_BAD_GATEWAY


def create_app(
    *,
    config: SparkConfig | None = None,
    places: PlacesClient | None = None,
    backend: BackendClient | None = None,
    sessions: SessionManager | None = None,
) -> FastAPI:
    if config is None:
        config = load_config()
    if places is None:
        places = PlacesClient.from_config(config)
    if backend is None:
        backend = BackendClient.from_config(config)

    if sessions is None:
        sessions = SessionManager(
            lambda: NearbyParkingTracker(places, radius=config.search_radius, limit=config.result_limit),
            ttl=timedelta(hours=config.session_ttl_hours),
            min_distance=config.location_min_distance,
        )

    accounts = AccountService(backend, reset_redirect=config.password_reset_redirect)
    auth = SessionAuth(sessions)

    app = FastAPI(
        title="Spark Parking",
        description="Find nearby parking and manage Spark accounts",
        version="1.0.0",
    )
    app.state.config = config
    app.state.sessions = sessions
    app.state.places = places
    app.state.backend = backend

    async def current_session(request: Request) -> UserSession:
        return await auth(request)

    async def backend_session(request: Request, session: UserSession = Depends(current_session)) -> UserSession:
        try:
            session.auth = await anyio.to_thread.run_sync(accounts.ensure_fresh, session.auth)
        except BackendError as exc:
            if _backend_status(exc) == status.HTTP_502_BAD_GATEWAY:
                raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=str(exc)) from exc
            token = bearer_token(request)
            if token is not None:
                sessions.destroy(token)
            logger.info("Dropping session for user %s: %s", session.user_id, exc)
            raise HTTPException(
                status_code=status.HTTP_401_UNAUTHORIZED,
                detail=EXPIRED_MESSAGE,
                headers={"WWW-Authenticate": "Bearer"},
            ) from exc
        return session

    def listing(result: RefreshResult, *, name_filter: str | None = None) -> Dict[str, object]:
        candidates = filter_by_name(result.candidates, name_filter or "")
        return {
            "origin": _coordinate_view(result.origin),
            "place": result.place.display_name if result.place else None,
            "generation": result.generation,
            "stale": result.stale,
            "spots": [_spot_view(candidate, config.walking_speed) for candidate in candidates],
        }

    def refresh_failed(exc: RefreshFailed, session: UserSession) -> HTTPException:
        previous = [_spot_view(candidate, config.walking_speed).model_dump() for candidate in session.tracker.results]
        return HTTPException(
            status_code=status.HTTP_502_BAD_GATEWAY,
            detail={"message": str(exc), "spots": previous},
        )

    @app.get("/health")
    async def healthcheck() -> Dict[str, str]:
        return {"status": "ok"}

    # ------------------------------------------------------------------
    # Accounts
    # ------------------------------------------------------------------
    @app.post("/v1/auth/signup", response_model=AccountResponse, status_code=status.HTTP_201_CREATED)
    async def sign_up(payload: SignUpRequest) -> AccountResponse:
        try:
            account = await anyio.to_thread.run_sync(
                accounts.sign_up,
                payload.full_name,
                payload.email,
                payload.password,
                payload.confirm_password,
            )
        except ValidationError as exc:
            raise HTTPException(
                status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
                detail={"message": "Please fix the errors before proceeding.", "errors": exc.errors},
            ) from exc
        except BackendError as exc:
            raise HTTPException(status_code=_backend_status(exc), detail=f"Sign-up failed: {exc}") from exc
        except AccountError as exc:
            raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=str(exc)) from exc

        return AccountResponse(id=account.id, full_name=account.full_name, email=account.email)

    @app.post("/v1/auth/login", response_model=LoginResponse)
    async def login(payload: LoginRequest) -> LoginResponse:
        try:
            auth_session = await anyio.to_thread.run_sync(accounts.sign_in, payload.email, payload.password)
        except ValidationError as exc:
            raise HTTPException(
                status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
                detail={"message": "Please fix the errors before proceeding.", "errors": exc.errors},
            ) from exc
        except BackendError as exc:
            raise HTTPException(status_code=_backend_status(exc), detail=f"Login failed: {exc}") from exc

        token = sessions.create(auth_session)
        return LoginResponse(
            token=token,
            user_id=auth_session.user_id,
            email=auth_session.email,
            expires_in=int(sessions.ttl.total_seconds()),
        )

    @app.post("/v1/auth/logout", status_code=status.HTTP_204_NO_CONTENT)
    async def logout(request: Request, session: UserSession = Depends(current_session)) -> None:
        token = bearer_token(request)
        if token is not None:
            sessions.destroy(token)
        try:
            await anyio.to_thread.run_sync(accounts.sign_out, session.auth)
        except BackendError as exc:
            logger.warning("Upstream sign-out for user %s failed: %s", session.user_id, exc)

    @app.post("/v1/auth/password/reset", response_model=PasswordResetResponse)
    async def request_password_reset(payload: PasswordResetRequest) -> PasswordResetResponse:
        try:
            masked = await anyio.to_thread.run_sync(accounts.request_password_reset, payload.email)
        except ValidationError as exc:
            raise HTTPException(
                status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
                detail={"message": str(exc), "errors": exc.errors},
            ) from exc
        except BackendError as exc:
            raise HTTPException(status_code=_backend_status(exc), detail=str(exc)) from exc
        return PasswordResetResponse(sent_to=masked)

    @app.post("/v1/auth/password", status_code=status.HTTP_204_NO_CONTENT)
    async def update_password(
        payload: PasswordUpdateRequest,
        session: UserSession = Depends(backend_session),
    ) -> None:
        try:
            await anyio.to_thread.run_sync(
                accounts.update_password,
                session.auth,
                payload.password,
                payload.confirm_password,
            )
        except ValidationError as exc:
            raise HTTPException(
                status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
                detail={"message": str(exc), "errors": exc.errors},
            ) from exc
        except BackendError as exc:
            raise HTTPException(status_code=_backend_status(exc), detail=str(exc)) from exc

    # ------------------------------------------------------------------
    # Parking
    # ------------------------------------------------------------------
    @app.get("/v1/parking/nearby", response_model=ParkingListResponse)
    async def nearby_parking(
        lat: float = Query(..., ge=-90, le=90),
        lon: float = Query(..., ge=-180, le=180),
        radius: Optional[float] = Query(default=None, gt=0, le=50_000),
        q: Optional[str] = Query(default=None, max_length=200),
        session: UserSession = Depends(current_session),
    ) -> Dict[str, object]:
        try:
            result = await anyio.to_thread.run_sync(session.tracker.refresh, lat, lon, radius)
        except RefreshFailed as exc:
            raise refresh_failed(exc, session) from exc
        return listing(result, name_filter=q)

    @app.get("/v1/parking/search", response_model=ParkingListResponse)
    async def search_parking(
        q: str = Query(..., min_length=1, max_length=200),
        radius: Optional[float] = Query(default=None, gt=0, le=50_000),
        session: UserSession = Depends(current_session),
    ) -> Dict[str, object]:
        if not q.strip():
            raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail="Search query must not be empty")
        try:
            result = await anyio.to_thread.run_sync(session.tracker.search, q, radius)
        except LocationNotFound as exc:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
        except RefreshFailed as exc:
            raise refresh_failed(exc, session) from exc
        return listing(result)

    @app.post("/v1/location", response_model=LocationUpdateResponse)
    async def update_location(
        payload: LocationUpdateRequest,
        session: UserSession = Depends(current_session),
    ) -> Dict[str, object]:
        if not payload.permission_granted:
            denied = LocationPermissionError()
            logger.info("User %s reported location permission denied", session.user_id)
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail={"message": str(denied), "retry": True},
            )

        position = Coordinate(payload.latitude, payload.longitude)
        try:
            refreshed = await anyio.to_thread.run_sync(session.watcher.push, position)
        except RefreshFailed as exc:
            raise refresh_failed(exc, session) from exc

        body = listing(session.tracker.snapshot())
        body["refreshed"] = refreshed
        return body

    @app.get("/v1/geocode/reverse", response_model=ReverseGeocodeResponse)
    async def reverse_geocode(
        lat: float = Query(..., ge=-90, le=90),
        lon: float = Query(..., ge=-180, le=180),
        session: UserSession = Depends(current_session),
    ) -> ReverseGeocodeResponse:
        try:
            name = await anyio.to_thread.run_sync(places.reverse_geocode, lat, lon)
        except PlacesError as exc:
            raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=str(exc)) from exc
        return ReverseGeocodeResponse(display_name=name)

    @app.post("/v1/parking/saved", status_code=status.HTTP_201_CREATED)
    async def save_spot(
        payload: SpotRequest,
        session: UserSession = Depends(backend_session),
    ) -> Dict[str, object]:
        spot = ParkingCandidate(id=payload.id, name=payload.name, latitude=payload.latitude, longitude=payload.longitude)
        try:
            return await anyio.to_thread.run_sync(save_parking_spot, backend, session.auth, spot)
        except BackendError as exc:
            raise HTTPException(status_code=_backend_status(exc), detail=str(exc)) from exc

    @app.post("/v1/parking/history", status_code=status.HTTP_201_CREATED)
    async def record_visit(
        payload: SpotRequest,
        session: UserSession = Depends(backend_session),
    ) -> Dict[str, object]:
        spot = ParkingCandidate(id=payload.id, name=payload.name, latitude=payload.latitude, longitude=payload.longitude)
        try:
            return await anyio.to_thread.run_sync(add_parking_history, backend, session.auth, spot)
        except BackendError as exc:
            raise HTTPException(status_code=_backend_status(exc), detail=str(exc)) from exc

    return app


__all__ = ["create_app"]
