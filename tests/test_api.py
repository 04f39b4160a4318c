"""End-to-end tests for the Spark HTTP API."""

from __future__ import annotations

import json
import math
import sys
import unittest
from pathlib import Path
from typing import Dict, List, Optional

import httpx
from fastapi.testclient import TestClient

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from spark.api import create_app
from spark.backend import BackendClient
from spark.config import SparkConfig
from spark.geo import EARTH_RADIUS_M
from spark.places import PlacesClient

ORIGIN = (14.5995, 120.9842)
PASSWORD = "Sup3r$ecret"


def _north(meters: float) -> float:
    return ORIGIN[0] + math.degrees(meters / EARTH_RADIUS_M)


class FakeUpstreams:
    """Serve both the OSM services and the hosted backend from one handler."""

    def __init__(self) -> None:
        self.requests: List[httpx.Request] = []
        self.parking: List[Dict[str, object]] = [
            {"type": "node", "id": 1, "lat": _north(800), "lon": ORIGIN[1], "tags": {"name": "Mall Garage"}},
            {"type": "way", "id": 2, "center": {"lat": _north(50), "lon": ORIGIN[1]}, "tags": {"name": "Ayala Parking"}},
            {"type": "node", "id": 3, "lat": _north(1500), "lon": ORIGIN[1], "tags": {"name": "Far Lot"}},
        ]
        self.overpass_down = False
        self.expires_in = 3600
        self.refresh_rejected = False
        self.places: List[Dict[str, object]] = [
            {"display_name": "Makati, Metro Manila", "lat": str(ORIGIN[0]), "lon": str(ORIGIN[1])}
        ]

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        host = request.url.host
        path = request.url.path
        if host == "overpass.test":
            if self.overpass_down:
                return httpx.Response(503, text="busy")
            return httpx.Response(200, json={"elements": self.parking})
        if host == "nominatim.test":
            if path == "/search":
                return httpx.Response(200, json=self.places)
            return httpx.Response(200, json={"display_name": "Ayala Avenue, Makati"})
        if host == "backend.test":
            return self._backend(request)
        return httpx.Response(404)

    def _backend(self, request: httpx.Request) -> httpx.Response:
        path = request.url.path
        if path == "/auth/v1/signup":
            body = json.loads(request.content)
            return httpx.Response(200, json={"id": "user-1", "email": body["email"]})
        if path == "/auth/v1/token" and request.url.params.get("grant_type") == "refresh_token":
            body = json.loads(request.content)
            if body["refresh_token"] != "refresh" or self.refresh_rejected:
                return httpx.Response(400, json={"error_description": "Invalid Refresh Token"})
            return httpx.Response(
                200,
                json={
                    "access_token": "renewed-token",
                    "refresh_token": "refresh",
                    "expires_in": 3600,
                    "user": {"id": "user-1", "email": "driver@example.com"},
                },
            )
        if path == "/auth/v1/token":
            body = json.loads(request.content)
            if body["password"] != PASSWORD:
                return httpx.Response(
                    400, json={"error": "invalid_grant", "error_description": "Invalid login credentials"}
                )
            return httpx.Response(
                200,
                json={
                    "access_token": "upstream-token",
                    "refresh_token": "refresh",
                    "expires_in": self.expires_in,
                    "user": {"id": "user-1", "email": body["email"]},
                },
            )
        if path in {"/auth/v1/recover", "/auth/v1/logout", "/auth/v1/user"}:
            return httpx.Response(200, json={})
        if path.startswith("/rest/v1/"):
            return httpx.Response(201)
        return httpx.Response(404)

    def backend_bodies(self, path: str) -> List[object]:
        return [
            json.loads(request.content)
            for request in self.requests
            if request.url.host == "backend.test" and request.url.path == path and request.content
        ]


class SparkAPITests(unittest.TestCase):
    def setUp(self) -> None:
        self.upstreams = FakeUpstreams()
        transport = httpx.MockTransport(self.upstreams)
        self.config = SparkConfig(
            backend_url="https://backend.test",
            backend_key="anon-key",
            overpass_url="https://overpass.test/api/interpreter",
            nominatim_url="https://nominatim.test",
        )
        app = create_app(
            config=self.config,
            places=PlacesClient.from_config(self.config, transport=transport),
            backend=BackendClient.from_config(self.config, transport=transport),
        )
        self.client = TestClient(app)
        self.client.__enter__()

    def tearDown(self) -> None:
        self.client.__exit__(None, None, None)

    def _login(self) -> Dict[str, str]:
        response = self.client.post("/v1/auth/login", json={"email": "driver@example.com", "password": PASSWORD})
        self.assertEqual(response.status_code, 200, response.text)
        return {"Authorization": f"Bearer {response.json()['token']}"}

    def _nearby(self, headers: Dict[str, str], lat: Optional[float] = None, **params: object) -> httpx.Response:
        query = {"lat": ORIGIN[0] if lat is None else lat, "lon": ORIGIN[1], **params}
        return self.client.get("/v1/parking/nearby", params=query, headers=headers)

    def test_health(self) -> None:
        response = self.client.get("/health")
        self.assertEqual(response.json(), {"status": "ok"})

    def test_sign_up_creates_profile(self) -> None:
        response = self.client.post(
            "/v1/auth/signup",
            json={
                "full_name": " Dana Driver ",
                "email": "Driver@Example.com",
                "password": PASSWORD,
                "confirm_password": PASSWORD,
            },
        )

        self.assertEqual(response.status_code, 201, response.text)
        self.assertEqual(
            response.json(),
            {"id": "user-1", "full_name": "Dana Driver", "email": "driver@example.com"},
        )
        self.assertEqual(
            self.upstreams.backend_bodies("/rest/v1/users"),
            [[{"user_id": "user-1", "full_name": "Dana Driver", "email": "driver@example.com"}]],
        )

    def test_sign_up_reports_field_errors(self) -> None:
        response = self.client.post(
            "/v1/auth/signup",
            json={"full_name": "Dana", "email": "nope", "password": "weak", "confirm_password": "weak"},
        )

        self.assertEqual(response.status_code, 422)
        errors = response.json()["detail"]["errors"]
        self.assertIn("email", errors)
        self.assertIn("password", errors)

    def test_login_failure_is_reported(self) -> None:
        response = self.client.post("/v1/auth/login", json={"email": "driver@example.com", "password": "Wrong$ecret1"})

        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.json()["detail"], "Login failed: Invalid login credentials")

    def test_parking_requires_session(self) -> None:
        response = self.client.get("/v1/parking/nearby", params={"lat": ORIGIN[0], "lon": ORIGIN[1]})
        self.assertEqual(response.status_code, 401)

        response = self._nearby({"Authorization": "Bearer not-a-session"})
        self.assertEqual(response.status_code, 401)

    def test_nearby_parking_is_ranked_and_annotated(self) -> None:
        headers = self._login()

        response = self._nearby(headers)

        self.assertEqual(response.status_code, 200, response.text)
        payload = response.json()
        self.assertEqual([spot["name"] for spot in payload["spots"]], ["Ayala Parking", "Mall Garage"])
        self.assertEqual(payload["spots"][0]["id"], "way/2")
        self.assertEqual(payload["spots"][0]["distance"], 50)
        self.assertEqual(payload["spots"][0]["minutes"], 1)
        self.assertEqual(payload["spots"][1]["minutes"], math.ceil(800 / 5 / 60))
        self.assertEqual(payload["origin"], {"latitude": ORIGIN[0], "longitude": ORIGIN[1]})
        self.assertFalse(payload["stale"])

    def test_nearby_parking_name_filter(self) -> None:
        headers = self._login()

        response = self._nearby(headers, q="garage")

        self.assertEqual([spot["name"] for spot in response.json()["spots"]], ["Mall Garage"])

    def test_failed_refresh_keeps_previous_results(self) -> None:
        headers = self._login()
        self.assertEqual(self._nearby(headers).status_code, 200)

        self.upstreams.overpass_down = True
        response = self._nearby(headers, lat=_north(500))

        self.assertEqual(response.status_code, 502)
        detail = response.json()["detail"]
        self.assertIn("503", detail["message"])
        self.assertEqual([spot["name"] for spot in detail["spots"]], ["Ayala Parking", "Mall Garage"])

    def test_search_geocodes_then_ranks(self) -> None:
        headers = self._login()

        response = self.client.get("/v1/parking/search", params={"q": "Makati"}, headers=headers)

        self.assertEqual(response.status_code, 200, response.text)
        payload = response.json()
        self.assertEqual(payload["place"], "Makati, Metro Manila")
        self.assertEqual(len(payload["spots"]), 2)

    def test_search_without_match(self) -> None:
        headers = self._login()
        self.upstreams.places = []

        response = self.client.get("/v1/parking/search", params={"q": "Atlantis"}, headers=headers)

        self.assertEqual(response.status_code, 404)

    def test_location_updates_refresh_only_after_moving(self) -> None:
        headers = self._login()

        first = self.client.post(
            "/v1/location", json={"latitude": ORIGIN[0], "longitude": ORIGIN[1]}, headers=headers
        )
        self.assertEqual(first.status_code, 200, first.text)
        self.assertTrue(first.json()["refreshed"])
        self.assertEqual(len(first.json()["spots"]), 2)

        jitter = self.client.post(
            "/v1/location", json={"latitude": _north(3), "longitude": ORIGIN[1]}, headers=headers
        )
        self.assertFalse(jitter.json()["refreshed"])
        self.assertEqual(jitter.json()["generation"], first.json()["generation"])

        overpass_calls = [r for r in self.upstreams.requests if r.url.host == "overpass.test"]
        self.assertEqual(len(overpass_calls), 1)

    def test_location_permission_denied(self) -> None:
        headers = self._login()

        response = self.client.post(
            "/v1/location",
            json={"latitude": ORIGIN[0], "longitude": ORIGIN[1], "permission_granted": False},
            headers=headers,
        )

        self.assertEqual(response.status_code, 403)
        self.assertTrue(response.json()["detail"]["retry"])

    def test_save_spot_and_record_visit(self) -> None:
        headers = self._login()
        spot = {"id": "way/2", "name": "Ayala Parking", "latitude": ORIGIN[0], "longitude": ORIGIN[1]}

        saved = self.client.post("/v1/parking/saved", json=spot, headers=headers)
        visited = self.client.post("/v1/parking/history", json=spot, headers=headers)

        self.assertEqual(saved.status_code, 201, saved.text)
        self.assertEqual(visited.status_code, 201, visited.text)
        self.assertIn("saved_at", saved.json())
        self.assertIn("parked_at", visited.json())
        saved_rows = self.upstreams.backend_bodies("/rest/v1/saved_parking_spots")
        self.assertEqual(saved_rows[0][0]["user_id"], "user-1")
        writes = [r for r in self.upstreams.requests if r.url.path.startswith("/rest/v1/parking")]
        self.assertEqual(writes[0].headers["authorization"], "Bearer upstream-token")

    def test_expired_upstream_token_is_renewed_before_writes(self) -> None:
        self.upstreams.expires_in = 30
        headers = self._login()
        spot = {"id": "way/2", "name": "Ayala Parking", "latitude": ORIGIN[0], "longitude": ORIGIN[1]}

        saved = self.client.post("/v1/parking/saved", json=spot, headers=headers)

        self.assertEqual(saved.status_code, 201, saved.text)
        refreshes = [
            r for r in self.upstreams.requests
            if r.url.path == "/auth/v1/token" and r.url.params.get("grant_type") == "refresh_token"
        ]
        self.assertEqual(len(refreshes), 1)
        writes = [r for r in self.upstreams.requests if r.url.path == "/rest/v1/saved_parking_spots"]
        self.assertEqual(writes[0].headers["authorization"], "Bearer renewed-token")

        again = self.client.post("/v1/parking/history", json=spot, headers=headers)
        self.assertEqual(again.status_code, 201, again.text)
        self.assertEqual(len([r for r in self.upstreams.requests if r.url.params.get("grant_type") == "refresh_token"]), 1)

    def test_rejected_token_renewal_ends_session(self) -> None:
        self.upstreams.expires_in = 0
        self.upstreams.refresh_rejected = True
        headers = self._login()
        spot = {"id": "way/2", "name": "Ayala Parking", "latitude": ORIGIN[0], "longitude": ORIGIN[1]}

        response = self.client.post("/v1/parking/saved", json=spot, headers=headers)

        self.assertEqual(response.status_code, 401)
        self.assertEqual(self.upstreams.backend_bodies("/rest/v1/saved_parking_spots"), [])
        self.assertEqual(self._nearby(headers).status_code, 401)

    def test_password_reset_and_update(self) -> None:
        reset = self.client.post("/v1/auth/password/reset", json={"email": "driver@example.com"})
        self.assertEqual(reset.status_code, 200, reset.text)
        self.assertEqual(reset.json(), {"sent_to": "dr****er@example.com"})

        headers = self._login()
        mismatch = self.client.post(
            "/v1/auth/password",
            json={"password": PASSWORD, "confirm_password": "Other$ecret1"},
            headers=headers,
        )
        self.assertEqual(mismatch.status_code, 422)

        updated = self.client.post(
            "/v1/auth/password",
            json={"password": "N3w$ecretPass", "confirm_password": "N3w$ecretPass"},
            headers=headers,
        )
        self.assertEqual(updated.status_code, 204, updated.text)

    def test_reverse_geocode(self) -> None:
        headers = self._login()

        response = self.client.get(
            "/v1/geocode/reverse", params={"lat": ORIGIN[0], "lon": ORIGIN[1]}, headers=headers
        )

        self.assertEqual(response.json(), {"display_name": "Ayala Avenue, Makati"})

    def test_logout_ends_session(self) -> None:
        headers = self._login()

        response = self.client.post("/v1/auth/logout", headers=headers)
        self.assertEqual(response.status_code, 204)

        self.assertEqual(self._nearby(headers).status_code, 401)


if __name__ == "__main__":  # pragma: no cover
    unittest.main()
