"""HTTP clients for the public OpenStreetMap POI and geocoding services."""

from __future__ import annotations

import logging
from typing import Dict, List, Optional

import httpx

from .config import SparkConfig
from .models import GeocodeResult

logger = logging.getLogger("spark.places")


class PlacesError(RuntimeError):
    """Raised when a POI or geocoding lookup cannot be completed."""

    def __init__(self, message: str, *, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


def _normalize_base_url(base_url: str) -> str:
    cleaned = (base_url or "").strip()
    if not cleaned:
        raise ValueError("Service URL must not be empty")
    return cleaned.rstrip("/")


def build_parking_query(lat: float, lon: float, radius: float, *, timeout: int = 25) -> str:
    """Return the Overpass QL query for parking amenities around a point."""

    around = f"(around:{int(round(radius))},{lat:.7f},{lon:.7f})"
    return (
        f"[out:json][timeout:{timeout}];"
        f'(node["amenity"="parking"]{around};'
        f'way["amenity"="parking"]{around};'
        f'relation["amenity"="parking"]{around};);'
        "out center;"
    )


class PlacesClient:
    """Query Overpass for parking amenities and Nominatim for place names."""

    def __init__(
        self,
        *,
        overpass_url: str,
        nominatim_url: str,
        user_agent: str,
        timeout: float = 10.0,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        self._overpass_url = _normalize_base_url(overpass_url)
        self._nominatim_url = _normalize_base_url(nominatim_url)
        self._client = httpx.Client(
            timeout=timeout,
            headers={"User-Agent": user_agent, "Accept": "application/json"},
            transport=transport,
        )

    @classmethod
    def from_config(cls, config: SparkConfig, *, transport: httpx.BaseTransport | None = None) -> "PlacesClient":
        return cls(
            overpass_url=config.overpass_url,
            nominatim_url=config.nominatim_url,
            user_agent=config.user_agent,
            timeout=config.http_timeout,
            transport=transport,
        )

    def close(self) -> None:
        self._client.close()

    def find_parking(self, lat: float, lon: float, radius: float) -> List[Dict[str, object]]:
        """Return the raw Overpass elements tagged as parking near ``lat``/``lon``."""

        if radius <= 0:
            raise ValueError("radius must be positive")
        query = build_parking_query(lat, lon, radius)
        payload = self._request("POST", self._overpass_url, data={"data": query})
        if not isinstance(payload, dict):
            raise PlacesError("Parking data service returned an unexpected response")
        elements = payload.get("elements") or []
        if not isinstance(elements, list):
            raise PlacesError("Parking data service returned an unexpected response")
        logger.debug("Overpass returned %d parking elements near %.5f,%.5f", len(elements), lat, lon)
        return [element for element in elements if isinstance(element, dict)]

    def geocode(self, query: str) -> Optional[GeocodeResult]:
        """Return the best match for a free-text place name, if any."""

        cleaned = (query or "").strip()
        if not cleaned:
            raise ValueError("Search query must not be empty")
        payload = self._request(
            "GET",
            f"{self._nominatim_url}/search",
            params={"q": cleaned, "format": "jsonv2", "limit": 1},
        )
        if not isinstance(payload, list):
            raise PlacesError("Geocoding service returned an unexpected response")
        if not payload:
            return None
        best = payload[0]
        try:
            return GeocodeResult(
                display_name=str(best.get("display_name") or cleaned),
                latitude=float(best["lat"]),
                longitude=float(best["lon"]),
            )
        except (KeyError, TypeError, ValueError) as exc:
            raise PlacesError("Geocoding service returned an unexpected response") from exc

    def reverse_geocode(self, lat: float, lon: float) -> Optional[str]:
        """Return a display name for the coordinate, or ``None`` when unknown."""

        payload = self._request(
            "GET",
            f"{self._nominatim_url}/reverse",
            params={"lat": f"{lat:.7f}", "lon": f"{lon:.7f}", "format": "jsonv2"},
        )
        if not isinstance(payload, dict):
            raise PlacesError("Geocoding service returned an unexpected response")
        if payload.get("error"):
            return None
        name = payload.get("display_name")
        return str(name) if name else None

    def _request(self, method: str, url: str, **kwargs: object) -> object:
        try:
            response = self._client.request(method, url, **kwargs)  # type: ignore[arg-type]
        except httpx.TimeoutException as exc:
            logger.warning("Timed out calling %s", url)
            raise PlacesError("The map service took too long to respond. Please try again.") from exc
        except httpx.RequestError as exc:
            logger.warning("Failed to contact %s: %s", url, exc)
            raise PlacesError("Unable to reach the map service. Check your connection.") from exc

        if response.status_code >= 400:
            logger.warning("%s responded with status %s", url, response.status_code)
            raise PlacesError(
                f"Map service request failed with status {response.status_code}",
                status_code=response.status_code,
            )

        try:
            return response.json()
        except ValueError as exc:
            raise PlacesError("Map service returned an invalid response") from exc


__all__ = ["PlacesClient", "PlacesError", "build_parking_query"]
