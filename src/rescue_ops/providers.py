"""
External collaborators of the coordination engine.

The engines only depend on the small protocols below. The httpx clients talk
to the Google Maps web services and the Gemini ``generateContent`` endpoint;
every call takes an explicit timeout and turns transport or payload problems
into :class:`ExternalServiceError` so callers can fall back locally.
"""
from __future__ import annotations

import logging
from typing import Any, Dict, List, NamedTuple, Optional, Protocol, Sequence

import httpx

from rescue_ops.errors import ExternalServiceError
from rescue_ops.models import Coordinates, Facility

logger = logging.getLogger(__name__)

MAPS_BASE_URL = "https://maps.googleapis.com/maps/api"
GEMINI_BASE_URL = "https://generativelanguage.googleapis.com/v1/models"
DEFAULT_GEMINI_MODEL = "gemini-pro"

# Distance Matrix allows 100 elements per request.
MATRIX_BLOCK = 10


class TravelLeg(NamedTuple):
    distance_m: float
    duration_s: float


class DirectionsProvider(Protocol):
    def directions(self, origin: Coordinates, destination: Coordinates, *, timeout: float) -> TravelLeg:
        ...


class DistanceMatrixProvider(Protocol):
    def matrix(self, points: Sequence[Coordinates], *, timeout: float) -> List[List[TravelLeg]]:
        ...


class FacilityProvider(Protocol):
    def nearby_facilities(
        self, center: Coordinates, kind: str, radius_m: int, *, timeout: float
    ) -> List[Facility]:
        ...


class EnrichmentProvider(Protocol):
    def generate(self, prompt: str, *, timeout: float) -> str:
        ...


def _format_point(point: Coordinates) -> str:
    return f"{point.lat:.6f},{point.lng:.6f}"


def _chunks(items: Sequence, size: int) -> List[Sequence]:
    return [items[i:i + size] for i in range(0, len(items), size)]


class GoogleMapsClient:
    """Directions, Distance Matrix and Places nearby-search lookups."""

    def __init__(
        self,
        api_key: str,
        base_url: str = MAPS_BASE_URL,
        transport: Optional[httpx.BaseTransport] = None,
    ) -> None:
        self.api_key = api_key
        self.base_url = base_url.rstrip("/")
        self._transport = transport

    def _get(
        self,
        endpoint: str,
        params: Dict[str, str],
        timeout: float,
        accepted: Sequence[str] = ("OK",),
    ) -> Dict[str, Any]:
        params = {**params, "key": self.api_key}
        try:
            with httpx.Client(timeout=timeout, transport=self._transport) as client:
                response = client.get(f"{self.base_url}/{endpoint}/json", params=params)
                response.raise_for_status()
                data = response.json()
        except httpx.HTTPError as exc:
            raise ExternalServiceError(f"maps request failed: {exc}") from exc
        except ValueError as exc:
            raise ExternalServiceError(f"maps response is not JSON: {exc}") from exc

        if data.get("status") not in accepted:
            raise ExternalServiceError(f"maps returned status {data.get('status')!r}")
        return data

    def directions(self, origin: Coordinates, destination: Coordinates, *, timeout: float) -> TravelLeg:
        data = self._get(
            "directions",
            {
                "origin": _format_point(origin),
                "destination": _format_point(destination),
                "mode": "driving",
            },
            timeout,
        )
        try:
            leg = data["routes"][0]["legs"][0]
            return TravelLeg(float(leg["distance"]["value"]), float(leg["duration"]["value"]))
        except (KeyError, IndexError, TypeError, ValueError) as exc:
            raise ExternalServiceError(f"unexpected directions payload: {exc}") from exc

    def matrix(self, points: Sequence[Coordinates], *, timeout: float) -> List[List[TravelLeg]]:
        n = len(points)
        result: List[List[Optional[TravelLeg]]] = [[None] * n for _ in range(n)]
        indices = list(range(n))

        for row_block in _chunks(indices, MATRIX_BLOCK):
            for col_block in _chunks(indices, MATRIX_BLOCK):
                data = self._get(
                    "distancematrix",
                    {
                        "origins": "|".join(_format_point(points[i]) for i in row_block),
                        "destinations": "|".join(_format_point(points[j]) for j in col_block),
                        "mode": "driving",
                    },
                    timeout,
                )
                try:
                    for r, i in enumerate(row_block):
                        elements = data["rows"][r]["elements"]
                        for c, j in enumerate(col_block):
                            element = elements[c]
                            if i == j:
                                result[i][j] = TravelLeg(0.0, 0.0)
                                continue
                            if element.get("status") != "OK":
                                raise ExternalServiceError(
                                    f"no route between stop {i} and stop {j}: {element.get('status')}"
                                )
                            result[i][j] = TravelLeg(
                                float(element["distance"]["value"]),
                                float(element["duration"]["value"]),
                            )
                except (AttributeError, KeyError, IndexError, TypeError, ValueError) as exc:
                    raise ExternalServiceError(f"unexpected distance matrix payload: {exc}") from exc

        logger.debug("Fetched %dx%d distance matrix", n, n)
        return result  # type: ignore[return-value]

    def nearby_facilities(
        self, center: Coordinates, kind: str, radius_m: int, *, timeout: float
    ) -> List[Facility]:
        data = self._get(
            "place/nearbysearch",
            {"location": _format_point(center), "radius": str(radius_m), "type": kind},
            timeout,
            accepted=("OK", "ZERO_RESULTS"),
        )
        try:
            return [
                Facility(
                    id=place["place_id"],
                    name=place.get("name", ""),
                    kind=kind,
                    location=Coordinates(
                        float(place["geometry"]["location"]["lat"]),
                        float(place["geometry"]["location"]["lng"]),
                    ),
                    rating=place.get("rating"),
                    open_now=(place.get("opening_hours") or {}).get("open_now"),
                )
                for place in data.get("results", [])
            ]
        except (AttributeError, KeyError, TypeError, ValueError) as exc:
            raise ExternalServiceError(f"unexpected places payload: {exc}") from exc


class GeminiClient:
    """Single-prompt text generation against the Gemini REST API."""

    def __init__(
        self,
        api_key: str,
        model: str = DEFAULT_GEMINI_MODEL,
        base_url: str = GEMINI_BASE_URL,
        transport: Optional[httpx.BaseTransport] = None,
    ) -> None:
        self.api_key = api_key
        self.model = model
        self.base_url = base_url.rstrip("/")
        self._transport = transport

    def generate(self, prompt: str, *, timeout: float) -> str:
        body = {"contents": [{"parts": [{"text": prompt}]}]}
        url = f"{self.base_url}/{self.model}:generateContent"
        try:
            with httpx.Client(timeout=timeout, transport=self._transport) as client:
                response = client.post(url, params={"key": self.api_key}, json=body)
                response.raise_for_status()
                data = response.json()
        except httpx.HTTPError as exc:
            raise ExternalServiceError(f"gemini request failed: {exc}") from exc
        except ValueError as exc:
            raise ExternalServiceError(f"gemini response is not JSON: {exc}") from exc

        try:
            parts = data["candidates"][0]["content"]["parts"]
            text = "".join(part.get("text", "") for part in parts)
        except (AttributeError, KeyError, IndexError, TypeError) as exc:
            raise ExternalServiceError(f"unexpected gemini payload: {exc}") from exc

        if not text.strip():
            raise ExternalServiceError("gemini returned an empty answer")
        return text
