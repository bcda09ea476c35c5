"""Structured place search via the Google Places text search API."""

from __future__ import annotations

from typing import Any

import httpx
import structlog

from guide_agent.config import ProviderConfig
from guide_agent.errors import ProviderError
from guide_agent.providers.base import SearchProvider, provider_error_from_http
from guide_agent.types import GeoPoint, RawPlace, ResultSet

logger = structlog.get_logger(__name__)

_FIELD_MASK = ",".join(
    [
        "places.displayName",
        "places.formattedAddress",
        "places.location",
        "places.currentOpeningHours.openNow",
        "places.businessStatus",
        "places.rating",
        "places.userRatingCount",
        "places.nationalPhoneNumber",
        "places.internationalPhoneNumber",
    ]
)
_CLOSED_STATUSES = {"CLOSED_TEMPORARILY", "CLOSED_PERMANENTLY"}
_MAX_BIAS_RADIUS = 50_000.0


class GooglePlacesProvider(SearchProvider):
    """Text search biased to a circle around the user."""

    BASE_URL = "https://places.googleapis.com/v1/places:searchText"

    def __init__(
        self,
        api_key: str,
        config: ProviderConfig | None = None,
        *,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        super().__init__(config)
        self.api_key = api_key
        self.client = client or httpx.AsyncClient(timeout=self.config.timeout_seconds)

    @property
    def name(self) -> str:
        return "google_places"

    async def search(
        self,
        query: str,
        location: GeoPoint,
        constraints: dict[str, Any],
    ) -> ResultSet:
        radius = min(float(constraints.get("radius_meters", 1500.0)), _MAX_BIAS_RADIUS)
        body = {
            "textQuery": query,
            "maxResultCount": self.config.max_results,
            "rankPreference": "DISTANCE",
            "locationBias": {
                "circle": {
                    "center": {"latitude": location.latitude, "longitude": location.longitude},
                    "radius": radius,
                }
            },
        }
        headers = {
            "X-Goog-Api-Key": self.api_key,
            "X-Goog-FieldMask": _FIELD_MASK,
            "Content-Type": "application/json",
        }
        try:
            response = await self.client.post(self.BASE_URL, json=body, headers=headers)
            response.raise_for_status()
            payload = response.json()
        except (httpx.HTTPError, ValueError) as exc:
            raise provider_error_from_http(exc, self.name) from exc

        if not isinstance(payload, dict):
            raise ProviderError("unexpected places payload", provider=self.name)

        places = [place for place in map(_parse_place, payload.get("places") or []) if place]
        logger.info("places_search_complete", query=query, radius_meters=radius, results=len(places))
        return ResultSet(provider=self.name, places=places)

    async def aclose(self) -> None:
        await self.client.aclose()


def _parse_place(item: dict[str, Any]) -> RawPlace | None:
    location = item.get("location") or {}
    lat = location.get("latitude")
    lng = location.get("longitude")
    if lat is None or lng is None:
        return None

    name = (item.get("displayName") or {}).get("text") or "Unknown"
    open_now = (item.get("currentOpeningHours") or {}).get("openNow")
    status = item.get("businessStatus")
    if status in _CLOSED_STATUSES:
        is_operational: bool | None = False
    elif status == "OPERATIONAL":
        is_operational = True if open_now is None else bool(open_now)
    else:
        is_operational = open_now

    return RawPlace(
        name=name,
        address=item.get("formattedAddress") or "",
        coordinates=GeoPoint(latitude=float(lat), longitude=float(lng)),
        is_operational=is_operational,
        rating=item.get("rating"),
        review_count=item.get("userRatingCount"),
        phone=item.get("nationalPhoneNumber") or item.get("internationalPhoneNumber"),
    )
