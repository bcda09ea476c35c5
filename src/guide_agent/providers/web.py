"""Free-text web search via the Brave Search API."""

from __future__ import annotations

from typing import Any

import httpx
import structlog

from guide_agent.config import ProviderConfig
from guide_agent.errors import ProviderError
from guide_agent.providers.base import SearchProvider, provider_error_from_http
from guide_agent.types import GeoPoint, RawPlace, ResultSet

logger = structlog.get_logger(__name__)


class BraveWebSearchProvider(SearchProvider):
    """Web results become context snippets; local POI results become places."""

    BASE_URL = "https://api.search.brave.com/res/v1/web/search"

    def __init__(
        self,
        api_key: str,
        config: ProviderConfig | None = None,
        *,
        client: httpx.AsyncClient | None = None,
        max_snippets: int = 5,
    ) -> None:
        super().__init__(config)
        self.api_key = api_key
        self.max_snippets = max_snippets
        self.client = client or httpx.AsyncClient(timeout=self.config.timeout_seconds)

    @property
    def name(self) -> str:
        return "brave"

    async def search(
        self,
        query: str,
        location: GeoPoint,
        constraints: dict[str, Any],
    ) -> ResultSet:
        headers = {
            "X-Subscription-Token": self.api_key,
            "Accept": "application/json",
            "X-Loc-Lat": f"{location.latitude:.6f}",
            "X-Loc-Long": f"{location.longitude:.6f}",
        }
        params = {
            "q": query,
            "count": min(self.config.max_results, 20),
            "safesearch": "moderate",
            "text_decorations": False,
        }
        try:
            response = await self.client.get(self.BASE_URL, headers=headers, params=params)
            response.raise_for_status()
            payload = response.json()
        except (httpx.HTTPError, ValueError) as exc:
            raise provider_error_from_http(exc, self.name) from exc

        if not isinstance(payload, dict):
            raise ProviderError("unexpected web search payload", provider=self.name)

        snippets: list[str] = []
        for item in (payload.get("web") or {}).get("results", [])[: self.max_snippets]:
            title = str(item.get("title", "")).strip()
            description = str(item.get("description", "")).strip()
            if title or description:
                snippets.append(f"{title}: {description}".strip(": "))

        places = [
            place
            for place in map(_parse_location, (payload.get("locations") or {}).get("results", []))
            if place
        ]
        logger.info("web_search_complete", query=query, snippets=len(snippets), places=len(places))
        return ResultSet(provider=self.name, places=places, snippets=snippets)

    async def aclose(self) -> None:
        await self.client.aclose()


def _parse_location(item: dict[str, Any]) -> RawPlace | None:
    title = item.get("title")
    address = (item.get("postal_address") or {}).get("displayAddress")
    if not title or not address:
        return None

    coordinates = None
    raw_coordinates = item.get("coordinates")
    if isinstance(raw_coordinates, (list, tuple)) and len(raw_coordinates) == 2:
        coordinates = GeoPoint(latitude=float(raw_coordinates[0]), longitude=float(raw_coordinates[1]))

    rating = item.get("rating") or {}
    return RawPlace(
        name=str(title),
        address=str(address),
        coordinates=coordinates,
        rating=rating.get("ratingValue"),
        review_count=rating.get("reviewCount"),
        phone=(item.get("contact") or {}).get("telephone"),
    )
