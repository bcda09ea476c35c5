"""Base class for search providers."""

from __future__ import annotations

import asyncio
from abc import ABC, abstractmethod
from collections.abc import Sequence
from typing import Any

import httpx
import structlog

from guide_agent.config import ProviderConfig
from guide_agent.errors import ProviderError, ProviderTimeoutError
from guide_agent.pipeline.addresses import haversine_meters
from guide_agent.types import GeoPoint, RawPlace, ResultSet

logger = structlog.get_logger(__name__)


class SearchProvider(ABC):
    """Thin client to one external search backend.

    Subclasses implement ``search`` and raise ``ProviderError`` on failure.
    Callers use ``search_with_retry``, which bounds every attempt with the
    configured timeout, retries a transient failure once and turns a final
    failure into an empty ``ResultSet`` carrying the error text.
    """

    def __init__(self, config: ProviderConfig | None = None) -> None:
        self.config = config or ProviderConfig()

    @property
    @abstractmethod
    def name(self) -> str:
        """Provider identifier used in logs and candidate sources."""

    @abstractmethod
    async def search(
        self,
        query: str,
        location: GeoPoint,
        constraints: dict[str, Any],
    ) -> ResultSet:
        """Run one search attempt."""

    async def search_with_retry(
        self,
        query: str,
        location: GeoPoint,
        constraints: dict[str, Any] | None = None,
    ) -> ResultSet:
        constraints = constraints or {}
        error: ProviderError | None = None
        for attempt in (1, 2):
            try:
                return await asyncio.wait_for(
                    self.search(query, location, constraints),
                    timeout=self.config.timeout_seconds,
                )
            except asyncio.TimeoutError:
                error = ProviderTimeoutError(
                    "provider timed out", provider=self.name, timeout=self.config.timeout_seconds
                )
            except ProviderError as exc:
                error = exc

            logger.warning(
                "provider_attempt_failed",
                provider=self.name,
                attempt=attempt,
                transient=error.transient,
                error=str(error),
            )
            if not error.transient:
                break
            if attempt == 1:
                await asyncio.sleep(self.config.retry_backoff_seconds)

        return ResultSet(provider=self.name, error=str(error))

    async def aclose(self) -> None:
        """Release network resources held by the provider."""


class StaticPlaceProvider(SearchProvider):
    """In-memory provider used offline and in tests.

    Places outside ``constraints["radius_meters"]`` are filtered out the way a
    real backend applies its location restriction.
    """

    def __init__(
        self,
        places: Sequence[RawPlace],
        *,
        snippets: Sequence[str] = (),
        name: str = "static",
        config: ProviderConfig | None = None,
    ) -> None:
        super().__init__(config)
        self._places = list(places)
        self._snippets = list(snippets)
        self._name = name
        self.calls = 0

    @property
    def name(self) -> str:
        return self._name

    async def search(
        self,
        query: str,
        location: GeoPoint,
        constraints: dict[str, Any],
    ) -> ResultSet:
        self.calls += 1
        radius = constraints.get("radius_meters")
        places = [
            place
            for place in self._places
            if radius is None
            or place.coordinates is None
            or haversine_meters(location, place.coordinates) <= radius
        ]
        return ResultSet(provider=self.name, places=places, snippets=list(self._snippets))


def provider_error_from_http(exc: Exception, provider: str) -> ProviderError:
    """Map an httpx failure onto the provider error taxonomy."""
    if isinstance(exc, httpx.TimeoutException):
        return ProviderTimeoutError("provider request timed out", provider=provider)
    if isinstance(exc, httpx.HTTPStatusError):
        status = exc.response.status_code
        return ProviderError(
            "provider returned an error status",
            transient=status == 429 or status >= 500,
            provider=provider,
            status=status,
        )
    if isinstance(exc, httpx.TransportError):
        return ProviderError("provider unreachable", transient=True, provider=provider)
    return ProviderError("provider returned an unreadable response", provider=provider, error=str(exc))
