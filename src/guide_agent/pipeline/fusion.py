"""Fusion of provider result sets into one ranked candidate list."""

from __future__ import annotations

import asyncio
import math
from collections.abc import Sequence
from typing import Any

import structlog

from guide_agent.config import FusionConfig
from guide_agent.pipeline.addresses import haversine_meters, normalize_address, normalize_text, street_line
from guide_agent.providers.base import SearchProvider
from guide_agent.types import Candidate, FusionResult, GeoPoint, RawPlace, ResultSet

logger = structlog.get_logger(__name__)


class FusionEngine:
    """Fans out to providers, then merges, deduplicates and ranks.

    Fusion process:
    1. Query every provider concurrently; a provider that fails or times out
       contributes an empty result set.
    2. Deduplicate places on normalised (name, street line), keeping the
       richest value for each optional field.
    3. Recompute distance from the origin with the haversine formula.
    4. Rank operational first, then nearest, then most reviewed, then by name.
    5. Flag insufficient coverage when too few reliable candidates sit inside
       the requested radius so the caller can widen it.
    """

    def __init__(self, config: FusionConfig | None = None) -> None:
        self.config = config or FusionConfig()

    async def search(
        self,
        providers: Sequence[SearchProvider],
        query: str,
        origin: GeoPoint,
        *,
        radius_meters: float,
        constraints: dict[str, Any] | None = None,
    ) -> FusionResult:
        result_sets = await self.gather(
            providers,
            query,
            origin,
            radius_meters=radius_meters,
            constraints=constraints,
        )
        return self.fuse(result_sets, origin, radius_meters=radius_meters)

    async def gather(
        self,
        providers: Sequence[SearchProvider],
        query: str,
        origin: GeoPoint,
        *,
        radius_meters: float,
        constraints: dict[str, Any] | None = None,
    ) -> list[ResultSet]:
        tasks = [
            asyncio.create_task(
                self._call_provider(provider, query, origin, radius_meters, constraints or {}),
                name=provider.name,
            )
            for provider in providers
        ]
        if not tasks:
            return []
        return list(await asyncio.gather(*tasks))

    def fuse(
        self,
        result_sets: Sequence[ResultSet],
        origin: GeoPoint,
        *,
        radius_meters: float,
    ) -> FusionResult:
        merged: dict[tuple[str, str], Candidate] = {}
        snippets: list[str] = []
        failed: list[str] = []

        for result_set in result_sets:
            if result_set.error:
                failed.append(result_set.provider)
            snippets.extend(result_set.snippets)
            for place in result_set.places:
                key = _dedup_key(place)
                current = merged.get(key)
                if current is None:
                    merged[key] = _to_candidate(place, result_set.provider)
                else:
                    _merge_into(current, place, result_set.provider)

        candidates = list(merged.values())
        for candidate in candidates:
            candidate.distance_meters = (
                haversine_meters(origin, candidate.coordinates)
                if candidate.coordinates is not None
                else None
            )

        ranked = sorted(candidates, key=rank_key)
        reliable = sum(1 for candidate in ranked if self._is_reliable(candidate, radius_meters))
        insufficient = reliable < self.config.min_reliable_candidates

        total = sum(len(result_set.places) for result_set in result_sets)
        logger.info(
            "fusion_complete",
            raw_places=total,
            candidates=len(ranked),
            reliable=reliable,
            radius_meters=radius_meters,
            insufficient_coverage=insufficient,
            failed_providers=failed,
        )
        return FusionResult(
            candidates=ranked[: self.config.max_candidates],
            radius_meters=radius_meters,
            insufficient_coverage=insufficient,
            snippets=snippets,
            failed_providers=failed,
        )

    def _is_reliable(self, candidate: Candidate, radius_meters: float) -> bool:
        if candidate.is_operational is not True:
            return False
        if candidate.distance_meters is None or candidate.distance_meters > radius_meters:
            return False
        return bool(candidate.phone) or (candidate.review_count or 0) >= self.config.reliable_min_reviews

    async def _call_provider(
        self,
        provider: SearchProvider,
        query: str,
        origin: GeoPoint,
        radius_meters: float,
        constraints: dict[str, Any],
    ) -> ResultSet:
        try:
            return await provider.search_with_retry(
                query,
                origin,
                {**constraints, "radius_meters": radius_meters},
            )
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            logger.warning("provider_failed", provider=provider.name, error=str(exc))
            return ResultSet(provider=provider.name, error=str(exc))


def rank_key(candidate: Candidate) -> tuple[int, float, int, str, str]:
    """Total order: operational first, nearest, most reviewed, then name."""
    if candidate.is_operational is True:
        status_rank = 0
    elif candidate.is_operational is None:
        status_rank = 1
    else:
        status_rank = 2
    distance = candidate.distance_meters if candidate.distance_meters is not None else math.inf
    return (
        status_rank,
        distance,
        -(candidate.review_count or 0),
        candidate.name.lower(),
        candidate.address.lower(),
    )


def _dedup_key(place: RawPlace) -> tuple[str, str]:
    return normalize_text(place.name), normalize_address(street_line(place.address))


def _to_candidate(place: RawPlace, provider: str) -> Candidate:
    return Candidate(
        name=place.name,
        address=place.address,
        coordinates=place.coordinates,
        is_operational=place.is_operational,
        rating=place.rating,
        review_count=place.review_count,
        phone=place.phone,
        sources=[provider],
    )


def _merge_into(candidate: Candidate, place: RawPlace, provider: str) -> None:
    if candidate.coordinates is None:
        candidate.coordinates = place.coordinates
    if candidate.is_operational is None:
        candidate.is_operational = place.is_operational
    if candidate.rating is None:
        candidate.rating = place.rating
    if place.review_count is not None and (candidate.review_count or 0) < place.review_count:
        candidate.review_count = place.review_count
    if not candidate.phone:
        candidate.phone = place.phone
    if len(place.address) > len(candidate.address):
        candidate.address = place.address
    if provider not in candidate.sources:
        candidate.sources.append(provider)
