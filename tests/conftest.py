from collections.abc import Callable

import pytest

from guide_agent.types import GeoPoint, RawPlace

# Upper West Side, Manhattan.
ORIGIN = GeoPoint(latitude=40.7780, longitude=-73.9818)

# Roughly 111 m per 0.001 degree of latitude.
METERS_PER_MILLIDEGREE = 111.2


@pytest.fixture
def origin() -> GeoPoint:
    return ORIGIN


@pytest.fixture
def place_factory() -> Callable[..., RawPlace]:
    def _make(
        name: str,
        address: str,
        *,
        north_meters: float = 100.0,
        is_operational: bool | None = True,
        rating: float | None = 4.5,
        review_count: int | None = 120,
        phone: str | None = "(212) 555-0100",
    ) -> RawPlace:
        return RawPlace(
            name=name,
            address=address,
            coordinates=GeoPoint(
                latitude=ORIGIN.latitude + north_meters / METERS_PER_MILLIDEGREE / 1000.0,
                longitude=ORIGIN.longitude,
            ),
            is_operational=is_operational,
            rating=rating,
            review_count=review_count,
            phone=phone,
        )

    return _make
