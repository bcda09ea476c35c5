"""Location collaborator interface."""

from __future__ import annotations

from typing import Protocol

from guide_agent.types import LocationFix


class LocationProvider(Protocol):
    async def current_fix(self) -> LocationFix | None: ...


class StaticLocationProvider:
    """Returns a fixed GPS fix; ``None`` models a device without a fix."""

    def __init__(self, fix: LocationFix | None = None) -> None:
        self.fix = fix

    async def current_fix(self) -> LocationFix | None:
        return self.fix
