"""Search backends and the location collaborator."""

from .base import SearchProvider, StaticPlaceProvider
from .location import LocationProvider, StaticLocationProvider

__all__ = ["LocationProvider", "SearchProvider", "StaticLocationProvider", "StaticPlaceProvider"]
