"""Feature flags controlling the legacy to modular migration."""

from .persistence import FeatureFlagRecord, InMemoryFlagLoader, JsonFileFlagLoader
from .store import FeatureFlagSet, FeatureFlagStore, FlagChange

__all__ = [
    "FeatureFlagRecord",
    "FeatureFlagSet",
    "FeatureFlagStore",
    "FlagChange",
    "InMemoryFlagLoader",
    "JsonFileFlagLoader",
]
