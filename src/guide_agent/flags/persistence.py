"""Persisted feature flag record and config loaders."""

from __future__ import annotations

import json
import os
from pathlib import Path
from typing import Any, Protocol

import structlog
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from guide_agent.types import MigrationState, ToolCategory

logger = structlog.get_logger(__name__)

# Values written by the pre-migration app.
_STATE_ALIASES = {
    "mcp_only": MigrationState.MODULAR_ONLY,
    "mcp_with_fallback": MigrationState.MODULAR_WITH_FALLBACK,
}


class FeatureFlagRecord(BaseModel):
    """Wire/persisted form of the flag set.

    Unknown fields are ignored and missing fields fall back to ``legacy`` and
    empty collections, so older and newer writers can share one file.
    """

    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    migration_state: MigrationState = Field(default=MigrationState.LEGACY, alias="migrationState")
    enabled_categories: list[ToolCategory] = Field(default_factory=list, alias="enabledCategories")
    rollback_triggers: dict[str, bool] = Field(default_factory=dict, alias="rollbackTriggers")

    @field_validator("migration_state", mode="before")
    @classmethod
    def _coerce_state(cls, value: Any) -> MigrationState:
        if isinstance(value, MigrationState):
            return value
        text = str(value or "").strip().lower()
        if text in _STATE_ALIASES:
            return _STATE_ALIASES[text]
        try:
            return MigrationState(text)
        except ValueError:
            logger.warning("unknown_migration_state", value=value)
            return MigrationState.LEGACY

    @field_validator("enabled_categories", mode="before")
    @classmethod
    def _drop_unknown_categories(cls, value: Any) -> list[ToolCategory]:
        if not isinstance(value, (list, tuple, set, frozenset)):
            return []
        known = {category.value for category in ToolCategory}
        categories: list[ToolCategory] = []
        for item in value:
            raw = item.value if isinstance(item, ToolCategory) else str(item).lower()
            if raw in known and ToolCategory(raw) not in categories:
                categories.append(ToolCategory(raw))
        return categories

    @field_validator("rollback_triggers", mode="before")
    @classmethod
    def _coerce_triggers(cls, value: Any) -> dict[str, bool]:
        if not isinstance(value, dict):
            return {}
        return {str(key): bool(flag) for key, flag in value.items()}

    def to_payload(self) -> dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True)


class FlagConfigLoader(Protocol):
    """Config-loader collaborator used by the flag store."""

    def load(self) -> FeatureFlagRecord | None: ...

    def save(self, record: FeatureFlagRecord) -> None: ...


class InMemoryFlagLoader:
    def __init__(self, record: FeatureFlagRecord | None = None) -> None:
        self.record = record
        self.saves = 0

    def load(self) -> FeatureFlagRecord | None:
        return self.record

    def save(self, record: FeatureFlagRecord) -> None:
        self.record = record
        self.saves += 1


class JsonFileFlagLoader:
    """Stores the flag record as a JSON document on local disk."""

    def __init__(self, path: str | Path) -> None:
        self.path = Path(path)

    def load(self) -> FeatureFlagRecord | None:
        if not self.path.exists():
            return None
        try:
            payload = json.loads(self.path.read_text(encoding="utf-8"))
            if not isinstance(payload, dict):
                raise ValueError("flag file must contain a JSON object")
            return FeatureFlagRecord.model_validate(payload)
        except (OSError, ValueError, ValidationError) as exc:
            logger.warning("flag_file_unreadable", path=str(self.path), error=str(exc))
            return None

    def save(self, record: FeatureFlagRecord) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = self.path.with_suffix(self.path.suffix + ".tmp")
        tmp_path.write_text(json.dumps(record.to_payload(), indent=2), encoding="utf-8")
        os.replace(tmp_path, self.path)
