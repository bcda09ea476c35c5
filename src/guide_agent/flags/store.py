"""Feature flag store with atomically swapped snapshots."""

from __future__ import annotations

import threading
from collections import deque
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from types import MappingProxyType

import structlog

from guide_agent.config import FlagStoreConfig
from guide_agent.flags.persistence import FeatureFlagRecord, FlagConfigLoader
from guide_agent.types import MigrationState, ToolCategory

logger = structlog.get_logger(__name__)

DEFAULT_ROLLBACK_TRIGGERS = (
    "voice_quality_degradation",
    "audio_pipeline_errors",
    "high_tool_failure_rate",
    "performance_degradation",
    "user_complaints",
)


def _freeze(triggers: Mapping[str, bool]) -> Mapping[str, bool]:
    return MappingProxyType(dict(triggers))


@dataclass(slots=True, frozen=True)
class FeatureFlagSet:
    """Immutable snapshot read by the router once per invocation."""

    migration_state: MigrationState = MigrationState.LEGACY
    enabled_categories: frozenset[ToolCategory] = frozenset()
    rollback_triggers: Mapping[str, bool] = field(default_factory=lambda: _freeze({}))
    rollback_epoch: int = 0

    def is_category_enabled(self, category: ToolCategory | None) -> bool:
        return category is not None and category in self.enabled_categories

    def to_record(self) -> FeatureFlagRecord:
        return FeatureFlagRecord(
            migration_state=self.migration_state,
            enabled_categories=sorted(self.enabled_categories, key=lambda c: c.value),
            rollback_triggers=dict(self.rollback_triggers),
        )


@dataclass(slots=True, frozen=True)
class FlagChange:
    timestamp: datetime
    action: str
    previous_state: MigrationState
    new_state: MigrationState
    detail: str = ""


class FeatureFlagStore:
    """Single authoritative register for migration flags.

    Reads return the current snapshot without locking; the snapshot reference
    is swapped in one assignment. Writes are serialized through one lock and
    append to a bounded audit log. Persisting to the loader happens after the
    write lock is released.

    ``emergency_rollback`` outranks ordinary writes: each rollback bumps
    ``rollback_epoch`` and an ordinary write that was issued against an older
    epoch is dropped instead of overwriting the rollback. Callers that act on
    a snapshot they read earlier pass its epoch as ``expected_epoch``.
    """

    def __init__(
        self,
        loader: FlagConfigLoader | None = None,
        config: FlagStoreConfig | None = None,
        *,
        initial: FeatureFlagSet | None = None,
    ) -> None:
        self.config = config or FlagStoreConfig()
        self._loader = loader
        self._write_lock = threading.Lock()
        self._persist_lock = threading.Lock()
        self._audit: deque[FlagChange] = deque(maxlen=self.config.audit_log_size)
        if initial is None:
            self._snapshot = self._load_initial()
        else:
            triggers = {name: False for name in DEFAULT_ROLLBACK_TRIGGERS}
            triggers.update(initial.rollback_triggers)
            self._snapshot = replace(initial, rollback_triggers=_freeze(triggers))
        self._persisted = self._snapshot.to_record()

    def get(self) -> FeatureFlagSet:
        return self._snapshot

    def set_migration_state(self, state: MigrationState, *, expected_epoch: int | None = None) -> bool:
        return self._apply(
            "set_migration_state",
            lambda flags: replace(flags, migration_state=state),
            detail=state.value,
            expected_epoch=expected_epoch,
        )

    def enable_category(self, category: ToolCategory, *, expected_epoch: int | None = None) -> bool:
        return self._apply(
            "enable_category",
            lambda flags: replace(flags, enabled_categories=flags.enabled_categories | {category}),
            detail=category.value,
            expected_epoch=expected_epoch,
        )

    def disable_category(self, category: ToolCategory, *, expected_epoch: int | None = None) -> bool:
        return self._apply(
            "disable_category",
            lambda flags: replace(flags, enabled_categories=flags.enabled_categories - {category}),
            detail=category.value,
            expected_epoch=expected_epoch,
        )

    def enable_all_categories(self) -> bool:
        return self._apply(
            "enable_all_categories",
            lambda flags: replace(flags, enabled_categories=frozenset(ToolCategory)),
        )

    def disable_all_categories(self) -> bool:
        return self._apply(
            "disable_all_categories",
            lambda flags: replace(flags, enabled_categories=frozenset()),
        )

    def set_rollback_trigger(self, name: str, value: bool = True) -> bool:
        def _mutate(flags: FeatureFlagSet) -> FeatureFlagSet:
            triggers = dict(flags.rollback_triggers)
            triggers[name] = value
            return replace(flags, rollback_triggers=_freeze(triggers))

        return self._apply("set_rollback_trigger", _mutate, detail=f"{name}={value}")

    def emergency_rollback(self, reason: str) -> FeatureFlagSet:
        """Force every subsequent invocation onto the legacy path."""
        with self._write_lock:
            current = self._snapshot
            updated = replace(
                current,
                migration_state=MigrationState.LEGACY,
                enabled_categories=frozenset(),
                rollback_epoch=current.rollback_epoch + 1,
            )
            self._commit("emergency_rollback", current, updated, detail=reason)
        self._persist("emergency_rollback")

        logger.critical(
            "emergency_rollback",
            reason=reason,
            previous_state=current.migration_state.value,
            epoch=updated.rollback_epoch,
        )
        return updated

    def audit_log(self) -> list[FlagChange]:
        return list(self._audit)

    def _apply(
        self,
        action: str,
        mutate: Callable[[FeatureFlagSet], FeatureFlagSet],
        *,
        detail: str = "",
        expected_epoch: int | None = None,
    ) -> bool:
        observed_epoch = self._snapshot.rollback_epoch if expected_epoch is None else expected_epoch
        with self._write_lock:
            current = self._snapshot
            if current.rollback_epoch != observed_epoch:
                logger.warning("flag_write_superseded_by_rollback", action=action, detail=detail)
                return False
            updated = mutate(current)
            if updated == current:
                return False
            self._commit(action, current, updated, detail=detail)
        self._persist(action)

        logger.info(
            "feature_flag_changed",
            action=action,
            detail=detail,
            migration_state=updated.migration_state.value,
            enabled_categories=sorted(c.value for c in updated.enabled_categories),
        )
        return True

    def _commit(
        self,
        action: str,
        current: FeatureFlagSet,
        updated: FeatureFlagSet,
        *,
        detail: str,
    ) -> None:
        # Caller holds the write lock.
        self._snapshot = updated
        self._audit.append(
            FlagChange(
                timestamp=datetime.now(timezone.utc),
                action=action,
                previous_state=current.migration_state,
                new_state=updated.migration_state,
                detail=detail,
            )
        )

    def _persist(self, action: str) -> None:
        # Always saves the latest snapshot, so out-of-order writers cannot
        # leave an older record on disk.
        if self._loader is None:
            return
        with self._persist_lock:
            record = self._snapshot.to_record()
            if record == self._persisted:
                return
            try:
                self._loader.save(record)
            except OSError as exc:
                # The in-memory snapshot stays authoritative for this process.
                logger.error("flag_persist_failed", action=action, error=str(exc))
                return
            self._persisted = record

    def _load_initial(self) -> FeatureFlagSet:
        triggers = {name: False for name in DEFAULT_ROLLBACK_TRIGGERS}
        record = self._loader.load() if self._loader is not None else None
        if record is None:
            return FeatureFlagSet(rollback_triggers=_freeze(triggers))

        triggers.update(record.rollback_triggers)
        logger.info(
            "feature_flags_loaded",
            migration_state=record.migration_state.value,
            enabled_categories=[c.value for c in record.enabled_categories],
        )
        return FeatureFlagSet(
            migration_state=record.migration_state,
            enabled_categories=frozenset(record.enabled_categories),
            rollback_triggers=_freeze(triggers),
        )
