import json
import threading
import time

from guide_agent.flags import (
    FeatureFlagRecord,
    FeatureFlagSet,
    FeatureFlagStore,
    InMemoryFlagLoader,
    JsonFileFlagLoader,
)
from guide_agent.flags.store import DEFAULT_ROLLBACK_TRIGGERS
from guide_agent.types import MigrationState, ToolCategory


class FailingLoader(InMemoryFlagLoader):
    def save(self, record: FeatureFlagRecord) -> None:
        raise OSError("disk full")


def test_defaults_start_on_legacy_with_known_triggers() -> None:
    store = FeatureFlagStore()
    flags = store.get()

    assert flags.migration_state is MigrationState.LEGACY
    assert flags.enabled_categories == frozenset()
    assert set(flags.rollback_triggers) == set(DEFAULT_ROLLBACK_TRIGGERS)
    assert not any(flags.rollback_triggers.values())


def test_category_toggles_are_idempotent_and_audited() -> None:
    loader = InMemoryFlagLoader()
    store = FeatureFlagStore(loader)

    assert store.enable_category(ToolCategory.LOCATION) is True
    assert store.enable_category(ToolCategory.LOCATION) is False
    assert store.get().is_category_enabled(ToolCategory.LOCATION)

    assert store.disable_category(ToolCategory.LOCATION) is True
    assert not store.get().is_category_enabled(ToolCategory.LOCATION)

    actions = [change.action for change in store.audit_log()]
    assert actions == ["enable_category", "disable_category"]
    assert loader.saves == 2


def test_snapshots_are_immutable_values() -> None:
    store = FeatureFlagStore()
    before = store.get()

    store.set_migration_state(MigrationState.HYBRID)
    store.enable_all_categories()

    assert before.migration_state is MigrationState.LEGACY
    assert before.enabled_categories == frozenset()
    assert store.get().enabled_categories == frozenset(ToolCategory)


def test_emergency_rollback_resets_state_and_categories() -> None:
    store = FeatureFlagStore(
        initial=FeatureFlagSet(
            migration_state=MigrationState.MODULAR_ONLY,
            enabled_categories=frozenset({ToolCategory.LOCATION, ToolCategory.SEARCH}),
        )
    )

    flags = store.emergency_rollback("latency spike")

    assert flags.migration_state is MigrationState.LEGACY
    assert flags.enabled_categories == frozenset()
    assert flags.rollback_epoch == 1
    assert store.get() is flags
    [change] = store.audit_log()
    assert change.action == "emergency_rollback"
    assert change.previous_state is MigrationState.MODULAR_ONLY
    assert change.detail == "latency spike"


def test_rollback_is_audited_even_when_already_legacy() -> None:
    store = FeatureFlagStore()

    store.emergency_rollback("drill")
    store.emergency_rollback("second drill")

    assert [change.detail for change in store.audit_log()] == ["drill", "second drill"]
    assert store.get().rollback_epoch == 2


def test_rollback_wins_over_toggles_issued_before_it() -> None:
    store = FeatureFlagStore()
    epoch = store.get().rollback_epoch
    categories = list(ToolCategory)
    start = threading.Barrier(len(categories) + 1)

    def toggle(category: ToolCategory) -> None:
        start.wait()
        store.set_migration_state(MigrationState.MODULAR_ONLY, expected_epoch=epoch)
        store.enable_category(category, expected_epoch=epoch)

    def roll_back() -> None:
        start.wait()
        store.emergency_rollback("operator")

    threads = [threading.Thread(target=toggle, args=(category,)) for category in categories]
    threads.append(threading.Thread(target=roll_back))
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join(timeout=5)

    flags = store.get()
    assert flags.rollback_epoch == 1
    assert flags.migration_state is MigrationState.LEGACY
    assert flags.enabled_categories == frozenset()
    actions = [change.action for change in store.audit_log()]
    assert actions[-1] == "emergency_rollback"
    assert actions.count("emergency_rollback") == 1


def test_stale_epoch_write_is_dropped_after_rollback_in_another_thread() -> None:
    store = FeatureFlagStore(initial=FeatureFlagSet(migration_state=MigrationState.HYBRID))
    observed = store.get()

    rollback = threading.Thread(target=store.emergency_rollback, args=("latency spike",))
    rollback.start()
    rollback.join(timeout=2)

    assert store.enable_category(ToolCategory.LOCATION, expected_epoch=observed.rollback_epoch) is False
    assert store.set_migration_state(MigrationState.MODULAR_ONLY, expected_epoch=observed.rollback_epoch) is False
    assert store.get().migration_state is MigrationState.LEGACY
    assert store.set_migration_state(MigrationState.HYBRID, expected_epoch=store.get().rollback_epoch) is True


def test_injected_snapshot_gets_default_triggers() -> None:
    store = FeatureFlagStore(
        initial=FeatureFlagSet(
            migration_state=MigrationState.HYBRID,
            rollback_triggers={"user_complaints": True},
        )
    )

    triggers = store.get().rollback_triggers
    assert set(DEFAULT_ROLLBACK_TRIGGERS) <= set(triggers)
    assert triggers["user_complaints"] is True
    assert triggers["high_tool_failure_rate"] is False


class BlockingLoader(InMemoryFlagLoader):
    def __init__(self) -> None:
        super().__init__()
        self.entered = threading.Event()
        self.release = threading.Event()

    def save(self, record: FeatureFlagRecord) -> None:
        self.entered.set()
        self.release.wait(timeout=5)
        super().save(record)


def test_slow_save_does_not_block_flag_writes() -> None:
    loader = BlockingLoader()
    store = FeatureFlagStore(loader)

    writer = threading.Thread(target=store.set_migration_state, args=(MigrationState.HYBRID,))
    writer.start()
    assert loader.entered.wait(timeout=2)

    rollback = threading.Thread(target=store.emergency_rollback, args=("operator",))
    rollback.start()
    deadline = time.monotonic() + 2
    while store.get().rollback_epoch == 0 and time.monotonic() < deadline:
        time.sleep(0.01)

    # The first save is still waiting, yet the rollback is already visible.
    assert store.get().rollback_epoch == 1
    assert store.get().migration_state is MigrationState.LEGACY

    loader.release.set()
    writer.join(timeout=2)
    rollback.join(timeout=2)
    assert loader.record is not None
    assert loader.record.migration_state is MigrationState.LEGACY


def test_audit_log_is_bounded() -> None:
    from guide_agent.config import FlagStoreConfig

    store = FeatureFlagStore(config=FlagStoreConfig(audit_log_size=3))
    for _ in range(5):
        store.enable_category(ToolCategory.TRAVEL)
        store.disable_category(ToolCategory.TRAVEL)

    assert len(store.audit_log()) == 3


def test_rollback_trigger_does_not_change_migration_state() -> None:
    store = FeatureFlagStore(initial=FeatureFlagSet(migration_state=MigrationState.HYBRID))

    assert store.set_rollback_trigger("high_tool_failure_rate") is True
    assert store.set_rollback_trigger("high_tool_failure_rate") is False

    flags = store.get()
    assert flags.rollback_triggers["high_tool_failure_rate"] is True
    assert flags.migration_state is MigrationState.HYBRID


def test_persistence_failure_keeps_in_memory_change() -> None:
    store = FeatureFlagStore(FailingLoader())

    assert store.set_migration_state(MigrationState.HYBRID) is True
    assert store.get().migration_state is MigrationState.HYBRID


def test_record_accepts_legacy_aliases_and_drops_unknown_values() -> None:
    record = FeatureFlagRecord.model_validate(
        {
            "migrationState": "mcp_with_fallback",
            "enabledCategories": ["location", "teleportation", "SEARCH"],
            "rollbackTriggers": {"user_complaints": 1},
            "someFutureField": True,
        }
    )

    assert record.migration_state is MigrationState.MODULAR_WITH_FALLBACK
    assert record.enabled_categories == [ToolCategory.LOCATION, ToolCategory.SEARCH]
    assert record.rollback_triggers == {"user_complaints": True}


def test_unknown_state_falls_back_to_legacy() -> None:
    record = FeatureFlagRecord.model_validate({"migrationState": "warp_speed"})

    assert record.migration_state is MigrationState.LEGACY
    assert record.enabled_categories == []


def test_json_loader_round_trip(tmp_path) -> None:
    path = tmp_path / "flags.json"
    store = FeatureFlagStore(JsonFileFlagLoader(path))
    store.set_migration_state(MigrationState.HYBRID)
    store.enable_category(ToolCategory.LOCATION)

    payload = json.loads(path.read_text(encoding="utf-8"))
    assert payload["migrationState"] == "hybrid"
    assert payload["enabledCategories"] == ["location"]

    reloaded = FeatureFlagStore(JsonFileFlagLoader(path)).get()
    assert reloaded.migration_state is MigrationState.HYBRID
    assert reloaded.enabled_categories == frozenset({ToolCategory.LOCATION})
    assert set(DEFAULT_ROLLBACK_TRIGGERS) <= set(reloaded.rollback_triggers)


def test_json_loader_ignores_corrupt_file(tmp_path) -> None:
    path = tmp_path / "flags.json"
    path.write_text("{not json", encoding="utf-8")

    assert JsonFileFlagLoader(path).load() is None
    assert FeatureFlagStore(JsonFileFlagLoader(path)).get().migration_state is MigrationState.LEGACY
