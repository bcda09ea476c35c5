import threading
from datetime import datetime, timedelta, timezone

import pytest

from guide_agent.config import MetricsConfig, RouterConfig
from guide_agent.obs.metrics import HIGH_FAILURE_TRIGGER, PERFORMANCE_TRIGGER, PerformanceMonitor
from guide_agent.types import ExecutionPath, PerformanceSample


def _sample(path: ExecutionPath, latency_ms: float, success: bool = True, **kwargs) -> PerformanceSample:
    return PerformanceSample(tool_name="find_nearby_places", path=path, latency_ms=latency_ms, success=success, **kwargs)


def test_compare_reports_latency_and_error_rates() -> None:
    monitor = PerformanceMonitor()
    monitor.record(_sample(ExecutionPath.LEGACY, 100.0))
    monitor.record(_sample(ExecutionPath.LEGACY, 300.0, success=False))
    monitor.record(_sample(ExecutionPath.MODULAR, 50.0))
    monitor.record(_sample(ExecutionPath.MODULAR, 150.0))

    comparison = monitor.compare()

    assert comparison.avg_latency_legacy == pytest.approx(200.0)
    assert comparison.avg_latency_modular == pytest.approx(100.0)
    assert comparison.error_rate_legacy == pytest.approx(0.5)
    assert comparison.error_rate_modular == 0.0
    assert comparison.as_dict()["legacyCount"] == 2


def test_fallbacks_count_as_modular_failures() -> None:
    monitor = PerformanceMonitor()
    monitor.record(_sample(ExecutionPath.MODULAR, 80.0))
    monitor.record(_sample(ExecutionPath.LEGACY, 900.0, fallback=True))

    comparison = monitor.compare()

    assert comparison.modular_count == 2
    assert comparison.error_rate_modular == pytest.approx(0.5)
    assert comparison.avg_latency_modular == pytest.approx(80.0)
    assert comparison.legacy_count == 0


def test_cancelled_samples_are_ignored() -> None:
    monitor = PerformanceMonitor()
    monitor.record(_sample(ExecutionPath.MODULAR, 10.0, success=False, cancelled=True))

    assert monitor.compare().modular_count == 0
    assert monitor.summary()["total_samples"] == 0
    assert len(monitor.samples()) == 1


def test_window_excludes_old_samples() -> None:
    monitor = PerformanceMonitor()
    old = datetime.now(timezone.utc) - timedelta(hours=2)
    monitor.record(_sample(ExecutionPath.LEGACY, 500.0, timestamp=old))
    monitor.record(_sample(ExecutionPath.LEGACY, 100.0))

    assert monitor.compare(timedelta(minutes=5)).avg_latency_legacy == pytest.approx(100.0)
    assert monitor.compare().legacy_count == 2


def test_empty_monitor_compares_to_zero() -> None:
    assert PerformanceMonitor().compare().as_dict() == {
        "avgLatencyLegacy": 0.0,
        "avgLatencyModular": 0.0,
        "errorRateLegacy": 0.0,
        "errorRateModular": 0.0,
        "legacyCount": 0,
        "modularCount": 0,
    }


def test_sample_log_is_bounded_and_exported() -> None:
    monitor = PerformanceMonitor(MetricsConfig(max_samples=3))
    for latency in (1.0, 2.0, 3.0, 4.0):
        monitor.record(_sample(ExecutionPath.MODULAR, latency))

    records = monitor.export()
    assert [record["latencyMs"] for record in records] == [2.0, 3.0, 4.0]
    assert set(records[0]) == {"toolName", "path", "latencyMs", "success", "timestamp"}
    assert monitor.export(limit=1)[0]["latencyMs"] == 4.0


def test_consecutive_failures_raise_trigger_once() -> None:
    monitor = PerformanceMonitor(router_config=RouterConfig(failure_trigger_threshold=3))

    raised = [monitor.record(_sample(ExecutionPath.MODULAR, 10.0, success=False)) for _ in range(4)]

    assert raised == [[], [], [HIGH_FAILURE_TRIGGER], []]


def test_success_resets_failure_streak() -> None:
    monitor = PerformanceMonitor(router_config=RouterConfig(failure_trigger_threshold=2))
    monitor.record(_sample(ExecutionPath.MODULAR, 10.0, success=False))
    monitor.record(_sample(ExecutionPath.MODULAR, 10.0))

    assert monitor.record(_sample(ExecutionPath.MODULAR, 10.0, success=False)) == []
    assert monitor.modular_failure_count("find_nearby_places") == 1


def test_slow_modular_executions_raise_performance_trigger() -> None:
    monitor = PerformanceMonitor(
        router_config=RouterConfig(slow_execution_seconds=1.0, slow_trigger_threshold=2)
    )
    monitor.record(_sample(ExecutionPath.MODULAR, 1500.0))

    assert monitor.record(_sample(ExecutionPath.MODULAR, 2500.0)) == [PERFORMANCE_TRIGGER]


def test_summary_reports_p95_per_path() -> None:
    monitor = PerformanceMonitor()
    for latency in range(1, 21):
        monitor.record(_sample(ExecutionPath.LEGACY, float(latency)))

    summary = monitor.summary()

    assert summary["paths"]["legacy"]["count"] == 20
    assert summary["paths"]["legacy"]["p95_latency_ms"] == 19.0
    assert summary["paths"]["modular"]["count"] == 0


def test_readers_tolerate_concurrent_records() -> None:
    monitor = PerformanceMonitor(MetricsConfig(max_samples=500))
    stop = threading.Event()

    def writer() -> None:
        while not stop.is_set():
            monitor.record(_sample(ExecutionPath.MODULAR, 10.0))

    thread = threading.Thread(target=writer)
    thread.start()
    try:
        for _ in range(50):
            assert monitor.summary()["total_samples"] >= 0
            assert len(monitor.export(limit=20)) <= 20
    finally:
        stop.set()
        thread.join(timeout=2)

    assert monitor.summary()["total_samples"] == len(monitor.samples())
