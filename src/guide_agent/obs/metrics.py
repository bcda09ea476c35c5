"""Performance monitoring for legacy vs modular tool execution."""

from __future__ import annotations

import threading
import time
from collections import defaultdict, deque
from collections.abc import Iterable
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any

import structlog

from guide_agent.config import MetricsConfig, RouterConfig
from guide_agent.types import ExecutionPath, PerformanceSample

logger = structlog.get_logger(__name__)

HIGH_FAILURE_TRIGGER = "high_tool_failure_rate"
PERFORMANCE_TRIGGER = "performance_degradation"


@dataclass(slots=True, frozen=True)
class PathComparison:
    avg_latency_legacy: float
    avg_latency_modular: float
    error_rate_legacy: float
    error_rate_modular: float
    legacy_count: int
    modular_count: int

    def as_dict(self) -> dict[str, float | int]:
        return {
            "avgLatencyLegacy": self.avg_latency_legacy,
            "avgLatencyModular": self.avg_latency_modular,
            "errorRateLegacy": self.error_rate_legacy,
            "errorRateModular": self.error_rate_modular,
            "legacyCount": self.legacy_count,
            "modularCount": self.modular_count,
        }


class PerformanceMonitor:
    """Append-only sample log with path comparison and rollback signals.

    ``record`` only appends to a bounded deque and bumps a few counters, so it
    is safe to call inline from the router without awaiting anything. Readers
    work on a copy taken under the same lock, since the HTTP handlers run in
    worker threads. Samples from different invocations carry no ordering
    guarantee.

    Rollback signals follow two rules:
    - consecutive modular failures for one tool reaching
      ``failure_trigger_threshold`` raise ``high_tool_failure_rate``;
    - modular executions slower than ``slow_execution_seconds`` reaching
      ``slow_trigger_threshold`` for one tool raise ``performance_degradation``.
    """

    def __init__(
        self,
        config: MetricsConfig | None = None,
        router_config: RouterConfig | None = None,
    ) -> None:
        self.config = config or MetricsConfig()
        self.router_config = router_config or RouterConfig()
        self._samples: deque[PerformanceSample] = deque(maxlen=self.config.max_samples)
        self._modular_failures: dict[str, int] = defaultdict(int)
        self._slow_modular: dict[str, int] = defaultdict(int)
        self._lock = threading.Lock()

    def record(self, sample: PerformanceSample) -> list[str]:
        """Append a sample and return any rollback triggers it raised."""
        raised: list[str] = []
        with self._lock:
            self._samples.append(sample)
            if sample.cancelled:
                return raised
            if sample.path is ExecutionPath.MODULAR or sample.fallback:
                modular_failed = sample.fallback or not sample.success
                if modular_failed:
                    self._modular_failures[sample.tool_name] += 1
                    count = self._modular_failures[sample.tool_name]
                    if count == self.router_config.failure_trigger_threshold:
                        raised.append(HIGH_FAILURE_TRIGGER)
                else:
                    self._modular_failures[sample.tool_name] = 0

            if (
                sample.path is ExecutionPath.MODULAR
                and sample.latency_ms > self.router_config.slow_execution_seconds * 1000.0
            ):
                self._slow_modular[sample.tool_name] += 1
                if self._slow_modular[sample.tool_name] == self.router_config.slow_trigger_threshold:
                    raised.append(PERFORMANCE_TRIGGER)

        for trigger in raised:
            logger.warning("rollback_signal_raised", trigger=trigger, tool=sample.tool_name)
        return raised

    def samples(self, window: timedelta | None = None) -> list[PerformanceSample]:
        with self._lock:
            snapshot = list(self._samples)
        if window is None:
            return snapshot
        cutoff = datetime.now(timezone.utc) - window
        return [sample for sample in snapshot if sample.timestamp >= cutoff]

    def export(self, limit: int | None = None) -> list[dict[str, Any]]:
        records = [sample.as_record() for sample in self.samples()]
        if limit is not None:
            return records[-limit:]
        return records

    def modular_failure_count(self, tool_name: str) -> int:
        with self._lock:
            return self._modular_failures.get(tool_name, 0)

    def compare(self, window: timedelta | None = None) -> PathComparison:
        """Compare legacy and modular latency and error rates.

        Fallback samples count as failed modular attempts and are left out of
        both latency averages, since their latency spans two paths. Cancelled
        samples are ignored.
        """
        samples = [sample for sample in self.samples(window) if not sample.cancelled]
        legacy = [s for s in samples if s.path is ExecutionPath.LEGACY and not s.fallback]
        modular = [s for s in samples if s.path is ExecutionPath.MODULAR]
        fallbacks = [s for s in samples if s.fallback]

        modular_attempts = len(modular) + len(fallbacks)
        modular_errors = sum(1 for s in modular if not s.success) + len(fallbacks)
        return PathComparison(
            avg_latency_legacy=_average(s.latency_ms for s in legacy),
            avg_latency_modular=_average(s.latency_ms for s in modular),
            error_rate_legacy=_ratio(sum(1 for s in legacy if not s.success), len(legacy)),
            error_rate_modular=_ratio(modular_errors, modular_attempts),
            legacy_count=len(legacy),
            modular_count=modular_attempts,
        )

    def summary(self) -> dict[str, Any]:
        """Aggregate per-path metrics for dashboard display."""
        samples = [sample for sample in self.samples() if not sample.cancelled]
        per_path: dict[str, dict[str, float | int]] = {}
        for path in ExecutionPath:
            latencies = sorted(s.latency_ms for s in samples if s.path is path)
            if not latencies:
                per_path[path.value] = {"count": 0, "avg_latency_ms": 0.0, "p95_latency_ms": 0.0}
                continue
            p95_index = max(0, int((len(latencies) * 0.95) - 1))
            per_path[path.value] = {
                "count": len(latencies),
                "avg_latency_ms": sum(latencies) / len(latencies),
                "p95_latency_ms": latencies[p95_index],
            }
        return {
            "total_samples": len(samples),
            "fallback_count": sum(1 for s in samples if s.fallback),
            "paths": per_path,
            "comparison": self.compare().as_dict(),
        }


class Timer:
    """Simple context timer used by the router."""

    def __init__(self) -> None:
        self._start = 0.0
        self.elapsed_ms = 0.0

    def __enter__(self) -> "Timer":
        self._start = time.perf_counter()
        return self

    def __exit__(self, exc_type: object, exc: object, tb: object) -> None:
        self.elapsed_ms = (time.perf_counter() - self._start) * 1000.0

    def lap_ms(self) -> float:
        return (time.perf_counter() - self._start) * 1000.0


def _average(values: Iterable[float]) -> float:
    items = list(values)
    if not items:
        return 0.0
    return sum(items) / len(items)


def _ratio(numerator: int, denominator: int) -> float:
    if denominator == 0:
        return 0.0
    return numerator / denominator
