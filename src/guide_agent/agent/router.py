"""Dual-path tool router."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Protocol

import structlog

from guide_agent.agent.registry import ToolRegistry
from guide_agent.config import RouterConfig
from guide_agent.errors import CANCELLED_MESSAGE, GENERIC_ERROR_MESSAGE, ModularPipelineError
from guide_agent.flags.store import FeatureFlagSet, FeatureFlagStore
from guide_agent.obs.metrics import PerformanceMonitor, Timer
from guide_agent.types import (
    ExecutionPath,
    ExecutionResult,
    MigrationState,
    PerformanceSample,
    ToolCategory,
    ToolInvocation,
)

logger = structlog.get_logger(__name__)

_FALLBACK_STATES = frozenset({MigrationState.HYBRID, MigrationState.MODULAR_WITH_FALLBACK})


class ExecutionStrategy(Protocol):
    path: ExecutionPath

    async def execute(self, invocation: ToolInvocation) -> ExecutionResult: ...


class InvocationCancelled(Exception):
    """Raised internally when the caller signals cancellation."""


@dataclass(slots=True)
class _Attempt:
    path: ExecutionPath
    fallback: bool = False


def route(flags: FeatureFlagSet, category: ToolCategory | None) -> ExecutionPath:
    """Pure routing decision for one flag snapshot and tool category."""
    if flags.migration_state is MigrationState.LEGACY:
        return ExecutionPath.LEGACY
    if not flags.is_category_enabled(category):
        return ExecutionPath.LEGACY
    return ExecutionPath.MODULAR


class ToolRouter:
    """Routes each tool invocation to the legacy or modular path.

    Every invocation reads one flag snapshot up front, so a concurrent flag
    change or emergency rollback affects only invocations that start after it.
    The router never raises to its caller: modular failures either fall back
    to legacy or become a generic error result, depending on migration state.
    Exactly one performance sample is recorded per invocation.
    """

    def __init__(
        self,
        *,
        registry: ToolRegistry,
        flags: FeatureFlagStore,
        modular: ExecutionStrategy,
        legacy: ExecutionStrategy,
        monitor: PerformanceMonitor,
        config: RouterConfig | None = None,
    ) -> None:
        self.registry = registry
        self.flags = flags
        self.modular = modular
        self.legacy = legacy
        self.monitor = monitor
        self.config = config or RouterConfig()
        self._trigger_writes: set[asyncio.Task[None]] = set()

    async def flush(self) -> None:
        """Wait for rollback-trigger writes started by earlier invocations."""
        while self._trigger_writes:
            await asyncio.gather(*self._trigger_writes, return_exceptions=True)

    async def execute(
        self,
        invocation: ToolInvocation,
        *,
        cancel: asyncio.Event | None = None,
    ) -> ExecutionResult:
        flags = self.flags.get()
        category = self.registry.category_for(invocation.tool_name)
        decision = route(flags, category)
        attempt = _Attempt(path=decision)

        with structlog.contextvars.bound_contextvars(
            request_id=invocation.request_id,
            tool=invocation.tool_name,
        ):
            logger.info(
                "tool_routed",
                path=decision.value,
                migration_state=flags.migration_state.value,
                category=category.value if category is not None else None,
            )
            timer = Timer()
            try:
                with timer:
                    result = await self._until_cancelled(
                        self._run(invocation, flags, decision, attempt),
                        cancel,
                    )
            except InvocationCancelled:
                logger.info("tool_cancelled", path=attempt.path.value)
                result = ExecutionResult(
                    content=CANCELLED_MESSAGE,
                    is_error=True,
                    path=attempt.path,
                    latency_ms=0.0,
                    fallback_used=attempt.fallback,
                    cancelled=True,
                )
            except asyncio.CancelledError:
                self._record(invocation, attempt, timer.lap_ms(), success=False, cancelled=True)
                raise

            result.latency_ms = timer.elapsed_ms
            result.request_id = invocation.request_id
            self._record(
                invocation,
                attempt,
                result.latency_ms,
                success=not result.is_error,
                cancelled=result.cancelled,
            )
            logger.info(
                "tool_completed",
                path=result.path.value,
                latency_ms=round(result.latency_ms, 2),
                is_error=result.is_error,
                fallback=result.fallback_used,
            )
        return result

    async def _run(
        self,
        invocation: ToolInvocation,
        flags: FeatureFlagSet,
        decision: ExecutionPath,
        attempt: _Attempt,
    ) -> ExecutionResult:
        if decision is ExecutionPath.LEGACY:
            return await self.legacy.execute(invocation)

        try:
            result = await asyncio.wait_for(
                self.modular.execute(invocation),
                timeout=self.config.modular_timeout_seconds,
            )
            if not result.is_error:
                return result
            failure: Exception = ModularPipelineError("Modular path returned an error result")
        except asyncio.TimeoutError:
            failure = ModularPipelineError(
                "Modular path timed out",
                timeout_seconds=self.config.modular_timeout_seconds,
            )
        except Exception as exc:
            failure = exc

        logger.warning(
            "modular_execution_failed",
            error=str(failure),
            error_type=type(failure).__name__,
        )
        if flags.migration_state not in _FALLBACK_STATES:
            return ExecutionResult(
                content=GENERIC_ERROR_MESSAGE,
                is_error=True,
                path=ExecutionPath.MODULAR,
                latency_ms=0.0,
            )

        logger.info("tool_fallback_to_legacy", migration_state=flags.migration_state.value)
        attempt.path = ExecutionPath.LEGACY
        attempt.fallback = True
        result = await self.legacy.execute(invocation)
        result.fallback_used = True
        return result

    @staticmethod
    async def _until_cancelled(work_coro, cancel: asyncio.Event | None) -> ExecutionResult:
        if cancel is None:
            return await work_coro
        if cancel.is_set():
            work_coro.close()
            raise InvocationCancelled()

        work = asyncio.ensure_future(work_coro)
        waiter = asyncio.ensure_future(cancel.wait())
        try:
            await asyncio.wait({work, waiter}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            waiter.cancel()
            if not work.done() or cancel.is_set():
                work.cancel()
        if cancel.is_set():
            raise InvocationCancelled()
        return work.result()

    def _record(
        self,
        invocation: ToolInvocation,
        attempt: _Attempt,
        latency_ms: float,
        *,
        success: bool,
        cancelled: bool,
    ) -> None:
        sample = PerformanceSample(
            tool_name=invocation.tool_name,
            path=attempt.path,
            latency_ms=latency_ms,
            success=success,
            fallback=attempt.fallback,
            cancelled=cancelled,
        )
        triggers = self.monitor.record(sample)
        if not triggers:
            return
        # Flag writes may hit disk; keep them off the event loop.
        task = asyncio.get_running_loop().create_task(
            asyncio.to_thread(self._raise_triggers, triggers)
        )
        self._trigger_writes.add(task)
        task.add_done_callback(self._trigger_writes.discard)

    def _raise_triggers(self, triggers: list[str]) -> None:
        for trigger in triggers:
            self.flags.set_rollback_trigger(trigger, True)
