"""Legacy execution path used when a tool is not routed to the modular path."""

from __future__ import annotations

from collections.abc import Awaitable, Callable
from typing import Any

import httpx
import structlog

from guide_agent.errors import GENERIC_ERROR_MESSAGE, LegacyExecutionError
from guide_agent.obs.metrics import Timer
from guide_agent.types import ExecutionPath, ExecutionResult, ToolInvocation, ToolResponse

logger = structlog.get_logger(__name__)

LegacyExecutor = Callable[[str, dict[str, Any]], Awaitable[ToolResponse]]


class LegacyPath:
    """Wraps the pre-existing tool executor behind the execution interface.

    The legacy system owns its own behavior. This adapter only guarantees the
    response contract: whatever the executor does, the caller gets a
    ``{content, isError}`` result and never an exception.
    """

    path = ExecutionPath.LEGACY

    def __init__(self, executor: LegacyExecutor) -> None:
        self.executor = executor

    async def execute(self, invocation: ToolInvocation) -> ExecutionResult:
        with Timer() as timer:
            try:
                response = await self.executor(invocation.tool_name, invocation.params)
            except Exception as exc:
                logger.error(
                    "legacy_execution_failed",
                    tool=invocation.tool_name,
                    error=str(exc),
                    error_type=type(exc).__name__,
                )
                response = ToolResponse(content=GENERIC_ERROR_MESSAGE, is_error=True)
        return ExecutionResult(
            content=response.content,
            is_error=response.is_error,
            path=ExecutionPath.LEGACY,
            latency_ms=timer.elapsed_ms,
            request_id=invocation.request_id,
        )


class HttpLegacyExecutor:
    """Calls the legacy tool service at ``POST {base_url}/tools/{name}``."""

    def __init__(
        self,
        base_url: str,
        *,
        timeout: float = 15.0,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.client = client or httpx.AsyncClient(timeout=timeout)

    async def __call__(self, tool_name: str, params: dict[str, Any]) -> ToolResponse:
        try:
            response = await self.client.post(f"{self.base_url}/tools/{tool_name}", json=params)
            response.raise_for_status()
            data = response.json()
        except (httpx.HTTPError, ValueError) as exc:
            raise LegacyExecutionError("Legacy tool call failed", tool=tool_name, error=str(exc)) from exc

        if not isinstance(data, dict) or "content" not in data:
            raise LegacyExecutionError("Legacy tool returned an unexpected payload", tool=tool_name)
        return ToolResponse(content=str(data["content"]), is_error=bool(data.get("isError", False)))

    async def aclose(self) -> None:
        await self.client.aclose()


async def unavailable_legacy_executor(tool_name: str, params: dict[str, Any]) -> ToolResponse:
    """Executor used when no legacy service is configured."""
    del params
    logger.warning("legacy_executor_unconfigured", tool=tool_name)
    return ToolResponse(content=GENERIC_ERROR_MESSAGE, is_error=True)
