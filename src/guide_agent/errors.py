"""Exception hierarchy for components below the tool router.

Nothing here is ever shown to the user. The router logs the exception and
returns one of the fixed messages below instead.
"""

from __future__ import annotations

from typing import Any

GENERIC_ERROR_MESSAGE = "Sorry, I couldn't complete that request right now. Please try again in a moment."
CANCELLED_MESSAGE = "Request cancelled."


class GuideAgentError(Exception):
    """Base exception carrying optional debugging context."""

    def __init__(self, message: str, **context: Any) -> None:
        self.message = message
        self.context = context
        super().__init__(message)

    def __str__(self) -> str:
        if self.context:
            details = ", ".join(f"{key}={value}" for key, value in self.context.items())
            return f"{self.message} ({details})"
        return self.message


class ProviderError(GuideAgentError):
    """A search backend call failed."""

    def __init__(self, message: str, *, transient: bool = False, **context: Any) -> None:
        super().__init__(message, **context)
        self.transient = transient


class ProviderTimeoutError(ProviderError):
    def __init__(self, message: str, **context: Any) -> None:
        super().__init__(message, transient=True, **context)


class LocationUnavailableError(GuideAgentError):
    pass


class UnknownToolError(GuideAgentError):
    pass


class ToolNotMigratedError(GuideAgentError):
    """The tool is known but has no modular implementation yet."""


class SynthesisError(GuideAgentError):
    pass


class ModularPipelineError(GuideAgentError):
    pass


class LegacyExecutionError(GuideAgentError):
    pass
