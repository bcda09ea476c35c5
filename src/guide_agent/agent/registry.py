"""Tool registry built on Pydantic v2 models."""

from __future__ import annotations

from collections.abc import Awaitable, Callable
from typing import TYPE_CHECKING, Any

from langchain_core.tools import StructuredTool
from pydantic import BaseModel, ConfigDict

from guide_agent.errors import UnknownToolError
from guide_agent.types import ToolCategory, ToolInvocation

if TYPE_CHECKING:
    from guide_agent.agent.router import ToolRouter

ToolHandler = Callable[[BaseModel], Awaitable[str]]


class ToolDefinition(BaseModel):
    """Immutable tool declaration registered once at startup.

    ``handler`` is the modular implementation. Tools without one are still
    declared so the router knows their category, but only the legacy path can
    serve them.
    """

    model_config = ConfigDict(arbitrary_types_allowed=True, frozen=True)

    name: str
    description: str
    category: ToolCategory
    args_schema: type[BaseModel]
    handler: ToolHandler | None = None

    @property
    def is_migrated(self) -> bool:
        return self.handler is not None

    @property
    def parameter_schema(self) -> dict[str, Any]:
        return self.args_schema.model_json_schema()

    def parse(self, params: dict[str, Any]) -> BaseModel:
        return self.args_schema.model_validate(params)


class ToolRegistry:
    """Stores tool definitions and exports them to callers."""

    def __init__(self) -> None:
        self._tools: dict[str, ToolDefinition] = {}

    def register(self, definition: ToolDefinition) -> None:
        if definition.name in self._tools:
            raise ValueError(f"Tool already registered: {definition.name}")
        self._tools[definition.name] = definition

    def get(self, name: str) -> ToolDefinition | None:
        return self._tools.get(name)

    def require(self, name: str) -> ToolDefinition:
        definition = self._tools.get(name)
        if definition is None:
            raise UnknownToolError("Unknown tool", tool=name)
        return definition

    def category_for(self, name: str) -> ToolCategory | None:
        definition = self._tools.get(name)
        return definition.category if definition is not None else None

    def definitions(self) -> list[ToolDefinition]:
        return list(self._tools.values())

    def tool_schemas(self) -> list[dict[str, Any]]:
        """Function declarations in the shape realtime voice models expect."""
        return [
            {
                "type": "function",
                "name": definition.name,
                "description": definition.description,
                "parameters": definition.parameter_schema,
            }
            for definition in self._tools.values()
        ]

    def as_langchain_tools(self, router: ToolRouter) -> list[StructuredTool]:
        """Export every tool as a LangChain tool that executes via the router."""
        return [
            StructuredTool.from_function(
                name=definition.name,
                description=definition.description,
                args_schema=definition.args_schema,
                coroutine=self._build_coroutine(definition.name, router),
            )
            for definition in self._tools.values()
        ]

    @staticmethod
    def _build_coroutine(name: str, router: ToolRouter) -> Callable[..., Awaitable[str]]:
        async def _invoke(**kwargs: Any) -> str:
            params = {key: value for key, value in kwargs.items() if value is not None}
            result = await router.execute(ToolInvocation(tool_name=name, params=params))
            return result.content

        return _invoke
