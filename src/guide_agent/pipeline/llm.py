"""Chat model construction and response helpers."""

from __future__ import annotations

from typing import Any

from guide_agent.config import LLMConfig


def create_chat_model(api_key: str | None, config: LLMConfig | None = None) -> Any:
    """Return a LangChain chat model, or ``None`` when no key is configured."""
    if not api_key:
        return None

    from langchain_openai import ChatOpenAI

    config = config or LLMConfig()
    return ChatOpenAI(
        model=config.model,
        temperature=config.temperature,
        api_key=api_key,
        timeout=config.timeout_seconds,
    )


def message_text(message: Any) -> str:
    """Flatten a chat model response into plain text."""
    content = getattr(message, "content", message)
    if isinstance(content, list):
        parts: list[str] = []
        for item in content:
            if isinstance(item, dict) and "text" in item:
                parts.append(str(item["text"]))
            else:
                parts.append(str(item))
        return " ".join(parts).strip()
    return str(content).strip()
