"""Ambiguity detection between a query and its candidates."""

from __future__ import annotations

import asyncio
from collections.abc import Sequence
from typing import Any

import structlog
from langchain_core.prompts import ChatPromptTemplate

from guide_agent.config import LLMConfig
from guide_agent.pipeline.llm import message_text
from guide_agent.types import Candidate, Decision

logger = structlog.get_logger(__name__)

CLARIFY_PREFIX = "CLARIFY:"
PROCEED_TOKEN = "PROCEED"

_AMBIGUITY_PROMPT = """
You are the ambiguity check for a travel voice assistant. Decide whether the
search results match what the user asked for.

Ask for clarification when any of these apply:
1) Brand or spelling mismatch (e.g. "Uniqlo" vs "Uniclo", "Starbucks" vs "Star Bucks").
2) A generic term that could reasonably mean several different things.
3) A near-miss substitute business (e.g. a store that sells a brand instead of the brand's own store).
4) No exact match at all, only similar alternatives.

Minor variations are fine. Only significant mismatches need clarification.

Reply with exactly one of:
- PROCEED
- CLARIFY: <one short natural question that names both what the user asked for and what was found>
""".strip()


class AmbiguityDetector:
    """Classifies a candidate list as PROCEED or CLARIFY(question).

    Stateless across calls. Any reply that is not one of the two tagged
    outcomes, a model error, or a timeout results in PROCEED so a user is
    never blocked on the check.
    """

    def __init__(self, llm: Any | None = None, config: LLMConfig | None = None) -> None:
        self.llm = llm
        self.config = config or LLMConfig()
        self._prompt = ChatPromptTemplate.from_messages(
            [("system", _AMBIGUITY_PROMPT), ("human", "{analysis}")]
        )

    async def classify(self, query: str, candidates: Sequence[Candidate]) -> Decision:
        if self.llm is None or not candidates:
            return Decision.proceed()

        analysis = build_analysis_context(query, candidates[: self.config.max_prompt_candidates])
        chain = self._prompt | self.llm
        try:
            response = await asyncio.wait_for(
                chain.ainvoke({"analysis": analysis}),
                timeout=self.config.timeout_seconds,
            )
        except asyncio.TimeoutError:
            logger.warning("ambiguity_check_timeout", query=query)
            return Decision.proceed()
        except Exception as exc:
            logger.warning("ambiguity_check_failed", query=query, error=str(exc))
            return Decision.proceed()

        decision = parse_decision(message_text(response))
        if decision.needs_clarification:
            logger.info("ambiguity_detected", query=query, question=decision.question)
        return decision


def build_analysis_context(query: str, candidates: Sequence[Candidate]) -> str:
    lines = [f"User query: '{query}'", "", "Search results:"]
    for index, candidate in enumerate(candidates, start=1):
        lines.append(f"{index}. {candidate.name} at {candidate.address}")
    lines.append("")
    lines.append("Do these results match what the user is looking for?")
    return "\n".join(lines)


def parse_decision(reply: str) -> Decision:
    text = reply.strip()
    if text.upper().startswith(CLARIFY_PREFIX):
        question = text[len(CLARIFY_PREFIX):].strip()
        if question:
            return Decision.clarify(question)
    return Decision.proceed()
