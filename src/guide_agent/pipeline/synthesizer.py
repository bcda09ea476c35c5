"""Answer synthesis from fused candidates."""

from __future__ import annotations

import asyncio
from collections.abc import Sequence
from dataclasses import dataclass, field
from typing import Any

import structlog
from langchain_core.prompts import ChatPromptTemplate

from guide_agent.config import LLMConfig
from guide_agent.errors import SynthesisError
from guide_agent.pipeline.addresses import street_line
from guide_agent.pipeline.llm import message_text
from guide_agent.types import AnswerDraft, Candidate

logger = structlog.get_logger(__name__)

_SYSTEM_PROMPT = """
You are the answer writer for a travel voice assistant. Turn the numbered
candidate list into a short spoken answer.

Accuracy rules:
1) Only reference business names and addresses that appear verbatim in the numbered candidate list.
2) Never invent, approximate or complete addresses, names, phone numbers or other details.
3) Use the exact names and addresses from the list.
4) When uncertain, prefer a generic phrase such as "a place nearby" over inventing specifics.

Style:
- Conversational and concise, suitable for speech.
- Mention open or closed status, distance and rating naturally when useful.
- Recommend the best options using only the provided information.
""".strip()

_HUMAN_TEMPLATE = """
User asked: "{query}"

Location context: {location}

Candidates ({count} found):
{candidates}

Web context:
{web}

Conversation context: {conversation}

Give a natural, helpful answer with your best recommendations.
""".strip()


@dataclass(slots=True)
class SynthesisContext:
    location_description: str = "unknown"
    web_snippets: list[str] = field(default_factory=list)
    conversation_context: str | None = None


class AnswerSynthesizer:
    """Builds the answer prompt and extracts which candidates were cited.

    Without a chat model the synthesizer renders a deterministic spoken list,
    so the pipeline keeps working in offline environments.
    """

    def __init__(self, llm: Any | None = None, config: LLMConfig | None = None) -> None:
        self.llm = llm
        self.config = config or LLMConfig()
        self.prompt = ChatPromptTemplate.from_messages(
            [("system", _SYSTEM_PROMPT), ("human", _HUMAN_TEMPLATE)]
        )

    def prompt_variables(
        self,
        query: str,
        candidates: Sequence[Candidate],
        context: SynthesisContext,
    ) -> dict[str, Any]:
        listed = list(candidates[: self.config.max_prompt_candidates])
        return {
            "query": query,
            "location": context.location_description,
            "count": len(listed),
            "candidates": "\n".join(
                format_candidate_line(index, candidate) for index, candidate in enumerate(listed, start=1)
            ),
            "web": "\n".join(f"- {snippet}" for snippet in context.web_snippets) or "none",
            "conversation": context.conversation_context or "none",
        }

    async def synthesize(
        self,
        query: str,
        candidates: Sequence[Candidate],
        context: SynthesisContext | None = None,
    ) -> AnswerDraft:
        context = context or SynthesisContext()
        if self.llm is None:
            text = render_plain_answer(candidates[: self.config.max_prompt_candidates])
            return AnswerDraft(text=text, cited_entities=extract_cited_entities(text, candidates))

        chain = self.prompt | self.llm
        try:
            response = await asyncio.wait_for(
                chain.ainvoke(self.prompt_variables(query, candidates, context)),
                timeout=self.config.timeout_seconds,
            )
        except asyncio.TimeoutError as exc:
            raise SynthesisError("answer synthesis timed out", timeout=self.config.timeout_seconds) from exc
        except Exception as exc:
            raise SynthesisError("answer synthesis failed", error=str(exc)) from exc

        text = message_text(response)
        if not text:
            raise SynthesisError("answer synthesis returned no text")

        cited = extract_cited_entities(text, candidates)
        logger.info("answer_synthesized", query=query, cited=len(cited), chars=len(text))
        return AnswerDraft(text=text, cited_entities=cited)


def format_candidate_line(index: int, candidate: Candidate) -> str:
    if candidate.is_operational is None:
        status = "unknown"
    else:
        status = "OPEN" if candidate.is_operational else "CLOSED"
    distance = f"{round(candidate.distance_meters)} m" if candidate.distance_meters is not None else "unknown"
    rating = f"{candidate.rating:.1f}" if candidate.rating is not None else "none"
    reviews = str(candidate.review_count) if candidate.review_count is not None else "none"
    return (
        f"{index}. name: {candidate.name} | address: {candidate.address} | distance: {distance}"
        f" | status: {status} | rating: {rating} | reviews: {reviews}"
    )


def render_plain_answer(candidates: Sequence[Candidate]) -> str:
    if not candidates:
        return "I couldn't find any matching places nearby."

    lines = ["Here are the closest options I found:"]
    for index, candidate in enumerate(candidates, start=1):
        details = [f"{index}. {candidate.describe()}"]
        if candidate.distance_meters is not None:
            details.append(f"about {round(candidate.distance_meters)} m away")
        if candidate.is_operational is not None:
            details.append("open" if candidate.is_operational else "closed")
        if candidate.rating is not None:
            details.append(f"rated {candidate.rating:.1f}")
        lines.append(", ".join(details))
    return "\n".join(lines)


def extract_cited_entities(text: str, candidates: Sequence[Candidate]) -> frozenset[str]:
    haystack = text.lower()
    cited: set[str] = set()
    for candidate in candidates:
        if candidate.name and candidate.name.lower() in haystack:
            cited.add(candidate.name)
        line = street_line(candidate.address)
        if line and line.lower() in haystack:
            cited.add(candidate.address)
    return frozenset(cited)
