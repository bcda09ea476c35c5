"""Hallucination check for synthesized answers.

The check is a heuristic: every address-shaped span in the draft (a house
number followed by street-name tokens and a street suffix) must match the
street line of a supplied candidate after normalisation. It is kept behind
``HallucinationValidator.validate`` so a stricter address parser can replace
it without touching the pipeline.
"""

from __future__ import annotations

from collections.abc import Sequence

from guide_agent.pipeline.addresses import find_address_mentions, normalize_address, street_line
from guide_agent.types import AnswerDraft, Candidate, ValidationVerdict

SAFE_FALLBACK_PREFIX = "I found several options nearby; let me give you verified details."


class HallucinationValidator:
    """Pure and deterministic: no I/O, no logging, no state."""

    def validate(self, draft: AnswerDraft, candidates: Sequence[Candidate]) -> ValidationVerdict:
        return validate_answer(draft, candidates)


def validate_answer(draft: AnswerDraft, candidates: Sequence[Candidate]) -> ValidationVerdict:
    known = [
        (normalize_address(street_line(candidate.address)), normalize_address(candidate.address))
        for candidate in candidates
        if candidate.address
    ]
    unverified = tuple(
        mention
        for mention in find_address_mentions(draft.text)
        if not _is_known(normalize_address(mention), known)
    )
    if not unverified:
        return ValidationVerdict(accepted=True, final_text=draft.text)
    return ValidationVerdict(
        accepted=False,
        final_text=render_verified_fallback(candidates),
        unverified_addresses=unverified,
    )


def render_verified_fallback(candidates: Sequence[Candidate]) -> str:
    lines = [SAFE_FALLBACK_PREFIX]
    lines.extend(f"{index}. {candidate.describe()}" for index, candidate in enumerate(candidates, start=1))
    return "\n".join(lines)


def _is_known(mention: str, known: Sequence[tuple[str, str]]) -> bool:
    for street, full in known:
        if mention == street or mention == full or full.startswith(mention + " "):
            return True
    return False
