"""Modular execution path: search, fuse, reason, synthesize, validate."""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass

import structlog

from guide_agent.agent.registry import ToolRegistry
from guide_agent.config import FusionConfig
from guide_agent.errors import LocationUnavailableError, ModularPipelineError, ToolNotMigratedError
from guide_agent.obs.metrics import Timer
from guide_agent.pipeline.ambiguity import AmbiguityDetector
from guide_agent.pipeline.fusion import FusionEngine
from guide_agent.pipeline.synthesizer import AnswerSynthesizer, SynthesisContext
from guide_agent.pipeline.validator import HallucinationValidator
from guide_agent.providers.base import SearchProvider
from guide_agent.providers.location import LocationProvider
from guide_agent.types import ExecutionPath, ExecutionResult, FusionResult, GeoPoint, LocationFix, ToolInvocation

logger = structlog.get_logger(__name__)

_MAX_WEB_SNIPPETS = 3


@dataclass(slots=True)
class PlaceQuery:
    query: str
    subject: str
    origin: GeoPoint | None = None
    radius_meters: float | None = None
    conversation_context: str | None = None


class PlaceSearchPipeline:
    """Runs one place query through the strict modular pipeline order.

    Steps:
    1. Resolve the origin from explicit coordinates or the location provider.
    2. Fuse provider results, widening the radius along the ladder while
       coverage is insufficient.
    3. Ask the ambiguity detector whether to clarify; a question ends the run.
    4. Synthesize an answer from the candidates.
    5. Validate every address mention against the candidates.
    """

    def __init__(
        self,
        *,
        place_providers: Sequence[SearchProvider],
        web_providers: Sequence[SearchProvider] = (),
        location: LocationProvider,
        fusion: FusionEngine | None = None,
        detector: AmbiguityDetector | None = None,
        synthesizer: AnswerSynthesizer | None = None,
        validator: HallucinationValidator | None = None,
        config: FusionConfig | None = None,
    ) -> None:
        self.place_providers = list(place_providers)
        self.web_providers = list(web_providers)
        self.location = location
        self.config = config or FusionConfig()
        self.fusion = fusion or FusionEngine(self.config)
        self.detector = detector or AmbiguityDetector()
        self.synthesizer = synthesizer or AnswerSynthesizer()
        self.validator = validator or HallucinationValidator()

    async def answer(self, request: PlaceQuery) -> str:
        fix = await self._resolve_fix(request.origin)
        fused = await self.search_with_ladder(
            self.place_providers + self.web_providers,
            request.query,
            fix.point,
            first_radius=request.radius_meters,
        )
        candidates = fused.candidates
        if not candidates:
            logger.info("no_candidates", query=request.query, radius_meters=fused.radius_meters)
            return f"I couldn't find any {request.subject} nearby."

        decision = await self.detector.classify(request.query, candidates)
        if decision.needs_clarification:
            logger.info("clarification_requested", query=request.query)
            return decision.question or ""

        context = SynthesisContext(
            location_description=describe_fix(fix),
            web_snippets=fused.snippets,
            conversation_context=request.conversation_context,
        )
        draft = await self.synthesizer.synthesize(request.query, candidates, context)
        verdict = self.validator.validate(draft, candidates)
        if not verdict.accepted:
            logger.warning(
                "hallucination_detected",
                query=request.query,
                unverified=list(verdict.unverified_addresses),
            )
        return verdict.final_text

    async def web_answer(self, query: str, origin: GeoPoint | None = None) -> str:
        """Answers a free-form web query, preferring place candidates over snippets."""
        if not self.web_providers:
            raise ModularPipelineError("No web search provider configured")
        fix = await self._resolve_fix(origin)
        fused = await self.fusion.search(
            self.web_providers,
            query,
            fix.point,
            radius_meters=self.config.radius_ladder_meters[-1],
        )
        self._raise_if_all_failed(fused, self.web_providers)
        if fused.candidates:
            draft = await self.synthesizer.synthesize(
                query,
                fused.candidates,
                SynthesisContext(location_description=describe_fix(fix), web_snippets=fused.snippets),
            )
            return self.validator.validate(draft, fused.candidates).final_text
        if fused.snippets:
            lines = [f"- {snippet}" for snippet in fused.snippets[:_MAX_WEB_SNIPPETS]]
            return "Here's what I found on the web:\n" + "\n".join(lines)
        return f'I couldn\'t find anything on the web for "{query}".'

    async def search_with_ladder(
        self,
        providers: Sequence[SearchProvider],
        query: str,
        origin: GeoPoint,
        *,
        first_radius: float | None = None,
    ) -> FusionResult:
        if not providers:
            raise ModularPipelineError("No place provider configured")
        *expansions, last = radius_steps(self.config.radius_ladder_meters, first_radius)
        for radius in expansions:
            fused = await self._search_at(providers, query, origin, radius)
            if not fused.insufficient_coverage:
                return fused
            logger.info("radius_expanded", query=query, radius_meters=radius)
        return await self._search_at(providers, query, origin, last)

    async def _search_at(
        self,
        providers: Sequence[SearchProvider],
        query: str,
        origin: GeoPoint,
        radius: float,
    ) -> FusionResult:
        fused = await self.fusion.search(providers, query, origin, radius_meters=radius)
        self._raise_if_all_failed(fused, providers)
        return fused

    async def _resolve_fix(self, origin: GeoPoint | None) -> LocationFix:
        if origin is not None:
            return LocationFix(point=origin)
        fix = await self.location.current_fix()
        if fix is None:
            raise LocationUnavailableError("No location fix available")
        return fix

    @staticmethod
    def _raise_if_all_failed(fused: FusionResult, providers: Sequence[SearchProvider]) -> None:
        if len(fused.failed_providers) == len(providers):
            raise ModularPipelineError("All providers failed", providers=fused.failed_providers)


class ModularPath:
    """Executes migrated tools by dispatching to their registered handler.

    Failures propagate as exceptions so the router can decide on fallback.
    """

    path = ExecutionPath.MODULAR

    def __init__(self, registry: ToolRegistry) -> None:
        self.registry = registry

    async def execute(self, invocation: ToolInvocation) -> ExecutionResult:
        definition = self.registry.require(invocation.tool_name)
        if definition.handler is None:
            raise ToolNotMigratedError("Tool has no modular implementation", tool=invocation.tool_name)
        with Timer() as timer:
            args = definition.parse(invocation.params)
            content = await definition.handler(args)
        return ExecutionResult(
            content=content,
            is_error=False,
            path=ExecutionPath.MODULAR,
            latency_ms=timer.elapsed_ms,
            request_id=invocation.request_id,
        )


def radius_steps(ladder: Sequence[float], first_radius: float | None = None) -> list[float]:
    """Radii to try in order; an explicit first radius skips smaller rungs."""
    if first_radius is None:
        return list(ladder)
    return [first_radius] + [radius for radius in ladder if radius > first_radius]


def describe_fix(fix: LocationFix) -> str:
    point = fix.point
    movement = "moving" if fix.is_moving else "stationary"
    return f"{point.latitude:.5f}, {point.longitude:.5f} (user is {movement})"
