"""Shared domain models."""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any


class ToolCategory(str, Enum):
    LOCATION = "location"
    TRAVEL = "travel"
    SEARCH = "search"
    SAFETY = "safety"
    CALENDAR = "calendar"
    TRANSPORT = "transport"
    DISCOVERY = "discovery"


class MigrationState(str, Enum):
    """Global mode deciding which execution path serves tool calls."""

    LEGACY = "legacy"
    HYBRID = "hybrid"
    MODULAR_ONLY = "modular_only"
    MODULAR_WITH_FALLBACK = "modular_with_fallback"


class ExecutionPath(str, Enum):
    LEGACY = "legacy"
    MODULAR = "modular"


class DecisionKind(str, Enum):
    PROCEED = "proceed"
    CLARIFY = "clarify"


@dataclass(slots=True, frozen=True)
class GeoPoint:
    latitude: float
    longitude: float


@dataclass(slots=True, frozen=True)
class LocationFix:
    """A GPS fix supplied by the location collaborator."""

    point: GeoPoint
    is_moving: bool = False
    accuracy_meters: float | None = None


@dataclass(slots=True)
class RawPlace:
    """A place record as reported by a single provider."""

    name: str
    address: str
    coordinates: GeoPoint | None = None
    reported_distance_meters: float | None = None
    is_operational: bool | None = None
    rating: float | None = None
    review_count: int | None = None
    phone: str | None = None


@dataclass(slots=True)
class ResultSet:
    """Output of one provider call. An empty set is a valid outcome."""

    provider: str
    places: list[RawPlace] = field(default_factory=list)
    snippets: list[str] = field(default_factory=list)
    error: str | None = None

    @property
    def is_empty(self) -> bool:
        return not self.places and not self.snippets


@dataclass(slots=True)
class Candidate:
    """A deduplicated place produced by the fusion engine."""

    name: str
    address: str
    coordinates: GeoPoint | None = None
    distance_meters: float | None = None
    is_operational: bool | None = None
    rating: float | None = None
    review_count: int | None = None
    phone: str | None = None
    sources: list[str] = field(default_factory=list)

    def describe(self) -> str:
        return f"{self.name}, {self.address}"


@dataclass(slots=True)
class FusionResult:
    candidates: list[Candidate]
    radius_meters: float
    insufficient_coverage: bool
    snippets: list[str] = field(default_factory=list)
    failed_providers: list[str] = field(default_factory=list)


@dataclass(slots=True, frozen=True)
class Decision:
    kind: DecisionKind
    question: str | None = None

    @classmethod
    def proceed(cls) -> "Decision":
        return cls(kind=DecisionKind.PROCEED)

    @classmethod
    def clarify(cls, question: str) -> "Decision":
        return cls(kind=DecisionKind.CLARIFY, question=question)

    @property
    def needs_clarification(self) -> bool:
        return self.kind is DecisionKind.CLARIFY


@dataclass(slots=True, frozen=True)
class AnswerDraft:
    text: str
    cited_entities: frozenset[str] = frozenset()


@dataclass(slots=True, frozen=True)
class ValidationVerdict:
    accepted: bool
    final_text: str
    unverified_addresses: tuple[str, ...] = ()


@dataclass(slots=True)
class ToolInvocation:
    tool_name: str
    params: dict[str, Any] = field(default_factory=dict)
    request_id: str = field(default_factory=lambda: str(uuid.uuid4()))


@dataclass(slots=True)
class ToolResponse:
    """Wire shape shared with the voice/UI layer."""

    content: str
    is_error: bool = False

    def as_payload(self) -> dict[str, Any]:
        return {"content": self.content, "isError": self.is_error}


@dataclass(slots=True)
class ExecutionResult:
    content: str
    is_error: bool
    path: ExecutionPath
    latency_ms: float
    request_id: str = ""
    fallback_used: bool = False
    cancelled: bool = False

    def to_response(self) -> ToolResponse:
        return ToolResponse(content=self.content, is_error=self.is_error)


@dataclass(slots=True, frozen=True)
class PerformanceSample:
    tool_name: str
    path: ExecutionPath
    latency_ms: float
    success: bool
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    fallback: bool = False
    cancelled: bool = False

    def as_record(self) -> dict[str, Any]:
        return {
            "toolName": self.tool_name,
            "path": self.path.value,
            "latencyMs": self.latency_ms,
            "success": self.success,
            "timestamp": self.timestamp.isoformat(),
        }
