"""FastAPI entrypoint for tool invocation, flag control and metrics."""

from __future__ import annotations

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from dataclasses import asdict
from datetime import timedelta
from typing import Any

from fastapi import FastAPI, HTTPException
from pydantic import BaseModel, Field

from guide_agent.agent.fallback import HttpLegacyExecutor, LegacyPath, unavailable_legacy_executor
from guide_agent.agent.registry import ToolRegistry
from guide_agent.agent.router import ToolRouter
from guide_agent.agent.tools import register_builtin_tools
from guide_agent.config import FlagStoreConfig, LLMConfig, RouterConfig, ServiceSettings
from guide_agent.flags import FeatureFlagStore, JsonFileFlagLoader
from guide_agent.obs.logging import configure_logging
from guide_agent.obs.metrics import PerformanceMonitor
from guide_agent.pipeline.ambiguity import AmbiguityDetector
from guide_agent.pipeline.llm import create_chat_model
from guide_agent.pipeline.modular import ModularPath, PlaceSearchPipeline
from guide_agent.pipeline.synthesizer import AnswerSynthesizer
from guide_agent.providers.base import SearchProvider
from guide_agent.providers.location import StaticLocationProvider
from guide_agent.providers.places import GooglePlacesProvider
from guide_agent.providers.web import BraveWebSearchProvider
from guide_agent.types import GeoPoint, LocationFix, MigrationState, ToolCategory, ToolInvocation


class InvokeRequest(BaseModel):
    name: str = Field(min_length=1)
    params: dict[str, Any] = Field(default_factory=dict)


class MigrationStateRequest(BaseModel):
    state: MigrationState
    rollback_epoch: int | None = Field(default=None, alias="rollbackEpoch")


class RollbackRequest(BaseModel):
    reason: str = Field(min_length=1)


_settings = ServiceSettings.from_env()
configure_logging("guide-agent", _settings.log_level)


def _default_fix(settings: ServiceSettings) -> LocationFix | None:
    if settings.default_latitude is None or settings.default_longitude is None:
        return None
    return LocationFix(point=GeoPoint(settings.default_latitude, settings.default_longitude))


_place_providers: list[SearchProvider] = []
if _settings.google_places_api_key:
    _place_providers.append(GooglePlacesProvider(_settings.google_places_api_key))
_web_providers: list[SearchProvider] = []
if _settings.brave_api_key:
    _web_providers.append(BraveWebSearchProvider(_settings.brave_api_key))

_llm_config = LLMConfig(model=_settings.openai_model)
_llm = create_chat_model(_settings.openai_api_key, _llm_config)
_pipeline = PlaceSearchPipeline(
    place_providers=_place_providers,
    web_providers=_web_providers,
    location=StaticLocationProvider(_default_fix(_settings)),
    detector=AmbiguityDetector(_llm, _llm_config),
    synthesizer=AnswerSynthesizer(_llm, _llm_config),
)

_registry = ToolRegistry()
register_builtin_tools(_registry, _pipeline)

_legacy_executor = (
    HttpLegacyExecutor(_settings.legacy_tool_url) if _settings.legacy_tool_url else None
)
_router_config = RouterConfig()
_flags = FeatureFlagStore(
    JsonFileFlagLoader(_settings.flags_path) if _settings.flags_path else None,
    FlagStoreConfig(),
)
_monitor = PerformanceMonitor(router_config=_router_config)
_router = ToolRouter(
    registry=_registry,
    flags=_flags,
    modular=ModularPath(_registry),
    legacy=LegacyPath(_legacy_executor or unavailable_legacy_executor),
    monitor=_monitor,
    config=_router_config,
)


@asynccontextmanager
async def _lifespan(_: FastAPI) -> AsyncIterator[None]:
    yield
    await _router.flush()
    for provider in _place_providers + _web_providers:
        await provider.aclose()
    if _legacy_executor is not None:
        await _legacy_executor.aclose()


app = FastAPI(title="Travel Guide Tool Router", version="0.1.0", lifespan=_lifespan)


def _flags_payload() -> dict[str, Any]:
    flags = _flags.get()
    return {**flags.to_record().to_payload(), "rollbackEpoch": flags.rollback_epoch}


@app.get("/health")
def health() -> dict[str, Any]:
    flags = _flags.get()
    return {
        "status": "ok",
        "llm_configured": _llm is not None,
        "legacy_configured": _legacy_executor is not None,
        "place_providers": [provider.name for provider in _place_providers],
        "web_providers": [provider.name for provider in _web_providers],
        "migration_state": flags.migration_state.value,
    }


@app.get("/tools")
def tools() -> dict[str, Any]:
    return {"items": _registry.tool_schemas()}


@app.post("/tools/invoke")
async def invoke_tool(request: InvokeRequest) -> dict[str, Any]:
    result = await _router.execute(ToolInvocation(tool_name=request.name, params=request.params))
    return result.to_response().as_payload()


@app.get("/flags")
def flags() -> dict[str, Any]:
    return _flags_payload()


@app.put("/flags/migration-state")
def set_migration_state(request: MigrationStateRequest) -> dict[str, Any]:
    changed = _flags.set_migration_state(request.state, expected_epoch=request.rollback_epoch)
    return {"changed": changed, **_flags_payload()}


@app.post("/flags/categories/{category}")
def enable_category(category: ToolCategory) -> dict[str, Any]:
    changed = _flags.enable_category(category)
    return {"changed": changed, **_flags_payload()}


@app.delete("/flags/categories/{category}")
def disable_category(category: ToolCategory) -> dict[str, Any]:
    changed = _flags.disable_category(category)
    return {"changed": changed, **_flags_payload()}


@app.post("/flags/rollback")
def rollback(request: RollbackRequest) -> dict[str, Any]:
    _flags.emergency_rollback(request.reason)
    return _flags_payload()


@app.get("/flags/audit")
def flag_audit() -> dict[str, Any]:
    items = []
    for change in _flags.audit_log():
        record = asdict(change)
        record["timestamp"] = change.timestamp.isoformat()
        record["previous_state"] = change.previous_state.value
        record["new_state"] = change.new_state.value
        items.append(record)
    return {"items": items}


@app.get("/metrics/compare")
def metrics_compare(window_seconds: float | None = None) -> dict[str, Any]:
    if window_seconds is not None and window_seconds <= 0:
        raise HTTPException(status_code=400, detail="window_seconds must be positive")
    window = timedelta(seconds=window_seconds) if window_seconds is not None else None
    return _monitor.compare(window).as_dict()


@app.get("/metrics/samples")
def metrics_samples(limit: int = 100) -> dict[str, Any]:
    return {"items": _monitor.export(limit=limit)}


@app.get("/metrics")
def metrics() -> dict[str, Any]:
    return _monitor.summary()
