"""Configuration models for the tool-invocation layer."""

from __future__ import annotations

import os

from pydantic import BaseModel, Field


class ProviderConfig(BaseModel):
    """Configures outbound search provider calls."""

    timeout_seconds: float = Field(default=4.0, gt=0.0)
    max_results: int = Field(default=8, ge=1, le=20)
    retry_backoff_seconds: float = Field(default=0.2, ge=0.0)


class FusionConfig(BaseModel):
    """Configures candidate fusion, ranking and the radius ladder."""

    radius_ladder_meters: list[float] = Field(
        default_factory=lambda: [1500.0, 3000.0, 5000.0], min_length=1
    )
    min_reliable_candidates: int = Field(default=2, ge=0)
    reliable_min_reviews: int = Field(default=5, ge=0)
    max_candidates: int = Field(default=8, ge=1)


class LLMConfig(BaseModel):
    """Configures reasoning and synthesis model calls."""

    model: str = "gpt-4o-mini"
    temperature: float = Field(default=0.0, ge=0.0, le=2.0)
    timeout_seconds: float = Field(default=8.0, gt=0.0)
    max_prompt_candidates: int = Field(default=8, ge=1)


class RouterConfig(BaseModel):
    """Configures routing timeouts and rollback-trigger thresholds."""

    modular_timeout_seconds: float = Field(default=20.0, gt=0.0)
    failure_trigger_threshold: int = Field(default=3, ge=1)
    slow_execution_seconds: float = Field(default=5.0, gt=0.0)
    slow_trigger_threshold: int = Field(default=3, ge=1)


class FlagStoreConfig(BaseModel):
    audit_log_size: int = Field(default=50, ge=1)


class MetricsConfig(BaseModel):
    max_samples: int = Field(default=1000, ge=1)


class ServiceSettings(BaseModel):
    """Process-level settings assembled from the environment."""

    openai_api_key: str | None = None
    openai_model: str = "gpt-4o-mini"
    google_places_api_key: str | None = None
    brave_api_key: str | None = None
    legacy_tool_url: str | None = None
    flags_path: str | None = None
    default_latitude: float | None = None
    default_longitude: float | None = None
    log_level: str = "INFO"

    @classmethod
    def from_env(cls) -> "ServiceSettings":
        lat = os.getenv("GUIDE_DEFAULT_LAT")
        lng = os.getenv("GUIDE_DEFAULT_LNG")
        return cls(
            openai_api_key=os.getenv("OPENAI_API_KEY") or None,
            openai_model=os.getenv("OPENAI_MODEL", "gpt-4o-mini"),
            google_places_api_key=os.getenv("GOOGLE_PLACES_API_KEY") or None,
            brave_api_key=os.getenv("BRAVE_API_KEY") or None,
            legacy_tool_url=os.getenv("LEGACY_TOOL_URL") or None,
            flags_path=os.getenv("GUIDE_FLAGS_PATH") or None,
            default_latitude=float(lat) if lat else None,
            default_longitude=float(lng) if lng else None,
            log_level=os.getenv("LOG_LEVEL", "INFO").upper(),
        )
