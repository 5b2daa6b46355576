from __future__ import annotations

from functools import lru_cache
from pathlib import Path
from typing import Optional

from pydantic import BaseModel, Field
from pydantic_settings import BaseSettings, SettingsConfigDict

QUALITY_FLOORS = {
    "development": 0.55,
    "pre-production": 0.60,
    "production": 0.65,
}


def _default_log_dir() -> Path:
    return Path("/tmp") / "astradio-logs"


class GateThresholds(BaseModel):
    melody_arc: float = Field(default=0.40, ge=0.0, le=1.0)
    melody_step_leap: float = Field(default=0.21, ge=0.0, le=1.0)
    melody_narrative: float = Field(default=0.35, ge=0.0, le=1.0)
    rhythm_diversity: float = Field(default=0.295, ge=0.0, le=1.0)


def strict_gate_thresholds() -> GateThresholds:
    return GateThresholds(
        melody_arc=0.45,
        melody_step_leap=0.235,
        melody_narrative=0.40,
        rhythm_diversity=0.305,
    )


class RuleThresholds(BaseModel):
    arc: float = Field(default=0.40, ge=0.0, le=1.0)
    motif_recurrence: float = Field(default=0.35, ge=0.0, le=1.0)
    contour_entropy: float = Field(default=0.35, ge=0.0, le=1.0)
    step_leap_ratio: float = Field(default=0.35, ge=0.0, le=1.0)
    range_ok: float = Field(default=0.5, ge=0.0, le=1.0)
    progression_legality: float = Field(default=0.4, ge=0.0, le=1.0)
    syncopation: float = Field(default=0.4, ge=0.0, le=1.0)


class Settings(BaseSettings):
    """Runtime configuration for the Astradio compose worker."""

    model_config = SettingsConfigDict(
        env_prefix="ASTRADIO_",
        env_nested_delimiter="__",
        extra="ignore",
        protected_namespaces=(),
    )

    runtime_model: str = Field(
        default="student-v2.8-slice-batch",
        max_length=128,
        description="Model version tag folded into idempotency keys and provenance.",
    )
    model_registry_path: Optional[Path] = Field(
        default=None,
        description="Registry JSON describing model artifacts; skipped when unset.",
    )
    quality_env: str = Field(default="development", max_length=32)
    min_rule_quality: Optional[float] = Field(
        default=None,
        ge=0.0,
        le=1.0,
        description="Explicit rule-quality floor overriding the quality_env profile.",
    )
    candidate_count: int = Field(default=8, ge=1, le=64)
    jitter_sigma: float = Field(default=0.10, ge=0.0, le=1.0)
    min_events: int = Field(default=120, ge=1, le=10_000)
    target_duration_seconds: float = Field(default=60.0, gt=0.0, le=600.0)
    duration_tolerance_seconds: float = Field(default=1.0, ge=0.0, le=60.0)
    calibrated_thresholds: GateThresholds = Field(default_factory=GateThresholds)
    strict_thresholds: GateThresholds = Field(default_factory=strict_gate_thresholds)
    rule_thresholds: RuleThresholds = Field(default_factory=RuleThresholds)
    cache_enabled: bool = True
    cache_ttl_seconds: Optional[float] = Field(default=None, gt=0.0)
    cache_max_entries: int = Field(default=1024, ge=1)
    log_dir: Path = Field(default_factory=_default_log_dir)
    audio_base_url: str = Field(default="/api/audio", max_length=256)
    rate_limit_requests: int = Field(default=30, ge=1)
    rate_limit_window_seconds: int = Field(default=60, ge=1)
    trust_forwarded_for: bool = Field(
        default=False,
        description="Key rate limits on x-forwarded-for; enable only behind a trusted proxy.",
    )

    @property
    def quality_floor(self) -> float:
        if self.min_rule_quality is not None:
            return self.min_rule_quality
        return QUALITY_FLOORS.get(self.quality_env, QUALITY_FLOORS["development"])


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings()
