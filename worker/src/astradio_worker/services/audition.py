"""Structural validation, auto-repair and quality gating of plans."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple

from loguru import logger

from ..app.models import GATE_NAMES, GateFlags, GateReport
from ..app.settings import GateThresholds, RuleThresholds, Settings, strict_gate_thresholds
from .critics import RuleQuality, rule_quality
from .types import Plan

GATE_VERSION = "v2.3-final"


@dataclass(frozen=True)
class AuditionConfig:
    min_events: int = 120
    target_duration_sec: float = 60.0
    tolerance_sec: float = 1.0
    required_channels: Tuple[str, ...] = ("melody", "harmony")

    @classmethod
    def from_settings(cls, settings: Settings) -> "AuditionConfig":
        return cls(
            min_events=settings.min_events,
            target_duration_sec=settings.target_duration_seconds,
            tolerance_sec=settings.duration_tolerance_seconds,
        )


@dataclass
class AuditionResult:
    passed: bool
    quality: RuleQuality
    issues: List[str] = field(default_factory=list)
    repairs: List[str] = field(default_factory=list)

    def summary(self) -> Dict[str, object]:
        return {
            "passed": self.passed,
            "quality_score": round(self.quality.score, 3),
            "quality_ok": self.quality.ok,
            "issues": list(self.issues),
            "repair_count": len(self.repairs),
        }


def _structural_issues(plan: Plan, config: AuditionConfig) -> List[str]:
    issues: List[str] = []
    if len(plan.events) < config.min_events:
        issues.append(f"events<{config.min_events}")
    present = {event.channel for event in plan.events}
    for channel in config.required_channels:
        if channel not in present:
            issues.append(f"missing:{channel}")
    if not all(event.is_finite() for event in plan.events):
        issues.append("non-finite-values")
    return issues


def timewarp(plan: Plan, target_sec: float, tolerance_sec: float) -> Optional[str]:
    """Rescale every event uniformly when the span misses the target."""

    span = plan.span_seconds()
    if abs(span - target_sec) <= tolerance_sec:
        return None
    scale = target_sec / (span or 1.0)
    for event in plan.events:
        event.t0 *= scale
        event.t1 *= scale
    plan.bpm = plan.bpm / scale
    plan.duration_sec = target_sec
    return f"timewarp:{scale:.5f}"


def trim_overlaps(plan: Plan) -> Tuple[List[str], List[str]]:
    """Shorten cross-group overlaps; return the repairs and the unrepairable overlaps."""

    repairs: List[str] = []
    unrepairable: List[str] = []
    plan.events.sort(key=lambda event: event.t0)
    for index in range(len(plan.events) - 1):
        first, second = plan.events[index], plan.events[index + 1]
        overlap = min(first.t1, second.t1) - max(first.t0, second.t0)
        if overlap <= 0:
            continue
        if first.channel == "harmony" or second.channel == "harmony":
            continue
        if first.group is not None and first.group == second.group:
            continue
        if first.t1 >= second.t1:
            unrepairable.append(f"overlap-unrepairable:{index + 1}")
            continue
        second.t0 = max(second.t0, first.t1)
        repairs.append(f"trim:{index + 1}")
    return repairs, unrepairable


def audition(
    plan: Plan,
    config: Optional[AuditionConfig] = None,
    thresholds: Optional[RuleThresholds] = None,
) -> AuditionResult:
    """Validate ``plan`` in place, repair what can be repaired and score it."""

    config = config or AuditionConfig()
    issues = _structural_issues(plan, config)
    repairs: List[str] = []
    if "non-finite-values" not in issues:
        warp = timewarp(plan, config.target_duration_sec, config.tolerance_sec)
        if warp is not None:
            repairs.append(warp)
        trimmed, unrepairable = trim_overlaps(plan)
        repairs.extend(trimmed)
        issues.extend(unrepairable)
    if repairs:
        logger.debug("Plan {} repaired: {}", plan.id, repairs[:5])

    quality = rule_quality(plan, thresholds)
    return AuditionResult(
        passed=not issues and quality.ok,
        quality=quality,
        issues=issues,
        repairs=repairs,
    )


def gate_scores(quality: RuleQuality) -> Dict[str, float]:
    return {
        "melody_arc": round(quality.melody.arc, 4),
        "melody_step_leap": round(quality.melody.step_leap_ratio, 4),
        "melody_narrative": round(quality.melody.narrative_flow, 4),
        "rhythm_diversity": round(quality.rhythm.diversity, 4),
    }


def _flags(scores: Dict[str, float], thresholds: GateThresholds) -> GateFlags:
    return GateFlags.from_checks(
        {name: scores.get(name, 0.0) >= getattr(thresholds, name) for name in GATE_NAMES}
    )


def build_gate_report(
    scores: Dict[str, float],
    calibrated: Optional[GateThresholds] = None,
    strict: Optional[GateThresholds] = None,
    latency_ms: Optional[Dict[str, float]] = None,
) -> GateReport:
    calibrated = calibrated or GateThresholds()
    strict = strict or strict_gate_thresholds()
    return GateReport(
        calibrated=_flags(scores, calibrated),
        strict=_flags(scores, strict),
        scores=dict(scores),
        latency_ms=dict(latency_ms or {}),
    )


def force_calibrated_failure(report: GateReport) -> GateReport:
    calibrated = report.calibrated.model_copy(update={"overall": False})
    return report.model_copy(update={"calibrated": calibrated})
