"""Shared service data structures."""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any, Dict, List, Optional

from ..app.models import EphemerisSnapshot

CHANNELS = ("melody", "harmony", "rhythm", "bass")


@dataclass
class EventToken:
    t0: float
    t1: float
    pitch: float
    velocity: float
    channel: str
    group: Optional[str] = None

    def is_finite(self) -> bool:
        return all(math.isfinite(value) for value in (self.t0, self.t1, self.pitch, self.velocity))

    def as_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "t0": self.t0,
            "t1": self.t1,
            "pitch": self.pitch,
            "velocity": self.velocity,
            "channel": self.channel,
        }
        if self.group is not None:
            payload["group"] = self.group
        return payload


@dataclass
class Plan:
    id: str
    duration_sec: float
    bpm: float
    key: str
    events: List[EventToken] = field(default_factory=list)

    def channel(self, name: str) -> List[EventToken]:
        return [event for event in self.events if event.channel == name]

    def span_seconds(self) -> float:
        if not self.events:
            return 0.0
        return max(event.t1 for event in self.events)


@dataclass(frozen=True)
class AstroGuidance:
    tempo_bias: float
    arc_bias: float
    density_bias: float
    motif_idx: int
    cadence_idx: int


@dataclass(frozen=True)
class ChartContext:
    hash: Optional[str] = None
    snapshot: Optional[EphemerisSnapshot] = None


@dataclass(frozen=True)
class AstroSummary:
    elements: Dict[str, float]
    dominant_planets: List[str] = field(default_factory=list)


@dataclass
class PlanResult:
    plan: Plan
    source: str
    diagnostics: Dict[str, Any]


@dataclass
class BackendStatus:
    name: str
    ready: bool
    version: Optional[str]
    error: Optional[str]
    details: Dict[str, Any] = field(default_factory=dict)
    updated_at: datetime = field(default_factory=lambda: datetime.now(tz=UTC))

    def as_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "name": self.name,
            "ready": self.ready,
            "updated_at": self.updated_at.isoformat(),
        }
        if self.version is not None:
            payload["version"] = self.version
        if self.error is not None:
            payload["error"] = self.error
        if self.details:
            payload["details"] = self.details
        return payload
