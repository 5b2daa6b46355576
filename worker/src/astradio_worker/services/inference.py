"""Student model stand-in mapping control features to a 6-D planning vector."""

from __future__ import annotations

from dataclasses import dataclass
from typing import List, Protocol, Sequence

import numpy as np
from loguru import logger

from ..app.models import ControlSurfacePayload
from .features import FEATURE_LENGTH
from .types import BackendStatus

PLANNING_DIMENSIONS = ("tempo", "contour", "density", "arc", "motif", "groove")
FALLBACK_VECTOR = (0.5, 0.5, 0.5, 0.5, 0.5, 0.5)


def control_feature_vector(payload: ControlSurfacePayload) -> np.ndarray:
    """Encode the eight musical control fields into the model input layout."""

    features = np.zeros(FEATURE_LENGTH, dtype=np.float32)
    features[:8] = [
        payload.arc_shape,
        payload.density_level,
        payload.tempo_norm,
        payload.step_bias,
        (payload.leap_cap - 1) / 5.0,
        payload.rhythm_template_id / 7.0,
        payload.syncopation_bias,
        payload.motif_rate,
    ]
    return features


@dataclass(frozen=True)
class StudentPrediction:
    vector: List[float]
    model_version: str
    confidence: float


class PlanningModel(Protocol):
    version: str

    async def predict(self, features: Sequence[float]) -> StudentPrediction: ...


def _clamp(value: float) -> float:
    return max(0.0, min(1.0, value))


class StudentModel:
    """Deterministic linear projection standing in for the distilled student network."""

    def __init__(self, version: str = "student-v2.8-slice-batch") -> None:
        self.version = version

    async def warmup(self) -> BackendStatus:
        return BackendStatus(
            name="student",
            ready=True,
            version=self.version,
            error=None,
            details={"dimensions": list(PLANNING_DIMENSIONS)},
        )

    async def predict(self, features: Sequence[float]) -> StudentPrediction:
        values = np.asarray(features, dtype=np.float64)
        if values.shape[0] < 8 or not np.all(np.isfinite(values[:8])):
            logger.warning("Student model received malformed features; using fallback vector")
            return StudentPrediction(list(FALLBACK_VECTOR), "fallback", 0.0)

        arc, density, tempo, step, leap, template, syncopation, motif = (
            float(value) for value in values[:8]
        )
        vector = [
            _clamp(tempo),
            _clamp(0.8 * step + 0.2 * (1.0 - leap)),
            _clamp(density),
            _clamp(arc),
            _clamp(motif),
            _clamp((template * 7.0 + syncopation) / 8.0),
        ]
        confidence = float(np.mean(np.abs(np.asarray(vector) - 0.5)) * 2.0)
        return StudentPrediction(vector, self.version, round(confidence, 4))
