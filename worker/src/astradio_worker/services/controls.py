"""Control-surface generation for sky, overlay, sandbox and compatibility modes."""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Any, Dict, Optional

from pydantic import ValidationError

from ..app.models import (
    CompatibilityParams,
    ControlOverrides,
    ControlSurfacePayload,
    Element,
    Modality,
    OverlayParams,
    SkyParams,
)
from .exceptions import ComposeValidationError
from .prng import canonical_json, create_seeded_rng, sha256_hex

ELEMENTS = (Element.FIRE, Element.EARTH, Element.AIR, Element.WATER)
MODALITIES = (Modality.CARDINAL, Modality.FIXED, Modality.MUTABLE)

DEFAULT_CONTROLS: Dict[str, Any] = {
    "arc_shape": 0.45,
    "density_level": 0.6,
    "tempo_norm": 0.7,
    "step_bias": 0.7,
    "leap_cap": 5,
    "rhythm_template_id": 3,
    "syncopation_bias": 0.3,
    "motif_rate": 0.6,
    "element_dominance": Element.AIR,
    "aspect_tension": 0.4,
    "modality": Modality.MUTABLE,
}

CONTINUOUS_FIELDS = (
    "arc_shape",
    "density_level",
    "tempo_norm",
    "step_bias",
    "syncopation_bias",
    "motif_rate",
    "aspect_tension",
)
INTEGER_FIELDS = ("leap_cap", "rhythm_template_id")
COMPATIBILITY_THRESHOLD = 0.7
DEFAULT_COMPATIBILITY_SCORE = 0.5


@dataclass(frozen=True)
class SkySummary:
    element: Element
    modality: Modality
    aspect_tension: float


@dataclass(frozen=True)
class OverlayPayloads:
    natal: ControlSurfacePayload
    current: ControlSurfacePayload


def hash_payload(payload: ControlSurfacePayload) -> str:
    """Fingerprint every field except ``hash`` itself."""

    body = payload.model_dump(mode="json", exclude={"hash"})
    return sha256_hex(canonical_json(body))[:16]


def with_hash(payload: ControlSurfacePayload) -> ControlSurfacePayload:
    return payload.model_copy(update={"hash": hash_payload(payload)})


def _format_number(value: float) -> str:
    if math.isfinite(value) and float(value).is_integer():
        return str(int(value))
    return repr(float(value))


def _validation_details(exc: ValidationError, prefix: str) -> list[dict[str, str]]:
    details = []
    for error in exc.errors():
        location = ".".join(str(part) for part in error.get("loc", ()))
        field = f"{prefix}.{location}" if location else prefix
        details.append({"field": field, "message": error.get("msg", "invalid value")})
    return details


class ControlSurfaceGenerator:
    """Builds hashed control-surface payloads for every compose mode."""

    def summarise_sky(self, params: SkyParams) -> SkySummary:
        seed = f"{_format_number(params.latitude)},{_format_number(params.longitude)},{params.moment}"
        rand = create_seeded_rng(seed)
        element = ELEMENTS[int(rand() * len(ELEMENTS))]
        modality = MODALITIES[int(rand() * len(MODALITIES))]
        aspect = round(0.2 + rand() * 0.6, 3)
        return SkySummary(element=element, modality=modality, aspect_tension=aspect)

    def sky(self, params: Optional[SkyParams]) -> ControlSurfacePayload:
        if params is None:
            raise ComposeValidationError(
                "sky mode requires skyParams",
                [{"field": "skyParams", "message": "latitude, longitude and datetime are required"}],
            )
        summary = self.summarise_sky(params)
        rand = create_seeded_rng(
            f"{summary.element.value}|{_format_number(summary.aspect_tension)}|{summary.modality.value}"
        )
        payload = ControlSurfacePayload(
            arc_shape=round(0.4 + rand() * 0.2, 3),
            density_level=round(0.5 + rand() * 0.3, 3),
            tempo_norm=round(0.6 + rand() * 0.2, 3),
            step_bias=round(0.6 + rand() * 0.3, 3),
            leap_cap=1 + int(rand() * 6),
            rhythm_template_id=int(rand() * 8),
            syncopation_bias=round(rand(), 3),
            motif_rate=round(0.4 + rand() * 0.4, 3),
            element_dominance=summary.element,
            aspect_tension=summary.aspect_tension,
            modality=summary.modality,
        )
        return with_hash(payload)

    def overlay(self, params: Optional[OverlayParams]) -> OverlayPayloads:
        if params is None:
            raise ComposeValidationError(
                "overlay mode requires overlayParams",
                [{"field": "overlayParams", "message": "natal and current coordinates are required"}],
            )
        return OverlayPayloads(natal=self.sky(params.natal()), current=self.sky(params.current()))

    def default(self) -> ControlSurfacePayload:
        return with_hash(ControlSurfacePayload(**DEFAULT_CONTROLS))

    def sandbox(self, overrides: ControlOverrides | Dict[str, Any] | None) -> ControlSurfacePayload:
        if isinstance(overrides, dict):
            try:
                overrides = ControlOverrides.model_validate(overrides)
            except ValidationError as exc:
                raise ComposeValidationError(
                    "invalid sandbox controls", _validation_details(exc, "controls")
                ) from exc
        merged = dict(DEFAULT_CONTROLS)
        if overrides is not None:
            merged.update(overrides.model_dump(exclude_none=True, exclude={"hash"}))
        return with_hash(ControlSurfacePayload(**merged))

    def compatibility(
        self,
        score: Optional[float] = None,
        charts: Optional[CompatibilityParams] = None,
    ) -> ControlSurfacePayload:
        if score is None:
            score = DEFAULT_COMPATIBILITY_SCORE
        if charts is not None:
            first, second = self.sky(charts.chart_a), self.sky(charts.chart_b)
        else:
            first, second = self.default(), self.default()

        blended: Dict[str, Any] = {}
        for name in CONTINUOUS_FIELDS:
            blended[name] = round((getattr(first, name) + getattr(second, name)) / 2.0, 3)
        for name in INTEGER_FIELDS:
            blended[name] = math.floor((getattr(first, name) + getattr(second, name)) / 2.0 + 0.5)
        blended["element_dominance"] = (
            first.element_dominance if score > COMPATIBILITY_THRESHOLD else Element.AIR
        )
        blended["modality"] = Modality.MUTABLE
        blended["aspect_tension"] = round(score, 3)
        return with_hash(ControlSurfacePayload(**blended))
