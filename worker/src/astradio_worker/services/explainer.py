"""Explanation engine combining atoms, realizer, overlay contrast and sandbox hints."""

from __future__ import annotations

from typing import List, Optional, Tuple

from loguru import logger

from ..app.models import ControlSurfacePayload, GateReport, TextExplainer
from .atoms import AtomsGenerator, load_mapping_tables
from .realizer import TextRealizer
from .types import AstroSummary

OVERLAY_PREFIX = "Compared to your natal chart, today's transits add"
SANDBOX_HEADER = "• Sandbox suggestions:"

# field, threshold, increase phrase, decrease phrase
OVERLAY_DELTAS: Tuple[Tuple[str, float, str, str], ...] = (
    ("step_bias", 0.10, "more stepwise motion", "more leaping motion"),
    ("syncopation_bias", 0.15, "increased syncopation", "reduced syncopation"),
    ("density_level", 0.20, "richer texture", "sparser texture"),
    ("leap_cap", 1.0, "wider leaps", "narrower leaps"),
)


def describe_overlay_deltas(
    natal: ControlSurfacePayload, current: ControlSurfacePayload
) -> List[str]:
    phrases: List[str] = []
    for name, threshold, increase, decrease in OVERLAY_DELTAS:
        delta = float(getattr(current, name)) - float(getattr(natal, name))
        if round(abs(delta), 6) >= threshold:
            phrases.append(increase if delta > 0 else decrease)
    return phrases


class TextExplainerEngine:
    def __init__(
        self,
        atoms: Optional[AtomsGenerator] = None,
        realizer: Optional[TextRealizer] = None,
    ) -> None:
        if atoms is None or realizer is None:
            tables = load_mapping_tables()
            atoms = atoms or AtomsGenerator(tables)
            realizer = realizer or TextRealizer(tables)
        self._atoms = atoms
        self._realizer = realizer

    @property
    def mapping_tables_version(self) -> str:
        return self._atoms.version

    def generate_explanation(
        self,
        payload: ControlSurfacePayload,
        report: GateReport,
        astro: Optional[AstroSummary] = None,
        sandbox: bool = False,
    ) -> TextExplainer:
        atoms = self._atoms.generate(payload, astro)
        text = self._realizer.generate(atoms, report, payload.hash, payload)
        if sandbox and report.calibrated.overall and not report.strict.overall:
            hints = self._realizer.sandbox_hints(report.strict.failing())
            if hints:
                bullets = [*text.bullets, SANDBOX_HEADER, *(f"  - {hint}" for hint in hints)]
                text = text.model_copy(update={"bullets": bullets})

        logger.info(
            "Explainer controls.hash={} template_id={} fail_closed_text={}",
            payload.hash,
            text.template_id,
            not report.calibrated.overall,
        )
        return text

    def generate_overlay_explanation(
        self,
        natal: ControlSurfacePayload,
        current: ControlSurfacePayload,
        natal_report: GateReport,
        current_report: GateReport,
        astro: Optional[AstroSummary] = None,
    ) -> TextExplainer:
        text = self.generate_explanation(current, current_report, astro)
        if not current_report.calibrated.overall:
            return text
        phrases = describe_overlay_deltas(natal, current)
        if not phrases:
            return text

        contrast = ", ".join(phrases)
        prefix = f"{OVERLAY_PREFIX} {contrast}."
        logger.debug(
            "Overlay contrast {} (natal gate overall={})", contrast, natal_report.calibrated.overall
        )
        return text.model_copy(
            update={
                "short": f"{prefix} {text.short}",
                "long": f"{prefix} {text.long}",
                "bullets": [f"• {contrast} compared to natal", *text.bullets],
            }
        )
