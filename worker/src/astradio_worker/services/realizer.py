"""Template realizer turning explainer atoms into short, long and bullet text."""

from __future__ import annotations

import re
from typing import Any, Dict, List, Optional

from ..app.models import ControlSurfacePayload, ExplainerAtoms, GateReport, TextExplainer
from .atoms import TEMPO_BUCKETS, load_mapping_tables, pick_bucket
from .prng import string_hash

TEMPLATE_COUNT = 4
FAIL_TEMPLATE_ID = "v1.fail.00"
MAX_BULLETS = 6
SHORT_EXTENSION_LIMIT = 80
GENERIC_FAIL_HINT = "Adjust control parameters to meet calibrated gate thresholds."

# Descriptive words that must never appear in fail-closed text.
FORBIDDEN_ADJECTIVES = frozenset(
    {
        "gentle",
        "soft",
        "smooth",
        "gradual",
        "steady",
        "moderate",
        "clear",
        "confident",
        "dramatic",
        "bold",
        "powerful",
        "sharp",
        "complex",
        "intricate",
        "layered",
        "nuanced",
        "balanced",
        "harmonious",
        "well-proportioned",
        "controlled",
        "restrained",
        "measured",
        "disciplined",
        "wide",
        "expansive",
        "broad",
        "extended",
        "light",
        "airy",
        "floating",
        "rich",
        "full",
        "lush",
        "satisfying",
        "dense",
        "thick",
        "frequent",
        "occasional",
        "sparse",
        "cohesive",
        "unifying",
        "binding",
        "connecting",
    }
)

_WORD_PATTERN = re.compile(r"[A-Za-z][A-Za-z-]*")


def forbidden_words(text: str) -> List[str]:
    return sorted({word.lower() for word in _WORD_PATTERN.findall(text)} & FORBIDDEN_ADJECTIVES)


def truncate_text(text: str, max_length: int) -> str:
    if len(text) <= max_length:
        return text
    clipped = text[:max_length]
    sentence_end = max(clipped.rfind("."), clipped.rfind("!"), clipped.rfind("?"))
    if sentence_end > max_length * 0.7:
        return clipped[: sentence_end + 1]
    space = clipped.rfind(" ")
    if space > max_length * 0.8:
        return clipped[:space] + "..."
    return clipped + "..."


class TextRealizer:
    """Deterministic template realizer keyed by the control hash."""

    def __init__(self, tables: Optional[Dict[str, Any]] = None) -> None:
        self._tables = tables or load_mapping_tables()
        structures = self._tables["template_structures"]
        self._short_max = int(structures["short"]["max_length"])
        self._long_max = int(structures["long"]["max_length"])

    def generate(
        self,
        atoms: ExplainerAtoms,
        report: GateReport,
        seed: str,
        controls: Optional[ControlSurfacePayload] = None,
    ) -> TextExplainer:
        if not report.calibrated.overall:
            hint = self.fail_hint(report)
            return TextExplainer(
                short="",
                long=hint,
                bullets=[hint],
                template_id=FAIL_TEMPLATE_ID,
                seed=seed,
            )

        varied = self._apply_synonyms(atoms, seed)
        tempo_norm = controls.tempo_norm if controls is not None else 0.6
        return TextExplainer(
            short=self._short(varied),
            long=self._long(varied, tempo_norm),
            bullets=self._bullets(varied),
            template_id=f"v1.short.{string_hash(seed + 'template') % TEMPLATE_COUNT:02d}",
            seed=seed,
        )

    def fail_hint(self, report: GateReport) -> str:
        failing = report.calibrated.failing() or report.strict.failing()
        hints = self._tables["fail_hints"]
        parts = [hints[name] for name in failing if name in hints]
        if not parts:
            return GENERIC_FAIL_HINT
        return f"Adjust: {', '.join(parts)}."

    def sandbox_hints(self, failing: List[str]) -> List[str]:
        table = self._tables["sandbox_hints"]
        return [table[name]["hint"] for name in failing if name in table]

    def _apply_synonyms(self, atoms: ExplainerAtoms, seed: str) -> ExplainerAtoms:
        sets = self._tables["synonym_variations"]["seed_based"]["sets"]
        if not sets:
            return atoms
        replacements: Dict[str, str] = sets[string_hash(seed) % len(sets)]
        if not replacements:
            return atoms

        def vary(text: str) -> str:
            for original, synonym in replacements.items():
                text = re.sub(rf"\b{re.escape(original)}\b", synonym, text, flags=re.IGNORECASE)
            return text

        return ExplainerAtoms(**{name: vary(value) for name, value in atoms.model_dump().items()})

    def _short(self, atoms: ExplainerAtoms) -> str:
        text = f"{atoms.astro_color} {atoms.movement} {atoms.arc_desc}"
        if len(text) < SHORT_EXTENSION_LIMIT:
            text = f"{text} {atoms.rhythm_feel}"
        return truncate_text(text, self._short_max)

    def _long(self, atoms: ExplainerAtoms, tempo_norm: float) -> str:
        tempo = self._tables["tempo_descriptions"][pick_bucket(TEMPO_BUCKETS, tempo_norm)]
        sentences = [
            atoms.astro_color,
            atoms.movement,
            atoms.density_desc,
            atoms.motif_desc,
            f"{atoms.rhythm_feel.rstrip('.')} {tempo['description']}",
        ]
        return truncate_text(" ".join(sentences), self._long_max)

    def _bullets(self, atoms: ExplainerAtoms) -> List[str]:
        bullets = [
            f"• {atoms.movement}",
            f"• {atoms.arc_desc}",
            f"• {atoms.rhythm_feel}",
            f"• {atoms.density_desc}",
            f"• {atoms.motif_desc}",
        ]
        return bullets[:MAX_BULLETS]
