"""Table-driven explainer atoms derived from a control surface."""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

from ..app.models import ControlSurfacePayload, ExplainerAtoms
from .prng import string_hash
from .types import AstroSummary

MAPPING_TABLES_PATH = Path(__file__).resolve().parent / "mapping_tables_v1.json"

ELEMENT_TINT_THRESHOLD = 0.4
STELLIUM_MIN_PLANETS = 3

Bucket = List[Tuple[Callable[[float], bool], str]]

ARC_BUCKETS: Bucket = [
    (lambda value: value >= 0.6, "rise_peak_release"),
    (lambda value: value >= 0.4, "gentle_wave"),
    (lambda value: value >= 0.2, "plateau_hold"),
    (lambda value: True, "mixed_rise_release"),
]
STEP_BUCKETS: Bucket = [
    (lambda value: value >= 0.7, "stepwise_heavy"),
    (lambda value: value >= 0.4, "balanced"),
    (lambda value: True, "leaping_lead"),
]
LEAP_BUCKETS: Bucket = [
    (lambda value: value >= 5, "wide_reaches"),
    (lambda value: value <= 2, "close_careful"),
]
RHYTHM_BUCKETS: Bucket = [
    (lambda value: value <= 2, "simple_even"),
    (lambda value: value <= 4, "lightly_shifting"),
    (lambda value: value <= 6, "strong_accented"),
    (lambda value: True, "fluid_open"),
]
SYNCOPATION_BUCKETS: Bucket = [
    (lambda value: value >= 0.6, "pronounced"),
    (lambda value: value >= 0.3, "subtle"),
    (lambda value: True, "straight"),
]
DENSITY_BUCKETS: Bucket = [
    (lambda value: value < 0.4, "sparse"),
    (lambda value: value < 0.7, "balanced"),
    (lambda value: True, "dense"),
]
MOTIF_BUCKETS: Bucket = [
    (lambda value: value > 0.7, "frequent"),
    (lambda value: value >= 0.4, "moderate"),
    (lambda value: True, "sparse"),
]
TEMPO_BUCKETS: Bucket = [
    (lambda value: value > 0.7, "brisk"),
    (lambda value: value >= 0.4, "measured"),
    (lambda value: True, "slow"),
]


def pick_bucket(buckets: Bucket, value: float) -> Optional[str]:
    for predicate, key in buckets:
        if predicate(value):
            return key
    return None


def load_mapping_tables(path: Optional[Path] = None) -> Dict[str, Any]:
    source = path or MAPPING_TABLES_PATH
    try:
        return json.loads(source.read_text(encoding="utf-8"))
    except FileNotFoundError as exc:  # pragma: no cover - packaging error
        raise RuntimeError(f"explainer mapping tables missing at {source}") from exc


def default_astro_summary(payload: ControlSurfacePayload) -> AstroSummary:
    dominant = payload.element_dominance.value
    elements = {
        name: (0.6 if name == dominant else 0.1) for name in ("fire", "earth", "air", "water")
    }
    return AstroSummary(elements=elements, dominant_planets=[])


def select_by_seed(options: Sequence[str], seed: str, context: str) -> str:
    if not options:
        return f"default {context}"
    if len(options) == 1:
        return options[0]
    return options[string_hash(seed + context) % len(options)]


class AtomsGenerator:
    """Maps control values onto short descriptive atoms."""

    def __init__(self, tables: Optional[Dict[str, Any]] = None) -> None:
        self._tables = tables or load_mapping_tables()

    @property
    def version(self) -> str:
        return str(self._tables.get("version", "v1"))

    def generate(
        self, payload: ControlSurfacePayload, astro: Optional[AstroSummary] = None
    ) -> ExplainerAtoms:
        astro = astro or default_astro_summary(payload)
        seed = payload.hash
        return ExplainerAtoms(
            arc_desc=self._arc(payload.arc_shape, astro.elements, seed),
            movement=self._movement(payload.step_bias, payload.leap_cap, astro.dominant_planets),
            rhythm_feel=self._rhythm(payload.rhythm_template_id, payload.syncopation_bias),
            density_desc=self._density(payload.density_level, astro.dominant_planets),
            motif_desc=self._motif(payload.motif_rate),
            astro_color=self._astro_color(astro.elements, astro.dominant_planets),
        )

    def _arc(self, arc_shape: float, elements: Dict[str, float], seed: str) -> str:
        bucket = self._tables["arc_descriptions"][pick_bucket(ARC_BUCKETS, arc_shape)]
        template = select_by_seed(bucket["templates"], seed, "arc")
        return template.replace("{tint}", self._element_tint(elements))

    def _element_tint(self, elements: Dict[str, float]) -> str:
        tints = self._tables["element_tints"]
        for name, weight in elements.items():
            if weight > ELEMENT_TINT_THRESHOLD and name in tints:
                return tints[name]["phrase"]
        return tints["none"]["phrase"]

    def _movement(self, step_bias: float, leap_cap: int, planets: Sequence[str]) -> str:
        primary = self._tables["movement_descriptions"][pick_bucket(STEP_BUCKETS, step_bias)]
        modifier = ""
        leap_key = pick_bucket(LEAP_BUCKETS, leap_cap)
        if leap_key is not None:
            modifier = self._tables["leap_modifiers"][leap_key]["modifier"]
        tint = ""
        planet_tints = self._tables.get("planet_tints", {})
        for planet in planets:
            phrase = planet_tints.get(planet.lower())
            if phrase:
                tint = f", {phrase}"
                break
        return f"{primary['primary']}{modifier}{tint}."

    def _rhythm(self, template_id: int, syncopation: float) -> str:
        rhythm_class = self._tables["rhythm_classes"][pick_bucket(RHYTHM_BUCKETS, template_id)]
        feel = self._tables["syncopation_descriptions"][
            pick_bucket(SYNCOPATION_BUCKETS, syncopation)
        ]
        return f"{rhythm_class['class']}, {feel['description']}."

    def _density(self, density: float, planets: Sequence[str]) -> str:
        table = self._tables["density_descriptions"]
        text = table[pick_bucket(DENSITY_BUCKETS, density)]["description"]
        if len(planets) >= STELLIUM_MIN_PLANETS:
            text += table["stellium_suffix"]["suffix"]
        return text

    def _motif(self, motif_rate: float) -> str:
        return self._tables["motif_descriptions"][pick_bucket(MOTIF_BUCKETS, motif_rate)][
            "description"
        ]

    def _astro_color(self, elements: Dict[str, float], planets: Sequence[str]) -> str:
        colors = self._tables["astro_colors"]
        top_element, top_weight = "", 0.0
        for name, weight in elements.items():
            if weight > top_weight:
                top_element, top_weight = name, weight
        element_adj = colors["element_adjectives"].get(top_element, "balanced")
        planet_adj = "balanced"
        for planet in planets:
            adjective = colors["planet_adjectives"].get(planet.lower())
            if adjective:
                planet_adj = adjective
                break
        return f"Tone: {element_adj}, {planet_adj}."

