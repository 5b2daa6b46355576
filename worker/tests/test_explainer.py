from __future__ import annotations

import re
from typing import Dict

import pytest

from astradio_worker.app.models import GATE_NAMES, ControlOverrides, GateReport
from astradio_worker.services.atoms import (
    ARC_BUCKETS,
    DENSITY_BUCKETS,
    LEAP_BUCKETS,
    TEMPO_BUCKETS,
    AtomsGenerator,
    pick_bucket,
    select_by_seed,
)
from astradio_worker.services.audition import build_gate_report, force_calibrated_failure
from astradio_worker.services.controls import ControlSurfaceGenerator
from astradio_worker.services.explainer import TextExplainerEngine, describe_overlay_deltas
from astradio_worker.services.realizer import (
    FAIL_TEMPLATE_ID,
    GENERIC_FAIL_HINT,
    TextRealizer,
    forbidden_words,
    truncate_text,
)
from astradio_worker.services.types import AstroSummary

CONTROLS = ControlSurfaceGenerator()


def _report(**scores: float) -> GateReport:
    values: Dict[str, float] = {name: 1.0 for name in GATE_NAMES}
    values.update(scores)
    return build_gate_report(values)


@pytest.mark.parametrize(
    "buckets,value,expected",
    [
        (ARC_BUCKETS, 0.6, "rise_peak_release"),
        (ARC_BUCKETS, 0.59, "gentle_wave"),
        (ARC_BUCKETS, 0.2, "plateau_hold"),
        (ARC_BUCKETS, 0.1, "mixed_rise_release"),
        (DENSITY_BUCKETS, 0.4, "balanced"),
        (DENSITY_BUCKETS, 0.7, "dense"),
        (TEMPO_BUCKETS, 0.7, "measured"),
        (TEMPO_BUCKETS, 0.71, "brisk"),
        (LEAP_BUCKETS, 3, None),
        (LEAP_BUCKETS, 2, "close_careful"),
    ],
)
def test_pick_bucket(buckets, value, expected) -> None:
    assert pick_bucket(buckets, value) == expected


def test_select_by_seed() -> None:
    assert select_by_seed([], "seed", "arc") == "default arc"
    assert select_by_seed(["only"], "seed", "arc") == "only"
    options = ["a", "b", "c"]
    assert select_by_seed(options, "seed", "arc") == select_by_seed(options, "seed", "arc")


def test_default_atoms() -> None:
    atoms = AtomsGenerator().generate(CONTROLS.default())
    assert atoms.movement == "Mostly stepwise motion with wide reaches."
    assert atoms.rhythm_feel == "Lightly shifting groove, with subtle offbeats."
    assert atoms.density_desc == "Balanced texture with clear layers."
    assert atoms.motif_desc == "Motifs recur at a moderate rate."
    assert atoms.astro_color == "Tone: airy, balanced."
    assert "with an open lift" in atoms.arc_desc


def test_atoms_use_astro_summary() -> None:
    payload = CONTROLS.sandbox(ControlOverrides(step_bias=0.5, leap_cap=3))
    astro = AstroSummary(
        elements={"fire": 0.7, "earth": 0.1, "air": 0.1, "water": 0.1},
        dominant_planets=["Venus", "Mars", "Saturn"],
    )
    atoms = AtomsGenerator().generate(payload, astro)
    assert atoms.movement == "A mix of steps and leaps, a lyrical grace."
    assert atoms.astro_color == "Tone: fiery, lyrical."
    assert atoms.density_desc.endswith("A clustered sky thickens the layers.")
    assert "with a warm push" in atoms.arc_desc


def test_pass_path_text() -> None:
    payload = CONTROLS.default()
    text = TextExplainerEngine().generate_explanation(payload, _report())

    assert 0 < len(text.short) <= 120
    assert 0 < len(text.long) <= 300
    assert len(text.bullets) == 5
    assert all(bullet.startswith("• ") for bullet in text.bullets)
    assert re.fullmatch(r"v1\.short\.0[0-3]", text.template_id)
    assert text.seed == payload.hash
    assert text.long.endswith("at a measured pace.")


def test_pass_path_is_deterministic() -> None:
    payload = CONTROLS.default()
    engine = TextExplainerEngine()
    assert engine.generate_explanation(payload, _report()) == engine.generate_explanation(
        payload, _report()
    )


def test_fail_closed_text_names_failing_gate() -> None:
    text = TextExplainerEngine().generate_explanation(CONTROLS.default(), _report(melody_arc=0.1))
    assert text.short == ""
    assert text.long == "Adjust: arc_shape ±0.1."
    assert text.bullets == [text.long]
    assert text.template_id == FAIL_TEMPLATE_ID
    assert forbidden_words(text.long) == []


def test_fail_closed_text_never_uses_descriptive_adjectives() -> None:
    report = build_gate_report({name: 0.0 for name in GATE_NAMES})
    text = TextExplainerEngine().generate_explanation(CONTROLS.default(), report)
    assert text.long.startswith("Adjust: ")
    for line in [text.short, text.long, *text.bullets]:
        assert forbidden_words(line) == []


def test_forced_failure_falls_back_to_strict_then_generic_hint() -> None:
    realizer = TextRealizer()
    forced = force_calibrated_failure(_report())
    assert realizer.fail_hint(forced) == GENERIC_FAIL_HINT

    strict_only = force_calibrated_failure(_report(rhythm_diversity=0.3))
    assert realizer.fail_hint(strict_only) == "Adjust: rhythm_template_id or syncopation_bias."


def test_forbidden_words() -> None:
    assert forbidden_words("A gentle, well-proportioned line") == ["gentle", "well-proportioned"]
    assert forbidden_words("Adjust: step_bias +0.1") == []


def test_truncate_text() -> None:
    assert truncate_text("short", 10) == "short"
    assert truncate_text("Alpha beta gamma. Delta", 20) == "Alpha beta gamma."
    assert truncate_text("x" * 100, 10) == "x" * 10 + "..."


def test_sandbox_suggestions_when_only_strict_fails() -> None:
    report = _report(melody_arc=0.42)
    assert report.calibrated.overall and not report.strict.overall

    engine = TextExplainerEngine()
    sandboxed = engine.generate_explanation(CONTROLS.default(), report, sandbox=True)
    plain = engine.generate_explanation(CONTROLS.default(), report)

    assert sandboxed.bullets[-2:] == ["• Sandbox suggestions:", "  - Raise arc_shape toward 0.6"]
    assert sandboxed.bullets[: len(plain.bullets)] == plain.bullets
    assert "• Sandbox suggestions:" not in plain.bullets


def test_overlay_delta_thresholds() -> None:
    natal = CONTROLS.default()
    assert describe_overlay_deltas(natal, natal.model_copy(update={"step_bias": 0.79})) == []
    assert describe_overlay_deltas(natal, natal.model_copy(update={"step_bias": 0.81})) == [
        "more stepwise motion"
    ]
    assert describe_overlay_deltas(
        natal, natal.model_copy(update={"density_level": 0.4, "leap_cap": 6})
    ) == ["sparser texture", "wider leaps"]


def test_overlay_explanation_adds_contrast() -> None:
    natal = CONTROLS.default()
    current = CONTROLS.sandbox(ControlOverrides(step_bias=0.81))
    text = TextExplainerEngine().generate_overlay_explanation(natal, current, _report(), _report())

    prefix = "Compared to your natal chart, today's transits add more stepwise motion."
    assert text.short.startswith(prefix)
    assert text.long.startswith(prefix)
    assert text.bullets[0] == "• more stepwise motion compared to natal"


def test_overlay_contrast_suppressed_when_gate_fails() -> None:
    natal = CONTROLS.default()
    current = CONTROLS.sandbox(ControlOverrides(step_bias=0.81))
    text = TextExplainerEngine().generate_overlay_explanation(
        natal, current, _report(), _report(melody_narrative=0.0)
    )
    assert text.short == ""
    assert text.template_id == FAIL_TEMPLATE_ID
