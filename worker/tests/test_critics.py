from __future__ import annotations

from typing import List, Sequence

import pytest

from astradio_worker.app.settings import RuleThresholds
from astradio_worker.services.critics import (
    chord_root,
    rule_quality,
    score_harmony,
    score_melody,
    score_rhythm,
    tonic_pitch_class,
)
from astradio_worker.services.narrative import NarrativePlanner
from astradio_worker.services.types import EventToken

ARCH = [60, 62, 64, 65, 67, 69, 71, 72, 71, 69, 67, 65, 64, 62, 60]


def _melody(pitches: Sequence[float]) -> List[EventToken]:
    return [
        EventToken(t0=float(i), t1=float(i) + 0.5, pitch=float(pitch), velocity=0.7, channel="melody")
        for i, pitch in enumerate(pitches)
    ]


def _progression(chords: Sequence[Sequence[int]]) -> List[EventToken]:
    events: List[EventToken] = []
    for beat, chord in enumerate(chords):
        for pitch in chord:
            events.append(
                EventToken(
                    t0=float(beat),
                    t1=float(beat) + 1.0,
                    pitch=float(pitch),
                    velocity=0.6,
                    channel="harmony",
                )
            )
    return events


def _beats(count: int, velocities: Sequence[float] = (0.5, 0.9)) -> List[EventToken]:
    return [
        EventToken(
            t0=float(i),
            t1=float(i) + 0.5,
            pitch=36.0,
            velocity=velocities[i % len(velocities)],
            channel="rhythm",
        )
        for i in range(count)
    ]


def test_short_melody_scores_zero_with_full_penalty() -> None:
    scores = score_melody(_melody([60, 62, 64]))
    assert scores.average() == 0.0
    assert scores.gaming_penalty == 1.0
    assert scores.penalised() == 0.0


def test_repeated_pitch_is_penalised() -> None:
    scores = score_melody(_melody([64] * 12))
    assert scores.gaming_penalty == 1.0
    assert scores.penalised() == 0.0


def test_arch_melody_scores() -> None:
    scores = score_melody(_melody(ARCH))
    assert scores.arc == pytest.approx(6.8 / 12.0)
    assert scores.step_leap_ratio == 1.0
    assert scores.range_ok == 1.0
    assert scores.narrative_flow == pytest.approx(13.0 / 14.0)
    assert scores.gaming_penalty == pytest.approx(0.6)


def test_tonic_pitch_class() -> None:
    assert tonic_pitch_class("C major") == 0
    assert tonic_pitch_class("Bb major") == 10
    assert tonic_pitch_class("F# major") == 6
    assert tonic_pitch_class("") == 0


@pytest.mark.parametrize(
    "pitches,root",
    [
        ([60, 64, 67], 0),
        ([65, 69, 72], 5),
        ([67, 71, 74], 7),
        ([57, 60, 64], 9),
        ([59, 62, 65], 11),
        ([61, 66], 1),
    ],
)
def test_chord_root(pitches: List[int], root: int) -> None:
    assert chord_root(pitches) == root


def test_authentic_cadence_resolves() -> None:
    harmony = score_harmony(
        _progression([[60, 64, 67], [65, 69, 72], [67, 71, 74], [60, 64, 67]]), "C major"
    )
    assert harmony.resolution == 1.0
    assert harmony.progression_legality == pytest.approx(0.9)


def test_unresolved_progression_scores_lower() -> None:
    resolved = score_harmony(
        _progression([[60, 64, 67], [65, 69, 72], [67, 71, 74], [60, 64, 67]]), "C major"
    )
    hanging = score_harmony(
        _progression([[60, 64, 67], [65, 69, 72], [60, 64, 67], [67, 71, 74]]), "C major"
    )
    assert hanging.resolution < resolved.resolution


def test_sparse_harmony_scores_zero() -> None:
    assert score_harmony(_progression([[60]]), "C major").average() == 0.0


def test_rhythm_scores_on_the_beat() -> None:
    rhythm = score_rhythm(_beats(8), bpm=60.0)
    assert rhythm.syncopation == pytest.approx(1.0 - 0.35 / 0.65)
    assert rhythm.groove == 1.0
    assert rhythm.tempo == 1.0
    assert rhythm.accent == pytest.approx(0.8)


def test_rhythm_tempo_out_of_range() -> None:
    assert score_rhythm(_beats(8), bpm=180.0).tempo == pytest.approx(0.5)
    assert score_rhythm(_beats(8), bpm=0.0).average() == 0.0


def test_rule_quality_lists_failing_metrics() -> None:
    plan = NarrativePlanner().build([0.7, 0.7, 0.6, 0.45, 0.6, 0.4125])
    quality = rule_quality(plan)
    assert 0.0 <= quality.score <= 1.0
    assert quality.ok == (not quality.failures)

    unreachable = RuleThresholds(
        arc=1.0,
        motif_recurrence=1.0,
        contour_entropy=1.0,
        step_leap_ratio=1.0,
        range_ok=1.0,
        progression_legality=1.0,
        syncopation=1.0,
    )
    strict = rule_quality(plan, unreachable)
    assert not strict.ok
    assert strict.failures
    assert strict.score == quality.score
