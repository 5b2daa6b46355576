"""Rule-based melody, harmony and rhythm critics."""

from __future__ import annotations

import math
from collections import Counter
from dataclasses import asdict, dataclass, field
from typing import Dict, Iterable, List, Optional, Sequence

import numpy as np

from ..app.settings import RuleThresholds
from .types import EventToken, Plan

MIN_MELODY_NOTES = 8
MIN_HARMONY_EVENTS = 4
MIN_RHYTHM_EVENTS = 4
MAX_CONTOUR_ENTROPY = 3.0
LONG_MONOTONIC_RUN = 8

NOTE_INDEX = {
    "C": 0,
    "C#": 1,
    "Db": 1,
    "D": 2,
    "D#": 3,
    "Eb": 3,
    "E": 4,
    "F": 5,
    "F#": 6,
    "Gb": 6,
    "G": 7,
    "G#": 8,
    "Ab": 8,
    "A": 9,
    "A#": 10,
    "Bb": 10,
    "B": 11,
}

# Weight of each root motion (semitones mod 12) for progression legality.
ROOT_MOTION_WEIGHTS = {
    0: 0.5,
    1: 0.6,
    2: 0.7,
    3: 0.8,
    4: 0.8,
    5: 1.0,
    6: 0.2,
    7: 1.0,
    8: 0.8,
    9: 0.8,
    10: 0.7,
    11: 0.6,
}

TRIAD_SHAPES = ((0, 4, 7), (0, 3, 7), (0, 3, 6))


def _clamp(value: float, low: float = 0.0, high: float = 1.0) -> float:
    if not math.isfinite(value):
        return low
    return max(low, min(high, value))


@dataclass(frozen=True)
class MelodyScores:
    arc: float
    motif_recurrence: float
    contour_entropy: float
    step_leap_ratio: float
    range_ok: float
    narrative_flow: float
    gaming_penalty: float

    def average(self) -> float:
        return (
            self.arc
            + self.motif_recurrence
            + self.contour_entropy
            + self.step_leap_ratio
            + self.range_ok
        ) / 5.0

    def penalised(self) -> float:
        return max(0.0, self.average() - self.gaming_penalty)


@dataclass(frozen=True)
class HarmonyScores:
    progression_legality: float
    voice_leading: float
    tension: float
    complexity: float
    resolution: float

    def average(self) -> float:
        return float(np.mean(list(asdict(self).values())))


@dataclass(frozen=True)
class RhythmScores:
    syncopation: float
    groove: float
    tempo: float
    diversity: float
    accent: float

    def average(self) -> float:
        return float(np.mean(list(asdict(self).values())))


@dataclass(frozen=True)
class RuleQuality:
    score: float
    ok: bool
    melody: MelodyScores
    harmony: HarmonyScores
    rhythm: RhythmScores
    failures: List[str] = field(default_factory=list)


def _sorted(events: Iterable[EventToken]) -> List[EventToken]:
    return sorted(events, key=lambda event: (event.t0, event.pitch))


def _gaming_penalty(pitches: np.ndarray, deltas: np.ndarray) -> float:
    penalty = 0.0
    pitch_range = float(pitches.max() - pitches.min())
    if np.mean(deltas == 0) > 0.3:
        penalty += 0.3
    if len(pitches) > 10 and len(np.unique(np.abs(deltas))) < 3:
        penalty += 0.4
    if pitch_range > 36:
        penalty += 0.3
    if np.mean(np.abs(deltas) <= 2) > 0.85:
        penalty += 0.2
    if pitch_range < 8:
        penalty += 0.3

    longest = run = 0
    previous = 0.0
    for delta in np.sign(deltas):
        if delta != 0 and delta == previous:
            run += 1
        else:
            run = 1 if delta != 0 else 0
        previous = delta
        longest = max(longest, run)
    if longest >= LONG_MONOTONIC_RUN:
        penalty += 0.2
    return min(1.0, penalty)


def score_melody(events: Sequence[EventToken]) -> MelodyScores:
    notes = _sorted(event for event in events if event.channel == "melody")
    if len(notes) < MIN_MELODY_NOTES:
        return MelodyScores(0.0, 0.0, 0.0, 0.0, 0.0, 0.0, gaming_penalty=1.0)

    pitches = np.asarray([note.pitch for note in notes], dtype=np.float64)
    deltas = np.diff(pitches)
    count = len(pitches)

    third = max(3, count // 3)
    opening = pitches[:third].mean()
    middle = pitches[third : 2 * third].mean()
    closing = pitches[2 * third :].mean() if count > 2 * third else middle
    rise = max(0.0, middle - opening) / 12.0
    resolve = max(0.0, middle - closing) / 12.0
    arc = _clamp((rise + resolve) / 2.0)

    grams = Counter(tuple(pitches[i : i + 3]) for i in range(count - 2))
    repeated = sum(1 for occurrences in grams.values() if occurrences > 1)
    motif_recurrence = repeated / len(grams) if grams else 0.0

    signs = np.sign(deltas).astype(int)
    transitions = Counter(zip(signs[:-1], signs[1:]))
    total = sum(transitions.values())
    entropy = 0.0
    for occurrences in transitions.values():
        probability = occurrences / total
        entropy -= probability * math.log2(probability)
    contour_entropy = _clamp(entropy / MAX_CONTOUR_ENTROPY)

    step_leap_ratio = float(np.mean(np.abs(deltas) <= 2))

    pitch_range = float(pitches.max() - pitches.min())
    if 12 <= pitch_range <= 24:
        range_ok = 1.0
    elif pitch_range < 12:
        range_ok = pitch_range / 12.0
    else:
        range_ok = max(0.0, 1.0 - (pitch_range - 24) / 12.0)

    rising = deltas > 0
    changes = int(np.count_nonzero(rising[1:] != rising[:-1]))
    narrative_flow = _clamp(1.0 - changes / len(deltas))

    return MelodyScores(
        arc=arc,
        motif_recurrence=_clamp(motif_recurrence),
        contour_entropy=contour_entropy,
        step_leap_ratio=_clamp(step_leap_ratio),
        range_ok=_clamp(range_ok),
        narrative_flow=narrative_flow,
        gaming_penalty=_gaming_penalty(pitches, deltas),
    )


def tonic_pitch_class(key: str) -> int:
    name = key.split()[0] if key.strip() else "C"
    return NOTE_INDEX.get(name, 0)


def chord_root(pitches: Sequence[float]) -> int:
    classes = {int(round(pitch)) % 12 for pitch in pitches}
    for candidate in sorted(classes):
        for shape in TRIAD_SHAPES:
            if {(candidate + interval) % 12 for interval in shape} <= classes:
                return candidate
    return int(round(min(pitches))) % 12


def _chords(events: Sequence[EventToken]) -> List[List[float]]:
    grouped: Dict[float, List[float]] = {}
    for event in events:
        grouped.setdefault(round(event.t0, 6), []).append(event.pitch)
    return [sorted(grouped[onset]) for onset in sorted(grouped)]


def score_harmony(events: Sequence[EventToken], key: str = "C major") -> HarmonyScores:
    harmony = [event for event in events if event.channel == "harmony"]
    if len(harmony) < MIN_HARMONY_EVENTS:
        return HarmonyScores(0.0, 0.0, 0.0, 0.0, 0.0)

    chords = _chords(harmony)
    roots = [chord_root(chord) for chord in chords]
    tonic = tonic_pitch_class(key)
    dominant = (tonic + 7) % 12
    leading = (tonic + 11) % 12

    motions = [ROOT_MOTION_WEIGHTS[(b - a) % 12] for a, b in zip(roots, roots[1:])]
    progression_legality = float(np.mean(motions)) if motions else 0.5

    movements = []
    for previous, current in zip(chords, chords[1:]):
        voices = min(len(previous), len(current))
        moved = np.abs(np.asarray(current[:voices]) - np.asarray(previous[:voices]))
        movements.append(max(0.0, 1.0 - float(moved.mean()) / 7.0))
    voice_leading = float(np.mean(movements)) if movements else 0.5

    tense_share = sum(1 for root in roots if root in (dominant, leading)) / len(roots)
    tension = _clamp(1.0 - abs(tense_share - 0.25) * 2.0)

    shapes = {frozenset(int(round(pitch)) % 12 for pitch in chord) for chord in chords}
    complexity = _clamp(len(shapes) / 4.0)

    final_tonic = 1.0 if roots[-1] == tonic else 0.0
    dominant_steps = [(a, b) for a, b in zip(roots, roots[1:]) if a == dominant]
    if dominant_steps:
        authentic = sum(1 for _, b in dominant_steps if b == tonic) / len(dominant_steps)
    else:
        authentic = 0.5
    resolution = 0.5 * final_tonic + 0.5 * authentic

    return HarmonyScores(
        progression_legality=_clamp(progression_legality),
        voice_leading=_clamp(voice_leading),
        tension=tension,
        complexity=complexity,
        resolution=_clamp(resolution),
    )


def _sixteenths(value: float) -> float:
    return round(value * 16) / 16


def score_rhythm(events: Sequence[EventToken], bpm: float) -> RhythmScores:
    hits = _sorted(event for event in events if event.channel == "rhythm")
    if len(hits) < MIN_RHYTHM_EVENTS or bpm <= 0:
        return RhythmScores(0.0, 0.0, 0.0, 0.0, 0.0)

    beats_per_second = bpm / 60.0
    onsets = [_sixteenths(hit.t0 * beats_per_second) for hit in hits]

    offbeat = [0.05 < onset % 1.0 < 0.95 for onset in onsets]
    offbeat_share = sum(offbeat) / len(onsets)
    syncopation = _clamp(1.0 - abs(offbeat_share - 0.35) / 0.65)

    patterns: Dict[int, List[float]] = {}
    for onset in onsets:
        patterns.setdefault(int(onset // 4), []).append(onset % 4)
    signatures = Counter(tuple(sorted(values)) for values in patterns.values())
    groove = max(signatures.values()) / len(patterns)

    if 60.0 <= bpm <= 150.0:
        tempo = 1.0
    else:
        distance = 60.0 - bpm if bpm < 60.0 else bpm - 150.0
        tempo = _clamp(1.0 - distance / 60.0)

    durations = {_sixteenths((hit.t1 - hit.t0) * beats_per_second) for hit in hits}
    unique_onsets = sorted(set(onsets))
    intervals = {
        _sixteenths(b - a) for a, b in zip(unique_onsets, unique_onsets[1:]) if b - a > 1e-6
    }
    diversity = _clamp((len(durations) + len(intervals)) / 8.0)

    velocities = [hit.velocity for hit in hits]
    accent = _clamp((max(velocities) - min(velocities)) / 0.5)

    return RhythmScores(
        syncopation=syncopation,
        groove=_clamp(groove),
        tempo=tempo,
        diversity=diversity,
        accent=accent,
    )


def rule_quality(plan: Plan, thresholds: Optional[RuleThresholds] = None) -> RuleQuality:
    """Score a plan and check every named metric against its own threshold."""

    thresholds = thresholds or RuleThresholds()
    events = [event for event in plan.events if event.is_finite()]
    melody = score_melody(events)
    harmony = score_harmony(events, plan.key)
    rhythm = score_rhythm(events, plan.bpm)

    score = (melody.penalised() + harmony.average() + rhythm.average()) / 3.0

    checks = {
        "arc": melody.arc >= thresholds.arc,
        "motif_recurrence": melody.motif_recurrence >= thresholds.motif_recurrence,
        "contour_entropy": melody.contour_entropy >= thresholds.contour_entropy,
        "step_leap_ratio": melody.step_leap_ratio >= thresholds.step_leap_ratio,
        "range_ok": melody.range_ok >= thresholds.range_ok,
        "progression_legality": harmony.progression_legality >= thresholds.progression_legality,
        "syncopation": rhythm.syncopation >= thresholds.syncopation,
    }
    failures = [name for name, passed in checks.items() if not passed]
    return RuleQuality(
        score=_clamp(score),
        ok=not failures,
        melody=melody,
        harmony=harmony,
        rhythm=rhythm,
        failures=failures,
    )
