"""Narrative planning strategy expanding a 6-D control vector into a Plan."""

from __future__ import annotations

from typing import List, Optional, Protocol, Sequence, Tuple

from .prng import canonical_json, sha256_hex
from .types import AstroGuidance, EventToken, Plan

PLANNER_VERSION = "narrative-v2"
BARS = 16
PHRASE_BARS = 4
BEATS_PER_BAR = 4
GRID_DIVISIONS = 8
MIN_BPM = 70
MAX_BPM = 140

MAJOR_SCALE = (0, 2, 4, 5, 7, 9, 11)

KEYS: Tuple[Tuple[str, int], ...] = (
    ("C major", 0),
    ("G major", 7),
    ("D major", 2),
    ("A major", 9),
    ("E major", 4),
    ("F major", 5),
    ("Bb major", 10),
    ("Eb major", 3),
)

# (stepwise cell, leaping cell) in scale degrees relative to the phrase centre.
MOTIF_CELLS: Tuple[Tuple[Tuple[int, ...], Tuple[int, ...]], ...] = (
    ((0, 1, 2, 1), (0, 2, 4, 2)),
    ((0, -1, 0, 1), (0, -2, 0, 2)),
    ((2, 1, 0, 1), (4, 2, 0, 2)),
    ((0, 1, 0, -1), (0, 3, 0, -2)),
    ((0, 1, 2, 3), (0, 2, 4, 5)),
    ((3, 2, 1, 0), (5, 4, 2, 0)),
    ((1, 0, 1, 2), (2, 0, 2, 4)),
    ((0, 2, 1, 0), (0, 4, 1, -1)),
)

HALF_CADENCE_TARGETS = (1, 4, -1, 2)
LEAP_BAR_ORDER = (1, 2, 0)

PROGRESSIONS: Tuple[Tuple[int, ...], ...] = (
    (0, 3, 4, 0),
    (0, 5, 3, 4),
    (0, 3, 0, 4),
    (5, 3, 0, 4),
)

KICK = 36
RIM = 37
SNARE = 38
CLAP = 39
HAT = 42
OPEN_HAT = 46

Hit = Tuple[float, float, int, float]


def _hits(pitch: int, duration: float, velocity: float, beats: Sequence[float]) -> List[Hit]:
    return [(beat, duration, pitch, velocity) for beat in beats]


_EIGHTHS = (0.5, 1.5, 2.5, 3.5)
_ALL_EIGHTHS = (0.0, 0.5, 1.0, 1.5, 2.0, 2.5, 3.0, 3.5)

RHYTHM_TEMPLATES: Tuple[Tuple[Hit, ...], ...] = (
    tuple(
        _hits(KICK, 0.25, 0.8, (0.0,))
        + _hits(HAT, 0.125, 0.4, (1.0, 3.0))
        + _hits(KICK, 0.25, 0.7, (2.0,))
    ),
    tuple(
        _hits(KICK, 0.25, 0.8, (0.0, 2.0))
        + _hits(SNARE, 0.25, 0.7, (1.0, 3.0))
        + _hits(HAT, 0.125, 0.4, _EIGHTHS)
    ),
    tuple(
        _hits(KICK, 0.25, 0.8, (0.0, 2.0))
        + _hits(KICK, 0.25, 0.6, (1.0, 3.0))
        + _hits(HAT, 0.125, 0.45, _EIGHTHS)
    ),
    tuple(
        _hits(KICK, 0.25, 0.85, (0.0,))
        + _hits(KICK, 0.25, 0.7, (2.5,))
        + _hits(SNARE, 0.25, 0.75, (1.0, 3.0))
        + _hits(HAT, 0.125, 0.4, _ALL_EIGHTHS)
    ),
    tuple(
        _hits(KICK, 0.25, 0.85, (0.0,))
        + _hits(KICK, 0.25, 0.6, (0.75,))
        + _hits(KICK, 0.25, 0.8, (2.0,))
        + _hits(SNARE, 0.25, 0.75, (1.0, 3.0))
        + _hits(HAT, 0.125, 0.4, _ALL_EIGHTHS)
    ),
    tuple(
        _hits(KICK, 0.25, 0.95, (0.0,))
        + _hits(KICK, 0.25, 0.7, (1.5,))
        + _hits(KICK, 0.25, 0.85, (2.0,))
        + _hits(SNARE, 0.25, 0.95, (1.0, 3.0))
        + _hits(OPEN_HAT, 0.5, 0.5, (3.5,))
    ),
    tuple(
        _hits(KICK, 0.25, 1.0, (0.0,))
        + _hits(KICK, 0.25, 0.85, (2.0,))
        + _hits(KICK, 0.25, 0.7, (2.75,))
        + _hits(SNARE, 0.25, 0.9, (1.0,))
        + _hits(CLAP, 0.25, 1.0, (3.0,))
        + _hits(HAT, 0.125, 0.35, (0.0, 1.0, 2.0, 3.0))
    ),
    tuple(
        _hits(KICK, 0.25, 0.8, (0.0,))
        + _hits(KICK, 0.25, 0.6, (1.75,))
        + _hits(RIM, 0.125, 0.5, (1.25, 2.5, 3.25))
        + _hits(HAT, 0.125, 0.35, (0.5, 2.0, 3.75))
    ),
)

GHOST_HITS: Tuple[Tuple[float, Hit], ...] = (
    (0.25, (1.75, 0.125, HAT, 0.35)),
    (0.5, (3.75, 0.125, SNARE, 0.3)),
    (0.75, (2.25, 0.125, HAT, 0.35)),
)


class PlanningStrategy(Protocol):
    def build(self, vector: Sequence[float], guidance: Optional[AstroGuidance] = None) -> Plan:
        ...


def _clamp(value: float, low: float = 0.0, high: float = 1.0) -> float:
    return max(low, min(high, value))


def _lerp(low: float, high: float, amount: float) -> float:
    return low + (high - low) * amount


def degree_to_midi(tonic: int, degree: int) -> int:
    octave, step = divmod(degree, len(MAJOR_SCALE))
    return tonic + 12 * octave + MAJOR_SCALE[step]


def _triad(tonic: int, root_degree: int) -> List[int]:
    return [degree_to_midi(tonic - 12, root_degree + step) for step in (0, 2, 4)]


def _voice(triad: List[int], previous: Optional[List[int]]) -> List[int]:
    candidates: List[List[int]] = []
    for inversion in range(len(triad)):
        voiced = sorted(triad[inversion:] + [pitch + 12 for pitch in triad[:inversion]])
        for shift in (-12, 0):
            candidates.append([pitch + shift for pitch in voiced])
    if previous is None:
        return candidates[1]
    return min(
        candidates,
        key=lambda voicing: sum(abs(a - b) for a, b in zip(voicing, previous)),
    )


class NarrativePlanner:
    """Phrase-structured A-B-C-A' planner over a diatonic key.

    Vector dimensions: tempo, contour (stepwise preference), density, arc,
    motif and groove. Guidance, when present, biases tempo, arc and density
    and overrides the motif and cadence choices.
    """

    def build(self, vector: Sequence[float], guidance: Optional[AstroGuidance] = None) -> Plan:
        if len(vector) < 6:
            raise ValueError(f"planning vector needs 6 dimensions, got {len(vector)}")
        tempo, contour, density, arc, motif, groove = (_clamp(float(v)) for v in vector[:6])
        motif_idx = min(len(MOTIF_CELLS) - 1, int(motif * len(MOTIF_CELLS)))
        cadence_idx = 0
        if guidance is not None:
            tempo = _clamp(tempo * (1.0 + 0.1 * guidance.tempo_bias))
            arc = _clamp(arc * (1.0 + 0.3 * guidance.arc_bias))
            density = _clamp(density + 0.2 * guidance.density_bias)
            motif_idx = guidance.motif_idx % len(MOTIF_CELLS)
            cadence_idx = guidance.cadence_idx % len(HALF_CADENCE_TARGETS)

        bpm = round(_lerp(MIN_BPM, MAX_BPM, tempo))
        seconds_per_beat = 60.0 / bpm
        key_name, tonic_pc = KEYS[motif_idx % len(KEYS)]
        tonic = 60 + tonic_pc if tonic_pc <= 6 else 48 + tonic_pc

        events: List[EventToken] = []
        events.extend(
            self._melody(tonic, seconds_per_beat, contour, arc, motif, motif_idx, cadence_idx)
        )
        events.extend(self._harmony_and_bass(tonic, seconds_per_beat, density))
        events.extend(self._rhythm(seconds_per_beat, groove))
        events.sort(key=lambda event: event.t0)

        fingerprint = canonical_json(
            {
                "vector": [round(float(v), 6) for v in vector[:6]],
                "guidance": None if guidance is None else list(guidance.__dict__.values()),
            }
        )
        return Plan(
            id=f"plan_{sha256_hex(fingerprint)[:12]}",
            duration_sec=BARS * BEATS_PER_BAR * seconds_per_beat,
            bpm=float(bpm),
            key=key_name,
            events=events,
        )

    def _time(self, beats: float, seconds_per_beat: float) -> float:
        return round(beats * GRID_DIVISIONS) / GRID_DIVISIONS * seconds_per_beat

    def _group(self, bar: int) -> str:
        return f"bar-{bar:02d}"

    def _melody(
        self,
        tonic: int,
        seconds_per_beat: float,
        contour: float,
        arc: float,
        motif: float,
        motif_idx: int,
        cadence_idx: int,
    ) -> List[EventToken]:
        lift = _lerp(4.0, 9.0, arc)
        centres = (0, round(lift * 0.6), round(lift), 0)
        motif_bars = 1 + round(motif * 2)
        leap_bars = set(LEAP_BAR_ORDER[: round((1.0 - contour) * 3)])
        stepwise, leaping = MOTIF_CELLS[motif_idx]

        notes: List[EventToken] = []
        phrases = BARS // PHRASE_BARS
        for phrase in range(phrases):
            centre = centres[phrase % len(centres)]
            for bar_in_phrase in range(PHRASE_BARS):
                bar = phrase * PHRASE_BARS + bar_in_phrase
                if bar_in_phrase == PHRASE_BARS - 1:
                    target = 0 if phrase == phrases - 1 else HALF_CADENCE_TARGETS[cadence_idx]
                    cell: Tuple[int, ...] = (0, 1, target + 1, target)
                else:
                    cell = leaping if bar_in_phrase in leap_bars else stepwise
                    is_motif = bar_in_phrase == 0 or (
                        bar_in_phrase == 1 and motif_bars >= 3
                    ) or (bar_in_phrase == 2 and motif_bars >= 2)
                    if not is_motif:
                        cell = tuple(reversed(cell))
                for beat, degree in enumerate(cell):
                    start = bar * BEATS_PER_BAR + beat
                    velocity = 0.85 if beat == 0 else 0.7
                    if bar_in_phrase == PHRASE_BARS - 1 and beat == len(cell) - 1:
                        velocity = 0.9
                    notes.append(
                        EventToken(
                            t0=self._time(start, seconds_per_beat),
                            t1=self._time(start + 1, seconds_per_beat),
                            pitch=float(degree_to_midi(tonic, centre + degree)),
                            velocity=velocity,
                            channel="melody",
                            group=self._group(bar),
                        )
                    )
        return notes

    def _harmony_and_bass(
        self, tonic: int, seconds_per_beat: float, density: float
    ) -> List[EventToken]:
        progression = PROGRESSIONS[min(len(PROGRESSIONS) - 1, int(density * len(PROGRESSIONS)))]
        events: List[EventToken] = []
        previous: Optional[List[int]] = None
        for bar in range(BARS):
            root_degree = progression[bar % PHRASE_BARS]
            if bar == BARS - 1:
                root_degree = 0
            voicing = _voice(_triad(tonic, root_degree), previous)
            previous = voicing
            start = bar * BEATS_PER_BAR
            chord = list(voicing)
            if density >= 0.7:
                chord.insert(0, voicing[0] - 12)
            for pitch in chord:
                events.append(
                    EventToken(
                        t0=self._time(start, seconds_per_beat),
                        t1=self._time(start + BEATS_PER_BAR, seconds_per_beat),
                        pitch=float(pitch),
                        velocity=0.5,
                        channel="harmony",
                        group=self._group(bar),
                    )
                )

            bass_root = 36 + (tonic + MAJOR_SCALE[root_degree % len(MAJOR_SCALE)]) % 12
            if density < 0.35:
                segments = [(0, BEATS_PER_BAR, bass_root)]
            else:
                segments = [(0, 2, bass_root), (2, 2, bass_root + 7)]
            for offset, length, pitch in segments:
                events.append(
                    EventToken(
                        t0=self._time(start + offset, seconds_per_beat),
                        t1=self._time(start + offset + length, seconds_per_beat),
                        pitch=float(pitch),
                        velocity=0.7,
                        channel="bass",
                        group=self._group(bar),
                    )
                )
        return events

    def _rhythm(self, seconds_per_beat: float, groove: float) -> List[EventToken]:
        scaled = groove * len(RHYTHM_TEMPLATES)
        template_idx = min(len(RHYTHM_TEMPLATES) - 1, int(scaled))
        syncopation = _clamp(scaled - template_idx)
        hits = list(RHYTHM_TEMPLATES[template_idx])
        hits.extend(hit for threshold, hit in GHOST_HITS if syncopation >= threshold)

        events: List[EventToken] = []
        for bar in range(BARS):
            start = bar * BEATS_PER_BAR
            for beat, length, pitch, velocity in hits:
                events.append(
                    EventToken(
                        t0=self._time(start + beat, seconds_per_beat),
                        t1=self._time(start + beat + length, seconds_per_beat),
                        pitch=float(pitch),
                        velocity=velocity,
                        channel="rhythm",
                        group=self._group(bar),
                    )
                )
        return events
