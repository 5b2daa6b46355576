"""Astro snapshot feature encoding and planner guidance."""

from __future__ import annotations

import math
from typing import Optional

import numpy as np

from ..app.models import EphemerisSnapshot
from .types import AstroGuidance

FEATURES_VERSION = "v1.0"
FEATURE_LENGTH = 64

PLANET_ORDER = (
    "sun",
    "moon",
    "mercury",
    "venus",
    "mars",
    "jupiter",
    "saturn",
    "uranus",
    "neptune",
    "pluto",
)
ASPECT_ORDER = ("conjunction", "sextile", "square", "trine", "opposition")
ELEMENT_ORDER = ("fire", "earth", "air", "water")

HOUSE_OFFSET = len(PLANET_ORDER)
ASPECT_OFFSET = HOUSE_OFFSET + 12
ELEMENT_OFFSET = ASPECT_OFFSET + len(ASPECT_ORDER)
MOON_PHASE_INDEX = ELEMENT_OFFSET + len(ELEMENT_ORDER)
TENSION_INDEX = MOON_PHASE_INDEX + 1
CLUSTER_INDEX = TENSION_INDEX + 1

ASPECT_COUNT_CAP = 10.0


def _clamp(value: float, low: float = 0.0, high: float = 1.0) -> float:
    return max(low, min(high, value))


def normalise_degrees(degrees: float) -> float:
    return ((degrees % 360.0) + 360.0) % 360.0 / 360.0


def _cluster_density(longitudes: list[float]) -> float:
    if not longitudes:
        return 0.0
    ordered = sorted(((value % 360.0) + 360.0) % 360.0 for value in longitudes)
    gaps = [ordered[i + 1] - ordered[i] for i in range(len(ordered) - 1)]
    gaps.append(360.0 - ordered[-1] + ordered[0])
    return _clamp(1.0 - max(gaps) / 360.0)


def encode_features(snapshot: EphemerisSnapshot) -> np.ndarray:
    """Encode ``snapshot`` into the fixed 64-slot feature layout."""

    features = np.zeros(FEATURE_LENGTH, dtype=np.float32)
    positions = {planet.name.lower(): planet.longitude for planet in snapshot.planets}

    for index, name in enumerate(PLANET_ORDER):
        longitude = positions.get(name)
        if longitude is not None and math.isfinite(longitude):
            features[index] = normalise_degrees(longitude)

    for index, cusp in enumerate(snapshot.houses[:12]):
        if math.isfinite(cusp):
            features[HOUSE_OFFSET + index] = normalise_degrees(cusp)

    counts = {name: 0 for name in ASPECT_ORDER}
    for aspect in snapshot.aspects:
        counts[aspect.aspect_type] += 1
    for index, name in enumerate(ASPECT_ORDER):
        features[ASPECT_OFFSET + index] = _clamp(counts[name] / ASPECT_COUNT_CAP)

    weights = snapshot.dominant_elements
    for index, name in enumerate(ELEMENT_ORDER):
        features[ELEMENT_OFFSET + index] = _clamp(getattr(weights, name))

    features[MOON_PHASE_INDEX] = _clamp(snapshot.moon_phase)
    features[TENSION_INDEX] = _clamp(
        (counts["square"] * 0.6 + counts["opposition"] * 1.0) / 12.0
    )
    finite_longitudes = [value for value in positions.values() if math.isfinite(value)]
    features[CLUSTER_INDEX] = _cluster_density(finite_longitudes)

    return np.nan_to_num(features, nan=0.0, posinf=0.0, neginf=0.0)


def guidance_from_features(
    features: np.ndarray, snapshot: Optional[EphemerisSnapshot] = None
) -> AstroGuidance:
    fire, earth, air, water = (float(value) for value in features[ELEMENT_OFFSET:MOON_PHASE_INDEX])
    dynamic = fire + air
    stable = earth + water
    tempo_bias = abs(dynamic - stable) / 2.0
    if dynamic < stable:
        tempo_bias = -tempo_bias

    tension = float(features[TENSION_INDEX])
    cluster = float(features[CLUSTER_INDEX])
    moon = float(features[MOON_PHASE_INDEX])

    sun_longitude = 0.0
    if snapshot is not None:
        for planet in snapshot.planets:
            if planet.name.lower() == "sun" and math.isfinite(planet.longitude):
                sun_longitude = ((planet.longitude % 360.0) + 360.0) % 360.0
                break

    return AstroGuidance(
        tempo_bias=tempo_bias,
        arc_bias=_clamp((tension - 0.5) * 2.0, -1.0, 1.0),
        density_bias=_clamp((cluster - 0.5) * 2.0, -1.0, 1.0),
        motif_idx=int(sun_longitude // 30) % 8,
        cadence_idx=0 if moon < 0.5 else 1,
    )
