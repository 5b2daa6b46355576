from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Annotated, Any, Dict, Literal, Optional

from pydantic import AfterValidator, BaseModel, ConfigDict, Field


class Element(str, Enum):
    FIRE = "fire"
    EARTH = "earth"
    AIR = "air"
    WATER = "water"


class Modality(str, Enum):
    CARDINAL = "cardinal"
    FIXED = "fixed"
    MUTABLE = "mutable"


class ComposeMode(str, Enum):
    SKY = "sky"
    OVERLAY = "overlay"
    SANDBOX = "sandbox"
    COMPATIBILITY = "compatibility"


def _check_iso_moment(value: str) -> str:
    try:
        datetime.fromisoformat(value)
    except ValueError as exc:
        raise ValueError(f"'{value}' is not an ISO-8601 datetime") from exc
    return value


IsoMoment = Annotated[str, Field(min_length=1, max_length=64), AfterValidator(_check_iso_moment)]


class SkyParams(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    latitude: float = Field(..., ge=-90.0, le=90.0)
    longitude: float = Field(..., ge=-180.0, le=180.0)
    moment: IsoMoment = Field(..., alias="datetime")


class OverlayParams(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    natal_latitude: float = Field(..., alias="natalLatitude", ge=-90.0, le=90.0)
    natal_longitude: float = Field(..., alias="natalLongitude", ge=-180.0, le=180.0)
    natal_moment: IsoMoment = Field(..., alias="natalDatetime")
    current_latitude: float = Field(..., alias="currentLatitude", ge=-90.0, le=90.0)
    current_longitude: float = Field(..., alias="currentLongitude", ge=-180.0, le=180.0)
    current_moment: IsoMoment = Field(..., alias="currentDatetime")

    def natal(self) -> SkyParams:
        return SkyParams(
            latitude=self.natal_latitude,
            longitude=self.natal_longitude,
            moment=self.natal_moment,
        )

    def current(self) -> SkyParams:
        return SkyParams(
            latitude=self.current_latitude,
            longitude=self.current_longitude,
            moment=self.current_moment,
        )


class CompatibilityParams(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    chart_a: SkyParams = Field(..., alias="chartA")
    chart_b: SkyParams = Field(..., alias="chartB")


class ControlSurfacePayload(BaseModel):
    """Control surface driving plan, audio and text for one composition."""

    arc_shape: float = Field(..., ge=0.0, le=1.0)
    density_level: float = Field(..., ge=0.0, le=1.0)
    tempo_norm: float = Field(..., ge=0.0, le=1.0)
    step_bias: float = Field(..., ge=0.0, le=1.0)
    leap_cap: int = Field(..., ge=1, le=6)
    rhythm_template_id: int = Field(..., ge=0, le=7)
    syncopation_bias: float = Field(..., ge=0.0, le=1.0)
    motif_rate: float = Field(..., ge=0.0, le=1.0)
    element_dominance: Element
    aspect_tension: float = Field(..., ge=0.0, le=1.0)
    modality: Modality
    hash: str = ""


class ControlOverrides(BaseModel):
    """Partial sandbox overrides; unknown knobs are rejected."""

    model_config = ConfigDict(extra="forbid")

    arc_shape: Optional[float] = Field(default=None, ge=0.0, le=1.0)
    density_level: Optional[float] = Field(default=None, ge=0.0, le=1.0)
    tempo_norm: Optional[float] = Field(default=None, ge=0.0, le=1.0)
    step_bias: Optional[float] = Field(default=None, ge=0.0, le=1.0)
    leap_cap: Optional[int] = Field(default=None, ge=1, le=6)
    rhythm_template_id: Optional[int] = Field(default=None, ge=0, le=7)
    syncopation_bias: Optional[float] = Field(default=None, ge=0.0, le=1.0)
    motif_rate: Optional[float] = Field(default=None, ge=0.0, le=1.0)
    element_dominance: Optional[Element] = None
    aspect_tension: Optional[float] = Field(default=None, ge=0.0, le=1.0)
    modality: Optional[Modality] = None
    hash: Optional[str] = Field(default=None, max_length=128)


class GateOverride(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    force_fail: bool = Field(default=False, alias="forceFail")


class ComposeRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    mode: Optional[ComposeMode] = None
    sky_params: Optional[SkyParams] = Field(default=None, alias="skyParams")
    overlay_params: Optional[OverlayParams] = Field(default=None, alias="overlayParams")
    controls: Optional[ControlOverrides] = None
    compatibility_score: Optional[float] = Field(
        default=None, alias="compatibilityScore", ge=0.0, le=1.0
    )
    compatibility_params: Optional[CompatibilityParams] = Field(
        default=None, alias="compatibilityParams"
    )
    test_override: Optional[GateOverride] = Field(default=None, alias="testOverride")
    seed: Optional[str] = Field(default=None, max_length=256)

    def canonical_payload(self) -> Dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


class PlanetPosition(BaseModel):
    name: str = Field(..., min_length=1, max_length=32)
    longitude: float
    latitude: Optional[float] = None
    speed: Optional[float] = None


class AspectRecord(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    body_a: str = Field(..., alias="bodyA")
    body_b: str = Field(..., alias="bodyB")
    aspect_type: Literal["conjunction", "sextile", "square", "trine", "opposition"] = Field(
        ..., alias="aspectType"
    )
    orb_degrees: float = Field(default=0.0, alias="orbDegrees")


class ElementWeights(BaseModel):
    fire: float = 0.25
    earth: float = 0.25
    air: float = 0.25
    water: float = 0.25


class EphemerisSnapshot(BaseModel):
    """Opaque astronomical snapshot supplied by the ephemeris collaborator."""

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    timestamp: str = ""
    timezone: str = "UTC"
    latitude: float = 0.0
    longitude: float = 0.0
    house_system: str = Field(default="placidus", alias="houseSystem")
    planets: list[PlanetPosition] = Field(default_factory=list)
    houses: list[float] = Field(default_factory=list)
    aspects: list[AspectRecord] = Field(default_factory=list)
    moon_phase: float = Field(default=0.0, alias="moonPhase")
    dominant_elements: ElementWeights = Field(
        default_factory=ElementWeights, alias="dominantElements"
    )


GATE_NAMES = ("melody_arc", "melody_step_leap", "melody_narrative", "rhythm_diversity")


class GateFlags(BaseModel):
    melody_arc: bool
    melody_step_leap: bool
    melody_narrative: bool
    rhythm_diversity: bool
    overall: bool

    @classmethod
    def from_checks(cls, checks: Dict[str, bool]) -> "GateFlags":
        values = {name: bool(checks[name]) for name in GATE_NAMES}
        return cls(**values, overall=all(values.values()))

    def failing(self) -> list[str]:
        return [name for name in GATE_NAMES if not getattr(self, name)]


class GateReport(BaseModel):
    calibrated: GateFlags
    strict: GateFlags
    scores: Dict[str, float]
    latency_ms: Dict[str, float] = Field(default_factory=dict)


class ExplainerAtoms(BaseModel):
    arc_desc: str
    movement: str
    rhythm_feel: str
    density_desc: str
    motif_desc: str
    astro_color: str


class TextExplainer(BaseModel):
    short: str
    long: str
    bullets: list[str] = Field(default_factory=list)
    template_id: str
    seed: str


class AstroBlock(BaseModel):
    element_dominance: Element
    aspect_tension: float
    modality: Modality


class AudioDescriptor(BaseModel):
    url: str
    digest: str
    latency_ms: float


class TextBlock(BaseModel):
    blocks: TextExplainer
    digest: str


class ExplanationSection(BaseModel):
    title: str
    text: str


class Explanation(BaseModel):
    spec: str = "UnifiedSpecV1.1"
    sections: list[ExplanationSection]


class VizDescriptor(BaseModel):
    url: str
    digest: str


class ComposeHashes(BaseModel):
    control: str
    audio: str
    explanation: str
    viz: Optional[str] = None


class Artifacts(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    model: str
    encoder: str
    chart_hash: str = Field(..., alias="chartHash")
    features_version: str = Field(..., alias="featuresVersion")
    gate: str
    mapping_tables_version: str
    timestamp: str
    provenance: Dict[str, Any] = Field(default_factory=dict)


class ComposeResponse(BaseModel):
    controls: ControlSurfacePayload
    astro: AstroBlock
    gate_report: GateReport
    audio: AudioDescriptor
    text: TextBlock
    explanation: Explanation
    viz: Optional[VizDescriptor] = None
    hashes: ComposeHashes
    artifacts: Artifacts


class FeaturesResponse(BaseModel):
    features: list[float]
    version: str
