from __future__ import annotations

from pathlib import Path
from typing import Optional, Sequence

import pytest

from astradio_worker.app.models import ComposeRequest, SkyParams
from astradio_worker.app.settings import Settings
from astradio_worker.services.audition import GATE_VERSION
from astradio_worker.services.cache import InMemoryCache
from astradio_worker.services.controls import ControlSurfaceGenerator
from astradio_worker.services.exceptions import (
    ComposeAPIError,
    ComposeValidationError,
    QualityExhaustedError,
)
from astradio_worker.services.inference import StudentPrediction
from astradio_worker.services.orchestrator import MODEL_DIGEST, ComposeOrchestrator
from astradio_worker.services.planner import PlanGenerator
from astradio_worker.services.realizer import FAIL_TEMPLATE_ID
from astradio_worker.services.types import AstroGuidance, EventToken, Plan

SKY = {"latitude": 40.7128, "longitude": -74.006, "datetime": "2025-01-01T12:00:00Z"}
OVERLAY = {
    "natalLatitude": 34.05,
    "natalLongitude": -118.24,
    "natalDatetime": "1990-06-15T08:30:00Z",
    "currentLatitude": 40.7128,
    "currentLongitude": -74.006,
    "currentDatetime": "2025-01-01T12:00:00Z",
}


class ExplodingModel:
    version = "exploding"

    async def predict(self, features: Sequence[float]) -> StudentPrediction:
        raise RuntimeError("boom")


class DroneStrategy:
    def build(self, vector: Sequence[float], guidance: Optional[AstroGuidance] = None) -> Plan:
        events = [EventToken(float(beat), beat + 0.5, 60.0, 0.7, "melody") for beat in range(4)]
        return Plan(id="drone", duration_sec=2.0, bpm=120.0, key="C major", events=events)


def _settings(tmp_path: Path, **overrides: object) -> Settings:
    values: dict[str, object] = {"min_rule_quality": 0.0, "log_dir": tmp_path}
    values.update(overrides)
    return Settings(**values)


def _request(**body: object) -> ComposeRequest:
    return ComposeRequest.model_validate(body)


@pytest.mark.asyncio
async def test_sandbox_compose_envelope(tmp_path: Path) -> None:
    orchestrator = ComposeOrchestrator(_settings(tmp_path))
    response = await orchestrator.compose(_request(mode="sandbox", controls={}))

    default = ControlSurfaceGenerator().default()
    assert response.controls.hash == default.hash
    assert response.astro.element_dominance == default.element_dominance
    assert response.hashes.control.startswith("sha256:")
    assert response.hashes.audio == response.audio.digest
    assert response.hashes.explanation == response.text.digest
    assert response.hashes.viz is None
    assert response.audio.url == f"/api/audio/{default.hash[:12]}.mp3"
    assert 12.0 <= response.audio.latency_ms <= 20.0
    assert response.artifacts.model == MODEL_DIGEST
    assert response.artifacts.gate == GATE_VERSION
    assert response.artifacts.features_version == "v1.0"
    assert response.artifacts.mapping_tables_version == "v1.1"
    assert len(response.artifacts.chart_hash) == 16
    assert response.artifacts.provenance["seed"] == default.hash
    assert response.explanation.spec == "UnifiedSpecV1.1"
    assert [section.title for section in response.explanation.sections] == [
        "Theme",
        "Details",
        "Bullets",
    ]
    assert {"predict", "plan", "audition", "text", "total"} <= set(
        response.gate_report.latency_ms
    )


@pytest.mark.asyncio
async def test_compose_is_deterministic(tmp_path: Path) -> None:
    request = _request(mode="sandbox", controls={"arc_shape": 0.55, "leap_cap": 3})
    first = await ComposeOrchestrator(_settings(tmp_path)).compose(request)
    second = await ComposeOrchestrator(_settings(tmp_path)).compose(request)

    assert first.hashes == second.hashes
    assert first.text == second.text
    assert first.gate_report.scores == second.gate_report.scores
    assert first.gate_report.calibrated == second.gate_report.calibrated
    assert first.audio == second.audio


@pytest.mark.asyncio
async def test_idempotency_cache_returns_stored_response(tmp_path: Path) -> None:
    cache: InMemoryCache = InMemoryCache()
    orchestrator = ComposeOrchestrator(_settings(tmp_path), cache=cache)
    request = _request(mode="sandbox", controls={"motif_rate": 0.7})

    first = await orchestrator.compose(request)
    second = await orchestrator.compose(request)

    assert second is first
    assert orchestrator.cache_entries() == 1


@pytest.mark.asyncio
async def test_cache_disabled_by_settings(tmp_path: Path) -> None:
    cache: InMemoryCache = InMemoryCache()
    orchestrator = ComposeOrchestrator(_settings(tmp_path, cache_enabled=False), cache=cache)
    await orchestrator.compose(_request(mode="sandbox"))
    assert len(cache) == 0


def test_idempotency_key_includes_runtime_model(tmp_path: Path) -> None:
    request = _request(mode="sandbox")
    first = ComposeOrchestrator(_settings(tmp_path, runtime_model="student-a"))
    second = ComposeOrchestrator(_settings(tmp_path, runtime_model="student-b"))
    assert first.idempotency_key(request) != second.idempotency_key(request)
    assert first.idempotency_key(request) == first.idempotency_key(request.model_copy())


@pytest.mark.asyncio
async def test_missing_mode_composes_sandbox(tmp_path: Path) -> None:
    orchestrator = ComposeOrchestrator(_settings(tmp_path))
    implicit = await orchestrator.compose(_request())
    explicit = await orchestrator.compose(_request(mode="sandbox", controls={}))
    assert implicit.hashes == explicit.hashes


@pytest.mark.asyncio
async def test_missing_mode_discards_request_controls(tmp_path: Path) -> None:
    orchestrator = ComposeOrchestrator(_settings(tmp_path))
    implicit = await orchestrator.compose(_request(controls={"arc_shape": 0.9}))
    explicit = await orchestrator.compose(_request(mode="sandbox", controls={}))
    assert implicit.controls == ControlSurfaceGenerator().default()
    assert implicit.hashes.control == explicit.hashes.control


@pytest.mark.asyncio
async def test_force_fail_produces_fail_closed_text(tmp_path: Path) -> None:
    orchestrator = ComposeOrchestrator(_settings(tmp_path))
    response = await orchestrator.compose(
        _request(mode="sandbox", controls={}, testOverride={"forceFail": True})
    )
    assert not response.gate_report.calibrated.overall
    assert response.text.blocks.short == ""
    assert response.text.blocks.template_id == FAIL_TEMPLATE_ID
    assert response.explanation.sections[0].text == ""


@pytest.mark.asyncio
async def test_sky_mode_requires_params(tmp_path: Path) -> None:
    orchestrator = ComposeOrchestrator(_settings(tmp_path))
    with pytest.raises(ComposeValidationError) as excinfo:
        await orchestrator.compose(_request(mode="sky"))
    assert excinfo.value.status_code == 400
    assert excinfo.value.details[0]["field"] == "skyParams"


@pytest.mark.asyncio
async def test_sky_mode(tmp_path: Path) -> None:
    orchestrator = ComposeOrchestrator(_settings(tmp_path))
    first = await orchestrator.compose(_request(mode="sky", skyParams=SKY))
    again = await orchestrator.compose(_request(mode="sky", skyParams=dict(SKY)))
    moved = await orchestrator.compose(
        _request(mode="sky", skyParams={**SKY, "latitude": 51.5074})
    )

    assert first.controls == ControlSurfaceGenerator().sky(SkyParams.model_validate(SKY))
    assert first.hashes == again.hashes
    assert first.artifacts.chart_hash == again.artifacts.chart_hash
    assert moved.artifacts.chart_hash != first.artifacts.chart_hash


@pytest.mark.asyncio
async def test_overlay_mode_uses_current_chart(tmp_path: Path) -> None:
    orchestrator = ComposeOrchestrator(_settings(tmp_path))
    response = await orchestrator.compose(_request(mode="overlay", overlayParams=OVERLAY))
    current = ControlSurfaceGenerator().sky(SkyParams.model_validate(SKY))
    assert response.controls == current
    assert response.text.blocks.seed == current.hash


@pytest.mark.asyncio
async def test_compatibility_uses_match_cache(tmp_path: Path) -> None:
    match_cache: InMemoryCache = InMemoryCache()
    orchestrator = ComposeOrchestrator(_settings(tmp_path), match_cache=match_cache)
    request = _request(mode="compatibility", compatibilityScore=0.9)

    first = await orchestrator.compose(request)
    second = await orchestrator.compose(request)

    assert len(match_cache) == 1
    assert first.controls == second.controls
    assert first.controls.aspect_tension == 0.9


@pytest.mark.asyncio
async def test_unexpected_errors_are_wrapped(tmp_path: Path) -> None:
    orchestrator = ComposeOrchestrator(_settings(tmp_path), model=ExplodingModel())
    with pytest.raises(ComposeAPIError) as excinfo:
        await orchestrator.compose(_request(mode="sandbox"))
    assert str(excinfo.value) == "Compose API error: boom"
    assert excinfo.value.status_code == 500


@pytest.mark.asyncio
async def test_quality_exhaustion_propagates(tmp_path: Path) -> None:
    settings = _settings(tmp_path, min_rule_quality=None)
    assert settings.quality_floor == 0.55
    orchestrator = ComposeOrchestrator(
        settings, planner=PlanGenerator.from_settings(settings, DroneStrategy())
    )
    with pytest.raises(QualityExhaustedError) as excinfo:
        await orchestrator.compose(_request(mode="sandbox"))
    assert excinfo.value.status_code == 422
    assert len(excinfo.value.diagnostics) == settings.candidate_count


@pytest.mark.asyncio
@pytest.mark.parametrize("arc_shape", [0.1, 0.45, 0.9])
async def test_strict_pass_implies_calibrated_pass(tmp_path: Path, arc_shape: float) -> None:
    orchestrator = ComposeOrchestrator(_settings(tmp_path))
    response = await orchestrator.compose(
        _request(mode="sandbox", controls={"arc_shape": arc_shape})
    )
    report = response.gate_report
    for name, passed in report.strict.model_dump().items():
        if passed:
            assert getattr(report.calibrated, name)


@pytest.mark.asyncio
async def test_warmup_reports_student_backend(tmp_path: Path) -> None:
    orchestrator = ComposeOrchestrator(_settings(tmp_path))
    assert orchestrator.backend_status() == {}
    statuses = await orchestrator.warmup()
    assert statuses["student"].ready
    assert statuses["student"].version == orchestrator.runtime_model
