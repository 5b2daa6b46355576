"""Compose orchestrator sequencing controls, planning, gating, text and digests."""

from __future__ import annotations

import time
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Any, Dict, Optional, Tuple

from loguru import logger

from ..app.models import (
    Artifacts,
    AstroBlock,
    AudioDescriptor,
    ComposeHashes,
    ComposeMode,
    ComposeRequest,
    ComposeResponse,
    ControlOverrides,
    ControlSurfacePayload,
    Explanation,
    ExplanationSection,
    GateReport,
    TextBlock,
    TextExplainer,
)
from ..app.settings import Settings
from .audit import write_audit
from .audition import (
    GATE_VERSION,
    AuditionConfig,
    AuditionResult,
    audition,
    build_gate_report,
    force_calibrated_failure,
    gate_scores,
)
from .cache import CompositionCache
from .controls import ControlSurfaceGenerator
from .exceptions import ComposeAPIError, ComposeFailure
from .explainer import TextExplainerEngine
from .features import FEATURES_VERSION
from .inference import PlanningModel, StudentModel, control_feature_vector
from .planner import PlanGenerator
from .prng import canonical_json, create_seeded_rng, prefixed_digest, sha256_hex
from .types import BackendStatus, ChartContext, PlanResult

MODEL_DIGEST = "084c92dca9af2f09"
ENCODER_DIGEST = "db4eb96e52b3f63e"
TEXT_MODEL_VERSION = "v1.1"
MATCHING_VERSION = "v1.0"
AUDIO_DURATION_SECONDS = 60


@dataclass
class _Evaluation:
    payload: ControlSurfacePayload
    result: PlanResult
    audition: AuditionResult
    report: GateReport


class ComposeOrchestrator:
    """Runs one compose request end to end and caches the envelope."""

    def __init__(
        self,
        settings: Settings,
        *,
        controls: Optional[ControlSurfaceGenerator] = None,
        model: Optional[PlanningModel] = None,
        planner: Optional[PlanGenerator] = None,
        explainer: Optional[TextExplainerEngine] = None,
        cache: Optional[CompositionCache] = None,
        match_cache: Optional[CompositionCache] = None,
    ) -> None:
        self._settings = settings
        self._controls = controls or ControlSurfaceGenerator()
        self._model = model or StudentModel(settings.runtime_model)
        self._planner = planner or PlanGenerator.from_settings(settings)
        self._explainer = explainer or TextExplainerEngine()
        self._cache = cache
        self._match_cache = match_cache
        self._audition_config = AuditionConfig.from_settings(settings)
        self._backend_status: Dict[str, BackendStatus] = {}

    @property
    def runtime_model(self) -> str:
        return self._model.version

    async def warmup(self) -> Dict[str, BackendStatus]:
        warmup = getattr(self._model, "warmup", None)
        if warmup is not None:
            self._backend_status["student"] = await warmup()
        return dict(self._backend_status)

    def backend_status(self) -> Dict[str, BackendStatus]:
        return dict(self._backend_status)

    def cache_entries(self) -> int:
        if self._cache is None or not hasattr(self._cache, "__len__"):
            return 0
        return len(self._cache)  # type: ignore[arg-type]

    def idempotency_key(self, request: ComposeRequest) -> str:
        return sha256_hex(canonical_json(request.canonical_payload()) + self.runtime_model)

    async def compose(self, request: ComposeRequest) -> ComposeResponse:
        try:
            return await self._compose(request)
        except ComposeFailure:
            raise
        except Exception as exc:  # noqa: BLE001
            logger.exception("Compose pipeline failed")
            raise ComposeAPIError(f"Compose API error: {exc}") from exc

    async def _compose(self, request: ComposeRequest) -> ComposeResponse:
        started = time.perf_counter()
        if request.mode is None:
            request = ComposeRequest(mode=ComposeMode.SANDBOX, controls=ControlOverrides())

        key = self.idempotency_key(request)
        if self._cache is not None and self._settings.cache_enabled:
            cached = self._cache.get(key)
            if cached is not None:
                logger.debug("Idempotency cache hit {}", key[:12])
                return cached

        payload, natal = self._payloads(request)
        current = await self._evaluate(payload, request)
        latency = dict(current.report.latency_ms)

        mode = request.mode or ComposeMode.SANDBOX
        text_started = time.perf_counter()
        if mode == ComposeMode.OVERLAY and natal is not None:
            natal_eval = await self._evaluate(natal, request)
            text = self._explainer.generate_overlay_explanation(
                natal, payload, natal_eval.report, current.report
            )
        else:
            text = self._explainer.generate_explanation(
                payload, current.report, sandbox=mode == ComposeMode.SANDBOX
            )
        latency["text"] = _elapsed_ms(text_started)

        audio = self._audio(payload)
        explanation = _explanation(text)
        explanation_hash = prefixed_digest(canonical_json(explanation.model_dump(mode="json")))
        hashes = ComposeHashes(
            control=prefixed_digest(canonical_json(payload.model_dump(mode="json"))),
            audio=audio.digest,
            explanation=explanation_hash,
            viz=None,
        )

        latency["total"] = _elapsed_ms(started)
        report = current.report.model_copy(update={"latency_ms": latency})
        seed_used = request.seed or payload.hash
        artifacts = Artifacts(
            model=MODEL_DIGEST,
            encoder=ENCODER_DIGEST,
            chart_hash=self._chart_hash(request, payload),
            features_version=FEATURES_VERSION,
            gate=GATE_VERSION,
            mapping_tables_version=self._explainer.mapping_tables_version,
            timestamp=datetime.now(tz=UTC).isoformat(),
            provenance={
                "seed": seed_used,
                "featuresVersion": FEATURES_VERSION,
                "modelVersions": {
                    "audio": self.runtime_model,
                    "text": TEXT_MODEL_VERSION,
                    "viz": None,
                    "matching": MATCHING_VERSION,
                },
                "houseSystem": "placidus",
                "tzDiscipline": "utc",
                "planSource": current.result.source,
                "candidateScores": current.result.diagnostics.get("scores", []),
                "audition": current.audition.summary(),
                "repairs": current.audition.repairs[:10],
                "issues": list(current.audition.issues),
            },
        )
        response = ComposeResponse(
            controls=payload,
            astro=AstroBlock(
                element_dominance=payload.element_dominance,
                aspect_tension=payload.aspect_tension,
                modality=payload.modality,
            ),
            gate_report=report,
            audio=audio,
            text=TextBlock(blocks=text, digest=explanation_hash),
            explanation=explanation,
            viz=None,
            hashes=hashes,
            artifacts=artifacts,
        )

        if self._cache is not None and self._settings.cache_enabled:
            self._cache.set(key, response)

        logger.info(
            "Compose mode={} controls.hash={} template_id={} gate_scores={} "
            "calibrated={} strict={} latency_ms={}",
            mode.value,
            payload.hash,
            text.template_id,
            report.scores,
            report.calibrated.overall,
            report.strict.overall,
            latency,
        )
        write_audit(
            {
                "phase": "compose",
                "mode": mode.value,
                "controls_hash": payload.hash,
                "seed_used": seed_used,
                "template_id": text.template_id,
                "latency_ms": latency,
                "gate_scores": report.scores,
                "gates": {
                    "calibrated": report.calibrated.model_dump(),
                    "strict": report.strict.model_dump(),
                },
                "fail_closed_text": not report.calibrated.overall,
                "artifacts": {
                    "model": artifacts.model,
                    "gate": artifacts.gate,
                    "chartHash": artifacts.chart_hash,
                },
            }
        )
        return response

    def _payloads(
        self, request: ComposeRequest
    ) -> Tuple[ControlSurfacePayload, Optional[ControlSurfacePayload]]:
        mode = request.mode
        if mode == ComposeMode.SKY:
            return self._controls.sky(request.sky_params), None
        if mode == ComposeMode.OVERLAY:
            overlay = self._controls.overlay(request.overlay_params)
            return overlay.current, overlay.natal
        if mode == ComposeMode.COMPATIBILITY:
            return self._compatibility(request), None
        return self._controls.sandbox(request.controls), None

    def _compatibility(self, request: ComposeRequest) -> ControlSurfacePayload:
        params = request.compatibility_params
        match_key = sha256_hex(
            canonical_json(
                {
                    "charts": (
                        None if params is None else params.model_dump(mode="json", by_alias=True)
                    ),
                    "score": request.compatibility_score,
                }
            )
        )
        if self._match_cache is not None:
            cached = self._match_cache.get(match_key)
            if cached is not None:
                return cached
        payload = self._controls.compatibility(request.compatibility_score, params)
        if self._match_cache is not None:
            self._match_cache.set(match_key, payload)
        return payload

    async def _evaluate(
        self, payload: ControlSurfacePayload, request: ComposeRequest
    ) -> _Evaluation:
        started = time.perf_counter()
        prediction = await self._model.predict(control_feature_vector(payload))
        predict_ms = _elapsed_ms(started)

        plan_started = time.perf_counter()
        result = self._planner.generate(
            prediction.vector,
            ChartContext(hash=payload.hash),
            prediction.model_version,
        )
        plan_ms = _elapsed_ms(plan_started)

        gate_started = time.perf_counter()
        checked = audition(result.plan, self._audition_config, self._settings.rule_thresholds)
        report = build_gate_report(
            gate_scores(checked.quality),
            self._settings.calibrated_thresholds,
            self._settings.strict_thresholds,
            {
                "predict": predict_ms,
                "plan": plan_ms,
                "audition": _elapsed_ms(gate_started),
            },
        )
        if request.test_override is not None and request.test_override.force_fail:
            report = force_calibrated_failure(report)
        return _Evaluation(payload=payload, result=result, audition=checked, report=report)

    def _audio(self, payload: ControlSurfacePayload) -> AudioDescriptor:
        rand = create_seeded_rng(f"{payload.hash}|audio")
        url = f"{self._settings.audio_base_url.rstrip('/')}/{payload.hash[:12]}.mp3"
        return AudioDescriptor(
            url=url,
            digest=prefixed_digest(f"{url}:{AUDIO_DURATION_SECONDS}"),
            latency_ms=round(12.0 + rand() * 8.0, 1),
        )

    @staticmethod
    def _chart_hash(request: ComposeRequest, payload: ControlSurfacePayload) -> str:
        source: Any
        if request.mode == ComposeMode.SKY and request.sky_params is not None:
            source = request.sky_params.model_dump(mode="json", by_alias=True)
        elif request.mode == ComposeMode.OVERLAY and request.overlay_params is not None:
            source = request.overlay_params.model_dump(mode="json", by_alias=True)
        elif request.mode == ComposeMode.COMPATIBILITY:
            source = {
                "charts": None
                if request.compatibility_params is None
                else request.compatibility_params.model_dump(mode="json", by_alias=True),
                "score": request.compatibility_score,
            }
        else:
            source = {"controls": payload.hash}
        return sha256_hex(canonical_json(source))[:16]


def _elapsed_ms(started: float) -> float:
    return round((time.perf_counter() - started) * 1000.0, 3)


def _explanation(text: TextExplainer) -> Explanation:
    return Explanation(
        sections=[
            ExplanationSection(title="Theme", text=text.short),
            ExplanationSection(title="Details", text=text.long),
            ExplanationSection(title="Bullets", text=" · ".join(text.bullets)),
        ]
    )
