"""Candidate plan generation with jitter and rule-based reranking."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Callable, List, Optional, Sequence

from loguru import logger

from ..app.settings import RuleThresholds, Settings
from .critics import RuleQuality, rule_quality
from .exceptions import QualityExhaustedError
from .features import encode_features, guidance_from_features
from .narrative import NarrativePlanner, PlanningStrategy
from .prng import create_seeded_rng
from .types import AstroGuidance, ChartContext, Plan, PlanResult

DEFAULT_CANDIDATES = 8
DEFAULT_JITTER_SIGMA = 0.10
DEFAULT_QUALITY_FLOOR = 0.55


def _clamp(value: float) -> float:
    return max(0.0, min(1.0, value))


def jitter(vector: Sequence[float], sigma: float, rand: Callable[[], float]) -> List[float]:
    if sigma <= 0:
        return [float(value) for value in vector]
    return [_clamp(float(value) + (rand() - 0.5) * 2.0 * sigma) for value in vector]


@dataclass
class _Candidate:
    vector: List[float]
    plan: Plan
    quality: RuleQuality


class PlanGenerator:
    """Builds K candidates around a student vector and keeps the best one."""

    def __init__(
        self,
        strategy: Optional[PlanningStrategy] = None,
        *,
        candidate_count: int = DEFAULT_CANDIDATES,
        jitter_sigma: float = DEFAULT_JITTER_SIGMA,
        min_quality: float = DEFAULT_QUALITY_FLOOR,
        rule_thresholds: Optional[RuleThresholds] = None,
    ) -> None:
        self._strategy = strategy or NarrativePlanner()
        self._candidate_count = max(1, candidate_count)
        self._jitter_sigma = jitter_sigma
        self._min_quality = min_quality
        self._rule_thresholds = rule_thresholds or RuleThresholds()

    @classmethod
    def from_settings(
        cls, settings: Settings, strategy: Optional[PlanningStrategy] = None
    ) -> "PlanGenerator":
        return cls(
            strategy,
            candidate_count=settings.candidate_count,
            jitter_sigma=settings.jitter_sigma,
            min_quality=settings.quality_floor,
            rule_thresholds=settings.rule_thresholds,
        )

    def generate(
        self,
        vector: Sequence[float],
        context: Optional[ChartContext] = None,
        model_version: str = "unknown",
    ) -> PlanResult:
        context = context or ChartContext()
        rand = create_seeded_rng(context.hash or "seed")
        guidance = self._guidance(context)

        base = [float(value) for value in vector]
        vectors = [base]
        for _ in range(self._candidate_count - 1):
            vectors.append(jitter(base, self._jitter_sigma, rand))

        candidates: List[_Candidate] = []
        for candidate_vector in vectors:
            plan = self._strategy.build(candidate_vector, guidance)
            quality = rule_quality(plan, self._rule_thresholds)
            candidates.append(_Candidate(candidate_vector, plan, quality))
        candidates.sort(key=lambda candidate: candidate.quality.score, reverse=True)

        best = candidates[0]
        scores = [round(candidate.quality.score, 3) for candidate in candidates]
        if best.quality.score < self._min_quality:
            diagnostics = [
                {"score": round(candidate.quality.score, 3), "vector": candidate.vector}
                for candidate in candidates
            ]
            logger.warning(
                "All {} candidates below quality floor {:.2f} (best {:.3f})",
                len(candidates),
                self._min_quality,
                best.quality.score,
            )
            raise QualityExhaustedError(
                f"No candidate reached rule quality {self._min_quality:.2f}",
                diagnostics,
            )

        logger.debug("Selected plan {} with score {:.3f}", best.plan.id, best.quality.score)
        return PlanResult(
            plan=best.plan,
            source=f"student-{model_version}+rerank",
            diagnostics={"scores": scores, "model_version": model_version},
        )

    def _guidance(self, context: ChartContext) -> Optional[AstroGuidance]:
        if context.snapshot is None:
            return None
        try:
            return guidance_from_features(encode_features(context.snapshot), context.snapshot)
        except Exception:  # noqa: BLE001
            logger.warning("Astro guidance unavailable for chart {}", context.hash)
            return None
