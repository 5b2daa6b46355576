from __future__ import annotations

from typing import cast

from fastapi import APIRouter, Request

from ..services.features import FEATURES_VERSION, encode_features
from ..services.narrative import PLANNER_VERSION
from ..services.orchestrator import ComposeOrchestrator
from .models import ComposeRequest, ComposeResponse, EphemerisSnapshot, FeaturesResponse
from .ratelimit import SlidingWindowRateLimiter
from .settings import Settings

router = APIRouter()


def get_orchestrator(request: Request) -> ComposeOrchestrator:
    return cast(ComposeOrchestrator, request.app.state.orchestrator)


def get_rate_limiter(request: Request) -> SlidingWindowRateLimiter:
    return cast(SlidingWindowRateLimiter, request.app.state.rate_limiter)


def client_key(request: Request, trust_forwarded_for: bool = False) -> str:
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded and trust_forwarded_for:
        return forwarded.split(",")[0].strip()
    if request.client is not None:
        return request.client.host
    return "anonymous"


@router.get("/health")
async def health(request: Request) -> dict[str, object]:
    settings = cast(Settings, request.app.state.settings)
    orchestrator = get_orchestrator(request)
    model_status = {
        name: status.as_dict() for name, status in orchestrator.backend_status().items()
    }
    loaded = getattr(request.app.state, "loaded_model", None)
    return {
        "status": "ok",
        "runtime_model": orchestrator.runtime_model,
        "planner_version": PLANNER_VERSION,
        "quality_env": settings.quality_env,
        "model_status": model_status,
        "rollback_taken": bool(loaded.rollback_taken) if loaded is not None else False,
        "cache_entries": orchestrator.cache_entries(),
    }


@router.post("/compose", response_model=ComposeResponse)
async def compose(payload: ComposeRequest, request: Request) -> ComposeResponse:
    settings = cast(Settings, request.app.state.settings)
    await get_rate_limiter(request).enforce(client_key(request, settings.trust_forwarded_for))
    return await get_orchestrator(request).compose(payload)


@router.post("/features", response_model=FeaturesResponse)
async def features(snapshot: EphemerisSnapshot) -> FeaturesResponse:
    vector = encode_features(snapshot)
    return FeaturesResponse(features=[float(value) for value in vector], version=FEATURES_VERSION)
