from __future__ import annotations

from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from loguru import logger

from ..services.audit import configure_audit_log, remove_audit_log
from ..services.cache import InMemoryCache
from ..services.exceptions import (
    ComposeFailure,
    ComposeValidationError,
    QualityExhaustedError,
)
from ..services.inference import StudentModel
from ..services.model_loader import ModelLoader
from ..services.orchestrator import ComposeOrchestrator
from .ratelimit import RateLimitConfig, RateLimitExceeded, SlidingWindowRateLimiter
from .routes import router
from .settings import Settings, get_settings


def _validation_details(exc: RequestValidationError) -> list[dict[str, str]]:
    details = []
    for error in exc.errors():
        location = [str(part) for part in error.get("loc", ()) if part != "body"]
        details.append(
            {
                "field": ".".join(location) or "body",
                "message": str(error.get("msg", "invalid value")),
            }
        )
    return details


def _register_exception_handlers(app: FastAPI) -> None:
    @app.exception_handler(RequestValidationError)
    async def _invalid_request(request: Request, exc: RequestValidationError) -> JSONResponse:
        return JSONResponse(
            status_code=400,
            content={"error": "Invalid input", "details": _validation_details(exc)},
        )

    @app.exception_handler(RateLimitExceeded)
    async def _rate_limited(request: Request, exc: RateLimitExceeded) -> JSONResponse:
        return JSONResponse(
            status_code=429,
            content={"error": exc.message, "code": "RATE_LIMITED", "retry_after": exc.retry_after},
            headers={"Retry-After": str(exc.retry_after)},
        )

    @app.exception_handler(ComposeFailure)
    async def _compose_failure(request: Request, exc: ComposeFailure) -> JSONResponse:
        if isinstance(exc, ComposeValidationError):
            details = exc.details or [{"field": "body", "message": str(exc)}]
            return JSONResponse(
                status_code=exc.status_code,
                content={"error": "Invalid input", "details": details},
            )
        if isinstance(exc, QualityExhaustedError):
            return JSONResponse(
                status_code=exc.status_code,
                content={"error": str(exc), "code": exc.code, "diagnostics": exc.diagnostics},
            )
        logger.error("Compose request failed: {}", exc)
        return JSONResponse(
            status_code=500,
            content={"error": "Composition failed", "code": ComposeFailure.code},
        )


def create_app(
    settings: Optional[Settings] = None,
    orchestrator: Optional[ComposeOrchestrator] = None,
    rate_limiter: Optional[SlidingWindowRateLimiter] = None,
) -> FastAPI:
    """Create and configure FastAPI instance."""
    settings = settings or get_settings()

    loaded_model = None
    if settings.model_registry_path is not None:
        loaded_model = ModelLoader(settings.model_registry_path).load()

    if orchestrator is None:
        runtime_model = settings.runtime_model
        if loaded_model is not None:
            runtime_model = loaded_model.model_id
        orchestrator = ComposeOrchestrator(
            settings,
            model=StudentModel(runtime_model),
            cache=InMemoryCache(settings.cache_ttl_seconds, settings.cache_max_entries),
            match_cache=InMemoryCache(settings.cache_ttl_seconds, settings.cache_max_entries),
        )
    limiter = rate_limiter
    if limiter is None:
        limiter = SlidingWindowRateLimiter(
            RateLimitConfig(
                max_requests=settings.rate_limit_requests,
                window_seconds=settings.rate_limit_window_seconds,
            )
        )

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        audit_handler = configure_audit_log(settings.log_dir)
        try:
            statuses = await orchestrator.warmup()
            logger.info(
                "Worker warmup complete: {}",
                {name: status.ready for name, status in statuses.items()},
            )
        except Exception:  # noqa: BLE001
            logger.exception("Worker warmup failed")
        yield
        remove_audit_log(audit_handler)

    app = FastAPI(title="Astradio Worker", version="0.1.0", lifespan=lifespan)
    app.state.settings = settings
    app.state.orchestrator = orchestrator
    app.state.rate_limiter = limiter
    app.state.loaded_model = loaded_model

    _register_exception_handlers(app)
    app.include_router(router)
    return app


app = create_app()
