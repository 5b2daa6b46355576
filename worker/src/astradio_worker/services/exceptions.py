"""Shared service-layer exceptions."""

from __future__ import annotations

from typing import Any, Dict, List, Optional


class ComposeFailure(Exception):
    """Expected failure during a compose request."""

    status_code = 500
    code = "VNEXT_COMPOSE_ERROR"


class ComposeValidationError(ComposeFailure):
    """Request is missing or carries invalid mode-specific parameters."""

    status_code = 400
    code = "INVALID_INPUT"

    def __init__(self, message: str, details: Optional[List[Dict[str, str]]] = None):
        super().__init__(message)
        self.details = details or []


class QualityExhaustedError(ComposeFailure):
    """Every jittered candidate scored below the rule-quality floor."""

    status_code = 422
    code = "QUALITY_EXHAUSTED"

    def __init__(self, message: str, diagnostics: List[Dict[str, Any]]):
        super().__init__(message)
        self.diagnostics = diagnostics


class ModelIntegrityError(ComposeFailure):
    """Model artifacts failed integrity validation, rollback included."""

    code = "MODEL_INTEGRITY"


class ComposeAPIError(ComposeFailure):
    """Unexpected internal error wrapped by the orchestrator."""
