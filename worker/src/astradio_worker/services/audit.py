"""JSONL audit trail written through a dedicated loguru sink."""

from __future__ import annotations

import json
from datetime import UTC, datetime
from pathlib import Path
from typing import Any, Dict, Optional

from loguru import logger

AUDIT_FILENAME = "vnext-audit.jsonl"
# Below the console handler's DEBUG threshold.
AUDIT_LEVEL = "TRACE"


def _is_audit_record(record: Dict[str, Any]) -> bool:
    return bool(record["extra"].get("audit"))


def configure_audit_log(log_dir: Path) -> Optional[int]:
    """Attach the audit sink; returns the loguru handler id, or None when unavailable."""

    try:
        log_dir.mkdir(parents=True, exist_ok=True)
        return logger.add(
            log_dir / AUDIT_FILENAME,
            format="{message}",
            filter=_is_audit_record,
            level=AUDIT_LEVEL,
            rotation="10 MB",
            retention=3,
            enqueue=False,
        )
    except OSError as exc:
        logger.warning("Audit log disabled; cannot prepare {}: {}", log_dir, exc)
        return None


def remove_audit_log(handler_id: Optional[int]) -> None:
    if handler_id is None:
        return
    try:
        logger.remove(handler_id)
    except ValueError:
        logger.debug("Audit handler {} already removed", handler_id)


def write_audit(entry: Dict[str, Any]) -> None:
    try:
        payload = {"ts": datetime.now(tz=UTC).isoformat(), **entry}
        logger.bind(audit=True).log(AUDIT_LEVEL, json.dumps(payload, sort_keys=True, default=str))
    except Exception:  # noqa: BLE001
        logger.exception("Failed to write audit entry")
