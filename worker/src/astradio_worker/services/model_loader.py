"""Model registry loading with artifact integrity checks and single-step rollback."""

from __future__ import annotations

import hashlib
import json
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, List, Optional

from loguru import logger
from pydantic import BaseModel, Field, ValidationError

from .exceptions import ModelIntegrityError

INTEGRITY_FILENAME = "integrity.json"


class ModelArtifacts(BaseModel):
    path: str
    integrity_hash: Optional[str] = None


class RegistryEntry(BaseModel):
    id: str
    version: str = ""
    status: str = "active"
    artifacts: ModelArtifacts
    rollback_target: Optional[str] = None


class RegistryMetadata(BaseModel):
    active_model: str


class ModelRegistry(BaseModel):
    models: List[RegistryEntry] = Field(default_factory=list)
    registry_metadata: RegistryMetadata

    def find(self, model_id: str) -> Optional[RegistryEntry]:
        for entry in self.models:
            if entry.id == model_id:
                return entry
        return None


class IntegrityRecord(BaseModel):
    sha256: str
    size: Optional[int] = None


class IntegrityMap(BaseModel):
    model: str = ""
    version: str = ""
    files: Dict[str, IntegrityRecord] = Field(default_factory=dict)


@dataclass(frozen=True)
class LoadedModel:
    model_id: str
    version: str
    path: Path
    rollback_taken: bool


def file_digest(path: Path) -> str:
    digest = hashlib.sha256()
    with path.open("rb") as handle:
        for chunk in iter(lambda: handle.read(1 << 16), b""):
            digest.update(chunk)
    return f"sha256:{digest.hexdigest()}"


class ModelLoader:
    """Validates the active model against its integrity map, rolling back once on failure."""

    def __init__(self, registry_path: Path) -> None:
        self._registry_path = registry_path
        self._registry = self._load_registry(registry_path)

    @property
    def registry(self) -> ModelRegistry:
        return self._registry

    def load(self, model_id: Optional[str] = None) -> LoadedModel:
        requested = model_id or self._registry.registry_metadata.active_model
        entry = self._registry.find(requested)
        if entry is None:
            raise ModelIntegrityError(f"Model {requested} not found in registry")

        problems = self.validate(entry)
        if not problems:
            logger.info("Model {} integrity validated", entry.id)
            return self._loaded(entry, rollback_taken=False)

        logger.warning(
            "Model {} failed integrity check ({}); rolling back to {}",
            entry.id,
            "; ".join(problems),
            entry.rollback_target,
        )
        if not entry.rollback_target:
            raise ModelIntegrityError("No rollback target available")
        fallback = self._registry.find(entry.rollback_target)
        if fallback is None:
            raise ModelIntegrityError(
                f"Rollback target {entry.rollback_target} not found in registry"
            )
        fallback_problems = self.validate(fallback)
        if fallback_problems:
            raise ModelIntegrityError(
                f"Rollback target {fallback.id} also failed integrity check: "
                + "; ".join(fallback_problems)
            )
        logger.info("Rollback successful to {}", fallback.id)
        return self._loaded(fallback, rollback_taken=True)

    def validate(self, entry: RegistryEntry) -> List[str]:
        root = self._artifact_root(entry)
        integrity_path = root / INTEGRITY_FILENAME
        if not integrity_path.exists():
            return [f"integrity map missing at {integrity_path}"]
        try:
            integrity = IntegrityMap.model_validate_json(integrity_path.read_text(encoding="utf-8"))
        except ValidationError as exc:
            return [f"integrity map invalid: {exc.error_count()} errors"]

        problems: List[str] = []
        for filename, expected in integrity.files.items():
            target = root / filename
            if not target.exists():
                problems.append(f"{filename} missing")
                continue
            if expected.size is not None and target.stat().st_size != expected.size:
                problems.append(f"{filename} size mismatch")
                continue
            actual = file_digest(target)
            if actual != expected.sha256:
                problems.append(f"{filename} hash mismatch")
        return problems

    def _artifact_root(self, entry: RegistryEntry) -> Path:
        root = Path(entry.artifacts.path)
        if not root.is_absolute():
            root = self._registry_path.parent / root
        return root

    def _loaded(self, entry: RegistryEntry, rollback_taken: bool) -> LoadedModel:
        return LoadedModel(
            model_id=entry.id,
            version=entry.version or entry.id,
            path=self._artifact_root(entry),
            rollback_taken=rollback_taken,
        )

    @staticmethod
    def _load_registry(path: Path) -> ModelRegistry:
        try:
            raw = json.loads(path.read_text(encoding="utf-8"))
        except FileNotFoundError as exc:
            raise ModelIntegrityError(f"model registry missing at {path}") from exc
        except json.JSONDecodeError as exc:
            raise ModelIntegrityError(f"model registry at {path} is not valid JSON") from exc
        try:
            return ModelRegistry.model_validate(raw)
        except ValidationError as exc:
            raise ModelIntegrityError(f"model registry at {path} is malformed") from exc
