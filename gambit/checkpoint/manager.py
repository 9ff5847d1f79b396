from __future__ import annotations

import gzip
import json
import logging
import os
import tempfile
import time
import zipfile
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple, Union

from gambit.errors import CheckpointError
from gambit.selfplay.policy import Policy

from .compat import (
    METADATA_ENTRY,
    MODEL_ENTRY,
    BackendType,
    CheckpointFormat,
    ResolutionFormatMismatch,
    ResolutionNotFound,
    resolve_checkpoint_path,
)

logger = logging.getLogger(__name__)


@dataclass
class CheckpointConfig:
    base_directory: str = "checkpoints"
    max_versions: int = 20
    backend: BackendType = BackendType.TORCH
    compress_json: bool = False


@dataclass
class CheckpointMetadata:
    version: int
    cycle: int
    performance: float = 0.0
    description: str = ""
    is_best: bool = False
    created_at: float = 0.0
    backend: str = BackendType.TORCH.value
    format: str = CheckpointFormat.ZIP.name
    seed_configuration: Optional[Dict[str, Any]] = None
    training_configuration: Optional[Dict[str, Any]] = None
    additional_info: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "version": self.version,
            "cycle": self.cycle,
            "performance": self.performance,
            "description": self.description,
            "is_best": self.is_best,
            "created_at": self.created_at,
            "backend": self.backend,
            "format": self.format,
            "seed_configuration": self.seed_configuration,
            "training_configuration": self.training_configuration,
            "additional_info": dict(self.additional_info),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "CheckpointMetadata":
        try:
            return cls(
                version=int(data["version"]),
                cycle=int(data["cycle"]),
                performance=float(data.get("performance", 0.0)),
                description=str(data.get("description", "")),
                is_best=bool(data.get("is_best", False)),
                created_at=float(data.get("created_at", 0.0)),
                backend=str(data.get("backend", BackendType.TORCH.value)),
                format=str(data.get("format", CheckpointFormat.ZIP.name)),
                seed_configuration=data.get("seed_configuration"),
                training_configuration=data.get("training_configuration"),
                additional_info=dict(data.get("additional_info") or {}),
            )
        except (KeyError, TypeError, ValueError) as exc:
            raise CheckpointError(f"Invalid checkpoint metadata: {exc}") from exc


@dataclass
class CheckpointInfo:
    version: int
    cycle: int
    path: Path
    metadata: CheckpointMetadata
    file_size: int

    @property
    def performance(self) -> float:
        return self.metadata.performance


@dataclass
class LoadResult:
    success: bool
    version: Optional[int] = None
    load_duration: float = 0.0
    metadata: Optional[CheckpointMetadata] = None
    error: Optional[str] = None


@dataclass
class CheckpointComparison:
    version1: int
    version2: int
    performance_diff: float
    cycle_diff: int
    better_version: int
    recommendation: str


@dataclass
class CheckpointRetention:
    keep_best: bool = True
    keep_last_n: int = 5
    keep_every_n: Optional[int] = None


@dataclass
class CheckpointSummary:
    total_checkpoints: int
    best_version: Optional[int]
    best_performance: Optional[float]
    average_performance: float
    total_size: int
    latest_version: Optional[int]


def _rank(info: CheckpointInfo) -> Tuple[bool, float, int]:
    return info.metadata.is_best, info.performance, info.version


class CheckpointManager:
    """Versioned, append-only checkpoint store.

    Versions increase monotonically per manager; an existing directory is
    scanned on start-up so new versions never reuse a file name.
    """

    def __init__(self, config: Optional[CheckpointConfig] = None) -> None:
        self.config = config or CheckpointConfig()
        self.config.backend = BackendType(self.config.backend)
        self.base_directory = Path(self.config.base_directory)
        self.base_directory.mkdir(parents=True, exist_ok=True)
        self._checkpoints: Dict[int, CheckpointInfo] = {}
        self._best_version: Optional[int] = None
        self._next_version = 1
        self._scan_existing()

    @property
    def format(self) -> CheckpointFormat:
        if self.config.backend is BackendType.TORCH:
            return CheckpointFormat.ZIP
        return CheckpointFormat.JSON_GZ if self.config.compress_json else CheckpointFormat.JSON

    # ------------------------------------------------------------------
    def create_checkpoint(
        self,
        policy: Policy,
        cycle: int,
        *,
        performance: float = 0.0,
        description: str = "",
        is_best: bool = False,
        seed_configuration: Optional[Dict[str, Any]] = None,
        training_configuration: Optional[Dict[str, Any]] = None,
        additional_info: Optional[Dict[str, Any]] = None,
    ) -> CheckpointInfo:
        version = self._next_version
        self._next_version += 1
        fmt = self.format
        metadata = CheckpointMetadata(
            version=version,
            cycle=cycle,
            performance=float(performance),
            description=description,
            is_best=is_best,
            created_at=time.time(),
            backend=fmt.backend.value,
            format=fmt.name,
            seed_configuration=seed_configuration,
            training_configuration=training_configuration,
            additional_info=dict(additional_info or {}),
        )
        stamp = int(metadata.created_at * 1000)
        path = self.base_directory / f"checkpoint_v{version}_c{cycle}_{stamp}{fmt.extension}"

        model_state = policy.state_dict()
        self._write(path, fmt, model_state, metadata.to_dict())

        info = CheckpointInfo(
            version=version,
            cycle=cycle,
            path=path,
            metadata=metadata,
            file_size=path.stat().st_size,
        )
        self._checkpoints[version] = info
        self._update_best(info)
        logger.info(
            "Created checkpoint v%d (cycle %d, performance %.4f) at %s",
            version,
            cycle,
            metadata.performance,
            path,
        )
        self._enforce_max_versions()
        return info

    def load_checkpoint(self, checkpoint: Union[CheckpointInfo, str, Path], policy: Policy) -> LoadResult:
        started = time.perf_counter()
        path = checkpoint.path if isinstance(checkpoint, CheckpointInfo) else Path(checkpoint)
        resolution = resolve_checkpoint_path(path, self.config.backend)
        if isinstance(resolution, ResolutionNotFound):
            return LoadResult(success=False, error=resolution.message)
        if isinstance(resolution, ResolutionFormatMismatch):
            logger.warning("Refusing to load %s: %s", path, resolution.suggestion)
            return LoadResult(success=False, error=resolution.suggestion)

        try:
            model_state, raw_metadata = self._read(resolution.path, resolution.format)
            metadata = CheckpointMetadata.from_dict(raw_metadata)
            if not isinstance(model_state, dict):
                raise CheckpointError("Model state must be a JSON object.")
            policy.load_state(model_state)
        except Exception as exc:
            logger.error("Failed to load checkpoint %s: %s", resolution.path, exc)
            return LoadResult(
                success=False,
                load_duration=time.perf_counter() - started,
                error=str(exc),
            )

        duration = time.perf_counter() - started
        logger.info("Loaded checkpoint v%d from %s in %.3fs", metadata.version, resolution.path, duration)
        return LoadResult(
            success=True,
            version=metadata.version,
            load_duration=duration,
            metadata=metadata,
        )

    def read_metadata(self, path: Union[str, Path]) -> CheckpointMetadata:
        path = Path(path)
        fmt = CheckpointFormat.from_extension(path)
        if fmt is None:
            raise CheckpointError(f"Unrecognised checkpoint container: {path}")
        _, raw = self._read(path, fmt)
        return CheckpointMetadata.from_dict(raw)

    # ------------------------------------------------------------------
    def get_checkpoint(self, version: int) -> Optional[CheckpointInfo]:
        return self._checkpoints.get(version)

    def list_checkpoints(self) -> List[CheckpointInfo]:
        return [self._checkpoints[v] for v in sorted(self._checkpoints)]

    def get_best_checkpoint(self) -> Optional[CheckpointInfo]:
        if self._best_version is None:
            return None
        return self._checkpoints.get(self._best_version)

    def compare_checkpoints(self, version1: int, version2: int) -> CheckpointComparison:
        first = self._checkpoints.get(version1)
        second = self._checkpoints.get(version2)
        if first is None or second is None:
            missing = version1 if first is None else version2
            raise CheckpointError(f"Checkpoint v{missing} not found.")
        diff = second.performance - first.performance
        better = version2 if diff > 0 else version1
        if abs(diff) < 0.01:
            recommendation = "Performance is similar; prefer the more recent checkpoint."
        elif diff > 0:
            recommendation = f"v{version2} improves on v{version1} by {diff:.4f}."
        else:
            recommendation = f"v{version2} regressed by {-diff:.4f}; consider keeping v{version1}."
        return CheckpointComparison(
            version1=version1,
            version2=version2,
            performance_diff=diff,
            cycle_diff=second.cycle - first.cycle,
            better_version=better,
            recommendation=recommendation,
        )

    def delete_checkpoint(self, version: int) -> bool:
        info = self._checkpoints.pop(version, None)
        if info is None:
            return False
        try:
            info.path.unlink()
        except FileNotFoundError:
            logger.warning("Checkpoint file %s was already removed", info.path)
        if self._best_version == version:
            self._best_version = None
            for remaining in self._checkpoints.values():
                self._update_best(remaining)
        logger.info("Deleted checkpoint v%d", version)
        return True

    def cleanup_by_retention(self, retention: CheckpointRetention) -> List[int]:
        versions = sorted(self._checkpoints)
        keep = set(versions[-retention.keep_last_n:]) if retention.keep_last_n > 0 else set()
        if retention.keep_best and self._best_version is not None:
            keep.add(self._best_version)
        if retention.keep_every_n:
            keep.update(v for v in versions if v % retention.keep_every_n == 0)
        deleted = [v for v in versions if v not in keep]
        for version in deleted:
            self.delete_checkpoint(version)
        return deleted

    def get_summary(self) -> CheckpointSummary:
        infos = self.list_checkpoints()
        best = self.get_best_checkpoint()
        return CheckpointSummary(
            total_checkpoints=len(infos),
            best_version=best.version if best else None,
            best_performance=best.performance if best else None,
            average_performance=(sum(i.performance for i in infos) / len(infos)) if infos else 0.0,
            total_size=sum(i.file_size for i in infos),
            latest_version=infos[-1].version if infos else None,
        )

    # ------------------------------------------------------------------
    def _update_best(self, info: CheckpointInfo) -> None:
        best = self.get_best_checkpoint()
        if best is None or _rank(info) > _rank(best):
            self._best_version = info.version

    def _enforce_max_versions(self) -> None:
        excess = len(self._checkpoints) - self.config.max_versions
        if self.config.max_versions <= 0 or excess <= 0:
            return
        candidates = sorted(
            (info for info in self._checkpoints.values() if info.version != self._best_version),
            key=lambda info: (info.performance, info.version),
        )
        for info in candidates[:excess]:
            self.delete_checkpoint(info.version)

    def _scan_existing(self) -> None:
        for path in sorted(self.base_directory.glob("checkpoint_v*")):
            try:
                metadata = self.read_metadata(path)
            except (CheckpointError, OSError, ValueError, zipfile.BadZipFile) as exc:
                logger.warning("Skipping unreadable checkpoint %s: %s", path, exc)
                continue
            info = CheckpointInfo(
                version=metadata.version,
                cycle=metadata.cycle,
                path=path,
                metadata=metadata,
                file_size=path.stat().st_size,
            )
            self._checkpoints[metadata.version] = info
            self._update_best(info)
            self._next_version = max(self._next_version, metadata.version + 1)
        if self._checkpoints:
            logger.info("Found %d existing checkpoints in %s", len(self._checkpoints), self.base_directory)

    def _write(
        self,
        path: Path,
        fmt: CheckpointFormat,
        model_state: Dict[str, Any],
        metadata: Dict[str, Any],
    ) -> None:
        if path.exists():
            raise CheckpointError(f"Checkpoint {path} already exists.")
        temp_fd, temp_path = tempfile.mkstemp(suffix=fmt.extension, dir=self.base_directory)
        try:
            with os.fdopen(temp_fd, "wb") as fh:
                if fmt is CheckpointFormat.ZIP:
                    with zipfile.ZipFile(fh, "w", compression=zipfile.ZIP_DEFLATED) as archive:
                        archive.writestr(MODEL_ENTRY, json.dumps(model_state))
                        archive.writestr(METADATA_ENTRY, json.dumps(metadata, indent=2))
                else:
                    payload = json.dumps({"model": model_state, "metadata": metadata}).encode("utf-8")
                    fh.write(gzip.compress(payload) if fmt is CheckpointFormat.JSON_GZ else payload)
            os.replace(temp_path, path)
        except Exception:
            if os.path.exists(temp_path):
                os.unlink(temp_path)
            raise

    @staticmethod
    def _read(path: Path, fmt: CheckpointFormat) -> Tuple[Any, Dict[str, Any]]:
        if fmt is CheckpointFormat.ZIP:
            with zipfile.ZipFile(path) as archive:
                names = set(archive.namelist())
                if MODEL_ENTRY not in names or METADATA_ENTRY not in names:
                    raise CheckpointError(f"{path} is missing {MODEL_ENTRY} or {METADATA_ENTRY}.")
                model_state = json.loads(archive.read(MODEL_ENTRY))
                metadata = json.loads(archive.read(METADATA_ENTRY))
            return model_state, metadata
        raw = path.read_bytes()
        if fmt is CheckpointFormat.JSON_GZ:
            raw = gzip.decompress(raw)
        document = json.loads(raw)
        if not isinstance(document, dict) or "model" not in document or "metadata" not in document:
            raise CheckpointError(f"{path} is not a checkpoint document.")
        return document["model"], document["metadata"]
