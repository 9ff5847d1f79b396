from __future__ import annotations

import json
import zipfile
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import List, Optional, Union

PathLike = Union[str, Path]

MODEL_ENTRY = "model.json"
METADATA_ENTRY = "metadata.json"
_GZIP_MAGIC = b"\x1f\x8b"


class BackendType(str, Enum):
    TORCH = "torch"
    MANUAL = "manual"


class CheckpointFormat(Enum):
    """Container formats; each maps to exactly one backend."""

    ZIP = (".zip", BackendType.TORCH)
    JSON_GZ = (".json.gz", BackendType.MANUAL)
    JSON = (".json", BackendType.MANUAL)

    def __init__(self, extension: str, backend: BackendType) -> None:
        self.extension = extension
        self.backend = backend

    @classmethod
    def for_backend(cls, backend: BackendType) -> List["CheckpointFormat"]:
        return [fmt for fmt in cls if fmt.backend is backend]

    @classmethod
    def from_extension(cls, path: PathLike) -> Optional["CheckpointFormat"]:
        name = str(path).lower()
        # JSON_GZ is declared before JSON so the longer suffix wins.
        for fmt in cls:
            if name.endswith(fmt.extension):
                return fmt
        return None


def sniff_format(path: PathLike) -> Optional[CheckpointFormat]:
    path = Path(path)
    if not path.is_file():
        return None
    if zipfile.is_zipfile(path):
        return CheckpointFormat.ZIP
    with open(path, "rb") as fh:
        head = fh.read(64)
    if head.startswith(_GZIP_MAGIC):
        return CheckpointFormat.JSON_GZ
    if head.lstrip()[:1] in (b"{", b"["):
        return CheckpointFormat.JSON
    return None


def detect_format(path: PathLike) -> Optional[CheckpointFormat]:
    """Container format of ``path``; file contents win over the extension."""
    return sniff_format(path) or CheckpointFormat.from_extension(path)


@dataclass
class ResolutionSuccess:
    path: Path
    backend: BackendType
    format: CheckpointFormat


@dataclass
class ResolutionNotFound:
    base_path: str
    message: str


@dataclass
class ResolutionFormatMismatch:
    path: Path
    detected_backend: BackendType
    requested_backend: BackendType
    detected_format: CheckpointFormat
    suggestion: str


CheckpointResolution = Union[ResolutionSuccess, ResolutionNotFound, ResolutionFormatMismatch]


def _mismatch(path: Path, fmt: CheckpointFormat, requested: BackendType) -> ResolutionFormatMismatch:
    preferred = CheckpointFormat.for_backend(requested)[0]
    return ResolutionFormatMismatch(
        path=path,
        detected_backend=fmt.backend,
        requested_backend=requested,
        detected_format=fmt,
        suggestion=(
            f"Checkpoint {path.name} is a {fmt.name} container. Use backend "
            f"'{fmt.backend.value}' to load this checkpoint, or re-export it as "
            f"{preferred.extension} for backend '{requested.value}'."
        ),
    )


def _resolve_file(path: Path, requested: BackendType) -> CheckpointResolution:
    fmt = detect_format(path)
    if fmt is None:
        return ResolutionNotFound(str(path), f"Unrecognised checkpoint container: {path}")
    if fmt.backend is requested:
        return ResolutionSuccess(path=path, backend=fmt.backend, format=fmt)
    return _mismatch(path, fmt, requested)


def resolve_checkpoint_path(path: PathLike, requested_backend: BackendType) -> CheckpointResolution:
    requested_backend = BackendType(requested_backend)
    path = Path(path)
    if path.is_file():
        return _resolve_file(path, requested_backend)

    preferred = CheckpointFormat.for_backend(requested_backend)
    others = [fmt for fmt in CheckpointFormat if fmt not in preferred]
    tried = []
    for fmt in preferred + others:
        candidate = Path(str(path) + fmt.extension)
        tried.append(candidate.name)
        if candidate.is_file():
            return _resolve_file(candidate, requested_backend)
    return ResolutionNotFound(
        str(path),
        f"No checkpoint found at {path} (tried: {', '.join(tried)})",
    )


@dataclass
class CompatibilityCompatible:
    path: Path
    format: CheckpointFormat


@dataclass
class CompatibilityIncompatible:
    path: Path
    reason: str
    suggestion: str


@dataclass
class CompatibilityInvalid:
    path: str
    reason: str


CompatibilityResult = Union[CompatibilityCompatible, CompatibilityIncompatible, CompatibilityInvalid]


def validate_checkpoint_compatibility(path: PathLike, backend: BackendType) -> CompatibilityResult:
    """Resolve ``path`` and check the container holds a readable model and metadata."""
    resolution = resolve_checkpoint_path(path, backend)
    if isinstance(resolution, ResolutionNotFound):
        return CompatibilityInvalid(resolution.base_path, resolution.message)
    if isinstance(resolution, ResolutionFormatMismatch):
        return CompatibilityIncompatible(
            resolution.path,
            reason=(
                f"{resolution.detected_format.name} checkpoints belong to backend "
                f"'{resolution.detected_backend.value}'"
            ),
            suggestion=resolution.suggestion,
        )
    if resolution.format is CheckpointFormat.ZIP:
        try:
            with zipfile.ZipFile(resolution.path) as archive:
                names = set(archive.namelist())
                missing = {MODEL_ENTRY, METADATA_ENTRY} - names
                if missing:
                    return CompatibilityInvalid(
                        str(resolution.path), f"Missing entries: {', '.join(sorted(missing))}"
                    )
                json.loads(archive.read(METADATA_ENTRY))
        except (zipfile.BadZipFile, json.JSONDecodeError, UnicodeDecodeError) as exc:
            return CompatibilityInvalid(str(resolution.path), f"Corrupt checkpoint: {exc}")
    return CompatibilityCompatible(resolution.path, resolution.format)
