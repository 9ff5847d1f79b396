"""Versioned checkpoints and backend compatibility checks."""

from .compat import (
    BackendType,
    CheckpointFormat,
    CheckpointResolution,
    CompatibilityCompatible,
    CompatibilityIncompatible,
    CompatibilityInvalid,
    ResolutionFormatMismatch,
    ResolutionNotFound,
    ResolutionSuccess,
    detect_format,
    resolve_checkpoint_path,
    validate_checkpoint_compatibility,
)
from .manager import (
    CheckpointComparison,
    CheckpointConfig,
    CheckpointInfo,
    CheckpointManager,
    CheckpointMetadata,
    CheckpointRetention,
    CheckpointSummary,
    LoadResult,
)

__all__ = [
    "BackendType",
    "CheckpointFormat",
    "CheckpointResolution",
    "CompatibilityCompatible",
    "CompatibilityIncompatible",
    "CompatibilityInvalid",
    "ResolutionFormatMismatch",
    "ResolutionNotFound",
    "ResolutionSuccess",
    "detect_format",
    "resolve_checkpoint_path",
    "validate_checkpoint_compatibility",
    "CheckpointComparison",
    "CheckpointConfig",
    "CheckpointInfo",
    "CheckpointManager",
    "CheckpointMetadata",
    "CheckpointRetention",
    "CheckpointSummary",
    "LoadResult",
]
