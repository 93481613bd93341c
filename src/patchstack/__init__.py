"""Apply, build and regenerate a maintained patch stack on an upstream checkout."""

from .config import PatchstackConfig, load_config
from .errors import (
    BuildFailedError,
    ConfigError,
    ConflictError,
    DirtyWorkingTreeError,
    EmptyResultError,
    GenerationInconsistency,
    ManifestError,
    OverlayIOError,
    PatchstackError,
    ResolutionError,
    StructuralPatchError,
)
from .models import BuildOutcome, BuildReport, PatchSet, TargetIdentity
from .orchestrator import BuildOrchestrator

__version__ = "0.1.0"

__all__ = [
    "BuildFailedError",
    "BuildOrchestrator",
    "BuildOutcome",
    "BuildReport",
    "ConfigError",
    "ConflictError",
    "DirtyWorkingTreeError",
    "EmptyResultError",
    "GenerationInconsistency",
    "ManifestError",
    "OverlayIOError",
    "PatchSet",
    "PatchstackConfig",
    "PatchstackError",
    "ResolutionError",
    "StructuralPatchError",
    "TargetIdentity",
    "load_config",
]
