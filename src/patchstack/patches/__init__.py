"""Patch engine: resolve, validate, apply and regenerate unified diffs."""

from .applier import PatchApplier
from .generator import PatchGenerator
from .resolver import FileSystemPatchStore, PatchResolver, PatchStore
from .validator import PatchSummary, validate, validate_text

__all__ = [
    "FileSystemPatchStore",
    "PatchApplier",
    "PatchGenerator",
    "PatchResolver",
    "PatchStore",
    "PatchSummary",
    "validate",
    "validate_text",
]
