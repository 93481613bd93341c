"""Working-tree integrations used by the patch engine and orchestrator."""

from .builder import BuildResult, Builder
from .hygiene import HygieneResult, find_patch_leftovers, remove_patch_leftovers
from .snapshot import TreeSnapshot, capture_snapshot, restore_snapshot
from .vcs import GitError, GitRepository

__all__ = [
    "BuildResult",
    "Builder",
    "GitError",
    "GitRepository",
    "HygieneResult",
    "TreeSnapshot",
    "capture_snapshot",
    "find_patch_leftovers",
    "remove_patch_leftovers",
    "restore_snapshot",
]
