"""Capture and restore snapshots of the working tree relative to ``HEAD``.

Patch application falls back to strategies that write into the tree even when
they fail (three-way conflict markers, partial ``--reject`` application).  A
snapshot taken before such an attempt lets the applier put the tree back
exactly as it was, including the effect of patches applied earlier in the
same run.
"""

from __future__ import annotations

import logging
import os
import subprocess
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from .vcs import PAYLOAD_ERRORS, GitError, GitRepository

LOGGER = logging.getLogger(__name__)

__all__ = [
    "TreeSnapshot",
    "UntrackedPayload",
    "capture_snapshot",
    "restore_snapshot",
]


@dataclass(frozen=True, slots=True)
class UntrackedPayload:
    """Content of an untracked file at snapshot time."""

    path: str
    data: bytes
    mode: int | None = None


@dataclass(slots=True)
class TreeSnapshot:
    """Working tree state expressed as ``HEAD`` + diff + untracked files."""

    head: str | None
    diff: str = ""
    untracked: list[UntrackedPayload] = field(default_factory=list)
    captured_at: str = field(
        default_factory=lambda: datetime.now(timezone.utc).isoformat()
    )

    def to_dict(self) -> dict[str, Any]:
        """Return a summary suitable for telemetry (file contents omitted)."""
        return {
            "captured_at": self.captured_at,
            "head": self.head,
            "diff_bytes": len(self.diff.encode("utf-8", PAYLOAD_ERRORS)),
            "untracked": [entry.path for entry in self.untracked],
        }


def capture_snapshot(repo: GitRepository) -> TreeSnapshot:
    """Record the current tree so it can be restored byte for byte."""

    snapshot = TreeSnapshot(head=repo.head())
    if snapshot.head:
        snapshot.diff = repo.diff_binary()

    for relative in repo.untracked_files():
        absolute = repo.root / relative
        if not absolute.is_file() or absolute.is_symlink():
            continue
        try:
            data = absolute.read_bytes()
        except OSError as error:
            raise GitError(f"Unable to snapshot untracked file {relative}: {error}") from error
        snapshot.untracked.append(
            UntrackedPayload(path=relative.as_posix(), data=data, mode=_file_mode(absolute))
        )
    return snapshot


def restore_snapshot(repo: GitRepository, snapshot: TreeSnapshot) -> None:
    """Reset the tree to ``snapshot``.

    Tracked files are reset to the recorded commit and the recorded diff is
    re-applied; untracked files that appeared since the snapshot are removed
    and the recorded untracked files are rewritten.
    """

    if snapshot.head:
        repo.reset_hard(snapshot.head)

    recorded = {entry.path for entry in snapshot.untracked}
    extra = sorted(
        (path for path in repo.untracked_files() if path.as_posix() not in recorded),
        key=lambda item: len(item.parts),
        reverse=True,
    )
    for relative in extra:
        target = repo.root / relative
        if target.exists() or target.is_symlink():
            target.unlink(missing_ok=True)
        _prune_empty_parents(repo.root, target.parent)

    if snapshot.diff.strip():
        process = subprocess.run(
            ["git", "apply", "--binary", "--whitespace=nowarn"],
            cwd=repo.root,
            input=snapshot.diff.encode("utf-8", PAYLOAD_ERRORS),
            capture_output=True,
            check=False,
        )
        if process.returncode != 0:
            message = process.stderr.decode("utf-8", errors="replace").strip() or "unable to re-apply snapshot diff"
            raise GitError(f"Failed to restore working tree snapshot: {message}")

    for entry in snapshot.untracked:
        target = repo.root / entry.path
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_bytes(entry.data)
        if entry.mode is not None:
            os.chmod(target, entry.mode)

    LOGGER.debug("Restored working tree snapshot taken at %s", snapshot.captured_at)


def _prune_empty_parents(root: Path, directory: Path) -> None:
    current = directory
    while current != root and root in current.parents:
        try:
            current.rmdir()
        except OSError:
            return
        current = current.parent


def _file_mode(path: Path) -> int | None:
    try:
        return path.stat().st_mode & 0o777
    except OSError:
        return None
