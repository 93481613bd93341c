"""Apply an ordered patch set to a working tree.

Each patch goes through up to three strategies:

1. ``git apply --check`` then ``git apply``;
2. ``git apply --check --reverse``: when undoing the patch applies cleanly it
   is already in the tree and is skipped;
3. ``git apply --3way``, which merges against the blobs recorded in the
   patch's ``index`` lines and tolerates nearby upstream edits.

When all three fail, a ``git apply --reject`` run collects the hunks that
cannot be placed, the tree is restored to its pre-attempt snapshot and a
:class:`ConflictError` carrying the :class:`ConflictReport` is raised.
Patches are applied strictly in order; later patches may build on earlier
ones.
"""

from __future__ import annotations

import logging
import tempfile
from contextlib import contextmanager
from pathlib import Path
from typing import Iterable, Iterator

from ..errors import ConflictError
from ..models import ApplyResult, ApplyStrategy, ConflictReport, PatchFile, PatchSet, RejectedHunk
from ..telemetry import emit_event
from ..tools.hygiene import find_patch_leftovers
from ..tools.snapshot import TreeSnapshot, capture_snapshot, restore_snapshot
from ..tools.vcs import PAYLOAD_ERRORS, GitRepository
from .validator import validate

LOGGER = logging.getLogger(__name__)

_REJECT_SUFFIX = ".rej"
_NOISE_PREFIXES = ("Checking patch", "Applying patch", "Applied patch", "Falling back", "Hunk #")


@contextmanager
def materialise(patch: PatchFile) -> Iterator[Path]:
    """Write the patch text to a temporary file for ``git apply``."""
    with tempfile.NamedTemporaryFile(
        "w",
        encoding="utf-8",
        errors=PAYLOAD_ERRORS,
        suffix=".patch",
        prefix="patchstack-",
        delete=False,
        newline="",
    ) as handle:
        handle.write(patch.text)
        handle.flush()
        temp_path = Path(handle.name)
    try:
        yield temp_path
    finally:
        temp_path.unlink(missing_ok=True)


def _failure_messages(*outputs: str) -> tuple[str, ...]:
    """Keep the informative lines of ``git apply`` stderr, without duplicates."""
    messages: dict[str, None] = {}
    for output in outputs:
        for raw_line in (output or "").splitlines():
            line = raw_line.strip()
            if not line or line.startswith(_NOISE_PREFIXES):
                continue
            messages.setdefault(line, None)
    return tuple(messages)


def parse_reject_file(text: str, *, fallback_file: str) -> list[RejectedHunk]:
    """Split the content of a ``*.rej`` file into rejected hunks."""

    file = fallback_file
    hunks: list[RejectedHunk] = []
    header: str | None = None
    body: list[str] = []

    def flush() -> None:
        if header is not None:
            hunks.append(RejectedHunk(file=file, header=header, lines=tuple(body)))

    for line in text.splitlines():
        if line.startswith("diff ") and header is None:
            parts = line.split("\t", 1)[0].split()
            if len(parts) >= 3:
                candidate = parts[-1]
                file = candidate[2:] if candidate.startswith(("a/", "b/")) else candidate
            continue
        if line.startswith("@@"):
            flush()
            header = line
            body = []
            continue
        if header is not None:
            body.append(line)
    flush()
    return hunks


class PatchApplier:
    """Apply patch sets with already-applied detection and three-way fallback."""

    def apply_all(self, repo: GitRepository, patch_set: PatchSet | Iterable[PatchFile]) -> ApplyResult:
        """Apply every patch in order and report the strategy used for each.

        All patches are validated before the tree is touched, so a corrupt
        patch anywhere in the set aborts without side effects.
        """

        patches = list(patch_set)
        for patch in patches:
            validate(patch)

        result = ApplyResult()
        for patch in patches:
            strategy = self.apply_one(repo, patch)
            result.strategies.append((patch, strategy))

        LOGGER.info(
            "Applied %d patch(es), %d already present",
            result.applied_count,
            len(result.skipped),
        )
        return result

    def apply_one(self, repo: GitRepository, patch: PatchFile) -> ApplyStrategy:
        LOGGER.info("Applying patch: %s", patch.name)
        with materialise(patch) as patch_path:
            check = repo.apply(patch_path, check_only=True)
            if check.returncode == 0:
                applied = repo.apply(patch_path)
                if applied.returncode == 0:
                    LOGGER.info("  Patch applied successfully")
                    emit_event("patch_applied", patch=patch.path, strategy="direct")
                    return "direct"

            reverse = repo.apply(patch_path, check_only=True, reverse=True)
            if reverse.returncode == 0:
                LOGGER.info("  Patch is already applied (verified by reverse check)")
                emit_event("patch_already_applied", patch=patch.path)
                return "already-applied"

            LOGGER.warning("  Direct apply failed, trying 3-way merge...")
            snapshot = capture_snapshot(repo)
            # --3way implies --index, which needs the index to match the tree.
            repo.git("add", "--all")
            merged = repo.apply(patch_path, three_way=True)
            if merged.returncode == 0:
                repo.unstage_all()
                LOGGER.info("  Patch applied with 3-way merge")
                emit_event("patch_applied_3way", patch=patch.path)
                return "three-way"

            restore_snapshot(repo, snapshot)
            report = self._diagnose(repo, patch, patch_path, snapshot, check.stderr, merged.stderr)

        LOGGER.error("%s", report.format())
        emit_event("patch_conflict", report=report.to_dict())
        raise ConflictError(report)

    def _diagnose(
        self,
        repo: GitRepository,
        patch: PatchFile,
        patch_path: Path,
        snapshot: TreeSnapshot,
        *earlier_output: str,
    ) -> ConflictReport:
        """Run a partial ``--reject`` application, harvest the rejects, then roll back."""

        baseline = {entry.path for entry in snapshot.untracked}
        rejected = repo.apply(patch_path, reject=True)
        hunks: list[RejectedHunk] = []
        try:
            for relative in find_patch_leftovers(repo.root):
                if relative.suffix != _REJECT_SUFFIX or relative.as_posix() in baseline:
                    continue
                reject_path = repo.root / relative
                text = reject_path.read_text(encoding="utf-8", errors="replace")
                hunks.extend(parse_reject_file(text, fallback_file=relative.with_suffix("").as_posix()))
                reject_path.unlink(missing_ok=True)
        finally:
            restore_snapshot(repo, snapshot)

        return ConflictReport(
            patch=patch.path,
            hunks=tuple(hunks),
            messages=_failure_messages(*earlier_output, rejected.stderr),
            branch=repo.current_branch(),
            head=repo.head_summary(),
        )


__all__ = ["PatchApplier", "materialise", "parse_reject_file"]
