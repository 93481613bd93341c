"""Regenerate the base patch from a modified working tree.

Before diffing, everything the build put into the tree that is not part of
the maintained modifications is put back: overlay destinations, manifest
files rewritten by the dependency injector, the lockfile touched by the
build, renamed workflow files, and ``.rej``/``.orig`` leftovers.  What
remains is the meaningful delta, emitted as a ``git diff`` compatible
unified diff that includes newly created files.
"""

from __future__ import annotations

import logging
import re
from pathlib import Path, PurePosixPath
from typing import Iterable, List, Sequence

from ..config import WorkflowConfig
from ..errors import GenerationInconsistency
from ..models import ExclusionSet, GenerationResult, PatchFile, PatchStats
from ..telemetry import emit_event
from ..tools import workflows
from ..tools.hygiene import find_patch_leftovers, remove_patch_leftovers
from ..tools.overlay import remove_path
from ..tools.vcs import GitRepository
from .applier import materialise

LOGGER = logging.getLogger(__name__)

_DIFF_PATHS = re.compile(r"^diff --git a/(?P<old>\S+) b/(?P<new>\S+)$", re.MULTILINE)


def changed_paths(diff_text: str) -> tuple[str, ...]:
    """Return every path named in the ``diff --git`` headers of ``diff_text``."""

    paths: dict[str, None] = {}
    for match in _DIFF_PATHS.finditer(diff_text):
        paths.setdefault(match.group("old"), None)
        paths.setdefault(match.group("new"), None)
    return tuple(paths)


class PatchGenerator:
    """Strip non-patch artifacts from a tree and diff what is left."""

    def __init__(self, exclusions: ExclusionSet, *, workflow_settings: WorkflowConfig | None = None) -> None:
        self.exclusions = exclusions
        self.workflow_settings = workflow_settings or WorkflowConfig()

    # ------------------------------------------------------------ cleanup
    def restore_overlays(self, repo: GitRepository) -> None:
        for destination in self.exclusions.overlay_destinations:
            if remove_path(repo.root / Path(destination)):
                LOGGER.info("Removed overlay %s", destination)
            if repo.is_tracked(destination):
                repo.restore_paths(destination)
                LOGGER.debug("Restored tracked content under %s", destination)

    def restore_script_managed(self, repo: GitRepository) -> None:
        for path in self.exclusions.script_managed:
            if repo.is_tracked(path):
                if repo.is_modified(path):
                    repo.restore_paths(path)
                    LOGGER.info("Reverted %s", path)
            elif remove_path(repo.root / Path(path)):
                LOGGER.info("Removed untracked %s", path)

    def restore_lockfile(self, repo: GitRepository) -> None:
        lockfile = self.exclusions.lockfile
        if lockfile is None or not repo.is_modified(lockfile):
            return
        if repo.is_tracked(lockfile):
            repo.restore_paths(lockfile)
            LOGGER.info("Reverted %s", lockfile)
        else:
            remove_path(repo.root / Path(lockfile))
            LOGGER.info("Removed untracked %s", lockfile)

    def clean(self, repo: GitRepository) -> None:
        """Put every excluded path back into its committed state."""

        self.restore_overlays(repo)
        self.restore_script_managed(repo)
        self.restore_lockfile(repo)
        workflows.restore(repo.root, self.workflow_settings)
        tracked_leftovers = [path for path in find_patch_leftovers(repo.root) if repo.is_tracked(path)]
        hygiene = remove_patch_leftovers(repo.root, keep=tracked_leftovers)
        if hygiene.changed:
            LOGGER.info("Removed %d patch leftover file(s)", len(hygiene.removed))

    # ------------------------------------------------------------ diffing
    def _diff_with_untracked(self, repo: GitRepository) -> str:
        untracked: List[Path] = repo.untracked_files()
        repo.intent_to_add(*untracked)
        try:
            return repo.diff()
        finally:
            repo.unstage(*untracked)

    def _peel(self, repo: GitRepository, layered: Sequence[PatchFile], peeled: List[PatchFile]) -> None:
        """Reverse-apply extension patches, last first, so only the base delta remains.

        Each extension is prepended to ``peeled`` once it is out of the tree.
        """

        for patch in reversed(layered):
            with materialise(patch) as patch_path:
                result = repo.apply(patch_path, reverse=True)
            if result.returncode != 0:
                raise GenerationInconsistency(
                    f"Extension patch {patch.name} no longer reverses cleanly; "
                    "fold its changes into the base patch or update it first",
                    details={"patch": patch.path.as_posix(), "stderr": result.stderr.strip()},
                )
            peeled.insert(0, patch)
            LOGGER.debug("Peeled extension %s", patch.name)

    def _restack(self, repo: GitRepository, layered: Iterable[PatchFile]) -> None:
        for patch in layered:
            with materialise(patch) as patch_path:
                result = repo.apply(patch_path)
            if result.returncode != 0:
                raise GenerationInconsistency(
                    f"Extension patch {patch.name} could not be re-applied after diffing",
                    details={"patch": patch.path.as_posix(), "stderr": result.stderr.strip()},
                )
            LOGGER.debug("Restacked extension %s", patch.name)

    def generate(self, repo: GitRepository, *, layered: Sequence[PatchFile] = ()) -> GenerationResult:
        """Return the meaningful delta of ``repo`` as a unified diff.

        ``layered`` lists extension patches applied on top of the base patch;
        they are taken out of the tree while diffing and put back afterwards,
        so the result describes the base patch alone.
        """

        self.clean(repo)

        peeled: list[PatchFile] = []
        try:
            self._peel(repo, layered, peeled)
            return self._generate(repo)
        finally:
            if peeled:
                self._restack(repo, peeled)

    def _generate(self, repo: GitRepository) -> GenerationResult:
        if not repo.status_porcelain().strip():
            LOGGER.info("No changes detected; patch not regenerated")
            emit_event("patch_generated", status="no-changes")
            return GenerationResult(status="no-changes")

        text = self._diff_with_untracked(repo)
        if not text.strip():
            raise GenerationInconsistency(
                "Working tree reports changes but the generated diff is empty",
                details={"status": repo.status_porcelain().splitlines()},
            )

        paths = changed_paths(text)
        leaked = [path for path in paths if self.exclusions.covers(PurePosixPath(path))]
        if leaked:
            raise GenerationInconsistency(
                f"Generated diff touches excluded path(s): {', '.join(leaked)}",
                details={"paths": leaked},
            )

        stats = PatchStats.from_text(text)
        LOGGER.info(
            "Generated patch: %d line(s), +%d/-%d, %d byte(s) across %d file(s)",
            stats.lines,
            stats.added,
            stats.removed,
            stats.size,
            stats.files,
        )
        emit_event(
            "patch_generated",
            status="changes",
            files=stats.files,
            added=stats.added,
            removed=stats.removed,
            size=stats.size,
        )
        return GenerationResult(status="changes", text=text, stats=stats, changed_paths=paths)


__all__ = ["PatchGenerator", "changed_paths"]
