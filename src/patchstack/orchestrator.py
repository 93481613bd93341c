"""Sequence acquisition, patching, building and patch regeneration."""

from __future__ import annotations

import logging
import shutil
from pathlib import Path
from typing import Callable

from .config import PatchstackConfig
from .errors import (
    BuildFailedError,
    ConfigError,
    ConflictError,
    DirtyWorkingTreeError,
    GenerationInconsistency,
    ManifestError,
    OverlayIOError,
    PatchstackError,
    ResolutionError,
    StructuralPatchError,
)
from .models import BuildOutcome, BuildReport, GenerationResult, PatchFile, PatchSet, TargetIdentity
from .patches.applier import PatchApplier
from .patches.generator import PatchGenerator
from .patches.resolver import PatchResolver
from .telemetry import emit_event
from .tools import manifest, overlay, workflows
from .tools.builder import Builder
from .tools.vcs import GitError, GitRepository

LOGGER = logging.getLogger(__name__)

_OUTCOMES: tuple[tuple[type[BaseException], BuildOutcome], ...] = (
    (ResolutionError, BuildOutcome.MISSING_PATCH),
    (StructuralPatchError, BuildOutcome.MALFORMED_PATCH),
    (ConflictError, BuildOutcome.CONFLICT),
    (OverlayIOError, BuildOutcome.OVERLAY_FAILED),
    (ManifestError, BuildOutcome.OVERLAY_FAILED),
    (GenerationInconsistency, BuildOutcome.GENERATION_INCONSISTENT),
    (DirtyWorkingTreeError, BuildOutcome.DIRTY_TREE),
    (BuildFailedError, BuildOutcome.BUILD_FAILED),
)


def outcome_for(error: BaseException) -> BuildOutcome:
    """Map an exception raised by a component to its :class:`BuildOutcome`."""

    for error_type, outcome in _OUTCOMES:
        if isinstance(error, error_type):
            return outcome
    return BuildOutcome.FAILURE


class BuildOrchestrator:
    """Drive one working tree through apply, build and save.

    Components are injectable; by default they are built from ``config``.
    The orchestrator never retries: every failure becomes a
    :class:`BuildReport` with the matching outcome.
    """

    def __init__(
        self,
        config: PatchstackConfig,
        *,
        resolver: PatchResolver | None = None,
        applier: PatchApplier | None = None,
        generator: PatchGenerator | None = None,
        builder: Builder | None = None,
    ) -> None:
        self.config = config
        self.resolver = resolver or PatchResolver(config.patches_dir, config.default_target())
        self.applier = applier or PatchApplier()
        self.generator = generator or PatchGenerator(
            config.exclusion_set(), workflow_settings=config.workflows
        )
        self.builder = builder or Builder(config.build.command, env=config.build.env)

    @property
    def working_tree(self) -> Path:
        return self.config.working_tree_path

    # ---------------------------------------------------------------- acquire
    def open_working_tree(self) -> GitRepository:
        if not GitRepository.is_repository(self.working_tree):
            raise GitError(f"Working tree is not a git checkout: {self.working_tree}")
        return GitRepository(self.working_tree)

    def _clone(self, identity: TargetIdentity, commit: str | None) -> GitRepository:
        url = self.config.remote_url(identity)
        if self.working_tree.exists():
            LOGGER.info("Removing existing %s", self.working_tree)
            shutil.rmtree(self.working_tree)
        if commit:
            repo = GitRepository.clone(url, self.working_tree, branch=identity.reference, depth=None)
            repo.checkout(commit)
        else:
            repo = GitRepository.clone(url, self.working_tree, branch=identity.reference, depth=1)
        return repo

    def acquire(
        self,
        identity: TargetIdentity,
        *,
        allow_discard: bool = False,
        commit: str | None = None,
    ) -> GitRepository:
        """Clone or update the working tree so it matches ``identity`` (and ``commit``)."""

        expected = self.config.remote_url(identity)
        if not GitRepository.is_repository(self.working_tree):
            if self.working_tree.exists():
                LOGGER.warning("%s exists but is not a git repository", self.working_tree)
            return self._clone(identity, commit)

        repo = GitRepository(self.working_tree)
        current = repo.remote_url()
        if (current or "").rstrip("/") != expected.rstrip("/"):
            LOGGER.warning("Remote mismatch: current=%s, expected=%s", current, expected)
            return self._clone(identity, commit)

        dirty = repo.working_tree_changes()
        if dirty:
            if not allow_discard:
                raise DirtyWorkingTreeError(
                    f"Working tree {self.working_tree} has {len(dirty)} uncommitted change(s); "
                    "rerun with --ci to discard them",
                    details={"paths": [path.as_posix() for path in dirty[:20]]},
                )
            LOGGER.warning("Discarding %d local change(s) in %s", len(dirty), self.working_tree)
            repo.discard_changes()

        reference = identity.reference
        if repo.current_branch() != reference:
            LOGGER.info("Switching %s to %s", self.working_tree, reference)
            repo.fetch("origin", reference, depth=1)
            repo.git("checkout", "-B", reference, "FETCH_HEAD")

        if commit:
            if repo.head() != repo.rev_parse(f"{commit}^{{commit}}"):
                LOGGER.info("Checking out pinned commit %s", commit)
                repo.fetch("origin", reference)
                if repo.rev_parse(f"{commit}^{{commit}}") is None:
                    repo.fetch("origin", commit)
                repo.checkout(commit)
            else:
                LOGGER.info("Already on target commit")
            return repo

        repo.fetch("origin", reference, depth=1)
        remote_head = repo.rev_parse("FETCH_HEAD")
        if remote_head and remote_head != repo.head():
            LOGGER.info("Local branch is behind remote, updating to %s", remote_head[:12])
            repo.reset_hard(remote_head)
        else:
            LOGGER.info("Already on latest commit")
        return repo

    # ------------------------------------------------------------ composition
    def _prepare(self, repo: GitRepository, identity: TargetIdentity, report: BuildReport) -> None:
        """Resolve, apply, install overlays, inject manifests, disable workflows."""

        patch_set = self.resolver.resolve(identity)
        report.patch_set = patch_set
        if patch_set.fallback:
            report.notes.append(f"Using default patch {patch_set.base.path} for {identity}")

        report.apply_result = self.applier.apply_all(repo, patch_set)

        installed = overlay.install(repo.root, self.config.overlay_specs())
        if installed:
            report.notes.append(f"Installed overlay(s): {', '.join(path.as_posix() for path in installed)}")

        for result in manifest.inject(repo.root, self.config.manifest_edits):
            if result.status == "anchor-missing":
                report.notes.append(f"Anchor not found in {result.path}; edit skipped")

        workflows.disable(repo.root, self.config.workflows)

        LOGGER.info("Branch: %s", repo.current_branch() or "detached")
        LOGGER.info("Latest commit: %s", repo.head_summary() or "unknown")

    def _layered(self, patch_set: PatchSet | None) -> tuple[PatchFile, ...]:
        if patch_set is None:
            return ()
        return patch_set.extensions

    def _persist(self, identity: TargetIdentity, generation: GenerationResult, report: BuildReport) -> None:
        report.generation = generation
        if not generation.has_changes:
            report.outcome = BuildOutcome.UNCHANGED
            report.message = "Working tree carries no modifications; patch left untouched"
            return

        target = self.resolver.base_path(identity)
        report.patch_path = target
        store = self.resolver.store
        existing = store.read_text(target) if store.exists(target) else None
        if existing == generation.text:
            report.outcome = BuildOutcome.UNCHANGED
            report.message = f"Patch {target} is up to date"
            LOGGER.info("No changes to the patch file")
            return

        store.write_text(target, generation.text)
        report.outcome = BuildOutcome.UPDATED
        report.message = f"{'Updated' if existing is not None else 'Created'} patch {target}"
        LOGGER.info("%s", report.message)
        emit_event(
            "patch_persisted",
            identity=str(identity),
            path=target,
            created=existing is None,
            size=generation.stats.size,
        )

    def _guard(self, identity: TargetIdentity, step: Callable[[BuildReport], None]) -> BuildReport:
        report = BuildReport(outcome=BuildOutcome.FAILURE, identity=identity)
        try:
            step(report)
        except (PatchstackError, GitError, OSError) as error:
            report.outcome = outcome_for(error)
            report.message = str(error)
            if isinstance(error, ConflictError):
                report.conflict = error.report
            if isinstance(error, ConfigError):
                LOGGER.error("Configuration error: %s", error)
            else:
                LOGGER.error("%s failed: %s", identity, error)
        return report

    # ---------------------------------------------------------------- public
    def apply(self, identity: TargetIdentity) -> BuildReport:
        """Resolve and apply the patch set, then install overlays and edits."""

        def step(report: BuildReport) -> None:
            repo = self.open_working_tree()
            self._prepare(repo, identity, report)
            report.outcome = BuildOutcome.UPDATED
            applied = report.apply_result.applied_count if report.apply_result else 0
            report.message = f"Applied {applied} patch(es) to {self.working_tree}"

        return self._guard(identity, step)

    def save(self, identity: TargetIdentity) -> BuildReport:
        """Regenerate the base patch of ``identity`` from the working tree."""

        def step(report: BuildReport) -> None:
            repo = self.open_working_tree()
            try:
                patch_set = self.resolver.resolve(identity)
            except ResolutionError:
                patch_set = None
            generation = self.generator.generate(repo, layered=self._layered(patch_set))
            self._persist(identity, generation, report)

        return self._guard(identity, step)

    def run(
        self,
        identity: TargetIdentity,
        *,
        allow_discard: bool = False,
        skip_build: bool = False,
        commit: str | None = None,
    ) -> BuildReport:
        """Run the full pipeline for ``identity``."""

        def step(report: BuildReport) -> None:
            repo = self.acquire(identity, allow_discard=allow_discard, commit=commit)
            self._prepare(repo, identity, report)
            if skip_build:
                report.notes.append("Build skipped")
            else:
                result = self.builder.run(repo.root)
                if not result.ok:
                    raise BuildFailedError(
                        f"Build command exited with code {result.exit_code}",
                        details={"command": list(result.command), "exit_code": result.exit_code},
                    )
            generation = self.generator.generate(repo, layered=self._layered(report.patch_set))
            self._persist(identity, generation, report)

        return self._guard(identity, step)


__all__ = ["BuildOrchestrator", "outcome_for"]
