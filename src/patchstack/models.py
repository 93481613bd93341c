"""Value types passed between the resolver, applier, generator and orchestrator."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path, PurePosixPath
from typing import Any, Iterator, Literal


@dataclass(frozen=True, slots=True)
class TargetIdentity:
    """Upstream project and version a patch set applies to."""

    organization: str
    repository: str
    reference: str

    @classmethod
    def parse(cls, repo_spec: str, reference: str) -> "TargetIdentity":
        """Build an identity from an ``org/repo`` string and a reference."""

        parts = repo_spec.strip().split("/")
        if len(parts) != 2 or not all(part.strip() for part in parts):
            raise ValueError(f"Repository must be in format 'org/repo', got {repo_spec!r}")
        ref = reference.strip()
        if not ref:
            raise ValueError("Reference (branch, tag or commit) must not be empty")
        return cls(organization=parts[0].strip(), repository=parts[1].strip(), reference=ref)

    @property
    def repo_spec(self) -> str:
        return f"{self.organization}/{self.repository}"

    def __str__(self) -> str:
        return f"{self.organization}/{self.repository}@{self.reference}"


@dataclass(frozen=True, slots=True)
class PatchFile:
    """A single unified-diff file inside a patch set."""

    path: Path
    ordinal: int
    text: str

    @property
    def name(self) -> str:
        return self.path.name

    @property
    def is_base(self) -> bool:
        return self.ordinal == 0


@dataclass(frozen=True, slots=True)
class PatchSet:
    """Ordered patches for one identity: the base patch first, then extensions."""

    requested: TargetIdentity
    resolved: TargetIdentity
    files: tuple[PatchFile, ...]
    fallback: bool = False

    def __post_init__(self) -> None:
        if not self.files:
            raise ValueError(f"Patch set for {self.resolved} is empty")
        if not self.files[0].is_base:
            raise ValueError(f"Patch set for {self.resolved} does not start with its base patch")

    @property
    def base(self) -> PatchFile:
        return self.files[0]

    @property
    def extensions(self) -> tuple[PatchFile, ...]:
        return self.files[1:]

    def __iter__(self) -> Iterator[PatchFile]:
        return iter(self.files)

    def __len__(self) -> int:
        return len(self.files)


@dataclass(frozen=True, slots=True)
class OverlaySpec:
    """A file or directory copied wholesale into the working tree."""

    source: Path
    destination: PurePosixPath


@dataclass(frozen=True, slots=True)
class ExclusionSet:
    """Paths that must never appear in a generated patch."""

    overlay_destinations: tuple[PurePosixPath, ...] = ()
    lockfile: PurePosixPath | None = None
    script_managed: tuple[PurePosixPath, ...] = ()

    def paths(self) -> tuple[PurePosixPath, ...]:
        entries: list[PurePosixPath] = [*self.overlay_destinations, *self.script_managed]
        if self.lockfile is not None:
            entries.append(self.lockfile)
        return tuple(dict.fromkeys(entries))

    def covers(self, path: str | PurePosixPath) -> bool:
        """Return ``True`` when ``path`` is an excluded path or lives beneath one."""

        candidate = PurePosixPath(path)
        for excluded in self.paths():
            if candidate == excluded or excluded in candidate.parents:
                return True
        return False


@dataclass(frozen=True, slots=True)
class RejectedHunk:
    """A hunk that could not be placed, as reported by ``git apply --reject``."""

    file: str
    header: str
    lines: tuple[str, ...]

    def to_dict(self) -> dict[str, Any]:
        return {"file": self.file, "header": self.header, "lines": list(self.lines)}


@dataclass(frozen=True, slots=True)
class ConflictReport:
    """Diagnostics collected when a patch applies by no strategy."""

    patch: Path
    hunks: tuple[RejectedHunk, ...] = ()
    messages: tuple[str, ...] = ()
    branch: str | None = None
    head: str | None = None

    @property
    def files(self) -> tuple[str, ...]:
        return tuple(dict.fromkeys(hunk.file for hunk in self.hunks))

    def to_dict(self) -> dict[str, Any]:
        return {
            "patch": self.patch.as_posix(),
            "hunks": [hunk.to_dict() for hunk in self.hunks],
            "messages": list(self.messages),
            "branch": self.branch,
            "head": self.head,
        }

    def format(self) -> str:
        """Render the report the way a maintainer reads it on a terminal."""

        lines = [f"Failed to apply patch: {self.patch.name}"]
        if self.hunks:
            lines.append("")
            lines.append("=== Patch Conflict Details ===")
            for file in self.files:
                lines.append(f"  Conflict in: {file}")
                for hunk in self.hunks:
                    if hunk.file != file:
                        continue
                    lines.append(f"    {hunk.header}")
                    lines.extend(f"    {line}" for line in hunk.lines)
                lines.append("")
        if self.messages:
            lines.append("git apply reported:")
            lines.extend(f"  {message}" for message in self.messages)
        lines.append("Current state:")
        lines.append(f"  Branch: {self.branch or 'detached'}")
        lines.append(f"  Latest: {self.head or 'unknown'}")
        return "\n".join(lines)


@dataclass(frozen=True, slots=True)
class PatchStats:
    """Line and byte counts of a unified diff."""

    lines: int = 0
    added: int = 0
    removed: int = 0
    size: int = 0
    files: int = 0

    @classmethod
    def from_text(cls, text: str) -> "PatchStats":
        added = removed = files = 0
        for line in text.splitlines():
            if line.startswith("diff --git "):
                files += 1
            elif line.startswith("+++ ") or line.startswith("--- "):
                continue
            elif line.startswith("+"):
                added += 1
            elif line.startswith("-"):
                removed += 1
        return cls(
            lines=text.count("\n"),
            added=added,
            removed=removed,
            size=len(text.encode("utf-8", "surrogateescape")),
            files=files,
        )


GenerationStatus = Literal["changes", "no-changes"]


@dataclass(frozen=True, slots=True)
class GenerationResult:
    """Outcome of regenerating a patch from the working tree."""

    status: GenerationStatus
    text: str = ""
    stats: PatchStats = field(default_factory=PatchStats)
    changed_paths: tuple[str, ...] = ()

    @property
    def has_changes(self) -> bool:
        return self.status == "changes"


ApplyStrategy = Literal["direct", "already-applied", "three-way"]


@dataclass(slots=True)
class ApplyResult:
    """Per-patch strategies used while applying a patch set."""

    strategies: list[tuple[PatchFile, ApplyStrategy]] = field(default_factory=list)

    @property
    def applied(self) -> tuple[PatchFile, ...]:
        return tuple(patch for patch, strategy in self.strategies if strategy != "already-applied")

    @property
    def skipped(self) -> tuple[PatchFile, ...]:
        return tuple(patch for patch, strategy in self.strategies if strategy == "already-applied")

    @property
    def applied_count(self) -> int:
        return len(self.applied)


class BuildOutcome(str, Enum):
    """Terminal outcome of an orchestrator run, with its process exit code."""

    UPDATED = "updated"
    UNCHANGED = "unchanged"
    FAILURE = "failure"
    CONFLICT = "conflict"
    MISSING_PATCH = "missing-patch"
    BUILD_FAILED = "build-failed"
    MALFORMED_PATCH = "malformed-patch"
    OVERLAY_FAILED = "overlay-failed"
    GENERATION_INCONSISTENT = "generation-inconsistent"
    DIRTY_TREE = "dirty-tree"

    @property
    def exit_code(self) -> int:
        return _EXIT_CODES[self]

    @property
    def ok(self) -> bool:
        return self in (BuildOutcome.UPDATED, BuildOutcome.UNCHANGED)


_EXIT_CODES: dict[BuildOutcome, int] = {
    BuildOutcome.UPDATED: 0,
    BuildOutcome.FAILURE: 1,
    BuildOutcome.UNCHANGED: 3,
    BuildOutcome.CONFLICT: 4,
    BuildOutcome.MISSING_PATCH: 5,
    BuildOutcome.BUILD_FAILED: 6,
    BuildOutcome.MALFORMED_PATCH: 7,
    BuildOutcome.OVERLAY_FAILED: 8,
    BuildOutcome.GENERATION_INCONSISTENT: 9,
    BuildOutcome.DIRTY_TREE: 10,
}


@dataclass(slots=True)
class BuildReport:
    """Summary handed back to the CLI after an orchestrator run."""

    outcome: BuildOutcome
    identity: TargetIdentity
    message: str = ""
    patch_set: PatchSet | None = None
    apply_result: ApplyResult | None = None
    generation: GenerationResult | None = None
    patch_path: Path | None = None
    conflict: ConflictReport | None = None
    notes: list[str] = field(default_factory=list)

    @property
    def exit_code(self) -> int:
        return self.outcome.exit_code


__all__ = [
    "ApplyResult",
    "ApplyStrategy",
    "BuildOutcome",
    "BuildReport",
    "ConflictReport",
    "ExclusionSet",
    "GenerationResult",
    "GenerationStatus",
    "OverlaySpec",
    "PatchFile",
    "PatchSet",
    "PatchStats",
    "RejectedHunk",
    "TargetIdentity",
]
