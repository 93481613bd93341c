"""Error taxonomy shared by the patch engine and the build orchestrator."""

from __future__ import annotations

from pathlib import Path
from typing import TYPE_CHECKING, Any, Mapping

if TYPE_CHECKING:
    from .models import ConflictReport


class PatchstackError(RuntimeError):
    """Base class for failures surfaced by patchstack components."""

    def __init__(self, message: str, *, details: Mapping[str, Any] | None = None) -> None:
        super().__init__(message)
        self.details: dict[str, Any] = dict(details or {})


class ConfigError(PatchstackError):
    """Raised when the configuration file is missing or invalid."""


class ResolutionError(PatchstackError):
    """Raised when no patch exists for an identity, even via the default."""


class StructuralPatchError(PatchstackError):
    """Raised when a patch file is malformed and must be regenerated."""

    def __init__(
        self,
        reason: str,
        *,
        path: Path | None = None,
        file: str | None = None,
        header: str | None = None,
        line: int | None = None,
    ) -> None:
        location = path.as_posix() if path else "<patch>"
        if line is not None:
            location = f"{location}:{line}"
        message = f"{location}: {reason}"
        context = [f"file {file}"] if file else []
        if header:
            context.append(f"hunk {header!r}")
        if context:
            message = f"{message} ({', '.join(context)})"
        super().__init__(
            message,
            details={"reason": reason, "patch": location, "file": file, "header": header, "line": line},
        )
        self.reason = reason
        self.path = path
        self.file = file
        self.header = header
        self.line = line


class ConflictError(PatchstackError):
    """Raised when a patch applies by no strategy; the tree is already rolled back."""

    def __init__(self, report: "ConflictReport") -> None:
        super().__init__(
            f"Patch {report.patch.name} does not apply: "
            f"{len(report.hunks)} rejected hunk(s) across {len(report.files)} file(s)",
            details={"report": report.to_dict()},
        )
        self.report = report


class OverlayIOError(PatchstackError):
    """Raised when overlay files cannot be copied into the working tree."""


class ManifestError(PatchstackError):
    """Raised when a manifest edit targets a file that does not exist."""


class GenerationInconsistency(PatchstackError):
    """Raised when modifications were detected but the diff disagrees."""


EmptyResultError = GenerationInconsistency


class DirtyWorkingTreeError(PatchstackError):
    """Raised when the working tree has local changes the caller did not authorise discarding."""


class BuildFailedError(PatchstackError):
    """Raised when the external build command reports failure."""


__all__ = [
    "BuildFailedError",
    "ConfigError",
    "ConflictError",
    "DirtyWorkingTreeError",
    "EmptyResultError",
    "GenerationInconsistency",
    "ManifestError",
    "OverlayIOError",
    "PatchstackError",
    "ResolutionError",
    "StructuralPatchError",
]
