"""Locate the ordered patch set for a target identity."""

from __future__ import annotations

import logging
from pathlib import Path, PurePosixPath
from typing import List, Protocol

from ..errors import ResolutionError
from ..models import PatchFile, PatchSet, TargetIdentity
from ..telemetry import emit_event
from ..tools.vcs import PAYLOAD_ERRORS

LOGGER = logging.getLogger(__name__)

PATCH_SUFFIX = ".patch"


class PatchStore(Protocol):
    """Storage the resolver reads patches from and the orchestrator writes to."""

    def exists(self, path: Path) -> bool: ...

    def list_names(self, directory: Path) -> List[str]: ...

    def read_text(self, path: Path) -> str: ...

    def write_text(self, path: Path, text: str) -> None: ...


class FileSystemPatchStore:
    """:class:`PatchStore` backed by a directory tree."""

    def exists(self, path: Path) -> bool:
        return path.is_file()

    def list_names(self, directory: Path) -> List[str]:
        if not directory.is_dir():
            return []
        return [entry.name for entry in directory.iterdir() if entry.is_file()]

    def read_text(self, path: Path) -> str:
        # newline="" keeps CRLF patches byte-for-byte comparable.
        with path.open("r", encoding="utf-8", errors=PAYLOAD_ERRORS, newline="") as handle:
            return handle.read()

    def write_text(self, path: Path, text: str) -> None:
        path.parent.mkdir(parents=True, exist_ok=True)
        with path.open("w", encoding="utf-8", errors=PAYLOAD_ERRORS, newline="") as handle:
            handle.write(text)


class PatchResolver:
    """Resolve ``<org>/<repo>/<ref>.patch`` plus ``<ref>-*.patch`` extensions.

    When the identity has no base patch the configured default identity is
    used instead, so a fresh upstream branch builds out of the box.  The
    fallback is logged because the default patch may not fit the requested
    project.
    """

    def __init__(
        self,
        patches_root: Path | str,
        default_identity: TargetIdentity,
        *,
        store: PatchStore | None = None,
    ) -> None:
        self.patches_root = Path(patches_root)
        self.default_identity = default_identity
        self.store: PatchStore = store or FileSystemPatchStore()

    def base_path(self, identity: TargetIdentity) -> Path:
        """Return where the base patch for ``identity`` lives (or would live)."""

        reference = PurePosixPath(identity.reference)
        return (
            self.patches_root
            / identity.organization
            / identity.repository
            / Path(*reference.parent.parts)
            / f"{reference.name}{PATCH_SUFFIX}"
        )

    def extension_paths(self, identity: TargetIdentity) -> list[Path]:
        """Return ``<ref>-<suffix>.patch`` files for ``identity`` in lexical order."""

        base = self.base_path(identity)
        prefix = f"{PurePosixPath(identity.reference).name}-"
        names = [
            name
            for name in self.store.list_names(base.parent)
            if name.startswith(prefix) and name.endswith(PATCH_SUFFIX) and name != base.name
        ]
        return [base.parent / name for name in sorted(names)]

    def _load(self, requested: TargetIdentity, resolved: TargetIdentity, *, fallback: bool) -> PatchSet:
        base = self.base_path(resolved)
        files = [PatchFile(path=base, ordinal=0, text=self.store.read_text(base))]
        for ordinal, path in enumerate(self.extension_paths(resolved), start=1):
            files.append(PatchFile(path=path, ordinal=ordinal, text=self.store.read_text(path)))
        return PatchSet(requested=requested, resolved=resolved, files=tuple(files), fallback=fallback)

    def resolve(self, identity: TargetIdentity) -> PatchSet:
        exact = self.base_path(identity)
        if self.store.exists(exact):
            patch_set = self._load(identity, identity, fallback=False)
            LOGGER.info(
                "Resolved %d patch file(s) for %s: %s",
                len(patch_set),
                identity,
                ", ".join(patch.name for patch in patch_set),
            )
            return patch_set

        default = self.base_path(self.default_identity)
        if self.store.exists(default):
            LOGGER.warning(
                "Patch not found at %s, falling back to default %s",
                exact,
                self.default_identity,
            )
            emit_event(
                "patch_resolved_fallback",
                requested=str(identity),
                resolved=str(self.default_identity),
                missing=exact,
            )
            return self._load(identity, self.default_identity, fallback=True)

        raise ResolutionError(
            f"No patch found for {identity}: neither {exact} nor the default {default} exists",
            details={"identity": str(identity), "searched": [exact.as_posix(), default.as_posix()]},
        )


__all__ = ["FileSystemPatchStore", "PATCH_SUFFIX", "PatchResolver", "PatchStore"]
