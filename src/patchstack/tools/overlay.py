"""Copy overlay trees into the working tree."""

from __future__ import annotations

import logging
import shutil
from pathlib import Path
from typing import Iterable

from ..errors import OverlayIOError
from ..models import OverlaySpec

LOGGER = logging.getLogger(__name__)


def _destination_path(root: Path, spec: OverlaySpec) -> Path:
    root = root.resolve()
    target = (root / Path(spec.destination)).resolve()
    if target == root or root not in target.parents:
        raise OverlayIOError(
            f"Overlay destination escapes the working tree: {spec.destination}",
            details={"destination": str(spec.destination)},
        )
    return target


def remove_path(target: Path) -> bool:
    """Remove a file, symlink or directory tree; return ``True`` if something was removed."""

    if target.is_symlink() or target.is_file():
        target.unlink()
        return True
    if target.is_dir():
        shutil.rmtree(target)
        return True
    return False


def install(root: Path | str, specs: Iterable[OverlaySpec]) -> tuple[Path, ...]:
    """Copy every overlay into ``root``, replacing any existing destination.

    Existing destinations are removed first, never merged, so repeated calls
    converge on the same tree.  Returns the installed destinations.
    """

    root_path = Path(root)
    installed: list[Path] = []
    for spec in specs:
        source = Path(spec.source)
        if not source.exists():
            raise OverlayIOError(
                f"Overlay source not found: {source}",
                details={"source": source.as_posix(), "destination": str(spec.destination)},
            )
        target = _destination_path(root_path, spec)
        try:
            if remove_path(target):
                LOGGER.info("%s already exists, replacing", spec.destination)
            target.parent.mkdir(parents=True, exist_ok=True)
            if source.is_dir():
                shutil.copytree(source, target, symlinks=True)
            else:
                shutil.copy2(source, target)
        except OSError as error:
            raise OverlayIOError(
                f"Failed to install overlay {source} -> {spec.destination}: {error}",
                details={"source": source.as_posix(), "destination": str(spec.destination)},
            ) from error
        LOGGER.info("Copied overlay %s -> %s", source, spec.destination)
        installed.append(Path(spec.destination))
    return tuple(installed)


__all__ = ["install", "remove_path"]
