"""Working-tree hygiene helpers that keep partial-patch leftovers out of diffs."""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable, Iterator

LEFTOVER_SUFFIXES: tuple[str, ...] = (".rej", ".orig")


@dataclass(slots=True)
class HygieneResult:
    """Report emitted after sweeping the working tree."""

    removed: tuple[Path, ...] = ()

    @property
    def changed(self) -> bool:
        return bool(self.removed)


def find_patch_leftovers(root: Path) -> list[Path]:
    """Return reject/backup fragments below ``root`` (relative, sorted)."""

    return sorted(
        (path.relative_to(root) for path in _walk_files(root) if path.name.endswith(LEFTOVER_SUFFIXES)),
        key=lambda item: item.as_posix(),
    )


def remove_patch_leftovers(root: Path, *, keep: Iterable[Path] = ()) -> HygieneResult:
    """Delete ``*.rej``/``*.orig`` fragments left behind by failed applications.

    ``git apply --reject`` and some merge tools drop these next to the files
    they touched.  Tracked files listed in ``keep`` belong to the upstream
    project and are left alone.
    """

    root = Path(root)
    kept = {Path(path).as_posix() for path in keep}
    removed: list[Path] = []
    for relative in find_patch_leftovers(root):
        if relative.as_posix() in kept:
            continue
        (root / relative).unlink(missing_ok=True)
        removed.append(relative)
    return HygieneResult(removed=tuple(removed))


def _walk_files(root: Path) -> Iterator[Path]:
    for current, dirnames, filenames in os.walk(root):
        dirnames[:] = [name for name in dirnames if name != ".git"]
        base = Path(current)
        for filename in filenames:
            yield base / filename


__all__ = ["HygieneResult", "LEFTOVER_SUFFIXES", "find_patch_leftovers", "remove_patch_leftovers"]
