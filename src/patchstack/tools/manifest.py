"""Inject build-configuration fragments into upstream manifest files.

Every edit is guarded by a marker pattern, so running the injector on an
already-edited tree is a no-op.  Files touched here are script-managed: the
patch generator reverts them before diffing.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable, Literal

from ..config import ManifestEditConfig
from ..errors import ManifestError

LOGGER = logging.getLogger(__name__)

EditStatus = Literal["applied", "present", "anchor-missing"]


@dataclass(frozen=True, slots=True)
class ManifestEditResult:
    path: str
    status: EditStatus


def _insert(content: str, edit: ManifestEditConfig) -> str | None:
    if edit.position == "append":
        if content and not content.endswith("\n"):
            content += "\n"
        return content + edit.text

    pattern = re.compile(edit.anchor or "")
    lines = content.splitlines(keepends=True)
    for index, line in enumerate(lines):
        if not pattern.search(line.rstrip("\r\n")):
            continue
        fragment = edit.text if edit.text.endswith("\n") else edit.text + "\n"
        if edit.position == "before":
            lines.insert(index, fragment)
        else:
            if not line.endswith("\n"):
                lines[index] = line + "\n"
            lines.insert(index + 1, fragment)
        return "".join(lines)
    return None


def apply_edit(root: Path, edit: ManifestEditConfig) -> ManifestEditResult:
    """Apply a single manifest edit below ``root``."""

    target = Path(root) / edit.path
    if target.exists():
        content = target.read_text(encoding="utf-8")
    elif edit.position == "append":
        content = ""
    else:
        raise ManifestError(
            f"Manifest file not found: {edit.path}",
            details={"path": edit.path},
        )

    if re.search(edit.marker, content, flags=re.MULTILINE):
        LOGGER.debug("%s already contains %r", edit.path, edit.marker)
        return ManifestEditResult(path=edit.path, status="present")

    updated = _insert(content, edit)
    if updated is None:
        LOGGER.warning("Anchor %r not found in %s; edit skipped", edit.anchor, edit.path)
        return ManifestEditResult(path=edit.path, status="anchor-missing")

    target.parent.mkdir(parents=True, exist_ok=True)
    target.write_text(updated, encoding="utf-8")
    LOGGER.info("Injected %s fragment into %s", edit.position, edit.path)
    return ManifestEditResult(path=edit.path, status="applied")


def inject(root: Path | str, edits: Iterable[ManifestEditConfig]) -> list[ManifestEditResult]:
    """Apply ``edits`` in order and report what happened to each."""

    return [apply_edit(Path(root), edit) for edit in edits]


__all__ = ["EditStatus", "ManifestEditResult", "apply_edit", "inject"]
