"""Disable and restore upstream CI workflows by renaming them."""

from __future__ import annotations

import logging
from pathlib import Path

from ..config import WorkflowConfig

LOGGER = logging.getLogger(__name__)

DISABLED_SUFFIX = ".disabled"


def disable(root: Path | str, settings: WorkflowConfig) -> list[Path]:
    """Rename matching workflow files to ``<name>.disabled``."""

    root = Path(root)
    directory = root / settings.directory
    if not settings.disable or not directory.is_dir():
        return []
    renamed: list[Path] = []
    for workflow in sorted(directory.glob(settings.pattern)):
        if not workflow.is_file():
            continue
        target = workflow.with_name(workflow.name + DISABLED_SUFFIX)
        workflow.replace(target)
        renamed.append(target.relative_to(root))
    if renamed:
        LOGGER.info("Disabled %d upstream workflow(s) in %s", len(renamed), settings.directory)
    return renamed


def restore(root: Path | str, settings: WorkflowConfig) -> list[Path]:
    """Rename ``*.disabled`` workflow files back to their original names."""

    root = Path(root)
    directory = root / settings.directory
    if not directory.is_dir():
        return []
    restored: list[Path] = []
    for disabled in sorted(directory.glob(settings.pattern + DISABLED_SUFFIX)):
        if not disabled.is_file():
            continue
        target = disabled.with_name(disabled.name[: -len(DISABLED_SUFFIX)])
        disabled.replace(target)
        restored.append(target.relative_to(root))
    if restored:
        LOGGER.info("Restored %d disabled workflow(s) in %s", len(restored), settings.directory)
    return restored


__all__ = ["DISABLED_SUFFIX", "disable", "restore"]
