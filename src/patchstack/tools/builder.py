"""Invoke the external build command inside the patched working tree."""

from __future__ import annotations

import logging
import os
import subprocess
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, Mapping, Sequence

LOGGER = logging.getLogger(__name__)


@dataclass(slots=True)
class BuildResult:
    """Exit status of a build invocation; its output goes straight to the console."""

    command: tuple[str, ...]
    cwd: Path
    exit_code: int

    @property
    def ok(self) -> bool:
        return self.exit_code == 0


def _merge_env(extra: Mapping[str, str] | None) -> Dict[str, str]:
    """Merge provided environment overrides with the current process state."""
    env: Dict[str, str] = os.environ.copy()
    if extra:
        env.update({str(key): str(value) for key, value in extra.items()})
    return env


class Builder:
    """Runs a fixed command; only success or failure is observed."""

    def __init__(self, command: Sequence[str], *, env: Mapping[str, str] | None = None) -> None:
        if not command:
            raise ValueError("Build command must not be empty")
        self.command = tuple(command)
        self.env = dict(env or {})

    def run(self, root: Path | str) -> BuildResult:
        cwd = Path(root).resolve()
        LOGGER.info("Building in %s: %s", cwd, " ".join(self.command))
        try:
            process = subprocess.run(
                list(self.command),
                cwd=cwd,
                env=_merge_env(self.env),
                check=False,
            )
        except FileNotFoundError as error:
            LOGGER.error("Build command not found: %s", error)
            return BuildResult(command=self.command, cwd=cwd, exit_code=127)
        result = BuildResult(command=self.command, cwd=cwd, exit_code=process.returncode)
        if result.ok:
            LOGGER.info("Build completed successfully")
        else:
            LOGGER.error("Build failed with exit code %d", result.exit_code)
        return result


__all__ = ["BuildResult", "Builder"]
