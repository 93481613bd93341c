from __future__ import annotations

import sys
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Mapping

import pytest

ROOT = Path(__file__).resolve().parents[1]
SRC = ROOT / "src"

if str(SRC) not in sys.path:
    sys.path.insert(0, str(SRC))

from patchstack.tools.vcs import GitRepository  # noqa: E402

NUMBERS = "".join(f"line {index}\n" for index in range(1, 21))

CARGO_TOML = """[package]
name = "demo"
version = "0.1.0"

[dependencies]
serde = "1"

[dev-dependencies]
tempfile = "3"
"""

UPSTREAM_FILES: dict[str, str] = {
    "numbers.txt": NUMBERS,
    "notes.txt": "alpha\nbeta\ngamma\n",
    "Cargo.toml": CARGO_TOML,
    "Cargo.lock": "# lockfile\nversion = 3\n",
    "Dockerfile": "FROM upstream:latest\n",
    ".gitignore": "/target\n",
    ".github/workflows/ci.yml": "name: ci\non: push\n",
    ".github/workflows/release.yml": "name: release\non: tag\n",
}


def write_files(root: Path, files: Mapping[str, str | None]) -> None:
    """Write (or delete, for ``None``) files relative to ``root``."""

    for relative, content in files.items():
        target = root / relative
        if content is None:
            target.unlink()
            continue
        target.parent.mkdir(parents=True, exist_ok=True)
        with target.open("w", encoding="utf-8", newline="") as handle:
            handle.write(content)


def commit_files(repo: GitRepository, files: Mapping[str, str | None], message: str) -> None:
    write_files(repo.root, files)
    repo.git("add", "--all")
    repo.git("commit", "-q", "-m", message)


@dataclass(slots=True)
class PatchFactory:
    """Build patch text from a repository without leaving changes behind."""

    repo: GitRepository

    def __call__(self, changes: Mapping[str, str | None]) -> str:
        write_files(self.repo.root, changes)
        untracked = self.repo.untracked_files()
        self.repo.intent_to_add(*untracked)
        try:
            text = self.repo.diff()
        finally:
            self.repo.unstage(*untracked)
        self.repo.discard_changes()
        return text


@pytest.fixture()
def make_repo(tmp_path: Path) -> Callable[..., GitRepository]:
    """Return a factory creating committed git repositories on branch ``unstable``."""

    def factory(name: str = "upstream", files: Mapping[str, str] | None = None) -> GitRepository:
        root = tmp_path / name
        write_files(root, UPSTREAM_FILES if files is None else files)
        repo = GitRepository.initialise(root)
        repo.git("checkout", "-q", "-B", "unstable")
        return repo

    return factory


@pytest.fixture()
def upstream(make_repo: Callable[..., GitRepository]) -> GitRepository:
    return make_repo()


@pytest.fixture()
def make_patch(upstream: GitRepository) -> PatchFactory:
    return PatchFactory(upstream)
