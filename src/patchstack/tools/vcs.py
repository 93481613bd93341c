"""Minimal git helpers
The helpers below provide just enough structure to acquire an upstream
checkout, query its status, apply patches in the various ``git apply`` modes,
and revert individual paths to their committed content.
"""

from __future__ import annotations

import logging
import shutil
import subprocess
from pathlib import Path
from typing import List, Sequence, Set

LOGGER = logging.getLogger(__name__)

# Non-UTF-8 bytes in diffs and patches survive a decode/encode round trip.
PAYLOAD_ERRORS = "surrogateescape"


class GitError(RuntimeError):
    """Raised when a git command fails or the repository cannot be used."""


def _run(args: Sequence[str], *, cwd: Path, check: bool = True) -> subprocess.CompletedProcess[str]:
    command = ["git", *args]
    process = subprocess.run(
        command,
        cwd=cwd,
        capture_output=True,
        text=False,
        check=False,
    )
    stdout = process.stdout.decode("utf-8", errors=PAYLOAD_ERRORS) if process.stdout else ""
    stderr = process.stderr.decode("utf-8", errors="replace") if process.stderr else ""
    result = subprocess.CompletedProcess(process.args, process.returncode, stdout, stderr)
    if check and result.returncode != 0:
        message = result.stderr.strip() or result.stdout.strip() or "unknown git error"
        raise GitError(f"git {' '.join(args)} failed: {message}")
    return result


class GitRepository:
    """Lightweight wrapper around ``git`` commands."""

    def __init__(self, root: Path | str) -> None:
        self.root = Path(root).resolve()
        if not (self.root / ".git").exists():
            raise GitError(f"Not a git repository: {self.root}")

    @classmethod
    def is_repository(cls, root: Path | str) -> bool:
        return (Path(root) / ".git").exists()

    @classmethod
    def initialise(cls, root: Path | str) -> "GitRepository":
        """Initialise a new git repository at ``root`` with an initial commit."""

        path = Path(root).resolve()
        path.mkdir(parents=True, exist_ok=True)
        git_dir = path / ".git"
        if git_dir.exists():
            shutil.rmtree(git_dir)

        _run(["init"], cwd=path)

        def _ensure_config(key: str, value: str) -> None:
            probe = _run(["config", "--get", key], cwd=path, check=False)
            if probe.returncode != 0 or not probe.stdout.strip():
                _run(["config", key, value], cwd=path)

        _ensure_config("user.email", "patchstack@example.com")
        _ensure_config("user.name", "patchstack")

        _run(["add", "."], cwd=path)
        _run(["commit", "--allow-empty", "-m", "Initial commit"], cwd=path)

        return cls(path)

    @classmethod
    def clone(
        cls,
        url: str,
        destination: Path | str,
        *,
        branch: str | None = None,
        depth: int | None = 1,
    ) -> "GitRepository":
        """Clone ``url`` into ``destination`` and return the repository."""

        target = Path(destination).resolve()
        target.parent.mkdir(parents=True, exist_ok=True)
        args: List[str] = ["clone"]
        if depth:
            args.extend(["--depth", str(depth)])
        if branch:
            args.extend(["--branch", branch])
        args.extend([url, str(target)])
        LOGGER.info("Cloning %s%s into %s", url, f" ({branch})" if branch else "", target)
        _run(args, cwd=target.parent)
        return cls(target)

    # ------------------------------------------------------------------ git IO
    def _run_git(self, args: Sequence[str], *, check: bool = True) -> subprocess.CompletedProcess[str]:
        return _run(args, cwd=self.root, check=check)

    def git(self, *args: str, check: bool = True) -> subprocess.CompletedProcess[str]:
        """Execute ``git`` with ``args`` relative to the repository root."""

        return self._run_git(list(args), check=check)

    def list_tracked_paths(self, *patterns: str) -> List[Path]:
        """Return tracked paths that match the supplied git pathspec patterns.

        When no patterns are supplied the entire tracked file list is returned.
        Paths are reported relative to the repository root.
        """

        args: List[str] = ["ls-files", "-z"]
        if patterns:
            args.extend(["--", *patterns])

        result = self._run_git(args, check=False)
        if result.returncode != 0:
            message = result.stderr.strip() or result.stdout.strip() or "unable to list tracked paths"
            raise GitError(f"git ls-files failed: {message}")

        payload = result.stdout
        if not payload:
            return []

        entries = [entry for entry in payload.split("\0") if entry]
        return [Path(entry) for entry in entries]

    def is_tracked(self, path: str | Path) -> bool:
        """Return ``True`` when ``path`` (a file or directory) has tracked content."""

        return bool(self.list_tracked_paths(Path(path).as_posix()))

    # ------------------------------------------------------------ branches
    def current_branch(self) -> str | None:
        """Return the current branch name or ``None`` when detached."""

        result = self._run_git(["rev-parse", "--abbrev-ref", "HEAD"], check=False)
        if result.returncode != 0:
            return None
        branch = result.stdout.strip()
        if not branch or branch == "HEAD":
            return None
        return branch

    def head(self) -> str | None:
        result = self._run_git(["rev-parse", "--verify", "HEAD"], check=False)
        if result.returncode != 0:
            return None
        head = result.stdout.strip()
        return head or None

    def head_summary(self) -> str | None:
        """Return ``git log -1 --oneline`` for diagnostics."""

        result = self._run_git(["log", "-1", "--oneline"], check=False)
        if result.returncode != 0:
            return None
        return result.stdout.strip() or None

    def rev_parse(self, ref: str) -> str | None:
        result = self._run_git(["rev-parse", "--verify", "--quiet", ref], check=False)
        if result.returncode != 0:
            return None
        return result.stdout.strip() or None

    # ------------------------------------------------------------- remotes
    def remote_url(self, remote: str = "origin") -> str | None:
        result = self._run_git(["config", "--get", f"remote.{remote}.url"], check=False)
        if result.returncode != 0:
            return None
        return result.stdout.strip() or None

    def fetch(self, remote: str, refspec: str | None = None, *, depth: int | None = None) -> None:
        args: List[str] = ["fetch"]
        if depth:
            args.extend(["--depth", str(depth)])
        args.append(remote)
        if refspec:
            args.append(refspec)
        self._run_git(args, check=True)

    def checkout(self, ref: str) -> None:
        self._run_git(["checkout", ref], check=True)

    def reset_hard(self, ref: str = "HEAD") -> None:
        self._run_git(["reset", "--hard", "-q", ref], check=True)

    def clean_untracked(self) -> None:
        """Remove untracked files and directories (ignored files are kept)."""

        self._run_git(["clean", "-fdq"], check=True)

    def discard_changes(self) -> None:
        """Throw away every local modification and untracked file."""

        self.reset_hard()
        self.clean_untracked()

    def unstage_all(self) -> None:
        """Reset the index to ``HEAD`` while leaving the working tree untouched."""

        self._run_git(["reset", "-q"], check=True)

    # ------------------------------------------------------------- repo status
    def _status_entries(self) -> List[tuple[str, Path]]:
        result = self._run_git(["status", "--porcelain=v1", "-z", "--untracked-files=all"], check=True)
        entries: List[tuple[str, Path]] = []
        records = result.stdout.split("\0")
        index = 0
        while index < len(records):
            record = records[index]
            index += 1
            if not record:
                continue
            status = record[:2]
            raw_path = record[3:]
            if status[0] in {"R", "C"}:
                # Renames/copies are followed by the source path.
                index += 1
            status_clean = status.strip() or status
            entries.append((status_clean, Path(raw_path)))
        return entries

    def working_tree_changes(self, *, include_untracked: bool = True) -> List[Path]:
        """Return the set of paths with pending modifications."""

        entries = self._status_entries()
        paths: Set[Path] = set()
        for status, path in entries:
            if status == "??" and not include_untracked:
                continue
            paths.add(path)
        return sorted(paths, key=lambda item: item.as_posix())

    def status_porcelain(self) -> str:
        """Return ``git status --porcelain`` text, used to compare tree states."""

        return self._run_git(["status", "--porcelain", "--untracked-files=all"], check=True).stdout

    def untracked_files(self) -> List[Path]:
        """Return untracked, non-ignored files."""

        result = self._run_git(["ls-files", "--others", "--exclude-standard", "-z"], check=True)
        return [Path(entry) for entry in result.stdout.split("\0") if entry]

    def is_modified(self, path: str | Path) -> bool:
        """Return ``True`` when ``path`` shows up in ``git status``."""

        target = Path(path).as_posix()
        result = self._run_git(["status", "--porcelain", "--", target], check=True)
        return bool(result.stdout.strip())

    def is_clean(self, *, include_untracked: bool = True) -> bool:
        """Return ``True`` when the working tree has no pending changes."""

        return not self.working_tree_changes(include_untracked=include_untracked)

    # ----------------------------------------------------------- patch helpers
    def apply(
        self,
        patch_path: Path,
        *,
        check_only: bool = False,
        reverse: bool = False,
        three_way: bool = False,
        reject: bool = False,
    ) -> subprocess.CompletedProcess[str]:
        """Run ``git apply`` with the requested mode and return the raw result.

        The caller decides what a non-zero exit status means, so this never
        raises on apply failures.
        """

        args: List[str] = ["apply"]
        if check_only:
            args.append("--check")
        if reverse:
            args.append("--reverse")
        if three_way:
            args.append("--3way")
        if reject:
            args.append("--reject")
        args.append(str(Path(patch_path).resolve()))
        return self._run_git(args, check=False)

    def restore_paths(self, *paths: str | Path, source: str = "HEAD") -> None:
        """Restore tracked ``paths`` in both index and working tree from ``source``."""

        if not paths:
            return
        args: List[str] = ["checkout", source, "--", *(Path(path).as_posix() for path in paths)]
        self._run_git(args, check=True)

    def intent_to_add(self, *paths: str | Path) -> None:
        """Record untracked ``paths`` as intent-to-add so ``git diff`` reports them."""

        if not paths:
            return
        self._run_git(["add", "--intent-to-add", "--", *(Path(path).as_posix() for path in paths)], check=True)

    def unstage(self, *paths: str | Path) -> None:
        if not paths:
            return
        self._run_git(["reset", "-q", "--", *(Path(path).as_posix() for path in paths)], check=True)

    # ----------------------------------------------------------- diff helpers
    def diff(self, *paths: str) -> str:
        """Return the unified diff of ``paths`` against ``HEAD`` (defaults to the whole repo).

        Staged and unstaged edits are both reported; intent-to-add paths show
        up as new files.
        """

        args: List[str] = ["diff", "--no-color", "--no-ext-diff", "HEAD"]
        if paths:
            args.extend(["--", *paths])
        result = self._run_git(args, check=True)
        return result.stdout

    def diff_binary(self) -> str:
        """Return a binary-safe diff of the working tree against ``HEAD``."""

        return self._run_git(["diff", "--binary", "--no-color", "--no-ext-diff", "HEAD"], check=True).stdout


__all__ = ["GitError", "GitRepository", "PAYLOAD_ERRORS"]
