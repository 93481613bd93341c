"""Structural checks for unified-diff patch files.

A patch that fails here is corrupt (truncated, hand-edited, mangled by an
editor) and has to be regenerated; it is never handed to ``git apply``.  This
keeps "the patch file is broken" apart from "the patch conflicts with the
tree".
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from pathlib import Path

from ..errors import StructuralPatchError
from ..models import PatchFile

_DIFF_HEADER = re.compile(r"^diff --git (\S+) (\S+)$")
_HUNK_HEADER = re.compile(
    r"^@@ -(?P<old_start>\d+)(?:,(?P<old_count>\d+))? "
    r"\+(?P<new_start>\d+)(?:,(?P<new_count>\d+))? @@"
)
_SIGNATURE_SEPARATOR = "-- "


@dataclass(frozen=True, slots=True)
class PatchSummary:
    """Shape of a structurally valid patch."""

    files: int
    hunks: int


def _default_count(value: str | None) -> int:
    """Return the number of lines represented in a hunk header."""
    return int(value) if value is not None else 1


def _normalise_diff_path(entry: str) -> str | None:
    if entry == "/dev/null":
        return None
    if entry.startswith(("a/", "b/")):
        entry = entry[2:]
    entry = entry.strip()
    return entry or None


def _is_file_header(lines: list[str], index: int) -> bool:
    return (
        lines[index].startswith("--- ")
        and index + 1 < len(lines)
        and lines[index + 1].startswith("+++ ")
    )


def _starts_section(line: str) -> bool:
    return line.startswith("@@") or line.startswith("diff --git ")


def validate_text(text: str, *, path: Path | None = None) -> PatchSummary:
    """Validate raw patch ``text``; raise :class:`StructuralPatchError` on the first defect."""

    if not text or not text.strip():
        raise StructuralPatchError("patch file is empty", path=path)

    lines = text.splitlines()
    files = 0
    hunks = 0
    in_file = False
    git_header_pending = False
    current_file: str | None = None
    index = 0

    while index < len(lines):
        line = lines[index]

        if line.startswith("diff --git "):
            match = _DIFF_HEADER.match(line)
            if not match:
                raise StructuralPatchError("malformed diff header", path=path, line=index + 1)
            files += 1
            in_file = True
            git_header_pending = True
            current_file = _normalise_diff_path(match.group(2)) or _normalise_diff_path(match.group(1))
            index += 1
            continue

        if _is_file_header(lines, index):
            if not git_header_pending:
                files += 1
            git_header_pending = False
            in_file = True
            target = _normalise_diff_path(lines[index + 1][4:].split("\t", 1)[0])
            source = _normalise_diff_path(line[4:].split("\t", 1)[0])
            current_file = target or source or current_file
            index += 2
            continue

        if line.startswith("@@"):
            header = line
            header_line = index + 1
            match = _HUNK_HEADER.match(header)
            if not match:
                raise StructuralPatchError(
                    "unparseable hunk header", path=path, file=current_file, header=header, line=header_line
                )
            if not in_file:
                raise StructuralPatchError(
                    "hunk appears before any file header", path=path, header=header, line=header_line
                )

            expected_old = _default_count(match.group("old_count"))
            expected_new = _default_count(match.group("new_count"))
            index += 1
            if index >= len(lines) or _starts_section(lines[index]):
                raise StructuralPatchError(
                    "dangling hunk: header has no body",
                    path=path,
                    file=current_file,
                    header=header,
                    line=header_line,
                )

            seen_old = 0
            seen_new = 0
            while seen_old < expected_old or seen_new < expected_new:
                if index >= len(lines) or _starts_section(lines[index]):
                    where = "end of file" if index >= len(lines) else f"line {index + 1}"
                    raise StructuralPatchError(
                        f"truncated hunk: expected -{expected_old}/+{expected_new} lines "
                        f"but found -{seen_old}/+{seen_new} before {where}",
                        path=path,
                        file=current_file,
                        header=header,
                        line=header_line,
                    )
                candidate = lines[index]
                if candidate.startswith("\\"):
                    index += 1
                    continue
                prefix = candidate[:1]
                if prefix == "+":
                    seen_new += 1
                elif prefix == "-":
                    seen_old += 1
                elif prefix == " " or candidate == "":
                    # Editors strip the trailing space of empty context lines.
                    seen_old += 1
                    seen_new += 1
                else:
                    raise StructuralPatchError(
                        f"unexpected line in hunk body: {candidate[:40]!r}",
                        path=path,
                        file=current_file,
                        header=header,
                        line=index + 1,
                    )
                if seen_old > expected_old or seen_new > expected_new:
                    raise StructuralPatchError(
                        f"hunk line count mismatch: expected -{expected_old}/+{expected_new} "
                        f"but saw at least -{seen_old}/+{seen_new}",
                        path=path,
                        file=current_file,
                        header=header,
                        line=header_line,
                    )
                index += 1

            while index < len(lines) and lines[index].startswith("\\"):
                index += 1

            if index < len(lines):
                follower = lines[index]
                if (
                    follower.startswith((" ", "+", "-"))
                    and follower != _SIGNATURE_SEPARATOR
                    and not _is_file_header(lines, index)
                ):
                    raise StructuralPatchError(
                        f"hunk has more lines than its header declares (-{expected_old}/+{expected_new})",
                        path=path,
                        file=current_file,
                        header=header,
                        line=index + 1,
                    )
            hunks += 1
            continue

        if line == _SIGNATURE_SEPARATOR:
            # format-patch trailer: nothing after it belongs to the diff.
            break

        index += 1

    if files == 0:
        raise StructuralPatchError("no file sections found; not a unified diff", path=path)

    return PatchSummary(files=files, hunks=hunks)


def validate(patch_file: PatchFile) -> PatchSummary:
    """Validate a :class:`PatchFile` before it is applied."""

    return validate_text(patch_file.text, path=patch_file.path)


__all__ = ["PatchSummary", "validate", "validate_text"]
