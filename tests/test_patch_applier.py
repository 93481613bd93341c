from __future__ import annotations

from pathlib import Path

import pytest

from patchstack.errors import ConflictError, StructuralPatchError
from patchstack.models import PatchFile, PatchSet, TargetIdentity
from patchstack.patches.applier import PatchApplier, parse_reject_file
from patchstack.tools.hygiene import find_patch_leftovers
from patchstack.tools.vcs import GitRepository

from conftest import NUMBERS, PatchFactory, commit_files, write_files

IDENTITY = TargetIdentity("org", "demo", "unstable")


def _patch(text: str, ordinal: int = 0, name: str | None = None) -> PatchFile:
    filename = name or ("unstable.patch" if ordinal == 0 else f"unstable-{ordinal}.patch")
    return PatchFile(path=Path("patches/org/demo") / filename, ordinal=ordinal, text=text)


def _tree_state(repo: GitRepository) -> tuple[str, dict[str, bytes]]:
    files = {
        path.relative_to(repo.root).as_posix(): path.read_bytes()
        for path in sorted(repo.root.rglob("*"))
        if path.is_file() and ".git" not in path.relative_to(repo.root).parts
    }
    return repo.status_porcelain(), files


def test_direct_apply_then_already_applied(upstream: GitRepository, make_patch: PatchFactory) -> None:
    patch = _patch(make_patch({"notes.txt": "alpha\nBETA\ngamma\n"}))
    applier = PatchApplier()

    first = applier.apply_all(upstream, [patch])
    state_after_first = _tree_state(upstream)
    second = applier.apply_all(upstream, [patch])

    assert first.strategies == [(patch, "direct")]
    assert first.applied_count == 1
    assert second.strategies == [(patch, "already-applied")]
    assert second.applied_count == 0
    assert second.skipped == (patch,)
    assert _tree_state(upstream) == state_after_first
    assert (upstream.root / "notes.txt").read_text(encoding="utf-8") == "alpha\nBETA\ngamma\n"


def test_new_files_are_created_untracked(upstream: GitRepository, make_patch: PatchFactory) -> None:
    patch = _patch(make_patch({"src/added.txt": "fresh\n"}))

    PatchApplier().apply_all(upstream, [patch])

    assert (upstream.root / "src" / "added.txt").read_text(encoding="utf-8") == "fresh\n"
    assert upstream.untracked_files() == [Path("src/added.txt")]


def test_three_way_merge_handles_upstream_drift(upstream: GitRepository, make_patch: PatchFactory) -> None:
    patched = NUMBERS.replace("line 2\n", "line two\n")
    patch = _patch(make_patch({"numbers.txt": patched}))
    commit_files(upstream, {"numbers.txt": NUMBERS.replace("line 5\n", "line five\n")}, "upstream drift")

    result = PatchApplier().apply_all(upstream, [patch])

    assert result.strategies == [(patch, "three-way")]
    content = (upstream.root / "numbers.txt").read_text(encoding="utf-8")
    assert "line two\n" in content
    assert "line five\n" in content
    assert upstream.git("diff", "--cached", "--name-only").stdout == ""
    assert find_patch_leftovers(upstream.root) == []


def test_ordering_of_dependent_patches(upstream: GitRepository, make_patch: PatchFactory) -> None:
    first_text = make_patch({"notes.txt": "alpha\nBETA\ngamma\n"})
    second_text = (
        "diff --git a/notes.txt b/notes.txt\n"
        "--- a/notes.txt\n"
        "+++ b/notes.txt\n"
        "@@ -1,3 +1,4 @@\n"
        " alpha\n"
        " BETA\n"
        " gamma\n"
        "+delta\n"
    )
    first = _patch(first_text, ordinal=0)
    second = _patch(second_text, ordinal=1)
    applier = PatchApplier()

    with pytest.raises(ConflictError):
        applier.apply_all(upstream, [second, first])

    assert upstream.is_clean()

    patch_set = PatchSet(requested=IDENTITY, resolved=IDENTITY, files=(first, second))
    result = applier.apply_all(upstream, patch_set)

    assert [strategy for _, strategy in result.strategies] == ["direct", "direct"]
    assert (upstream.root / "notes.txt").read_text(encoding="utf-8") == "alpha\nBETA\ngamma\ndelta\n"


def test_conflict_rolls_back_to_pre_attempt_state(upstream: GitRepository, make_patch: PatchFactory) -> None:
    earlier = _patch(make_patch({"Cargo.lock": "# lockfile\nversion = 4\n", "extra/new.txt": "new\n"}))
    conflicting = _patch(
        make_patch({"numbers.txt": NUMBERS.replace("line 2\n", "line two\n")}),
        ordinal=1,
    )
    commit_files(upstream, {"numbers.txt": NUMBERS.replace("line 2\n", "line deux\n")}, "upstream rewrite")
    applier = PatchApplier()
    applier.apply_all(upstream, [earlier])
    write_files(upstream.root, {"scratch.txt": "local notes\n"})
    before = _tree_state(upstream)

    with pytest.raises(ConflictError) as excinfo:
        applier.apply_all(upstream, [conflicting])

    assert _tree_state(upstream) == before
    assert find_patch_leftovers(upstream.root) == []
    report = excinfo.value.report
    assert report.patch == conflicting.path
    assert report.files == ("numbers.txt",)
    assert report.hunks[0].header.startswith("@@ -1,5 +1,5 @@")
    assert "+line two" in report.hunks[0].lines
    assert report.branch == "unstable"
    assert report.head is not None and "upstream rewrite" in report.head
    rendered = report.format()
    assert "Conflict in: numbers.txt" in rendered
    assert "Branch: unstable" in rendered


def test_structural_error_aborts_before_any_patch_is_applied(
    upstream: GitRepository, make_patch: PatchFactory
) -> None:
    good = _patch(make_patch({"notes.txt": "alpha\nBETA\ngamma\n"}))
    broken = _patch(
        "diff --git a/notes.txt b/notes.txt\n"
        "--- a/notes.txt\n"
        "+++ b/notes.txt\n"
        "@@ -1,5 +1,5 @@\n"
        " alpha\n"
        " beta\n"
        " gamma\n",
        ordinal=1,
    )

    with pytest.raises(StructuralPatchError):
        PatchApplier().apply_all(upstream, [good, broken])

    assert upstream.is_clean()


def test_parse_reject_file_splits_hunks() -> None:
    text = (
        "diff a/src/lib.rs b/src/lib.rs\t(rejected hunks)\n"
        "@@ -1,3 +1,3 @@\n"
        " fn a() {}\n"
        "-fn b() {}\n"
        "+fn b2() {}\n"
        "@@ -10,2 +10,3 @@\n"
        " fn c() {}\n"
        "+fn d() {}\n"
    )

    hunks = parse_reject_file(text, fallback_file="ignored")

    assert [hunk.file for hunk in hunks] == ["src/lib.rs", "src/lib.rs"]
    assert [hunk.header for hunk in hunks] == ["@@ -1,3 +1,3 @@", "@@ -10,2 +10,3 @@"]
    assert hunks[1].lines == (" fn c() {}", "+fn d() {}")
