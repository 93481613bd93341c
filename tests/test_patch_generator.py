from __future__ import annotations

from pathlib import Path, PurePosixPath

import pytest

from patchstack.config import ManifestEditConfig, WorkflowConfig
from patchstack.errors import GenerationInconsistency
from patchstack.models import ExclusionSet, GenerationResult, OverlaySpec, PatchFile
from patchstack.patches.applier import PatchApplier
from patchstack.patches.generator import PatchGenerator, changed_paths
from patchstack.patches.resolver import FileSystemPatchStore
from patchstack.tools import manifest, overlay, workflows
from patchstack.tools.vcs import GitRepository

from conftest import CARGO_TOML, NUMBERS, PatchFactory, write_files

EXCLUSIONS = ExclusionSet(
    overlay_destinations=(PurePosixPath("xatu"), PurePosixPath("Dockerfile")),
    lockfile=PurePosixPath("Cargo.lock"),
    script_managed=(PurePosixPath("Cargo.toml"), PurePosixPath(".gitignore")),
)

EDITS = [
    ManifestEditConfig(
        path="Cargo.toml",
        marker=r"xatu = \{ path",
        anchor=r"^\[dev-dependencies\]",
        position="before",
        text='xatu = { path = "xatu" }\n\n',
    ),
    ManifestEditConfig(
        path=".gitignore",
        marker=r"/xatu/target",
        position="append",
        text="/xatu/target\n",
    ),
]


@pytest.fixture()
def overlay_source(tmp_path: Path) -> Path:
    source = tmp_path / "overlay"
    write_files(
        source,
        {
            "xatu/Cargo.toml": "[package]\nname = \"xatu\"\n",
            "xatu/src/lib.rs": "pub fn observe() {}\n",
            "Dockerfile": "FROM ethpandaops:latest\n",
        },
    )
    return source


def _build_drift(repo: GitRepository, overlay_source: Path) -> None:
    """Reproduce everything a build leaves behind that is not a patch change."""

    overlay.install(
        repo.root,
        [
            OverlaySpec(source=overlay_source / "xatu", destination=PurePosixPath("xatu")),
            OverlaySpec(source=overlay_source / "Dockerfile", destination=PurePosixPath("Dockerfile")),
        ],
    )
    manifest.inject(repo.root, EDITS)
    workflows.disable(repo.root, WorkflowConfig())
    write_files(
        repo.root,
        {
            "Cargo.lock": "# lockfile\nversion = 3\n[[package]]\nname = \"xatu\"\n",
            "notes.txt.orig": "alpha\n",
            "numbers.txt.rej": "@@ -1 +1 @@\n",
        },
    )


def _generator() -> PatchGenerator:
    return PatchGenerator(EXCLUSIONS, workflow_settings=WorkflowConfig())


def test_only_build_drift_yields_no_changes(upstream: GitRepository, overlay_source: Path) -> None:
    _build_drift(upstream, overlay_source)

    result = _generator().generate(upstream)

    assert result.status == "no-changes"
    assert not result.has_changes
    assert result.text == ""
    assert upstream.status_porcelain() == ""
    assert (upstream.root / "Dockerfile").read_text(encoding="utf-8") == "FROM upstream:latest\n"
    assert (upstream.root / "Cargo.toml").read_text(encoding="utf-8") == CARGO_TOML
    assert (upstream.root / ".github" / "workflows" / "ci.yml").exists()
    assert not (upstream.root / "xatu").exists()


def test_overlay_and_lockfile_are_stripped_before_diffing(
    upstream: GitRepository, overlay_source: Path
) -> None:
    write_files(
        upstream.root,
        {
            "numbers.txt": NUMBERS.replace("line 7\n", "line seven\n"),
            "src/observer.rs": "pub struct Observer;\n",
        },
    )
    _build_drift(upstream, overlay_source)

    result = _generator().generate(upstream)

    assert result.has_changes
    assert result.changed_paths == ("numbers.txt", "src/observer.rs")
    for excluded in ("Cargo.lock", "Cargo.toml", "Dockerfile", "xatu/", ".gitignore", ".rej", ".orig"):
        assert excluded not in result.text
    assert "+line seven" in result.text
    assert "new file mode" in result.text
    assert result.stats.files == 2
    assert result.stats.added == 2
    assert result.stats.removed == 1


def test_intent_to_add_entries_are_dropped_after_diffing(upstream: GitRepository) -> None:
    write_files(upstream.root, {"src/observer.rs": "pub struct Observer;\n"})

    _generator().generate(upstream)

    assert upstream.git("diff", "--cached", "--name-only").stdout == ""
    assert upstream.untracked_files() == [Path("src/observer.rs")]


def test_apply_then_generate_is_byte_identical(upstream: GitRepository, make_patch: PatchFactory) -> None:
    text = make_patch(
        {
            "numbers.txt": NUMBERS.replace("line 3\n", "line three\n"),
            "notes.txt": "alpha\nbeta\ngamma\ndelta\n",
            "src/observer.rs": "pub struct Observer;\n",
        }
    )
    patch = PatchFile(path=Path("unstable.patch"), ordinal=0, text=text)

    PatchApplier().apply_all(upstream, [patch])
    result = _generator().generate(upstream)

    assert result.text == text


def test_generation_is_idempotent(upstream: GitRepository, overlay_source: Path) -> None:
    write_files(upstream.root, {"notes.txt": "alpha\nbeta\n"})
    _build_drift(upstream, overlay_source)
    generator = _generator()

    first = generator.generate(upstream)
    second = generator.generate(upstream)

    assert first.text == second.text
    assert first.changed_paths == ("notes.txt",)


def test_layered_extensions_are_left_out_of_the_base_patch(
    upstream: GitRepository, make_patch: PatchFactory
) -> None:
    base = PatchFile(
        path=Path("unstable.patch"),
        ordinal=0,
        text=make_patch({"notes.txt": "alpha\nBETA\ngamma\n"}),
    )
    extension = PatchFile(
        path=Path("unstable-extra.patch"),
        ordinal=1,
        text=make_patch({"numbers.txt": NUMBERS.replace("line 15\n", "line fifteen\n")}),
    )
    PatchApplier().apply_all(upstream, [base, extension])

    result = _generator().generate(upstream, layered=[extension])

    assert result.text == base.text
    assert "line fifteen\n" in (upstream.root / "numbers.txt").read_text(encoding="utf-8")


def test_excluded_path_in_diff_is_inconsistent(upstream: GitRepository) -> None:
    class SkippingGenerator(PatchGenerator):
        def clean(self, repo: GitRepository) -> None:
            return None

    write_files(upstream.root, {"Cargo.lock": "# drifted\n"})

    with pytest.raises(GenerationInconsistency, match="Cargo.lock"):
        SkippingGenerator(EXCLUSIONS).generate(upstream)


def test_changed_paths_reads_diff_headers() -> None:
    text = (
        "diff --git a/old.txt b/new.txt\n"
        "similarity index 90%\n"
        "diff --git a/same.txt b/same.txt\n"
    )

    assert changed_paths(text) == ("old.txt", "new.txt", "same.txt")


def test_staged_and_unstaged_edits_are_both_captured(upstream: GitRepository) -> None:
    write_files(upstream.root, {"notes.txt": "alpha\nBETA\ngamma\n"})
    upstream.git("add", "notes.txt")
    write_files(upstream.root, {"numbers.txt": NUMBERS.replace("line 9\n", "line nine\n")})

    result = _generator().generate(upstream)

    assert result.changed_paths == ("notes.txt", "numbers.txt")
    assert "+BETA" in result.text
    assert "+line nine" in result.text


def test_staged_only_edit_is_captured(upstream: GitRepository) -> None:
    write_files(upstream.root, {"notes.txt": "alpha\nBETA\ngamma\n"})
    upstream.git("add", "notes.txt")

    result = _generator().generate(upstream)

    assert result.has_changes
    assert result.changed_paths == ("notes.txt",)


def test_empty_diff_with_pending_changes_is_inconsistent(
    upstream: GitRepository, monkeypatch: pytest.MonkeyPatch
) -> None:
    write_files(upstream.root, {"notes.txt": "alpha\n"})
    monkeypatch.setattr(upstream, "diff", lambda *paths: "")

    with pytest.raises(GenerationInconsistency, match="diff is empty"):
        _generator().generate(upstream)


def _stacked_extensions(upstream: GitRepository, make_patch: PatchFactory) -> tuple[PatchFile, PatchFile]:
    base = PatchFile(path=Path("unstable.patch"), ordinal=0, text=make_patch({"notes.txt": "alpha\nBETA\ngamma\n"}))
    first = PatchFile(
        path=Path("unstable-a.patch"),
        ordinal=1,
        text=make_patch({"numbers.txt": NUMBERS.replace("line 4\n", "line four\n")}),
    )
    second = PatchFile(
        path=Path("unstable-b.patch"),
        ordinal=2,
        text=make_patch({"numbers.txt": NUMBERS.replace("line 15\n", "line fifteen\n")}),
    )
    PatchApplier().apply_all(upstream, [base, first, second])
    return first, second


def test_extension_that_no_longer_reverses_restores_the_others(
    upstream: GitRepository, make_patch: PatchFactory
) -> None:
    first, second = _stacked_extensions(upstream, make_patch)
    numbers = upstream.root / "numbers.txt"
    numbers.write_text(numbers.read_text(encoding="utf-8").replace("line four\n", "line 4 reworked\n"), encoding="utf-8")
    before = numbers.read_text(encoding="utf-8")

    with pytest.raises(GenerationInconsistency, match="unstable-a.patch"):
        _generator().generate(upstream, layered=[first, second])

    assert numbers.read_text(encoding="utf-8") == before
    assert "line fifteen\n" in before


def test_extension_that_cannot_be_restacked_is_reported(
    upstream: GitRepository, make_patch: PatchFactory
) -> None:
    first, second = _stacked_extensions(upstream, make_patch)

    class RewritingGenerator(PatchGenerator):
        def _generate(self, repo: GitRepository) -> GenerationResult:
            write_files(repo.root, {"numbers.txt": "rewritten\n"})
            return super()._generate(repo)

    with pytest.raises(GenerationInconsistency, match="could not be re-applied"):
        RewritingGenerator(EXCLUSIONS).generate(upstream, layered=[first, second])


def test_non_utf8_content_survives_generate_store_and_apply(upstream: GitRepository, tmp_path: Path) -> None:
    legacy = upstream.root / "legacy.txt"
    legacy.write_bytes(b"caf\xe9\n")
    upstream.git("add", "legacy.txt")
    upstream.git("commit", "-q", "-m", "latin-1 file")
    legacy.write_bytes(b"caf\xe9 au lait\n")

    result = _generator().generate(upstream)
    store = FileSystemPatchStore()
    stored = tmp_path / "patches" / "unstable.patch"
    store.write_text(stored, result.text)
    upstream.discard_changes()
    PatchApplier().apply_all(upstream, [PatchFile(path=stored, ordinal=0, text=store.read_text(stored))])

    assert b"+caf\xe9 au lait" in stored.read_bytes()
    assert result.stats.size == len(stored.read_bytes())
    assert legacy.read_bytes() == b"caf\xe9 au lait\n"
