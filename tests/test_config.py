from __future__ import annotations

import textwrap
from pathlib import Path, PurePosixPath

import pytest
from pydantic import ValidationError

from patchstack.config import DEFAULT_CONFIG_NAME, PatchstackConfig, load_config
from patchstack.errors import ConfigError
from patchstack.models import TargetIdentity


def _write_config(directory: Path, body: str) -> Path:
    path = directory / DEFAULT_CONFIG_NAME
    path.write_text(textwrap.dedent(body).lstrip(), encoding="utf-8")
    return path


def test_defaults_apply_without_a_config_file(tmp_path: Path) -> None:
    config = load_config(search_dir=tmp_path)

    assert config.base_dir == tmp_path.resolve()
    assert config.default_target() == TargetIdentity("sigp", "lighthouse", "unstable")
    assert config.patches_dir == tmp_path.resolve() / "patches"
    assert config.working_tree_path == tmp_path.resolve() / "lighthouse"
    assert config.build.command == ["cargo", "build", "--release"]
    assert config.remote_url(config.default_target()) == "https://github.com/sigp/lighthouse.git"


def test_default_exclusions_cover_overlay_lockfile_and_manifests(tmp_path: Path) -> None:
    exclusions = PatchstackConfig(base_dir=tmp_path).exclusion_set()

    assert exclusions.covers("xatu/src/lib.rs")
    assert exclusions.covers("Dockerfile")
    assert exclusions.covers("Cargo.lock")
    assert exclusions.covers("beacon_node/network/Cargo.toml")
    assert exclusions.covers(".gitignore")
    assert not exclusions.covers("beacon_node/network/src/lib.rs")
    assert not exclusions.covers("xatu2/readme.md")


def test_relative_paths_resolve_against_config_directory(tmp_path: Path) -> None:
    (tmp_path / "overlays" / "xatu").mkdir(parents=True)
    path = _write_config(
        tmp_path,
        """
        patches_root: stack
        working_tree: checkout/upstream
        default_identity:
          organization: acme
          repository: widget
          reference: main
        overlays:
          - source: overlays/xatu
            destination: xatu
          - source: ci/Dockerfile
            destination: Dockerfile
            optional: true
        lockfile: null
        manifest_edits: []
        build:
          command: ["make", "all"]
          env:
            PROFILE: release
        """,
    )

    config = load_config(path)

    assert config.patches_dir == (tmp_path / "stack").resolve()
    assert config.working_tree_path == (tmp_path / "checkout" / "upstream").resolve()
    assert config.default_target() == TargetIdentity("acme", "widget", "main")
    assert len(config.overlay_specs()) == 1
    assert config.overlay_specs()[0].source == (tmp_path / "overlays" / "xatu").resolve()
    assert config.overlay_specs()[0].destination == PurePosixPath("xatu")
    assert config.exclusion_set().lockfile is None
    assert config.exclusion_set().covers("Dockerfile")
    assert config.build.env == {"PROFILE": "release"}


def test_unknown_keys_are_rejected(tmp_path: Path) -> None:
    path = _write_config(tmp_path, "patches_root: patches\nunexpected: true\n")

    with pytest.raises(ConfigError, match="Invalid configuration"):
        load_config(path)


@pytest.mark.parametrize(
    "body",
    [
        "overlays:\n  - source: a\n    destination: ../escape\n",
        "overlays:\n  - source: a\n    destination: /abs\n",
        "lockfile: .git/index\n",
        "manifest_edits:\n  - path: Cargo.toml\n    marker: x\n    text: y\n    position: before\n",
    ],
)
def test_invalid_values_are_rejected(tmp_path: Path, body: str) -> None:
    path = _write_config(tmp_path, body)

    with pytest.raises(ConfigError):
        load_config(path)


def test_malformed_yaml_and_missing_file(tmp_path: Path) -> None:
    path = _write_config(tmp_path, "overlays: [unclosed\n")

    with pytest.raises(ConfigError, match="Failed to parse"):
        load_config(path)
    with pytest.raises(ConfigError, match="not found"):
        load_config(tmp_path / "nowhere.yaml")


def test_configuration_is_immutable(tmp_path: Path) -> None:
    config = PatchstackConfig(base_dir=tmp_path)

    with pytest.raises(ValidationError):
        config.patches_root = "elsewhere"  # type: ignore[misc]
