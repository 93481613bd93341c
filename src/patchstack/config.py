"""Configuration loading for patchstack.

Configuration is read once from ``patchstack.yaml`` and validated into frozen
Pydantic models.  The resulting :class:`PatchstackConfig` is passed explicitly
to every component; nothing reads configuration from module globals.
"""

from __future__ import annotations

from pathlib import Path, PurePosixPath
from typing import Any, Dict, List, Literal, Mapping

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator, model_validator

from .errors import ConfigError
from .models import ExclusionSet, OverlaySpec, TargetIdentity

DEFAULT_CONFIG_NAME = "patchstack.yaml"


def _relative_posix(value: str, *, field_name: str) -> str:
    candidate = PurePosixPath(value.strip())
    if not value.strip():
        raise ValueError(f"{field_name} must not be empty")
    if candidate.is_absolute():
        raise ValueError(f"{field_name} must be relative to the working tree: {value}")
    if ".." in candidate.parts:
        raise ValueError(f"{field_name} may not escape the working tree: {value}")
    if candidate.parts and candidate.parts[0] == ".git":
        raise ValueError(f"{field_name} may not target the .git directory: {value}")
    return candidate.as_posix()


class ConfigModel(BaseModel):
    """Base model: unknown keys are rejected and instances are immutable."""

    model_config = ConfigDict(extra="forbid", frozen=True)


class IdentityConfig(ConfigModel):
    organization: str
    repository: str
    reference: str

    def to_identity(self) -> TargetIdentity:
        return TargetIdentity(
            organization=self.organization,
            repository=self.repository,
            reference=self.reference,
        )


class OverlayConfig(ConfigModel):
    """Overlay source (relative to the config directory) and its destination."""

    source: str
    destination: str
    optional: bool = False

    @field_validator("destination")
    @classmethod
    def _check_destination(cls, value: str) -> str:
        return _relative_posix(value, field_name="overlay destination")


class ManifestEditConfig(ConfigModel):
    """Idempotent text insertion performed by the dependency injector.

    ``marker`` is a regular expression; when it already matches the file the
    edit is skipped.  ``anchor`` is a regular expression matched per line and
    is required for ``before``/``after`` positions.
    """

    path: str
    marker: str
    text: str
    position: Literal["before", "after", "append"] = "before"
    anchor: str | None = None

    @field_validator("path")
    @classmethod
    def _check_path(cls, value: str) -> str:
        return _relative_posix(value, field_name="manifest path")

    @model_validator(mode="after")
    def _check_anchor(self) -> "ManifestEditConfig":
        if self.position != "append" and not self.anchor:
            raise ValueError(f"Manifest edit for {self.path} needs an anchor for position '{self.position}'")
        return self


class WorkflowConfig(ConfigModel):
    directory: str = ".github/workflows"
    pattern: str = "*.yml"
    disable: bool = True


class BuildConfig(ConfigModel):
    command: List[str] = Field(default_factory=lambda: ["cargo", "build", "--release"])
    env: Dict[str, str] = Field(default_factory=dict)


def _default_manifest_edits() -> List[ManifestEditConfig]:
    return [
        ManifestEditConfig(
            path="beacon_node/network/Cargo.toml",
            marker=r"xatu = \{ path",
            anchor=r"^\[dev-dependencies\]",
            position="before",
            text='# Xatu dependency\nxatu = { path = "../../xatu" }\n\n',
        ),
        ManifestEditConfig(
            path="beacon_node/Cargo.toml",
            marker=r"disable-backfill",
            anchor=r"^testing = \[\]",
            position="after",
            text='disable-backfill = ["network/disable-backfill"]\n',
        ),
        ManifestEditConfig(
            path="beacon_node/Cargo.toml",
            marker=r"^network = \{ workspace = true \}",
            anchor=r"^\[dependencies\]",
            position="after",
            text="network = { workspace = true }\n",
        ),
        ManifestEditConfig(
            path="lighthouse/Cargo.toml",
            marker=r"disable-backfill",
            anchor=r'^beacon-node-redb = \["store/redb"\]',
            position="after",
            text=(
                "# Disable historical block backfilling during sync.\n"
                'disable-backfill = ["beacon_node/disable-backfill"]\n'
            ),
        ),
        ManifestEditConfig(
            path=".gitignore",
            marker=r"/xatu/src/libxatu\.so",
            position="append",
            text="\n# Xatu build artifacts\n/xatu/src/libxatu.so\n/xatu/src/libxatu.h\n",
        ),
    ]


class PatchstackConfig(ConfigModel):
    """Process-wide configuration, constructed once at start-up."""

    base_dir: Path = Field(default_factory=Path.cwd)
    patches_root: str = "patches"
    working_tree: str = "lighthouse"
    remote_url_template: str = "https://github.com/{organization}/{repository}.git"
    default_identity: IdentityConfig = Field(
        default_factory=lambda: IdentityConfig(
            organization="sigp",
            repository="lighthouse",
            reference="unstable",
        )
    )
    overlays: List[OverlayConfig] = Field(
        default_factory=lambda: [
            OverlayConfig(source="overlay/xatu", destination="xatu"),
            OverlayConfig(source="ci/Dockerfile.ethpandaops", destination="Dockerfile", optional=True),
        ]
    )
    lockfile: str | None = "Cargo.lock"
    script_managed: List[str] = Field(default_factory=list)
    manifest_edits: List[ManifestEditConfig] = Field(default_factory=_default_manifest_edits)
    workflows: WorkflowConfig = Field(default_factory=WorkflowConfig)
    build: BuildConfig = Field(default_factory=BuildConfig)

    @field_validator("lockfile")
    @classmethod
    def _check_lockfile(cls, value: str | None) -> str | None:
        if value is None:
            return None
        return _relative_posix(value, field_name="lockfile")

    @field_validator("script_managed")
    @classmethod
    def _check_script_managed(cls, value: List[str]) -> List[str]:
        return [_relative_posix(entry, field_name="script-managed path") for entry in value]

    # ------------------------------------------------------------ derived
    def resolve_path(self, value: str | Path) -> Path:
        """Resolve ``value`` against the directory holding the config file."""

        path = Path(value).expanduser()
        if not path.is_absolute():
            path = self.base_dir / path
        return path.resolve()

    @property
    def patches_dir(self) -> Path:
        return self.resolve_path(self.patches_root)

    @property
    def working_tree_path(self) -> Path:
        return self.resolve_path(self.working_tree)

    def default_target(self) -> TargetIdentity:
        return self.default_identity.to_identity()

    def remote_url(self, identity: TargetIdentity) -> str:
        return self.remote_url_template.format(
            organization=identity.organization,
            repository=identity.repository,
        )

    def overlay_specs(self) -> tuple[OverlaySpec, ...]:
        """Return overlay specs whose sources exist, plus required ones regardless."""

        specs: list[OverlaySpec] = []
        for overlay in self.overlays:
            source = self.resolve_path(overlay.source)
            if overlay.optional and not source.exists():
                continue
            specs.append(OverlaySpec(source=source, destination=PurePosixPath(overlay.destination)))
        return tuple(specs)

    def script_managed_paths(self) -> tuple[PurePosixPath, ...]:
        entries = [*self.script_managed, *(edit.path for edit in self.manifest_edits)]
        return tuple(PurePosixPath(entry) for entry in dict.fromkeys(entries))

    def exclusion_set(self) -> ExclusionSet:
        # Optional overlays stay excluded even when their source is absent.
        return ExclusionSet(
            overlay_destinations=tuple(
                PurePosixPath(overlay.destination) for overlay in self.overlays
            ),
            lockfile=PurePosixPath(self.lockfile) if self.lockfile else None,
            script_managed=self.script_managed_paths(),
        )


def _read_yaml(config_path: Path) -> Mapping[str, Any]:
    try:
        with config_path.open("r", encoding="utf-8") as handle:
            data = yaml.safe_load(handle) or {}
    except yaml.YAMLError as error:
        raise ConfigError(f"Failed to parse config {config_path}: {error}") from error
    except OSError as error:
        raise ConfigError(f"Unable to read config {config_path}: {error}") from error
    if not isinstance(data, Mapping):
        raise ConfigError(f"Configuration must be a mapping at the top level: {config_path}")
    return data


def load_config(config_path: Path | str | None = None, *, search_dir: Path | None = None) -> PatchstackConfig:
    """Load configuration from ``config_path``.

    When no path is given, ``patchstack.yaml`` in ``search_dir`` (default: the
    current directory) is used if present; otherwise the built-in defaults
    apply with the search directory as base.
    """

    if config_path is None:
        directory = (search_dir or Path.cwd()).resolve()
        candidate = directory / DEFAULT_CONFIG_NAME
        if not candidate.exists():
            return PatchstackConfig(base_dir=directory)
        path = candidate
    else:
        path = Path(config_path).expanduser().resolve()
        if not path.exists():
            raise ConfigError(f"Config file not found: {path}")

    data = dict(_read_yaml(path))
    data.setdefault("base_dir", path.parent)
    base_dir = Path(data["base_dir"])
    if not base_dir.is_absolute():
        data["base_dir"] = (path.parent / base_dir).resolve()

    try:
        return PatchstackConfig.model_validate(data)
    except ValidationError as error:
        raise ConfigError(f"Invalid configuration in {path}: {error}") from error


__all__ = [
    "BuildConfig",
    "DEFAULT_CONFIG_NAME",
    "IdentityConfig",
    "ManifestEditConfig",
    "OverlayConfig",
    "PatchstackConfig",
    "WorkflowConfig",
    "load_config",
]
