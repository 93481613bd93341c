"""CLI commands for building, patching and saving the upstream working tree."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import List, Optional

import typer

from .config import DEFAULT_CONFIG_NAME, PatchstackConfig, load_config
from .errors import ConfigError, ResolutionError, StructuralPatchError
from .models import BuildOutcome, BuildReport, TargetIdentity
from .orchestrator import BuildOrchestrator
from .patches.resolver import FileSystemPatchStore, PatchResolver
from .patches.validator import validate_text

APP_HELP = "Apply a maintained patch stack to an upstream checkout, build it, and save the patch back."

app = typer.Typer(help=APP_HELP)

_CONFIG_HELP = f"Path to the configuration file (default: ./{DEFAULT_CONFIG_NAME} when present)."
_REPO_HELP = "Upstream repository as org/repo (default: the configured default identity)."
_BRANCH_HELP = "Branch, tag or commit of the upstream repository."


@app.callback()
def main(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging."),
) -> None:
    """Configure logging once for every command."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(levelname)s %(name)s: %(message)s",
    )


def _load(config: Optional[str]) -> PatchstackConfig:
    try:
        return load_config(Path(config) if config else None)
    except ConfigError as error:
        typer.echo(f"Error: {error}", err=True)
        raise typer.Exit(code=BuildOutcome.FAILURE.exit_code) from error


def _identity(settings: PatchstackConfig, repo: Optional[str], branch: Optional[str]) -> TargetIdentity:
    default = settings.default_target()
    try:
        return TargetIdentity.parse(repo or default.repo_spec, branch or default.reference)
    except ValueError as error:
        raise typer.BadParameter(str(error)) from error


def _echo_report(report: BuildReport) -> None:
    if report.patch_set is not None:
        for patch in report.patch_set:
            typer.echo(f"Patch: {patch.path}")
    if report.apply_result is not None:
        for patch, strategy in report.apply_result.strategies:
            typer.echo(f"  {patch.name}: {strategy}")
    for note in report.notes:
        typer.echo(note)
    generation = report.generation
    if generation is not None and generation.has_changes:
        stats = generation.stats
        typer.echo(
            f"Patch statistics: {stats.lines} lines, +{stats.added}/-{stats.removed}, "
            f"{stats.size} bytes, {stats.files} file(s)"
        )
    if report.conflict is not None:
        typer.echo(report.conflict.format(), err=True)
    if report.outcome.ok:
        typer.echo(report.message)
    else:
        typer.echo(f"Error ({report.outcome.value}): {report.message}", err=True)


def _finish(report: BuildReport) -> None:
    _echo_report(report)
    if report.exit_code != 0:
        raise typer.Exit(code=report.exit_code)


@app.command()
def build(
    repo: Optional[str] = typer.Option(None, "--repo", "-r", help=_REPO_HELP),
    branch: Optional[str] = typer.Option(None, "--branch", "-b", help=_BRANCH_HELP),
    commit: Optional[str] = typer.Option(None, "--commit", help="Pin the checkout to a specific commit SHA."),
    ci: bool = typer.Option(
        False,
        "--ci/--no-ci",
        help="Non-interactive mode: discard local changes in the working tree automatically.",
    ),
    skip_build: bool = typer.Option(False, "--skip-build", help="Skip the build step."),
    config: Optional[str] = typer.Option(None, "--config", "-c", help=_CONFIG_HELP),
) -> None:
    """Clone or update upstream, apply patches and overlay, build, and save the patch."""
    settings = _load(config)
    identity = _identity(settings, repo, branch)
    typer.echo(f"Building {identity}" + (f" at commit {commit}" if commit else ""))
    report = BuildOrchestrator(settings).run(
        identity,
        allow_discard=ci,
        skip_build=skip_build,
        commit=commit,
    )
    _finish(report)


@app.command()
def apply(
    repo: Optional[str] = typer.Option(None, "--repo", "-r", help=_REPO_HELP),
    branch: Optional[str] = typer.Option(None, "--branch", "-b", help=_BRANCH_HELP),
    config: Optional[str] = typer.Option(None, "--config", "-c", help=_CONFIG_HELP),
) -> None:
    """Apply the patch set and overlay to the existing working tree."""
    settings = _load(config)
    identity = _identity(settings, repo, branch)
    _finish(BuildOrchestrator(settings).apply(identity))


@app.command()
def save(
    repo: Optional[str] = typer.Option(None, "--repo", "-r", help=_REPO_HELP),
    branch: Optional[str] = typer.Option(None, "--branch", "-b", help=_BRANCH_HELP),
    config: Optional[str] = typer.Option(None, "--config", "-c", help=_CONFIG_HELP),
) -> None:
    """Regenerate the base patch from the working tree's modifications."""
    settings = _load(config)
    identity = _identity(settings, repo, branch)
    _finish(BuildOrchestrator(settings).save(identity))


@app.command()
def validate(
    patches: List[Path] = typer.Argument(..., help="Patch files to check.", exists=True, dir_okay=False),
) -> None:
    """Check patch files for structural defects without applying them."""
    failures = 0
    store = FileSystemPatchStore()
    for path in patches:
        text = store.read_text(path)
        try:
            summary = validate_text(text, path=path)
        except StructuralPatchError as error:
            failures += 1
            typer.echo(f"INVALID {error}", err=True)
            continue
        typer.echo(f"OK {path} ({summary.files} file(s), {summary.hunks} hunk(s))")
    if failures:
        raise typer.Exit(code=BuildOutcome.MALFORMED_PATCH.exit_code)


@app.command()
def resolve(
    repo: Optional[str] = typer.Option(None, "--repo", "-r", help=_REPO_HELP),
    branch: Optional[str] = typer.Option(None, "--branch", "-b", help=_BRANCH_HELP),
    config: Optional[str] = typer.Option(None, "--config", "-c", help=_CONFIG_HELP),
) -> None:
    """Show which patch files would be applied for an identity."""
    settings = _load(config)
    identity = _identity(settings, repo, branch)
    resolver = PatchResolver(settings.patches_dir, settings.default_target())
    try:
        patch_set = resolver.resolve(identity)
    except ResolutionError as error:
        typer.echo(f"Error: {error}", err=True)
        raise typer.Exit(code=BuildOutcome.MISSING_PATCH.exit_code) from error
    if patch_set.fallback:
        typer.echo(f"No patch for {identity}; using default {patch_set.resolved}")
    for patch in patch_set:
        typer.echo(patch.path.as_posix())


if __name__ == "__main__":
    app()
