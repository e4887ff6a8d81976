"""CLI entry point: provision the desktop checkout, pick patches, apply or test them."""

from __future__ import annotations

import logging
import subprocess
from pathlib import Path
from typing import List, Optional, Sequence, Tuple

import typer

from .catalog import FeaturePatch, PatchCatalog, PatchSet, StandalonePatch
from .combinations import CombinationTester, TrialResult, subset_count
from .config import DEFAULT_CONFIG_NAME, PatcherConfig, load_config
from .errors import ConfigError, MergeConflict, PatcherError, ProvisioningError
from .pipeline import ApplyOutcome, apply_patch_set
from .prereqs import check_prerequisites
from .provision import ProvisionResult, ensure_checkout
from .selection import prompt_selection, selection_from_names

APP_HELP = (
    "Apply curated patches to a pinned GitHub Desktop release. "
    "Patch files are read from patches.dir in config.yaml."
)
RULE = "=" * 50

app = typer.Typer(help=APP_HELP, add_completion=False)


def _step(step: int, total: int, message: str) -> None:
    typer.secho(f"\n[{step}/{total}] {message}", fg=typer.colors.CYAN)


def _ok(message: str) -> None:
    typer.secho(f"  ✓ {message}", fg=typer.colors.GREEN)


def _fail(message: str) -> None:
    typer.secho(f"  ✗ {message}", fg=typer.colors.RED)


def _warn(message: str) -> None:
    typer.secho(f"  ! {message}", fg=typer.colors.YELLOW)


def _configure_logging(config: PatcherConfig, verbose: bool) -> None:
    level_name = "DEBUG" if verbose else config.logging.level.upper()
    level = getattr(logging, level_name, logging.WARNING)
    logging.basicConfig(level=level, format="%(levelname)s %(name)s: %(message)s")


def _load(config_option: Optional[str]) -> PatcherConfig:
    path = Path(config_option) if config_option else Path(DEFAULT_CONFIG_NAME)
    try:
        return load_config(path, required=config_option is not None)
    except ConfigError as error:
        typer.echo(str(error))
        raise typer.Exit(code=1) from error


def _check_prerequisites(config: PatcherConfig, *, interactive: bool, assume_yes: bool) -> None:
    report = check_prerequisites(config.prerequisites)
    for check in report.checks:
        if check.found:
            _ok(f"{check.name} {check.version or ''}".rstrip())
        elif not check.optional:
            _fail(f"{check.name} not found")
    for warning in report.warnings:
        _warn(warning)
    for note in report.notes:
        _ok(note)

    if not report.passed:
        typer.echo("\nMissing required dependencies. Please install them and try again.")
        raise typer.Exit(code=1)
    if report.warnings and interactive and not assume_yes:
        if not typer.confirm("\nSome optional dependencies are missing. Continue anyway?", default=True):
            raise typer.Exit(code=0)


def _resolve_target(path: Optional[Path], config: PatcherConfig, *, assume_yes: bool) -> Path:
    if path is not None:
        return path.expanduser().resolve()
    default = config.default_checkout
    if assume_yes:
        return default
    answer = typer.prompt(f"  Desktop repo location [{default}]", default="", show_default=False)
    return Path(answer).expanduser().resolve() if answer.strip() else default


def _provision(target: Path, config: PatcherConfig, *, assume_yes: bool) -> ProvisionResult:
    def confirm(question: str) -> bool:
        _warn("Repository has uncommitted changes")
        return assume_yes or typer.confirm(question, default=False)

    if not (target / ".git").exists():
        typer.echo(f"  Cloning {config.upstream.url} (this may take a few minutes)...")
    try:
        result = ensure_checkout(target, config, confirm=confirm)
    except ProvisioningError as error:
        _fail(str(error))
        raise typer.Exit(code=1) from error

    if result.cloned:
        _ok("Repository cloned successfully")
    else:
        _ok(f"Found existing desktop repository at {result.repo.root}")
    if result.discarded_changes:
        _ok("Repository reset to clean state")
    if result.checked_out:
        _ok(f"Checked out {config.upstream.tag}")
    elif not result.cloned:
        _ok(f"Already on {config.upstream.tag}")
    if result.swept_branches:
        _warn(f"Removed {len(result.swept_branches)} leftover integration branch(es)")
    return result


def _require_patch_files(
    catalog: PatchCatalog,
    patches: Optional[Sequence[FeaturePatch | StandalonePatch]] = None,
) -> None:
    missing = catalog.missing_files(patches)
    if not missing:
        return
    for path in missing:
        _fail(f"Patch file not found: {path}")
    typer.echo(f"\nPoint patches.dir in {DEFAULT_CONFIG_NAME} (or --config) at the directory holding these files.")
    raise typer.Exit(code=1)


def _run_combination_tests(result: ProvisionResult, catalog: PatchCatalog, config: PatcherConfig) -> bool:
    typer.secho("\nTesting all patch combinations...", fg=typer.colors.CYAN)
    typer.echo(f"Testing {subset_count(len(catalog))} combinations...\n")

    def on_start(patch_set: PatchSet) -> None:
        typer.echo(f"  Testing: {patch_set.label()}... ", nl=False)

    def on_result(trial: TrialResult) -> None:
        if trial.success:
            typer.secho("OK", fg=typer.colors.GREEN)
        else:
            typer.secho("FAILED", fg=typer.colors.RED)

    tester = CombinationTester(result.repo, catalog, config)
    try:
        report = tester.run(on_start=on_start, on_result=on_result)
    except ProvisioningError as error:
        typer.echo("")
        _fail(str(error))
        raise typer.Exit(code=1) from error

    typer.echo("\n" + RULE)
    if report.passed:
        typer.secho("All combinations passed!", fg=typer.colors.GREEN)
        return True
    typer.secho(f"{len(report.failures)} combination(s) failed:", fg=typer.colors.RED)
    for failure in report.failures:
        suffix = f": {failure.error}" if failure.error else ""
        typer.echo(f"  - {failure.label}{suffix}")
    return False


def _apply_selection(
    result: ProvisionResult,
    catalog: PatchCatalog,
    config: PatcherConfig,
    selection: PatchSet,
) -> ApplyOutcome:
    def on_progress(stage: str, names: Tuple[str, ...]) -> None:
        if stage == "unparsable":
            for name in names:
                _warn(f"{name}: could not read file list; overlap with other features was not checked")
        elif stage == "merging":
            typer.echo("\n  Feature patches modify overlapping files, using three-way merge...")
        elif stage in {"merged", "applied"}:
            for name in names:
                _ok(catalog.get(name).file)

    try:
        outcome = apply_patch_set(result.repo, catalog, selection, config, on_progress=on_progress)
    except ProvisioningError as error:
        _fail(str(error))
        raise typer.Exit(code=1) from error
    except PatcherError as error:
        _fail(str(error))
        if isinstance(error, MergeConflict):
            typer.echo("  Run with --test to verify which combinations compose.")
        typer.echo("\nPatch application failed. Repository may be in inconsistent state.")
        typer.echo("Run: git reset --hard && git clean -fd")
        raise typer.Exit(code=1) from error

    if outcome.merge is not None:
        for failure in outcome.merge.cleanup_failures:
            _warn(str(failure))
    return outcome


def _build_guidance(target: Path, config: PatcherConfig) -> str:
    return f"""
  Patches applied successfully! Next steps:

  1. Install dependencies:
     cd "{target}"
     yarn

  2. Build the app:
     yarn build:prod

  3. Package (optional):
     yarn package

  The built app will be in {config.build.output}/
"""


def _run_build(target: Path, config: PatcherConfig) -> None:
    for command in config.build.commands:
        label = " ".join(command)
        typer.echo(f"\nRunning {label}...")
        try:
            subprocess.run(command, cwd=target, check=True)
        except (OSError, subprocess.CalledProcessError) as error:
            _fail(f"Build failed: {error}")
            raise typer.Exit(code=1) from error
        _ok(f"{label} complete")


@app.command()
def main(
    path: Optional[Path] = typer.Argument(
        None,
        help="Location of the desktop checkout (cloned when missing).",
    ),
    test: bool = typer.Option(
        False,
        "--test",
        help="Apply every non-empty patch combination from a clean baseline and report failures.",
    ),
    config: Optional[str] = typer.Option(
        None,
        "--config",
        "-c",
        help=f"Path to the patcher configuration file (defaults to ./{DEFAULT_CONFIG_NAME} when present).",
    ),
    patch: List[str] = typer.Option(
        None,
        "--patch",
        "-p",
        help="Patch to apply without prompting (repeatable).",
    ),
    yes: bool = typer.Option(
        False,
        "--yes",
        "-y",
        help="Answer prompts with their non-destructive defaults and approve resetting a dirty checkout.",
    ),
    build: Optional[bool] = typer.Option(
        None,
        "--build/--no-build",
        help="Run the build commands after patching (prompts when omitted).",
    ),
    skip_prereqs: bool = typer.Option(
        False,
        "--skip-prereqs",
        help="Do not check for node, git, yarn and python.",
    ),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging."),
) -> None:
    """Patch a GitHub Desktop checkout, or verify every patch combination with --test."""
    config_data = _load(config)
    _configure_logging(config_data, verbose)
    try:
        catalog = PatchCatalog.from_config(config_data)
    except ConfigError as error:
        typer.echo(str(error))
        raise typer.Exit(code=1) from error

    typer.echo("\n" + RULE)
    typer.echo("  GitHub Desktop Patcher")
    typer.echo(RULE)

    if test:
        _require_patch_files(catalog)

    total = 3 if test else 5

    _step(1, total, "Checking prerequisites...")
    if skip_prereqs:
        _warn("Skipped")
    else:
        _check_prerequisites(config_data, interactive=not test, assume_yes=yes)

    _step(2, total, "Setting up repository...")
    target = _resolve_target(path, config_data, assume_yes=yes)
    provisioned = _provision(target, config_data, assume_yes=yes)

    if test:
        _step(3, total, "Testing patch combinations...")
        passed = _run_combination_tests(provisioned, catalog, config_data)
        raise typer.Exit(code=0 if passed else 1)

    _step(3, total, "Select features")
    if patch:
        try:
            selection = selection_from_names(patch, catalog.patches)
        except KeyError as error:
            raise typer.BadParameter(str(error.args[0]), param_hint="--patch") from error
        typer.echo(f"  Selected: {selection.label(', ')}")
    else:
        selection = prompt_selection(catalog.patches)

    if not selection:
        typer.echo("\nNo patches selected. Exiting.")
        raise typer.Exit(code=0)

    _require_patch_files(catalog, selection)

    _step(4, total, "Applying patches...")
    _apply_selection(provisioned, catalog, config_data, selection)

    _step(5, total, "Ready to build!")
    typer.echo(_build_guidance(provisioned.repo.root, config_data))

    run_build = build
    if run_build is None:
        run_build = False if yes else typer.confirm("Run build now?", default=False)
    if run_build:
        _run_build(provisioned.repo.root, config_data)


if __name__ == "__main__":
    app()
