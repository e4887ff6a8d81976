from __future__ import annotations

from pathlib import Path

from typer.testing import CliRunner

from dpatch.cli import app
from dpatch.tools.vcs import GitRepository

from conftest import TAG, UPDATE_STORE, PatchWorld

runner = CliRunner()


def _invoke(world: PatchWorld, *args: str, config_kwargs: dict | None = None, input: str | None = None):
    config_path = world.write_config(world.root / "config.yaml", **(config_kwargs or {}))
    target = world.root / "desktop"
    return runner.invoke(
        app,
        [str(target), "--config", str(config_path), "--skip-prereqs", *args],
        input=input,
    )


def test_test_mode_reports_all_combinations(world: PatchWorld) -> None:
    result = _invoke(world, "--test", "--yes")

    assert result.exit_code == 0, result.output
    assert "GitHub Desktop Patcher" in result.output
    assert "Testing 7 combinations..." in result.output
    assert "Testing: pins + remove-recent + disable-auto-updates... OK" in result.output
    assert "All combinations passed!" in result.output


def test_test_mode_exits_non_zero_on_conflict(world: PatchWorld) -> None:
    result = _invoke(world, "--test", "--yes", config_kwargs={"feature": ("pins", "clash"), "standalone": ()})

    assert result.exit_code == 1, result.output
    assert "Testing: pins + clash... FAILED" in result.output
    assert "1 combination(s) failed:" in result.output
    assert "  - pins + clash: Merge conflict" in result.output
    repo = GitRepository(world.root / "desktop")
    assert repo.head() == repo.resolve(TAG)
    assert repo.is_clean()


def test_named_patches_apply_without_prompting(world: PatchWorld) -> None:
    result = _invoke(world, "--patch", "disable-auto-updates", "--patch", "pins", "--yes", "--no-build")

    assert result.exit_code == 0, result.output
    assert "Selected: pins, disable-auto-updates" in result.output
    assert "Repository cloned successfully" in result.output
    assert "Patches applied successfully!" in result.output
    assert "autoUpdate = false" in (world.root / "desktop" / UPDATE_STORE).read_text(encoding="utf-8")


def test_overlapping_selection_reports_merge(world: PatchWorld) -> None:
    result = _invoke(world, "-p", "pins", "-p", "remove-recent", "--yes", "--no-build")

    assert result.exit_code == 0, result.output
    assert "using three-way merge" in result.output
    assert "✓ remove-recent.patch" in result.output


def test_interactive_selection_and_build_prompt(world: PatchWorld) -> None:
    result = _invoke(world, input="1\n\nn\n")

    assert result.exit_code == 0, result.output
    assert "Select patches to apply:" in result.output
    assert "✓ pins.patch" in result.output
    assert "Run build now?" in result.output


def test_empty_interactive_selection_exits_cleanly(world: PatchWorld) -> None:
    result = _invoke(world, input="\n")

    assert result.exit_code == 0, result.output
    assert "No patches selected. Exiting." in result.output


def test_unknown_patch_is_rejected(world: PatchWorld) -> None:
    result = _invoke(world, "--patch", "ghost", "--yes")

    assert result.exit_code == 2
    assert "Unknown patch(es): ghost" in result.output


def test_apply_failure_prints_recovery_hint(world: PatchWorld) -> None:
    result = _invoke(
        world,
        "--patch",
        "broken",
        "--yes",
        "--no-build",
        config_kwargs={"feature": (), "standalone": ("broken",)},
    )

    assert result.exit_code == 1, result.output
    assert "Failed to apply broken" in result.output
    assert "Repository may be in inconsistent state." in result.output
    assert "git reset --hard && git clean -fd" in result.output


def test_missing_config_file_is_an_error(tmp_path: Path) -> None:
    result = runner.invoke(app, [str(tmp_path / "desktop"), "--config", str(tmp_path / "nope.yaml")])

    assert result.exit_code == 1
    assert "nope.yaml" in result.output


def test_test_mode_refuses_missing_patch_files_before_cloning(world: PatchWorld) -> None:
    result = _invoke(world, "--test", "--yes", config_kwargs={"standalone": ("ghost",)})

    assert result.exit_code == 1, result.output
    assert "Patch file not found" in result.output and "ghost.patch" in result.output
    assert "patches.dir" in result.output
    assert not (world.root / "desktop").exists()


def test_selected_patch_without_file_is_refused(world: PatchWorld) -> None:
    result = _invoke(
        world,
        "--patch",
        "pins",
        "--patch",
        "ghost",
        "--yes",
        "--no-build",
        config_kwargs={"standalone": ("ghost",)},
    )

    assert result.exit_code == 1, result.output
    missing = [line for line in result.output.splitlines() if "Patch file not found" in line]
    assert len(missing) == 1 and missing[0].endswith("ghost.patch")
    assert "Applying patches" not in result.output
