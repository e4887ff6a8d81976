from __future__ import annotations

from pathlib import Path

import pytest

from dpatch.errors import ProvisioningError
from dpatch.provision import DIRTY_PROMPT, ensure_checkout, integration_branches, reset_to_baseline

from conftest import APP_STATE, TAG, PatchWorld, run_git


def test_clones_missing_checkout_at_tag(world: PatchWorld) -> None:
    config = world.config()

    result = ensure_checkout(world.root / "desktop", config)

    assert result.cloned
    assert result.repo.exact_tag() == TAG
    assert not (result.repo.root / "NEWS.md").exists()
    assert result.repo.is_clean()


def test_reuses_clean_checkout(world: PatchWorld) -> None:
    config = world.config()
    ensure_checkout(world.root / "desktop", config)

    again = ensure_checkout(world.root / "desktop", config)

    assert not again.cloned
    assert not again.checked_out
    assert not again.discarded_changes


def test_dirty_checkout_requires_confirmation(world: PatchWorld) -> None:
    config = world.config()
    repo = ensure_checkout(world.root / "desktop", config).repo
    (repo.root / APP_STATE).write_text("local edits\n", encoding="utf-8")

    asked: list[str] = []

    def decline(question: str) -> bool:
        asked.append(question)
        return False

    with pytest.raises(ProvisioningError, match="dirty"):
        ensure_checkout(repo.root, config, confirm=decline)
    assert asked == [DIRTY_PROMPT]
    with pytest.raises(ProvisioningError, match="dirty"):
        ensure_checkout(repo.root, config)

    result = ensure_checkout(repo.root, config, confirm=lambda _question: True)
    assert result.discarded_changes
    assert result.repo.is_clean()


def test_moves_checkout_back_to_tag_and_sweeps_branches(world: PatchWorld) -> None:
    config = world.config()
    repo = ensure_checkout(world.root / "desktop", config).repo
    repo.create_branch(f"{config.git.branch_prefix}leftover", TAG)
    (repo.root / "work.txt").write_text("wip\n", encoding="utf-8")
    repo.commit_all("wip")

    result = ensure_checkout(repo.root, config)

    assert result.checked_out
    assert result.swept_branches == (f"{config.git.branch_prefix}leftover",)
    assert repo.exact_tag() == TAG


def test_sweeps_checked_out_branch_still_at_tag(world: PatchWorld) -> None:
    config = world.config()
    repo = ensure_checkout(world.root / "desktop", config).repo
    leftover = f"{config.git.branch_prefix}pins-1-0"
    repo.create_branch(leftover, TAG)
    assert repo.current_branch() == leftover

    result = ensure_checkout(repo.root, config)

    assert result.checked_out
    assert result.swept_branches == (leftover,)
    assert repo.current_branch() is None
    assert repo.head() == repo.resolve(TAG)
    assert integration_branches(repo, config) == []


def test_refuses_checkout_of_another_remote(world: PatchWorld, tmp_path: Path) -> None:
    other = tmp_path / "other"
    other.mkdir()
    run_git(other, "init")
    run_git(other, "remote", "add", "origin", "https://example.com/someone/else.git")

    with pytest.raises(ProvisioningError, match="expected a checkout"):
        ensure_checkout(other, world.config())


def test_refuses_non_empty_directory(world: PatchWorld, tmp_path: Path) -> None:
    target = tmp_path / "occupied"
    target.mkdir()
    (target / "keep.txt").write_text("mine\n", encoding="utf-8")

    with pytest.raises(ProvisioningError, match="not a git checkout"):
        ensure_checkout(target, world.config())


def test_clone_failure_is_provisioning_error(world: PatchWorld) -> None:
    config = world.config(upstream={"url": (world.root / "nowhere").as_posix(), "tag": TAG, "shallow": False})

    with pytest.raises(ProvisioningError, match="Failed to clone"):
        ensure_checkout(world.root / "desktop", config)


def test_reset_is_idempotent_from_any_state(world: PatchWorld) -> None:
    config = world.config()
    repo = ensure_checkout(world.root / "desktop", config).repo
    baseline = repo.resolve(TAG)
    prefix = config.git.branch_prefix

    # Leftovers of an interrupted merge: committed branch, untracked files, conflict state.
    repo.create_branch(f"{prefix}a", TAG)
    (repo.root / APP_STATE).write_text("a\n", encoding="utf-8")
    repo.commit_all("a")
    repo.create_branch(f"{prefix}b", TAG)
    (repo.root / APP_STATE).write_text("b\n", encoding="utf-8")
    repo.commit_all("b")
    repo.checkout(f"{prefix}a")
    assert not repo.merge(f"{prefix}b").ok
    (repo.root / "stray.txt").write_text("stray\n", encoding="utf-8")

    for _ in range(2):
        reset_to_baseline(repo, config)
        assert repo.head() == baseline
        assert repo.is_clean()
        assert integration_branches(repo, config) == []
        assert not (repo.root / "stray.txt").exists()
