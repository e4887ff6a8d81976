"""Bring the target checkout to the pinned baseline before any patching."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, List, Optional

from .config import PatcherConfig
from .errors import ProvisioningError
from .tools.vcs import GitError, GitRepository

LOGGER = logging.getLogger(__name__)

ConfirmCallback = Callable[[str], bool]

DIRTY_PROMPT = "Reset to clean state? (WARNING: discards all changes)"


@dataclass(slots=True)
class ProvisionResult:
    """What :func:`ensure_checkout` had to do to produce a usable checkout."""

    repo: GitRepository
    cloned: bool = False
    discarded_changes: bool = False
    checked_out: bool = False
    swept_branches: tuple[str, ...] = ()


def open_repository(path: Path | str, config: PatcherConfig) -> GitRepository:
    """Wrap an existing checkout, committing as the configured identity."""
    return GitRepository(
        path,
        author_name=config.git.author_name,
        author_email=config.git.author_email,
    )


def integration_branches(repo: GitRepository, config: PatcherConfig) -> List[str]:
    """Return local branches left behind by merge runs."""
    return repo.list_branches(prefix=config.git.branch_prefix)


def _sweep_branches(repo: GitRepository, config: PatcherConfig) -> tuple[str, ...]:
    removed: list[str] = []
    for branch in integration_branches(repo, config):
        repo.delete_branch(branch)
        removed.append(branch)
    if removed:
        LOGGER.info("Removed %d leftover integration branch(es)", len(removed))
    return tuple(removed)


def _baseline_sha(repo: GitRepository, config: PatcherConfig, *, fetch: bool) -> str:
    tag = config.upstream.tag
    try:
        return repo.resolve(tag)
    except GitError:
        if not fetch:
            raise
    LOGGER.info("Fetching tags to locate %s", tag)
    repo.fetch_tags()
    return repo.resolve(tag)


def reset_to_baseline(repo: GitRepository, config: PatcherConfig) -> None:
    """Force ``repo`` to the pinned tag with no changes and no integration branches.

    Safe to call from any state, including mid-merge or with ``HEAD`` on an
    integration branch. Raises :class:`ProvisioningError` if the post-condition
    cannot be established.
    """
    tag = config.upstream.tag
    try:
        # Clears conflict state from an interrupted merge; fails only on an unborn HEAD.
        repo.git("reset", "--hard", check=False)
        repo.checkout(tag, detach=True, force=True)
        repo.reset_hard(tag)
        repo.clean_untracked(*config.git.clean_args)
        _sweep_branches(repo, config)
        baseline = repo.resolve(tag)
        head = repo.head()
    except GitError as error:
        raise ProvisioningError(f"Unable to reset {repo.root} to {tag}: {error}") from error

    if head != baseline:
        raise ProvisioningError(f"HEAD is at {head}, expected {tag} ({baseline})")
    if not repo.is_clean():
        raise ProvisioningError(f"Working tree at {repo.root} is still dirty after reset")
    leftover = integration_branches(repo, config)
    if leftover:
        raise ProvisioningError(f"Integration branches survived reset: {', '.join(leftover)}")


def ensure_checkout(
    target: Path | str,
    config: PatcherConfig,
    *,
    confirm: Optional[ConfirmCallback] = None,
) -> ProvisionResult:
    """Return a clean checkout of the upstream at the pinned tag.

    An existing checkout of the right remote is reused; uncommitted changes are
    only discarded when ``confirm`` approves. Anything else at ``target`` is
    refused rather than overwritten. A missing checkout is cloned.
    """
    target_path = Path(target).expanduser().resolve()
    upstream = config.upstream

    if (target_path / ".git").exists():
        return _reuse_checkout(target_path, config, confirm=confirm)

    if target_path.exists() and (not target_path.is_dir() or any(target_path.iterdir())):
        raise ProvisioningError(f"{target_path} exists and is not a git checkout of {upstream.match}")

    LOGGER.info("Cloning %s at %s into %s", upstream.url, upstream.tag, target_path)
    try:
        repo = GitRepository.clone(
            upstream.url,
            target_path,
            ref=upstream.tag,
            depth=1 if upstream.shallow else None,
            author_name=config.git.author_name,
            author_email=config.git.author_email,
        )
    except GitError as error:
        raise ProvisioningError(f"Failed to clone {upstream.url}: {error}") from error
    return ProvisionResult(repo=repo, cloned=True)


def _reuse_checkout(
    target_path: Path,
    config: PatcherConfig,
    *,
    confirm: Optional[ConfirmCallback],
) -> ProvisionResult:
    upstream = config.upstream
    try:
        repo = open_repository(target_path, config)
    except GitError as error:
        raise ProvisioningError(str(error)) from error

    remote = repo.remote_url()
    if not remote or upstream.match not in remote:
        raise ProvisioningError(
            f"{target_path} tracks {remote or 'no origin remote'}, expected a checkout of {upstream.match}"
        )
    LOGGER.info("Found existing checkout at %s", target_path)
    result = ProvisionResult(repo=repo)

    try:
        if not repo.is_clean():
            if confirm is None or not confirm(DIRTY_PROMPT):
                raise ProvisioningError("Cannot apply patches to dirty repository")
            repo.git("reset", "--hard", check=False)
            repo.clean_untracked(*config.git.clean_args)
            result.discarded_changes = True

        baseline = _baseline_sha(repo, config, fetch=True)
        # A branch left checked out by an interrupted merge cannot be swept.
        if repo.head() != baseline or repo.current_branch() is not None:
            LOGGER.info("Checking out %s", upstream.tag)
            repo.checkout(upstream.tag, detach=True)
            result.checked_out = True

        result.swept_branches = _sweep_branches(repo, config)
    except GitError as error:
        raise ProvisioningError(f"Failed to checkout {upstream.tag}: {error}") from error

    return result


__all__ = [
    "DIRTY_PROMPT",
    "ProvisionResult",
    "ensure_checkout",
    "integration_branches",
    "open_repository",
    "reset_to_baseline",
]
