"""Compose overlapping feature patches through per-patch branches and git merges.

Each patch is applied alone on a fresh branch cut from the baseline, so a
patch never sees another patch's edits. The branches are then merged into the
first one; git's three-way merge decides whether the independent edits
compose. Edits to the same lines surface as :class:`MergeConflict` instead of
an order-dependent result.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from typing import List, Sequence, Tuple

from .applier import apply_one
from .catalog import FeaturePatch, PatchCatalog
from .config import PatcherConfig
from .errors import CleanupFailure, MergeConflict, PatchApplicationError
from .tools.vcs import GitError, GitRepository
from .utils.slug import slugify

LOGGER = logging.getLogger(__name__)


@dataclass(slots=True)
class MergeResult:
    """Outcome of a successful :meth:`MergeOrchestrator.combine`."""

    patches: Tuple[str, ...]
    branches: Tuple[str, ...]
    head: str | None = None
    cleanup_failures: Tuple[CleanupFailure, ...] = ()


@dataclass(slots=True)
class _MergeRun:
    baseline: str
    branches: List[str] = field(default_factory=list)
    cleanup_failures: List[CleanupFailure] = field(default_factory=list)


class MergeOrchestrator:
    """Integrates feature patches that touch the same files."""

    def __init__(self, repo: GitRepository, catalog: PatchCatalog, config: PatcherConfig) -> None:
        self.repo = repo
        self.catalog = catalog
        self.config = config

    def branch_name(self, patch: FeaturePatch, index: int) -> str:
        stamp = int(time.time() * 1000)
        return f"{self.config.git.branch_prefix}{slugify(patch.name)}-{stamp}-{index}"

    def combine(self, patches: Sequence[FeaturePatch]) -> MergeResult:
        """Produce the net effect of ``patches`` on top of the baseline.

        On success ``HEAD`` is detached at the baseline tag and the merged
        changes sit uncommitted in the index and working tree. Every
        integration branch created here is deleted before returning, whether
        the merge succeeded or not; after a failure ``HEAD`` is forced back to
        the baseline.
        """
        ordered = tuple(patches)
        if not ordered:
            return MergeResult(patches=(), branches=())

        tag = self.config.upstream.tag
        try:
            run = _MergeRun(baseline=self.repo.resolve(tag))
        except GitError as error:
            raise PatchApplicationError(ordered[0].name, f"baseline {tag} unavailable: {error}") from error

        try:
            for index, patch in enumerate(ordered):
                self._isolate(run, patch, index)
            self._integrate(run, ordered)
            merged_head = self._merged_head(ordered[-1])
        except BaseException:
            self._cleanup(run, restore_baseline=True)
            raise
        self._cleanup(run)

        try:
            self.repo.reset_soft(run.baseline)
        except GitError as error:
            raise PatchApplicationError(ordered[-1].name, f"unable to collapse merged result: {error}") from error

        if run.cleanup_failures:
            LOGGER.warning("%d integration branch(es) could not be deleted", len(run.cleanup_failures))
        LOGGER.info("Merged %s", " + ".join(patch.name for patch in ordered))
        return MergeResult(
            patches=tuple(patch.name for patch in ordered),
            branches=tuple(run.branches),
            head=merged_head,
            cleanup_failures=tuple(run.cleanup_failures),
        )

    def _merged_head(self, patch: FeaturePatch) -> str:
        try:
            return self.repo.head()
        except GitError as error:
            raise PatchApplicationError(patch.name, f"unable to read merged HEAD: {error}") from error

    def _isolate(self, run: _MergeRun, patch: FeaturePatch, index: int) -> None:
        """Commit ``patch`` alone on a new branch cut from the baseline."""
        branch = self.branch_name(patch, index)
        try:
            self.repo.reset_hard()
            self.repo.checkout(run.baseline, detach=True, force=True)
            self.repo.create_branch(branch, run.baseline)
        except GitError as error:
            raise PatchApplicationError(patch.name, f"unable to create {branch}: {error}") from error
        run.branches.append(branch)

        apply_one(self.repo, self.catalog, patch)

        try:
            self.repo.commit_all(f"Apply {patch.name}", allow_empty=True)
        except GitError as error:
            raise PatchApplicationError(patch.name, f"unable to commit checkpoint: {error}") from error
        LOGGER.debug("Isolated %s on %s", patch.name, branch)

    def _integrate(self, run: _MergeRun, patches: Tuple[FeaturePatch, ...]) -> None:
        """Merge every later branch into the first one, in selection order."""
        try:
            self.repo.checkout(run.branches[0])
        except GitError as error:
            raise PatchApplicationError(patches[0].name, f"unable to checkout {run.branches[0]}: {error}") from error

        for index in range(1, len(run.branches)):
            patch = patches[index]
            try:
                outcome = self.repo.merge(run.branches[index])
            except GitError as error:
                raise PatchApplicationError(patch.name, f"merge failed: {error}") from error
            if outcome.ok:
                continue
            if outcome.conflicted:
                self._abort_merge(patch)
                raise MergeConflict(
                    patch.name,
                    outcome.unmerged,
                    merged_into=[earlier.name for earlier in patches[:index]],
                )
            raise PatchApplicationError(patch.name, f"merge failed: {outcome.message}")

    def _abort_merge(self, patch: FeaturePatch) -> None:
        try:
            self.repo.merge_abort()
        except GitError:
            LOGGER.warning("git merge --abort failed; forcing reset", exc_info=True)
            try:
                self.repo.reset_hard()
            except GitError as error:
                raise PatchApplicationError(patch.name, f"unable to abort conflicted merge: {error}") from error

    def _cleanup(self, run: _MergeRun, *, restore_baseline: bool = False) -> None:
        """Move ``HEAD`` off this run's branches and delete them.

        On success ``HEAD`` is detached where it stands, at the merged commit.
        After a failure it is forced back to the baseline.
        """
        try:
            if restore_baseline:
                self.repo.checkout(run.baseline, detach=True, force=True)
            else:
                self.repo.detach()
        except GitError as error:
            LOGGER.warning("Unable to detach HEAD before branch cleanup: %s", error)
        for branch in run.branches:
            try:
                self.repo.delete_branch(branch)
            except GitError as error:
                failure = CleanupFailure(branch, str(error))
                LOGGER.warning("%s", failure)
                run.cleanup_failures.append(failure)


__all__ = ["MergeOrchestrator", "MergeResult"]
