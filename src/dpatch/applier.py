"""Apply patches one after another against the current working tree."""

from __future__ import annotations

import logging
from typing import Callable, Iterable, List, Optional

from .catalog import FeaturePatch, PatchCatalog, StandalonePatch
from .errors import PatchApplicationError
from .tools.patch import PatchError, PatchResult, apply_patch
from .tools.vcs import GitRepository

LOGGER = logging.getLogger(__name__)

AppliedCallback = Callable[[FeaturePatch | StandalonePatch, PatchResult], None]


def apply_one(
    repo: GitRepository,
    catalog: PatchCatalog,
    patch: FeaturePatch | StandalonePatch,
) -> PatchResult:
    """Dry-run then apply ``patch`` to ``repo``'s working tree."""
    text = catalog.read(patch)
    try:
        return apply_patch(text, repo_root=repo.root, check=True, label=patch.name)
    except PatchError as error:
        diagnostic = str(error)
        for prefix in ("Patch failed validation: ", "Patch failed to apply: "):
            if diagnostic.startswith(prefix):
                diagnostic = diagnostic[len(prefix):]
                break
        raise PatchApplicationError(patch.name, diagnostic, details=error.details) from error


class SequentialApplier:
    """Applies patches in order and stops at the first one that does not apply.

    Nothing is rolled back: after a failure the tree holds every earlier patch
    and none of the failing one. Restoring the baseline is the caller's job.
    """

    def __init__(self, repo: GitRepository, catalog: PatchCatalog) -> None:
        self.repo = repo
        self.catalog = catalog

    def apply(
        self,
        patches: Iterable[FeaturePatch | StandalonePatch],
        *,
        on_applied: Optional[AppliedCallback] = None,
    ) -> List[str]:
        applied: List[str] = []
        for patch in patches:
            result = apply_one(self.repo, self.catalog, patch)
            LOGGER.debug("Applied %s (%d file(s))", patch.name, len(result.paths))
            applied.append(patch.name)
            if on_applied is not None:
                on_applied(patch, result)
        return applied


__all__ = ["SequentialApplier", "apply_one"]
