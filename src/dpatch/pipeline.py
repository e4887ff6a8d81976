"""Apply one patch selection: overlap check, merge where needed, then the rest in order."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Callable, Optional, Tuple

from .applier import SequentialApplier
from .catalog import FeaturePatch, PatchCatalog, PatchSet, StandalonePatch
from .config import PatcherConfig
from .merge import MergeOrchestrator, MergeResult
from .overlap import OverlapReport, detect_overlap
from .tools.vcs import GitRepository

LOGGER = logging.getLogger(__name__)

# Called with a stage ("unparsable", "merging", "merged" or "applied") and the patch names it concerns.
ProgressCallback = Callable[[str, Tuple[str, ...]], None]


@dataclass(slots=True)
class ApplyOutcome:
    """Everything a successful :func:`apply_patch_set` did."""

    applied: Tuple[str, ...] = ()
    overlap: OverlapReport = field(default_factory=OverlapReport)
    merge: Optional[MergeResult] = None

    @property
    def merged(self) -> bool:
        return self.merge is not None


def apply_patch_set(
    repo: GitRepository,
    catalog: PatchCatalog,
    patch_set: PatchSet,
    config: PatcherConfig,
    *,
    on_progress: Optional[ProgressCallback] = None,
) -> ApplyOutcome:
    """Apply ``patch_set`` to ``repo``, which must sit clean at the baseline.

    Feature patches sharing a file are composed by the merge orchestrator.
    Remaining feature patches and then all standalone patches go through the
    sequential applier in selection order. Any :class:`PatcherError` escapes
    with the tree left as the failing step produced it.
    """

    def _report(stage: str, names: Tuple[str, ...]) -> None:
        if on_progress is not None and names:
            on_progress(stage, names)

    overlap = detect_overlap(patch_set.features, catalog) if patch_set.features else OverlapReport()
    outcome = ApplyOutcome(overlap=overlap)
    _report("unparsable", overlap.unparsable)
    applied: list[str] = []

    sequential: list[FeaturePatch | StandalonePatch] = []
    if overlap.needs_merge:
        group = overlap.conflicting_patches
        LOGGER.info("Merging overlapping feature patches: %s", ", ".join(patch.name for patch in group))
        _report("merging", tuple(patch.name for patch in group))
        outcome.merge = MergeOrchestrator(repo, catalog, config).combine(group)
        applied.extend(outcome.merge.patches)
        _report("merged", outcome.merge.patches)
        sequential.extend(overlap.independent_patches)
    else:
        sequential.extend(patch_set.features)
    sequential.extend(patch_set.standalone)

    applier = SequentialApplier(repo, catalog)
    for name in applier.apply(sequential, on_applied=lambda patch, _result: _report("applied", (patch.name,))):
        applied.append(name)

    outcome.applied = tuple(applied)
    return outcome


__all__ = ["ApplyOutcome", "apply_patch_set"]
