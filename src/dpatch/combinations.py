"""Exhaustively try every non-empty subset of the patch catalog."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Callable, Iterator, List, Optional, Sequence, Tuple, TypeVar

from .catalog import PatchCatalog, PatchSet
from .config import PatcherConfig
from .errors import PatcherError, ProvisioningError
from .pipeline import apply_patch_set
from .provision import reset_to_baseline
from .tools.vcs import GitRepository

LOGGER = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True, slots=True)
class TrialResult:
    """Outcome of applying one subset from a clean baseline."""

    patches: Tuple[str, ...]
    success: bool
    error: Optional[str] = None

    @property
    def label(self) -> str:
        return " + ".join(self.patches)


@dataclass(slots=True)
class CombinationReport:
    results: List[TrialResult] = field(default_factory=list)

    @property
    def total(self) -> int:
        return len(self.results)

    @property
    def failures(self) -> List[TrialResult]:
        return [result for result in self.results if not result.success]

    @property
    def passed(self) -> bool:
        return not self.failures


TrialStartCallback = Callable[[PatchSet], None]
TrialDoneCallback = Callable[[TrialResult], None]


def enumerate_subsets(items: Sequence[T]) -> Iterator[Tuple[T, ...]]:
    """Yield each non-empty subset of ``items``, counting masks 1..2^N-1.

    Bit ``i`` of the mask selects ``items[i]``; members keep their order.
    """
    count = len(items)
    for mask in range(1, 1 << count):
        yield tuple(item for index, item in enumerate(items) if mask & (1 << index))


def subset_count(size: int) -> int:
    return (1 << size) - 1


class CombinationTester:
    """Runs one trial per subset, strictly one at a time on a single checkout."""

    def __init__(self, repo: GitRepository, catalog: PatchCatalog, config: PatcherConfig) -> None:
        self.repo = repo
        self.catalog = catalog
        self.config = config

    def run_trial(self, patch_set: PatchSet) -> TrialResult:
        """Reset to the baseline, then apply ``patch_set``.

        :class:`ProvisioningError` from the reset propagates; any other
        pipeline failure becomes a failed :class:`TrialResult`.
        """
        reset_to_baseline(self.repo, self.config)
        try:
            apply_patch_set(self.repo, self.catalog, patch_set, self.config)
        except ProvisioningError:
            raise
        except PatcherError as error:
            LOGGER.info("Trial %s failed: %s", patch_set.label(), error)
            return TrialResult(patches=patch_set.names, success=False, error=str(error))
        return TrialResult(patches=patch_set.names, success=True)

    def run(
        self,
        *,
        on_start: Optional[TrialStartCallback] = None,
        on_result: Optional[TrialDoneCallback] = None,
    ) -> CombinationReport:
        report = CombinationReport()
        LOGGER.info("Testing %d combination(s)", subset_count(len(self.catalog)))
        try:
            for subset in enumerate_subsets(self.catalog.patches):
                patch_set = PatchSet(subset)
                if on_start is not None:
                    on_start(patch_set)
                result = self.run_trial(patch_set)
                report.results.append(result)
                if on_result is not None:
                    on_result(result)
        finally:
            reset_to_baseline(self.repo, self.config)
        return report


__all__ = [
    "CombinationReport",
    "CombinationTester",
    "TrialResult",
    "enumerate_subsets",
    "subset_count",
]
