"""File-level overlap detection between selected feature patches."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Sequence, Tuple

from .catalog import FeaturePatch, PatchCatalog
from .errors import ParseError, PatchApplicationError
from .tools.patch import extract_paths, has_diff_headers, malformed_git_headers

LOGGER = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class ConflictRecord:
    """A file touched by more than one selected patch."""

    path: str
    patches: Tuple[str, ...]


@dataclass(slots=True)
class OverlapReport:
    """File touch map for one selection plus the overlaps it contains."""

    patches: Tuple[FeaturePatch, ...] = ()
    touch_map: Dict[str, Tuple[str, ...]] = field(default_factory=dict)
    conflicts: Tuple[ConflictRecord, ...] = ()
    unparsable: Tuple[str, ...] = ()

    @property
    def needs_merge(self) -> bool:
        return bool(self.conflicts)

    @property
    def conflicting_patches(self) -> Tuple[FeaturePatch, ...]:
        """Patches named by any conflict record, in selection order."""
        involved = {name for record in self.conflicts for name in record.patches}
        return tuple(patch for patch in self.patches if patch.name in involved)

    @property
    def independent_patches(self) -> Tuple[FeaturePatch, ...]:
        involved = {patch.name for patch in self.conflicting_patches}
        return tuple(patch for patch in self.patches if patch.name not in involved)


def touched_files(diff_text: str, *, patch: str = "<patch>") -> List[str]:
    """Return the distinct repository paths ``diff_text`` modifies.

    Raises :class:`ParseError` when the text has no per-file headers or
    carries a ``diff --git`` line without two path operands.
    """
    if not diff_text.strip():
        raise ParseError(patch, "patch is empty")
    malformed = malformed_git_headers(diff_text)
    if malformed:
        raise ParseError(patch, f"malformed diff header: {malformed[0]!r}")
    if not has_diff_headers(diff_text):
        raise ParseError(patch, "no per-file diff headers found")
    paths = extract_paths(diff_text)
    if not paths:
        raise ParseError(patch, "diff headers reference no files")
    return [path.as_posix() for path in paths]


def detect_overlap(patches: Sequence[FeaturePatch], catalog: PatchCatalog) -> OverlapReport:
    """Build the file touch map for ``patches`` and report shared files.

    A patch whose content cannot be read or parsed is treated as touching no
    files; it is logged and listed in ``unparsable`` so callers can warn.
    """
    ordered = tuple(patches)
    for patch in ordered:
        if not isinstance(patch, FeaturePatch):
            raise TypeError(f"Only feature patches take part in overlap detection: {patch.name}")

    touch_map: Dict[str, List[str]] = {}
    unparsable: List[str] = []
    for patch in ordered:
        try:
            files = touched_files(catalog.read(patch), patch=patch.name)
        except (ParseError, PatchApplicationError) as error:
            LOGGER.warning("Treating %s as touching no files: %s", patch.name, error)
            unparsable.append(patch.name)
            continue
        for path in files:
            touch_map.setdefault(path, []).append(patch.name)

    conflicts = tuple(
        ConflictRecord(path=path, patches=tuple(names))
        for path, names in touch_map.items()
        if len(names) > 1
    )
    if conflicts:
        LOGGER.info(
            "Overlap between %s on %d file(s)",
            ", ".join(patch.name for patch in ordered),
            len(conflicts),
        )
    return OverlapReport(
        patches=ordered,
        touch_map={path: tuple(names) for path, names in touch_map.items()},
        conflicts=conflicts,
        unparsable=tuple(unparsable),
    )


def describe_conflicts(records: Iterable[ConflictRecord]) -> List[str]:
    """Render conflict records as ``path (a, b)`` lines for display."""
    return [f"{record.path} ({', '.join(record.patches)})" for record in records]


__all__ = [
    "ConflictRecord",
    "OverlapReport",
    "describe_conflicts",
    "detect_overlap",
    "touched_files",
]
