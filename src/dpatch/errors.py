"""Exception taxonomy shared by the patch pipeline."""

from __future__ import annotations

from pathlib import Path
from typing import Any, Iterable, Mapping


class PatcherError(RuntimeError):
    """Base class for failures raised by the patch pipeline."""

    def __init__(self, message: str, *, details: Mapping[str, Any] | None = None) -> None:
        super().__init__(message)
        self.details: dict[str, Any] = dict(details or {})


class ConfigError(PatcherError):
    """Configuration file is missing, unreadable, or fails validation."""


class ProvisioningError(PatcherError):
    """The target checkout cannot be brought to the pinned, clean baseline.

    Fatal for the whole run.
    """


class ParseError(PatcherError):
    """A patch's content could not be scanned for per-file headers."""

    def __init__(self, patch: str, reason: str) -> None:
        super().__init__(f"Unable to parse {patch}: {reason}", details={"patch": patch})
        self.patch = patch
        self.reason = reason


class PatchApplicationError(PatcherError):
    """A patch failed dry-run validation or real application."""

    def __init__(
        self,
        patch: str,
        diagnostic: str,
        *,
        details: Mapping[str, Any] | None = None,
    ) -> None:
        super().__init__(f"Failed to apply {patch}: {diagnostic}", details=details)
        self.patch = patch
        self.diagnostic = diagnostic


class MergeConflict(PatcherError):
    """Edits from two or more feature patches could not be reconciled."""

    def __init__(self, patch: str, files: Iterable[Path | str], *, merged_into: Iterable[str] = ()) -> None:
        self.patch = patch
        self.files: tuple[str, ...] = tuple(
            item.as_posix() if isinstance(item, Path) else str(item) for item in files
        )
        self.merged_into: tuple[str, ...] = tuple(merged_into)
        listing = ", ".join(self.files) or "unknown files"
        message = f"Merge conflict integrating {patch}"
        if self.merged_into:
            message += f" with {' + '.join(self.merged_into)}"
        super().__init__(
            f"{message}: {listing}",
            details={"patch": patch, "files": list(self.files), "merged_into": list(self.merged_into)},
        )


class CleanupFailure(PatcherError):
    """An integration branch could not be deleted. Reported, never raised past the merge."""

    def __init__(self, branch: str, reason: str) -> None:
        super().__init__(f"Failed to delete integration branch {branch}: {reason}", details={"branch": branch})
        self.branch = branch
        self.reason = reason


__all__ = [
    "CleanupFailure",
    "ConfigError",
    "MergeConflict",
    "ParseError",
    "PatchApplicationError",
    "PatcherError",
    "ProvisioningError",
]
