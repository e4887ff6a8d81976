"""Thin wrappers around the git command line."""

from .patch import PatchError, PatchResult, PatchTelemetry, apply_patch, extract_paths, has_diff_headers
from .vcs import GitError, GitRepository, MergeOutcome

__all__ = [
    "GitError",
    "GitRepository",
    "MergeOutcome",
    "PatchError",
    "PatchResult",
    "PatchTelemetry",
    "apply_patch",
    "extract_paths",
    "has_diff_headers",
]
