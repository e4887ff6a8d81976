"""Unified diff helpers: header scanning and guarded ``git apply``.

Every attempt is recorded as JSON lines on the ``dpatch.telemetry`` logger so
a failing combination can be diagnosed from the log alone.
"""

from __future__ import annotations

import json
import logging
import re
import subprocess
import tempfile
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Iterable, Iterator, Mapping, Pattern, Tuple

TELEMETRY_LOGGER = logging.getLogger("dpatch.telemetry")

_GIT_HEADER = re.compile(r"^diff --git(?: (?P<operands>.*))?$", re.MULTILINE)
# ``a/X b/X``: the only unambiguous split when X contains spaces.
_SAME_PATH_OPERANDS = re.compile(r"^a/(?P<path>.+) b/(?P=path)$")
_SPLIT_OPERANDS = re.compile(r"^(\S+) (\S+)$")
_PLAIN_HEADER = re.compile(r"^(?:\+\+\+|---) (?P<path>[^\t\n]+)", re.MULTILINE)
_RENAME_LINE = re.compile(r"^(?:rename|copy) (?:from|to) (?P<path>.+)$", re.MULTILINE)

# Ordered: the first pattern matching a stderr line wins.
_FAILURE_PATTERNS: Tuple[Tuple[str, Pattern[str]], ...] = (
    ("hunk_failed", re.compile(r"error: (?P<path>.+?): hunk #(?P<hunk>\d+) failed at (?P<line>-?\d+)")),
    ("patch_failed", re.compile(r"error: patch failed: (?P<path>.+?)(?::(?P<line>\d+))?$")),
    ("does_not_apply", re.compile(r"error: (?P<path>.+?): patch does not apply")),
    ("missing_file", re.compile(r"error: (?P<path>.+?): does not exist in (?:index|working directory)")),
)


class PatchError(RuntimeError):
    """A diff was rejected before or during ``git apply``."""

    def __init__(self, message: str, *, details: Mapping[str, Any] | None = None) -> None:
        super().__init__(message)
        self.details: dict[str, Any] = dict(details or {})


@dataclass(slots=True)
class PatchTelemetry:
    """What is known about one apply attempt, dumped with every event."""

    label: str | None = None
    patch_path: Path | None = None
    patch_bytes: int = 0
    patch_lines: int = 0
    check_returncode: int | None = None
    check_stdout: str = ""
    check_stderr: str = ""
    failing_hunks: Tuple[Mapping[str, Any], ...] = ()
    touched_paths: Tuple[Path, ...] = ()

    @classmethod
    def for_patch(cls, patch: str, label: str | None) -> "PatchTelemetry":
        return cls(
            label=label,
            patch_bytes=len(patch.encode("utf-8", errors="ignore")),
            patch_lines=patch.count("\n"),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "label": self.label,
            "patch_path": self.patch_path,
            "patch_bytes": self.patch_bytes,
            "patch_lines": self.patch_lines,
            "check": {
                "returncode": self.check_returncode,
                "stdout": self.check_stdout,
                "stderr": self.check_stderr,
            },
            "failing_hunks": [dict(hunk) for hunk in self.failing_hunks],
            "touched_paths": list(self.touched_paths),
        }

    def failure(self, message: str) -> PatchError:
        return PatchError(message, details={"telemetry": _jsonable(self.to_dict())})


@dataclass(slots=True)
class PatchResult:
    """A diff that applied cleanly."""

    command: Tuple[str, ...]
    paths: Tuple[Path, ...]
    stdout: str
    stderr: str
    telemetry: PatchTelemetry | None = None


def _jsonable(value: Any) -> Any:
    if isinstance(value, Mapping):
        return {str(key): _jsonable(child) for key, child in value.items()}
    if isinstance(value, (list, tuple, set)):
        return [_jsonable(item) for item in value]
    if isinstance(value, Path):
        return value.as_posix()
    if value is None or isinstance(value, (str, int, float, bool)):
        return value
    return str(value)


def _emit(event: str, telemetry: PatchTelemetry, **extra: Any) -> None:
    record = {
        "event": event,
        "timestamp": datetime.now(timezone.utc).isoformat(),
        **extra,
        "telemetry": telemetry.to_dict(),
    }
    TELEMETRY_LOGGER.info(json.dumps(_jsonable(record), separators=(",", ":"), ensure_ascii=True))


def parse_apply_failures(output: str) -> Tuple[Mapping[str, Any], ...]:
    """Pull per-file failure details out of ``git apply`` output."""
    failures: list[dict[str, Any]] = []
    for line in (raw.strip() for raw in output.splitlines()):
        for reason, pattern in _FAILURE_PATTERNS:
            match = pattern.match(line)
            if match is None:
                continue
            entry: dict[str, Any] = {"path": match.group("path"), "reason": reason}
            for key in ("hunk", "line"):
                number = match.groupdict().get(key)
                if number is not None:
                    entry[key] = int(number)
            failures.append(entry)
            break
    return tuple(failures)


def _header_path(operand: str) -> Path | None:
    operand = operand.strip().strip('"')
    if operand == "/dev/null":
        return None
    if operand[:2] in {"a/", "b/"}:
        operand = operand[2:]
    return Path(operand) if operand else None


def _git_sections(patch: str) -> list[tuple[str, str]]:
    """Split ``patch`` into ``(header operands, extended header lines)`` per file."""
    headers = list(_GIT_HEADER.finditer(patch))
    sections: list[tuple[str, str]] = []
    for index, match in enumerate(headers):
        end = headers[index + 1].start() if index + 1 < len(headers) else len(patch)
        # Only the lines before the first hunk; ``---`` inside a hunk is content.
        body = patch[match.end():end].split("\n@@", 1)[0]
        sections.append(((match.group("operands") or "").strip(), body))
    return sections


def _section_paths(operands: str, body: str) -> list[Path]:
    same = _SAME_PATH_OPERANDS.match(operands)
    if same:
        return [Path(same.group("path"))]

    # Renames and copies name both sides explicitly, spaces included.
    renamed = [Path(match.group("path").strip()) for match in _RENAME_LINE.finditer(body)]
    if renamed:
        return renamed
    plain = [_header_path(match.group("path")) for match in _PLAIN_HEADER.finditer(body)]
    if any(path is not None for path in plain):
        return [path for path in plain if path is not None]

    split = _SPLIT_OPERANDS.match(operands)
    if split:
        return [path for path in map(_header_path, split.groups()) if path is not None]
    return []


def malformed_git_headers(patch: str) -> list[str]:
    """Return ``diff --git`` lines from which no file path can be recovered."""
    return [
        f"diff --git {operands}".rstrip()
        for operands, body in _git_sections(patch)
        if not _section_paths(operands, body)
    ]


def has_diff_headers(patch: str) -> bool:
    return bool(_GIT_HEADER.search(patch) or _PLAIN_HEADER.search(patch))


def extract_paths(patch: str) -> list[Path]:
    """Collect file paths referenced by a unified diff, in first-seen order.

    ``diff --git`` headers are authoritative. Their ``---``/``+++`` and
    ``rename`` lines settle names that contain spaces; plain ``---``/``+++``
    headers alone are used for diffs produced without git.
    """
    sections = _git_sections(patch)
    if sections:
        found = [path for operands, body in sections for path in _section_paths(operands, body)]
    else:
        found = [_header_path(match.group("path")) for match in _PLAIN_HEADER.finditer(patch)]
    return list(dict.fromkeys(path for path in found if path is not None))


def validate_paths(paths: Iterable[Path]) -> None:
    """Refuse diffs that reach outside the checkout or into ``.git``."""
    for path in paths:
        if path.is_absolute():
            raise PatchError(f"Patch targets an absolute path: {path}")
        if ".." in path.parts:
            raise PatchError(f"Patch path escaping the repository: {path}")
        if path.parts[:1] == (".git",):
            raise PatchError(f"Patch targets the .git directory: {path}")


@contextmanager
def _patch_file(patch: str) -> Iterator[Path]:
    with tempfile.NamedTemporaryFile("w", encoding="utf-8", suffix=".patch", delete=False) as handle:
        handle.write(patch)
    path = Path(handle.name)
    try:
        yield path
    finally:
        path.unlink(missing_ok=True)


def _git_apply(args: list[str], patch_path: Path, repo_root: Path) -> subprocess.CompletedProcess[str]:
    return subprocess.run(
        ["git", "apply", *args, str(patch_path)],
        cwd=repo_root,
        capture_output=True,
        text=True,
        check=False,
    )


def _output(result: subprocess.CompletedProcess[str]) -> str:
    return result.stderr.strip() or result.stdout.strip() or "unknown error"


def apply_patch(
    patch: str,
    *,
    repo_root: Path | str = ".",
    check: bool = True,
    label: str | None = None,
) -> PatchResult:
    """Apply a unified diff ``patch`` to the working tree at ``repo_root``.

    With ``check`` enabled the diff is validated with ``git apply --check``
    first, so a failing patch leaves the working tree untouched.
    """
    root = Path(repo_root).resolve()
    telemetry = PatchTelemetry.for_patch(patch, label)

    if not patch.strip():
        _emit("patch_validation_failed", telemetry, stage="prepare")
        raise telemetry.failure("Patch is empty.")

    paths = extract_paths(patch)
    try:
        validate_paths(paths)
    except PatchError as error:
        _emit("patch_validation_failed", telemetry, stage="prepare", reason=str(error))
        raise telemetry.failure(str(error)) from error

    with _patch_file(patch) as patch_path:
        telemetry.patch_path = patch_path

        if check:
            dry_run = _git_apply(["--check"], patch_path, root)
            telemetry.check_returncode = dry_run.returncode
            telemetry.check_stdout = dry_run.stdout.strip()
            telemetry.check_stderr = dry_run.stderr.strip()
            telemetry.failing_hunks = parse_apply_failures(f"{dry_run.stderr}\n{dry_run.stdout}")
            if dry_run.returncode != 0:
                _emit("patch_validation_failed", telemetry, stage="git-apply-check")
                raise telemetry.failure(f"Patch failed validation: {_output(dry_run)}")
            _emit("patch_validation_passed", telemetry)

        applied = _git_apply([], patch_path, root)
        if applied.returncode != 0:
            telemetry.failing_hunks = parse_apply_failures(applied.stderr)
            _emit("patch_apply_failed", telemetry)
            raise telemetry.failure(f"Patch failed to apply: {_output(applied)}")

    telemetry.touched_paths = tuple(sorted(paths, key=Path.as_posix))
    _emit("patch_apply_succeeded", telemetry)
    return PatchResult(
        command=("git", "apply"),
        paths=telemetry.touched_paths,
        stdout=applied.stdout,
        stderr=applied.stderr,
        telemetry=telemetry,
    )


__all__ = [
    "PatchError",
    "PatchResult",
    "PatchTelemetry",
    "apply_patch",
    "extract_paths",
    "has_diff_headers",
    "malformed_git_headers",
    "parse_apply_failures",
    "validate_paths",
]
