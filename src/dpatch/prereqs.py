"""Check the toolchain needed to patch and build the desktop app."""

from __future__ import annotations

import shutil
import subprocess
import sys
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Iterable, List, Optional, Sequence

from .config import PrerequisiteConfig

Which = Callable[[str], Optional[str]]

_WINDOWS_VS_DIRS = (
    Path("C:/Program Files (x86)/Microsoft Visual Studio"),
    Path("C:/Program Files/Microsoft Visual Studio"),
)


@dataclass(slots=True)
class ToolCheck:
    name: str
    command: Optional[str]
    version: Optional[str]
    optional: bool

    @property
    def found(self) -> bool:
        return self.command is not None


@dataclass(slots=True)
class PrerequisiteReport:
    checks: List[ToolCheck] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)
    notes: List[str] = field(default_factory=list)

    @property
    def passed(self) -> bool:
        return all(check.found for check in self.checks if not check.optional)

    @property
    def missing(self) -> List[str]:
        return [check.name for check in self.checks if not check.found and not check.optional]


def tool_version(command: str, args: Sequence[str] = ("--version",)) -> Optional[str]:
    """Return the version token reported by ``command``, or ``None``."""
    try:
        result = subprocess.run(
            [command, *args],
            capture_output=True,
            text=True,
            check=False,
            timeout=30,
        )
    except (OSError, subprocess.TimeoutExpired):
        return None
    if result.returncode != 0:
        return None
    output = (result.stdout or result.stderr).strip()
    if not output:
        return None
    # "git version 2.43.0" / "Python 3.12.1" / "v20.11.0"
    return output.splitlines()[0].split()[-1]


def _locate(entry: PrerequisiteConfig, which: Which) -> Optional[str]:
    for candidate in (entry.command, *entry.alternatives):
        if which(candidate):
            return candidate
    return None


def check_prerequisites(
    entries: Iterable[PrerequisiteConfig],
    *,
    which: Which = shutil.which,
    version: Callable[[str, Sequence[str]], Optional[str]] = tool_version,
    platform: str = sys.platform,
) -> PrerequisiteReport:
    report = PrerequisiteReport()
    for entry in entries:
        command = _locate(entry, which)
        found_version = version(command, entry.version_args) if command else None
        report.checks.append(
            ToolCheck(name=entry.name, command=command, version=found_version, optional=entry.optional)
        )
        if command is None and entry.optional:
            report.warnings.append(f"{entry.name} not found (may be needed for native modules)")

    if platform == "win32":
        if any(path.exists() for path in _WINDOWS_VS_DIRS):
            report.notes.append("Visual Studio / Build Tools detected")
        else:
            report.warnings.append("Visual Studio / Build Tools may be required for native modules")
    elif platform == "darwin":
        if which("xcodebuild"):
            report.notes.append("Xcode detected")
        else:
            report.warnings.append("Xcode Command Line Tools may be required")
    return report


__all__ = ["PrerequisiteReport", "ToolCheck", "check_prerequisites", "tool_version"]
