"""Configuration loading for the patcher.

Settings live in an optional YAML file (``config.yaml`` by default). Every
section has defaults, so an empty or missing file yields a working setup for
the pinned desktop/desktop release. Relative paths resolve against the
directory holding the configuration file.
"""

from __future__ import annotations

import copy
import logging
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from .errors import ConfigError

LOGGER = logging.getLogger(__name__)

DEFAULT_CONFIG_NAME = "config.yaml"

DEFAULT_CONFIG_TEMPLATE: Dict[str, Any] = {
    "upstream": {
        "url": "https://github.com/desktop/desktop.git",
        "tag": "release-3.5.2",
        "remote_match": "desktop/desktop",
        "shallow": True,
    },
    "patches": {
        "dir": "patches",
        "feature": [
            {
                "name": "pins",
                "file": "pins.patch",
                "description": "Pin repositories to the top of the list",
                "recommended": True,
            },
            {
                "name": "remove-recent",
                "file": "remove-recent.patch",
                "description": 'Remove the "Recent" repositories section',
                "recommended": False,
            },
        ],
        "standalone": [
            {
                "name": "disable-auto-updates",
                "file": "disable_auto_updates.patch",
                "description": "Prevent app from auto-updating (keeps your patches)",
                "recommended": True,
            },
            {
                "name": "fix-auth-handler",
                "file": "fix_auth_handler.patch",
                "description": "Fix OAuth for custom builds",
                "recommended": True,
            },
            {
                "name": "separate-instance",
                "file": "separate_instance.patch",
                "description": "Run alongside official GitHub Desktop (for multiple accounts)",
                "recommended": False,
            },
        ],
    },
    "git": {
        "branch_prefix": "temp-patch-",
        "author_name": "desktop-patcher",
        "author_email": "desktop-patcher@localhost",
        "clean_args": [],
    },
    "paths": {
        "checkout": "../desktop",
    },
    "build": {
        "commands": [["yarn"], ["yarn", "build:prod"]],
        "output": "dist",
    },
    "prerequisites": [
        {"name": "Node.js", "command": "node"},
        {"name": "Git", "command": "git"},
        {"name": "Yarn", "command": "yarn"},
        {"name": "Python", "command": "python", "alternatives": ["python3"], "optional": True},
    ],
    "logging": {
        "level": "WARNING",
    },
}


class SectionModel(BaseModel):
    """Base model for configuration sections with strict field handling."""

    model_config = ConfigDict(extra="forbid", frozen=True)


class UpstreamConfig(SectionModel):
    url: str
    tag: str
    remote_match: Optional[str] = None
    shallow: bool = True

    @property
    def match(self) -> str:
        """Substring an existing checkout's ``origin`` URL must contain."""
        if self.remote_match:
            return self.remote_match
        return self.url.rstrip("/").removesuffix(".git")


class PatchEntry(SectionModel):
    name: str
    file: str
    description: str = ""
    recommended: bool = False


class PatchesConfig(SectionModel):
    dir: str = "patches"
    feature: List[PatchEntry] = Field(default_factory=list)
    standalone: List[PatchEntry] = Field(default_factory=list)


class GitConfig(SectionModel):
    branch_prefix: str = "temp-patch-"
    author_name: str = "desktop-patcher"
    author_email: str = "desktop-patcher@localhost"
    clean_args: List[str] = Field(default_factory=list)


class PathsConfig(SectionModel):
    checkout: str = "../desktop"


class BuildConfig(SectionModel):
    commands: List[List[str]] = Field(default_factory=list)
    output: str = "dist"


class PrerequisiteConfig(SectionModel):
    name: str
    command: str
    alternatives: List[str] = Field(default_factory=list)
    version_args: List[str] = Field(default_factory=lambda: ["--version"])
    optional: bool = False


class LoggingConfig(SectionModel):
    level: str = "WARNING"


class PatcherConfig(BaseModel):
    """Validated patcher configuration."""

    model_config = ConfigDict(extra="forbid")

    upstream: UpstreamConfig
    patches: PatchesConfig
    git: GitConfig = Field(default_factory=GitConfig)
    paths: PathsConfig = Field(default_factory=PathsConfig)
    build: BuildConfig = Field(default_factory=BuildConfig)
    prerequisites: List[PrerequisiteConfig] = Field(default_factory=list)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)
    base_dir: Path = Field(default_factory=Path.cwd, exclude=True)

    def resolve_path(self, value: str | Path) -> Path:
        candidate = Path(value).expanduser()
        if not candidate.is_absolute():
            candidate = self.base_dir / candidate
        return candidate.resolve()

    @property
    def patches_dir(self) -> Path:
        return self.resolve_path(self.patches.dir)

    @property
    def default_checkout(self) -> Path:
        return self.resolve_path(self.paths.checkout)


def _copy_config_template() -> Dict[str, Any]:
    """Return a deep copy of the default configuration template."""
    return copy.deepcopy(DEFAULT_CONFIG_TEMPLATE)


def _merge_sections(base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
    """Overlay ``override`` onto ``base`` one level deep (sections merge, lists replace)."""
    merged = dict(base)
    for key, value in override.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            section = dict(merged[key])
            section.update(value)
            merged[key] = section
        else:
            merged[key] = value
    return merged


def build_config(data: Dict[str, Any] | None = None, *, base_dir: Path | str | None = None) -> PatcherConfig:
    """Validate ``data`` layered over the defaults."""

    merged = _merge_sections(_copy_config_template(), dict(data or {}))
    merged["base_dir"] = Path(base_dir).resolve() if base_dir is not None else Path.cwd()
    try:
        return PatcherConfig.model_validate(merged)
    except ValidationError as error:
        raise ConfigError(f"Invalid configuration: {error}") from error


def load_config(config_path: Path | str | None = None, *, required: bool = False) -> PatcherConfig:
    """Load YAML configuration from disk and validate it.

    A missing file falls back to the defaults unless ``required`` is set.
    """

    path = Path(config_path) if config_path is not None else Path(DEFAULT_CONFIG_NAME)
    if not path.exists():
        if required:
            raise ConfigError(f"Config file not found: {path}")
        LOGGER.debug("No configuration at %s; using defaults", path)
        return build_config(base_dir=path.resolve().parent)

    try:
        with path.open("r", encoding="utf-8") as handle:
            data = yaml.safe_load(handle) or {}
    except yaml.YAMLError as error:
        raise ConfigError(f"Failed to parse config: {error}") from error

    if not isinstance(data, dict):
        raise ConfigError("Configuration must be a mapping at the top level.")

    return build_config(data, base_dir=path.resolve().parent)


__all__ = [
    "DEFAULT_CONFIG_NAME",
    "DEFAULT_CONFIG_TEMPLATE",
    "PatchEntry",
    "PatcherConfig",
    "build_config",
    "load_config",
]
