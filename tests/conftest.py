from __future__ import annotations

import subprocess
import sys
import textwrap
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Iterable, Sequence

import pytest
import yaml

ROOT = Path(__file__).resolve().parents[1]
SRC = ROOT / "src"

if str(SRC) not in sys.path:
    sys.path.insert(0, str(SRC))

from dpatch.catalog import PatchCatalog  # noqa: E402
from dpatch.config import PatcherConfig, build_config  # noqa: E402
from dpatch.provision import ensure_checkout  # noqa: E402
from dpatch.tools.vcs import GitRepository  # noqa: E402

TAG = "release-1.0"

APP_STATE = "app/src/lib/app-state.ts"
LOCAL_STORAGE = "app/src/lib/local-storage.ts"
APP_STORE = "app/src/lib/stores/app-store.ts"
GROUP_REPOSITORIES = "app/src/ui/group-repositories.ts"
UPDATE_STORE = "app/src/lib/stores/update-store.ts"


def _module(name: str, body: Sequence[str]) -> str:
    lines = [f"// {name}", ""]
    lines.extend(body)
    filler = [f"export const filler{index} = {index}" for index in range(20)]
    # Keep the two app-state edit sites far apart so their hunks never touch.
    return "\n".join(lines[:3] + filler[:10] + lines[3:] + filler[10:]) + "\n"


UPSTREAM_FILES: Dict[str, str] = {
    APP_STATE: _module(
        "app-state",
        ["export const pinnedRepositories: string[] = []", "export const showRecentRepositories = true"],
    ),
    LOCAL_STORAGE: _module("local-storage", ["export function getPinned() { return null }"]),
    APP_STORE: _module("app-store", ["export class AppStore { pins = false }"]),
    GROUP_REPOSITORIES: _module("group-repositories", ["export const groups = ['recent', 'other']"]),
    UPDATE_STORE: _module("update-store", ["export const autoUpdate = true"]),
}

# name -> (file, category, {path: [(old, new), ...]})
PATCH_EDITS: Dict[str, tuple[str, str, Dict[str, list[tuple[str, str]]]]] = {
    "pins": (
        "pins.patch",
        "feature",
        {
            APP_STATE: [("pinnedRepositories: string[] = []", "pinnedRepositories: string[] = ['pinned']")],
            LOCAL_STORAGE: [("return null", "return localStorage.getItem('pinned')")],
            APP_STORE: [("pins = false", "pins = true")],
        },
    ),
    "remove-recent": (
        "remove-recent.patch",
        "feature",
        {
            APP_STATE: [("showRecentRepositories = true", "showRecentRepositories = false")],
            GROUP_REPOSITORIES: [("['recent', 'other']", "['other']")],
        },
    ),
    "clash": (
        "clash.patch",
        "feature",
        {
            APP_STATE: [("pinnedRepositories: string[] = []", "pinnedRepositories: string[] = ['clash']")],
        },
    ),
    "disable-auto-updates": (
        "disable_auto_updates.patch",
        "standalone",
        {
            UPDATE_STORE: [("autoUpdate = true", "autoUpdate = false")],
        },
    ),
}

BROKEN_PATCH = textwrap.dedent(
    f"""\
    diff --git a/{UPDATE_STORE} b/{UPDATE_STORE}
    --- a/{UPDATE_STORE}
    +++ b/{UPDATE_STORE}
    @@ -1,3 +1,3 @@
     // not-the-update-store
    -this line does not exist
    +neither does this one
     export const filler0 = 0
    """
)

GARBAGE_PATCH = "This is not a diff at all.\nJust some notes.\n"


def run_git(cwd: Path, *args: str) -> str:
    result = subprocess.run(["git", *args], cwd=cwd, check=True, capture_output=True, text=True)
    return result.stdout


def _generate_patch(upstream: Path, edits: Dict[str, list[tuple[str, str]]]) -> str:
    for relative, replacements in edits.items():
        target = upstream / relative
        text = target.read_text(encoding="utf-8")
        for old, new in replacements:
            assert old in text, f"{old!r} missing from {relative}"
            text = text.replace(old, new, 1)
        target.write_text(text, encoding="utf-8")
    diff = run_git(upstream, "diff")
    run_git(upstream, "checkout", "--", ".")
    return diff


@dataclass(slots=True)
class PatchWorld:
    """An upstream repository with a release tag plus patch files authored against it."""

    root: Path
    upstream: Path
    patches_dir: Path

    def config_data(
        self,
        feature: Iterable[str] = ("pins", "remove-recent"),
        standalone: Iterable[str] = ("disable-auto-updates",),
        **sections: Any,
    ) -> Dict[str, Any]:
        def entries(names: Iterable[str]) -> list[Dict[str, Any]]:
            return [
                {"name": name, "file": self.patch_file(name), "description": f"{name} patch"}
                for name in names
            ]

        data: Dict[str, Any] = {
            "upstream": {
                "url": self.upstream.as_posix(),
                "tag": TAG,
                "remote_match": None,
                "shallow": False,
            },
            "patches": {
                "dir": self.patches_dir.as_posix(),
                "feature": entries(feature),
                "standalone": entries(standalone),
            },
            "prerequisites": [],
        }
        data.update(sections)
        return data

    def config(self, *args: Any, **kwargs: Any) -> PatcherConfig:
        return build_config(self.config_data(*args, **kwargs), base_dir=self.root)

    def catalog(self, config: PatcherConfig) -> PatchCatalog:
        return PatchCatalog.from_config(config)

    def checkout(self, config: PatcherConfig, name: str = "desktop") -> GitRepository:
        return ensure_checkout(self.root / name, config).repo

    def write_config(self, path: Path, *args: Any, **kwargs: Any) -> Path:
        path.write_text(yaml.safe_dump(self.config_data(*args, **kwargs), sort_keys=False), encoding="utf-8")
        return path

    @staticmethod
    def patch_file(name: str) -> str:
        if name in PATCH_EDITS:
            return PATCH_EDITS[name][0]
        return f"{name}.patch"


@pytest.fixture()
def world(tmp_path: Path) -> PatchWorld:
    """Create an upstream repo tagged ``release-1.0`` and a directory of patches for it."""

    upstream = tmp_path / "upstream"
    upstream.mkdir()
    run_git(upstream, "init")
    run_git(upstream, "config", "user.email", "upstream@example.com")
    run_git(upstream, "config", "user.name", "Upstream")
    for relative, content in UPSTREAM_FILES.items():
        target = upstream / relative
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_text(content, encoding="utf-8")
    run_git(upstream, "add", ".")
    run_git(upstream, "commit", "-m", "Upstream release")
    run_git(upstream, "tag", TAG)

    patches_dir = tmp_path / "patches"
    patches_dir.mkdir()
    for name, (filename, _category, edits) in PATCH_EDITS.items():
        (patches_dir / filename).write_text(_generate_patch(upstream, edits), encoding="utf-8")
    (patches_dir / "broken.patch").write_text(BROKEN_PATCH, encoding="utf-8")
    (patches_dir / "garbage.patch").write_text(GARBAGE_PATCH, encoding="utf-8")

    # Work after the tag must not leak into checkouts of the pinned release.
    (upstream / "NEWS.md").write_text("post-release work\n", encoding="utf-8")
    run_git(upstream, "add", ".")
    run_git(upstream, "commit", "-m", "Post-release change")

    return PatchWorld(root=tmp_path, upstream=upstream, patches_dir=patches_dir)
