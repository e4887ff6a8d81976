from __future__ import annotations

import json
import logging
import textwrap
from pathlib import Path

import pytest

from dpatch.tools.patch import PatchError, apply_patch, extract_paths
from dpatch.tools.vcs import GitRepository

from conftest import run_git


def _prepare_repo(repo_root: Path) -> tuple[GitRepository, Path]:
    run_git(repo_root, "init")
    repo = GitRepository(repo_root, author_name="Patcher", author_email="patcher@example.com")
    tracked = repo_root / "tracked.txt"
    tracked.write_text("alpha\n", encoding="utf-8")
    repo.commit_all("init")
    return repo, tracked


PATCH = textwrap.dedent(
    """\
    diff --git a/tracked.txt b/tracked.txt
    --- a/tracked.txt
    +++ b/tracked.txt
    @@ -1 +1 @@
    -alpha
    +bravo
    """
)


def test_apply_patch_updates_working_tree(tmp_path: Path) -> None:
    repo, tracked = _prepare_repo(tmp_path)

    result = apply_patch(PATCH, repo_root=repo.root, label="rename")

    assert tracked.read_text(encoding="utf-8") == "bravo\n"
    assert result.paths == (Path("tracked.txt"),)
    assert result.telemetry is not None and result.telemetry.check_returncode == 0


def test_failed_validation_leaves_tree_untouched(tmp_path: Path) -> None:
    repo, tracked = _prepare_repo(tmp_path)
    apply_patch(PATCH, repo_root=repo.root)

    with pytest.raises(PatchError, match="failed validation") as excinfo:
        apply_patch(PATCH, repo_root=repo.root)

    assert tracked.read_text(encoding="utf-8") == "bravo\n"
    telemetry = excinfo.value.details["telemetry"]
    assert telemetry["check"]["returncode"] != 0
    assert any(hunk["path"] == "tracked.txt" for hunk in telemetry["failing_hunks"])


def test_rejects_empty_and_escaping_patches(tmp_path: Path) -> None:
    repo, _ = _prepare_repo(tmp_path)

    with pytest.raises(PatchError, match="empty"):
        apply_patch("   \n", repo_root=repo.root)

    escaping = PATCH.replace("tracked.txt", "../outside.txt")
    with pytest.raises(PatchError, match="escaping"):
        apply_patch(escaping, repo_root=repo.root)


def test_apply_emits_telemetry_events(tmp_path: Path, caplog: pytest.LogCaptureFixture) -> None:
    repo, _ = _prepare_repo(tmp_path)

    with caplog.at_level(logging.INFO, logger="dpatch.telemetry"):
        apply_patch(PATCH, repo_root=repo.root, label="rename")

    events = [json.loads(record.getMessage())["event"] for record in caplog.records if record.name == "dpatch.telemetry"]
    assert events == ["patch_validation_passed", "patch_apply_succeeded"]


def test_extract_paths_ignores_dev_null() -> None:
    patch = textwrap.dedent(
        """\
        diff --git a/new.txt b/new.txt
        new file mode 100644
        --- /dev/null
        +++ b/new.txt
        @@ -0,0 +1 @@
        +hi
        """
    )
    assert extract_paths(patch) == [Path("new.txt")]
