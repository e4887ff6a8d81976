"""Minimal git helpers
The helpers below provide just enough structure to clone an upstream tag,
move between refs, run throwaway integration branches, and force the working
tree back to a pinned baseline.
"""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import List, Sequence, Set

import subprocess


class GitError(RuntimeError):
    """Raised when a git command fails or the repository cannot be used."""


_UNMERGED_CODES = frozenset({"DD", "AU", "UD", "UA", "DU", "AA", "UU"})


@dataclass(slots=True)
class MergeOutcome:
    """Result of merging a branch into the current ``HEAD``."""

    branch: str
    returncode: int
    stdout: str
    stderr: str
    unmerged: tuple[Path, ...] = ()

    @property
    def ok(self) -> bool:
        return self.returncode == 0

    @property
    def conflicted(self) -> bool:
        return bool(self.unmerged)

    @property
    def message(self) -> str:
        return self.stderr.strip() or self.stdout.strip() or "unknown git error"


def _run(
    args: Sequence[str],
    *,
    cwd: Path,
    check: bool = True,
) -> subprocess.CompletedProcess[str]:
    command = ["git", *args]
    process = subprocess.run(
        command,
        cwd=cwd,
        capture_output=True,
        text=False,
        check=False,
    )
    stdout = process.stdout.decode("utf-8", errors="replace") if process.stdout else ""
    stderr = process.stderr.decode("utf-8", errors="replace") if process.stderr else ""
    result = subprocess.CompletedProcess(process.args, process.returncode, stdout, stderr)
    if check and result.returncode != 0:
        message = result.stderr.strip() or result.stdout.strip() or "unknown git error"
        raise GitError(f"git {' '.join(args)} failed: {message}")
    return result


class GitRepository:
    """Lightweight wrapper around ``git`` commands."""

    def __init__(
        self,
        root: Path | str,
        *,
        author_name: str | None = None,
        author_email: str | None = None,
    ) -> None:
        self.root = Path(root).resolve()
        if not (self.root / ".git").exists():
            raise GitError(f"Not a git repository: {self.root}")
        self.author_name = author_name
        self.author_email = author_email

    @classmethod
    def clone(
        cls,
        url: str,
        target: Path | str,
        *,
        ref: str | None = None,
        depth: int | None = None,
        author_name: str | None = None,
        author_email: str | None = None,
    ) -> "GitRepository":
        """Clone ``url`` into ``target`` (optionally pinned to ``ref``)."""

        path = Path(target).resolve()
        path.parent.mkdir(parents=True, exist_ok=True)
        args: List[str] = ["clone"]
        if depth:
            args.extend(["--depth", str(depth)])
        if ref:
            args.extend(["--branch", ref])
        args.extend([url, str(path)])
        _run(args, cwd=path.parent)
        return cls(path, author_name=author_name, author_email=author_email)

    # ------------------------------------------------------------------ git IO
    def _identity_args(self) -> List[str]:
        args: List[str] = []
        if self.author_name:
            args.extend(["-c", f"user.name={self.author_name}"])
        if self.author_email:
            args.extend(["-c", f"user.email={self.author_email}"])
        return args

    def _run_git(self, args: Sequence[str], *, check: bool = True) -> subprocess.CompletedProcess[str]:
        return _run(args, cwd=self.root, check=check)

    def git(self, *args: str, check: bool = True) -> subprocess.CompletedProcess[str]:
        """Execute ``git`` with ``args`` relative to the repository root."""

        return self._run_git(list(args), check=check)

    # ----------------------------------------------------------------- remotes
    def remote_url(self, remote: str = "origin") -> str | None:
        """Return the configured URL for ``remote`` or ``None`` when missing."""

        result = self._run_git(["remote", "get-url", remote], check=False)
        if result.returncode != 0:
            return None
        return result.stdout.strip() or None

    def fetch_tags(self, remote: str = "origin") -> None:
        self._run_git(["fetch", "--tags", remote], check=True)

    # -------------------------------------------------------------------- refs
    def head(self) -> str | None:
        """Return the commit SHA of ``HEAD`` (``None`` for an unborn branch)."""

        result = self._run_git(["rev-parse", "--verify", "HEAD"], check=False)
        if result.returncode != 0:
            return None
        return result.stdout.strip() or None

    def resolve(self, ref: str) -> str:
        """Return the commit SHA ``ref`` points at."""

        result = self._run_git(["rev-parse", "--verify", f"{ref}^{{commit}}"], check=False)
        if result.returncode != 0:
            message = result.stderr.strip() or result.stdout.strip() or "unknown revision"
            raise GitError(f"Unable to resolve {ref}: {message}")
        return result.stdout.strip()

    def exact_tag(self) -> str | None:
        """Return the tag ``HEAD`` sits on exactly, or ``None``."""

        result = self._run_git(["describe", "--tags", "--exact-match"], check=False)
        if result.returncode != 0:
            return None
        return result.stdout.strip() or None

    def checkout(self, ref: str, *, detach: bool = False, force: bool = False) -> None:
        args: List[str] = ["checkout"]
        if force:
            args.append("--force")
        if detach:
            args.append("--detach")
        args.append(ref)
        self._run_git(args, check=True)

    def reset_hard(self, ref: str | None = None) -> None:
        args: List[str] = ["reset", "--hard"]
        if ref:
            args.append(ref)
        self._run_git(args, check=True)

    def reset_soft(self, ref: str) -> None:
        self._run_git(["reset", "--soft", ref], check=True)

    def clean_untracked(self, *extra: str) -> None:
        """Remove untracked files (``git clean -fd`` plus ``extra`` flags)."""

        self._run_git(["clean", "-fd", *extra], check=True)

    # -------------------------------------------------------------- branches
    def current_branch(self) -> str | None:
        """Return the current branch name or ``None`` when detached."""

        result = self._run_git(["rev-parse", "--abbrev-ref", "HEAD"], check=False)
        if result.returncode != 0:
            return None
        branch = result.stdout.strip()
        if not branch or branch == "HEAD":
            return None
        return branch

    def list_branches(self, prefix: str | None = None) -> List[str]:
        """Return local branch names, optionally filtered by ``prefix``."""

        result = self._run_git(["for-each-ref", "--format=%(refname:short)", "refs/heads/"], check=True)
        branches = [line.strip() for line in result.stdout.splitlines() if line.strip()]
        if prefix:
            branches = [branch for branch in branches if branch.startswith(prefix)]
        return sorted(branches)

    def create_branch(self, name: str, start_point: str, *, checkout: bool = True) -> None:
        if checkout:
            self._run_git(["checkout", "-b", name, start_point], check=True)
        else:
            self._run_git(["branch", name, start_point], check=True)

    def delete_branch(self, name: str) -> None:
        self._run_git(["branch", "-D", name], check=True)

    def detach(self) -> None:
        """Detach ``HEAD`` at its current commit."""

        self._run_git(["checkout", "--detach"], check=True)

    # ------------------------------------------------------------------ merge
    def merge(self, branch: str) -> MergeOutcome:
        """Three-way merge ``branch`` into ``HEAD`` without opening an editor."""

        result = self._run_git([*self._identity_args(), "merge", "--no-edit", branch], check=False)
        unmerged: tuple[Path, ...] = ()
        if result.returncode != 0:
            unmerged = tuple(self.unmerged_paths())
        return MergeOutcome(
            branch=branch,
            returncode=result.returncode,
            stdout=result.stdout,
            stderr=result.stderr,
            unmerged=unmerged,
        )

    def merge_abort(self) -> None:
        self._run_git(["merge", "--abort"], check=True)

    # ------------------------------------------------------------- repo status
    def _status_entries(self) -> List[tuple[str, Path]]:
        result = self._run_git(["status", "--porcelain"], check=True)
        entries: List[tuple[str, Path]] = []
        for line in result.stdout.splitlines():
            if not line:
                continue
            status = line[:2]
            raw_path = line[3:]
            if status[0] in {"R", "C"} and " -> " in raw_path:
                raw_path = raw_path.split(" -> ", 1)[1]
            status_clean = status.strip() or status
            entries.append((status_clean, Path(raw_path.strip().strip('"'))))
        return entries

    def status_entries(self) -> List[tuple[str, Path]]:
        """Return raw porcelain status entries as ``(status, path)`` pairs."""

        return self._status_entries()

    def working_tree_changes(self, *, include_untracked: bool = True) -> List[Path]:
        """Return the set of paths with pending modifications."""

        paths: Set[Path] = set()
        for status, path in self._status_entries():
            if status == "??" and not include_untracked:
                continue
            paths.add(path)
        return sorted(paths, key=lambda item: item.as_posix())

    def unmerged_paths(self) -> List[Path]:
        """Return paths git reports as unmerged (conflict markers pending)."""

        return sorted(
            (path for status, path in self._status_entries() if status in _UNMERGED_CODES),
            key=lambda item: item.as_posix(),
        )

    def untracked_files(self) -> List[Path]:
        return [path for status, path in self._status_entries() if status == "??"]

    def is_clean(self, *, include_untracked: bool = True) -> bool:
        """Return ``True`` when the working tree has no pending changes."""

        return not self.working_tree_changes(include_untracked=include_untracked)

    # ---------------------------------------------------------------- commits
    def commit_all(self, message: str, *, allow_empty: bool = False) -> str | None:
        """Add all changes to the index and create a commit.

        Returns the new commit SHA when a commit was created.  Returns ``None`` when
        there were no changes to commit (and ``allow_empty`` is ``False``).
        """

        self._run_git(["add", "--all"], check=True)

        commit_args: List[str] = [*self._identity_args(), "commit", "-m", message]
        if allow_empty:
            commit_args.append("--allow-empty")

        commit = self._run_git(commit_args, check=False)
        if commit.returncode != 0:
            output = commit.stderr.strip() or commit.stdout.strip() or ""
            if "nothing to commit" in output.lower():
                return None
            raise GitError(f"git commit failed: {output}")

        rev = self._run_git(["rev-parse", "HEAD"], check=True)
        return rev.stdout.strip()

    # ----------------------------------------------------------- diff helpers
    def diff(self, *args: str) -> str:
        """Return the unified diff for ``args`` (defaults to the whole repo)."""

        result = self._run_git(["diff", *args], check=True)
        return result.stdout


__all__ = ["GitError", "GitRepository", "MergeOutcome"]
