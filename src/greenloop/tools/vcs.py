"""Minimal git helpers
The helpers below provide just enough structure to inspect the working tree,
stage and commit automated fixes, push them, and restore a recorded state.
"""

from __future__ import annotations

from pathlib import Path
from typing import List, Optional, Sequence

import subprocess


class GitError(RuntimeError):
    """Raised when a git command fails or the repository cannot be used."""


class GitRepository:
    """Lightweight wrapper around ``git`` commands."""

    def __init__(self, root: Path | str, *, timeout: float = 300.0) -> None:
        self.root = Path(root).resolve()
        if not (self.root / ".git").exists():
            raise GitError(f"Not a git repository: {self.root}")
        self.timeout = timeout

    @classmethod
    def discover(cls, start: Path | str | None = None) -> "GitRepository":
        """Locate the nearest git repository starting from ``start``."""

        path = Path(start or Path.cwd()).resolve()
        for candidate in (path, *path.parents):
            if (candidate / ".git").exists():
                return cls(candidate)
        raise GitError(f"Unable to locate a git repository from {path}")

    # ------------------------------------------------------------------ git IO
    def _run_git(
        self,
        args: Sequence[str],
        *,
        check: bool = True,
        input: Optional[str] = None,
    ) -> subprocess.CompletedProcess[str]:
        return _execute(args, cwd=self.root, check=check, timeout=self.timeout, input=input)

    def git(self, *args: str, check: bool = True) -> subprocess.CompletedProcess[str]:
        """Execute ``git`` with ``args`` relative to the repository root."""

        return self._run_git(list(args), check=check)

    def git_dir(self) -> Path:
        """Return the absolute path of the repository's ``.git`` directory."""

        result = self._run_git(["rev-parse", "--git-dir"], check=True)
        candidate = Path(result.stdout.strip())
        if not candidate.is_absolute():
            candidate = (self.root / candidate).resolve()
        return candidate

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

    def rev_parse(self, ref: str = "HEAD") -> str | None:
        """Return the full SHA for ``ref`` or ``None`` when it does not resolve."""

        result = self._run_git(["rev-parse", "--verify", ref], check=False)
        if result.returncode != 0:
            return None
        return result.stdout.strip() or None

    def recent_log(self, count: int = 5) -> str:
        """Return ``git log --oneline`` for the last ``count`` commits."""

        result = self._run_git(["log", "--oneline", "-n", str(count)], check=False)
        return result.stdout if result.returncode == 0 else ""

    # ------------------------------------------------------------- repo status
    def status(self) -> str:
        """Return ``git status --short`` output."""

        return self._run_git(["status", "--short"], check=True).stdout

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

    def working_tree_changes(self, *, include_untracked: bool = True) -> List[Path]:
        """Return the set of paths with pending modifications."""

        paths = {
            path
            for status, path in self._status_entries()
            if include_untracked or status != "??"
        }
        return sorted(paths, key=lambda item: item.as_posix())

    def is_clean(self, *, include_untracked: bool = True) -> bool:
        """Return ``True`` when the working tree has no pending changes."""

        return not self.working_tree_changes(include_untracked=include_untracked)

    # ----------------------------------------------------------- diff helpers
    def diff(self, *paths: str, staged: bool = False, against: str | None = None) -> str:
        """Return the unified diff for ``paths`` (defaults to the whole repo)."""

        args: List[str] = ["diff"]
        if staged:
            args.append("--cached")
        if against:
            args.append(against)
        if paths:
            args.append("--")
            args.extend(paths)
        result = self._run_git(args, check=True)
        return result.stdout

    def apply_patch(self, patch: str) -> None:
        """Apply ``patch`` (a ``git diff`` payload) to the working tree."""

        if not patch.strip():
            return
        payload = patch if patch.endswith("\n") else f"{patch}\n"
        self._run_git(["apply", "--whitespace=nowarn", "-"], check=True, input=payload)

    # ------------------------------------------------------------- index/commit
    def add(self, paths: Sequence[str] | None = None) -> None:
        """Stage ``paths`` or, when omitted, every change including untracked files."""

        args: List[str] = ["add"]
        if paths:
            args.extend(["--", *paths])
        else:
            args.append("--all")
        self._run_git(args, check=True)

    def reset_index(self) -> None:
        """Unstage everything while leaving the working tree untouched."""

        self._run_git(["reset", "-q"], check=True)

    def reset_hard(self, ref: str) -> None:
        """Move ``HEAD`` and the working tree to ``ref``."""

        self._run_git(["reset", "--hard", ref], check=True)

    def commit(self, message: str, *, no_verify: bool = False) -> str | None:
        """Commit the staged changes and return the new SHA.

        Returns ``None`` when there was nothing to commit.
        """

        commit_args: List[str] = ["commit", "-m", message]
        if no_verify:
            commit_args.append("--no-verify")

        commit = self._run_git(commit_args, check=False)
        if commit.returncode != 0:
            output = commit.stderr.strip() or commit.stdout.strip() or ""
            if "nothing to commit" in output.lower() or "nothing added to commit" in output.lower():
                return None
            raise GitError(f"git commit failed: {output}")

        return self.rev_parse("HEAD")

    # -------------------------------------------------------------- remotes
    def remote_url(self, remote: str = "origin") -> str | None:
        """Return the URL configured for ``remote``."""

        result = self._run_git(["remote", "get-url", remote], check=False)
        if result.returncode != 0:
            return None
        return result.stdout.strip() or None

    def push(
        self,
        remote: str | None = None,
        branch: str | None = None,
        *,
        set_upstream: bool = False,
        no_verify: bool = False,
    ) -> None:
        """Push the current branch, or ``branch`` to ``remote`` when given."""

        args: List[str] = ["push"]
        if set_upstream:
            args.append("-u")
        if no_verify:
            args.append("--no-verify")
        if remote:
            args.append(remote)
            if branch:
                args.append(branch)
        self._run_git(args, check=True)


def _execute(
    args: Sequence[str],
    *,
    cwd: Path,
    check: bool,
    timeout: float,
    input: Optional[str] = None,
) -> subprocess.CompletedProcess[str]:
    command = ["git", *args]
    try:
        process = subprocess.run(
            command,
            cwd=cwd,
            capture_output=True,
            text=False,
            check=False,
            input=input.encode("utf-8") if input is not None else None,
            timeout=timeout,
        )
    except subprocess.TimeoutExpired as error:
        raise GitError(f"git {' '.join(args)} timed out after {timeout:g}s") from error
    except FileNotFoundError as error:
        raise GitError("git executable not found on PATH") from error
    stdout = process.stdout.decode("utf-8", errors="replace") if process.stdout else ""
    stderr = process.stderr.decode("utf-8", errors="replace") if process.stderr else ""
    result = subprocess.CompletedProcess(process.args, process.returncode, stdout, stderr)
    if check and result.returncode != 0:
        message = result.stderr.strip() or result.stdout.strip() or "unknown git error"
        raise GitError(f"git {' '.join(args)} failed: {message}")
    return result


__all__ = ["GitError", "GitRepository"]
