"""GitHub Actions access through the ``gh`` command line tool."""

from __future__ import annotations

import json
import logging
import re
import shutil
import subprocess
from pathlib import Path
from typing import Any, List, Optional, Sequence

from pydantic import TypeAdapter, ValidationError

from ..errors import CIFetchFailure, CIRunNotFound, ToolUnavailable
from ..memory.schema import JobRecord, WorkflowRun

__all__ = ["GitHubCLIProvider", "parse_github_remote"]

LOGGER = logging.getLogger(__name__)

RUN_FIELDS = "databaseId,status,conclusion,name,headSha,createdAt,headBranch,url"

_REMOTE = re.compile(r"github\.com[:/](?P<owner>[^/]+)/(?P<repo>.+?)(?:\.git)?/?$")
_RUNS = TypeAdapter(List[WorkflowRun])
_JOBS = TypeAdapter(List[JobRecord])


def parse_github_remote(url: str) -> Optional[tuple[str, str]]:
    """Return ``(owner, repo)`` for an https or ssh GitHub remote URL."""

    match = _REMOTE.search((url or "").strip())
    if match is None:
        return None
    return match.group("owner"), match.group("repo")


class GitHubCLIProvider:
    """Query workflow runs, jobs and logs for ``owner/repo``."""

    def __init__(
        self,
        owner: str,
        repo: str,
        *,
        cwd: Optional[Path] = None,
        timeout: float = 60.0,
        executable: str = "gh",
    ) -> None:
        self.owner = owner
        self.repo = repo
        self.cwd = cwd
        self.timeout = timeout
        self.executable = executable

    @property
    def slug(self) -> str:
        return f"{self.owner}/{self.repo}"

    def ensure_available(self) -> None:
        """Verify ``gh`` is installed and authenticated."""

        if shutil.which(self.executable) is None:
            raise ToolUnavailable(
                "GitHub CLI (gh)",
                "Install it from https://cli.github.com/ and run `gh auth login`.",
            )
        result = self._run(["auth", "status"], check=False)
        if result.returncode != 0:
            raise ToolUnavailable("GitHub CLI authentication", "Run `gh auth login` and try again.")

    # ------------------------------------------------------------------ queries
    def list_runs(self, limit: int = 20) -> List[WorkflowRun]:
        payload = self._run_json(
            ["run", "list", "--repo", self.slug, "--limit", str(limit), "--json", RUN_FIELDS]
        )
        try:
            runs = _RUNS.validate_python(payload)
        except ValidationError as error:
            raise CIFetchFailure(f"Unexpected workflow run payload: {error}") from error
        for run in runs:
            if not run.url:
                run.url = self.run_url(run.id)
        return runs

    def get_run_jobs(self, run_id: int) -> List[JobRecord]:
        payload = self._run_json(["run", "view", str(run_id), "--repo", self.slug, "--json", "jobs"])
        jobs = payload.get("jobs") if isinstance(payload, dict) else None
        if not isinstance(jobs, list):
            raise CIFetchFailure(f"Run {run_id} returned no job list")
        try:
            return _JOBS.validate_python(jobs)
        except ValidationError as error:
            raise CIFetchFailure(f"Unexpected job payload for run {run_id}: {error}") from error

    def get_job_log(self, job_id: int) -> str:
        return self._run(["run", "view", "--repo", self.slug, "--job", str(job_id), "--log"]).stdout

    def get_failed_run_log(self, run_id: int) -> str:
        return self._run(["run", "view", str(run_id), "--repo", self.slug, "--log-failed"]).stdout

    def run_url(self, run_id: int) -> str:
        return f"https://github.com/{self.slug}/actions/runs/{run_id}"

    def find_pull_request(self, sha: str) -> Optional[dict[str, Any]]:
        """Return the pull request containing ``sha``, if any (informational)."""

        try:
            payload = self._run_json(
                [
                    "pr", "list", "--repo", self.slug, "--state", "all",
                    "--search", sha, "--json", "number,title,state", "--limit", "1",
                ]
            )
        except CIFetchFailure as error:
            LOGGER.debug("Pull request lookup failed: %s", error)
            return None
        if isinstance(payload, list) and payload and isinstance(payload[0], dict):
            return payload[0]
        return None

    # ---------------------------------------------------------------- plumbing
    def _run(self, args: Sequence[str], *, check: bool = True) -> subprocess.CompletedProcess[str]:
        command = [self.executable, *args]
        try:
            result = subprocess.run(  # noqa: S603 - fixed executable, generated args
                command,
                cwd=self.cwd,
                capture_output=True,
                text=True,
                errors="replace",
                check=False,
                timeout=self.timeout,
            )
        except subprocess.TimeoutExpired as error:
            raise CIFetchFailure(f"gh {' '.join(args[:2])} timed out after {self.timeout:g}s") from error
        except OSError as error:
            raise CIFetchFailure(f"Failed to launch gh: {error}") from error
        if check and result.returncode != 0:
            message = result.stderr.strip() or result.stdout.strip() or "unknown gh error"
            if "not found" in message.lower() or "could not find" in message.lower():
                raise CIRunNotFound(f"gh {' '.join(args[:2])}: {message}")
            raise CIFetchFailure(f"gh {' '.join(args[:2])} failed: {message}")
        return result

    def _run_json(self, args: Sequence[str]) -> Any:
        output = self._run(args).stdout
        try:
            return json.loads(output or "null")
        except json.JSONDecodeError as error:
            snippet = output.strip().splitlines()[0][:120] if output.strip() else "(empty)"
            raise CIFetchFailure(f"gh returned invalid JSON: {snippet}") from error
