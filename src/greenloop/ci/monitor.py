"""Locate the workflow run for a pushed commit and read its jobs and logs."""

from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from typing import Any, List, Optional, Protocol

from ..memory.schema import JobRecord, WorkflowRun
from .triage import job_priority

__all__ = ["CIMonitor", "CIProvider"]

LOGGER = logging.getLogger(__name__)


class CIProvider(Protocol):
    def list_runs(self, limit: int = 20) -> List[WorkflowRun]: ...

    def get_run_jobs(self, run_id: int) -> List[JobRecord]: ...

    def get_job_log(self, job_id: int) -> str: ...

    def get_failed_run_log(self, run_id: int) -> str: ...

    def run_url(self, run_id: int) -> str: ...

    def find_pull_request(self, sha: str) -> Optional[dict[str, Any]]: ...


class CIMonitor:
    """Read-only view of CI state.  Nothing is cached between polls."""

    def __init__(
        self,
        provider: CIProvider,
        *,
        run_list_limit: int = 20,
        clock_skew: timedelta = timedelta(seconds=120),
        recent_window: timedelta = timedelta(minutes=5),
    ) -> None:
        self.provider = provider
        self.run_list_limit = run_list_limit
        self.clock_skew = clock_skew
        self.recent_window = recent_window

    def find_matching_run(
        self,
        head_sha: str,
        push_time: datetime,
        *,
        first_poll: bool = False,
        now: Optional[datetime] = None,
    ) -> Optional[WorkflowRun]:
        """Return the run for ``head_sha``, falling back to runs created after the push."""

        runs = self.provider.list_runs(self.run_list_limit)
        if not runs:
            return None

        short_sha = head_sha[:7]
        for run in runs:
            if short_sha and run.head_sha.startswith(short_sha):
                return run

        cutoff = _aware(push_time) - self.clock_skew
        for run in runs:
            if run.created_at is not None and _aware(run.created_at) >= cutoff:
                LOGGER.debug("Matched run %s by creation time", run.id)
                return run

        if first_poll:
            current = _aware(now or datetime.now(timezone.utc))
            newest = runs[0]
            if newest.created_at is not None and current - _aware(newest.created_at) <= self.recent_window:
                LOGGER.debug("Using newest recent run %s on first poll", newest.id)
                return newest
        return None

    def get_jobs(self, run_id: int) -> List[JobRecord]:
        jobs = self.provider.get_run_jobs(run_id)
        for job in jobs:
            job.priority = job_priority(job.name)
        return jobs

    def get_job_logs(self, job_id: int) -> str:
        return self.provider.get_job_log(job_id)

    def get_failed_logs(self, run_id: int) -> str:
        return self.provider.get_failed_run_log(run_id)

    def run_url(self, run_id: int) -> str:
        return self.provider.run_url(run_id)

    def find_pull_request(self, sha: str) -> Optional[dict[str, Any]]:
        return self.provider.find_pull_request(sha)


def _aware(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value
