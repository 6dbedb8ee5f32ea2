"""Rank failed jobs and cut CI logs down to the part worth reading."""

from __future__ import annotations

from typing import Iterable, List, Sequence, TypeVar

from ..memory.schema import JobRecord

__all__ = [
    "DEFAULT_PRIORITY",
    "JOB_PRIORITIES",
    "extract_relevant_log",
    "failed_jobs",
    "job_priority",
    "prioritize",
    "summarize_log",
    "truncate_for_prompt",
]

DEFAULT_PRIORITY = 50

# First matching pattern wins, so longer names precede their substrings.
JOB_PRIORITIES: tuple[tuple[str, int], ...] = (
    ("build", 100),
    ("compile", 100),
    ("type check", 90),
    ("typecheck", 90),
    ("typescript", 90),
    ("tsc", 90),
    ("mypy", 90),
    ("lint", 80),
    ("eslint", 80),
    ("prettier", 80),
    ("ruff", 80),
    ("unit test", 70),
    ("test", 70),
    ("jest", 70),
    ("vitest", 70),
    ("pytest", 70),
    ("integration", 60),
    ("e2e", 50),
    ("coverage", 40),
    ("report", 30),
)

NOISE_MARKERS: tuple[str, ...] = (
    "Current runner version:",
    "Runner Image",
    "Operating System",
    "GITHUB_TOKEN",
    "Prepare workflow",
    "Prepare all required",
    "##[group]",
    "##[endgroup]",
    "Post job cleanup",
    "git config",
    "git submodule",
    "Cleaning up orphan",
    "secret source:",
    "[command]/usr/bin/git",
)

ERROR_MARKERS: tuple[str, ...] = (
    "##[error]",
    "Error:",
    "error TS",
    "FAIL",
    "✗",
    "❌",
    "failed",
    "ELIFECYCLE",
    "Traceback (most recent call last)",
)

PROMPT_LOG_LIMIT = 2000

T = TypeVar("T")


def job_priority(name: str) -> int:
    lowered = name.lower()
    for pattern, priority in JOB_PRIORITIES:
        if pattern in lowered:
            return priority
    return DEFAULT_PRIORITY


def prioritize(jobs: Iterable[T]) -> List[T]:
    """Return ``jobs`` ordered by descending priority (stable for ties).

    Accepts job names or :class:`JobRecord` instances.
    """

    def _key(job: T) -> int:
        if isinstance(job, JobRecord):
            return job_priority(job.name)
        return job_priority(str(job))

    return sorted(jobs, key=_key, reverse=True)


def extract_relevant_log(raw: str, *, max_lines: int = 100, tail_lines: int = 50) -> str:
    """Drop runner noise and keep the lines from the first error onwards.

    When no error marker is present the last ``tail_lines`` lines of the raw
    log are returned instead.
    """

    lines = raw.splitlines()
    relevant: List[str] = []
    capturing = False
    for line in lines:
        if any(marker in line for marker in NOISE_MARKERS):
            continue
        if not capturing and any(marker in line for marker in ERROR_MARKERS):
            capturing = True
        if capturing and line.strip():
            relevant.append(line)
            if len(relevant) >= max_lines:
                break

    if not relevant:
        return "\n".join(lines[-tail_lines:])
    return "\n".join(relevant)


def summarize_log(text: str, *, max_lines: int = 10, width: int = 100) -> List[str]:
    """Return the first ``max_lines`` non-empty lines clipped to ``width``."""

    summary: List[str] = []
    for line in text.splitlines():
        if not line.strip():
            continue
        summary.append(line if len(line) <= width else f"{line[: width - 3]}...")
        if len(summary) >= max_lines:
            break
    return summary


def truncate_for_prompt(text: str, limit: int = PROMPT_LOG_LIMIT) -> str:
    if len(text) <= limit:
        return text
    return f"{text[:limit]}\n... (truncated)"


def failed_jobs(jobs: Sequence[JobRecord]) -> List[JobRecord]:
    return [job for job in jobs if job.failed]

