"""CI provider access, run matching, job triage and poll pacing."""

from .github import GitHubCLIProvider, parse_github_remote
from .monitor import CIMonitor
from .polling import PollScheduler, calculate_poll_delay
from .triage import extract_relevant_log, job_priority, prioritize

__all__ = [
    "CIMonitor",
    "GitHubCLIProvider",
    "PollScheduler",
    "calculate_poll_delay",
    "extract_relevant_log",
    "job_priority",
    "parse_github_remote",
    "prioritize",
]
