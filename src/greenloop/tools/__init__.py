"""Tool integrations used by the remediation loop."""

from .checks import CheckResult, CheckRun, CheckStep, LocalCheckRunner
from .committer import ChangeCommitter, CommitOutcome
from .snapshots import SnapshotManager
from .vcs import GitError, GitRepository

__all__ = [
    "ChangeCommitter",
    "CheckResult",
    "CheckRun",
    "CheckStep",
    "CommitOutcome",
    "GitError",
    "GitRepository",
    "LocalCheckRunner",
    "SnapshotManager",
]
