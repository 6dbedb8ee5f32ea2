"""Typed records tracked for a single remediation session."""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


def utc_now() -> datetime:
    """Return a timezone-aware UTC timestamp."""
    return datetime.now(timezone.utc)


class RecordModel(BaseModel):
    """Base Pydantic model with strict field handling."""

    model_config = ConfigDict(extra="forbid", frozen=False)


class ProviderModel(BaseModel):
    """Base model for payloads parsed from the CI provider.

    Provider JSON uses camelCase keys and may grow new fields at any time, so
    unknown keys are ignored and both the alias and field name are accepted.
    """

    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    @field_validator("status", "conclusion", mode="before", check_fields=False)
    @classmethod
    def _blank_as_none(cls, value: object) -> object:
        # gh reports an empty string until a run or job has concluded.
        if isinstance(value, str) and not value.strip():
            return None
        if isinstance(value, str):
            return value.strip().lower()
        return value


class FixMode(str, Enum):
    """Reasoning budget requested from the fix agent."""

    CHEAP = "cheap"
    EXPENSIVE = "expensive"


class FixOutcome(str, Enum):
    """Result of a single fix attempt."""

    SUCCESS = "success"
    FAILURE = "failure"
    TIMEOUT = "timeout"


class RunStatus(str, Enum):
    """Lifecycle states reported for a workflow run or job."""

    QUEUED = "queued"
    WAITING = "waiting"
    PENDING = "pending"
    REQUESTED = "requested"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"


class RunConclusion(str, Enum):
    """Final verdict of a completed workflow run or job."""

    SUCCESS = "success"
    FAILURE = "failure"
    CANCELLED = "cancelled"
    SKIPPED = "skipped"
    NEUTRAL = "neutral"
    TIMED_OUT = "timed_out"
    ACTION_REQUIRED = "action_required"
    STARTUP_FAILURE = "startup_failure"
    STALE = "stale"


FAILED_CONCLUSIONS = frozenset(
    {
        RunConclusion.FAILURE,
        RunConclusion.CANCELLED,
        RunConclusion.TIMED_OUT,
        RunConclusion.STARTUP_FAILURE,
    }
)


class FixAttempt(RecordModel):
    """One dispatch of the fix agent for a given task."""

    task_key: str
    mode: FixMode
    attempt_number: int
    outcome: FixOutcome
    recorded_at: datetime = Field(default_factory=utc_now)


class WorkflowRun(ProviderModel):
    """A CI pipeline execution as reported by ``gh run list``."""

    id: int = Field(alias="databaseId")
    name: str = ""
    status: RunStatus
    conclusion: Optional[RunConclusion] = None
    head_sha: str = Field(default="", alias="headSha")
    head_branch: str = Field(default="", alias="headBranch")
    created_at: Optional[datetime] = Field(default=None, alias="createdAt")
    url: str = ""

    @property
    def completed(self) -> bool:
        return self.status == RunStatus.COMPLETED

    @property
    def succeeded(self) -> bool:
        return self.completed and self.conclusion == RunConclusion.SUCCESS


class JobRecord(ProviderModel):
    """A single job inside a workflow run."""

    id: int = Field(alias="databaseId")
    name: str = ""
    status: Optional[RunStatus] = None
    conclusion: Optional[RunConclusion] = None
    priority: int = 50

    @property
    def failed(self) -> bool:
        return self.conclusion in FAILED_CONCLUSIONS

    @property
    def active(self) -> bool:
        return self.status is not None and self.status != RunStatus.COMPLETED


class Snapshot(RecordModel):
    """Working tree state captured before an automated fix."""

    label: str
    sha: Optional[str] = None
    diff: str = ""
    timestamp: datetime = Field(default_factory=utc_now)


__all__ = [
    "FAILED_CONCLUSIONS",
    "FixAttempt",
    "FixMode",
    "FixOutcome",
    "JobRecord",
    "RecordModel",
    "RunConclusion",
    "RunStatus",
    "Snapshot",
    "WorkflowRun",
    "utc_now",
]
