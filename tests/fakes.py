"""In-memory collaborators for exercising the orchestrator without git, agents or GitHub."""

from __future__ import annotations

import hashlib
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Sequence

from greenloop.ci.monitor import CIMonitor
from greenloop.ci.polling import PollScheduler
from greenloop.config import OrchestratorConfig
from greenloop.dispatcher import FixDispatcher
from greenloop.escalation import EscalationStrategy
from greenloop.memory.schema import JobRecord, WorkflowRun
from greenloop.models.agent_client import AgentClient, AgentRequest, AgentResult
from greenloop.orchestrator import Orchestrator, OrchestratorContext
from greenloop.tools.checks import CheckResult, CheckStep, LocalCheckRunner
from greenloop.tools.committer import CommitOutcome
from greenloop.utils.cancellation import CancellationToken

NOW = datetime(2026, 3, 1, 12, 0, 0, tzinfo=timezone.utc)


def sha_for(index: int) -> str:
    return hashlib.sha1(f"commit-{index}".encode("utf-8")).hexdigest()


SHA_0 = sha_for(0)


class ScriptedRunner(LocalCheckRunner):
    """Serve scripted results per step name; the last entry repeats, unknown steps pass."""

    def __init__(self, script: Optional[Dict[str, List[tuple[int, str]]]] = None) -> None:
        super().__init__(Path("."))
        self.script: Dict[str, List[tuple[int, str]]] = {name: list(items) for name, items in (script or {}).items()}
        self.calls: List[str] = []

    def set(self, name: str, *results: tuple[int, str]) -> None:
        self.script[name] = list(results)

    def run_step(self, step: CheckStep) -> CheckResult:
        self.calls.append(step.name)
        queue = self.script.get(step.name)
        exit_code, stderr = (0, "")
        if queue:
            exit_code, stderr = queue.pop(0) if len(queue) > 1 else queue[0]
        return CheckResult(step_name=step.name, exit_code=exit_code, stderr=stderr)


class FakeVcs:
    def __init__(self, head: str = SHA_0) -> None:
        self.head = head

    def rev_parse(self, ref: str = "HEAD") -> Optional[str]:
        return self.head


class FakeCommitter:
    """Commits whenever something marked the tree dirty."""

    def __init__(self, vcs: FakeVcs) -> None:
        self.vcs = vcs
        self.dirty = False
        self.commits: List[tuple[str, bool]] = []
        self.pushes = 0
        self._counter = 1

    def commit_and_maybe_push(self, message: Optional[str] = None, *, no_verify: bool = False, push: bool = True) -> CommitOutcome:
        if not self.dirty:
            return CommitOutcome(committed=False)
        self.dirty = False
        self._counter += 1
        sha = sha_for(self._counter)
        self.vcs.head = sha
        self.commits.append((sha, push))
        if push:
            self.pushes += 1
        return CommitOutcome(committed=True, sha=sha, pushed=push, message=message or "Fix local checks and update tests")

    def push(self, *, no_verify: bool = False) -> None:
        self.pushes += 1


class FakeSnapshots:
    def __init__(self) -> None:
        self.labels: List[str] = []

    def create(self, label: str) -> None:
        self.labels.append(label)

    def __len__(self) -> int:
        return len(self.labels)


class FakeAgent(AgentClient):
    """Record every request and run ``on_invoke`` to simulate edits."""

    name = "fake-agent"

    def __init__(self, on_invoke: Optional[Callable[[AgentRequest], Any]] = None, exit_code: int = 0) -> None:
        self.requests: List[AgentRequest] = []
        self.on_invoke = on_invoke
        self.exit_code = exit_code

    def _raw_invoke(self, request: AgentRequest) -> AgentResult:
        self.requests.append(request)
        if self.on_invoke is not None:
            self.on_invoke(request)
        return AgentResult(exit_code=self.exit_code, stdout="done", duration_ms=1)


class FakeProvider:
    """Scripted CI provider: each ``list_runs`` call serves the next entry (last repeats)."""

    def __init__(self, polls: Sequence[Any]) -> None:
        self.polls = list(polls)
        self.jobs: Dict[int, List[JobRecord]] = {}
        self.job_logs: Dict[int, str] = {}
        self.failed_logs: Dict[int, Any] = {}
        self.list_calls = 0

    def list_runs(self, limit: int = 20) -> List[WorkflowRun]:
        self.list_calls += 1
        entry = self.polls.pop(0) if len(self.polls) > 1 else self.polls[0]
        if isinstance(entry, Exception):
            raise entry
        return list(entry)

    def get_run_jobs(self, run_id: int) -> List[JobRecord]:
        return [job.model_copy() for job in self.jobs.get(run_id, [])]

    def get_job_log(self, job_id: int) -> str:
        return self.job_logs[job_id]

    def get_failed_run_log(self, run_id: int) -> str:
        value = self.failed_logs[run_id]
        if isinstance(value, list):
            return value.pop(0) if len(value) > 1 else value[0]
        return value

    def run_url(self, run_id: int) -> str:
        return f"https://github.com/acme/widgets/actions/runs/{run_id}"

    def find_pull_request(self, sha: str) -> Optional[dict[str, Any]]:
        return None


def make_run(run_id: int, head_sha: str, status: str, conclusion: Optional[str] = None) -> WorkflowRun:
    return WorkflowRun.model_validate(
        {
            "databaseId": run_id,
            "name": "CI",
            "status": status,
            "conclusion": conclusion or "",
            "headSha": head_sha,
            "headBranch": "main",
            "createdAt": NOW.isoformat(),
        }
    )


def make_job(job_id: int, name: str, status: str = "completed", conclusion: Optional[str] = None) -> JobRecord:
    return JobRecord.model_validate(
        {"databaseId": job_id, "name": name, "status": status, "conclusion": conclusion or ""}
    )


class Harness:
    """Bundle of fakes wired into a real :class:`Orchestrator`."""

    def __init__(
        self,
        config: OrchestratorConfig,
        runner: ScriptedRunner,
        *,
        agent: Optional[FakeAgent] = None,
        provider: Optional[FakeProvider] = None,
    ) -> None:
        self.config = config
        self.runner = runner
        self.vcs = FakeVcs()
        self.committer = FakeCommitter(self.vcs)
        self.snapshots = FakeSnapshots()
        self.agent = agent or FakeAgent()
        self.provider = provider
        self.sleeps: List[float] = []
        self.token = CancellationToken()
        self.context = OrchestratorContext(
            config=config,
            repo_root=Path("/work/widgets"),
            runner=runner,
            dispatcher=FixDispatcher(self.agent, progress_interval=0, token=self.token),
            committer=self.committer,  # type: ignore[arg-type]
            snapshots=self.snapshots,  # type: ignore[arg-type]
            strategy=EscalationStrategy(),
            vcs=self.vcs,
            token=self.token,
            scheduler=PollScheduler(self.sleeps.append),
            monitor=CIMonitor(provider) if provider is not None else None,
            slug="acme/widgets",
            clock=lambda: NOW,
        )

    def orchestrator(self) -> Orchestrator:
        return Orchestrator(self.context)


def steps(*names: str) -> List[CheckStep]:
    return [CheckStep(name=name, command="pnpm", args=("run", name)) for name in names]
