"""Session state machine driving local checks and CI to green.

One :class:`Orchestrator` owns one session: the set of failure fingerprints
already attempted, the auto-fix budget, the CI retry counter and the escalation
state.  Collaborators are injected through :class:`OrchestratorContext` so the
loop can be exercised without git, the agent CLI or GitHub.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import Enum
from pathlib import Path
from typing import Callable, List, Optional, Protocol, Sequence

from .ci.github import GitHubCLIProvider, parse_github_remote
from .ci.monitor import CIMonitor
from .ci.polling import PollScheduler
from .ci.triage import (
    extract_relevant_log,
    failed_jobs,
    prioritize,
    summarize_log,
    truncate_for_prompt,
)
from .config import OrchestratorConfig
from .dispatcher import DispatchResult, FixDispatcher
from .errors import (
    AutoFixBudgetExceeded,
    CIFetchFailure,
    CIRunNotFound,
    DuplicateErrorDetected,
    GreenloopError,
    LocalCheckFailure,
    RetryBudgetExceeded,
    ToolUnavailable,
)
from .escalation import EscalationStrategy
from .memory.schema import FixAttempt, FixMode, FixOutcome, JobRecord, RunStatus, WorkflowRun, utc_now
from .models.agent_client import AgentClient
from .models.claude_cli import ClaudeCLIClient
from .prompts import (
    project_name,
    render_ci_fix_prompt,
    render_escalation_prompt,
    render_job_fix_prompt,
    render_local_fix_prompt,
)
from .tools.checks import CheckResult, CheckRun, CheckStep, LocalCheckRunner
from .tools.committer import ChangeCommitter, CommitOutcome
from .tools.snapshots import SnapshotManager, default_snapshot_root
from .tools.vcs import GitError, GitRepository
from .utils.cancellation import CancellationToken
from .utils.fingerprint import fingerprint

__all__ = [
    "Orchestrator",
    "OrchestratorContext",
    "SessionEvent",
    "SessionReport",
    "SessionState",
]

LOGGER = logging.getLogger(__name__)

_WAITING_STATUSES = {RunStatus.QUEUED, RunStatus.WAITING, RunStatus.PENDING, RunStatus.REQUESTED}


class SessionState(str, Enum):
    """Phases of a remediation session."""

    LOCAL_CHECKS = "local-checks"
    AUTO_FIX_LOCAL = "auto-fix-local"
    COMMIT_PUSH = "commit-push"
    CI_POLL = "ci-poll"
    JOB_FIX = "job-fix"
    DONE = "done"
    FAILED = "failed"


@dataclass(slots=True)
class SessionEvent:
    kind: str
    message: str
    state: SessionState
    at: datetime = field(default_factory=utc_now)


@dataclass(slots=True)
class SessionReport:
    """Terminal summary of a session."""

    state: SessionState
    message: str = ""
    failure_kind: Optional[str] = None
    error_excerpt: str = ""
    run_url: Optional[str] = None
    fix_attempts: List[FixAttempt] = field(default_factory=list)
    snapshots: int = 0
    commits: List[str] = field(default_factory=list)
    events: List[SessionEvent] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return self.state == SessionState.DONE

    def count(self, kind: str) -> int:
        return sum(1 for event in self.events if event.kind == kind)


class HeadSource(Protocol):
    def rev_parse(self, ref: str = "HEAD") -> Optional[str]: ...


class CheckExecutor(Protocol):
    def run(self, steps: Sequence[CheckStep]) -> CheckRun: ...

    def run_step(self, step: CheckStep) -> CheckResult: ...


@dataclass(slots=True)
class OrchestratorContext:
    """Collaborators for one session."""

    config: OrchestratorConfig
    repo_root: Path
    runner: CheckExecutor
    dispatcher: FixDispatcher
    committer: ChangeCommitter
    snapshots: SnapshotManager
    strategy: EscalationStrategy
    vcs: HeadSource
    token: CancellationToken
    scheduler: PollScheduler
    monitor: Optional[CIMonitor] = None
    slug: str = ""
    clock: Callable[[], datetime] = utc_now

    @classmethod
    def create(
        cls,
        config: OrchestratorConfig,
        repo_root: Path | str,
        *,
        token: Optional[CancellationToken] = None,
        agent: Optional[AgentClient] = None,
        preflight: bool = True,
        ci: bool = True,
    ) -> "OrchestratorContext":
        """Wire real collaborators for the repository at ``repo_root``.

        With ``preflight`` the agent CLI and ``gh`` are verified up front and
        :class:`~greenloop.errors.ToolUnavailable` is raised when either is
        missing.  Without ``ci`` no CI provider is wired (local-only sessions).
        """

        repo = GitRepository(repo_root)
        token = token or CancellationToken()
        client = agent or ClaudeCLIClient(commands=config.agent.command, args=config.agent.args)
        if preflight and not config.dry_run:
            client.ensure_available()

        dispatcher = FixDispatcher(
            client,
            cwd=repo.root,
            timeout=config.agent.timeout,
            interactive_timeout=config.agent.interactive_timeout,
            expensive_prefix=config.agent.expensive_prefix,
            progress_interval=config.agent.progress_interval,
            token=token,
        )
        session_id = utc_now().strftime("%Y%m%dT%H%M%S%fZ")
        storage_root = config.data_dir or default_snapshot_root(repo)
        snapshots = SnapshotManager(repo, Path(storage_root) / session_id / "snapshots")

        monitor: Optional[CIMonitor] = None
        slug = ""
        if ci and not config.dry_run:
            remote = repo.remote_url(config.ci.remote)
            parsed = parse_github_remote(remote or "")
            if parsed is None:
                raise ToolUnavailable(
                    "GitHub remote",
                    f"Remote '{config.ci.remote}' ({remote or 'unset'}) does not point at github.com.",
                )
            provider = GitHubCLIProvider(*parsed, cwd=repo.root, timeout=config.ci.command_timeout)
            if preflight:
                provider.ensure_available()
            monitor = CIMonitor(
                provider,
                run_list_limit=config.ci.run_list_limit,
                clock_skew=timedelta(seconds=config.ci.clock_skew),
                recent_window=timedelta(seconds=config.ci.recent_window),
            )
            slug = provider.slug

        return cls(
            config=config,
            repo_root=repo.root,
            runner=LocalCheckRunner(repo.root),
            dispatcher=dispatcher,
            committer=ChangeCommitter(repo, message_generator=dispatcher.generate_commit_message),
            snapshots=snapshots,
            strategy=EscalationStrategy(
                threshold=config.escalation.threshold,
                window_seconds=config.escalation.window_seconds,
                complexity_threshold=config.escalation.complexity_threshold,
            ),
            vcs=repo,
            token=token,
            scheduler=PollScheduler(token.sleep),
            monitor=monitor,
            slug=slug,
        )


class Orchestrator:
    """Drive LOCAL_CHECKS → COMMIT_PUSH → CI_POLL until DONE or FAILED."""

    def __init__(self, context: OrchestratorContext) -> None:
        self.ctx = context
        self.config = context.config
        self.state = SessionState.LOCAL_CHECKS
        self.seen_errors: set[str] = set()
        self.auto_fixes_used = 0
        self.events: List[SessionEvent] = []
        self.commits: List[str] = []
        self.last_excerpt = ""
        self.run_url: Optional[str] = None

    # ------------------------------------------------------------------ entry
    def run(self) -> SessionReport:
        """Run the full session and return its terminal report."""

        try:
            self._local_phase()
            self._transition(SessionState.COMMIT_PUSH)
            if self.config.dry_run:
                self._event("dry-run", "Would commit and push any changes, then monitor CI")
                return self._finish("Dry run complete; nothing was executed")
            self._commit(push=True)
            self._transition(SessionState.CI_POLL)
            self._ci_phase()
            return self._finish("CI is green")
        except (GreenloopError, GitError) as error:
            return self._fail(error)

    def run_local_only(self) -> SessionReport:
        """Run local checks with auto-fix and stop (used by watch mode)."""

        try:
            self._local_phase()
            return self._finish("Local checks passed")
        except (GreenloopError, GitError) as error:
            return self._fail(error)

    # ----------------------------------------------------------- local phase
    def _local_phase(self) -> None:
        self._transition(SessionState.LOCAL_CHECKS)
        remaining = list(self.config.checks)
        if self.config.dry_run:
            for step in remaining:
                self._event("dry-run", f"Would run {step.name}: {step.describe()}")
            return

        while remaining:
            self.ctx.token.raise_if_cancelled()
            run = self.ctx.runner.run(remaining)
            try:
                run.raise_for_failure()
            except LocalCheckFailure as failure:
                self._auto_fix_local(failure.step, failure.result)
                remaining = remaining[len(run.results):]
                continue
            break
        self._event("local-checks-passed", "All local checks passed")

    def _auto_fix_local(self, step: CheckStep, result: CheckResult) -> None:
        """Repair ``step`` or raise a terminal error."""

        source = f"local check '{step.name}'"
        self._guard_fingerprint(result.error_text, source=source)
        if self.auto_fixes_used >= self.config.max_auto_fixes:
            raise AutoFixBudgetExceeded(self.config.max_auto_fixes, step=step.name)

        self._transition(SessionState.AUTO_FIX_LOCAL)
        task = f"local {step.describe()}"
        project = project_name(self.ctx.repo_root)
        current = result
        while True:
            self.ctx.token.raise_if_cancelled()
            self.auto_fixes_used += 1
            self.ctx.snapshots.create(f"local-{step.name}-{self.auto_fixes_used}")
            mode = self.ctx.strategy.select_mode(task, force_mode=self.config.force_mode, detail=current.error_text)
            self._event(
                "fix-attempt",
                f"Auto-fix {self.auto_fixes_used}/{self.config.max_auto_fixes} for {step.name} ({mode.value})",
            )
            prompt = render_local_fix_prompt(project, step.describe(), truncate_for_prompt(current.error_text))
            dispatched = self.ctx.dispatcher.dispatch(prompt, mode)
            retry = self.ctx.runner.run_step(step)
            self._record(task, mode, dispatched, retry.ok)
            if retry.ok:
                self._event("fixed", f"{step.name} passes after automated fix")
                self._transition(SessionState.LOCAL_CHECKS)
                return

            current = retry
            if self.auto_fixes_used < self.config.max_auto_fixes:
                self._guard_fingerprint(retry.error_text, source=source)
                continue

            self._escalate(task, step, retry)
            self._transition(SessionState.LOCAL_CHECKS)
            return

    def _escalate(self, task: str, step: CheckStep, failing: CheckResult) -> None:
        """Hand the failure to one interactive session after the budget ran out."""

        if not self.config.interactive:
            raise AutoFixBudgetExceeded(self.config.max_auto_fixes, step=step.name)

        self.ctx.snapshots.create(f"local-{step.name}-interactive")
        mode = self.ctx.strategy.select_mode(task, force_mode=self.config.force_mode, detail=failing.error_text)
        self._event("escalation", f"Opening an interactive fix session for {step.name}")
        prompt = render_escalation_prompt(
            project_name(self.ctx.repo_root),
            step.describe(),
            self.auto_fixes_used,
            truncate_for_prompt(failing.error_text),
        )
        dispatched = self.ctx.dispatcher.dispatch(prompt, mode, interactive=True)
        retry = self.ctx.runner.run_step(step)
        self._record(task, mode, dispatched, retry.ok)
        if not retry.ok:
            self._remember_excerpt(retry.error_text)
            raise AutoFixBudgetExceeded(self.config.max_auto_fixes, step=step.name)
        self._event("fixed", f"{step.name} passes after interactive session")

    # ---------------------------------------------------------- commit phase
    def _commit(self, *, push: bool) -> CommitOutcome:
        outcome = self.ctx.committer.commit_and_maybe_push(no_verify=self.config.no_verify, push=push)
        if outcome.committed and outcome.sha:
            self.commits.append(outcome.sha)
            verb = "Committed and pushed" if outcome.pushed else "Committed"
            self._event("commit", f"{verb} {outcome.sha[:7]}: {outcome.message}")
        return outcome

    # -------------------------------------------------------------- CI phase
    def _ci_phase(self) -> None:
        monitor = self.ctx.monitor
        if monitor is None:
            raise CIFetchFailure("No CI provider configured for this session")

        scheduler = self.ctx.scheduler
        ci = self.config.ci
        max_retries = self.config.max_retries
        retry_count = 0
        head_sha = self._head_sha()
        push_time = self.ctx.clock()
        first_poll = True
        attempted_runs: set[int] = set()
        handled_jobs: set[str] = set()
        current_run_id: Optional[int] = None
        pending_push = False

        pull_request = monitor.find_pull_request(head_sha)
        if pull_request:
            self._event(
                "pull-request",
                f"Commit {head_sha[:7]} is part of PR #{pull_request.get('number')}: {pull_request.get('title', '')}",
            )

        scheduler.wait_fixed(ci.initial_delay, "Waiting for CI to pick up the push")
        while retry_count < max_retries:
            self.ctx.token.raise_if_cancelled()
            try:
                run = monitor.find_matching_run(head_sha, push_time, first_poll=first_poll, now=self.ctx.clock())
            except CIRunNotFound as error:
                self._run_missing(error)
                continue
            except CIFetchFailure as error:
                retry_count = self._fetch_failed(error, retry_count)
                continue
            first_poll = False

            if run is None or (run.id in attempted_runs and not run.head_sha.startswith(head_sha[:7])):
                scheduler.wait_fixed(ci.no_run_delay, f"No workflow run for {head_sha[:7]} yet")
                continue

            if run.id != current_run_id:
                current_run_id = run.id
                handled_jobs.clear()
                scheduler.reset()
                self._event("ci-run", f"Monitoring run {run.id} ({run.name or 'workflow'})")
            self.run_url = run.url or monitor.run_url(run.id)

            if run.status in _WAITING_STATUSES:
                scheduler.wait_for(run.status)
                continue

            if run.status == RunStatus.IN_PROGRESS:
                try:
                    jobs = monitor.get_jobs(run.id)
                except CIRunNotFound as error:
                    self._run_missing(error)
                    continue
                except CIFetchFailure as error:
                    retry_count = self._fetch_failed(error, retry_count)
                    continue
                for job in prioritize(failed_jobs(jobs)):
                    if job.name in handled_jobs:
                        continue
                    handled_jobs.add(job.name)
                    if self._fix_job(run, job, head_sha):
                        pending_push = True
                    self._transition(SessionState.CI_POLL)
                scheduler.wait_for(run.status, has_active_jobs=any(job.active for job in jobs))
                continue

            if pending_push:
                self.ctx.committer.push(no_verify=self.config.no_verify)
                pending_push = False
                attempted_runs.add(run.id)
                retry_count = 0
                head_sha = self._head_sha()
                push_time = self.ctx.clock()
                first_poll = True
                current_run_id = None
                self._event("push", f"Pushed job fixes as {head_sha[:7]}")
                self._event("retry-counter-reset", "New commit pushed; CI retry counter reset to 0")
                scheduler.wait_fixed(ci.new_commit_delay, "Waiting for the new run to start")
                continue

            if run.succeeded:
                self._event("ci-green", f"Run {run.id} succeeded")
                return

            try:
                raw_log = monitor.get_failed_logs(run.id)
            except CIRunNotFound as error:
                self._run_missing(error)
                continue
            except CIFetchFailure as error:
                retry_count = self._fetch_failed(error, retry_count)
                continue
            excerpt = extract_relevant_log(raw_log)
            self._guard_fingerprint(excerpt, source=f"CI run {run.id}")

            if run.id in attempted_runs:
                retry_count += 1
                self._event("ci-retry", f"Run {run.id} was already attempted ({retry_count}/{max_retries})")
                scheduler.wait_for(run.status)
                continue
            attempted_runs.add(run.id)

            if self._fix_run(run, head_sha, excerpt):
                retry_count = 0
                head_sha = self._head_sha()
                push_time = self.ctx.clock()
                first_poll = True
                self._event("retry-counter-reset", f"New commit {head_sha[:7]} pushed; CI retry counter reset to 0")
                scheduler.wait_fixed(ci.new_commit_delay, "Waiting for the new run to start")
            else:
                retry_count += 1
                self._event("ci-retry", f"CI fix produced no commit ({retry_count}/{max_retries})")

        raise RetryBudgetExceeded(max_retries, run_url=self.run_url)

    def _run_missing(self, error: CIRunNotFound) -> None:
        self._event("ci-run-missing", str(error))
        self.ctx.scheduler.wait_fixed(self.config.ci.no_run_delay, "CI provider does not know the run yet")

    def _fetch_failed(self, error: CIFetchFailure, retry_count: int) -> int:
        retry_count += 1
        self._event("ci-fetch-failure", f"{error} ({retry_count}/{self.config.max_retries})")
        if retry_count >= self.config.max_retries:
            raise error
        self.ctx.scheduler.wait_fixed(self.config.ci.fetch_backoff, "CI query failed")
        return retry_count

    def _fix_run(self, run: WorkflowRun, head_sha: str, excerpt: str) -> bool:
        """Repo-wide fix for a completed failed run; return ``True`` when a commit was pushed."""

        self._show_excerpt(f"Run {run.id} failed", excerpt)
        task = f"ci {run.name or run.id}"
        self.ctx.snapshots.create(f"ci-run-{run.id}")
        mode = self.ctx.strategy.select_mode(task, force_mode=self.config.force_mode, detail=excerpt)
        prompt = render_ci_fix_prompt(
            self.ctx.slug or project_name(self.ctx.repo_root),
            head_sha,
            self.run_url or "",
            truncate_for_prompt(excerpt),
            [step.describe() for step in self.config.checks],
        )
        self._event("fix-attempt", f"Fixing failed run {run.id} ({mode.value})")
        dispatched = self.ctx.dispatcher.dispatch(prompt, mode)
        verification = self.ctx.runner.run(self.config.checks)
        if not verification.ok:
            LOGGER.warning("Local checks still failing after CI fix:\n%s", verification.format_summary())
        self._record(task, mode, dispatched, verification.ok)
        outcome = self._commit(push=True)
        return outcome.committed and outcome.pushed

    def _fix_job(self, run: WorkflowRun, job: JobRecord, head_sha: str) -> bool:
        """Fix a single failed job while the run continues; commit without pushing."""

        self._transition(SessionState.JOB_FIX)
        monitor = self.ctx.monitor
        if monitor is None:
            raise CIFetchFailure("No CI provider configured for this session")
        try:
            raw_log = monitor.get_job_logs(job.id)
        except CIFetchFailure as error:
            self._event("ci-fetch-failure", f"Could not read log for job '{job.name}': {error}")
            return False
        excerpt = extract_relevant_log(raw_log)
        job_fingerprint = fingerprint(excerpt)
        if job_fingerprint in self.seen_errors:
            self._event("duplicate-skipped", f"Job '{job.name}' repeats an already attempted failure; skipping")
            return False
        self.seen_errors.add(job_fingerprint)
        self._remember_excerpt(excerpt)
        self._show_excerpt(f"Job '{job.name}' failed", excerpt)

        task = f"job {job.name}"
        self.ctx.snapshots.create(f"job-{job.id}")
        mode = self.ctx.strategy.select_mode(task, force_mode=self.config.force_mode, detail=excerpt)
        self._event("fix-attempt", f"Fixing job '{job.name}' (priority {job.priority}, {mode.value})")
        dispatched = self.ctx.dispatcher.dispatch(
            render_job_fix_prompt(job.name, run.id, head_sha, truncate_for_prompt(excerpt)),
            mode,
        )
        verification = self.ctx.runner.run(self.config.checks)
        self._record(task, mode, dispatched, verification.ok)
        outcome = self._commit(push=False)
        return outcome.committed

    # ---------------------------------------------------------------- helpers
    def _guard_fingerprint(self, text: str, *, source: str) -> str:
        """Register ``text`` as attempted or raise when it was attempted before."""

        self._remember_excerpt(text)
        value = fingerprint(text)
        if value in self.seen_errors:
            self._event("duplicate-error", f"Failure in {source} repeats fingerprint {value}")
            raise DuplicateErrorDetected(value, source=source, excerpt=self.last_excerpt)
        self.seen_errors.add(value)
        return value

    def _record(self, task: str, mode: FixMode, dispatched: DispatchResult, fixed: bool) -> None:
        if fixed:
            outcome = FixOutcome.SUCCESS
        elif dispatched.outcome == FixOutcome.TIMEOUT:
            outcome = FixOutcome.TIMEOUT
        else:
            outcome = FixOutcome.FAILURE
        self.ctx.strategy.record_attempt(task, fixed, mode=mode, outcome=outcome)

    def _remember_excerpt(self, text: str) -> None:
        self.last_excerpt = "\n".join(summarize_log(text))

    def _show_excerpt(self, title: str, text: str) -> None:
        lines = summarize_log(text)
        LOGGER.info("%s:\n%s", title, "\n".join(f"  {line}" for line in lines))

    def _head_sha(self) -> str:
        sha = self.ctx.vcs.rev_parse("HEAD")
        if not sha:
            raise GitError("Repository has no commits to monitor")
        return sha

    def _transition(self, state: SessionState) -> None:
        if state != self.state:
            LOGGER.debug("State %s -> %s", self.state.value, state.value)
        self.state = state

    def _event(self, kind: str, message: str) -> None:
        LOGGER.info(message)
        self.events.append(SessionEvent(kind=kind, message=message, state=self.state))

    def _report(self, **values: object) -> SessionReport:
        return SessionReport(
            fix_attempts=self.ctx.strategy.history,
            snapshots=len(self.ctx.snapshots),
            commits=list(self.commits),
            events=list(self.events),
            **values,  # type: ignore[arg-type]
        )

    def _finish(self, message: str) -> SessionReport:
        self._transition(SessionState.DONE)
        return self._report(state=SessionState.DONE, message=message, run_url=self.run_url)

    def _fail(self, error: BaseException) -> SessionReport:
        self._transition(SessionState.FAILED)
        kind = getattr(error, "kind", "git-error")
        LOGGER.error("Session failed: %s", error)
        excerpt = getattr(error, "excerpt", "") or self.last_excerpt
        run_url = getattr(error, "run_url", None) or self.run_url
        self.events.append(SessionEvent(kind="failed", message=str(error), state=SessionState.FAILED))
        return self._report(
            state=SessionState.FAILED,
            message=str(error),
            failure_kind=kind,
            error_excerpt=excerpt,
            run_url=run_url,
        )
