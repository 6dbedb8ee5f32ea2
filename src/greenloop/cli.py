"""CLI commands for driving a repository's checks and CI pipeline to green."""

from __future__ import annotations

import logging
import signal
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator, List, Optional

import typer

from .ci.triage import summarize_log
from .config import DEFAULT_CONFIG_NAME, ConfigError, OrchestratorConfig, load_config
from .errors import ToolUnavailable
from .memory.schema import FixMode, FixOutcome
from .models.claude_cli import ClaudeCLIClient
from .orchestrator import Orchestrator, OrchestratorContext, SessionReport
from .parallel import ParallelExecutor, ParallelTask
from .tools.snapshots import SnapshotManager, default_snapshot_root, latest_session_dir
from .tools.vcs import GitError, GitRepository
from .utils.cancellation import CancellationToken
from .watch import WatchLoop

APP_HELP = "Greenloop: run local checks, auto-fix failures, push, and watch CI until it is green."

app = typer.Typer(help=APP_HELP)

LOGGER = logging.getLogger("greenloop")


def _configure_logging(verbose: bool) -> None:
    handler = logging.StreamHandler()
    handler.setFormatter(logging.Formatter("%(asctime)s %(levelname)s %(name)s: %(message)s", "%H:%M:%S"))
    LOGGER.handlers[:] = [handler]
    LOGGER.setLevel(logging.DEBUG if verbose else logging.INFO)
    LOGGER.propagate = False


def _discover_repo(repo: Optional[Path]) -> GitRepository:
    try:
        return GitRepository.discover(repo)
    except GitError as error:
        typer.echo(str(error))
        raise typer.Exit(code=1) from error


def _load_settings(config: str, repo_root: Path) -> OrchestratorConfig:
    """Resolve ``config`` against the cwd, then the repository root, and load it."""

    candidate = Path(config)
    if not candidate.is_absolute() and not candidate.exists():
        candidate = repo_root / candidate
    try:
        return load_config(candidate, required=config != DEFAULT_CONFIG_NAME)
    except ConfigError as error:
        typer.echo(str(error))
        raise typer.Exit(code=1) from error


@contextmanager
def _interrupts_cancel(token: CancellationToken) -> Iterator[None]:
    """Turn the first Ctrl+C into a cooperative cancellation."""

    def _handler(signum: int, frame: object) -> None:
        typer.echo("\nInterrupted; stopping after the current step (Ctrl+C again to abort).")
        token.cancel("interrupted")
        signal.signal(signal.SIGINT, signal.default_int_handler)

    try:
        previous = signal.signal(signal.SIGINT, _handler)
    except ValueError:
        # signal handlers can only be installed from the main thread
        yield
        return
    try:
        yield
    finally:
        signal.signal(signal.SIGINT, previous)


def _render_report(report: SessionReport, *, title: Optional[str] = None) -> None:
    if title:
        typer.echo(f"== {title} ==")
    if report.ok:
        typer.echo(f"Outcome: success ({report.message})")
    else:
        typer.echo(f"Outcome: failed [{report.failure_kind}]")
        typer.echo(f"- Reason: {report.message}")

    succeeded = sum(1 for attempt in report.fix_attempts if attempt.outcome == FixOutcome.SUCCESS)
    typer.echo(f"- Fix attempts: {len(report.fix_attempts)} ({succeeded} succeeded)")
    if report.commits:
        typer.echo(f"- Commits: {', '.join(sha[:7] for sha in report.commits)}")
    if report.snapshots:
        typer.echo(f"- Snapshots: {report.snapshots}")
    if report.run_url:
        typer.echo(f"- Run: {report.run_url}")
    if not report.ok and report.error_excerpt:
        typer.echo("Last error:")
        for line in summarize_log(report.error_excerpt):
            typer.echo(f"  {line}")
    if not report.ok and report.failure_kind in {"retry-budget-exceeded", "auto-fix-budget-exceeded", "duplicate-error"}:
        typer.echo("Manual inspection required; roll back with `greenloop rollback` if needed.")


def _run_session(settings: OrchestratorConfig, root: Path, token: CancellationToken) -> SessionReport:
    context = OrchestratorContext.create(settings, root, token=token)
    return Orchestrator(context).run()


@app.command()
def green(
    config: str = typer.Option(
        DEFAULT_CONFIG_NAME,
        "--config",
        "-c",
        help="Path to the greenloop configuration file.",
    ),
    repo: Optional[Path] = typer.Option(
        None,
        "--repo",
        help="Repository to operate on (defaults to the current directory).",
    ),
    max_retries: Optional[int] = typer.Option(
        None, "--max-retries", min=0, help="CI fix attempts per commit before giving up (default 3)."
    ),
    max_auto_fixes: Optional[int] = typer.Option(
        None, "--max-auto-fixes", min=0, help="Automated local fix attempts per session (default 10)."
    ),
    dry_run: bool = typer.Option(False, "--dry-run", help="Show what would run without executing anything."),
    no_verify: bool = typer.Option(False, "--no-verify", help="Skip git hooks when committing and pushing."),
    workers: Optional[int] = typer.Option(None, "--workers", min=1, help="Parallel sessions in cross-repo mode."),
    cross_repo: bool = typer.Option(False, "--cross-repo", help="Run a session for every configured repository."),
    seq: bool = typer.Option(False, "--seq", help="Run cross-repo sessions one at a time."),
    force_mode: Optional[FixMode] = typer.Option(
        None, "--force-mode", case_sensitive=False, help="Always use the given fix mode."
    ),
    watch: bool = typer.Option(False, "--watch", help="Re-run local checks whenever files change."),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging."),
) -> None:
    """Run local checks, fix failures, push, and monitor CI until green."""

    _configure_logging(verbose)
    repository = _discover_repo(repo)
    settings = _load_settings(config, repository.root).with_overrides(
        max_retries=max_retries,
        max_auto_fixes=max_auto_fixes,
        dry_run=dry_run or None,
        no_verify=no_verify or None,
        workers=workers,
        cross_repo=cross_repo or None,
        seq=seq or None,
        force_mode=force_mode,
    )

    token = CancellationToken()
    with _interrupts_cancel(token):
        try:
            if watch:
                _watch(settings, repository, token)
                return
            if settings.cross_repo:
                ok = _cross_repo(settings, repository, token)
            else:
                report = _run_session(settings, repository.root, token)
                _render_report(report)
                ok = report.ok
        except ToolUnavailable as error:
            typer.echo(f"Cannot start: {error}")
            raise typer.Exit(code=1) from error
        except GitError as error:
            typer.echo(f"Git error: {error}")
            raise typer.Exit(code=1) from error

    if not ok:
        raise typer.Exit(code=1)


def _cross_repo(settings: OrchestratorConfig, repository: GitRepository, token: CancellationToken) -> bool:
    roots: List[Path] = list(settings.repositories) or [repository.root]
    parallel = not settings.seq and len(roots) > 1 and settings.workers > 1
    # parallel sessions share one terminal
    session_settings = settings.with_overrides(interactive=False) if parallel else settings
    executor = ParallelExecutor(workers=settings.workers if parallel else 1)
    tasks = [
        ParallelTask(
            name=root.name,
            workdir=root,
            fn=lambda root=root: _run_session(session_settings, root, token),
        )
        for root in roots
    ]
    outcomes = executor.run(tasks)

    all_ok = True
    for outcome in outcomes:
        if outcome.ok:
            _render_report(outcome.result, title=outcome.name)
            all_ok = all_ok and outcome.result.ok
        else:
            typer.echo(f"== {outcome.name} ==")
            typer.echo(f"Outcome: failed to start ({outcome.error})")
            all_ok = False
    passed = sum(1 for outcome in outcomes if outcome.ok and outcome.result.ok)
    typer.echo(f"Summary: {passed}/{len(outcomes)} repositories green")
    return all_ok


def _watch(settings: OrchestratorConfig, repository: GitRepository, token: CancellationToken) -> None:
    agent = ClaudeCLIClient(commands=settings.agent.command, args=settings.agent.args)
    if not settings.dry_run:
        agent.ensure_available()

    def _build() -> Orchestrator:
        context = OrchestratorContext.create(
            settings, repository.root, token=token, agent=agent, preflight=False, ci=False
        )
        return Orchestrator(context)

    loop = WatchLoop(
        repository,
        _build,
        token,
        cooldown=settings.watch_cooldown,
        on_report=_render_report,
    )
    runs = loop.run()
    typer.echo(f"Watch mode finished after {runs} run(s).")


def _snapshot_manager(repository: GitRepository, config: str, session: Optional[str]) -> SnapshotManager:
    settings = _load_settings(config, repository.root)
    root = Path(settings.data_dir) if settings.data_dir else default_snapshot_root(repository)
    session_dir = root / session if session else latest_session_dir(root)
    if session_dir is None or not session_dir.exists():
        typer.echo("No recorded sessions.")
        raise typer.Exit(code=1)
    return SnapshotManager.load(repository, session_dir / "snapshots")


@app.command()
def snapshots(
    config: str = typer.Option(DEFAULT_CONFIG_NAME, "--config", "-c", help="Path to the greenloop configuration file."),
    repo: Optional[Path] = typer.Option(None, "--repo", help="Repository to inspect."),
    session: Optional[str] = typer.Option(None, "--session", help="Session id (defaults to the latest)."),
) -> None:
    """List the snapshots recorded by a session."""

    repository = _discover_repo(repo)
    manager = _snapshot_manager(repository, config, session)
    entries = manager.snapshots
    if not entries:
        typer.echo("Session recorded no snapshots.")
        return
    typer.echo(f"Snapshots in {manager.storage_dir}:")
    for index, snapshot in enumerate(reversed(entries), start=1):
        sha = (snapshot.sha or "-------")[:7]
        dirty = " +diff" if snapshot.diff.strip() else ""
        typer.echo(f"{index}. {snapshot.timestamp.isoformat(timespec='seconds')} {sha}{dirty} {snapshot.label}")


@app.command()
def rollback(
    steps: int = typer.Option(1, "--steps", "-n", min=1, help="How many snapshots to go back."),
    config: str = typer.Option(DEFAULT_CONFIG_NAME, "--config", "-c", help="Path to the greenloop configuration file."),
    repo: Optional[Path] = typer.Option(None, "--repo", help="Repository to restore."),
    session: Optional[str] = typer.Option(None, "--session", help="Session id (defaults to the latest)."),
    yes: bool = typer.Option(False, "--yes", "-y", help="Do not ask for confirmation."),
) -> None:
    """Restore the working tree to a snapshot taken before an automated fix."""

    repository = _discover_repo(repo)
    manager = _snapshot_manager(repository, config, session)
    if steps > len(manager):
        typer.echo(f"Only {len(manager)} snapshot(s) recorded.")
        raise typer.Exit(code=1)
    target = manager.snapshots[-steps]
    if not yes:
        typer.confirm(
            f"Reset {repository.root} to {(target.sha or '')[:7]} ('{target.label}')? Uncommitted changes are lost.",
            abort=True,
        )
    try:
        restored = manager.rollback(steps)
    except GitError as error:
        typer.echo(f"Rollback failed: {error}")
        raise typer.Exit(code=1) from error
    typer.echo(f"Restored snapshot '{restored.label}' ({(restored.sha or '')[:7]}).")


if __name__ == "__main__":
    app()
