from __future__ import annotations

from greenloop.config import OrchestratorConfig
from greenloop.orchestrator import SessionReport
from greenloop.tools.vcs import GitRepository
from greenloop.utils.cancellation import CancellationToken
from greenloop.watch import WatchLoop

from fakes import Harness, ScriptedRunner, steps


def _builder(runner: ScriptedRunner, token: CancellationToken):
    config = OrchestratorConfig.model_validate({"checks": steps("lint", "test")})

    def _build():
        harness = Harness(config, runner)
        harness.context.token = token
        return harness.orchestrator()

    return _build


def test_reruns_local_checks_after_tree_changes(tiny_repo) -> None:
    token = CancellationToken()
    runner = ScriptedRunner()
    reports: list[SessionReport] = []

    def _on_report(report: SessionReport) -> None:
        reports.append(report)
        tiny_repo.write("app.py", f"# edit {len(reports)}\n")

    loop = WatchLoop(
        GitRepository(tiny_repo.root),
        _builder(runner, token),
        token,
        cooldown=0,
        poll_interval=0.01,
        on_report=_on_report,
    )

    runs = loop.run(max_runs=2)

    assert runs == 2
    assert all(report.ok for report in reports)
    assert runner.calls == ["lint", "test", "lint", "test"]


def test_cancellation_stops_watching(tiny_repo) -> None:
    token = CancellationToken()
    runner = ScriptedRunner()

    loop = WatchLoop(
        GitRepository(tiny_repo.root),
        _builder(runner, token),
        token,
        cooldown=0,
        poll_interval=0.01,
        on_report=lambda report: token.cancel("test"),
    )

    assert loop.run() == 1
    assert runner.calls == ["lint", "test"]


def test_unchanged_tree_has_stable_signature(tiny_repo) -> None:
    loop = WatchLoop(GitRepository(tiny_repo.root), lambda: None, CancellationToken())  # type: ignore[arg-type, return-value]

    before = loop.tree_signature()
    assert loop.tree_signature() == before

    tiny_repo.write("README.md", "# tiny\nupdated\n")
    assert loop.tree_signature() != before
