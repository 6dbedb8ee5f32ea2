from __future__ import annotations

import sys
from pathlib import Path
from typing import List

import pytest

from greenloop.dispatcher import FixDispatcher
from greenloop.errors import FixAgentError, FixAgentTimeout, FixAgentUnavailable
from greenloop.memory.schema import FixMode, FixOutcome
from greenloop.models.agent_client import AgentRequest, AgentResult
from greenloop.models.claude_cli import ClaudeCLIClient

from fakes import FakeAgent


class RaisingAgent(FakeAgent):
    def __init__(self, error: Exception) -> None:
        super().__init__()
        self.error = error

    def _raw_invoke(self, request: AgentRequest) -> AgentResult:
        self.requests.append(request)
        raise self.error


@pytest.fixture(autouse=True)
def _no_agent_override(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.delenv("GREENLOOP_AGENT", raising=False)


def test_expensive_mode_prefixes_prompt() -> None:
    agent = FakeAgent()
    dispatcher = FixDispatcher(agent, progress_interval=0)

    dispatcher.dispatch("fix lint", FixMode.CHEAP)
    dispatcher.dispatch("fix lint", FixMode.EXPENSIVE)

    assert agent.requests[0].prompt == "fix lint"
    assert agent.requests[1].prompt == "ultrathink\n\nfix lint"


def test_timeouts_follow_mode_and_interactivity(tmp_path: Path) -> None:
    agent = FakeAgent()
    dispatcher = FixDispatcher(agent, cwd=tmp_path, timeout=180, interactive_timeout=600, progress_interval=0)

    dispatcher.dispatch("a")
    dispatcher.dispatch("b", interactive=True)
    dispatcher.dispatch("c", timeout=5)

    assert [request.timeout for request in agent.requests] == [180, 600, 5]
    assert [request.interactive for request in agent.requests] == [False, True, False]
    assert all(request.cwd == tmp_path for request in agent.requests)


def test_exit_codes_are_classified() -> None:
    assert FixDispatcher(FakeAgent(exit_code=0), progress_interval=0).dispatch("x").outcome == FixOutcome.SUCCESS
    failed = FixDispatcher(FakeAgent(exit_code=2), progress_interval=0).dispatch("x")
    assert failed.outcome == FixOutcome.FAILURE
    assert not failed.ok


def test_agent_timeout_becomes_timeout_outcome() -> None:
    agent = RaisingAgent(FixAgentTimeout(180, stdout="partial"))
    result = FixDispatcher(agent, progress_interval=0).dispatch("x", FixMode.EXPENSIVE)

    assert result.outcome == FixOutcome.TIMEOUT
    assert result.timed_out
    assert result.stdout == "partial"
    assert result.mode == FixMode.EXPENSIVE


def test_agent_crash_becomes_failure_outcome() -> None:
    result = FixDispatcher(RaisingAgent(FixAgentError("segfault")), progress_interval=0).dispatch("x")

    assert result.outcome == FixOutcome.FAILURE
    assert "segfault" in result.stderr


def test_commit_message_generation_requires_output() -> None:
    ok = FixDispatcher(FakeAgent(), progress_interval=0)
    assert ok.generate_commit_message("M a.py", "diff", "log") == "done"

    with pytest.raises(FixAgentError):
        FixDispatcher(FakeAgent(exit_code=1), progress_interval=0).generate_commit_message("", "", "")


def test_build_command_for_headless_and_interactive() -> None:
    client = ClaudeCLIClient(commands=(sys.executable,), args=("--dangerously-skip-permissions",))

    headless = client.build_command(AgentRequest(prompt="fix it", timeout=1))
    interactive = client.build_command(AgentRequest(prompt="fix it", timeout=1, interactive=True))

    assert headless == [sys.executable, "--dangerously-skip-permissions", "-p"]
    assert interactive == [sys.executable, "--dangerously-skip-permissions", "fix it"]


def test_injected_transport_receives_command() -> None:
    seen: List[List[str]] = []

    def _transport(command: List[str], request: AgentRequest) -> AgentResult:
        seen.append(command)
        return AgentResult(exit_code=0, stdout=request.prompt)

    client = ClaudeCLIClient(commands=(sys.executable,), args=(), transport=_transport)
    result = client.invoke(AgentRequest(prompt="hello", timeout=1))

    assert result.stdout == "hello"
    assert seen == [[sys.executable, "-p"]]


def test_missing_agent_is_reported(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr("greenloop.models.claude_cli.shutil.which", lambda name: None)
    client = ClaudeCLIClient()

    with pytest.raises(FixAgentUnavailable) as excinfo:
        client.ensure_available()
    assert "claude / ccp" in str(excinfo.value)


def test_first_available_command_wins(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(
        "greenloop.models.claude_cli.shutil.which",
        lambda name: "/usr/local/bin/ccp" if name == "ccp" else None,
    )
    client = ClaudeCLIClient()
    client.ensure_available()

    assert client.executable == "ccp"


def test_environment_override_takes_precedence(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("GREENLOOP_AGENT", "my-agent")
    monkeypatch.setattr("greenloop.models.claude_cli.shutil.which", lambda name: f"/opt/bin/{name}")

    assert ClaudeCLIClient().executable == "my-agent"


def test_process_transport_feeds_prompt_on_stdin(tmp_path: Path) -> None:
    client = ClaudeCLIClient(
        commands=(sys.executable,),
        args=("-c", "import sys; sys.stdout.write(sys.stdin.read().upper())"),
    )
    dispatcher = FixDispatcher(client, cwd=tmp_path, progress_interval=0)

    result = dispatcher.dispatch("please fix")

    assert result.ok
    assert result.stdout == "PLEASE FIX"


def test_process_transport_times_out(tmp_path: Path) -> None:
    client = ClaudeCLIClient(commands=(sys.executable,), args=("-c", "import time; time.sleep(10)"))
    dispatcher = FixDispatcher(client, cwd=tmp_path, timeout=0.5, progress_interval=0)

    result = dispatcher.dispatch("never finishes")

    assert result.outcome == FixOutcome.TIMEOUT
    assert result.timed_out
