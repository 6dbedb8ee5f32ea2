"""Hand a failure to the fix agent and classify what came back."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from .errors import FixAgentError, FixAgentTimeout
from .memory.schema import FixMode, FixOutcome
from .models.agent_client import AgentClient, AgentRequest
from .prompts import render_commit_message_prompt
from .utils.cancellation import CancellationToken, Ticker

__all__ = ["DispatchResult", "FixDispatcher"]

LOGGER = logging.getLogger(__name__)


@dataclass(slots=True)
class DispatchResult:
    """What the agent did with one prompt.

    ``outcome`` is ``success`` only when the agent exited cleanly; whether the
    failure is actually fixed is decided by re-running the checks.
    """

    exit_code: int
    stdout: str
    stderr: str
    timed_out: bool
    outcome: FixOutcome
    mode: FixMode
    duration_ms: int = 0

    @property
    def ok(self) -> bool:
        return self.outcome == FixOutcome.SUCCESS


class FixDispatcher:
    """Apply mode-specific prompt shaping and time limits around an agent."""

    def __init__(
        self,
        client: AgentClient,
        *,
        cwd: Optional[Path] = None,
        timeout: float = 180.0,
        interactive_timeout: float = 600.0,
        expensive_prefix: str = "ultrathink",
        progress_interval: float = 10.0,
        token: Optional[CancellationToken] = None,
    ) -> None:
        self.client = client
        self.cwd = cwd
        self.timeout = timeout
        self.interactive_timeout = interactive_timeout
        self.expensive_prefix = expensive_prefix
        self.progress_interval = progress_interval
        self.token = token

    def shape_prompt(self, prompt: str, mode: FixMode) -> str:
        if mode == FixMode.EXPENSIVE and self.expensive_prefix:
            return f"{self.expensive_prefix}\n\n{prompt}"
        return prompt

    def dispatch(
        self,
        prompt: str,
        mode: FixMode = FixMode.CHEAP,
        *,
        timeout: Optional[float] = None,
        interactive: bool = False,
    ) -> DispatchResult:
        if self.token is not None:
            self.token.raise_if_cancelled()
        limit = timeout or (self.interactive_timeout if interactive else self.timeout)
        request = AgentRequest(
            prompt=self.shape_prompt(prompt, mode),
            timeout=limit,
            interactive=interactive,
            cwd=self.cwd,
        )
        LOGGER.info("Dispatching fix agent (%s mode%s)", mode.value, ", interactive" if interactive else "")

        def _progress(elapsed: float) -> None:
            LOGGER.info("Fix agent still working (%.0fs elapsed)", elapsed)

        interval = 0.0 if interactive else self.progress_interval
        try:
            with Ticker(_progress, interval=interval, token=self.token):
                result = self.client.invoke(request)
        except FixAgentTimeout as error:
            LOGGER.warning("Fix agent timed out after %.0fs", limit)
            return DispatchResult(
                exit_code=-1,
                stdout=error.stdout,
                stderr=error.stderr or str(error),
                timed_out=True,
                outcome=FixOutcome.TIMEOUT,
                mode=mode,
                duration_ms=int(limit * 1000),
            )
        except FixAgentError as error:
            LOGGER.warning("Fix agent failed: %s", error)
            return DispatchResult(
                exit_code=-1,
                stdout="",
                stderr=str(error),
                timed_out=False,
                outcome=FixOutcome.FAILURE,
                mode=mode,
            )

        if result.timed_out:
            outcome = FixOutcome.TIMEOUT
        elif result.exit_code == 0:
            outcome = FixOutcome.SUCCESS
        else:
            outcome = FixOutcome.FAILURE
        return DispatchResult(
            exit_code=result.exit_code,
            stdout=result.stdout,
            stderr=result.stderr,
            timed_out=result.timed_out,
            outcome=outcome,
            mode=mode,
            duration_ms=result.duration_ms,
        )

    def generate_commit_message(self, status: str, diff: str, recent_log: str) -> str:
        """Ask the agent for a commit subject; raise when it does not deliver."""

        result = self.dispatch(render_commit_message_prompt(status, diff, recent_log), FixMode.CHEAP, timeout=60.0)
        if not result.ok or not result.stdout.strip():
            raise FixAgentError(f"commit message generation failed ({result.outcome.value})")
        return result.stdout
