"""Fix agent backed by the ``claude`` command line tool."""

from __future__ import annotations

import os
import shutil
import subprocess
from typing import Callable, List, Optional, Sequence

from ..errors import FixAgentError, FixAgentTimeout, FixAgentUnavailable
from .agent_client import AgentClient, AgentRequest, AgentResult

__all__ = ["ClaudeCLIClient", "DEFAULT_AGENT_COMMANDS"]


DEFAULT_AGENT_COMMANDS: tuple[str, ...] = ("claude", "ccp")
DEFAULT_AGENT_ARGS: tuple[str, ...] = ("--dangerously-skip-permissions",)
HEADLESS_ARGS: tuple[str, ...] = ("-p",)

Transport = Callable[[List[str], AgentRequest], AgentResult]


class ClaudeCLIClient(AgentClient):
    """Run the agent CLI as a child process.

    Headless requests feed the prompt on stdin and capture output; interactive
    requests pass the prompt as an argument and inherit the terminal.  A
    ``transport`` can be injected to replace process execution in tests.
    """

    name = "claude"

    def __init__(
        self,
        *,
        commands: Sequence[str] = DEFAULT_AGENT_COMMANDS,
        args: Sequence[str] = DEFAULT_AGENT_ARGS,
        transport: Optional[Transport] = None,
    ) -> None:
        self._commands = tuple(commands) or DEFAULT_AGENT_COMMANDS
        self._args = tuple(args)
        self._transport = transport or self._process_transport
        self._executable: Optional[str] = None

    @property
    def executable(self) -> str:
        if self._executable is None:
            self._executable = self._resolve_executable()
        return self._executable

    def ensure_available(self) -> None:
        self._executable = self._resolve_executable()

    def _resolve_executable(self) -> str:
        override = os.getenv("GREENLOOP_AGENT")
        candidates = (override, *self._commands) if override else self._commands
        for candidate in candidates:
            if candidate and shutil.which(candidate):
                return candidate
        raise FixAgentUnavailable(
            " / ".join(self._commands),
            "Install the Claude Code CLI (npm install -g @anthropic-ai/claude-code) "
            "or set GREENLOOP_AGENT to a compatible command.",
        )

    def build_command(self, request: AgentRequest) -> List[str]:
        command = [self.executable, *self._args]
        if request.interactive:
            command.append(request.prompt)
        else:
            command.extend(HEADLESS_ARGS)
        return command

    def _raw_invoke(self, request: AgentRequest) -> AgentResult:
        return self._transport(self.build_command(request), request)

    @staticmethod
    def _process_transport(command: List[str], request: AgentRequest) -> AgentResult:
        if request.interactive:
            try:
                process = subprocess.run(  # noqa: S603 - command resolved from PATH
                    command,
                    cwd=request.cwd,
                    check=False,
                    timeout=request.timeout,
                )
            except subprocess.TimeoutExpired as error:
                raise FixAgentTimeout(request.timeout) from error
            except OSError as error:
                raise FixAgentError(f"Failed to launch {command[0]}: {error}") from error
            return AgentResult(exit_code=process.returncode)

        try:
            child = subprocess.Popen(  # noqa: S603 - command resolved from PATH
                command,
                cwd=request.cwd,
                stdin=subprocess.PIPE,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                text=True,
                errors="replace",
            )
        except OSError as error:
            raise FixAgentError(f"Failed to launch {command[0]}: {error}") from error

        try:
            stdout, stderr = child.communicate(input=request.prompt, timeout=request.timeout)
        except subprocess.TimeoutExpired as error:
            child.kill()
            stdout, stderr = child.communicate()
            raise FixAgentTimeout(request.timeout, stdout=stdout or "", stderr=stderr or "") from error
        except BaseException:
            child.kill()
            child.wait()
            raise
        return AgentResult(exit_code=child.returncode, stdout=stdout or "", stderr=stderr or "")
