"""Client base class shared by every fix-agent integration."""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from ..errors import FixAgentError, FixAgentTimeout

__all__ = [
    "AgentClient",
    "AgentRequest",
    "AgentResult",
    "FixAgentError",
    "FixAgentTimeout",
]

LOGGER = logging.getLogger(__name__)


@dataclass(slots=True)
class AgentRequest:
    """Prompt plus execution limits for one agent invocation."""

    prompt: str
    timeout: float
    interactive: bool = False
    cwd: Optional[Path] = None


@dataclass(slots=True)
class AgentResult:
    """Captured outcome of a finished agent process."""

    exit_code: int
    stdout: str = ""
    stderr: str = ""
    timed_out: bool = False
    duration_ms: int = 0

    @property
    def ok(self) -> bool:
        return self.exit_code == 0 and not self.timed_out


class AgentClient:
    """Launch the fix agent and normalise its failures.

    Subclasses implement :meth:`_raw_invoke`; this base class owns timing and
    logging.  Timeouts surface as :class:`FixAgentTimeout` and launch failures
    as :class:`FixAgentError`.
    """

    name = "agent"

    def ensure_available(self) -> None:
        """Raise :class:`~greenloop.errors.FixAgentUnavailable` when the agent cannot run."""

    def invoke(self, request: AgentRequest) -> AgentResult:
        mode = "interactive" if request.interactive else "headless"
        LOGGER.debug("Invoking %s (%s, timeout %.0fs)", self.name, mode, request.timeout)
        started = time.monotonic()
        result = self._raw_invoke(request)
        if not result.duration_ms:
            result.duration_ms = int((time.monotonic() - started) * 1000)
        LOGGER.debug("%s exited with code %d after %d ms", self.name, result.exit_code, result.duration_ms)
        return result

    def _raw_invoke(self, request: AgentRequest) -> AgentResult:
        """Run the agent process. Subclasses must implement."""
        raise NotImplementedError("Subclasses must implement _raw_invoke().")
