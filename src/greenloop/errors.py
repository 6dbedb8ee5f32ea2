"""Exception taxonomy shared by the remediation loop."""

from __future__ import annotations

from typing import TYPE_CHECKING, Optional

if TYPE_CHECKING:
    from .tools.checks import CheckResult, CheckStep


class GreenloopError(RuntimeError):
    """Base error for every failure the orchestrator reports."""

    #: Short machine friendly tag rendered in session reports.
    kind = "error"


class LocalCheckFailure(GreenloopError):
    """Raised when a local verification step exits non-zero."""

    kind = "local-check-failure"

    def __init__(self, step: "CheckStep", result: "CheckResult") -> None:
        super().__init__(f"Local check '{step.name}' failed with exit code {result.exit_code}")
        self.step = step
        self.result = result


class DuplicateErrorDetected(GreenloopError):
    """Raised when a failure fingerprint has already been attempted this session."""

    kind = "duplicate-error"

    def __init__(self, fingerprint: str, *, source: str, excerpt: str = "") -> None:
        super().__init__(
            f"The same failure ({fingerprint}) reappeared after a fix attempt in {source}; "
            "stopping to avoid an endless loop."
        )
        self.fingerprint = fingerprint
        self.source = source
        self.excerpt = excerpt


class FixAgentError(GreenloopError):
    """Raised when the fix agent cannot be launched or crashes."""

    kind = "fix-agent-error"


class FixAgentTimeout(FixAgentError):
    """Raised when the fix agent exceeds its time limit."""

    kind = "fix-agent-timeout"

    def __init__(self, timeout: float, *, stdout: str = "", stderr: str = "") -> None:
        super().__init__(f"Fix agent timed out after {timeout:g}s")
        self.timeout = timeout
        self.stdout = stdout
        self.stderr = stderr


class ToolUnavailable(GreenloopError):
    """Raised at startup when a required external tool is missing."""

    kind = "tool-unavailable"

    def __init__(self, tool: str, remediation: str) -> None:
        super().__init__(f"{tool} is not available. {remediation}")
        self.tool = tool
        self.remediation = remediation


class FixAgentUnavailable(ToolUnavailable):
    """Raised when no fix agent CLI can be found on ``PATH``."""

    kind = "fix-agent-unavailable"


class CIFetchFailure(GreenloopError):
    """Raised when the CI provider query fails or returns malformed data."""

    kind = "ci-fetch-failure"


class CIRunNotFound(CIFetchFailure):
    """Raised when the CI provider does not know the requested run or job."""

    kind = "ci-run-not-found"


class RetryBudgetExceeded(GreenloopError):
    """Raised when the CI retry budget is spent without a green run."""

    kind = "retry-budget-exceeded"

    def __init__(self, max_retries: int, *, run_url: Optional[str] = None) -> None:
        message = f"CI is still failing after {max_retries} retr{'y' if max_retries == 1 else 'ies'}"
        if run_url:
            message = f"{message}; inspect {run_url}"
        super().__init__(message)
        self.max_retries = max_retries
        self.run_url = run_url


class AutoFixBudgetExceeded(GreenloopError):
    """Raised when local failures persist after every automated fix attempt."""

    kind = "auto-fix-budget-exceeded"

    def __init__(self, max_auto_fixes: int, *, step: str = "") -> None:
        target = f" for '{step}'" if step else ""
        super().__init__(
            f"Local checks are still failing{target} after {max_auto_fixes} automated fix attempt(s); "
            "manual inspection required."
        )
        self.max_auto_fixes = max_auto_fixes
        self.step = step


class OrchestrationCancelled(GreenloopError):
    """Raised from any wait point once the session has been cancelled."""

    kind = "cancelled"


__all__ = [
    "AutoFixBudgetExceeded",
    "CIFetchFailure",
    "CIRunNotFound",
    "DuplicateErrorDetected",
    "FixAgentError",
    "FixAgentTimeout",
    "FixAgentUnavailable",
    "GreenloopError",
    "LocalCheckFailure",
    "OrchestrationCancelled",
    "RetryBudgetExceeded",
    "ToolUnavailable",
]
