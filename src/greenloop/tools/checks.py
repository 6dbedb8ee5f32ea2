"""Run the ordered local verification steps (install, lint, test, ...).

Each step is an external command.  A non-zero exit is an ordinary result, not
an exception; the runner stops at the first failing step so later steps never
run against a tree that is already known to be broken.
"""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, List, Optional

import logging
import shlex
import shutil
import subprocess
import time

from ..errors import LocalCheckFailure

LOGGER = logging.getLogger(__name__)

DEFAULT_STEP_TIMEOUT = 1800.0
EXIT_NOT_FOUND = 127
EXIT_TIMED_OUT = 124


@dataclass(frozen=True, slots=True)
class CheckStep:
    """One named local verification command."""

    name: str
    command: str
    args: tuple[str, ...] = ()
    timeout: float = DEFAULT_STEP_TIMEOUT

    @property
    def argv(self) -> List[str]:
        return [self.command, *self.args]

    def describe(self) -> str:
        return shlex.join(self.argv)


@dataclass(slots=True)
class CheckResult:
    """Outcome of executing a :class:`CheckStep` once."""

    step_name: str
    exit_code: int
    stdout: str = ""
    stderr: str = ""
    duration_ms: int = 0
    timed_out: bool = False

    @property
    def ok(self) -> bool:
        return self.exit_code == 0

    @property
    def error_text(self) -> str:
        """Return the most useful failure output (stderr, else stdout)."""

        text = self.stderr.strip() or self.stdout.strip()
        return text or f"{self.step_name} exited with code {self.exit_code}"

    def short_message(self) -> str:
        if self.ok:
            return f"{self.step_name}: passed ({self.duration_ms} ms)"
        if self.timed_out:
            return f"{self.step_name}: timed out"
        first_line = self.error_text.splitlines()[0]
        return f"{self.step_name}: failed ({first_line})"


@dataclass(slots=True)
class CheckRun:
    """Aggregated result of running a sequence of steps."""

    results: List[CheckResult] = field(default_factory=list)
    failed_step: Optional[CheckStep] = None

    @property
    def failed(self) -> Optional[CheckResult]:
        if self.failed_step is None or not self.results:
            return None
        return self.results[-1]

    @property
    def ok(self) -> bool:
        return self.failed_step is None

    def raise_for_failure(self) -> None:
        failed = self.failed
        if self.failed_step is not None and failed is not None:
            raise LocalCheckFailure(self.failed_step, failed)

    def format_summary(self) -> str:
        """Return a human readable summary of the run."""

        if not self.results:
            return "No local checks executed."
        return "\n".join(f"- {result.short_message()}" for result in self.results)


class LocalCheckRunner:
    """Execute :class:`CheckStep` commands inside a working directory."""

    def __init__(self, cwd: Path | str, *, env: Optional[Mapping[str, str]] = None) -> None:
        self.cwd = Path(cwd)
        self.env = dict(env) if env is not None else None

    def run(self, steps: Sequence[CheckStep]) -> CheckRun:
        """Run ``steps`` in order, stopping at the first failure."""

        run = CheckRun()
        for step in steps:
            result = self.run_step(step)
            run.results.append(result)
            if not result.ok:
                run.failed_step = step
                break
        return run

    def run_step(self, step: CheckStep) -> CheckResult:
        """Execute ``step`` once and capture its output."""

        LOGGER.info("Running %s: %s", step.name, step.describe())
        if shutil.which(step.command) is None and not Path(step.command).exists():
            LOGGER.warning("Executable not available for %s: %s", step.name, step.command)
            return CheckResult(
                step_name=step.name,
                exit_code=EXIT_NOT_FOUND,
                stderr=f"Executable not available: {step.command}",
            )

        started = time.monotonic()
        try:
            process = subprocess.run(  # noqa: S603  # command is sourced from configuration
                step.argv,
                cwd=self.cwd,
                env=self.env,
                check=False,
                capture_output=True,
                text=True,
                errors="replace",
                timeout=step.timeout,
            )
        except subprocess.TimeoutExpired as error:
            LOGGER.warning("%s timed out after %.0fs", step.name, step.timeout)
            return CheckResult(
                step_name=step.name,
                exit_code=EXIT_TIMED_OUT,
                stdout=_decode(error.stdout),
                stderr=f"{_decode(error.stderr)}\n{step.name} timed out after {step.timeout:g}s".strip(),
                duration_ms=_elapsed_ms(started),
                timed_out=True,
            )
        except OSError as error:
            return CheckResult(
                step_name=step.name,
                exit_code=EXIT_NOT_FOUND,
                stderr=f"Failed to launch {step.command}: {error}",
                duration_ms=_elapsed_ms(started),
            )

        result = CheckResult(
            step_name=step.name,
            exit_code=process.returncode,
            stdout=process.stdout or "",
            stderr=process.stderr or "",
            duration_ms=_elapsed_ms(started),
        )
        if result.ok:
            LOGGER.info("%s passed in %d ms", step.name, result.duration_ms)
        else:
            LOGGER.warning("%s failed with exit code %d", step.name, result.exit_code)
        return result


def _decode(payload: bytes | str | None) -> str:
    if payload is None:
        return ""
    if isinstance(payload, bytes):
        return payload.decode("utf-8", errors="replace")
    return payload


def _elapsed_ms(started: float) -> int:
    return int((time.monotonic() - started) * 1000)


DEFAULT_CHECKS: tuple[CheckStep, ...] = (
    CheckStep(name="install", command="pnpm", args=("install",)),
    CheckStep(name="fix", command="pnpm", args=("run", "fix")),
    CheckStep(name="check", command="pnpm", args=("run", "check")),
    CheckStep(name="cover", command="pnpm", args=("run", "cover")),
    CheckStep(name="test", command="pnpm", args=("run", "test", "--", "--update")),
)


def normalise_check_steps(raw: Sequence[Any] | None) -> List[CheckStep]:
    """Expand raw configuration entries into :class:`CheckStep` definitions.

    Entries may be a shell-like string (``"pnpm run lint"``) or a mapping with
    ``command``/``cmd``, optional ``args``, ``name`` and ``timeout``.
    """

    if not raw:
        return list(DEFAULT_CHECKS)

    steps: List[CheckStep] = []
    for entry in raw:
        if isinstance(entry, CheckStep):
            steps.append(entry)
            continue

        if isinstance(entry, str):
            parts = shlex.split(entry)
            if not parts:
                continue
            steps.append(CheckStep(name=" ".join(parts[1:]) or parts[0], command=parts[0], args=tuple(parts[1:])))
            continue

        if isinstance(entry, Mapping):
            command = entry.get("command") or entry.get("cmd")
            if isinstance(command, str):
                cmd_parts = shlex.split(command)
            else:
                cmd_parts = [str(part) for part in command or []]
            extra_args = entry.get("args") or []
            if isinstance(extra_args, str):
                extra_args = shlex.split(extra_args)
            cmd_parts.extend(str(arg) for arg in extra_args)

            if not cmd_parts:
                continue

            name = str(entry.get("name")) if entry.get("name") else " ".join(cmd_parts)
            timeout = entry.get("timeout")
            steps.append(
                CheckStep(
                    name=name,
                    command=cmd_parts[0],
                    args=tuple(cmd_parts[1:]),
                    timeout=float(timeout) if timeout else DEFAULT_STEP_TIMEOUT,
                )
            )
            continue

        raise ValueError(f"Unsupported check entry: {entry!r}")

    return steps


__all__ = [
    "DEFAULT_CHECKS",
    "CheckResult",
    "CheckRun",
    "CheckStep",
    "LocalCheckRunner",
    "normalise_check_steps",
]
