"""Choose between a cheap and an expensive fix-agent run.

A task is retried cheaply until it has failed ``threshold`` times; the next
selection activates an expensive window during which every task is handled
in expensive mode.  Tasks whose description reads as inherently hard skip the
cheap stage altogether.
"""

from __future__ import annotations

import logging
import re
import time
from typing import Callable, Dict, List, Optional

from .memory.schema import FixAttempt, FixMode, FixOutcome

__all__ = ["COMPLEXITY_PATTERNS", "EscalationStrategy", "task_key"]

LOGGER = logging.getLogger(__name__)

BASELINE_COMPLEXITY = 0.3

COMPLEXITY_PATTERNS: tuple[tuple[re.Pattern[str], float], ...] = (
    (re.compile(r"architect", re.IGNORECASE), 0.9),
    (re.compile(r"production (issue|incident|outage)", re.IGNORECASE), 0.9),
    (re.compile(r"memory leak", re.IGNORECASE), 0.85),
    (re.compile(r"race condition|deadlock", re.IGNORECASE), 0.85),
    (re.compile(r"complex refactor", re.IGNORECASE), 0.85),
    (re.compile(r"security|vulnerab", re.IGNORECASE), 0.85),
    (re.compile(r"performance|too slow", re.IGNORECASE), 0.75),
)

_WHITESPACE = re.compile(r"\s+")


def task_key(task: str) -> str:
    """Collapse a task description into the key attempts are counted under."""

    return _WHITESPACE.sub("_", task[:100]).lower()


class EscalationStrategy:
    """Per-session escalation state.  Not safe for concurrent use."""

    def __init__(
        self,
        *,
        threshold: int = 2,
        window_seconds: float = 300.0,
        complexity_threshold: float = 0.8,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.threshold = threshold
        self.window_seconds = window_seconds
        self.complexity_threshold = complexity_threshold
        self._clock = clock
        self._activated_at: Optional[float] = None
        self._attempts: Dict[str, int] = {}
        self._history: List[FixAttempt] = []

    @property
    def history(self) -> List[FixAttempt]:
        return list(self._history)

    @property
    def expensive_active(self) -> bool:
        if self._activated_at is None:
            return False
        if self._clock() - self._activated_at >= self.window_seconds:
            LOGGER.debug("Expensive window elapsed; returning to cheap mode")
            self._activated_at = None
            return False
        return True

    def attempts_for(self, task: str) -> int:
        return self._attempts.get(task_key(task), 0)

    def activate_expensive(self) -> None:
        self._activated_at = self._clock()
        LOGGER.info("Escalating to expensive mode for %.0fs", self.window_seconds)

    @staticmethod
    def assess_complexity(text: str) -> float:
        """Return the highest complexity weight matched in ``text``."""

        score = BASELINE_COMPLEXITY
        for pattern, weight in COMPLEXITY_PATTERNS:
            if pattern.search(text):
                score = max(score, weight)
        return score

    def select_mode(
        self,
        task: str,
        *,
        force_mode: Optional[FixMode | str] = None,
        detail: str = "",
    ) -> FixMode:
        if force_mode is not None:
            return FixMode(force_mode)

        if self.expensive_active:
            return FixMode.EXPENSIVE

        if self.attempts_for(task) >= self.threshold:
            self.activate_expensive()
            return FixMode.EXPENSIVE

        if self.assess_complexity(f"{task}\n{detail}") > self.complexity_threshold:
            LOGGER.info("Task looks complex; using expensive mode")
            return FixMode.EXPENSIVE

        return FixMode.CHEAP

    def record_attempt(
        self,
        task: str,
        success: bool,
        *,
        mode: FixMode = FixMode.CHEAP,
        outcome: Optional[FixOutcome] = None,
    ) -> FixAttempt:
        """Update the per-task counter and append to the session history."""

        key = task_key(task)
        attempt_number = self._attempts.get(key, 0) + 1
        if success:
            self._attempts.pop(key, None)
        else:
            self._attempts[key] = attempt_number
        resolved = outcome or (FixOutcome.SUCCESS if success else FixOutcome.FAILURE)
        attempt = FixAttempt(
            task_key=key,
            mode=mode,
            attempt_number=attempt_number,
            outcome=resolved,
        )
        self._history.append(attempt)
        return attempt
