"""Adaptive delays between CI polls."""

from __future__ import annotations

import logging
from typing import Callable, Optional

from ..memory.schema import RunStatus

__all__ = ["PollScheduler", "calculate_poll_delay"]

LOGGER = logging.getLogger(__name__)

ACTIVE_BASE_MS = 5_000
ACTIVE_STEP_MS = 2_000
ACTIVE_CAP_MS = 15_000
QUEUED_MS = 30_000
DEFAULT_MS = 10_000

_QUEUED = {RunStatus.QUEUED.value, RunStatus.WAITING.value, RunStatus.PENDING.value, RunStatus.REQUESTED.value}


def calculate_poll_delay(status: RunStatus | str | None, attempt: int, has_active_jobs: bool = False) -> int:
    """Return the delay in milliseconds before the next poll.

    Active runs are polled quickly with a linear backoff, queued runs slowly.
    """

    value = status.value if isinstance(status, RunStatus) else (status or "")
    if has_active_jobs or value == RunStatus.IN_PROGRESS.value:
        return min(ACTIVE_BASE_MS + attempt * ACTIVE_STEP_MS, ACTIVE_CAP_MS)
    if value in _QUEUED:
        return QUEUED_MS
    return DEFAULT_MS


class PollScheduler:
    """Track the poll attempt counter and wait between polls."""

    def __init__(self, sleep: Callable[[float], None]) -> None:
        self._sleep = sleep
        self.attempt = 0

    def reset(self) -> None:
        self.attempt = 0

    def wait_for(self, status: RunStatus | str | None, *, has_active_jobs: bool = False) -> int:
        delay_ms = calculate_poll_delay(status, self.attempt, has_active_jobs)
        self.attempt += 1
        LOGGER.info("Next CI poll in %ds", delay_ms // 1000)
        self._sleep(delay_ms / 1000)
        return delay_ms

    def wait_fixed(self, seconds: float, reason: Optional[str] = None) -> None:
        if reason:
            LOGGER.info("%s; waiting %ds", reason, int(seconds))
        self._sleep(seconds)
