"""Cooperative cancellation and progress ticking for long waits."""

from __future__ import annotations

import threading
import time
from typing import Callable, Optional

from ..errors import OrchestrationCancelled

__all__ = ["CancellationToken", "Ticker"]


class CancellationToken:
    """Session-wide cancellation flag that every wait point observes."""

    def __init__(self) -> None:
        self._event = threading.Event()
        self._reason = ""

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    @property
    def reason(self) -> str:
        return self._reason

    def cancel(self, reason: str = "interrupted") -> None:
        if not self._event.is_set():
            self._reason = reason
        self._event.set()

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise OrchestrationCancelled(f"Session cancelled ({self._reason})")

    def sleep(self, seconds: float) -> None:
        """Wait ``seconds`` or raise :class:`OrchestrationCancelled` as soon as cancelled."""

        self.raise_if_cancelled()
        if seconds > 0 and self._event.wait(seconds):
            self.raise_if_cancelled()


class Ticker:
    """Invoke ``callback(elapsed_seconds)`` periodically while a block runs.

    Used as a context manager around a blocking operation; the background
    thread stops when the block exits or the token is cancelled.
    """

    def __init__(
        self,
        callback: Callable[[float], None],
        *,
        interval: float = 10.0,
        token: Optional[CancellationToken] = None,
    ) -> None:
        self._callback = callback
        self._interval = interval
        self._token = token
        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None
        self._started_at = 0.0

    def __enter__(self) -> "Ticker":
        self._started_at = time.monotonic()
        if self._interval > 0:
            self._thread = threading.Thread(target=self._run, name="greenloop-ticker", daemon=True)
            self._thread.start()
        return self

    def __exit__(self, *exc_info: object) -> None:
        self._stop.set()
        if self._thread is not None:
            self._thread.join(timeout=1.0)
            self._thread = None

    @property
    def elapsed(self) -> float:
        return time.monotonic() - self._started_at

    def _run(self) -> None:
        while not self._stop.wait(self._interval):
            if self._token is not None and self._token.cancelled:
                return
            self._callback(self.elapsed)
