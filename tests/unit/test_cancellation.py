from __future__ import annotations

import threading
import time

import pytest

from greenloop.errors import OrchestrationCancelled
from greenloop.utils.cancellation import CancellationToken, Ticker


def test_cancel_records_first_reason() -> None:
    token = CancellationToken()
    token.cancel("sigint")
    token.cancel("second")

    assert token.cancelled
    assert token.reason == "sigint"
    with pytest.raises(OrchestrationCancelled, match="sigint"):
        token.raise_if_cancelled()


def test_sleep_wakes_up_on_cancel() -> None:
    token = CancellationToken()
    threading.Timer(0.05, token.cancel).start()

    started = time.monotonic()
    with pytest.raises(OrchestrationCancelled):
        token.sleep(30)
    assert time.monotonic() - started < 5


def test_sleep_returns_normally_when_not_cancelled() -> None:
    CancellationToken().sleep(0.01)


def test_ticker_reports_progress_until_block_exits() -> None:
    ticks: list[float] = []

    with Ticker(ticks.append, interval=0.02):
        time.sleep(0.15)
    count = len(ticks)
    time.sleep(0.05)

    assert count >= 1
    assert len(ticks) == count
    assert ticks == sorted(ticks)


def test_zero_interval_disables_ticker() -> None:
    ticks: list[float] = []
    with Ticker(ticks.append, interval=0):
        time.sleep(0.05)
    assert ticks == []
