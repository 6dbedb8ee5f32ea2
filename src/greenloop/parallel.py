"""Run independent per-repository sessions side by side."""

from __future__ import annotations

import logging
import time
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, List, Optional, Sequence

__all__ = ["ParallelExecutor", "ParallelTask", "TaskOutcome"]

LOGGER = logging.getLogger(__name__)


@dataclass(slots=True)
class ParallelTask:
    """A unit of work bound to the working directory it mutates."""

    name: str
    workdir: Path
    fn: Callable[[], Any]


@dataclass(slots=True)
class TaskOutcome:
    """Settled result of a :class:`ParallelTask`; failures never cancel siblings."""

    name: str
    ok: bool
    result: Any = None
    error: Optional[BaseException] = None
    duration: float = 0.0


class ParallelExecutor:
    """Bounded worker pool for tasks that each own a distinct working directory."""

    def __init__(self, workers: int = 3) -> None:
        if workers < 1:
            raise ValueError("workers must be at least 1")
        self.workers = workers

    def run(self, tasks: Sequence[ParallelTask]) -> List[TaskOutcome]:
        """Run every task and return outcomes in submission order."""

        _ensure_distinct_workdirs(tasks)
        if not tasks:
            return []
        if self.workers == 1 or len(tasks) == 1:
            return [_execute(task, index, len(tasks)) for index, task in enumerate(tasks, start=1)]

        outcomes: List[Optional[TaskOutcome]] = [None] * len(tasks)
        with ThreadPoolExecutor(max_workers=min(self.workers, len(tasks)), thread_name_prefix="greenloop") as pool:
            futures = {
                pool.submit(_execute, task, index, len(tasks)): index - 1
                for index, task in enumerate(tasks, start=1)
            }
            completed = 0
            for future in as_completed(futures):
                outcomes[futures[future]] = future.result()
                completed += 1
                LOGGER.info("Progress: %d/%d task(s) finished", completed, len(tasks))
        return [outcome for outcome in outcomes if outcome is not None]


def _ensure_distinct_workdirs(tasks: Sequence[ParallelTask]) -> None:
    seen: dict[Path, str] = {}
    for task in tasks:
        key = Path(task.workdir).resolve()
        if key in seen:
            raise ValueError(f"Tasks '{seen[key]}' and '{task.name}' share working directory {key}")
        seen[key] = task.name


def _execute(task: ParallelTask, index: int, total: int) -> TaskOutcome:
    LOGGER.info("[%d/%d] Starting %s", index, total, task.name)
    started = time.monotonic()
    try:
        result = task.fn()
    except Exception as error:  # noqa: BLE001 - settled into the outcome
        LOGGER.error("[%d/%d] %s failed: %s", index, total, task.name, error)
        return TaskOutcome(name=task.name, ok=False, error=error, duration=time.monotonic() - started)
    return TaskOutcome(name=task.name, ok=True, result=result, duration=time.monotonic() - started)
