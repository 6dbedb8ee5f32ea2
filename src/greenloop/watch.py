"""Re-run local checks whenever the working tree changes."""

from __future__ import annotations

import hashlib
import logging
import time
from typing import Callable, Optional

from .errors import OrchestrationCancelled
from .orchestrator import Orchestrator, SessionReport
from .tools.vcs import GitRepository
from .utils.cancellation import CancellationToken

__all__ = ["WatchLoop"]

LOGGER = logging.getLogger(__name__)


class WatchLoop:
    """Poll the tree signature and start a fresh local session on change.

    Each trigger gets its own :class:`Orchestrator`, so failure fingerprints
    only deduplicate within one run; edits between runs start clean.
    """

    def __init__(
        self,
        repo: GitRepository,
        build: Callable[[], Orchestrator],
        token: CancellationToken,
        *,
        cooldown: float = 5.0,
        poll_interval: float = 1.0,
        on_report: Optional[Callable[[SessionReport], None]] = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.repo = repo
        self.build = build
        self.token = token
        self.cooldown = cooldown
        self.poll_interval = poll_interval
        self.on_report = on_report
        self._clock = clock

    def tree_signature(self) -> str:
        status = self.repo.git("status", "--porcelain", check=False).stdout
        diff = self.repo.git("diff", check=False).stdout
        return hashlib.sha256(f"{status}\0{diff}".encode("utf-8")).hexdigest()

    def run(self, *, max_runs: Optional[int] = None) -> int:
        """Watch until cancelled (or ``max_runs`` sessions ran); return the run count."""

        runs = 0
        last_signature: Optional[str] = None
        last_run_at: Optional[float] = None
        LOGGER.info("Watching %s for changes (Ctrl+C to stop)", self.repo.root)
        try:
            while max_runs is None or runs < max_runs:
                signature = self.tree_signature()
                cooling = last_run_at is not None and self._clock() - last_run_at < self.cooldown
                if signature != last_signature and not cooling:
                    if last_signature is not None:
                        LOGGER.info("Change detected; re-running local checks")
                    report = self.build().run_local_only()
                    runs += 1
                    last_run_at = self._clock()
                    last_signature = self.tree_signature()
                    if self.on_report is not None:
                        self.on_report(report)
                    if report.failure_kind == OrchestrationCancelled.kind:
                        break
                    continue
                self.token.sleep(self.poll_interval)
        except OrchestrationCancelled:
            LOGGER.info("Watch mode stopped")
        return runs
