"""Record the working tree before each automated fix and roll back to it."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import List, Optional

from pydantic import ValidationError

from ..memory.schema import Snapshot, utc_now
from .vcs import GitError, GitRepository

__all__ = ["SnapshotManager", "default_snapshot_root", "latest_session_dir"]

LOGGER = logging.getLogger(__name__)


def default_snapshot_root(repo: GitRepository) -> Path:
    """Return the directory under the git dir that holds session snapshots.

    Keeping the files inside ``.git`` means recording a snapshot never dirties
    the working tree that is about to be committed.
    """

    return repo.git_dir() / "greenloop" / "sessions"


class SnapshotManager:
    """Capture ``HEAD`` plus the uncommitted diff, persisted as JSON files."""

    def __init__(self, repo: GitRepository, storage_dir: Path | str | None = None) -> None:
        self.repo = repo
        self.storage_dir = Path(storage_dir) if storage_dir is not None else None
        self._snapshots: List[Snapshot] = []
        self._files: List[Optional[Path]] = []

    @property
    def snapshots(self) -> List[Snapshot]:
        return list(self._snapshots)

    def __len__(self) -> int:
        return len(self._snapshots)

    def create(self, label: str) -> Snapshot:
        """Record the current state under ``label`` and return the snapshot."""

        sha = self.repo.rev_parse("HEAD")
        diff = ""
        if sha is not None:
            result = self.repo.git("diff", "--binary", "HEAD", check=False)
            if result.returncode == 0:
                diff = result.stdout
        snapshot = Snapshot(label=label, sha=sha, diff=diff, timestamp=utc_now())
        self._snapshots.append(snapshot)
        self._files.append(self._persist(snapshot))
        LOGGER.debug("Snapshot %d recorded for %s at %s", len(self._snapshots), label, (sha or "")[:7])
        return snapshot

    def rollback(self, steps: int = 1) -> Snapshot:
        """Restore the snapshot taken ``steps`` fixes ago.

        Tracked files are reset to the recorded commit before the recorded diff
        is re-applied, so uncommitted work present at snapshot time survives.
        """

        if steps < 1 or steps > len(self._snapshots):
            raise IndexError(f"Cannot roll back {steps} step(s); {len(self._snapshots)} snapshot(s) recorded")
        snapshot = self._snapshots[-steps]
        self.restore(snapshot)
        keep = len(self._snapshots) - steps + 1
        for path in self._files[keep:]:
            if path is not None:
                path.unlink(missing_ok=True)
        del self._snapshots[keep:]
        del self._files[keep:]
        return snapshot

    def restore(self, snapshot: Snapshot) -> None:
        if not snapshot.sha:
            raise GitError(f"Snapshot '{snapshot.label}' has no commit to restore")
        LOGGER.info("Restoring snapshot '%s' (%s)", snapshot.label, snapshot.sha[:7])
        self.repo.reset_hard(snapshot.sha)
        if snapshot.diff.strip():
            self.repo.apply_patch(snapshot.diff)

    # -------------------------------------------------------------- storage
    def _persist(self, snapshot: Snapshot) -> Optional[Path]:
        if self.storage_dir is None:
            return None
        self.storage_dir.mkdir(parents=True, exist_ok=True)
        millis = int(snapshot.timestamp.timestamp() * 1000)
        target = self.storage_dir / f"snapshot-{millis}-{len(self._snapshots):03d}.json"
        target.write_text(snapshot.model_dump_json(indent=2), encoding="utf-8")
        return target

    @classmethod
    def load(cls, repo: GitRepository, storage_dir: Path | str) -> "SnapshotManager":
        """Rebuild a manager from the snapshot files in ``storage_dir``."""

        manager = cls(repo, storage_dir)
        directory = Path(storage_dir)
        if not directory.exists():
            return manager
        for path in sorted(directory.glob("snapshot-*.json")):
            try:
                snapshot = Snapshot.model_validate_json(path.read_text(encoding="utf-8"))
            except (OSError, ValidationError) as error:
                LOGGER.warning("Skipping unreadable snapshot %s: %s", path, error)
                continue
            manager._snapshots.append(snapshot)
            manager._files.append(path)
        return manager


def latest_session_dir(root: Path) -> Optional[Path]:
    """Return the most recently created session directory under ``root``."""

    if not root.exists():
        return None
    sessions = sorted((entry for entry in root.iterdir() if entry.is_dir()), key=lambda item: item.name)
    return sessions[-1] if sessions else None

