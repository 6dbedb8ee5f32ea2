from __future__ import annotations

from pathlib import Path

import pytest

from greenloop.tools.snapshots import SnapshotManager, default_snapshot_root, latest_session_dir
from greenloop.tools.vcs import GitRepository


def _read(path: Path) -> str:
    return path.read_text(encoding="utf-8")


def test_rollback_restores_commit_and_uncommitted_diff(tiny_repo, tmp_path: Path) -> None:
    repo = GitRepository(tiny_repo.root)
    manager = SnapshotManager(repo, tmp_path / "snapshots")
    app = tiny_repo.root / "app.py"
    head0 = tiny_repo.git("rev-parse", "HEAD")

    first = manager.create("before-fix-1")
    tiny_repo.write("app.py", "def add(left, right):\n    return left + right + 0\n")
    second = manager.create("before-fix-2")
    tiny_repo.git("commit", "-am", "Automated fix")
    tiny_repo.write("app.py", "def add(left, right):\n    return None\n")
    manager.create("before-fix-3")

    assert first.diff == ""
    assert "left + right + 0" in second.diff
    assert len(manager) == 3

    restored = manager.rollback(2)

    assert restored.label == "before-fix-2"
    assert tiny_repo.git("rev-parse", "HEAD") == head0
    assert _read(app) == "def add(left, right):\n    return left + right + 0\n"
    assert [snapshot.label for snapshot in manager.snapshots] == ["before-fix-1", "before-fix-2"]
    assert len(list((tmp_path / "snapshots").glob("snapshot-*.json"))) == 2


def test_rollback_out_of_range(tiny_repo) -> None:
    manager = SnapshotManager(GitRepository(tiny_repo.root))
    manager.create("only")

    with pytest.raises(IndexError):
        manager.rollback(2)
    with pytest.raises(IndexError):
        manager.rollback(0)


def test_load_reads_persisted_snapshots_in_order(tiny_repo, tmp_path: Path) -> None:
    repo = GitRepository(tiny_repo.root)
    storage = tmp_path / "session" / "snapshots"
    manager = SnapshotManager(repo, storage)
    manager.create("first")
    tiny_repo.write("README.md", "# tiny\n\nchanged\n")
    manager.create("second")
    (storage / "snapshot-9999999999999-999.json").write_text("{not json", encoding="utf-8")

    loaded = SnapshotManager.load(repo, storage)

    assert [snapshot.label for snapshot in loaded.snapshots] == ["first", "second"]
    assert "changed" in loaded.snapshots[1].diff

    loaded.rollback(1)
    assert _read(tiny_repo.root / "README.md") == "# tiny\n\nchanged\n"


def test_default_root_lives_inside_git_dir(tiny_repo) -> None:
    repo = GitRepository(tiny_repo.root)
    root = default_snapshot_root(repo)

    assert root == (tiny_repo.root / ".git" / "greenloop" / "sessions").resolve()


def test_latest_session_dir(tmp_path: Path) -> None:
    assert latest_session_dir(tmp_path / "missing") is None
    (tmp_path / "20260301T100000000000Z").mkdir()
    (tmp_path / "20260301T110000000000Z").mkdir()
    (tmp_path / "stray.txt").write_text("", encoding="utf-8")

    assert latest_session_dir(tmp_path) == tmp_path / "20260301T110000000000Z"
