from __future__ import annotations

from pathlib import Path

from typer.testing import CliRunner

from greenloop.cli import app
from greenloop.tools.snapshots import SnapshotManager, default_snapshot_root
from greenloop.tools.vcs import GitRepository

runner = CliRunner()


def test_dry_run_reports_success_without_side_effects(tiny_repo) -> None:
    head = tiny_repo.git("rev-parse", "HEAD")

    result = runner.invoke(app, ["green", "--dry-run", "--repo", str(tiny_repo.root)])

    assert result.exit_code == 0, result.output
    assert "Outcome: success" in result.output
    assert "Dry run complete" in result.output
    assert tiny_repo.git("rev-parse", "HEAD") == head
    assert tiny_repo.git("status", "--porcelain") == ""


def test_outside_repository_exits_non_zero(tmp_path: Path) -> None:
    result = runner.invoke(app, ["green", "--dry-run", "--repo", str(tmp_path)])

    assert result.exit_code == 1
    assert "Unable to locate a git repository" in result.output


def test_invalid_config_exits_non_zero(tiny_repo, tmp_path: Path) -> None:
    config = tmp_path / "broken.yaml"
    config.write_text("max_retries: [oops\n", encoding="utf-8")

    result = runner.invoke(app, ["green", "--dry-run", "--repo", str(tiny_repo.root), "--config", str(config)])

    assert result.exit_code == 1
    assert "Failed to parse config" in result.output


def test_explicit_missing_config_exits_non_zero(tiny_repo, tmp_path: Path) -> None:
    result = runner.invoke(
        app, ["green", "--dry-run", "--repo", str(tiny_repo.root), "--config", str(tmp_path / "nope.yaml")]
    )

    assert result.exit_code == 1
    assert "Config file not found" in result.output


def test_snapshots_without_sessions(tiny_repo) -> None:
    result = runner.invoke(app, ["snapshots", "--repo", str(tiny_repo.root)])

    assert result.exit_code == 1
    assert "No recorded sessions." in result.output


def test_snapshots_and_rollback_for_latest_session(tiny_repo) -> None:
    repo = GitRepository(tiny_repo.root)
    head = tiny_repo.git("rev-parse", "HEAD")
    session = default_snapshot_root(repo) / "20260301T120000000000Z" / "snapshots"
    manager = SnapshotManager(repo, session)
    manager.create("local-lint-1")
    tiny_repo.write("app.py", "def add(left, right):\n    return 42\n")
    tiny_repo.git("commit", "-am", "Automated fix")

    listing = runner.invoke(app, ["snapshots", "--repo", str(tiny_repo.root)])
    assert listing.exit_code == 0, listing.output
    assert "local-lint-1" in listing.output
    assert head[:7] in listing.output

    too_far = runner.invoke(app, ["rollback", "--repo", str(tiny_repo.root), "--steps", "3", "--yes"])
    assert too_far.exit_code == 1
    assert "Only 1 snapshot(s) recorded." in too_far.output

    restored = runner.invoke(app, ["rollback", "--repo", str(tiny_repo.root), "--yes"])
    assert restored.exit_code == 0, restored.output
    assert "Restored snapshot 'local-lint-1'" in restored.output
    assert tiny_repo.git("rev-parse", "HEAD") == head


def test_rollback_can_be_declined(tiny_repo) -> None:
    repo = GitRepository(tiny_repo.root)
    session = default_snapshot_root(repo) / "20260301T120000000000Z" / "snapshots"
    SnapshotManager(repo, session).create("local-test-1")
    tiny_repo.write("app.py", "changed = True\n")
    tiny_repo.git("commit", "-am", "Automated fix")
    head = tiny_repo.git("rev-parse", "HEAD")

    result = runner.invoke(app, ["rollback", "--repo", str(tiny_repo.root)], input="n\n")

    assert result.exit_code == 1
    assert tiny_repo.git("rev-parse", "HEAD") == head
