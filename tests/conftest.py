from __future__ import annotations

import subprocess
import sys
from dataclasses import dataclass
from pathlib import Path

import pytest

ROOT = Path(__file__).resolve().parents[1]
SRC = ROOT / "src"
TESTS = Path(__file__).resolve().parent

if str(SRC) not in sys.path:
    sys.path.insert(0, str(SRC))
if str(TESTS) not in sys.path:
    sys.path.insert(0, str(TESTS))


@dataclass(slots=True)
class TinyRepo:
    """Fixture payload representing a throwaway repository with a bare remote."""

    root: Path
    remote: Path

    def git(self, *args: str) -> str:
        result = subprocess.run(
            ["git", *args],
            cwd=self.root,
            check=True,
            capture_output=True,
            text=True,
        )
        return result.stdout.strip()

    def write(self, relative: str, content: str) -> Path:
        target = self.root / relative
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_text(content, encoding="utf-8")
        return target

    def remote_head(self) -> str:
        result = subprocess.run(
            ["git", "rev-parse", "main"],
            cwd=self.remote,
            check=True,
            capture_output=True,
            text=True,
        )
        return result.stdout.strip()


@pytest.fixture()
def tiny_repo(tmp_path: Path) -> TinyRepo:
    """Create a git repository with one commit pushed to a local bare remote."""

    remote = tmp_path / "remote.git"
    repo_root = tmp_path / "tiny-repo"
    repo_root.mkdir()

    subprocess.run(["git", "init", "--bare", str(remote)], check=True, capture_output=True, text=True)

    def run_git(*cmd: str) -> None:
        subprocess.run(
            ["git", *cmd],
            cwd=repo_root,
            check=True,
            capture_output=True,
            text=True,
        )

    run_git("init")
    run_git("config", "user.email", "greenloop@example.com")
    run_git("config", "user.name", "Greenloop")
    run_git("checkout", "-b", "main")

    (repo_root / "app.py").write_text("def add(left, right):\n    return left + right\n", encoding="utf-8")
    (repo_root / "README.md").write_text("# tiny\n", encoding="utf-8")

    run_git("add", ".")
    run_git("commit", "-m", "Initial tiny repo state")
    run_git("remote", "add", "origin", str(remote))
    run_git("push", "-u", "origin", "main")

    return TinyRepo(root=repo_root, remote=remote)
