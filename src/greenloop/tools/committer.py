"""Stage, validate, commit and optionally push automated fixes."""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from typing import Callable, List, Optional

from .vcs import GitRepository

__all__ = [
    "FALLBACK_COMMIT_MESSAGE",
    "ChangeCommitter",
    "CommitOutcome",
    "MessageGenerator",
    "extract_commit_message",
    "validate_staged_diff",
]

LOGGER = logging.getLogger(__name__)

FALLBACK_COMMIT_MESSAGE = "Fix local checks and update tests"
MAX_SUBJECT_LENGTH = 72

# (status, diff, recent_log) -> raw generator output
MessageGenerator = Callable[[str, str, str], str]

_PREAMBLE_PREFIXES = ("here", "commit message:", "```")
_ISSUE_REFERENCE = re.compile(r"(#\d+|https?://\S+/issues/\d+|[A-Z][A-Z0-9]+-\d+)")
_DIFF_CHECKS: tuple[tuple[re.Pattern[str], str], ...] = (
    (re.compile(r"\bconsole\.(log|debug)\("), "debug logging statement added"),
    (re.compile(r"^\s*(breakpoint\(\)|import pdb|pdb\.set_trace\(\))"), "debugger call added"),
    (re.compile(r"^\s*debugger;?\s*$"), "debugger statement added"),
    (re.compile(r"\b(it|test|describe)\.only\("), "focused test (.only) added"),
    (re.compile(r"\b(it|test|describe)\.skip\("), "skipped test (.skip) added"),
)
_TODO_MARKER = re.compile(r"\b(TODO|FIXME)\b")


@dataclass(slots=True)
class CommitOutcome:
    """Result of :meth:`ChangeCommitter.commit_and_maybe_push`."""

    committed: bool
    sha: Optional[str] = None
    pushed: bool = False
    message: str = ""
    changed_paths: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)


def extract_commit_message(raw: str) -> str:
    """Return the first substantial line of generator output.

    Preambles such as ``Here is a commit message`` and code fences are
    skipped; an empty result yields :data:`FALLBACK_COMMIT_MESSAGE`.
    """

    for line in (raw or "").splitlines():
        candidate = line.strip().strip("`").strip().strip('"').strip()
        lowered = line.strip().lower()
        if len(candidate) <= 10 or lowered.startswith(_PREAMBLE_PREFIXES):
            continue
        return candidate[:MAX_SUBJECT_LENGTH].rstrip()
    return FALLBACK_COMMIT_MESSAGE


def validate_staged_diff(diff: str) -> List[str]:
    """Return non-blocking warnings for risky additions in ``diff``."""

    warnings: List[str] = []
    current_file = ""
    for line in diff.splitlines():
        if line.startswith("+++ "):
            current_file = line[4:].removeprefix("b/")
            continue
        if not line.startswith("+") or line.startswith("+++"):
            continue
        added = line[1:]
        for pattern, label in _DIFF_CHECKS:
            if pattern.search(added):
                warnings.append(f"{current_file}: {label}")
        if _TODO_MARKER.search(added) and not _ISSUE_REFERENCE.search(added):
            warnings.append(f"{current_file}: TODO/FIXME without an issue reference")
    return warnings


class ChangeCommitter:
    """Turn working tree changes into a commit, then push when requested."""

    def __init__(
        self,
        repo: GitRepository,
        *,
        message_generator: Optional[MessageGenerator] = None,
    ) -> None:
        self.repo = repo
        self.message_generator = message_generator

    def commit_and_maybe_push(
        self,
        message: Optional[str] = None,
        *,
        no_verify: bool = False,
        push: bool = True,
    ) -> CommitOutcome:
        """Commit every pending change and push it when ``push`` is set.

        A clean tree is a no-op.  When staging or committing fails (or the
        session is interrupted) the index is reset so no half-staged state is
        left behind, and the error propagates.
        """

        if self.repo.is_clean():
            LOGGER.info("Working tree clean; nothing to commit")
            return CommitOutcome(committed=False)
        changed = [path.as_posix() for path in self.repo.working_tree_changes()]

        try:
            self.repo.add()
            staged_diff = self.repo.diff(staged=True)
            warnings = validate_staged_diff(staged_diff)
            for warning in warnings:
                LOGGER.warning("Pre-push check: %s", warning)
            subject = message or self._generate_message(staged_diff)
            sha = self.repo.commit(subject, no_verify=no_verify)
        except BaseException:
            self._unstage()
            raise

        if sha is None:
            return CommitOutcome(committed=False, changed_paths=changed, warnings=warnings)

        LOGGER.info("Committed %s: %s", sha[:7], subject)
        outcome = CommitOutcome(
            committed=True,
            sha=sha,
            message=subject,
            changed_paths=changed,
            warnings=warnings,
        )
        if push:
            self.push(no_verify=no_verify)
            outcome.pushed = True
        return outcome

    def push(self, *, no_verify: bool = False) -> None:
        """Push the current branch, setting upstream when it has none."""

        branch = self.repo.current_branch()
        upstream = self.repo.git("rev-parse", "--abbrev-ref", "@{u}", check=False)
        if upstream.returncode != 0 and branch:
            self.repo.push("origin", branch, set_upstream=True, no_verify=no_verify)
        else:
            self.repo.push(no_verify=no_verify)
        LOGGER.info("Pushed %s", branch or "HEAD")

    def _generate_message(self, staged_diff: str) -> str:
        if self.message_generator is None:
            return FALLBACK_COMMIT_MESSAGE
        try:
            raw = self.message_generator(self.repo.status(), staged_diff, self.repo.recent_log(5))
        except Exception as error:  # noqa: BLE001 - any generator failure falls back
            LOGGER.warning("Commit message generation failed, using fallback: %s", error)
            return FALLBACK_COMMIT_MESSAGE
        return extract_commit_message(raw)

    def _unstage(self) -> None:
        try:
            self.repo.reset_index()
        except Exception:  # noqa: BLE001 - best effort while another error propagates
            LOGGER.debug("Failed to reset index after aborted commit", exc_info=True)
