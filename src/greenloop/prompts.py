"""Prompt templates handed to the fix agent."""

from __future__ import annotations

from pathlib import Path

FIX_GUIDANCE = (
    "Be direct and make the change yourself; do not ask questions.\n"
    "- Missing dependency: install a pinned version.\n"
    "- Type error: fix the code, not the type checker configuration.\n"
    "- Lint or formatting error: fix the formatting.\n"
    "- Failing tests: fix the code or update snapshots when the new output is correct.\n"
    "- Missing script: look for a similarly named script (for example 'cover' vs 'coverage')."
)


def render_local_fix_prompt(project: str, command: str, error_output: str) -> str:
    """Prompt for a failing local verification step."""
    return (
        f"The command `{command}` failed in the {project} project.\n\n"
        f"## Error output\n{error_output}\n\n"
        "## Task\nFind the cause and apply the fix with file edits, commands or both.\n\n"
        f"{FIX_GUIDANCE}"
    )


def render_escalation_prompt(project: str, command: str, attempts: int, error_output: str) -> str:
    """Prompt for the single interactive session after automated attempts ran out."""
    return (
        f"The command `{command}` in the {project} project is still failing after "
        f"{attempts} automated fix attempt(s).\n\n"
        f"## Latest error output\n{error_output}\n\n"
        "Work through the failure until the command passes, then exit."
    )


def render_ci_fix_prompt(
    slug: str,
    head_sha: str,
    run_url: str,
    log_excerpt: str,
    check_commands: list[str],
) -> str:
    """Prompt for a failed workflow run as a whole."""
    commands = "\n".join(f"- {command}" for command in check_commands) or "- (none configured)"
    return (
        f"CI failed for commit {head_sha[:7]} in {slug} ({run_url}).\n\n"
        f"## Failure log\n{log_excerpt}\n\n"
        "## Task\nFix every failure in the log. Afterwards these local checks must pass:\n"
        f"{commands}\n\n"
        f"{FIX_GUIDANCE}"
    )


def render_job_fix_prompt(job_name: str, run_id: int, head_sha: str, log_excerpt: str) -> str:
    """Prompt for a single failed CI job while the rest of the run continues."""
    return (
        f"CI job \"{job_name}\" failed (run {run_id}, commit {head_sha[:7]}).\n\n"
        f"## Job log\n{log_excerpt}\n\n"
        "Fix only what this job reports; other jobs are handled separately.\n\n"
        f"{FIX_GUIDANCE}"
    )


def render_commit_message_prompt(status: str, diff: str, recent_log: str) -> str:
    """Prompt asking for a one-line commit subject."""
    return (
        "Write a single-line git commit message (imperative mood, at most 72 characters) "
        "for the staged changes below. Reply with the message only.\n\n"
        f"## Status\n{status}\n"
        f"## Recent commits\n{recent_log}\n"
        f"## Diff\n{diff[:8000]}"
    )


def project_name(root: Path) -> str:
    return root.resolve().name


__all__ = [
    "FIX_GUIDANCE",
    "project_name",
    "render_ci_fix_prompt",
    "render_commit_message_prompt",
    "render_escalation_prompt",
    "render_job_fix_prompt",
    "render_local_fix_prompt",
]
