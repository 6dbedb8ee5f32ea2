"""Convenience exports for fix-agent client implementations."""

from .agent_client import AgentClient, AgentRequest, AgentResult
from .claude_cli import ClaudeCLIClient

__all__ = [
    "AgentClient",
    "AgentRequest",
    "AgentResult",
    "ClaudeCLIClient",
]
