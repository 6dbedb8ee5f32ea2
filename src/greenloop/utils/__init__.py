"""Pure helpers shared across the orchestrator."""
