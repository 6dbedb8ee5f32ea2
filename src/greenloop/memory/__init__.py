"""Session-scoped records."""
