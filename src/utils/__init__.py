"""Index Restore - Shared utilities."""
