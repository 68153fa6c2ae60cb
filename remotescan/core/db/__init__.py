"""Database helpers for the remote track store (schema and migrations)."""
