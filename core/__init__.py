"""Core models, registry and logging for hostwarden."""
