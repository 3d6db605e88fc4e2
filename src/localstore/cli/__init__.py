"""Command-line interface for the local store."""
