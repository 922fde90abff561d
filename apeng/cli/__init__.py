"""Command-line interface for apeng."""
