"""Command-line interface for agnet."""
