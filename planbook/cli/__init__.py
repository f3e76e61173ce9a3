"""Command-line entry points for planbook."""
