"""Command-line entry points (run, replay)."""
