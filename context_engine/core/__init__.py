"""Console, logging and interactive-chat helpers for the CLI."""
