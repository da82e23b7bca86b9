"""Small shared helpers: token estimation and timing."""

from __future__ import annotations

from time import perf_counter

CHARS_PER_TOKEN = 4


def estimate_tokens(text: str) -> int:
    """Estimate token count using ~4 chars per token heuristic.

    Deterministic and monotonic in text length, which is all the composer and
    the compression budget rely on.
    """
    return len(text) // CHARS_PER_TOKEN


def elapsed_ms(start: float) -> float:
    """Return elapsed milliseconds since start."""
    return (perf_counter() - start) * 1000
