"""Read-only model metadata: context window sizes and pricing."""

from __future__ import annotations

from typing import NamedTuple

DEFAULT_CONTEXT_LIMIT = 128_000

# --- Context windows (tokens) ---

CONTEXT_LIMITS: dict[str, int] = {
    "gpt-5.2": 400_000,
    "gpt-5.1": 400_000,
    "gpt-5": 400_000,
    "gpt-5-pro": 400_000,
    "gpt-4.1": 1_047_576,
    "gpt-4.1-mini": 1_047_576,
    "gpt-4-turbo": 128_000,
    "gpt-4o": 128_000,
    "gpt-4o-mini": 128_000,
    "gpt-3.5-turbo": 16_385,
    "o3": 200_000,
    "o3-mini": 200_000,
    "o4-mini": 200_000,
    "claude-3-5-sonnet": 200_000,
    "claude-sonnet-4": 200_000,
    "gemini-2.5-pro": 1_048_576,
    "gemini-2.5-flash": 1_048_576,
    "gemini-2.0-flash": 1_048_576,
    "gemini-2.0-flash-lite-001": 1_048_576,
    "deepseek-chat": 64_000,
    "deepseek-reasoner": 64_000,
    "llama-3.3-70b": 128_000,
    "llama-3-70b-instruct": 8_192,
    "llama-4-scout": 128_000,
    "grok-3": 128_000,
    "grok-4.1-fast": 128_000,
}


class ModelPrice(NamedTuple):
    """USD price per one million tokens."""

    input_per_1m: float
    output_per_1m: float


PRICING_USD: dict[str, ModelPrice] = {
    "gpt-5.2": ModelPrice(1.75, 14.0),
    "gpt-4.1": ModelPrice(2.0, 8.0),
    "gpt-4.1-mini": ModelPrice(0.4, 1.6),
    "gpt-4o": ModelPrice(2.5, 10.0),
    "gpt-4o-mini": ModelPrice(0.15, 0.6),
    "o3": ModelPrice(10.0, 40.0),
    "o3-mini": ModelPrice(1.1, 4.4),
    "o4-mini": ModelPrice(1.1, 4.4),
    "claude-sonnet-4": ModelPrice(3.0, 15.0),
    "claude-3-5-sonnet": ModelPrice(3.0, 15.0),
    "gemini-2.5-pro": ModelPrice(1.25, 10.0),
    "gemini-2.5-flash": ModelPrice(0.075, 0.3),
    "gemini-2.0-flash": ModelPrice(0.1, 0.4),
    "gemini-2.0-flash-lite-001": ModelPrice(0.075, 0.3),
    "deepseek-chat": ModelPrice(0.14, 0.28),
    "deepseek-reasoner": ModelPrice(0.55, 2.19),
    "llama-3.3-70b": ModelPrice(0.6, 0.6),
    "llama-4-scout": ModelPrice(0.6, 0.6),
    "grok-3": ModelPrice(3.0, 15.0),
    "grok-4.1-fast": ModelPrice(2.0, 10.0),
}


def context_limit(model: str) -> int:
    """Return the context window for a model, falling back to 128k."""
    return CONTEXT_LIMITS.get(model, DEFAULT_CONTEXT_LIMIT)


def context_usage_percent(current_tokens: int, model: str) -> float:
    """Return how much of the model's context window is used, in percent."""
    limit = context_limit(model)
    if limit <= 0:
        return 0.0
    return current_tokens / limit * 100


def is_approaching_limit(current_tokens: int, model: str, threshold: float = 0.8) -> bool:
    """Return True when usage exceeds ``threshold`` (a fraction, not percent)."""
    limit = context_limit(model)
    if limit <= 0:
        return False
    return current_tokens / limit > threshold


def remaining_tokens(current_tokens: int, model: str) -> int:
    """Tokens left before the context window is full (may be negative)."""
    return context_limit(model) - current_tokens


def model_price(model: str) -> ModelPrice | None:
    """Return the price entry for a model, if known."""
    return PRICING_USD.get(model)


def calculate_cost(model: str, prompt_tokens: int, completion_tokens: int) -> float | None:
    """Return the USD cost of a request, or None for unpriced models."""
    price = model_price(model)
    if price is None:
        return None
    input_cost = prompt_tokens / 1_000_000 * price.input_per_1m
    output_cost = completion_tokens / 1_000_000 * price.output_per_1m
    return input_cost + output_cost


def format_cost(cost: float) -> str:
    """Format a USD cost with precision that scales with its size."""
    if cost < 0.01:  # noqa: PLR2004
        return f"${cost:.6f}"
    if cost < 1.0:
        return f"${cost:.4f}"
    return f"${cost:.2f}"
