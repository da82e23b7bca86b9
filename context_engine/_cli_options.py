"""Shared CLI options for context-engine commands."""

from __future__ import annotations

from pathlib import Path

import typer

from context_engine.config import PRESETS

DEFAULT_MODEL = "gpt-4o-mini"
DEFAULT_OPENAI_BASE_URL = "https://api.openai.com/v1"
DEFAULT_SYSTEM_PROMPT = "You are a helpful assistant."

# --- LLM Options ---
MODEL = typer.Option(
    DEFAULT_MODEL,
    "--model",
    "-m",
    help="Name of the chat model to use.",
    rich_help_panel="LLM Options",
)
SUMMARY_MODEL = typer.Option(
    DEFAULT_MODEL,
    "--summary-model",
    help="Model used to summarise old messages.",
    rich_help_panel="LLM Options",
)
OPENAI_BASE_URL = typer.Option(
    DEFAULT_OPENAI_BASE_URL,
    "--openai-base-url",
    help="Base URL of an OpenAI-compatible API.",
    rich_help_panel="LLM Options",
)
OPENAI_API_KEY = typer.Option(
    None,
    "--openai-api-key",
    envvar="OPENAI_API_KEY",
    help="OpenAI API key.",
    rich_help_panel="LLM Options",
)
TEMPERATURE = typer.Option(
    0.7,
    "--temperature",
    help="Sampling temperature for replies.",
    rich_help_panel="LLM Options",
)
MAX_TOKENS = typer.Option(
    2048,
    "--max-tokens",
    help="Maximum tokens per reply.",
    rich_help_panel="LLM Options",
)

# --- Context Options ---
STRATEGY = typer.Option(
    None,
    "--strategy",
    case_sensitive=False,
    help="Context strategy. Defaults to the preset's strategy.",
    rich_help_panel="Context Options",
)
PRESET = typer.Option(
    "default",
    "--preset",
    help=f"Context preset ({', '.join(PRESETS)}).",
    rich_help_panel="Context Options",
)
KEEP_LAST_N = typer.Option(
    None,
    "--keep-last-n",
    help="Recent messages sent verbatim (clamped to 2..50).",
    rich_help_panel="Context Options",
)
LLM_FACTS = typer.Option(
    False,
    "--llm-facts/--heuristic-facts",
    help="Extract facts with the chat model instead of heuristics only.",
    rich_help_panel="Context Options",
)
AUTO_COMPRESSION = typer.Option(
    True,
    "--auto-compression/--no-auto-compression",
    help="Summarise old messages automatically.",
    rich_help_panel="Context Options",
)

# --- Session Options ---
SESSION_ID = typer.Option(
    "default",
    "--session-id",
    "-s",
    help="Session to load and continue.",
    rich_help_panel="Session Options",
)
SYSTEM_PROMPT = typer.Option(
    DEFAULT_SYSTEM_PROMPT,
    "--system-prompt",
    help="System prompt sent with every turn.",
    rich_help_panel="Session Options",
)
HISTORY_DIR = typer.Option(
    Path("~/.context-engine/chat_history"),
    "--history-dir",
    help="Directory to store conversation history.",
    rich_help_panel="Session Options",
)

# --- General Options ---
LOG_LEVEL = typer.Option(
    "WARNING",
    "--log-level",
    help="Set the log level (e.g., DEBUG, INFO, WARNING).",
)
LOG_FILE = typer.Option(
    None,
    "--log-file",
    help="Path to a file to write logs to.",
)
QUIET = typer.Option(
    False,
    "--quiet",
    "-q",
    help="Suppress log output on the console.",
)
