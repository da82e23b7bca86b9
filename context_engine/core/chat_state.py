"""Chat session state and slash command handling.

This module keeps the per-REPL settings and handles slash commands like
/fork, /switch, /facts, /stats and /reset against a SessionEngine.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING

from context_engine.config import ContextStrategy
from context_engine.model_info import format_cost

if TYPE_CHECKING:
    from context_engine.engine import SessionEngine


@dataclass
class ChatSessionState:
    """Runtime state for an interactive chat session."""

    session_id: str
    model: str
    system_prompt: str
    temperature: float = 0.7


def parse_slash_command(text: str) -> tuple[str, list[str]] | None:
    """Parse a slash command from text.

    Args:
        text: The input text to parse

    Returns:
        Tuple of (command, args) if it's a slash command, None otherwise

    """
    text = text.strip()
    if not text.startswith("/"):
        return None

    parts = text[1:].split()
    if not parts:
        return None

    command = parts[0].lower()
    args = parts[1:]
    return command, args


async def handle_slash_command(  # noqa: PLR0911
    command: str,
    args: list[str],
    state: ChatSessionState,
    engine: SessionEngine,
) -> str:
    """Execute a slash command and return a response message.

    Args:
        command: The command name (without slash)
        args: Command arguments
        state: The chat session state
        engine: The engine holding the conversation

    Returns:
        Response message to display to the user

    """
    if command == "help":
        return _handle_help()

    if command == "branches":
        return _handle_branches(state, engine)

    if command == "fork":
        return _handle_fork(args, state, engine)

    if command == "switch":
        return _handle_switch(args, state, engine)

    if command == "facts":
        return _handle_facts(state, engine)

    if command == "summaries":
        return _handle_summaries(state, engine)

    if command == "stats":
        return _handle_stats(state, engine)

    if command == "strategy":
        return _handle_strategy(args, engine)

    if command == "truncate":
        return _handle_truncate(args, state, engine)

    if command == "reset":
        await engine.reset(state.session_id)
        return "Session reset."

    return f"Unknown command: /{command}. Type /help for available commands."


def _handle_help() -> str:
    """Show help message."""
    return """\
Available commands:
  /branches          List branches (* marks the active one)
  /fork N            Fork the active branch after N messages and switch to it
  /switch ID         Switch to branch ID
  /facts             Show remembered facts
  /summaries         Show summary blocks of the active branch
  /stats             Show token usage for this session
  /strategy NAME     sliding_window, sticky_facts or branching
  /truncate N        Keep only the last N messages
  /reset             Forget the whole session
  /help              Show this help message

Keyboard shortcuts:
  Ctrl+C / Ctrl+D    Exit chat"""


def _handle_branches(state: ChatSessionState, engine: SessionEngine) -> str:
    active = engine.active_branch_id(state.session_id)
    lines = ["Branches:"]
    for branch_id in engine.list_branches(state.session_id):
        marker = "*" if branch_id == active else " "
        lines.append(f"  {marker} {branch_id}")
    return "\n".join(lines)


def _parse_int(args: list[str]) -> int | None:
    if len(args) != 1:
        return None
    try:
        return int(args[0])
    except ValueError:
        return None


def _handle_fork(args: list[str], state: ChatSessionState, engine: SessionEngine) -> str:
    checkpoint = _parse_int(args)
    if checkpoint is None:
        return "Usage: /fork N"
    branch_id = engine.fork(state.session_id, checkpoint)
    engine.set_active(state.session_id, branch_id)
    size = len(engine.get_history(state.session_id))
    return f"Forked {branch_id} with {size} messages and switched to it."


def _handle_switch(args: list[str], state: ChatSessionState, engine: SessionEngine) -> str:
    if len(args) != 1:
        return "Usage: /switch ID"
    if engine.set_active(state.session_id, args[0]):
        return f"Switched to {args[0]}."
    return f"Unknown branch: {args[0]}"


def _handle_facts(state: ChatSessionState, engine: SessionEngine) -> str:
    facts = engine.get_facts(state.session_id)
    if not facts:
        return "No facts remembered yet."
    lines: list[str] = []
    for category, group in facts.items():
        lines.append(f"[{category}]")
        lines.extend(f"  {key}: {value}" for key, value in group.items())
    return "\n".join(lines)


def _handle_summaries(state: ChatSessionState, engine: SessionEngine) -> str:
    blocks = engine.get_summary_blocks(state.session_id)
    if not blocks:
        return "No summary blocks yet."
    return "\n".join(
        f"[Block {i}] {block.original_message_count} msgs, ~{block.estimated_tokens} tokens: {block.summary}"
        for i, block in enumerate(blocks, start=1)
    )


def _handle_stats(state: ChatSessionState, engine: SessionEngine) -> str:
    stats = engine.get_token_statistics(state.session_id, state.model)
    cost = format_cost(stats.estimated_cost) if stats.estimated_cost is not None else "n/a"
    lines = [
        f"Requests: {stats.message_count}",
        f"Tokens: {stats.total_tokens} (prompt {stats.total_prompt_tokens}, "
        f"completion {stats.total_completion_tokens})",
        f"Context: {stats.context_usage_percent:.1f}% of {stats.context_limit}",
        f"Estimated cost: {cost}",
    ]
    if stats.is_critical_limit:
        lines.append("Context usage is critical; consider /truncate or /reset.")
    elif stats.is_approaching_limit:
        lines.append("Context usage is high.")
    return "\n".join(lines)


def _handle_strategy(args: list[str], engine: SessionEngine) -> str:
    if len(args) != 1:
        return f"Current strategy: {engine.config.strategy.value}"
    try:
        strategy = ContextStrategy(args[0].lower())
    except ValueError:
        names = ", ".join(s.value for s in ContextStrategy)
        return f"Unknown strategy: {args[0]}. Choose one of: {names}"
    engine.update_config(engine.config.with_strategy(strategy))
    return f"Strategy set to {strategy.value}."


def _handle_truncate(args: list[str], state: ChatSessionState, engine: SessionEngine) -> str:
    keep = _parse_int(args)
    if keep is None or keep < 0:
        return "Usage: /truncate N"
    removed = engine.truncate_history(state.session_id, keep)
    return f"Removed {len(removed)} messages."
