"""Command-line interface: an interactive chat and an offline strategy comparison."""

from __future__ import annotations

import asyncio
import logging
from pathlib import Path

import typer

from context_engine import _cli_options as opts
from context_engine.completion import OpenAICompatibleClient
from context_engine.config import PRESETS, ContextConfig, ContextStrategy, load_config
from context_engine.core.chat_state import ChatSessionState, handle_slash_command, parse_slash_command
from context_engine.core.utils import (
    console,
    print_error_message,
    print_reply,
    print_with_style,
    rows_table,
    setup_logging,
)
from context_engine.engine import SessionEngine
from context_engine.facts import LlmFactsExtractor
from context_engine.model_info import format_cost
from context_engine.models import ChatError, CompressionCompleted, CompressionError, CompressionEvent
from context_engine.persistence import FileHistoryStorage
from context_engine.scenario import run_scenario

LOGGER = logging.getLogger(__name__)

EXIT_COMMANDS = frozenset({"exit", "quit", "/exit", "/quit"})

app = typer.Typer(
    name="context-engine",
    help="Chat with an LLM while history is windowed, summarised, and distilled into facts.",
    add_completion=True,
)


@app.callback(invoke_without_command=True)
def main(
    ctx: typer.Context,
) -> None:
    """Context management for LLM chats."""
    if ctx.invoked_subcommand is None:
        console.print("[bold red]No command specified.[/bold red]")
        console.print("[bold yellow]Running --help for your convenience.[/bold yellow]")
        console.print(ctx.get_help())
        raise typer.Exit
    import dotenv  # noqa: PLC0415

    dotenv.load_dotenv()


def set_config_defaults(ctx: typer.Context, config_file: str | None) -> None:
    """Set the default values for the CLI based on the config file."""
    config = load_config(config_file)
    wildcard_config = config.get("defaults", {})
    # This runs inside the subcommand, so the command is the sub command.
    subcommand = ctx.command.name

    if not subcommand:
        ctx.default_map = wildcard_config
        return

    command_config = config.get(subcommand, {})
    defaults = {**wildcard_config, **command_config}
    ctx.default_map = defaults


def _config_file_callback(ctx: typer.Context, value: str | None) -> str | None:
    set_config_defaults(ctx, value)
    return value


CONFIG_FILE = typer.Option(
    None,
    "--config-file",
    is_eager=True,
    callback=_config_file_callback,
    help="Path to a custom config file.",
)


def build_context_config(
    preset: str,
    strategy: ContextStrategy | None,
    keep_last_n: int | None,
    *,
    auto_compression: bool = True,
) -> ContextConfig:
    """Resolve a preset name and overrides into a :class:`ContextConfig`."""
    if preset not in PRESETS:
        names = ", ".join(PRESETS)
        msg = f"Unknown preset {preset!r}. Choose one of: {names}"
        raise typer.BadParameter(msg, param_hint="--preset")
    config = PRESETS[preset]
    if strategy is not None:
        config = config.with_strategy(strategy)
    if keep_last_n is not None:
        config = config.with_keep_last_n(keep_last_n)
    return config.with_auto_compression(enabled=auto_compression)


# --- scenario ---


@app.command("scenario")
def scenario(
    *,
    preset: str = opts.PRESET,
    keep_last_n: int | None = opts.KEEP_LAST_N,
    log_level: str = opts.LOG_LEVEL,
    log_file: str | None = opts.LOG_FILE,
    quiet: bool = opts.QUIET,
    config_file: str | None = CONFIG_FILE,  # noqa: ARG001
) -> None:
    """Compare context strategies on a fixed requirements dialogue, offline."""
    setup_logging(log_level, log_file, quiet=quiet)
    config = build_context_config(preset, None, keep_last_n)
    rows = run_scenario(config)
    table = rows_table(
        "Context strategy dry run",
        ["Run", "Turn", "Recent", "Facts", "Tokens~"],
        [
            [row.run, str(row.turn), str(row.recent_messages), str(row.facts), str(row.estimated_tokens)]
            for row in rows
        ],
    )
    console.print(table)


# --- chat ---


def _print_compression_event(event: CompressionEvent) -> None:
    if isinstance(event, CompressionCompleted):
        print_with_style(
            f"Compressed {event.block.original_message_count} messages into a summary "
            f"(~{event.block.estimated_tokens} tokens).",
            style="dim",
        )
    elif isinstance(event, CompressionError):
        print_with_style(f"Compression failed: {event.error}", style="yellow")


async def _chat_loop(engine: SessionEngine, state: ChatSessionState) -> None:
    history = engine.get_history(state.session_id)
    if history:
        print_with_style(f"Loaded {len(history)} messages for session {state.session_id!r}.")
    console.print("[dim]Type /help for commands, Ctrl+D to exit.[/dim]")
    while True:
        try:
            text = await asyncio.to_thread(console.input, "[bold blue]You:[/bold blue] ")
        except (EOFError, KeyboardInterrupt):
            console.print()
            break
        text = text.strip()
        if not text:
            continue
        if text.lower() in EXIT_COMMANDS:
            break

        parsed = parse_slash_command(text)
        if parsed is not None:
            command, args = parsed
            console.print(await handle_slash_command(command, args, state, engine), markup=False)
            continue

        with console.status("[bold yellow]Thinking...[/bold yellow]"):
            result = await engine.send(
                state.session_id,
                text,
                model=state.model,
                system_prompt=state.system_prompt,
                temperature=state.temperature,
            )
        if isinstance(result, ChatError):
            print_error_message(result.message)
            continue
        metrics = result.metrics
        footer = f"{metrics.total_tokens} tokens, {metrics.response_time_ms} ms"
        if metrics.cost is not None:
            footer += f", {format_cost(metrics.cost)}"
        print_reply(result.message.content, footer)
        engine.is_approaching_context_limit(state.session_id, state.model)


async def _async_chat(engine: SessionEngine, state: ChatSessionState) -> None:
    unsubscribe = engine.subscribe(_print_compression_event)
    try:
        await _chat_loop(engine, state)
    finally:
        unsubscribe()
        await engine.wait_for_pending_saves()


@app.command("chat")
def chat(
    *,
    model: str = opts.MODEL,
    summary_model: str = opts.SUMMARY_MODEL,
    openai_base_url: str = opts.OPENAI_BASE_URL,
    openai_api_key: str | None = opts.OPENAI_API_KEY,
    temperature: float = opts.TEMPERATURE,
    max_tokens: int = opts.MAX_TOKENS,
    strategy: ContextStrategy | None = opts.STRATEGY,
    preset: str = opts.PRESET,
    keep_last_n: int | None = opts.KEEP_LAST_N,
    llm_facts: bool = opts.LLM_FACTS,
    auto_compression: bool = opts.AUTO_COMPRESSION,
    session_id: str = opts.SESSION_ID,
    system_prompt: str = opts.SYSTEM_PROMPT,
    history_dir: Path = opts.HISTORY_DIR,
    log_level: str = opts.LOG_LEVEL,
    log_file: str | None = opts.LOG_FILE,
    quiet: bool = opts.QUIET,
    config_file: str | None = CONFIG_FILE,  # noqa: ARG001
) -> None:
    """Interactive chat whose context is managed by the engine."""
    setup_logging(log_level, log_file, quiet=quiet)
    config = build_context_config(preset, strategy, keep_last_n, auto_compression=auto_compression)
    client = OpenAICompatibleClient(openai_base_url=openai_base_url, api_key=openai_api_key)
    facts_extractor = (
        LlmFactsExtractor(openai_base_url=openai_base_url, model=model, api_key=openai_api_key)
        if llm_facts
        else None
    )
    engine = SessionEngine(
        client,
        config=config,
        facts_extractor=facts_extractor,
        storage=FileHistoryStorage(history_dir.expanduser()),
        summary_model=summary_model,
        max_tokens=max_tokens,
    )
    state = ChatSessionState(
        session_id=session_id,
        model=model,
        system_prompt=system_prompt,
        temperature=temperature,
    )
    LOGGER.info("Starting chat: session=%s model=%s %s", session_id, model, config)
    asyncio.run(_async_chat(engine, state))
