"""Per-turn orchestration: facts, compression, composition, completion, accounting."""

from __future__ import annotations

import asyncio
import logging
import threading
from time import perf_counter
from typing import TYPE_CHECKING, NamedTuple

from context_engine._utils import elapsed_ms
from context_engine.branches import BranchTree
from context_engine.completion import (
    ChatMessage,
    CompletionError,
    CompletionUsage,
    ContextLengthExceededError,
)
from context_engine.composer import ContextComposer
from context_engine.compression import CompressionEngine
from context_engine.config import DEFAULT_CONTEXT_CONFIG, ContextConfig, ContextStrategy
from context_engine.facts import HeuristicFactsExtractor, trim_facts
from context_engine.model_info import (
    calculate_cost,
    context_limit,
    context_usage_percent,
    is_approaching_limit,
    remaining_tokens,
)
from context_engine.models import (
    EMPTY_TOKEN_STATISTICS,
    MAIN_BRANCH,
    ChatError,
    ChatSuccess,
    CompressionCompleted,
    CompressionError,
    CompressionFailed,
    CompressionNotNeeded,
    CompressionPartial,
    CompressionSkipped,
    CompressionSuccess,
    Message,
    MessageMetrics,
    MessageRole,
    SessionTokenStatistics,
)
from context_engine.persistence import PersistenceError
from context_engine.summarizer import SummaryGenerator
from context_engine.summary_store import SummaryStore

if TYPE_CHECKING:
    from collections.abc import Callable, Sequence

    from context_engine.completion import CompletionClient
    from context_engine.facts import FactsExtractor
    from context_engine.models import (
        BranchKey,
        BranchState,
        ChatResult,
        ComposedContext,
        CompressionEvent,
        CompressionResult,
        FactGroups,
        SummaryBlock,
    )
    from context_engine.persistence import HistoryStorage

LOGGER = logging.getLogger(__name__)

__all__ = ["ContextConfig", "ContextStrategy", "SessionEngine", "TokenAccumulator"]

DEFAULT_MAX_TOKENS = 2048
CRITICAL_USAGE_PERCENT = 95

# --- Token accounting ---


class TokenSnapshot(NamedTuple):
    """Point-in-time copy of a :class:`TokenAccumulator`."""

    total_prompt_tokens: int
    total_completion_tokens: int
    total_tokens: int
    message_count: int
    last_prompt_tokens: int
    last_completion_tokens: int


class TokenAccumulator:
    """Running token totals for one session."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._prompt = 0
        self._completion = 0
        self._total = 0
        self._messages = 0
        self._last_prompt = 0
        self._last_completion = 0

    def update(self, prompt_tokens: int, completion_tokens: int, total_tokens: int) -> None:
        """Add one request's usage."""
        with self._lock:
            self._prompt += prompt_tokens
            self._completion += completion_tokens
            self._total += total_tokens
            self._messages += 1
            self._last_prompt = prompt_tokens
            self._last_completion = completion_tokens

    def reduce_proportionally(self, factor: float) -> None:
        """Scale totals by ``factor`` after history was shortened."""
        factor = max(0.0, min(1.0, factor))
        with self._lock:
            self._prompt = int(self._prompt * factor)
            self._completion = int(self._completion * factor)
            self._total = int(self._total * factor)
            self._messages = int(self._messages * factor)

    def snapshot(self) -> TokenSnapshot:
        """Return the current totals."""
        with self._lock:
            return TokenSnapshot(
                self._prompt,
                self._completion,
                self._total,
                self._messages,
                self._last_prompt,
                self._last_completion,
            )


def build_request_messages(context: ComposedContext) -> list[ChatMessage]:
    """System prompt, then user/assistant history, then the new user message."""
    messages = [ChatMessage(role="system", content=context.rendered_system_prompt)]
    messages.extend(
        ChatMessage(role=message.role.value, content=message.content)
        for message in context.recent_messages
        if message.role in (MessageRole.USER, MessageRole.ASSISTANT)
    )
    messages.append(ChatMessage(role="user", content=context.user_message))
    return messages


def _event_for(key: BranchKey, result: CompressionResult) -> CompressionEvent:
    session_id, branch_id = key
    if isinstance(result, CompressionNotNeeded):
        return CompressionSkipped(session_id, branch_id)
    if isinstance(result, CompressionFailed):
        return CompressionError(session_id, branch_id, result.error)
    return CompressionCompleted(session_id, branch_id, result.block)


class SessionEngine:
    """Public entry point for chat turns and context management.

    Sends on one branch must be serialized by the caller; different sessions
    and branches may run concurrently.
    """

    def __init__(
        self,
        client: CompletionClient,
        *,
        config: ContextConfig = DEFAULT_CONTEXT_CONFIG,
        summary_generator: SummaryGenerator | None = None,
        facts_extractor: FactsExtractor | None = None,
        storage: HistoryStorage | None = None,
        summary_model: str = "gpt-4o-mini",
        max_tokens: int = DEFAULT_MAX_TOKENS,
    ) -> None:
        self.client = client
        self.storage = storage
        self.max_tokens = max_tokens
        self.summary_store = SummaryStore()
        self.summary_generator = summary_generator or SummaryGenerator(client, model=summary_model)
        self.compression = CompressionEngine(self.summary_generator, self.summary_store)
        self.composer = ContextComposer(self.summary_store)
        self.heuristic = HeuristicFactsExtractor()
        self.facts_extractor: FactsExtractor = facts_extractor or self.heuristic
        self.branches = BranchTree(self.heuristic)
        self._config = config
        self._lock = threading.Lock()
        self._tokens: dict[str, TokenAccumulator] = {}
        self._observers: list[Callable[[CompressionEvent], None]] = []
        self._pending_saves: set[asyncio.Task[None]] = set()
        self._save_versions: dict[str, int] = {}
        self._written_versions: dict[str, int] = {}
        self._version_lock = threading.Lock()
        self._write_lock = threading.Lock()

    # --- Configuration and observers ---

    @property
    def config(self) -> ContextConfig:
        """The settings applied to the next turn."""
        return self._config

    def update_config(self, config: ContextConfig) -> None:
        """Replace the settings wholesale."""
        self._config = config
        LOGGER.info("Config updated: %s", config)

    def subscribe(self, callback: Callable[[CompressionEvent], None]) -> Callable[[], None]:
        """Register a compression observer; returns a function that unsubscribes it."""
        with self._lock:
            self._observers.append(callback)

        def unsubscribe() -> None:
            with self._lock:
                if callback in self._observers:
                    self._observers.remove(callback)

        return unsubscribe

    def _emit(self, event: CompressionEvent) -> None:
        with self._lock:
            observers = list(self._observers)
        for callback in observers:
            try:
                callback(event)
            except Exception:
                LOGGER.exception("Compression observer failed for %s", type(event).__name__)

    # --- Branch access ---

    def _active(self, session_id: str) -> tuple[str, BranchState]:
        if not self.branches.has_session(session_id) and self.storage is not None:
            self.branches.bootstrap(session_id, self.storage.load(session_id), self._config.max_facts)
        return self.branches.active_branch(session_id)

    def _branch(self, session_id: str, branch_id: str | None) -> BranchState | None:
        active_id, active = self._active(session_id)
        if branch_id is None or branch_id == active_id:
            return active
        return self.branches.get(session_id, branch_id)

    def _accumulator(self, session_id: str) -> TokenAccumulator:
        with self._lock:
            accumulator = self._tokens.get(session_id)
            if accumulator is None:
                accumulator = self._tokens[session_id] = TokenAccumulator()
            return accumulator

    # --- Turn ---

    async def send(
        self,
        session_id: str,
        user_message: str,
        *,
        model: str,
        system_prompt: str,
        temperature: float = 0.7,
    ) -> ChatResult:
        """Run one turn. Never raises for completion failures."""
        config = self._config
        branch_id, branch = self._active(session_id)
        key = (session_id, branch_id)
        LOGGER.info(
            "Turn start: session=%s branch=%s model=%s history=%d strategy=%s",
            session_id,
            branch_id,
            model,
            len(branch.snapshot()),
            config.strategy.value,
        )

        if config.enable_facts_memory:
            await self._update_facts(branch, user_message, config)

        if config.enable_auto_compression:
            result = await self.compression.try_compress(key, branch, config)
            self._emit(_event_for(key, result))
            if isinstance(result, (CompressionSuccess, CompressionPartial)):
                self._schedule_save(session_id, branch_id)

        context = self.composer.compose(
            key,
            system_prompt=system_prompt,
            user_message=user_message,
            history=branch.snapshot(),
            facts=branch.facts_snapshot(),
            config=config,
        )
        if not self.composer.fits_in_limit(context, model):
            LOGGER.warning(
                "Composed context (~%d tokens) exceeds the %s window",
                context.estimated_tokens,
                model,
            )
        LOGGER.debug("System prompt preview: %.500s", context.rendered_system_prompt)

        start = perf_counter()
        try:
            completion = await self.client.complete(
                model=model,
                messages=build_request_messages(context),
                max_tokens=self.max_tokens,
                temperature=temperature,
            )
        except ContextLengthExceededError as e:
            history_size = len(branch.snapshot())
            LOGGER.warning("Context length exceeded for %s: %s", session_id, e)
            message = (
                "The model's context limit was exceeded. "
                f"Current history: {history_size} messages. "
                "Reset the session or truncate the history."
            )
            return ChatError(e, message)
        except CompletionError as e:
            LOGGER.warning("Completion failed for %s: %s", session_id, e)
            return ChatError(e, str(e))

        usage = completion.usage or CompletionUsage()
        metrics = MessageMetrics(
            prompt_tokens=usage.prompt_tokens,
            completion_tokens=usage.completion_tokens,
            total_tokens=usage.total_tokens,
            response_time_ms=int(elapsed_ms(start)),
            cost=calculate_cost(model, usage.prompt_tokens, usage.completion_tokens),
        )
        reply = Message.assistant(completion.content, metrics)

        with branch.lock:
            branch.append(Message.user(user_message), reply)
            if config.strategy == ContextStrategy.SLIDING_WINDOW:
                dropped = branch.trim_to(max(config.keep_last_n, 2))
                if dropped:
                    LOGGER.info("Sliding window dropped %d messages", len(dropped))

        accumulator = self._accumulator(session_id)
        accumulator.update(usage.prompt_tokens, usage.completion_tokens, usage.total_tokens)
        LOGGER.info(
            "Turn end: session=%s prompt=%d completion=%d total=%d usage=%.1f%% in %d ms",
            session_id,
            usage.prompt_tokens,
            usage.completion_tokens,
            usage.total_tokens,
            context_usage_percent(accumulator.snapshot().total_tokens, model),
            metrics.response_time_ms,
        )
        self._schedule_save(session_id, branch_id)
        return ChatSuccess(reply, metrics)

    async def _update_facts(self, branch: BranchState, user_message: str, config: ContextConfig) -> None:
        existing = branch.facts_snapshot()
        try:
            updated = await self.facts_extractor.extract(user_message, existing)
        except Exception:
            LOGGER.warning("Facts extractor raised; using heuristics", exc_info=True)
            updated = self.heuristic.update_facts(user_message, existing)
        updated = trim_facts(updated, config.max_facts)
        if branch.replace_facts(updated):
            LOGGER.info("Facts updated: %d entries", sum(len(g) for g in updated.values()))

    # --- Read accessors ---

    def get_history(self, session_id: str) -> list[Message]:
        """Messages of the active branch."""
        return self._active(session_id)[1].snapshot()

    def get_session_messages(self, session_id: str) -> list[Message]:
        """Messages of the active branch added since it was loaded."""
        return self._active(session_id)[1].new_messages()

    def get_summary_blocks(self, session_id: str, branch_id: str | None = None) -> list[SummaryBlock]:
        """Summary blocks of a branch (the active one by default)."""
        branch_id = branch_id or self._active(session_id)[0]
        return self.summary_store.get((session_id, branch_id))

    def get_facts(self, session_id: str, branch_id: str | None = None) -> FactGroups:
        """Fact store of a branch (the active one by default)."""
        branch = self._branch(session_id, branch_id)
        return branch.facts_snapshot() if branch is not None else {}

    def get_composed_context(self, session_id: str, system_prompt: str, user_message: str) -> ComposedContext:
        """Compose what the next turn would send, without sending it."""
        branch_id, branch = self._active(session_id)
        return self.composer.compose(
            (session_id, branch_id),
            system_prompt=system_prompt,
            user_message=user_message,
            history=branch.snapshot(),
            facts=branch.facts_snapshot(),
            config=self._config,
        )

    def get_token_statistics(self, session_id: str, model: str) -> SessionTokenStatistics:
        """Accumulated usage for ``session_id`` against ``model``'s limits."""
        with self._lock:
            accumulator = self._tokens.get(session_id)
        if accumulator is None:
            return EMPTY_TOKEN_STATISTICS
        snap = accumulator.snapshot()
        return SessionTokenStatistics(
            session_id=session_id,
            total_prompt_tokens=snap.total_prompt_tokens,
            total_completion_tokens=snap.total_completion_tokens,
            total_tokens=snap.total_tokens,
            message_count=snap.message_count,
            estimated_cost=calculate_cost(model, snap.total_prompt_tokens, snap.total_completion_tokens),
            last_request_tokens=snap.last_prompt_tokens,
            last_response_tokens=snap.last_completion_tokens,
            context_limit=context_limit(model),
            context_usage_percent=context_usage_percent(snap.total_tokens, model),
        )

    def is_approaching_context_limit(self, session_id: str, model: str) -> bool:
        """Whether accumulated usage crossed ``compression_threshold`` of the window."""
        with self._lock:
            accumulator = self._tokens.get(session_id)
        total = accumulator.snapshot().total_tokens if accumulator else 0
        approaching = is_approaching_limit(total, model, self._config.compression_threshold)
        if approaching:
            usage = context_usage_percent(total, model)
            if usage > CRITICAL_USAGE_PERCENT:
                LOGGER.critical("Context usage critical for %s: %.1f%%", session_id, usage)
            else:
                LOGGER.warning(
                    "Context usage high for %s: %.1f%% (%d tokens left)",
                    session_id,
                    usage,
                    remaining_tokens(total, model),
                )
        return approaching

    # --- History mutation ---

    def truncate_history(self, session_id: str, keep_last: int) -> list[Message]:
        """Keep only the last ``keep_last`` messages of the active branch."""
        branch_id, branch = self._active(session_id)
        with branch.lock:
            original = len(branch.messages)
            removed = branch.trim_to(keep_last)
        if removed:
            self._reduce_tokens(session_id, original - len(removed), original)
            self.summary_store.evict_over((session_id, branch_id), self._config.max_summary_blocks)
            LOGGER.info("Truncated %s/%s: removed %d, kept %d", session_id, branch_id, len(removed), keep_last)
            self._schedule_save(session_id, branch_id)
        return removed

    def remove_oldest_messages(self, session_id: str, count: int) -> list[Message]:
        """Remove up to ``count`` messages from the head of the active branch."""
        branch_id, branch = self._active(session_id)
        with branch.lock:
            original = len(branch.messages)
            removed = branch.remove_oldest(count)
        if removed:
            self._reduce_tokens(session_id, original - len(removed), original)
            LOGGER.info("Removed %d oldest messages from %s", len(removed), session_id)
            self._schedule_save(session_id, branch_id)
        return removed

    def _reduce_tokens(self, session_id: str, kept: int, original: int) -> None:
        with self._lock:
            accumulator = self._tokens.get(session_id)
        if accumulator is not None and original > 0:
            accumulator.reduce_proportionally(kept / original)

    async def reset(self, session_id: str) -> None:
        """Forget every branch, summary, fact and statistic of ``session_id``."""
        self.branches.drop(session_id)
        self.branches.bootstrap(session_id, [])
        self.summary_store.clear_session(session_id)
        self.compression.release_session(session_id)
        with self._lock:
            self._tokens.pop(session_id, None)
        if self.storage is not None:
            version = self._next_save_version(session_id)
            await asyncio.to_thread(self._delete_now, session_id, version)
        LOGGER.info("Reset session %s", session_id)

    # --- Branches ---

    def list_branches(self, session_id: str) -> list[str]:
        """Branch ids of ``session_id`` in creation order."""
        self._active(session_id)
        return self.branches.list_branches(session_id)

    def active_branch_id(self, session_id: str) -> str:
        """Id of the branch new turns go to."""
        return self._active(session_id)[0]

    def set_active(self, session_id: str, branch_id: str) -> bool:
        """Switch branches; unknown ids are ignored."""
        self._active(session_id)
        return self.branches.set_active(session_id, branch_id)

    def fork(self, session_id: str, checkpoint_size: int) -> str:
        """Fork the active branch at ``checkpoint_size`` messages; returns the new id."""
        self._active(session_id)
        return self.branches.fork(session_id, checkpoint_size, self._config.max_facts)

    # --- Persistence ---

    def _next_save_version(self, session_id: str) -> int:
        with self._version_lock:
            version = self._save_versions.get(session_id, 0) + 1
            self._save_versions[session_id] = version
            return version

    def _schedule_save(self, session_id: str, branch_id: str) -> None:
        # Only ``main`` is stored; forks live in memory for the process lifetime.
        if self.storage is None or branch_id != MAIN_BRANCH:
            return
        main = self.branches.get(session_id, MAIN_BRANCH)
        if main is None:
            return
        messages = main.snapshot()
        version = self._next_save_version(session_id)
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            self._save_now(session_id, messages, version)
            return
        task = loop.create_task(asyncio.to_thread(self._save_now, session_id, messages, version))
        self._pending_saves.add(task)
        task.add_done_callback(self._pending_saves.discard)

    def _save_now(self, session_id: str, messages: Sequence[Message], version: int) -> None:
        assert self.storage is not None  # noqa: S101
        with self._write_lock:
            if version <= self._written_versions.get(session_id, 0):
                LOGGER.debug("Skipping stale save of %s (version %d)", session_id, version)
                return
            try:
                self.storage.save(session_id, messages)
            except (PersistenceError, OSError):
                LOGGER.warning("Failed to save history for %s", session_id, exc_info=True)
                return
            self._written_versions[session_id] = version

    def _delete_now(self, session_id: str, version: int) -> None:
        assert self.storage is not None  # noqa: S101
        with self._write_lock:
            try:
                self.storage.delete(session_id)
            except OSError:
                LOGGER.warning("Failed to delete history for %s", session_id, exc_info=True)
            self._written_versions[session_id] = version

    async def wait_for_pending_saves(self) -> None:
        """Block until every scheduled save has finished."""
        while self._pending_saves:
            await asyncio.gather(*list(self._pending_saves))
