"""Opportunistic compression of old branch history into summary blocks."""

from __future__ import annotations

import logging
import threading
from typing import TYPE_CHECKING

from context_engine.models import (
    CompressionFailed,
    CompressionNotNeeded,
    CompressionPartial,
    CompressionSuccess,
)
from context_engine.summarizer import SummarizationError

if TYPE_CHECKING:
    from collections.abc import Sequence

    from context_engine.config import ContextConfig
    from context_engine.models import BranchKey, BranchState, CompressionResult, Message, SummaryBlock
    from context_engine.summarizer import SummaryGenerator
    from context_engine.summary_store import SummaryStore

LOGGER = logging.getLogger(__name__)


class CompressionEngine:
    """Replaces the oldest messages of a branch with a summary block.

    Each branch key is either idle or compressing. Entering the compressing
    state is a non-blocking try-acquire: a caller that loses the race gets
    :class:`CompressionNotNeeded` immediately.
    """

    def __init__(self, summary_generator: SummaryGenerator, summary_store: SummaryStore) -> None:
        self.summary_generator = summary_generator
        self.summary_store = summary_store
        self._in_flight: set[BranchKey] = set()
        self._flag_lock = threading.Lock()

    def _try_acquire(self, key: BranchKey) -> bool:
        with self._flag_lock:
            if key in self._in_flight:
                return False
            self._in_flight.add(key)
            return True

    def _release(self, key: BranchKey) -> None:
        with self._flag_lock:
            self._in_flight.discard(key)

    def is_compressing(self, key: BranchKey) -> bool:
        """Whether a compression for ``key`` is currently running."""
        with self._flag_lock:
            return key in self._in_flight

    def release_session(self, session_id: str) -> None:
        """Forget in-flight flags for every branch of ``session_id``."""
        with self._flag_lock:
            self._in_flight = {key for key in self._in_flight if key[0] != session_id}

    async def try_compress(
        self,
        key: BranchKey,
        branch: BranchState,
        config: ContextConfig,
    ) -> CompressionResult:
        """Compress the oldest block of ``branch`` if the trigger holds."""
        if not self._try_acquire(key):
            LOGGER.info("Compression already in progress for %s/%s", key[0], key[1])
            return CompressionNotNeeded()

        try:
            history = branch.snapshot()
            if not config.should_compress(len(history)):
                LOGGER.debug(
                    "No compression: history=%d keep_last_n=%d block_size=%d",
                    len(history),
                    config.keep_last_n,
                    config.compression_block_size,
                )
                return CompressionNotNeeded()

            to_compress = history[: config.compression_block_size]
            if not to_compress:
                return CompressionNotNeeded()

            LOGGER.info(
                "Compressing %d oldest of %d messages for %s/%s (max_tokens=%d)",
                len(to_compress),
                len(history),
                key[0],
                key[1],
                config.summary_max_tokens,
            )
            try:
                block = await self.summary_generator.generate_summary(
                    to_compress,
                    config.summary_max_tokens,
                )
            except SummarizationError as e:
                LOGGER.warning("Compression failed for %s/%s: %s", key[0], key[1], e)
                return CompressionFailed(e, list(to_compress))
            except Exception as e:
                LOGGER.exception("Unexpected compression error for %s/%s", key[0], key[1])
                return CompressionFailed(e, list(to_compress))

            return self._commit(key, branch, to_compress, block, config)
        finally:
            self._release(key)

    def _commit(
        self,
        key: BranchKey,
        branch: BranchState,
        summarized: Sequence[Message],
        block: SummaryBlock,
        config: ContextConfig,
    ) -> CompressionResult:
        # Removal, insertion and eviction form one step under the branch lock.
        with branch.lock:
            removed = branch.remove_prefix(summarized)
            self.summary_store.add(key, block)
            self.summary_store.evict_over(key, config.max_summary_blocks)

        if len(removed) < len(summarized):
            warning = f"Only removed {len(removed)} messages instead of {len(summarized)}"
            LOGGER.warning("Size mismatch compressing %s/%s: %s", key[0], key[1], warning)
            return CompressionPartial(block, warning)

        LOGGER.info(
            "Compressed %d messages into block %s (%d tokens)",
            len(removed),
            block.id,
            block.estimated_tokens,
        )
        return CompressionSuccess(block)
