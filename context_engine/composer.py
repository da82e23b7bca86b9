"""Assemble the per-turn context from history, facts and summaries."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from context_engine.model_info import context_limit
from context_engine.models import ComposedContext

if TYPE_CHECKING:
    from collections.abc import Sequence

    from context_engine.config import ContextConfig
    from context_engine.models import BranchKey, FactGroups, Message
    from context_engine.summary_store import SummaryStore

LOGGER = logging.getLogger(__name__)


def recent_window(messages: Sequence[Message], keep_last_n: int) -> tuple[Message, ...]:
    """Return the last ``keep_last_n`` messages, or all of them when shorter.

    A non-positive ``keep_last_n`` disables windowing.
    """
    if keep_last_n > 0 and len(messages) > keep_last_n:
        return tuple(messages[-keep_last_n:])
    return tuple(messages)


class ContextComposer:
    """Builds a :class:`ComposedContext` without touching stored history."""

    def __init__(self, summary_store: SummaryStore) -> None:
        self.summary_store = summary_store

    def compose(
        self,
        key: BranchKey,
        *,
        system_prompt: str,
        user_message: str,
        history: Sequence[Message],
        facts: FactGroups,
        config: ContextConfig,
    ) -> ComposedContext:
        """Compose the context for one turn on the branch identified by ``key``."""
        blocks = self.summary_store.get(key)
        recent = recent_window(history, config.keep_last_n)
        context = ComposedContext(
            system_prompt=system_prompt,
            summary_blocks=tuple(blocks),
            facts=facts if config.facts_enabled else {},
            recent_messages=recent,
            user_message=user_message,
            include_agent_primer=config.include_agent_primer,
        )
        LOGGER.info(
            "Composed context for %s/%s: %d summaries, %d facts groups, %d/%d recent messages, ~%d tokens",
            key[0],
            key[1],
            len(blocks),
            len(context.facts),
            len(recent),
            len(history),
            context.estimated_tokens,
        )
        for index, block in enumerate(blocks):
            LOGGER.debug(
                "  Block[%d]: %d msgs -> %d tokens",
                index,
                block.original_message_count,
                block.estimated_tokens,
            )
        return context

    @staticmethod
    def fits_in_limit(context: ComposedContext, model: str) -> bool:
        """Advisory check that the context is under the model's window."""
        return context.estimated_tokens < context_limit(model)
