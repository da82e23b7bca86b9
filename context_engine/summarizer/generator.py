"""Summary generation through the completion capability."""

from __future__ import annotations

import logging
from time import perf_counter
from typing import TYPE_CHECKING

from context_engine._utils import elapsed_ms, estimate_tokens
from context_engine.completion import ChatMessage, CompletionError
from context_engine.models import SummaryBlock, SummaryStatus
from context_engine.summarizer._prompts import CONDENSE_PROMPT, SUMMARY_SYSTEM_PROMPT

if TYPE_CHECKING:
    from collections.abc import Sequence

    from context_engine.completion import CompletionClient
    from context_engine.models import Message

LOGGER = logging.getLogger(__name__)

SUMMARY_TEMPERATURE = 0.3


class SummarizationError(Exception):
    """Raised when a summary could not be produced. Never retried internally."""


def format_transcript(messages: Sequence[Message]) -> str:
    """Render messages one per line, tagged by role."""
    return "\n".join(f"[{message.role.value}]: {message.content}" for message in messages)


def build_summary_prompt(messages: Sequence[Message], max_tokens: int) -> str:
    """Build the condensation instruction for ``messages``."""
    return CONDENSE_PROMPT.format(max_tokens=max_tokens, transcript=format_transcript(messages))


class SummaryGenerator:
    """Turns a run of messages into one completed :class:`SummaryBlock`."""

    def __init__(self, client: CompletionClient, model: str = "gpt-4o-mini") -> None:
        self.client = client
        self.model = model

    async def generate_summary(self, messages: Sequence[Message], max_tokens: int) -> SummaryBlock:
        """Summarize ``messages`` in at most ``max_tokens`` tokens.

        Raises:
            SummarizationError: If the completion call fails or returns nothing.

        """
        if not messages:
            msg = "Nothing to summarize"
            raise SummarizationError(msg)

        start = perf_counter()
        try:
            completion = await self.client.complete(
                model=self.model,
                messages=[
                    ChatMessage(role="system", content=SUMMARY_SYSTEM_PROMPT),
                    ChatMessage(role="user", content=build_summary_prompt(messages, max_tokens)),
                ],
                max_tokens=max_tokens,
                temperature=SUMMARY_TEMPERATURE,
            )
        except CompletionError as e:
            msg = f"Summarization failed: {e}"
            raise SummarizationError(msg) from e

        summary = completion.content.strip()
        if not summary:
            msg = "Summarization failed: empty summary response"
            raise SummarizationError(msg)

        usage = completion.usage
        tokens = usage.completion_tokens if usage and usage.completion_tokens else estimate_tokens(summary)
        block = SummaryBlock(
            original_message_count=len(messages),
            original_messages=tuple(messages),
            summary=summary,
            estimated_tokens=tokens,
            status=SummaryStatus.COMPLETED,
        )
        LOGGER.info(
            "Summary generated: %d messages -> %d tokens in %.1f ms",
            len(messages),
            block.estimated_tokens,
            elapsed_ms(start),
        )
        return block
