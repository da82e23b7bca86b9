"""Tests for context composition."""

from __future__ import annotations

from context_engine.composer import ContextComposer, recent_window
from context_engine.config import ContextConfig, ContextStrategy
from context_engine.models import Message, SummaryBlock
from context_engine.summary_store import SummaryStore
from tests.mocks.completion import make_pairs

KEY = ("s1", "main")
FACTS = {"identity": {"user_name": "Alice"}}


def _compose(store: SummaryStore, config: ContextConfig, history: list[Message], facts=None):
    return ContextComposer(store).compose(
        KEY,
        system_prompt="SYSTEM",
        user_message="next",
        history=history,
        facts=FACTS if facts is None else facts,
        config=config,
    )


class TestRecentWindow:
    """Tests for the recent-message window."""

    def test_shorter_history_is_kept(self) -> None:
        """All messages are kept when under the window."""
        history = make_pairs(2)
        assert recent_window(history, 10) == tuple(history)

    def test_keeps_tail(self) -> None:
        """Only the last N messages are kept."""
        history = make_pairs(5)
        assert recent_window(history, 3) == tuple(history[-3:])

    def test_non_positive_disables(self) -> None:
        """A window of zero keeps everything."""
        history = make_pairs(3)
        assert recent_window(history, 0) == tuple(history)


class TestContextComposer:
    """Tests for ContextComposer.compose."""

    def test_sliding_window_omits_facts(self) -> None:
        """Facts are never sent under the sliding window."""
        config = ContextConfig(strategy=ContextStrategy.SLIDING_WINDOW, keep_last_n=4)
        context = _compose(SummaryStore(), config, make_pairs(5))
        assert context.facts == {}
        assert len(context.recent_messages) == 4
        assert "[FACTS]" not in context.rendered_system_prompt

    def test_sticky_facts_includes_facts(self) -> None:
        """Sticky facts sends the facts block."""
        config = ContextConfig(strategy=ContextStrategy.STICKY_FACTS)
        context = _compose(SummaryStore(), config, [])
        assert context.facts == FACTS
        assert "user_name: Alice" in context.rendered_system_prompt

    def test_facts_memory_disabled(self) -> None:
        """Disabling facts memory omits facts under any strategy."""
        config = ContextConfig(strategy=ContextStrategy.BRANCHING, enable_facts_memory=False)
        assert _compose(SummaryStore(), config, []).facts == {}

    def test_summaries_in_order(self) -> None:
        """Blocks for the key are included in insertion order, others are not."""
        store = SummaryStore()
        first = SummaryBlock(original_message_count=2, summary="first", estimated_tokens=3)
        second = SummaryBlock(original_message_count=2, summary="second", estimated_tokens=4)
        store.add(KEY, first)
        store.add(KEY, second)
        store.add(("s1", "branch-1"), SummaryBlock(original_message_count=2, summary="other", estimated_tokens=5))

        context = _compose(store, ContextConfig(), [])

        assert context.summary_blocks == (first, second)
        assert "[Block 1]: first\n[Block 2]: second" in context.summary_context_text

    def test_agent_primer(self) -> None:
        """The agent primer is included only when enabled."""
        assert "[AGENT MODE]" not in _compose(SummaryStore(), ContextConfig(), []).rendered_system_prompt
        config = ContextConfig(include_agent_primer=True)
        assert "[AGENT MODE]" in _compose(SummaryStore(), config, []).rendered_system_prompt

    def test_same_inputs_compose_identically(self) -> None:
        """Composing twice from unchanged inputs yields the same prompt and estimate."""
        store = SummaryStore()
        store.add(KEY, SummaryBlock(original_message_count=2, summary="earlier", estimated_tokens=6))
        config = ContextConfig(keep_last_n=4)
        history = make_pairs(4)

        first = _compose(store, config, history)
        second = _compose(store, config, history)

        assert first.estimated_tokens == second.estimated_tokens
        assert first.rendered_system_prompt == second.rendered_system_prompt
        assert first.estimated_tokens > 0

    def test_history_is_not_modified(self) -> None:
        """Composition never touches the caller's history."""
        history = make_pairs(6)
        snapshot = list(history)
        _compose(SummaryStore(), ContextConfig(keep_last_n=2), history)
        assert history == snapshot

    def test_fits_in_limit(self) -> None:
        """Fit check compares the estimate to the model window."""
        context = _compose(SummaryStore(), ContextConfig(), [])
        assert ContextComposer.fits_in_limit(context, "gpt-4o-mini")
        huge = context.model_copy(update={"user_message": "x" * 4 * 20_000})
        assert not ContextComposer.fits_in_limit(huge, "gpt-3.5-turbo")
