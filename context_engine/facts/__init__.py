"""Categorized long-term facts extracted from user turns.

Two extractors share the same async ``extract(user_message, existing)``
signature: :class:`HeuristicFactsExtractor` (always available, no network) and
:class:`LlmFactsExtractor` (asks a chat model, falls back to the heuristic on
any failure).
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Protocol

from context_engine.facts.groups import category_for_key, merge_facts, merge_flat_updates, trim_facts
from context_engine.facts.heuristic import HeuristicFactsExtractor, extract_updates
from context_engine.facts.llm import LlmFactsExtractor
from context_engine.facts.models import ExtractedFact, FactsExtraction, MergeAction

if TYPE_CHECKING:
    from context_engine.models import FactGroups


class FactsExtractor(Protocol):
    """Anything that can fold one utterance into a fact store."""

    async def extract(self, user_message: str, existing: FactGroups) -> FactGroups:
        """Return the updated store; must not raise."""
        ...


__all__ = [
    "ExtractedFact",
    "FactsExtraction",
    "FactsExtractor",
    "HeuristicFactsExtractor",
    "LlmFactsExtractor",
    "MergeAction",
    "category_for_key",
    "extract_updates",
    "merge_facts",
    "merge_flat_updates",
    "trim_facts",
]
