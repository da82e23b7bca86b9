"""Offline comparison of context strategies on a fixed requirements dialogue.

Nothing here talks to a model: each user turn goes through the heuristic
facts extractor and the composer, and the composed context is measured.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING

from context_engine.branches import replay_facts
from context_engine.composer import ContextComposer
from context_engine.config import DEFAULT_CONTEXT_CONFIG, ContextConfig, ContextStrategy
from context_engine.facts import HeuristicFactsExtractor, trim_facts
from context_engine.models import Message, count_facts
from context_engine.summary_store import SummaryStore

if TYPE_CHECKING:
    from collections.abc import Sequence

    from context_engine.models import FactGroups

LOGGER = logging.getLogger(__name__)

SCENARIO_SYSTEM_PROMPT = "SYSTEM"
CHECKPOINT_AFTER = 6

SCENARIO_MESSAGES: tuple[str, ...] = (
    "We need a service for booking meeting rooms.",
    "The team is 200 people across 4 offices, and we need SSO.",
    "Integration with Google Calendar and Outlook is important.",
    "Access by roles: admin, manager, employee.",
    "SLA 99.9% and an audit log of actions.",
    "Budget up to 15k USD per month, ideally 10k.",
    "I want a mobile app and a web version.",
    "We need localization for EN/RU.",
    "The MVP deadline is 6 weeks.",
    "Do not keep personal data longer than 30 days.",
    "We need reports on room usage.",
    "Propose an architecture and a release plan.",
)


@dataclass(frozen=True)
class ScenarioTurn:
    """Measurements of one composed context."""

    run: str
    turn: int
    recent_messages: int
    facts: int
    estimated_tokens: int


class _Timeline:
    """History and facts of one simulated branch."""

    def __init__(
        self,
        name: str,
        config: ContextConfig,
        composer: ContextComposer,
        extractor: HeuristicFactsExtractor,
        history: Sequence[Message] = (),
        facts: FactGroups | None = None,
    ) -> None:
        self.name = name
        self.config = config
        self.composer = composer
        self.extractor = extractor
        self.history = list(history)
        self.facts: FactGroups = facts or {}

    def step(self, turn: int, user_message: str) -> ScenarioTurn:
        self.facts = trim_facts(self.extractor.update_facts(user_message, self.facts), self.config.max_facts)
        context = self.composer.compose(
            (f"dry::{self.name}", "main"),
            system_prompt=SCENARIO_SYSTEM_PROMPT,
            user_message=user_message,
            history=self.history,
            facts=self.facts,
            config=self.config,
        )
        self.history.append(Message.user(user_message))
        row = ScenarioTurn(
            run=self.name,
            turn=turn,
            recent_messages=len(context.recent_messages),
            facts=count_facts(context.facts),
            estimated_tokens=context.estimated_tokens,
        )
        LOGGER.info(
            "[%s] turn=%d recent=%d facts=%d tokens~=%d",
            row.run,
            row.turn,
            row.recent_messages,
            row.facts,
            row.estimated_tokens,
        )
        return row


def run_scenario(
    config: ContextConfig = DEFAULT_CONTEXT_CONFIG,
    messages: Sequence[str] = SCENARIO_MESSAGES,
    checkpoint_after: int = CHECKPOINT_AFTER,
) -> list[ScenarioTurn]:
    """Replay ``messages`` under every strategy and return one row per composed turn.

    The sliding window and sticky facts runs are linear. The branching run
    builds a shared prefix of ``checkpoint_after`` messages, then forks it
    into branches A and B that both receive the remaining messages.
    Auto-compression is always off.
    """
    base = config.with_auto_compression(enabled=False)
    extractor = HeuristicFactsExtractor()
    composer = ContextComposer(SummaryStore())
    rows: list[ScenarioTurn] = []

    for strategy in (ContextStrategy.SLIDING_WINDOW, ContextStrategy.STICKY_FACTS):
        LOGGER.info("Scenario run %s with %d messages", strategy.value, len(messages))
        timeline = _Timeline(strategy.value, base.with_strategy(strategy), composer, extractor)
        rows.extend(timeline.step(turn, text) for turn, text in enumerate(messages, start=1))

    branching = base.with_strategy(ContextStrategy.BRANCHING)
    prefix = [Message.user(text) for text in messages[:checkpoint_after]]
    LOGGER.info("Scenario run branching: checkpoint after %d messages", len(prefix))
    forks = [
        _Timeline(
            f"branching/{label}",
            branching,
            composer,
            extractor,
            history=prefix,
            facts=replay_facts(prefix, extractor, branching.max_facts),
        )
        for label in ("A", "B")
    ]
    for turn, text in enumerate(messages[checkpoint_after:], start=len(prefix) + 1):
        rows.extend(timeline.step(turn, text) for timeline in forks)
    return rows
