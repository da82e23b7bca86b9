"""LLM-assisted fact extraction with a heuristic fallback."""

from __future__ import annotations

import asyncio
import json
import logging
from time import perf_counter
from typing import TYPE_CHECKING

import httpx

from context_engine._utils import elapsed_ms
from context_engine.facts._prompt import FACTS_SYSTEM_PROMPT, FACTS_USER_TEMPLATE
from context_engine.facts.groups import merge_facts
from context_engine.facts.heuristic import HeuristicFactsExtractor
from context_engine.facts.models import FactsExtraction

if TYPE_CHECKING:
    from context_engine.models import FactGroups

LOGGER = logging.getLogger(__name__)

MIN_CONFIDENCE = 0.6
MAX_FACTS_PER_CALL = 10
MAX_MERGE_ACTIONS = 50
DEFAULT_TIMEOUT_SECONDS = 5.0


def filter_extraction(extraction: FactsExtraction) -> FactsExtraction:
    """Keep confident, non-blank facts, capped per call."""
    facts = [
        fact
        for fact in extraction.facts
        if fact.confidence >= MIN_CONFIDENCE
        and fact.key.strip()
        and fact.value.strip()
        and fact.category.strip()
    ][:MAX_FACTS_PER_CALL]
    return extraction.model_copy(
        update={"facts": facts, "merge_actions": extraction.merge_actions[:MAX_MERGE_ACTIONS]},
    )


class LlmFactsExtractor:
    """Ask a chat model for categorized facts, falling back to heuristics.

    The model call carries its own timeout and runs as an independent task, so
    a slow or failing extraction never cancels the caller's other work. Any
    failure degrades to :class:`HeuristicFactsExtractor` and is only logged.
    """

    def __init__(
        self,
        *,
        openai_base_url: str | None,
        model: str = "gpt-4o-mini",
        api_key: str | None = None,
        timeout: float = DEFAULT_TIMEOUT_SECONDS,
        fallback: HeuristicFactsExtractor | None = None,
    ) -> None:
        self.openai_base_url = openai_base_url
        self.model = model
        self.api_key = api_key
        self.timeout = timeout
        self.fallback = fallback or HeuristicFactsExtractor()

    async def request_facts(self, user_message: str, existing: FactGroups) -> FactsExtraction:
        """Run the extraction agent once and return the filtered output."""
        if not (self.api_key or "").strip():
            msg = "Missing API key for facts extraction"
            raise ValueError(msg)

        from pydantic_ai import Agent, PromptedOutput  # noqa: PLC0415
        from pydantic_ai.models.openai import OpenAIChatModel  # noqa: PLC0415
        from pydantic_ai.providers.openai import OpenAIProvider  # noqa: PLC0415
        from pydantic_ai.settings import ModelSettings  # noqa: PLC0415

        provider = OpenAIProvider(api_key=self.api_key, base_url=self.openai_base_url)
        model_cfg = OpenAIChatModel(
            model_name=self.model,
            provider=provider,
            settings=ModelSettings(temperature=0.1, max_tokens=600),
        )
        agent = Agent(
            model=model_cfg,
            system_prompt=FACTS_SYSTEM_PROMPT,
            output_type=PromptedOutput(FactsExtraction),
            retries=1,
        )
        payload = FACTS_USER_TEMPLATE.format(
            user_message=user_message.strip(),
            existing_groups=json.dumps(existing, ensure_ascii=False),
        )
        start = perf_counter()
        result = await asyncio.wait_for(agent.run(payload), timeout=self.timeout)
        extraction = filter_extraction(result.output)
        LOGGER.info(
            "LLM facts extracted: facts=%d, actions=%d in %.1f ms",
            len(extraction.facts),
            len(extraction.merge_actions),
            elapsed_ms(start),
        )
        return extraction

    async def extract(self, user_message: str, existing: FactGroups) -> FactGroups:
        """Return ``existing`` updated with facts from ``user_message``. Never raises."""
        from pydantic_ai.exceptions import AgentRunError, UnexpectedModelBehavior  # noqa: PLC0415

        try:
            extraction = await self.request_facts(user_message, existing)
        except (httpx.HTTPError, AgentRunError, UnexpectedModelBehavior, TimeoutError, ValueError):
            LOGGER.warning("LLM facts extraction failed; using heuristics", exc_info=True)
            return self.fallback.update_facts(user_message, existing)
        except Exception:
            LOGGER.exception("LLM facts extraction internal error; using heuristics")
            return self.fallback.update_facts(user_message, existing)

        if not extraction.facts:
            return existing
        if extraction.merge_actions:
            LOGGER.info(
                "LLM merge actions: create_group=%d update_fact=%d",
                sum(1 for a in extraction.merge_actions if a.action == "create_group"),
                sum(1 for a in extraction.merge_actions if a.action == "update_fact"),
            )
        return merge_facts(extraction.facts, existing)
