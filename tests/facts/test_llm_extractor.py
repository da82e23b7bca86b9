"""Tests for the LLM-assisted facts extractor."""

from __future__ import annotations

import asyncio
from unittest.mock import AsyncMock, MagicMock, patch

import httpx
import pytest
from pydantic_ai.exceptions import UnexpectedModelBehavior

from context_engine.facts import ExtractedFact, FactsExtraction, LlmFactsExtractor, MergeAction
from context_engine.facts.llm import MAX_FACTS_PER_CALL, filter_extraction


def _extractor(**kwargs) -> LlmFactsExtractor:
    return LlmFactsExtractor(
        openai_base_url="http://localhost:8000/v1",
        model="gpt-4o-mini",
        api_key=kwargs.pop("api_key", "sk-test"),
        **kwargs,
    )


def _agent_returning(output: FactsExtraction) -> MagicMock:
    agent = MagicMock()
    agent.run = AsyncMock(return_value=MagicMock(output=output))
    return agent


class TestFilterExtraction:
    """Tests for post-filtering the model output."""

    def test_drops_low_confidence_and_blank(self) -> None:
        """Facts under the confidence floor or with blank fields are dropped."""
        extraction = FactsExtraction(
            facts=[
                ExtractedFact(category="identity", key="user_name", value="Ann", confidence=0.9),
                ExtractedFact(category="identity", key="company", value="Acme", confidence=0.3),
                ExtractedFact(category="", key="pet", value="cat", confidence=1.0),
            ],
        )
        filtered = filter_extraction(extraction)
        assert [fact.key for fact in filtered.facts] == ["user_name"]

    def test_caps_fact_count(self) -> None:
        """No more than the per-call maximum is kept."""
        extraction = FactsExtraction(
            facts=[ExtractedFact(category="c", key=f"k{i}", value="v") for i in range(MAX_FACTS_PER_CALL + 5)],
        )
        assert len(filter_extraction(extraction).facts) == MAX_FACTS_PER_CALL


class TestLlmFactsExtractor:
    """Tests for extraction with fallbacks."""

    @pytest.mark.asyncio
    @patch("pydantic_ai.Agent")
    async def test_merges_model_facts(self, mock_agent_cls: MagicMock) -> None:
        """Model facts are merged into the existing store."""
        mock_agent_cls.return_value = _agent_returning(
            FactsExtraction(
                facts=[ExtractedFact(category="identity", key="user_name", value="Alice", confidence=0.95)],
                merge_actions=[MergeAction(action="update_fact", category="identity", key="user_name")],
            ),
        )
        existing = {"identity": {"user_name": "Alex"}, "constraints": {"budget": "10k"}}

        updated = await _extractor().extract("Actually I'm Alice", existing)

        assert updated == {"identity": {"user_name": "Alice"}, "constraints": {"budget": "10k"}}
        mock_agent_cls.return_value.run.assert_awaited_once()

    @pytest.mark.asyncio
    @patch("pydantic_ai.Agent")
    async def test_no_facts_returns_existing(self, mock_agent_cls: MagicMock) -> None:
        """An empty extraction leaves the store as it was."""
        mock_agent_cls.return_value = _agent_returning(FactsExtraction())
        existing = {"identity": {"user_name": "Alex"}}
        assert await _extractor().extract("hello", existing) is existing

    @pytest.mark.asyncio
    async def test_missing_api_key_falls_back(self) -> None:
        """Without a key the heuristic extractor answers."""
        updated = await _extractor(api_key=None).extract("my name is Bob", {})
        assert updated == {"identity": {"user_name": "Bob"}}

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "error",
        [
            UnexpectedModelBehavior("not json"),
            httpx.ConnectError("refused"),
            RuntimeError("boom"),
        ],
    )
    @patch("pydantic_ai.Agent")
    async def test_model_failure_falls_back(self, mock_agent_cls: MagicMock, error: Exception) -> None:
        """Any failure degrades to heuristics instead of raising."""
        agent = MagicMock()
        agent.run = AsyncMock(side_effect=error)
        mock_agent_cls.return_value = agent

        updated = await _extractor().extract("call me Dana", {})

        assert updated == {"identity": {"user_name": "Dana"}}

    @pytest.mark.asyncio
    @patch("pydantic_ai.Agent")
    async def test_timeout_falls_back(self, mock_agent_cls: MagicMock) -> None:
        """A slow model is abandoned after the extractor's own timeout."""

        async def slow_run(*_args, **_kwargs) -> MagicMock:
            await asyncio.sleep(10)
            return MagicMock(output=FactsExtraction())

        agent = MagicMock()
        agent.run = slow_run
        mock_agent_cls.return_value = agent

        updated = await _extractor(timeout=0.05).extract("call me Eve", {})

        assert updated == {"identity": {"user_name": "Eve"}}
