"""Data models for fact extraction."""

from __future__ import annotations

from pydantic import BaseModel, Field


class ExtractedFact(BaseModel):
    """A single categorized fact with a confidence score."""

    category: str
    key: str
    value: str
    confidence: float = 1.0


class MergeAction(BaseModel):
    """A change the extractor reports against the existing fact store."""

    action: str
    category: str | None = None
    key: str | None = None
    previous_value: str | None = None
    new_value: str | None = None
    group: str | None = None


class FactsExtraction(BaseModel):
    """Structured output of the LLM-assisted extractor."""

    facts: list[ExtractedFact] = Field(default_factory=list)
    groups: dict[str, dict[str, str]] = Field(default_factory=dict)
    merge_actions: list[MergeAction] = Field(default_factory=list)
