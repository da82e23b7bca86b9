"""Condense runs of chat messages into summary blocks.

Example:
    from context_engine.summarizer import SummaryGenerator

    generator = SummaryGenerator(client, model="gpt-4o-mini")
    block = await generator.generate_summary(messages, max_tokens=200)

"""

from context_engine.summarizer.generator import (
    SummarizationError,
    SummaryGenerator,
    build_summary_prompt,
    format_transcript,
)

__all__ = [
    "SummarizationError",
    "SummaryGenerator",
    "build_summary_prompt",
    "format_transcript",
]
