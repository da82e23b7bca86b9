"""Context management engine for long-running LLM conversations."""

from context_engine.config import ContextConfig, ContextStrategy
from context_engine.engine import SessionEngine

__all__ = ["ContextConfig", "ContextStrategy", "SessionEngine"]
