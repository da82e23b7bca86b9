"""Tests for context_engine.summarizer."""
