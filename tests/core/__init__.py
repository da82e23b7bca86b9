"""Tests for context_engine.core."""
