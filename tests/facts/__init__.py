"""Tests for context_engine.facts."""
