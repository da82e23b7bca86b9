"""Tests for context-engine."""
