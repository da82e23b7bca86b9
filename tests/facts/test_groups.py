"""Tests for fact store merge and cap helpers."""

from __future__ import annotations

from context_engine.facts import ExtractedFact, category_for_key, merge_facts, merge_flat_updates, trim_facts
from context_engine.models import count_facts


class TestMergeFacts:
    """Tests for upserting extracted facts."""

    def test_upsert_keeps_position(self) -> None:
        """Updating a key changes its value but not its order."""
        existing = {"identity": {"user_name": "Alex", "company": "Acme"}}
        merged = merge_facts([ExtractedFact(category="identity", key="user_name", value="Alice")], existing)
        assert list(merged["identity"].items()) == [("user_name", "Alice"), ("company", "Acme")]

    def test_blank_entries_are_skipped(self) -> None:
        """Blank keys or values never enter the store."""
        facts = [
            ExtractedFact(category="x", key=" ", value="v"),
            ExtractedFact(category="x", key="k", value="  "),
        ]
        assert merge_facts(facts, {}) == {}

    def test_blank_category_becomes_other(self) -> None:
        """Facts without a category are filed under ``other``."""
        merged = merge_facts([ExtractedFact(category=" ", key="pet", value="cat")], {})
        assert merged == {"other": {"pet": "cat"}}

    def test_values_are_trimmed(self) -> None:
        """Whitespace around keys and values is removed."""
        merged = merge_facts([ExtractedFact(category="prefs", key=" tz ", value=" UTC ")], {})
        assert merged == {"prefs": {"tz": "UTC"}}

    def test_existing_is_not_mutated(self) -> None:
        """Merging returns a new store."""
        existing = {"a": {"k": "v"}}
        merge_facts([ExtractedFact(category="a", key="k2", value="v2")], existing)
        assert existing == {"a": {"k": "v"}}


class TestMergeFlatUpdates:
    """Tests for categorising heuristic updates."""

    def test_categories_come_from_table(self) -> None:
        """Known keys use the static table, unknown keys go to ``other``."""
        merged = merge_flat_updates({"sla": "99%", "mystery": "x"}, {})
        assert merged == {"business": {"sla": "99%"}, "other": {"mystery": "x"}}

    def test_category_for_key(self) -> None:
        """Lookup falls back to ``other``."""
        assert category_for_key("budget") == "constraints"
        assert category_for_key("nope") == "other"


class TestTrimFacts:
    """Tests for the fact cap."""

    def test_under_cap_is_unchanged(self) -> None:
        """Nothing is removed below the cap."""
        facts = {"a": {"x": "1"}, "b": {"y": "2"}}
        assert trim_facts(facts, 5) == facts

    def test_oldest_removed_first(self) -> None:
        """The first key of the first category goes first."""
        facts = {"a": {"x": "1", "z": "3"}, "b": {"y": "2"}}
        assert trim_facts(facts, 2) == {"a": {"z": "3"}, "b": {"y": "2"}}

    def test_cap_of_one_keeps_latest_insert(self) -> None:
        """With a cap of one, a second distinct fact replaces the first and its category."""
        facts = trim_facts(merge_flat_updates({"user_name": "Alex"}, {}), 1)
        facts = trim_facts(merge_flat_updates({"sla": "99%"}, facts), 1)
        assert facts == {"business": {"sla": "99%"}}
        assert count_facts(facts) == 1

    def test_input_is_not_mutated(self) -> None:
        """Trimming returns a copy."""
        facts = {"a": {"x": "1"}, "b": {"y": "2"}}
        trim_facts(facts, 1)
        assert facts == {"a": {"x": "1"}, "b": {"y": "2"}}
