"""Tests for the offline strategy comparison."""

from __future__ import annotations

from context_engine.config import ContextConfig
from context_engine.scenario import SCENARIO_MESSAGES, run_scenario


def _rows(run: str, rows):
    return [row for row in rows if row.run == run]


class TestRunScenario:
    """Tests for run_scenario."""

    def test_row_counts(self) -> None:
        """Two linear runs of 12 turns plus two forks of 6 turns each."""
        rows = run_scenario()
        assert len(SCENARIO_MESSAGES) == 12
        assert len(_rows("sliding_window", rows)) == 12
        assert len(_rows("sticky_facts", rows)) == 12
        assert [row.turn for row in _rows("branching/A", rows)] == list(range(7, 13))
        assert [row.turn for row in _rows("branching/B", rows)] == list(range(7, 13))

    def test_sliding_window_sends_no_facts(self) -> None:
        """The sliding window never includes facts and caps the recent window."""
        rows = _rows("sliding_window", run_scenario(ContextConfig(keep_last_n=4)))
        assert all(row.facts == 0 for row in rows)
        assert [row.recent_messages for row in rows] == [0, 1, 2, 3] + [4] * 8

    def test_sticky_facts_accumulate(self) -> None:
        """Sticky facts sends facts from the first turn on."""
        rows = _rows("sticky_facts", run_scenario())
        assert rows[0].facts >= 1
        assert rows[-1].facts > rows[0].facts
        assert rows[-1].facts <= ContextConfig().max_facts

    def test_forks_match(self) -> None:
        """Both forks see the same prefix and messages, so they measure the same."""
        rows = run_scenario()
        a = [(r.turn, r.recent_messages, r.facts, r.estimated_tokens) for r in _rows("branching/A", rows)]
        b = [(r.turn, r.recent_messages, r.facts, r.estimated_tokens) for r in _rows("branching/B", rows)]
        assert a == b
        assert a[0][1] == 6

    def test_facts_are_capped(self) -> None:
        """The fact cap applies in every run."""
        rows = run_scenario(ContextConfig(max_facts=2))
        assert max(row.facts for row in rows) <= 2
