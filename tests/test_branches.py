"""Tests for the branch tree."""

from __future__ import annotations

from context_engine.branches import BranchTree, replay_facts
from context_engine.facts import HeuristicFactsExtractor
from context_engine.models import MAIN_BRANCH, Message
from tests.mocks.completion import make_pairs


def _tree_with(messages: list[Message], session_id: str = "s1") -> BranchTree:
    tree = BranchTree()
    tree.bootstrap(session_id, messages)
    return tree


class TestReplayFacts:
    """Tests for recomputing facts from history."""

    def test_only_user_turns_count(self) -> None:
        """Assistant messages are ignored."""
        messages = [Message.user("my name is Ann"), Message.assistant("call me Bot")]
        assert replay_facts(messages, HeuristicFactsExtractor()) == {"identity": {"user_name": "Ann"}}

    def test_cap_applies_at_each_step(self) -> None:
        """The fact cap is enforced while replaying."""
        messages = [Message.user("my name is Ann"), Message.user("SLA 99%")]
        facts = replay_facts(messages, HeuristicFactsExtractor(), max_facts=1)
        assert facts == {"business": {"sla": "99%"}}


class TestBranchTree:
    """Tests for fork and switch."""

    def test_main_exists_by_default(self) -> None:
        """A fresh session has one active main branch."""
        tree = BranchTree()
        assert tree.list_branches("new") == [MAIN_BRANCH]
        assert tree.active_branch_id("new") == MAIN_BRANCH

    def test_bootstrap_marks_persisted(self) -> None:
        """Bootstrapped messages count as persisted and seed facts."""
        tree = _tree_with([Message.user("call me Zoe"), Message.assistant("hi Zoe")])
        _, main = tree.active_branch("s1")
        assert main.persisted_count == 2
        assert main.new_messages() == []
        assert main.facts == {"identity": {"user_name": "Zoe"}}

    def test_fork_copies_prefix(self) -> None:
        """The child gets an independent copy of the checkpoint prefix."""
        messages = make_pairs(3)
        tree = _tree_with(messages)

        branch_id = tree.fork("s1", 4)

        child = tree.get("s1", branch_id)
        assert branch_id == "branch-1"
        assert child.messages == messages[:4]
        assert child.messages is not tree.get("s1", MAIN_BRANCH).messages
        assert tree.active_branch_id("s1") == MAIN_BRANCH

    def test_fork_does_not_share_state(self) -> None:
        """Appending to either side leaves the other unchanged."""
        tree = _tree_with(make_pairs(2))
        branch_id = tree.fork("s1", 4)
        main = tree.get("s1", MAIN_BRANCH)
        child = tree.get("s1", branch_id)

        child.append(Message.user("only on child"))
        main.replace_facts({"x": {"k": "v"}})

        assert len(main.messages) == 4
        assert child.facts == {}

    def test_fork_clamps_checkpoint(self) -> None:
        """Checkpoints outside the history are clamped."""
        tree = _tree_with(make_pairs(2))
        assert len(tree.get("s1", tree.fork("s1", 99)).messages) == 4
        assert tree.get("s1", tree.fork("s1", -3)).messages == []

    def test_fork_recomputes_facts_from_prefix(self) -> None:
        """Facts after the checkpoint are not inherited."""
        messages = [
            Message.user("my name is Ann"),
            Message.assistant("hi"),
            Message.user("SLA 99.9% please"),
            Message.assistant("ok"),
        ]
        tree = _tree_with(messages)
        child = tree.get("s1", tree.fork("s1", 2))
        assert child.facts == {"identity": {"user_name": "Ann"}}

    def test_fork_persisted_count(self) -> None:
        """The child's persisted prefix never exceeds the parent's."""
        tree = _tree_with(make_pairs(1))
        _, main = tree.active_branch("s1")
        main.append(*make_pairs(1, start=1))
        child = tree.get("s1", tree.fork("s1", 4))
        assert child.persisted_count == 2

    def test_branch_ids_are_unique(self) -> None:
        """Each fork takes the lowest unused id."""
        tree = _tree_with(make_pairs(1))
        assert [tree.fork("s1", 1) for _ in range(3)] == ["branch-1", "branch-2", "branch-3"]
        assert tree.list_branches("s1") == [MAIN_BRANCH, "branch-1", "branch-2", "branch-3"]

    def test_set_active(self) -> None:
        """Switching to a known branch works; unknown ids are ignored."""
        tree = _tree_with(make_pairs(1))
        branch_id = tree.fork("s1", 1)
        assert tree.set_active("s1", branch_id)
        assert tree.active_branch_id("s1") == branch_id
        assert not tree.set_active("s1", "nope")
        assert tree.active_branch_id("s1") == branch_id

    def test_sessions_are_isolated(self) -> None:
        """Forking one session does not touch another."""
        tree = _tree_with(make_pairs(1))
        tree.bootstrap("s2", [])
        tree.fork("s1", 1)
        assert tree.list_branches("s2") == [MAIN_BRANCH]

    def test_drop(self) -> None:
        """Dropping forgets the session."""
        tree = _tree_with(make_pairs(1))
        tree.drop("s1")
        assert not tree.has_session("s1")
