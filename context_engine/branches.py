"""Per-session branch map, active-branch pointer, fork and switch."""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from context_engine.facts import HeuristicFactsExtractor, trim_facts
from context_engine.models import MAIN_BRANCH, BranchState, MessageRole

if TYPE_CHECKING:
    from collections.abc import Iterable, Sequence

    from context_engine.models import FactGroups, Message

LOGGER = logging.getLogger(__name__)

BRANCH_PREFIX = "branch-"


@dataclass
class Session:
    """Branches of one conversation and which one is active."""

    active_branch_id: str = MAIN_BRANCH
    branches: dict[str, BranchState] = field(default_factory=lambda: {MAIN_BRANCH: BranchState()})


def replay_facts(
    messages: Iterable[Message],
    extractor: HeuristicFactsExtractor,
    max_facts: int | None = None,
) -> FactGroups:
    """Rebuild a fact store from scratch using the user turns of ``messages``."""
    facts: FactGroups = {}
    for message in messages:
        if message.role != MessageRole.USER:
            continue
        facts = extractor.update_facts(message.content, facts)
        if max_facts is not None:
            facts = trim_facts(facts, max_facts)
    return facts


class BranchTree:
    """Owns every session's branches.

    ``main`` is created lazily on first access to a session. Forks copy a
    prefix of the active branch and never share a list or a mapping with it.
    """

    def __init__(self, extractor: HeuristicFactsExtractor | None = None) -> None:
        self.extractor = extractor or HeuristicFactsExtractor()
        self._sessions: dict[str, Session] = {}
        self._lock = threading.Lock()

    def _session(self, session_id: str) -> Session:
        with self._lock:
            session = self._sessions.get(session_id)
            if session is None:
                session = self._sessions[session_id] = Session()
            return session

    def has_session(self, session_id: str) -> bool:
        """Whether ``session_id`` has been touched in this process."""
        with self._lock:
            return session_id in self._sessions

    def bootstrap(
        self,
        session_id: str,
        messages: Sequence[Message],
        max_facts: int | None = None,
    ) -> BranchState:
        """Create ``main`` for a new session from a persisted snapshot."""
        main = BranchState(
            messages=list(messages),
            facts=replay_facts(messages, self.extractor, max_facts),
            persisted_count=len(messages),
        )
        with self._lock:
            self._sessions[session_id] = Session(branches={MAIN_BRANCH: main})
        LOGGER.info("Bootstrapped session %s with %d persisted messages", session_id, len(messages))
        return main

    def drop(self, session_id: str) -> None:
        """Forget every branch of ``session_id``."""
        with self._lock:
            self._sessions.pop(session_id, None)

    def active_branch_id(self, session_id: str) -> str:
        """Id of the branch new turns go to."""
        return self._session(session_id).active_branch_id

    def active_branch(self, session_id: str) -> tuple[str, BranchState]:
        """Return ``(branch_id, state)`` for the active branch."""
        session = self._session(session_id)
        with self._lock:
            branch_id = session.active_branch_id
            return branch_id, session.branches[branch_id]

    def get(self, session_id: str, branch_id: str) -> BranchState | None:
        """Return a branch, or None if it does not exist."""
        session = self._session(session_id)
        with self._lock:
            return session.branches.get(branch_id)

    def list_branches(self, session_id: str) -> list[str]:
        """Branch ids in creation order."""
        session = self._session(session_id)
        with self._lock:
            return list(session.branches)

    def set_active(self, session_id: str, branch_id: str) -> bool:
        """Switch the active branch. Unknown ids are ignored; returns True on switch."""
        session = self._session(session_id)
        with self._lock:
            if branch_id not in session.branches:
                LOGGER.info("Ignoring switch to unknown branch %s in %s", branch_id, session_id)
                return False
            session.active_branch_id = branch_id
        LOGGER.info("Session %s switched to branch %s", session_id, branch_id)
        return True

    def fork(self, session_id: str, checkpoint_size: int, max_facts: int | None = None) -> str:
        """Copy the first ``checkpoint_size`` messages of the active branch into a new branch.

        Facts are recomputed with the heuristic extractor from the copied user
        turns; summary blocks are not carried over. Returns the new branch id.
        """
        parent_id, parent = self.active_branch(session_id)
        with parent.lock:
            size = max(0, min(checkpoint_size, len(parent.messages)))
            copied = list(parent.messages[:size])
            persisted = min(size, parent.persisted_count)

        child = BranchState(
            messages=copied,
            facts=replay_facts(copied, self.extractor, max_facts),
            persisted_count=persisted,
        )
        session = self._session(session_id)
        with self._lock:
            branch_id = _next_branch_id(session.branches)
            session.branches[branch_id] = child
        LOGGER.info(
            "Forked %s from %s/%s at %d messages",
            branch_id,
            session_id,
            parent_id,
            size,
        )
        return branch_id


def _next_branch_id(existing: Iterable[str]) -> str:
    taken = set(existing)
    n = 1
    while f"{BRANCH_PREFIX}{n}" in taken:
        n += 1
    return f"{BRANCH_PREFIX}{n}"
