"""Per-branch storage of summary blocks."""

from __future__ import annotations

import logging
import threading
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from context_engine.models import BranchKey, SummaryBlock

LOGGER = logging.getLogger(__name__)


class SummaryStore:
    """Append/evict storage for summary blocks, one list per (session, branch).

    Keys never share state: evicting from one branch leaves every other
    branch's blocks untouched.
    """

    def __init__(self) -> None:
        self._blocks: dict[BranchKey, list[SummaryBlock]] = {}
        self._lock = threading.Lock()

    def get(self, key: BranchKey) -> list[SummaryBlock]:
        """Return a copy of the blocks for ``key`` in insertion order."""
        with self._lock:
            return list(self._blocks.get(key, ()))

    def add(self, key: BranchKey, block: SummaryBlock) -> None:
        """Append ``block`` to the end of the list for ``key``."""
        with self._lock:
            self._blocks.setdefault(key, []).append(block)

    def count(self, key: BranchKey) -> int:
        """Number of blocks stored for ``key``."""
        with self._lock:
            return len(self._blocks.get(key, ()))

    def remove_oldest(self, key: BranchKey) -> SummaryBlock | None:
        """Evict and return the oldest block for ``key``, if any."""
        with self._lock:
            blocks = self._blocks.get(key)
            if not blocks:
                return None
            return blocks.pop(0)

    def evict_over(self, key: BranchKey, max_blocks: int) -> list[SummaryBlock]:
        """Evict oldest blocks until at most ``max_blocks`` remain."""
        evicted: list[SummaryBlock] = []
        with self._lock:
            blocks = self._blocks.get(key, [])
            while len(blocks) > max_blocks:
                evicted.append(blocks.pop(0))
        if evicted:
            LOGGER.info(
                "Evicted %d summary block(s) for %s/%s",
                len(evicted),
                key[0],
                key[1],
            )
        return evicted

    def clear(self, key: BranchKey) -> None:
        """Drop every block for ``key``."""
        with self._lock:
            self._blocks.pop(key, None)

    def clear_session(self, session_id: str) -> None:
        """Drop every block for every branch of ``session_id``."""
        with self._lock:
            for key in [k for k in self._blocks if k[0] == session_id]:
                del self._blocks[key]
