"""Domain types for the context engine.

Messages and summary blocks are immutable pydantic models. Branch state is a
mutable dataclass guarded by its own lock; every other type here is a
read-only value or a tagged result variant matched with ``isinstance``.
"""

from __future__ import annotations

import threading
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from typing import TYPE_CHECKING
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field

from context_engine._utils import estimate_tokens

if TYPE_CHECKING:
    from collections.abc import Sequence

FactGroups = dict[str, dict[str, str]]
"""Facts keyed by category, then by fact key. Insertion order is significant."""

BranchKey = tuple[str, str]
"""``(session_id, branch_id)``."""

MAIN_BRANCH = "main"


def _now_iso() -> str:
    return datetime.now(UTC).isoformat()


# --- Messages ---


class MessageRole(str, Enum):
    """Who produced a message."""

    USER = "user"
    ASSISTANT = "assistant"
    SYSTEM = "system"
    ERROR = "error"


class MessageMetrics(BaseModel):
    """Usage and timing for one completion call."""

    model_config = ConfigDict(frozen=True)

    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int = 0
    response_time_ms: int = 0
    cost: float | None = None


class Message(BaseModel):
    """A single chat message. Never mutated after creation."""

    model_config = ConfigDict(frozen=True)

    role: MessageRole
    content: str
    timestamp: str = Field(default_factory=_now_iso)
    metrics: MessageMetrics | None = None

    @classmethod
    def user(cls, content: str) -> Message:
        """Create a user message."""
        return cls(role=MessageRole.USER, content=content)

    @classmethod
    def assistant(cls, content: str, metrics: MessageMetrics | None = None) -> Message:
        """Create an assistant message."""
        return cls(role=MessageRole.ASSISTANT, content=content, metrics=metrics)

    @classmethod
    def system(cls, content: str) -> Message:
        """Create a system message."""
        return cls(role=MessageRole.SYSTEM, content=content)

    @classmethod
    def error(cls, content: str) -> Message:
        """Create an error message (shown to the user, never sent to the model)."""
        return cls(role=MessageRole.ERROR, content=content)


# --- Summaries ---


class SummaryStatus(str, Enum):
    """Lifecycle of a summary block."""

    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"


class SummaryBlock(BaseModel):
    """A condensed stand-in for a run of older messages."""

    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=lambda: str(uuid4()))
    original_message_count: int
    original_messages: tuple[Message, ...] = ()
    summary: str
    estimated_tokens: int
    created_at: str = Field(default_factory=_now_iso)
    status: SummaryStatus = SummaryStatus.COMPLETED


# --- Branch state ---


@dataclass
class BranchState:
    """Messages and facts for one branch, guarded by a single lock.

    The lock is only held for in-memory reads and writes, never across an
    await. It is re-entrant so callers can group several operations into one
    atomic step.
    """

    messages: list[Message] = field(default_factory=list)
    facts: FactGroups = field(default_factory=dict)
    persisted_count: int = 0
    """Leading messages that came from persistence rather than this process."""
    lock: threading.RLock = field(default_factory=threading.RLock, repr=False, compare=False)

    def snapshot(self) -> list[Message]:
        """Return a copy of the message list."""
        with self.lock:
            return list(self.messages)

    def facts_snapshot(self) -> FactGroups:
        """Return a deep copy of the fact store."""
        with self.lock:
            return copy_facts(self.facts)

    def new_messages(self) -> list[Message]:
        """Return messages added since the branch was loaded."""
        with self.lock:
            return list(self.messages[self.persisted_count :])

    def append(self, *messages: Message) -> None:
        """Append messages to the tail."""
        with self.lock:
            self.messages.extend(messages)

    def remove_oldest(self, count: int) -> list[Message]:
        """Remove up to ``count`` messages from the head and return them."""
        with self.lock:
            return self._remove_head(count)

    def trim_to(self, keep_last: int) -> list[Message]:
        """Keep only the last ``keep_last`` messages; return what was dropped."""
        with self.lock:
            excess = len(self.messages) - max(keep_last, 0)
            return self._remove_head(excess) if excess > 0 else []

    def remove_prefix(self, expected: Sequence[Message]) -> list[Message]:
        """Remove leading messages while they are the exact ``expected`` objects.

        Stops at the first position where the branch no longer holds the
        expected message, so a concurrent trim never causes unrelated messages
        to be dropped.
        """
        with self.lock:
            matched = 0
            for current, wanted in zip(self.messages, expected, strict=False):
                if current is not wanted:
                    break
                matched += 1
            return self._remove_head(matched)

    def replace_facts(self, facts: FactGroups) -> bool:
        """Swap in a new fact store if it differs. Returns True when replaced."""
        with self.lock:
            if facts == self.facts:
                return False
            self.facts = copy_facts(facts)
            return True

    def _remove_head(self, count: int) -> list[Message]:
        removed = self.messages[:count]
        del self.messages[:count]
        self.persisted_count = max(0, self.persisted_count - len(removed))
        return removed


def copy_facts(facts: FactGroups) -> FactGroups:
    """Copy a fact store so that no inner mapping is shared."""
    return {category: dict(group) for category, group in facts.items()}


def count_facts(facts: FactGroups) -> int:
    """Total number of entries across all categories."""
    return sum(len(group) for group in facts.values())


# --- Composed context ---

AGENT_PRIMER = """\
[AGENT MODE]
Definitions:
- AI agent: a system that chooses its own actions to reach a goal, using its state (memory/context) and feedback.
- Agentic workflow: a pre-designed process (a chain of steps, roles, tools) where agency is bounded by the scenario.

Behaviour loop: Research -> Reason -> Execute -> Adapt -> Remember.
Iterations: linear (single pass) and non-linear (return to Research/Reason on new data or errors).
[END AGENT MODE]"""


class ComposedContext(BaseModel):
    """Everything sent to the model for one turn. Derived and read-only."""

    model_config = ConfigDict(frozen=True)

    system_prompt: str
    summary_blocks: tuple[SummaryBlock, ...] = ()
    facts: FactGroups = Field(default_factory=dict)
    recent_messages: tuple[Message, ...] = ()
    user_message: str
    include_agent_primer: bool = False

    @property
    def facts_text(self) -> str:
        """Facts rendered as a block, categories and keys sorted."""
        if not self.facts:
            return ""
        lines = ["[FACTS]"]
        for category in sorted(self.facts):
            group = self.facts[category]
            if not group:
                continue
            lines.append(f"[{category}]")
            lines.extend(f"{key}: {group[key]}" for key in sorted(group))
        lines.append("[END FACTS]")
        return "\n".join(lines) + "\n"

    @property
    def summary_context_text(self) -> str:
        """Summary blocks rendered in insertion order."""
        if not self.summary_blocks:
            return ""
        lines = ["[PREVIOUS CONVERSATION CONTEXT]"]
        lines.extend(
            f"[Block {index}]: {block.summary}"
            for index, block in enumerate(self.summary_blocks, start=1)
        )
        lines.append("[END CONTEXT]")
        return "\n".join(lines) + "\n"

    @property
    def agent_primer_text(self) -> str:
        """The agent-mode primer, or an empty string when disabled."""
        return AGENT_PRIMER if self.include_agent_primer else ""

    @property
    def estimated_tokens(self) -> int:
        """Approximate size of the request in tokens."""
        return (
            estimate_tokens(self.system_prompt)
            + estimate_tokens(self.facts_text)
            + sum(block.estimated_tokens for block in self.summary_blocks)
            + sum(estimate_tokens(message.content) for message in self.recent_messages)
            + estimate_tokens(self.user_message)
        )

    @property
    def rendered_system_prompt(self) -> str:
        """The system prompt followed by primer, facts and summaries, skipping empty parts."""
        parts = [self.system_prompt]
        for extra in (self.agent_primer_text, self.facts_text, self.summary_context_text):
            if extra.strip():
                parts.append(extra)
        return "\n\n".join(parts)


# --- Result variants ---


@dataclass(frozen=True)
class ChatSuccess:
    """A completed turn."""

    message: Message
    metrics: MessageMetrics


@dataclass(frozen=True)
class ChatError:
    """A failed turn; history was left untouched."""

    error: Exception
    message: str


ChatResult = ChatSuccess | ChatError


@dataclass(frozen=True)
class CompressionSuccess:
    """Oldest messages were replaced by ``block``."""

    block: SummaryBlock


@dataclass(frozen=True)
class CompressionPartial:
    """``block`` was stored but fewer messages than expected were removed."""

    block: SummaryBlock
    warning: str


@dataclass(frozen=True)
class CompressionFailed:
    """Summarisation failed; ``messages_to_recover`` are still in history."""

    error: Exception
    messages_to_recover: list[Message]


@dataclass(frozen=True)
class CompressionNotNeeded:
    """Nothing to do, or another compression for the branch is in flight."""


CompressionResult = CompressionSuccess | CompressionPartial | CompressionFailed | CompressionNotNeeded


@dataclass(frozen=True)
class CompressionCompleted:
    """Observer event: a summary block was committed."""

    session_id: str
    branch_id: str
    block: SummaryBlock


@dataclass(frozen=True)
class CompressionError:
    """Observer event: compression was attempted and failed."""

    session_id: str
    branch_id: str
    error: Exception


@dataclass(frozen=True)
class CompressionSkipped:
    """Observer event: compression was not needed this turn."""

    session_id: str
    branch_id: str


CompressionEvent = CompressionCompleted | CompressionError | CompressionSkipped


# --- Token statistics ---


class SessionTokenStatistics(BaseModel):
    """Accumulated token usage for a session against a model's limits."""

    model_config = ConfigDict(frozen=True)

    session_id: str = ""
    total_prompt_tokens: int = 0
    total_completion_tokens: int = 0
    total_tokens: int = 0
    message_count: int = 0
    estimated_cost: float | None = None
    last_request_tokens: int = 0
    last_response_tokens: int = 0
    context_limit: int = 128_000
    context_usage_percent: float = 0.0

    @property
    def is_approaching_limit(self) -> bool:
        """More than 80% of the context window used."""
        return self.context_usage_percent > 80  # noqa: PLR2004

    @property
    def is_critical_limit(self) -> bool:
        """More than 95% of the context window used."""
        return self.context_usage_percent > 95  # noqa: PLR2004

    @property
    def remaining_tokens(self) -> int:
        """Tokens left in the context window."""
        return self.context_limit - self.total_tokens


EMPTY_TOKEN_STATISTICS = SessionTokenStatistics()
