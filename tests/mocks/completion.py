"""Mock completion clients and message helpers for testing."""

from __future__ import annotations

import asyncio
from typing import TYPE_CHECKING

from context_engine.completion import Completion, CompletionUsage
from context_engine.models import Message

if TYPE_CHECKING:
    from collections.abc import Sequence

    from context_engine.completion import ChatMessage


class FakeCompletionClient:
    """Scripted stand-in for the completion capability.

    Each entry of ``script`` is either a reply string or an exception to
    raise. When the script runs out, replies are ``"reply N"``.
    """

    def __init__(self, script: Sequence[str | Exception] = (), usage: CompletionUsage | None = None) -> None:
        self.script = list(script)
        self.usage = usage or CompletionUsage(prompt_tokens=100, completion_tokens=20, total_tokens=120)
        self.calls: list[dict] = []

    async def complete(
        self,
        *,
        model: str,
        messages: Sequence[ChatMessage],
        max_tokens: int,
        temperature: float,
    ) -> Completion:
        self.calls.append(
            {
                "model": model,
                "messages": list(messages),
                "max_tokens": max_tokens,
                "temperature": temperature,
            },
        )
        item = self.script.pop(0) if self.script else f"reply {len(self.calls)}"
        if isinstance(item, Exception):
            raise item
        return Completion(content=item, usage=self.usage)


class GatedCompletionClient(FakeCompletionClient):
    """Blocks every call until ``release`` is set, signalling ``entered`` first."""

    def __init__(self, script: Sequence[str | Exception] = ()) -> None:
        super().__init__(script)
        self.entered = asyncio.Event()
        self.release = asyncio.Event()

    async def complete(self, **kwargs) -> Completion:  # type: ignore[override]
        self.entered.set()
        await self.release.wait()
        return await super().complete(**kwargs)


def make_pairs(count: int, start: int = 0) -> list[Message]:
    """Alternating user/assistant messages ``u0, a0, u1, a1, ...``."""
    messages: list[Message] = []
    for i in range(start, start + count):
        messages.append(Message.user(f"u{i}"))
        messages.append(Message.assistant(f"a{i}"))
    return messages
