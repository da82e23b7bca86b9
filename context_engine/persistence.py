"""File-backed storage of a session's raw message list."""

from __future__ import annotations

import logging
import re
import time
from datetime import UTC, datetime
from pathlib import Path
from typing import TYPE_CHECKING, Protocol

from pydantic import BaseModel, Field, ValidationError

from context_engine.models import Message

if TYPE_CHECKING:
    from collections.abc import Sequence

LOGGER = logging.getLogger(__name__)

HISTORY_VERSION = 1
DEFAULT_HISTORY_DIR = Path.home() / ".context-engine" / "chat_history"
WRITE_ATTEMPTS = 3
WRITE_BACKOFF_SECONDS = 0.15


class PersistenceError(Exception):
    """Raised when a history file could not be written after every retry."""


class ChatHistoryDocument(BaseModel):
    """On-disk JSON layout of one session."""

    version: int = HISTORY_VERSION
    session_id: str
    messages: list[Message] = Field(default_factory=list)
    created_at: str
    updated_at: str


class HistoryStorage(Protocol):
    """What the engine needs from persistence."""

    def load(self, session_id: str) -> list[Message]:
        """Return the stored messages, or ``[]`` when there are none."""
        ...

    def save(self, session_id: str, messages: Sequence[Message]) -> None:
        """Replace the stored messages."""
        ...

    def delete(self, session_id: str) -> None:
        """Remove the stored session, if any."""
        ...


def _safe_name(session_id: str) -> str:
    return re.sub(r"[^a-zA-Z0-9_-]", "_", session_id)


class FileHistoryStorage:
    """One JSON document per session under ``base_dir``.

    Writes go to a temporary file that then replaces the target, so a reader
    never sees a half-written document.
    """

    def __init__(self, base_dir: Path | None = None) -> None:
        self.base_dir = base_dir or DEFAULT_HISTORY_DIR
        self.base_dir.mkdir(parents=True, exist_ok=True)

    def path_for(self, session_id: str) -> Path:
        """Return the file backing ``session_id``."""
        return self.base_dir / f"{_safe_name(session_id)}.json"

    def _read(self, path: Path) -> ChatHistoryDocument | None:
        if not path.exists():
            return None
        content = path.read_text(encoding="utf-8")
        if not content.strip():
            return None
        return ChatHistoryDocument.model_validate_json(content)

    def load(self, session_id: str) -> list[Message]:
        """Load a session; missing, empty or corrupt files yield ``[]``."""
        path = self.path_for(session_id)
        try:
            document = self._read(path)
        except (OSError, ValidationError):
            LOGGER.warning("Failed to load history for %s from %s", session_id, path, exc_info=True)
            return []
        if document is None:
            LOGGER.debug("No stored history for %s", session_id)
            return []
        LOGGER.info("Loaded %d messages for session %s", len(document.messages), session_id)
        return document.messages

    def save(self, session_id: str, messages: Sequence[Message]) -> None:
        """Atomically write ``messages``, keeping the original ``created_at``."""
        path = self.path_for(session_id)
        now = datetime.now(UTC).isoformat()
        try:
            existing = self._read(path)
        except (OSError, ValidationError):
            existing = None
        document = ChatHistoryDocument(
            session_id=session_id,
            messages=list(messages),
            created_at=existing.created_at if existing else now,
            updated_at=now,
        )
        payload = document.model_dump_json(indent=2)

        tmp = path.with_suffix(".tmp")
        for attempt in range(1, WRITE_ATTEMPTS + 1):
            try:
                tmp.write_text(payload, encoding="utf-8")
                tmp.replace(path)
            except OSError as exc:
                tmp.unlink(missing_ok=True)
                if attempt == WRITE_ATTEMPTS:
                    msg = f"Failed to write {path} after {attempt} attempts: {exc}"
                    raise PersistenceError(msg) from exc
                LOGGER.warning("Write of %s failed (attempt %d): %s", path, attempt, exc)
                time.sleep(WRITE_BACKOFF_SECONDS * attempt)
            else:
                LOGGER.debug("Saved %d messages for session %s", len(messages), session_id)
                return

    def delete(self, session_id: str) -> None:
        """Remove the file for ``session_id`` if present."""
        self.path_for(session_id).unlink(missing_ok=True)

    def list_sessions(self) -> list[str]:
        """Sanitised names of every stored session."""
        return sorted(p.stem for p in self.base_dir.glob("*.json"))
