"""Tests for file-backed history storage."""

from __future__ import annotations

import json
from pathlib import Path
from unittest.mock import patch

import pytest

from context_engine.models import Message
from context_engine.persistence import ChatHistoryDocument, FileHistoryStorage, PersistenceError


class TestFileHistoryStorage:
    """Tests for load, save and delete."""

    def test_missing_session_is_empty(self, tmp_path: Path) -> None:
        """Unknown sessions load as an empty list."""
        assert FileHistoryStorage(tmp_path).load("nope") == []

    def test_round_trip(self, tmp_path: Path) -> None:
        """Saved messages load back unchanged."""
        storage = FileHistoryStorage(tmp_path)
        messages = [Message.user("hi"), Message.assistant("hello")]
        storage.save("s1", messages)
        assert storage.load("s1") == messages
        assert not storage.path_for("s1").with_suffix(".tmp").exists()

    def test_document_layout(self, tmp_path: Path) -> None:
        """The file is a versioned JSON document."""
        storage = FileHistoryStorage(tmp_path)
        storage.save("s1", [Message.user("hi")])
        data = json.loads(storage.path_for("s1").read_text())
        assert data["version"] == 1
        assert data["session_id"] == "s1"
        assert data["messages"][0]["role"] == "user"

    def test_created_at_is_preserved(self, tmp_path: Path) -> None:
        """Rewrites keep the original creation time."""
        storage = FileHistoryStorage(tmp_path)
        storage.save("s1", [Message.user("a")])
        first = ChatHistoryDocument.model_validate_json(storage.path_for("s1").read_text())
        storage.save("s1", [Message.user("a"), Message.user("b")])
        second = ChatHistoryDocument.model_validate_json(storage.path_for("s1").read_text())
        assert second.created_at == first.created_at
        assert len(second.messages) == 2

    def test_session_id_is_sanitised(self, tmp_path: Path) -> None:
        """Unsafe characters never reach the file system."""
        storage = FileHistoryStorage(tmp_path)
        assert storage.path_for("../a b/c").name == "___a_b_c.json"

    @pytest.mark.parametrize("content", ["", "   ", "{not json", '{"version": 1}'])
    def test_corrupt_or_empty_file_loads_empty(self, tmp_path: Path, content: str) -> None:
        """Unreadable documents load as an empty list."""
        storage = FileHistoryStorage(tmp_path)
        storage.path_for("s1").write_text(content)
        assert storage.load("s1") == []

    def test_delete(self, tmp_path: Path) -> None:
        """Deleting removes the file and tolerates missing ones."""
        storage = FileHistoryStorage(tmp_path)
        storage.save("s1", [Message.user("a")])
        storage.delete("s1")
        storage.delete("s1")
        assert storage.load("s1") == []

    def test_list_sessions(self, tmp_path: Path) -> None:
        """Stored sessions are listed by file name."""
        storage = FileHistoryStorage(tmp_path)
        storage.save("b", [])
        storage.save("a", [])
        assert storage.list_sessions() == ["a", "b"]

    def test_write_failure_raises_after_retries(self, tmp_path: Path) -> None:
        """Persistent write failures raise PersistenceError."""
        storage = FileHistoryStorage(tmp_path)
        with (
            patch.object(Path, "replace", side_effect=OSError("disk full")) as mock_replace,
            patch("context_engine.persistence.time.sleep") as mock_sleep,
            pytest.raises(PersistenceError, match="after 3 attempts"),
        ):
            storage.save("s1", [Message.user("a")])
        assert mock_replace.call_count == 3
        assert mock_sleep.call_count == 2
        assert not storage.path_for("s1").with_suffix(".tmp").exists()
