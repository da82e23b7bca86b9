"""Shared test fixtures and configuration."""

from __future__ import annotations

import contextlib
import io

import pytest
from rich.console import Console

from tests.mocks.completion import FakeCompletionClient


def pytest_collection_modifyitems(items: list[pytest.Item]) -> None:
    """Set default timeout for all tests."""
    for item in items:
        with contextlib.suppress(AttributeError):
            item.add_marker(pytest.mark.timeout(3))


@pytest.fixture
def fake_client() -> FakeCompletionClient:
    """A completion client that always answers."""
    return FakeCompletionClient()


@pytest.fixture
def mock_console() -> Console:
    """Provide a console that writes to a StringIO for testing."""
    return Console(file=io.StringIO(), width=80, force_terminal=True)
