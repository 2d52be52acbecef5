"""
Shared fixtures: a temp SQLite store and an in-process stub provider.
"""

import pytest

from voicebridge.providers.base import CompletionResult, TextFragment, UsageSummary
from voicebridge.storage.sqlite_store import SQLiteStore


class StubProvider:
    """Scripted provider. Counts every call that would have gone upstream."""

    def __init__(self, name="stub", fragments=("Hel", "lo"), usage=(5, 2)):
        self.name = name
        self.fragments = list(fragments)
        self.usage = usage
        self.calls = 0
        self.pulled = []
        self.last_args = None

    async def complete(self, variant, instruction, turns):
        self.calls += 1
        self.last_args = (variant, instruction, turns)
        return CompletionResult(
            text="".join(self.fragments),
            usage=UsageSummary.from_counts(*self.usage),
            provider=self.name,
        )

    async def stream(self, variant, instruction, turns):
        self.calls += 1
        self.last_args = (variant, instruction, turns)
        for text in self.fragments:
            self.pulled.append(text)
            yield TextFragment(text)
        yield UsageSummary.from_counts(*self.usage)


@pytest.fixture
def store(tmp_path):
    """Create a fresh SQLite store for each test."""
    return SQLiteStore(str(tmp_path / "test.db"))


@pytest.fixture
def stub_provider():
    return StubProvider()


def _chat_body(messages=None, user_id="user-1"):
    return {
        "model": {"id": "model-1", "variant": "stub-large"},
        "messages": messages if messages is not None else [
            {"role": "system", "content": "Be brief.", "ts": 0},
            {"role": "user", "content": " Hi there ", "ts": 1},
        ],
        "user_id": user_id,
    }


@pytest.fixture
def chat_body():
    """Factory for a valid chat request body."""
    return _chat_body


@pytest.fixture
def make_stub():
    """Factory for StubProvider instances."""
    return StubProvider
