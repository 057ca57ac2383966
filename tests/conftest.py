"""
Shared fixtures: an in-memory backend seeded with three users and one
controller per user, plus a deterministic clock so message timestamps are
strictly increasing within a test.
"""

import itertools

import pytest

from fitness_chat.wiring import InMemoryBackend
from messaging_toolkit.config import MessagingSettings
from messaging_toolkit.messaging_database.data_models.user import User

START_MS = 1_700_000_000_000


@pytest.fixture(autouse=True)
def fake_clock(monkeypatch):
    ticks = itertools.count(START_MS, 1000)

    def now() -> int:
        return next(ticks)

    monkeypatch.setattr("messaging_toolkit.messaging_database.in_memory.get_current_timestamp", now)
    return ticks


@pytest.fixture
def users() -> list[User]:
    return [
        User(id="u1", username="alice", is_verified=True),
        User(id="u2", username="bob", avatar_url="https://cdn.example.com/bob.png"),
        User(id="u3", username="carol"),
    ]


@pytest.fixture
def backend(users) -> InMemoryBackend:
    return InMemoryBackend(users, settings=MessagingSettings())


@pytest.fixture
def alice(backend):
    return backend.controller_for("u1")


@pytest.fixture
def bob(backend):
    return backend.controller_for("u2")


@pytest.fixture
def carol(backend):
    return backend.controller_for("u3")
