import asyncio

import pytest

from messaging_toolkit.chat.resolver import ConversationResolver
from messaging_toolkit.errors import ResolutionFailedError, TransientStoreError
from messaging_toolkit.messaging_database.in_memory import InMemoryConversationDatabase, InMemoryParticipantDatabase


class SlowParticipantDatabase(InMemoryParticipantDatabase):
    """Reads return a snapshot and then yield, like a response still in flight."""

    async def get_conversation_ids_by_user_id(self, user_id: str) -> list[str]:
        result = await super().get_conversation_ids_by_user_id(user_id)
        await asyncio.sleep(0)
        return result

    async def next_participant_seq_id(self) -> int:
        result = await super().next_participant_seq_id()
        await asyncio.sleep(0)
        return result


@pytest.fixture
def conversation_db():
    return InMemoryConversationDatabase()


async def test_resolve_from_both_sides_returns_same_conversation(conversation_db):
    participant_db = InMemoryParticipantDatabase()
    resolver = ConversationResolver(conversation_db, participant_db)

    first = await resolver.resolve_or_create("u1", "u2")
    second = await resolver.resolve_or_create("u2", "u1")

    assert first == second
    participants = await participant_db.get_participants_by_conversation_id(first)
    assert sorted(p.user_id for p in participants) == ["u1", "u2"]


async def test_sequential_ids_continue_across_conversations(conversation_db):
    participant_db = InMemoryParticipantDatabase()
    resolver = ConversationResolver(conversation_db, participant_db, sequential_participant_ids=True)

    first = await resolver.resolve_or_create("u1", "u2")
    second = await resolver.resolve_or_create("u1", "u3")

    assert [p.id for p in await participant_db.get_participants_by_conversation_id(first)] == [1, 2]
    assert [p.id for p in await participant_db.get_participants_by_conversation_id(second)] == [3, 4]


async def test_store_assigned_ids(conversation_db):
    participant_db = InMemoryParticipantDatabase(assign_ids=True)
    resolver = ConversationResolver(conversation_db, participant_db, sequential_participant_ids=False)

    conversation_id = await resolver.resolve_or_create("u1", "u2")

    participants = await participant_db.get_participants_by_conversation_id(conversation_id)
    assert [p.id for p in participants] == [1, 2]


async def test_find_existing_does_not_create(conversation_db):
    participant_db = InMemoryParticipantDatabase()
    resolver = ConversationResolver(conversation_db, participant_db)

    assert await resolver.find_existing("u1", "u2") is None
    assert await participant_db.get_conversation_ids_by_user_id("u1") == []


async def test_conversation_with_third_user_is_not_shared(conversation_db):
    participant_db = InMemoryParticipantDatabase()
    resolver = ConversationResolver(conversation_db, participant_db)
    await resolver.resolve_or_create("u1", "u3")

    assert await resolver.find_existing("u1", "u2") is None


async def test_same_user_pair_is_rejected(conversation_db):
    resolver = ConversationResolver(conversation_db, InMemoryParticipantDatabase())

    with pytest.raises(ValueError):
        await resolver.resolve_or_create("u1", "u1")


async def test_store_failure_surfaces_as_resolution_failed(conversation_db, monkeypatch):
    participant_db = InMemoryParticipantDatabase()
    resolver = ConversationResolver(conversation_db, participant_db)

    async def unavailable(user_id: str) -> list[str]:
        raise TransientStoreError("store unavailable")

    monkeypatch.setattr(participant_db, "get_conversation_ids_by_user_id", unavailable)

    with pytest.raises(ResolutionFailedError):
        await resolver.resolve_or_create("u1", "u2")


async def test_participant_insert_failure_leaves_orphan(conversation_db, monkeypatch):
    participant_db = InMemoryParticipantDatabase()
    resolver = ConversationResolver(conversation_db, participant_db)

    async def rejected(participants):
        raise TransientStoreError("insert rejected")

    monkeypatch.setattr(participant_db, "add_participants", rejected)

    with pytest.raises(ResolutionFailedError):
        await resolver.resolve_or_create("u1", "u2")

    assert len(conversation_db._conversations) == 1
    assert await participant_db.get_conversation_ids_by_user_id("u1") == []


async def test_lookup_race_creates_duplicates_that_settle_on_earliest(conversation_db):
    participant_db = SlowParticipantDatabase(assign_ids=True)
    resolver = ConversationResolver(conversation_db, participant_db, sequential_participant_ids=False)

    from_alice, from_bob = await asyncio.gather(
        resolver.resolve_or_create("u1", "u2"),
        resolver.resolve_or_create("u2", "u1"),
    )

    assert from_alice != from_bob
    duplicate = await resolver.find_duplicates("u1", "u2")
    assert duplicate is not None
    assert sorted(duplicate.conversation_ids) == sorted([from_alice, from_bob])
    assert duplicate.kept_conversation_id == from_alice

    assert await resolver.resolve_or_create("u1", "u2") == from_alice
    assert await resolver.resolve_or_create("u2", "u1") == from_alice


async def test_sequential_id_race_rejects_one_batch(conversation_db):
    participant_db = SlowParticipantDatabase()
    resolver = ConversationResolver(conversation_db, participant_db, sequential_participant_ids=True)

    results = await asyncio.gather(
        resolver.resolve_or_create("u1", "u2"),
        resolver.resolve_or_create("u2", "u1"),
        return_exceptions=True,
    )

    succeeded = [r for r in results if isinstance(r, str)]
    failed = [r for r in results if isinstance(r, ResolutionFailedError)]
    assert len(succeeded) == 1 and len(failed) == 1
    assert len(conversation_db._conversations) == 2
    assert await resolver.find_existing("u1", "u2") == succeeded[0]
    assert await resolver.find_duplicates("u1", "u2") is None


async def test_no_duplicates_reported_for_single_conversation(conversation_db):
    resolver = ConversationResolver(conversation_db, InMemoryParticipantDatabase())
    await resolver.resolve_or_create("u1", "u2")

    assert await resolver.find_duplicates("u1", "u2") is None
