from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock

import pytest

from messaging_toolkit.chat.inbox import format_activity_time
from messaging_toolkit.config import DEFAULT_INBOX_PLACEHOLDER
from messaging_toolkit.errors import NotAuthenticatedError, TransientStoreError
from messaging_toolkit.messaging_database.data_models.message import Message
from messaging_toolkit.realtime.base import MessageInsertedEvent


async def test_inbox_shows_latest_reply(alice, bob):
    alice_thread = await alice.open_thread("bob")
    await alice_thread.send("hello")
    bob_thread = await bob.open_thread("alice")
    await bob_thread.send("how are you?")

    inbox = await alice.open_inbox()

    assert len(inbox.entries) == 1
    entry = inbox.entries[0]
    assert entry.participant.username == "bob"
    assert entry.participant.avatar_url == "https://cdn.example.com/bob.png"
    assert entry.preview == "how are you?"
    assert entry.has_messages
    assert entry.last_activity == bob_thread.messages[-1].create_timestamp


async def test_entries_are_sorted_by_latest_activity(alice):
    bob_thread = await alice.open_thread("bob")
    await bob_thread.send("to bob")
    carol_thread = await alice.open_thread("carol")
    await carol_thread.send("to carol")

    inbox = await alice.open_inbox()
    assert [e.participant.username for e in inbox.entries] == ["carol", "bob"]

    await bob_thread.send("bob again")

    assert [e.participant.username for e in inbox.entries] == ["bob", "carol"]
    assert inbox.entries[0].preview == "bob again"


async def test_push_updates_preview_in_place(alice, bob):
    thread = await alice.open_thread("bob")
    await thread.send("hello")
    inbox = await bob.open_inbox()

    await thread.send("second")

    assert [e.preview for e in inbox.entries] == ["second"]


async def test_older_push_does_not_replace_preview(alice, backend):
    thread = await alice.open_thread("bob")
    sent = await thread.send("hello")
    inbox = await alice.open_inbox()
    stale = Message(
        id="m-stale",
        conversation_id=thread.conversation_id,
        sender_id="u2",
        content="old news",
        create_timestamp=sent.create_timestamp - 1,
    )

    await backend.change_feed.publish_message_inserted(MessageInsertedEvent(message=stale))

    assert inbox.entries[0].preview == "hello"


async def test_conversation_without_messages_uses_placeholder(alice):
    conversation_id = await alice.resolver.resolve_or_create("u1", "u2")

    inbox = await alice.open_inbox()

    entry = inbox.get_entry(conversation_id)
    assert entry.preview == DEFAULT_INBOX_PLACEHOLDER
    assert entry.preview == "No messages yet"
    assert not entry.has_messages
    assert entry.last_activity == entry.create_timestamp


async def test_latest_message_failure_falls_back_to_stored_preview(alice, backend, monkeypatch):
    thread = await alice.open_thread("bob")
    await thread.send("hello")
    monkeypatch.setattr(
        backend.message_db, "get_latest_message", AsyncMock(side_effect=TransientStoreError("timeout"))
    )

    inbox = await alice.open_inbox()

    assert inbox.entries[0].preview == "hello"
    assert inbox.error is None


async def test_blocked_users_are_filtered_in_both_directions(alice, bob, carol):
    await (await alice.open_thread("bob")).send("hi bob")
    await (await alice.open_thread("carol")).send("hi carol")
    alice_inbox = await alice.open_inbox()
    bob_inbox = await bob.open_inbox()

    await alice.block_user("bob")
    await alice_inbox.refresh()
    await bob_inbox.refresh()

    assert [e.participant.username for e in alice_inbox.entries] == ["carol"]
    assert bob_inbox.entries == []

    await alice.unblock_user("bob")
    await alice_inbox.refresh()
    assert sorted(e.participant.username for e in alice_inbox.entries) == ["bob", "carol"]


async def test_new_conversation_reloads_inbox(alice, bob):
    inbox = await bob.open_inbox()
    assert inbox.entries == []

    thread = await alice.open_thread("bob")
    await thread.send("hello")

    assert [e.participant.username for e in inbox.entries] == ["alice"]
    assert inbox.entries[0].preview == "hello"


async def test_push_for_unknown_conversation_is_ignored(alice, backend):
    inbox = await alice.open_inbox()
    stray = Message(id="m-x", conversation_id="elsewhere", sender_id="u9", content="?", create_timestamp=1)

    await backend.change_feed.publish_message_inserted(MessageInsertedEvent(message=stray))

    assert inbox.entries == []


async def test_load_failure_is_reported(alice, backend, monkeypatch):
    monkeypatch.setattr(
        backend.participant_db,
        "get_conversation_ids_by_user_id",
        AsyncMock(side_effect=TransientStoreError("unavailable")),
    )

    with pytest.raises(TransientStoreError):
        await alice.open_inbox()


async def test_one_failing_entry_fails_the_refresh(alice, backend, monkeypatch):
    await (await alice.open_thread("bob")).send("hi bob")
    await (await alice.open_thread("carol")).send("hi carol")
    inbox = await alice.open_inbox()
    get_participants = AsyncMock(side_effect=[[], TransientStoreError("unavailable")])
    monkeypatch.setattr(backend.participant_db, "get_participants_by_conversation_id", get_participants)

    with pytest.raises(TransientStoreError):
        await inbox.refresh()

    assert get_participants.await_count == 2
    assert inbox.error == "Failed to load chats"
    assert len(inbox.entries) == 2


async def test_refresh_failure_keeps_previous_entries(alice, backend, monkeypatch):
    await (await alice.open_thread("bob")).send("hello")
    inbox = await alice.open_inbox()
    monkeypatch.setattr(
        backend.conversation_db,
        "get_conversations_by_ids",
        AsyncMock(side_effect=TransientStoreError("unavailable")),
    )

    with pytest.raises(TransientStoreError):
        await inbox.refresh()

    assert inbox.error == "Failed to load chats"
    assert len(inbox.entries) == 1


async def test_close_stops_live_updates(alice, bob, backend):
    thread = await alice.open_thread("bob")
    await thread.send("hello")
    inbox = await bob.open_inbox()
    thread_subscriptions = backend.change_feed.subscriber_count() - 2

    inbox.close()
    await thread.send("after close")

    assert backend.change_feed.subscriber_count() == thread_subscriptions
    assert inbox.entries[0].preview == "hello"


async def test_inbox_requires_authentication(backend):
    with pytest.raises(NotAuthenticatedError):
        await backend.controller_for(None).open_inbox()


def test_format_activity_time():
    now = datetime(2024, 3, 14, 18, 0, tzinfo=timezone.utc)

    def ms(moment: datetime) -> int:
        return int(moment.timestamp() * 1000)

    assert format_activity_time(ms(datetime(2024, 3, 14, 15, 7, tzinfo=timezone.utc)), now) == "3:07 PM"
    assert format_activity_time(ms(datetime(2024, 3, 14, 9, 30, tzinfo=timezone.utc)), now) == "9:30 AM"
    assert format_activity_time(ms(now - timedelta(days=1, hours=2)), now) == "Yesterday"
    assert format_activity_time(ms(now - timedelta(days=3)), now) == "Mon"
    assert format_activity_time(ms(datetime(2024, 3, 4, 12, 0, tzinfo=timezone.utc)), now) == "Mar 4"
