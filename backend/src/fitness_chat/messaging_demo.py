"""
Scripted direct-messaging session.

Each step is an independent coroutine so single steps can be run and
inspected on their own. loguru logs the thread and inbox state after every
step.

Steps at a glance (memory backend):
    1  first_contact()   - alice messages bob, creating the conversation
    2  reply()           - bob answers in the same thread
    3  show_inbox()      - alice's inbox previews bob's reply
    4  block_and_retry() - alice blocks bob, bob can no longer write

Backends (BACKEND, default 'memory'):
    memory   - in-process stores seeded with three demo users
    supabase - the hosted project; needs SUPABASE_URL, SUPABASE_ANON_KEY
               (env var or /secrets/<NAME>), ACCESS_TOKEN for the signed-in
               user and RECIPIENT, the handle to message

Usage:
    python -m fitness_chat.messaging_demo
    BACKEND=supabase ACCESS_TOKEN=... RECIPIENT=bob MESSAGE="hi" python -m fitness_chat.messaging_demo
"""

import asyncio
import os

from loguru import logger

from fitness_chat.wiring import InMemoryBackend, build_supabase_controller, configure_logging
from messaging_toolkit.chat.controller import MessagingController
from messaging_toolkit.chat.inbox import ConversationListAggregator, format_activity_time
from messaging_toolkit.chat.thread import ThreadController
from messaging_toolkit.config import MessagingSettings
from messaging_toolkit.errors import BlockedError
from messaging_toolkit.messaging_database.data_models.user import User

DEMO_USERS = [
    User(id="u1", username="alice", is_verified=True),
    User(id="u2", username="bob"),
    User(id="u3", username="carol", avatar_url="https://example.com/carol.png"),
]


def log_thread(thread: ThreadController) -> None:
    partner = thread.recipient.username if thread.recipient else "?"
    logger.info(f"Thread with {partner!r}: state={thread.state} conversation={thread.conversation_id}")
    for message in thread.messages:
        logger.info(f"  [{message.sender_id}] {message.content}")


def log_inbox(inbox: ConversationListAggregator) -> None:
    logger.info(f"Inbox: {len(inbox.entries)} conversations")
    for entry in inbox.entries:
        badge = " (verified)" if entry.participant.is_verified else ""
        when = format_activity_time(entry.last_activity)
        logger.info(f"  {entry.participant.username}{badge}: {entry.preview!r} ({when})")


async def first_contact(sender: MessagingController, recipient: str, text: str) -> ThreadController:
    thread = await sender.open_thread(recipient)
    await thread.send(text)
    log_thread(thread)
    return thread


async def reply(responder: MessagingController, recipient: str, text: str) -> ThreadController:
    thread = await responder.open_thread(recipient)
    await thread.send(text)
    log_thread(thread)
    return thread


async def show_inbox(controller: MessagingController) -> ConversationListAggregator:
    inbox = await controller.open_inbox()
    log_inbox(inbox)
    return inbox


async def block_and_retry(blocker: MessagingController, blocked: MessagingController, blocker_handle: str, blocked_handle: str) -> None:
    await blocker.block_user(blocked_handle)
    thread = await blocked.open_thread(blocker_handle)
    try:
        await thread.send("are you there?")
    except BlockedError as exc:
        logger.info(f"Send refused: {exc}")
    finally:
        thread.close()


async def run_memory_session(settings: MessagingSettings) -> None:
    backend = InMemoryBackend(DEMO_USERS, settings=settings)
    alice = backend.controller_for("u1")
    bob = backend.controller_for("u2")

    # Step 1 and 2: a first message creates the conversation, the reply reuses it
    alice_thread = await first_contact(alice, "bob", "hello")
    bob_thread = await reply(bob, "alice", "how are you?")
    log_thread(alice_thread)

    # Step 3: inbox
    inbox = await show_inbox(alice)

    # Step 4: blocking
    await block_and_retry(alice, bob, "alice", "bob")
    await inbox.refresh()
    log_inbox(inbox)

    for resource in (alice_thread, bob_thread, inbox):
        resource.close()


async def run_supabase_session(settings: MessagingSettings, access_token: str, recipient: str, text: str) -> None:
    controller, client = build_supabase_controller(settings, access_token)
    try:
        thread = await controller.open_thread(recipient)
        log_thread(thread)
        if thread.can_compose:
            await thread.send(text)
            log_thread(thread)
        thread.close()
        inbox = await show_inbox(controller)
        inbox.close()
    finally:
        await client.aclose()


if __name__ == "__main__":
    _backend = os.getenv("BACKEND", "memory").lower().strip()
    match _backend:
        case "memory":
            _settings = MessagingSettings.from_env()
            configure_logging(_settings.log_level)
            asyncio.run(run_memory_session(_settings))
        case "supabase":
            _settings = MessagingSettings.from_env(require_backend=True)
            configure_logging(_settings.log_level)
            _token = os.getenv("ACCESS_TOKEN")
            _recipient = os.getenv("RECIPIENT")
            if not _token or not _recipient:
                raise SystemExit("ACCESS_TOKEN and RECIPIENT must be set for BACKEND=supabase")
            asyncio.run(run_supabase_session(_settings, _token, _recipient, os.getenv("MESSAGE", "hello")))
        case _:
            raise SystemExit(f"Unknown BACKEND {_backend!r}. Choose one of: memory, supabase")
