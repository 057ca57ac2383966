"""
Per-conversation thread state machine.

A 'ThreadController' backs one open chat screen with another user:

    uninitialized -> resolving -> blocked
                               -> ready -> sending -> ready
    any state -> closed

'open' resolves the other user's handle, asks the relationship gate whether
the pair may talk, and looks for an existing conversation without creating
one. 'send' re-checks the gate, creates the conversation on first contact,
stores the message and only then shows it locally; there is no speculative
echo of unsent text. While a send is in flight the outgoing text is held in a
'PendingSend'; a failed write leaves it there marked 'failed' and keeps the
draft so the user can retry.

Messages pushed by the change feed are merged into the local history by
message id, so a message that arrives both from the initial load and from a
push, or twice from a push, is shown once. The local history is always ordered
by the store's 'create_timestamp'. After 'close' the subscription is released
and any late callback is ignored via a generation counter.
"""

import bisect
from enum import StrEnum

from loguru import logger
from pydantic import BaseModel

from messaging_toolkit.chat.resolver import ConversationResolver
from messaging_toolkit.config import DEFAULT_MAX_MESSAGE_LENGTH
from messaging_toolkit.errors import (
    BlockedError,
    InvalidMessageError,
    ThreadStateError,
    TransientStoreError,
    UserNotFoundError,
)
from messaging_toolkit.gate.relationship_gate import GateVerdict, RelationshipGate
from messaging_toolkit.messaging_database.data_models.conversation import ConversationDatabase
from messaging_toolkit.messaging_database.data_models.message import Message, MessageDatabase
from messaging_toolkit.messaging_database.data_models.user import User, UserDatabase
from messaging_toolkit.realtime.base import ChangeFeed, MessageInsertedEvent, Subscription
from messaging_toolkit.session.base import SessionProvider


class ThreadState(StrEnum):
    UNINITIALIZED = "uninitialized"
    RESOLVING = "resolving"
    BLOCKED = "blocked"
    READY = "ready"
    SENDING = "sending"
    CLOSED = "closed"


class SendStatus(StrEnum):
    PENDING = "pending"
    FAILED = "failed"


class PendingSend(BaseModel):
    """Outgoing text that the store has not confirmed yet."""

    content: str
    status: SendStatus = SendStatus.PENDING
    error: str | None = None


class ThreadController:
    def __init__(
        self,
        session: SessionProvider,
        user_db: UserDatabase,
        gate: RelationshipGate,
        resolver: ConversationResolver,
        message_db: MessageDatabase,
        conversation_db: ConversationDatabase,
        change_feed: ChangeFeed,
        max_message_length: int = DEFAULT_MAX_MESSAGE_LENGTH,
    ) -> None:
        self.session = session
        self.user_db = user_db
        self.gate = gate
        self.resolver = resolver
        self.message_db = message_db
        self.conversation_db = conversation_db
        self.change_feed = change_feed
        self.max_message_length = max_message_length

        self.state = ThreadState.UNINITIALIZED
        self.self_id: str | None = None
        self.recipient: User | None = None
        self.verdict: GateVerdict | None = None
        self.conversation_id: str | None = None
        self.messages: list[Message] = []
        self.draft = ""
        self.pending: PendingSend | None = None
        self.history_error: str | None = None
        self.last_error: str | None = None

        self._message_ids: set[str] = set()
        self._subscription: Subscription[MessageInsertedEvent] | None = None
        self._generation = 0

    @property
    def can_compose(self) -> bool:
        return self.state == ThreadState.READY

    async def __aenter__(self) -> "ThreadController":
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        self.close()

    async def open(self, username: str) -> ThreadState:
        if self.state != ThreadState.UNINITIALIZED:
            raise ThreadStateError(f"Thread already opened (state={self.state})")
        self.state = ThreadState.RESOLVING
        try:
            self_id = await self.session.require_user_id()
            recipient = await self.user_db.get_user_by_username(username)
            if recipient is None:
                raise UserNotFoundError(username)
            if recipient.id == self_id:
                raise ValueError("Cannot open a conversation with yourself")
            verdict = await self.gate.can_message(self_id, recipient.id)
            conversation_id = await self.resolver.find_existing(self_id, recipient.id)
        except Exception:
            self.state = ThreadState.UNINITIALIZED
            raise

        self.self_id = self_id
        self.recipient = recipient
        self.verdict = verdict
        self.conversation_id = conversation_id

        if not verdict.allowed:
            logger.info(f"Thread with {username!r} is blocked ({verdict.reason})")
            self.state = ThreadState.BLOCKED
            if conversation_id is not None:
                await self._load_history(conversation_id)
            return self.state

        if conversation_id is not None:
            self._subscribe(conversation_id)
            await self._load_history(conversation_id)
        self.state = ThreadState.READY
        logger.debug(f"Thread with {username!r} ready (conversation={conversation_id}, messages={len(self.messages)})")
        return self.state

    async def refresh(self) -> bool:
        """Reload the history; picks up a conversation the other user may have started meanwhile."""
        if self.state not in (ThreadState.READY, ThreadState.BLOCKED):
            raise ThreadStateError(f"Cannot refresh while {self.state}")
        if self.self_id is None or self.recipient is None:
            raise ThreadStateError("Thread has no resolved recipient")

        generation = self._generation
        if self.conversation_id is None:
            conversation_id = await self.resolver.find_existing(self.self_id, self.recipient.id)
            if conversation_id is None or generation != self._generation:
                return True
            self.conversation_id = conversation_id
            if self.state == ThreadState.READY:
                self._subscribe(conversation_id)
        return await self._load_history(self.conversation_id)

    async def send(self, content: str | None = None) -> Message:
        if self.state == ThreadState.BLOCKED and self.verdict is not None:
            raise BlockedError(self.verdict)
        if self.state != ThreadState.READY:
            raise ThreadStateError(f"Cannot send while {self.state}")
        if self.self_id is None or self.recipient is None:
            raise ThreadStateError("Thread has no resolved recipient")

        if content is not None:
            self.draft = content
        body = self._validate(self.draft)

        verdict = await self.gate.can_message(self.self_id, self.recipient.id)
        if not verdict.allowed:
            self.verdict = verdict
            self.last_error = verdict.describe()
            logger.info(f"Send to {self.recipient.username!r} refused by gate ({verdict.reason})")
            raise BlockedError(verdict)

        generation = self._generation
        self.state = ThreadState.SENDING
        self.pending = PendingSend(content=body)
        try:
            conversation_id = self.conversation_id
            if conversation_id is None:
                conversation_id = await self.resolver.resolve_or_create(self.self_id, self.recipient.id)
                if generation == self._generation:
                    self.conversation_id = conversation_id
                    self._subscribe(conversation_id)
            message = await self.message_db.create_message(conversation_id, self.self_id, body)
        except Exception as exc:
            logger.warning(f"Failed to send message to {self.recipient.username!r}: {exc}")
            if generation == self._generation:
                self.pending = PendingSend(content=body, status=SendStatus.FAILED, error=str(exc))
                self.last_error = "Failed to send message"
                self.state = ThreadState.READY
            raise

        if generation == self._generation:
            self._insert_message(message)
            self.draft = ""
            self.pending = None
            self.last_error = None
            self.state = ThreadState.READY

        try:
            await self.conversation_db.update_conversation_preview(conversation_id, body)
        except TransientStoreError as exc:
            logger.warning(f"Message {message.id} stored but preview of {conversation_id} not updated: {exc}")
        return message

    def close(self) -> None:
        self._generation += 1
        if self._subscription is not None:
            self._subscription.unsubscribe()
            self._subscription = None
        self.state = ThreadState.CLOSED

    def _validate(self, text: str) -> str:
        body = text.strip()
        if not body:
            raise InvalidMessageError("Message is empty")
        if len(body) > self.max_message_length:
            raise InvalidMessageError(f"Message exceeds {self.max_message_length} characters")
        return body

    async def _load_history(self, conversation_id: str) -> bool:
        generation = self._generation
        try:
            history = await self.message_db.get_messages_by_conversation_id(conversation_id)
        except TransientStoreError as exc:
            logger.warning(f"Failed to load messages of {conversation_id}: {exc}")
            if generation == self._generation:
                self.history_error = "Failed to load messages"
                self.messages = []
                self._message_ids = set()
            return False
        if generation != self._generation:
            return False

        # keep pushed messages that the history snapshot does not contain yet
        history_ids = {m.id for m in history}
        merged = history + [m for m in self.messages if m.id not in history_ids]
        self.messages = sorted(merged, key=lambda m: m.create_timestamp)
        self._message_ids = {m.id for m in self.messages}
        self.history_error = None
        return True

    def _subscribe(self, conversation_id: str) -> None:
        if self._subscription is not None:
            self._subscription.unsubscribe()
        generation = self._generation

        def on_insert(event: MessageInsertedEvent) -> None:
            if generation != self._generation:
                return
            if event.message.conversation_id != self.conversation_id:
                return
            if self._insert_message(event.message):
                logger.debug(f"Received message {event.message.id} in {event.message.conversation_id}")

        self._subscription = self.change_feed.subscribe_to_message_inserts(conversation_id, on_insert)

    def _insert_message(self, message: Message) -> bool:
        if message.id in self._message_ids:
            return False
        bisect.insort_right(self.messages, message, key=lambda m: m.create_timestamp)
        self._message_ids.add(message.id)
        return True
