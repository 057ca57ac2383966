"""
Conversation list (inbox) aggregation.

'ConversationListAggregator' builds the inbox of the current user: one
'InboxEntry' per conversation, annotated with the other participant's profile
and the latest message, newest activity first. Conversations with a user that
is blocked in either direction are left out; the filter runs on every refresh,
so blocking or unblocking takes effect on the next reload.

Once started, the list stays live:

    message inserted      - the matching entry gets the new preview and
                            timestamp in place and the list is re-sorted
    conversation changed  - full reload

Refreshes may overlap (a push can trigger one while another is running); a
generation counter makes sure only the most recently started refresh
publishes its result.
"""

import asyncio
from datetime import datetime

from loguru import logger
from pydantic import BaseModel

from messaging_toolkit.config import DEFAULT_INBOX_PLACEHOLDER
from messaging_toolkit.errors import TransientStoreError
from messaging_toolkit.gate.relationship_gate import RelationshipGate
from messaging_toolkit.messaging_database.data_models.conversation import Conversation, ConversationDatabase
from messaging_toolkit.messaging_database.data_models.message import MessageDatabase
from messaging_toolkit.messaging_database.data_models.participant import ParticipantDatabase
from messaging_toolkit.messaging_database.data_models.user import User, UserDatabase
from messaging_toolkit.realtime.base import (
    ChangeFeed,
    ConversationChangedEvent,
    MessageInsertedEvent,
    Subscription,
)
from messaging_toolkit.session.base import SessionProvider
from messaging_toolkit.utils.time import to_datetime


class InboxEntry(BaseModel):
    """
    One row of the inbox.

    'last_activity' is the timestamp of the latest message, or the
    conversation's creation time when it has no messages yet.
    'has_messages' tells the two cases apart.
    """

    conversation_id: str
    participant: User
    preview: str
    last_activity: int
    create_timestamp: int
    has_messages: bool = False


def format_activity_time(timestamp: int, now: datetime | None = None) -> str:
    """Render an inbox timestamp relative to 'now'.

    Same day: clock time ('3:07 PM'). One day ago: 'Yesterday'. Less than a week:
    short weekday ('Tue'). Older: short month and day ('Mar 4').
    """
    now = now or datetime.now().astimezone()
    moment = to_datetime(timestamp).astimezone(now.tzinfo)
    days = (now - moment).days
    if days <= 0:
        return moment.strftime("%I:%M %p").lstrip("0")
    if days == 1:
        return "Yesterday"
    if days < 7:
        return moment.strftime("%a")
    return f"{moment.strftime('%b')} {moment.day}"


class ConversationListAggregator:
    def __init__(
        self,
        session: SessionProvider,
        user_db: UserDatabase,
        participant_db: ParticipantDatabase,
        conversation_db: ConversationDatabase,
        message_db: MessageDatabase,
        gate: RelationshipGate,
        change_feed: ChangeFeed,
        placeholder: str = DEFAULT_INBOX_PLACEHOLDER,
    ) -> None:
        self.session = session
        self.user_db = user_db
        self.participant_db = participant_db
        self.conversation_db = conversation_db
        self.message_db = message_db
        self.gate = gate
        self.change_feed = change_feed
        self.placeholder = placeholder

        self.entries: list[InboxEntry] = []
        self.error: str | None = None

        self._subscriptions: list[Subscription] = []
        self._generation = 0
        self._closed = False

    async def start(self) -> list[InboxEntry]:
        """Subscribe to the change feed and load the inbox."""
        if not self._subscriptions:
            self._subscriptions = [
                self.change_feed.subscribe_to_message_inserts(None, self._on_message_inserted),
                self.change_feed.subscribe_to_conversation_changes(self._on_conversation_changed),
            ]
        return await self.refresh()

    def close(self) -> None:
        self._closed = True
        self._generation += 1
        for subscription in self._subscriptions:
            subscription.unsubscribe()
        self._subscriptions = []

    async def refresh(self) -> list[InboxEntry]:
        self._generation += 1
        generation = self._generation
        user_id = await self.session.require_user_id()
        try:
            entries = await self._build_entries(user_id)
        except TransientStoreError as exc:
            logger.warning(f"Failed to load conversations for {user_id}: {exc}")
            if generation == self._generation:
                self.error = "Failed to load chats"
            raise

        if generation == self._generation and not self._closed:
            self.entries = entries
            self.error = None
        return entries

    def get_entry(self, conversation_id: str) -> InboxEntry | None:
        return next((e for e in self.entries if e.conversation_id == conversation_id), None)

    async def _build_entries(self, user_id: str) -> list[InboxEntry]:
        conversation_ids = await self.participant_db.get_conversation_ids_by_user_id(user_id)
        if not conversation_ids:
            return []
        conversations = await self.conversation_db.get_conversations_by_ids(conversation_ids)
        restricted = await self.gate.get_restricted_ids(user_id)

        results = await asyncio.gather(
            *(self._entry_for(c, user_id, restricted) for c in conversations), return_exceptions=True
        )
        failures = [r for r in results if isinstance(r, BaseException)]
        if failures:
            raise failures[0]
        entries = [entry for entry in results if isinstance(entry, InboxEntry)]
        return self._sorted(entries)

    async def _entry_for(self, conversation: Conversation, user_id: str, restricted: set[str]) -> InboxEntry | None:
        participants = await self.participant_db.get_participants_by_conversation_id(conversation.id)
        other_ids = [p.user_id for p in participants if p.user_id != user_id]
        if not other_ids:
            logger.debug(f"Skipping conversation {conversation.id} without another participant")
            return None
        other_id = other_ids[0]
        if other_id in restricted:
            return None
        participant = await self.user_db.get_user_by_id(other_id)
        if participant is None:
            logger.warning(f"Skipping conversation {conversation.id}: profile {other_id} not found")
            return None

        try:
            latest = await self.message_db.get_latest_message(conversation.id)
        except TransientStoreError as exc:
            logger.warning(f"Error fetching recent message of {conversation.id}, using preview: {exc}")
            latest = None

        if latest is not None:
            return InboxEntry(
                conversation_id=conversation.id,
                participant=participant,
                preview=latest.content,
                last_activity=latest.create_timestamp,
                create_timestamp=conversation.create_timestamp,
                has_messages=True,
            )
        return InboxEntry(
            conversation_id=conversation.id,
            participant=participant,
            preview=conversation.last_message or self.placeholder,
            last_activity=conversation.create_timestamp,
            create_timestamp=conversation.create_timestamp,
        )

    def _on_message_inserted(self, event: MessageInsertedEvent) -> None:
        if self._closed:
            return
        message = event.message
        entry = self.get_entry(message.conversation_id)
        if entry is None:
            return
        if entry.has_messages and message.create_timestamp < entry.last_activity:
            return
        updated = entry.model_copy(
            update={"preview": message.content, "last_activity": message.create_timestamp, "has_messages": True}
        )
        self.entries = self._sorted([updated if e is entry else e for e in self.entries])

    async def _on_conversation_changed(self, event: ConversationChangedEvent) -> None:
        if self._closed:
            return
        logger.debug(f"Conversation {event.conversation_id} changed ({event.kind}), reloading inbox")
        try:
            await self.refresh()
        except TransientStoreError:
            # already recorded on self.error; the next event or a manual refresh retries
            pass

    @staticmethod
    def _sorted(entries: list[InboxEntry]) -> list[InboxEntry]:
        return sorted(entries, key=lambda e: e.last_activity, reverse=True)
