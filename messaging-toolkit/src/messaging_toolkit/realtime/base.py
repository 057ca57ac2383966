"""
Realtime change feed abstractions.

The backing store pushes row-level notifications for the message and
conversation tables. A screen that wants them acquires a 'Subscription' and
must release it ('unsubscribe') when the screen goes away; once released, a
subscription never invokes its callback again.

Callbacks may be plain functions or coroutine functions. Feeds await the
coroutine before delivering the next event on the same subscription, which
keeps per-subscriber delivery ordered.

Concrete implementations: 'InMemoryChangeFeed'.
"""

from abc import ABC, abstractmethod
from collections.abc import Awaitable, Callable
from enum import StrEnum
from typing import Generic, TypeVar

from pydantic import BaseModel

from messaging_toolkit.messaging_database.data_models.conversation import Conversation
from messaging_toolkit.messaging_database.data_models.message import Message


class ChangeKind(StrEnum):
    INSERT = "INSERT"
    UPDATE = "UPDATE"
    DELETE = "DELETE"


class MessageInsertedEvent(BaseModel):
    message: Message


class ConversationChangedEvent(BaseModel):
    conversation_id: str
    kind: ChangeKind
    conversation: Conversation | None = None


EventT = TypeVar("EventT", MessageInsertedEvent, ConversationChangedEvent)
Callback = Callable[[EventT], Awaitable[None] | None]


class Subscription(Generic[EventT]):
    """
    A live registration on a change feed.

    'topic' is the conversation id for message subscriptions, None for
    subscriptions that receive every event of their table.
    """

    def __init__(self, feed: "ChangeFeed", table: str, topic: str | None, callback: Callback[EventT]) -> None:
        self.feed = feed
        self.table = table
        self.topic = topic
        self.callback = callback
        self.active = True

    def unsubscribe(self) -> None:
        if not self.active:
            return
        self.active = False
        self.feed.release(self)

    def __repr__(self) -> str:
        state = "active" if self.active else "released"
        return f"Subscription(table={self.table!r}, topic={self.topic!r}, {state})"


class ChangeFeed(ABC):
    """Abstract source of realtime row-change notifications."""

    @abstractmethod
    def subscribe_to_message_inserts(
        self, conversation_id: str | None, callback: Callback[MessageInsertedEvent]
    ) -> Subscription[MessageInsertedEvent]:
        """Receive inserts for one conversation, or for all conversations when 'conversation_id' is None."""
        pass

    @abstractmethod
    def subscribe_to_conversation_changes(
        self, callback: Callback[ConversationChangedEvent]
    ) -> Subscription[ConversationChangedEvent]:
        pass

    @abstractmethod
    def release(self, subscription: Subscription) -> None:
        """Drop 'subscription'. Called by 'Subscription.unsubscribe'."""
        pass
