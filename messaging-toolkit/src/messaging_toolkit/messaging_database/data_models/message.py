"""
Message data model and storage interface.

Messages are append-only: once stored they are never edited or deleted. The
store assigns the id and the creation timestamp, and the timestamp never
decreases within a conversation, so 'create_timestamp' alone defines the
display order of a thread.

The 'MessageDatabase' ABC is the pluggable storage backend. Concrete
implementations: 'InMemoryMessageDatabase', 'PostgRESTMessageDatabase'.
"""

from abc import ABC, abstractmethod

from pydantic import BaseModel


class Message(BaseModel):
    """A single message within a conversation."""

    id: str
    conversation_id: str
    sender_id: str
    content: str
    create_timestamp: int


class MessageDatabase(ABC):
    """Abstract repository for 'Message' records."""

    @abstractmethod
    async def create_message(self, conversation_id: str, sender_id: str, content: str) -> Message:
        pass

    @abstractmethod
    async def get_messages_by_conversation_id(self, conversation_id: str) -> list[Message]:
        """Return all messages of the conversation ordered by 'create_timestamp' ascending."""
        pass

    @abstractmethod
    async def get_latest_message(self, conversation_id: str) -> Message | None:
        pass
