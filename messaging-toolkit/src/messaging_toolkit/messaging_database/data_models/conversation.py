"""
Conversation data model and storage interface.

A conversation is a 1:1 channel between exactly two users. Membership is not
stored on the conversation itself but in 'Participant' rows, so a conversation
record only carries its timestamps and the denormalized 'last_message'
preview. The preview is a rendering shortcut for the inbox and is never used
to order anything.

The 'ConversationDatabase' ABC is the pluggable storage backend. Concrete
implementations ('InMemoryConversationDatabase',
'PostgRESTConversationDatabase') are interchangeable at construction time.
"""

from abc import ABC, abstractmethod

from pydantic import BaseModel


class Conversation(BaseModel):
    """A 1:1 messaging channel."""

    id: str
    create_timestamp: int
    update_timestamp: int
    last_message: str | None = None


class ConversationDatabase(ABC):
    """Abstract repository for 'Conversation' records."""

    @abstractmethod
    async def create_conversation(self, last_message: str | None = None) -> Conversation:
        """Create a conversation; the store assigns its id and timestamps."""
        pass

    @abstractmethod
    async def get_conversation_by_id(self, conversation_id: str) -> Conversation | None:
        pass

    @abstractmethod
    async def get_conversations_by_ids(self, conversation_ids: list[str]) -> list[Conversation]:
        pass

    @abstractmethod
    async def update_conversation_preview(self, conversation_id: str, last_message: str) -> Conversation:
        pass
