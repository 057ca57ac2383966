"""
Participant data model and storage interface.

A participant row joins one user to one conversation. The legacy schema gives
every row an integer id from a single sequence shared by the whole table, and
the client, not the database, chooses it: 'next_participant_seq_id' reads the
current maximum and adds one. Backends that generate ids themselves accept
rows with 'id=None'.

Concrete implementations: 'InMemoryParticipantDatabase',
'PostgRESTParticipantDatabase'.
"""

from abc import ABC, abstractmethod

from pydantic import BaseModel


class Participant(BaseModel):
    """Membership of 'user_id' in 'conversation_id'."""

    id: int | None = None
    conversation_id: str
    user_id: str


class ParticipantDatabase(ABC):
    """Abstract repository for 'Participant' rows."""

    @abstractmethod
    async def get_conversation_ids_by_user_id(self, user_id: str) -> list[str]:
        pass

    @abstractmethod
    async def get_participants_by_conversation_id(self, conversation_id: str) -> list[Participant]:
        pass

    @abstractmethod
    async def next_participant_seq_id(self) -> int:
        """Return the current maximum participant id across all conversations, plus one."""
        pass

    @abstractmethod
    async def add_participants(self, participants: list[Participant]) -> list[Participant]:
        """Insert all rows as a single batch; either all rows are stored or none."""
        pass
