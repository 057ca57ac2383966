"""
Block relation data model and storage interface.

A block is directional: 'blocker_id' blocked 'blocked_id'. The relationship
gate reads both directions to decide whether two users may message each other.

Concrete implementations: 'InMemoryBlockDatabase', 'PostgRESTBlockDatabase'.
"""

from abc import ABC, abstractmethod

from pydantic import BaseModel


class BlockRelation(BaseModel):
    blocker_id: str
    blocked_id: str


class BlockDatabase(ABC):
    """Abstract repository for 'BlockRelation' records."""

    @abstractmethod
    async def create_block(self, block: BlockRelation) -> bool:
        """Store the block. Returns False when it already existed."""
        pass

    @abstractmethod
    async def delete_block(self, blocker_id: str, blocked_id: str) -> bool:
        pass

    @abstractmethod
    async def is_blocked(self, blocker_id: str, blocked_id: str) -> bool:
        pass

    @abstractmethod
    async def get_blocked_ids(self, blocker_id: str) -> list[str]:
        """Users that 'blocker_id' has blocked."""
        pass

    @abstractmethod
    async def get_blocker_ids(self, blocked_id: str) -> list[str]:
        """Users that have blocked 'blocked_id'."""
        pass
