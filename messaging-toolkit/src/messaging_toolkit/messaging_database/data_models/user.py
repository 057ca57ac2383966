"""
User profile data model and directory interface.

Profiles are owned by the wider application; the messaging core only reads
them to resolve a handle into a stable user id and to render the other
participant of a conversation (avatar, verification badge).

Concrete implementations: 'InMemoryUserDatabase', 'PostgRESTUserDatabase'.
"""

from abc import ABC, abstractmethod

from pydantic import BaseModel


class User(BaseModel):
    """Public profile attributes of a user."""

    id: str
    username: str
    avatar_url: str | None = None
    is_verified: bool = False
    bio: str | None = None


class UserDatabase(ABC):
    """Abstract read-only directory of 'User' profiles."""

    @abstractmethod
    async def get_user_by_id(self, user_id: str) -> User | None:
        pass

    @abstractmethod
    async def get_user_by_username(self, username: str) -> User | None:
        pass

    @abstractmethod
    async def search_users(self, query: str, exclude_user_id: str | None = None, limit: int = 20) -> list[User]:
        """Case-insensitive substring match on 'username'."""
        pass
