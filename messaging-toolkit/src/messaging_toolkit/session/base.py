"""
Session provider abstractions.

Authentication is owned by the backend platform; the messaging core only asks
who the current user is. A 'SessionProvider' answers that question and
returns None when nobody is signed in, in which case every messaging
operation fails closed with 'NotAuthenticatedError'.

Concrete implementations: 'StaticSessionProvider' (fixed user, for tests and
scripts) and 'SupabaseSessionProvider'.
"""

from abc import ABC, abstractmethod

from messaging_toolkit.errors import NotAuthenticatedError


class SessionProvider(ABC):
    @abstractmethod
    async def get_current_user_id(self) -> str | None:
        """Return the signed-in user's id, or None."""
        pass

    async def require_user_id(self) -> str:
        user_id = await self.get_current_user_id()
        if not user_id:
            raise NotAuthenticatedError()
        return user_id


class StaticSessionProvider(SessionProvider):
    def __init__(self, user_id: str | None) -> None:
        self.user_id = user_id

    async def get_current_user_id(self) -> str | None:
        return self.user_id

    def sign_out(self) -> None:
        self.user_id = None
