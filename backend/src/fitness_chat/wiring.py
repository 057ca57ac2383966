"""
Builds a 'MessagingController' for the app from configuration.

Two backends are available:

    memory   - dictionaries plus an in-process change feed. Nothing is
               persisted; used for local runs and the demo session.
    supabase - the hosted project over its REST API. Requires SUPABASE_URL,
               SUPABASE_ANON_KEY and the signed-in user's access token.
               Remote realtime is not bridged: the repositories publish
               their own successful writes to an in-process feed, so live
               updates cover writes made through this process only.
"""

import sys

import httpx
from loguru import logger

from messaging_toolkit.chat.controller import MessagingController
from messaging_toolkit.config import MessagingSettings
from messaging_toolkit.messaging_database.data_models.user import User
from messaging_toolkit.messaging_database.in_memory import (
    InMemoryBlockDatabase,
    InMemoryConversationDatabase,
    InMemoryMessageDatabase,
    InMemoryParticipantDatabase,
    InMemoryUserDatabase,
)
from messaging_toolkit.messaging_database.postgrest import (
    PostgRESTBlockDatabase,
    PostgRESTClient,
    PostgRESTConversationDatabase,
    PostgRESTMessageDatabase,
    PostgRESTParticipantDatabase,
    PostgRESTUserDatabase,
    SupabaseSessionProvider,
)
from messaging_toolkit.realtime.in_memory import InMemoryChangeFeed
from messaging_toolkit.session.base import SessionProvider, StaticSessionProvider


def configure_logging(level: str) -> None:
    logger.remove()
    logger.add(sys.stderr, level=level)


class InMemoryBackend:
    """
    One set of in-memory stores shared by any number of signed-in users.

    Each 'controller_for' call returns a controller bound to one user, the way
    each phone runs its own app against the same hosted project.
    """

    def __init__(self, users: list[User], settings: MessagingSettings | None = None) -> None:
        self.settings = settings or MessagingSettings()
        self.change_feed = InMemoryChangeFeed()
        self.user_db = InMemoryUserDatabase(users)
        self.conversation_db = InMemoryConversationDatabase(change_feed=self.change_feed)
        self.participant_db = InMemoryParticipantDatabase(assign_ids=not self.settings.sequential_participant_ids)
        self.message_db = InMemoryMessageDatabase(change_feed=self.change_feed, participant_db=self.participant_db)
        self.block_db = InMemoryBlockDatabase()

    def controller_for(self, user_id: str | None) -> MessagingController:
        return self.controller_with_session(StaticSessionProvider(user_id))

    def controller_with_session(self, session: SessionProvider) -> MessagingController:
        return MessagingController(
            session=session,
            user_db=self.user_db,
            conversation_db=self.conversation_db,
            participant_db=self.participant_db,
            message_db=self.message_db,
            block_db=self.block_db,
            change_feed=self.change_feed,
            settings=self.settings,
        )


def build_supabase_controller(
    settings: MessagingSettings,
    access_token: str,
    transport: httpx.AsyncBaseTransport | None = None,
) -> tuple[MessagingController, PostgRESTClient]:
    """Controller over the hosted backend. The caller owns the returned client and must 'aclose' it."""
    client = PostgRESTClient.from_settings(settings, access_token=access_token, transport=transport)
    change_feed = InMemoryChangeFeed()
    logger.info(f"Messaging backend: Supabase ({settings.supabase_url})")
    controller = MessagingController(
        session=SupabaseSessionProvider(client),
        user_db=PostgRESTUserDatabase(client),
        conversation_db=PostgRESTConversationDatabase(client, change_feed=change_feed),
        participant_db=PostgRESTParticipantDatabase(client),
        message_db=PostgRESTMessageDatabase(client, change_feed=change_feed),
        block_db=PostgRESTBlockDatabase(client),
        change_feed=change_feed,
        settings=settings,
    )
    return controller, client
