"""
Messaging controller (Facade).

'MessagingController' is the single entry point screens use. It owns the
pluggable repositories, the change feed and the session provider, builds the
shared 'RelationshipGate' and 'ConversationResolver', and hands out one
'ThreadController' per open chat screen and one 'ConversationListAggregator'
per inbox screen. Each of those holds its own change-feed subscriptions and
must be closed when its screen goes away.

It also carries the small user-facing operations around messaging that do not
need a state machine: user search for starting a new chat, and block
management by handle.
"""

from loguru import logger

from messaging_toolkit.chat.inbox import ConversationListAggregator
from messaging_toolkit.chat.resolver import ConversationResolver
from messaging_toolkit.chat.thread import ThreadController
from messaging_toolkit.config import MessagingSettings
from messaging_toolkit.errors import UserNotFoundError
from messaging_toolkit.gate.relationship_gate import GateVerdict, RelationshipGate
from messaging_toolkit.messaging_database.data_models.block import BlockDatabase
from messaging_toolkit.messaging_database.data_models.conversation import ConversationDatabase
from messaging_toolkit.messaging_database.data_models.message import MessageDatabase
from messaging_toolkit.messaging_database.data_models.participant import ParticipantDatabase
from messaging_toolkit.messaging_database.data_models.user import User, UserDatabase
from messaging_toolkit.realtime.base import ChangeFeed
from messaging_toolkit.session.base import SessionProvider

DEFAULT_SEARCH_LIMIT = 20


class MessagingController:
    def __init__(
        self,
        session: SessionProvider,
        user_db: UserDatabase,
        conversation_db: ConversationDatabase,
        participant_db: ParticipantDatabase,
        message_db: MessageDatabase,
        block_db: BlockDatabase,
        change_feed: ChangeFeed,
        settings: MessagingSettings | None = None,
    ):
        self.session = session
        self.user_db = user_db
        self.conversation_db = conversation_db
        self.participant_db = participant_db
        self.message_db = message_db
        self.block_db = block_db
        self.change_feed = change_feed
        self.settings = settings or MessagingSettings()

        self.gate = RelationshipGate(block_db)
        self.resolver = ConversationResolver(
            conversation_db,
            participant_db,
            sequential_participant_ids=self.settings.sequential_participant_ids,
        )

    async def current_user_id(self) -> str | None:
        return await self.session.get_current_user_id()

    def new_thread(self) -> ThreadController:
        return ThreadController(
            session=self.session,
            user_db=self.user_db,
            gate=self.gate,
            resolver=self.resolver,
            message_db=self.message_db,
            conversation_db=self.conversation_db,
            change_feed=self.change_feed,
            max_message_length=self.settings.max_message_length,
        )

    async def open_thread(self, username: str) -> ThreadController:
        thread = self.new_thread()
        await thread.open(username)
        return thread

    async def open_inbox(self) -> ConversationListAggregator:
        inbox = ConversationListAggregator(
            session=self.session,
            user_db=self.user_db,
            participant_db=self.participant_db,
            conversation_db=self.conversation_db,
            message_db=self.message_db,
            gate=self.gate,
            change_feed=self.change_feed,
            placeholder=self.settings.inbox_placeholder,
        )
        await inbox.start()
        return inbox

    async def search_users(self, query: str, limit: int = DEFAULT_SEARCH_LIMIT) -> list[User]:
        """Find users to start a chat with; never returns the current user."""
        user_id = await self.session.require_user_id()
        query = query.strip()
        if not query:
            return []
        return await self.user_db.search_users(query, exclude_user_id=user_id, limit=limit)

    async def can_message(self, username: str) -> GateVerdict:
        user_id = await self.session.require_user_id()
        other = await self._require_user(username)
        return await self.gate.can_message(user_id, other.id)

    async def block_user(self, username: str) -> None:
        user_id = await self.session.require_user_id()
        other = await self._require_user(username)
        await self.gate.block_user(user_id, other.id)

    async def unblock_user(self, username: str) -> None:
        user_id = await self.session.require_user_id()
        other = await self._require_user(username)
        await self.gate.unblock_user(user_id, other.id)

    async def blocked_users(self) -> list[User]:
        user_id = await self.session.require_user_id()
        users = []
        for blocked_id in await self.gate.get_blocked_ids(user_id):
            user = await self.user_db.get_user_by_id(blocked_id)
            if user is None:
                logger.warning(f"Blocked user {blocked_id} has no profile")
                continue
            users.append(user)
        return users

    async def _require_user(self, username: str) -> User:
        user = await self.user_db.get_user_by_username(username)
        if user is None:
            raise UserNotFoundError(username)
        return user
