"""
In-memory storage backends.

Dictionary-backed implementations of every messaging repository. They enforce
the same constraints the hosted schema enforces (unique participant ids,
unique '(conversation, user)' membership, unique block pairs, messages only
from current participants when a participant store is attached) and publish
row changes to an optional 'InMemoryChangeFeed', which makes them suitable for
tests, demos and local development without a backend.
"""

from collections import defaultdict

from messaging_toolkit.errors import TransientStoreError
from messaging_toolkit.messaging_database.data_models.block import BlockDatabase, BlockRelation
from messaging_toolkit.messaging_database.data_models.conversation import Conversation, ConversationDatabase
from messaging_toolkit.messaging_database.data_models.message import Message, MessageDatabase
from messaging_toolkit.messaging_database.data_models.participant import Participant, ParticipantDatabase
from messaging_toolkit.messaging_database.data_models.user import User, UserDatabase
from messaging_toolkit.realtime.base import ChangeKind, ConversationChangedEvent, MessageInsertedEvent
from messaging_toolkit.realtime.in_memory import InMemoryChangeFeed
from messaging_toolkit.utils.database import generate_uid
from messaging_toolkit.utils.time import get_current_timestamp


class InMemoryUserDatabase(UserDatabase):
    def __init__(self, users: list[User] | None = None) -> None:
        self._users: dict[str, User] = {}
        for user in users or []:
            self.add_user(user)

    def add_user(self, user: User) -> User:
        if any(u.username.lower() == user.username.lower() and u.id != user.id for u in self._users.values()):
            raise ValueError(f"Username {user.username!r} is already taken")
        self._users[user.id] = user
        return user

    async def get_user_by_id(self, user_id: str) -> User | None:
        return self._users.get(user_id)

    async def get_user_by_username(self, username: str) -> User | None:
        return next((u for u in self._users.values() if u.username == username), None)

    async def search_users(self, query: str, exclude_user_id: str | None = None, limit: int = 20) -> list[User]:
        needle = query.lower()
        matches = [
            user
            for user in self._users.values()
            if needle in user.username.lower() and user.id != exclude_user_id
        ]
        return sorted(matches, key=lambda u: u.username.lower())[:limit]


class InMemoryConversationDatabase(ConversationDatabase):
    def __init__(self, change_feed: InMemoryChangeFeed | None = None) -> None:
        self._conversations: dict[str, Conversation] = {}
        self.change_feed = change_feed

    async def create_conversation(self, last_message: str | None = None) -> Conversation:
        now = get_current_timestamp()
        conversation = Conversation(id=generate_uid(), create_timestamp=now, update_timestamp=now, last_message=last_message)
        self._conversations[conversation.id] = conversation
        await self._publish(conversation, ChangeKind.INSERT)
        return conversation

    async def get_conversation_by_id(self, conversation_id: str) -> Conversation | None:
        return self._conversations.get(conversation_id)

    async def get_conversations_by_ids(self, conversation_ids: list[str]) -> list[Conversation]:
        return [self._conversations[cid] for cid in conversation_ids if cid in self._conversations]

    async def update_conversation_preview(self, conversation_id: str, last_message: str) -> Conversation:
        conversation = self._conversations.get(conversation_id)
        if conversation is None:
            raise TransientStoreError(f"Conversation {conversation_id} not found")
        updated = conversation.model_copy(
            update={"last_message": last_message, "update_timestamp": get_current_timestamp()}
        )
        self._conversations[conversation_id] = updated
        await self._publish(updated, ChangeKind.UPDATE)
        return updated

    async def _publish(self, conversation: Conversation, kind: ChangeKind) -> None:
        if self.change_feed is not None:
            await self.change_feed.publish_conversation_changed(
                ConversationChangedEvent(conversation_id=conversation.id, kind=kind, conversation=conversation)
            )


class InMemoryParticipantDatabase(ParticipantDatabase):
    """
    Participant rows keyed by their table-wide id.

    'assign_ids' selects who picks ids: when False (the legacy schema) callers
    must supply them and a duplicate id is rejected like a primary-key
    violation; when True the store numbers rows itself and ignores supplied ids.
    """

    def __init__(self, assign_ids: bool = False) -> None:
        self._rows: dict[int, Participant] = {}
        self.assign_ids = assign_ids

    async def get_conversation_ids_by_user_id(self, user_id: str) -> list[str]:
        return [row.conversation_id for _, row in sorted(self._rows.items()) if row.user_id == user_id]

    async def get_participants_by_conversation_id(self, conversation_id: str) -> list[Participant]:
        return [row for _, row in sorted(self._rows.items()) if row.conversation_id == conversation_id]

    async def next_participant_seq_id(self) -> int:
        return max(self._rows, default=0) + 1

    async def add_participants(self, participants: list[Participant]) -> list[Participant]:
        next_id = max(self._rows, default=0) + 1
        staged: dict[int, Participant] = {}
        for participant in participants:
            if self.assign_ids:
                row_id = next_id
                next_id += 1
            elif participant.id is None:
                raise TransientStoreError("Participant id is required")
            else:
                row_id = participant.id
            if row_id in staged or row_id in self._rows:
                raise TransientStoreError(f"Duplicate participant id {row_id}")
            staged[row_id] = participant.model_copy(update={"id": row_id})

        memberships = {(row.conversation_id, row.user_id) for row in self._rows.values()}
        for participant in staged.values():
            key = (participant.conversation_id, participant.user_id)
            if key in memberships:
                raise TransientStoreError(f"User {participant.user_id} already in {participant.conversation_id}")
            memberships.add(key)

        self._rows.update(staged)
        return list(staged.values())


class InMemoryMessageDatabase(MessageDatabase):
    def __init__(
        self,
        change_feed: InMemoryChangeFeed | None = None,
        participant_db: ParticipantDatabase | None = None,
    ) -> None:
        self._messages: dict[str, list[Message]] = defaultdict(list)
        self.change_feed = change_feed
        self.participant_db = participant_db

    async def create_message(self, conversation_id: str, sender_id: str, content: str) -> Message:
        if self.participant_db is not None:
            participants = await self.participant_db.get_participants_by_conversation_id(conversation_id)
            if sender_id not in {p.user_id for p in participants}:
                raise TransientStoreError(f"User {sender_id} is not a participant of {conversation_id}")
        thread = self._messages[conversation_id]
        timestamp = get_current_timestamp()
        if thread:
            timestamp = max(timestamp, thread[-1].create_timestamp)
        message = Message(
            id=generate_uid(),
            conversation_id=conversation_id,
            sender_id=sender_id,
            content=content,
            create_timestamp=timestamp,
        )
        thread.append(message)
        if self.change_feed is not None:
            await self.change_feed.publish_message_inserted(MessageInsertedEvent(message=message))
        return message

    async def get_messages_by_conversation_id(self, conversation_id: str) -> list[Message]:
        return list(self._messages.get(conversation_id, []))

    async def get_latest_message(self, conversation_id: str) -> Message | None:
        thread = self._messages.get(conversation_id)
        return thread[-1] if thread else None


class InMemoryBlockDatabase(BlockDatabase):
    def __init__(self) -> None:
        self._blocks: list[BlockRelation] = []

    async def create_block(self, block: BlockRelation) -> bool:
        if block in self._blocks:
            return False
        self._blocks.append(block)
        return True

    async def delete_block(self, blocker_id: str, blocked_id: str) -> bool:
        block = BlockRelation(blocker_id=blocker_id, blocked_id=blocked_id)
        if block not in self._blocks:
            return False
        self._blocks.remove(block)
        return True

    async def is_blocked(self, blocker_id: str, blocked_id: str) -> bool:
        return BlockRelation(blocker_id=blocker_id, blocked_id=blocked_id) in self._blocks

    async def get_blocked_ids(self, blocker_id: str) -> list[str]:
        return [b.blocked_id for b in self._blocks if b.blocker_id == blocker_id]

    async def get_blocker_ids(self, blocked_id: str) -> list[str]:
        return [b.blocker_id for b in self._blocks if b.blocked_id == blocked_id]
