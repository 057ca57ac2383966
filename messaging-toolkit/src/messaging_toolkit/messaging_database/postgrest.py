"""
PostgREST storage backends (Supabase REST API).

Every repository talks JSON over HTTPS to '<SUPABASE_URL>/rest/v1/<table>'
through one shared 'PostgRESTClient' built on 'httpx.AsyncClient'. The tables
are the ones the mobile app already uses:

    profiles          - user profiles
    a_chat            - conversations, 'last_message' holds the preview
    a_chat_users      - participants, integer 'id' from a table-wide sequence
    a_chat_messages   - messages, body in 'message'
    blocked_users     - block relations

Rows come back loosely typed (ISO timestamps, nullable flags, integer or uuid
ids). Each table has a '*Row' DTO that validates and coerces a raw row at this
boundary and converts it into the core data model, so nothing past this module
ever sees a raw dict.

Transport failures and non-2xx responses surface as 'PostgRESTError', a
'TransientStoreError' carrying the Postgres error code when one is returned.

The conversation and message repositories accept an optional
'InMemoryChangeFeed' and publish every successful insert or update to it, so
screens in this process see their own writes live.
"""

from typing import Any

import httpx
from loguru import logger
from pydantic import BaseModel, field_validator

from messaging_toolkit.config import MessagingSettings
from messaging_toolkit.errors import TransientStoreError
from messaging_toolkit.messaging_database.data_models.block import BlockDatabase, BlockRelation
from messaging_toolkit.messaging_database.data_models.conversation import Conversation, ConversationDatabase
from messaging_toolkit.messaging_database.data_models.message import Message, MessageDatabase
from messaging_toolkit.messaging_database.data_models.participant import Participant, ParticipantDatabase
from messaging_toolkit.messaging_database.data_models.user import User, UserDatabase
from messaging_toolkit.realtime.base import ChangeKind, ConversationChangedEvent, MessageInsertedEvent
from messaging_toolkit.realtime.in_memory import InMemoryChangeFeed
from messaging_toolkit.session.base import SessionProvider
from messaging_toolkit.utils.time import parse_timestamp

PROFILES_TABLE = "profiles"
CONVERSATIONS_TABLE = "a_chat"
PARTICIPANTS_TABLE = "a_chat_users"
MESSAGES_TABLE = "a_chat_messages"
BLOCKS_TABLE = "blocked_users"

UNIQUE_VIOLATION = "23505"
UNDEFINED_TABLE = "42P01"


class PostgRESTError(TransientStoreError):
    def __init__(self, message: str, status_code: int | None = None, code: str | None = None) -> None:
        self.status_code = status_code
        self.code = code
        super().__init__(message)


class PostgRESTClient:
    """
    Thin async wrapper over the PostgREST and auth endpoints of a Supabase project.

    'access_token' is the signed-in user's JWT; without one requests run with
    the anonymous key only. 'transport' lets tests plug in an
    'httpx.MockTransport'.
    """

    def __init__(
        self,
        base_url: str,
        api_key: str,
        access_token: str | None = None,
        timeout: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.access_token = access_token
        self._client = httpx.AsyncClient(
            base_url=base_url.rstrip("/"),
            headers={"apikey": api_key, "Authorization": f"Bearer {access_token or api_key}"},
            timeout=timeout,
            transport=transport,
        )

    @classmethod
    def from_settings(
        cls,
        settings: MessagingSettings,
        access_token: str | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> "PostgRESTClient":
        if not settings.supabase_url or not settings.supabase_anon_key:
            raise ValueError("SUPABASE_URL and SUPABASE_ANON_KEY are required for the PostgREST backend")
        return cls(
            settings.supabase_url,
            settings.supabase_anon_key,
            access_token=access_token,
            timeout=settings.http_timeout_seconds,
            transport=transport,
        )

    async def aclose(self) -> None:
        await self._client.aclose()

    async def select(self, table: str, params: dict[str, str]) -> list[dict[str, Any]]:
        response = await self._request("GET", f"/rest/v1/{table}", params={"select": "*", **params})
        return response.json()

    async def insert(self, table: str, rows: dict[str, Any] | list[dict[str, Any]]) -> list[dict[str, Any]]:
        response = await self._request(
            "POST", f"/rest/v1/{table}", json=rows, headers={"Prefer": "return=representation"}
        )
        return response.json()

    async def update(self, table: str, filters: dict[str, str], values: dict[str, Any]) -> list[dict[str, Any]]:
        response = await self._request(
            "PATCH", f"/rest/v1/{table}", params=filters, json=values, headers={"Prefer": "return=representation"}
        )
        return response.json()

    async def delete(self, table: str, filters: dict[str, str]) -> list[dict[str, Any]]:
        response = await self._request(
            "DELETE", f"/rest/v1/{table}", params=filters, headers={"Prefer": "return=representation"}
        )
        return response.json()

    async def get_auth_user(self) -> dict[str, Any] | None:
        """Return the user behind 'access_token', or None when the token is missing or rejected."""
        if not self.access_token:
            return None
        try:
            response = await self._request("GET", "/auth/v1/user")
        except PostgRESTError as exc:
            if exc.status_code in (401, 403):
                return None
            raise
        return response.json()

    async def _request(self, method: str, path: str, **kwargs: Any) -> httpx.Response:
        try:
            response = await self._client.request(method, path, **kwargs)
        except httpx.HTTPError as exc:
            raise PostgRESTError(f"{method} {path} failed: {exc}") from exc
        if response.is_error:
            code, detail = self._error_details(response)
            raise PostgRESTError(
                f"{method} {path} returned {response.status_code}: {detail}",
                status_code=response.status_code,
                code=code,
            )
        return response

    @staticmethod
    def _error_details(response: httpx.Response) -> tuple[str | None, str]:
        try:
            body = response.json()
        except ValueError:
            return None, response.text
        if isinstance(body, dict):
            return body.get("code"), body.get("message") or response.text
        return None, response.text


def _eq(value: str | int) -> str:
    return f"eq.{value}"


def _in(values: list[str]) -> str:
    return "in.(" + ",".join(f'"{v}"' for v in values) + ")"


class ProfileRow(BaseModel):
    id: str
    username: str
    avatar_url: str | None = None
    is_verified: bool | None = None
    bio: str | None = None

    def to_user(self) -> User:
        return User(
            id=self.id,
            username=self.username,
            avatar_url=self.avatar_url,
            is_verified=bool(self.is_verified),
            bio=self.bio,
        )


class ChatRow(BaseModel):
    id: str
    last_message: str | None = None
    created_at: int
    updated_at: int | None = None

    @field_validator("id", mode="before")
    @classmethod
    def _stringify_id(cls, value: Any) -> str:
        return str(value)

    @field_validator("created_at", "updated_at", mode="before")
    @classmethod
    def _parse_timestamp(cls, value: Any) -> int | None:
        return None if value is None else parse_timestamp(value)

    def to_conversation(self) -> Conversation:
        return Conversation(
            id=self.id,
            create_timestamp=self.created_at,
            update_timestamp=self.updated_at if self.updated_at is not None else self.created_at,
            last_message=self.last_message,
        )


class ChatUserRow(BaseModel):
    id: int
    chat_id: str
    user_id: str

    @field_validator("chat_id", mode="before")
    @classmethod
    def _stringify_chat_id(cls, value: Any) -> str:
        return str(value)

    def to_participant(self) -> Participant:
        return Participant(id=self.id, conversation_id=self.chat_id, user_id=self.user_id)


class ChatMessageRow(BaseModel):
    id: str
    chat_id: str
    user_id: str
    message: str | None = None
    created_at: int

    @field_validator("id", "chat_id", mode="before")
    @classmethod
    def _stringify(cls, value: Any) -> str:
        return str(value)

    @field_validator("created_at", mode="before")
    @classmethod
    def _parse_timestamp(cls, value: Any) -> int:
        return parse_timestamp(value)

    def to_message(self) -> Message:
        return Message(
            id=self.id,
            conversation_id=self.chat_id,
            sender_id=self.user_id,
            content=self.message or "",
            create_timestamp=self.created_at,
        )


class PostgRESTUserDatabase(UserDatabase):
    def __init__(self, client: PostgRESTClient) -> None:
        self.client = client

    async def get_user_by_id(self, user_id: str) -> User | None:
        rows = await self.client.select(PROFILES_TABLE, {"id": _eq(user_id), "limit": "1"})
        return ProfileRow.model_validate(rows[0]).to_user() if rows else None

    async def get_user_by_username(self, username: str) -> User | None:
        rows = await self.client.select(PROFILES_TABLE, {"username": _eq(username), "limit": "1"})
        return ProfileRow.model_validate(rows[0]).to_user() if rows else None

    async def search_users(self, query: str, exclude_user_id: str | None = None, limit: int = 20) -> list[User]:
        params = {"username": f"ilike.*{query}*", "order": "username.asc", "limit": str(limit)}
        if exclude_user_id:
            params["id"] = f"neq.{exclude_user_id}"
        rows = await self.client.select(PROFILES_TABLE, params)
        return [ProfileRow.model_validate(row).to_user() for row in rows]


class PostgRESTConversationDatabase(ConversationDatabase):
    def __init__(self, client: PostgRESTClient, change_feed: InMemoryChangeFeed | None = None) -> None:
        self.client = client
        self.change_feed = change_feed

    async def create_conversation(self, last_message: str | None = None) -> Conversation:
        rows = await self.client.insert(CONVERSATIONS_TABLE, {"last_message": last_message})
        if not rows:
            raise PostgRESTError("Failed to create chat")
        conversation = ChatRow.model_validate(rows[0]).to_conversation()
        await self._publish(conversation, ChangeKind.INSERT)
        return conversation

    async def get_conversation_by_id(self, conversation_id: str) -> Conversation | None:
        rows = await self.client.select(CONVERSATIONS_TABLE, {"id": _eq(conversation_id), "limit": "1"})
        return ChatRow.model_validate(rows[0]).to_conversation() if rows else None

    async def get_conversations_by_ids(self, conversation_ids: list[str]) -> list[Conversation]:
        if not conversation_ids:
            return []
        rows = await self.client.select(CONVERSATIONS_TABLE, {"id": _in(conversation_ids)})
        return [ChatRow.model_validate(row).to_conversation() for row in rows]

    async def update_conversation_preview(self, conversation_id: str, last_message: str) -> Conversation:
        rows = await self.client.update(CONVERSATIONS_TABLE, {"id": _eq(conversation_id)}, {"last_message": last_message})
        if not rows:
            raise PostgRESTError(f"Chat {conversation_id} not found", status_code=404)
        conversation = ChatRow.model_validate(rows[0]).to_conversation()
        await self._publish(conversation, ChangeKind.UPDATE)
        return conversation

    async def _publish(self, conversation: Conversation, kind: ChangeKind) -> None:
        if self.change_feed is not None:
            await self.change_feed.publish_conversation_changed(
                ConversationChangedEvent(conversation_id=conversation.id, kind=kind, conversation=conversation)
            )


class PostgRESTParticipantDatabase(ParticipantDatabase):
    def __init__(self, client: PostgRESTClient) -> None:
        self.client = client

    async def get_conversation_ids_by_user_id(self, user_id: str) -> list[str]:
        rows = await self.client.select(PARTICIPANTS_TABLE, {"user_id": _eq(user_id), "order": "id.asc"})
        return [ChatUserRow.model_validate(row).chat_id for row in rows]

    async def get_participants_by_conversation_id(self, conversation_id: str) -> list[Participant]:
        rows = await self.client.select(PARTICIPANTS_TABLE, {"chat_id": _eq(conversation_id), "order": "id.asc"})
        return [ChatUserRow.model_validate(row).to_participant() for row in rows]

    async def next_participant_seq_id(self) -> int:
        rows = await self.client.select(PARTICIPANTS_TABLE, {"select": "id", "order": "id.desc", "limit": "1"})
        return (int(rows[0]["id"]) if rows else 0) + 1

    async def add_participants(self, participants: list[Participant]) -> list[Participant]:
        payload = [
            {"chat_id": p.conversation_id, "user_id": p.user_id} | ({"id": p.id} if p.id is not None else {})
            for p in participants
        ]
        rows = await self.client.insert(PARTICIPANTS_TABLE, payload)
        return [ChatUserRow.model_validate(row).to_participant() for row in rows]


class PostgRESTMessageDatabase(MessageDatabase):
    def __init__(self, client: PostgRESTClient, change_feed: InMemoryChangeFeed | None = None) -> None:
        self.client = client
        self.change_feed = change_feed

    async def create_message(self, conversation_id: str, sender_id: str, content: str) -> Message:
        rows = await self.client.insert(
            MESSAGES_TABLE, {"chat_id": conversation_id, "user_id": sender_id, "message": content}
        )
        if not rows:
            raise PostgRESTError("Message insert returned no row")
        message = ChatMessageRow.model_validate(rows[0]).to_message()
        if self.change_feed is not None:
            await self.change_feed.publish_message_inserted(MessageInsertedEvent(message=message))
        return message

    async def get_messages_by_conversation_id(self, conversation_id: str) -> list[Message]:
        rows = await self.client.select(
            MESSAGES_TABLE, {"chat_id": _eq(conversation_id), "order": "created_at.asc,id.asc"}
        )
        return [ChatMessageRow.model_validate(row).to_message() for row in rows]

    async def get_latest_message(self, conversation_id: str) -> Message | None:
        rows = await self.client.select(
            MESSAGES_TABLE, {"chat_id": _eq(conversation_id), "order": "created_at.desc,id.desc", "limit": "1"}
        )
        return ChatMessageRow.model_validate(rows[0]).to_message() if rows else None


class PostgRESTBlockDatabase(BlockDatabase):
    """
    Block relations in 'blocked_users'.

    Projects created before blocking shipped have no such table; reads then
    behave as if nobody is blocked.
    """

    def __init__(self, client: PostgRESTClient) -> None:
        self.client = client

    async def create_block(self, block: BlockRelation) -> bool:
        try:
            await self.client.insert(BLOCKS_TABLE, block.model_dump())
        except PostgRESTError as exc:
            if exc.code == UNIQUE_VIOLATION:
                return False
            raise
        return True

    async def delete_block(self, blocker_id: str, blocked_id: str) -> bool:
        rows = await self.client.delete(BLOCKS_TABLE, {"blocker_id": _eq(blocker_id), "blocked_id": _eq(blocked_id)})
        return bool(rows)

    async def is_blocked(self, blocker_id: str, blocked_id: str) -> bool:
        rows = await self._select({"blocker_id": _eq(blocker_id), "blocked_id": _eq(blocked_id), "limit": "1"})
        return bool(rows)

    async def get_blocked_ids(self, blocker_id: str) -> list[str]:
        rows = await self._select({"blocker_id": _eq(blocker_id)})
        return [BlockRelation.model_validate(row).blocked_id for row in rows]

    async def get_blocker_ids(self, blocked_id: str) -> list[str]:
        rows = await self._select({"blocked_id": _eq(blocked_id)})
        return [BlockRelation.model_validate(row).blocker_id for row in rows]

    async def _select(self, params: dict[str, str]) -> list[dict[str, Any]]:
        try:
            return await self.client.select(BLOCKS_TABLE, params)
        except PostgRESTError as exc:
            if exc.code == UNDEFINED_TABLE:
                logger.warning(f"{BLOCKS_TABLE} table does not exist yet")
                return []
            raise


class SupabaseSessionProvider(SessionProvider):
    """Resolves the current user from the client's access token; the id is cached after the first lookup."""

    def __init__(self, client: PostgRESTClient) -> None:
        self.client = client
        self._user_id: str | None = None

    async def get_current_user_id(self) -> str | None:
        if self._user_id is None:
            user = await self.client.get_auth_user()
            self._user_id = user.get("id") if user else None
        return self._user_id
