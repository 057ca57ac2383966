"""
Block-aware permission check for direct messages.

'RelationshipGate' turns the directional block list into a symmetric verdict:
two users may message each other only when neither has blocked the other.
When both directions are blocked, the verdict reports 'blocked_by_self' so the
user is told about the block they can undo themselves.

The gate also owns block management (block, unblock, list) since blocking is
the only way the verdict changes.
"""

from enum import StrEnum

from loguru import logger
from pydantic import BaseModel

from messaging_toolkit.messaging_database.data_models.block import BlockDatabase, BlockRelation


class GateReason(StrEnum):
    ALLOWED = "allowed"
    BLOCKED_BY_SELF = "blocked_by_self"
    BLOCKED_BY_OTHER = "blocked_by_other"


class GateVerdict(BaseModel):
    allowed: bool
    reason: GateReason

    @classmethod
    def allow(cls) -> "GateVerdict":
        return cls(allowed=True, reason=GateReason.ALLOWED)

    def describe(self) -> str:
        match self.reason:
            case GateReason.BLOCKED_BY_SELF:
                return "You have blocked this user. Unblock them to send messages."
            case GateReason.BLOCKED_BY_OTHER:
                return "This user has blocked you and you cannot send them messages."
            case _:
                return "Messaging allowed."


class RelationshipGate:
    def __init__(self, block_db: BlockDatabase) -> None:
        self.block_db = block_db

    async def can_message(self, self_id: str, other_id: str) -> GateVerdict:
        if await self.block_db.is_blocked(self_id, other_id):
            return GateVerdict(allowed=False, reason=GateReason.BLOCKED_BY_SELF)
        if await self.block_db.is_blocked(other_id, self_id):
            return GateVerdict(allowed=False, reason=GateReason.BLOCKED_BY_OTHER)
        return GateVerdict.allow()

    async def block_user(self, self_id: str, other_id: str) -> None:
        if self_id == other_id:
            raise ValueError("Cannot block yourself")
        created = await self.block_db.create_block(BlockRelation(blocker_id=self_id, blocked_id=other_id))
        if not created:
            logger.warning(f"User {other_id} is already blocked by {self_id}")
            return
        logger.info(f"User {self_id} blocked {other_id}")

    async def unblock_user(self, self_id: str, other_id: str) -> None:
        removed = await self.block_db.delete_block(self_id, other_id)
        if removed:
            logger.info(f"User {self_id} unblocked {other_id}")

    async def get_blocked_ids(self, user_id: str) -> list[str]:
        return await self.block_db.get_blocked_ids(user_id)

    async def get_restricted_ids(self, user_id: str) -> set[str]:
        """Users 'user_id' may not exchange messages with, in either direction."""
        return set(await self.block_db.get_blocked_ids(user_id)) | set(await self.block_db.get_blocker_ids(user_id))
