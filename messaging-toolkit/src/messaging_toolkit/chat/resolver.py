"""
Conversation resolution for 1:1 chats.

'ConversationResolver' maps an unordered pair of users to one conversation id,
creating the conversation on first contact. Creation is two writes: the
conversation row, then both participant rows in a single batch.

Participant ids come from one sequence shared by the whole participant table.
In sequential mode the resolver reads the current maximum, adds one, and
inserts the pair as 'max + 1' and 'max + 2'. Two first-contact sends from both
ends of a pair can interleave between the lookup and the insert; the outcome
is either two conversations for the pair (the lookup race) or a rejected
participant batch that leaves an orphaned conversation (the id race). Both are
accepted: duplicates are reported through 'RaceDuplicate' and lookups always
settle on the earliest conversation, orphans are logged and left alone.
"""

from loguru import logger

from messaging_toolkit.errors import RaceDuplicate, ResolutionFailedError, TransientStoreError
from messaging_toolkit.messaging_database.data_models.conversation import ConversationDatabase
from messaging_toolkit.messaging_database.data_models.participant import Participant, ParticipantDatabase


class ConversationResolver:
    def __init__(
        self,
        conversation_db: ConversationDatabase,
        participant_db: ParticipantDatabase,
        sequential_participant_ids: bool = True,
    ) -> None:
        self.conversation_db = conversation_db
        self.participant_db = participant_db
        self.sequential_participant_ids = sequential_participant_ids

    async def find_existing(self, self_id: str, other_id: str) -> str | None:
        """Return the conversation shared by the pair without creating one."""
        self._check_pair(self_id, other_id)
        try:
            shared = await self._shared_conversation_ids(self_id, other_id)
            if not shared:
                return None
            if len(shared) == 1:
                return shared[0]
            return (await self._settle_duplicates(self_id, other_id, shared)).kept_conversation_id
        except TransientStoreError as exc:
            raise ResolutionFailedError(f"Could not look up conversation for {self_id} and {other_id}") from exc

    async def resolve_or_create(self, self_id: str, other_id: str) -> str:
        existing = await self.find_existing(self_id, other_id)
        if existing is not None:
            return existing
        return await self._create(self_id, other_id)

    async def find_duplicates(self, self_id: str, other_id: str) -> RaceDuplicate | None:
        """Report the pair's conversations when more than one exists."""
        self._check_pair(self_id, other_id)
        try:
            shared = await self._shared_conversation_ids(self_id, other_id)
            if len(shared) < 2:
                return None
            return await self._settle_duplicates(self_id, other_id, shared)
        except TransientStoreError as exc:
            raise ResolutionFailedError(f"Could not look up conversations for {self_id} and {other_id}") from exc

    async def _create(self, self_id: str, other_id: str) -> str:
        try:
            conversation = await self.conversation_db.create_conversation()
        except TransientStoreError as exc:
            raise ResolutionFailedError(f"Could not create conversation for {self_id} and {other_id}") from exc

        try:
            if self.sequential_participant_ids:
                first_id = await self.participant_db.next_participant_seq_id()
                ids: list[int | None] = [first_id, first_id + 1]
            else:
                ids = [None, None]
            await self.participant_db.add_participants(
                [
                    Participant(id=ids[0], conversation_id=conversation.id, user_id=self_id),
                    Participant(id=ids[1], conversation_id=conversation.id, user_id=other_id),
                ]
            )
        except TransientStoreError as exc:
            logger.error(f"Conversation {conversation.id} was created but its participants were not; it is orphaned")
            raise ResolutionFailedError(f"Could not add participants to conversation {conversation.id}") from exc

        logger.info(f"Created conversation {conversation.id} for {self_id} and {other_id}")
        return conversation.id

    async def _shared_conversation_ids(self, self_id: str, other_id: str) -> list[str]:
        own = await self.participant_db.get_conversation_ids_by_user_id(self_id)
        if not own:
            return []
        theirs = set(await self.participant_db.get_conversation_ids_by_user_id(other_id))
        return list(dict.fromkeys(cid for cid in own if cid in theirs))

    async def _settle_duplicates(self, self_id: str, other_id: str, shared: list[str]) -> RaceDuplicate:
        conversations = await self.conversation_db.get_conversations_by_ids(shared)
        ordered = sorted(conversations, key=lambda c: (c.create_timestamp, c.id))
        kept = ordered[0].id if ordered else sorted(shared)[0]
        duplicate = RaceDuplicate(
            user_ids=(self_id, other_id),
            conversation_ids=[c.id for c in ordered] or sorted(shared),
            kept_conversation_id=kept,
        )
        logger.warning(f"{len(shared)} conversations exist for {self_id} and {other_id}; using {kept}")
        return duplicate

    @staticmethod
    def _check_pair(self_id: str, other_id: str) -> None:
        if self_id == other_id:
            raise ValueError("A conversation needs two different users")
