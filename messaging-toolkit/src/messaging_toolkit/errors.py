"""
Error taxonomy for the messaging core.

Every failure the core surfaces to its caller derives from 'MessagingError' so
screens can catch one base class and branch on the concrete type:

    'NotAuthenticatedError' - no current user; all operations fail closed.
    'BlockedError'          - the relationship gate denied messaging. Not
                              retryable until one side unblocks.
    'UserNotFoundError'     - a handle did not resolve to a user.
    'TransientStoreError'   - a network or storage failure. Retryable by the
                              user (manual retry, re-open).
    'ResolutionFailedError' - a 'TransientStoreError' raised while finding or
                              creating a conversation.
    'InvalidMessageError'   - an empty or over-long message body.
    'ThreadStateError'      - an operation was attempted in a thread state
                              that does not allow it.

Two conversations created for the same pair by a race are not an error: they
are reported through 'RaceDuplicate' records and logged.
"""

from typing import TYPE_CHECKING

from pydantic import BaseModel

if TYPE_CHECKING:
    from messaging_toolkit.gate.relationship_gate import GateVerdict


class MessagingError(Exception):
    """Base class for all errors surfaced by the messaging core."""


class NotAuthenticatedError(MessagingError):
    def __init__(self, message: str = "Not authenticated") -> None:
        super().__init__(message)


class BlockedError(MessagingError):
    """Raised when the relationship gate denies messaging between two users."""

    def __init__(self, verdict: "GateVerdict") -> None:
        self.verdict = verdict
        super().__init__(verdict.describe())


class UserNotFoundError(MessagingError):
    def __init__(self, username: str) -> None:
        self.username = username
        super().__init__(f"User {username!r} not found")


class TransientStoreError(MessagingError):
    """A read or write against the backing store failed; the caller may retry."""


class ResolutionFailedError(TransientStoreError):
    pass


class InvalidMessageError(MessagingError, ValueError):
    pass


class ThreadStateError(MessagingError):
    pass


class RaceDuplicate(BaseModel):
    """More than one conversation exists for the same unordered user pair."""

    user_ids: tuple[str, str]
    conversation_ids: list[str]
    kept_conversation_id: str
