"""
Direct-messaging core.

Screens normally go through the facade:

    from messaging_toolkit.chat import MessagingController

    controller = MessagingController(session, user_db, conversation_db, participant_db, message_db, block_db, feed)
    thread = await controller.open_thread("bob")
    await thread.send("hello")
    thread.close()

The components behind it can also be used on their own:

    from messaging_toolkit.chat import ConversationResolver, ThreadController, ConversationListAggregator
"""

from messaging_toolkit.chat.controller import MessagingController
from messaging_toolkit.chat.inbox import ConversationListAggregator, InboxEntry, format_activity_time
from messaging_toolkit.chat.resolver import ConversationResolver
from messaging_toolkit.chat.thread import PendingSend, SendStatus, ThreadController, ThreadState

__all__ = [
    "ConversationListAggregator",
    "ConversationResolver",
    "InboxEntry",
    "MessagingController",
    "PendingSend",
    "SendStatus",
    "ThreadController",
    "ThreadState",
    "format_activity_time",
]
