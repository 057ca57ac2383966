"""
In-process change feed.

'InMemoryChangeFeed' is the feed the in-memory databases publish to. It
delivers events synchronously from inside the publishing call, so by the time
an in-memory 'create_message' returns every subscriber has seen the insert.
A failing subscriber is logged and skipped; it never fails the write that
produced the event.
"""

import inspect

from loguru import logger

from messaging_toolkit.realtime.base import (
    Callback,
    ChangeFeed,
    ConversationChangedEvent,
    MessageInsertedEvent,
    Subscription,
)

MESSAGES_TABLE = "messages"
CONVERSATIONS_TABLE = "conversations"


class InMemoryChangeFeed(ChangeFeed):
    def __init__(self) -> None:
        self._subscriptions: dict[tuple[str, str | None], list[Subscription]] = {}

    def subscribe_to_message_inserts(
        self, conversation_id: str | None, callback: Callback[MessageInsertedEvent]
    ) -> Subscription[MessageInsertedEvent]:
        return self._add(Subscription(self, MESSAGES_TABLE, conversation_id, callback))

    def subscribe_to_conversation_changes(
        self, callback: Callback[ConversationChangedEvent]
    ) -> Subscription[ConversationChangedEvent]:
        return self._add(Subscription(self, CONVERSATIONS_TABLE, None, callback))

    def release(self, subscription: Subscription) -> None:
        key = (subscription.table, subscription.topic)
        subs = self._subscriptions.get(key)
        if not subs:
            return
        try:
            subs.remove(subscription)
        except ValueError:
            return
        if not subs:
            self._subscriptions.pop(key, None)

    def subscriber_count(self) -> int:
        return sum(len(subs) for subs in self._subscriptions.values())

    async def publish_message_inserted(self, event: MessageInsertedEvent) -> None:
        targets = [
            *self._subscriptions.get((MESSAGES_TABLE, event.message.conversation_id), []),
            *self._subscriptions.get((MESSAGES_TABLE, None), []),
        ]
        await self._deliver(targets, event)

    async def publish_conversation_changed(self, event: ConversationChangedEvent) -> None:
        await self._deliver(list(self._subscriptions.get((CONVERSATIONS_TABLE, None), [])), event)

    def _add(self, subscription: Subscription) -> Subscription:
        self._subscriptions.setdefault((subscription.table, subscription.topic), []).append(subscription)
        logger.debug(f"Subscribed to {subscription.table} (topic={subscription.topic!r})")
        return subscription

    @staticmethod
    async def _deliver(targets: list[Subscription], event: MessageInsertedEvent | ConversationChangedEvent) -> None:
        for subscription in targets:
            # an earlier callback in this loop may have released it
            if not subscription.active:
                continue
            try:
                result = subscription.callback(event)
                if inspect.isawaitable(result):
                    await result
            except Exception:
                logger.exception(f"Subscriber on {subscription.table} failed to handle {type(event).__name__}")
