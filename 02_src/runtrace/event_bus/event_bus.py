"""EventBus implementation for fanning out channel messages."""

import asyncio
from typing import Awaitable, Callable, Protocol

from ..logging_config import get_logger
from ..models import ChannelMessage, MessageType
from ..storage import IStorage

logger = get_logger(__name__)


TopicHandler = Callable[[ChannelMessage], Awaitable[None]]


class IEventBus(Protocol):
    """In-memory pub/sub for sandbox channel messages."""

    def subscribe(self, topic: MessageType, handler: TopicHandler) -> None:
        """Subscribe a handler to a message type."""
        ...

    async def publish(self, message: ChannelMessage) -> None:
        """Publish a ChannelMessage: calls subscriber callbacks, archives to Storage."""
        ...


class EventBus:
    """In-memory pub/sub event bus keyed by channel message type."""

    def __init__(self, storage: IStorage | None = None):
        self._storage = storage
        self._subscribers: dict[MessageType, list[TopicHandler]] = {
            MessageType.PROCESS_EVENT: [],
            MessageType.LOG: [],
            MessageType.DONE: [],
        }

    def subscribe(self, topic: MessageType, handler: TopicHandler) -> None:
        """Subscribe a handler to a message type."""
        self._subscribers[topic].append(handler)

    async def publish(self, message: ChannelMessage) -> None:
        """Publish a ChannelMessage: calls subscriber callbacks, archives to Storage."""
        handlers = self._subscribers.get(message.type, [])

        # Call all handlers concurrently
        if handlers:
            results = await asyncio.gather(
                *[handler(message) for handler in handlers],
                return_exceptions=True,
            )

            # Log any exceptions
            for i, result in enumerate(results):
                if isinstance(result, Exception):
                    logger.error(
                        "Error in %s handler %s: %s",
                        message.type.value,
                        i,
                        result,
                        extra={"run_id": message.run_id},
                    )

        # Archive
        if self._storage:
            await self._storage.save_channel_message(message)
