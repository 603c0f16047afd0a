"""Transport channel interface."""

from __future__ import annotations

from abc import ABC, abstractmethod

from loguru import logger

from chatgate.bus.events import ConversationEvent
from chatgate.bus.queue import MessageBus


class BaseChannel(ABC):
    """A transport: feeds events into the bus, delivers outbound text.

    Connection lifecycle, authentication and reconnection are the
    concrete channel's business.
    """

    name: str = "base"

    def __init__(self, bus: MessageBus) -> None:
        self.bus = bus
        self._running = False

    @abstractmethod
    async def start(self) -> None:
        ...

    @abstractmethod
    async def stop(self) -> None:
        ...

    @abstractmethod
    async def send(
        self,
        chat_id: str,
        text: str,
        quoted: ConversationEvent | None = None,
    ) -> bool:
        """Deliver ``text`` to ``chat_id``. Returns False on failure."""
        ...

    async def _handle_message(self, event: ConversationEvent) -> None:
        """Hand a normalized inbound event to the bus."""
        await self.bus.publish_inbound(event)

    @property
    def is_running(self) -> bool:
        return self._running


async def safe_send(
    channel: BaseChannel,
    chat_id: str,
    text: str,
    quoted: ConversationEvent | None = None,
) -> bool:
    """send() that turns exceptions into False. Delivery is never retried."""
    try:
        delivered = await channel.send(chat_id, text, quoted=quoted)
    except Exception as e:
        logger.error(f"Delivery to {chat_id} via {channel.name} failed: {e}")
        return False
    if not delivered:
        logger.warning(f"Delivery to {chat_id} via {channel.name} failed")
    return delivered
