"""Inbound event queue between transports and the dispatcher."""

from __future__ import annotations

import asyncio

from loguru import logger

from chatgate.bus.events import ConversationEvent


class MessageBus:
    """FIFO of inbound events. Transports publish, the dispatcher consumes."""

    def __init__(self) -> None:
        self._inbound: asyncio.Queue[ConversationEvent] = asyncio.Queue()

    async def publish_inbound(self, event: ConversationEvent) -> None:
        await self._inbound.put(event)
        logger.debug(f"Bus: inbound from {event.sender_id} in {event.chat_id} (depth {self._inbound.qsize()})")

    async def consume_inbound(self) -> ConversationEvent:
        return await self._inbound.get()

    @property
    def inbound_size(self) -> int:
        return self._inbound.qsize()
