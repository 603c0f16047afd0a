"""Mock channel for tests and local harnesses.

Provides programmatic event injection and send capture. Injected events
go through the same _handle_message() path as a real transport would use,
so the dispatcher sees them exactly like live traffic.

Usage:
    mock = MockChannel(bus=bus)
    await mock.inject_message("hey bot!", sender_id="user_1", mentions={"bot"})
    sent = await mock.wait_for_send(timeout=5.0)
"""

from __future__ import annotations

import asyncio
import uuid
from dataclasses import dataclass

from loguru import logger

from chatgate.bus.events import ConversationEvent, QuotedMessage
from chatgate.bus.queue import MessageBus
from chatgate.channels.base import BaseChannel


@dataclass
class SentMessage:
    """One captured outbound send."""

    chat_id: str
    text: str
    quoted: ConversationEvent | None = None


class MockChannel(BaseChannel):
    """Programmatic channel that records every send.

    Set ``fail_sends`` to make send() report delivery failure.
    """

    name = "mock"

    def __init__(self, bus: MessageBus | None = None) -> None:
        super().__init__(bus or MessageBus())
        self._sent: list[SentMessage] = []
        self._sent_event: asyncio.Event = asyncio.Event()
        self.fail_sends = False

    # ── Lifecycle ─────────────────────────────────────────

    async def start(self) -> None:
        self._running = True
        logger.debug("MockChannel started")

    async def stop(self) -> None:
        self._running = False
        logger.debug("MockChannel stopped")

    async def send(
        self,
        chat_id: str,
        text: str,
        quoted: ConversationEvent | None = None,
    ) -> bool:
        if self.fail_sends:
            return False
        self._sent.append(SentMessage(chat_id=chat_id, text=text, quoted=quoted))
        self._sent_event.set()
        return True

    # ── Event injection ───────────────────────────────────

    async def inject_message(
        self,
        text: str,
        sender_id: str,
        chat_id: str = "lab_group",
        *,
        is_group: bool = True,
        mentions: set[str] | None = None,
        quoted: QuotedMessage | None = None,
        sender_name: str | None = None,
        message_id: str | None = None,
    ) -> ConversationEvent:
        """Build an event and push it through _handle_message()."""
        event = ConversationEvent(
            sender_id=sender_id,
            chat_id=chat_id,
            text=text,
            is_group=is_group,
            mentioned_ids=set(mentions or ()),
            quoted=quoted,
            message_id=message_id or str(uuid.uuid4()),
            sender_name=sender_name,
        )
        await self._handle_message(event)
        return event

    # ── Send capture ──────────────────────────────────────

    async def wait_for_send(self, timeout: float = 5.0) -> SentMessage | None:
        """Wait for the next send. None on timeout."""
        start_count = len(self._sent)
        self._sent_event.clear()
        try:
            await asyncio.wait_for(self._sent_event.wait(), timeout=timeout)
        except asyncio.TimeoutError:
            pass
        if len(self._sent) > start_count:
            return self._sent[start_count]
        return None

    def get_sent(self) -> list[SentMessage]:
        return list(self._sent)

    def get_last_sent(self) -> SentMessage | None:
        return self._sent[-1] if self._sent else None

    def clear_sent(self) -> None:
        self._sent.clear()
        self._sent_event.clear()

    @property
    def sent_count(self) -> int:
        return len(self._sent)
