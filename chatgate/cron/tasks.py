"""Built-in scheduled tasks."""

from __future__ import annotations

from typing import Any

from loguru import logger

from chatgate.channels.base import BaseChannel, safe_send
from chatgate.cron.scheduler import BaseTask
from chatgate.providers.base import ReasoningProvider

GREETING_PROMPT = "Write a friendly good-morning greeting for the members of this chat."


class DailyGreetingTask(BaseTask):
    """Posts a generated greeting to ``metadata["chat_id"]``."""

    name = "dailyGreeting"
    description = "Sends a greeting to a chat."

    def __init__(self, provider: ReasoningProvider, channel: BaseChannel) -> None:
        self._provider = provider
        self._channel = channel

    async def execute(self, metadata: dict[str, Any]) -> None:
        chat_id = metadata.get("chat_id")
        if not chat_id:
            logger.warning("Task: dailyGreeting has no chat_id, skipping")
            return

        greeting = await self._provider.get_response(
            metadata.get("prompt", GREETING_PROMPT),
            identity_hint="system_task_daily_greeting",
            channel_hint="scheduled",
            verbose_errors=False,
        )
        if not greeting:
            logger.warning(f"Task: no greeting generated for {chat_id}")
            return
        if await safe_send(self._channel, chat_id, greeting):
            logger.info(f"Task: greeting sent to {chat_id}")
