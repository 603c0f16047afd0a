"""Composition root: wires config, stores, dispatcher and scheduler.

Data directory layout:
    {data_dir}/
        bot_config.json        — BotConfig
        afk_status.json        — AbsenceRegistry records
        scheduled_tasks.json   — TaskScheduler entries
"""

from __future__ import annotations

import asyncio
import time
from pathlib import Path
from typing import Callable

from loguru import logger

from chatgate.agent.absence import AbsenceRegistry, AbsenceStorage
from chatgate.agent.dispatcher import EventDispatcher
from chatgate.agent.governor import RateGovernor
from chatgate.bus.queue import MessageBus
from chatgate.channels.base import BaseChannel
from chatgate.commands import CommandRegistry, default_commands
from chatgate.config.store import BotConfig
from chatgate.cron.scheduler import TaskScheduler
from chatgate.cron.tasks import DailyGreetingTask
from chatgate.providers.base import ReasoningProvider
from chatgate.utils.helpers import ensure_dir


class ChatGate:
    """A running bot: one channel, one provider, one dispatcher."""

    def __init__(
        self,
        data_dir: Path,
        channel: BaseChannel,
        provider: ReasoningProvider,
        config: BotConfig | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.data_dir = ensure_dir(data_dir)
        self.config = config or BotConfig(self.data_dir / "bot_config.json")
        # Fatal when missing: nothing can be routed without the bot's identity
        self.config.require("botIdentity")

        self.bus: MessageBus = channel.bus
        self.channel = channel
        self.provider = provider
        self.commands = CommandRegistry(default_commands())
        self.absence = AbsenceRegistry(AbsenceStorage(self.data_dir / "afk_status.json"), clock=clock)
        self.governor = RateGovernor(
            enforce_spam=lambda: bool(self.config.get("antiSpamGlobal")),
            clock=clock,
        )
        self.dispatcher = EventDispatcher(
            config=self.config,
            channel=channel,
            provider=provider,
            commands=self.commands,
            absence=self.absence,
            governor=self.governor,
            clock=clock,
        )
        self.scheduler = TaskScheduler(
            self.config,
            handlers=[DailyGreetingTask(provider, channel)],
            store_path=self.data_dir / "scheduled_tasks.json",
            clock=clock,
        )

    async def run(self) -> None:
        """Start the channel and scheduler, then dispatch until stop()."""
        await self.channel.start()
        self.scheduler.start()
        logger.info(f"ChatGate running as {self.config.get('botIdentity')} ({len(self.commands)} commands)")
        try:
            await self.dispatcher.run(self.bus)
        finally:
            await self.scheduler.stop()
            await self.channel.stop()

    def stop(self) -> None:
        self.dispatcher.stop()

    async def run_until(self, stop_event: asyncio.Event) -> None:
        """run(), stopping when ``stop_event`` is set."""
        runner = asyncio.create_task(self.run())
        await stop_event.wait()
        self.stop()
        await runner
