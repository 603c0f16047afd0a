"""Event dispatcher: classify → authorize → govern → dispatch.

The pipeline per event:
    1. Admission classifier (absence notices first, then thread shape)
    2. Access control (global mode, then the command's own mode)
    3. Rate governor (commands only: spam escalation + cooldown)
    4. Dispatch: run the command handler, or hand the assembled context
       to the reasoning provider and send its answer back

One event is processed at a time. Anything that goes wrong inside an
event is caught here, logged and reported as Outcome.FAILED; the next
event is processed normally. Governor and absence state changed before
a failure are kept.
"""

from __future__ import annotations

import asyncio
import time
from enum import Enum
from typing import Callable

from loguru import logger

from chatgate.agent.absence import AbsenceRegistry
from chatgate.agent.governor import RateGovernor
from chatgate.agent.routing import (
    AbsenceNotifier,
    AdmissionClassifier,
    AfkNotify,
    AiTurn,
    Command,
    Ignore,
)
from chatgate.agent.security import Roles, check_access
from chatgate.bus.events import ConversationEvent
from chatgate.bus.queue import MessageBus
from chatgate.channels.base import BaseChannel, safe_send
from chatgate.commands import CommandContext, CommandRegistry
from chatgate.config.store import BotConfig
from chatgate.providers.base import UNAVAILABLE_REPLY, ReasoningProvider

COMMAND_DENIED_REPLY = "Sorry, this command is only available to the bot owner."


class Outcome(str, Enum):
    """What happened to one event."""
    IGNORED = "ignored"
    AFK_NOTIFIED = "afk_notified"
    DENIED = "denied"
    BLOCKED = "blocked"
    COMMAND = "command"
    AI_TURN = "ai_turn"
    FAILED = "failed"


class EventDispatcher:
    """Runs every inbound event through the admission pipeline."""

    def __init__(
        self,
        config: BotConfig,
        channel: BaseChannel,
        provider: ReasoningProvider,
        commands: CommandRegistry,
        absence: AbsenceRegistry | None = None,
        governor: RateGovernor | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.config = config
        self.channel = channel
        self.provider = provider
        self.commands = commands
        self.absence = absence or AbsenceRegistry(clock=clock)
        self.governor = governor or RateGovernor(
            enforce_spam=lambda: bool(config.get("antiSpamGlobal")),
            clock=clock,
        )
        self.classifier = AdmissionClassifier(
            absence=self.absence,
            commands=commands,
            config=config,
            notifier=AbsenceNotifier(provider, channel),
            clock=clock,
        )
        self._running = False

    # ── Public entry points ───────────────────────────────────────────

    async def process(self, event: ConversationEvent) -> Outcome:
        """Process one event. Never raises."""
        try:
            return await self._handle(event)
        except Exception as e:
            logger.exception(f"Dispatch: error processing event from {event.sender_id} in {event.chat_id}: {e}")
            return Outcome.FAILED

    async def run(self, bus: MessageBus) -> None:
        """Consume inbound events from ``bus`` until stop() is called."""
        self._running = True
        logger.info("Dispatcher started")
        while self._running:
            try:
                event = await asyncio.wait_for(bus.consume_inbound(), timeout=1.0)
            except asyncio.TimeoutError:
                continue
            await self.process(event)
        logger.info("Dispatcher stopped")

    def stop(self) -> None:
        self._running = False

    # ── Pipeline ──────────────────────────────────────────────────────

    @property
    def roles(self) -> Roles:
        return Roles(
            owner_id=self.config.get("ownerIdentity"),
            bot_id=self.config.get("botIdentity"),
        )

    @property
    def verbose(self) -> bool:
        return self.config.get("userNotificationLevel") == "verbose"

    async def _handle(self, event: ConversationEvent) -> Outcome:
        preview = event.text[:80] + "..." if len(event.text) > 80 else event.text
        logger.debug(f"Dispatch: {event.display_name} ({event.sender_id}) in {event.chat_id}: {preview}")

        decision = await self.classifier.classify(event)

        if isinstance(decision, AfkNotify):
            return Outcome.AFK_NOTIFIED
        if isinstance(decision, Ignore):
            logger.debug(f"Dispatch: ignored ({decision.reason})")
            return Outcome.IGNORED

        refused = check_access(decision, event.sender_id, self.roles, self.config.get("botAccessMode"))
        if refused is not None:
            if refused == "command" and self.verbose:
                await safe_send(self.channel, event.chat_id, COMMAND_DENIED_REPLY, quoted=event)
            return Outcome.DENIED

        if isinstance(decision, Command):
            return await self._run_command(event, decision)
        if isinstance(decision, AiTurn):
            return await self._run_ai_turn(event, decision)
        raise TypeError(f"Unhandled routing decision {decision!r}")

    async def _run_command(self, event: ConversationEvent, decision: Command) -> Outcome:
        command = self.commands.get(decision.token)
        if command is None:
            raise LookupError(f"Command '{decision.token}' vanished from the registry")

        guard = self.governor.check(
            event.sender_id, command.name, command.anti_spam, command.cooldown,
        )
        if not guard.allowed:
            if guard.message and self.verbose:
                await safe_send(self.channel, event.chat_id, guard.message, quoted=event)
            logger.warning(
                f"Dispatch: '{command.name}' blocked for {event.sender_id}: "
                f"{guard.message or 'silent'}"
            )
            return Outcome.BLOCKED

        logger.info(f"Dispatch: running '{command.name}' for {event.display_name}")
        ctx = CommandContext(
            event=event,
            config=self.config,
            governor=self.governor,
            absence=self.absence,
            provider=self.provider,
            channel=self.channel,
        )
        try:
            await command.execute(ctx, decision.args)
        except Exception as e:
            logger.exception(f"Dispatch: command '{command.name}' failed: {e}")
            await safe_send(
                self.channel, event.chat_id,
                f"Sorry, something went wrong while running *{command.name}*: {e}",
                quoted=event,
            )
        return Outcome.COMMAND

    async def _run_ai_turn(self, event: ConversationEvent, decision: AiTurn) -> Outcome:
        def _dev_error(exc: Exception) -> None:
            logger.error(f"[DEV_ERROR] AI request failed for {event.sender_id}: {exc}")

        try:
            answer = await self.provider.get_response(
                decision.context_text,
                identity_hint=event.sender_id,
                channel_hint=event.channel_hint,
                verbose_errors=self.verbose,
                on_dev_error=_dev_error,
            )
        except Exception as e:
            _dev_error(e)
            answer = None

        if answer:
            await safe_send(self.channel, event.chat_id, answer, quoted=event)
        else:
            logger.debug(
                f"Dispatch: no AI answer for {event.sender_id} "
                f"(user {'notified' if self.verbose else 'not notified'})"
            )
            if self.verbose:
                await safe_send(self.channel, event.chat_id, UNAVAILABLE_REPLY, quoted=event)
        return Outcome.AI_TURN
