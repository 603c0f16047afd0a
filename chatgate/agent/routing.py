"""Admission classifier: decides what an inbound event is for.

Per event, in order:
    1. Absence short-circuit. If the event points at identities that are
       away (mentions or the quoted author, never the bot or the sender
       itself), the sender is told, subject to a per-(sender, target)
       cooldown. If at least one notice actually went out, the event is
       done: AfkNotify.
    2. Thread-shape routing (first match wins):
         quoted bot message                       → AiTurn(text)
         quoted message + group + bot mentioned   → AiTurn(assembled context)
         any other quoted message                 → Ignore
         group + bot mentioned                    → AiTurn(text)
         direct message                           → AiTurn(text)
         otherwise                                → Ignore
    3. Command refinement. A registered command token in the text turns
       AiTurn into Command. Ignored events stay ignored unless they are
       direct messages or mention the bot; a prefix alone is not enough.
"""

from __future__ import annotations

import re
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Callable, Union

from loguru import logger

from chatgate.agent.absence import AbsenceRegistry, AfkRecord, format_duration
from chatgate.bus.events import ConversationEvent
from chatgate.channels.base import BaseChannel, safe_send
from chatgate.providers.base import ReasoningProvider

if TYPE_CHECKING:
    from chatgate.commands import CommandRegistry
    from chatgate.config.store import BotConfig


# ── Decisions ────────────────────────────────────────────────────────────


@dataclass
class Command:
    """Run a registered command handler."""
    token: str
    args: list[str] = field(default_factory=list)
    access_mode: str = "public"


@dataclass
class AiTurn:
    """Forward ``context_text`` to the reasoning provider."""
    context_text: str


@dataclass
class AfkNotify:
    """Absence notices were delivered; nothing else happens for this event."""
    targets: list[str] = field(default_factory=list)


@dataclass
class Ignore:
    """Not addressed to the bot."""
    reason: str = ""


RoutingDecision = Union[Command, AiTurn, AfkNotify, Ignore]


class PrefixMode(str, Enum):
    MULTI = "multi"      # Any configured prefix
    SINGLE = "single"    # Only the first configured prefix
    NONE = "none"        # No prefix; first word is the token


# ── Thread shape ─────────────────────────────────────────────────────────


def build_reply_context(event: ConversationEvent) -> str:
    """Context for a group reply to a non-bot message that mentions the bot.

    Chronological: deep-quoted message (if any), quoted message, current text.
    """
    quoted = event.quoted
    if quoted is None:
        raise ValueError("event has no quoted message")
    deep = quoted.quoted
    if deep is not None:
        return (
            f'Earlier, {deep.display_name} said: "{deep.text}". '
            f'Then {quoted.display_name} replied: "{quoted.text}". '
            f'Now {event.display_name} says: "{event.text}"'
        )
    return (
        f'Replying to a message from {quoted.display_name}: "{quoted.text}". '
        f'{event.display_name} says: "{event.text}"'
    )


def _is_addressed(event: ConversationEvent, bot_id: str | None) -> bool:
    """Direct message, or the bot is mentioned."""
    return not event.is_group or (bot_id is not None and bot_id in event.mentioned_ids)


def route_thread(event: ConversationEvent, bot_id: str | None) -> AiTurn | Ignore:
    """Thread-shape routing only (no absence handling, no commands)."""
    bot_mentioned = bot_id is not None and bot_id in event.mentioned_ids

    if event.quoted is not None:
        if bot_id is not None and event.quoted.author_id == bot_id:
            return AiTurn(event.text)
        if event.is_group and bot_mentioned:
            return AiTurn(build_reply_context(event))
        return Ignore("reply to someone else without mentioning the bot")

    if event.is_group and bot_mentioned:
        return AiTurn(event.text)
    if not event.is_group:
        return AiTurn(event.text)
    return Ignore("group message not addressed to the bot")


# ── Command parsing ──────────────────────────────────────────────────────


def strip_bot_mention(text: str, bot_id: str | None) -> str:
    """Drop leading "@<bot>" tokens so "@bot !ping" parses as "!ping"."""
    if not bot_id:
        return text.strip()
    pattern = re.compile(r"^\s*@" + re.escape(bot_id) + r"(?=[\s,:]|$)[\s,:]*")
    stripped = text
    while True:
        m = pattern.match(stripped)
        if not m:
            break
        stripped = stripped[m.end():]
    return stripped.strip()


def parse_command(
    text: str,
    prefix_mode: PrefixMode | str,
    prefixes: list[str],
) -> tuple[str, list[str], bool] | None:
    """Split text into (token, args, had_prefix).

    None when a prefix is required and absent, or nothing is left.
    """
    mode = PrefixMode(prefix_mode)
    body = text.strip()
    had_prefix = False

    if mode is not PrefixMode.NONE:
        candidates = prefixes[:1] if mode is PrefixMode.SINGLE else prefixes
        lowered = body.lower()
        for prefix in candidates:
            if prefix and lowered.startswith(prefix.lower()):
                body = body[len(prefix):].strip()
                had_prefix = True
                break
        if not had_prefix:
            return None

    parts = body.split()
    if not parts:
        return None
    return parts[0].lower(), parts[1:], had_prefix


# ── Absence notices ──────────────────────────────────────────────────────


class AbsenceNotifier:
    """Tells a sender that someone they pointed at is away.

    The wording comes from the reasoning provider; a template is used
    when it has no answer.
    """

    def __init__(self, provider: ReasoningProvider, channel: BaseChannel) -> None:
        self._provider = provider
        self._channel = channel

    async def deliver(
        self,
        event: ConversationEvent,
        target_id: str,
        record: AfkRecord,
        now: float,
    ) -> bool:
        away_for = format_duration(now - record.since)
        prompt = (
            f"Write a short, friendly automatic notice saying that {target_id} "
            f"has been away for {away_for} with the reason: \"{record.reason}\"."
        )
        try:
            text = await self._provider.get_response(
                prompt,
                identity_hint="system_afk_notifier",
                channel_hint="afk_notice",
                verbose_errors=False,
            )
        except Exception as e:
            logger.error(f"AFK: reasoning provider failed: {e}")
            text = None
        if not text:
            logger.warning(f"AFK: no generated notice for {target_id}, using template")
            text = f'{target_id} is away (for {away_for}) with the reason: "{record.reason}".'

        delivered = await safe_send(self._channel, event.chat_id, text, quoted=event)
        if delivered:
            logger.info(f"AFK: told {event.sender_id} that {target_id} is away")
        return delivered


# ── Classifier ───────────────────────────────────────────────────────────


class AdmissionClassifier:
    """Produces exactly one RoutingDecision per event."""

    def __init__(
        self,
        absence: AbsenceRegistry,
        commands: CommandRegistry,
        config: BotConfig,
        notifier: AbsenceNotifier,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._absence = absence
        self._commands = commands
        self._config = config
        self._notifier = notifier
        self._clock = clock

    @property
    def bot_id(self) -> str | None:
        return self._config.get("botIdentity")

    async def classify(self, event: ConversationEvent) -> RoutingDecision:
        bot_id = self.bot_id

        notified = await self._notify_absences(event, bot_id)
        if notified:
            return AfkNotify(notified)

        routed = route_thread(event, bot_id)
        decision = self._refine_command(event, routed, bot_id)
        logger.debug(f"Routing: {event.sender_id} in {event.chat_id} → {type(decision).__name__}")
        return decision

    async def _notify_absences(self, event: ConversationEvent, bot_id: str | None) -> list[str]:
        """Send due absence notices. Returns the targets actually notified."""
        targets = event.referenced_ids() - {event.sender_id}
        if bot_id is not None:
            targets.discard(bot_id)

        notified: list[str] = []
        for target_id in sorted(targets):
            record = self._absence.get_record(target_id)
            if record is None:
                continue
            if not self._absence.try_notify(event.sender_id, target_id):
                continue
            if await self._notifier.deliver(event, target_id, record, self._clock()):
                self._absence.mark_notified(event.sender_id, target_id)
                notified.append(target_id)
        return notified

    def _refine_command(
        self,
        event: ConversationEvent,
        routed: AiTurn | Ignore,
        bot_id: str | None,
    ) -> RoutingDecision:
        parsed = parse_command(
            strip_bot_mention(event.text, bot_id),
            self._config.get("prefixMode"),
            list(self._config.get("prefixes") or []),
        )
        if parsed is None:
            return routed

        token, args, had_prefix = parsed
        command = self._commands.get(token)
        if command is None:
            if had_prefix:
                logger.debug(f"Routing: unknown command '{token}' from {event.sender_id}")
            return routed

        if isinstance(routed, AiTurn) or _is_addressed(event, bot_id):
            return Command(token=command.name, args=args, access_mode=command.access_mode)
        return routed
