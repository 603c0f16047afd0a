"""Command handlers: capability interface and static registry.

Every command is a BaseCommand subclass declaring its policy as data:
    - name          — token users type (case-insensitive)
    - access_mode   — "public" or "self" (owner / bot only)
    - anti_spam     — whether invocations count toward spam detection
    - cooldown      — per-user cooldown in seconds (0 → governor default)

Commands are registered explicitly at startup; see default_commands().

Adding a new command:
1. Subclass BaseCommand in one of the modules here (or your own)
2. Implement execute(ctx, args)
3. Add it to the table passed to CommandRegistry
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import TYPE_CHECKING, Iterable

from loguru import logger

from chatgate.channels.base import safe_send

if TYPE_CHECKING:
    from chatgate.agent.absence import AbsenceRegistry
    from chatgate.agent.governor import RateGovernor
    from chatgate.bus.events import ConversationEvent
    from chatgate.channels.base import BaseChannel
    from chatgate.config.store import BotConfig
    from chatgate.providers.base import ReasoningProvider


@dataclass
class CommandContext:
    """Everything a handler may touch while running for one event."""

    event: "ConversationEvent"
    config: "BotConfig"
    governor: "RateGovernor"
    absence: "AbsenceRegistry"
    provider: "ReasoningProvider"
    channel: "BaseChannel"

    @property
    def sender_id(self) -> str:
        return self.event.sender_id

    @property
    def verbose(self) -> bool:
        return self.config.get("userNotificationLevel") == "verbose"

    async def reply(self, text: str) -> bool:
        """Send ``text`` to the event's chat, quoting the event."""
        return await safe_send(self.channel, self.event.chat_id, text, quoted=self.event)


class BaseCommand(ABC):
    """Base class for command handlers."""

    name: str = ""
    description: str = ""
    access_mode: str = "public"
    anti_spam: bool = False
    cooldown: float = 0

    @abstractmethod
    async def execute(self, ctx: CommandContext, args: list[str]) -> None:
        """Run the command. Exceptions are caught and reported by the dispatcher."""
        ...


class CommandRegistry:
    """Token → handler table."""

    def __init__(self, commands: Iterable[BaseCommand] = ()) -> None:
        self._commands: dict[str, BaseCommand] = {}
        for command in commands:
            self.register(command)

    def register(self, command: BaseCommand) -> None:
        """Register a command. A duplicate name replaces the earlier one."""
        if not command.name:
            raise ValueError(f"{type(command).__name__} has no name")
        key = command.name.lower()
        if key in self._commands:
            logger.warning(f"Command '{key}' already registered, replacing")
        self._commands[key] = command
        logger.debug(f"Registered command: {key} ({command.access_mode})")

    def get(self, token: str) -> BaseCommand | None:
        return self._commands.get(token.lower())

    def names(self) -> list[str]:
        return list(self._commands)

    @property
    def commands(self) -> dict[str, BaseCommand]:
        return dict(self._commands)

    def __contains__(self, token: str) -> bool:
        return token.lower() in self._commands

    def __len__(self) -> int:
        return len(self._commands)


def default_commands() -> list[BaseCommand]:
    """The built-in command table."""
    from chatgate.commands.general import AfkCommand, AskCommand, PingCommand, StatusCommand
    from chatgate.commands.system import ModeCommand, SetOwnerCommand

    return [
        PingCommand(),
        StatusCommand(),
        AfkCommand(),
        AskCommand(),
        ModeCommand(),
        SetOwnerCommand(),
    ]


__all__ = [
    "BaseCommand",
    "CommandContext",
    "CommandRegistry",
    "default_commands",
]
