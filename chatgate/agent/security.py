"""Access control: global bot mode and per-command access modes.

Two gates, both must pass:
    - Global gate (every decision): in SELF mode only the owner or the
      bot's own identity gets through; in PUBLIC mode everyone does except
      the bot itself (unless the bot is also the owner), so it never
      reacts to its own output.
    - Command gate (Command decisions only): same rule, driven by the
      command's declared access mode instead of the global one.

Pure functions, no state.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

from loguru import logger

from chatgate.agent.routing import Command, RoutingDecision


class AccessMode(str, Enum):
    """Who may trigger the bot (globally) or a command."""
    SELF = "self"
    PUBLIC = "public"


@dataclass(frozen=True)
class Roles:
    """Privileged identities, resolved from configuration."""

    owner_id: str | None
    bot_id: str | None

    def is_owner(self, identity: str) -> bool:
        return self.owner_id is not None and identity == self.owner_id

    def is_bot(self, identity: str) -> bool:
        return self.bot_id is not None and identity == self.bot_id


def mode_allows(mode: AccessMode | str, sender_id: str, roles: Roles) -> bool:
    """Apply one access-mode rule to a sender."""
    is_owner = roles.is_owner(sender_id)
    is_bot = roles.is_bot(sender_id)
    if AccessMode(mode) is AccessMode.SELF:
        return is_owner or is_bot
    return not (is_bot and not is_owner)


def authorize(
    decision: RoutingDecision,
    sender_id: str,
    roles: Roles,
    global_mode: AccessMode | str,
) -> bool:
    """True if ``sender_id`` may have ``decision`` dispatched."""
    return check_access(decision, sender_id, roles, global_mode) is None


def check_access(
    decision: RoutingDecision,
    sender_id: str,
    roles: Roles,
    global_mode: AccessMode | str,
) -> str | None:
    """Like authorize(), but returns which gate refused ("global"/"command"), or None."""
    if not mode_allows(global_mode, sender_id, roles):
        logger.info(f"Access: global mode '{AccessMode(global_mode).value}' refuses {sender_id}")
        return "global"
    if isinstance(decision, Command) and not mode_allows(decision.access_mode, sender_id, roles):
        logger.warning(
            f"Access: command '{decision.token}' ({AccessMode(decision.access_mode).value}) refused for {sender_id}"
        )
        return "command"
    return None
