"""Rate governor: per-action cooldowns plus escalating spam blacklists.

Two independent mechanisms, evaluated in order on every check:
    1. Anti-spam (opt-in per action, and globally switchable):
       3 governed actions inside a 1 s window put the identity on a
       blacklist. Each new offence climbs one level up the duration table
       (5 min → 30 min → 1 h → 24 h, capped). A blacklist that is observed
       to have expired wipes the identity's spam record entirely.
    2. Cooldown per (identity, action): a passing check arms a cooldown;
       checks inside it are blocked.

Blocked results carry a user-facing message only the first time a given
block is observed; repeats are silent.

check() is synchronous and never awaits, so the whole read-modify-write
happens inside one event-loop step.
"""

from __future__ import annotations

import math
import time
from dataclasses import dataclass, field
from typing import Callable

from loguru import logger


# ── Contract constants ───────────────────────────────────────────────────
SPAM_WINDOW_SECONDS = 1.0           # Burst detection window
SPAM_TRIGGER_COUNT = 3              # Actions inside the window that count as spam
SPAM_HISTORY_FACTOR = 3             # History kept for 3x the window
BLACKLIST_DURATIONS: tuple[float, ...] = (
    5 * 60,                         # Level 1: 5 min
    30 * 60,                        # Level 2: 30 min
    60 * 60,                        # Level 3: 1 h
    24 * 60 * 60,                   # Level 4+: 24 h
)
DEFAULT_COOLDOWN_SECONDS = 5
AFK_NOTIFY_COOLDOWN_SECONDS = 3600


@dataclass
class CooldownRecord:
    """Cooldown armed for one (identity, action) pair."""

    expires_at: float
    notified_once: bool = False


@dataclass
class SpamRecord:
    """Burst history and blacklist state for one identity."""

    recent_actions: list[float] = field(default_factory=list)
    warning_level: int = 0
    blacklist_expires_at: float | None = None
    notified_once: bool = False


@dataclass
class GuardResult:
    """Outcome of a governed check."""

    allowed: bool
    message: str | None = None
    cooldown_remaining: int | None = None
    blacklist_remaining: int | None = None


@dataclass
class GovernorStatus:
    """Snapshot of one identity's governor state, for display."""

    cooldowns: dict[str, int] = field(default_factory=dict)  # action -> seconds left
    is_blacklisted: bool = False
    blacklist_level: int = 0
    blacklist_remaining: int = 0


def blacklist_duration(level: int) -> float:
    """Blacklist length for a warning level (1-based, capped at the table end)."""
    index = min(max(level, 1) - 1, len(BLACKLIST_DURATIONS) - 1)
    return BLACKLIST_DURATIONS[index]


def _ceil_seconds(delta: float) -> int:
    return max(int(math.ceil(delta)), 0)


class RateGovernor:
    """Cooldown and spam-escalation gate. State is memory-only."""

    def __init__(
        self,
        enforce_spam: Callable[[], bool] | None = None,
        clock: Callable[[], float] = time.time,
        spam_window: float = SPAM_WINDOW_SECONDS,
    ) -> None:
        self._enforce_spam = enforce_spam or (lambda: True)
        self._clock = clock
        self._spam_window = spam_window
        self._cooldowns: dict[tuple[str, str], CooldownRecord] = {}
        self._spam: dict[str, SpamRecord] = {}

    # ── Public API ────────────────────────────────────────────────────

    def check(
        self,
        identity: str,
        action_name: str,
        anti_spam: bool = False,
        cooldown_seconds: float | None = None,
    ) -> GuardResult:
        """Gate one action attempt. Mutates state; never suspends."""
        now = self._clock()

        if anti_spam and self._enforce_spam():
            blocked = self._check_spam(identity, action_name, now)
            if blocked is not None:
                return blocked

        return self._check_cooldown(identity, action_name, cooldown_seconds, now)

    def status(self, identity: str) -> GovernorStatus:
        """Active cooldowns and blacklist state for an identity. Read-only."""
        now = self._clock()
        result = GovernorStatus()
        for (ident, action), record in self._cooldowns.items():
            if ident != identity:
                continue
            remaining = _ceil_seconds(record.expires_at - now)
            if remaining > 0:
                result.cooldowns[action] = remaining

        spam = self._spam.get(identity)
        if spam and spam.blacklist_expires_at is not None and now < spam.blacklist_expires_at:
            result.is_blacklisted = True
            result.blacklist_level = spam.warning_level
            result.blacklist_remaining = _ceil_seconds(spam.blacklist_expires_at - now)
        return result

    def warning_level(self, identity: str) -> int:
        record = self._spam.get(identity)
        return record.warning_level if record else 0

    def clear(self, identity: str | None = None, action_name: str | None = None) -> int:
        """Drop cooldowns matching the filters. Returns how many were removed.

        With only ``identity`` given, that identity's spam record goes too.
        """
        keys = [
            key for key in self._cooldowns
            if (identity is None or key[0] == identity)
            and (action_name is None or key[1] == action_name)
        ]
        for key in keys:
            del self._cooldowns[key]
        if identity is not None and action_name is None:
            self._spam.pop(identity, None)
        return len(keys)

    # ── Anti-spam ─────────────────────────────────────────────────────

    def _check_spam(self, identity: str, action_name: str, now: float) -> GuardResult | None:
        record = self._spam.setdefault(identity, SpamRecord())

        if record.blacklist_expires_at is not None:
            if now < record.blacklist_expires_at:
                remaining = _ceil_seconds(record.blacklist_expires_at - now)
                if record.notified_once:
                    return GuardResult(allowed=False, blacklist_remaining=remaining)
                record.notified_once = True
                logger.warning(
                    f"Governor: {identity} blocked at spam level {record.warning_level}, {remaining}s left"
                )
                return GuardResult(
                    allowed=False,
                    message=f"You are blocked for spamming. Try again in {remaining} seconds.",
                    blacklist_remaining=remaining,
                )
            logger.info(f"Governor: spam blacklist for {identity} expired, resetting")
            record = SpamRecord()
            self._spam[identity] = record

        horizon = self._spam_window * SPAM_HISTORY_FACTOR
        record.recent_actions = [t for t in record.recent_actions if now - t < horizon]
        record.recent_actions.append(now)

        burst = sum(1 for t in record.recent_actions if now - t < self._spam_window)
        if burst < SPAM_TRIGGER_COUNT:
            return None

        record.warning_level += 1
        duration = blacklist_duration(record.warning_level)
        record.blacklist_expires_at = now + duration
        # Escalation message is this blacklist's one notification
        record.notified_once = True
        remaining = _ceil_seconds(duration)
        logger.warning(
            f"Governor: SPAM from {identity} on '{action_name}', "
            f"level {record.warning_level}, blocked for {remaining}s"
        )
        return GuardResult(
            allowed=False,
            message=(
                f"Your activity was flagged as spam (level {record.warning_level}). "
                f"You are blocked for {remaining} seconds."
            ),
            blacklist_remaining=remaining,
        )

    # ── Cooldown ──────────────────────────────────────────────────────

    def _check_cooldown(
        self,
        identity: str,
        action_name: str,
        cooldown_seconds: float | None,
        now: float,
    ) -> GuardResult:
        key = (identity, action_name)
        record = self._cooldowns.get(key)

        if record is not None:
            if now < record.expires_at:
                remaining = _ceil_seconds(record.expires_at - now)
                if record.notified_once:
                    logger.debug(f"Governor: cooldown on {identity}:{action_name}, {remaining}s left (silent)")
                    return GuardResult(allowed=False, cooldown_remaining=remaining)
                record.notified_once = True
                logger.debug(f"Governor: cooldown on {identity}:{action_name}, {remaining}s left")
                return GuardResult(
                    allowed=False,
                    message=(
                        f"Command *{action_name}* is on cooldown. Try again in {remaining} seconds. "
                        f"Type */status* for details."
                    ),
                    cooldown_remaining=remaining,
                )
            record.notified_once = False

        effective = cooldown_seconds or DEFAULT_COOLDOWN_SECONDS
        self._cooldowns[key] = CooldownRecord(expires_at=now + effective)
        return GuardResult(allowed=True)
