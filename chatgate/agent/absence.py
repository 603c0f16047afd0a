"""Absence (AFK) registry: who is away, and who has been told.

A record lives from the moment an identity declares itself away until
it explicitly comes back; there is no expiry. Each notifier is told about
a given absent identity at most once per AFK_NOTIFY_COOLDOWN_SECONDS.

Records are persisted through AbsenceStorage so away states survive a
restart. Notification cooldowns piggy-back on a private RateGovernor;
the per-notifier timestamps stored in the record cover the restart gap.
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any, Callable

from loguru import logger

from chatgate.agent.governor import AFK_NOTIFY_COOLDOWN_SECONDS, RateGovernor
from chatgate.utils.helpers import read_json, write_json_atomic

AFK_SCHEMA_VERSION = 1


@dataclass
class AfkRecord:
    """Away status for one identity."""

    reason: str
    since: float
    last_notified_by: dict[str, float] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "reason": self.reason,
            "since": self.since,
            "last_notified_by": dict(self.last_notified_by),
        }

    @classmethod
    def from_dict(cls, d: dict[str, Any]) -> AfkRecord:
        return cls(
            reason=d.get("reason", ""),
            since=float(d["since"]),
            last_notified_by={k: float(v) for k, v in d.get("last_notified_by", {}).items()},
        )


def notify_action_name(target_id: str) -> str:
    """Governor action name for notifications about ``target_id``."""
    return f"afk_notify:{target_id}"


def format_duration(seconds: float) -> str:
    """Human-readable away time, coarsest two units.

    Days drop the minutes, hours drop the seconds.
    """
    total = int(seconds)
    minutes, secs = divmod(total, 60)
    hours, minutes = divmod(minutes, 60)
    days, hours = divmod(hours, 24)

    def unit(n: int, name: str) -> str:
        return f"{n} {name}" if n == 1 else f"{n} {name}s"

    parts: list[str] = []
    if days:
        parts.append(unit(days, "day"))
    if hours:
        parts.append(unit(hours, "hour"))
    if minutes and not days:
        parts.append(unit(minutes, "minute"))
    if secs and not hours and not days:
        parts.append(unit(secs, "second"))
    return " ".join(parts) if parts else "a moment"


class AbsenceStorage:
    """JSON persistence for AFK records.

    File layout (versioned envelope):
        {"version": 1, "saved_at": "...", "records": {identity: AfkRecord}}
    """

    def __init__(self, path: Path) -> None:
        self._path = path

    @property
    def path(self) -> Path:
        return self._path

    def save(self, records: dict[str, AfkRecord]) -> None:
        """Atomic write. Failures are logged, never raised."""
        try:
            write_json_atomic(self._path, {
                "version": AFK_SCHEMA_VERSION,
                "saved_at": datetime.now().isoformat(),
                "records": {ident: r.to_dict() for ident, r in records.items()},
            })
            logger.debug(f"Absence: saved {len(records)} records")
        except Exception as e:
            logger.error(f"Failed to save absence records: {e}")

    def load(self) -> dict[str, AfkRecord]:
        """Load records. Missing, corrupt or unknown-version files yield {}."""
        try:
            raw = read_json(self._path)
        except Exception as e:
            logger.error(f"Failed to load absence records: {e}")
            return {}
        if raw is None:
            logger.info("Absence: no saved records, starting empty")
            return {}
        if raw.get("version") != AFK_SCHEMA_VERSION:
            logger.error(f"Absence: unsupported schema version {raw.get('version')!r}, ignoring file")
            return {}

        records: dict[str, AfkRecord] = {}
        for ident, data in raw.get("records", {}).items():
            try:
                records[ident] = AfkRecord.from_dict(data)
            except (KeyError, TypeError, ValueError) as e:
                logger.warning(f"Absence: skipping malformed record for {ident}: {e}")
        logger.info(f"Absence: loaded {len(records)} records")
        return records


class AbsenceRegistry:
    """In-memory AFK records with optional disk persistence."""

    def __init__(
        self,
        storage: AbsenceStorage | None = None,
        clock: Callable[[], float] = time.time,
        notify_cooldown: float = AFK_NOTIFY_COOLDOWN_SECONDS,
    ) -> None:
        self._storage = storage
        self._clock = clock
        self._notify_cooldown = notify_cooldown
        # Own store, distinct from the command governor; no spam tracking
        self._governor = RateGovernor(enforce_spam=lambda: False, clock=clock)
        self._records: dict[str, AfkRecord] = storage.load() if storage else {}

    def set_absent(self, identity: str, reason: str) -> AfkRecord:
        """Declare ``identity`` away. Replaces any earlier record and its notifier history."""
        record = AfkRecord(reason=reason, since=self._clock())
        self._records[identity] = record
        self._governor.clear(action_name=notify_action_name(identity))
        self._save()
        logger.info(f"Absence: {identity} is now away: {reason}")
        return record

    def clear_absent(self, identity: str) -> bool:
        """Mark ``identity`` back. False if it wasn't away."""
        if self._records.pop(identity, None) is None:
            return False
        self._governor.clear(action_name=notify_action_name(identity))
        self._save()
        logger.info(f"Absence: {identity} is back")
        return True

    def get_record(self, identity: str) -> AfkRecord | None:
        return self._records.get(identity)

    def is_absent(self, identity: str) -> bool:
        return identity in self._records

    def all_records(self) -> dict[str, AfkRecord]:
        return dict(self._records)

    def try_notify(self, notifier_id: str, target_id: str) -> bool:
        """Whether ``notifier_id`` may be told about ``target_id`` now.

        A permitted attempt arms the cooldown immediately, whether or not
        the notice is then delivered. Call mark_notified() after delivery.
        """
        record = self._records.get(target_id)
        if record is None:
            return False

        last = record.last_notified_by.get(notifier_id)
        if last is not None and self._clock() - last < self._notify_cooldown:
            logger.debug(f"Absence: {notifier_id} already told about {target_id} (persisted)")
            return False

        result = self._governor.check(
            notifier_id, notify_action_name(target_id),
            anti_spam=False, cooldown_seconds=self._notify_cooldown,
        )
        if not result.allowed:
            logger.debug(f"Absence: notice about {target_id} to {notifier_id} suppressed ({result.cooldown_remaining}s)")
        return result.allowed

    def mark_notified(self, notifier_id: str, target_id: str) -> None:
        """Record a delivered notice."""
        record = self._records.get(target_id)
        if record is None:
            return
        record.last_notified_by[notifier_id] = self._clock()
        self._save()

    def _save(self) -> None:
        if self._storage is not None:
            self._storage.save(self._records)
