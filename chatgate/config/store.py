"""Persistent bot configuration: a small validated key-value store.

Saved as a versioned JSON envelope:
    {"version": 1, "saved_at": "...", "config": {key: value}}

Loaded values are merged over DEFAULTS, so keys added in later releases
pick up their defaults on old files.
"""

from __future__ import annotations

from copy import deepcopy
from datetime import datetime
from pathlib import Path
from typing import Any

from loguru import logger

from chatgate.utils.helpers import read_json, write_json_atomic

CONFIG_SCHEMA_VERSION = 1

DEFAULTS: dict[str, Any] = {
    "prefixMode": "multi",
    "prefixes": ["!", "#", "/"],
    "userNotificationLevel": "verbose",
    "botIdentity": None,
    "ownerIdentity": None,
    "botAccessMode": "public",
    "antiSpamGlobal": True,
    "schedulePollingIntervalMs": 60_000,
}

# Keys restricted to a fixed set of values
ALLOWED_VALUES: dict[str, set[str]] = {
    "prefixMode": {"multi", "single", "none"},
    "userNotificationLevel": {"verbose", "quiet"},
    "botAccessMode": {"self", "public"},
}


class ConfigurationMissing(Exception):
    """A required key has no value. Fatal at startup."""


class ConfigurationError(ValueError):
    """A value is not acceptable for its key."""


def validate(key: str, value: Any) -> Any:
    """Check and normalize one value. Raises ConfigurationError."""
    if key not in DEFAULTS:
        raise ConfigurationError(f"Unknown configuration key '{key}'")
    allowed = ALLOWED_VALUES.get(key)
    if allowed is not None:
        if not isinstance(value, str) or value.lower() not in allowed:
            raise ConfigurationError(f"'{key}' must be one of {sorted(allowed)}, got {value!r}")
        return value.lower()
    if key == "prefixes":
        if not isinstance(value, (list, tuple)) or not all(isinstance(p, str) and p for p in value):
            raise ConfigurationError("'prefixes' must be a list of non-empty strings")
        return list(value)
    if key == "antiSpamGlobal":
        if not isinstance(value, bool):
            raise ConfigurationError("'antiSpamGlobal' must be true or false")
        return value
    if key == "schedulePollingIntervalMs":
        if isinstance(value, bool) or not isinstance(value, int) or value <= 0:
            raise ConfigurationError("'schedulePollingIntervalMs' must be a positive integer")
        return value
    # Identities: opaque strings or unset
    if value is not None and not isinstance(value, str):
        raise ConfigurationError(f"'{key}' must be a string")
    return value


class BotConfig:
    """Configuration store. ``path=None`` keeps everything in memory."""

    def __init__(self, path: Path | None = None, overrides: dict[str, Any] | None = None) -> None:
        self._path = path
        self._values: dict[str, Any] = deepcopy(DEFAULTS)
        if path is not None:
            self._load(path)
        for key, value in (overrides or {}).items():
            self._values[key] = validate(key, value)

    # ── Access ────────────────────────────────────────────────────────

    def get(self, key: str, default: Any = None) -> Any:
        value = self._values.get(key)
        return default if value is None else value

    def require(self, key: str) -> Any:
        """Get a key that must be set. Raises ConfigurationMissing."""
        value = self._values.get(key)
        if value is None or value == "":
            raise ConfigurationMissing(f"Required configuration key '{key}' is not set")
        return value

    def set(self, key: str, value: Any) -> bool:
        """Validate, store and persist one key.

        Unknown keys are refused (logged, False). Bad values raise.
        """
        if key not in DEFAULTS:
            logger.warning(f"Config: refusing unknown key '{key}'")
            return False
        self._values[key] = validate(key, value)
        self.save()
        logger.info(f"Config: '{key}' set to {self._values[key]!r}")
        return True

    def as_dict(self) -> dict[str, Any]:
        return deepcopy(self._values)

    # ── Persistence ───────────────────────────────────────────────────

    def save(self) -> None:
        if self._path is None:
            return
        try:
            write_json_atomic(self._path, {
                "version": CONFIG_SCHEMA_VERSION,
                "saved_at": datetime.now().isoformat(),
                "config": self._values,
            })
        except Exception as e:
            logger.error(f"Failed to save bot config: {e}")

    def _load(self, path: Path) -> None:
        try:
            raw = read_json(path)
        except Exception as e:
            logger.error(f"Failed to load bot config, using defaults: {e}")
            return
        if raw is None:
            logger.info("Config: no config file, starting from defaults")
            self.save()
            return
        if raw.get("version") != CONFIG_SCHEMA_VERSION:
            logger.error(f"Config: unsupported schema version {raw.get('version')!r}, using defaults")
            return

        for key, value in raw.get("config", {}).items():
            try:
                self._values[key] = validate(key, value)
            except ConfigurationError as e:
                logger.warning(f"Config: ignoring saved '{key}': {e}")
        logger.info(f"Config: loaded from {path}")
