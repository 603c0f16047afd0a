"""Bot configuration store."""

from chatgate.config.store import (
    DEFAULTS,
    BotConfig,
    ConfigurationError,
    ConfigurationMissing,
)

__all__ = ["DEFAULTS", "BotConfig", "ConfigurationError", "ConfigurationMissing"]
