"""Reasoning provider interface.

The core treats text generation as an opaque async function: a prompt
goes in, text or None comes out. None means "no answer" and is never an
exception from the caller's point of view.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Callable

DevErrorHandler = Callable[[Exception], None]


class ReasoningProvider(ABC):
    """Base class for reasoning collaborators."""

    @abstractmethod
    async def get_response(
        self,
        prompt: str,
        *,
        identity_hint: str | None = None,
        channel_hint: str | None = None,
        verbose_errors: bool = False,
        on_dev_error: DevErrorHandler | None = None,
    ) -> str | None:
        """Generate a reply for ``prompt``.

        Args:
            prompt: Full prompt text.
            identity_hint: Who the reply is for (for the provider's own memory/logs).
            channel_hint: "group", "direct" or an internal tag such as "afk_notice".
            verbose_errors: Whether failure detail may be surfaced to end users.
            on_dev_error: Called with the exception when generation fails.

        Returns:
            The generated text, or None when there is no answer.
        """
        ...


# Shown to users (verbose mode only) when a provider has no answer
UNAVAILABLE_REPLY = "Sorry, the AI can't answer right now. Please try again later."
