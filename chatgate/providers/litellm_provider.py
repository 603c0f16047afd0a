"""LiteLLM-backed reasoning provider.

Adapter only: builds a chat request for the prompt, sends it through
LiteLLM and returns the text. Model fallback with rotation: on timeout
or error it moves to the next model in the fallback list and retries
once. If the retry also fails the answer is None and on_dev_error gets
the exception. Nothing is ever sent to end users from here; callers
decide that from verbose_errors.
"""

from __future__ import annotations

import asyncio
from typing import Any

import litellm
from litellm import acompletion
from loguru import logger

from chatgate.providers.base import DevErrorHandler, ReasoningProvider

# Timeout for a single LLM call; prevents an event from hanging forever
LLM_CALL_TIMEOUT: float = 45.0

DEFAULT_SYSTEM_PROMPT = (
    "You are a helpful assistant in a group chat. Answer briefly and in a friendly tone."
)


class LiteLLMProvider(ReasoningProvider):
    """Reasoning collaborator using LiteLLM for multi-provider support."""

    def __init__(
        self,
        default_model: str = "openrouter/deepseek/deepseek-v3.2",
        api_key: str | None = None,
        api_base: str | None = None,
        fallback_models: list[str] | None = None,
        system_prompt: str = DEFAULT_SYSTEM_PROMPT,
        max_tokens: int = 1024,
        temperature: float = 0.7,
        timeout: float = LLM_CALL_TIMEOUT,
    ) -> None:
        self.default_model = default_model
        self.api_key = api_key
        self.api_base = api_base
        self.system_prompt = system_prompt
        self.max_tokens = max_tokens
        self.temperature = temperature
        self._timeout = timeout

        self._fallback_models = list(fallback_models or [])
        self._model_index = 0

        # Disable LiteLLM logging noise
        litellm.suppress_debug_info = True
        # Drop unsupported parameters per provider
        litellm.drop_params = True

    # ── Model fallback rotation ──────────────────────────────────────

    def _get_current_model(self) -> str:
        if not self._fallback_models:
            return self.default_model
        return self._fallback_models[self._model_index % len(self._fallback_models)]

    def _rotate_model(self) -> None:
        if len(self._fallback_models) < 2:
            return
        old_model = self._get_current_model()
        self._model_index = (self._model_index + 1) % len(self._fallback_models)
        logger.warning(f"LLM fallback: rotated from {old_model} → {self._get_current_model()}")

    # ── Request ──────────────────────────────────────────────────────

    def _build_messages(self, prompt: str, identity_hint: str | None, channel_hint: str | None) -> list[dict[str, Any]]:
        system = self.system_prompt
        if channel_hint:
            system += f"\nConversation type: {channel_hint}."
        if identity_hint:
            system += f"\nYou are replying to: {identity_hint}."
        return [
            {"role": "system", "content": system},
            {"role": "user", "content": prompt},
        ]

    async def _attempt(self, model: str, messages: list[dict[str, Any]]) -> str | None:
        """One LLM call with timeout. Raises on failure."""
        kwargs: dict[str, Any] = {
            "model": model,
            "messages": messages,
            "max_tokens": max(1, self.max_tokens),
            "temperature": self.temperature,
        }
        if self.api_key:
            kwargs["api_key"] = self.api_key
        if self.api_base:
            kwargs["api_base"] = self.api_base

        response = await asyncio.wait_for(acompletion(**kwargs), timeout=self._timeout)
        content = response.choices[0].message.content
        return content.strip() if content else None

    async def get_response(
        self,
        prompt: str,
        *,
        identity_hint: str | None = None,
        channel_hint: str | None = None,
        verbose_errors: bool = False,
        on_dev_error: DevErrorHandler | None = None,
    ) -> str | None:
        messages = self._build_messages(prompt, identity_hint, channel_hint)
        model = self._get_current_model()

        try:
            return await self._attempt(model, messages)
        except Exception as e:
            logger.warning(f"LLM call on {model} failed ({type(e).__name__}: {e})")
            first_error: Exception = e

        if len(self._fallback_models) < 2:
            self._report(first_error, on_dev_error)
            return None

        self._rotate_model()
        retry_model = self._get_current_model()
        try:
            return await self._attempt(retry_model, messages)
        except Exception as e:
            logger.error(f"LLM retry on {retry_model} failed ({type(e).__name__}: {e})")
            self._report(e, on_dev_error)
            return None

    @staticmethod
    def _report(exc: Exception, on_dev_error: DevErrorHandler | None) -> None:
        if on_dev_error is None:
            return
        try:
            on_dev_error(exc)
        except Exception as handler_error:
            logger.error(f"on_dev_error handler raised: {handler_error}")
