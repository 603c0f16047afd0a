"""Shared fixtures: a controllable clock, a stub provider, a wired dispatcher."""

from __future__ import annotations

import pytest

from chatgate.agent.absence import AbsenceRegistry
from chatgate.agent.dispatcher import EventDispatcher
from chatgate.agent.governor import RateGovernor
from chatgate.bus.events import ConversationEvent, QuotedMessage
from chatgate.channels.mock import MockChannel
from chatgate.commands import CommandRegistry, default_commands
from chatgate.config.store import BotConfig
from chatgate.providers.base import ReasoningProvider

BOT = "bot@s.chat"
OWNER = "owner@s.chat"


class FakeClock:
    """Callable clock that only moves when told to."""

    def __init__(self, start: float = 1_000_000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class StubProvider(ReasoningProvider):
    """Returns a fixed answer and records every call."""

    def __init__(self, answer: str | None = "stub answer") -> None:
        self.answer = answer
        self.calls: list[dict] = []
        self.raise_error: Exception | None = None

    async def get_response(
        self,
        prompt,
        *,
        identity_hint=None,
        channel_hint=None,
        verbose_errors=False,
        on_dev_error=None,
    ):
        self.calls.append({
            "prompt": prompt,
            "identity_hint": identity_hint,
            "channel_hint": channel_hint,
            "verbose_errors": verbose_errors,
        })
        if self.raise_error is not None:
            raise self.raise_error
        return self.answer

    @property
    def prompts(self) -> list[str]:
        return [c["prompt"] for c in self.calls]


def make_event(
    text: str = "hello",
    sender: str = "u1@s.chat",
    chat: str = "group1",
    is_group: bool = True,
    mentions: set[str] | None = None,
    quoted: QuotedMessage | None = None,
) -> ConversationEvent:
    return ConversationEvent(
        sender_id=sender,
        chat_id=chat,
        text=text,
        is_group=is_group,
        mentioned_ids=set(mentions or ()),
        quoted=quoted,
    )


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def config() -> BotConfig:
    return BotConfig(overrides={"botIdentity": BOT, "ownerIdentity": OWNER})


@pytest.fixture
def provider() -> StubProvider:
    return StubProvider()


@pytest.fixture
def channel() -> MockChannel:
    return MockChannel()


@pytest.fixture
def dispatcher(config, channel, provider, clock) -> EventDispatcher:
    governor = RateGovernor(enforce_spam=lambda: bool(config.get("antiSpamGlobal")), clock=clock)
    return EventDispatcher(
        config=config,
        channel=channel,
        provider=provider,
        commands=CommandRegistry(default_commands()),
        absence=AbsenceRegistry(clock=clock),
        governor=governor,
        clock=clock,
    )
