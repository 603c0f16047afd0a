"""End-to-end tests for the event dispatcher."""

import asyncio

import pytest

from chatgate.agent.dispatcher import COMMAND_DENIED_REPLY, EventDispatcher, Outcome
from chatgate.bus.events import QuotedMessage
from chatgate.commands import BaseCommand, CommandRegistry, default_commands
from chatgate.providers.base import UNAVAILABLE_REPLY
from conftest import BOT, OWNER, make_event


class ExplodingCommand(BaseCommand):
    name = "boom"
    description = "Always fails."

    async def execute(self, ctx, args):
        raise RuntimeError("kaboom")


@pytest.mark.asyncio
class TestEndToEnd:
    async def test_direct_message_goes_to_provider(self, dispatcher, provider, channel):
        event = make_event("hello", sender="u1", is_group=False, chat="u1-dm")
        outcome = await dispatcher.process(event)

        assert outcome is Outcome.AI_TURN
        assert provider.calls[0]["prompt"] == "hello"
        assert provider.calls[0]["identity_hint"] == "u1"
        assert provider.calls[0]["channel_hint"] == "direct"
        sent = channel.get_last_sent()
        assert sent.text == "stub answer"
        assert sent.chat_id == "u1-dm"
        assert sent.quoted is event

    async def test_ping_runs_then_cools_down(self, dispatcher, channel, clock):
        assert await dispatcher.process(make_event("!ping", mentions={BOT}, sender="u2")) is Outcome.COMMAND
        assert channel.get_last_sent().text == "Pong!"

        clock.advance(1)
        assert await dispatcher.process(make_event("!ping", mentions={BOT}, sender="u2")) is Outcome.BLOCKED
        message = channel.get_last_sent().text
        assert "cooldown" in message
        assert "2 seconds" in message

    async def test_ping_burst_escalates(self, dispatcher, channel, clock):
        outcomes = []
        for _ in range(3):
            outcomes.append(await dispatcher.process(make_event("!ping", mentions={BOT}, sender="u2")))
            clock.advance(0.4)

        assert outcomes == [Outcome.COMMAND, Outcome.BLOCKED, Outcome.BLOCKED]
        message = channel.get_last_sent().text
        assert "level 1" in message
        assert "300 seconds" in message
        assert dispatcher.governor.warning_level("u2") == 1

    async def test_blacklisted_user_blocked_silently(self, dispatcher, channel, clock):
        for _ in range(3):
            await dispatcher.process(make_event("!ping", mentions={BOT}, sender="u2"))
            clock.advance(0.1)
        count = channel.sent_count

        clock.advance(5)
        assert await dispatcher.process(make_event("!status", mentions={BOT}, sender="u2")) is Outcome.COMMAND
        assert channel.sent_count == count + 1
        # ping is anti-spam governed and still blacklisted: no reply
        assert await dispatcher.process(make_event("!ping", mentions={BOT}, sender="u2")) is Outcome.BLOCKED
        assert channel.sent_count == count + 1

    async def test_absence_notice_then_suppressed(self, dispatcher, channel, provider, clock):
        await dispatcher.process(make_event("!afk lunch", mentions={BOT}, sender="A"))
        clock.advance(600)
        channel.clear_sent()

        event = make_event("@A are you around? @bot", sender="C", mentions={"A", BOT})
        assert await dispatcher.process(event) is Outcome.AFK_NOTIFIED
        assert channel.sent_count == 1
        assert "10 minutes" in provider.prompts[-1]
        assert dispatcher.absence.get_record("A").last_notified_by == {"C": clock.now}

        clock.advance(300)
        assert await dispatcher.process(event) is Outcome.AI_TURN
        assert channel.sent_count == 2
        assert channel.get_last_sent().text == "stub answer"

    async def test_back_from_afk(self, dispatcher, channel, clock):
        await dispatcher.process(make_event("!afk lunch", mentions={BOT}, sender="A"))
        assert dispatcher.absence.is_absent("A")
        channel.clear_sent()
        clock.advance(6)
        await dispatcher.process(make_event("/afk", mentions={BOT}, sender="A"))
        assert not dispatcher.absence.is_absent("A")
        assert "no longer AFK" in channel.get_last_sent().text


@pytest.mark.asyncio
class TestAccess:
    async def test_ignored_group_chatter(self, dispatcher, provider, channel):
        assert await dispatcher.process(make_event("just chatting")) is Outcome.IGNORED
        assert provider.calls == []
        assert channel.sent_count == 0

    async def test_unaddressed_group_command_ignored(self, dispatcher, channel):
        assert await dispatcher.process(make_event("!ping", sender="u2")) is Outcome.IGNORED
        assert channel.sent_count == 0
        # Nothing was governed either
        assert dispatcher.governor.status("u2").cooldowns == {}

    async def test_bot_never_answers_itself(self, dispatcher, provider):
        event = make_event("hello", sender=BOT, is_group=False)
        assert await dispatcher.process(event) is Outcome.DENIED
        assert provider.calls == []

    async def test_bot_as_owner_is_allowed(self, dispatcher, config):
        config.set("ownerIdentity", BOT)
        event = make_event("hello", sender=BOT, is_group=False)
        assert await dispatcher.process(event) is Outcome.AI_TURN

    async def test_self_mode_blocks_everyone_else_silently(self, dispatcher, config, channel, provider):
        config.set("botAccessMode", "self")
        assert await dispatcher.process(make_event("hi", sender="u1", is_group=False)) is Outcome.DENIED
        assert await dispatcher.process(make_event("!ping", mentions={BOT}, sender="u1")) is Outcome.DENIED
        assert channel.sent_count == 0
        assert provider.calls == []

    async def test_self_mode_allows_owner(self, dispatcher, config):
        config.set("botAccessMode", "self")
        assert await dispatcher.process(make_event("!ping", mentions={BOT}, sender=OWNER)) is Outcome.COMMAND

    async def test_owner_command_denied_for_others(self, dispatcher, config, channel):
        outcome = await dispatcher.process(make_event("!mode self", mentions={BOT}, sender="u1"))
        assert outcome is Outcome.DENIED
        assert channel.get_last_sent().text == COMMAND_DENIED_REPLY
        assert config.get("botAccessMode") == "public"

    async def test_owner_command_denied_quietly(self, dispatcher, config, channel):
        config.set("userNotificationLevel", "quiet")
        assert await dispatcher.process(make_event("!mode self", mentions={BOT}, sender="u1")) is Outcome.DENIED
        assert channel.sent_count == 0

    async def test_owner_switches_mode(self, dispatcher, config):
        assert await dispatcher.process(make_event("!mode self", mentions={BOT}, sender=OWNER)) is Outcome.COMMAND
        assert config.get("botAccessMode") == "self"


@pytest.mark.asyncio
class TestFailures:
    async def test_provider_without_answer_verbose(self, dispatcher, provider, channel):
        provider.answer = None
        assert await dispatcher.process(make_event("hi", is_group=False)) is Outcome.AI_TURN
        assert channel.get_last_sent().text == UNAVAILABLE_REPLY

    async def test_provider_without_answer_quiet(self, dispatcher, provider, channel, config):
        config.set("userNotificationLevel", "quiet")
        provider.answer = None
        assert await dispatcher.process(make_event("hi", is_group=False)) is Outcome.AI_TURN
        assert channel.sent_count == 0

    async def test_provider_exception_is_contained(self, dispatcher, provider, channel):
        provider.raise_error = RuntimeError("model exploded")
        assert await dispatcher.process(make_event("hi", is_group=False)) is Outcome.AI_TURN
        assert channel.get_last_sent().text == UNAVAILABLE_REPLY

    async def test_verbose_flag_forwarded(self, dispatcher, provider, config):
        config.set("userNotificationLevel", "quiet")
        await dispatcher.process(make_event("hi", is_group=False))
        assert provider.calls[0]["verbose_errors"] is False

    async def test_command_exception_reported(self, dispatcher, channel):
        dispatcher.commands.register(ExplodingCommand())
        assert await dispatcher.process(make_event("!boom", mentions={BOT})) is Outcome.COMMAND
        assert "kaboom" in channel.get_last_sent().text

    async def test_send_failure_does_not_raise(self, dispatcher, channel):
        channel.fail_sends = True
        assert await dispatcher.process(make_event("!ping", mentions={BOT})) is Outcome.COMMAND

    async def test_unexpected_error_isolated(self, dispatcher, channel, monkeypatch):
        async def broken(event):
            raise RuntimeError("classifier bug {with braces}")

        monkeypatch.setattr(dispatcher.classifier, "classify", broken)
        assert await dispatcher.process(make_event("hi", is_group=False)) is Outcome.FAILED

        monkeypatch.undo()
        assert await dispatcher.process(make_event("hi", is_group=False)) is Outcome.AI_TURN

    async def test_state_kept_after_handler_failure(self, dispatcher, clock):
        dispatcher.commands.register(ExplodingCommand())
        await dispatcher.process(make_event("!boom", mentions={BOT}, sender="u1"))
        assert await dispatcher.process(make_event("!boom", mentions={BOT}, sender="u1")) is Outcome.BLOCKED


@pytest.mark.asyncio
class TestRunLoop:
    async def test_consumes_bus_until_stopped(self, config, provider, channel):
        dispatcher = EventDispatcher(
            config=config,
            channel=channel,
            provider=provider,
            commands=CommandRegistry(default_commands()),
        )
        runner = asyncio.create_task(dispatcher.run(channel.bus))

        await channel.inject_message("!ping", sender_id="u1", mentions={BOT})
        sent = await channel.wait_for_send(timeout=2.0)
        assert sent is not None
        assert sent.text == "Pong!"

        await channel.inject_message("hi", sender_id="u1", chat_id="dm", is_group=False)
        sent = await channel.wait_for_send(timeout=2.0)
        assert sent.text == "stub answer"

        dispatcher.stop()
        await asyncio.wait_for(runner, timeout=3.0)
        assert channel.bus.inbound_size == 0

    async def test_events_after_quoted_reply(self, dispatcher, provider):
        event = make_event("go on", quoted=QuotedMessage("previous answer", BOT))
        assert await dispatcher.process(event) is Outcome.AI_TURN
        assert provider.prompts == ["go on"]
