"""General-purpose commands: ping, status, afk, ask."""

from __future__ import annotations

from loguru import logger

from chatgate.commands import BaseCommand, CommandContext
from chatgate.providers.base import UNAVAILABLE_REPLY


class PingCommand(BaseCommand):
    name = "ping"
    description = "Replies with Pong!"
    access_mode = "public"
    anti_spam = True
    cooldown = 3

    async def execute(self, ctx: CommandContext, args: list[str]) -> None:
        await ctx.reply("Pong!")
        logger.info(f"Command: ping from {ctx.event.display_name}")


class StatusCommand(BaseCommand):
    """Shows the caller's cooldowns and blacklist state."""

    name = "status"
    description = "Shows your cooldowns and spam blacklist state."
    access_mode = "public"
    anti_spam = False
    cooldown = 0

    async def execute(self, ctx: CommandContext, args: list[str]) -> None:
        status = ctx.governor.status(ctx.sender_id)
        prefix = (ctx.config.get("prefixes") or [""])[0] if ctx.config.get("prefixMode") != "none" else ""

        lines = ["*Your status:*", ""]
        if status.cooldowns:
            lines.append("Commands on cooldown:")
            for action, remaining in sorted(status.cooldowns.items()):
                lines.append(f"- *{prefix}{action}*: {remaining} seconds left")
        else:
            lines.append("No commands on cooldown.")
        lines.append("")

        if status.is_blacklisted:
            lines.append(f"You are *blocked* for spam (level {status.blacklist_level}).")
            lines.append(f"Time left: {status.blacklist_remaining} seconds.")
        else:
            lines.append("Not blocked for spam.")

        lines.append("")
        lines.append(f"Bot mode: *{ctx.config.get('botAccessMode')}*")
        lines.append(f"Bot owner: *{ctx.config.get('ownerIdentity', 'not set')}*")

        await ctx.reply("\n".join(lines))
        logger.info(f"Command: status for {ctx.sender_id}")


class AfkCommand(BaseCommand):
    """``afk <reason>`` goes away; bare ``afk`` while away comes back."""

    name = "afk"
    description = "Sets your away status. (afk [reason], or afk to come back)"
    access_mode = "public"
    anti_spam = True
    cooldown = 5

    async def execute(self, ctx: CommandContext, args: list[str]) -> None:
        reason = " ".join(args).strip()

        if reason:
            ctx.absence.set_absent(ctx.sender_id, reason)
            await ctx.reply(f"You are now AFK: *{reason}*. I'll let people know if they look for you.")
            return

        if ctx.absence.clear_absent(ctx.sender_id):
            await ctx.reply("You are no longer AFK. Welcome back!")
            return

        await ctx.reply("Usage: afk <reason> to go away, or afk on its own to come back.")
        logger.warning(f"Command: afk from {ctx.sender_id} without reason while not away")


class AskCommand(BaseCommand):
    """Explicit question to the reasoning provider."""

    name = "ask"
    description = "Asks the AI a question. (ask <question>)"
    access_mode = "public"
    anti_spam = True
    cooldown = 10

    async def execute(self, ctx: CommandContext, args: list[str]) -> None:
        prompt = " ".join(args).strip()
        if not prompt:
            await ctx.reply("Please put a question after the command.")
            return

        def _dev_error(exc: Exception) -> None:
            logger.error(f"[DEV_ERROR] AI request failed for {ctx.sender_id}: {exc}")

        answer = await ctx.provider.get_response(
            prompt,
            identity_hint=ctx.sender_id,
            channel_hint=ctx.event.channel_hint,
            verbose_errors=ctx.verbose,
            on_dev_error=_dev_error,
        )
        if answer:
            await ctx.reply(answer)
            return

        logger.warning(f"Command: ask for {ctx.sender_id} got no answer")
        if ctx.verbose:
            await ctx.reply(UNAVAILABLE_REPLY)
