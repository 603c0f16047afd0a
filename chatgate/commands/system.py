"""Owner-only commands: mode, setowner."""

from __future__ import annotations

from loguru import logger

from chatgate.commands import BaseCommand, CommandContext


class ModeCommand(BaseCommand):
    """Switch the global access mode between self and public."""

    name = "mode"
    description = "Sets the bot access mode (self/public). Owner only."
    access_mode = "self"

    async def execute(self, ctx: CommandContext, args: list[str]) -> None:
        if not args:
            await ctx.reply(f"Current mode: *{ctx.config.get('botAccessMode')}*. Usage: mode <self|public>")
            return

        new_mode = args[0].lower()
        if new_mode not in ("self", "public"):
            await ctx.reply("Invalid mode. Choose self or public.")
            logger.warning(f"Command: mode rejected value '{new_mode}' from {ctx.sender_id}")
            return

        ctx.config.set("botAccessMode", new_mode)
        await ctx.reply(f"Bot access mode is now *{new_mode}*.")
        logger.info(f"Command: mode set to {new_mode} by {ctx.sender_id}")


class SetOwnerCommand(BaseCommand):
    """Set the owner identity. Only the bot's own identity may run it."""

    name = "setowner"
    description = "Sets the bot owner identity. Bot only."
    access_mode = "self"

    async def execute(self, ctx: CommandContext, args: list[str]) -> None:
        if ctx.sender_id != ctx.config.get("botIdentity"):
            await ctx.reply("For safety, only the bot itself can run this command.")
            logger.warning(f"Command: setowner refused for {ctx.sender_id}")
            return

        if not args:
            current = ctx.config.get("ownerIdentity", "not set")
            await ctx.reply(f"Current owner: *{current}*. Usage: setowner <identity>")
            return

        ctx.config.set("ownerIdentity", args[0])
        await ctx.reply(f"Owner set to *{args[0]}*.")
        logger.info(f"Command: owner set to {args[0]}")
