# -*- coding: utf-8 -*-

from traceback import format_exception

import discord

# Discord caps message content at 2000 characters; leave room for the header.
_TRACEBACK_BUDGET = 1800


def parse_id(value) -> int:
    """Discord snowflakes arrive as int from the API and as str from YAML/env config."""
    return int(value)


def guild_context(guild_id: int, guild_name: str | None = None) -> str:
    """Render the ``[Guild (id)]`` prefix used in log lines and error reports."""
    if guild_id is None:
        return "[DM]"
    return f"[{guild_name or 'unknown guild'} ({guild_id})]"


def error_context(guild_id: int, guild_name: str | None, actor_id: int | None, action: str) -> str:
    """Build the context string attached to operator error reports.

    Example: ``[Test Guild (456)] 123 -> approve``
    """
    actor = f"{actor_id}" if actor_id is not None else "system"
    return f"{guild_context(guild_id, guild_name)} {actor} -> {action}"


def format_traceback(error: Exception) -> str:
    text = "".join(format_exception(type(error), error, error.__traceback__))
    if len(text) > _TRACEBACK_BUDGET:
        text = "..." + text[-_TRACEBACK_BUDGET:]
    return text


async def notify_error(bot, context: str, error: Exception) -> None:
    """DM every error recipient about an unexpected failure.

    Reports go through ``bot.error_throttle``; a report that follows throttled repeats says how many
    were held back. A recipient that cannot be reached is logged and skipped.
    """
    repeats = bot.error_throttle.admit(context, error)
    if repeats is None:
        bot.log.debug(f"error report throttled: {context}: {type(error).__name__}")
        return

    code = getattr(error, "code", None)
    title = f"**{type(error).__name__}**" if code is None else f"**{type(error).__name__} {code}**"
    held_back = f" ({repeats} more since the last report)" if repeats else ""
    content = f"{title} {context}{held_back}\n```\n{format_traceback(error)}\n```"
    for user_id in bot.error_recipients:
        try:
            user = await bot.fetch_user(user_id)
            await user.send(content)
        except discord.HTTPException as ex:
            bot.log.warning(f"could not deliver error report to {user_id}: {ex}")
