import time
from unittest.mock import AsyncMock, MagicMock, patch

import discord
import pytest

from utils.capabilities import DeliveryError
from utils.error_throttle import ErrorThrottle
from utils.helpers import error_context, format_traceback, guild_context, notify_error, parse_id


# --- parse_id ---


def test_parse_id_from_int():
    assert parse_id(283746501234567890) == 283746501234567890


def test_parse_id_from_string():
    assert parse_id("283746501234567890") == 283746501234567890


# --- guild_context / error_context ---


def test_guild_context_with_name():
    assert guild_context(456, "TestGuild") == "[TestGuild (456)]"


def test_guild_context_without_name():
    assert guild_context(456) == "[unknown guild (456)]"


def test_guild_context_for_dm():
    assert guild_context(None) == "[DM]"


def test_error_context_with_actor():
    assert error_context(456, "TestGuild", 123, "approve") == "[TestGuild (456)] 123 -> approve"


def test_error_context_without_actor():
    assert error_context(456, "TestGuild", None, "modmail open") == "[TestGuild (456)] system -> modmail open"


# --- format_traceback ---


def test_format_traceback_contains_exception():
    try:
        raise ValueError("kaputt")
    except ValueError as ex:
        text = format_traceback(ex)
    assert "ValueError: kaputt" in text


def test_format_traceback_is_truncated():
    text = format_traceback(ValueError("x" * 5000))
    assert text.startswith("...")
    assert len(text) <= 1803


# --- notify_error ---


def _bot_with_recipients(*recipients):
    bot = MagicMock()
    bot.error_throttle = ErrorThrottle()
    bot.error_recipients = list(recipients)
    user = MagicMock()
    user.send = AsyncMock()
    bot.fetch_user = AsyncMock(return_value=user)
    return bot, user


@pytest.mark.asyncio
async def test_notify_error_dms_every_recipient():
    bot, user = _bot_with_recipients(1, 2)

    await notify_error(bot, "[Guild (1)] grant role", ValueError("boom"))

    assert bot.fetch_user.await_count == 2
    assert user.send.await_count == 2
    assert "ValueError" in user.send.call_args[0][0]


@pytest.mark.asyncio
async def test_notify_error_is_throttled():
    bot, user = _bot_with_recipients(1)

    await notify_error(bot, "grant role", ValueError("boom"))
    await notify_error(bot, "grant role", ValueError("boom"))

    assert user.send.await_count == 1


@pytest.mark.asyncio
async def test_notify_error_skips_unreachable_recipient():
    bot, user = _bot_with_recipients(1, 2)
    user.send.side_effect = [discord.HTTPException(MagicMock(status=403), "Cannot send messages to this user"), None]

    await notify_error(bot, "grant role", ValueError("boom"))

    assert user.send.await_count == 2
    bot.log.warning.assert_called_once()


@pytest.mark.asyncio
async def test_notify_error_reports_held_back_repeats():
    bot, user = _bot_with_recipients(1)
    error = DeliveryError(50013, "Missing Permissions")
    for _ in range(3):
        bot.error_throttle.admit("kick", error)

    with patch("utils.error_throttle.time") as mock_time:
        mock_time.monotonic.return_value = time.monotonic() + ErrorThrottle.WINDOW + 1
        await notify_error(bot, "kick", error)

    content = user.send.call_args[0][0]
    assert content.startswith("**DeliveryError 50013** kick (2 more since the last report)")
