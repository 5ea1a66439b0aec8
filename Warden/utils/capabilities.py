# -*- coding: utf-8 -*-
"""Narrow interfaces to the chat platform, and their discord.py-backed implementations.

The decision and modmail flows only ever talk to these capabilities, so tests can hand in
plain doubles instead of discord objects.
"""

import io
from typing import Protocol

import discord

from models.guild import GateGuildConfig

# Discord JSON error codes
PERMISSION_DENIED = 50013
CANNOT_DM_USER = 50007
UNKNOWN_ROLE = 10011
NOT_CONFIGURED = 0


class DeliveryError(Exception):
    """A chat platform call failed. ``code`` is the platform's error code."""

    def __init__(self, code: int, message: str):
        super().__init__(f"{code}: {message}")
        self.code = code
        self.message = message

    @property
    def is_permission_denied(self) -> bool:
        return self.code == PERMISSION_DENIED

    @classmethod
    def from_http(cls, ex: discord.HTTPException) -> "DeliveryError":
        return cls(ex.code, ex.text or str(ex))


class MemberHandle(Protocol):
    id: int

    def has_role(self, role_id: int) -> bool: ...

    async def grant_role(self, role_id: int, reason: str | None = None) -> None: ...

    async def kick(self, reason: str | None = None) -> None: ...


class MembershipGateway(Protocol):
    async def fetch_member(self, guild_id: int, user_id: int) -> MemberHandle | None: ...

    async def send_direct_message(self, user_id: int, content: str) -> int | None: ...


class ChannelGateway(Protocol):
    async def create_channel(self, guild_id: int, user_id: int, name: str) -> int: ...

    async def send(self, channel_id: int, content: str) -> int | None: ...

    async def send_direct_message(self, user_id: int, content: str) -> int | None: ...

    async def archive(self, channel_id: int) -> None: ...


class TranscriptSink(Protocol):
    async def publish(self, guild_id: int, filename: str, document: str, header: str) -> tuple[int, int] | None: ...


class DiscordMember:
    def __init__(self, member: discord.Member):
        self._member = member

    @property
    def id(self) -> int:
        return self._member.id

    def has_role(self, role_id: int) -> bool:
        return any(role.id == role_id for role in self._member.roles)

    async def grant_role(self, role_id: int, reason: str | None = None) -> None:
        role = self._member.guild.get_role(role_id)
        if role is None:
            raise DeliveryError(UNKNOWN_ROLE, f"role {role_id} does not exist")
        try:
            await self._member.add_roles(role, reason=reason)
        except discord.HTTPException as ex:
            raise DeliveryError.from_http(ex) from ex

    async def kick(self, reason: str | None = None) -> None:
        try:
            await self._member.kick(reason=reason)
        except discord.HTTPException as ex:
            raise DeliveryError.from_http(ex) from ex


class DiscordMembership:
    def __init__(self, bot):
        self.bot = bot

    async def fetch_member(self, guild_id: int, user_id: int) -> DiscordMember | None:
        guild = self.bot.get_guild(guild_id)
        if guild is None:
            return None
        member = guild.get_member(user_id)
        if member is None:
            try:
                member = await guild.fetch_member(user_id)
            except discord.NotFound:
                return None
            except discord.HTTPException as ex:
                raise DeliveryError.from_http(ex) from ex
        return DiscordMember(member)

    async def send_direct_message(self, user_id: int, content: str) -> int | None:
        return await _dm_user(self.bot, user_id, content)


async def _dm_user(bot, user_id: int, content: str) -> int:
    try:
        user = await bot.fetch_user(user_id)
        message = await user.send(content)
    except discord.HTTPException as ex:
        raise DeliveryError.from_http(ex) from ex
    return message.id


async def _resolve_channel(bot, channel_id: int):
    channel = bot.get_channel(channel_id)
    if channel is not None:
        return channel
    try:
        return await bot.fetch_channel(channel_id)
    except discord.HTTPException as ex:
        raise DeliveryError.from_http(ex) from ex


class DiscordChannels:
    """Private threads under the guild's configured modmail channel."""

    AUTO_ARCHIVE_MINUTES = 10080

    def __init__(self, bot):
        self.bot = bot

    async def create_channel(self, guild_id: int, user_id: int, name: str) -> int:
        with self.bot.session_scope() as session:
            config = GateGuildConfig.get(guild_id, session)
            parent_id = config.ModmailChannelId if config is not None else None
        if parent_id is None:
            raise DeliveryError(NOT_CONFIGURED, f"no modmail channel configured for guild {guild_id}")

        parent = await _resolve_channel(self.bot, parent_id)
        try:
            thread = await parent.create_thread(
                name=name[:100],
                type=discord.ChannelType.private_thread,
                auto_archive_duration=self.AUTO_ARCHIVE_MINUTES,
                invitable=False,
                reason=f"modmail for {user_id}",
            )
        except discord.HTTPException as ex:
            raise DeliveryError.from_http(ex) from ex
        return thread.id

    async def send(self, channel_id: int, content: str) -> int | None:
        channel = await _resolve_channel(self.bot, channel_id)
        try:
            message = await channel.send(content)
        except discord.HTTPException as ex:
            raise DeliveryError.from_http(ex) from ex
        return message.id

    async def send_direct_message(self, user_id: int, content: str) -> int | None:
        return await _dm_user(self.bot, user_id, content)

    async def archive(self, channel_id: int) -> None:
        channel = await _resolve_channel(self.bot, channel_id)
        try:
            await channel.edit(archived=True, locked=True)
        except discord.HTTPException as ex:
            raise DeliveryError.from_http(ex) from ex


class DiscordTranscriptSink:
    """Uploads transcripts as text files to the guild's modmail log channel."""

    def __init__(self, bot):
        self.bot = bot

    async def publish(self, guild_id: int, filename: str, document: str, header: str) -> tuple[int, int] | None:
        with self.bot.session_scope() as session:
            config = GateGuildConfig.get(guild_id, session)
            channel_id = config.ModmailLogChannelId if config is not None else None
        if channel_id is None:
            return None

        channel = await _resolve_channel(self.bot, channel_id)
        file = discord.File(io.BytesIO(document.encode("utf-8")), filename=filename)
        try:
            message = await channel.send(content=header, file=file)
        except discord.HTTPException as ex:
            raise DeliveryError.from_http(ex) from ex
        return channel.id, message.id
