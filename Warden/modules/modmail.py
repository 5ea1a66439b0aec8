# -*- coding: utf-8 -*-
"""Module relaying modmail between a user's DMs and the ticket thread"""

from discord import HTTPException, Message, RawThreadDeleteEvent
from discord.ext.commands import Cog

from models.modmail import MessageDirection
from utils.cog import WardenCog
from utils.errors import WardenInfraException
from utils.helpers import guild_context
from utils.strings import get_guild_language, get_string
from utils.tickets import TicketRef
from utils.transcript import format_content_with_attachments


def _attachments(message: Message) -> tuple:
    return tuple((attachment.content_type, attachment.url) for attachment in message.attachments)


class Modmail(WardenCog, Cog):
    """Cog for routing modmail messages"""

    @Cog.listener()
    async def on_message(self, message: Message) -> None:
        """Routes DMs to the user's open ticket thread and thread messages back to the user"""
        if message.author.bot or message.is_system():
            return

        index = self.bot.ticket_index
        if not index.is_hydrated:
            self.bot.log.warning("modmail message arrived before the ticket index was hydrated, dropping")
            return

        if message.guild is None:
            refs = index.tickets_for_user(message.author.id)
            if refs:
                await self.route_dm_to_thread(message, refs[0])
            return

        ref = index.ticket_for_thread(message.channel.id)
        if ref is not None:
            await self.route_thread_to_dm(message, ref)

    @Cog.listener()
    async def on_raw_thread_delete(self, payload: RawThreadDeleteEvent) -> None:
        """Releases the ticket slot when its thread is deleted out-of-band"""
        try:
            await self.bot.tickets.handle_channel_deleted(payload.thread_id)
        except WardenInfraException as ex:
            self.bot.log.error(f"{guild_context(payload.guild_id)} orphan cleanup of {payload.thread_id} failed: {ex}")

    async def route_dm_to_thread(self, message: Message, ref: TicketRef) -> None:
        with self.bot.session_scope() as session:
            lang = get_guild_language(ref.guild_id, session)

        text = format_content_with_attachments(message.content, _attachments(message))
        content = get_string(lang, "modmail.relay_to_staff", user=message.author.name, content=text)

        try:
            thread_message_id = await self.bot.tickets.channels.send(ref.thread_id, content)
        except Exception as ex:
            await self.bot.tickets.report_failure(ref.guild_id, f"could not relay DM into {ref.thread_id}", ex)
            return

        self.bot.tickets.record_message(
            ref.ticket_id,
            MessageDirection.TO_STAFF,
            message.content,
            _attachments(message),
            thread_message_id=thread_message_id,
            dm_message_id=message.id,
        )
        self.bot.log.debug(f"{guild_context(ref.guild_id)} routed DM -> thread for ticket #{ref.ticket_id}")

    async def route_thread_to_dm(self, message: Message, ref: TicketRef) -> None:
        with self.bot.session_scope() as session:
            lang = get_guild_language(ref.guild_id, session)

        text = format_content_with_attachments(message.content, _attachments(message))
        content = get_string(lang, "modmail.relay_to_user", guild=message.guild.name, content=text)

        try:
            dm_message_id = await self.bot.tickets.channels.send_direct_message(ref.user_id, content)
        except Exception as ex:
            await self.bot.tickets.report_failure(ref.guild_id, f"could not relay to {ref.user_id}", ex)
            try:
                await message.reply(get_string(lang, "modmail.relay_failed"))
            except HTTPException as reply_ex:
                self.bot.log.debug(f"could not tell staff about the failed relay: {reply_ex}")
            return

        self.bot.tickets.record_message(
            ref.ticket_id,
            MessageDirection.TO_USER,
            message.content,
            _attachments(message),
            thread_message_id=message.id,
            dm_message_id=dm_message_id,
        )
        self.bot.log.debug(f"{guild_context(ref.guild_id)} routed thread -> DM for ticket #{ref.ticket_id}")


async def setup(bot):
    """adds this module to the bot"""
    await bot.add_cog(Modmail(bot))
