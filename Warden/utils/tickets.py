# -*- coding: utf-8 -*-
"""Modmail ticket lifecycle: open, close, orphan cleanup and the in-memory routing index.

At most one ticket per (guild, user) is open at any time. The ``OpenModmailGuard`` row for the
pair is the lock: it is inserted together with the ticket in one transaction, and the primary
key on the pair makes the second of two racing inserts fail. That holds across processes
sharing the database.
"""

import asyncio
from dataclasses import dataclass
from datetime import timedelta
from typing import Union

from sqlalchemy.exc import IntegrityError

from models.modmail import MessageDirection, ModmailMessage, ModmailTicket, OpenModmailGuard, TicketStatus
from utils.audit import log_action
from utils.capabilities import ChannelGateway, DeliveryError, TranscriptSink
from utils.database import epoch_to_iso, now_epoch, utcnow
from utils.errors import WardenInfraException, WardenNotFoundError
from utils.helpers import guild_context, notify_error
from utils.strings import get_guild_language, get_string
from utils.transcript import (
    STAFF,
    USER,
    FlushResult,
    TranscriptBuffer,
    TranscriptLine,
    flush_transcript,
    format_content_with_attachments,
)

# a NULL-thread guard older than this was left behind by a crash mid-open
STALE_PENDING_AFTER = timedelta(minutes=5)


@dataclass(frozen=True)
class TicketRef:
    ticket_id: int
    guild_id: int
    user_id: int
    thread_id: int


@dataclass(frozen=True)
class Opened:
    ticket_id: int
    thread_id: int


@dataclass(frozen=True)
class AlreadyOpen:
    """The pair already has an open ticket. ``thread_id`` is None while another process creates it."""

    ticket_id: int | None
    thread_id: int | None


@dataclass(frozen=True)
class OpenFailed:
    code: int
    message: str


OpenResult = Union[Opened, AlreadyOpen, OpenFailed]


@dataclass(frozen=True)
class CloseResult:
    ticket_id: int
    already_closed: bool
    transcript: FlushResult | None = None
    archived: bool = False
    user_notified: bool = False


class OpenTicketIndex:
    """Process-wide map of open tickets, used to route messages without a database round trip.

    Lifecycle: ``load`` once at startup (before any message is routed), then mutated only by
    the ticket manager's open, close and orphan cleanup paths, and ``clear`` on shutdown.
    Lookups before ``load`` raise, so a missed hydration cannot silently drop messages.
    """

    def __init__(self):
        self._by_thread: dict[int, TicketRef] = {}
        self._by_pair: dict[tuple[int, int], TicketRef] = {}
        self._opening: dict[tuple[int, int], asyncio.Future] = {}
        self._hydrated = False

    @property
    def is_hydrated(self) -> bool:
        return self._hydrated

    def __len__(self) -> int:
        return len(self._by_thread)

    def _require_hydrated(self) -> None:
        if not self._hydrated:
            raise WardenInfraException("Open ticket index used before hydration.")

    def load(self, refs) -> None:
        self._by_thread.clear()
        self._by_pair.clear()
        for ref in refs:
            self.add(ref)
        self._hydrated = True

    def add(self, ref: TicketRef) -> None:
        self._by_thread[ref.thread_id] = ref
        self._by_pair[(ref.guild_id, ref.user_id)] = ref

    def discard(self, ref: TicketRef) -> None:
        if self._by_thread.get(ref.thread_id) == ref:
            del self._by_thread[ref.thread_id]
        if self._by_pair.get((ref.guild_id, ref.user_id)) == ref:
            del self._by_pair[(ref.guild_id, ref.user_id)]

    def discard_thread(self, thread_id: int) -> TicketRef | None:
        ref = self._by_thread.get(thread_id)
        if ref is not None:
            self.discard(ref)
        return ref

    def ticket_for_thread(self, thread_id: int) -> TicketRef | None:
        self._require_hydrated()
        return self._by_thread.get(thread_id)

    def ticket_for_user(self, guild_id: int, user_id: int) -> TicketRef | None:
        self._require_hydrated()
        return self._by_pair.get((guild_id, user_id))

    def tickets_for_user(self, user_id: int) -> list[TicketRef]:
        """All open tickets of a user across guilds, newest first."""
        self._require_hydrated()
        refs = [ref for (_, uid), ref in self._by_pair.items() if uid == user_id]
        return sorted(refs, key=lambda ref: ref.ticket_id, reverse=True)

    def begin_open(self, guild_id: int, user_id: int) -> None:
        self._opening[(guild_id, user_id)] = asyncio.get_running_loop().create_future()

    def finish_open(self, guild_id: int, user_id: int, thread_id: int | None) -> None:
        future = self._opening.pop((guild_id, user_id), None)
        if future is not None and not future.done():
            future.set_result(thread_id)

    def pending_open(self, guild_id: int, user_id: int) -> asyncio.Future | None:
        """The in-flight open of this process for the pair, resolving to its thread id (None on failure)."""
        return self._opening.get((guild_id, user_id))

    def clear(self) -> None:
        self._by_thread.clear()
        self._by_pair.clear()
        for future in self._opening.values():
            if not future.done():
                future.set_result(None)
        self._opening.clear()
        self._hydrated = False


class TicketManager:
    """Opens and closes modmail tickets and records the messages routed through them."""

    def __init__(
        self,
        bot,
        index: OpenTicketIndex,
        transcripts: TranscriptBuffer,
        channels: ChannelGateway,
        sink: TranscriptSink,
    ):
        self.bot = bot
        self.index = index
        self.transcripts = transcripts
        self.channels = channels
        self.sink = sink

    # ------------------------------------------------------------------
    # startup / shutdown
    # ------------------------------------------------------------------

    def hydrate(self) -> int:
        """Load every open ticket into the index. Must finish before messages are routed."""
        cutoff = utcnow() - STALE_PENDING_AFTER
        with self.bot.session_scope() as session:
            for guard in OpenModmailGuard.get_stale_pending(cutoff, session):
                self.bot.log.warning(
                    f"{guild_context(guard.GuildId)} dropping stale modmail claim for {guard.UserId} "
                    f"(ticket #{guard.TicketId} never got a thread)"
                )
                ticket = ModmailTicket.get_by_id(guard.TicketId, session)
                session.delete(guard)
                session.flush()
                if ticket is not None:
                    session.delete(ticket)
                    session.flush()

            refs = [
                TicketRef(guard.TicketId, guard.GuildId, guard.UserId, guard.ThreadId)
                for guard in OpenModmailGuard.get_all(session)
                if guard.ThreadId is not None
            ]

        self.index.load(refs)
        self.bot.log.info(f"hydrated {len(refs)} open modmail tickets")
        return len(refs)

    def teardown(self) -> None:
        self.index.clear()

    # ------------------------------------------------------------------
    # open
    # ------------------------------------------------------------------

    def _claim(self, guild_id: int, user_id: int, initiator_id: int | None, app_code: str | None):
        """Insert ticket and guard in one transaction. Returns the new ticket id or AlreadyOpen."""
        with self.bot.session_scope() as session:
            guard = OpenModmailGuard.get(guild_id, user_id, session)
            if guard is not None:
                return AlreadyOpen(guard.TicketId, guard.ThreadId)

            ticket = ModmailTicket(
                GuildId=guild_id,
                UserId=user_id,
                OpenedBy=initiator_id,
                AppCode=app_code,
                Status=TicketStatus.OPEN,
            )
            session.add(ticket)
            try:
                session.flush()
                session.add(OpenModmailGuard(GuildId=guild_id, UserId=user_id, TicketId=ticket.Id))
                session.flush()
            except IntegrityError:
                # lost the race against another process
                session.rollback()
                guard = OpenModmailGuard.get(guild_id, user_id, session)
                if guard is None:
                    return AlreadyOpen(None, None)
                return AlreadyOpen(guard.TicketId, guard.ThreadId)
            ticket_id = ticket.Id

        self.index.begin_open(guild_id, user_id)
        return ticket_id

    def _release(self, guild_id: int, user_id: int, ticket_id: int) -> None:
        """Undo a claim whose thread could not be created."""
        with self.bot.session_scope() as session:
            OpenModmailGuard.delete_for_ticket(ticket_id, session)
            ticket = ModmailTicket.get_by_id(ticket_id, session)
            if ticket is not None:
                session.delete(ticket)
        self.bot.log.debug(f"{guild_context(guild_id)} released modmail claim of {user_id} (ticket #{ticket_id})")

    async def open_ticket(
        self, guild_id: int, user_id: int, initiator_id: int | None = None, app_code: str | None = None
    ) -> OpenResult:
        """Open a ticket for the pair, or report the one that is already open."""
        claimed = self._claim(guild_id, user_id, initiator_id, app_code)
        if isinstance(claimed, AlreadyOpen) and claimed.thread_id is None:
            waiter = self.index.pending_open(guild_id, user_id)
            if waiter is not None:
                thread_id = await waiter
                if thread_id is not None:
                    return AlreadyOpen(claimed.ticket_id, thread_id)
                # the other open failed and gave the slot back
                claimed = self._claim(guild_id, user_id, initiator_id, app_code)
        if isinstance(claimed, AlreadyOpen):
            return claimed

        ticket_id = claimed
        try:
            thread_id = await self.channels.create_channel(guild_id, user_id, f"modmail-{app_code or user_id}")
        except Exception as ex:
            self.index.finish_open(guild_id, user_id, None)
            self._release(guild_id, user_id, ticket_id)
            if isinstance(ex, DeliveryError):
                self.bot.log.warning(f"{guild_context(guild_id)} could not create modmail thread for {user_id}: {ex}")
                return OpenFailed(ex.code, ex.message)
            self.bot.log.error(f"{guild_context(guild_id)} modmail thread creation crashed: {ex}", exc_info=True)
            await notify_error(self.bot, f"{guild_context(guild_id)} modmail open", ex)
            return OpenFailed(0, str(ex))

        try:
            with self.bot.session_scope() as session:
                guard = OpenModmailGuard.get(guild_id, user_id, session)
                if guard is not None and guard.TicketId == ticket_id:
                    guard.ThreadId = thread_id
                ticket = ModmailTicket.get_by_id(ticket_id, session)
                ticket.ThreadId = thread_id
                lang = get_guild_language(guild_id, session)
        except WardenInfraException:
            self.index.finish_open(guild_id, user_id, None)
            self._release(guild_id, user_id, ticket_id)
            raise

        self.index.add(TicketRef(ticket_id, guild_id, user_id, thread_id))
        self.index.finish_open(guild_id, user_id, thread_id)

        try:
            intro = get_string(lang, "modmail.thread_intro", ticket=ticket_id, user=user_id)
            await self.channels.send(thread_id, intro)
        except Exception as ex:
            await self.report_failure(guild_id, f"could not post modmail intro in {thread_id}", ex)

        log_action(
            self.bot,
            guild_id,
            "modmail_open",
            actor_id=initiator_id,
            subject_id=user_id,
            app_code=app_code,
            meta={"ticketId": ticket_id, "threadId": thread_id},
        )
        self.bot.log.info(f"{guild_context(guild_id)} opened modmail ticket #{ticket_id} for {user_id}")
        return Opened(ticket_id, thread_id)

    async def report_failure(self, guild_id: int, context: str, ex: Exception) -> None:
        """Log a failed best-effort platform call; anything but a ``DeliveryError`` also reaches the operators."""
        if isinstance(ex, DeliveryError):
            self.bot.log.warning(f"{guild_context(guild_id)} {context}: {ex}")
            return
        self.bot.log.error(f"{guild_context(guild_id)} {context}: {ex!r}", exc_info=True)
        await notify_error(self.bot, f"{guild_context(guild_id)} modmail", ex)

    # ------------------------------------------------------------------
    # close
    # ------------------------------------------------------------------

    async def close_ticket(
        self, ticket_id: int, actor_id: int | None = None, reason: str | None = None, notify_user: bool = True
    ) -> CloseResult:
        """Close a ticket. Closing an already closed ticket succeeds without doing anything."""
        with self.bot.session_scope() as session:
            ticket = ModmailTicket.get_for_update(ticket_id, session)
            if ticket is None:
                raise WardenNotFoundError(f"Modmail ticket #{ticket_id} not found.")
            guild_id, user_id, thread_id, app_code = ticket.GuildId, ticket.UserId, ticket.ThreadId, ticket.AppCode
            already_closed = ticket.Status == TicketStatus.CLOSED
            if not already_closed:
                ticket.Status = TicketStatus.CLOSED
                ticket.ClosedAt = utcnow()
                ticket.ClosedBy = actor_id
                OpenModmailGuard.delete_for_ticket(ticket_id, session)
            lang = get_guild_language(guild_id, session)

        if thread_id is not None:
            self.index.discard(TicketRef(ticket_id, guild_id, user_id, thread_id))
        if already_closed:
            # lines left behind by a failed flush get another chance
            transcript = None
            if self.transcripts.lines(ticket_id):
                transcript = await flush_transcript(self.bot, self.transcripts, self.sink, ticket_id)
            return CloseResult(ticket_id, already_closed=True, transcript=transcript)

        transcript = await flush_transcript(self.bot, self.transcripts, self.sink, ticket_id)

        user_notified = False
        if notify_user:
            guild = self.bot.get_guild(guild_id)
            guild_name = guild.name if guild is not None else str(guild_id)
            try:
                closed_dm = get_string(lang, "modmail.closed_dm", guild=guild_name)
                await self.channels.send_direct_message(user_id, closed_dm)
                user_notified = True
            except Exception as ex:
                await self.report_failure(guild_id, f"could not DM {user_id} about closed ticket", ex)

        archived = False
        if thread_id is not None:
            try:
                await self.channels.archive(thread_id)
                archived = True
            except Exception as ex:
                await self.report_failure(guild_id, f"could not archive modmail thread {thread_id}", ex)

        log_action(
            self.bot,
            guild_id,
            "modmail_close",
            actor_id=actor_id,
            subject_id=user_id,
            app_code=app_code,
            reason=reason,
            meta={"ticketId": ticket_id, "transcriptLines": transcript.line_count, "archive": archived},
        )
        self.bot.log.info(f"{guild_context(guild_id)} closed modmail ticket #{ticket_id}")
        return CloseResult(ticket_id, False, transcript, archived, user_notified)

    async def close_for_user(
        self,
        guild_id: int,
        user_id: int,
        actor_id: int | None = None,
        reason: str | None = None,
        notify_user: bool = True,
    ) -> CloseResult | None:
        """Close whatever ticket the pair has open. Returns None when there is none."""
        with self.bot.session_scope() as session:
            guard = OpenModmailGuard.get(guild_id, user_id, session)
            ticket_id = guard.TicketId if guard is not None else None
        if ticket_id is None:
            return None
        return await self.close_ticket(ticket_id, actor_id=actor_id, reason=reason, notify_user=notify_user)

    async def handle_channel_deleted(self, thread_id: int) -> int | None:
        """Release the slot of a ticket whose thread was deleted out-of-band.

        Returns the affected ticket id, or None if the thread did not back an open ticket. Racing
        with a regular close is harmless: whichever runs second finds nothing left to do.
        """
        with self.bot.session_scope() as session:
            guard_deleted = OpenModmailGuard.delete_by_thread(thread_id, session)
            ticket = ModmailTicket.get_by_thread(thread_id, session)
            if ticket is None or (ticket.Status == TicketStatus.CLOSED and not guard_deleted):
                ticket_id = None
            else:
                ticket_id, guild_id, user_id = ticket.Id, ticket.GuildId, ticket.UserId
                if ticket.Status == TicketStatus.OPEN:
                    ticket.Status = TicketStatus.CLOSED
                    ticket.ClosedAt = utcnow()

        self.index.discard_thread(thread_id)
        if ticket_id is None:
            return None

        transcript = await flush_transcript(self.bot, self.transcripts, self.sink, ticket_id)
        log_action(
            self.bot,
            guild_id,
            "modmail_orphan_cleanup",
            subject_id=user_id,
            meta={"ticketId": ticket_id, "threadId": thread_id, "transcriptLines": transcript.line_count},
        )
        self.bot.log.info(f"{guild_context(guild_id)} thread {thread_id} deleted, released ticket #{ticket_id}")
        return ticket_id

    # ------------------------------------------------------------------
    # message routing
    # ------------------------------------------------------------------

    def record_message(
        self,
        ticket_id: int,
        direction: MessageDirection,
        content: str | None,
        attachments=(),
        thread_message_id: int | None = None,
        dm_message_id: int | None = None,
    ) -> TranscriptLine | None:
        """Store a relayed message and add it to the ticket's transcript.

        The message row is always kept. Only a ticket that is still open gets the transcript line,
        since a closed ticket has already flushed its buffer and nothing would drain it again.
        """
        text = format_content_with_attachments(content, attachments)
        created_at = now_epoch()
        author = STAFF if direction == MessageDirection.TO_USER else USER
        with self.bot.session_scope() as session:
            session.add(
                ModmailMessage(
                    TicketId=ticket_id,
                    Direction=direction,
                    ThreadMessageId=thread_message_id,
                    DmMessageId=dm_message_id,
                    Content=text,
                    CreatedAt=created_at,
                )
            )
            ticket = ModmailTicket.get_for_update(ticket_id, session)
            if ticket is None or ticket.Status != TicketStatus.OPEN:
                self.bot.log.debug(f"ticket #{ticket_id} is closed, message kept out of the transcript")
                return None
            return self.transcripts.append(ticket_id, author, text, timestamp=epoch_to_iso(created_at))
