# -*- coding: utf-8 -*-
"""In-memory modmail transcripts and their flush to storage and the log channel"""

import threading
import time
from dataclasses import dataclass
from typing import Iterable

from models.modmail import MessageDirection, ModmailMessage, ModmailTicket
from utils.audit import log_action
from utils.capabilities import DeliveryError, TranscriptSink
from utils.database import epoch_to_iso, now_epoch
from utils.errors import WardenInfraException, WardenNotFoundError
from utils.helpers import notify_error
from utils.strings import get_guild_language, get_string

STAFF = "STAFF"
USER = "USER"

EMPTY_MESSAGE = "(empty message)"
NO_TRANSCRIPT = "No transcript content (no messages exchanged)"


@dataclass(frozen=True)
class TranscriptLine:
    ticket_id: int
    timestamp: str
    author: str
    content: str


@dataclass(frozen=True)
class FlushResult:
    ok: bool
    line_count: int
    reconstructed: bool = False
    channel_id: int | None = None
    message_id: int | None = None
    error: str | None = None


def format_content_with_attachments(content: str | None, attachments: Iterable[tuple[str | None, str]] = ()) -> str:
    """Append one ``[content-type] url`` line per attachment to the message text.

    A message with neither text nor attachments becomes ``(empty message)``.
    """
    parts = [content] if content and content.strip() else []
    for content_type, url in attachments:
        parts.append(f"[{content_type or 'file'}] {url}")
    return "\n".join(parts) if parts else EMPTY_MESSAGE


def format_transcript(lines: Iterable[TranscriptLine]) -> str:
    return "\n".join(f"[{line.timestamp}] {line.author}: {line.content}" for line in lines)


class TranscriptBuffer:
    """Per-ticket ordered lines, appended by message routing and drained by flush.

    ``drain`` and ``append`` share one lock, so a line routed while a ticket closes either lands in the
    drained batch or stays buffered for the next flush. Routing stops appending once the ticket is
    closed, and closing an already closed ticket flushes whatever a failed flush put back.
    """

    def __init__(self):
        self._lines: dict[int, list[TranscriptLine]] = {}
        self._lock = threading.Lock()

    def append(self, ticket_id: int, author: str, content: str, timestamp: str | None = None) -> TranscriptLine:
        line = TranscriptLine(ticket_id, timestamp or epoch_to_iso(now_epoch()), author, content or EMPTY_MESSAGE)
        with self._lock:
            self._lines.setdefault(ticket_id, []).append(line)
        return line

    def lines(self, ticket_id: int) -> list[TranscriptLine]:
        with self._lock:
            return list(self._lines.get(ticket_id, ()))

    def drain(self, ticket_id: int) -> list[TranscriptLine]:
        with self._lock:
            return self._lines.pop(ticket_id, [])

    def restore(self, ticket_id: int, lines: list[TranscriptLine]) -> None:
        """Put drained lines back in front of anything appended since."""
        if not lines:
            return
        with self._lock:
            self._lines[ticket_id] = list(lines) + self._lines.get(ticket_id, [])

    def discard(self, ticket_id: int) -> None:
        with self._lock:
            self._lines.pop(ticket_id, None)

    def ticket_ids(self) -> list[int]:
        with self._lock:
            return list(self._lines)


def reconstruct_lines(ticket_id: int, session) -> list[TranscriptLine]:
    """Rebuild a transcript from the routed message records, e.g. after a restart."""
    lines = []
    for row in ModmailMessage.get_by_ticket(ticket_id, session):
        author = STAFF if row.Direction == MessageDirection.TO_USER else USER
        lines.append(TranscriptLine(ticket_id, epoch_to_iso(row.CreatedAt), author, row.Content or EMPTY_MESSAGE))
    return lines


async def flush_transcript(bot, buffer: TranscriptBuffer, sink: TranscriptSink, ticket_id: int) -> FlushResult:
    """Persist a ticket's transcript on the ticket row and publish it to the log channel.

    The buffer is only emptied when both steps succeed; on failure the drained lines go back into
    the buffer so the flush can be retried.
    """
    buffered = buffer.drain(ticket_id)
    lines = buffered
    reconstructed = False
    guild_id = user_id = None

    try:
        with bot.session_scope() as session:
            ticket = ModmailTicket.get_by_id(ticket_id, session)
            if ticket is None:
                raise WardenNotFoundError(f"Modmail ticket #{ticket_id} not found.")
            guild_id, user_id, app_code = ticket.GuildId, ticket.UserId, ticket.AppCode
            lang = get_guild_language(guild_id, session)
            if not lines:
                lines = reconstruct_lines(ticket_id, session)
                reconstructed = bool(lines)

        document = format_transcript(lines) if lines else NO_TRANSCRIPT
        filename = f"modmail-{app_code or ticket_id}-{int(time.time() * 1000)}.txt"
        header = get_string(lang, "modmail.transcript_header", ticket=ticket_id, user=user_id, lines=len(lines))
        published = await sink.publish(guild_id, filename, document, header)

        with bot.session_scope() as session:
            ticket = ModmailTicket.get_by_id(ticket_id, session)
            ticket.Transcript = document
            if published is not None:
                ticket.LogChannelId, ticket.LogMessageId = published
    except Exception as ex:
        buffer.restore(ticket_id, buffered)
        if isinstance(ex, WardenNotFoundError):
            raise
        if isinstance(ex, (DeliveryError, WardenInfraException)):
            bot.log.warning(f"[{guild_id}] transcript flush for ticket #{ticket_id} failed: {ex}")
        else:
            bot.log.error(f"[{guild_id}] transcript flush for ticket #{ticket_id} failed: {ex!r}", exc_info=True)
            await notify_error(bot, f"[{guild_id}] modmail transcript", ex)
        error = str(ex) or type(ex).__name__
        if guild_id is not None:
            log_action(
                bot,
                guild_id,
                "modmail_transcript_fail",
                subject_id=user_id,
                meta={"ticketId": ticket_id, "error": error, "lines": len(lines)},
            )
        return FlushResult(ok=False, line_count=len(lines), reconstructed=reconstructed, error=error)

    channel_id, message_id = published if published is not None else (None, None)
    bot.log.debug(f"[{guild_id}] flushed {len(lines)} transcript lines for ticket #{ticket_id}")
    return FlushResult(
        ok=True,
        line_count=len(lines),
        reconstructed=reconstructed,
        channel_id=channel_id,
        message_id=message_id,
    )
