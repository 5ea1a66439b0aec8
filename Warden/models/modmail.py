# -*- coding: utf-8 -*-
"""Modmail ticket database models"""

import enum

from sqlalchemy import (
    BigInteger,
    Column,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    PrimaryKeyConstraint,
    Unicode,
    UnicodeText,
)
from sqlalchemy import Enum as SAEnum
from sqlalchemy.orm import relationship

from utils import database as db


class TicketStatus(str, enum.Enum):
    OPEN = "open"
    CLOSED = "closed"


class MessageDirection(str, enum.Enum):
    """Which way a routed message travelled."""

    TO_USER = "to_user"
    TO_STAFF = "to_staff"


class ModmailTicket(db.BASE):
    """Database entity model for a modmail ticket."""

    __tablename__ = "ModmailTicket"
    __table_args__ = (
        Index("ModmailTicket_GuildId_UserId", "GuildId", "UserId"),
        Index("ModmailTicket_ThreadId", "ThreadId"),
    )

    Id = Column(Integer, primary_key=True)
    GuildId = Column(BigInteger, nullable=False)
    UserId = Column(BigInteger, nullable=False)
    OpenedBy = Column(BigInteger, nullable=True)
    AppCode = Column(Unicode(6), nullable=True)
    Status = Column(SAEnum(TicketStatus), nullable=False, default=TicketStatus.OPEN)
    ThreadId = Column(BigInteger, nullable=True)
    CreatedAt = Column(DateTime, nullable=False, default=db.utcnow)
    ClosedAt = Column(DateTime, nullable=True)
    ClosedBy = Column(BigInteger, nullable=True)
    Transcript = Column(UnicodeText, nullable=True)
    LogChannelId = Column(BigInteger, nullable=True)
    LogMessageId = Column(BigInteger, nullable=True)

    messages = relationship(
        "ModmailMessage",
        back_populates="ticket",
        cascade="all, delete, delete-orphan",
        order_by="ModmailMessage.Id",
    )

    @classmethod
    def get_by_id(cls, ticket_id, session):
        return session.query(cls).filter(cls.Id == ticket_id).first()

    @classmethod
    def get_for_update(cls, ticket_id, session):
        return session.query(cls).filter(cls.Id == ticket_id).with_for_update().first()

    @classmethod
    def get_by_thread(cls, thread_id, session):
        """Returns the most recent ticket backed by the given thread."""
        return session.query(cls).filter(cls.ThreadId == thread_id).order_by(cls.Id.desc()).first()

    @classmethod
    def get_open_for_user(cls, guild_id, user_id, session):
        return (
            session.query(cls)
            .filter(cls.GuildId == guild_id, cls.UserId == user_id, cls.Status == TicketStatus.OPEN)
            .order_by(cls.Id.desc())
            .first()
        )

    @classmethod
    def get_all_open(cls, session):
        return session.query(cls).filter(cls.Status == TicketStatus.OPEN).all()

    @classmethod
    def count_open_for_user(cls, guild_id, user_id, session):
        return (
            session.query(cls)
            .filter(cls.GuildId == guild_id, cls.UserId == user_id, cls.Status == TicketStatus.OPEN)
            .count()
        )


class OpenModmailGuard(db.BASE):
    """Exists if and only if the (guild, user) pair has an open ticket.

    The primary key is the pair itself; a second insert for the same pair fails with an
    IntegrityError, which is how concurrent opens are told apart. ``ThreadId`` stays NULL while
    the thread for the ticket is still being created.
    """

    __tablename__ = "OpenModmailGuard"
    __table_args__ = (
        PrimaryKeyConstraint("GuildId", "UserId"),
        Index("OpenModmailGuard_ThreadId", "ThreadId"),
    )

    GuildId = Column(BigInteger, nullable=False)
    UserId = Column(BigInteger, nullable=False)
    TicketId = Column(Integer, ForeignKey("ModmailTicket.Id"), nullable=False)
    ThreadId = Column(BigInteger, nullable=True)
    CreatedAt = Column(DateTime, nullable=False, default=db.utcnow)

    @property
    def is_pending(self) -> bool:
        return self.ThreadId is None

    @classmethod
    def get(cls, guild_id, user_id, session):
        return session.query(cls).filter(cls.GuildId == guild_id, cls.UserId == user_id).first()

    @classmethod
    def get_by_thread(cls, thread_id, session):
        return session.query(cls).filter(cls.ThreadId == thread_id).first()

    @classmethod
    def get_all(cls, session):
        return session.query(cls).all()

    @classmethod
    def delete(cls, guild_id, user_id, session) -> bool:
        """Deletes the guard for a pair. Returns whether a row existed."""
        return session.query(cls).filter(cls.GuildId == guild_id, cls.UserId == user_id).delete() > 0

    @classmethod
    def delete_for_ticket(cls, ticket_id, session) -> bool:
        return session.query(cls).filter(cls.TicketId == ticket_id).delete() > 0

    @classmethod
    def delete_by_thread(cls, thread_id, session) -> bool:
        return session.query(cls).filter(cls.ThreadId == thread_id).delete() > 0

    @classmethod
    def get_stale_pending(cls, cutoff, session):
        """Returns guards whose thread was never recorded and that are older than *cutoff*."""
        return session.query(cls).filter(cls.ThreadId.is_(None), cls.CreatedAt < cutoff).all()


class ModmailMessage(db.BASE):
    """A message routed between a ticket thread and the user's DMs."""

    __tablename__ = "ModmailMessage"
    __table_args__ = (
        Index("ModmailMessage_TicketId_CreatedAt", "TicketId", "CreatedAt"),
        Index("ModmailMessage_ThreadMessageId", "ThreadMessageId"),
    )

    Id = Column(Integer, primary_key=True)
    TicketId = Column(Integer, ForeignKey("ModmailTicket.Id"), nullable=False)
    Direction = Column(SAEnum(MessageDirection), nullable=False)
    ThreadMessageId = Column(BigInteger, nullable=True)
    DmMessageId = Column(BigInteger, nullable=True)
    Content = Column(UnicodeText, nullable=True)
    CreatedAt = Column(BigInteger, nullable=False, default=db.now_epoch)

    ticket = relationship("ModmailTicket", back_populates="messages")

    @classmethod
    def get_by_ticket(cls, ticket_id, session):
        """Returns the routed messages of a ticket in the order they were exchanged."""
        return session.query(cls).filter(cls.TicketId == ticket_id).order_by(cls.CreatedAt, cls.Id).all()
