# -*- coding: utf-8 -*-
"""Application and review audit database models"""

import enum
import hashlib
from uuid import uuid4

from sqlalchemy import (
    BigInteger,
    Boolean,
    Column,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Unicode,
    UnicodeText,
)
from sqlalchemy import Enum as SAEnum
from sqlalchemy.orm import relationship

from utils import database as db


class ApplicationStatus(str, enum.Enum):
    """Lifecycle states of an application."""

    DRAFT = "draft"
    SUBMITTED = "submitted"
    NEEDS_INFO = "needs_info"
    APPROVED = "approved"
    REJECTED = "rejected"
    KICKED = "kicked"


TERMINAL_STATUSES = frozenset({ApplicationStatus.APPROVED, ApplicationStatus.REJECTED, ApplicationStatus.KICKED})
OPEN_STATUSES = frozenset({ApplicationStatus.DRAFT, ApplicationStatus.SUBMITTED, ApplicationStatus.NEEDS_INFO})


def short_code(application_id: str) -> str:
    """Six character hex code staff use to refer to an application. Derived, never stored."""
    return hashlib.sha1(application_id.encode("utf-8")).hexdigest()[:6].upper()


def _new_application_id() -> str:
    return uuid4().hex


class Application(db.BASE):
    """Database entity model for a membership application."""

    __tablename__ = "Application"
    __table_args__ = (
        Index("Application_GuildId_UserId", "GuildId", "UserId"),
        Index("Application_GuildId_Status", "GuildId", "Status"),
    )

    Id = Column(String(32), primary_key=True, default=_new_application_id)
    GuildId = Column(BigInteger, nullable=False)
    UserId = Column(BigInteger, nullable=False)
    Status = Column(SAEnum(ApplicationStatus), nullable=False, default=ApplicationStatus.DRAFT)
    PermanentlyRejected = Column(Boolean, nullable=False, default=False)
    PermanentRejectAt = Column(DateTime, nullable=True)
    ResolutionReason = Column(UnicodeText, nullable=True)
    ResolverId = Column(BigInteger, nullable=True)
    CreatedAt = Column(DateTime, nullable=False, default=db.utcnow)
    UpdatedAt = Column(DateTime, nullable=False, default=db.utcnow)
    SubmittedAt = Column(DateTime, nullable=True)
    ResolvedAt = Column(DateTime, nullable=True)

    review_actions = relationship(
        "ReviewAction",
        back_populates="application",
        order_by="ReviewAction.Id",
    )

    @property
    def short_code(self) -> str:
        return short_code(self.Id)

    @property
    def is_terminal(self) -> bool:
        return self.Status in TERMINAL_STATUSES

    @classmethod
    def get_by_id(cls, application_id, session):
        """Returns an application by its primary key."""
        return session.query(cls).filter(cls.Id == application_id).first()

    @classmethod
    def get_for_update(cls, application_id, session):
        """Returns an application with a row lock held until the surrounding transaction ends.

        SQLite ignores the lock; its database-level write lock serializes writers instead.
        """
        return session.query(cls).filter(cls.Id == application_id).with_for_update().first()

    @classmethod
    def get_by_short_code(cls, guild_id, code, session):
        """Resolves a short code within a guild. Returns None if no application matches."""
        code = code.strip().upper()
        for app in session.query(cls).filter(cls.GuildId == guild_id).order_by(cls.CreatedAt.desc()):
            if app.short_code == code:
                return app
        return None

    @classmethod
    def get_open_for_user(cls, guild_id, user_id, session):
        """Returns the user's application that is not yet decided, if any."""
        return (
            session.query(cls)
            .filter(cls.GuildId == guild_id, cls.UserId == user_id, cls.Status.in_(list(OPEN_STATUSES)))
            .order_by(cls.CreatedAt.desc())
            .first()
        )

    @classmethod
    def get_all_by_user(cls, guild_id, user_id, session):
        return (
            session.query(cls)
            .filter(cls.GuildId == guild_id, cls.UserId == user_id)
            .order_by(cls.CreatedAt.desc())
            .all()
        )


class ReviewAction(db.BASE):
    """One recorded staff decision. Written once, never updated."""

    __tablename__ = "ReviewAction"
    __table_args__ = (
        Index("ReviewAction_ApplicationId", "ApplicationId"),
        Index("ReviewAction_ModeratorId", "ModeratorId"),
    )

    Id = Column(Integer, primary_key=True)
    ApplicationId = Column(String(32), ForeignKey("Application.Id"), nullable=False)
    ModeratorId = Column(BigInteger, nullable=False)
    # free text so new decision kinds need no migration
    Action = Column(Unicode(32), nullable=False)
    Reason = Column(UnicodeText, nullable=True)
    CreatedAt = Column(BigInteger, nullable=False, default=db.now_epoch)

    application = relationship("Application", back_populates="review_actions")

    @classmethod
    def get_by_application(cls, application_id, session):
        """Returns all actions for an application, oldest first."""
        return session.query(cls).filter(cls.ApplicationId == application_id).order_by(cls.Id).all()

    @classmethod
    def get_latest(cls, application_id, session):
        return session.query(cls).filter(cls.ApplicationId == application_id).order_by(cls.Id.desc()).first()

    @classmethod
    def count_by_application(cls, application_id, session):
        return session.query(cls).filter(cls.ApplicationId == application_id).count()
