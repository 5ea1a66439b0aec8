# -*- coding: utf-8 -*-
"""Action log database model"""

import json

from sqlalchemy import BigInteger, Column, Index, Integer, String, Unicode, UnicodeText

from utils import database as db


class ActionLog(db.BASE):
    """One state-changing operation across the review and modmail flows."""

    __tablename__ = "ActionLog"
    __table_args__ = (
        Index("ActionLog_GuildId_CreatedAt", "GuildId", "CreatedAt"),
        Index("ActionLog_ActorId", "ActorId"),
        Index("ActionLog_SubjectId", "SubjectId"),
        Index("ActionLog_AppId", "AppId"),
    )

    Id = Column(Integer, primary_key=True)
    GuildId = Column(BigInteger, nullable=False)
    AppId = Column(String(32), nullable=True)
    AppCode = Column(Unicode(6), nullable=True)
    ActorId = Column(BigInteger, nullable=True)
    SubjectId = Column(BigInteger, nullable=True)
    Action = Column(Unicode(64), nullable=False)
    Reason = Column(UnicodeText, nullable=True)
    MetaJson = Column(UnicodeText, nullable=True)
    CreatedAt = Column(BigInteger, nullable=False, default=db.now_epoch)

    @property
    def meta(self) -> dict:
        return json.loads(self.MetaJson) if self.MetaJson else {}

    @classmethod
    def get_by_guild(cls, guild_id, session, limit=50):
        """Returns the newest entries for a guild."""
        return (
            session.query(cls)
            .filter(cls.GuildId == guild_id)
            .order_by(cls.CreatedAt.desc(), cls.Id.desc())
            .limit(limit)
            .all()
        )

    @classmethod
    def get_by_actor(cls, guild_id, actor_id, session, limit=50):
        return (
            session.query(cls)
            .filter(cls.GuildId == guild_id, cls.ActorId == actor_id)
            .order_by(cls.CreatedAt.desc(), cls.Id.desc())
            .limit(limit)
            .all()
        )

    @classmethod
    def get_by_subject(cls, guild_id, subject_id, session, limit=50):
        return (
            session.query(cls)
            .filter(cls.GuildId == guild_id, cls.SubjectId == subject_id)
            .order_by(cls.CreatedAt.desc(), cls.Id.desc())
            .limit(limit)
            .all()
        )
