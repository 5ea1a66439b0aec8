# -*- coding: utf-8 -*-
"""Per-guild gatekeeping configuration"""

from sqlalchemy import BigInteger, Column, Unicode

from utils import database as db


class GateGuildConfig(db.BASE):
    """Roles and channels the decision and modmail flows need for one guild."""

    __tablename__ = "GateGuildConfig"

    GuildId = Column(BigInteger, primary_key=True)
    MemberRoleId = Column(BigInteger, nullable=True)
    LogChannelId = Column(BigInteger, nullable=True)
    ModmailChannelId = Column(BigInteger, nullable=True)
    ModmailLogChannelId = Column(BigInteger, nullable=True)
    Language = Column(Unicode(5), nullable=False, default="en")

    @classmethod
    def get(cls, guild_id, session):
        """Returns the config for the given guild."""
        return session.query(cls).filter(cls.GuildId == guild_id).first()

    @classmethod
    def get_or_create(cls, guild_id, session):
        entry = cls.get(guild_id, session)
        if entry is None:
            entry = cls(GuildId=guild_id, Language="en")
            session.add(entry)
        return entry
