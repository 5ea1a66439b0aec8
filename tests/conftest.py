# -*- coding: utf-8 -*-
"""Shared pytest fixtures for WardenBot test suite"""

import sys
from contextlib import contextmanager
from pathlib import Path
from unittest.mock import AsyncMock, MagicMock

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

# Add Warden to path so we can import modules
sys.path.insert(0, str(Path(__file__).parent.parent / "Warden"))

from utils.database import BASE
from utils.error_throttle import ErrorThrottle
from utils.tickets import OpenTicketIndex, TicketManager
from utils.transcript import TranscriptBuffer


@pytest.fixture
def db_engine():
    """Create an in-memory SQLite engine for testing."""
    engine = create_engine("sqlite:///:memory:", echo=False)

    # Import all models to ensure they're registered with BASE.metadata
    from models.application import Application, ReviewAction  # noqa: F401
    from models.audit import ActionLog  # noqa: F401
    from models.guild import GateGuildConfig  # noqa: F401
    from models.modmail import ModmailMessage, ModmailTicket, OpenModmailGuard  # noqa: F401

    BASE.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def db_session(db_engine):
    """Create a new database session for testing."""
    _session = sessionmaker(bind=db_engine)
    session = _session()
    try:
        yield session
    finally:
        session.rollback()
        session.close()


@pytest.fixture
def mock_log():
    """Mock logger that can be attached to bot."""
    log = MagicMock()
    log.info = MagicMock()
    log.debug = MagicMock()
    log.warning = MagicMock()
    log.error = MagicMock()
    return log


@pytest.fixture
def mock_bot(db_session, mock_log, mock_guild, mock_user):
    """Create a mock bot with session_scope context manager."""
    bot = MagicMock()
    bot.log = mock_log

    @contextmanager
    def session_scope():
        yield db_session

    bot.session_scope = session_scope
    bot.config = MagicMock()
    bot.error_throttle = ErrorThrottle()
    bot.error_recipients = []
    bot.get_guild = MagicMock(return_value=mock_guild)
    bot.fetch_user = AsyncMock(return_value=mock_user)

    return bot


@pytest.fixture
def mock_membership():
    """Membership gateway double; no member is found unless a test sets one."""
    membership = MagicMock()
    membership.fetch_member = AsyncMock(return_value=None)
    membership.send_direct_message = AsyncMock(return_value=9000)
    return membership


@pytest.fixture
def mock_channels():
    """Channel gateway double handing out increasing thread ids."""
    channels = MagicMock()
    counter = iter(range(700000, 800000))
    channels.create_channel = AsyncMock(side_effect=lambda guild_id, user_id, name: next(counter))
    channels.send = AsyncMock(return_value=5000)
    channels.send_direct_message = AsyncMock(return_value=6000)
    channels.archive = AsyncMock()
    return channels


@pytest.fixture
def mock_sink():
    """Transcript sink double that accepts every document."""
    sink = MagicMock()
    sink.publish = AsyncMock(return_value=(333444555, 888999000))
    return sink


@pytest.fixture
def ticket_manager(mock_bot, mock_channels, mock_sink):
    """A hydrated ticket manager wired to the capability doubles."""
    index = OpenTicketIndex()
    index.load([])
    manager = TicketManager(mock_bot, index, TranscriptBuffer(), mock_channels, mock_sink)
    mock_bot.ticket_index = index
    mock_bot.tickets = manager
    return manager


@pytest.fixture
def mock_member():
    """Create a mock discord.Member."""
    member = MagicMock()
    member.id = 123456789
    member.name = "TestUser"
    member.display_name = "Test User"
    member.mention = "<@123456789>"
    member.bot = False
    return member


@pytest.fixture
def mock_guild():
    """Create a mock discord.Guild."""
    guild = MagicMock()
    guild.id = 987654321
    guild.name = "Test Guild"
    return guild


@pytest.fixture
def mock_channel():
    """Create a mock discord.TextChannel."""
    channel = MagicMock()
    channel.id = 111222333
    channel.name = "test-channel"
    channel.send = AsyncMock()
    return channel


@pytest.fixture
def mock_message(mock_member, mock_channel, mock_guild):
    """Create a mock discord.Message."""
    message = MagicMock()
    message.id = 444555666
    message.author = mock_member
    message.channel = mock_channel
    message.guild = mock_guild
    message.content = "test message"
    message.attachments = []
    message.is_system = MagicMock(return_value=False)
    message.reply = AsyncMock()
    return message


@pytest.fixture
def mock_user():
    """Create a mock discord.User for DM conversations."""
    user = MagicMock()
    user.id = 123456789
    user.name = "TestUser"
    user.send = AsyncMock()
    return user
