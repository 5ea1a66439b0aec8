"""modmail: add OpenModmailGuard table and backfill it from open tickets

Revision ID: 001
Revises:
Create Date: 2026-09-14
"""

import sqlalchemy as sa
from alembic import op
from sqlalchemy import BigInteger, Column, DateTime, Integer, text

revision = "001"
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    conn = op.get_bind()
    insp = sa.inspect(conn)
    tables = insp.get_table_names()

    # Fresh install: create_all() builds both tables on startup.
    if "ModmailTicket" not in tables or "OpenModmailGuard" in tables:
        return

    op.create_table(
        "OpenModmailGuard",
        Column("GuildId", BigInteger, nullable=False),
        Column("UserId", BigInteger, nullable=False),
        Column("TicketId", Integer, sa.ForeignKey("ModmailTicket.Id"), nullable=False),
        Column("ThreadId", BigInteger, nullable=True),
        Column("CreatedAt", DateTime, nullable=False),
        sa.PrimaryKeyConstraint("GuildId", "UserId"),
    )
    op.create_index("OpenModmailGuard_ThreadId", "OpenModmailGuard", ["ThreadId"])

    # One guard per pair; if a pair has several open tickets the newest one keeps the slot.
    conn.execute(
        text(
            "INSERT INTO OpenModmailGuard (GuildId, UserId, TicketId, ThreadId, CreatedAt) "
            "SELECT t.GuildId, t.UserId, t.Id, t.ThreadId, t.CreatedAt FROM ModmailTicket t "
            "WHERE t.Status = 'OPEN' AND t.Id = ("
            "SELECT MAX(t2.Id) FROM ModmailTicket t2 "
            "WHERE t2.GuildId = t.GuildId AND t2.UserId = t.UserId AND t2.Status = 'OPEN')"
        )
    )
    conn.execute(
        text(
            "UPDATE ModmailTicket SET Status = 'CLOSED', ClosedAt = CreatedAt "
            "WHERE Status = 'OPEN' AND Id NOT IN (SELECT TicketId FROM OpenModmailGuard)"
        )
    )


def downgrade():
    conn = op.get_bind()
    insp = sa.inspect(conn)
    if "OpenModmailGuard" not in insp.get_table_names():
        return
    op.drop_index("OpenModmailGuard_ThreadId", table_name="OpenModmailGuard")
    op.drop_table("OpenModmailGuard")
