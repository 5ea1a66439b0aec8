"""application: track permanent rejection on the application row

Revision ID: 002
Revises: 001
Create Date: 2026-10-02
"""

import sqlalchemy as sa
from alembic import op
from sqlalchemy import Boolean, Column, DateTime

revision = "002"
down_revision = "001"
branch_labels = None
depends_on = None


def upgrade():
    conn = op.get_bind()
    insp = sa.inspect(conn)

    if "Application" not in insp.get_table_names():
        return

    existing_cols = {c["name"] for c in insp.get_columns("Application")}
    with op.batch_alter_table("Application") as batch_op:
        if "PermanentlyRejected" not in existing_cols:
            batch_op.add_column(Column("PermanentlyRejected", Boolean, nullable=False, server_default=sa.false()))
        if "PermanentRejectAt" not in existing_cols:
            batch_op.add_column(Column("PermanentRejectAt", DateTime, nullable=True))


def downgrade():
    conn = op.get_bind()
    insp = sa.inspect(conn)

    if "Application" not in insp.get_table_names():
        return

    existing_cols = {c["name"] for c in insp.get_columns("Application")}
    with op.batch_alter_table("Application") as batch_op:
        if "PermanentRejectAt" in existing_cols:
            batch_op.drop_column("PermanentRejectAt")
        if "PermanentlyRejected" in existing_cols:
            batch_op.drop_column("PermanentlyRejected")
