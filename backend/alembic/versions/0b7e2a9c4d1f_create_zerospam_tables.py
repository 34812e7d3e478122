"""create block list, event log and settings tables

Revision ID: 0b7e2a9c4d1f
Revises:
Create Date: 2026-10-19 00:00:00.000000
"""

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql


revision = "0b7e2a9c4d1f"
down_revision = None
branch_labels = None
depends_on = None


JSON_TYPE = postgresql.JSONB().with_variant(sa.JSON(), "sqlite")


def upgrade():
    op.create_table(
        "zerospam_blocked",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("match_type", sa.String(), nullable=False),
        sa.Column("user_ip", sa.String(), nullable=True),
        sa.Column("key_type", sa.String(), nullable=True),
        sa.Column("blocked_key", sa.String(), nullable=True),
        sa.Column("blocked_type", sa.String(), nullable=False),
        sa.Column("start_block", sa.DateTime(), nullable=False),
        sa.Column("end_block", sa.DateTime(), nullable=True),
        sa.Column("reason", sa.Text(), nullable=True),
        sa.Column("source", sa.String(), nullable=False, server_default="manual"),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.UniqueConstraint("user_ip", name="uq_zerospam_blocked_user_ip"),
        sa.UniqueConstraint("key_type", "blocked_key", name="uq_zerospam_blocked_key"),
    )
    op.create_index("ix_zerospam_blocked_id", "zerospam_blocked", ["id"])
    op.create_index("ix_zerospam_blocked_user_ip", "zerospam_blocked", ["user_ip"])
    op.create_index("ix_zerospam_blocked_created_at", "zerospam_blocked", ["created_at"])

    op.create_table(
        "zerospam_log",
        sa.Column(
            "id",
            sa.BigInteger().with_variant(sa.Integer(), "sqlite"),
            primary_key=True,
            autoincrement=True,
            nullable=False,
        ),
        sa.Column("visitor_ip", sa.String(), nullable=False),
        sa.Column("timestamp", sa.DateTime(), nullable=False),
        sa.Column("blocked", sa.Boolean(), nullable=False),
        sa.Column("triggering_detector", sa.String(), nullable=True),
        sa.Column("country_code", sa.String(), nullable=True),
        sa.Column("details", JSON_TYPE, nullable=True),
    )
    op.create_index("ix_zerospam_log_id", "zerospam_log", ["id"])
    op.create_index("ix_zerospam_log_visitor_ip", "zerospam_log", ["visitor_ip"])
    op.create_index("ix_zerospam_log_timestamp", "zerospam_log", ["timestamp"])
    op.create_index("ix_zerospam_log_triggering_detector", "zerospam_log", ["triggering_detector"])
    op.create_index("ix_zerospam_log_ip_timestamp", "zerospam_log", ["visitor_ip", "timestamp"])
    op.create_index("ix_zerospam_log_blocked_timestamp", "zerospam_log", ["blocked", "timestamp"])

    op.create_table(
        "zerospam_settings",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("key", sa.String(), nullable=False),
        sa.Column("value", JSON_TYPE, nullable=True),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
    )
    op.create_index("ix_zerospam_settings_id", "zerospam_settings", ["id"])
    op.create_index("ix_zerospam_settings_key", "zerospam_settings", ["key"], unique=True)



def downgrade():
    op.drop_index("ix_zerospam_settings_key", table_name="zerospam_settings")
    op.drop_index("ix_zerospam_settings_id", table_name="zerospam_settings")
    op.drop_table("zerospam_settings")

    op.drop_index("ix_zerospam_log_blocked_timestamp", table_name="zerospam_log")
    op.drop_index("ix_zerospam_log_ip_timestamp", table_name="zerospam_log")
    op.drop_index("ix_zerospam_log_triggering_detector", table_name="zerospam_log")
    op.drop_index("ix_zerospam_log_timestamp", table_name="zerospam_log")
    op.drop_index("ix_zerospam_log_visitor_ip", table_name="zerospam_log")
    op.drop_index("ix_zerospam_log_id", table_name="zerospam_log")
    op.drop_table("zerospam_log")

    op.drop_index("ix_zerospam_blocked_created_at", table_name="zerospam_blocked")
    op.drop_index("ix_zerospam_blocked_user_ip", table_name="zerospam_blocked")
    op.drop_index("ix_zerospam_blocked_id", table_name="zerospam_blocked")
    op.drop_table("zerospam_blocked")
