"""add audit log, suspended owners and test email usage

Revision ID: 0002
Revises: 0001
Create Date: 2026-10-19 12:00:00.000000
"""

from alembic import op
import sqlalchemy as sa


revision = "0002"
down_revision = "0001"
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "audit_logs",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("admin_email", sa.String(255), nullable=False),
        sa.Column("action", sa.String(64), nullable=False),
        sa.Column("details", sa.JSON(), nullable=False),
        sa.Column("created_at", sa.DateTime(), server_default=sa.func.now()),
    )
    op.create_index("ix_audit_logs_admin_email", "audit_logs", ["admin_email"])
    op.create_index("ix_audit_logs_action", "audit_logs", ["action"])

    op.create_table(
        "suspended_owners",
        sa.Column("email", sa.String(255), primary_key=True),
        sa.Column("reason", sa.Text(), nullable=False),
        sa.Column("suspended_by", sa.String(255), nullable=True),
        sa.Column("suspended_at", sa.DateTime(), server_default=sa.func.now()),
    )

    op.create_table(
        "test_email_usage",
        sa.Column("owner_uid", sa.String(128), primary_key=True),
        sa.Column("day", sa.Date(), primary_key=True),
        sa.Column("count", sa.Integer(), nullable=False, server_default="0"),
    )


def downgrade() -> None:
    op.drop_table("test_email_usage")
    op.drop_table("suspended_owners")
    op.drop_index("ix_audit_logs_action", table_name="audit_logs")
    op.drop_index("ix_audit_logs_admin_email", table_name="audit_logs")
    op.drop_table("audit_logs")
