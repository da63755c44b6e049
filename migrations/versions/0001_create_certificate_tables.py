"""create template, draft, certificate and email usage tables

Revision ID: 0001
Revises:
Create Date: 2026-10-19 00:00:00.000000
"""

from alembic import op
import sqlalchemy as sa


revision = "0001"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "templates",
        sa.Column("id", sa.String(64), primary_key=True),
        sa.Column("owner_uid", sa.String(128), nullable=False),
        sa.Column("owner_email", sa.String(255), nullable=True),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("image_url", sa.Text(), nullable=False),
        sa.Column("elements", sa.JSON(), nullable=False),
        sa.Column("settings", sa.JSON(), nullable=False),
        sa.Column("created_at", sa.DateTime(), server_default=sa.func.now()),
    )
    op.create_index("ix_templates_owner_uid", "templates", ["owner_uid"])

    op.create_table(
        "template_drafts",
        sa.Column("id", sa.String(64), primary_key=True),
        sa.Column("owner_uid", sa.String(128), nullable=False),
        sa.Column("state", sa.JSON(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), server_default=sa.func.now()),
    )
    op.create_index("ix_template_drafts_owner_uid", "template_drafts", ["owner_uid"])

    op.create_table(
        "certificates",
        sa.Column("id", sa.String(64), primary_key=True),
        sa.Column(
            "template_id",
            sa.String(64),
            sa.ForeignKey("templates.id", ondelete="SET NULL"),
            nullable=True,
        ),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("email", sa.String(255), nullable=True),
        sa.Column("event_name", sa.String(255), nullable=False),
        sa.Column("organizer", sa.String(255), nullable=True),
        sa.Column("organizer_email", sa.String(255), nullable=True),
        sa.Column("template_url", sa.Text(), nullable=True),
        sa.Column("elements", sa.JSON(), nullable=False),
        sa.Column("settings", sa.JSON(), nullable=False),
        sa.Column("verification_url", sa.Text(), nullable=True),
        sa.Column("custom_message", sa.Text(), nullable=True),
        sa.Column("issued_at", sa.DateTime(), server_default=sa.func.now()),
        sa.Column("is_test", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("expires_at", sa.DateTime(), nullable=True),
    )
    op.create_index("ix_certificates_is_test", "certificates", ["is_test"])

    op.create_table(
        "email_usage",
        sa.Column("day", sa.Date(), primary_key=True),
        sa.Column("count", sa.Integer(), nullable=False, server_default="0"),
    )


def downgrade() -> None:
    op.drop_table("email_usage")
    op.drop_index("ix_certificates_is_test", table_name="certificates")
    op.drop_table("certificates")
    op.drop_index("ix_template_drafts_owner_uid", table_name="template_drafts")
    op.drop_table("template_drafts")
    op.drop_index("ix_templates_owner_uid", table_name="templates")
    op.drop_table("templates")
