"""create lead portal tables

Revision ID: 202610180001
Revises:
Create Date: 2026-10-18 00:01:00
"""

from collections.abc import Sequence

from alembic import op
import sqlalchemy as sa


revision: str = "202610180001"
down_revision: str | None = None
branch_labels: Sequence[str] | None = None
depends_on: Sequence[str] | None = None


def upgrade() -> None:
    op.create_table(
        "sales_rep",
        sa.Column("uid", sa.String(length=128), nullable=False),
        sa.Column("name", sa.Text(), nullable=True),
        sa.Column("phone", sa.String(length=32), nullable=True),
        sa.Column("calendar_url", sa.Text(), nullable=True),
        sa.Column("grant_key", sa.Text(), nullable=True),
        sa.Column("commission_rate", sa.Numeric(5, 2), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("uid"),
    )

    op.create_table(
        "admin",
        sa.Column("uid", sa.String(length=128), nullable=False),
        sa.Column("name", sa.Text(), nullable=True),
        sa.Column("phone", sa.String(length=32), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("uid"),
    )

    op.create_table(
        "leads",
        sa.Column("lead_id", sa.String(length=64), nullable=False),
        sa.Column("name", sa.Text(), nullable=False),
        sa.Column("email", sa.Text(), nullable=True),
        sa.Column("phone", sa.String(length=32), nullable=True),
        sa.Column("address", sa.Text(), nullable=True),
        sa.Column("city", sa.Text(), nullable=True),
        sa.Column("state", sa.String(length=32), nullable=True),
        sa.Column("zipcode", sa.String(length=16), nullable=True),
        sa.Column("project_interest", sa.Text(), nullable=True),
        sa.Column("budget", sa.Text(), nullable=True),
        sa.Column("finance_need", sa.String(length=8), nullable=True),
        sa.Column("channel", sa.String(length=64), nullable=True),
        sa.Column("click_source", sa.Text(), nullable=True),
        sa.Column("website_source", sa.Text(), nullable=True),
        sa.Column("ad_source", sa.Text(), nullable=True),
        sa.Column("status", sa.String(length=32), nullable=False, server_default="New"),
        sa.Column("follow_up_date", sa.Date(), nullable=True),
        sa.Column("sales_rep", sa.String(length=128), nullable=False, server_default="unassigned"),
        sa.Column("integration_id", sa.String(length=128), nullable=True),
        sa.Column("integration_platform", sa.String(length=64), nullable=True),
        sa.Column("commission_rate", sa.Numeric(5, 2), nullable=True),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("lead_id"),
    )
    op.create_index("ix_leads_sales_rep_status", "leads", ["sales_rep", "status"], unique=False)
    op.create_index("ix_leads_integration_id", "leads", ["integration_id"], unique=False)

    op.create_table(
        "touch_points",
        sa.Column("touch_id", sa.String(length=64), nullable=False),
        sa.Column("uid", sa.String(length=128), nullable=False),
        sa.Column("lead_id", sa.String(length=64), nullable=False),
        sa.Column("contact_method", sa.String(length=32), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("system_note", sa.Text(), nullable=True),
        sa.Column("commenter_type", sa.String(length=16), nullable=False, server_default="sales_rep"),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.ForeignKeyConstraint(["lead_id"], ["leads.lead_id"], ondelete="RESTRICT"),
        sa.PrimaryKeyConstraint("touch_id"),
    )
    op.create_index(
        "ix_touch_points_lead_active",
        "touch_points",
        ["lead_id", "is_active", "created_at"],
        unique=False,
    )

    op.create_table(
        "events",
        sa.Column("event_id", sa.String(length=36), nullable=False),
        sa.Column("event_name", sa.String(length=255), nullable=False),
        sa.Column("event_type", sa.String(length=64), nullable=False),
        sa.Column("occurred_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("page_path", sa.Text(), nullable=True),
        sa.Column("referrer", sa.Text(), nullable=True),
        sa.Column("ad_source", sa.Text(), nullable=True),
        sa.Column("session_id", sa.String(length=128), nullable=True),
        sa.PrimaryKeyConstraint("event_id"),
    )
    op.create_index("ix_events_session_occurred", "events", ["session_id", "occurred_at"], unique=False)
    op.create_index("ix_events_type_occurred", "events", ["event_type", "occurred_at"], unique=False)


def downgrade() -> None:
    op.drop_index("ix_events_type_occurred", table_name="events")
    op.drop_index("ix_events_session_occurred", table_name="events")
    op.drop_table("events")
    op.drop_index("ix_touch_points_lead_active", table_name="touch_points")
    op.drop_table("touch_points")
    op.drop_index("ix_leads_integration_id", table_name="leads")
    op.drop_index("ix_leads_sales_rep_status", table_name="leads")
    op.drop_table("leads")
    op.drop_table("admin")
    op.drop_table("sales_rep")
