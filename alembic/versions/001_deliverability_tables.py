"""Deliverability tables

Revision ID: 001_deliverability_tables
Revises:
Create Date: 2026-10-16

Delivery records, suppression list, tracking configuration and audit trail
"""
import sqlalchemy as sa
from alembic import op

from database.base import UUID

# revision identifiers, used by Alembic.
revision = "001_deliverability_tables"
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    """Create deliverability tables"""

    op.create_table(
        "delivery_records",
        sa.Column("id", UUID(), primary_key=True),
        sa.Column("provider_message_id", sa.String(255), nullable=False),
        sa.Column("campaign_id", sa.String(255), nullable=False),
        sa.Column("recipient_id", sa.String(255), nullable=True),
        sa.Column("recipient_email", sa.String(320), nullable=False),
        sa.Column("status", sa.String(20), nullable=False),
        sa.Column("sent_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("delivered_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("bounced_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("complained_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("unsubscribed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("opened_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("clicked_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("bounce_type", sa.String(20), nullable=True),
        sa.Column("bounce_reason", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.UniqueConstraint("provider_message_id"),
    )
    op.create_index("ix_delivery_records_campaign_id", "delivery_records", ["campaign_id"])
    op.create_index("ix_delivery_records_status", "delivery_records", ["status"])
    op.create_index("idx_delivery_records_created", "delivery_records", ["created_at"])
    op.create_index("idx_delivery_records_campaign_created", "delivery_records", ["campaign_id", "created_at"])
    op.create_index("idx_delivery_records_status_created", "delivery_records", ["status", "created_at"])

    op.create_table(
        "suppression_entries",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("email", sa.String(320), nullable=False),
        sa.Column("reason", sa.String(100), nullable=False),
        sa.Column("source_record_id", UUID(), nullable=True),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("added_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=True),
        sa.UniqueConstraint("email"),
    )
    op.create_index("ix_suppression_entries_reason", "suppression_entries", ["reason"])
    op.create_index("ix_suppression_entries_expires_at", "suppression_entries", ["expires_at"])

    op.create_table(
        "tracking_config",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("track_opens", sa.Boolean(), nullable=False),
        sa.Column("track_clicks", sa.Boolean(), nullable=False),
        sa.Column("track_bounces", sa.Boolean(), nullable=False),
        sa.Column("track_complaints", sa.Boolean(), nullable=False),
        sa.Column("auto_suppress_hard_bounce", sa.Boolean(), nullable=False),
        sa.Column("auto_suppress_complaint", sa.Boolean(), nullable=False),
        sa.Column("retention_days", sa.Integer(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.CheckConstraint("retention_days >= 7 AND retention_days <= 365", name="ck_tracking_config_retention"),
    )

    op.create_table(
        "audit_entries",
        sa.Column("id", UUID(), primary_key=True),
        sa.Column("action", sa.String(50), nullable=False),
        sa.Column("resource_type", sa.String(50), nullable=False),
        sa.Column("resource_id", sa.String(64), nullable=False),
        sa.Column("actor_id", sa.String(255), nullable=True),
        sa.Column("before", sa.JSON(), nullable=True),
        sa.Column("after", sa.JSON(), nullable=True),
        sa.Column("metadata", sa.JSON(), nullable=True),
        sa.Column("dedupe_key", sa.String(255), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.UniqueConstraint("dedupe_key"),
    )
    op.create_index("ix_audit_entries_action", "audit_entries", ["action"])
    op.create_index("idx_audit_entries_resource", "audit_entries", ["resource_type", "resource_id", "created_at"])


def downgrade():
    """Drop deliverability tables"""
    op.drop_index("idx_audit_entries_resource", table_name="audit_entries")
    op.drop_index("ix_audit_entries_action", table_name="audit_entries")
    op.drop_table("audit_entries")

    op.drop_table("tracking_config")

    op.drop_index("ix_suppression_entries_expires_at", table_name="suppression_entries")
    op.drop_index("ix_suppression_entries_reason", table_name="suppression_entries")
    op.drop_table("suppression_entries")

    op.drop_index("idx_delivery_records_status_created", table_name="delivery_records")
    op.drop_index("idx_delivery_records_campaign_created", table_name="delivery_records")
    op.drop_index("idx_delivery_records_created", table_name="delivery_records")
    op.drop_index("ix_delivery_records_status", table_name="delivery_records")
    op.drop_index("ix_delivery_records_campaign_id", table_name="delivery_records")
    op.drop_table("delivery_records")
