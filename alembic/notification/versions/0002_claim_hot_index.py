"""add delivery claim hot-path index

Revision ID: 0002_delivery_claim_hot_index
Revises: 0001_notification_queue
Create Date: 2026-10-19
"""

from alembic import op


revision = "0002_delivery_claim_hot_index"
down_revision = "0001_notification_queue"
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_index(
        "ix_notification_delivery_status_created_at",
        "notification_delivery",
        ["status", "created_at"],
    )


def downgrade() -> None:
    op.drop_index("ix_notification_delivery_status_created_at", table_name="notification_delivery")
