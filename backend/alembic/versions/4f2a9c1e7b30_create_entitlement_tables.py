"""create_entitlement_tables

Revision ID: 4f2a9c1e7b30
Revises:
Create Date: 2026-10-18 09:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = '4f2a9c1e7b30'
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        "users",
        sa.Column("id", sa.UUID(), nullable=False),
        sa.Column("email", sa.String(length=255), nullable=False),
        sa.Column("full_name", sa.String(length=255), nullable=False),
        sa.Column("role", sa.String(length=50), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False),
        sa.Column("is_subscribed", sa.Boolean(), server_default=sa.false(), nullable=False),
        sa.Column("subscription_plan", sa.String(length=50), nullable=True),
        sa.Column("subscription_end_date", sa.DateTime(), nullable=True),
        sa.Column("subscription_started_at", sa.DateTime(), nullable=True),
        sa.Column("cancelled_at", sa.DateTime(), nullable=True),
        sa.Column("coupon_code_used", sa.String(length=100), nullable=True),
        sa.Column("subscription_price", sa.Numeric(precision=10, scale=2), nullable=True),
        sa.Column("external_customer_id", sa.String(length=255), nullable=True),
        sa.Column("external_subscription_id", sa.String(length=255), nullable=True),
        sa.Column("ai_credits_used", sa.Integer(), server_default="0", nullable=False),
        sa.Column("ai_credits_bonus", sa.Integer(), server_default="0", nullable=False),
        sa.Column("pdf_downloads_used", sa.Integer(), server_default="0", nullable=False),
        sa.Column("usage_period", sa.String(length=7), nullable=True),
        sa.Column("created_at", sa.DateTime(), server_default=sa.func.now(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), server_default=sa.func.now(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_users_email", "users", ["email"], unique=True)
    op.create_index("ix_users_external_customer_id", "users", ["external_customer_id"], unique=True)
    op.create_index(
        "ix_users_external_subscription_id", "users", ["external_subscription_id"], unique=True
    )

    op.create_table(
        "subscription_events",
        sa.Column("id", sa.UUID(), nullable=False),
        sa.Column("external_event_id", sa.String(length=255), nullable=False),
        sa.Column("event_type", sa.String(length=100), nullable=False),
        sa.Column("subject_id", sa.String(length=255), nullable=True),
        sa.Column("payload", sa.JSON(), nullable=False),
        sa.Column("processed", sa.Boolean(), server_default=sa.false(), nullable=False),
        sa.Column("received_at", sa.DateTime(), server_default=sa.func.now(), nullable=False),
        sa.Column("processed_at", sa.DateTime(), nullable=True),
        sa.Column("user_id", sa.UUID(), nullable=True),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(
        "ix_subscription_events_external_event_id",
        "subscription_events",
        ["external_event_id"],
        unique=True,
    )
    op.create_index("ix_subscription_events_subject_id", "subscription_events", ["subject_id"])
    op.create_index("ix_subscription_events_processed", "subscription_events", ["processed"])

    op.create_table(
        "payments",
        sa.Column("id", sa.UUID(), nullable=False),
        sa.Column("user_id", sa.UUID(), nullable=False),
        sa.Column("payment_intent_id", sa.String(length=255), nullable=False),
        sa.Column("charge_id", sa.String(length=255), nullable=True),
        sa.Column("amount", sa.Numeric(precision=10, scale=2), nullable=False),
        sa.Column("currency", sa.String(length=10), nullable=False),
        sa.Column("status", sa.String(length=50), nullable=False),
        sa.Column("payment_method_brand", sa.String(length=50), nullable=True),
        sa.Column("payment_method_last4", sa.String(length=4), nullable=True),
        sa.Column("description", sa.String(length=255), nullable=True),
        sa.Column("metadata", sa.JSON(), nullable=False),
        sa.Column("created_at", sa.DateTime(), server_default=sa.func.now(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), server_default=sa.func.now(), nullable=False),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("payment_intent_id"),
    )
    op.create_index("ix_payments_user_id", "payments", ["user_id"])

    op.create_table(
        "ai_credit_usage",
        sa.Column("id", sa.UUID(), nullable=False),
        sa.Column("user_id", sa.UUID(), nullable=False),
        sa.Column("resume_id", sa.UUID(), nullable=True),
        sa.Column("action", sa.String(length=100), nullable=False),
        sa.Column("credits_used", sa.Integer(), server_default="1", nullable=False),
        sa.Column("user_tier", sa.String(length=20), nullable=False),
        sa.Column("created_at", sa.DateTime(), server_default=sa.func.now(), nullable=False),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_ai_credit_usage_user_id", "ai_credit_usage", ["user_id"])
    op.create_index("ix_ai_credit_usage_created_at", "ai_credit_usage", ["created_at"])

    op.create_table(
        "resume_creations",
        sa.Column("id", sa.UUID(), nullable=False),
        sa.Column("user_id", sa.UUID(), nullable=False),
        sa.Column("resume_id", sa.UUID(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_resume_creations_user_id", "resume_creations", ["user_id"])
    op.create_index("ix_resume_creations_created_at", "resume_creations", ["created_at"])


def downgrade() -> None:
    op.drop_index("ix_resume_creations_created_at", table_name="resume_creations")
    op.drop_index("ix_resume_creations_user_id", table_name="resume_creations")
    op.drop_table("resume_creations")
    op.drop_index("ix_ai_credit_usage_created_at", table_name="ai_credit_usage")
    op.drop_index("ix_ai_credit_usage_user_id", table_name="ai_credit_usage")
    op.drop_table("ai_credit_usage")
    op.drop_index("ix_payments_user_id", table_name="payments")
    op.drop_table("payments")
    op.drop_index("ix_subscription_events_processed", table_name="subscription_events")
    op.drop_index("ix_subscription_events_subject_id", table_name="subscription_events")
    op.drop_index("ix_subscription_events_external_event_id", table_name="subscription_events")
    op.drop_table("subscription_events")
    op.drop_index("ix_users_external_subscription_id", table_name="users")
    op.drop_index("ix_users_external_customer_id", table_name="users")
    op.drop_index("ix_users_email", table_name="users")
    op.drop_table("users")
