"""Organizations, subscriptions, member usage and billing tables."""
from __future__ import annotations

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql


# revision identifiers, used by Alembic.
revision = "001_initial_schema"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "plans",
        sa.Column("tier", sa.String(), primary_key=True, nullable=False),
        sa.Column("name", sa.String(), nullable=False),
        sa.Column("price_by_currency", sa.JSON(), nullable=False),
        sa.Column("subject_limit", sa.JSON(), nullable=False),
        sa.Column("student_limit", sa.JSON(), nullable=False),
        sa.Column("features", sa.JSON(), nullable=False),
        sa.Column("billing_cycle", sa.String(), nullable=False, server_default=sa.text("'none'")),
        sa.Column("position", sa.Integer(), nullable=False, server_default=sa.text("0")),
    )

    op.create_table(
        "organizations",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True, nullable=False),
        sa.Column("name", sa.String(), nullable=False),
        sa.Column("admin_member_id", sa.String(), nullable=False),
        sa.Column("contact_email", sa.String(), nullable=True),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
    )

    op.create_table(
        "subscriptions",
        sa.Column(
            "org_id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("organizations.id", ondelete="CASCADE"),
            primary_key=True,
            nullable=False,
        ),
        sa.Column("plan_tier", sa.String(), nullable=False, server_default=sa.text("'free'")),
        sa.Column("status", sa.String(), nullable=False, server_default=sa.text("'active'")),
        sa.Column("subject_limit", sa.Integer(), nullable=False),
        sa.Column("student_limit", sa.Integer(), nullable=False),
        sa.Column("current_subjects", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("current_students", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("member_count", sa.Integer(), nullable=False, server_default=sa.text("1")),
        sa.Column("amount", sa.Numeric(12, 2), nullable=False, server_default=sa.text("0")),
        sa.Column("currency", sa.String(3), nullable=False, server_default=sa.text("'NGN'")),
        sa.Column("start_date", sa.DateTime(timezone=True), nullable=False),
        sa.Column("expiry_date", sa.DateTime(timezone=True), nullable=True),
        sa.Column("grace_period_end", sa.DateTime(timezone=True), nullable=True),
        sa.Column("last_payment_date", sa.DateTime(timezone=True), nullable=True),
        sa.Column("cancelled_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("external_customer_ref", sa.String(), nullable=True),
        sa.Column("external_subscription_ref", sa.String(), nullable=True),
        sa.Column("last_transaction_ref", sa.String(), nullable=True),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.CheckConstraint("current_subjects >= 0", name="ck_subscription_subjects_non_negative"),
        sa.CheckConstraint("current_students >= 0", name="ck_subscription_students_non_negative"),
    )
    op.create_index("ix_subscriptions_plan_tier", "subscriptions", ["plan_tier"])
    op.create_index("ix_subscriptions_status", "subscriptions", ["status"])
    op.create_index("ix_subscriptions_expiry_date", "subscriptions", ["expiry_date"])
    op.create_index("ix_subscriptions_grace_period_end", "subscriptions", ["grace_period_end"])

    op.create_table(
        "member_usage",
        sa.Column("member_id", sa.String(), primary_key=True, nullable=False),
        sa.Column(
            "org_id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("organizations.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("role", sa.String(), nullable=False, server_default=sa.text("'member'")),
        sa.Column("email", sa.String(), nullable=True),
        sa.Column("current_subjects", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("current_students", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("joined_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.CheckConstraint("current_subjects >= 0", name="ck_member_subjects_non_negative"),
        sa.CheckConstraint("current_students >= 0", name="ck_member_students_non_negative"),
    )
    op.create_index("ix_member_usage_org_id", "member_usage", ["org_id"])

    op.create_table(
        "transactions",
        sa.Column("id", sa.String(), primary_key=True, nullable=False),
        sa.Column("org_id", postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column("legacy_member_id", sa.String(), nullable=True),
        sa.Column("initiated_by", sa.String(), nullable=True),
        sa.Column("plan_tier", sa.String(), nullable=False),
        sa.Column("amount", sa.Numeric(12, 2), nullable=False),
        sa.Column("currency", sa.String(3), nullable=False),
        sa.Column("status", sa.String(), nullable=False, server_default=sa.text("'pending'")),
        sa.Column("promo_code", sa.String(), nullable=True),
        sa.Column("discount_amount", sa.Numeric(12, 2), nullable=False, server_default=sa.text("0")),
        sa.Column("gateway_response", sa.JSON(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index("ix_transactions_org_id", "transactions", ["org_id"])
    op.create_index("ix_transactions_legacy_member_id", "transactions", ["legacy_member_id"])
    op.create_index("ix_transactions_initiated_by", "transactions", ["initiated_by"])
    op.create_index("ix_transactions_created_at", "transactions", ["created_at"])

    op.create_table(
        "promo_codes",
        sa.Column("code", sa.String(), primary_key=True, nullable=False),
        sa.Column("discount_type", sa.String(), nullable=False),
        sa.Column("value", sa.Numeric(12, 2), nullable=False),
        sa.Column("max_uses", sa.Integer(), nullable=True),
        sa.Column("current_uses", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("expiry_date", sa.DateTime(timezone=True), nullable=True),
        sa.Column("currency", sa.String(3), nullable=True),
        sa.Column("status", sa.String(), nullable=False, server_default=sa.text("'active'")),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.CheckConstraint("current_uses >= 0", name="ck_promo_uses_non_negative"),
        sa.CheckConstraint(
            "max_uses IS NULL OR current_uses <= max_uses",
            name="ck_promo_uses_within_max",
        ),
    )

    op.create_table(
        "subscription_events",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True, nullable=False),
        sa.Column("org_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("event_type", sa.String(), nullable=False),
        sa.Column("plan_tier", sa.String(), nullable=True),
        sa.Column("previous_tier", sa.String(), nullable=True),
        sa.Column("amount", sa.Numeric(12, 2), nullable=True),
        sa.Column("currency", sa.String(3), nullable=True),
        sa.Column("details", sa.JSON(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index("ix_subscription_events_org_id", "subscription_events", ["org_id"])
    op.create_index("ix_subscription_events_event_type", "subscription_events", ["event_type"])
    op.create_index("ix_subscription_events_created_at", "subscription_events", ["created_at"])

    op.create_table(
        "outbound_notifications",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True, nullable=False),
        sa.Column("org_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("recipient", sa.String(), nullable=True),
        sa.Column("template", sa.String(), nullable=False),
        sa.Column("data", sa.JSON(), nullable=False),
        sa.Column("dedupe_key", sa.String(), nullable=True, unique=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index("ix_outbound_notifications_org_id", "outbound_notifications", ["org_id"])


def downgrade() -> None:
    op.drop_table("outbound_notifications")
    op.drop_table("subscription_events")
    op.drop_table("promo_codes")
    op.drop_table("transactions")
    op.drop_table("member_usage")
    op.drop_table("subscriptions")
    op.drop_table("organizations")
    op.drop_table("plans")
