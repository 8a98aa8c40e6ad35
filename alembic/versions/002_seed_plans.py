"""Seed the free, premium and VIP plan rows."""
from __future__ import annotations

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = "002_seed_plans"
down_revision = "001_initial_schema"
branch_labels = None
depends_on = None


def upgrade() -> None:
    plan_table = sa.table(
        "plans",
        sa.column("tier", sa.String()),
        sa.column("name", sa.String()),
        sa.column("price_by_currency", sa.JSON()),
        sa.column("subject_limit", sa.JSON()),
        sa.column("student_limit", sa.JSON()),
        sa.column("features", sa.JSON()),
        sa.column("billing_cycle", sa.String()),
        sa.column("position", sa.Integer()),
    )

    op.bulk_insert(
        plan_table,
        [
            {
                "tier": "free",
                "name": "Free Plan",
                "price_by_currency": {"NGN": "0", "USD": "0"},
                "subject_limit": 3,
                "student_limit": 10,
                "features": [
                    "3 subjects shared by the whole school",
                    "10 students in total",
                    "Community support",
                ],
                "billing_cycle": "none",
                "position": 0,
            },
            {
                "tier": "premium",
                "name": "Premium Plan",
                "price_by_currency": {"NGN": "1500", "USD": "1"},
                "subject_limit": 6,
                "student_limit": {"min": 15, "max": 20},
                "features": [
                    "6 subjects shared by the whole school",
                    "15-20 students in total",
                    "Priority support",
                    "Advanced analytics",
                ],
                "billing_cycle": "monthly",
                "position": 1,
            },
            {
                "tier": "vip",
                "name": "VIP Plan",
                "price_by_currency": {"NGN": "4500", "USD": "3"},
                "subject_limit": {"min": 6, "max": 10},
                "student_limit": 30,
                "features": [
                    "6-10 subjects shared by the whole school",
                    "30 students in total",
                    "24/7 support",
                    "Priority processing",
                ],
                "billing_cycle": "monthly",
                "position": 2,
            },
        ],
    )


def downgrade() -> None:
    op.execute("DELETE FROM plans WHERE tier IN ('free', 'premium', 'vip')")
