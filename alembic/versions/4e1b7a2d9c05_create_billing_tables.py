"""create tenants, members and payment_records

Revision ID: 4e1b7a2d9c05
Revises: 
Create Date: 2026-10-19 09:12:44.118203

"""
from collections.abc import Sequence

import sqlalchemy as sa

from alembic import op

# revision identifiers, used by Alembic.
revision: str = '4e1b7a2d9c05'
down_revision: str | Sequence[str] | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None

# SQLAlchemy persists enum member names
plan_tier = sa.Enum("FREE", "STANDARD", "ENTERPRISE", name="plantier")
billing_cycle = sa.Enum("MONTHLY", "YEARLY", name="billingcycle")
subscription_status = sa.Enum("NONE", "ACTIVE", "SUSPENDED", "CANCELLED", name="subscriptionstatus")
member_role = sa.Enum("OWNER", "ADMIN", "MEMBER", name="memberrole")


def upgrade() -> None:
    op.create_table(
        "tenants",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("plan", plan_tier, nullable=False),
        sa.Column("free_worker_limit", sa.Integer(), nullable=True),
        sa.Column("promo_code", sa.String(50), nullable=True),
        sa.Column("active_worker_count", sa.Integer(), nullable=False),
        sa.Column("shop_count", sa.Integer(), nullable=False),
        sa.Column("subscription_id", sa.String(64), nullable=True),
        sa.Column("pending_subscription_id", sa.String(64), nullable=True),
        sa.Column("subscription_status", subscription_status, nullable=False),
        sa.Column("subscription_cycle", billing_cycle, nullable=False),
        sa.Column("subscription_quantity", sa.Integer(), nullable=True),
        sa.Column("monthly_cost", sa.Numeric(10, 2), nullable=False),
        sa.Column("previous_monthly_cost", sa.Numeric(10, 2), nullable=False),
        sa.Column("subscription_activated_at", sa.DateTime(), nullable=True),
        sa.Column("subscription_cancelled_at", sa.DateTime(), nullable=True),
        sa.Column("subscription_suspended_at", sa.DateTime(), nullable=True),
        sa.Column("last_payment_at", sa.DateTime(), nullable=True),
        sa.Column("last_payment_amount", sa.Numeric(10, 2), nullable=True),
        sa.Column("last_payment_currency", sa.String(3), nullable=True),
        sa.Column("last_payment_failed_at", sa.DateTime(), nullable=True),
        sa.Column("last_event_at", sa.DateTime(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
    )
    op.create_index("ix_tenants_subscription_id", "tenants", ["subscription_id"])
    op.create_index("ix_tenants_pending_subscription_id", "tenants", ["pending_subscription_id"])

    op.create_table(
        "members",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("tenant_id", sa.Uuid(), sa.ForeignKey("tenants.id"), nullable=False),
        sa.Column("email", sa.String(320), nullable=False),
        sa.Column("display_name", sa.String(255), nullable=False),
        sa.Column("role", member_role, nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False),
        sa.Column("subscription_status", subscription_status, nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
    )
    op.create_index("ix_members_tenant_id", "members", ["tenant_id"])
    op.create_index("ix_members_email", "members", ["email"])

    op.create_table(
        "payment_records",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("tenant_id", sa.Uuid(), sa.ForeignKey("tenants.id"), nullable=False),
        sa.Column("subscription_id", sa.String(64), nullable=False),
        sa.Column("transaction_id", sa.String(64), nullable=False, unique=True),
        sa.Column("amount", sa.Numeric(10, 2), nullable=False),
        sa.Column("currency", sa.String(3), nullable=False),
        sa.Column("period", sa.String(7), nullable=False),
        sa.Column("status", sa.String(30), nullable=False),
        sa.Column("method", sa.String(50), nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=False),
    )
    op.create_index("ix_payment_records_tenant_id", "payment_records", ["tenant_id"])
    op.create_index("ix_payment_records_subscription_id", "payment_records", ["subscription_id"])


def downgrade() -> None:
    op.drop_table("payment_records")
    op.drop_table("members")
    op.drop_table("tenants")
    for enum in (member_role, subscription_status, billing_cycle, plan_tier):
        enum.drop(op.get_bind(), checkfirst=True)
