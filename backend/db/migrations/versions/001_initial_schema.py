"""
Initial schema - all 9 tables

Revision ID: 001
Revises: None
Create Date: 2026-10-19
"""

from collections.abc import Sequence

import sqlalchemy as sa
from alembic import op
from sqlalchemy.dialects.postgresql import UUID

revision: str = "001"
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def _pk(name: str) -> sa.Column:
    return sa.Column(name, UUID(as_uuid=True), primary_key=True, server_default=sa.text("gen_random_uuid()"))


def _user_fk(name: str, nullable: bool = True) -> sa.Column:
    return sa.Column(name, UUID(as_uuid=True), sa.ForeignKey("users.user_id"), nullable=nullable)


def upgrade() -> None:
    # 1. Users
    op.create_table(
        "users",
        _pk("user_id"),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("email", sa.String(255), nullable=False, unique=True),
        sa.Column("phone", sa.String(30)),
        sa.Column("address", sa.Text),
        sa.Column("hashed_password", sa.String(255), nullable=False),
        sa.Column("role", sa.String(20), nullable=False),
        sa.Column("balance", sa.Float, nullable=False, server_default="0"),
        sa.Column("is_active", sa.Boolean, nullable=False, server_default=sa.true()),
        sa.Column("created_at", sa.DateTime, nullable=False, server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime, nullable=False, server_default=sa.func.now()),
        sa.CheckConstraint(
            "role IN ('buyer', 'seller', 'logistics', 'coldstorage', 'driver', 'insurance', 'admin')",
            name="ck_user_role",
        ),
    )
    op.create_index("ix_users_role", "users", ["role"])

    # 2. Products
    op.create_table(
        "products",
        _pk("product_id"),
        _user_fk("seller_id", nullable=False),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("description", sa.Text),
        sa.Column("category", sa.String(100), nullable=False),
        sa.Column("price", sa.Float, nullable=False),
        sa.Column("quantity", sa.Integer, nullable=False, server_default="0"),
        sa.Column("status", sa.String(20), nullable=False, server_default="active"),
        sa.Column("created_at", sa.DateTime, nullable=False, server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime, nullable=False, server_default=sa.func.now()),
        sa.CheckConstraint("price >= 0", name="ck_product_price"),
        sa.CheckConstraint("quantity >= 0", name="ck_product_quantity"),
        sa.CheckConstraint("status IN ('active', 'inactive')", name="ck_product_status"),
    )
    op.create_index("ix_products_seller", "products", ["seller_id"])

    # 3. Orders
    op.create_table(
        "orders",
        _pk("order_id"),
        sa.Column("product_id", UUID(as_uuid=True), sa.ForeignKey("products.product_id"), nullable=False),
        sa.Column("product_name", sa.String(255), nullable=False),
        sa.Column("price", sa.Float, nullable=False),
        sa.Column("quantity", sa.Integer, nullable=False),
        sa.Column("total_amount", sa.Float, nullable=False),
        _user_fk("buyer_id", nullable=False),
        _user_fk("seller_id", nullable=False),
        sa.Column("status", sa.String(40), nullable=False, server_default="pending"),
        sa.Column("delivery_destination", sa.String(20), nullable=False, server_default="customer"),
        _user_fk("logistics_id"),
        _user_fk("coldstorage_id"),
        _user_fk("driver_id"),
        sa.Column("idempotency_key", sa.String(100)),
        sa.Column("cancellation_reason", sa.Text),
        sa.Column("placed_at", sa.DateTime, nullable=False, server_default=sa.func.now()),
        sa.Column("confirmed_at", sa.DateTime),
        sa.Column("dispatched_to_logistics_at", sa.DateTime),
        sa.Column("dispatched_to_coldstorage_at", sa.DateTime),
        sa.Column("in_coldstorage_at", sa.DateTime),
        sa.Column("dispatched_to_customer_at", sa.DateTime),
        sa.Column("delivered_at", sa.DateTime),
        sa.Column("cancelled_at", sa.DateTime),
        sa.Column("updated_at", sa.DateTime, nullable=False, server_default=sa.func.now()),
        sa.CheckConstraint("quantity > 0", name="ck_order_quantity"),
        sa.CheckConstraint(
            "status IN ('pending', 'confirmed', 'dispatched_to_logistics', 'dispatched_to_coldstorage', "
            "'in_coldstorage', 'dispatched_to_customer', 'delivered', 'cancelled')",
            name="ck_order_status",
        ),
        sa.CheckConstraint("delivery_destination IN ('customer', 'coldstorage')", name="ck_order_destination"),
        sa.UniqueConstraint("buyer_id", "idempotency_key", name="uq_order_buyer_idempotency"),
    )
    op.create_index("ix_orders_buyer", "orders", ["buyer_id"])
    op.create_index("ix_orders_seller", "orders", ["seller_id"])
    op.create_index("ix_orders_status", "orders", ["status"])

    # 4. Order Events
    op.create_table(
        "order_events",
        _pk("event_id"),
        sa.Column("order_id", UUID(as_uuid=True), sa.ForeignKey("orders.order_id"), nullable=False),
        sa.Column("from_status", sa.String(40)),
        sa.Column("to_status", sa.String(40), nullable=False),
        _user_fk("actor_id"),
        sa.Column("actor_role", sa.String(20)),
        sa.Column("notes", sa.Text),
        sa.Column("occurred_at", sa.DateTime, nullable=False, server_default=sa.func.now()),
    )
    op.create_index("ix_order_events_order", "order_events", ["order_id", "occurred_at"])

    # 5. Complaints
    op.create_table(
        "complaints",
        _pk("complaint_id"),
        sa.Column("order_id", UUID(as_uuid=True), sa.ForeignKey("orders.order_id"), nullable=False, unique=True),
        _user_fk("buyer_id", nullable=False),
        _user_fk("seller_id", nullable=False),
        sa.Column("reason", sa.String(255), nullable=False),
        sa.Column("description", sa.Text, nullable=False),
        sa.Column("amount", sa.Float, nullable=False),
        sa.Column("status", sa.String(20), nullable=False, server_default="pending"),
        sa.Column("has_claim", sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column("claim_id", UUID(as_uuid=True)),
        sa.Column("resolution_notes", sa.Text),
        sa.Column("cancellation_date", sa.DateTime),
        sa.Column("cancellation_reason", sa.Text),
        sa.Column("created_at", sa.DateTime, nullable=False, server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime, nullable=False, server_default=sa.func.now()),
        sa.CheckConstraint(
            "status IN ('pending', 'claimed', 'approved', 'rejected', 'refunded', 'cancelled')",
            name="ck_complaint_status",
        ),
    )
    op.create_index("ix_complaints_buyer", "complaints", ["buyer_id"])
    op.create_index("ix_complaints_seller", "complaints", ["seller_id"])

    # 6. Policy Plans
    op.create_table(
        "policy_plans",
        _pk("plan_id"),
        sa.Column("code", sa.String(50), nullable=False, unique=True),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("description", sa.Text),
        sa.Column("plan_type", sa.String(20), nullable=False, server_default="general"),
        sa.Column("daily_rate", sa.Float, nullable=False),
        sa.Column("premium_daily_rate", sa.Float),
        sa.Column("coverage", sa.Float, nullable=False),
        sa.Column("premium_coverage", sa.Float),
        sa.Column("min_duration_days", sa.Integer, nullable=False, server_default="1"),
        sa.Column("max_duration_months", sa.Integer, nullable=False, server_default="12"),
        sa.Column("status", sa.String(20), nullable=False, server_default="active"),
        _user_fk("agent_id", nullable=False),
        sa.Column("created_at", sa.DateTime, nullable=False, server_default=sa.func.now()),
        sa.CheckConstraint("plan_type IN ('crop', 'livestock', 'equipment', 'general')", name="ck_plan_type"),
        sa.CheckConstraint("status IN ('active', 'inactive', 'discontinued')", name="ck_plan_status"),
        sa.CheckConstraint("max_duration_months BETWEEN 1 AND 24", name="ck_plan_max_duration"),
    )

    # 7. Insurance Holdings
    op.create_table(
        "insurances",
        _pk("insurance_id"),
        _user_fk("holder_id", nullable=False),
        sa.Column("plan_id", UUID(as_uuid=True), sa.ForeignKey("policy_plans.plan_id"), nullable=False),
        sa.Column("policy_code", sa.String(50), nullable=False),
        sa.Column("tier", sa.String(20), nullable=False, server_default="normal"),
        sa.Column("premium", sa.Float, nullable=False),
        sa.Column("coverage", sa.Float, nullable=False),
        sa.Column("duration_days", sa.Integer, nullable=False),
        sa.Column("start_date", sa.DateTime, nullable=False),
        sa.Column("end_date", sa.DateTime, nullable=False),
        sa.Column("status", sa.String(20), nullable=False, server_default="active"),
        _user_fk("agent_id"),
        sa.Column("claims_count", sa.Integer, nullable=False, server_default="0"),
        sa.Column("total_claims_amount", sa.Float, nullable=False, server_default="0"),
        sa.Column("cancelled_at", sa.DateTime),
        sa.Column("refund_amount", sa.Float),
        sa.Column("created_at", sa.DateTime, nullable=False, server_default=sa.func.now()),
        sa.CheckConstraint("tier IN ('normal', 'premium')", name="ck_insurance_tier"),
        sa.CheckConstraint("status IN ('active', 'expired', 'cancelled')", name="ck_insurance_status"),
    )
    op.create_index("ix_insurances_holder_status", "insurances", ["holder_id", "status"])

    # 8. Insurance Claims
    op.create_table(
        "insurance_claims",
        _pk("claim_id"),
        sa.Column(
            "complaint_id",
            UUID(as_uuid=True),
            sa.ForeignKey("complaints.complaint_id"),
            nullable=False,
            unique=True,
        ),
        sa.Column("insurance_id", UUID(as_uuid=True), sa.ForeignKey("insurances.insurance_id"), nullable=False),
        sa.Column("order_id", UUID(as_uuid=True), sa.ForeignKey("orders.order_id"), nullable=False),
        sa.Column("product_id", UUID(as_uuid=True), sa.ForeignKey("products.product_id"), nullable=False),
        _user_fk("seller_id", nullable=False),
        _user_fk("buyer_id", nullable=False),
        _user_fk("agent_id", nullable=False),
        sa.Column("amount", sa.Float, nullable=False),
        sa.Column("reason", sa.String(255), nullable=False),
        sa.Column("description", sa.Text),
        sa.Column("status", sa.String(20), nullable=False, server_default="pending"),
        sa.Column("comments", sa.Text),
        _user_fk("processed_by"),
        sa.Column("processed_at", sa.DateTime),
        sa.Column("created_at", sa.DateTime, nullable=False, server_default=sa.func.now()),
        sa.CheckConstraint("status IN ('pending', 'approved', 'rejected')", name="ck_claim_status"),
    )
    op.create_index("ix_claims_agent_status", "insurance_claims", ["agent_id", "status"])

    # 9. Transactions
    op.create_table(
        "transactions",
        _pk("transaction_id"),
        _user_fk("user_id", nullable=False),
        _user_fk("counterparty_id"),
        sa.Column("transaction_type", sa.String(30), nullable=False),
        sa.Column("amount", sa.Float, nullable=False),
        sa.Column("description", sa.Text),
        sa.Column("related_id", sa.String(100), nullable=False),
        sa.Column("created_at", sa.DateTime, nullable=False, server_default=sa.func.now()),
        sa.CheckConstraint(
            "transaction_type IN ('product_purchase', 'sale_credit', 'order_refund', 'fund_addition', "
            "'premium_payment', 'premium_received', 'claim_payout', 'insurance_refund', "
            "'premium_refund_debit')",
            name="ck_transaction_type",
        ),
        sa.UniqueConstraint("user_id", "transaction_type", "related_id", name="uq_transaction_idempotency"),
    )
    op.create_index("ix_transactions_user_created", "transactions", ["user_id", "created_at"])


def downgrade() -> None:
    for table in (
        "transactions",
        "insurance_claims",
        "insurances",
        "policy_plans",
        "complaints",
        "order_events",
        "orders",
        "products",
        "users",
    ):
        op.drop_table(table)
