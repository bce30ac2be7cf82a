"""
Logistics fleet and cold-chain telemetry

Revision ID: 002
Revises: 001
Create Date: 2026-10-19
"""

from collections.abc import Sequence

import sqlalchemy as sa
from alembic import op
from sqlalchemy.dialects.postgresql import UUID

revision: str = "002"
down_revision: str | None = "001"
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def _pk(name: str) -> sa.Column:
    return sa.Column(name, UUID(as_uuid=True), primary_key=True, server_default=sa.text("gen_random_uuid()"))


def _user_fk(name: str, nullable: bool = True) -> sa.Column:
    return sa.Column(name, UUID(as_uuid=True), sa.ForeignKey("users.user_id"), nullable=nullable)


def upgrade() -> None:
    # 10. Vehicles
    op.create_table(
        "vehicles",
        _pk("vehicle_id"),
        _user_fk("logistics_id", nullable=False),
        sa.Column("vehicle_number", sa.String(30), nullable=False, unique=True),
        sa.Column("vehicle_type", sa.String(50), nullable=False),
        sa.Column("capacity", sa.Integer, nullable=False),
        sa.Column("status", sa.String(20), nullable=False, server_default="available"),
        sa.Column("current_location", sa.String(255)),
        _user_fk("driver_id"),
        sa.Column("assigned_at", sa.DateTime),
        sa.Column("last_dispatched_at", sa.DateTime),
        sa.Column("created_at", sa.DateTime, nullable=False, server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime, nullable=False, server_default=sa.func.now()),
        sa.CheckConstraint("capacity > 0", name="ck_vehicle_capacity"),
        sa.CheckConstraint("status IN ('available', 'assigned', 'loaded')", name="ck_vehicle_status"),
        sa.UniqueConstraint("driver_id", name="uq_vehicle_driver"),
    )
    op.create_index("ix_vehicles_logistics_status", "vehicles", ["logistics_id", "status"])

    op.add_column(
        "orders",
        sa.Column("vehicle_id", UUID(as_uuid=True), sa.ForeignKey("vehicles.vehicle_id"), nullable=True),
    )
    op.create_index("ix_orders_vehicle", "orders", ["vehicle_id"])

    # 11. Temperature readings
    op.create_table(
        "temperature_readings",
        _pk("reading_id"),
        _user_fk("coldstorage_id", nullable=False),
        sa.Column("order_id", UUID(as_uuid=True), sa.ForeignKey("orders.order_id")),
        sa.Column("device", sa.String(100), nullable=False),
        sa.Column("temperature", sa.Float, nullable=False),
        sa.Column("humidity", sa.Float, nullable=False),
        sa.Column("latitude", sa.Float),
        sa.Column("longitude", sa.Float),
        sa.Column("breach", sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column("recorded_at", sa.DateTime, nullable=False, server_default=sa.func.now()),
        sa.Column("created_at", sa.DateTime, nullable=False, server_default=sa.func.now()),
        sa.CheckConstraint("humidity >= 0 AND humidity <= 100", name="ck_reading_humidity"),
    )
    op.create_index("ix_readings_order_recorded", "temperature_readings", ["order_id", "recorded_at"])
    op.create_index(
        "ix_readings_storage_device", "temperature_readings", ["coldstorage_id", "device", "recorded_at"]
    )


def downgrade() -> None:
    op.drop_table("temperature_readings")
    op.drop_index("ix_orders_vehicle", table_name="orders")
    op.drop_column("orders", "vehicle_id")
    op.drop_table("vehicles")
