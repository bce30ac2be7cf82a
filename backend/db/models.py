"""
AgriChain Database Models

Tables:
  1. users             - Every account: buyers, sellers, logistics, cold storage,
                         drivers, insurance agents, admins (+ running balance)
  2. products          - Seller catalog with stock on hand
  3. orders            - Buyer purchases tracked through fulfillment
  4. order_events      - Append-only status history per order
  5. complaints        - Buyer complaints against dispatched/delivered orders
  6. policy_plans      - Insurance plans published by agents
  7. insurances        - Policy holdings bought by sellers
  8. insurance_claims  - Seller claims against a holding for one complaint
  9. transactions      - Append-only signed ledger entries
 10. vehicles          - Logistics fleet, each with at most one driver
 11. temperature_readings - Cold-chain telemetry from storage facility sensors
"""

import uuid
from datetime import datetime

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Column,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    TypeDecorator,
    UniqueConstraint,
    types,
)
from sqlalchemy.dialects.postgresql import UUID as PG_UUID


class GUID(TypeDecorator):
    """Platform-independent UUID type.

    Uses PostgreSQL UUID when available, stores as CHAR(36) on SQLite.
    """

    impl = types.String(36)
    cache_ok = True

    def load_dialect_impl(self, dialect):
        if dialect.name == "postgresql":
            return dialect.type_descriptor(PG_UUID(as_uuid=True))
        return dialect.type_descriptor(types.String(36))

    def process_bind_param(self, value, dialect):
        if value is None:
            return value
        if dialect.name == "postgresql":
            return value if isinstance(value, uuid.UUID) else uuid.UUID(str(value))
        return str(value) if isinstance(value, uuid.UUID) else value

    def process_result_value(self, value, dialect):
        if value is None:
            return value
        if isinstance(value, uuid.UUID):
            return value
        return uuid.UUID(str(value))


def UUID(as_uuid=True):
    return GUID()


from sqlalchemy.orm import relationship

from db.session import Base

# ─── 1. Users ──────────────────────────────────────────────────────────────


class User(Base):
    __tablename__ = "users"

    user_id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    name = Column(String(255), nullable=False)
    email = Column(String(255), nullable=False, unique=True)
    phone = Column(String(30))
    address = Column(Text)
    hashed_password = Column(String(255), nullable=False)
    role = Column(String(20), nullable=False)
    # Running total of this user's transactions; only accounts.ledger writes it
    balance = Column(Float, nullable=False, default=0.0)
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    updated_at = Column(DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)

    __table_args__ = (
        CheckConstraint(
            "role IN ('buyer', 'seller', 'logistics', 'coldstorage', 'driver', 'insurance', 'admin')",
            name="ck_user_role",
        ),
        Index("ix_users_role", "role"),
    )


# ─── 2. Products ───────────────────────────────────────────────────────────


class Product(Base):
    __tablename__ = "products"

    product_id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    seller_id = Column(UUID(as_uuid=True), ForeignKey("users.user_id"), nullable=False)
    name = Column(String(255), nullable=False)
    description = Column(Text)
    category = Column(String(100), nullable=False)
    price = Column(Float, nullable=False)
    quantity = Column(Integer, nullable=False, default=0)
    status = Column(String(20), nullable=False, default="active")
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    updated_at = Column(DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)

    seller = relationship("User")

    __table_args__ = (
        CheckConstraint("price >= 0", name="ck_product_price"),
        CheckConstraint("quantity >= 0", name="ck_product_quantity"),
        CheckConstraint("status IN ('active', 'inactive')", name="ck_product_status"),
        Index("ix_products_seller", "seller_id"),
    )


# ─── 3. Orders ─────────────────────────────────────────────────────────────


class Order(Base):
    __tablename__ = "orders"

    order_id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    product_id = Column(UUID(as_uuid=True), ForeignKey("products.product_id"), nullable=False)
    product_name = Column(String(255), nullable=False)
    price = Column(Float, nullable=False)
    quantity = Column(Integer, nullable=False)
    total_amount = Column(Float, nullable=False)
    buyer_id = Column(UUID(as_uuid=True), ForeignKey("users.user_id"), nullable=False)
    seller_id = Column(UUID(as_uuid=True), ForeignKey("users.user_id"), nullable=False)
    status = Column(String(40), nullable=False, default="pending")
    delivery_destination = Column(String(20), nullable=False, default="customer")
    logistics_id = Column(UUID(as_uuid=True), ForeignKey("users.user_id"))
    coldstorage_id = Column(UUID(as_uuid=True), ForeignKey("users.user_id"))
    driver_id = Column(UUID(as_uuid=True), ForeignKey("users.user_id"))
    # Fleet vehicle the order is loaded on while with logistics
    vehicle_id = Column(UUID(as_uuid=True), ForeignKey("vehicles.vehicle_id"))
    idempotency_key = Column(String(100))
    cancellation_reason = Column(Text)

    placed_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    confirmed_at = Column(DateTime)
    dispatched_to_logistics_at = Column(DateTime)
    dispatched_to_coldstorage_at = Column(DateTime)
    in_coldstorage_at = Column(DateTime)
    dispatched_to_customer_at = Column(DateTime)
    delivered_at = Column(DateTime)
    cancelled_at = Column(DateTime)
    updated_at = Column(DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)

    events = relationship("OrderEvent", back_populates="order", order_by="OrderEvent.occurred_at")

    __table_args__ = (
        CheckConstraint("quantity > 0", name="ck_order_quantity"),
        CheckConstraint(
            "status IN ('pending', 'confirmed', 'dispatched_to_logistics', 'dispatched_to_coldstorage', "
            "'in_coldstorage', 'dispatched_to_customer', 'delivered', 'cancelled')",
            name="ck_order_status",
        ),
        CheckConstraint("delivery_destination IN ('customer', 'coldstorage')", name="ck_order_destination"),
        UniqueConstraint("buyer_id", "idempotency_key", name="uq_order_buyer_idempotency"),
        Index("ix_orders_buyer", "buyer_id"),
        Index("ix_orders_seller", "seller_id"),
        Index("ix_orders_status", "status"),
        Index("ix_orders_vehicle", "vehicle_id"),
    )


# ─── 4. Order Events ───────────────────────────────────────────────────────


class OrderEvent(Base):
    __tablename__ = "order_events"

    event_id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    order_id = Column(UUID(as_uuid=True), ForeignKey("orders.order_id"), nullable=False)
    from_status = Column(String(40))
    to_status = Column(String(40), nullable=False)
    actor_id = Column(UUID(as_uuid=True), ForeignKey("users.user_id"))
    actor_role = Column(String(20))
    notes = Column(Text)
    occurred_at = Column(DateTime, nullable=False, default=datetime.utcnow)

    order = relationship("Order", back_populates="events")

    __table_args__ = (Index("ix_order_events_order", "order_id", "occurred_at"),)


# ─── 5. Complaints ─────────────────────────────────────────────────────────


class Complaint(Base):
    __tablename__ = "complaints"

    complaint_id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    order_id = Column(UUID(as_uuid=True), ForeignKey("orders.order_id"), nullable=False, unique=True)
    buyer_id = Column(UUID(as_uuid=True), ForeignKey("users.user_id"), nullable=False)
    seller_id = Column(UUID(as_uuid=True), ForeignKey("users.user_id"), nullable=False)
    reason = Column(String(255), nullable=False)
    description = Column(Text, nullable=False)
    amount = Column(Float, nullable=False)
    status = Column(String(20), nullable=False, default="pending")
    has_claim = Column(Boolean, nullable=False, default=False)
    claim_id = Column(UUID(as_uuid=True))
    resolution_notes = Column(Text)
    cancellation_date = Column(DateTime)
    cancellation_reason = Column(Text)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    updated_at = Column(DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)

    __table_args__ = (
        CheckConstraint(
            "status IN ('pending', 'claimed', 'approved', 'rejected', 'refunded', 'cancelled')",
            name="ck_complaint_status",
        ),
        Index("ix_complaints_buyer", "buyer_id"),
        Index("ix_complaints_seller", "seller_id"),
    )


# ─── 6. Policy Plans ───────────────────────────────────────────────────────


class PolicyPlan(Base):
    __tablename__ = "policy_plans"

    plan_id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    code = Column(String(50), nullable=False, unique=True)
    name = Column(String(255), nullable=False)
    description = Column(Text)
    plan_type = Column(String(20), nullable=False, default="general")
    daily_rate = Column(Float, nullable=False)
    premium_daily_rate = Column(Float)
    coverage = Column(Float, nullable=False)
    premium_coverage = Column(Float)
    min_duration_days = Column(Integer, nullable=False, default=1)
    max_duration_months = Column(Integer, nullable=False, default=12)
    status = Column(String(20), nullable=False, default="active")
    agent_id = Column(UUID(as_uuid=True), ForeignKey("users.user_id"), nullable=False)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)

    __table_args__ = (
        CheckConstraint("plan_type IN ('crop', 'livestock', 'equipment', 'general')", name="ck_plan_type"),
        CheckConstraint("status IN ('active', 'inactive', 'discontinued')", name="ck_plan_status"),
        CheckConstraint("max_duration_months BETWEEN 1 AND 24", name="ck_plan_max_duration"),
    )


# ─── 7. Insurance Holdings ─────────────────────────────────────────────────


class Insurance(Base):
    __tablename__ = "insurances"

    insurance_id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    holder_id = Column(UUID(as_uuid=True), ForeignKey("users.user_id"), nullable=False)
    plan_id = Column(UUID(as_uuid=True), ForeignKey("policy_plans.plan_id"), nullable=False)
    policy_code = Column(String(50), nullable=False)
    tier = Column(String(20), nullable=False, default="normal")
    premium = Column(Float, nullable=False)
    coverage = Column(Float, nullable=False)
    duration_days = Column(Integer, nullable=False)
    start_date = Column(DateTime, nullable=False)
    end_date = Column(DateTime, nullable=False)
    status = Column(String(20), nullable=False, default="active")
    agent_id = Column(UUID(as_uuid=True), ForeignKey("users.user_id"))
    claims_count = Column(Integer, nullable=False, default=0)
    total_claims_amount = Column(Float, nullable=False, default=0.0)
    cancelled_at = Column(DateTime)
    refund_amount = Column(Float)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)

    plan = relationship("PolicyPlan")

    __table_args__ = (
        CheckConstraint("tier IN ('normal', 'premium')", name="ck_insurance_tier"),
        CheckConstraint("status IN ('active', 'expired', 'cancelled')", name="ck_insurance_status"),
        Index("ix_insurances_holder_status", "holder_id", "status"),
    )


# ─── 8. Insurance Claims ───────────────────────────────────────────────────


class InsuranceClaim(Base):
    __tablename__ = "insurance_claims"

    claim_id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    complaint_id = Column(UUID(as_uuid=True), ForeignKey("complaints.complaint_id"), nullable=False, unique=True)
    insurance_id = Column(UUID(as_uuid=True), ForeignKey("insurances.insurance_id"), nullable=False)
    order_id = Column(UUID(as_uuid=True), ForeignKey("orders.order_id"), nullable=False)
    product_id = Column(UUID(as_uuid=True), ForeignKey("products.product_id"), nullable=False)
    seller_id = Column(UUID(as_uuid=True), ForeignKey("users.user_id"), nullable=False)
    buyer_id = Column(UUID(as_uuid=True), ForeignKey("users.user_id"), nullable=False)
    agent_id = Column(UUID(as_uuid=True), ForeignKey("users.user_id"), nullable=False)
    amount = Column(Float, nullable=False)
    reason = Column(String(255), nullable=False)
    description = Column(Text)
    status = Column(String(20), nullable=False, default="pending")
    comments = Column(Text)
    processed_by = Column(UUID(as_uuid=True), ForeignKey("users.user_id"))
    processed_at = Column(DateTime)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)

    __table_args__ = (
        CheckConstraint("status IN ('pending', 'approved', 'rejected')", name="ck_claim_status"),
        Index("ix_claims_agent_status", "agent_id", "status"),
    )


# ─── 9. Transactions (ledger) ──────────────────────────────────────────────


class Transaction(Base):
    __tablename__ = "transactions"

    transaction_id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    user_id = Column(UUID(as_uuid=True), ForeignKey("users.user_id"), nullable=False)
    counterparty_id = Column(UUID(as_uuid=True), ForeignKey("users.user_id"))
    transaction_type = Column(String(30), nullable=False)
    amount = Column(Float, nullable=False)
    description = Column(Text)
    related_id = Column(String(100), nullable=False)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)

    __table_args__ = (
        CheckConstraint(
            "transaction_type IN ('product_purchase', 'sale_credit', 'order_refund', 'fund_addition', "
            "'premium_payment', 'premium_received', 'claim_payout', 'insurance_refund', "
            "'premium_refund_debit')",
            name="ck_transaction_type",
        ),
        UniqueConstraint("user_id", "transaction_type", "related_id", name="uq_transaction_idempotency"),
        Index("ix_transactions_user_created", "user_id", "created_at"),
    )


# ─── 10. Vehicles ──────────────────────────────────────────────────────────


class Vehicle(Base):
    __tablename__ = "vehicles"

    vehicle_id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    logistics_id = Column(UUID(as_uuid=True), ForeignKey("users.user_id"), nullable=False)
    vehicle_number = Column(String(30), nullable=False, unique=True)
    vehicle_type = Column(String(50), nullable=False)
    # Units of produce the vehicle can carry at once
    capacity = Column(Integer, nullable=False)
    status = Column(String(20), nullable=False, default="available")
    current_location = Column(String(255))
    driver_id = Column(UUID(as_uuid=True), ForeignKey("users.user_id"))
    assigned_at = Column(DateTime)
    last_dispatched_at = Column(DateTime)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    updated_at = Column(DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)

    __table_args__ = (
        CheckConstraint("capacity > 0", name="ck_vehicle_capacity"),
        CheckConstraint("status IN ('available', 'assigned', 'loaded')", name="ck_vehicle_status"),
        # A driver is on at most one vehicle at a time
        UniqueConstraint("driver_id", name="uq_vehicle_driver"),
        Index("ix_vehicles_logistics_status", "logistics_id", "status"),
    )


# ─── 11. Temperature Readings ──────────────────────────────────────────────


class TemperatureReading(Base):
    __tablename__ = "temperature_readings"

    reading_id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    coldstorage_id = Column(UUID(as_uuid=True), ForeignKey("users.user_id"), nullable=False)
    # Null for facility-wide readings not tied to a stored order
    order_id = Column(UUID(as_uuid=True), ForeignKey("orders.order_id"))
    device = Column(String(100), nullable=False)
    temperature = Column(Float, nullable=False)
    humidity = Column(Float, nullable=False)
    latitude = Column(Float)
    longitude = Column(Float)
    breach = Column(Boolean, nullable=False, default=False)
    recorded_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)

    __table_args__ = (
        CheckConstraint("humidity >= 0 AND humidity <= 100", name="ck_reading_humidity"),
        Index("ix_readings_order_recorded", "order_id", "recorded_at"),
        Index("ix_readings_storage_device", "coldstorage_id", "device", "recorded_at"),
    )
