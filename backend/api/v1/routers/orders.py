"""
Orders Router — checkout and fulfillment workflow endpoints.

  1. Buyer places an order → status='pending' (buyer charged)
  2. Seller confirms, then dispatches to a logistics provider
  3. Logistics dispatches to cold storage or straight to the customer
  4. Driver delivers → status='delivered'

A pending order may be cancelled by its buyer or seller, which refunds
the buyer and restores stock. Every status change is recorded in the
order's event history.
"""

from datetime import datetime
from uuid import UUID

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from api.deps import get_current_account, get_db, require_roles
from core.roles import Role
from db.models import User
from fulfillment import orders as order_service
from fulfillment.transitions import DeliveryDestination, OrderStatus, allowed_next

router = APIRouter(prefix="/api/v1/orders", tags=["orders"])


# ─── Schemas ────────────────────────────────────────────────────────────────


class OrderCreate(BaseModel):
    product_id: UUID
    quantity: int = Field(..., gt=0)
    idempotency_key: str | None = Field(None, max_length=100)


class OrderCancelRequest(BaseModel):
    reason: str | None = None


class StatusChangeRequest(BaseModel):
    """Advance an order. Assignment fields are required on the edges that hand it on."""

    status: OrderStatus
    logistics_id: UUID | None = None
    delivery_destination: DeliveryDestination | None = None
    coldstorage_id: UUID | None = None
    driver_id: UUID | None = None
    notes: str | None = None


class OrderResponse(BaseModel):
    order_id: UUID
    product_id: UUID
    product_name: str
    price: float
    quantity: int
    total_amount: float
    buyer_id: UUID
    seller_id: UUID
    status: str
    delivery_destination: str
    logistics_id: UUID | None
    coldstorage_id: UUID | None
    driver_id: UUID | None
    vehicle_id: UUID | None
    cancellation_reason: str | None
    placed_at: datetime
    confirmed_at: datetime | None
    dispatched_to_logistics_at: datetime | None
    dispatched_to_coldstorage_at: datetime | None
    in_coldstorage_at: datetime | None
    dispatched_to_customer_at: datetime | None
    delivered_at: datetime | None
    cancelled_at: datetime | None

    model_config = {"from_attributes": True}


class OrderDetailResponse(OrderResponse):
    next_statuses: list[OrderStatus]


class OrderEventResponse(BaseModel):
    event_id: UUID
    order_id: UUID
    from_status: str | None
    to_status: str
    actor_id: UUID | None
    actor_role: str | None
    notes: str | None
    occurred_at: datetime

    model_config = {"from_attributes": True}


# ─── Endpoints ──────────────────────────────────────────────────────────────


@router.post("/", response_model=OrderResponse, status_code=201)
async def place_order(
    body: OrderCreate,
    db: AsyncSession = Depends(get_db),
    buyer: User = Depends(require_roles(Role.BUYER)),
):
    """Buy a product. Charges the buyer and reserves stock in one step."""
    return await order_service.place_order(
        db, buyer, body.product_id, body.quantity, idempotency_key=body.idempotency_key
    )


@router.get("/", response_model=list[OrderResponse])
async def list_orders(
    status: OrderStatus | None = None,
    skip: int = Query(0, ge=0),
    limit: int = Query(50, ge=1, le=200),
    db: AsyncSession = Depends(get_db),
    user: User = Depends(get_current_account),
):
    """Orders the caller is a party to."""
    return await order_service.list_orders_for(
        db, user, status=status.value if status else None, skip=skip, limit=limit
    )


@router.get("/{order_id}", response_model=OrderDetailResponse)
async def get_order(
    order_id: UUID,
    db: AsyncSession = Depends(get_db),
    user: User = Depends(get_current_account),
):
    """Order detail plus the statuses it can move to next."""
    order = await order_service.get_order_for(db, order_id, user)
    return OrderDetailResponse(
        **OrderResponse.model_validate(order).model_dump(),
        next_statuses=allowed_next(OrderStatus(order.status)),
    )


@router.get("/{order_id}/events", response_model=list[OrderEventResponse])
async def get_order_events(
    order_id: UUID,
    db: AsyncSession = Depends(get_db),
    user: User = Depends(get_current_account),
):
    """Status history, oldest first."""
    return await order_service.list_events(db, order_id, user)


@router.post("/{order_id}/cancel", response_model=OrderResponse)
async def cancel_order(
    order_id: UUID,
    body: OrderCancelRequest,
    db: AsyncSession = Depends(get_db),
    user: User = Depends(get_current_account),
):
    """Cancel a pending order; the buyer is refunded in full."""
    return await order_service.cancel_order(db, order_id, user, reason=body.reason)


@router.post("/{order_id}/status", response_model=OrderResponse)
async def change_order_status(
    order_id: UUID,
    body: StatusChangeRequest,
    db: AsyncSession = Depends(get_db),
    user: User = Depends(get_current_account),
):
    return await order_service.advance_status(
        db,
        order_id,
        body.status,
        user,
        logistics_id=body.logistics_id,
        delivery_destination=body.delivery_destination,
        coldstorage_id=body.coldstorage_id,
        driver_id=body.driver_id,
        notes=body.notes,
    )
