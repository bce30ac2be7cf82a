"""
Order Ledger — checkout, cancellation and fulfillment status changes.

Workflow:
  1. Buyer places an order → buyer debited, seller credited, stock reserved
  2. Seller confirms, then hands the order to a logistics provider
  3. Logistics routes it direct to the customer or via cold storage
  4. The assigned driver marks it delivered

Every status change is a conditional UPDATE on the current status, so two
handlers racing on the same order cannot both win. Each operation runs in a
single unit of work: any failure rolls back balances, stock and status
together.
"""

import uuid
from datetime import datetime

import structlog
from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from accounts import ledger
from accounts.ledger import TransactionType
from core.errors import (
    DuplicateOperation,
    Forbidden,
    InvalidStateTransition,
    NotFound,
    OutOfStock,
    ValidationError,
)
from core.roles import Role
from db.models import Order, OrderEvent, Product, User
from db.session import unit_of_work
from fulfillment.transitions import (
    TIMESTAMP_FIELDS,
    DeliveryDestination,
    OrderStatus,
    check_transition,
)

logger = structlog.get_logger()

# Order column identifying the party that plays each role on an order
PARTY_COLUMNS = {
    Role.BUYER: Order.buyer_id,
    Role.SELLER: Order.seller_id,
    Role.LOGISTICS: Order.logistics_id,
    Role.COLDSTORAGE: Order.coldstorage_id,
    Role.DRIVER: Order.driver_id,
}


def _party_id(order: Order, role: Role) -> uuid.UUID | None:
    return getattr(order, PARTY_COLUMNS[role].key) if role in PARTY_COLUMNS else None


async def _get_order(db: AsyncSession, order_id: uuid.UUID) -> Order:
    order = await db.get(Order, order_id)
    if order is None:
        raise NotFound(f"Order {order_id} not found")
    return order


async def _require_user(db: AsyncSession, user_id: uuid.UUID | None, role: Role, field: str) -> User:
    if user_id is None:
        raise ValidationError(f"{field} is required for this transition")
    user = await db.get(User, user_id)
    if user is None or not user.is_active:
        raise NotFound(f"User {user_id} not found")
    if user.role != role.value:
        raise ValidationError(f"{field} must reference a {role.value} user")
    return user


async def _transition(
    db: AsyncSession,
    order: Order,
    target: OrderStatus,
    actor: User,
    values: dict | None = None,
    notes: str | None = None,
) -> None:
    current = order.status
    now = datetime.utcnow()
    changes = {**(values or {}), "status": target.value, TIMESTAMP_FIELDS[target]: now}

    result = await db.execute(
        update(Order)
        .where(Order.order_id == order.order_id, Order.status == current)
        .values(**changes)
        .execution_options(synchronize_session="evaluate")
    )
    if result.rowcount != 1:
        raise InvalidStateTransition(f"Order {order.order_id} is no longer '{current}'")

    db.add(
        OrderEvent(
            order_id=order.order_id,
            from_status=current,
            to_status=target.value,
            actor_id=actor.user_id,
            actor_role=actor.role,
            notes=notes,
            occurred_at=now,
        )
    )
    await db.flush()
    await db.refresh(order)


async def place_order(
    db: AsyncSession,
    buyer: User,
    product_id: uuid.UUID,
    quantity: int,
    idempotency_key: str | None = None,
) -> Order:
    """
    Check out `quantity` units of a product.

    Order of checks matters: the balance debit runs before the stock
    reservation so a short balance always surfaces as InsufficientFunds.
    """
    if buyer.role != Role.BUYER.value:
        raise Forbidden("Only buyers can place orders")
    if quantity <= 0:
        raise ValidationError("Quantity must be at least 1")

    async with unit_of_work(db):
        if idempotency_key:
            duplicate = await db.execute(
                select(Order.order_id).where(
                    Order.buyer_id == buyer.user_id,
                    Order.idempotency_key == idempotency_key,
                )
            )
            if duplicate.first() is not None:
                raise DuplicateOperation(f"Order with idempotency key '{idempotency_key}' already placed")

        product = await db.get(Product, product_id)
        if product is None or product.status != "active":
            raise NotFound(f"Product {product_id} not found")
        if product.seller_id == buyer.user_id:
            raise Forbidden("Sellers cannot buy their own products")

        total = ledger.to_money(product.price * quantity)
        order = Order(
            order_id=uuid.uuid4(),
            product_id=product.product_id,
            product_name=product.name,
            price=product.price,
            quantity=quantity,
            total_amount=total,
            buyer_id=buyer.user_id,
            seller_id=product.seller_id,
            status=OrderStatus.PENDING.value,
            delivery_destination=DeliveryDestination.CUSTOMER.value,
            idempotency_key=idempotency_key,
            placed_at=datetime.utcnow(),
        )

        await ledger.transfer(
            db,
            payer_id=buyer.user_id,
            payee_id=product.seller_id,
            amount=total,
            debit_type=TransactionType.PRODUCT_PURCHASE,
            credit_type=TransactionType.SALE_CREDIT,
            related_id=str(order.order_id),
            description=f"{product.name} x{quantity}",
        )

        stock = await db.execute(
            update(Product)
            .where(Product.product_id == product.product_id, Product.quantity >= quantity)
            .values(quantity=Product.quantity - quantity)
            .execution_options(synchronize_session=False)
        )
        if stock.rowcount != 1:
            raise OutOfStock(f"Not enough stock for {product.name}")
        await db.refresh(product)

        db.add(order)
        db.add(
            OrderEvent(
                order_id=order.order_id,
                from_status=None,
                to_status=OrderStatus.PENDING.value,
                actor_id=buyer.user_id,
                actor_role=buyer.role,
                occurred_at=order.placed_at,
            )
        )
        try:
            await db.flush()
        except IntegrityError as exc:
            raise DuplicateOperation(f"Order with idempotency key '{idempotency_key}' already placed") from exc

    logger.info(
        "orders.placed",
        order_id=str(order.order_id),
        buyer_id=str(buyer.user_id),
        seller_id=str(order.seller_id),
        total_amount=total,
    )
    return order


async def cancel_order(
    db: AsyncSession,
    order_id: uuid.UUID,
    actor: User,
    reason: str | None = None,
) -> Order:
    """Cancel a pending order, refunding the buyer and restoring stock."""
    async with unit_of_work(db):
        order = await _get_order(db, order_id)
        role = Role(actor.role)
        if role not in (Role.BUYER, Role.SELLER) or _party_id(order, role) != actor.user_id:
            raise Forbidden("Only the buyer or seller of this order can cancel it")
        check_transition(OrderStatus(order.status), OrderStatus.CANCELLED, role)

        await _transition(
            db,
            order,
            OrderStatus.CANCELLED,
            actor,
            values={"cancellation_reason": reason},
            notes=reason,
        )
        await ledger.transfer(
            db,
            payer_id=order.seller_id,
            payee_id=order.buyer_id,
            amount=order.total_amount,
            debit_type=TransactionType.ORDER_REFUND,
            credit_type=TransactionType.ORDER_REFUND,
            related_id=str(order.order_id),
            description=f"Refund for cancelled order: {order.product_name} x{order.quantity}",
            allow_overdraft=True,
        )
        await db.execute(
            update(Product)
            .where(Product.product_id == order.product_id)
            .values(quantity=Product.quantity + order.quantity)
            .execution_options(synchronize_session=False)
        )
        await db.get(Product, order.product_id, populate_existing=True)

    logger.info(
        "orders.cancelled",
        order_id=str(order.order_id),
        cancelled_by=actor.role,
        refund_amount=order.total_amount,
    )
    return order


async def advance_status(
    db: AsyncSession,
    order_id: uuid.UUID,
    new_status: OrderStatus,
    actor: User,
    *,
    logistics_id: uuid.UUID | None = None,
    delivery_destination: DeliveryDestination | None = None,
    coldstorage_id: uuid.UUID | None = None,
    driver_id: uuid.UUID | None = None,
    notes: str | None = None,
) -> Order:
    """
    Move an order one step along the fulfillment graph.

    The actor's role must be allowed on the edge and the actor must be the
    party assigned to the order for that role. Handing the order on assigns
    the next party:
      confirmed → dispatched_to_logistics     needs logistics_id (+ destination)
      → dispatched_to_coldstorage             needs coldstorage_id
      → dispatched_to_customer                needs driver_id
    """
    if new_status == OrderStatus.CANCELLED:
        return await cancel_order(db, order_id, actor, reason=notes)

    async with unit_of_work(db):
        order = await _get_order(db, order_id)
        current = OrderStatus(order.status)
        role = Role(actor.role)
        check_transition(current, new_status, role)
        if _party_id(order, role) != actor.user_id:
            raise Forbidden(f"Order {order_id} is not assigned to this {role.value}")
        if order.vehicle_id is not None:
            raise InvalidStateTransition(f"Order {order_id} is loaded on a vehicle; dispatch the vehicle instead")

        values: dict = {}
        if new_status == OrderStatus.DISPATCHED_TO_LOGISTICS:
            logistics = await _require_user(db, logistics_id, Role.LOGISTICS, "logistics_id")
            values["logistics_id"] = logistics.user_id
            values["delivery_destination"] = (delivery_destination or DeliveryDestination.CUSTOMER).value
        elif new_status == OrderStatus.DISPATCHED_TO_COLDSTORAGE:
            if order.delivery_destination != DeliveryDestination.COLDSTORAGE.value:
                raise InvalidStateTransition("Order is routed directly to the customer, not to cold storage")
            facility = await _require_user(db, coldstorage_id, Role.COLDSTORAGE, "coldstorage_id")
            values["coldstorage_id"] = facility.user_id
        elif new_status == OrderStatus.DISPATCHED_TO_CUSTOMER:
            if (
                current == OrderStatus.DISPATCHED_TO_LOGISTICS
                and order.delivery_destination != DeliveryDestination.CUSTOMER.value
            ):
                raise InvalidStateTransition("Order must pass through cold storage before reaching the customer")
            driver = await _require_user(db, driver_id, Role.DRIVER, "driver_id")
            values["driver_id"] = driver.user_id

        await _transition(db, order, new_status, actor, values=values, notes=notes)

    logger.info(
        "orders.status_changed",
        order_id=str(order.order_id),
        from_status=current.value,
        to_status=new_status.value,
        actor_role=role.value,
    )
    return order


def _can_view(order: Order, actor: User) -> bool:
    role = Role(actor.role)
    if role == Role.ADMIN:
        return True
    return _party_id(order, role) == actor.user_id


async def get_order_for(db: AsyncSession, order_id: uuid.UUID, actor: User) -> Order:
    order = await _get_order(db, order_id)
    if not _can_view(order, actor):
        raise Forbidden("You do not have permission to view this order")
    return order


async def list_orders_for(
    db: AsyncSession,
    actor: User,
    status: str | None = None,
    skip: int = 0,
    limit: int = 50,
) -> list[Order]:
    """Orders the actor is a party to (all orders for admins)."""
    role = Role(actor.role)
    query = select(Order)
    if role != Role.ADMIN:
        if role not in PARTY_COLUMNS:
            raise Forbidden(f"Role '{role.value}' has no orders")
        query = query.where(PARTY_COLUMNS[role] == actor.user_id)
    if status:
        query = query.where(Order.status == status)
    query = query.order_by(Order.placed_at.desc()).offset(skip).limit(limit)
    result = await db.execute(query)
    return list(result.scalars().all())


async def list_events(db: AsyncSession, order_id: uuid.UUID, actor: User) -> list[OrderEvent]:
    await get_order_for(db, order_id, actor)
    result = await db.execute(
        select(OrderEvent).where(OrderEvent.order_id == order_id).order_by(OrderEvent.occurred_at.asc())
    )
    return list(result.scalars().all())
