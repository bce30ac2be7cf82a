"""
Complaint Service — buyer complaints against dispatched or delivered orders.

Status graph:
    pending ─┬─► claimed ─┬─► approved
             │            └─► rejected
             ├─► rejected
             ├─► refunded     (seller refunded the buyer directly)
             └─► cancelled    (buyer withdrew; only while no claim exists)

A pending complaint is settled either by the seller directly
(resolve_complaint) or by routing it to the seller's insurer
(insurance.claims.file_claim).
"""

import uuid
from datetime import datetime, timedelta
from enum import Enum

import structlog
from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from accounts import ledger
from accounts.ledger import TransactionType
from core.config import get_settings
from core.errors import (
    DuplicateOperation,
    Forbidden,
    InvalidStateTransition,
    NotFound,
    ValidationError,
)
from core.roles import Role
from db.models import Complaint, InsuranceClaim, Order, User
from db.session import unit_of_work
from fulfillment.transitions import OrderStatus

logger = structlog.get_logger()


class ComplaintStatus(str, Enum):
    PENDING = "pending"
    CLAIMED = "claimed"
    APPROVED = "approved"
    REJECTED = "rejected"
    REFUNDED = "refunded"
    CANCELLED = "cancelled"


class SellerDecision(str, Enum):
    REFUND = "refund"
    REJECT = "reject"


COMPLAINT_TRANSITIONS: dict[ComplaintStatus, frozenset[ComplaintStatus]] = {
    ComplaintStatus.PENDING: frozenset(
        {
            ComplaintStatus.CLAIMED,
            ComplaintStatus.REJECTED,
            ComplaintStatus.REFUNDED,
            ComplaintStatus.CANCELLED,
        }
    ),
    ComplaintStatus.CLAIMED: frozenset({ComplaintStatus.APPROVED, ComplaintStatus.REJECTED}),
    ComplaintStatus.APPROVED: frozenset(),
    ComplaintStatus.REJECTED: frozenset(),
    ComplaintStatus.REFUNDED: frozenset(),
    ComplaintStatus.CANCELLED: frozenset(),
}

COMPLAINABLE_ORDER_STATUSES = frozenset({OrderStatus.DISPATCHED_TO_CUSTOMER.value, OrderStatus.DELIVERED.value})


async def get_complaint(db: AsyncSession, complaint_id: uuid.UUID) -> Complaint:
    complaint = await db.get(Complaint, complaint_id)
    if complaint is None:
        raise NotFound(f"Complaint {complaint_id} not found")
    return complaint


async def transition_complaint(
    db: AsyncSession,
    complaint: Complaint,
    target: ComplaintStatus,
    **values,
) -> None:
    """Conditionally move a complaint to `target`; the caller owns the transaction."""
    current = ComplaintStatus(complaint.status)
    if target not in COMPLAINT_TRANSITIONS[current]:
        raise InvalidStateTransition(f"Cannot move complaint from '{current.value}' to '{target.value}'")

    result = await db.execute(
        update(Complaint)
        .where(Complaint.complaint_id == complaint.complaint_id, Complaint.status == current.value)
        .values(status=target.value, updated_at=datetime.utcnow(), **values)
        .execution_options(synchronize_session="evaluate")
    )
    if result.rowcount != 1:
        raise InvalidStateTransition(f"Complaint {complaint.complaint_id} is no longer '{current.value}'")
    await db.refresh(complaint)


async def file_complaint(
    db: AsyncSession,
    buyer: User,
    order_id: uuid.UUID,
    reason: str,
    description: str,
    now: datetime | None = None,
) -> Complaint:
    """
    Open a complaint on an order the buyer received (or is receiving).

    The complaint window is measured from the moment the order was
    dispatched to the customer.
    """
    now = now or datetime.utcnow()
    if buyer.role != Role.BUYER.value:
        raise Forbidden("Only buyers can file complaints")

    async with unit_of_work(db):
        order = await db.get(Order, order_id)
        if order is None:
            raise NotFound(f"Order {order_id} not found")
        if order.buyer_id != buyer.user_id:
            raise Forbidden("You can only complain about your own orders")
        if order.status not in COMPLAINABLE_ORDER_STATUSES or order.dispatched_to_customer_at is None:
            raise InvalidStateTransition(
                f"Complaints can only be filed once an order is dispatched to the customer (status: {order.status})"
            )

        window = timedelta(hours=get_settings().complaint_window_hours)
        if now - order.dispatched_to_customer_at > window:
            raise ValidationError(
                f"Complaints must be filed within {get_settings().complaint_window_hours} hours of dispatch"
            )

        existing = await db.execute(select(Complaint.complaint_id).where(Complaint.order_id == order_id))
        if existing.first() is not None:
            raise DuplicateOperation(f"A complaint already exists for order {order_id}")

        complaint = Complaint(
            complaint_id=uuid.uuid4(),
            order_id=order.order_id,
            buyer_id=buyer.user_id,
            seller_id=order.seller_id,
            reason=reason,
            description=description,
            amount=order.total_amount,
            status=ComplaintStatus.PENDING.value,
            created_at=now,
        )
        db.add(complaint)
        try:
            await db.flush()
        except IntegrityError as exc:
            raise DuplicateOperation(f"A complaint already exists for order {order_id}") from exc

    logger.info(
        "complaints.filed",
        complaint_id=str(complaint.complaint_id),
        order_id=str(order_id),
        amount=complaint.amount,
    )
    return complaint


async def cancel_complaint(
    db: AsyncSession,
    complaint_id: uuid.UUID,
    buyer: User,
    reason: str | None = None,
) -> Complaint:
    """Withdraw a pending complaint. Complaints routed to an insurer stay put."""
    async with unit_of_work(db):
        complaint = await get_complaint(db, complaint_id)
        if complaint.buyer_id != buyer.user_id:
            raise Forbidden("Only the buyer who filed the complaint can cancel it")
        if complaint.has_claim or complaint.claim_id is not None:
            raise Forbidden("Cannot cancel a complaint that already has an insurance claim")

        await transition_complaint(
            db,
            complaint,
            ComplaintStatus.CANCELLED,
            cancellation_date=datetime.utcnow(),
            cancellation_reason=reason,
        )

    logger.info("complaints.cancelled", complaint_id=str(complaint_id))
    return complaint


async def resolve_complaint(
    db: AsyncSession,
    complaint_id: uuid.UUID,
    seller: User,
    decision: SellerDecision,
    notes: str | None = None,
) -> Complaint:
    """Seller settles a pending complaint without involving an insurer."""
    async with unit_of_work(db):
        complaint = await get_complaint(db, complaint_id)
        if complaint.seller_id != seller.user_id:
            raise Forbidden("Only the seller of the order can resolve this complaint")

        if decision == SellerDecision.REFUND:
            await transition_complaint(db, complaint, ComplaintStatus.REFUNDED, resolution_notes=notes)
            await ledger.transfer(
                db,
                payer_id=complaint.seller_id,
                payee_id=complaint.buyer_id,
                amount=complaint.amount,
                debit_type=TransactionType.ORDER_REFUND,
                credit_type=TransactionType.ORDER_REFUND,
                related_id=str(complaint.complaint_id),
                description=f"Complaint refund: {complaint.reason}",
            )
        else:
            await transition_complaint(db, complaint, ComplaintStatus.REJECTED, resolution_notes=notes)

    logger.info(
        "complaints.resolved",
        complaint_id=str(complaint_id),
        decision=decision.value,
        amount=complaint.amount,
    )
    return complaint


async def get_complaint_for(db: AsyncSession, complaint_id: uuid.UUID, actor: User) -> Complaint:
    complaint = await get_complaint(db, complaint_id)
    if actor.role == Role.ADMIN.value or actor.user_id in (complaint.buyer_id, complaint.seller_id):
        return complaint
    if actor.role == Role.INSURANCE.value and complaint.claim_id is not None:
        claim = await db.get(InsuranceClaim, complaint.claim_id)
        if claim is not None and claim.agent_id == actor.user_id:
            return complaint
    raise Forbidden("You do not have permission to view this complaint")


async def list_complaints_for(
    db: AsyncSession,
    actor: User,
    status: str | None = None,
    skip: int = 0,
    limit: int = 50,
) -> list[Complaint]:
    query = select(Complaint)
    if actor.role == Role.BUYER.value:
        query = query.where(Complaint.buyer_id == actor.user_id)
    elif actor.role == Role.SELLER.value:
        query = query.where(Complaint.seller_id == actor.user_id)
    elif actor.role != Role.ADMIN.value:
        raise Forbidden(f"Role '{actor.role}' has no complaints")
    if status:
        query = query.where(Complaint.status == status)
    query = query.order_by(Complaint.created_at.desc()).offset(skip).limit(limit)
    result = await db.execute(query)
    return list(result.scalars().all())
