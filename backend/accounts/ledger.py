"""
Account Balance Service — running balances plus the append-only transaction log.

Every balance change goes through post_entry, which in one step:
  1. Applies a conditional UPDATE to users.balance
     (debits only succeed while balance >= amount, so concurrent debits
     cannot overdraw; the UPDATE holds the row lock until commit)
  2. Appends exactly one Transaction row

The (user_id, transaction_type, related_id) triple is unique: the originating
order/claim/policy id is the idempotency key, so a retried action can never
post the same entry twice.

Callers own the database transaction (see db.session.unit_of_work).
"""

import uuid
from enum import Enum

import structlog
from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from core.errors import DuplicateOperation, InsufficientFunds, NotFound, ValidationError
from db.models import Transaction, User
from db.session import unit_of_work

logger = structlog.get_logger()


class TransactionType(str, Enum):
    PRODUCT_PURCHASE = "product_purchase"
    SALE_CREDIT = "sale_credit"
    ORDER_REFUND = "order_refund"
    FUND_ADDITION = "fund_addition"
    PREMIUM_PAYMENT = "premium_payment"
    PREMIUM_RECEIVED = "premium_received"
    CLAIM_PAYOUT = "claim_payout"
    INSURANCE_REFUND = "insurance_refund"
    PREMIUM_REFUND_DEBIT = "premium_refund_debit"


def to_money(amount: float) -> float:
    return round(float(amount), 2)


async def post_entry(
    db: AsyncSession,
    *,
    user_id: uuid.UUID,
    amount: float,
    transaction_type: TransactionType,
    related_id: str,
    description: str | None = None,
    counterparty_id: uuid.UUID | None = None,
    allow_overdraft: bool = False,
) -> Transaction:
    """
    Apply a signed amount to a user's balance and record it.

    allow_overdraft lets a debit take the balance below zero. Only reversals
    of money the user already received (order cancellation) use it.
    """
    amount = to_money(amount)
    if amount == 0:
        raise ValidationError("Ledger entries must move a non-zero amount")

    existing = await db.execute(
        select(Transaction.transaction_id).where(
            Transaction.user_id == user_id,
            Transaction.transaction_type == transaction_type.value,
            Transaction.related_id == related_id,
        )
    )
    if existing.first() is not None:
        raise DuplicateOperation(f"{transaction_type.value} already recorded for {related_id}")

    stmt = update(User).where(User.user_id == user_id)
    if amount < 0 and not allow_overdraft:
        stmt = stmt.where(User.balance >= -amount)
    result = await db.execute(
        stmt.values(balance=User.balance + amount).execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        if await db.get(User, user_id) is None:
            raise NotFound(f"User {user_id} not found")
        raise InsufficientFunds(f"Insufficient balance. Required: {-amount:.2f}")
    # bring any loaded copy of the account up to date
    await db.get(User, user_id, populate_existing=True)

    entry = Transaction(
        user_id=user_id,
        counterparty_id=counterparty_id,
        transaction_type=transaction_type.value,
        amount=amount,
        description=description,
        related_id=related_id,
    )
    db.add(entry)
    try:
        await db.flush()
    except IntegrityError as exc:
        raise DuplicateOperation(f"{transaction_type.value} already recorded for {related_id}") from exc

    logger.info(
        "ledger.entry_posted",
        user_id=str(user_id),
        transaction_type=transaction_type.value,
        amount=amount,
        related_id=related_id,
    )
    return entry


async def transfer(
    db: AsyncSession,
    *,
    payer_id: uuid.UUID,
    payee_id: uuid.UUID,
    amount: float,
    debit_type: TransactionType,
    credit_type: TransactionType,
    related_id: str,
    description: str | None = None,
    allow_overdraft: bool = False,
) -> tuple[Transaction, Transaction]:
    """Move money between two users as a debit entry plus a credit entry."""
    amount = to_money(amount)
    if amount <= 0:
        raise ValidationError("Transfer amount must be positive")

    debit = await post_entry(
        db,
        user_id=payer_id,
        amount=-amount,
        transaction_type=debit_type,
        related_id=related_id,
        description=description,
        counterparty_id=payee_id,
        allow_overdraft=allow_overdraft,
    )
    credit = await post_entry(
        db,
        user_id=payee_id,
        amount=amount,
        transaction_type=credit_type,
        related_id=related_id,
        description=description,
        counterparty_id=payer_id,
    )
    return debit, credit


async def add_funds(
    db: AsyncSession,
    user_id: uuid.UUID,
    amount: float,
    idempotency_key: str | None = None,
) -> Transaction:
    """Top up a user's balance. A repeated idempotency key is rejected."""
    if amount <= 0:
        raise ValidationError("Amount must be greater than zero")

    async with unit_of_work(db):
        entry = await post_entry(
            db,
            user_id=user_id,
            amount=amount,
            transaction_type=TransactionType.FUND_ADDITION,
            related_id=idempotency_key or uuid.uuid4().hex,
            description="Funds added to wallet",
        )
    return entry


async def get_balance(db: AsyncSession, user_id: uuid.UUID) -> float:
    result = await db.execute(select(User.balance).where(User.user_id == user_id))
    balance = result.scalar_one_or_none()
    if balance is None:
        raise NotFound(f"User {user_id} not found")
    return to_money(balance)


async def ledger_total(db: AsyncSession, user_id: uuid.UUID) -> float:
    """Sum of every transaction recorded for the user."""
    result = await db.execute(
        select(func.coalesce(func.sum(Transaction.amount), 0.0)).where(Transaction.user_id == user_id)
    )
    return to_money(result.scalar_one())


async def list_transactions(
    db: AsyncSession,
    user_id: uuid.UUID,
    transaction_type: str | None = None,
    skip: int = 0,
    limit: int = 50,
) -> list[Transaction]:
    query = select(Transaction).where(Transaction.user_id == user_id)
    if transaction_type:
        query = query.where(Transaction.transaction_type == transaction_type)
    query = query.order_by(Transaction.created_at.desc()).offset(skip).limit(limit)
    result = await db.execute(query)
    return list(result.scalars().all())


async def reconcile(db: AsyncSession) -> list[dict]:
    """Return every user whose stored balance differs from their ledger sum."""
    totals = (
        select(Transaction.user_id, func.sum(Transaction.amount).label("ledger_total"))
        .group_by(Transaction.user_id)
        .subquery()
    )
    result = await db.execute(
        select(User.user_id, User.email, User.balance, func.coalesce(totals.c.ledger_total, 0.0)).outerjoin(
            totals, totals.c.user_id == User.user_id
        )
    )
    mismatches = []
    for user_id, email, balance, total in result.all():
        if to_money(balance) != to_money(total):
            mismatches.append(
                {
                    "user_id": str(user_id),
                    "email": email,
                    "balance": to_money(balance),
                    "ledger_total": to_money(total),
                }
            )
    if mismatches:
        logger.warning("ledger.reconcile_mismatch", count=len(mismatches))
    return mismatches
