"""
Users Router — profile, wallet balance, transaction history, directory.
"""

from datetime import datetime
from uuid import UUID

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from accounts import ledger
from api.deps import get_current_account, get_db
from core.roles import Role
from db.models import User

router = APIRouter(prefix="/api/v1/users", tags=["users"])


# ─── Schemas ────────────────────────────────────────────────────────────────


class UserResponse(BaseModel):
    user_id: UUID
    name: str
    email: str
    phone: str | None
    address: str | None
    role: str
    balance: float
    is_active: bool
    created_at: datetime

    model_config = {"from_attributes": True}


class DirectoryEntry(BaseModel):
    """Public view of a user, used to pick logistics/cold storage/drivers."""

    user_id: UUID
    name: str
    role: str
    phone: str | None

    model_config = {"from_attributes": True}


class BalanceResponse(BaseModel):
    user_id: UUID
    balance: float


class AddFundsRequest(BaseModel):
    amount: float = Field(..., gt=0)
    idempotency_key: str | None = Field(None, max_length=100)


class TransactionResponse(BaseModel):
    transaction_id: UUID
    user_id: UUID
    counterparty_id: UUID | None
    transaction_type: str
    amount: float
    description: str | None
    related_id: str
    created_at: datetime

    model_config = {"from_attributes": True}


# ─── Endpoints ──────────────────────────────────────────────────────────────


@router.get("/me", response_model=UserResponse)
async def get_me(user: User = Depends(get_current_account)):
    return user


@router.get("/me/balance", response_model=BalanceResponse)
async def get_my_balance(
    user: User = Depends(get_current_account),
    db: AsyncSession = Depends(get_db),
):
    balance = await ledger.get_balance(db, user.user_id)
    return BalanceResponse(user_id=user.user_id, balance=balance)


@router.post("/me/funds", response_model=TransactionResponse, status_code=201)
async def add_funds(
    body: AddFundsRequest,
    user: User = Depends(get_current_account),
    db: AsyncSession = Depends(get_db),
):
    """Top up the wallet. Retrying with the same idempotency_key is rejected."""
    return await ledger.add_funds(db, user.user_id, body.amount, idempotency_key=body.idempotency_key)


@router.get("/me/transactions", response_model=list[TransactionResponse])
async def list_my_transactions(
    transaction_type: str | None = None,
    skip: int = Query(0, ge=0),
    limit: int = Query(50, ge=1, le=200),
    user: User = Depends(get_current_account),
    db: AsyncSession = Depends(get_db),
):
    """Ledger entries for the current user, newest first."""
    return await ledger.list_transactions(db, user.user_id, transaction_type, skip=skip, limit=limit)


@router.get("/directory/{role}", response_model=list[DirectoryEntry])
async def list_users_by_role(
    role: Role,
    user: User = Depends(get_current_account),
    db: AsyncSession = Depends(get_db),
):
    """Active users holding a role, e.g. logistics providers to dispatch to."""
    result = await db.execute(
        select(User).where(User.role == role.value, User.is_active.is_(True)).order_by(User.name)
    )
    return result.scalars().all()
