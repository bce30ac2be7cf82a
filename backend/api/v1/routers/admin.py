"""
Admin Router — operational commands.

These replace out-of-band scripts: every administrative write goes through
the same services and validation as user traffic.
"""

from datetime import datetime
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel, Field
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from accounts import ledger
from api.deps import get_db, require_roles
from api.v1.routers.users import UserResponse
from core.roles import Role
from core.security import hash_password
from db.models import User
from insurance import policies

router = APIRouter(prefix="/api/v1/admin", tags=["admin"])


# ─── Schemas ────────────────────────────────────────────────────────────────


class ExpireResponse(BaseModel):
    expired: int
    run_at: datetime


class LedgerMismatch(BaseModel):
    user_id: UUID
    email: str
    balance: float
    ledger_total: float


class ReconcileResponse(BaseModel):
    checked_at: datetime
    mismatches: list[LedgerMismatch]


class AdminCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=255)
    email: str = Field(..., pattern=r"^[^@\s]+@[^@\s]+\.[^@\s]+$", max_length=255)
    password: str = Field(..., min_length=8, max_length=128)


# ─── Endpoints ──────────────────────────────────────────────────────────────


@router.post("/insurance/expire", response_model=ExpireResponse)
async def expire_policies(
    db: AsyncSession = Depends(get_db),
    admin: User = Depends(require_roles(Role.ADMIN)),
):
    """Run the policy expiry sweep now instead of waiting for the daily task."""
    now = datetime.utcnow()
    expired = await policies.expire_lapsed_policies(db, now)
    return ExpireResponse(expired=expired, run_at=now)


@router.get("/ledger/reconcile", response_model=ReconcileResponse)
async def reconcile_ledger(
    db: AsyncSession = Depends(get_db),
    admin: User = Depends(require_roles(Role.ADMIN)),
):
    """Users whose stored balance disagrees with their transaction history."""
    mismatches = await ledger.reconcile(db)
    return ReconcileResponse(checked_at=datetime.utcnow(), mismatches=mismatches)


@router.post("/users", response_model=UserResponse, status_code=201)
async def create_admin(
    body: AdminCreate,
    db: AsyncSession = Depends(get_db),
    admin: User = Depends(require_roles(Role.ADMIN)),
):
    """Provision another admin account."""
    email = body.email.strip().lower()
    existing = await db.execute(select(User.user_id).where(func.lower(User.email) == email))
    if existing.first() is not None:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="Email already registered")

    user = User(
        name=body.name,
        email=email,
        hashed_password=hash_password(body.password),
        role=Role.ADMIN.value,
        balance=0.0,
    )
    db.add(user)
    await db.commit()
    await db.refresh(user)
    return user
