"""
Complaints Router — buyer complaints and seller-side resolution.
"""

from datetime import datetime
from uuid import UUID

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from api.deps import get_current_account, get_db, require_roles
from core.roles import Role
from db.models import User
from insurance import complaints as complaint_service
from insurance.complaints import ComplaintStatus, SellerDecision

router = APIRouter(prefix="/api/v1/complaints", tags=["complaints"])


# ─── Schemas ────────────────────────────────────────────────────────────────


class ComplaintCreate(BaseModel):
    order_id: UUID
    reason: str = Field(..., min_length=1, max_length=255)
    description: str = Field(..., min_length=1)


class ComplaintCancelRequest(BaseModel):
    reason: str | None = None


class ComplaintResolveRequest(BaseModel):
    decision: SellerDecision
    notes: str | None = None


class ComplaintResponse(BaseModel):
    complaint_id: UUID
    order_id: UUID
    buyer_id: UUID
    seller_id: UUID
    reason: str
    description: str
    amount: float
    status: str
    has_claim: bool
    claim_id: UUID | None
    resolution_notes: str | None
    cancellation_date: datetime | None
    cancellation_reason: str | None
    created_at: datetime

    model_config = {"from_attributes": True}


# ─── Endpoints ──────────────────────────────────────────────────────────────


@router.post("/", response_model=ComplaintResponse, status_code=201)
async def file_complaint(
    body: ComplaintCreate,
    db: AsyncSession = Depends(get_db),
    buyer: User = Depends(require_roles(Role.BUYER)),
):
    """Complain about an order within the window after dispatch to the customer."""
    return await complaint_service.file_complaint(db, buyer, body.order_id, body.reason, body.description)


@router.get("/", response_model=list[ComplaintResponse])
async def list_complaints(
    status: ComplaintStatus | None = None,
    skip: int = Query(0, ge=0),
    limit: int = Query(50, ge=1, le=200),
    db: AsyncSession = Depends(get_db),
    user: User = Depends(get_current_account),
):
    return await complaint_service.list_complaints_for(
        db, user, status=status.value if status else None, skip=skip, limit=limit
    )


@router.get("/{complaint_id}", response_model=ComplaintResponse)
async def get_complaint(
    complaint_id: UUID,
    db: AsyncSession = Depends(get_db),
    user: User = Depends(get_current_account),
):
    return await complaint_service.get_complaint_for(db, complaint_id, user)


@router.post("/{complaint_id}/cancel", response_model=ComplaintResponse)
async def cancel_complaint(
    complaint_id: UUID,
    body: ComplaintCancelRequest,
    db: AsyncSession = Depends(get_db),
    buyer: User = Depends(require_roles(Role.BUYER)),
):
    """Withdraw a pending complaint that has not been routed to an insurer."""
    return await complaint_service.cancel_complaint(db, complaint_id, buyer, reason=body.reason)


@router.post("/{complaint_id}/resolve", response_model=ComplaintResponse)
async def resolve_complaint(
    complaint_id: UUID,
    body: ComplaintResolveRequest,
    db: AsyncSession = Depends(get_db),
    seller: User = Depends(require_roles(Role.SELLER)),
):
    """Seller refunds the buyer directly or rejects the complaint."""
    return await complaint_service.resolve_complaint(db, complaint_id, seller, body.decision, notes=body.notes)
