"""
Claims Router — sellers route complaints to their insurer, agents decide.
"""

from datetime import datetime
from typing import Literal
from uuid import UUID

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession

from api.deps import get_current_account, get_db, require_roles
from core.roles import Role
from db.models import User
from insurance import claims as claim_service
from insurance.claims import ClaimStatus

router = APIRouter(prefix="/api/v1/claims", tags=["claims"])


# ─── Schemas ────────────────────────────────────────────────────────────────


class ClaimCreate(BaseModel):
    complaint_id: UUID
    description: str | None = None


class ClaimDecisionRequest(BaseModel):
    decision: Literal["approved", "rejected"]
    comments: str | None = None


class ClaimResponse(BaseModel):
    claim_id: UUID
    complaint_id: UUID
    insurance_id: UUID
    order_id: UUID
    product_id: UUID
    seller_id: UUID
    buyer_id: UUID
    agent_id: UUID
    amount: float
    reason: str
    description: str | None
    status: str
    comments: str | None
    processed_by: UUID | None
    processed_at: datetime | None
    created_at: datetime

    model_config = {"from_attributes": True}


# ─── Endpoints ──────────────────────────────────────────────────────────────


@router.post("/", response_model=ClaimResponse, status_code=201)
async def file_claim(
    body: ClaimCreate,
    db: AsyncSession = Depends(get_db),
    seller: User = Depends(require_roles(Role.SELLER)),
):
    """File an insurance claim for a pending complaint against the seller."""
    return await claim_service.file_claim(db, body.complaint_id, seller, description=body.description)


@router.get("/", response_model=list[ClaimResponse])
async def list_claims(
    status: ClaimStatus | None = None,
    skip: int = Query(0, ge=0),
    limit: int = Query(50, ge=1, le=200),
    db: AsyncSession = Depends(get_db),
    user: User = Depends(get_current_account),
):
    return await claim_service.list_claims_for(
        db, user, status=status.value if status else None, skip=skip, limit=limit
    )


@router.get("/{claim_id}", response_model=ClaimResponse)
async def get_claim(
    claim_id: UUID,
    db: AsyncSession = Depends(get_db),
    user: User = Depends(get_current_account),
):
    return await claim_service.get_claim_for(db, claim_id, user)


@router.post("/{claim_id}/decision", response_model=ClaimResponse)
async def decide_claim(
    claim_id: UUID,
    body: ClaimDecisionRequest,
    db: AsyncSession = Depends(get_db),
    agent: User = Depends(require_roles(Role.INSURANCE)),
):
    """
    Approve or reject a claim.

    Approval pays the buyer from the agent's balance. Sending the same
    decision again returns the claim unchanged.
    """
    return await claim_service.process_claim(db, claim_id, ClaimStatus(body.decision), agent, comments=body.comments)
