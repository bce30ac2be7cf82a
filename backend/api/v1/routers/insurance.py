"""
Insurance Router — plan catalog and seller subscriptions.
"""

from datetime import datetime
from uuid import UUID

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from api.deps import get_current_account, get_db, require_roles
from core.roles import Role
from db.models import User
from insurance import policies
from insurance.policies import PlanType, Tier

router = APIRouter(prefix="/api/v1/insurance", tags=["insurance"])


# ─── Schemas ────────────────────────────────────────────────────────────────


class PlanCreate(BaseModel):
    code: str = Field(..., min_length=1, max_length=50)
    name: str = Field(..., min_length=1, max_length=255)
    description: str | None = None
    plan_type: PlanType = PlanType.GENERAL
    daily_rate: float = Field(..., gt=0)
    premium_daily_rate: float | None = Field(None, gt=0)
    coverage: float = Field(..., gt=0)
    premium_coverage: float | None = Field(None, gt=0)
    min_duration_days: int = Field(1, ge=1)
    max_duration_months: int = Field(12, ge=1, le=24)


class PlanResponse(BaseModel):
    plan_id: UUID
    code: str
    name: str
    description: str | None
    plan_type: str
    daily_rate: float
    premium_daily_rate: float | None
    coverage: float
    premium_coverage: float | None
    min_duration_days: int
    max_duration_months: int
    status: str
    agent_id: UUID

    model_config = {"from_attributes": True}


class SubscribeRequest(BaseModel):
    plan_code: str
    start_date: datetime | None = None
    end_date: datetime
    tier: Tier = Tier.NORMAL


class InsuranceResponse(BaseModel):
    insurance_id: UUID
    holder_id: UUID
    plan_id: UUID
    policy_code: str
    tier: str
    premium: float
    coverage: float
    duration_days: int
    start_date: datetime
    end_date: datetime
    status: str
    agent_id: UUID | None
    claims_count: int
    total_claims_amount: float
    cancelled_at: datetime | None
    refund_amount: float | None
    created_at: datetime

    model_config = {"from_attributes": True}


# ─── Endpoints ──────────────────────────────────────────────────────────────


@router.get("/plans", response_model=list[PlanResponse])
async def list_plans(
    plan_type: PlanType | None = None,
    db: AsyncSession = Depends(get_db),
    user: User = Depends(get_current_account),
):
    return await policies.list_plans(db, plan_type.value if plan_type else None)


@router.post("/plans", response_model=PlanResponse, status_code=201)
async def create_plan(
    body: PlanCreate,
    db: AsyncSession = Depends(get_db),
    agent: User = Depends(require_roles(Role.INSURANCE)),
):
    """Publish a plan underwritten by the calling agent."""
    return await policies.create_plan(db, agent, **body.model_dump())


@router.post("/subscriptions", response_model=InsuranceResponse, status_code=201)
async def subscribe(
    body: SubscribeRequest,
    db: AsyncSession = Depends(get_db),
    seller: User = Depends(require_roles(Role.SELLER)),
):
    """Buy a policy. The full premium is charged up front."""
    return await policies.subscribe(
        db,
        seller,
        body.plan_code,
        start_date=body.start_date,
        end_date=body.end_date,
        tier=body.tier,
    )


@router.get("/subscriptions", response_model=list[InsuranceResponse])
async def list_subscriptions(
    db: AsyncSession = Depends(get_db),
    seller: User = Depends(require_roles(Role.SELLER)),
):
    return await policies.list_holdings(db, seller)


@router.get("/subscriptions/active", response_model=InsuranceResponse)
async def get_active_subscription(
    db: AsyncSession = Depends(get_db),
    seller: User = Depends(require_roles(Role.SELLER)),
):
    return await policies.resolve_active_policy(db, seller.user_id)


@router.post("/subscriptions/{insurance_id}/cancel", response_model=InsuranceResponse)
async def cancel_subscription(
    insurance_id: UUID,
    db: AsyncSession = Depends(get_db),
    seller: User = Depends(require_roles(Role.SELLER)),
):
    """Cancel a policy; unused days are refunded pro rata."""
    return await policies.cancel_subscription(db, insurance_id, seller)
