"""
Insurance plans and seller policy holdings.

Agents publish plans; sellers subscribe for a date range and pay the premium
up front to the plan's agent. Coverage on a holding is consumed by claims:
it is reserved when a claim is filed and released if the claim is rejected.
"""

import math
import uuid
from datetime import datetime
from enum import Enum

import structlog
from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from accounts import ledger
from accounts.ledger import TransactionType
from core.config import get_settings
from core.errors import (
    CoverageExceeded,
    DuplicateOperation,
    Forbidden,
    InvalidStateTransition,
    NoActivePolicy,
    NoAgentAvailable,
    NotFound,
    ValidationError,
)
from core.roles import Role
from db.models import Insurance, InsuranceClaim, PolicyPlan, User
from db.session import unit_of_work

logger = structlog.get_logger()

SECONDS_PER_DAY = 24 * 3600


class PlanType(str, Enum):
    CROP = "crop"
    LIVESTOCK = "livestock"
    EQUIPMENT = "equipment"
    GENERAL = "general"


class Tier(str, Enum):
    NORMAL = "normal"
    PREMIUM = "premium"


class InsuranceStatus(str, Enum):
    ACTIVE = "active"
    EXPIRED = "expired"
    CANCELLED = "cancelled"


def days_between(start: datetime, end: datetime) -> int:
    """Whole days from start to end, counting a started day as a full one."""
    return max(0, math.ceil((end - start).total_seconds() / SECONDS_PER_DAY))


def quote(plan: PolicyPlan, days: int, tier: Tier) -> tuple[float, float]:
    """Return (premium, coverage) for holding `plan` for `days` at `tier`."""
    if tier == Tier.PREMIUM:
        rate = plan.premium_daily_rate or plan.daily_rate * get_settings().premium_rate_multiplier
        coverage = plan.premium_coverage or plan.coverage
    else:
        rate = plan.daily_rate
        coverage = plan.coverage
    return ledger.to_money(rate * days), ledger.to_money(coverage)


# ─── Plans ─────────────────────────────────────────────────────────────────


async def create_plan(
    db: AsyncSession,
    agent: User,
    *,
    code: str,
    name: str,
    daily_rate: float,
    coverage: float,
    plan_type: PlanType = PlanType.GENERAL,
    description: str | None = None,
    premium_daily_rate: float | None = None,
    premium_coverage: float | None = None,
    min_duration_days: int = 1,
    max_duration_months: int = 12,
) -> PolicyPlan:
    if agent.role != Role.INSURANCE.value:
        raise Forbidden("Only insurance agents can publish plans")
    if daily_rate <= 0 or coverage <= 0:
        raise ValidationError("Daily rate and coverage must be positive")
    if min_duration_days > max_duration_months * 30:
        raise ValidationError("Minimum duration exceeds the maximum duration")

    async with unit_of_work(db):
        existing = await db.execute(select(PolicyPlan.plan_id).where(PolicyPlan.code == code))
        if existing.first() is not None:
            raise DuplicateOperation(f"Plan code '{code}' already exists")

        plan = PolicyPlan(
            code=code,
            name=name,
            description=description,
            plan_type=plan_type.value,
            daily_rate=daily_rate,
            premium_daily_rate=premium_daily_rate,
            coverage=coverage,
            premium_coverage=premium_coverage,
            min_duration_days=min_duration_days,
            max_duration_months=max_duration_months,
            agent_id=agent.user_id,
        )
        db.add(plan)
        await db.flush()

    logger.info("insurance.plan_created", code=code, agent_id=str(agent.user_id))
    return plan


async def list_plans(db: AsyncSession, plan_type: str | None = None) -> list[PolicyPlan]:
    query = select(PolicyPlan).where(PolicyPlan.status == "active")
    if plan_type:
        query = query.where(PolicyPlan.plan_type == plan_type)
    result = await db.execute(query.order_by(PolicyPlan.code))
    return list(result.scalars().all())


async def get_plan_by_code(db: AsyncSession, code: str) -> PolicyPlan:
    result = await db.execute(select(PolicyPlan).where(PolicyPlan.code == code))
    plan = result.scalar_one_or_none()
    if plan is None or plan.status != "active":
        raise NotFound(f"Plan '{code}' not found")
    return plan


# ─── Holdings ──────────────────────────────────────────────────────────────


async def subscribe(
    db: AsyncSession,
    seller: User,
    plan_code: str,
    start_date: datetime | None = None,
    end_date: datetime | None = None,
    tier: Tier = Tier.NORMAL,
    now: datetime | None = None,
) -> Insurance:
    """
    Buy a holding of `plan_code` for [start_date, end_date].

    The premium moves from the seller to the plan's agent in the same unit
    of work that creates the holding.
    """
    now = now or datetime.utcnow()
    if seller.role != Role.SELLER.value:
        raise Forbidden("Only sellers can subscribe to insurance")

    start_date = start_date or now
    if end_date is None or end_date <= start_date:
        raise ValidationError("end_date must be after start_date")

    async with unit_of_work(db):
        plan = await get_plan_by_code(db, plan_code)

        days = days_between(start_date, end_date)
        if days < plan.min_duration_days:
            raise ValidationError(f"Minimum duration for {plan.code} is {plan.min_duration_days} days")
        if math.ceil(days / 30) > plan.max_duration_months:
            raise ValidationError(f"Maximum duration for {plan.code} is {plan.max_duration_months} months")

        current = await db.execute(
            select(Insurance.insurance_id).where(
                Insurance.holder_id == seller.user_id,
                Insurance.status == InsuranceStatus.ACTIVE.value,
                Insurance.end_date >= now,
            )
        )
        if current.first() is not None:
            raise DuplicateOperation("You already have an active insurance policy")

        premium, coverage = quote(plan, days, tier)
        holding = Insurance(
            insurance_id=uuid.uuid4(),
            holder_id=seller.user_id,
            plan_id=plan.plan_id,
            policy_code=plan.code,
            tier=tier.value,
            premium=premium,
            coverage=coverage,
            duration_days=days,
            start_date=start_date,
            end_date=end_date,
            status=InsuranceStatus.ACTIVE.value,
            agent_id=plan.agent_id,
            created_at=now,
        )
        db.add(holding)
        await db.flush()

        await ledger.transfer(
            db,
            payer_id=seller.user_id,
            payee_id=plan.agent_id,
            amount=premium,
            debit_type=TransactionType.PREMIUM_PAYMENT,
            credit_type=TransactionType.PREMIUM_RECEIVED,
            related_id=str(holding.insurance_id),
            description=f"Premium for {plan.code} ({days} days, {tier.value})",
        )

    logger.info(
        "insurance.subscribed",
        insurance_id=str(holding.insurance_id),
        seller_id=str(seller.user_id),
        policy_code=plan.code,
        premium=premium,
        days=days,
    )
    return holding


def prorated_refund(holding: Insurance, now: datetime) -> float:
    total_days = days_between(holding.start_date, holding.end_date)
    if total_days == 0:
        return 0.0
    used_days = days_between(holding.start_date, now)
    remaining = max(0, total_days - used_days)
    return ledger.to_money(holding.premium / total_days * remaining)


async def cancel_subscription(
    db: AsyncSession,
    insurance_id: uuid.UUID,
    seller: User,
    now: datetime | None = None,
) -> Insurance:
    """Cancel an active holding and refund the unused days of premium."""
    now = now or datetime.utcnow()
    async with unit_of_work(db):
        holding = await db.get(Insurance, insurance_id)
        if holding is None:
            raise NotFound(f"Insurance {insurance_id} not found")
        if holding.holder_id != seller.user_id:
            raise Forbidden("You can only cancel your own insurance")

        open_claims = await db.execute(
            select(InsuranceClaim.claim_id).where(
                InsuranceClaim.insurance_id == insurance_id,
                InsuranceClaim.status == "pending",
            )
        )
        if open_claims.first() is not None:
            raise InvalidStateTransition("Cannot cancel a policy with pending claims")

        refund = prorated_refund(holding, now)
        result = await db.execute(
            update(Insurance)
            .where(Insurance.insurance_id == insurance_id, Insurance.status == InsuranceStatus.ACTIVE.value)
            .values(status=InsuranceStatus.CANCELLED.value, cancelled_at=now, refund_amount=refund)
            .execution_options(synchronize_session="evaluate")
        )
        if result.rowcount != 1:
            raise InvalidStateTransition(f"Insurance {insurance_id} is not active")

        if refund > 0 and holding.agent_id is not None:
            await ledger.transfer(
                db,
                payer_id=holding.agent_id,
                payee_id=holding.holder_id,
                amount=refund,
                debit_type=TransactionType.PREMIUM_REFUND_DEBIT,
                credit_type=TransactionType.INSURANCE_REFUND,
                related_id=str(insurance_id),
                description=f"Cancellation refund for {holding.policy_code}",
            )
        await db.refresh(holding)

    logger.info("insurance.cancelled", insurance_id=str(insurance_id), refund_amount=refund)
    return holding


async def list_holdings(db: AsyncSession, seller: User) -> list[Insurance]:
    result = await db.execute(
        select(Insurance).where(Insurance.holder_id == seller.user_id).order_by(Insurance.created_at.desc())
    )
    return list(result.scalars().all())


async def expire_lapsed_policies(db: AsyncSession, now: datetime | None = None) -> int:
    """Mark every active holding whose end date has passed as expired."""
    now = now or datetime.utcnow()
    async with unit_of_work(db):
        result = await db.execute(
            update(Insurance)
            .where(Insurance.status == InsuranceStatus.ACTIVE.value, Insurance.end_date < now)
            .values(status=InsuranceStatus.EXPIRED.value)
            .execution_options(synchronize_session="evaluate")
        )
    logger.info("insurance.policies_expired", count=result.rowcount)
    return result.rowcount


# ─── Claim support ─────────────────────────────────────────────────────────


async def resolve_active_policy(db: AsyncSession, seller_id: uuid.UUID, now: datetime | None = None) -> Insurance:
    """The seller's most recent holding that is active and in force at `now`."""
    now = now or datetime.utcnow()
    result = await db.execute(
        select(Insurance)
        .where(
            Insurance.holder_id == seller_id,
            Insurance.status == InsuranceStatus.ACTIVE.value,
            Insurance.start_date <= now,
            Insurance.end_date >= now,
        )
        .order_by(Insurance.created_at.desc())
        .limit(1)
    )
    holding = result.scalar_one_or_none()
    if holding is None:
        raise NoActivePolicy("No active insurance policy found for this seller")
    return holding


async def resolve_agent(db: AsyncSession, holding: Insurance) -> User:
    """The holding's own agent if still active, otherwise any active agent."""
    if holding.agent_id is not None:
        agent = await db.get(User, holding.agent_id)
        if agent is not None and agent.is_active and agent.role == Role.INSURANCE.value:
            return agent

    result = await db.execute(
        select(User)
        .where(User.role == Role.INSURANCE.value, User.is_active.is_(True))
        .order_by(User.created_at)
        .limit(1)
    )
    agent = result.scalar_one_or_none()
    if agent is None:
        raise NoAgentAvailable("No insurance agent is available to handle this claim")
    logger.warning("insurance.agent_fallback", insurance_id=str(holding.insurance_id), agent_id=str(agent.user_id))
    return agent


def remaining_coverage(holding: Insurance) -> float:
    return ledger.to_money(holding.coverage - holding.total_claims_amount)


async def reserve_coverage(db: AsyncSession, holding: Insurance, amount: float) -> None:
    if amount > remaining_coverage(holding):
        raise CoverageExceeded(
            f"Claim amount {amount:.2f} exceeds remaining coverage {remaining_coverage(holding):.2f}"
        )
    result = await db.execute(
        update(Insurance)
        .where(
            Insurance.insurance_id == holding.insurance_id,
            Insurance.total_claims_amount + amount <= Insurance.coverage,
        )
        .values(
            claims_count=Insurance.claims_count + 1,
            total_claims_amount=Insurance.total_claims_amount + amount,
        )
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        raise CoverageExceeded(f"Claim amount {amount:.2f} exceeds remaining coverage")
    await db.refresh(holding)


async def release_coverage(db: AsyncSession, insurance_id: uuid.UUID, amount: float) -> None:
    await db.execute(
        update(Insurance)
        .where(Insurance.insurance_id == insurance_id)
        .values(
            claims_count=Insurance.claims_count - 1,
            total_claims_amount=Insurance.total_claims_amount - amount,
        )
        .execution_options(synchronize_session=False)
    )
    await db.get(Insurance, insurance_id, populate_existing=True)
