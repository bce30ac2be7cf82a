"""
Claim Router — turns a buyer complaint into an insurance claim and settles it.

Workflow:
  1. Seller files a claim for a pending complaint
     → active holding resolved, coverage reserved, agent assigned
  2. Assigned agent approves or rejects
     → approve: agent pays the buyer (claim_payout), complaint approved
     → reject:  reserved coverage released, complaint rejected

A decision is final. Repeating it is a no-op, contradicting it is refused,
and the payout ledger entries are keyed by claim id so they post at most once.
"""

import uuid
from datetime import datetime
from enum import Enum

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
    ValidationError,
)
from core.roles import Role
from db.models import InsuranceClaim, Order, User
from db.session import unit_of_work
from insurance import policies
from insurance.complaints import ComplaintStatus, get_complaint, transition_complaint

logger = structlog.get_logger()


class ClaimStatus(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


async def _get_claim(db: AsyncSession, claim_id: uuid.UUID) -> InsuranceClaim:
    claim = await db.get(InsuranceClaim, claim_id)
    if claim is None:
        raise NotFound(f"Claim {claim_id} not found")
    return claim


async def file_claim(
    db: AsyncSession,
    complaint_id: uuid.UUID,
    seller: User,
    description: str | None = None,
    now: datetime | None = None,
) -> InsuranceClaim:
    now = now or datetime.utcnow()
    async with unit_of_work(db):
        complaint = await get_complaint(db, complaint_id)
        if seller.role != Role.SELLER.value or complaint.seller_id != seller.user_id:
            raise Forbidden("Only the seller named on the complaint can file a claim")
        if complaint.has_claim:
            raise DuplicateOperation(f"Complaint {complaint_id} already has a claim")
        if complaint.status != ComplaintStatus.PENDING.value:
            raise InvalidStateTransition(f"Cannot file a claim for a '{complaint.status}' complaint")

        holding = await policies.resolve_active_policy(db, seller.user_id, now)
        await policies.reserve_coverage(db, holding, complaint.amount)
        agent = await policies.resolve_agent(db, holding)

        order = await db.get(Order, complaint.order_id)
        claim = InsuranceClaim(
            claim_id=uuid.uuid4(),
            complaint_id=complaint.complaint_id,
            insurance_id=holding.insurance_id,
            order_id=complaint.order_id,
            product_id=order.product_id,
            seller_id=complaint.seller_id,
            buyer_id=complaint.buyer_id,
            agent_id=agent.user_id,
            amount=complaint.amount,
            reason=complaint.reason,
            description=description or complaint.description,
            status=ClaimStatus.PENDING.value,
            created_at=now,
        )
        db.add(claim)
        try:
            await db.flush()
        except IntegrityError as exc:
            raise DuplicateOperation(f"Complaint {complaint_id} already has a claim") from exc

        await transition_complaint(
            db,
            complaint,
            ComplaintStatus.CLAIMED,
            has_claim=True,
            claim_id=claim.claim_id,
        )

    logger.info(
        "claims.filed",
        claim_id=str(claim.claim_id),
        complaint_id=str(complaint_id),
        insurance_id=str(claim.insurance_id),
        agent_id=str(claim.agent_id),
        amount=claim.amount,
    )
    return claim


async def process_claim(
    db: AsyncSession,
    claim_id: uuid.UUID,
    decision: ClaimStatus,
    agent: User,
    comments: str | None = None,
) -> InsuranceClaim:
    """
    Apply the assigned agent's decision to a pending claim.

    Approval pays the buyer from the agent's balance. Rejection frees the
    coverage the claim had reserved. Either way the linked complaint is
    settled in the same unit of work.
    """
    if decision == ClaimStatus.PENDING:
        raise ValidationError("Decision must be 'approved' or 'rejected'")

    async with unit_of_work(db):
        claim = await _get_claim(db, claim_id)
        if claim.agent_id != agent.user_id:
            raise Forbidden("Only the assigned insurance agent can process this claim")

        if claim.status == decision.value:
            logger.info("claims.decision_repeated", claim_id=str(claim_id), status=claim.status)
            return claim
        if claim.status != ClaimStatus.PENDING.value:
            raise InvalidStateTransition(f"Claim {claim_id} is already '{claim.status}'")

        result = await db.execute(
            update(InsuranceClaim)
            .where(InsuranceClaim.claim_id == claim_id, InsuranceClaim.status == ClaimStatus.PENDING.value)
            .values(
                status=decision.value,
                comments=comments,
                processed_by=agent.user_id,
                processed_at=datetime.utcnow(),
            )
            .execution_options(synchronize_session="evaluate")
        )
        if result.rowcount != 1:
            # Lost a race with another decision on the same claim
            await db.refresh(claim)
            if claim.status == decision.value:
                return claim
            raise InvalidStateTransition(f"Claim {claim_id} is already '{claim.status}'")

        complaint = await get_complaint(db, claim.complaint_id)
        if decision == ClaimStatus.APPROVED:
            await ledger.transfer(
                db,
                payer_id=claim.agent_id,
                payee_id=claim.buyer_id,
                amount=claim.amount,
                debit_type=TransactionType.CLAIM_PAYOUT,
                credit_type=TransactionType.CLAIM_PAYOUT,
                related_id=str(claim.claim_id),
                description=f"Insurance claim payout for order {claim.order_id}",
            )
            await transition_complaint(db, complaint, ComplaintStatus.APPROVED, resolution_notes=comments)
        else:
            await policies.release_coverage(db, claim.insurance_id, claim.amount)
            await transition_complaint(db, complaint, ComplaintStatus.REJECTED, resolution_notes=comments)

        await db.refresh(claim)

    logger.info(
        "claims.processed",
        claim_id=str(claim_id),
        decision=decision.value,
        amount=claim.amount,
        agent_id=str(agent.user_id),
    )
    return claim


async def get_claim_for(db: AsyncSession, claim_id: uuid.UUID, actor: User) -> InsuranceClaim:
    claim = await _get_claim(db, claim_id)
    if actor.role == Role.ADMIN.value or actor.user_id in (claim.agent_id, claim.seller_id, claim.buyer_id):
        return claim
    raise Forbidden("You do not have permission to view this claim")


async def list_claims_for(
    db: AsyncSession,
    actor: User,
    status: str | None = None,
    skip: int = 0,
    limit: int = 50,
) -> list[InsuranceClaim]:
    """Claims assigned to an agent, filed by a seller, or paying out to a buyer."""
    columns = {
        Role.INSURANCE.value: InsuranceClaim.agent_id,
        Role.SELLER.value: InsuranceClaim.seller_id,
        Role.BUYER.value: InsuranceClaim.buyer_id,
    }
    query = select(InsuranceClaim)
    if actor.role in columns:
        query = query.where(columns[actor.role] == actor.user_id)
    elif actor.role != Role.ADMIN.value:
        raise Forbidden(f"Role '{actor.role}' has no claims")
    if status:
        query = query.where(InsuranceClaim.status == status)
    query = query.order_by(InsuranceClaim.created_at.desc()).offset(skip).limit(limit)
    result = await db.execute(query)
    return list(result.scalars().all())
