"""
Maintenance Worker — daily insurance expiry sweep and ledger check.

expire_insurance_policies marks holdings whose end date has passed as
expired, so claims can no longer be filed against them.

reconcile_balances compares every stored balance with the sum of that
user's transactions and logs any drift. It never writes.

Schedule: crontab(hour=0, minute=5) / crontab(hour=1, minute=0)
Queue: maintenance
"""

import asyncio
from datetime import datetime, timezone

import structlog
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from workers.celery_app import celery_app

logger = structlog.get_logger()


async def _with_session(work):
    from core.config import get_settings

    settings = get_settings()
    engine = create_async_engine(settings.database_url)
    try:
        async_session = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
        async with async_session() as db:
            return await work(db)
    finally:
        await engine.dispose()


@celery_app.task(
    name="workers.policy_expiry.expire_insurance_policies",
    bind=True,
    max_retries=2,
    default_retry_delay=300,
    acks_late=True,
)
def expire_insurance_policies(self):
    run_id = self.request.id or "manual"
    logger.info("policy_expiry.started", run_id=run_id)

    async def _expire(db):
        from insurance.policies import expire_lapsed_policies

        return await expire_lapsed_policies(db, datetime.utcnow())

    try:
        expired = asyncio.run(_with_session(_expire))
    except Exception as exc:
        logger.error("policy_expiry.failed", error=str(exc), exc_info=True)
        raise self.retry(exc=exc)

    summary = {
        "status": "success",
        "expired": expired,
        "completed_at": datetime.now(timezone.utc).isoformat(),
    }
    logger.info("policy_expiry.completed", **summary)
    return summary


@celery_app.task(
    name="workers.policy_expiry.reconcile_balances",
    bind=True,
    max_retries=1,
    default_retry_delay=300,
    acks_late=True,
)
def reconcile_balances(self):
    async def _reconcile(db):
        from accounts.ledger import reconcile

        return await reconcile(db)

    try:
        mismatches = asyncio.run(_with_session(_reconcile))
    except Exception as exc:
        logger.error("ledger_reconcile.failed", error=str(exc), exc_info=True)
        raise self.retry(exc=exc)

    summary = {
        "status": "success" if not mismatches else "drift_detected",
        "mismatches": len(mismatches),
        "completed_at": datetime.now(timezone.utc).isoformat(),
    }
    logger.info("ledger_reconcile.completed", **summary)
    return summary
