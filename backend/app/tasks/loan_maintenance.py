"""Celery periodic task: age open loans by one day."""

import asyncio
import logging

from sqlalchemy import update
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine, async_sessionmaker

from app.tasks import celery_app
from app.config import settings
from app.models.loan import Loan

logger = logging.getLogger(__name__)

__all__ = ["increment_act_days", "run_increment_act_days"]


def _get_async_session():
    engine = create_async_engine(settings.database_url)
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


async def run_increment_act_days(db: AsyncSession) -> int:
    """Add one day to ``act_days`` of every non-deleted, non-closed loan.

    Returns the number of loans touched. The caller commits.
    """
    result = await db.execute(
        update(Loan)
        .where(Loan.deleted_at.is_(None), Loan.closed_at.is_(None))
        .values(act_days=Loan.act_days + 1)
    )
    return result.rowcount or 0


@celery_app.task(name="app.tasks.loan_maintenance.increment_act_days")
def increment_act_days() -> dict:
    """Nightly act-days increment; wraps the async body in its own event loop."""

    async def _run():
        session_factory = _get_async_session()
        async with session_factory() as db:
            try:
                updated = await run_increment_act_days(db)
                await db.commit()
                return updated
            except Exception:
                await db.rollback()
                raise

    loop = asyncio.new_event_loop()
    try:
        updated = loop.run_until_complete(_run())
    finally:
        loop.close()
    logger.info("Incremented act_days for %d open loans", updated)
    return {"updated": updated}
