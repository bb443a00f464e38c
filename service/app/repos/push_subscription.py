"""Repository for Web Push subscriptions."""

import logging

from sqlmodel import col, select
from sqlmodel.ext.asyncio.session import AsyncSession

from app.models.push_subscription import PushSubscription

logger = logging.getLogger(__name__)


class PushSubscriptionRepository:
    """Read / cleanup operations for PushSubscription.

    Callers own the transaction: deletions are flushed, not committed.
    """

    def __init__(self, db: AsyncSession):
        self.db = db

    async def get_by_user_id(self, user_id: str) -> list[PushSubscription]:
        stmt = select(PushSubscription).where(col(PushSubscription.user_id) == user_id)
        result = await self.db.exec(stmt)
        return list(result.all())

    async def delete_by_endpoint(self, endpoint: str, user_id: str | None = None) -> bool:
        """Delete the subscription for *endpoint* (scoped to *user_id* when given).

        Idempotent: returns False when nothing matched.
        """
        stmt = select(PushSubscription).where(col(PushSubscription.endpoint) == endpoint)
        if user_id is not None:
            stmt = stmt.where(col(PushSubscription.user_id) == user_id)
        result = await self.db.exec(stmt)
        existing = list(result.all())
        for row in existing:
            await self.db.delete(row)
        if existing:
            await self.db.flush()
            logger.debug("Deleted %d push subscription(s) for %s", len(existing), endpoint[:60])
        return bool(existing)
