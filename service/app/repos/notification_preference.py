"""Repository for per-entity push preferences (the mute gate)."""

from collections.abc import Iterable

from sqlalchemy import and_, or_
from sqlmodel import col, select
from sqlmodel.ext.asyncio.session import AsyncSession

from app.models.notification_preference import NotificationPreference


class NotificationPreferenceRepository:
    def __init__(self, db: AsyncSession):
        self.db = db

    async def get_muted_targets(self, user_id: str, targets: Iterable[tuple[str, str]]) -> list[tuple[str, str]]:
        """Return the subset of ``(entity_type, entity_id)`` *targets* muted by *user_id*."""
        targets = list(targets)
        if not targets:
            return []

        stmt = select(NotificationPreference).where(
            col(NotificationPreference.user_id) == user_id,
            col(NotificationPreference.push_enabled).is_(False),
            or_(
                *(
                    and_(
                        col(NotificationPreference.entity_type) == entity_type,
                        col(NotificationPreference.entity_id) == entity_id,
                    )
                    for entity_type, entity_id in targets
                )
            ),
        )
        result = await self.db.exec(stmt)
        return [(pref.entity_type, pref.entity_id) for pref in result.all()]

    async def is_push_enabled(self, user_id: str, targets: Iterable[tuple[str, str]]) -> bool:
        """True unless one of *targets* has an explicit ``push_enabled = false`` row."""
        return not await self.get_muted_targets(user_id, targets)
