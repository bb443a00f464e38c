"""Per-entity push preference (mute) model."""

from datetime import datetime, timezone
from uuid import UUID, uuid4

from sqlalchemy import TIMESTAMP, Index
from sqlmodel import Column, Field, SQLModel


class NotificationPreference(SQLModel, table=True):
    """Whether *user_id* wants pushes about one group / competition / bet.

    A missing row means push is enabled.
    """

    __tablename__ = "notification_preference"  # type: ignore
    __table_args__ = (
        Index("idx_notification_pref_target", "user_id", "entity_type", "entity_id", unique=True),
    )

    id: UUID = Field(default_factory=uuid4, primary_key=True)
    user_id: str = Field(index=True, description="Logical user reference (no FK)")
    entity_type: str = Field(description="group, competition or bet")
    entity_id: str = Field(description="Identifier of the muted entity")
    push_enabled: bool = Field(default=True)
    updated_at: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc),
        sa_column=Column(TIMESTAMP(timezone=True), nullable=False),
    )
