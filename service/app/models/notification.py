"""Notification intent: the message handed to push delivery."""

from __future__ import annotations

import json
from enum import StrEnum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator


class NotificationType(StrEnum):
    BET_CREATED = "bet_created"
    BET_JOINED = "bet_joined"
    PROOF_SUBMITTED = "proof_submitted"
    PROOF_CONFIRMED = "proof_confirmed"
    PROOF_DISPUTED = "proof_disputed"
    OUTCOME_RESOLVED = "outcome_resolved"
    PUNISHMENT_ASSIGNED = "punishment_assigned"
    PUNISHMENT_COMPLETED = "punishment_completed"
    GROUP_INVITE = "group_invite"
    GENERAL = "general"


# data-map key -> preference entity_type consulted before sending
PREFERENCE_ENTITY_KEYS: dict[str, str] = {
    "group_id": "group",
    "competition_id": "competition",
    "bet_id": "bet",
}


class NotificationIntent(BaseModel):
    """A notification row as inserted by the application.

    Unknown columns of the row (``read``, ``created_at``...) are ignored.
    """

    model_config = ConfigDict(frozen=True, extra="ignore")

    id: str | None = None
    user_id: str = Field(min_length=1)
    type: str = NotificationType.GENERAL.value
    title: str
    body: str = ""
    data: dict[str, Any] = Field(default_factory=dict)

    @field_validator("id", mode="before")
    @classmethod
    def _stringify_id(cls, value: Any) -> Any:
        return str(value) if value is not None else None

    @field_validator("data", mode="before")
    @classmethod
    def _coerce_data(cls, value: Any) -> Any:
        if value is None:
            return {}
        if isinstance(value, str):
            return json.loads(value) if value.strip() else {}
        return value

    def preference_targets(self) -> list[tuple[str, str]]:
        """``(entity_type, entity_id)`` pairs the preference gate must clear."""
        targets: list[tuple[str, str]] = []
        for key, entity_type in PREFERENCE_ENTITY_KEYS.items():
            value = self.data.get(key)
            if value not in (None, ""):
                targets.append((entity_type, str(value)))
        return targets

    def to_push_payload(self, icon: str | None = None) -> dict[str, Any]:
        """Shape read by the service worker's ``push`` handler."""
        data = dict(self.data)
        if self.id:
            data.setdefault("notification_id", self.id)
        data.setdefault("type", str(self.type))

        payload: dict[str, Any] = {"title": self.title, "body": self.body, "data": data}
        if icon:
            payload["icon"] = icon
        return payload

    def render(self, icon: str | None = None) -> bytes:
        return json.dumps(self.to_push_payload(icon), ensure_ascii=False, separators=(",", ":")).encode("utf-8")
