"""Notification REST API endpoints."""

import logging
import secrets
from typing import Any

from fastapi import APIRouter, Header, HTTPException, status
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from app.configs import configs
from app.core.webpush import VapidConfigError, VapidSigner
from app.models.notification import NotificationIntent
from app.tasks.notification import send_web_push

logger = logging.getLogger(__name__)

router = APIRouter(tags=["notifications"])


# --- Response / Request models -----------------------------------------------


class NotificationConfigResponse(BaseModel):
    enabled: bool
    vapid_public_key: str


class NotificationWebhookRequest(BaseModel):
    """Database webhook body: ``{"type": "INSERT", "table": ..., "record": {...}}``."""

    model_config = ConfigDict(populate_by_name=True)

    type: str
    table: str = ""
    schema_name: str = Field(default="", alias="schema")
    record: dict[str, Any] | None = None
    old_record: dict[str, Any] | None = None


class NotificationWebhookResponse(BaseModel):
    ok: bool = True
    queued: bool = False


# --- Helpers ------------------------------------------------------------------


def _verify_webhook_secret(provided: str | None) -> None:
    expected = configs.Push.WebhookSecret
    if not expected:
        return
    if provided is None or not secrets.compare_digest(provided, expected):
        logger.warning("Invalid webhook secret provided")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid webhook secret",
        )


# --- Endpoints ----------------------------------------------------------------


@router.get("/config", response_model=NotificationConfigResponse)
async def get_notification_config() -> NotificationConfigResponse:
    """Public endpoint: whether push is usable and the key clients subscribe with."""
    if not configs.Push.Enable:
        return NotificationConfigResponse(enabled=False, vapid_public_key="")
    try:
        signer = VapidSigner.from_config(configs.Push)
    except VapidConfigError:
        return NotificationConfigResponse(enabled=False, vapid_public_key="")
    return NotificationConfigResponse(enabled=True, vapid_public_key=signer.public_key_b64)


@router.post("/webhook", response_model=NotificationWebhookResponse)
async def receive_notification_webhook(
    body: NotificationWebhookRequest,
    webhook_secret: str | None = Header(default=None, alias="X-Webhook-Secret"),
) -> NotificationWebhookResponse:
    """Receive an inserted notification row and queue its Web Push delivery."""
    _verify_webhook_secret(webhook_secret)

    if body.type.upper() != "INSERT" or body.record is None:
        logger.debug("Ignoring %s webhook for table %s", body.type, body.table)
        return NotificationWebhookResponse(queued=False)

    try:
        intent = NotificationIntent.model_validate(body.record)
    except ValidationError as e:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail=e.errors(include_url=False, include_context=False),
        ) from e

    if not configs.Push.Enable:
        return NotificationWebhookResponse(queued=False)

    send_web_push.delay(intent.model_dump(mode="json"))
    logger.info("Queued web push for user %s (notification=%s)", intent.user_id, intent.id)
    return NotificationWebhookResponse(queued=True)
