"""Celery task delivering Web Push for a newly created notification."""

import asyncio
import logging
from typing import Any

import httpx

from app.configs import configs
from app.core.celery_app import celery_app
from app.core.webpush import DeliveryReport, PushDeliveryService, VapidSigner
from app.infra.database import get_task_db_session
from app.models.notification import NotificationIntent
from app.repos.notification_preference import NotificationPreferenceRepository
from app.repos.push_subscription import PushSubscriptionRepository

logger = logging.getLogger(__name__)

# Above the largest PushConfig.DeliveryDeadline (25s)
SOFT_TIME_LIMIT = 30


@celery_app.task(name="send_web_push", ignore_result=True, soft_time_limit=SOFT_TIME_LIMIT)
def send_web_push(intent: dict[str, Any]) -> None:
    """Send Web Push to all of a user's subscriptions (sync wrapper)."""
    loop = asyncio.new_event_loop()
    try:
        loop.run_until_complete(_send_web_push_async(intent))
    finally:
        loop.close()


async def _send_web_push_async(raw_intent: dict[str, Any]) -> DeliveryReport | None:
    push = configs.Push
    if not push.Enable:
        logger.debug("Web Push disabled, skipping notification %s", raw_intent.get("id"))
        return None

    intent = NotificationIntent.model_validate(raw_intent)

    # Bad keys abort the whole run before any subscription is touched
    signer = VapidSigner.from_config(push)

    async with get_task_db_session() as db, httpx.AsyncClient(timeout=push.RequestTimeout) as client:
        service = PushDeliveryService(
            PushSubscriptionRepository(db),
            NotificationPreferenceRepository(db),
            signer,
            http_client=client,
            ttl=push.TTL,
            timeout=push.RequestTimeout,
            max_concurrency=push.MaxConcurrency,
            record_size=push.RecordSize,
            urgency=push.Urgency,
            icon=push.DefaultIcon,
            deadline=push.DeliveryDeadline,
        )
        report = await service.deliver(intent)
        if report.removed:
            await db.commit()

    return report
