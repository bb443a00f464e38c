"""Per-user Web Push delivery: encrypt, sign, send, classify, clean up."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field
from enum import StrEnum
from typing import Protocol

import httpx

from app.core.webpush.ece import CONTENT_ENCODING, DEFAULT_RECORD_SIZE, decode_subscription_keys, encrypt, max_payload_size
from app.core.webpush.exceptions import PayloadTooLargeError, SubscriptionKeyError
from app.core.webpush.vapid import VapidSigner
from app.models.notification import NotificationIntent

logger = logging.getLogger(__name__)

STALE_STATUS_CODES = frozenset({404, 410})


class DeliveryOutcome(StrEnum):
    DELIVERED = "delivered"
    # Relay says the endpoint is gone for good; the subscription gets deleted
    STALE = "stale"
    TRANSIENT_FAILURE = "transient_failure"
    # Stored keys / endpoint unusable; kept for investigation, never deleted
    INVALID_SUBSCRIPTION = "invalid_subscription"


@dataclass(slots=True)
class DeliveryResult:
    endpoint: str
    outcome: DeliveryOutcome
    status_code: int | None = None
    detail: str = ""


@dataclass(slots=True)
class DeliveryReport:
    user_id: str
    muted: bool = False
    results: list[DeliveryResult] = field(default_factory=list)
    removed: list[str] = field(default_factory=list)

    @property
    def delivered(self) -> int:
        return sum(1 for r in self.results if r.outcome is DeliveryOutcome.DELIVERED)

    @property
    def failed(self) -> int:
        return len(self.results) - self.delivered


class Subscription(Protocol):
    endpoint: str
    keys_p256dh: str
    keys_auth: str


class SubscriptionStore(Protocol):
    async def get_by_user_id(self, user_id: str) -> Sequence[Subscription]: ...

    async def delete_by_endpoint(self, endpoint: str, user_id: str | None = None) -> bool: ...


class PreferenceGate(Protocol):
    async def is_push_enabled(self, user_id: str, targets: Iterable[tuple[str, str]]) -> bool: ...


def _short(endpoint: str) -> str:
    return endpoint[:60]


class PushDeliveryService:
    """Deliver one :class:`NotificationIntent` to every subscription of its user.

    The store, preference gate, signer and HTTP client are injected; the
    service keeps no state between :meth:`deliver` calls.

    *timeout* bounds each relay request; *deadline* bounds the whole send
    phase. Requests still queued or in flight at the deadline are cancelled
    and reported as transient failures, and stale endpoints already seen are
    still cleaned up.
    """

    def __init__(
        self,
        subscriptions: SubscriptionStore,
        preferences: PreferenceGate,
        signer: VapidSigner,
        *,
        http_client: httpx.AsyncClient,
        ttl: int = 86400,
        timeout: float = 10.0,
        max_concurrency: int = 8,
        record_size: int = DEFAULT_RECORD_SIZE,
        urgency: str = "",
        icon: str | None = None,
        deadline: float | None = None,
    ):
        self.subscriptions = subscriptions
        self.preferences = preferences
        self.signer = signer
        self.http_client = http_client
        self.ttl = ttl
        self.timeout = timeout
        self.max_concurrency = max_concurrency
        self.record_size = record_size
        self.urgency = urgency
        self.icon = icon
        self.deadline = deadline

    async def deliver(self, intent: NotificationIntent) -> DeliveryReport:
        report = DeliveryReport(user_id=intent.user_id)

        targets = intent.preference_targets()
        if targets and not await self.preferences.is_push_enabled(intent.user_id, targets):
            logger.info("Push muted by user %s for %s, skipping", intent.user_id, targets)
            report.muted = True
            return report

        payload = intent.render(icon=self.icon)
        limit = max_payload_size(self.record_size)
        if len(payload) > limit:
            raise PayloadTooLargeError(len(payload), limit)

        subs = await self.subscriptions.get_by_user_id(intent.user_id)
        if not subs:
            logger.debug("No push subscriptions for user %s", intent.user_id)
            return report

        semaphore = asyncio.Semaphore(self.max_concurrency)

        async def _bounded(sub: Subscription) -> DeliveryResult:
            async with semaphore:
                try:
                    return await self._deliver_one(sub, payload)
                except Exception as e:
                    logger.exception("Unexpected error sending web push to %s", _short(sub.endpoint))
                    return DeliveryResult(sub.endpoint, DeliveryOutcome.TRANSIENT_FAILURE, detail=repr(e))

        tasks = [asyncio.create_task(_bounded(sub)) for sub in subs]
        done, pending = await asyncio.wait(tasks, timeout=self.deadline)
        if pending:
            logger.warning(
                "Web push for user %s hit the %.1fs deadline with %d request(s) unfinished",
                intent.user_id,
                self.deadline,
                len(pending),
            )
            for task in pending:
                task.cancel()
            await asyncio.gather(*pending, return_exceptions=True)

        report.results = [
            task.result()
            if task in done
            else DeliveryResult(sub.endpoint, DeliveryOutcome.TRANSIENT_FAILURE, detail="deadline")
            for sub, task in zip(subs, tasks)
        ]

        # Two rows can point at the same dead endpoint; delete it once
        stale = dict.fromkeys(r.endpoint for r in report.results if r.outcome is DeliveryOutcome.STALE)
        for endpoint in stale:
            if await self.subscriptions.delete_by_endpoint(endpoint, intent.user_id):
                report.removed.append(endpoint)

        logger.info(
            "Web push for user %s: %d delivered, %d failed, %d removed",
            intent.user_id,
            report.delivered,
            report.failed,
            len(report.removed),
        )
        return report

    def _headers(self, endpoint: str) -> dict[str, str]:
        headers = {
            "TTL": str(self.ttl),
            "Content-Encoding": CONTENT_ENCODING,
            "Content-Type": "application/octet-stream",
            "Authorization": self.signer.authorization_header(endpoint),
        }
        if self.urgency:
            headers["Urgency"] = self.urgency
        return headers

    async def _deliver_one(self, sub: Subscription, payload: bytes) -> DeliveryResult:
        endpoint = sub.endpoint
        try:
            ua_public, auth_secret = decode_subscription_keys(sub.keys_p256dh, sub.keys_auth)
            body = encrypt(payload, ua_public, auth_secret, record_size=self.record_size)
            headers = self._headers(endpoint)
        except SubscriptionKeyError as e:
            logger.warning("Unusable push subscription %s: %s", _short(endpoint), e)
            return DeliveryResult(endpoint, DeliveryOutcome.INVALID_SUBSCRIPTION, detail=str(e))

        try:
            async with asyncio.timeout(self.timeout):
                response = await self.http_client.post(endpoint, content=body, headers=headers)
        except TimeoutError:
            logger.warning("Web push to %s timed out after %.1fs", _short(endpoint), self.timeout)
            return DeliveryResult(endpoint, DeliveryOutcome.TRANSIENT_FAILURE, detail="timeout")
        except httpx.HTTPError as e:
            logger.warning("Web push to %s failed: %s", _short(endpoint), e)
            return DeliveryResult(endpoint, DeliveryOutcome.TRANSIENT_FAILURE, detail=str(e))

        return self._classify(endpoint, response)

    @staticmethod
    def _classify(endpoint: str, response: httpx.Response) -> DeliveryResult:
        status = response.status_code
        if 200 <= status < 300:
            logger.debug("Web push delivered to %s (%s)", _short(endpoint), status)
            return DeliveryResult(endpoint, DeliveryOutcome.DELIVERED, status_code=status)

        if status in STALE_STATUS_CODES:
            logger.info("Push subscription expired (%s), removing: %s", status, _short(endpoint))
            return DeliveryResult(endpoint, DeliveryOutcome.STALE, status_code=status)

        logger.warning("Web push rejected for %s: %s %s", _short(endpoint), status, response.text[:200])
        return DeliveryResult(endpoint, DeliveryOutcome.TRANSIENT_FAILURE, status_code=status, detail=response.text[:200])
