"""Unit tests for app.core.webpush.delivery.PushDeliveryService."""

import asyncio
import json
import re
from collections.abc import Callable
from types import SimpleNamespace

import http_ece
import httpx
import jwt
import pytest

from app.core.webpush.delivery import DeliveryOutcome, PushDeliveryService
from app.core.webpush.exceptions import PayloadTooLargeError
from tests.factories.notification import NotificationIntentFactory

ENDPOINT_A = "https://fcm.googleapis.com/fcm/send/device-a"
ENDPOINT_B = "https://updates.push.services.mozilla.com/wpush/v2/device-b"
ENDPOINT_C = "https://web.push.apple.com/device-c"


class FakeSubscriptionStore:
    def __init__(self, subs: list[SimpleNamespace]):
        self.subs = list(subs)
        self.loads: list[str] = []
        self.deletions: list[tuple[str, str | None]] = []

    async def get_by_user_id(self, user_id: str) -> list[SimpleNamespace]:
        self.loads.append(user_id)
        return [s for s in self.subs if s.user_id == user_id]

    async def delete_by_endpoint(self, endpoint: str, user_id: str | None = None) -> bool:
        self.deletions.append((endpoint, user_id))
        before = len(self.subs)
        self.subs = [s for s in self.subs if not (s.endpoint == endpoint and s.user_id == user_id)]
        return len(self.subs) != before


class FakePreferenceGate:
    def __init__(self, muted: set[tuple[str, str]] | None = None):
        self.muted = muted or set()
        self.calls: list[tuple[str, list[tuple[str, str]]]] = []

    async def is_push_enabled(self, user_id: str, targets) -> bool:
        targets = list(targets)
        self.calls.append((user_id, targets))
        return not any(t in self.muted for t in targets)


def _sub(subscriber, endpoint: str, user_id: str = "test-user") -> SimpleNamespace:
    return SimpleNamespace(user_id=user_id, endpoint=endpoint, keys_p256dh=subscriber.p256dh, keys_auth=subscriber.auth)


class Relay:
    """Records requests and answers with a per-endpoint status."""

    def __init__(self, statuses: dict[str, int | Callable[[httpx.Request], object]] | None = None):
        self.statuses = statuses or {}
        self.requests: list[httpx.Request] = []

    async def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        answer = self.statuses.get(str(request.url), 201)
        if callable(answer):
            result = answer(request)
            if asyncio.iscoroutine(result):
                result = await result
            return result
        return httpx.Response(answer, text="relay says hi")


@pytest.fixture
def relay() -> Relay:
    return Relay()


def _service(store, gate, signer, relay: Relay, **kwargs) -> tuple[PushDeliveryService, httpx.AsyncClient]:
    client = httpx.AsyncClient(transport=httpx.MockTransport(relay))
    kwargs.setdefault("icon", "/icon-192.png")
    return PushDeliveryService(store, gate, signer, http_client=client, **kwargs), client


@pytest.mark.asyncio
class TestEndToEnd:
    async def test_forfeit_scenario_gone_subscription(self, signer, subscriber) -> None:
        store = FakeSubscriptionStore([_sub(subscriber, ENDPOINT_A)])
        relay = Relay({ENDPOINT_A: 410})
        service, client = _service(store, FakePreferenceGate(), signer, relay)
        intent = NotificationIntentFactory.build(title="FORFEIT", body="X owes you $20")

        async with client:
            report = await service.deliver(intent)

        assert len(relay.requests) == 1
        request = relay.requests[0]
        body = request.content
        plaintext = intent.render(icon="/icon-192.png")
        ciphertext_and_tag = body[86:]
        assert len(ciphertext_and_tag) == len(plaintext) + 1 + 16
        assert len(body) == 16 + 4 + 1 + 65 + len(ciphertext_and_tag)

        assert store.deletions == [(ENDPOINT_A, "test-user")]
        assert report.removed == [ENDPOINT_A]
        assert [r.outcome for r in report.results] == [DeliveryOutcome.STALE]

    async def test_request_is_decryptable_and_authenticated(self, signer, subscriber, vapid_private_key, relay) -> None:
        store = FakeSubscriptionStore([_sub(subscriber, ENDPOINT_A)])
        service, client = _service(store, FakePreferenceGate(), signer, relay, ttl=3600, urgency="high")
        intent = NotificationIntentFactory.build(data={"bet_id": "bet-9"})

        async with client:
            report = await service.deliver(intent)

        request = relay.requests[0]
        assert request.method == "POST"
        assert request.headers["Content-Encoding"] == "aes128gcm"
        assert request.headers["Content-Type"] == "application/octet-stream"
        assert request.headers["TTL"] == "3600"
        assert request.headers["Urgency"] == "high"

        match = re.match(r"^vapid t=(\S+), k=(\S+)$", request.headers["Authorization"])
        assert match is not None
        assert match.group(2) == signer.public_key_b64
        claims = jwt.decode(
            match.group(1),
            vapid_private_key.public_key(),
            algorithms=["ES256"],
            audience="https://fcm.googleapis.com",
        )
        assert claims["sub"] == "mailto:push@forfeit.test"

        decrypted = http_ece.decrypt(
            request.content,
            private_key=subscriber.private_key,
            auth_secret=subscriber.auth_secret,
            version="aes128gcm",
        )
        payload = json.loads(decrypted)
        assert payload["title"] == "FORFEIT"
        assert payload["icon"] == "/icon-192.png"
        assert payload["data"]["bet_id"] == "bet-9"
        assert payload["data"]["notification_id"] == "notif-1"

        assert report.delivered == 1
        assert store.deletions == []


@pytest.mark.asyncio
class TestPreferenceGate:
    async def test_muted_entity_short_circuits(self, signer, subscriber, relay) -> None:
        store = FakeSubscriptionStore([_sub(subscriber, ENDPOINT_A), _sub(subscriber, ENDPOINT_B)])
        gate = FakePreferenceGate(muted={("group", "g-1")})
        service, client = _service(store, gate, signer, relay)

        async with client:
            report = await service.deliver(NotificationIntentFactory.build(data={"group_id": "g-1"}))

        assert report.muted is True
        assert relay.requests == []
        assert store.loads == []
        assert gate.calls == [("test-user", [("group", "g-1")])]

    async def test_unmuted_entity_is_delivered(self, signer, subscriber, relay) -> None:
        store = FakeSubscriptionStore([_sub(subscriber, ENDPOINT_A)])
        gate = FakePreferenceGate(muted={("group", "other")})
        service, client = _service(store, gate, signer, relay)

        async with client:
            report = await service.deliver(
                NotificationIntentFactory.build(data={"group_id": "g-1", "competition_id": "c-1"})
            )

        assert report.muted is False
        assert len(relay.requests) == 1
        assert gate.calls == [("test-user", [("group", "g-1"), ("competition", "c-1")])]

    async def test_no_entity_skips_gate(self, signer, subscriber, relay) -> None:
        gate = FakePreferenceGate()
        store = FakeSubscriptionStore([_sub(subscriber, ENDPOINT_A)])
        service, client = _service(store, gate, signer, relay)

        async with client:
            await service.deliver(NotificationIntentFactory.build(data={}))

        assert gate.calls == []
        assert len(relay.requests) == 1


@pytest.mark.asyncio
class TestOutcomes:
    async def test_each_subscription_is_independent(self, signer, make_subscriber) -> None:
        def _refuse(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        subs = [
            _sub(make_subscriber(), ENDPOINT_A),
            _sub(make_subscriber(), ENDPOINT_B),
            _sub(make_subscriber(), ENDPOINT_C),
            _sub(make_subscriber(), "https://relay.example/down"),
            SimpleNamespace(
                user_id="test-user", endpoint="https://relay.example/corrupt", keys_p256dh="AAAA", keys_auth="AAAA"
            ),
            _sub(make_subscriber(), "https://relay.example/not-found"),
        ]
        relay = Relay(
            {
                ENDPOINT_A: 201,
                ENDPOINT_B: 410,
                ENDPOINT_C: 500,
                "https://relay.example/down": _refuse,
                "https://relay.example/not-found": 404,
            }
        )
        store = FakeSubscriptionStore(subs)
        service, client = _service(store, FakePreferenceGate(), signer, relay)

        async with client:
            report = await service.deliver(NotificationIntentFactory.build())

        outcomes = {r.endpoint: r.outcome for r in report.results}
        assert outcomes == {
            ENDPOINT_A: DeliveryOutcome.DELIVERED,
            ENDPOINT_B: DeliveryOutcome.STALE,
            ENDPOINT_C: DeliveryOutcome.TRANSIENT_FAILURE,
            "https://relay.example/down": DeliveryOutcome.TRANSIENT_FAILURE,
            "https://relay.example/corrupt": DeliveryOutcome.INVALID_SUBSCRIPTION,
            "https://relay.example/not-found": DeliveryOutcome.STALE,
        }
        # The corrupt subscription never reaches the relay and is kept
        assert len(relay.requests) == 5
        assert sorted(store.deletions) == sorted(
            [(ENDPOINT_B, "test-user"), ("https://relay.example/not-found", "test-user")]
        )
        assert report.delivered == 1
        assert report.failed == 5

    async def test_malformed_endpoint_does_not_stop_siblings(self, signer, make_subscriber) -> None:
        store = FakeSubscriptionStore(
            [_sub(make_subscriber(), "https://[::1/push"), _sub(make_subscriber(), ENDPOINT_B)]
        )
        relay = Relay({ENDPOINT_B: 410})
        service, client = _service(store, FakePreferenceGate(), signer, relay)

        async with client:
            report = await service.deliver(NotificationIntentFactory.build())

        outcomes = {r.endpoint: r.outcome for r in report.results}
        assert outcomes == {
            "https://[::1/push": DeliveryOutcome.INVALID_SUBSCRIPTION,
            ENDPOINT_B: DeliveryOutcome.STALE,
        }
        assert store.deletions == [(ENDPOINT_B, "test-user")]

    async def test_unexpected_error_is_contained(self, signer, make_subscriber, caplog) -> None:
        def _boom(request: httpx.Request) -> httpx.Response:
            raise RuntimeError("relay client bug")

        store = FakeSubscriptionStore([_sub(make_subscriber(), ENDPOINT_A), _sub(make_subscriber(), ENDPOINT_B)])
        relay = Relay({ENDPOINT_A: _boom, ENDPOINT_B: 404})
        service, client = _service(store, FakePreferenceGate(), signer, relay)

        async with client:
            report = await service.deliver(NotificationIntentFactory.build())

        outcomes = {r.endpoint: r for r in report.results}
        assert outcomes[ENDPOINT_A].outcome is DeliveryOutcome.TRANSIENT_FAILURE
        assert "RuntimeError" in outcomes[ENDPOINT_A].detail
        assert outcomes[ENDPOINT_B].outcome is DeliveryOutcome.STALE
        assert store.deletions == [(ENDPOINT_B, "test-user")]
        assert "Unexpected error sending web push" in caplog.text

    async def test_deadline_cuts_off_queued_requests(self, signer, make_subscriber) -> None:
        async def _hang(request: httpx.Request) -> httpx.Response:
            await asyncio.sleep(10)
            return httpx.Response(201)

        hung = [f"https://relay.example/hung-{i}" for i in range(5)]
        store = FakeSubscriptionStore(
            [_sub(make_subscriber(), ENDPOINT_A)] + [_sub(make_subscriber(), e) for e in hung]
        )
        relay = Relay({ENDPOINT_A: 410, **{e: _hang for e in hung}})
        service, client = _service(
            store, FakePreferenceGate(), signer, relay, max_concurrency=2, timeout=0.3, deadline=0.45
        )

        async with client:
            report = await asyncio.wait_for(service.deliver(NotificationIntentFactory.build()), timeout=3)

        details = {r.endpoint: (r.outcome, r.detail) for r in report.results}
        assert details[ENDPOINT_A][0] is DeliveryOutcome.STALE
        # hung-0 and hung-1 time out at 0.3s; the rest are still running or queued at 0.45s
        assert [details[e] for e in hung[:2]] == [(DeliveryOutcome.TRANSIENT_FAILURE, "timeout")] * 2
        assert [details[e] for e in hung[2:]] == [(DeliveryOutcome.TRANSIENT_FAILURE, "deadline")] * 3
        assert store.deletions == [(ENDPOINT_A, "test-user")]
        assert report.removed == [ENDPOINT_A]

    async def test_hung_relay_times_out(self, signer, make_subscriber) -> None:
        async def _hang(request: httpx.Request) -> httpx.Response:
            await asyncio.sleep(5)
            return httpx.Response(201)

        store = FakeSubscriptionStore([_sub(make_subscriber(), ENDPOINT_A), _sub(make_subscriber(), ENDPOINT_B)])
        relay = Relay({ENDPOINT_A: _hang, ENDPOINT_B: 201})
        service, client = _service(store, FakePreferenceGate(), signer, relay, timeout=0.05)

        async with client:
            report = await asyncio.wait_for(service.deliver(NotificationIntentFactory.build()), timeout=2)

        outcomes = {r.endpoint: r for r in report.results}
        assert outcomes[ENDPOINT_A].outcome is DeliveryOutcome.TRANSIENT_FAILURE
        assert outcomes[ENDPOINT_A].detail == "timeout"
        assert outcomes[ENDPOINT_B].outcome is DeliveryOutcome.DELIVERED
        assert store.deletions == []

    async def test_duplicate_stale_endpoint_deleted_once(self, signer, make_subscriber) -> None:
        store = FakeSubscriptionStore([_sub(make_subscriber(), ENDPOINT_A), _sub(make_subscriber(), ENDPOINT_A)])
        relay = Relay({ENDPOINT_A: 410})
        service, client = _service(store, FakePreferenceGate(), signer, relay)

        async with client:
            report = await service.deliver(NotificationIntentFactory.build())

        assert len(relay.requests) == 2
        assert store.deletions == [(ENDPOINT_A, "test-user")]
        assert report.removed == [ENDPOINT_A]

    async def test_fresh_ephemeral_key_per_subscription(self, signer, subscriber, relay) -> None:
        store = FakeSubscriptionStore([_sub(subscriber, ENDPOINT_A), _sub(subscriber, ENDPOINT_B)])
        service, client = _service(store, FakePreferenceGate(), signer, relay)

        async with client:
            await service.deliver(NotificationIntentFactory.build())

        first, second = (r.content for r in relay.requests)
        assert first[:16] != second[:16]
        assert first[21:86] != second[21:86]

    async def test_concurrency_is_bounded(self, signer, make_subscriber) -> None:
        in_flight = 0
        peak = 0

        async def _slow(request: httpx.Request) -> httpx.Response:
            nonlocal in_flight, peak
            in_flight += 1
            peak = max(peak, in_flight)
            await asyncio.sleep(0.01)
            in_flight -= 1
            return httpx.Response(201)

        endpoints = [f"https://relay.example/{i}" for i in range(6)]
        store = FakeSubscriptionStore([_sub(make_subscriber(), e) for e in endpoints])
        relay = Relay({e: _slow for e in endpoints})
        service, client = _service(store, FakePreferenceGate(), signer, relay, max_concurrency=2)

        async with client:
            report = await service.deliver(NotificationIntentFactory.build())

        assert report.delivered == 6
        assert peak <= 2

    async def test_oversized_payload_sends_nothing(self, signer, subscriber, relay) -> None:
        store = FakeSubscriptionStore([_sub(subscriber, ENDPOINT_A)])
        service, client = _service(store, FakePreferenceGate(), signer, relay)

        async with client:
            with pytest.raises(PayloadTooLargeError):
                await service.deliver(NotificationIntentFactory.build(body="x" * 5000))

        assert relay.requests == []

    async def test_user_without_subscriptions(self, signer, relay) -> None:
        store = FakeSubscriptionStore([])
        service, client = _service(store, FakePreferenceGate(), signer, relay)

        async with client:
            report = await service.deliver(NotificationIntentFactory.build())

        assert report.results == []
        assert relay.requests == []
