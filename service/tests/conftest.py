from collections.abc import AsyncGenerator, Callable
from dataclasses import dataclass

import pytest
import pytest_asyncio
from cryptography.hazmat.primitives.asymmetric import ec
from sqlalchemy.ext.asyncio import AsyncEngine, create_async_engine
from sqlalchemy.pool import StaticPool
from sqlmodel import SQLModel
from sqlmodel.ext.asyncio.session import AsyncSession

from app.core.webpush.encoding import b64url_encode
from app.core.webpush.vapid import VapidSigner, export_public_key
from app.models import notification_preference, push_subscription  # noqa: F401
from tests.fixtures.client import async_client  # noqa: F401


@dataclass
class Subscriber:
    """A browser-side key pair, as a real user agent would hold it."""

    private_key: ec.EllipticCurvePrivateKey
    public_key: bytes
    auth_secret: bytes

    @property
    def p256dh(self) -> str:
        return b64url_encode(self.public_key)

    @property
    def auth(self) -> str:
        return b64url_encode(self.auth_secret)


@pytest.fixture
def make_subscriber() -> Callable[[], Subscriber]:
    import os

    def _make() -> Subscriber:
        key = ec.generate_private_key(ec.SECP256R1())
        return Subscriber(private_key=key, public_key=export_public_key(key.public_key()), auth_secret=os.urandom(16))

    return _make


@pytest.fixture
def subscriber(make_subscriber: Callable[[], Subscriber]) -> Subscriber:
    return make_subscriber()


@pytest.fixture
def vapid_private_key() -> ec.EllipticCurvePrivateKey:
    return ec.generate_private_key(ec.SECP256R1())


@pytest.fixture
def vapid_private_key_b64(vapid_private_key: ec.EllipticCurvePrivateKey) -> str:
    return b64url_encode(vapid_private_key.private_numbers().private_value.to_bytes(32, "big"))


@pytest.fixture
def signer(vapid_private_key: ec.EllipticCurvePrivateKey) -> VapidSigner:
    return VapidSigner(vapid_private_key, subject="push@forfeit.test")


@pytest_asyncio.fixture
async def db_engine() -> AsyncGenerator[AsyncEngine, None]:
    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    async with engine.begin() as conn:
        await conn.run_sync(SQLModel.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest_asyncio.fixture
async def db_session(db_engine: AsyncEngine) -> AsyncGenerator[AsyncSession, None]:
    async with AsyncSession(db_engine, expire_on_commit=False) as session:
        yield session
