"""VAPID (RFC 8292) token signing for push relay authentication."""

from __future__ import annotations

import json
import logging
import time
from typing import Any
from urllib.parse import urlparse

from cryptography.exceptions import UnsupportedAlgorithm
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import ec

from app.configs.push import PushConfig
from app.core.webpush.encoding import b64url_decode, b64url_encode
from app.core.webpush.exceptions import SubscriptionKeyError, VapidConfigError, VapidTokenError

logger = logging.getLogger(__name__)

MAX_TOKEN_LIFETIME = 12 * 60 * 60
COORDINATE_SIZE = 32

_JWT_HEADER = {"typ": "JWT", "alg": "ES256"}


# ---------------------------------------------------------------------------
# Signature encoding
# ---------------------------------------------------------------------------


def _read_length(der: bytes, offset: int) -> tuple[int, int]:
    if offset >= len(der):
        raise ValueError("Truncated DER length")
    first = der[offset]
    offset += 1
    if first < 0x80:
        return first, offset
    count = first & 0x7F
    if count == 0 or count > 2 or offset + count > len(der):
        raise ValueError("Unsupported DER length encoding")
    return int.from_bytes(der[offset : offset + count], "big"), offset + count


def _read_integer(der: bytes, offset: int) -> tuple[bytes, int]:
    if offset >= len(der) or der[offset] != 0x02:
        raise ValueError("Expected DER INTEGER")
    length, offset = _read_length(der, offset + 1)
    end = offset + length
    if length == 0 or end > len(der):
        raise ValueError("Truncated DER INTEGER")
    return der[offset:end], end


def _fit_coordinate(value: bytes, size: int) -> bytes:
    # Leading zeros are sign extension (or padding), never significant
    value = value.lstrip(b"\x00")
    if len(value) > size:
        raise ValueError(f"Signature component is {len(value)} bytes, expected at most {size}")
    return value.rjust(size, b"\x00")


def der_to_raw_signature(der: bytes, size: int = COORDINATE_SIZE) -> bytes:
    """Convert a DER ``ECDSA-Sig-Value`` into the fixed-width ``r || s`` form.

    JWS (and therefore VAPID) requires each component as a big-endian integer
    of exactly *size* bytes. DER integers are minimal and signed, so a
    component can come out shorter than *size* (needs left padding) or one
    byte longer (leading ``0x00`` sign byte, dropped here).

    Raises:
        ValueError: if *der* is not a well-formed two-INTEGER SEQUENCE or a
            component does not fit into *size* bytes.
    """
    if len(der) < 8 or der[0] != 0x30:
        raise ValueError("Expected DER SEQUENCE")
    length, offset = _read_length(der, 1)
    if offset + length != len(der):
        raise ValueError("DER SEQUENCE length mismatch")
    r, offset = _read_integer(der, offset)
    s, offset = _read_integer(der, offset)
    if offset != len(der):
        raise ValueError("Trailing bytes after DER signature")
    return _fit_coordinate(r, size) + _fit_coordinate(s, size)


# ---------------------------------------------------------------------------
# Key loading
# ---------------------------------------------------------------------------


def _ensure_p256(key: Any) -> ec.EllipticCurvePrivateKey:
    if not isinstance(key, ec.EllipticCurvePrivateKey) or not isinstance(key.curve, ec.SECP256R1):
        raise VapidConfigError("VAPID private key must be a P-256 (prime256v1) EC key")
    return key


def load_private_key(value: str) -> ec.EllipticCurvePrivateKey:
    """Load the VAPID signing key.

    Accepts a PEM document, or URL-safe base64 of either the raw 32-byte
    scalar (the format most VAPID generators print) or a DER encoded key.
    """
    value = (value or "").strip()
    if not value:
        raise VapidConfigError("VAPID private key is not configured")

    try:
        if value.startswith("-----BEGIN"):
            key = serialization.load_pem_private_key(value.encode("ascii"), password=None)
        else:
            raw = b64url_decode(value)
            if len(raw) == COORDINATE_SIZE:
                key = ec.derive_private_key(int.from_bytes(raw, "big"), ec.SECP256R1())
            else:
                key = serialization.load_der_private_key(raw, password=None)
    except (ValueError, TypeError, UnsupportedAlgorithm) as e:
        raise VapidConfigError(f"Malformed VAPID private key: {e}") from e

    return _ensure_p256(key)


def export_public_key(key: ec.EllipticCurvePublicKey) -> bytes:
    """Return the 65-byte uncompressed point of *key*."""
    return key.public_bytes(serialization.Encoding.X962, serialization.PublicFormat.UncompressedPoint)


# ---------------------------------------------------------------------------
# Signer
# ---------------------------------------------------------------------------


def _segment(obj: dict[str, Any]) -> str:
    return b64url_encode(json.dumps(obj, separators=(",", ":")).encode("utf-8"))


class VapidSigner:
    """Signs VAPID assertions with the long-term application server key.

    Stateless apart from the key: every call to :meth:`sign` produces a new
    token.
    """

    def __init__(
        self,
        private_key: ec.EllipticCurvePrivateKey,
        subject: str,
        token_lifetime: int = MAX_TOKEN_LIFETIME,
    ):
        self._private_key = _ensure_p256(private_key)
        self.subject = subject if subject.startswith(("mailto:", "https:")) else f"mailto:{subject}"
        if not 0 <= token_lifetime <= MAX_TOKEN_LIFETIME:
            raise VapidConfigError(f"VAPID token lifetime must be within 0..{MAX_TOKEN_LIFETIME} seconds")
        self.token_lifetime = token_lifetime
        self.public_key = export_public_key(self._private_key.public_key())
        self.public_key_b64 = b64url_encode(self.public_key)

    @classmethod
    def from_config(cls, config: PushConfig) -> "VapidSigner":
        """Build a signer from settings; raises :class:`VapidConfigError` on bad keys."""
        private_key = load_private_key(config.VapidPrivateKey)
        signer = cls(private_key, subject=config.VapidContactEmail, token_lifetime=config.TokenLifetime)

        if config.VapidPublicKey:
            try:
                configured = b64url_decode(config.VapidPublicKey)
            except ValueError as e:
                raise VapidConfigError(f"Malformed VAPID public key: {e}") from e
            if configured != signer.public_key:
                raise VapidConfigError("VAPID public key does not match the private key")

        return signer

    @staticmethod
    def audience_for(endpoint: str) -> str:
        """Return the ``scheme://host[:port]`` origin a token for *endpoint* is bound to."""
        try:
            parsed = urlparse(endpoint)
        except ValueError as e:
            raise SubscriptionKeyError(f"Push endpoint is not a valid URL: {endpoint[:60]!r}") from e
        if parsed.scheme not in ("http", "https") or not parsed.netloc:
            raise SubscriptionKeyError(f"Push endpoint is not an absolute http(s) URL: {endpoint[:60]!r}")
        return f"{parsed.scheme}://{parsed.netloc}"

    def sign(self, audience: str, *, expires_in: int | None = None, now: float | None = None) -> str:
        """Return a compact ES256 JWT ``header.claims.signature`` for *audience*."""
        parsed = urlparse(audience)
        if not parsed.scheme or not parsed.netloc or parsed.path not in ("", "/"):
            raise VapidTokenError(f"VAPID audience must be an origin, got {audience!r}")

        lifetime = self.token_lifetime if expires_in is None else int(expires_in)
        if lifetime < 0 or lifetime > MAX_TOKEN_LIFETIME:
            raise VapidTokenError(f"VAPID token lifetime {lifetime}s is outside 0..{MAX_TOKEN_LIFETIME}s")

        issued_at = int(time.time() if now is None else now)
        claims = {"aud": audience, "exp": issued_at + lifetime, "sub": self.subject}

        signing_input = f"{_segment(_JWT_HEADER)}.{_segment(claims)}"
        der = self._private_key.sign(signing_input.encode("ascii"), ec.ECDSA(hashes.SHA256()))
        return f"{signing_input}.{b64url_encode(der_to_raw_signature(der))}"

    def authorization_header(self, endpoint: str) -> str:
        token = self.sign(self.audience_for(endpoint))
        return f"vapid t={token}, k={self.public_key_b64}"


def ensure_vapid_keys(config: PushConfig) -> bool:
    """Validate the configured VAPID key pair at startup.

    Returns True when push can be signed; logs and returns False otherwise.
    """
    if not config.Enable:
        logger.info("Web Push disabled by configuration")
        return False

    try:
        signer = VapidSigner.from_config(config)
    except VapidConfigError as e:
        logger.warning("VAPID keys not usable, Web Push disabled: %s", e)
        return False

    logger.info("VAPID keys ready (public=%s…)", signer.public_key_b64[:20])
    return True
