"""Web Push message encryption (RFC 8291) in the ``aes128gcm`` content coding (RFC 8188).

Layout of an encrypted body::

    +-----------+--------+-----------+-----------------+--------------------+
    | salt (16) | rs (4) | idlen (1) | keyid (idlen)   | ciphertext + tag   |
    +-----------+--------+-----------+-----------------+--------------------+

``keyid`` is the sender's ephemeral public key (65 bytes, uncompressed
P-256). Only single-record messages are produced, which is all Web Push
allows in practice.
"""

from __future__ import annotations

import os
import struct
from dataclasses import dataclass, field

from cryptography.hazmat.primitives import hashes, hmac
from cryptography.hazmat.primitives.asymmetric import ec
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from app.core.webpush.encoding import b64url_decode
from app.core.webpush.exceptions import PayloadTooLargeError, SubscriptionKeyError
from app.core.webpush.vapid import export_public_key

CONTENT_ENCODING = "aes128gcm"

KEY_INFO_LABEL = b"WebPush: info\x00"
CEK_INFO = b"Content-Encoding: aes128gcm\x00"
NONCE_INFO = b"Content-Encoding: nonce\x00"

SALT_LENGTH = 16
CEK_LENGTH = 16
NONCE_LENGTH = 12
TAG_LENGTH = 16
AUTH_SECRET_LENGTH = 16
PUBLIC_KEY_LENGTH = 65
HEADER_LENGTH = SALT_LENGTH + 4 + 1 + PUBLIC_KEY_LENGTH

DEFAULT_RECORD_SIZE = 4096
# Push services refuse bodies larger than this, whatever the record size
MAX_BODY_SIZE = 4096

# Last-record delimiter, no padding
RECORD_DELIMITER = b"\x02"


@dataclass(frozen=True, slots=True)
class DerivedKeys:
    """Per-message key material. Lives for one encryption only."""

    cek: bytes = field(repr=False)
    nonce: bytes = field(repr=False)
    salt: bytes
    sender_public: bytes


def _hmac_sha256(key: bytes, data: bytes) -> bytes:
    mac = hmac.HMAC(key, hashes.SHA256())
    mac.update(data)
    return mac.finalize()


def load_subscriber_key(ua_public: bytes) -> ec.EllipticCurvePublicKey:
    if len(ua_public) != PUBLIC_KEY_LENGTH or ua_public[0] != 0x04:
        raise SubscriptionKeyError(
            f"p256dh must be a {PUBLIC_KEY_LENGTH}-byte uncompressed P-256 point, got {len(ua_public)} bytes"
        )
    try:
        return ec.EllipticCurvePublicKey.from_encoded_point(ec.SECP256R1(), ua_public)
    except ValueError as e:
        raise SubscriptionKeyError(f"p256dh is not a valid P-256 point: {e}") from e


def decode_subscription_keys(p256dh: str, auth: str) -> tuple[bytes, bytes]:
    """Decode the stored base64url ``p256dh`` / ``auth`` pair of a subscription."""
    try:
        ua_public = b64url_decode(p256dh)
        auth_secret = b64url_decode(auth)
    except ValueError as e:
        raise SubscriptionKeyError(str(e)) from e

    load_subscriber_key(ua_public)
    if len(auth_secret) != AUTH_SECRET_LENGTH:
        raise SubscriptionKeyError(f"auth secret must be {AUTH_SECRET_LENGTH} bytes, got {len(auth_secret)}")
    return ua_public, auth_secret


def derive_keys(
    ua_public: bytes,
    auth_secret: bytes,
    *,
    private_key: ec.EllipticCurvePrivateKey | None = None,
    salt: bytes | None = None,
) -> DerivedKeys:
    """Run the ephemeral ECDH and derive the content encryption key and nonce.

    *private_key* and *salt* exist for test vectors; production callers must
    leave them unset so both come fresh from the OS CSPRNG.
    """
    subscriber_key = load_subscriber_key(ua_public)
    if len(auth_secret) != AUTH_SECRET_LENGTH:
        raise SubscriptionKeyError(f"auth secret must be {AUTH_SECRET_LENGTH} bytes, got {len(auth_secret)}")

    if private_key is None:
        private_key = ec.generate_private_key(ec.SECP256R1())
    if salt is None:
        salt = os.urandom(SALT_LENGTH)
    elif len(salt) != SALT_LENGTH:
        raise ValueError(f"salt must be {SALT_LENGTH} bytes")

    sender_public = export_public_key(private_key.public_key())
    ecdh_secret = private_key.exchange(ec.ECDH(), subscriber_key)

    # HKDF(auth_secret, ecdh_secret, key_info, 32): one HMAC block each
    prk_key = _hmac_sha256(auth_secret, ecdh_secret)
    ikm = _hmac_sha256(prk_key, KEY_INFO_LABEL + ua_public + sender_public + b"\x01")

    prk = _hmac_sha256(salt, ikm)
    cek = _hmac_sha256(prk, CEK_INFO + b"\x01")[:CEK_LENGTH]
    nonce = _hmac_sha256(prk, NONCE_INFO + b"\x01")[:NONCE_LENGTH]

    return DerivedKeys(cek=cek, nonce=nonce, salt=salt, sender_public=sender_public)


def build_header(salt: bytes, record_size: int, keyid: bytes) -> bytes:
    if len(keyid) > 255:
        raise ValueError("keyid longer than 255 bytes")
    return struct.pack("!16sIB", salt, record_size, len(keyid)) + keyid


def max_payload_size(record_size: int = DEFAULT_RECORD_SIZE) -> int:
    """Largest plaintext that fits one record and the relay's body limit."""
    return min(record_size, MAX_BODY_SIZE - HEADER_LENGTH) - TAG_LENGTH - len(RECORD_DELIMITER)


def encrypt(
    plaintext: bytes,
    ua_public: bytes,
    auth_secret: bytes,
    *,
    record_size: int = DEFAULT_RECORD_SIZE,
    private_key: ec.EllipticCurvePrivateKey | None = None,
    salt: bytes | None = None,
) -> bytes:
    """Encrypt *plaintext* for one subscriber and return the request body."""
    limit = max_payload_size(record_size)
    if len(plaintext) > limit:
        raise PayloadTooLargeError(len(plaintext), limit)

    keys = derive_keys(ua_public, auth_secret, private_key=private_key, salt=salt)
    ciphertext = AESGCM(keys.cek).encrypt(keys.nonce, plaintext + RECORD_DELIMITER, None)
    return build_header(keys.salt, record_size, keys.sender_public) + ciphertext
