"""URL-safe base64 helpers (RFC 4648 section 5, no padding)."""

from __future__ import annotations

import base64
import binascii


def b64url_encode(data: bytes) -> str:
    return base64.urlsafe_b64encode(data).rstrip(b"=").decode("ascii")


def b64url_decode(value: str | bytes) -> bytes:
    """Decode URL-safe base64, tolerating missing padding and the standard alphabet.

    Browsers hand out ``p256dh`` / ``auth`` unpadded, but some client
    libraries store them padded or with ``+`` and ``/``.

    Raises:
        ValueError: when *value* is not base64.
    """
    if isinstance(value, bytes):
        value = value.decode("ascii")
    value = value.strip().replace("+", "-").replace("/", "_").rstrip("=")
    try:
        return base64.urlsafe_b64decode(value + "=" * (-len(value) % 4))
    except (binascii.Error, ValueError) as e:
        raise ValueError(f"Invalid base64url value: {e}") from e
