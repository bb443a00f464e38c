"""Web Push error taxonomy."""

from __future__ import annotations


class WebPushError(Exception):
    """Base class for every Web Push delivery error."""


class VapidConfigError(WebPushError):
    """The VAPID signing key is missing or malformed.

    Fatal for a whole delivery run: nothing is sent when this is raised.
    """


class VapidTokenError(WebPushError):
    """A token was requested with claims a relay would reject."""


class SubscriptionKeyError(WebPushError):
    """A stored ``p256dh`` / ``auth`` value cannot be used for encryption.

    Only the affected subscription fails; the record is kept for inspection.
    """


class PayloadTooLargeError(WebPushError):
    """The rendered payload does not fit into a single aes128gcm record."""

    def __init__(self, size: int, limit: int):
        self.size = size
        self.limit = limit
        super().__init__(f"Push payload is {size} bytes, limit is {limit}")
