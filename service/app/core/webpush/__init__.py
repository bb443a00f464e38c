from .delivery import DeliveryOutcome, DeliveryReport, DeliveryResult, PushDeliveryService
from .ece import decode_subscription_keys, derive_keys, encrypt, max_payload_size
from .exceptions import (
    PayloadTooLargeError,
    SubscriptionKeyError,
    VapidConfigError,
    VapidTokenError,
    WebPushError,
)
from .vapid import VapidSigner, der_to_raw_signature, ensure_vapid_keys

__all__ = [
    "DeliveryOutcome",
    "DeliveryReport",
    "DeliveryResult",
    "PayloadTooLargeError",
    "PushDeliveryService",
    "SubscriptionKeyError",
    "VapidConfigError",
    "VapidSigner",
    "VapidTokenError",
    "WebPushError",
    "decode_subscription_keys",
    "der_to_raw_signature",
    "derive_keys",
    "encrypt",
    "ensure_vapid_keys",
    "max_payload_size",
]
