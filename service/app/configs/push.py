from pydantic import BaseModel, Field


class PushConfig(BaseModel):
    """Web Push (VAPID + aes128gcm) delivery configuration.

    The VAPID key pair has no default: it is a long-term secret and must be
    provisioned through the environment, e.g. ``FORFEIT_PUSH_VAPIDPRIVATEKEY``
    and ``FORFEIT_PUSH_VAPIDPUBLICKEY``.

    - ``VapidPrivateKey``: URL-safe base64 of the raw 32-byte P-256 scalar, or
      a PEM encoded EC private key.
    - ``VapidPublicKey``: URL-safe base64 of the 65-byte uncompressed point.
      Optional; when set it must match the private key.
    """

    Enable: bool = Field(default=True, description="Enable Web Push delivery")

    VapidPrivateKey: str = Field(default="", description="VAPID private key (base64url raw scalar or PEM)")
    VapidPublicKey: str = Field(default="", description="VAPID public key (base64url uncompressed EC point)")
    VapidContactEmail: str = Field(default="push@forfeit.app", description="VAPID contact email (mailto:...)")

    TokenLifetime: int = Field(
        default=12 * 60 * 60,
        ge=60,
        le=12 * 60 * 60,
        description="VAPID token lifetime in seconds (relays reject anything over 12 hours)",
    )
    TTL: int = Field(default=86400, ge=0, description="Seconds the relay should keep an undelivered message")
    Urgency: str = Field(default="", description="Optional Urgency header (very-low, low, normal, high)")
    RecordSize: int = Field(default=4096, ge=18, description="aes128gcm record size written to the header")

    RequestTimeout: float = Field(default=10.0, gt=0, description="Per-request deadline for relay calls (seconds)")
    MaxConcurrency: int = Field(default=8, ge=1, description="Max concurrent relay requests per delivery run")
    DeliveryDeadline: float = Field(
        default=20.0,
        gt=0,
        le=25.0,
        description="Budget for all relay requests of one run (seconds); stays under the task's 30s soft time limit",
    )

    DefaultIcon: str = Field(default="/icon-192.png", description="Icon included in the push payload")

    WebhookSecret: str = Field(
        default="",
        description="Shared secret expected in X-Webhook-Secret on the notification webhook. Empty disables the check.",
    )
