from .notification_preference import NotificationPreferenceRepository
from .push_subscription import PushSubscriptionRepository

__all__ = [
    "NotificationPreferenceRepository",
    "PushSubscriptionRepository",
]
