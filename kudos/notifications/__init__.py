"""Outbound notification channels."""

from kudos.notifications.dispatcher import (
    ChannelDeliveryError,
    NotificationDispatcher,
    format_payload,
)
from kudos.notifications.models import (
    DeliveryResult,
    DeliveryStatus,
    NotificationEvent,
    NotificationKind,
)

__all__ = [
    "ChannelDeliveryError",
    "DeliveryResult",
    "DeliveryStatus",
    "NotificationDispatcher",
    "NotificationEvent",
    "NotificationKind",
    "format_payload",
]
