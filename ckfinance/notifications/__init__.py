from ckfinance.notifications.dispatcher import NotificationDispatcher, deposit_status_message
from ckfinance.notifications.sinks import (
    LogSink,
    Notification,
    NotificationKind,
    NotificationSink,
    WebhookSink,
)

__all__ = [
    "NotificationDispatcher",
    "deposit_status_message",
    "LogSink",
    "Notification",
    "NotificationKind",
    "NotificationSink",
    "WebhookSink",
]
