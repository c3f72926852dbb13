"""
Core utilities package.

This package contains the event bus and small shared helpers.
"""

from ckfinance.core.event_bus import Event, EventBus, EventType, Subscription
from ckfinance.core.utils import iso_now, normalize_tx_hash, now_ms

__all__ = [
    "EventBus",
    "EventType",
    "Event",
    "Subscription",
    "now_ms",
    "iso_now",
    "normalize_tx_hash",
]
