"""
NotificationDispatcher: maps client events to user-facing notifications.

Delivery is a no-op when no sink is configured, when the sink is unavailable
or when permission has not been granted. A deposit status is announced once
per distinct status reached; repeats of the same (asset, status) in immediate
succession are suppressed.
"""

from __future__ import annotations

import logging
from typing import Any, Callable, Dict, List, Optional, Tuple

from ckfinance.assets import format_amount
from ckfinance.core.event_bus import Event, EventBus, EventType, Subscription
from ckfinance.infra.json_utils import dumps
from ckfinance.notifications.sinks import Notification, NotificationKind, NotificationSink

log = logging.getLogger("ckfinance")

ANNOUNCED_STATUSES = ("detecting", "confirming", "ready")


def deposit_status_message(
    status: str,
    asset_id: str,
    confirmations: int = 0,
    required: int = 0,
    amount: int = 0,
) -> Optional[Tuple[str, str]]:
    """(title, body) for a deposit status, or None for statuses not announced."""
    if status == "detecting":
        return ("Deposit Detected",
                f"Your {asset_id} deposit has been detected and is waiting for confirmations.")
    if status == "confirming":
        return ("Deposit Confirming",
                f"Your {asset_id} deposit has {confirmations} of {required} confirmations.")
    if status == "ready":
        return ("Deposit Confirmed!",
                f"Your deposit of {format_amount(amount, asset_id)} has been confirmed "
                f"and tokens have been minted.")
    return None


class NotificationDispatcher:
    def __init__(
        self,
        sink: Optional[NotificationSink] = None,
        enabled: bool = True,
        log_event: Optional[Callable[..., None]] = None,
    ) -> None:
        self.sink = sink
        self.enabled = enabled
        self._log_event = log_event or self._default_log
        self._last_status: Dict[str, str] = {}
        self._subscriptions: List[Tuple[EventType, Subscription]] = []
        self.delivered: int = 0

    def _default_log(self, event: str, **kwargs: Any) -> None:
        log.debug(dumps({"event": event, **kwargs}))

    @property
    def can_notify(self) -> bool:
        return (
            self.enabled
            and self.sink is not None
            and self.sink.available
            and self.sink.permission_granted
        )

    def attach(self, bus: EventBus) -> None:
        """Subscribe to the events this dispatcher turns into notifications."""
        handlers = {
            EventType.DEPOSIT_ADDRESS_GENERATED: self._on_cycle_reset,
            EventType.DEPOSIT_RESET: self._on_cycle_reset,
            EventType.DEPOSIT_DETECTED: self._on_deposit_detected,
            EventType.DEPOSIT_STATUS_CHECKED: self._on_deposit_status,
            EventType.HISTORY_RECORD_ADDED: self._on_record_added,
            EventType.PORTFOLIO_UPDATED: self._on_portfolio_updated,
        }
        for event_type, handler in handlers.items():
            sub = bus.subscribe(event_type, handler, name=f"notifications.{handler.__name__}")
            self._subscriptions.append((event_type, sub))

    def detach(self, bus: EventBus) -> None:
        for event_type, sub in self._subscriptions:
            bus.unsubscribe(event_type, sub)
        self._subscriptions.clear()

    async def close(self) -> None:
        """Let the sink finish anything it has queued."""
        if self.sink is not None:
            await self.sink.close()

    def forget(self, asset_id: str) -> None:
        """Start a fresh deposit cycle for asset_id."""
        self._last_status.pop(asset_id, None)

    # -------------------------------------------------------------------------
    # Event handlers
    # -------------------------------------------------------------------------

    async def _on_cycle_reset(self, event: Event) -> None:
        asset_id = event.data.get("asset_id")
        if asset_id:
            self.forget(asset_id)

    async def _on_deposit_detected(self, event: Event) -> None:
        await self.notify_deposit_status("detecting", event.data.get("asset_id", ""))

    async def _on_deposit_status(self, event: Event) -> None:
        d = event.data
        await self.notify_deposit_status(
            d.get("status", ""),
            d.get("asset_id", ""),
            confirmations=d.get("confirmations", 0),
            required=d.get("required", 0),
            amount=d.get("amount", 0),
        )

    async def _on_record_added(self, event: Event) -> None:
        d = event.data
        await self.notify(Notification(
            kind=NotificationKind.TRANSACTION_ADDED,
            title="Transaction Added to History",
            body=f"Your {d.get('type')} of {d.get('amount')} {d.get('asset_id')} "
                 f"has been added to your transaction history.",
            asset_id=d.get("asset_id"),
        ))

    async def _on_portfolio_updated(self, event: Event) -> None:
        d = event.data
        await self.notify(Notification(
            kind=NotificationKind.PORTFOLIO_UPDATE,
            title="Portfolio Updated",
            body=f"Your {d.get('asset_id')} balance has changed from "
                 f"{d.get('old_balance')} to {d.get('new_balance')}.",
            asset_id=d.get("asset_id"),
        ))

    # -------------------------------------------------------------------------
    # Delivery
    # -------------------------------------------------------------------------

    async def notify_deposit_status(
        self,
        status: str,
        asset_id: str,
        confirmations: int = 0,
        required: int = 0,
        amount: int = 0,
    ) -> bool:
        if self._last_status.get(asset_id) == status:
            return False
        # Unannounced statuses (none, pending, failed) still break a run of repeats.
        self._last_status[asset_id] = status
        message = deposit_status_message(status, asset_id, confirmations, required, amount)
        if message is None:
            return False
        title, body = message
        return await self.notify(Notification(
            kind=NotificationKind.DEPOSIT_STATUS,
            title=title,
            body=body,
            asset_id=asset_id,
            details={"status": status, "confirmations": confirmations, "required": required},
        ))

    async def notify(self, notification: Notification) -> bool:
        if not self.can_notify:
            return False
        try:
            ok = await self.sink.deliver(notification)
        except Exception as exc:
            self._log_event("notification_delivery_error", title=notification.title, error=str(exc))
            return False
        if ok:
            self.delivered += 1
        return ok
