"""
Notification sinks: where user-facing alerts end up.

- LogSink: writes notifications to the client logger
- WebhookSink: queues and POSTs to a webhook in the background (generic JSON, Slack, Discord)
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Protocol

import httpx

from ckfinance.infra.json_utils import dumps

logger = logging.getLogger("ckfinance")


class NotificationKind(str, Enum):
    DEPOSIT_STATUS = "deposit_status"
    TRANSACTION_ADDED = "transaction_added"
    PORTFOLIO_UPDATE = "portfolio_update"


@dataclass
class Notification:
    kind: NotificationKind
    title: str
    body: str
    asset_id: Optional[str] = None
    timestamp_ms: int = field(default_factory=lambda: int(time.time() * 1000))
    details: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "kind": self.kind.value,
            "title": self.title,
            "body": self.body,
            "asset_id": self.asset_id,
            "timestamp_ms": self.timestamp_ms,
            "timestamp_iso": time.strftime("%Y-%m-%dT%H:%M:%SZ", time.gmtime(self.timestamp_ms / 1000)),
            "details": self.details,
        }


class NotificationSink(Protocol):
    @property
    def available(self) -> bool: ...

    @property
    def permission_granted(self) -> bool: ...

    async def deliver(self, notification: Notification) -> bool: ...

    async def close(self) -> None: ...


class LogSink:
    """Always available; permission can be withheld to mute it."""

    def __init__(self, granted: bool = True, level: int = logging.INFO) -> None:
        self._granted = granted
        self._level = level

    @property
    def available(self) -> bool:
        return True

    @property
    def permission_granted(self) -> bool:
        return self._granted

    def grant(self, granted: bool = True) -> None:
        self._granted = granted

    async def deliver(self, notification: Notification) -> bool:
        logger.log(self._level, dumps({"event": "notification", **notification.to_dict()}))
        return True

    async def close(self) -> None:
        return None


class WebhookFormatter:
    """Formats notifications for different webhook types."""

    @staticmethod
    def format_generic(n: Notification, app_name: str) -> Dict[str, Any]:
        return {"source": app_name, **n.to_dict()}

    @staticmethod
    def format_slack(n: Notification, app_name: str) -> Dict[str, Any]:
        fields = [{"title": "Kind", "value": n.kind.value, "short": True}]
        if n.asset_id:
            fields.append({"title": "Asset", "value": n.asset_id, "short": True})
        return {
            "username": app_name,
            "attachments": [{
                "title": n.title,
                "text": n.body,
                "fields": fields,
                "ts": n.timestamp_ms // 1000,
            }],
        }

    @staticmethod
    def format_discord(n: Notification, app_name: str) -> Dict[str, Any]:
        fields = [{"name": "Kind", "value": n.kind.value, "inline": True}]
        if n.asset_id:
            fields.append({"name": "Asset", "value": n.asset_id, "inline": True})
        return {
            "username": app_name,
            "embeds": [{
                "title": n.title,
                "description": n.body,
                "fields": fields,
                "timestamp": time.strftime("%Y-%m-%dT%H:%M:%SZ", time.gmtime(n.timestamp_ms / 1000)),
            }],
        }


class WebhookSink:
    """
    Delivers notifications to a webhook with bounded retry.

    `deliver` only queues; a background task owned by the sink does the
    POSTs, so a slow webhook never holds up the event that triggered it.
    `flush` / `close` wait for the queue to empty.
    """

    FORMATTERS = {
        "generic": WebhookFormatter.format_generic,
        "slack": WebhookFormatter.format_slack,
        "discord": WebhookFormatter.format_discord,
    }

    def __init__(
        self,
        url: Optional[str],
        webhook_type: str = "generic",
        app_name: str = "Chain Key Finance",
        retries: int = 2,
        timeout: float = 10.0,
        client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        self.url = url
        self.webhook_type = webhook_type
        self.app_name = app_name
        self._retries = retries
        self._timeout = timeout
        self._client = client
        self._pending: List[Notification] = []
        self._worker: Optional[asyncio.Task] = None
        self.sent = 0
        self.failed = 0

    @property
    def available(self) -> bool:
        return bool(self.url)

    @property
    def permission_granted(self) -> bool:
        return True

    @property
    def pending(self) -> int:
        return len(self._pending)

    def format(self, notification: Notification) -> Dict[str, Any]:
        formatter = self.FORMATTERS.get(self.webhook_type, WebhookFormatter.format_generic)
        return formatter(notification, self.app_name)

    async def deliver(self, notification: Notification) -> bool:
        """Queue for delivery. True if queued, False when no URL is configured."""
        if not self.url:
            return False
        self._pending.append(notification)
        if self._worker is None or self._worker.done():
            self._worker = asyncio.create_task(self._drain(), name="webhook-delivery")
        return True

    async def flush(self) -> None:
        """Wait until every queued notification has been attempted."""
        while self._worker is not None and not self._worker.done():
            await asyncio.wait([self._worker])

    async def close(self) -> None:
        await self.flush()

    async def _drain(self) -> None:
        while self._pending:
            notification = self._pending.pop(0)
            try:
                ok = await self._send(notification)
            except Exception as e:
                logger.warning(f"Notification delivery error: {e}")
                ok = False
            if ok:
                self.sent += 1
            else:
                self.failed += 1
                logger.warning(dumps({"event": "notification_webhook_failed", "title": notification.title}))

    async def _send(self, notification: Notification) -> bool:
        payload = self.format(notification)
        if self._client is not None:
            return await self._post(self._client, payload)
        async with httpx.AsyncClient(timeout=self._timeout) as client:
            return await self._post(client, payload)

    async def _post(self, client: httpx.AsyncClient, payload: Dict[str, Any]) -> bool:
        for attempt in range(self._retries + 1):
            try:
                resp = await client.post(self.url, json=payload)
                if resp.status_code < 300:
                    return True
                logger.warning(f"Notification delivery failed: HTTP {resp.status_code}")
            except httpx.HTTPError as e:
                logger.warning(f"Notification delivery error: {e}")
            if attempt < self._retries:
                await asyncio.sleep(1 * (attempt + 1))
        return False
