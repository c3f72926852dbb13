"""
Async JSON-over-HTTP channel to the host platform's services.

Every call carries the session credential, is bounded by a per-call timeout
and retried with jittered exponential backoff before it surfaces as RpcError.
"""

from __future__ import annotations

import asyncio
import logging
import random
import time
from typing import Any, Callable, Optional

import httpx

from ckfinance.errors import RpcError
from ckfinance.infra.json_utils import dumps
from ckfinance.infra.metrics import ClientMetrics
from ckfinance.rpc.models import Identity

log = logging.getLogger("ckfinance")


class HttpChannel:
    def __init__(
        self,
        base_url: str,
        identity: Identity,
        timeout: float = 10.0,
        retries: int = 2,
        client: Optional[httpx.AsyncClient] = None,
        metrics: Optional[ClientMetrics] = None,
        log_event: Optional[Callable[..., None]] = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.identity = identity
        self._timeout = timeout
        self._retries = retries
        self._metrics = metrics
        self._log_event = log_event or self._default_log
        self._headers = {"X-Principal": identity.principal}
        if identity.credential:
            self._headers["Authorization"] = f"Bearer {identity.credential}"
        # A shared client passed in is not closed by close(); otherwise we own it.
        if client is not None:
            self.client = client
            self._owns_client = False
        else:
            self.client = httpx.AsyncClient(base_url=self.base_url, timeout=timeout)
            self._owns_client = True
        self._closed = False

    def _default_log(self, event: str, **kwargs: Any) -> None:
        log.info(dumps({"event": event, **kwargs}))

    @property
    def closed(self) -> bool:
        return self._closed

    async def close(self) -> None:
        self._closed = True
        if self._owns_client:
            await self.client.aclose()

    async def call(self, service_id: str, method: str, *args: Any) -> Any:
        if self._closed:
            raise RpcError("channel closed", method=method, service_id=service_id)
        if self._metrics:
            self._metrics.rpc_calls.labels(service=service_id, method=method).inc()

        start = time.time()
        try:
            return await self._call_with_retry(service_id, method, {"method": method, "args": list(args)})
        except RpcError:
            self._record_error(service_id, method)
            raise
        finally:
            if self._metrics:
                self._metrics.rpc_latency_ms.labels(method=method).observe((time.time() - start) * 1000)

    async def _call_with_retry(self, service_id: str, method: str, payload: dict) -> Any:
        backoff = 0.2
        for attempt in range(self._retries + 1):
            try:
                resp = await asyncio.wait_for(
                    self.client.post(f"/api/v2/canister/{service_id}/call", json=payload, headers=self._headers),
                    timeout=self._timeout,
                )
                resp.raise_for_status()
                data = resp.json()
            except (httpx.HTTPError, asyncio.TimeoutError, ValueError) as exc:
                if attempt >= self._retries:
                    raise RpcError(
                        f"{method} failed: {exc or type(exc).__name__}",
                        method=method,
                        service_id=service_id,
                        cause=exc,
                    ) from exc
                self._log_event("rpc_retry", method=method, attempt=attempt + 1, error=str(exc))
                await asyncio.sleep(backoff + random.uniform(0, backoff * 0.5))
                backoff *= 2
                continue
            # An explicit rejection is not retried.
            return self._unwrap(data, service_id, method)
        raise RpcError(f"{method} failed", method=method, service_id=service_id)

    def _record_error(self, service_id: str, method: str) -> None:
        if self._metrics:
            self._metrics.rpc_errors.labels(service=service_id, method=method).inc()

    @staticmethod
    def _unwrap(data: Any, service_id: str, method: str) -> Any:
        # {"status": "replied", "reply": ...} | {"status": "rejected", "message": ...}
        if isinstance(data, dict) and "status" in data:
            if data["status"] == "rejected":
                raise RpcError(
                    str(data.get("message") or f"{method} rejected"),
                    method=method,
                    service_id=service_id,
                )
            if "reply" in data:
                return data["reply"]
        return data
