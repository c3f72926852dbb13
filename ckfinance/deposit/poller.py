"""
DepositPoller: the single recurring task watching one asset's deposit.

Until a transaction hash is known it runs the detection check on the slow
interval; afterwards it runs the status check on the fast interval. It stops
on its own once the status is terminal and is otherwise cancelled by its
owner (asset change, reset, session teardown).

Ticks never overlap: if the previous check for the asset is still
outstanding the tick is skipped, not queued.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Optional

from ckfinance.infra.json_utils import dumps

log = logging.getLogger("ckfinance")


@dataclass
class DepositPollerConfig:
    status_interval_sec: float = 5.0
    detection_interval_sec: float = 10.0


class DepositPoller:
    """
    Usage:
        poller = DepositPoller(
            asset_id="BTC",
            tick=orchestrator.poll_tick,       # returns True while polling should continue
            has_tx_hash=lambda: record.tx_hash is not None,
            config=DepositPollerConfig(),
        )
        poller.start()
        ...
        await poller.stop()
    """

    def __init__(
        self,
        asset_id: str,
        tick: Callable[[], Awaitable[bool]],
        has_tx_hash: Callable[[], bool],
        config: Optional[DepositPollerConfig] = None,
        log_event: Optional[Callable[..., None]] = None,
    ) -> None:
        self.asset_id = asset_id
        self._tick = tick
        self._has_tx_hash = has_tx_hash
        self.config = config or DepositPollerConfig()
        self._log_event = log_event or self._default_log
        self._task: Optional[asyncio.Task] = None
        self.ticks = 0
        self._stopping = False

    def _default_log(self, event: str, **kwargs: Any) -> None:
        log.info(dumps({"event": event, "asset_id": self.asset_id, **kwargs}))

    @property
    def active(self) -> bool:
        return self._task is not None and not self._task.done()

    @property
    def interval(self) -> float:
        if self._has_tx_hash():
            return self.config.status_interval_sec
        return self.config.detection_interval_sec

    def start(self) -> None:
        if self.active:
            return
        self._stopping = False
        self._task = asyncio.create_task(self._run(), name=f"deposit-poll-{self.asset_id}")
        self._log_event("deposit_poll_started")

    async def stop(self) -> None:
        task, self._task = self._task, None
        if task is None or task.done():
            return
        if task is asyncio.current_task():
            # Reached from inside a tick: let the tick finish, then exit the loop.
            self._stopping = True
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
        self._log_event("deposit_poll_cancelled")

    async def _run(self) -> None:
        while not self._stopping:
            await asyncio.sleep(self.interval)
            self.ticks += 1
            try:
                keep_going = await self._tick()
            except asyncio.CancelledError:
                raise
            except Exception as exc:
                # Tick errors are recorded by the orchestrator; keep polling.
                self._log_event("deposit_poll_error", error=str(exc))
                continue
            if not keep_going:
                break
        self._log_event("deposit_poll_finished", ticks=self.ticks)
