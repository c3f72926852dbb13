"""
Entry point: connect, start a deposit for one asset and follow it until the
deposit is final, fails, or the process is interrupted.

    python -m ckfinance.main BTC
"""

from __future__ import annotations

import asyncio
import logging
import signal
import sys
import webbrowser
from typing import Optional

from ckfinance.app import ChainKeyClient
from ckfinance.assets import format_amount
from ckfinance.config.config import Settings
from ckfinance.core.event_bus import Event, EventType
from ckfinance.errors import ClientError
from ckfinance.infra.logging_cfg import log_event


async def follow_deposit(client: ChainKeyClient, asset_id: str, stop: Optional[asyncio.Event] = None) -> int:
    """
    Start a deposit for `asset_id` and wait for its outcome.

    Returns 0 once the deposit is final or `stop` is set, 1 if it failed.
    """
    log = client.logger
    done = stop or asyncio.Event()
    outcome = {"code": 0}

    async def on_ready(event: Event) -> None:
        log_event(log, "deposit_final", asset_id=event.data["asset_id"],
                  amount=format_amount(event.data["amount"], event.data["asset_id"]))
        done.set()

    async def on_failed(event: Event) -> None:
        log_event(log, "deposit_failed", level=logging.ERROR, asset_id=event.data["asset_id"],
                  error=client.deposits.error)
        outcome["code"] = 1
        done.set()

    subs = [
        (EventType.DEPOSIT_READY,
         client.bus.subscribe(EventType.DEPOSIT_READY, on_ready,
                              filter_fn=lambda e: e.data.get("asset_id") == asset_id, name="main.on_ready")),
        (EventType.DEPOSIT_STATUS_CHANGED,
         client.bus.subscribe(EventType.DEPOSIT_STATUS_CHANGED, on_failed,
                              filter_fn=lambda e: e.data.get("asset_id") == asset_id
                              and e.data.get("status") == "failed",
                              name="main.on_failed")),
    ]
    try:
        address = await client.deposits.begin_deposit(asset_id)
        if address is None:
            log_event(log, "deposit_start_failed", level=logging.ERROR, asset_id=asset_id,
                      error=client.deposits.error)
            return 1
        log_event(log, "deposit_address", asset_id=asset_id, address=address)
        await done.wait()
        return outcome["code"]
    finally:
        for event_type, sub in subs:
            client.bus.unsubscribe(event_type, sub)


async def main(asset_id: str) -> int:
    cfg = Settings.load()
    client = ChainKeyClient.from_settings(cfg, login_hook=webbrowser.open)
    stop = asyncio.Event()

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, stop.set)
        except NotImplementedError:
            pass

    try:
        if not await client.start():
            await client.session.connect()
        return await follow_deposit(client, asset_id, stop)
    except ClientError as exc:
        log_event(client.logger, "client_error", error=str(exc), error_type=type(exc).__name__)
        return 1
    finally:
        await client.close()


def run() -> None:
    try:
        sys.exit(asyncio.run(main(sys.argv[1] if len(sys.argv) > 1 else "BTC")))
    except KeyboardInterrupt:
        print("\nStopped by user")
        sys.exit(0)


if __name__ == "__main__":
    run()
