"""
Tests for the deposit-following entry point.
"""
import asyncio
import logging
from types import SimpleNamespace

import pytest

from conftest import deposit_status, rpc_error
from ckfinance.core.event_bus import EventType
from ckfinance.deposit.state_machine import DepositStatus
from ckfinance.main import follow_deposit


@pytest.fixture
def client(bus, session, orchestrator):
    return SimpleNamespace(logger=logging.getLogger("ckfinance.test.main"), bus=bus, session=session,
                           deposits=orchestrator)


class TestFollowDeposit:

    @pytest.mark.asyncio
    async def test_returns_zero_when_ready(self, client, session, deposit_service):
        await session.connect()
        deposit_service.monitor_reply = "h1"
        deposit_service.statuses = [deposit_status("confirming", 3, 6), deposit_status("ready", 6, 6)]

        code = await asyncio.wait_for(follow_deposit(client, "BTC"), timeout=2.0)

        assert code == 0
        assert client.deposits.record("BTC").status is DepositStatus.READY

    @pytest.mark.asyncio
    async def test_returns_one_when_polling_fails(self, client, session, deposit_service, bus):
        await session.connect()
        deposit_service.fail["monitor_deposits"] = rpc_error("monitorDeposits")

        code = await asyncio.wait_for(follow_deposit(client, "BTC"), timeout=2.0)

        assert code == 1
        assert client.deposits.record("BTC").status is DepositStatus.FAILED
        assert bus.get_subscriber_count(EventType.DEPOSIT_READY) == 0

    @pytest.mark.asyncio
    async def test_returns_one_when_address_fails(self, client, session, deposit_service):
        await session.connect()
        deposit_service.fail["generate_deposit_address"] = rpc_error("generateDepositAddress")

        assert await asyncio.wait_for(follow_deposit(client, "BTC"), timeout=2.0) == 1

    @pytest.mark.asyncio
    async def test_stop_event_ends_wait(self, client, session):
        await session.connect()
        stop = asyncio.Event()

        task = asyncio.create_task(follow_deposit(client, "BTC", stop))
        await asyncio.sleep(0.05)
        assert not task.done()
        stop.set()

        assert await asyncio.wait_for(task, timeout=1.0) == 0
        await client.deposits.stop_all_monitoring()
