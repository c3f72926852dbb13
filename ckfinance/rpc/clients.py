"""
Typed clients for the remote services, built on a Channel.

A client is bound to the channel it was created with; after a session
change the owning component builds new ones instead of reusing these.
"""

from __future__ import annotations

from typing import Any, List

from ckfinance.errors import RpcError
from ckfinance.rpc.interfaces import Channel
from ckfinance.rpc.models import (
    DepositStatusResult,
    IsoDetails,
    Order,
    OrderBook,
    OrderSide,
    UserContribution,
)


class _ServiceClient:
    def __init__(self, channel: Channel, service_id: str) -> None:
        self.channel = channel
        self.service_id = service_id

    async def _call(self, method: str, *args: Any) -> Any:
        return await self.channel.call(self.service_id, method, *args)

    async def _call_record(self, method: str, *args: Any) -> dict:
        reply = await self._call(method, *args)
        if not isinstance(reply, dict):
            raise RpcError(f"{method} returned {type(reply).__name__}, expected a record",
                           method=method, service_id=self.service_id)
        return reply


class DepositServiceClient(_ServiceClient):
    async def generate_deposit_address(self, asset_id: str) -> str:
        return str(await self._call("generateDepositAddress", asset_id))

    async def monitor_deposits(self, asset_id: str) -> Any:
        # Optional reply; the orchestrator normalizes it.
        return await self._call("monitorDeposits", asset_id)

    async def check_deposit_status(self, asset_id: str, tx_hash: str) -> DepositStatusResult:
        return DepositStatusResult.from_wire(await self._call_record("checkDepositStatus", asset_id, tx_hash))

    async def mint_ck_token(self, asset_id: str, amount: int) -> bool:
        return bool(await self._call("mintCkToken", asset_id, int(amount)))

    async def get_iso_details(self) -> IsoDetails:
        return IsoDetails.from_wire(await self._call_record("getIsoDetails"))

    async def get_user_contribution(self) -> UserContribution:
        return UserContribution.from_wire(await self._call_record("getUserContribution"))


class TokenLedgerClient(_ServiceClient):
    async def balance_of(self, principal: str) -> int:
        return int(await self._call("balanceOf", principal))


class OrderBookClient(_ServiceClient):
    async def get_supported_pairs(self) -> List[str]:
        return [str(p) for p in (await self._call("getSupportedPairs") or [])]

    async def get_order_book(self, pair: str) -> OrderBook:
        return OrderBook.from_wire(pair, await self._call_record("getOrderBook", pair))

    async def get_user_orders(self, principal: str) -> List[Order]:
        return [Order.from_wire(o) for o in (await self._call("getUserOrders", principal) or [])]

    async def place_order(self, pair: str, side: OrderSide, price: float, amount: float) -> int:
        variant = {OrderSide(side).value: None}
        return int(await self._call("placeOrder", pair, variant, float(price), float(amount)))

    async def cancel_order(self, order_id: int) -> bool:
        return bool(await self._call("cancelOrder", int(order_id)))
