"""
One explicit interface per remote collaborator.

Orchestration code depends only on these protocols; tests substitute
in-memory fakes, production wires the httpx-backed clients.
"""

from __future__ import annotations

from typing import Any, List, Optional, Protocol, runtime_checkable

from ckfinance.rpc.models import (
    DepositStatusResult,
    Identity,
    IsoDetails,
    Order,
    OrderBook,
    OrderSide,
    UserContribution,
)


@runtime_checkable
class IdentityProvider(Protocol):
    async def login(self) -> Identity: ...

    async def logout(self) -> None: ...

    async def is_authenticated(self) -> bool: ...

    def get_identity(self) -> Optional[Identity]: ...


@runtime_checkable
class Channel(Protocol):
    """Authenticated transport bound to one identity."""

    identity: Identity

    async def call(self, service_id: str, method: str, *args: Any) -> Any: ...

    async def close(self) -> None: ...


class DepositService(Protocol):
    async def generate_deposit_address(self, asset_id: str) -> str: ...

    async def monitor_deposits(self, asset_id: str) -> Any: ...

    async def check_deposit_status(self, asset_id: str, tx_hash: str) -> DepositStatusResult: ...

    async def mint_ck_token(self, asset_id: str, amount: int) -> bool: ...

    async def get_iso_details(self) -> IsoDetails: ...

    async def get_user_contribution(self) -> UserContribution: ...


class TokenBalanceService(Protocol):
    async def balance_of(self, principal: str) -> int: ...


class OrderBookService(Protocol):
    async def get_supported_pairs(self) -> List[str]: ...

    async def get_order_book(self, pair: str) -> OrderBook: ...

    async def get_user_orders(self, principal: str) -> List[Order]: ...

    async def place_order(self, pair: str, side: OrderSide, price: float, amount: float) -> int: ...

    async def cancel_order(self, order_id: int) -> bool: ...
