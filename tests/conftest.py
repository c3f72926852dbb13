"""
Pytest configuration and fixtures.

In-memory fakes stand in for the identity provider, the channel and each
remote service, so components are exercised end to end without a network.
"""

import asyncio
from typing import Any, Dict, List, Optional

import pytest

from ckfinance.core.event_bus import EventBus
from ckfinance.deposit.orchestrator import DepositOrchestrator, DepositOrchestratorConfig
from ckfinance.errors import AuthError, RpcError
from ckfinance.history.history_store import LocalHistoryStore
from ckfinance.history.kv_store import AddressCache, KeyValueStore
from ckfinance.infra.metrics import ClientMetrics
from ckfinance.notifications.dispatcher import NotificationDispatcher
from ckfinance.rpc.models import (
    DepositStatusResult,
    Identity,
    IsoDetails,
    Order,
    OrderBook,
    OrderSide,
    OrderStatus,
    UserContribution,
)
from ckfinance.session.session_manager import SessionManager
from ckfinance.trading.trading_session import OrderTradingSession


class FakeIdentityProvider:
    def __init__(self, principal: str = "user-1", authenticated: bool = False) -> None:
        self.principal = principal
        self.authenticated = authenticated
        self.fail_login = False
        self.login_calls = 0
        self.logout_calls = 0

    async def login(self) -> Identity:
        self.login_calls += 1
        if self.fail_login:
            raise AuthError("user closed the login window")
        self.authenticated = True
        return Identity(principal=self.principal, credential="delegation")

    async def logout(self) -> None:
        self.logout_calls += 1
        self.authenticated = False

    async def is_authenticated(self) -> bool:
        return self.authenticated

    def get_identity(self) -> Optional[Identity]:
        if not self.authenticated:
            return None
        return Identity(principal=self.principal, credential="delegation")


class FakeChannel:
    def __init__(self, identity: Identity) -> None:
        self.identity = identity
        self.closed = False

    async def call(self, service_id: str, method: str, *args: Any) -> Any:
        raise NotImplementedError("fakes bypass the channel")

    async def close(self) -> None:
        self.closed = True


class FakeDepositService:
    """
    Scriptable deposit/mint service.

    Set `statuses` to a list of replies consumed one per check (the last one
    repeats). Set `check_gate` to an asyncio.Event to hold checks in flight.
    """

    def __init__(self) -> None:
        self.addresses = iter(f"bc1-address-{i}" for i in range(1, 100))
        self.monitor_reply: Any = None
        self.statuses: List[DepositStatusResult] = []
        self.mint_reply = True
        self.fail: Dict[str, Exception] = {}
        self.check_gate: Optional[asyncio.Event] = None
        self.calls: List[tuple] = []
        self.contribution = UserContribution(deposits=[("BTC", 100000000)], total_value=68500,
                                             estimated_allocation=1000)

    def _maybe_fail(self, method: str) -> None:
        if method in self.fail:
            raise self.fail[method]

    def count(self, method: str) -> int:
        return sum(1 for c in self.calls if c[0] == method)

    async def generate_deposit_address(self, asset_id: str) -> str:
        self.calls.append(("generate_deposit_address", asset_id))
        self._maybe_fail("generate_deposit_address")
        return next(self.addresses)

    async def monitor_deposits(self, asset_id: str) -> Any:
        self.calls.append(("monitor_deposits", asset_id))
        self._maybe_fail("monitor_deposits")
        return self.monitor_reply

    async def check_deposit_status(self, asset_id: str, tx_hash: str) -> DepositStatusResult:
        self.calls.append(("check_deposit_status", asset_id, tx_hash))
        if self.check_gate is not None:
            await self.check_gate.wait()
        self._maybe_fail("check_deposit_status")
        if len(self.statuses) > 1:
            return self.statuses.pop(0)
        return self.statuses[0]

    async def mint_ck_token(self, asset_id: str, amount: int) -> bool:
        self.calls.append(("mint_ck_token", asset_id, amount))
        self._maybe_fail("mint_ck_token")
        return self.mint_reply

    async def get_iso_details(self) -> IsoDetails:
        self.calls.append(("get_iso_details",))
        self._maybe_fail("get_iso_details")
        return IsoDetails(start_date=1, end_date=2, min_contribution=[("BTC", 100000)])

    async def get_user_contribution(self) -> UserContribution:
        self.calls.append(("get_user_contribution",))
        self._maybe_fail("get_user_contribution")
        return self.contribution


class FakeOrderBookService:
    def __init__(self, pairs: Optional[List[str]] = None) -> None:
        self.pairs = pairs if pairs is not None else ["ckBTC-ICP", "ckETH-ICP"]
        self.orders: List[Order] = []
        self.next_id = 42
        self.fail: Dict[str, Exception] = {}
        self.calls: List[tuple] = []

    def _maybe_fail(self, method: str) -> None:
        if method in self.fail:
            raise self.fail[method]

    async def get_supported_pairs(self) -> List[str]:
        self.calls.append(("get_supported_pairs",))
        self._maybe_fail("get_supported_pairs")
        return list(self.pairs)

    async def get_order_book(self, pair: str) -> OrderBook:
        self.calls.append(("get_order_book", pair))
        self._maybe_fail("get_order_book")
        open_orders = [o for o in self.orders if o.pair == pair and o.status == OrderStatus.OPEN]
        return OrderBook(
            pair=pair,
            buy_orders=[o for o in open_orders if o.side == OrderSide.BUY],
            sell_orders=[o for o in open_orders if o.side == OrderSide.SELL],
            spread=0.5,
            volatility=1.5,
        )

    async def get_user_orders(self, principal: str) -> List[Order]:
        self.calls.append(("get_user_orders", principal))
        self._maybe_fail("get_user_orders")
        return [o for o in self.orders if o.owner == principal]

    async def place_order(self, pair: str, side: OrderSide, price: float, amount: float) -> int:
        self.calls.append(("place_order", pair, side, price, amount))
        self._maybe_fail("place_order")
        order_id = self.next_id
        self.next_id += 1
        self.orders.append(Order(id=order_id, owner="user-1", pair=pair, side=OrderSide(side), price=price,
                                 amount=amount, filled=0.0, status=OrderStatus.OPEN, timestamp=0))
        return order_id

    async def cancel_order(self, order_id: int) -> bool:
        self.calls.append(("cancel_order", order_id))
        self._maybe_fail("cancel_order")
        for i, o in enumerate(self.orders):
            if o.id == order_id:
                self.orders[i] = Order(id=o.id, owner=o.owner, pair=o.pair, side=o.side, price=o.price,
                                       amount=o.amount, filled=o.filled, status=OrderStatus.CANCELLED,
                                       timestamp=o.timestamp)
                return True
        return False


class FakeTokenService:
    def __init__(self, balance: int = 0, error: Optional[Exception] = None) -> None:
        self.balance = balance
        self.error = error

    async def balance_of(self, principal: str) -> int:
        if self.error is not None:
            raise self.error
        return self.balance


class RecordingSink:
    def __init__(self, available: bool = True, granted: bool = True) -> None:
        self._available = available
        self._granted = granted
        self.notifications: List[Any] = []
        self.closed = False

    @property
    def available(self) -> bool:
        return self._available

    @property
    def permission_granted(self) -> bool:
        return self._granted

    async def deliver(self, notification) -> bool:
        self.notifications.append(notification)
        return True

    async def close(self) -> None:
        self.closed = True

    def titles(self) -> List[str]:
        return [n.title for n in self.notifications]


def deposit_status(status: str, confirmations: int = 0, required: int = 6,
                   amount: int = 100000000) -> DepositStatusResult:
    return DepositStatusResult(status=status, confirmations=confirmations, required=required, amount=amount)


@pytest.fixture
def bus():
    return EventBus()


@pytest.fixture
def identity_provider():
    return FakeIdentityProvider()


@pytest.fixture
def channels():
    return []


@pytest.fixture
def session(identity_provider, bus, channels):
    def channel_factory(identity):
        ch = FakeChannel(identity)
        channels.append(ch)
        return ch

    return SessionManager(identity_provider, channel_factory, bus)


@pytest.fixture
def kv_store(tmp_path):
    return KeyValueStore(str(tmp_path))


@pytest.fixture
def history(kv_store):
    store = LocalHistoryStore(kv_store)
    store.load()
    return store


@pytest.fixture
def address_cache(kv_store):
    return AddressCache(kv_store)


@pytest.fixture
def sink():
    return RecordingSink()


@pytest.fixture
def dispatcher(bus, sink):
    d = NotificationDispatcher(sink=sink)
    d.attach(bus)
    return d


@pytest.fixture
def metrics():
    return ClientMetrics()


@pytest.fixture
def deposit_service():
    return FakeDepositService()


@pytest.fixture
def orchestrator(session, bus, history, address_cache, deposit_service, dispatcher, metrics):
    orch = DepositOrchestrator(
        session,
        bus,
        history,
        address_cache,
        service_factory=lambda channel: deposit_service,
        metrics=metrics,
        config=DepositOrchestratorConfig(status_interval_sec=0.01, detection_interval_sec=0.01),
    )
    orch.attach()
    return orch


@pytest.fixture
def order_book_service():
    return FakeOrderBookService()


@pytest.fixture
def token_services():
    return {
        "ckBTC": FakeTokenService(balance=150000000),
        "ckETH": FakeTokenService(balance=2 * 10**18),
        "ckUSDC": FakeTokenService(balance=500 * 10**6),
    }


@pytest.fixture
def trading(session, bus, order_book_service, token_services, metrics):
    t = OrderTradingSession(
        session,
        bus,
        order_book_factory=lambda channel: order_book_service,
        token_factory=lambda channel: token_services,
        metrics=metrics,
    )
    t.attach()
    return t


def rpc_error(method: str = "call") -> RpcError:
    return RpcError(f"{method} rejected", method=method)
