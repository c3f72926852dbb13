"""
OrderTradingSession: read-through view of the order-book service plus
order placement and cancellation for the connected user.

Handles:
- Supported pairs and the selected pair's book (spread, volatility)
- The caller's open orders across all pairs
- Token balances, one read per configured token service
- Input validation before any remote call

State here is a cache of remote state. It is rebuilt from scratch on every
session change and never mutated except by the fetch operations below.
"""

from __future__ import annotations

import logging
import math
from decimal import Decimal
from typing import Any, Awaitable, Callable, Dict, List, Optional, TypeVar

from ckfinance.core.event_bus import Event, EventBus, EventType
from ckfinance.errors import AuthError, StaleSessionError, ValidationError
from ckfinance.infra.json_utils import dumps
from ckfinance.infra.metrics import ClientMetrics
from ckfinance.rpc.interfaces import Channel, OrderBookService, TokenBalanceService
from ckfinance.rpc.models import Order, OrderBook, OrderSide
from ckfinance.session.session_manager import SessionManager

log = logging.getLogger("ckfinance")

T = TypeVar("T")

OrderBookServiceFactory = Callable[[Channel], OrderBookService]
TokenServicesFactory = Callable[[Channel], Dict[str, TokenBalanceService]]


def parse_positive(value: Any, field_name: str) -> float:
    """Coerce a user-entered price/amount to a positive finite float."""
    if value is None or isinstance(value, bool):
        raise ValidationError(f"{field_name} is required.")
    if isinstance(value, str):
        value = value.strip()
        if not value:
            raise ValidationError(f"{field_name} is required.")
    if not isinstance(value, (int, float, Decimal, str)):
        raise ValidationError(f"{field_name} must be a number.")
    try:
        number = float(value)
    except (TypeError, ValueError):
        raise ValidationError(f"{field_name} must be a number.")
    if not math.isfinite(number):
        raise ValidationError(f"{field_name} must be a number.")
    if number <= 0:
        raise ValidationError(f"{field_name} must be greater than zero.")
    return number


def parse_side(value: Any) -> OrderSide:
    if isinstance(value, OrderSide):
        return value
    try:
        return OrderSide(str(value).lower())
    except ValueError:
        raise ValidationError(f"Order side must be 'buy' or 'sell', got {value!r}.")


class OrderTradingSession:
    """
    Usage:
        trading = OrderTradingSession(session, bus, order_book_factory, token_factory)
        trading.attach()
        await session.connect()                  # pairs, orders and balances load

        order_id = await trading.place_order("ckBTC/ckUSDC", "buy", 68000, 0.01)
    """

    def __init__(
        self,
        session: SessionManager,
        event_bus: EventBus,
        order_book_factory: OrderBookServiceFactory,
        token_factory: TokenServicesFactory,
        metrics: Optional[ClientMetrics] = None,
        log_event: Optional[Callable[..., None]] = None,
    ) -> None:
        self._session = session
        self._bus = event_bus
        self._order_book_factory = order_book_factory
        self._token_factory = token_factory
        self._metrics = metrics
        self._log_event = log_event or self._default_log

        self._book_service: Optional[OrderBookService] = None
        self._token_services: Dict[str, TokenBalanceService] = {}
        self._bound_generation = -1
        self._pending_calls = 0

        self.pairs: List[str] = []
        self.selected_pair: Optional[str] = None
        self.order_book: Optional[OrderBook] = None
        self.volatility: float = 0.0
        self.spread: float = 0.0
        self.user_orders: List[Order] = []
        self.user_balances: Dict[str, int] = {}
        self.error: Optional[str] = None

    def _default_log(self, event: str, **kwargs: Any) -> None:
        log.info(dumps({"event": event, **kwargs}))

    @property
    def loading(self) -> bool:
        return self._pending_calls > 0

    # -------------------------------------------------------------------------
    # Wiring
    # -------------------------------------------------------------------------

    def attach(self) -> None:
        self._bus.subscribe(EventType.SESSION_CONNECTED, self._on_session_connected,
                            priority=5, name="trading.session_connected")
        self._bus.subscribe(EventType.SESSION_DISCONNECTED, self._on_session_disconnected,
                            priority=5, name="trading.session_disconnected")

    async def _on_session_connected(self, event: Event) -> None:
        self._clear()
        self._bind()
        await self.fetch_supported_pairs()
        await self.refresh()

    async def _on_session_disconnected(self, event: Event) -> None:
        self._clear()
        self._book_service = None
        self._token_services = {}
        self._bound_generation = -1

    def _clear(self) -> None:
        self.pairs = []
        self.selected_pair = None
        self.order_book = None
        self.volatility = 0.0
        self.spread = 0.0
        self.user_orders = []
        self.user_balances = {}
        self.error = None

    def _bind(self) -> None:
        channel = self._session.channel
        if channel is None:
            raise AuthError("Connect a wallet first.")
        self._book_service = self._order_book_factory(channel)
        self._token_services = dict(self._token_factory(channel))
        self._bound_generation = self._session.generation
        self._log_event("trading_services_bound", generation=self._bound_generation,
                        tokens=sorted(self._token_services))

    def _require_bound(self) -> OrderBookService:
        if not self._session.is_authenticated:
            raise AuthError("Connect a wallet first.")
        if self._book_service is None or self._bound_generation != self._session.generation:
            self._bind()
        return self._book_service

    async def _call(self, generation: int, awaitable: Awaitable[T]) -> T:
        try:
            result = await awaitable
        except Exception as exc:
            if generation != self._session.generation:
                raise StaleSessionError("reply from a previous session discarded") from exc
            raise
        self._session.ensure_current(generation)
        return result

    # -------------------------------------------------------------------------
    # Reads
    # -------------------------------------------------------------------------

    async def fetch_supported_pairs(self) -> List[str]:
        service = self._require_bound()
        generation = self._session.generation
        self._pending_calls += 1
        try:
            pairs = await self._call(generation, service.get_supported_pairs())
        except StaleSessionError:
            return []
        except Exception as exc:
            self.error = "Failed to fetch supported trading pairs"
            self._log_event("pairs_fetch_error", error=str(exc))
            return self.pairs
        finally:
            self._pending_calls -= 1

        self.pairs = list(pairs)
        if self.pairs and self.selected_pair is None:
            await self.select_pair(self.pairs[0])
        return self.pairs

    async def select_pair(self, pair: str) -> Optional[OrderBook]:
        if self.pairs and pair not in self.pairs:
            raise ValidationError(f"Unsupported trading pair: {pair}")
        self.selected_pair = pair
        return await self.fetch_order_book(pair)

    async def fetch_order_book(self, pair: str) -> Optional[OrderBook]:
        service = self._require_bound()
        generation = self._session.generation
        self._pending_calls += 1
        try:
            book = await self._call(generation, service.get_order_book(pair))
        except StaleSessionError:
            return None
        except Exception as exc:
            self.error = f"Failed to fetch order book for {pair}"
            self._log_event("order_book_fetch_error", pair=pair, error=str(exc))
            return None
        finally:
            self._pending_calls -= 1

        self.order_book = book
        self.volatility = book.volatility
        self.spread = book.spread
        await self._bus.emit(EventType.ORDER_BOOK_UPDATED, source="trading", pair=pair,
                             spread=book.spread, volatility=book.volatility,
                             buy_orders=len(book.buy_orders), sell_orders=len(book.sell_orders))
        return book

    async def fetch_user_orders(self) -> List[Order]:
        service = self._require_bound()
        principal = self._session.principal
        generation = self._session.generation
        self._pending_calls += 1
        try:
            orders = await self._call(generation, service.get_user_orders(principal))
        except StaleSessionError:
            return []
        except Exception as exc:
            self.error = "Failed to fetch user orders"
            self._log_event("user_orders_fetch_error", error=str(exc))
            return self.user_orders
        finally:
            self._pending_calls -= 1

        self.user_orders = list(orders)
        return self.user_orders

    async def fetch_user_balances(self) -> Dict[str, int]:
        """Read every configured token balance. One failing token does not block the rest."""
        self._require_bound()
        principal = self._session.principal
        generation = self._session.generation
        balances: Dict[str, int] = {}
        self._pending_calls += 1
        try:
            for token, service in self._token_services.items():
                try:
                    balances[token] = await self._call(generation, service.balance_of(principal))
                except StaleSessionError:
                    return {}
                except Exception as exc:
                    self._log_event("balance_fetch_error", token=token, error=str(exc))
        finally:
            self._pending_calls -= 1

        self.user_balances = balances
        return dict(balances)

    async def refresh(self) -> None:
        """Re-read the caller's orders and balances."""
        await self.fetch_user_orders()
        await self.fetch_user_balances()

    # -------------------------------------------------------------------------
    # Writes
    # -------------------------------------------------------------------------

    async def place_order(self, pair: str, side: Any, price: Any, amount: Any) -> Optional[int]:
        """
        Place a limit order. Returns the order id, or None if the service
        rejected it (see `error`).

        Raises:
            ValidationError: missing or non-positive price/amount, bad side, no pair
            AuthError: no authenticated session
        """
        if not pair:
            raise ValidationError("A trading pair is required.")
        order_side = parse_side(side)
        px = parse_positive(price, "Price")
        sz = parse_positive(amount, "Amount")
        service = self._require_bound()
        generation = self._session.generation

        self._pending_calls += 1
        self.error = None
        try:
            order_id = await self._call(generation, service.place_order(pair, order_side, px, sz))
        except StaleSessionError:
            return None
        except Exception as exc:
            self.error = "Failed to place order. Please try again."
            self._log_event("order_place_error", pair=pair, side=order_side.value,
                            price=px, amount=sz, error=str(exc))
            return None
        finally:
            self._pending_calls -= 1

        if self._metrics:
            self._metrics.orders_placed.labels(pair=pair, side=order_side.value).inc()
        self._log_event("order_placed", order_id=order_id, pair=pair, side=order_side.value,
                        price=px, amount=sz)
        await self.fetch_order_book(pair)
        await self.fetch_user_orders()
        await self._bus.emit(EventType.ORDER_PLACED, source="trading", order_id=order_id, pair=pair,
                             side=order_side.value, price=px, amount=sz)
        return order_id

    async def cancel_order(self, order_id: int) -> bool:
        service = self._require_bound()
        generation = self._session.generation

        self._pending_calls += 1
        self.error = None
        try:
            ok = await self._call(generation, service.cancel_order(order_id))
        except StaleSessionError:
            return False
        except Exception as exc:
            self.error = "Failed to cancel order. Please try again."
            self._log_event("order_cancel_error", order_id=order_id, error=str(exc))
            return False
        finally:
            self._pending_calls -= 1

        if not ok:
            self.error = "Failed to cancel order. Please try again."
            self._log_event("order_cancel_rejected", order_id=order_id)
            return False

        if self._metrics:
            self._metrics.orders_cancelled.inc()
        self._log_event("order_cancelled", order_id=order_id)
        if self.selected_pair:
            await self.fetch_order_book(self.selected_pair)
        await self.fetch_user_orders()
        await self._bus.emit(EventType.ORDER_CANCELLED, source="trading", order_id=order_id)
        return True
