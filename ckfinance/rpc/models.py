"""
Typed results of the remote services.

Each `from_wire` accepts the JSON shape the services answer with: camelCase
keys, variants encoded as `{"buy": null}` or a bare string, optionals as
`[]` / `[value]` / `null` / value.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple


def _variant(raw: Any) -> str:
    if isinstance(raw, dict) and raw:
        return next(iter(raw))
    return str(raw)


def _opt(raw: Any) -> Any:
    if isinstance(raw, (list, tuple)):
        return raw[0] if raw else None
    return raw


def _pairs(raw: Any) -> List[Tuple[str, int]]:
    return [(str(k), int(v)) for k, v in (raw or [])]


class OrderSide(str, Enum):
    BUY = "buy"
    SELL = "sell"


class OrderStatus(str, Enum):
    OPEN = "open"
    FILLED = "filled"
    CANCELLED = "cancelled"


@dataclass(frozen=True)
class Identity:
    principal: str
    credential: Optional[str] = None


@dataclass(frozen=True)
class DepositStatusResult:
    status: str
    confirmations: int
    required: int
    amount: int

    @classmethod
    def from_wire(cls, data: Dict[str, Any]) -> "DepositStatusResult":
        return cls(
            status=str(data.get("status", "")),
            confirmations=int(data.get("confirmations", 0) or 0),
            required=int(data.get("required", 0) or 0),
            amount=int(data.get("amount", 0) or 0),
        )


@dataclass(frozen=True)
class IsoDetails:
    start_date: int  # nanoseconds since epoch
    end_date: int
    min_contribution: List[Tuple[str, int]] = field(default_factory=list)
    max_contribution: List[Tuple[str, int]] = field(default_factory=list)

    @classmethod
    def from_wire(cls, data: Dict[str, Any]) -> "IsoDetails":
        return cls(
            start_date=int(data.get("startDate", 0)),
            end_date=int(data.get("endDate", 0)),
            min_contribution=_pairs(data.get("minContribution")),
            max_contribution=_pairs(data.get("maxContribution")),
        )


@dataclass(frozen=True)
class UserContribution:
    deposits: List[Tuple[str, int]] = field(default_factory=list)
    total_value: int = 0
    estimated_allocation: int = 0

    @classmethod
    def from_wire(cls, data: Dict[str, Any]) -> "UserContribution":
        return cls(
            deposits=_pairs(data.get("deposits")),
            total_value=int(data.get("totalValue", 0)),
            estimated_allocation=int(data.get("estimatedAllocation", 0)),
        )


@dataclass(frozen=True)
class Order:
    id: int
    owner: str
    pair: str
    side: OrderSide
    price: float
    amount: float
    filled: float
    status: OrderStatus
    timestamp: int

    @classmethod
    def from_wire(cls, data: Dict[str, Any]) -> "Order":
        return cls(
            id=int(data["id"]),
            owner=str(data.get("owner", "")),
            pair=str(data.get("pair", "")),
            side=OrderSide(_variant(data.get("orderType", data.get("side", "buy")))),
            price=float(data.get("price", 0.0)),
            amount=float(data.get("amount", 0.0)),
            filled=float(data.get("filled", 0.0)),
            status=OrderStatus(_variant(data.get("status", "open"))),
            timestamp=int(data.get("timestamp", 0)),
        )


@dataclass(frozen=True)
class OrderBook:
    pair: str
    buy_orders: List[Order]
    sell_orders: List[Order]
    spread: float
    volatility: float
    last_price: Optional[float] = None

    @classmethod
    def from_wire(cls, pair: str, data: Dict[str, Any]) -> "OrderBook":
        last = _opt(data.get("lastPrice"))
        return cls(
            pair=pair,
            buy_orders=[Order.from_wire(o) for o in data.get("buyOrders", [])],
            sell_orders=[Order.from_wire(o) for o in data.get("sellOrders", [])],
            spread=float(data.get("spread", 0.0)),
            volatility=float(data.get("volatility", 0.0)),
            last_price=float(last) if last is not None else None,
        )
