"""
Remote service layer.

Typed protocols, wire models, the httpx channel and the per-service clients.
"""

from ckfinance.rpc.channel import HttpChannel
from ckfinance.rpc.clients import DepositServiceClient, OrderBookClient, TokenLedgerClient
from ckfinance.rpc.identity import HttpIdentityProvider
from ckfinance.rpc.interfaces import (
    Channel,
    DepositService,
    IdentityProvider,
    OrderBookService,
    TokenBalanceService,
)
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

__all__ = [
    "HttpChannel",
    "HttpIdentityProvider",
    "DepositServiceClient",
    "OrderBookClient",
    "TokenLedgerClient",
    "Channel",
    "DepositService",
    "IdentityProvider",
    "OrderBookService",
    "TokenBalanceService",
    "DepositStatusResult",
    "Identity",
    "IsoDetails",
    "Order",
    "OrderBook",
    "OrderSide",
    "OrderStatus",
    "UserContribution",
]
