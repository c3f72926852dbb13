from ckfinance.trading.trading_session import (
    OrderBookServiceFactory,
    OrderTradingSession,
    TokenServicesFactory,
    parse_positive,
    parse_side,
)

__all__ = [
    "OrderBookServiceFactory",
    "OrderTradingSession",
    "TokenServicesFactory",
    "parse_positive",
    "parse_side",
]
