"""
Infrastructure package.

This package contains logging configuration, JSON helpers and metrics.
"""

from ckfinance.infra.logging_cfg import build_logger, log_event
from ckfinance.infra.metrics import ClientMetrics

__all__ = [
    "build_logger",
    "log_event",
    "ClientMetrics",
]
