"""
Prometheus metrics for client observability.

Organized into: rpc, deposits, trading.
"""

from typing import Optional

from prometheus_client import CollectorRegistry, Counter, Histogram


class ClientMetrics:
    """Counters and latency histogram for the client core."""

    def __init__(self, registry: Optional[CollectorRegistry] = None):
        reg = registry or CollectorRegistry()
        self._registry = reg

        # === RPC Metrics ===
        self.rpc_calls = Counter(
            'rpc_calls_total',
            'Remote calls issued',
            labelnames=['service', 'method'],
            registry=reg
        )
        self.rpc_errors = Counter(
            'rpc_errors_total',
            'Remote calls that failed after retries',
            labelnames=['service', 'method'],
            registry=reg
        )
        self.rpc_latency_ms = Histogram(
            'rpc_latency_ms',
            'Remote call latency (milliseconds)',
            labelnames=['method'],
            buckets=[50, 100, 250, 500, 1000, 2500, 5000, 10000],
            registry=reg
        )

        # === Deposit Metrics ===
        self.deposit_transitions = Counter(
            'deposit_status_transitions_total',
            'Deposit status transitions applied',
            labelnames=['asset', 'status'],
            registry=reg
        )
        self.poll_ticks_skipped = Counter(
            'deposit_poll_ticks_skipped_total',
            'Poll ticks skipped because a check was still outstanding',
            labelnames=['asset'],
            registry=reg
        )

        # === Trading Metrics ===
        self.orders_placed = Counter(
            'orders_placed_total',
            'Orders accepted by the order-book service',
            labelnames=['pair', 'side'],
            registry=reg
        )
        self.orders_cancelled = Counter(
            'orders_cancelled_total',
            'Orders cancelled by the user',
            registry=reg
        )

    def get_registry(self) -> CollectorRegistry:
        return self._registry
