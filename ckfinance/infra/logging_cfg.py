"""
Structured logging setup for the ckfinance client.

- Human-friendly console output through rich
- Compact JSON lines for the optional log file
- Throttling for events that repeat on every poll tick
"""

from __future__ import annotations

import logging
import time
from datetime import datetime
from typing import Dict, Optional, Set

from rich.logging import RichHandler

from ckfinance.infra.json_utils import JSONDecodeError, dumps, loads

LOGGER_NAME = "ckfinance"

DEFAULT_THROTTLED_EVENTS = frozenset({
    "deposit_poll_skipped",
    "deposit_not_detected",
    "rpc_retry",
})


class JsonFormatter(logging.Formatter):
    """Compact JSON formatter for structured log ingestion."""

    def format(self, record: logging.LogRecord) -> str:
        ts = record.created
        payload = {
            "ts": ts,
            "ts_iso": datetime.fromtimestamp(ts).isoformat(timespec="milliseconds"),
            "level": record.levelname,
            "name": record.name,
            "msg": record.getMessage(),
        }
        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)
        return dumps(payload)


class ThrottledFilter(logging.Filter):
    """
    Suppress repeats of noisy structured events.

    The first occurrence of an event for a given asset passes, duplicates are
    dropped for `cooldown_sec`.
    """

    def __init__(self, cooldown_sec: float = 30.0, throttled_events: Optional[Set[str]] = None):
        super().__init__()
        self._cooldown = cooldown_sec
        self._last_seen: Dict[str, float] = {}
        self._throttled_events = throttled_events or set(DEFAULT_THROTTLED_EVENTS)

    def filter(self, record: logging.LogRecord) -> bool:
        try:
            data = loads(record.getMessage())
        except (JSONDecodeError, TypeError, ValueError):
            return True
        if not isinstance(data, dict):
            return True

        event = data.get("event", "")
        if event not in self._throttled_events:
            return True

        now = time.time()
        key = f"{event}:{data.get('asset_id', '')}"
        if now - self._last_seen.get(key, 0.0) < self._cooldown:
            return False
        self._last_seen[key] = now
        return True


def build_logger(
    name: str = LOGGER_NAME,
    level: int = logging.INFO,
    file_path: Optional[str] = None,
    throttle: bool = True,
) -> logging.Logger:
    """
    Build the client logger.

    Args:
        name: Logger name
        level: Minimum log level
        file_path: Path to a JSON-lines log file (None to disable)
        throttle: Apply ThrottledFilter to the console handler

    Returns:
        Configured logger instance
    """
    logger = logging.getLogger(name)
    logger.setLevel(level)

    # Idempotent handler setup
    if logger.handlers:
        for h in logger.handlers:
            h.setLevel(level)
        return logger

    console = RichHandler(
        rich_tracebacks=False,
        show_time=True,
        show_level=True,
        show_path=False,
        markup=False,
    )
    console.setLevel(level)
    console.setFormatter(logging.Formatter("%(message)s"))
    if throttle:
        console.addFilter(ThrottledFilter(cooldown_sec=30.0))
    logger.addHandler(console)

    if file_path:
        file_handler = logging.FileHandler(file_path)
        file_handler.setFormatter(JsonFormatter())
        file_handler.setLevel(level)
        logger.addHandler(file_handler)

    logger.propagate = False
    return logger


def log_event(
    logger: logging.Logger,
    event: str,
    level: int = logging.INFO,
    **data,
) -> None:
    """
    Log a structured event.

    Usage:
        log_event(log, "deposit_detected", asset_id="BTC", tx_hash="h1")
    """
    payload = {"event": event, **data}
    logger.log(level, dumps(payload))
