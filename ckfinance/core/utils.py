"""
Utility helpers.
"""

from __future__ import annotations

import time
from datetime import datetime, timezone
from typing import Any, Optional


def now_ms() -> int:
    return int(time.time() * 1000)


def iso_now() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="milliseconds")


def normalize_tx_hash(raw: Any) -> Optional[str]:
    """
    Collapse a detection reply into a single hash string.

    The monitoring service may answer with a bare string, an optional-style
    one-element sequence, or an empty sequence meaning "nothing yet".
    """
    if raw is None or raw is False:
        return None
    if isinstance(raw, (list, tuple)):
        if not raw:
            return None
        return normalize_tx_hash(raw[0])
    if isinstance(raw, bytes):
        raw = raw.decode("utf-8")
    value = str(raw).strip()
    return value or None
