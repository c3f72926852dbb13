"""
Fast JSON utilities backed by orjson.

orjson only encodes integers that fit in 64 bits. Base-unit amounts of
18-decimal assets routinely exceed that, so wider integers are written as
decimal strings.

Usage:
    from ckfinance.infra.json_utils import dumps, loads

    log.info(dumps({"event": "deposit_status", "status": "confirming"}))
"""

from __future__ import annotations

from typing import Any

import orjson

_INT_MIN = -(2 ** 63)
_INT_MAX = 2 ** 64 - 1


def widen_ints(obj: Any) -> Any:
    """Copy of obj with integers outside orjson's range replaced by strings."""
    if isinstance(obj, bool):
        return obj
    if isinstance(obj, int):
        return obj if _INT_MIN <= obj <= _INT_MAX else str(obj)
    if isinstance(obj, dict):
        return {k: widen_ints(v) for k, v in obj.items()}
    if isinstance(obj, (list, tuple)):
        return [widen_ints(v) for v in obj]
    return obj


def _encode(obj: Any, option: int = 0) -> bytes:
    try:
        return orjson.dumps(obj, default=str, option=option)
    except orjson.JSONEncodeError:
        return orjson.dumps(widen_ints(obj), default=str, option=option)


def dumps(obj: Any) -> str:
    """Encode to a compact JSON string."""
    return _encode(obj).decode("utf-8")


def dumps_pretty(obj: Any) -> bytes:
    """Encode to indented JSON bytes (used for files humans may inspect)."""
    return _encode(obj, option=orjson.OPT_INDENT_2)


def loads(s: str | bytes) -> Any:
    """Decode JSON text or bytes."""
    return orjson.loads(s)


JSONDecodeError = orjson.JSONDecodeError
JSONEncodeError = orjson.JSONEncodeError
