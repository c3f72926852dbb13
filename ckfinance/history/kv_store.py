"""
Durable key-value document backing the local client state.

One JSON file per client holds every persisted key. Writes go to a temp file
and are renamed over the original, so a crash mid-write leaves the previous
document intact. A missing or corrupt file loads as empty.
"""

from __future__ import annotations

import copy
import logging
from pathlib import Path
from typing import Any, Dict, Optional

from ckfinance.infra.json_utils import JSONDecodeError, JSONEncodeError, dumps, dumps_pretty, loads

log = logging.getLogger("ckfinance")

DEPOSIT_ADDRESSES_KEY = "depositAddresses"


class KeyValueStore:
    def __init__(self, state_dir: str, name: str = "ckfinance_state") -> None:
        safe = name.replace(":", "_").replace("/", "_")
        self.path = Path(state_dir) / f"{safe}.json"
        self.tmp = self.path.with_suffix(".tmp")
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self._data: Dict[str, Any] = self._read()

    def _read(self) -> Dict[str, Any]:
        if not self.path.exists():
            return {}
        try:
            data = loads(self.path.read_bytes())
        except (OSError, JSONDecodeError) as exc:
            log.error(dumps({"event": "state_load_error", "path": str(self.path), "error": str(exc)}))
            return {}
        if not isinstance(data, dict):
            log.error(dumps({"event": "state_load_error", "path": str(self.path), "error": "not an object"}))
            return {}
        return data

    def reload(self) -> None:
        self._data = self._read()

    def get(self, key: str, default: Any = None) -> Any:
        if key not in self._data:
            return default
        return copy.deepcopy(self._data[key])

    def set(self, key: str, value: Any) -> None:
        self._data[key] = copy.deepcopy(value)
        self._save()

    def delete(self, key: str) -> bool:
        if key not in self._data:
            return False
        del self._data[key]
        self._save()
        return True

    def _save(self) -> None:
        try:
            self.tmp.write_bytes(dumps_pretty(self._data))
            self.tmp.replace(self.path)
        except (OSError, JSONEncodeError) as exc:
            log.error(dumps({"event": "state_save_error", "path": str(self.path), "error": str(exc)}))


class AddressCache:
    """Last-known deposit address per asset, persisted in the key-value store."""

    def __init__(self, store: KeyValueStore, key: str = DEPOSIT_ADDRESSES_KEY) -> None:
        self._store = store
        self._key = key

    def _all(self) -> Dict[str, str]:
        data = self._store.get(self._key, {})
        return data if isinstance(data, dict) else {}

    def get(self, asset_id: str) -> Optional[str]:
        return self._all().get(asset_id)

    def set(self, asset_id: str, address: str) -> None:
        addresses = self._all()
        addresses[asset_id] = address
        self._store.set(self._key, addresses)

    def invalidate(self, asset_id: str) -> bool:
        addresses = self._all()
        if asset_id not in addresses:
            return False
        del addresses[asset_id]
        self._store.set(self._key, addresses)
        return True
