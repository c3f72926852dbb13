"""
LocalHistoryStore: durable record of the user's deposits and mints.

The collection is kept most-recent-first. Records are appended with a new
client-generated id and afterwards only patched in place by id. Every
mutation is written through to the key-value store before returning.
"""

from __future__ import annotations

import logging
from dataclasses import asdict, dataclass, replace
from datetime import datetime
from typing import Any, Dict, List, Optional

from ckfinance.core.utils import iso_now, now_ms
from ckfinance.history.kv_store import KeyValueStore
from ckfinance.infra.json_utils import dumps

log = logging.getLogger("ckfinance")

HISTORY_KEY = "transactionHistory"
RECORD_TYPES = ("deposit", "mint")
_PATCHABLE = frozenset({"status", "amount", "tx_hash"})


@dataclass(frozen=True)
class TransactionRecord:
    id: str
    type: str  # deposit | mint
    asset_id: str
    amount: int
    tx_hash: Optional[str]
    status: str
    timestamp: str  # ISO-8601

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        # Base units of 18-decimal assets do not fit a 64-bit JSON integer.
        data["amount"] = str(self.amount)
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "TransactionRecord":
        return cls(
            id=str(data["id"]),
            type=str(data.get("type", "deposit")),
            asset_id=str(data.get("asset_id", data.get("asset", ""))),
            amount=int(data.get("amount") or 0),
            tx_hash=data.get("tx_hash", data.get("txHash")),
            status=str(data.get("status", "pending")),
            timestamp=str(data.get("timestamp", "")),
        )


class LocalHistoryStore:
    def __init__(self, store: KeyValueStore, key: str = HISTORY_KEY) -> None:
        self._store = store
        self._key = key
        self._records: List[TransactionRecord] = []
        self._last_id = 0
        self.load()

    def load(self) -> None:
        """(Re)load from persistence; unreadable entries are skipped."""
        raw = self._store.get(self._key, [])
        records: List[TransactionRecord] = []
        if isinstance(raw, list):
            for item in raw:
                try:
                    records.append(TransactionRecord.from_dict(item))
                except (KeyError, TypeError, ValueError) as exc:
                    log.warning(dumps({"event": "history_record_skipped", "error": str(exc)}))
        else:
            log.warning(dumps({"event": "history_load_error", "error": "not a list"}))
        self._records = records
        self._last_id = max((int(r.id) for r in records if r.id.isdigit()), default=0)

    def _persist(self) -> None:
        self._store.set(self._key, [r.to_dict() for r in self._records])

    def _next_id(self) -> str:
        self._last_id = max(now_ms(), self._last_id + 1)
        return str(self._last_id)

    # -------------------------------------------------------------------------
    # Mutations
    # -------------------------------------------------------------------------

    def add_record(
        self,
        type: str,
        asset_id: str,
        amount: int = 0,
        tx_hash: Optional[str] = None,
        status: str = "pending",
    ) -> str:
        if type not in RECORD_TYPES:
            raise ValueError(f"unknown record type: {type}")
        record = TransactionRecord(
            id=self._next_id(),
            type=type,
            asset_id=asset_id,
            amount=int(amount or 0),
            tx_hash=tx_hash,
            status=status,
            timestamp=iso_now(),
        )
        self._records.insert(0, record)
        self._persist()
        return record.id

    def update_record(self, record_id: str, **patch: Any) -> bool:
        """Merge `patch` into the record with `record_id`. False if absent."""
        unknown = set(patch) - _PATCHABLE
        if unknown:
            raise ValueError(f"fields not patchable: {sorted(unknown)}")
        for i, record in enumerate(self._records):
            if record.id == record_id:
                if "amount" in patch:
                    patch["amount"] = int(patch["amount"] or 0)
                self._records[i] = replace(record, **patch)
                self._persist()
                return True
        return False

    def clear(self) -> None:
        self._records = []
        self._persist()

    # -------------------------------------------------------------------------
    # Queries
    # -------------------------------------------------------------------------

    def __len__(self) -> int:
        return len(self._records)

    def get(self, record_id: str) -> Optional[TransactionRecord]:
        return next((r for r in self._records if r.id == record_id), None)

    def find_by_tx_hash(self, tx_hash: str) -> Optional[TransactionRecord]:
        return next((r for r in self._records if tx_hash and r.tx_hash == tx_hash), None)

    def records(
        self,
        type_filter: Optional[str] = None,
        sort_by: str = "date",
        descending: bool = True,
    ) -> List[TransactionRecord]:
        """
        Filtered, sorted copy of the collection.

        Args:
            type_filter: "deposit", "mint" or None for all
            sort_by: "date" or "amount"
            descending: newest / largest first
        """
        items = [r for r in self._records if type_filter in (None, "all") or r.type == type_filter]
        if sort_by == "amount":
            return sorted(items, key=lambda r: r.amount, reverse=descending)
        if sort_by == "date":
            return sorted(items, key=_timestamp_key, reverse=descending)
        return items


def _timestamp_key(record: TransactionRecord) -> float:
    try:
        return datetime.fromisoformat(record.timestamp).timestamp()
    except ValueError:
        return 0.0
