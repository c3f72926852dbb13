from ckfinance.history.history_store import LocalHistoryStore, TransactionRecord
from ckfinance.history.kv_store import AddressCache, KeyValueStore

__all__ = ["AddressCache", "KeyValueStore", "LocalHistoryStore", "TransactionRecord"]
