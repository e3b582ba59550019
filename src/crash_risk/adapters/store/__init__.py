"""History store adapters."""

from crash_risk.adapters.store.memory import InMemoryHistoryStore
from crash_risk.adapters.store.sqlite import SQLiteHistoryStore

__all__ = ["InMemoryHistoryStore", "SQLiteHistoryStore"]
