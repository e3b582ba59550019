"""
History Store Port: Abstract interface for durable engine state.

The engine serializes its per-instrument history (buckets, prices,
confirmation counters, risk-state record) into JSON-compatible payloads.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any


class HistoryStorePort(ABC):
    """
    Durable key-value store keyed by instrument.

    Implementations can be in-memory, SQLite, or any other storage.
    """

    @abstractmethod
    async def initialize(self) -> None:
        """Initialize the store (create tables, etc)."""
        ...

    @abstractmethod
    async def close(self) -> None:
        """Close connections and cleanup."""
        ...

    @abstractmethod
    async def load_all(self) -> dict[str, dict[str, Any]]:
        """Load every stored payload. Empty dict on a cold start."""
        ...

    @abstractmethod
    async def save_many(self, payloads: dict[str, dict[str, Any]]) -> None:
        """
        Upsert payloads for the given instruments.

        Raises:
            StoreError: The write failed; nothing is partially applied.
        """
        ...
