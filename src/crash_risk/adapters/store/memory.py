"""
In-memory history store.

Used by tests and `--store memory`. Payloads are deep-copied through JSON on
the way in and out so callers can never share mutable state with the store.
"""

from __future__ import annotations

import json
from typing import Any

from crash_risk.ports.store import HistoryStorePort


class InMemoryHistoryStore(HistoryStorePort):
    def __init__(self, initial: dict[str, dict[str, Any]] | None = None):
        self._rows: dict[str, str] = {}
        self.save_count = 0
        if initial:
            self._rows = {k: json.dumps(v) for k, v in initial.items()}

    async def initialize(self) -> None:
        return None

    async def close(self) -> None:
        return None

    async def load_all(self) -> dict[str, dict[str, Any]]:
        return {instrument: json.loads(raw) for instrument, raw in self._rows.items()}

    async def save_many(self, payloads: dict[str, dict[str, Any]]) -> None:
        for instrument, payload in payloads.items():
            self._rows[instrument] = json.dumps(payload)
        self.save_count += 1

    def __contains__(self, instrument: str) -> bool:
        return instrument in self._rows
