"""State store abstraction + JSON file implementation."""

import asyncio
import json
import logging
import os
from abc import ABC, abstractmethod

logger = logging.getLogger("gateway.state")


class StateStore(ABC):
    """Abstract base for durable key-value state.

    Keys are opaque hashes; values are plain JSON-compatible dicts.
    Writes overwrite a single key and never touch any other.
    """

    @abstractmethod
    async def get(self, key: str) -> dict | None:
        """Fetch the record stored under key. Returns None if absent."""
        ...

    @abstractmethod
    async def put(self, key: str, record: dict) -> None:
        """Store record under key, replacing any previous value."""
        ...


class JSONStateStore(StateStore):
    """File-backed state store. Loads once, rewrites the file on every put.

    Writes run in a worker thread, one at a time, from a snapshot of the
    records taken on the event loop.
    """

    def __init__(self, path: str):
        self._path = path
        self._records: dict[str, dict] = {}
        self._write_lock = asyncio.Lock()
        self._load()

    def _load(self) -> None:
        if not os.path.isfile(self._path):
            self._records = {}
            return

        try:
            with open(self._path, encoding="utf-8") as f:
                data = json.load(f)
        except (OSError, ValueError):
            logger.warning(
                "State file unreadable, starting with empty state",
                extra={"audit_data": {"path": self._path}},
            )
            self._records = {}
            return

        records = data.get("records", {}) if isinstance(data, dict) else {}
        self._records = records if isinstance(records, dict) else {}

    def _flush(self, records: dict[str, dict]) -> None:
        tmp_path = f"{self._path}.tmp"
        with open(tmp_path, "w", encoding="utf-8") as f:
            json.dump({"records": records}, f, indent=2)
        os.replace(tmp_path, self._path)

    async def get(self, key: str) -> dict | None:
        return self._records.get(key)

    async def put(self, key: str, record: dict) -> None:
        self._records[key] = record
        async with self._write_lock:
            await asyncio.to_thread(self._flush, dict(self._records))
