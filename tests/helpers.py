"""State store doubles and log helpers shared by the test modules."""

import logging

from src.logging.audit import JSONFormatter
from src.state.store import StateStore


class MemoryStateStore(StateStore):
    """Dict-backed store that records every write."""

    def __init__(self, records: dict | None = None):
        self.records: dict[str, dict] = dict(records or {})
        self.puts: list[str] = []

    async def get(self, key: str) -> dict | None:
        return self.records.get(key)

    async def put(self, key: str, record: dict) -> None:
        self.records[key] = record
        self.puts.append(key)


class BrokenStateStore(MemoryStateStore):
    """Store that fails like an unreachable backend while ``failing`` is set."""

    def __init__(self, records: dict | None = None):
        super().__init__(records)
        self.failing = True
        self.calls = 0

    async def get(self, key: str) -> dict | None:
        self.calls += 1
        if self.failing:
            raise ConnectionError("store unreachable")
        return await super().get(key)

    async def put(self, key: str, record: dict) -> None:
        self.calls += 1
        if self.failing:
            raise ConnectionError("store unreachable")
        await super().put(key, record)


def rendered_logs(records: list[logging.LogRecord]) -> str:
    """Captured records rendered exactly as the JSON log lines would be."""
    formatter = JSONFormatter()
    return "\n".join(formatter.format(record) for record in records)
