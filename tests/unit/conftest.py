"""Shared fakes for the replication query and KV store contracts."""

from __future__ import annotations

from datetime import UTC, datetime

import pytest

from pgha_stats.errors import KVStoreError, QueryError

FIXED_NOW = datetime(2025, 3, 1, 12, 0, 0, tzinfo=UTC)


class FakeQueries:
    """In-memory ReplicationQueries that records which queries were issued."""

    def __init__(
        self,
        in_recovery: bool = False,
        current: str = "16/A0",
        received: str = "0/FF",
    ) -> None:
        self.in_recovery = in_recovery
        self.current = current
        self.received = received
        self.fail_on: set[str] = set()
        self.calls: list[str] = []

    def _record(self, name: str) -> None:
        self.calls.append(name)
        if name in self.fail_on:
            msg = f"{name} failed: server closed the connection unexpectedly"
            raise QueryError(msg)

    async def query_is_in_recovery(self) -> bool:
        self._record("is_in_recovery")
        return self.in_recovery

    async def query_current_wal_position(self) -> str:
        self._record("current")
        return self.current

    async def query_last_received_wal_position(self) -> str:
        self._record("received")
        return self.received


class InMemoryKV:
    """Last-write-wins KVStore; ``reject`` makes every put fail."""

    def __init__(self) -> None:
        self.data: dict[str, bytes] = {}
        self.puts: list[str] = []
        self.reject = False

    async def put(self, key: str, value: bytes) -> None:
        self.puts.append(key)
        if self.reject:
            msg = f"KV put {key} failed: 500 No cluster leader"
            raise KVStoreError(msg)
        self.data[key] = value


@pytest.fixture
def queries() -> FakeQueries:
    return FakeQueries()


@pytest.fixture
def kv() -> InMemoryKV:
    return InMemoryKV()


@pytest.fixture
def clock():
    return lambda: FIXED_NOW
