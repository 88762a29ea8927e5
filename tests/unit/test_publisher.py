"""Unit tests for SnapshotPublisher and record encoding."""

from __future__ import annotations

import json
from datetime import UTC, datetime

import pytest

from pgha_stats.errors import PublishError
from pgha_stats.publishing.publisher import (
    KVStore,
    SnapshotPublisher,
    decode_record,
    encode_snapshot,
    publication_key,
)
from pgha_stats.replication.inspector import ReplicationSnapshot, Role
from pgha_stats.replication.wal import WalPosition


def _snapshot(
    host: str = "db-1", role: Role = Role.PRIMARY, high: int = 22, low: int = 160
) -> ReplicationSnapshot:
    return ReplicationSnapshot(
        host=host,
        role=role,
        position=WalPosition(high, low),
        observed_at=datetime(2025, 3, 1, 12, 0, 0, tzinfo=UTC),
    )


class TestPublicationKey:
    def test_layout(self):
        assert publication_key("pgha", "db-1") == "pgha/replication/stats/db-1"

    def test_trailing_slash_stripped(self):
        assert publication_key("svc/pg/", "db-1") == "svc/pg/replication/stats/db-1"


class TestEncodeSnapshot:
    def test_fields_and_types(self):
        record = json.loads(encode_snapshot(_snapshot()))
        assert record == {
            "host": "db-1",
            "role": "primary",
            "xlog": 22,
            "offset": 160,
            "timestamp": "2025-03-01T12:00:00+00:00",
        }

    def test_compact(self):
        assert b" " not in encode_snapshot(_snapshot())

    def test_timestamp_parses_back(self):
        record = decode_record(encode_snapshot(_snapshot()))
        assert datetime.fromisoformat(record["timestamp"]) == datetime(
            2025, 3, 1, 12, tzinfo=UTC
        )

    def test_decode_rejects_non_object(self):
        with pytest.raises(ValueError, match="JSON object"):
            decode_record(b"[1, 2]")


@pytest.mark.asyncio
class TestSnapshotPublisher:
    async def test_writes_under_node_key(self, kv):
        publisher = SnapshotPublisher(kv, prefix="pgha")
        await publisher.publish(_snapshot())

        assert kv.puts == ["pgha/replication/stats/db-1"]
        stored = json.loads(kv.data["pgha/replication/stats/db-1"])
        assert stored["xlog"] == 22
        assert stored["offset"] == 160

    async def test_overwrites_previous_value(self, kv):
        publisher = SnapshotPublisher(kv, prefix="pgha")
        await publisher.publish(_snapshot(low=1))
        await publisher.publish(_snapshot(low=2, role=Role.STANDBY))

        assert len(kv.data) == 1
        stored = json.loads(kv.data["pgha/replication/stats/db-1"])
        assert stored["offset"] == 2
        assert stored["role"] == "standby"

    async def test_store_failure_raises_publish_error(self, kv):
        publisher = SnapshotPublisher(kv, prefix="pgha")
        await publisher.publish(_snapshot(low=1))
        before = dict(kv.data)

        kv.reject = True
        with pytest.raises(PublishError, match="No cluster leader"):
            await publisher.publish(_snapshot(low=99))

        assert kv.data == before

    async def test_encode_failure_raises_publish_error(self, kv):
        bad = ReplicationSnapshot(
            host="db-1",
            role=Role.PRIMARY,
            position=WalPosition(1, 2),
            observed_at="not-a-datetime",  # type: ignore[arg-type]
        )
        with pytest.raises(PublishError, match="encode failed"):
            await SnapshotPublisher(kv, prefix="pgha").publish(bad)
        assert kv.puts == []

    async def test_fake_store_satisfies_protocol(self, kv):
        assert isinstance(kv, KVStore)
