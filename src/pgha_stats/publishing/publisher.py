"""Encodes replication snapshots and writes them to the KV store."""

from __future__ import annotations

import json
from typing import Any, Protocol, runtime_checkable

import structlog

from pgha_stats.errors import PublishError
from pgha_stats.replication.inspector import ReplicationSnapshot

logger = structlog.get_logger()

STATS_SEGMENT = "replication/stats"


@runtime_checkable
class KVStore(Protocol):
    """Last-write-wins key/value store."""

    async def put(self, key: str, value: bytes) -> None:
        """Write *value* under *key*, replacing any previous value."""
        ...


def publication_key(prefix: str, host: str) -> str:
    """Build the per-node key, e.g. ``pgha/replication/stats/db-1``."""
    return f"{prefix.rstrip('/')}/{STATS_SEGMENT}/{host}"


def encode_snapshot(snapshot: ReplicationSnapshot) -> bytes:
    """Serialize a snapshot to compact JSON bytes."""
    payload: dict[str, Any] = {
        "host": snapshot.host,
        "role": snapshot.role.value,
        "xlog": snapshot.position.high,
        "offset": snapshot.position.low,
        "timestamp": snapshot.observed_at.isoformat(),
    }
    return json.dumps(payload, separators=(",", ":")).encode("utf-8")


def decode_record(data: bytes) -> dict[str, Any]:
    """Parse a published record back into a dict."""
    record = json.loads(data)
    if not isinstance(record, dict):
        msg = f"expected a JSON object, got {type(record).__name__}"
        raise ValueError(msg)
    return record


class SnapshotPublisher:
    """Writes each snapshot to ``<prefix>/replication/stats/<host>``.

    One unconditional put per snapshot; no read-modify-write.
    """

    def __init__(self, store: KVStore, prefix: str) -> None:
        self._store = store
        self._prefix = prefix

    def key_for(self, host: str) -> str:
        return publication_key(self._prefix, host)

    async def publish(self, snapshot: ReplicationSnapshot) -> None:
        """Publish *snapshot*.

        Raises:
            PublishError: if encoding or the store write fails.
        """
        key = self.key_for(snapshot.host)
        try:
            data = encode_snapshot(snapshot)
        except (AttributeError, TypeError, ValueError) as exc:
            msg = f"Replication stats encode failed: {exc}"
            raise PublishError(msg) from exc

        try:
            await self._store.put(key, data)
        except Exception as exc:
            msg = f"Replication stats KV put to {key} failed: {exc}"
            raise PublishError(msg) from exc

        logger.debug("publisher.published", key=key, bytes=len(data))
