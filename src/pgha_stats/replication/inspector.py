"""Observes a node's replication role and WAL position."""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
from datetime import UTC, datetime
from enum import StrEnum

import structlog

from pgha_stats.errors import CollectError, CollectStage, QueryError, WalParseError
from pgha_stats.replication.queries import ReplicationQueries
from pgha_stats.replication.wal import WalPosition, parse_wal_position

logger = structlog.get_logger()


class Role(StrEnum):
    PRIMARY = "primary"
    STANDBY = "standby"


@dataclass(frozen=True, slots=True)
class ReplicationSnapshot:
    """One point-in-time observation of a node."""

    host: str
    role: Role
    position: WalPosition
    observed_at: datetime


def utc_now() -> datetime:
    return datetime.now(tz=UTC)


class ReplicationInspector:
    """Collects a ReplicationSnapshot with one or two read-only queries.

    The role is re-read on every call; nothing is cached between calls and
    nothing is retried.
    """

    def __init__(
        self,
        queries: ReplicationQueries,
        host: str,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self._queries = queries
        self._host = host
        self._clock = clock

    @property
    def host(self) -> str:
        return self._host

    async def collect(self) -> ReplicationSnapshot:
        """Observe the node.

        Raises:
            CollectError: tagged with the stage that failed.
        """
        try:
            in_recovery = await self._queries.query_is_in_recovery()
        except QueryError as exc:
            raise CollectError(CollectStage.ROLE_CHECK, exc) from exc

        try:
            if in_recovery:
                role = Role.STANDBY
                raw = await self._queries.query_last_received_wal_position()
            else:
                role = Role.PRIMARY
                raw = await self._queries.query_current_wal_position()
        except QueryError as exc:
            raise CollectError(CollectStage.POSITION_QUERY, exc) from exc

        try:
            position = parse_wal_position(raw)
        except WalParseError as exc:
            raise CollectError(CollectStage.POSITION_PARSE, exc) from exc

        snapshot = ReplicationSnapshot(
            host=self._host,
            role=role,
            position=position,
            observed_at=self._clock(),
        )
        logger.debug(
            "inspector.collected",
            host=self._host,
            role=role.value,
            xlog=position.high,
            offset=position.low,
        )
        return snapshot
