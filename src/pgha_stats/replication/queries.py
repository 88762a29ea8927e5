"""PostgreSQL replication queries.

``ReplicationQueries`` is the contract the inspector consumes;
``PostgresReplicationQueries`` implements it on a single psycopg 3 async
connection.  PostgreSQL 10 renamed the ``xlog`` functions to ``wal``/``lsn``,
so the function names are chosen from the server version at connect time.
"""

from __future__ import annotations

from typing import Any, Protocol, runtime_checkable

import psycopg
import structlog
from tenacity import (
    AsyncRetrying,
    RetryError,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from pgha_stats.config.models import PostgresConfig
from pgha_stats.errors import AgentConnectionError, QueryError

logger = structlog.get_logger()

_PG10 = 100000


@runtime_checkable
class ReplicationQueries(Protocol):
    """Read-only queries needed to observe a node's replication state."""

    async def query_is_in_recovery(self) -> bool:
        """Return True when the node is a standby replaying WAL."""
        ...

    async def query_current_wal_position(self) -> str:
        """Return the primary's current WAL write location (``H/L``)."""
        ...

    async def query_last_received_wal_position(self) -> str:
        """Return the standby's last received WAL location (``H/L``)."""
        ...


def wal_functions(server_version: int) -> tuple[str, str]:
    """Return (current, last_received) WAL function names for a server version."""
    if server_version >= _PG10:
        return "pg_current_wal_lsn", "pg_last_wal_receive_lsn"
    return "pg_current_xlog_location", "pg_last_xlog_receive_location"


class PostgresReplicationQueries:
    """ReplicationQueries backed by one autocommit psycopg connection.

    Queries run serially; the agent never needs more than one connection.
    A connection found closed at query time is reopened once, without retry.
    """

    def __init__(self, config: PostgresConfig) -> None:
        self._config = config
        self._conn: psycopg.AsyncConnection[Any] | None = None
        self._current_fn = "pg_current_wal_lsn"
        self._received_fn = "pg_last_wal_receive_lsn"

    async def _open(self) -> psycopg.AsyncConnection[Any]:
        kwargs: dict[str, Any] = {
            "autocommit": True,
            "connect_timeout": self._config.connect_timeout_seconds,
        }
        if self._config.statement_timeout_ms is not None:
            timeout_ms = self._config.statement_timeout_ms
            kwargs["options"] = f"-c statement_timeout={timeout_ms}"
        conn = await psycopg.AsyncConnection.connect(self._config.dsn(), **kwargs)
        server_version = conn.info.server_version
        self._current_fn, self._received_fn = wal_functions(server_version)
        logger.info(
            "postgres.connected",
            host=conn.info.host,
            server_version=server_version,
        )
        return conn

    async def connect(self) -> None:
        """Open the connection, retrying with backoff.

        Raises:
            AgentConnectionError: if PostgreSQL stays unreachable.
        """
        try:
            async for attempt in AsyncRetrying(
                retry=retry_if_exception_type(psycopg.OperationalError),
                stop=stop_after_attempt(self._config.connect_max_attempts),
                wait=wait_exponential(multiplier=1, max=30),
            ):
                with attempt:
                    self._conn = await self._open()
        except (RetryError, psycopg.Error) as exc:
            cause = exc.last_attempt.exception() if isinstance(exc, RetryError) else exc
            msg = f"PostgreSQL connection failed: {cause}"
            raise AgentConnectionError(msg) from exc

    async def close(self) -> None:
        if self._conn is not None:
            await self._conn.close()
            self._conn = None
            logger.info("postgres.closed")

    async def _connection(self) -> psycopg.AsyncConnection[Any]:
        if self._conn is None or self._conn.closed:
            logger.warning("postgres.reconnecting")
            try:
                self._conn = await self._open()
            except psycopg.Error as exc:
                msg = f"PostgreSQL reconnect failed: {exc}"
                raise QueryError(msg) from exc
        return self._conn

    async def _scalar(self, sql: str) -> Any:
        conn = await self._connection()
        try:
            cur = await conn.execute(sql)
            row = await cur.fetchone()
        except psycopg.Error as exc:
            msg = f"Query {sql!r} failed: {exc}"
            raise QueryError(msg) from exc
        if row is None or row[0] is None:
            msg = f"Query {sql!r} returned no value"
            raise QueryError(msg)
        return row[0]

    async def query_is_in_recovery(self) -> bool:
        return bool(await self._scalar("SELECT pg_is_in_recovery()"))

    async def query_current_wal_position(self) -> str:
        return str(await self._scalar(f"SELECT {self._current_fn}()"))

    async def query_last_received_wal_position(self) -> str:
        return str(await self._scalar(f"SELECT {self._received_fn}()"))
