"""Unit tests for PostgresReplicationQueries with a mocked psycopg connection."""

from __future__ import annotations

from unittest.mock import AsyncMock, MagicMock, patch

import psycopg
import pytest

from pgha_stats.config.models import PostgresConfig
from pgha_stats.errors import AgentConnectionError, QueryError
from pgha_stats.replication.queries import (
    PostgresReplicationQueries,
    ReplicationQueries,
    wal_functions,
)

CONNECT = "pgha_stats.replication.queries.psycopg.AsyncConnection.connect"


def _mock_conn(rows: dict[str, object], server_version: int = 150004) -> MagicMock:
    """Fake AsyncConnection whose execute() answers by SQL text."""
    conn = MagicMock()
    conn.closed = False
    conn.info.server_version = server_version
    conn.info.host = "localhost"
    conn.close = AsyncMock()
    conn.executed = []

    async def execute(sql: str):
        conn.executed.append(sql)
        value = rows[sql]
        if isinstance(value, Exception):
            raise value
        cur = MagicMock()
        cur.fetchone = AsyncMock(return_value=None if value is None else (value,))
        return cur

    conn.execute = execute
    return conn


def _config(**kwargs) -> PostgresConfig:
    return PostgresConfig(connect_max_attempts=2, **kwargs)


class TestWalFunctions:
    def test_pg10_and_later(self):
        assert wal_functions(100000) == (
            "pg_current_wal_lsn",
            "pg_last_wal_receive_lsn",
        )
        assert wal_functions(160002)[0] == "pg_current_wal_lsn"

    def test_pre_pg10(self):
        assert wal_functions(90624) == (
            "pg_current_xlog_location",
            "pg_last_xlog_receive_location",
        )

    def test_implementation_satisfies_protocol(self):
        assert isinstance(PostgresReplicationQueries(_config()), ReplicationQueries)


@pytest.mark.asyncio
class TestPostgresReplicationQueries:
    async def test_queries_on_modern_server(self):
        conn = _mock_conn(
            {
                "SELECT pg_is_in_recovery()": False,
                "SELECT pg_current_wal_lsn()": "16/A0",
                "SELECT pg_last_wal_receive_lsn()": "0/FF",
            }
        )
        q = PostgresReplicationQueries(_config())
        with patch(CONNECT, AsyncMock(return_value=conn)):
            await q.connect()
            assert await q.query_is_in_recovery() is False
            assert await q.query_current_wal_position() == "16/A0"
            assert await q.query_last_received_wal_position() == "0/FF"

    async def test_queries_on_legacy_server(self):
        conn = _mock_conn(
            {
                "SELECT pg_current_xlog_location()": "1/2",
                "SELECT pg_last_xlog_receive_location()": "3/4",
            },
            server_version=90624,
        )
        q = PostgresReplicationQueries(_config())
        with patch(CONNECT, AsyncMock(return_value=conn)):
            await q.connect()
            assert await q.query_current_wal_position() == "1/2"
            assert await q.query_last_received_wal_position() == "3/4"

    async def test_driver_error_becomes_query_error(self):
        conn = _mock_conn(
            {"SELECT pg_is_in_recovery()": psycopg.OperationalError("boom")}
        )
        q = PostgresReplicationQueries(_config())
        with patch(CONNECT, AsyncMock(return_value=conn)):
            await q.connect()
            with pytest.raises(QueryError, match="boom"):
                await q.query_is_in_recovery()

    async def test_null_position_is_query_error(self):
        # pg_last_wal_receive_lsn() is NULL on a standby that never streamed.
        conn = _mock_conn({"SELECT pg_last_wal_receive_lsn()": None})
        q = PostgresReplicationQueries(_config())
        with patch(CONNECT, AsyncMock(return_value=conn)):
            await q.connect()
            with pytest.raises(QueryError, match="no value"):
                await q.query_last_received_wal_position()

    async def test_connect_failure_is_fatal(self):
        failing = AsyncMock(side_effect=psycopg.OperationalError("refused"))
        q = PostgresReplicationQueries(_config())
        with (
            patch(CONNECT, failing),
            patch("asyncio.sleep", AsyncMock()),
            pytest.raises(AgentConnectionError, match="refused"),
        ):
            await q.connect()
        assert failing.await_count == 2

    async def test_reconnects_closed_connection(self):
        first = _mock_conn({})
        second = _mock_conn({"SELECT pg_is_in_recovery()": True})
        connect = AsyncMock(side_effect=[first, second])
        q = PostgresReplicationQueries(_config())
        with patch(CONNECT, connect):
            await q.connect()
            first.closed = True
            assert await q.query_is_in_recovery() is True
        assert connect.await_count == 2

    async def test_reconnect_failure_is_query_error(self):
        first = _mock_conn({})
        connect = AsyncMock(side_effect=[first, psycopg.OperationalError("down")])
        q = PostgresReplicationQueries(_config())
        with patch(CONNECT, connect):
            await q.connect()
            first.closed = True
            with pytest.raises(QueryError, match="down"):
                await q.query_is_in_recovery()

    async def test_statement_timeout_option(self):
        conn = _mock_conn({})
        connect = AsyncMock(return_value=conn)
        q = PostgresReplicationQueries(_config(statement_timeout_ms=2000))
        with patch(CONNECT, connect):
            await q.connect()
        assert connect.await_args.kwargs["options"] == "-c statement_timeout=2000"
        assert connect.await_args.kwargs["autocommit"] is True

    async def test_connect_timeout_applies_to_uri(self):
        conn = _mock_conn({})
        connect = AsyncMock(return_value=conn)
        q = PostgresReplicationQueries(
            _config(uri="postgresql://u@db/app", connect_timeout_seconds=3)
        )
        with patch(CONNECT, connect):
            await q.connect()
        assert connect.await_args.args == ("postgresql://u@db/app",)
        assert connect.await_args.kwargs["connect_timeout"] == 3

    async def test_close(self):
        conn = _mock_conn({})
        q = PostgresReplicationQueries(_config())
        with patch(CONNECT, AsyncMock(return_value=conn)):
            await q.connect()
        await q.close()
        conn.close.assert_awaited_once()
        await q.close()
