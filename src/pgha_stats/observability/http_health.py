"""Minimal async HTTP server exposing the agent's liveness and readiness.

Built on ``asyncio.start_server``.  ``/healthz`` always answers 200 while the
process is up; ``/readyz`` answers 200 only while the latest cycle succeeded.
"""

from __future__ import annotations

import asyncio
import json
from collections.abc import Callable
from contextlib import suppress
from typing import Any

import structlog

from pgha_stats.errors import HealthServerError

logger = structlog.get_logger()

StatusProvider = Callable[[], dict[str, Any]]

_REASONS = {
    200: "OK",
    404: "Not Found",
    500: "Internal Server Error",
    503: "Service Unavailable",
}


class HealthServer:
    """Serves liveness and readiness endpoints from a synchronous status callback.

    Parameters
    ----------
    port:
        TCP port to listen on.
    status_provider:
        Returns the current cycle status dict.  ``"status": "error"`` makes
        ``/readyz`` answer 503.
    host:
        Interface to bind.
    """

    def __init__(
        self,
        port: int,
        status_provider: StatusProvider,
        host: str = "0.0.0.0",  # noqa: S104
    ) -> None:
        self._port = port
        self._host = host
        self._status_provider = status_provider
        self._server: asyncio.Server | None = None

    @property
    def port(self) -> int:
        """Bound port; differs from the configured one when that was 0."""
        if self._server is not None and self._server.sockets:
            return int(self._server.sockets[0].getsockname()[1])
        return self._port

    async def start(self) -> None:
        try:
            self._server = await asyncio.start_server(
                self._handle, host=self._host, port=self._port
            )
        except OSError as exc:
            msg = f"Health server cannot bind {self._host}:{self._port}: {exc}"
            raise HealthServerError(msg) from exc
        logger.info("health.server_started", port=self.port)

    async def stop(self) -> None:
        if self._server is not None:
            self._server.close()
            await self._server.wait_closed()
            self._server = None
            logger.info("health.server_stopped")

    async def _handle(
        self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter
    ) -> None:
        try:
            request_line = await asyncio.wait_for(reader.readline(), timeout=5.0)
            path = self._parse_path(request_line)

            if path == "/healthz":
                await self._respond(writer, 200, {"status": "ok"})
            elif path == "/readyz":
                status = self._status_provider()
                code = 503 if status.get("status") == "error" else 200
                await self._respond(writer, code, status)
            else:
                await self._respond(writer, 404, {"error": "not found"})
        except Exception:
            logger.debug("health.request_error", exc_info=True)
            with suppress(Exception):
                await self._respond(writer, 500, {"error": "internal server error"})
        finally:
            with suppress(Exception):
                writer.close()
                await writer.wait_closed()

    @staticmethod
    def _parse_path(request_line: bytes) -> str:
        parts = request_line.decode("utf-8", errors="replace").strip().split()
        if len(parts) >= 2:
            return parts[1].split("?", 1)[0]
        return ""

    @staticmethod
    async def _respond(
        writer: asyncio.StreamWriter, status: int, body: dict[str, Any]
    ) -> None:
        payload = json.dumps(body).encode()
        header = (
            f"HTTP/1.1 {status} {_REASONS.get(status, 'Unknown')}\r\n"
            f"Content-Type: application/json\r\n"
            f"Content-Length: {len(payload)}\r\n"
            f"Connection: close\r\n"
            f"\r\n"
        )
        writer.write(header.encode() + payload)
        await writer.drain()
