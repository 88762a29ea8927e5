"""Async wrapper around the Consul KV HTTP API."""

from __future__ import annotations

import base64
from typing import Any
from urllib.parse import quote

import httpx
import structlog
from tenacity import (
    AsyncRetrying,
    RetryError,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from pgha_stats.config.models import ConsulConfig
from pgha_stats.errors import AgentConnectionError, KVStoreError

logger = structlog.get_logger()


class ConsulKV:
    """Thin async client for Consul's ``/v1/kv`` endpoints."""

    def __init__(self, config: ConsulConfig | None = None) -> None:
        self._config = config or ConsulConfig()
        headers: dict[str, str] = {}
        if self._config.token is not None:
            headers["X-Consul-Token"] = self._config.token.get_secret_value()
        self._client = httpx.AsyncClient(
            base_url=self._config.address,
            headers=headers,
            timeout=self._config.timeout_seconds,
        )

    async def close(self) -> None:
        await self._client.aclose()

    async def __aenter__(self) -> ConsulKV:
        return self

    async def __aexit__(self, *exc: object) -> None:
        await self.close()

    @staticmethod
    def _path(key: str) -> str:
        return f"/v1/kv/{quote(key, safe='/')}"

    def _params(self) -> dict[str, str]:
        if self._config.datacenter:
            return {"dc": self._config.datacenter}
        return {}

    # -- Health ----------------------------------------------------------------

    async def wait_until_ready(self) -> None:
        """Block until the agent's Consul cluster has a leader.

        Raises:
            AgentConnectionError: if Consul stays unreachable.
        """
        leader: Any = None
        try:
            async for attempt in AsyncRetrying(
                retry=retry_if_exception_type((httpx.HTTPError, KVStoreError)),
                stop=stop_after_attempt(self._config.ready_max_attempts),
                wait=wait_exponential(multiplier=1, max=30),
            ):
                with attempt:
                    resp = await self._client.get("/v1/status/leader")
                    resp.raise_for_status()
                    leader = resp.json()
                    if not leader:
                        msg = "Consul cluster has no leader"
                        raise KVStoreError(msg)
        except RetryError as exc:
            cause = exc.last_attempt.exception()
            msg = f"Consul at {self._config.address} not ready: {cause}"
            raise AgentConnectionError(msg) from exc
        logger.info("consul.ready", address=self._config.address, leader=leader)

    # -- KV --------------------------------------------------------------------

    async def put(self, key: str, value: bytes) -> None:
        """Unconditionally write *value* under *key*.

        Raises:
            KVStoreError: on transport failure, non-2xx status, or a ``false``
                response body.
        """
        try:
            resp = await self._client.put(
                self._path(key), content=value, params=self._params()
            )
        except httpx.HTTPError as exc:
            msg = f"KV put {key} failed: {exc}"
            raise KVStoreError(msg) from exc
        if resp.status_code != 200:
            msg = f"KV put {key} failed: {resp.status_code} {resp.text}"
            raise KVStoreError(msg)
        if resp.text.strip() != "true":
            msg = f"KV put {key} rejected by Consul"
            raise KVStoreError(msg)

    async def get(self, key: str) -> bytes | None:
        """Return the raw value stored under *key*, or None when absent."""
        try:
            resp = await self._client.get(self._path(key), params=self._params())
        except httpx.HTTPError as exc:
            msg = f"KV get {key} failed: {exc}"
            raise KVStoreError(msg) from exc
        if resp.status_code == 404:
            return None
        if resp.status_code != 200:
            msg = f"KV get {key} failed: {resp.status_code} {resp.text}"
            raise KVStoreError(msg)
        entries: list[dict[str, Any]] = resp.json()
        encoded = entries[0].get("Value") if entries else None
        if encoded is None:
            return b""
        return base64.b64decode(encoded)
