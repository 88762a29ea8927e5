"""Exception hierarchy for the replication stats agent."""

from __future__ import annotations

from enum import StrEnum


class PghaStatsError(Exception):
    """Base class for all agent errors."""


class AgentConnectionError(PghaStatsError):
    """Raised when PostgreSQL or Consul is unreachable at startup."""


class QueryError(PghaStatsError):
    """Raised when a single replication query fails."""


class WalParseError(PghaStatsError, ValueError):
    """Raised when a WAL location string is malformed."""

    def __init__(self, raw: str, reason: str) -> None:
        super().__init__(f"invalid WAL location {raw!r}: {reason}")
        self.raw = raw
        self.reason = reason


class CollectStage(StrEnum):
    """Step of the collect algorithm at which a failure occurred."""

    ROLE_CHECK = "role_check"
    POSITION_QUERY = "position_query"
    POSITION_PARSE = "position_parse"


class CollectError(PghaStatsError):
    """Raised when a replication snapshot could not be collected."""

    def __init__(self, stage: CollectStage, cause: Exception) -> None:
        super().__init__(f"{stage.value}: {cause}")
        self.stage = stage
        self.cause = cause


class PublishError(PghaStatsError):
    """Raised when a snapshot could not be encoded or written to the store."""


class KVStoreError(PghaStatsError):
    """Raised when a Consul KV API call fails."""


class HealthServerError(PghaStatsError):
    """Raised when the health endpoint cannot bind its port."""
