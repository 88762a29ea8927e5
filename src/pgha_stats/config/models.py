"""Pydantic configuration models for the replication stats agent."""

from __future__ import annotations

import re
from enum import StrEnum
from typing import Annotated

from pydantic import BaseModel, Field, SecretStr, field_validator

_KEY_SEGMENT = r"[a-zA-Z0-9_.-]+"

KVPrefix = Annotated[str, Field(pattern=rf"^{_KEY_SEGMENT}(/{_KEY_SEGMENT})*/?$")]


class LogFormat(StrEnum):
    """Supported log renderers."""

    JSON = "json"
    CONSOLE = "console"


class PostgresConfig(BaseModel):
    """Connection settings for the observed PostgreSQL node.

    When ``uri`` is set it wins over the individual host/port/database fields.
    """

    uri: SecretStr | None = None
    host: str = "localhost"
    port: int = Field(default=5432, ge=1, le=65535)
    database: str = "postgres"
    username: str = "postgres"
    password: SecretStr = SecretStr("")
    connect_timeout_seconds: int = Field(default=10, ge=1)
    # Server-side statement_timeout for the agent's session; unset leaves
    # queries unbounded.
    statement_timeout_ms: int | None = Field(default=None, ge=1)
    connect_max_attempts: int = Field(default=5, ge=1)

    def dsn(self) -> str:
        """Build a libpq connection string."""
        if self.uri is not None:
            return self.uri.get_secret_value()
        parts = [
            f"host={self.host}",
            f"port={self.port}",
            f"dbname={self.database}",
            f"user={self.username}",
        ]
        password = self.password.get_secret_value()
        if password:
            parts.append(f"password={password}")
        return " ".join(parts)


class ConsulConfig(BaseModel):
    """Consul HTTP API settings."""

    address: str = "http://localhost:8500"
    kv_prefix: KVPrefix = "pgha"
    token: SecretStr | None = None
    datacenter: str | None = None
    timeout_seconds: float = Field(default=5.0, gt=0)
    ready_max_attempts: int = Field(default=10, ge=1)

    @field_validator("address")
    @classmethod
    def normalize_address(cls, v: str) -> str:
        """Accept bare ``host:port`` and strip trailing slashes."""
        v = v.strip().rstrip("/")
        if not re.match(r"^https?://", v):
            v = f"http://{v}"
        return v


class LoggingConfig(BaseModel):
    level: str = "info"
    format: LogFormat = LogFormat.JSON

    @field_validator("level")
    @classmethod
    def validate_level(cls, v: str) -> str:
        allowed = {"debug", "info", "warning", "error", "critical"}
        if v.lower() not in allowed:
            msg = f"log level '{v}' must be one of {sorted(allowed)}"
            raise ValueError(msg)
        return v.lower()


class HealthConfig(BaseModel):
    enabled: bool = True
    port: int = Field(default=8080, ge=1, le=65535)


class AgentConfig(BaseModel, extra="forbid"):
    """Top-level agent configuration."""

    hostname: str
    check_interval_seconds: int = Field(default=5, ge=1)
    postgres: PostgresConfig = PostgresConfig()
    consul: ConsulConfig = ConsulConfig()
    logging: LoggingConfig = LoggingConfig()
    health: HealthConfig = HealthConfig()

    @field_validator("hostname")
    @classmethod
    def validate_hostname(cls, v: str) -> str:
        v = v.strip()
        if not v:
            msg = "hostname must not be empty"
            raise ValueError(msg)
        if not re.fullmatch(_KEY_SEGMENT, v):
            msg = f"hostname '{v}' may only contain letters, digits, '_', '.' or '-'"
            raise ValueError(msg)
        return v
