"""Cycle orchestrator: one collect-then-publish attempt per tick."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import StrEnum
from typing import Any

import structlog

from pgha_stats.errors import CollectError
from pgha_stats.publishing.publisher import SnapshotPublisher
from pgha_stats.replication.inspector import (
    ReplicationInspector,
    ReplicationSnapshot,
    utc_now,
)

logger = structlog.get_logger()


class CycleState(StrEnum):
    IDLE = "idle"
    COLLECTING = "collecting"
    PUBLISHING = "publishing"
    FAILED = "failed"


@dataclass
class CycleStatus:
    """Outcome bookkeeping across cycles, exposed on the health endpoint."""

    cycles: int = 0
    consecutive_failures: int = 0
    last_snapshot: ReplicationSnapshot | None = None
    last_success_at: datetime | None = None
    last_error: str | None = None
    last_error_stage: str | None = None

    @property
    def healthy(self) -> bool:
        return self.last_success_at is not None and self.consecutive_failures == 0

    def as_dict(self) -> dict[str, Any]:
        snap = self.last_snapshot
        return {
            "status": "ok" if self.healthy else "error",
            "cycles": self.cycles,
            "consecutive_failures": self.consecutive_failures,
            "last_success_at": (
                self.last_success_at.isoformat() if self.last_success_at else None
            ),
            "last_error": self.last_error,
            "last_error_stage": self.last_error_stage,
            "role": snap.role.value if snap else None,
            "xlog": snap.position.high if snap else None,
            "offset": snap.position.low if snap else None,
        }


class CycleOrchestrator:
    """Runs inspector then publisher; never lets a cycle failure escape.

    A failed collect skips publishing, so the store keeps its previous value.
    """

    def __init__(
        self,
        inspector: ReplicationInspector,
        publisher: SnapshotPublisher,
    ) -> None:
        self._inspector = inspector
        self._publisher = publisher
        self._state = CycleState.IDLE
        self._status = CycleStatus()

    @property
    def state(self) -> CycleState:
        return self._state

    @property
    def status(self) -> CycleStatus:
        return self._status

    async def run_one_cycle(self) -> None:
        self._status.cycles += 1
        try:
            self._state = CycleState.COLLECTING
            try:
                snapshot = await self._inspector.collect()
            except CollectError as exc:
                self._fail(exc.stage.value, exc)
                return
            except Exception as exc:
                self._fail("collect", exc)
                return

            self._state = CycleState.PUBLISHING
            try:
                await self._publisher.publish(snapshot)
            except Exception as exc:
                self._fail("publish", exc)
                return

            self._status.last_snapshot = snapshot
            self._status.last_success_at = utc_now()
            self._status.consecutive_failures = 0
            self._status.last_error = None
            self._status.last_error_stage = None
            logger.debug(
                "cycle.published",
                host=snapshot.host,
                role=snapshot.role.value,
                xlog=snapshot.position.high,
                offset=snapshot.position.low,
            )
        finally:
            self._state = CycleState.IDLE

    def _fail(self, stage: str, exc: Exception) -> None:
        self._state = CycleState.FAILED
        self._status.consecutive_failures += 1
        self._status.last_error = str(exc)
        self._status.last_error_stage = stage
        event = "cycle.publish_failed" if stage == "publish" else "cycle.collect_failed"
        logger.warning(
            event,
            host=self._inspector.host,
            stage=stage,
            error=str(exc),
            consecutive_failures=self._status.consecutive_failures,
        )
