"""Agent process wiring: startup, scheduling, health, and shutdown."""

from __future__ import annotations

import asyncio
import signal

import structlog

from pgha_stats.agent.cycle import CycleOrchestrator
from pgha_stats.agent.scheduler import PeriodicScheduler
from pgha_stats.config.models import AgentConfig
from pgha_stats.observability.http_health import HealthServer
from pgha_stats.publishing.consul import ConsulKV
from pgha_stats.publishing.publisher import SnapshotPublisher
from pgha_stats.replication.inspector import ReplicationInspector
from pgha_stats.replication.queries import PostgresReplicationQueries

logger = structlog.get_logger()


class Agent:
    """Owns the PostgreSQL connection and Consul client for one node.

    Startup order:
        1. Connect to PostgreSQL (fatal on failure)
        2. Wait for Consul to have a leader (fatal on failure)
        3. Start the health server
        4. Start the periodic cycle
    """

    def __init__(
        self,
        config: AgentConfig,
        queries: PostgresReplicationQueries | None = None,
        consul: ConsulKV | None = None,
    ) -> None:
        self._config = config
        self._queries = queries or PostgresReplicationQueries(config.postgres)
        self._consul = consul or ConsulKV(config.consul)
        self._publisher = SnapshotPublisher(
            self._consul, prefix=config.consul.kv_prefix
        )
        self._orchestrator = CycleOrchestrator(
            ReplicationInspector(self._queries, host=config.hostname),
            self._publisher,
        )
        self._scheduler = PeriodicScheduler(
            self._orchestrator.run_one_cycle,
            interval_seconds=config.check_interval_seconds,
        )
        self._health_server: HealthServer | None = None
        self._shutdown = asyncio.Event()

    @property
    def orchestrator(self) -> CycleOrchestrator:
        return self._orchestrator

    @property
    def scheduler(self) -> PeriodicScheduler:
        return self._scheduler

    def run(self) -> None:
        """Run until SIGINT/SIGTERM (blocking)."""
        asyncio.run(self._run_async())

    async def _run_async(self) -> None:
        await self.start()
        self._install_signal_handlers()
        try:
            await self._shutdown.wait()
        finally:
            await self.shutdown()

    async def start(self) -> None:
        """Connect collaborators and begin scheduling.

        Raises:
            AgentConnectionError: if PostgreSQL or Consul is unreachable.
            HealthServerError: if the health port cannot be bound.
        """
        try:
            await self._queries.connect()
            await self._consul.wait_until_ready()
        except Exception:
            await self._close_clients()
            raise

        try:
            if self._config.health.enabled:
                self._health_server = HealthServer(
                    port=self._config.health.port,
                    status_provider=self._orchestrator.status.as_dict,
                )
                await self._health_server.start()
            await self._scheduler.start()
        except Exception:
            await self.shutdown()
            raise

        logger.info(
            "agent.started",
            hostname=self._config.hostname,
            interval=self._config.check_interval_seconds,
            key=self._publisher.key_for(self._config.hostname),
        )

    def stop(self) -> None:
        """Signal the agent to stop; the in-flight cycle is allowed to finish."""
        self._shutdown.set()

    async def shutdown(self) -> None:
        await self._scheduler.stop()
        if self._health_server is not None:
            await self._health_server.stop()
            self._health_server = None
        await self._close_clients()
        logger.info("agent.stopped", hostname=self._config.hostname)

    async def _close_clients(self) -> None:
        await self._queries.close()
        await self._consul.close()

    def _install_signal_handlers(self) -> None:
        loop = asyncio.get_running_loop()

        def _signal(signum: signal.Signals) -> None:
            logger.info("agent.shutdown_signal", signal=signum.name)
            self.stop()

        for signum in (signal.SIGINT, signal.SIGTERM):
            loop.add_signal_handler(signum, _signal, signum)
