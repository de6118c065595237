# Copyright (c) 2025 Kenneth Stott
#
# This source code is licensed under the Business Source License 1.1
# found in the LICENSE file in the root directory of this source tree.
#
# NOTICE: Use of this software for training artificial intelligence or
# machine learning models is strictly prohibited without explicit written
# permission from the copyright holder.

"""Per-endpoint connection, discovery and registration lifecycle."""

import asyncio
import logging
import threading
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable, Optional

from sqlalchemy import create_engine, text
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError

from sqlgate.catalog.discovery import MetadataDiscoverer
from sqlgate.catalog.models import DiscoveryResult
from sqlgate.core.config import Config, EndpointConfig
from sqlgate.core.errors import DiscoveryError
from sqlgate.server.registrar import register_endpoint
from sqlgate.server.registry import RegistryEntry, RouteTable, SchemaRegistry
from sqlgate.sql.executor import StatementExecutor

logger = logging.getLogger(__name__)


class EndpointStatus(str, Enum):
    """Lifecycle state of one configured endpoint."""
    PENDING = "pending"
    CONNECTING = "connecting"
    READY = "ready"
    FAILED = "failed"  # retries exhausted


@dataclass
class EndpointRuntime:
    """Runtime state for one endpoint."""
    config: EndpointConfig
    status: EndpointStatus = EndpointStatus.PENDING
    attempts: int = 0
    engine: Optional[Engine] = None
    discovery: Optional[DiscoveryResult] = None
    last_error: Optional[str] = None
    ready_at: Optional[datetime] = None
    fragments: list[RegistryEntry] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "endpoint": self.config.endpoint,
            "status": self.status.value,
            "attempts": self.attempts,
            "last_error": self.last_error,
            "ready_at": self.ready_at.isoformat() if self.ready_at else None,
            "objects": self.discovery.counts() if self.discovery else None,
        }


def connect_engine(endpoint_config: EndpointConfig) -> Engine:
    """Create a pooled engine for an endpoint and check it with ``SELECT 1``.

    Raises:
        SQLAlchemyError: the database cannot be reached
    """
    engine = create_engine(
        endpoint_config.get_connection_uri(),
        pool_size=endpoint_config.pool_size,
        pool_pre_ping=True,
    )
    try:
        with engine.connect() as conn:
            conn.execute(text("SELECT 1"))
    except SQLAlchemyError:
        engine.dispose()
        raise
    return engine


class Gateway:
    """Owns the routing table, schema registry and endpoint runtimes.

    Each endpoint connects and is discovered independently in a background
    task; a failure is retried after ``retry_delay_seconds`` and never
    affects other endpoints. Routes and fragments for an endpoint appear
    all at once when its discovery succeeds.
    """

    def __init__(
        self,
        config: Config,
        engine_factory: Callable[[EndpointConfig], Engine] = connect_engine,
    ):
        self.config = config
        self.engine_factory = engine_factory
        self.routes = RouteTable()
        self.registry = SchemaRegistry()
        self.runtimes: dict[str, EndpointRuntime] = {
            c.endpoint: EndpointRuntime(config=c) for c in config.connections
        }
        self._tasks: dict[str, asyncio.Task] = {}
        self._lock = threading.Lock()

    def register(
        self,
        endpoint_config: EndpointConfig,
        result: DiscoveryResult,
        executor: StatementExecutor,
    ) -> list[RegistryEntry]:
        """Register a discovery result for an endpoint.

        Raises:
            ValueError: the endpoint is already registered
        """
        entries = register_endpoint(
            result,
            executor,
            self.routes,
            self.registry,
            advanced=endpoint_config.advanced,
            advanced_row_limit=endpoint_config.advanced_row_limit,
        )
        with self._lock:
            runtime = self.runtimes.setdefault(
                endpoint_config.endpoint, EndpointRuntime(config=endpoint_config)
            )
            runtime.discovery = result
            runtime.fragments = entries
            runtime.status = EndpointStatus.READY
            runtime.ready_at = datetime.now(timezone.utc)
            runtime.last_error = None
        return entries

    def discover(self, endpoint_config: EndpointConfig) -> tuple[Engine, DiscoveryResult]:
        """Connect and run discovery once, without registering anything.

        Raises:
            DiscoveryError: connecting or any catalog query failed
        """
        logger.info(f"[{endpoint_config.endpoint}] Connecting to {endpoint_config.describe_target()}")
        try:
            engine = self.engine_factory(endpoint_config)
        except SQLAlchemyError as e:
            raise DiscoveryError(endpoint_config.endpoint, f"connection failed: {e}") from e

        try:
            result = MetadataDiscoverer(engine, endpoint_config).discover()
        except DiscoveryError:
            engine.dispose()
            raise
        return engine, result

    def connect_and_register(self, endpoint_name: str) -> bool:
        """One connect, discover and register attempt for an endpoint.

        Returns:
            True when the endpoint is ready, False when the attempt failed
        """
        runtime = self.runtimes[endpoint_name]
        if runtime.status is EndpointStatus.READY:
            return True
        if runtime.status is EndpointStatus.FAILED:
            return False

        with self._lock:
            runtime.attempts += 1
            runtime.status = EndpointStatus.CONNECTING

        try:
            engine, result = self.discover(runtime.config)
        except DiscoveryError as e:
            logger.error(f"[{endpoint_name}] Attempt {runtime.attempts}: {e.message}")
            with self._lock:
                runtime.last_error = e.message
                runtime.status = EndpointStatus.PENDING
            return False

        try:
            self.register(runtime.config, result, StatementExecutor(engine))
        except ValueError as e:
            # A key conflict repeats on every attempt
            engine.dispose()
            logger.error(f"[{endpoint_name}] Registration failed, not retrying: {e}")
            with self._lock:
                runtime.last_error = str(e)
                runtime.status = EndpointStatus.FAILED
            return False
        except Exception:
            engine.dispose()
            raise

        runtime.engine = engine
        logger.info(f"[{endpoint_name}] Ready after {runtime.attempts} attempt(s)")
        return True

    async def _run_endpoint(self, endpoint_name: str) -> None:
        runtime = self.runtimes[endpoint_name]
        cfg = runtime.config
        while True:
            try:
                if await asyncio.to_thread(self.connect_and_register, endpoint_name):
                    return
                if runtime.status is EndpointStatus.FAILED:
                    return
            except Exception as e:
                logger.error(f"[{endpoint_name}] Unexpected error during startup: {e}")
                logger.exception("Startup error traceback:")
                runtime.last_error = str(e)
                runtime.status = EndpointStatus.PENDING

            if cfg.max_retries is not None and runtime.attempts > cfg.max_retries:
                runtime.status = EndpointStatus.FAILED
                logger.error(f"[{endpoint_name}] Giving up after {runtime.attempts} attempt(s)")
                return

            logger.info(f"[{endpoint_name}] Retrying in {cfg.retry_delay_seconds:g}s")
            await asyncio.sleep(cfg.retry_delay_seconds)

    async def start(self) -> None:
        """Start one background discovery task per configured endpoint."""
        for name in self.runtimes:
            if name not in self._tasks:
                self._tasks[name] = asyncio.create_task(self._run_endpoint(name))
        logger.info(f"Started discovery for {len(self._tasks)} endpoint(s)")

    async def stop(self) -> None:
        """Cancel pending discovery tasks and dispose every engine."""
        for task in self._tasks.values():
            task.cancel()
        for task in self._tasks.values():
            try:
                await task
            except asyncio.CancelledError:
                pass
        self._tasks.clear()

        for runtime in self.runtimes.values():
            if runtime.engine is not None:
                runtime.engine.dispose()
                runtime.engine = None
        logger.info("Gateway stopped")

    def get_stats(self) -> dict[str, Any]:
        with self._lock:
            runtimes = [r.to_dict() for r in self.runtimes.values()]
        return {
            "endpoints": runtimes,
            "ready": sum(1 for r in runtimes if r["status"] == EndpointStatus.READY.value),
            "routes": len(self.routes),
            "serving": self.routes.endpoints(),
        }
