# Copyright (c) 2025 Kenneth Stott
#
# This source code is licensed under the Business Source License 1.1
# found in the LICENSE file in the root directory of this source tree.
#
# NOTICE: Use of this software for training artificial intelligence or
# machine learning models is strictly prohibited without explicit written
# permission from the copyright holder.

"""Tests for endpoint startup, retry and isolation in the gateway."""

import asyncio
from unittest.mock import MagicMock, patch

import pytest
from sqlalchemy.exc import OperationalError

from sqlgate.catalog.models import DiscoveryResult, TableObject, ViewObject
from sqlgate.core.config import Config, EndpointConfig
from sqlgate.core.errors import DiscoveryError
from sqlgate.server.gateway import EndpointStatus, Gateway


def _endpoint(name: str, **kwargs) -> EndpointConfig:
    return EndpointConfig(
        endpoint=name,
        server="localhost",
        database="Products",
        retry_delay_seconds=0,
        **kwargs,
    )


def _unreachable(endpoint_config):
    raise OperationalError("SELECT 1", {}, Exception("Login timeout expired"))


@pytest.fixture
def discoverer(discovery_result):
    """Patch discovery to return the sample catalog for any endpoint."""
    with patch("sqlgate.server.gateway.MetadataDiscoverer") as mock_cls:
        def build(engine, cfg):
            instance = MagicMock()
            instance.discover.return_value = DiscoveryResult(
                endpoint=cfg.endpoint,
                tables=discovery_result.tables,
                views=discovery_result.views,
            )
            return instance

        mock_cls.side_effect = build
        yield mock_cls


class TestConnectAndRegister:
    """A single startup attempt."""

    def test_success_registers_routes(self, discoverer):
        gateway = Gateway(Config(connections=[_endpoint("api")]), engine_factory=lambda cfg: MagicMock())

        assert gateway.connect_and_register("api") is True

        runtime = gateway.runtimes["api"]
        assert runtime.status is EndpointStatus.READY
        assert runtime.attempts == 1
        assert gateway.routes.names("api", "t") == ["AuditLog", "Widgets"]
        assert "api_vw_Sales" in [entry.key for entry in gateway.registry.snapshot()]

    def test_ready_endpoint_is_not_rediscovered(self, discoverer):
        gateway = Gateway(Config(connections=[_endpoint("api")]), engine_factory=lambda cfg: MagicMock())
        gateway.connect_and_register("api")
        assert gateway.connect_and_register("api") is True
        assert discoverer.call_count == 1

    def test_connection_failure_leaves_endpoint_pending(self):
        gateway = Gateway(Config(connections=[_endpoint("api")]), engine_factory=_unreachable)

        assert gateway.connect_and_register("api") is False

        runtime = gateway.runtimes["api"]
        assert runtime.status is EndpointStatus.PENDING
        assert "Login timeout expired" in runtime.last_error
        assert len(gateway.routes) == 0

    def test_discovery_failure_disposes_engine(self, discoverer):
        engine = MagicMock()
        discoverer.side_effect = None
        discoverer.return_value.discover.side_effect = DiscoveryError("api", "permission denied")
        gateway = Gateway(Config(connections=[_endpoint("api")]), engine_factory=lambda cfg: engine)

        assert gateway.connect_and_register("api") is False
        engine.dispose.assert_called_once()


class TestStartupLifecycle:
    """Background tasks with retry."""

    def test_gives_up_after_max_retries(self):
        gateway = Gateway(Config(connections=[_endpoint("api", max_retries=1)]), engine_factory=_unreachable)

        asyncio.run(gateway._run_endpoint("api"))

        runtime = gateway.runtimes["api"]
        assert runtime.status is EndpointStatus.FAILED
        assert runtime.attempts == 2

    def test_retry_until_success(self, discoverer):
        calls = []

        def flaky(cfg):
            calls.append(cfg.endpoint)
            if len(calls) < 3:
                _unreachable(cfg)
            return MagicMock()

        gateway = Gateway(Config(connections=[_endpoint("api")]), engine_factory=flaky)
        asyncio.run(gateway._run_endpoint("api"))

        assert gateway.runtimes["api"].status is EndpointStatus.READY
        assert gateway.runtimes["api"].attempts == 3

    def test_failing_endpoint_does_not_block_others(self, discoverer):
        """One unreachable endpoint never keeps another from serving."""
        def factory(cfg):
            if cfg.endpoint == "down":
                _unreachable(cfg)
            return MagicMock()

        config = Config(connections=[_endpoint("down", max_retries=0), _endpoint("up")])
        gateway = Gateway(config, engine_factory=factory)

        async def run():
            await gateway.start()
            await asyncio.gather(*gateway._tasks.values())
            stats = gateway.get_stats()
            await gateway.stop()
            return stats

        stats = asyncio.run(run())

        assert gateway.runtimes["down"].status is EndpointStatus.FAILED
        assert gateway.runtimes["up"].status is EndpointStatus.READY
        assert stats["ready"] == 1
        assert gateway.routes.names("up", "v") == ["vw_Sales"]

    def test_stop_disposes_engines_and_cancels_pending(self, discoverer):
        engine = MagicMock()
        config = Config(connections=[_endpoint("api")])
        gateway = Gateway(config, engine_factory=lambda cfg: engine)

        async def run():
            await gateway.start()
            await asyncio.gather(*gateway._tasks.values())
            await gateway.stop()

        asyncio.run(run())

        engine.dispose.assert_called_once()
        assert gateway.runtimes["api"].engine is None
        assert gateway._tasks == {}


class TestRegistrationConflict:
    """Endpoint 'reports' table 'daily_sales' already owns key 'reports_daily_sales'."""

    @pytest.fixture
    def gateway(self, executor):
        gateway = Gateway(Config(connections=[_endpoint("reports_daily", max_retries=None)]))
        gateway.register(
            _endpoint("reports"),
            DiscoveryResult(endpoint="reports", tables=[TableObject("dbo", "daily_sales")]),
            executor,
        )
        return gateway

    @pytest.fixture
    def engines(self):
        created = []

        def factory(cfg):
            created.append(MagicMock())
            return created[-1]

        return created, factory

    def test_conflict_disposes_engine_and_fails(self, gateway, engines):
        created, factory = engines
        gateway.engine_factory = factory
        conflicting = DiscoveryResult(endpoint="reports_daily", views=[ViewObject("dbo", "sales")])

        with patch("sqlgate.server.gateway.MetadataDiscoverer") as mock_cls:
            mock_cls.return_value.discover.return_value = conflicting
            assert gateway.connect_and_register("reports_daily") is False
            assert gateway.connect_and_register("reports_daily") is False

        runtime = gateway.runtimes["reports_daily"]
        assert runtime.status is EndpointStatus.FAILED
        assert "reports_daily_sales" in runtime.last_error
        assert runtime.engine is None
        assert len(created) == 1
        created[0].dispose.assert_called_once()
        assert gateway.routes.names("reports_daily") == []
        assert len(gateway.routes) == len(gateway.registry)

    def test_background_task_stops_after_conflict(self, gateway, engines):
        created, factory = engines
        gateway.engine_factory = factory
        conflicting = DiscoveryResult(endpoint="reports_daily", views=[ViewObject("dbo", "sales")])

        with patch("sqlgate.server.gateway.MetadataDiscoverer") as mock_cls:
            mock_cls.return_value.discover.return_value = conflicting
            asyncio.run(gateway._run_endpoint("reports_daily"))

        assert gateway.runtimes["reports_daily"].status is EndpointStatus.FAILED
        assert gateway.runtimes["reports_daily"].attempts == 1
        assert len(created) == 1
