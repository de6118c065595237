# Copyright (c) 2025 Kenneth Stott
#
# This source code is licensed under the Business Source License 1.1
# found in the LICENSE file in the root directory of this source tree.
#
# NOTICE: Use of this software for training artificial intelligence or
# machine learning models is strictly prohibited without explicit written
# permission from the copyright holder.

"""Tests for the schema registry, routing table, registrar and schema fragments."""

import logging
import threading

import pytest

from sqlgate.catalog.models import DiscoveryResult, ProcedureObject, TableObject
from sqlgate.core.errors import NotFound
from sqlgate.server.handlers import (
    AdvancedHandler,
    FunctionHandler,
    Operation,
    ProcedureHandler,
    TableHandler,
    ViewHandler,
)
from sqlgate.server.registrar import register_endpoint
from sqlgate.server.registry import RegistryEntry, RouteTable, SchemaRegistry
from sqlgate.server.schema_emitter import emit_advanced_fragment, emit_fragment


def fragments(registry: SchemaRegistry) -> dict:
    return {entry.key: entry.schema for entry in registry.snapshot()}


class TestSchemaRegistry:
    """Append-only fragment store."""

    def test_merge_and_snapshot(self):
        registry = SchemaRegistry()
        registry.merge([RegistryEntry("api", "t", "Widgets", {"type": "object"})])

        assert fragments(registry) == {"api_Widgets": {"type": "object"}}

    def test_existing_key_rejects_whole_batch(self):
        registry = SchemaRegistry()
        registry.merge([RegistryEntry("api", "t", "Widgets", {})])

        with pytest.raises(ValueError):
            registry.merge([
                RegistryEntry("api", "v", "Other", {}),
                RegistryEntry("api", "t", "Widgets", {}),
            ])
        assert len(registry) == 1

    def test_snapshot_is_isolated(self):
        """Mutating a snapshot never changes the registry."""
        registry = SchemaRegistry()
        registry.merge([RegistryEntry("api", "t", "Widgets", {"properties": {}})])

        snapshot = registry.snapshot()
        snapshot[0].schema["properties"]["injected"] = {}

        assert fragments(registry)["api_Widgets"] == {"properties": {}}

    def test_concurrent_merges_from_endpoints(self):
        """Endpoints merging at the same time all land."""
        registry = SchemaRegistry()

        def merge(endpoint):
            registry.merge([RegistryEntry(endpoint, "t", f"T{i}", {}) for i in range(50)])

        threads = [threading.Thread(target=merge, args=(f"ep{n}",)) for n in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert len(registry) == 400


class TestRouteTable:

    def test_lookup_unknown_is_not_found(self):
        with pytest.raises(NotFound):
            RouteTable().lookup("api", "t", "Nope")

    def test_names_and_grouping(self):
        routes = RouteTable()
        routes.add_all([
            (("api", "t", "b"), object()),
            (("api", "t", "a"), object()),
            (("api", "p", "usp"), object()),
            (("other", "t", "c"), object()),
        ])

        assert routes.names("api", "t") == ["a", "b"]
        assert routes.grouped("api") == {"p": ["usp"], "t": ["a", "b"]}
        assert routes.endpoints() == ["api", "other"]
        assert routes.grouped("missing") == {}

    def test_duplicate_route_rejected(self):
        routes = RouteTable()
        routes.add_all([(("api", "t", "a"), object())])
        with pytest.raises(ValueError):
            routes.add_all([(("api", "t", "a"), object())])


class TestSchemaFragments:
    """Fragment contents and extension fields."""

    def test_table_fragment(self, widgets_table):
        entry = emit_fragment("api", widgets_table)
        schema = entry.schema

        assert entry.key == "api_Widgets"
        assert schema["properties"]["id"] == {"type": "integer"}
        assert schema["properties"]["created"] == {"type": "string", "format": "date-time"}
        assert schema["required"] == ["id", "name"]
        assert schema["x-sqlgate-kind"] == "t"
        assert schema["x-sqlgate-isView"] is False
        assert schema["x-sqlgate-hasPk"] is True

    def test_keyless_table_has_no_pk(self, keyless_table):
        schema = emit_fragment("api", keyless_table).schema
        assert schema["x-sqlgate-hasPk"] is False
        assert "required" not in schema

    def test_view_fragment(self, sales_view):
        schema = emit_fragment("api", sales_view).schema
        assert schema["x-sqlgate-kind"] == "v"
        assert schema["x-sqlgate-isView"] is True
        assert schema["properties"]["Total"] == {"type": "number"}

    def test_procedure_fragment_requires_inputs_only(self, refresh_procedure):
        schema = emit_fragment("api", refresh_procedure).schema
        assert schema["x-sqlgate-kind"] == "p"
        assert schema["x-sqlgate-procName"] == "usp_Refresh"
        assert schema["x-sqlgate-procSchema"] == "dbo"
        assert schema["required"] == ["Region", "Since"]
        assert "RowsAffected" not in schema["properties"]

    def test_scalar_function_fragment(self, tax_function):
        schema = emit_fragment("api", tax_function).schema
        assert schema["x-sqlgate-kind"] == "f"
        assert schema["x-sqlgate-functionType"] == "FN"
        assert schema["x-sqlgate-functionReturn"] == {"type": "number"}
        assert schema["required"] == ["Amount"]

    def test_table_valued_function_has_no_return(self, orders_for_function):
        schema = emit_fragment("api", orders_for_function).schema
        assert schema["x-sqlgate-functionType"] == "IF"
        assert "x-sqlgate-functionReturn" not in schema

    def test_advanced_fragment(self):
        entry = emit_advanced_fragment("api", 250)
        assert entry.key == "api_advanced"
        assert entry.schema["x-sqlgate-kind"] == "a"
        assert entry.schema["required"] == ["data"]
        assert entry.schema["properties"]["rowLimit"]["default"] == 250


class TestRegisterEndpoint:
    """Routing table and registry stay in one-to-one correspondence."""

    def test_every_route_has_one_fragment(self, discovery_result, executor):
        routes, registry = RouteTable(), SchemaRegistry()
        entries = register_endpoint(discovery_result, executor, routes, registry, advanced=True)

        assert len(routes) == len(registry) == len(entries) == 7
        for entry in registry.snapshot():
            routes.lookup(entry.endpoint, entry.kind, entry.name)

    def test_handler_per_kind(self, discovery_result, executor):
        routes, registry = RouteTable(), SchemaRegistry()
        register_endpoint(discovery_result, executor, routes, registry, advanced=True)

        assert isinstance(routes.lookup("api", "t", "Widgets"), TableHandler)
        assert isinstance(routes.lookup("api", "v", "vw_Sales"), ViewHandler)
        assert isinstance(routes.lookup("api", "p", "usp_Refresh"), ProcedureHandler)
        assert isinstance(routes.lookup("api", "f", "fn_Tax"), FunctionHandler)
        assert isinstance(routes.lookup("api", "a", "advanced"), AdvancedHandler)

    def test_operations_follow_primary_key(self, discovery_result, executor):
        routes, registry = RouteTable(), SchemaRegistry()
        register_endpoint(discovery_result, executor, routes, registry)

        writable = routes.lookup("api", "t", "Widgets")
        read_only = routes.lookup("api", "t", "AuditLog")
        assert writable.supports(Operation.DELETE)
        assert read_only.supports(Operation.LIST)
        assert not read_only.supports(Operation.CREATE)
        with pytest.raises(NotFound):
            read_only.require(Operation.GET)

    def test_advanced_disabled_registers_nothing_extra(self, discovery_result, executor):
        routes, registry = RouteTable(), SchemaRegistry()
        register_endpoint(discovery_result, executor, routes, registry)
        assert "api_advanced" not in fragments(registry)
        with pytest.raises(NotFound):
            routes.lookup("api", "a", "advanced")

    def test_name_collision_keeps_first_object(self, widgets_table, executor):
        """A procedure named like a table is skipped, the table wins."""
        result = DiscoveryResult(
            endpoint="api",
            tables=[widgets_table],
            procedures=[ProcedureObject("dbo", "Widgets")],
        )
        routes, registry = RouteTable(), SchemaRegistry()
        register_endpoint(result, executor, routes, registry)

        assert fragments(registry)["api_Widgets"]["x-sqlgate-kind"] == "t"
        with pytest.raises(NotFound):
            routes.lookup("api", "p", "Widgets")

    def test_object_named_advanced_yields_to_capability(self, executor):
        result = DiscoveryResult(endpoint="api", tables=[TableObject("dbo", "advanced")])
        routes, registry = RouteTable(), SchemaRegistry()
        register_endpoint(result, executor, routes, registry, advanced=True)

        assert fragments(registry)["api_advanced"]["x-sqlgate-kind"] == "a"
        assert routes.names("api", "t") == []

    def test_registering_endpoint_twice_fails(self, discovery_result, executor):
        routes, registry = RouteTable(), SchemaRegistry()
        register_endpoint(discovery_result, executor, routes, registry)
        with pytest.raises(ValueError):
            register_endpoint(discovery_result, executor, routes, registry)
        assert len(routes) == len(registry)

    def test_fragment_key_conflict_across_endpoints_writes_nothing(self, executor):
        """Endpoint 'api' table 'x_y' and endpoint 'api_x' table 'y' share a key."""
        routes, registry = RouteTable(), SchemaRegistry()
        register_endpoint(
            DiscoveryResult(endpoint="api", tables=[TableObject("dbo", "x_y")]), executor, routes, registry
        )

        with pytest.raises(ValueError, match="api_x_y"):
            register_endpoint(
                DiscoveryResult(endpoint="api_x", tables=[TableObject("dbo", "y")]), executor, routes, registry
            )

        assert [(e.endpoint, e.name) for e in registry.snapshot()] == [("api", "x_y")]
        assert routes.endpoints() == ["api"]
        with pytest.raises(NotFound):
            routes.lookup("api_x", "t", "y")

    def test_log_counts_registered_objects_only(self, widgets_table, executor, caplog):
        """Objects skipped for a name collision are not counted."""
        result = DiscoveryResult(
            endpoint="api",
            tables=[widgets_table],
            procedures=[ProcedureObject("dbo", "Widgets")],
        )
        logger = logging.getLogger("sqlgate")
        logger.addHandler(caplog.handler)
        try:
            with caplog.at_level(logging.INFO, logger="sqlgate"):
                register_endpoint(result, executor, RouteTable(), SchemaRegistry())
        finally:
            logger.removeHandler(caplog.handler)

        assert "1 tables, 0 views, 0 procedures, 0 functions" in caplog.text
