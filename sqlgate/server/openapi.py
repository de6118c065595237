# Copyright (c) 2025 Kenneth Stott
#
# This source code is licensed under the Business Source License 1.1
# found in the LICENSE file in the root directory of this source tree.
#
# NOTICE: Use of this software for training artificial intelligence or
# machine learning models is strictly prohibited without explicit written
# permission from the copyright holder.

"""OpenAPI document assembly.

The document is rebuilt from a registry snapshot on every request; the
functions here are pure and never mutate the snapshot they are given.
"""

from collections.abc import Iterable
from typing import Any

from sqlgate.catalog.models import ADVANCED_KIND, ObjectKind
from sqlgate.core.config import ServerConfig
from sqlgate.server.registry import RegistryEntry
from sqlgate.server.schema_emitter import ext

OPENAPI_VERSION = "3.0.3"

TAGS = [
    {"name": "Tables", "description": "Base tables"},
    {"name": "Views", "description": "Read-only views"},
    {"name": "Procedures", "description": "Stored procedures"},
    {"name": "Functions", "description": "Scalar and table-valued functions"},
    {"name": "Advanced", "description": "Read-only ad-hoc query templates"},
]

_ERROR_SCHEMA = {
    "type": "object",
    "properties": {"error": {"type": "string"}},
}

_LIST_PARAMETERS = [
    {"in": "query", "name": "order", "schema": {"type": "string", "example": "id.asc"}},
    {"in": "query", "name": "limit", "schema": {"type": "integer", "default": -1}},
    {"in": "query", "name": "offset", "schema": {"type": "integer", "default": 0}},
]


def _ref(key: str) -> dict[str, Any]:
    return {"$ref": f"#/components/schemas/{key}"}


def _json_body(key: str) -> dict[str, Any]:
    return {"content": {"application/json": {"schema": _ref(key)}}}


def _rows_response(description: str, key: str) -> dict[str, Any]:
    return {
        "description": description,
        "content": {"application/json": {"schema": {"type": "array", "items": _ref(key)}}},
    }


def _row_response(description: str, key: str) -> dict[str, Any]:
    return {
        "description": description,
        "content": {"application/json": {"schema": _ref(key)}},
    }


_ERRORS = {
    "400": {"description": "Bad Request", "content": {"application/json": {"schema": _ERROR_SCHEMA}}},
    "500": {"description": "Database error", "content": {"application/json": {"schema": _ERROR_SCHEMA}}},
}


def _list_operation(tag: str, entry: RegistryEntry) -> dict[str, Any]:
    filters = [
        {"in": "query", "name": column, "required": False, "schema": schema}
        for column, schema in entry.schema.get("properties", {}).items()
        if column not in ("order", "limit", "offset")
    ]
    return {
        "tags": [tag],
        "summary": f"List {entry.name}",
        "operationId": f"list_{entry.key}",
        "parameters": _LIST_PARAMETERS + filters,
        "responses": {"200": _rows_response("OK", entry.key), **_ERRORS},
    }


def _table_paths(entry: RegistryEntry) -> dict[str, Any]:
    base = f"/{entry.endpoint}/{ObjectKind.TABLE.value}/{entry.name}"
    paths: dict[str, Any] = {base: {"get": _list_operation("Tables", entry)}}
    if entry.schema.get(ext("hasPk")) is not True:
        return paths

    not_found = {"404": {"description": "Not Found"}}
    paths[base]["post"] = {
        "tags": ["Tables"],
        "summary": f"Create {entry.name}",
        "operationId": f"create_{entry.key}",
        "requestBody": _json_body(entry.key),
        "responses": {"201": _row_response("Created", entry.key), **_ERRORS},
    }
    paths[f"{base}/{{id}}"] = {
        "parameters": [{"name": "id", "in": "path", "required": True, "schema": {"type": "string"}}],
        "get": {
            "tags": ["Tables"],
            "summary": f"Get {entry.name} by id",
            "operationId": f"get_{entry.key}",
            "responses": {"200": _row_response("OK", entry.key), **not_found, **_ERRORS},
        },
        "put": {
            "tags": ["Tables"],
            "summary": f"Update {entry.name}",
            "operationId": f"update_{entry.key}",
            "requestBody": _json_body(entry.key),
            "responses": {"200": _row_response("Updated", entry.key), **not_found, **_ERRORS},
        },
        "delete": {
            "tags": ["Tables"],
            "summary": f"Delete {entry.name}",
            "operationId": f"delete_{entry.key}",
            "responses": {"200": _row_response("Deleted", entry.key), **not_found, **_ERRORS},
        },
    }
    return paths


def _view_paths(entry: RegistryEntry) -> dict[str, Any]:
    base = f"/{entry.endpoint}/{ObjectKind.VIEW.value}/{entry.name}"
    return {base: {"get": _list_operation("Views", entry)}}


def _procedure_paths(entry: RegistryEntry) -> dict[str, Any]:
    base = f"/{entry.endpoint}/{ObjectKind.PROCEDURE.value}/{entry.name}"
    return {base: {"post": {
        "tags": ["Procedures"],
        "summary": f"Execute {entry.schema.get(ext('procSchema'), 'dbo')}.{entry.name}",
        "operationId": f"execute_{entry.key}",
        "requestBody": _json_body(entry.key),
        "responses": {"200": {"description": "OK (rows)"}, **_ERRORS},
    }}}


def _function_paths(entry: RegistryEntry) -> dict[str, Any]:
    base = f"/{entry.endpoint}/{ObjectKind.FUNCTION.value}/{entry.name}"
    returns = entry.schema.get(ext("functionReturn"))
    if returns is not None:
        ok = {
            "description": "OK (scalar)",
            "content": {"application/json": {"schema": {
                "type": "object", "properties": {"value": returns},
            }}},
        }
    else:
        ok = {"description": "OK (rows)"}
    return {base: {"post": {
        "tags": ["Functions"],
        "summary": f"Execute {entry.name}",
        "operationId": f"execute_{entry.key}",
        "requestBody": _json_body(entry.key),
        "responses": {"200": ok, **_ERRORS},
    }}}


def _advanced_paths(entry: RegistryEntry) -> dict[str, Any]:
    return {f"/{entry.endpoint}/{ADVANCED_KIND}": {"post": {
        "tags": ["Advanced"],
        "summary": f"Run a read-only query template on {entry.endpoint}",
        "operationId": f"advanced_{entry.endpoint}",
        "requestBody": _json_body(entry.key),
        "responses": {"200": {"description": "OK (rows)"}, **_ERRORS},
    }}}


_PATH_BUILDERS = {
    ObjectKind.TABLE.value: _table_paths,
    ObjectKind.VIEW.value: _view_paths,
    ObjectKind.PROCEDURE.value: _procedure_paths,
    ObjectKind.FUNCTION.value: _function_paths,
    ADVANCED_KIND: _advanced_paths,
}


def build_paths(entries: Iterable[RegistryEntry]) -> dict[str, Any]:
    """Paths for every fragment, classified only by its kind extension."""
    paths: dict[str, Any] = {}
    for entry in entries:
        builder = _PATH_BUILDERS.get(entry.schema.get(ext("kind"), entry.kind))
        if builder is not None:
            paths.update(builder(entry))
    return paths


def build_openapi(entries: Iterable[RegistryEntry], server_config: ServerConfig,
                  version: str = "0.1.0") -> dict[str, Any]:
    """Complete OpenAPI document for a registry snapshot."""
    entries = list(entries)
    return {
        "openapi": OPENAPI_VERSION,
        "info": {
            "title": server_config.title,
            "version": version,
            "description": "REST operations generated from SQL Server catalog discovery",
        },
        "servers": [{"url": server_config.base_url}],
        "tags": TAGS,
        "paths": build_paths(entries),
        "components": {"schemas": {entry.key: entry.schema for entry in entries}},
    }
