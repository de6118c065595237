# Copyright (c) 2025 Kenneth Stott
#
# This source code is licensed under the Business Source License 1.1
# found in the LICENSE file in the root directory of this source tree.
#
# NOTICE: Use of this software for training artificial intelligence or
# machine learning models is strictly prohibited without explicit written
# permission from the copyright holder.

"""OpenAPI schema fragments for discovered objects.

The ``x-sqlgate-*`` extension fields are the whole contract with the
document assembler: kind, isView, hasPk, procName, procSchema,
functionType and functionReturn.
"""

import base64
from typing import Any

from sqlgate.catalog.models import (
    ADVANCED_KIND,
    CatalogObject,
    FunctionObject,
    ObjectKind,
    ProcedureObject,
    TableObject,
    ViewObject,
)
from sqlgate.catalog.types import map_column, map_parameter
from sqlgate.server.registry import RegistryEntry
from sqlgate.sql.template import DEFAULT_ROW_LIMIT

EXTENSION_PREFIX = "x-sqlgate-"
ADVANCED_NAME = "advanced"


def ext(field: str) -> str:
    return f"{EXTENSION_PREFIX}{field}"


def _object_schema(properties: dict[str, Any], required: list[str], kind: str) -> dict[str, Any]:
    schema: dict[str, Any] = {"type": "object", "properties": properties}
    # OpenAPI 3.0 rejects an empty required list
    if required:
        schema["required"] = required
    schema[ext("kind")] = kind
    return schema


def _table_schema(table: TableObject) -> dict[str, Any]:
    properties = {c.name: map_column(c).schema for c in table.columns}
    required = [c.name for c in table.columns if not c.nullable]
    schema = _object_schema(properties, required, ObjectKind.TABLE.value)
    schema[ext("isView")] = False
    schema[ext("hasPk")] = table.is_writable
    return schema


def _view_schema(view: ViewObject) -> dict[str, Any]:
    properties = {c.name: map_column(c).schema for c in view.columns}
    required = [c.name for c in view.columns if not c.nullable]
    schema = _object_schema(properties, required, ObjectKind.VIEW.value)
    schema[ext("isView")] = True
    schema[ext("hasPk")] = False
    return schema


def _procedure_schema(proc: ProcedureObject) -> dict[str, Any]:
    inputs = proc.input_parameters
    properties = {p.name: map_parameter(p).schema for p in inputs}
    schema = _object_schema(properties, [p.name for p in inputs], ObjectKind.PROCEDURE.value)
    schema[ext("procName")] = proc.name
    schema[ext("procSchema")] = proc.schema
    return schema


def _function_schema(func: FunctionObject) -> dict[str, Any]:
    properties = {p.name: map_parameter(p).schema for p in func.parameters}
    schema = _object_schema(
        properties, [p.name for p in func.parameters], ObjectKind.FUNCTION.value
    )
    schema[ext("functionType")] = func.function_type.value
    if func.function_type.is_scalar and func.return_type is not None:
        schema[ext("functionReturn")] = map_parameter(func.return_type).schema
    return schema


_EMITTERS = {
    ObjectKind.TABLE: _table_schema,
    ObjectKind.VIEW: _view_schema,
    ObjectKind.PROCEDURE: _procedure_schema,
    ObjectKind.FUNCTION: _function_schema,
}


def emit_fragment(endpoint: str, obj: CatalogObject) -> RegistryEntry:
    """Schema fragment for one discovered object."""
    schema = _EMITTERS[obj.kind](obj)
    return RegistryEntry(endpoint, obj.kind.value, obj.name, schema)


def emit_advanced_fragment(endpoint: str, row_limit: int = DEFAULT_ROW_LIMIT) -> RegistryEntry:
    """Request schema for the ad-hoc template capability of an endpoint."""
    example = base64.b64encode(b"SELECT TOP 10 * FROM dbo.Orders WHERE Region = {{region}}").decode()
    schema = {
        "type": "object",
        "properties": {
            "data": {
                "type": "string",
                "format": "byte",
                "description": "Base64 encoded SQL template with {{ name }} placeholders",
            },
            "rowLimit": {
                "type": "integer",
                "minimum": 0,
                "default": row_limit,
                "description": "Maximum number of rows returned",
            },
        },
        "required": ["data"],
        "additionalProperties": {
            "description": "Template variables substituted for matching placeholders",
        },
        "example": {"data": example, "rowLimit": row_limit, "region": "West"},
        ext("kind"): ADVANCED_KIND,
    }
    return RegistryEntry(endpoint, ADVANCED_KIND, ADVANCED_NAME, schema)
