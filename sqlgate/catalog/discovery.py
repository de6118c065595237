# Copyright (c) 2025 Kenneth Stott
#
# This source code is licensed under the Business Source License 1.1
# found in the LICENSE file in the root directory of this source tree.
#
# NOTICE: Use of this software for training artificial intelligence or
# machine learning models is strictly prohibited without explicit written
# permission from the copyright holder.

"""SQL Server catalog discovery for one endpoint."""

import logging
from collections.abc import Sequence
from typing import Any, Optional

from sqlalchemy.engine import Connection, Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.types import Unicode

from sqlgate.catalog.models import (
    Column,
    DiscoveryResult,
    FunctionObject,
    FunctionType,
    Parameter,
    ProcedureObject,
    TableObject,
    ViewObject,
)
from sqlgate.catalog.patterns import build_name_match
from sqlgate.core.config import EndpointConfig
from sqlgate.core.errors import DiscoveryError
from sqlgate.sql.builder import SqlBuilder, Statement

logger = logging.getLogger(__name__)

_COLUMNS_SQL = """
SELECT COLUMN_NAME, DATA_TYPE, IS_NULLABLE, CHARACTER_MAXIMUM_LENGTH,
       NUMERIC_PRECISION, NUMERIC_SCALE
FROM INFORMATION_SCHEMA.COLUMNS
WHERE TABLE_SCHEMA = :schema AND TABLE_NAME = :name
ORDER BY ORDINAL_POSITION"""

_PRIMARY_KEY_SQL = """
SELECT k.COLUMN_NAME
FROM INFORMATION_SCHEMA.TABLE_CONSTRAINTS t
JOIN INFORMATION_SCHEMA.KEY_COLUMN_USAGE k
  ON t.CONSTRAINT_NAME = k.CONSTRAINT_NAME
 AND t.TABLE_SCHEMA = k.TABLE_SCHEMA
 AND t.TABLE_NAME = k.TABLE_NAME
WHERE t.TABLE_SCHEMA = :schema AND t.TABLE_NAME = :name
  AND t.CONSTRAINT_TYPE = 'PRIMARY KEY'
ORDER BY k.ORDINAL_POSITION"""

_ENABLED_TRIGGERS_SQL = """
SELECT COUNT(*) AS cnt
FROM sys.triggers tr
JOIN sys.tables t ON tr.parent_id = t.object_id
WHERE tr.is_disabled = 0
  AND t.name = :name
  AND SCHEMA_NAME(t.schema_id) = :schema"""

_IDENTITY_SQL = """
SELECT c.name AS COLUMN_NAME
FROM sys.identity_columns ic
JOIN sys.columns c ON c.object_id = ic.object_id AND c.column_id = ic.column_id
JOIN sys.tables t ON t.object_id = ic.object_id
WHERE t.name = :name AND SCHEMA_NAME(t.schema_id) = :schema"""

_ROUTINE_PARAMETERS_SQL = """
SELECT REPLACE(par.name, '@', '') AS PARAM_NAME,
       t.name AS TYPE_NAME,
       par.max_length AS MAX_LENGTH,
       par.precision AS PRECISION,
       par.scale AS SCALE,
       par.is_output AS IS_OUTPUT
FROM sys.parameters par
JOIN sys.types t ON par.user_type_id = t.user_type_id
JOIN sys.objects o ON par.object_id = o.object_id
JOIN sys.schemas s ON s.schema_id = o.schema_id
WHERE s.name = :schema AND o.name = :name AND par.parameter_id > 0
ORDER BY par.parameter_id"""

_FUNCTION_RETURN_SQL = """
SELECT t.name AS TYPE_NAME,
       p.max_length AS MAX_LENGTH,
       p.precision AS PRECISION,
       p.scale AS SCALE
FROM sys.parameters p
JOIN sys.types t ON p.user_type_id = t.user_type_id
JOIN sys.objects o ON p.object_id = o.object_id
JOIN sys.schemas s ON s.schema_id = o.schema_id
WHERE s.name = :schema AND o.name = :name AND p.parameter_id = 0"""


def _object_statement(sql: str, schema: str, name: str) -> Statement:
    builder = SqlBuilder()
    builder.bind_named("schema", schema, Unicode())
    builder.bind_named("name", name, Unicode())
    builder.add(sql.strip())
    return builder.build()


def _schema_filter(builder: SqlBuilder, schemas: Sequence[str], column_expr: str) -> Optional[str]:
    if not schemas:
        return None
    markers = [builder.bind("sch", s, Unicode()) for s in schemas]
    return f"{column_expr} IN ({', '.join(markers)})"


def _int_or_none(value: Any) -> Optional[int]:
    if value is None:
        return None
    return int(value)


class MetadataDiscoverer:
    """
    Enumerates and describes the objects an endpoint exposes.

    Runs once per successful connection. Each kind is matched against the
    endpoint's include patterns; an empty pattern list yields no objects of
    that kind. Any catalog error is raised as DiscoveryError for this
    endpoint only.
    """

    def __init__(self, engine: Engine, endpoint_config: EndpointConfig):
        self.engine = engine
        self.config = endpoint_config

    def discover(self) -> DiscoveryResult:
        """Discover and describe all included objects."""
        endpoint = self.config.endpoint
        include = self.config.include
        result = DiscoveryResult(endpoint=endpoint)

        try:
            with self.engine.connect() as conn:
                for schema, name in self._find_tables(conn, include.tables, "BASE TABLE", "tbl"):
                    result.tables.append(self.describe_table(conn, schema, name))

                for schema, name in self._find_tables(conn, include.views, "VIEW", "view"):
                    result.views.append(self.describe_view(conn, schema, name))

                for schema, name in self._find_procedures(conn, include.procedures):
                    result.procedures.append(self.describe_procedure(conn, schema, name))

                for schema, name, ftype in self._find_functions(conn, include.functions):
                    result.functions.append(self.describe_function(conn, schema, name, ftype))
        except SQLAlchemyError as e:
            raise DiscoveryError(endpoint, str(e)) from e

        logger.info(f"Discovered for endpoint '{endpoint}': {result.counts()}")
        return result

    # ------------------------------------------------------------------
    # Enumeration
    # ------------------------------------------------------------------

    def _find_tables(
        self, conn: Connection, patterns: Sequence[str], table_type: str, tag: str
    ) -> list[tuple[str, str]]:
        builder = SqlBuilder()
        match = build_name_match(builder, patterns, "TABLE_NAME", tag)
        if match is None:
            return []

        type_marker = builder.bind_named("table_type", table_type, Unicode())
        builder.add("SELECT TABLE_SCHEMA, TABLE_NAME")
        builder.add("FROM INFORMATION_SCHEMA.TABLES")
        builder.add(f"WHERE TABLE_TYPE = {type_marker} AND {match}")
        schema_clause = _schema_filter(builder, self.config.schemas, "TABLE_SCHEMA")
        if schema_clause:
            builder.add(f"  AND {schema_clause}")
        builder.add("ORDER BY TABLE_SCHEMA, TABLE_NAME")

        rows = self._fetch(conn, builder.build())
        return [(r["TABLE_SCHEMA"], r["TABLE_NAME"]) for r in rows]

    def _find_procedures(self, conn: Connection, patterns: Sequence[str]) -> list[tuple[str, str]]:
        builder = SqlBuilder()
        match = build_name_match(builder, patterns, "p.name", "proc")
        if match is None:
            return []

        builder.add("SELECT s.name AS SCHEMA_NAME, p.name AS PROC_NAME")
        builder.add("FROM sys.procedures p")
        builder.add("JOIN sys.schemas s ON s.schema_id = p.schema_id")
        builder.add(f"WHERE {match}")
        schema_clause = _schema_filter(builder, self.config.schemas, "s.name")
        if schema_clause:
            builder.add(f"  AND {schema_clause}")
        builder.add("ORDER BY s.name, p.name")

        rows = self._fetch(conn, builder.build())
        return [(r["SCHEMA_NAME"], r["PROC_NAME"]) for r in rows]

    def _find_functions(
        self, conn: Connection, patterns: Sequence[str]
    ) -> list[tuple[str, str, FunctionType]]:
        builder = SqlBuilder()
        match = build_name_match(builder, patterns, "o.name", "func")
        if match is None:
            return []

        builder.add("SELECT s.name AS SCHEMA_NAME, o.name AS FUNC_NAME, o.type AS FUNC_TYPE")
        builder.add("FROM sys.objects o")
        builder.add("JOIN sys.schemas s ON s.schema_id = o.schema_id")
        builder.add(f"WHERE o.type IN ('FN', 'TF', 'IF') AND {match}")
        schema_clause = _schema_filter(builder, self.config.schemas, "s.name")
        if schema_clause:
            builder.add(f"  AND {schema_clause}")
        builder.add("ORDER BY s.name, o.name")

        rows = self._fetch(conn, builder.build())
        return [
            (r["SCHEMA_NAME"], r["FUNC_NAME"], FunctionType(str(r["FUNC_TYPE"]).strip()))
            for r in rows
        ]

    # ------------------------------------------------------------------
    # Description
    # ------------------------------------------------------------------

    def describe_table(self, conn: Connection, schema: str, name: str) -> TableObject:
        """Columns, primary key, trigger state and identity column of a table."""
        columns = self._get_columns(conn, schema, name)

        pk_rows = self._fetch(conn, _object_statement(_PRIMARY_KEY_SQL, schema, name))
        primary_key = tuple(r["COLUMN_NAME"] for r in pk_rows)

        trigger_rows = self._fetch(conn, _object_statement(_ENABLED_TRIGGERS_SQL, schema, name))
        has_triggers = bool(trigger_rows and (trigger_rows[0]["cnt"] or 0) > 0)

        identity_rows = self._fetch(conn, _object_statement(_IDENTITY_SQL, schema, name))
        identity = identity_rows[0]["COLUMN_NAME"] if identity_rows else None

        logger.debug(
            f"Table {schema}.{name}: {len(columns)} columns, pk={list(primary_key)}, "
            f"triggers={has_triggers}, identity={identity}"
        )
        return TableObject(
            schema=schema,
            name=name,
            columns=columns,
            primary_key=primary_key,
            has_enabled_triggers=has_triggers,
            identity_column=identity,
        )

    def describe_view(self, conn: Connection, schema: str, name: str) -> ViewObject:
        return ViewObject(schema=schema, name=name, columns=self._get_columns(conn, schema, name))

    def describe_procedure(self, conn: Connection, schema: str, name: str) -> ProcedureObject:
        return ProcedureObject(
            schema=schema,
            name=name,
            parameters=self._get_parameters(conn, schema, name),
        )

    def describe_function(
        self, conn: Connection, schema: str, name: str, function_type: FunctionType
    ) -> FunctionObject:
        ret_rows = self._fetch(conn, _object_statement(_FUNCTION_RETURN_SQL, schema, name))
        return_type = None
        if ret_rows:
            r = ret_rows[0]
            return_type = Parameter(
                name="",
                type_name=r["TYPE_NAME"],
                max_length=_int_or_none(r["MAX_LENGTH"]),
                precision=_int_or_none(r["PRECISION"]),
                scale=_int_or_none(r["SCALE"]),
            )
        return FunctionObject(
            schema=schema,
            name=name,
            function_type=function_type,
            parameters=self._get_parameters(conn, schema, name),
            return_type=return_type,
        )

    def _get_columns(self, conn: Connection, schema: str, name: str) -> tuple[Column, ...]:
        rows = self._fetch(conn, _object_statement(_COLUMNS_SQL, schema, name))
        return tuple(
            Column(
                name=r["COLUMN_NAME"],
                data_type=r["DATA_TYPE"],
                nullable=str(r["IS_NULLABLE"]).upper() != "NO",
                max_length=_int_or_none(r["CHARACTER_MAXIMUM_LENGTH"]),
                precision=_int_or_none(r["NUMERIC_PRECISION"]),
                scale=_int_or_none(r["NUMERIC_SCALE"]),
            )
            for r in rows
        )

    def _get_parameters(self, conn: Connection, schema: str, name: str) -> tuple[Parameter, ...]:
        rows = self._fetch(conn, _object_statement(_ROUTINE_PARAMETERS_SQL, schema, name))
        return tuple(
            Parameter(
                name=r["PARAM_NAME"],
                type_name=r["TYPE_NAME"],
                max_length=_int_or_none(r["MAX_LENGTH"]),
                precision=_int_or_none(r["PRECISION"]),
                scale=_int_or_none(r["SCALE"]),
                is_output=bool(r["IS_OUTPUT"]),
            )
            for r in rows
        )

    @staticmethod
    def _fetch(conn: Connection, statement: Statement) -> list[dict[str, Any]]:
        result = conn.execute(statement.to_clause())
        return [dict(row) for row in result.mappings().all()]
