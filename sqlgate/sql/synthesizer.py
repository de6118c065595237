# Copyright (c) 2025 Kenneth Stott
#
# This source code is licensed under the Business Source License 1.1
# found in the LICENSE file in the root directory of this source tree.
#
# NOTICE: Use of this software for training artificial intelligence or
# machine learning models is strictly prohibited without explicit written
# permission from the copyright holder.

"""Parameterized T-SQL for each REST operation.

Write statements pick a strategy from the table's trigger and identity
metadata. SQL Server refuses ``OUTPUT`` without ``INTO`` on tables with
enabled triggers, so those tables reselect the affected row instead:

- identity column: insert, then reselect by ``SCOPE_IDENTITY()``
- primary key supplied in the body: insert, then reselect by that key
- otherwise: capture ``OUTPUT`` into a ``#out`` staging table and select it

Multi-statement strategies are emitted as one batch behind
``SET NOCOUNT ON`` so only the final SELECT produces a result set.
"""

from collections.abc import Mapping
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional, Union

from sqlalchemy.types import Integer

from sqlgate.catalog.models import (
    FunctionObject,
    Parameter,
    ProcedureObject,
    TableObject,
    ViewObject,
)
from sqlgate.catalog.types import map_column, map_parameter, parse_type_descriptor
from sqlgate.core.errors import ValidationFailure
from sqlgate.sql.builder import ColumnSet, SqlBuilder, Statement, qualified_name, quote_ident

STAGING_TABLE = "#out"
RESERVED_QUERY_KEYS = frozenset({"order", "limit", "offset"})

Listable = Union[TableObject, ViewObject]


class WriteStrategy(Enum):
    """How the affected row of a write is returned."""
    OUTPUT = "output"                        # OUTPUT inserted/deleted.* directly
    IDENTITY_RESELECT = "identity_reselect"  # reselect by SCOPE_IDENTITY()
    KEY_RESELECT = "key_reselect"            # reselect by supplied primary key
    STAGING = "staging"                      # OUTPUT ... INTO #out, select #out


@dataclass
class ListQuery:
    """Parsed list request: equality filters, sort and pagination."""
    filters: dict[str, Any] = field(default_factory=dict)
    order: Optional[str] = None
    limit: int = -1
    offset: int = 0

    @classmethod
    def from_query_params(cls, params: Mapping[str, Any]) -> "ListQuery":
        """Parse query parameters.

        ``limit`` defaults to -1 (no cap) and ``offset`` to 0; values that
        are not integers fall back to those defaults. Offset is clamped to 0.
        """
        limit = _parse_int(params.get("limit"), -1)
        offset = max(_parse_int(params.get("offset"), 0), 0)
        filters = {k: v for k, v in params.items() if k not in RESERVED_QUERY_KEYS}
        return cls(filters=filters, order=params.get("order"), limit=limit, offset=offset)


def _parse_int(value: Any, default: int) -> int:
    if value is None:
        return default
    try:
        return int(str(value).strip())
    except ValueError:
        return default


def parse_order(order: Optional[str], columns: ColumnSet, default_column: str) -> tuple[str, str]:
    """Resolve ``col.asc|col.desc`` against the column whitelist.

    Unknown or missing columns fall back to default_column ascending.
    """
    if order:
        column, _, direction = str(order).partition(".")
        if column in columns:
            return column, "DESC" if direction.strip().upper() == "DESC" else "ASC"
    return default_column, "ASC"


def default_sort_column(obj: Listable) -> Optional[str]:
    if isinstance(obj, TableObject) and obj.primary_key:
        return obj.primary_key[0]
    if obj.columns:
        return obj.columns[0].name
    return None


def build_list(obj: Listable, query: ListQuery) -> Statement:
    """SELECT with equality filters, ORDER BY and OFFSET/FETCH pagination."""
    columns = ColumnSet(obj.columns)
    builder = SqlBuilder()

    where = []
    for column in columns:
        if column.name not in query.filters:
            continue
        mapping = map_column(column)
        marker = builder.bind("f", mapping.coerce(query.filters[column.name]), mapping.bind_type)
        where.append(f"{columns.ident(column.name)} = {marker}")

    builder.add(f"SELECT * FROM {qualified_name(obj.schema, obj.name)}")
    if where:
        builder.add("WHERE " + " AND ".join(where))

    default_column = default_sort_column(obj)
    if default_column is None:
        order_sql = "ORDER BY (SELECT NULL)"
    else:
        order_column, direction = parse_order(query.order, columns, default_column)
        order_sql = f"ORDER BY {columns.ident(order_column)} {direction}"
    builder.add(order_sql)

    # OFFSET/FETCH requires ORDER BY, which is always present above
    if query.limit < 0 and query.offset == 0:
        pass
    elif query.limit < 0:
        builder.add(f"OFFSET {builder.bind_named('offset', query.offset, Integer())} ROWS")
    else:
        offset_marker = builder.bind_named("offset", query.offset, Integer())
        limit_marker = builder.bind_named("limit", query.limit, Integer())
        builder.add(f"OFFSET {offset_marker} ROWS FETCH NEXT {limit_marker} ROWS ONLY")

    return builder.build()


def _require_key(table: TableObject) -> str:
    pk = table.single_primary_key
    if pk is None:
        raise ValidationFailure(
            f"{table.qualified_name} has no single-column primary key"
        )
    return pk


def _bind_key(builder: SqlBuilder, table: TableObject, key_value: Any) -> str:
    pk = _require_key(table)
    mapping = map_column(ColumnSet(table.columns).get(pk))
    return builder.bind_named("pk", mapping.coerce(key_value), mapping.bind_type)


def build_get(table: TableObject, key_value: Any) -> Statement:
    """Single-row lookup on the single-column primary key."""
    builder = SqlBuilder()
    pk = _require_key(table)
    marker = _bind_key(builder, table, key_value)
    builder.add(f"SELECT * FROM {qualified_name(table.schema, table.name)}")
    builder.add(f"WHERE {quote_ident(pk)} = {marker}")
    return builder.build()


def choose_create_strategy(table: TableObject, body: Mapping[str, Any]) -> WriteStrategy:
    if not table.has_enabled_triggers:
        return WriteStrategy.OUTPUT
    if table.identity_column:
        return WriteStrategy.IDENTITY_RESELECT
    pk = table.single_primary_key
    if pk is not None and body.get(pk) is not None:
        return WriteStrategy.KEY_RESELECT
    return WriteStrategy.STAGING


def choose_mutation_strategy(table: TableObject) -> WriteStrategy:
    return WriteStrategy.STAGING if table.has_enabled_triggers else WriteStrategy.OUTPUT


def _staging_prelude(builder: SqlBuilder, table: TableObject) -> None:
    """Create an empty #out shaped like the table, without identity."""
    select_list = ", ".join(
        f"t.{quote_ident(c.name)} + 0 AS {quote_ident(c.name)}"
        if c.name == table.identity_column
        else f"t.{quote_ident(c.name)}"
        for c in table.columns
    )
    builder.add(f"IF OBJECT_ID('tempdb..{STAGING_TABLE}') IS NOT NULL DROP TABLE {STAGING_TABLE};")
    builder.add(
        f"SELECT TOP 0 {select_list} INTO {STAGING_TABLE} "
        f"FROM {qualified_name(table.schema, table.name)} AS t WHERE 1 = 0;"
    )


def _staging_epilogue(builder: SqlBuilder) -> None:
    builder.add(f"SELECT * FROM {STAGING_TABLE};")
    builder.add(f"DROP TABLE {STAGING_TABLE};")


def build_create(table: TableObject, body: Mapping[str, Any]) -> Statement:
    """INSERT of the recognised body columns, returning the inserted row."""
    columns = ColumnSet(table.columns)
    target = qualified_name(table.schema, table.name)
    builder = SqlBuilder()

    names = []
    markers = []
    for column in columns.present_in(body):
        mapping = map_column(column)
        names.append(columns.ident(column.name))
        markers.append(builder.bind("v", mapping.coerce(body[column.name]), mapping.bind_type))

    if names:
        column_list = f" ({', '.join(names)})"
        values = f"VALUES ({', '.join(markers)})"
    else:
        column_list = ""
        values = "DEFAULT VALUES"

    strategy = choose_create_strategy(table, body)

    if strategy is WriteStrategy.OUTPUT:
        builder.add(f"INSERT INTO {target}{column_list}")
        builder.add("OUTPUT inserted.*")
        builder.add(values)
        return builder.build()

    builder.add("SET NOCOUNT ON;")

    if strategy is WriteStrategy.IDENTITY_RESELECT:
        builder.add(f"INSERT INTO {target}{column_list} {values};")
        builder.add("DECLARE @id numeric(38,0) = SCOPE_IDENTITY();")
        builder.add(f"SELECT * FROM {target} WHERE {quote_ident(table.identity_column)} = @id;")
        return builder.build()

    if strategy is WriteStrategy.KEY_RESELECT:
        pk = _require_key(table)
        mapping = map_column(columns.get(pk))
        key_marker = builder.bind_named("pk", mapping.coerce(body[pk]), mapping.bind_type)
        builder.add(f"INSERT INTO {target}{column_list} {values};")
        builder.add(f"SELECT * FROM {target} WHERE {quote_ident(pk)} = {key_marker};")
        return builder.build()

    _staging_prelude(builder, table)
    builder.add(f"INSERT INTO {target}{column_list}")
    builder.add(f"OUTPUT inserted.* INTO {STAGING_TABLE}")
    builder.add(f"{values};")
    _staging_epilogue(builder)
    return builder.build()


def build_update(table: TableObject, key_value: Any, body: Mapping[str, Any]) -> Statement:
    """Partial UPDATE by primary key returning the updated row.

    The primary key column is never part of the SET list. A body without
    any updatable column is rejected before reaching the database.
    """
    pk = _require_key(table)
    columns = ColumnSet(table.columns)
    target = qualified_name(table.schema, table.name)
    builder = SqlBuilder()

    sets = []
    for column in columns.present_in(body, exclude=[pk]):
        mapping = map_column(column)
        marker = builder.bind("v", mapping.coerce(body[column.name]), mapping.bind_type)
        sets.append(f"{columns.ident(column.name)} = {marker}")

    if not sets:
        raise ValidationFailure("No updatable fields provided")

    key_marker = _bind_key(builder, table, key_value)
    where = f"WHERE {quote_ident(pk)} = {key_marker}"

    if choose_mutation_strategy(table) is WriteStrategy.OUTPUT:
        builder.add(f"UPDATE {target} SET {', '.join(sets)}")
        builder.add("OUTPUT inserted.*")
        builder.add(where)
        return builder.build()

    builder.add("SET NOCOUNT ON;")
    _staging_prelude(builder, table)
    builder.add(f"UPDATE {target} SET {', '.join(sets)}")
    builder.add(f"OUTPUT inserted.* INTO {STAGING_TABLE}")
    builder.add(f"{where};")
    _staging_epilogue(builder)
    return builder.build()


def build_delete(table: TableObject, key_value: Any) -> Statement:
    """DELETE by primary key returning the deleted row."""
    pk = _require_key(table)
    target = qualified_name(table.schema, table.name)
    builder = SqlBuilder()
    key_marker = _bind_key(builder, table, key_value)
    where = f"WHERE {quote_ident(pk)} = {key_marker}"

    if choose_mutation_strategy(table) is WriteStrategy.OUTPUT:
        builder.add(f"DELETE FROM {target}")
        builder.add("OUTPUT deleted.*")
        builder.add(where)
        return builder.build()

    builder.add("SET NOCOUNT ON;")
    _staging_prelude(builder, table)
    builder.add(f"DELETE FROM {target}")
    builder.add(f"OUTPUT deleted.* INTO {STAGING_TABLE}")
    builder.add(f"{where};")
    _staging_epilogue(builder)
    return builder.build()


def declared_type(parameter: Parameter) -> str:
    """T-SQL type text for DECLARE, from catalog type and size."""
    base, _ = parse_type_descriptor(parameter.type_name)
    length = parameter.max_length
    if base in ("varchar", "nvarchar", "varbinary", "char", "nchar", "binary"):
        if length is None or length < 0:
            return f"{base}(max)"
        if base in ("nvarchar", "nchar"):
            length = length // 2
        return f"{base}({max(length, 1)})"
    if base in ("decimal", "numeric"):
        return f"{base}({parameter.precision or 18}, {parameter.scale or 0})"
    return base


def build_procedure_call(proc: ProcedureObject, body: Mapping[str, Any]) -> Statement:
    """EXEC with named arguments for the input parameters present in body.

    Absent inputs fall back to the procedure's own defaults. Output
    parameters are passed as local variables and never read from body.
    """
    builder = SqlBuilder()
    builder.add("SET NOCOUNT ON;")

    args = []
    for i, parameter in enumerate(proc.parameters):
        if parameter.is_output:
            local = f"@out{i}"
            builder.add(f"DECLARE {local} {declared_type(parameter)};")
            args.append(f"@{parameter.name} = {local} OUTPUT")
            continue
        if parameter.name not in body:
            continue
        mapping = map_parameter(parameter)
        marker = builder.bind("a", mapping.coerce(body[parameter.name]), mapping.bind_type)
        args.append(f"@{parameter.name} = {marker}")

    call = f"EXEC {qualified_name(proc.schema, proc.name)}"
    builder.add(f"{call} {', '.join(args)};" if args else f"{call};")
    return builder.build()


def build_function_call(func: FunctionObject, body: Mapping[str, Any]) -> Statement:
    """Positional call; missing arguments are bound as NULL."""
    builder = SqlBuilder()
    markers = []
    for parameter in func.parameters:
        mapping = map_parameter(parameter)
        markers.append(builder.bind("a", mapping.coerce(body.get(parameter.name)), mapping.bind_type))

    call = f"{qualified_name(func.schema, func.name)}({', '.join(markers)})"
    if func.function_type.is_scalar:
        builder.add(f"SELECT {call} AS value")
    else:
        builder.add(f"SELECT * FROM {call}")
    return builder.build()
