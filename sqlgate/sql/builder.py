# Copyright (c) 2025 Kenneth Stott
#
# This source code is licensed under the Business Source License 1.1
# found in the LICENSE file in the root directory of this source tree.
#
# NOTICE: Use of this software for training artificial intelligence or
# machine learning models is strictly prohibited without explicit written
# permission from the copyright holder.

"""Small clause builder for parameterized T-SQL batches.

Values only ever enter SQL text as ``:name`` bind markers. Identifiers only
enter it through ``quote_ident``, and column identifiers only after a
``ColumnSet`` whitelist check.
"""

from collections.abc import Iterable
from dataclasses import dataclass
from typing import Any, Optional

from sqlalchemy import bindparam, text
from sqlalchemy.sql.elements import TextClause
from sqlalchemy.types import TypeEngine

from sqlgate.catalog.models import Column
from sqlgate.core.errors import ValidationFailure


def quote_ident(name: str) -> str:
    """Bracket-quote an identifier for T-SQL.

    Closing brackets are doubled; colons are escaped so SQLAlchemy's
    ``text()`` does not read them as bind markers.
    """
    escaped = name.replace("]", "]]").replace(":", "\\:")
    return f"[{escaped}]"


def qualified_name(schema: str, name: str) -> str:
    return f"{quote_ident(schema)}.{quote_ident(name)}"


@dataclass(frozen=True)
class BoundValue:
    """A named bind parameter with an optional SQLAlchemy type."""
    name: str
    value: Any
    type_: Optional[TypeEngine] = None


@dataclass(frozen=True)
class Statement:
    """SQL text plus its typed bind parameters."""
    sql: str
    params: tuple[BoundValue, ...] = ()

    def to_clause(self) -> TextClause:
        """Convert to an executable SQLAlchemy text clause."""
        clause = text(self.sql)
        if self.params:
            clause = clause.bindparams(
                *[bindparam(p.name, p.value, type_=p.type_) for p in self.params]
            )
        return clause

    @property
    def param_values(self) -> dict[str, Any]:
        return {p.name: p.value for p in self.params}


class SqlBuilder:
    """Accumulates SQL lines and bind parameters for a single batch."""

    def __init__(self):
        self._lines: list[str] = []
        self._params: list[BoundValue] = []
        self._counters: dict[str, int] = {}

    def bind(self, prefix: str, value: Any, type_: Optional[TypeEngine] = None) -> str:
        """Register a value and return its ``:marker`` for use in SQL text."""
        index = self._counters.get(prefix, 0)
        self._counters[prefix] = index + 1
        name = f"{prefix}{index}"
        self._params.append(BoundValue(name, value, type_))
        return f":{name}"

    def bind_named(self, name: str, value: Any, type_: Optional[TypeEngine] = None) -> str:
        """Register a value under a fixed name (used once per batch)."""
        if any(p.name == name for p in self._params):
            return f":{name}"
        self._params.append(BoundValue(name, value, type_))
        return f":{name}"

    def add(self, line: str) -> "SqlBuilder":
        self._lines.append(line)
        return self

    def build(self) -> Statement:
        return Statement("\n".join(self._lines), tuple(self._params))


class ColumnSet:
    """Whitelist of an object's known columns, preserving ordinal order."""

    def __init__(self, columns: Iterable[Column]):
        self._columns = list(columns)
        self._by_name = {c.name: c for c in self._columns}

    def __contains__(self, name: object) -> bool:
        return name in self._by_name

    def __iter__(self):
        return iter(self._columns)

    def __len__(self) -> int:
        return len(self._columns)

    @property
    def names(self) -> list[str]:
        return [c.name for c in self._columns]

    def get(self, name: str) -> Column:
        return self._by_name[name]

    def ident(self, name: str) -> str:
        """Quoted identifier for a known column; unknown names are rejected."""
        if name not in self._by_name:
            raise ValidationFailure(f"Unknown column: {name}")
        return quote_ident(name)

    def present_in(self, values: dict[str, Any], exclude: Iterable[str] = ()) -> list[Column]:
        """Columns whose names appear as keys in values, in ordinal order."""
        skip = set(exclude)
        return [c for c in self._columns if c.name in values and c.name not in skip]
