# Copyright (c) 2025 Kenneth Stott
#
# This source code is licensed under the Business Source License 1.1
# found in the LICENSE file in the root directory of this source tree.
#
# NOTICE: Use of this software for training artificial intelligence or
# machine learning models is strictly prohibited without explicit written
# permission from the copyright holder.

"""Discovered catalog objects.

Every object carries an ``ObjectKind`` tag. Downstream code dispatches on
that tag and never re-derives the kind from an object's name.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Optional, Union


class ObjectKind(str, Enum):
    """Kind of a discovered object; the value is its route segment."""
    TABLE = "t"
    VIEW = "v"
    PROCEDURE = "p"
    FUNCTION = "f"

    @property
    def label(self) -> str:
        return _KIND_LABELS[self]


_KIND_LABELS = {
    ObjectKind.TABLE: "table",
    ObjectKind.VIEW: "view",
    ObjectKind.PROCEDURE: "procedure",
    ObjectKind.FUNCTION: "function",
}

ADVANCED_KIND = "a"


class FunctionType(str, Enum):
    """sys.objects type codes for user functions."""
    SCALAR = "FN"
    TABLE_VALUED = "TF"
    INLINE_TABLE_VALUED = "IF"

    @property
    def is_scalar(self) -> bool:
        return self is FunctionType.SCALAR


@dataclass(frozen=True)
class Column:
    """A table or view column, in ordinal order."""
    name: str
    data_type: str
    nullable: bool = True
    max_length: Optional[int] = None
    precision: Optional[int] = None
    scale: Optional[int] = None


@dataclass(frozen=True)
class Parameter:
    """A procedure/function parameter with its ``@`` prefix removed."""
    name: str
    type_name: str
    max_length: Optional[int] = None
    precision: Optional[int] = None
    scale: Optional[int] = None
    is_output: bool = False


@dataclass(frozen=True)
class DiscoveredObject:
    """Common shape of everything discovery returns."""
    schema: str
    name: str

    kind = None  # overridden by each variant

    @property
    def qualified_name(self) -> str:
        return f"{self.schema}.{self.name}"


@dataclass(frozen=True)
class TableObject(DiscoveredObject):
    """A base table with the metadata needed for write strategies."""
    columns: tuple[Column, ...] = ()
    primary_key: tuple[str, ...] = ()
    has_enabled_triggers: bool = False
    identity_column: Optional[str] = None

    kind = ObjectKind.TABLE

    @property
    def single_primary_key(self) -> Optional[str]:
        """The primary key column when the key is exactly one column."""
        if len(self.primary_key) == 1:
            return self.primary_key[0]
        return None

    @property
    def is_writable(self) -> bool:
        return self.single_primary_key is not None


@dataclass(frozen=True)
class ViewObject(DiscoveredObject):
    """A view; always read-only."""
    columns: tuple[Column, ...] = ()

    kind = ObjectKind.VIEW


@dataclass(frozen=True)
class ProcedureObject(DiscoveredObject):
    """A stored procedure and its declared parameters."""
    parameters: tuple[Parameter, ...] = ()

    kind = ObjectKind.PROCEDURE

    @property
    def input_parameters(self) -> tuple[Parameter, ...]:
        return tuple(p for p in self.parameters if not p.is_output)


@dataclass(frozen=True)
class FunctionObject(DiscoveredObject):
    """A scalar or table-valued function."""
    function_type: FunctionType = FunctionType.SCALAR
    parameters: tuple[Parameter, ...] = ()
    return_type: Optional[Parameter] = None

    kind = ObjectKind.FUNCTION


CatalogObject = Union[TableObject, ViewObject, ProcedureObject, FunctionObject]


@dataclass
class DiscoveryResult:
    """Everything discovered for one endpoint, in registration order."""
    endpoint: str
    tables: list[TableObject] = field(default_factory=list)
    views: list[ViewObject] = field(default_factory=list)
    procedures: list[ProcedureObject] = field(default_factory=list)
    functions: list[FunctionObject] = field(default_factory=list)

    def all_objects(self) -> list[CatalogObject]:
        return [*self.tables, *self.views, *self.procedures, *self.functions]

    def counts(self) -> dict[str, int]:
        return {
            "tables": len(self.tables),
            "views": len(self.views),
            "procedures": len(self.procedures),
            "functions": len(self.functions),
        }
