# Copyright (c) 2025 Kenneth Stott
#
# This source code is licensed under the Business Source License 1.1
# found in the LICENSE file in the root directory of this source tree.
#
# NOTICE: Use of this software for training artificial intelligence or
# machine learning models is strictly prohibited without explicit written
# permission from the copyright holder.

"""Catalog type names mapped to bind types and OpenAPI schema types.

The mapping is total: every type name yields a result, unknown names fall
back to unbounded NVARCHAR / ``string``.
"""

import re
from dataclasses import dataclass, field
from datetime import datetime, time
from decimal import Decimal, InvalidOperation
from enum import Enum
from typing import Any, Optional

from sqlalchemy.types import (
    BigInteger,
    Boolean,
    DateTime,
    Float,
    Integer,
    Numeric,
    Time,
    TypeEngine,
    Unicode,
)

from sqlgate.catalog.models import Column, Parameter
from sqlgate.core.errors import ValidationFailure

DEFAULT_DECIMAL_PRECISION = 18
DEFAULT_DECIMAL_SCALE = 4
UUID_TEXT_LENGTH = 50

_DESCRIPTOR_PATTERN = re.compile(r"^\s*([A-Za-z_][A-Za-z0-9_ ]*?)\s*(?:\((.*)\))?\s*$")
_TRUE_VALUES = {"true", "1", "yes", "y", "t"}
_FALSE_VALUES = {"false", "0", "no", "n", "f"}


class TypeCategory(Enum):
    """Coarse classification driving bind type, schema type and coercion."""
    STRING = "string"
    BIGINT = "bigint"
    INTEGER = "integer"
    BOOLEAN = "boolean"
    DECIMAL = "decimal"
    FLOAT = "float"
    DATETIME = "datetime"
    TIME = "time"
    UUID = "uuid"
    OTHER = "other"


@dataclass(frozen=True)
class TypeMapping:
    """Result of mapping one catalog type descriptor."""
    category: TypeCategory
    bind_type: TypeEngine
    schema: dict[str, Any] = field(default_factory=dict)

    def coerce(self, value: Any) -> Any:
        return coerce_value(self.category, value)


def parse_type_descriptor(type_name: Optional[str]) -> tuple[str, list[int | None]]:
    """Split ``decimal(10,2)`` into ("decimal", [10, 2]); ``max`` becomes None."""
    raw = str(type_name or "").strip().lower()
    match = _DESCRIPTOR_PATTERN.match(raw)
    if not match:
        return raw, []

    base = match.group(1).strip()
    args: list[int | None] = []
    if match.group(2):
        for part in match.group(2).split(","):
            part = part.strip()
            if part.isdigit():
                args.append(int(part))
            else:
                args.append(None)
    return base, args


def classify(type_name: Optional[str]) -> TypeCategory:
    """Classify a type name. Order matters: bigint before other int types."""
    t, _ = parse_type_descriptor(type_name)

    if "char" in t or t in ("text", "ntext", "sysname", "xml"):
        return TypeCategory.STRING
    if t in ("timestamp", "rowversion"):
        return TypeCategory.OTHER
    if t == "bigint":
        return TypeCategory.BIGINT
    if "int" in t:
        return TypeCategory.INTEGER
    if t == "bit":
        return TypeCategory.BOOLEAN
    if "decimal" in t or t == "numeric" or "money" in t:
        return TypeCategory.DECIMAL
    if "float" in t or t == "real":
        return TypeCategory.FLOAT
    if t == "time":
        return TypeCategory.TIME
    if "date" in t or "time" in t:
        return TypeCategory.DATETIME
    if t == "uniqueidentifier":
        return TypeCategory.UUID
    return TypeCategory.OTHER


def map_type(
    type_name: Optional[str],
    max_length: Optional[int] = None,
    precision: Optional[int] = None,
    scale: Optional[int] = None,
) -> TypeMapping:
    """Map a catalog type descriptor to bind and schema types.

    Explicit catalog values win over arguments parsed from the descriptor.
    Character types are sized to max_length; a missing, zero or -1 (max)
    length yields an unbounded NVARCHAR. Decimal types default to
    precision 18 / scale 4.
    """
    category = classify(type_name)
    _, args = parse_type_descriptor(type_name)

    if category is TypeCategory.STRING:
        length = max_length if max_length is not None else (args[0] if args else None)
        bound = length if length and length > 0 else None
        return TypeMapping(category, Unicode(bound), {"type": "string"})

    if category is TypeCategory.BIGINT:
        return TypeMapping(category, BigInteger(), {"type": "integer", "format": "int64"})

    if category is TypeCategory.INTEGER:
        return TypeMapping(category, Integer(), {"type": "integer"})

    if category is TypeCategory.BOOLEAN:
        return TypeMapping(category, Boolean(), {"type": "boolean"})

    if category is TypeCategory.DECIMAL:
        p = precision or (args[0] if len(args) > 0 else None) or DEFAULT_DECIMAL_PRECISION
        s = scale if scale is not None else (args[1] if len(args) > 1 else None)
        if s is None:
            s = DEFAULT_DECIMAL_SCALE
        return TypeMapping(category, Numeric(p, s), {"type": "number"})

    if category is TypeCategory.FLOAT:
        return TypeMapping(category, Float(), {"type": "number"})

    if category is TypeCategory.DATETIME:
        return TypeMapping(category, DateTime(), {"type": "string", "format": "date-time"})

    if category is TypeCategory.TIME:
        return TypeMapping(category, Time(), {"type": "string", "format": "time"})

    if category is TypeCategory.UUID:
        return TypeMapping(category, Unicode(UUID_TEXT_LENGTH), {"type": "string", "format": "uuid"})

    return TypeMapping(category, Unicode(None), {"type": "string"})


def map_column(column: Column) -> TypeMapping:
    return map_type(column.data_type, column.max_length, column.precision, column.scale)


def map_parameter(parameter: Parameter) -> TypeMapping:
    """Map a routine parameter.

    sys.parameters reports max_length in bytes, so N-prefixed character
    types are halved to characters.
    """
    length = parameter.max_length
    base, _ = parse_type_descriptor(parameter.type_name)
    if length and length > 0 and base in ("nchar", "nvarchar", "ntext"):
        length = length // 2
    return map_type(parameter.type_name, length, parameter.precision, parameter.scale)


def coerce_value(category: TypeCategory, value: Any) -> Any:
    """Coerce a request value (query string or JSON scalar) for binding.

    Non-string values pass through unchanged apart from bool/number
    normalisation; strings are parsed for numeric, boolean, datetime and time
    categories. Unparseable input raises ValidationFailure.
    """
    if value is None:
        return None

    try:
        if category in (TypeCategory.INTEGER, TypeCategory.BIGINT):
            if isinstance(value, bool):
                return int(value)
            if isinstance(value, float) and value.is_integer():
                return int(value)
            if isinstance(value, str):
                return int(value.strip())
            return value

        if category is TypeCategory.BOOLEAN:
            if isinstance(value, bool):
                return value
            if isinstance(value, (int, float)):
                return bool(value)
            lowered = str(value).strip().lower()
            if lowered in _TRUE_VALUES:
                return True
            if lowered in _FALSE_VALUES:
                return False
            raise ValueError(value)

        if category is TypeCategory.DECIMAL:
            if isinstance(value, bool):
                raise ValueError(value)
            return Decimal(str(value).strip())

        if category is TypeCategory.FLOAT:
            if isinstance(value, str):
                return float(value.strip())
            return value

        if category is TypeCategory.DATETIME:
            if isinstance(value, str):
                return datetime.fromisoformat(value.strip().replace("Z", "+00:00"))
            return value

        if category is TypeCategory.TIME:
            if isinstance(value, str):
                return time.fromisoformat(value.strip())
            return value
    except (ValueError, InvalidOperation) as e:
        raise ValidationFailure(
            f"Invalid {category.value} value: {value!r}"
        ) from e

    if category in (TypeCategory.STRING, TypeCategory.UUID, TypeCategory.OTHER):
        if isinstance(value, (dict, list)):
            raise ValidationFailure(f"Expected a scalar value, got {type(value).__name__}")
        if isinstance(value, bool):
            return str(value).lower()
        return str(value) if not isinstance(value, str) else value

    return value
