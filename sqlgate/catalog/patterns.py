# Copyright (c) 2025 Kenneth Stott
#
# This source code is licensed under the Business Source License 1.1
# found in the LICENSE file in the root directory of this source tree.
#
# NOTICE: Use of this software for training artificial intelligence or
# machine learning models is strictly prohibited without explicit written
# permission from the copyright holder.

"""Include patterns compiled to bound name comparisons."""

from collections.abc import Sequence
from typing import Optional

from sqlalchemy.types import Unicode

from sqlgate.sql.builder import SqlBuilder


def compile_pattern(pattern: str) -> tuple[str, str]:
    """Map one include pattern to (operator, bound value).

    - ``^prefix`` matches names starting with prefix
    - patterns containing ``%`` or ``_`` are LIKE patterns, passed verbatim
    - anything else must equal the name exactly
    """
    if pattern.startswith("^"):
        return "LIKE", pattern[1:] + "%"
    if "%" in pattern or "_" in pattern:
        return "LIKE", pattern
    return "=", pattern


def build_name_match(
    builder: SqlBuilder,
    patterns: Sequence[str],
    column_expr: str,
    tag: str,
) -> Optional[str]:
    """OR-combine one bound comparison per pattern.

    Args:
        builder: Builder that receives the bind parameters
        patterns: Include patterns in configured order
        column_expr: Trusted SQL expression for the object name column
        tag: Prefix for generated parameter names

    Returns:
        Parenthesised clause, or None when patterns is empty (nothing matches).
    """
    clauses = []
    for pattern in patterns:
        operator, value = compile_pattern(pattern)
        marker = builder.bind(tag, value, Unicode())
        clauses.append(f"{column_expr} {operator} {marker}")

    if not clauses:
        return None
    return "(" + " OR ".join(clauses) + ")"
