# Copyright (c) 2025 Kenneth Stott
#
# This source code is licensed under the Business Source License 1.1
# found in the LICENSE file in the root directory of this source tree.
#
# NOTICE: Use of this software for training artificial intelligence or
# machine learning models is strictly prohibited without explicit written
# permission from the copyright holder.

"""Ad-hoc read-only query templates.

A template arrives base64 encoded, ``{{ name }}`` placeholders are filled
from request values, and the result is screened against a keyword
denylist. The screen is textual: it blocks known mutating or administrative
keywords, it does not parse or sandbox the statement.
"""

import base64
import binascii
import hashlib
import re
from collections.abc import Mapping
from typing import Any, Optional

from sqlgate.core.errors import ValidationFailure

DEFAULT_ROW_LIMIT = 1000

PLACEHOLDER_PATTERN = re.compile(r"\{\{\s*([A-Za-z0-9_]+)\s*\}\}")
NUMERIC_PATTERN = re.compile(r"^\d+(\.\d+)?$")

DENIED_KEYWORDS = (
    "INSERT", "UPDATE", "DELETE", "MERGE", "ALTER", "DROP", "CREATE",
    "TRUNCATE", "EXEC", "EXECUTE", "GRANT", "REVOKE", "USE",
    "COMMIT", "ROLLBACK", "DBCC", "SHUTDOWN", "KILL",
    "OPENROWSET", "OPENQUERY", "OPENDATASOURCE",
    "SP_CONFIGURE", "SP_EXECUTESQL",
)

_DENYLIST_PATTERN = re.compile(
    r"\b(?:" + "|".join(DENIED_KEYWORDS) + r")\b"
    r"|\bBEGIN\s+TRAN"
    r"|\bSAVE\s+TRAN"
    r"|\bXP_\w*",
    re.IGNORECASE,
)


def decode_template(data: Any) -> str:
    """Decode the base64 ``data`` field to UTF-8 text.

    Whitespace is ignored so line-wrapped output of ``base64`` tools decodes.
    """
    compact = "".join(data.split()) if isinstance(data, str) else ""
    if not compact:
        raise ValidationFailure("Field 'data' (base64) is required")
    try:
        return base64.b64decode(compact, validate=True).decode("utf-8")
    except (binascii.Error, UnicodeDecodeError) as e:
        raise ValidationFailure(f"Field 'data' is not valid base64 UTF-8 text: {e}") from e


def render_value(value: Any) -> str:
    """SQL text for one substitution value.

    None becomes NULL, booleans 1/0, numbers and numeric-looking strings
    are inserted verbatim and everything else as a quoted string with
    quotes doubled. Negative numbers are parenthesised so they can never
    form a ``--`` comment with a preceding minus.
    """
    if value is None:
        return "NULL"
    if isinstance(value, bool):
        return "1" if value else "0"
    if isinstance(value, (int, float)):
        text = str(value)
        return f"({text})" if value < 0 else text
    text = str(value)
    if NUMERIC_PATTERN.match(text):
        return text
    escaped = text.replace("'", "''")
    return f"'{escaped}'"


def substitute(template: str, values: Mapping[str, Any]) -> str:
    """Replace every ``{{ name }}`` with its rendered value.

    Raises:
        ValidationFailure: a placeholder has no corresponding value
    """
    missing = sorted({m.group(1) for m in PLACEHOLDER_PATTERN.finditer(template)} - set(values))
    if missing:
        raise ValidationFailure(f"Missing variable '{missing[0]}'")
    return PLACEHOLDER_PATTERN.sub(lambda m: render_value(values[m.group(1)]), template)


def find_denied_keyword(sql_text: str) -> Optional[str]:
    """First denylisted keyword in sql_text, or None when it looks read-only."""
    match = _DENYLIST_PATTERN.search(sql_text)
    return match.group(0) if match else None


def parse_row_limit(value: Any, default: int = DEFAULT_ROW_LIMIT) -> int:
    """rowLimit must be a non-negative integer; absent means default."""
    if value is None or value == "":
        return default
    if isinstance(value, bool):
        raise ValidationFailure("rowLimit must be a non-negative integer")
    try:
        limit = int(str(value).strip())
    except ValueError as e:
        raise ValidationFailure("rowLimit must be a non-negative integer") from e
    if limit < 0:
        raise ValidationFailure("rowLimit must be a non-negative integer")
    return limit


def template_fingerprint(template: str) -> str:
    return hashlib.sha256(template.encode("utf-8")).hexdigest()[:16]


def prepare(body: Mapping[str, Any], default_row_limit: int = DEFAULT_ROW_LIMIT) -> tuple[str, int, str]:
    """Decode, substitute and screen an advanced request body.

    Body keys double as template variables, so ``data`` and ``rowLimit``
    are available as placeholders too.

    Returns:
        (sql_text, row_limit, fingerprint)
    """
    template = decode_template(body.get("data"))
    sql_text = substitute(template, body)

    denied = find_denied_keyword(sql_text)
    if denied is not None:
        raise ValidationFailure(
            f"Only read-only queries are permitted in advanced mode (found '{denied}')"
        )

    row_limit = parse_row_limit(body.get("rowLimit"), default_row_limit)
    return sql_text, row_limit, template_fingerprint(template)
