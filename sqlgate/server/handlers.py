# Copyright (c) 2025 Kenneth Stott
#
# This source code is licensed under the Business Source License 1.1
# found in the LICENSE file in the root directory of this source tree.
#
# NOTICE: Use of this software for training artificial intelligence or
# machine learning models is strictly prohibited without explicit written
# permission from the copyright holder.

"""Request handlers, one per registered object.

Handlers are plain synchronous objects: they synthesize a statement, run it
through a StatementExecutor and shape the rows for the response. They know
nothing about HTTP beyond raising the error taxonomy in ``core.errors``.
"""

import logging
from collections.abc import Mapping
from enum import Enum
from typing import Any, Optional

from sqlgate.catalog.models import (
    FunctionObject,
    ProcedureObject,
    TableObject,
    ViewObject,
)
from sqlgate.core.errors import NotFound, ValidationFailure
from sqlgate.sql import synthesizer, template
from sqlgate.sql.executor import StatementExecutor

logger = logging.getLogger(__name__)

Row = dict[str, Any]


class Operation(str, Enum):
    """Operations a handler may expose."""
    LIST = "list"
    GET = "get"
    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"
    EXECUTE = "execute"


def require_object_body(body: Any) -> Mapping[str, Any]:
    """Request bodies must be JSON objects; a missing body counts as empty."""
    if body is None:
        return {}
    if not isinstance(body, Mapping):
        raise ValidationFailure("Request body must be a JSON object")
    return body


def _first_or_not_found(rows: list[Row], what: str) -> Row:
    if not rows:
        raise NotFound(f"{what} not found")
    return rows[0]


class ObjectHandler:
    """Base handler: tracks the supported operations."""

    operations: frozenset[Operation] = frozenset()

    def __init__(self, executor: StatementExecutor):
        self.executor = executor

    def supports(self, operation: Operation) -> bool:
        return operation in self.operations

    def require(self, operation: Operation) -> None:
        """Raises NotFound when the operation is not exposed for this object."""
        if not self.supports(operation):
            raise NotFound(f"Operation '{operation.value}' is not available here")


class ViewHandler(ObjectHandler):
    operations = frozenset({Operation.LIST})

    def __init__(self, view: ViewObject, executor: StatementExecutor):
        super().__init__(executor)
        self.obj = view

    def list(self, params: Mapping[str, Any]) -> list[Row]:
        query = synthesizer.ListQuery.from_query_params(params)
        return self.executor.fetch(synthesizer.build_list(self.obj, query))


class TableHandler(ObjectHandler):
    """List for every table; single-row CRUD only with a single-column key."""

    def __init__(self, table: TableObject, executor: StatementExecutor):
        super().__init__(executor)
        self.obj = table
        if table.is_writable:
            self.operations = frozenset({
                Operation.LIST, Operation.GET, Operation.CREATE,
                Operation.UPDATE, Operation.DELETE,
            })
        else:
            self.operations = frozenset({Operation.LIST})

    def list(self, params: Mapping[str, Any]) -> list[Row]:
        query = synthesizer.ListQuery.from_query_params(params)
        return self.executor.fetch(synthesizer.build_list(self.obj, query))

    def get(self, key: Any) -> Row:
        rows = self.executor.fetch(synthesizer.build_get(self.obj, key))
        return _first_or_not_found(rows, f"{self.obj.name} '{key}'")

    def create(self, body: Any) -> Optional[Row]:
        body = require_object_body(body)
        rows = self.executor.fetch(synthesizer.build_create(self.obj, body), commit=True)
        return rows[0] if rows else None

    def update(self, key: Any, body: Any) -> Row:
        body = require_object_body(body)
        rows = self.executor.fetch(synthesizer.build_update(self.obj, key, body), commit=True)
        return _first_or_not_found(rows, f"{self.obj.name} '{key}'")

    def delete(self, key: Any) -> Row:
        rows = self.executor.fetch(synthesizer.build_delete(self.obj, key), commit=True)
        return _first_or_not_found(rows, f"{self.obj.name} '{key}'")


class ProcedureHandler(ObjectHandler):
    operations = frozenset({Operation.EXECUTE})

    def __init__(self, proc: ProcedureObject, executor: StatementExecutor):
        super().__init__(executor)
        self.obj = proc

    def execute(self, body: Any) -> list[Row]:
        # procedures may write, so the batch is committed
        statement = synthesizer.build_procedure_call(self.obj, require_object_body(body))
        return self.executor.fetch(statement, commit=True)


class FunctionHandler(ObjectHandler):
    operations = frozenset({Operation.EXECUTE})

    def __init__(self, func: FunctionObject, executor: StatementExecutor):
        super().__init__(executor)
        self.obj = func

    def execute(self, body: Any) -> Any:
        """Scalar functions return one ``{"value": ...}`` row, others a row list."""
        statement = synthesizer.build_function_call(self.obj, require_object_body(body))
        rows = self.executor.fetch(statement)
        if self.obj.function_type.is_scalar:
            return rows[0] if rows else {}
        return rows


class AdvancedHandler(ObjectHandler):
    """Runs screened ad-hoc read-only templates for one endpoint."""

    operations = frozenset({Operation.EXECUTE})

    def __init__(self, endpoint: str, executor: StatementExecutor,
                 row_limit: int = template.DEFAULT_ROW_LIMIT):
        super().__init__(executor)
        self.endpoint = endpoint
        self.row_limit = row_limit

    def execute(self, body: Any) -> list[Row]:
        sql_text, row_limit, fingerprint = template.prepare(
            require_object_body(body), self.row_limit
        )
        preview = " ".join(sql_text.split())[:120]
        logger.info(
            f"[ADVANCED] endpoint={self.endpoint} template={fingerprint} "
            f"rowLimit={row_limit} sql={preview}"
        )
        return self.executor.fetch_template(sql_text, row_limit)
