# Copyright (c) 2025 Kenneth Stott
#
# This source code is licensed under the Business Source License 1.1
# found in the LICENSE file in the root directory of this source tree.
#
# NOTICE: Use of this software for training artificial intelligence or
# machine learning models is strictly prohibited without explicit written
# permission from the copyright holder.

"""Runs synthesized statements against an endpoint's SQLAlchemy engine."""

import logging
from typing import Any

from sqlalchemy.engine import CursorResult, Engine
from sqlalchemy.exc import DBAPIError, SQLAlchemyError

from sqlgate.core.errors import ExecutionFailure
from sqlgate.sql.builder import Statement

logger = logging.getLogger(__name__)


def _error_message(e: SQLAlchemyError) -> str:
    """The driver's message when available, without SQLAlchemy's SQL echo."""
    if isinstance(e, DBAPIError) and e.orig is not None:
        return str(e.orig)
    return str(e)


def _rows(result: CursorResult) -> list[dict[str, Any]]:
    if not result.returns_rows:
        return []
    return [dict(row) for row in result.mappings().all()]


class StatementExecutor:
    """
    Executes one batch per call on a pooled connection.

    Every batch is issued as a single round trip so reselect strategies see
    the row they just wrote. Writes commit; reads and templates never do.
    Database errors surface as ExecutionFailure and are not retried.
    """

    def __init__(self, engine: Engine):
        self.engine = engine

    def fetch(self, statement: Statement, commit: bool = False) -> list[dict[str, Any]]:
        """Execute a statement and return the rows of its result set."""
        logger.debug(f"Executing SQL: {statement.sql} params={statement.param_values}")
        try:
            if commit:
                with self.engine.begin() as conn:
                    return _rows(conn.execute(statement.to_clause()))
            with self.engine.connect() as conn:
                return _rows(conn.execute(statement.to_clause()))
        except SQLAlchemyError as e:
            logger.error(f"SQL execution failed: {_error_message(e)}")
            raise ExecutionFailure(_error_message(e)) from e

    def fetch_template(self, sql_text: str, row_limit: int) -> list[dict[str, Any]]:
        """Run an already screened template under a session row cap.

        ``SET ROWCOUNT`` is session scoped, so it is reset on the same
        pooled connection afterwards; a connection that cannot be reset is
        invalidated rather than returned to the pool. Nothing is committed.
        """
        batch = f"SET NOCOUNT ON;\nSET ROWCOUNT {int(row_limit)};\n{sql_text}"
        with self.engine.connect() as conn:
            try:
                return _rows(conn.exec_driver_sql(batch))
            except SQLAlchemyError as e:
                logger.error(f"Advanced query failed: {_error_message(e)}")
                raise ExecutionFailure(_error_message(e)) from e
            finally:
                self._reset_rowcount(conn)

    @staticmethod
    def _reset_rowcount(conn) -> None:
        try:
            conn.rollback()
            conn.exec_driver_sql("SET ROWCOUNT 0")
        except SQLAlchemyError as e:
            logger.warning(f"Could not reset ROWCOUNT, discarding connection: {e}")
            conn.invalidate()
