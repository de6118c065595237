# Copyright (c) 2025 Kenneth Stott
#
# This source code is licensed under the Business Source License 1.1
# found in the LICENSE file in the root directory of this source tree.
#
# NOTICE: Use of this software for training artificial intelligence or
# machine learning models is strictly prohibited without explicit written
# permission from the copyright holder.

"""Tests for statement execution on a pooled engine."""

from unittest.mock import MagicMock

import pytest
from sqlalchemy import create_engine, text
from sqlalchemy.exc import OperationalError
from sqlalchemy.pool import StaticPool

from sqlgate.core.errors import ExecutionFailure
from sqlgate.sql.builder import SqlBuilder, Statement
from sqlgate.sql.executor import StatementExecutor


@pytest.fixture
def engine():
    """In-memory database with a small widgets table."""
    engine = create_engine(
        "sqlite://",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    with engine.begin() as conn:
        conn.execute(text("CREATE TABLE widgets (id INTEGER PRIMARY KEY, name TEXT NOT NULL)"))
        conn.execute(text("INSERT INTO widgets (id, name) VALUES (1, 'Gear')"))
    yield engine
    engine.dispose()


class TestFetch:

    def test_rows_as_dicts(self, engine):
        rows = StatementExecutor(engine).fetch(Statement("SELECT 1 AS v"))
        assert rows == [{"v": 1}]

    def test_bound_parameters(self, engine):
        builder = SqlBuilder()
        marker = builder.bind("f", 1)
        builder.add(f"SELECT name FROM widgets WHERE id = {marker}")

        assert StatementExecutor(engine).fetch(builder.build()) == [{"name": "Gear"}]

    def test_commit_persists_write(self, engine):
        executor = StatementExecutor(engine)
        result = executor.fetch(Statement("INSERT INTO widgets (id, name) VALUES (2, 'Cog')"), commit=True)

        assert result == []
        assert executor.fetch(Statement("SELECT COUNT(*) AS n FROM widgets")) == [{"n": 2}]

    def test_database_error_becomes_execution_failure(self, engine):
        with pytest.raises(ExecutionFailure) as exc_info:
            StatementExecutor(engine).fetch(Statement("SELECT * FROM missing_table"))
        assert "missing_table" in exc_info.value.message
        assert "[SQL:" not in exc_info.value.message

    def test_constraint_violation_is_not_committed(self, engine):
        executor = StatementExecutor(engine)
        with pytest.raises(ExecutionFailure):
            executor.fetch(Statement("INSERT INTO widgets (id, name) VALUES (3, NULL)"), commit=True)
        assert executor.fetch(Statement("SELECT COUNT(*) AS n FROM widgets")) == [{"n": 1}]


class TestFetchTemplate:
    """Row-capped template execution and session reset."""

    @staticmethod
    def _mock_engine(rows):
        conn = MagicMock()
        result = MagicMock()
        result.returns_rows = True
        result.mappings.return_value.all.return_value = rows
        conn.exec_driver_sql.return_value = result
        engine = MagicMock()
        engine.connect.return_value.__enter__.return_value = conn
        return engine, conn

    def test_batch_is_capped_and_reset(self):
        engine, conn = self._mock_engine([{"v": 5}])

        rows = StatementExecutor(engine).fetch_template("SELECT 5 AS v", 10)

        assert rows == [{"v": 5}]
        batch = conn.exec_driver_sql.call_args_list[0].args[0]
        assert batch == "SET NOCOUNT ON;\nSET ROWCOUNT 10;\nSELECT 5 AS v"
        assert conn.exec_driver_sql.call_args_list[-1].args[0] == "SET ROWCOUNT 0"
        conn.rollback.assert_called_once()
        conn.commit.assert_not_called()

    def test_failed_template_still_resets(self):
        engine, conn = self._mock_engine([])
        conn.exec_driver_sql.side_effect = [
            OperationalError("batch", {}, Exception("Invalid object name 'nope'")),
            MagicMock(),
        ]

        with pytest.raises(ExecutionFailure, match="Invalid object name"):
            StatementExecutor(engine).fetch_template("SELECT * FROM nope", 5)
        assert conn.exec_driver_sql.call_args_list[-1].args[0] == "SET ROWCOUNT 0"
        conn.invalidate.assert_not_called()

    def test_connection_invalidated_when_reset_fails(self):
        engine, conn = self._mock_engine([{"v": 1}])
        ok = conn.exec_driver_sql.return_value
        conn.exec_driver_sql.side_effect = [ok, OperationalError("reset", {}, Exception("gone"))]

        assert StatementExecutor(engine).fetch_template("SELECT 1 AS v", 1) == [{"v": 1}]
        conn.invalidate.assert_called_once()
