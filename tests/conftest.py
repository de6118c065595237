# Copyright (c) 2025 Kenneth Stott
#
# This source code is licensed under the Business Source License 1.1
# found in the LICENSE file in the root directory of this source tree.
#
# NOTICE: Use of this software for training artificial intelligence or
# machine learning models is strictly prohibited without explicit written
# permission from the copyright holder.

"""Shared fixtures: sample catalog objects and a recording executor."""

from typing import Any, Callable, Optional

import pytest

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
from sqlgate.sql.builder import Statement


class FakeExecutor:
    """Records statements instead of running them.

    ``respond`` receives each Statement and returns the rows to hand back;
    by default every call returns ``rows``.
    """

    def __init__(self, rows: Optional[list[dict[str, Any]]] = None,
                 respond: Optional[Callable[[Statement], list[dict[str, Any]]]] = None):
        self.rows = rows if rows is not None else []
        self.respond = respond
        self.statements: list[Statement] = []
        self.commits: list[bool] = []
        self.templates: list[tuple[str, int]] = []

    def fetch(self, statement: Statement, commit: bool = False) -> list[dict[str, Any]]:
        self.statements.append(statement)
        self.commits.append(commit)
        if self.respond is not None:
            return self.respond(statement)
        return list(self.rows)

    def fetch_template(self, sql_text: str, row_limit: int) -> list[dict[str, Any]]:
        self.templates.append((sql_text, row_limit))
        return list(self.rows)

    @property
    def last(self) -> Statement:
        return self.statements[-1]


@pytest.fixture(autouse=True)
def clear_env_overrides(monkeypatch):
    """Clear environment variables that would override ServerConfig defaults."""
    monkeypatch.delenv("HOST", raising=False)
    monkeypatch.delenv("PORT", raising=False)
    monkeypatch.delenv("SQLGATE_SCHEME", raising=False)


@pytest.fixture
def widgets_table() -> TableObject:
    """Trigger-free table with an identity primary key."""
    return TableObject(
        schema="dbo",
        name="Widgets",
        columns=(
            Column("id", "int", nullable=False),
            Column("name", "nvarchar", nullable=False, max_length=100),
            Column("price", "decimal", precision=10, scale=2),
            Column("created", "datetime"),
        ),
        primary_key=("id",),
        identity_column="id",
    )


@pytest.fixture
def audited_identity_table() -> TableObject:
    """Trigger-bearing table with an identity primary key."""
    return TableObject(
        schema="dbo",
        name="Orders",
        columns=(
            Column("OrderId", "int", nullable=False),
            Column("Customer", "nvarchar", max_length=50),
        ),
        primary_key=("OrderId",),
        has_enabled_triggers=True,
        identity_column="OrderId",
    )


@pytest.fixture
def audited_keyed_table() -> TableObject:
    """Trigger-bearing table with a natural key and no identity."""
    return TableObject(
        schema="sales",
        name="Regions",
        columns=(
            Column("Code", "char", nullable=False, max_length=3),
            Column("Label", "nvarchar", max_length=50),
        ),
        primary_key=("Code",),
        has_enabled_triggers=True,
    )


@pytest.fixture
def audited_identity_heap() -> TableObject:
    """Trigger-bearing table with an identity column that is not the key."""
    return TableObject(
        schema="dbo",
        name="Events",
        columns=(
            Column("EventId", "uniqueidentifier", nullable=False),
            Column("Seq", "bigint", nullable=False),
            Column("Payload", "nvarchar", max_length=-1),
        ),
        primary_key=("EventId",),
        has_enabled_triggers=True,
        identity_column="Seq",
    )


@pytest.fixture
def keyless_table() -> TableObject:
    """Table without a primary key; read-only."""
    return TableObject(
        schema="dbo",
        name="AuditLog",
        columns=(Column("Message", "nvarchar", max_length=-1),),
    )


@pytest.fixture
def sales_view() -> ViewObject:
    return ViewObject(
        schema="dbo",
        name="vw_Sales",
        columns=(
            Column("Region", "nvarchar", max_length=50),
            Column("Total", "money"),
        ),
    )


@pytest.fixture
def refresh_procedure() -> ProcedureObject:
    return ProcedureObject(
        schema="dbo",
        name="usp_Refresh",
        parameters=(
            Parameter("Region", "nvarchar", max_length=100),
            Parameter("Since", "datetime"),
            Parameter("RowsAffected", "int", is_output=True),
        ),
    )


@pytest.fixture
def tax_function() -> FunctionObject:
    return FunctionObject(
        schema="dbo",
        name="fn_Tax",
        function_type=FunctionType.SCALAR,
        parameters=(Parameter("Amount", "decimal", precision=10, scale=2),),
        return_type=Parameter("", "decimal", precision=10, scale=2),
    )


@pytest.fixture
def orders_for_function() -> FunctionObject:
    return FunctionObject(
        schema="dbo",
        name="fn_OrdersFor",
        function_type=FunctionType.INLINE_TABLE_VALUED,
        parameters=(Parameter("Customer", "nvarchar", max_length=100),),
    )


@pytest.fixture
def discovery_result(widgets_table, keyless_table, sales_view, refresh_procedure,
                     tax_function, orders_for_function) -> DiscoveryResult:
    return DiscoveryResult(
        endpoint="api",
        tables=[widgets_table, keyless_table],
        views=[sales_view],
        procedures=[refresh_procedure],
        functions=[tax_function, orders_for_function],
    )


@pytest.fixture
def executor() -> FakeExecutor:
    """Recording executor returning no rows until ``rows`` is set."""
    return FakeExecutor()
