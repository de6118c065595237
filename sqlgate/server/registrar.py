# Copyright (c) 2025 Kenneth Stott
#
# This source code is licensed under the Business Source License 1.1
# found in the LICENSE file in the root directory of this source tree.
#
# NOTICE: Use of this software for training artificial intelligence or
# machine learning models is strictly prohibited without explicit written
# permission from the copyright holder.

"""Turns a discovery result into routing-table entries and schema fragments."""

import logging
from collections import Counter
from typing import Any

from sqlgate.catalog.models import (
    ADVANCED_KIND,
    CatalogObject,
    DiscoveryResult,
    ObjectKind,
)
from sqlgate.server.handlers import (
    AdvancedHandler,
    FunctionHandler,
    ObjectHandler,
    ProcedureHandler,
    TableHandler,
    ViewHandler,
)
from sqlgate.server.registry import RegistryEntry, RouteTable, SchemaRegistry
from sqlgate.server.schema_emitter import (
    ADVANCED_NAME,
    emit_advanced_fragment,
    emit_fragment,
)
from sqlgate.sql.executor import StatementExecutor
from sqlgate.sql.template import DEFAULT_ROW_LIMIT

logger = logging.getLogger(__name__)

_HANDLERS = {
    ObjectKind.TABLE: TableHandler,
    ObjectKind.VIEW: ViewHandler,
    ObjectKind.PROCEDURE: ProcedureHandler,
    ObjectKind.FUNCTION: FunctionHandler,
}


def build_handler(obj: CatalogObject, executor: StatementExecutor) -> ObjectHandler:
    return _HANDLERS[obj.kind](obj, executor)


def register_endpoint(
    result: DiscoveryResult,
    executor: StatementExecutor,
    routes: RouteTable,
    registry: SchemaRegistry,
    advanced: bool = False,
    advanced_row_limit: int = DEFAULT_ROW_LIMIT,
) -> list[RegistryEntry]:
    """Register every discovered object of one endpoint.

    Each object gets exactly one handler and one schema fragment. Fragment
    keys only carry the object name, so when two objects share a name the
    first one discovered (tables, views, procedures, functions) is kept and
    the rest are skipped. With ``advanced`` enabled the name ``advanced`` is
    reserved for the template capability.

    Handlers and fragments are built first. Fragments are merged before
    any route is written: route keys are unique whenever fragment keys are,
    so a rejected merge leaves both structures untouched.

    Returns:
        The registered fragments, in registration order
    """
    endpoint = result.endpoint
    pending_routes: list[tuple[tuple[str, str, str], Any]] = []
    entries: list[RegistryEntry] = []
    taken: dict[str, str] = {}

    if advanced:
        taken[ADVANCED_NAME] = ADVANCED_KIND

    for obj in result.all_objects():
        if obj.name in taken:
            logger.warning(
                f"[{endpoint}] Skipping {obj.kind.label} {obj.qualified_name}: "
                f"name already used by a '{taken[obj.name]}' object"
            )
            continue
        taken[obj.name] = obj.kind.value
        pending_routes.append(((endpoint, obj.kind.value, obj.name), build_handler(obj, executor)))
        entries.append(emit_fragment(endpoint, obj))

    if advanced:
        handler = AdvancedHandler(endpoint, executor, advanced_row_limit)
        pending_routes.append(((endpoint, ADVANCED_KIND, ADVANCED_NAME), handler))
        entries.append(emit_advanced_fragment(endpoint, advanced_row_limit))

    registry.merge(entries)
    routes.add_all(pending_routes)

    counts = Counter(entry.kind for entry in entries)
    logger.info(
        f"[{endpoint}] Registered {len(entries)} object(s): "
        f"{counts[ObjectKind.TABLE.value]} tables, {counts[ObjectKind.VIEW.value]} views, "
        f"{counts[ObjectKind.PROCEDURE.value]} procedures, {counts[ObjectKind.FUNCTION.value]} functions"
        + (", advanced enabled" if advanced else "")
    )
    return entries
