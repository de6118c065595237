# Copyright (c) 2025 Kenneth Stott
#
# This source code is licensed under the Business Source License 1.1
# found in the LICENSE file in the root directory of this source tree.
#
# NOTICE: Use of this software for training artificial intelligence or
# machine learning models is strictly prohibited without explicit written
# permission from the copyright holder.

"""Dispatch of generated REST routes through the routing table.

The web framework only knows the route grammar; which objects exist and
what they support is looked up in the gateway's RouteTable per request.
Handlers are synchronous and run in the threadpool.
"""

import base64
import json
import logging
from typing import Any

from fastapi import APIRouter, Depends, Request
from fastapi.concurrency import run_in_threadpool
from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse

from sqlgate.catalog.models import ADVANCED_KIND, ObjectKind
from sqlgate.core.errors import NotFound, ValidationFailure
from sqlgate.server.gateway import Gateway
from sqlgate.server.handlers import ObjectHandler, Operation
from sqlgate.server.schema_emitter import ADVANCED_NAME

logger = logging.getLogger(__name__)

router = APIRouter()

_OBJECT_KINDS = {kind.value: kind for kind in ObjectKind}

# Binary columns (varbinary, image, rowversion) are returned base64 encoded
_ENCODERS = {bytes: lambda b: base64.b64encode(b).decode("ascii")}


def get_gateway(request: Request) -> Gateway:
    """Dependency to get the gateway from app state."""
    return request.app.state.gateway


def _respond(payload: Any, status_code: int = 200) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content=jsonable_encoder(payload, custom_encoder=_ENCODERS),
    )


def _object_kind(kind: str) -> ObjectKind:
    if kind not in _OBJECT_KINDS:
        raise NotFound(f"Unknown object kind '{kind}'")
    return _OBJECT_KINDS[kind]


def _lookup(gateway: Gateway, endpoint: str, kind: str, name: str,
            operation: Operation) -> ObjectHandler:
    handler = gateway.routes.lookup(endpoint, _object_kind(kind).value, name)
    handler.require(operation)
    return handler


async def _read_json(request: Request) -> Any:
    """Parsed JSON body, or None when the body is empty."""
    raw = await request.body()
    if not raw.strip():
        return None
    try:
        return json.loads(raw)
    except ValueError as e:
        raise ValidationFailure(f"Request body is not valid JSON: {e}") from e


@router.get("/{endpoint}")
async def list_endpoint_objects(
    endpoint: str,
    gateway: Gateway = Depends(get_gateway),
) -> JSONResponse:
    """Objects registered for an endpoint, grouped by kind."""
    groups = gateway.routes.grouped(endpoint)
    if not groups:
        raise NotFound(f"No objects found for endpoint '{endpoint}'.")
    return _respond({
        "endpoint": endpoint,
        "tables": groups.get(ObjectKind.TABLE.value, []),
        "views": groups.get(ObjectKind.VIEW.value, []),
        "procedures": groups.get(ObjectKind.PROCEDURE.value, []),
        "functions": groups.get(ObjectKind.FUNCTION.value, []),
        "advanced": ADVANCED_KIND in groups,
    })


@router.post("/{endpoint}/" + ADVANCED_KIND)
async def run_advanced(
    endpoint: str,
    request: Request,
    gateway: Gateway = Depends(get_gateway),
) -> JSONResponse:
    """Execute a read-only query template."""
    handler = gateway.routes.lookup(endpoint, ADVANCED_KIND, ADVANCED_NAME)
    body = await _read_json(request)
    rows = await run_in_threadpool(handler.execute, body)
    return _respond(rows)


@router.get("/{endpoint}/{kind}")
async def list_kind(
    endpoint: str,
    kind: str,
    gateway: Gateway = Depends(get_gateway),
) -> JSONResponse:
    """Sorted names of one kind on an endpoint."""
    return _respond(gateway.routes.names(endpoint, _object_kind(kind).value))


@router.get("/{endpoint}/{kind}/{name}")
async def list_rows(
    endpoint: str,
    kind: str,
    name: str,
    request: Request,
    gateway: Gateway = Depends(get_gateway),
) -> JSONResponse:
    """List rows of a table or view with filters, order and pagination."""
    handler = _lookup(gateway, endpoint, kind, name, Operation.LIST)
    params = dict(request.query_params)
    rows = await run_in_threadpool(handler.list, params)
    return _respond(rows)


@router.post("/{endpoint}/{kind}/{name}")
async def create_or_execute(
    endpoint: str,
    kind: str,
    name: str,
    request: Request,
    gateway: Gateway = Depends(get_gateway),
) -> JSONResponse:
    """Create a table row, or execute a procedure or function."""
    if _object_kind(kind) is ObjectKind.TABLE:
        handler = _lookup(gateway, endpoint, kind, name, Operation.CREATE)
        body = await _read_json(request)
        row = await run_in_threadpool(handler.create, body)
        return _respond(row, status_code=201)

    handler = _lookup(gateway, endpoint, kind, name, Operation.EXECUTE)
    body = await _read_json(request)
    result = await run_in_threadpool(handler.execute, body)
    return _respond(result)


@router.get("/{endpoint}/{kind}/{name}/{key}")
async def get_row(
    endpoint: str,
    kind: str,
    name: str,
    key: str,
    gateway: Gateway = Depends(get_gateway),
) -> JSONResponse:
    """Single row by primary key."""
    handler = _lookup(gateway, endpoint, kind, name, Operation.GET)
    row = await run_in_threadpool(handler.get, key)
    return _respond(row)


@router.put("/{endpoint}/{kind}/{name}/{key}")
async def update_row(
    endpoint: str,
    kind: str,
    name: str,
    key: str,
    request: Request,
    gateway: Gateway = Depends(get_gateway),
) -> JSONResponse:
    """Partial update by primary key."""
    handler = _lookup(gateway, endpoint, kind, name, Operation.UPDATE)
    body = await _read_json(request)
    row = await run_in_threadpool(handler.update, key, body)
    return _respond(row)


@router.delete("/{endpoint}/{kind}/{name}/{key}")
async def delete_row(
    endpoint: str,
    kind: str,
    name: str,
    key: str,
    gateway: Gateway = Depends(get_gateway),
) -> JSONResponse:
    """Delete by primary key, returning the deleted row."""
    handler = _lookup(gateway, endpoint, kind, name, Operation.DELETE)
    row = await run_in_threadpool(handler.delete, key)
    return _respond(row)
