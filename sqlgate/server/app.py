# Copyright (c) 2025 Kenneth Stott
#
# This source code is licensed under the Business Source License 1.1
# found in the LICENSE file in the root directory of this source tree.
#
# NOTICE: Use of this software for training artificial intelligence or
# machine learning models is strictly prohibited without explicit written
# permission from the copyright holder.

"""FastAPI application factory for the sqlgate API server."""

import logging
from contextlib import asynccontextmanager

# Configure logging for the package
# Only add handler if not already configured, and prevent duplicate logs
_sqlgate_logger = logging.getLogger('sqlgate')
if not any(isinstance(h, logging.StreamHandler) for h in _sqlgate_logger.handlers):
    _console_handler = logging.StreamHandler()
    _console_handler.setFormatter(logging.Formatter(
        '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    ))
    _sqlgate_logger.addHandler(_console_handler)
    _sqlgate_logger.setLevel(logging.INFO)
# Always prevent propagation to root logger to avoid duplicate messages
_sqlgate_logger.propagate = False

from typing import Any, Optional

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.openapi.docs import get_swagger_ui_html
from fastapi.responses import HTMLResponse, JSONResponse

from sqlgate import __version__
from sqlgate.core.config import Config, ServerConfig, config_summary, load_config
from sqlgate.core.errors import SqlGateError
from sqlgate.server.gateway import Gateway
from sqlgate.server.openapi import build_openapi

logger = logging.getLogger(__name__)


def create_app(
    config: Config,
    server_config: Optional[ServerConfig] = None,
    gateway: Optional[Gateway] = None,
) -> FastAPI:
    """Create and configure the FastAPI application.

    Args:
        config: Main sqlgate configuration
        server_config: Server settings; defaults to ``config.server``
        gateway: Pre-built gateway, mainly for tests; one is created from
            config otherwise

    Returns:
        Configured FastAPI application
    """
    server_config = server_config or config.server
    gateway = gateway or Gateway(config)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Manage application lifecycle."""
        try:
            # Startup: discovery runs in the background so the server is
            # reachable while endpoints are still connecting
            await gateway.start()
            logger.info(f"sqlgate API server started on {server_config.base_url}")
            logger.info(f"Swagger UI available at {server_config.base_url}{server_config.docs_path}")
        except Exception as e:
            logger.error(f"FATAL: Server startup failed: {e}")
            logger.exception("Full traceback:")
            raise

        yield

        try:
            logger.info("Shutting down sqlgate API server...")
            await gateway.stop()
            logger.info("sqlgate API server stopped cleanly")
        except Exception as e:
            logger.error(f"Error during shutdown: {e}")
            logger.exception("Shutdown error traceback:")

    # The generated routes are documented by /swagger.json, not FastAPI's own schema
    app = FastAPI(
        title=server_config.title,
        description="REST operations generated from SQL Server catalog discovery",
        version=__version__,
        lifespan=lifespan,
        docs_url=None,
        redoc_url=None,
        openapi_url=None,
    )

    # Store config and gateway on app state
    app.state.config = config
    app.state.server_config = server_config
    app.state.gateway = gateway

    # Add CORS middleware
    app.add_middleware(
        CORSMiddleware,
        allow_origins=server_config.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.middleware("http")
    async def log_requests(request: Request, call_next):
        logger.info(f"{request.method} {request.url.path}")
        response = await call_next(request)
        if response.status_code >= 400:
            logger.warning(f"{request.method} {request.url.path} -> {response.status_code}")
        return response

    # Exception handlers
    @app.exception_handler(SqlGateError)
    async def sqlgate_error_handler(request: Request, exc: SqlGateError) -> JSONResponse:
        """Map the error taxonomy onto status codes with an ``error`` body."""
        if exc.status_code >= 500:
            logger.error(f"[{exc.status_code}] {request.method} {request.url.path}: {exc.message}")
        return JSONResponse(
            status_code=exc.status_code,
            content={"error": exc.message},
        )

    # Health check endpoint
    @app.get("/health")
    async def health() -> dict[str, Any]:
        """Health check endpoint.

        Returns:
            Health status and per-endpoint discovery state
        """
        return {
            "status": "ok",
            "gateway": gateway.get_stats(),
            "config": config_summary(config),
        }

    @app.get("/swagger.json")
    async def swagger_json() -> JSONResponse:
        """OpenAPI document rebuilt from the current registry snapshot."""
        return JSONResponse(build_openapi(gateway.registry.snapshot(), server_config, __version__))

    @app.get(server_config.docs_path, include_in_schema=False)
    async def swagger_ui() -> HTMLResponse:
        return get_swagger_ui_html(
            openapi_url="/swagger.json",
            title=f"{server_config.title} - Swagger UI",
            swagger_ui_parameters={"tagsSorter": "alpha", "operationsSorter": "alpha"},
        )

    # IMPORTANT: the generated routes are /{endpoint}/... wildcards and must be
    # registered after every fixed path above
    from sqlgate.server.routes.objects import router as objects_router

    app.include_router(objects_router, tags=["objects"])

    return app


def get_app() -> FastAPI:
    """Build the app from SQLGATE_CONFIG (or ./config.yaml) for uvicorn."""
    from dotenv import load_dotenv

    load_dotenv()
    try:
        config = load_config()
    except FileNotFoundError as e:
        logger.warning(f"{e}; starting with no endpoints")
        config = Config()
    return create_app(config)
