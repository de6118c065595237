# Copyright (c) 2025 Kenneth Stott
#
# This source code is licensed under the Business Source License 1.1
# found in the LICENSE file in the root directory of this source tree.
#
# NOTICE: Use of this software for training artificial intelligence or
# machine learning models is strictly prohibited without explicit written
# permission from the copyright holder.

"""sqlgate - REST and OpenAPI over a discovered SQL Server catalog.

Submodules:
- core: Configuration and the error taxonomy
- catalog: Pattern matching, metadata discovery and type mapping
- sql: Statement building, synthesis, templates and execution
- server: FastAPI app, gateway, routing table and schema registry
"""

__version__ = "0.1.0"

from sqlgate.catalog.models import (
    Column,
    DiscoveryResult,
    FunctionObject,
    FunctionType,
    ObjectKind,
    Parameter,
    ProcedureObject,
    TableObject,
    ViewObject,
)
from sqlgate.core.config import Config, EndpointConfig, IncludeConfig, ServerConfig, load_config
from sqlgate.core.errors import (
    DiscoveryError,
    ExecutionFailure,
    NotFound,
    SqlGateError,
    ValidationFailure,
)

__all__ = [
    "__version__",
    # Catalog
    "Column",
    "DiscoveryResult",
    "FunctionObject",
    "FunctionType",
    "ObjectKind",
    "Parameter",
    "ProcedureObject",
    "TableObject",
    "ViewObject",
    # Config
    "Config",
    "EndpointConfig",
    "IncludeConfig",
    "ServerConfig",
    "load_config",
    # Errors
    "DiscoveryError",
    "ExecutionFailure",
    "NotFound",
    "SqlGateError",
    "ValidationFailure",
]
