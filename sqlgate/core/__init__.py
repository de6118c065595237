# Copyright (c) 2025 Kenneth Stott
#
# This source code is licensed under the Business Source License 1.1
# found in the LICENSE file in the root directory of this source tree.
#
# NOTICE: Use of this software for training artificial intelligence or
# machine learning models is strictly prohibited without explicit written
# permission from the copyright holder.

"""Configuration and error taxonomy."""

from .config import Config, EndpointConfig, IncludeConfig, ServerConfig, load_config
from .errors import DiscoveryError, ExecutionFailure, NotFound, SqlGateError, ValidationFailure

__all__ = [
    "Config",
    "EndpointConfig",
    "IncludeConfig",
    "ServerConfig",
    "load_config",
    "DiscoveryError",
    "ExecutionFailure",
    "NotFound",
    "SqlGateError",
    "ValidationFailure",
]
