# Copyright (c) 2025 Kenneth Stott
#
# This source code is licensed under the Business Source License 1.1
# found in the LICENSE file in the root directory of this source tree.
#
# NOTICE: Use of this software for training artificial intelligence or
# machine learning models is strictly prohibited without explicit written
# permission from the copyright holder.

"""Error taxonomy shared by discovery, SQL synthesis and request handling."""


class SqlGateError(Exception):
    """Base class for all sqlgate errors."""

    status_code = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ValidationFailure(SqlGateError):
    """Malformed request, guard rejection or empty update set.

    Raised before any database call is made.
    """

    status_code = 400


class NotFound(SqlGateError):
    """Unknown route target, or a key lookup/mutation that matched no row."""

    status_code = 404


class ExecutionFailure(SqlGateError):
    """The database rejected a synthesized statement."""

    status_code = 500


class DiscoveryError(SqlGateError):
    """Catalog discovery failed for one endpoint."""

    def __init__(self, endpoint: str, message: str):
        super().__init__(f"Discovery failed for endpoint '{endpoint}': {message}")
        self.endpoint = endpoint
