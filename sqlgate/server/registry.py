# Copyright (c) 2025 Kenneth Stott
#
# This source code is licensed under the Business Source License 1.1
# found in the LICENSE file in the root directory of this source tree.
#
# NOTICE: Use of this software for training artificial intelligence or
# machine learning models is strictly prohibited without explicit written
# permission from the copyright holder.

"""Append-only registry of schema fragments and the routing table.

Both structures are written once per endpoint, after discovery completes,
and read by every request. Readers take snapshots; nothing is rewritten
in place.
"""

import copy
import logging
import threading
from collections.abc import Iterable
from dataclasses import dataclass, field
from typing import Any, Optional

from sqlgate.core.errors import NotFound

logger = logging.getLogger(__name__)


def fragment_key(endpoint: str, name: str) -> str:
    """Registry key for an object's schema fragment."""
    return f"{endpoint}_{name}"


@dataclass(frozen=True)
class RegistryEntry:
    """One schema fragment together with the object it describes."""
    endpoint: str
    kind: str
    name: str
    schema: dict[str, Any] = field(default_factory=dict)

    @property
    def key(self) -> str:
        return fragment_key(self.endpoint, self.name)


class SchemaRegistry:
    """Thread-safe, append-only store of schema fragments.

    Fragments are keyed by ``{endpoint}_{name}``. A key is written once;
    merging a batch containing an existing key rejects the whole batch.
    """

    def __init__(self):
        self._entries: dict[str, RegistryEntry] = {}
        self._lock = threading.Lock()

    def merge(self, entries: Iterable[RegistryEntry]) -> None:
        """Insert a batch of fragments atomically.

        Raises:
            ValueError: a key is already registered or repeated in the batch
        """
        batch = list(entries)
        with self._lock:
            seen: set[str] = set()
            for entry in batch:
                if entry.key in self._entries or entry.key in seen:
                    raise ValueError(f"Schema fragment already registered: {entry.key}")
                seen.add(entry.key)
            for entry in batch:
                self._entries[entry.key] = entry
        logger.debug(f"Registered {len(batch)} schema fragment(s)")

    def snapshot(self) -> list[RegistryEntry]:
        """Deep copy of every entry in insertion order."""
        with self._lock:
            entries = list(self._entries.values())
        return [
            RegistryEntry(e.endpoint, e.kind, e.name, copy.deepcopy(e.schema))
            for e in entries
        ]

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)


class RouteTable:
    """Routing table ``(endpoint, kind, name) -> handler``."""

    def __init__(self):
        self._routes: dict[tuple[str, str, str], Any] = {}
        self._lock = threading.Lock()

    def add_all(self, routes: Iterable[tuple[tuple[str, str, str], Any]]) -> None:
        """Register a batch of handlers atomically.

        Raises:
            ValueError: a route key is already registered
        """
        batch = list(routes)
        with self._lock:
            keys = [key for key, _ in batch]
            duplicates = [k for k in keys if k in self._routes]
            if duplicates or len(set(keys)) != len(keys):
                raise ValueError(f"Route already registered: {duplicates or keys}")
            for key, handler in batch:
                self._routes[key] = handler

    def lookup(self, endpoint: str, kind: str, name: str) -> Any:
        """The handler for a route key.

        Raises:
            NotFound: nothing is registered under that key
        """
        with self._lock:
            handler = self._routes.get((endpoint, kind, name))
        if handler is None:
            raise NotFound(f"No {kind} object '{name}' on endpoint '{endpoint}'")
        return handler

    def names(self, endpoint: str, kind: Optional[str] = None) -> list[str]:
        """Sorted object names registered for an endpoint, optionally by kind."""
        with self._lock:
            keys = list(self._routes)
        return sorted(
            name for (ep, k, name) in keys
            if ep == endpoint and (kind is None or k == kind)
        )

    def grouped(self, endpoint: str) -> dict[str, list[str]]:
        """``{kind: [names]}`` for one endpoint; empty when nothing is registered."""
        with self._lock:
            keys = list(self._routes)
        groups: dict[str, list[str]] = {}
        for ep, kind, name in keys:
            if ep == endpoint:
                groups.setdefault(kind, []).append(name)
        return {kind: sorted(names) for kind, names in sorted(groups.items())}

    def endpoints(self) -> list[str]:
        with self._lock:
            return sorted({ep for ep, _, _ in self._routes})

    def __len__(self) -> int:
        with self._lock:
            return len(self._routes)
