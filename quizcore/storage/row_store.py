"""
Abstract row store for provider settings.

Each provider has exactly one row keyed by its lowercase id. The store
only needs four operations; `upsert_row` must merge the given fields into
the existing row atomically so concurrent saves never interleave partial
field writes.
"""

from __future__ import annotations

import copy
import threading
from typing import Any, Optional, Protocol, runtime_checkable


@runtime_checkable
class RowStore(Protocol):
    """Protocol every provider-settings backend implements."""

    def get_row(self, row_id: str) -> Optional[dict[str, Any]]: ...

    def upsert_row(self, row_id: str, fields: dict[str, Any]) -> dict[str, Any]: ...

    def list_rows(self) -> list[dict[str, Any]]: ...

    def delete_row(self, row_id: str) -> bool: ...


class InMemoryRowStore:
    """
    Process-local RowStore used for tests and local development.

    A single lock serialises every mutation; rows handed out are deep
    copies so callers can never mutate stored state in place.
    """

    key_field = "provider_id"

    def __init__(self, rows: Optional[list[dict[str, Any]]] = None):
        self._rows: dict[str, dict[str, Any]] = {}
        self._lock = threading.Lock()
        for row in rows or []:
            self._rows[row[self.key_field]] = copy.deepcopy(row)

    def get_row(self, row_id: str) -> Optional[dict[str, Any]]:
        with self._lock:
            row = self._rows.get(row_id)
            return copy.deepcopy(row) if row is not None else None

    def upsert_row(self, row_id: str, fields: dict[str, Any]) -> dict[str, Any]:
        """Insert or merge `fields` into the row for `row_id`."""
        with self._lock:
            row = dict(self._rows.get(row_id) or {})
            row.update(copy.deepcopy(fields))
            row[self.key_field] = row_id
            self._rows[row_id] = row
            return copy.deepcopy(row)

    def list_rows(self) -> list[dict[str, Any]]:
        with self._lock:
            return [copy.deepcopy(row) for row in self._rows.values()]

    def delete_row(self, row_id: str) -> bool:
        with self._lock:
            return self._rows.pop(row_id, None) is not None

    def __len__(self) -> int:
        with self._lock:
            return len(self._rows)
