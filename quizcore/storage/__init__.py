"""
Row store backends for provider settings.

- row_store: RowStore protocol and InMemoryRowStore
- supabase_store: SupabaseRowStore (production)
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from quizcore.storage.row_store import InMemoryRowStore, RowStore

if TYPE_CHECKING:
    from quizcore.config.settings import OrchestratorSettings


def create_row_store(settings: "OrchestratorSettings") -> RowStore:
    """Build the row store configured for this deployment."""
    if settings.row_store.value == "supabase":
        from quizcore.storage.supabase_store import SupabaseRowStore

        return SupabaseRowStore(table=settings.supabase_table)
    return InMemoryRowStore()


__all__ = ["RowStore", "InMemoryRowStore", "create_row_store"]
