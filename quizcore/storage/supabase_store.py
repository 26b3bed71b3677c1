"""
Supabase-backed RowStore for provider settings.

One row per provider in the `provider_settings` table, keyed by
`provider_id`. Upserts go through PostgREST's `on_conflict`, which merges
the supplied columns into the existing row in a single statement.
"""

from __future__ import annotations

import logging
import os
from datetime import datetime, timezone
from typing import Any, Optional

from supabase import Client, create_client

logger = logging.getLogger(__name__)


class SupabaseRowStore:
    """RowStore over a Supabase table."""

    key_field = "provider_id"

    def __init__(
        self,
        table: str = "provider_settings",
        client: Optional[Client] = None,
    ):
        if client is None:
            url = os.environ.get("SUPABASE_URL")
            key = os.environ.get("SUPABASE_SERVICE_KEY")
            if not url or not key:
                raise EnvironmentError(
                    "SUPABASE_URL and SUPABASE_SERVICE_KEY must be set"
                )
            client = create_client(url, key)
        self.client = client
        self.table = table

    def get_row(self, row_id: str) -> Optional[dict[str, Any]]:
        result = (
            self.client.table(self.table)
            .select("*")
            .eq(self.key_field, row_id)
            .limit(1)
            .execute()
        )
        return result.data[0] if result.data else None

    def upsert_row(self, row_id: str, fields: dict[str, Any]) -> dict[str, Any]:
        """Insert or update the provider row in one statement."""
        data = dict(fields)
        data[self.key_field] = row_id
        data.setdefault("updated_at", datetime.now(timezone.utc).isoformat())
        result = (
            self.client.table(self.table)
            .upsert(data, on_conflict=self.key_field)
            .execute()
        )
        logger.debug(
            "provider_row_upserted",
            extra={"provider_id": row_id, "table": self.table},
        )
        return result.data[0] if result.data else data

    def list_rows(self) -> list[dict[str, Any]]:
        return self.client.table(self.table).select("*").execute().data or []

    def delete_row(self, row_id: str) -> bool:
        result = (
            self.client.table(self.table)
            .delete()
            .eq(self.key_field, row_id)
            .execute()
        )
        return bool(result.data)
