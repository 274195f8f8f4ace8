"""Supabase client wrapper and the Supabase-backed record store."""

import os
from typing import Any, Optional
from supabase import create_client, Client
from supabase.client import ClientOptions
from src.utils.errors import PersistenceUnavailable
import logging

logger = logging.getLogger(__name__)

# Global client instance (singleton pattern)
_client: Optional[Client] = None


def get_supabase_client() -> Client:
    """Get or create Supabase client singleton."""
    global _client

    if _client is None:
        url = os.environ.get("SUPABASE_URL")
        key = os.environ.get("SUPABASE_SERVICE_ROLE_KEY")

        if not url or not key:
            raise PersistenceUnavailable("SUPABASE_URL and SUPABASE_SERVICE_ROLE_KEY must be set")

        options = ClientOptions(
            auto_refresh_token=False,
            persist_session=False,
        )

        _client = create_client(url, key, options)
        logger.info("Supabase client initialized", extra={"url": url})

    return _client


class SupabaseClient:
    """Async context manager for Supabase client."""

    def __init__(self):
        self.client: Optional[Client] = None

    async def __aenter__(self) -> Client:
        self.client = get_supabase_client()
        return self.client

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        if exc_type:
            logger.error(
                "Supabase operation error",
                extra={"error": str(exc_val), "type": exc_type.__name__}
            )
        return False


def _apply_filters(query, filters: Optional[dict[str, Any]]):
    """Add equality filters to a PostgREST query; None matches SQL NULL."""
    for column, value in (filters or {}).items():
        if value is None:
            query = query.is_(column, "null")
        else:
            query = query.eq(column, value)
    return query


class SupabaseStore:
    """Record store over Supabase tables keyed by an ``id`` column.

    Conditional writes are expressed as ``UPDATE ... WHERE id = ? AND col = ?``
    through PostgREST filters; an empty result means another writer changed
    the row first.
    """

    async def get(self, table: str, record_id: str) -> Optional[dict]:
        async with SupabaseClient() as client:
            try:
                result = client.table(table).select("*").eq("id", record_id).execute()
                return result.data[0] if result.data and len(result.data) > 0 else None
            except Exception as e:
                raise PersistenceUnavailable(f"Failed to get {table} {record_id}: {e}") from e

    async def select(
        self,
        table: str,
        filters: Optional[dict[str, Any]] = None,
        order_by: Optional[str] = None,
        descending: bool = False,
    ) -> list[dict]:
        async with SupabaseClient() as client:
            try:
                query = _apply_filters(client.table(table).select("*"), filters)
                if order_by:
                    query = query.order(order_by, desc=descending)
                result = query.execute()
                return result.data if result.data else []
            except Exception as e:
                raise PersistenceUnavailable(f"Failed to select from {table}: {e}") from e

    async def insert(self, table: str, record: dict) -> dict:
        async with SupabaseClient() as client:
            try:
                result = client.table(table).insert(record).execute()
            except Exception as e:
                raise PersistenceUnavailable(f"Failed to insert into {table}: {e}") from e
            if result.data and len(result.data) > 0:
                return result.data[0]
            raise PersistenceUnavailable(f"Failed to insert into {table}: no data returned")

    async def update(self, table: str, record_id: str, patch: dict) -> Optional[dict]:
        return await self.update_where(table, record_id, {}, patch)

    async def update_where(
        self,
        table: str,
        record_id: str,
        expected: dict[str, Any],
        patch: dict,
    ) -> Optional[dict]:
        async with SupabaseClient() as client:
            try:
                query = client.table(table).update(patch).eq("id", record_id)
                result = _apply_filters(query, expected).execute()
                return result.data[0] if result.data and len(result.data) > 0 else None
            except Exception as e:
                raise PersistenceUnavailable(f"Failed to update {table} {record_id}: {e}") from e

