"""In-process record store for local development and tests."""

import asyncio
import copy
from typing import Any, Optional

from src.utils.errors import PersistenceUnavailable
from src.utils.logging import get_structured_logger
from src.utils.timestamps import utc_now_iso

logger = get_structured_logger(__name__)


class InMemoryStore:
    """Dict-backed store honouring the same contract as ``SupabaseStore``.

    Reads yield to the event loop before returning so concurrent callers
    interleave the way they would against a remote database. Writes are
    serialized by a single lock, which makes ``update_where`` a true
    compare-and-swap.
    """

    def __init__(self):
        self.tables: dict[str, dict[str, dict]] = {}
        self._lock = asyncio.Lock()
        self.fail_next: dict[str, int] = {}

    def _table(self, table: str) -> dict[str, dict]:
        return self.tables.setdefault(table, {})

    def fail_on(self, operation: str, times: int = 1) -> None:
        """Make the next ``times`` calls of ``operation`` raise PersistenceUnavailable."""
        self.fail_next[operation] = times

    def _maybe_fail(self, operation: str, table: str) -> None:
        remaining = self.fail_next.get(operation, 0)
        if remaining > 0:
            self.fail_next[operation] = remaining - 1
            raise PersistenceUnavailable(f"Simulated {operation} failure on {table}")

    @staticmethod
    def _matches(row: dict, filters: Optional[dict[str, Any]]) -> bool:
        return all(row.get(column) == value for column, value in (filters or {}).items())

    async def get(self, table: str, record_id: str) -> Optional[dict]:
        self._maybe_fail("get", table)
        await asyncio.sleep(0)
        row = self._table(table).get(record_id)
        return copy.deepcopy(row) if row is not None else None

    async def select(
        self,
        table: str,
        filters: Optional[dict[str, Any]] = None,
        order_by: Optional[str] = None,
        descending: bool = False,
    ) -> list[dict]:
        self._maybe_fail("select", table)
        await asyncio.sleep(0)
        rows = [copy.deepcopy(row) for row in self._table(table).values() if self._matches(row, filters)]
        if order_by:
            rows.sort(key=lambda row: row.get(order_by) or "", reverse=descending)
        return rows

    async def insert(self, table: str, record: dict) -> dict:
        async with self._lock:
            self._maybe_fail("insert", table)
            if "id" not in record:
                raise PersistenceUnavailable(f"Insert into {table} requires an id")
            rows = self._table(table)
            if record["id"] in rows:
                raise PersistenceUnavailable(f"Duplicate key {record['id']} in {table}")
            row = copy.deepcopy(record)
            row.setdefault("created_at", utc_now_iso())
            row.setdefault("updated_at", row["created_at"])
            rows[row["id"]] = row
            logger.debug("Row inserted", table=table, record_id=row["id"])
            return copy.deepcopy(row)

    async def update(self, table: str, record_id: str, patch: dict) -> Optional[dict]:
        return await self.update_where(table, record_id, {}, patch)

    async def update_where(
        self,
        table: str,
        record_id: str,
        expected: dict[str, Any],
        patch: dict,
    ) -> Optional[dict]:
        async with self._lock:
            self._maybe_fail("update", table)
            row = self._table(table).get(record_id)
            if row is None or not self._matches(row, expected):
                return None
            row.update(copy.deepcopy(patch))
            if "updated_at" not in patch:
                row["updated_at"] = utc_now_iso()
            return copy.deepcopy(row)
