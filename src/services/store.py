"""Record store selection."""

from typing import Optional, Union

from src.services.memory_store import InMemoryStore
from src.services.supabase_client import SupabaseStore
from src.utils.config import MarketplaceConfig
from src.utils.logging import get_structured_logger

logger = get_structured_logger(__name__)

# Table names
ACCOUNTS_TABLE = "profiles"
LISTINGS_TABLE = "properties"
TRANSACTIONS_TABLE = "credit_transactions"

RecordStore = Union[SupabaseStore, InMemoryStore]

_store: Optional[RecordStore] = None


def get_store() -> RecordStore:
    """Get or create the configured store singleton."""
    global _store
    if _store is None:
        backend = MarketplaceConfig.STORE_BACKEND
        if backend == "memory":
            _store = InMemoryStore()
        elif backend == "supabase":
            _store = SupabaseStore()
        else:
            raise ValueError(f"Unknown STORE_BACKEND: {backend}")
        logger.info("Record store initialized", store_backend=backend)
    return _store


def reset_store() -> None:
    """Forget the cached store."""
    global _store
    _store = None
