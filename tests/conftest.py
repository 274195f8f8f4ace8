"""Shared pytest fixtures and configuration."""

import os
import pytest
from unittest.mock import Mock
from freezegun import freeze_time

# Set test environment variables
os.environ.setdefault("ENVIRONMENT", "test")
os.environ.setdefault("SUPABASE_URL", "https://test.supabase.co")
os.environ.setdefault("SUPABASE_SERVICE_ROLE_KEY", "test-key")
os.environ["STORE_BACKEND"] = "memory"
os.environ.setdefault("LOG_MASK_SENSITIVE", "true")

from src.models.account import Actor, Role
from src.services.credit_ledger import CreditLedger
from src.services.listing_lifecycle import ListingLifecycle
from src.services.memory_store import InMemoryStore
from src.services.store import ACCOUNTS_TABLE, LISTINGS_TABLE, reset_store
from src.utils.config import MarketplaceConfig
from tests.utils.factories import create_account_data, create_listing_attributes, create_listing_record


@pytest.fixture(autouse=True)
def memory_backend():
    """Every test starts with a fresh in-memory store singleton."""
    MarketplaceConfig.reload()
    reset_store()
    yield
    reset_store()


@pytest.fixture
def memory_store():
    """Empty in-memory record store."""
    return InMemoryStore()


@pytest.fixture
def seed_account(memory_store):
    """Insert an account row directly and return it."""
    def _seed(**overrides) -> dict:
        data = create_account_data(**overrides)
        memory_store.tables.setdefault(ACCOUNTS_TABLE, {})[data["id"]] = data
        return data
    return _seed


@pytest.fixture
def seed_listing(memory_store):
    """Insert a listing row directly (bypassing credit consumption) and return it."""
    def _seed(agent_id: str, **overrides) -> dict:
        data = create_listing_record(agent_id, **overrides)
        memory_store.tables.setdefault(LISTINGS_TABLE, {})[data["id"]] = data
        return data
    return _seed


@pytest.fixture
def admin_account(seed_account):
    return seed_account(role="admin", email="admin@propertyai.test", full_name="Site Admin")


@pytest.fixture
def agent_account(seed_account):
    return seed_account(role="agent", listing_credits=3, credits=10)


@pytest.fixture
def consumer_account(seed_account):
    return seed_account(role="consumer")


@pytest.fixture
def admin_actor(admin_account):
    return Actor(account_id=admin_account["id"], role=Role.ADMIN)


@pytest.fixture
def agent_actor(agent_account):
    return Actor(account_id=agent_account["id"], role=Role.AGENT)


@pytest.fixture
def consumer_actor(consumer_account):
    return Actor(account_id=consumer_account["id"], role=Role.CONSUMER)


@pytest.fixture
def ledger(memory_store):
    return CreditLedger(memory_store)


@pytest.fixture
def lifecycle(memory_store, ledger):
    return ListingLifecycle(memory_store, ledger)


@pytest.fixture
def listing_attributes():
    """Valid listing attributes with two images and a couple of amenities."""
    return create_listing_attributes()


@pytest.fixture
def mock_supabase_client():
    """Mock Supabase client for testing."""
    client = Mock()
    client.table = Mock(return_value=Mock())
    return client


@pytest.fixture
def freeze_time_fixture():
    """Fixture for freezing time in tests."""
    with freeze_time("2024-12-09 12:00:00") as frozen_time:
        yield frozen_time
