"""Marketplace configuration read from environment variables."""

import os


class MarketplaceConfig:
    """Runtime settings for the credit ledger and listing services."""

    SERVICE_NAME = os.environ.get("SERVICE_NAME", "propertyai-backend")

    # "supabase" in deployed environments, "memory" for local runs and tests
    STORE_BACKEND = os.environ.get("STORE_BACKEND", "supabase").lower()

    # Optimistic-write retries before a balance update is reported as transient failure
    CREDIT_CAS_MAX_ATTEMPTS = int(os.environ.get("CREDIT_CAS_MAX_ATTEMPTS", "5"))

    SYSTEM_ACTOR_ID = os.environ.get("SYSTEM_ACTOR_ID", "system")

    # One listing credit per property, not configurable per deployment
    LISTING_CREDIT_COST = 1
    BOOSTING_CREDIT_COST = 1

    # How long a boosted listing stays featured
    BOOST_DURATION_DAYS = int(os.environ.get("BOOST_DURATION_DAYS", "7"))

    @classmethod
    def reload(cls) -> None:
        """Re-read environment variables (used by tests that monkeypatch the env)."""
        cls.SERVICE_NAME = os.environ.get("SERVICE_NAME", "propertyai-backend")
        cls.STORE_BACKEND = os.environ.get("STORE_BACKEND", "supabase").lower()
        cls.CREDIT_CAS_MAX_ATTEMPTS = int(os.environ.get("CREDIT_CAS_MAX_ATTEMPTS", "5"))
        cls.SYSTEM_ACTOR_ID = os.environ.get("SYSTEM_ACTOR_ID", "system")
        cls.BOOST_DURATION_DAYS = int(os.environ.get("BOOST_DURATION_DAYS", "7"))
