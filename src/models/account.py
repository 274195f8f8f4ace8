"""Account model - marketplace users (profiles table) and request actors."""

from enum import Enum
from typing import Optional
from pydantic import BaseModel, ConfigDict, Field


class Role(str, Enum):
    """Account roles."""
    ADMIN = "admin"
    AGENT = "agent"
    CONSUMER = "consumer"


class Account(BaseModel):
    """Marketplace account. Balances change only through the credit ledger."""
    id: str = Field(..., description="Account ID (auth provider user id)")
    email: str = Field(..., description="Email address")
    full_name: Optional[str] = Field(None, description="Display name")
    role: Role = Field(default=Role.CONSUMER, description="Role: admin, agent, consumer")
    credits: int = Field(default=0, ge=0, description="General credit balance")
    listing_credits: int = Field(default=0, ge=0, description="Credits consumed by listing creation")
    boosting_credits: int = Field(default=0, ge=0, description="Credits spent to feature an approved listing")
    created_at: Optional[str] = None
    updated_at: Optional[str] = None


class Actor(BaseModel):
    """Identity and role claim supplied by the authentication provider for one request."""
    model_config = ConfigDict(frozen=True)

    account_id: str = Field(..., min_length=1, description="Acting account ID")
    role: Role = Field(..., description="Role claim")

    @property
    def is_admin(self) -> bool:
        return self.role == Role.ADMIN

    @property
    def is_agent(self) -> bool:
        return self.role == Role.AGENT
