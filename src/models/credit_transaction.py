"""Credit transaction models - append-only audit trail of balance changes."""

from enum import Enum
from typing import Optional
from pydantic import BaseModel, Field


class CreditType(str, Enum):
    """Which balance a transaction touched."""
    GENERAL = "general"
    LISTING = "listing"
    BOOSTING = "boosting"


class TransactionAction(str, Enum):
    """Transaction action types."""
    CREDIT_ADD = "credit_add"
    CREDIT_DEDUCT = "credit_deduct"
    LISTING_CREDIT_ADD = "listing_credit_add"
    LISTING_CREDIT_DEDUCT = "listing_credit_deduct"
    PROPERTY_POSTED = "property_posted"
    PROPERTY_POSTING_REFUND = "property_posting_refund"
    BOOSTING_CREDIT_ADD = "boosting_credit_add"
    BOOSTING_CREDIT_DEDUCT = "boosting_credit_deduct"
    PROPERTY_BOOSTED = "property_boosted"
    PROPERTY_BOOST_REFUND = "property_boost_refund"


class CreditTransaction(BaseModel):
    """One balance mutation."""
    id: str = Field(..., description="Transaction ID (text)")
    account_id: str = Field(..., description="Account whose balance changed")
    credit_type: CreditType = Field(..., description="general, listing or boosting")
    action_type: TransactionAction = Field(..., description="What caused the change")
    delta: int = Field(..., description="Signed change applied")
    previous_balance: int = Field(..., ge=0, description="Balance before the change")
    resulting_balance: int = Field(..., ge=0, description="Balance after the change")
    performed_by: str = Field(..., description="Admin account ID or the system actor")
    reason: Optional[str] = Field(None, description="Free-text reason")
    listing_id: Optional[str] = Field(None, description="Listing the change relates to")
    created_at: Optional[str] = None


class CreditAdjustment(BaseModel):
    """Authoritative result of a balance mutation."""
    account_id: str
    credit_type: CreditType
    delta: int
    previous_balance: int
    new_balance: int
    transaction_id: str
