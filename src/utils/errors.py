"""Error handling utilities."""

from typing import Optional


class PropertyAIError(Exception):
    """Base exception for the PropertyAI backend."""
    status_code = 500
    code = "internal_error"

    def to_dict(self) -> dict:
        """Serialize for an API error body."""
        return {"error": self.code, "message": str(self)}


class ValidationFailed(PropertyAIError):
    """User input does not satisfy a static rule."""
    status_code = 400
    code = "validation_failed"

    def __init__(self, field: str, reason: Optional[str] = None):
        self.field = field
        self.reason = reason or f"{field} is invalid"
        super().__init__(self.reason)

    def to_dict(self) -> dict:
        return {"error": self.code, "field": self.field, "message": self.reason}


class InsufficientBalance(PropertyAIError):
    """Deduction would drive the credit balance negative."""
    status_code = 409
    code = "insufficient_balance"


class InsufficientListingCredits(PropertyAIError):
    """Agent has no listing credit left to publish a property."""
    status_code = 409
    code = "insufficient_listing_credits"


class NotOwner(PropertyAIError):
    """Actor does not own the listing."""
    status_code = 403
    code = "not_owner"


class PermissionDenied(PropertyAIError):
    """Actor's role may not perform the operation."""
    status_code = 403
    code = "permission_denied"


class InvalidTransition(PropertyAIError):
    """Listing status change is not an allowed edge for this actor."""
    status_code = 409
    code = "invalid_transition"


class ListingArchived(PropertyAIError):
    """Archived listings are read-only."""
    status_code = 409
    code = "listing_archived"


class ImageNotInList(PropertyAIError):
    """Main image must be one of the listing's images."""
    status_code = 400
    code = "image_not_in_list"


class AccountNotFound(PropertyAIError):
    """Account does not exist."""
    status_code = 404
    code = "account_not_found"


class ListingNotFound(PropertyAIError):
    """Listing does not exist."""
    status_code = 404
    code = "listing_not_found"


class PersistenceUnavailable(PropertyAIError):
    """Store operation failed; transient, the caller may retry."""
    status_code = 503
    code = "persistence_unavailable"


class InsufficientBoostingCredits(PropertyAIError):
    """Agent has no boosting credit left to feature a listing."""
    status_code = 409
    code = "insufficient_boosting_credits"
