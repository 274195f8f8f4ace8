"""Agent console - an agent's own listings and dashboard."""

from typing import Iterable, Optional, Union

from pydantic import BaseModel, Field

from src.models.account import Actor
from src.models.listing import Listing, ListingStatus
from src.services.credit_ledger import CreditLedger
from src.services.listing_content import ContentCommand, parse_command, parse_listing_attributes
from src.services.listing_lifecycle import ListingLifecycle
from src.utils.errors import InvalidTransition, NotOwner, PermissionDenied
from src.utils.logging import get_structured_logger, mask_user_id

logger = get_structured_logger(__name__)


class DashboardStats(BaseModel):
    """Per-agent counters for the dashboard header."""
    total_listings: int = Field(0, ge=0)
    pending: int = Field(0, ge=0)
    approved: int = Field(0, ge=0)
    rejected: int = Field(0, ge=0)
    archived: int = Field(0, ge=0)
    featured: int = Field(0, ge=0)
    total_views: int = Field(0, ge=0)
    listing_credits: int = Field(0, ge=0)
    boosting_credits: int = Field(0, ge=0)


class AgentConsole:
    """Operations an authenticated agent performs on their own listings."""

    def __init__(
        self,
        actor: Actor,
        lifecycle: Optional[ListingLifecycle] = None,
        ledger: Optional[CreditLedger] = None,
    ):
        if not actor.is_agent:
            raise PermissionDenied("Agent console requires an agent account")
        self.actor = actor
        self.lifecycle = lifecycle or ListingLifecycle(ledger.store if ledger else None, ledger)
        self.ledger = ledger or self.lifecycle.ledger

    async def create_listing(self, payload: dict) -> Listing:
        attributes = parse_listing_attributes(payload)
        return await self.lifecycle.create_listing(self.actor, attributes)

    async def update_listing(self, listing_id: str, payload: dict) -> Listing:
        attributes = parse_listing_attributes(payload)
        return await self.lifecycle.update_listing(listing_id, self.actor, attributes)

    async def edit_content(
        self, listing_id: str, commands: Iterable[Union[ContentCommand, dict]]
    ) -> Listing:
        """Apply image/amenity commands; dict commands use the ``{"op": ...}`` form."""
        parsed = [parse_command(c) if isinstance(c, dict) else c for c in commands]
        return await self.lifecycle.edit_content(listing_id, self.actor, parsed)

    async def resubmit_listing(self, listing_id: str, payload: Optional[dict] = None) -> Listing:
        """Optionally fix a rejected listing, then send it back for review."""
        listing = await self.lifecycle.get_listing(listing_id)
        if listing.agent_id != self.actor.account_id:
            raise NotOwner(f"Listing {listing_id} belongs to another agent")
        if listing.status != ListingStatus.REJECTED:
            raise InvalidTransition(f"Only rejected listings can be resubmitted, listing is {listing.status.value}")

        if payload is not None:
            await self.update_listing(listing_id, payload)
        return await self.lifecycle.transition_status(listing_id, self.actor, ListingStatus.PENDING)

    async def archive_listing(self, listing_id: str) -> Listing:
        return await self.lifecycle.transition_status(listing_id, self.actor, ListingStatus.ARCHIVED)

    async def duplicate_listing(self, listing_id: str) -> Listing:
        """Copy one of the agent's listings into a new pending listing.

        The copy is a fresh creation and consumes a listing credit.
        """
        source = await self.lifecycle.get_listing(listing_id)
        if source.agent_id != self.actor.account_id:
            raise NotOwner(f"Listing {listing_id} belongs to another agent")

        attributes = source.attributes().model_copy(update={"title": f"{source.title} (Copy)"})
        duplicate = await self.lifecycle.create_listing(self.actor, attributes)
        logger.info(
            "Listing duplicated",
            source_listing_id=listing_id,
            listing_id=duplicate.id,
            agent_id=mask_user_id(self.actor.account_id),
        )
        return duplicate

    async def boost_listing(self, listing_id: str) -> Listing:
        """Feature an approved listing for one boosting credit."""
        return await self.lifecycle.boost_listing(listing_id, self.actor)

    async def list_my_listings(
        self, status: Optional[Union[ListingStatus, str]] = None
    ) -> list[Listing]:
        return await self.lifecycle.list_listings(agent_id=self.actor.account_id, status=status)

    async def dashboard_stats(self) -> DashboardStats:
        listings = await self.list_my_listings()
        account = await self.ledger.get_account(self.actor.account_id)

        counts = {status: 0 for status in ListingStatus}
        for listing in listings:
            counts[listing.status] += 1

        return DashboardStats(
            total_listings=len(listings),
            pending=counts[ListingStatus.PENDING],
            approved=counts[ListingStatus.APPROVED],
            rejected=counts[ListingStatus.REJECTED],
            archived=counts[ListingStatus.ARCHIVED],
            featured=sum(1 for listing in listings if listing.is_featured),
            total_views=sum(listing.views_count for listing in listings),
            listing_credits=account.listing_credits,
            boosting_credits=account.boosting_credits,
        )
