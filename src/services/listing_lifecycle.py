"""Listing lifecycle - status state machine, creation and boosting with credit consumption, edits."""

from datetime import datetime, timedelta, timezone
from typing import Callable, Iterable, Optional, Union

from ulid import ULID

from src.models.account import Actor, Role
from src.models.listing import Listing, ListingAttributes, ListingStatus
from src.services.credit_ledger import CreditLedger
from src.services.listing_content import (
    ContentCommand,
    ListingContent,
    apply_commands,
    normalize_attributes,
)
from src.services.store import LISTINGS_TABLE, RecordStore, get_store
from src.utils.config import MarketplaceConfig
from src.utils.errors import (
    InvalidTransition,
    ListingArchived,
    ListingNotFound,
    NotOwner,
    PermissionDenied,
    PersistenceUnavailable,
    PropertyAIError,
    ValidationFailed,
)
from src.utils.logging import get_structured_logger, log_timing, mask_user_id
from src.utils.timestamps import utc_now_iso

logger = get_structured_logger(__name__)

# (from, to) -> roles allowed to take the edge
ALLOWED_TRANSITIONS: dict[tuple[ListingStatus, ListingStatus], frozenset[Role]] = {
    (ListingStatus.PENDING, ListingStatus.APPROVED): frozenset({Role.ADMIN}),
    (ListingStatus.PENDING, ListingStatus.REJECTED): frozenset({Role.ADMIN}),
    (ListingStatus.REJECTED, ListingStatus.PENDING): frozenset({Role.AGENT}),
    (ListingStatus.APPROVED, ListingStatus.ARCHIVED): frozenset({Role.AGENT, Role.ADMIN}),
    (ListingStatus.REJECTED, ListingStatus.ARCHIVED): frozenset({Role.AGENT, Role.ADMIN}),
}


def generate_listing_id() -> str:
    """Generate a text-based listing ID (ULID format)."""
    return str(ULID())


def can_transition(current: ListingStatus, target: ListingStatus, role: Role) -> bool:
    """Whether ``role`` may move a listing from ``current`` to ``target``."""
    return role in ALLOWED_TRANSITIONS.get((current, target), frozenset())


def calculate_psf_price(price: float, floor_area: float) -> Optional[float]:
    """Price per square foot, recomputed on every write."""
    if floor_area and floor_area > 0:
        return round(price / floor_area, 2)
    return None


def _coerce_status(target: Union[ListingStatus, str]) -> ListingStatus:
    try:
        return ListingStatus(target)
    except ValueError as e:
        raise ValidationFailed("status", f"Unknown listing status: {target}") from e


class ListingLifecycle:
    """Creates listings, applies edits and moves them through their states.

    Every write to an existing listing is conditional on the ``revision``
    (and status) observed when the rules were checked; a lost race re-reads
    and re-checks rather than overwriting.
    """

    def __init__(
        self,
        store: Optional[RecordStore] = None,
        ledger: Optional[CreditLedger] = None,
        max_attempts: Optional[int] = None,
    ):
        self.store = store or get_store()
        self.ledger = ledger or CreditLedger(self.store)
        self.max_attempts = max_attempts or MarketplaceConfig.CREDIT_CAS_MAX_ATTEMPTS

    async def get_listing(self, listing_id: str) -> Listing:
        row = await self.store.get(LISTINGS_TABLE, listing_id)
        if row is None:
            raise ListingNotFound(f"Listing not found: {listing_id}")
        return Listing(**row)

    async def list_listings(
        self,
        agent_id: Optional[str] = None,
        status: Optional[Union[ListingStatus, str]] = None,
    ) -> list[Listing]:
        """Listings, newest first, optionally narrowed to one agent and/or status."""
        filters = {}
        if agent_id:
            filters["agent_id"] = agent_id
        if status:
            filters["status"] = _coerce_status(status).value
        rows = await self.store.select(
            LISTINGS_TABLE, filters=filters or None, order_by="created_at", descending=True
        )
        return [Listing(**row) for row in rows]

    async def create_listing(self, actor: Actor, attributes: ListingAttributes) -> Listing:
        """Publish a new listing for ``actor``, consuming one listing credit.

        The credit is deducted first; if the listing row cannot be stored the
        credit is refunded before the error is re-raised.
        """
        if not actor.is_agent:
            raise PermissionDenied("Only agents can create listings")

        attributes = normalize_attributes(attributes)
        listing_id = generate_listing_id()

        with log_timing(
            "create_listing",
            logger=logger,
            listing_id=listing_id,
            agent_id=mask_user_id(actor.account_id),
        ):
            adjustment = await self.ledger.consume_listing_credit(actor.account_id, listing_id)

            now = utc_now_iso()
            record = {
                **attributes.model_dump(mode="json"),
                "id": listing_id,
                "agent_id": actor.account_id,
                "status": ListingStatus.PENDING.value,
                "views_count": 0,
                "revision": 0,
                "is_featured": False,
                "boost_count": 0,
                "psf_price": calculate_psf_price(attributes.price, attributes.floor_area),
                "created_at": now,
                "updated_at": now,
            }
            try:
                row = await self.store.insert(LISTINGS_TABLE, record)
            except PersistenceUnavailable as e:
                logger.error(
                    "Listing insert failed, refunding listing credit",
                    listing_id=listing_id,
                    agent_id=mask_user_id(actor.account_id),
                    error=str(e),
                )
                await self._refund(actor.account_id, listing_id)
                raise

        logger.info(
            "Listing created",
            listing_id=listing_id,
            agent_id=mask_user_id(actor.account_id),
            listing_status=ListingStatus.PENDING.value,
            listing_credits_remaining=adjustment.new_balance,
        )
        return Listing(**row)

    async def _refund(self, agent_id: str, listing_id: str) -> None:
        try:
            await self.ledger.refund_listing_credit(agent_id, listing_id, reason="listing insert failed")
        except PropertyAIError as e:
            logger.error(
                "Listing credit refund failed",
                listing_id=listing_id,
                agent_id=mask_user_id(agent_id),
                error=str(e),
                exc_info=True,
            )

    def _check_boostable(self, listing: Listing, actor: Actor) -> None:
        if listing.agent_id != actor.account_id:
            raise NotOwner(f"Listing {listing.id} belongs to another agent")
        if listing.status != ListingStatus.APPROVED:
            raise InvalidTransition(
                f"Only approved listings can be boosted, listing is {listing.status.value}"
            )

    async def boost_listing(self, listing_id: str, actor: Actor) -> Listing:
        """Feature an approved listing, spending one boosting credit.

        The credit is deducted before the listing is flagged. If the flag
        cannot be written (store failure, or the listing stopped being
        approved in the meantime) the credit is refunded and the error
        re-raised.
        """
        if not actor.is_agent:
            raise PermissionDenied("Only agents can boost listings")

        self._check_boostable(await self.get_listing(listing_id), actor)

        with log_timing(
            "boost_listing",
            logger=logger,
            listing_id=listing_id,
            agent_id=mask_user_id(actor.account_id),
        ):
            adjustment = await self.ledger.consume_boosting_credit(actor.account_id, listing_id)
            try:
                listing = await self._write_boost(listing_id, actor)
            except PropertyAIError as e:
                logger.error(
                    "Listing boost failed, refunding boosting credit",
                    listing_id=listing_id,
                    agent_id=mask_user_id(actor.account_id),
                    error=str(e),
                )
                await self._refund_boost(actor.account_id, listing_id)
                raise

        logger.info(
            "Listing boosted",
            listing_id=listing_id,
            agent_id=mask_user_id(actor.account_id),
            boost_count=listing.boost_count,
            featured_until=listing.featured_until,
            boosting_credits_remaining=adjustment.new_balance,
        )
        return listing

    async def _write_boost(self, listing_id: str, actor: Actor) -> Listing:
        for attempt in range(1, self.max_attempts + 1):
            current = await self.get_listing(listing_id)
            self._check_boostable(current, actor)

            featured_until = datetime.now(timezone.utc) + timedelta(days=MarketplaceConfig.BOOST_DURATION_DAYS)
            row = await self.store.update_where(
                LISTINGS_TABLE,
                listing_id,
                {"revision": current.revision, "status": ListingStatus.APPROVED.value},
                {
                    "is_featured": True,
                    "featured_until": featured_until.isoformat(),
                    "boost_count": current.boost_count + 1,
                    "revision": current.revision + 1,
                    "updated_at": utc_now_iso(),
                },
            )
            if row is not None:
                return Listing(**row)

            logger.debug("Listing changed concurrently, retrying boost", listing_id=listing_id, attempt=attempt)

        raise PersistenceUnavailable(f"Could not boost listing {listing_id} after {self.max_attempts} attempts")

    async def _refund_boost(self, agent_id: str, listing_id: str) -> None:
        try:
            await self.ledger.refund_boosting_credit(agent_id, listing_id, reason="listing boost failed")
        except PropertyAIError as e:
            logger.error(
                "Boosting credit refund failed",
                listing_id=listing_id,
                agent_id=mask_user_id(agent_id),
                error=str(e),
                exc_info=True,
            )

    async def update_listing(
        self, listing_id: str, actor: Actor, attributes: ListingAttributes
    ) -> Listing:
        """Replace the editable fields. Status, owner, views and credits are untouched."""
        attributes = normalize_attributes(attributes)
        fields = attributes.model_dump(mode="json")
        fields["psf_price"] = calculate_psf_price(attributes.price, attributes.floor_area)

        listing = await self._write_editable(listing_id, actor, lambda current: fields)
        logger.info(
            "Listing updated",
            listing_id=listing_id,
            agent_id=mask_user_id(actor.account_id),
            revision=listing.revision,
        )
        return listing

    async def edit_content(
        self, listing_id: str, actor: Actor, commands: Iterable[ContentCommand]
    ) -> Listing:
        """Apply content commands to the stored snapshot and persist the result."""
        commands = list(commands)

        def build_patch(current: Listing) -> dict:
            content = apply_commands(ListingContent.from_attributes(current), commands)
            return content.to_fields()

        listing = await self._write_editable(listing_id, actor, build_patch)
        logger.info(
            "Listing content edited",
            listing_id=listing_id,
            agent_id=mask_user_id(actor.account_id),
            commands_applied=len(commands),
            image_count=len(listing.image_urls),
            amenity_count=len(listing.amenities),
        )
        return listing

    async def _write_editable(
        self,
        listing_id: str,
        actor: Actor,
        build_patch: Callable[[Listing], dict],
    ) -> Listing:
        for attempt in range(1, self.max_attempts + 1):
            current = await self.get_listing(listing_id)
            if current.agent_id != actor.account_id:
                raise NotOwner(f"Listing {listing_id} belongs to another agent")
            if current.status == ListingStatus.ARCHIVED:
                raise ListingArchived(f"Listing {listing_id} is archived")

            patch = {
                **build_patch(current),
                "revision": current.revision + 1,
                "updated_at": utc_now_iso(),
            }
            row = await self.store.update_where(
                LISTINGS_TABLE,
                listing_id,
                {"revision": current.revision, "status": current.status.value},
                patch,
            )
            if row is not None:
                return Listing(**row)

            logger.debug("Listing changed concurrently, retrying", listing_id=listing_id, attempt=attempt)

        raise PersistenceUnavailable(f"Could not update listing {listing_id} after {self.max_attempts} attempts")

    async def transition_status(
        self,
        listing_id: str,
        actor: Actor,
        target: Union[ListingStatus, str],
    ) -> Listing:
        """Move a listing along one allowed edge of the state machine."""
        target = _coerce_status(target)

        for attempt in range(1, self.max_attempts + 1):
            current = await self.get_listing(listing_id)
            if actor.role == Role.AGENT and current.agent_id != actor.account_id:
                raise NotOwner(f"Listing {listing_id} belongs to another agent")
            if not can_transition(current.status, target, actor.role):
                raise InvalidTransition(
                    f"Cannot move listing from {current.status.value} to {target.value} as {actor.role.value}"
                )

            row = await self.store.update_where(
                LISTINGS_TABLE,
                listing_id,
                {"status": current.status.value, "revision": current.revision},
                {
                    "status": target.value,
                    "revision": current.revision + 1,
                    "updated_at": utc_now_iso(),
                },
            )
            if row is not None:
                logger.info(
                    "Listing status changed",
                    listing_id=listing_id,
                    from_status=current.status.value,
                    to_status=target.value,
                    actor_id=mask_user_id(actor.account_id),
                    actor_role=actor.role.value,
                )
                return Listing(**row)

            logger.debug("Listing status changed concurrently, retrying", listing_id=listing_id, attempt=attempt)

        raise PersistenceUnavailable(f"Could not change status of {listing_id} after {self.max_attempts} attempts")

    async def record_view(self, listing_id: str) -> Listing:
        """Count one view of an approved listing. Other states are not counted."""
        for attempt in range(1, self.max_attempts + 1):
            current = await self.get_listing(listing_id)
            if current.status != ListingStatus.APPROVED:
                logger.debug("View not counted for unpublished listing", listing_id=listing_id,
                             listing_status=current.status.value)
                return current

            row = await self.store.update_where(
                LISTINGS_TABLE,
                listing_id,
                {"views_count": current.views_count, "status": ListingStatus.APPROVED.value},
                {"views_count": current.views_count + 1},
            )
            if row is not None:
                return Listing(**row)

        raise PersistenceUnavailable(f"Could not record view for {listing_id} after {self.max_attempts} attempts")
