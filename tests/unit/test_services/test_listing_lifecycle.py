"""Tests for the listing lifecycle state machine and listing creation."""

import asyncio
import pytest
from unittest.mock import AsyncMock

from src.models.account import Actor, Role
from src.models.credit_transaction import TransactionAction
from src.models.listing import ListingStatus
from src.services.listing_content import AddImage, RemoveImage, SetMainImage, ToggleAmenity
from src.services.listing_lifecycle import (
    ALLOWED_TRANSITIONS,
    ListingLifecycle,
    calculate_psf_price,
    can_transition,
    generate_listing_id,
)
from src.services.store import ACCOUNTS_TABLE, LISTINGS_TABLE, TRANSACTIONS_TABLE
from src.utils.errors import (
    ImageNotInList,
    InsufficientBoostingCredits,
    InsufficientListingCredits,
    InvalidTransition,
    ListingArchived,
    ListingNotFound,
    NotOwner,
    PermissionDenied,
    PersistenceUnavailable,
    ValidationFailed,
)
from tests.utils.assertions import assert_content_invariant, assert_valid_listing
from tests.utils.factories import create_listing_attributes


def _listing_credits(store, account_id: str) -> int:
    return store.tables[ACCOUNTS_TABLE][account_id]["listing_credits"]


@pytest.mark.unit
def test_generate_listing_id():
    listing_id = generate_listing_id()
    assert len(listing_id) == 26


@pytest.mark.unit
def test_calculate_psf_price():
    assert calculate_psf_price(500000, 1000) == 500.0
    assert calculate_psf_price(100, 3) == 33.33
    assert calculate_psf_price(100, 0) is None


@pytest.mark.unit
@pytest.mark.parametrize("current,target,role,allowed", [
    (ListingStatus.PENDING, ListingStatus.APPROVED, Role.ADMIN, True),
    (ListingStatus.PENDING, ListingStatus.REJECTED, Role.ADMIN, True),
    (ListingStatus.PENDING, ListingStatus.APPROVED, Role.AGENT, False),
    (ListingStatus.REJECTED, ListingStatus.PENDING, Role.AGENT, True),
    (ListingStatus.REJECTED, ListingStatus.PENDING, Role.ADMIN, False),
    (ListingStatus.APPROVED, ListingStatus.ARCHIVED, Role.AGENT, True),
    (ListingStatus.APPROVED, ListingStatus.ARCHIVED, Role.ADMIN, True),
    (ListingStatus.REJECTED, ListingStatus.ARCHIVED, Role.ADMIN, True),
    (ListingStatus.PENDING, ListingStatus.ARCHIVED, Role.AGENT, False),
    (ListingStatus.ARCHIVED, ListingStatus.PENDING, Role.AGENT, False),
    (ListingStatus.APPROVED, ListingStatus.PENDING, Role.ADMIN, False),
    (ListingStatus.APPROVED, ListingStatus.ARCHIVED, Role.CONSUMER, False),
])
def test_can_transition(current, target, role, allowed):
    assert can_transition(current, target, role) is allowed


@pytest.mark.unit
def test_archived_is_terminal():
    assert not any(source == ListingStatus.ARCHIVED for source, _ in ALLOWED_TRANSITIONS)


@pytest.mark.unit
@pytest.mark.asyncio
async def test_create_listing_consumes_one_credit(lifecycle, memory_store, seed_account):
    """With one credit the first creation succeeds and the second is refused."""
    agent = seed_account(role="agent", listing_credits=1)
    actor = Actor(account_id=agent["id"], role=Role.AGENT)

    listing = await lifecycle.create_listing(actor, create_listing_attributes())

    assert listing.status == ListingStatus.PENDING
    assert listing.views_count == 0
    assert listing.agent_id == agent["id"]
    assert_valid_listing(listing)
    assert _listing_credits(memory_store, agent["id"]) == 0

    with pytest.raises(InsufficientListingCredits):
        await lifecycle.create_listing(actor, create_listing_attributes())

    assert _listing_credits(memory_store, agent["id"]) == 0
    assert len(memory_store.tables[LISTINGS_TABLE]) == 1


@pytest.mark.unit
@pytest.mark.asyncio
async def test_create_listing_records_posting_transaction(lifecycle, memory_store, agent_actor):
    listing = await lifecycle.create_listing(agent_actor, create_listing_attributes())

    transactions = list(memory_store.tables[TRANSACTIONS_TABLE].values())
    assert len(transactions) == 1
    assert transactions[0]["action_type"] == TransactionAction.PROPERTY_POSTED.value
    assert transactions[0]["listing_id"] == listing.id
    assert transactions[0]["delta"] == -1


@pytest.mark.unit
@pytest.mark.asyncio
async def test_create_listing_requires_agent(lifecycle, memory_store, admin_actor, consumer_actor):
    for actor in (admin_actor, consumer_actor):
        with pytest.raises(PermissionDenied):
            await lifecycle.create_listing(actor, create_listing_attributes())
    assert LISTINGS_TABLE not in memory_store.tables


@pytest.mark.unit
@pytest.mark.asyncio
async def test_create_listing_validation_failure_keeps_credit(lifecycle, memory_store, agent_actor, agent_account):
    with pytest.raises(ValidationFailed) as exc_info:
        await lifecycle.create_listing(agent_actor, create_listing_attributes(price=0))

    assert exc_info.value.field == "price"
    assert _listing_credits(memory_store, agent_account["id"]) == 3


@pytest.mark.unit
@pytest.mark.asyncio
@pytest.mark.parametrize("field", ["price", "floor_area"])
async def test_create_listing_non_finite_number_keeps_credit(lifecycle, memory_store, agent_actor, agent_account, field):
    for value in (float("nan"), float("inf")):
        with pytest.raises(ValidationFailed) as exc_info:
            await lifecycle.create_listing(agent_actor, create_listing_attributes(**{field: value}))
        assert exc_info.value.field == field

    assert _listing_credits(memory_store, agent_account["id"]) == 3
    assert LISTINGS_TABLE not in memory_store.tables


@pytest.mark.unit
@pytest.mark.asyncio
async def test_create_listing_insert_failure_refunds_credit(lifecycle, memory_store, agent_actor, agent_account):
    """Insert order is: posting transaction, listing row, refund transaction."""
    original_insert = memory_store.insert

    async def failing_listing_insert(table, record):
        if table == LISTINGS_TABLE:
            raise PersistenceUnavailable("properties table unavailable")
        return await original_insert(table, record)

    memory_store.insert = AsyncMock(side_effect=failing_listing_insert)

    with pytest.raises(PersistenceUnavailable):
        await lifecycle.create_listing(agent_actor, create_listing_attributes())

    assert _listing_credits(memory_store, agent_account["id"]) == 3
    actions = sorted(tx["action_type"] for tx in memory_store.tables[TRANSACTIONS_TABLE].values())
    assert actions == sorted([
        TransactionAction.PROPERTY_POSTED.value,
        TransactionAction.PROPERTY_POSTING_REFUND.value,
    ])


@pytest.mark.unit
@pytest.mark.asyncio
async def test_concurrent_creations_with_one_credit(lifecycle, memory_store, seed_account):
    agent = seed_account(role="agent", listing_credits=1)
    actor = Actor(account_id=agent["id"], role=Role.AGENT)

    results = await asyncio.gather(
        lifecycle.create_listing(actor, create_listing_attributes()),
        lifecycle.create_listing(actor, create_listing_attributes()),
        return_exceptions=True,
    )

    failures = [r for r in results if isinstance(r, Exception)]
    assert len(failures) == 1
    assert isinstance(failures[0], InsufficientListingCredits)
    assert len(memory_store.tables[LISTINGS_TABLE]) == 1
    assert _listing_credits(memory_store, agent["id"]) == 0


@pytest.mark.unit
@pytest.mark.asyncio
async def test_get_listing_not_found(lifecycle):
    with pytest.raises(ListingNotFound):
        await lifecycle.get_listing("missing")


@pytest.mark.unit
@pytest.mark.asyncio
async def test_list_listings_filters(lifecycle, seed_listing, agent_actor):
    seed_listing(agent_actor.account_id, status="pending")
    seed_listing(agent_actor.account_id, status="approved")
    seed_listing("someone-else", status="pending")

    mine = await lifecycle.list_listings(agent_id=agent_actor.account_id)
    pending = await lifecycle.list_listings(status="pending")
    my_approved = await lifecycle.list_listings(agent_id=agent_actor.account_id, status=ListingStatus.APPROVED)

    assert len(mine) == 2
    assert len(pending) == 2
    assert len(my_approved) == 1


@pytest.mark.unit
@pytest.mark.asyncio
async def test_list_listings_unknown_status(lifecycle):
    with pytest.raises(ValidationFailed):
        await lifecycle.list_listings(status="sold")


@pytest.mark.unit
@pytest.mark.asyncio
async def test_admin_approves_pending(lifecycle, seed_listing, agent_actor, admin_actor):
    listing = seed_listing(agent_actor.account_id)

    approved = await lifecycle.transition_status(listing["id"], admin_actor, ListingStatus.APPROVED)

    assert approved.status == ListingStatus.APPROVED
    assert approved.revision == 1


@pytest.mark.unit
@pytest.mark.asyncio
async def test_agent_cannot_approve_own_listing(lifecycle, seed_listing, agent_actor):
    listing = seed_listing(agent_actor.account_id)

    with pytest.raises(InvalidTransition):
        await lifecycle.transition_status(listing["id"], agent_actor, "approved")


@pytest.mark.unit
@pytest.mark.asyncio
async def test_agent_cannot_archive_pending(lifecycle, seed_listing, agent_actor):
    listing = seed_listing(agent_actor.account_id, status="pending")

    with pytest.raises(InvalidTransition):
        await lifecycle.transition_status(listing["id"], agent_actor, ListingStatus.ARCHIVED)


@pytest.mark.unit
@pytest.mark.asyncio
async def test_agent_cannot_move_someone_elses_listing(lifecycle, seed_listing, agent_actor):
    listing = seed_listing("another-agent", status="approved")

    with pytest.raises(NotOwner):
        await lifecycle.transition_status(listing["id"], agent_actor, ListingStatus.ARCHIVED)


@pytest.mark.unit
@pytest.mark.asyncio
async def test_consumer_cannot_transition(lifecycle, seed_listing, consumer_actor):
    listing = seed_listing("an-agent", status="approved")

    with pytest.raises(InvalidTransition):
        await lifecycle.transition_status(listing["id"], consumer_actor, ListingStatus.ARCHIVED)


@pytest.mark.unit
@pytest.mark.asyncio
async def test_archived_listing_rejects_every_transition(lifecycle, seed_listing, agent_actor, admin_actor):
    listing = seed_listing(agent_actor.account_id, status="archived")

    for actor in (agent_actor, admin_actor):
        for target in ListingStatus:
            with pytest.raises(InvalidTransition):
                await lifecycle.transition_status(listing["id"], actor, target)


@pytest.mark.unit
@pytest.mark.asyncio
async def test_transition_unknown_status(lifecycle, seed_listing, admin_actor):
    listing = seed_listing("an-agent")

    with pytest.raises(ValidationFailed) as exc_info:
        await lifecycle.transition_status(listing["id"], admin_actor, "sold")
    assert exc_info.value.field == "status"


@pytest.mark.unit
@pytest.mark.asyncio
async def test_concurrent_approve_and_reject(lifecycle, seed_listing, admin_actor):
    """Only one of two racing moderation decisions is applied."""
    listing = seed_listing("an-agent")

    results = await asyncio.gather(
        lifecycle.transition_status(listing["id"], admin_actor, ListingStatus.APPROVED),
        lifecycle.transition_status(listing["id"], admin_actor, ListingStatus.REJECTED),
        return_exceptions=True,
    )

    failures = [r for r in results if isinstance(r, Exception)]
    assert len(failures) == 1
    assert isinstance(failures[0], InvalidTransition)


@pytest.mark.unit
@pytest.mark.asyncio
async def test_update_listing_replaces_fields(lifecycle, memory_store, seed_listing, agent_actor):
    listing = seed_listing(agent_actor.account_id, status="approved", views_count=7)
    attributes = create_listing_attributes(title="Renovated Corner Unit", price=900000, floor_area=1200)

    updated = await lifecycle.update_listing(listing["id"], agent_actor, attributes)

    assert updated.title == "Renovated Corner Unit"
    assert updated.psf_price == 750.0
    assert updated.status == ListingStatus.APPROVED
    assert updated.views_count == 7
    assert updated.agent_id == agent_actor.account_id
    assert updated.revision == 1


@pytest.mark.unit
@pytest.mark.asyncio
async def test_update_listing_not_owner(lifecycle, seed_listing, agent_actor):
    listing = seed_listing("another-agent")

    with pytest.raises(NotOwner):
        await lifecycle.update_listing(listing["id"], agent_actor, create_listing_attributes())


@pytest.mark.unit
@pytest.mark.asyncio
async def test_update_archived_listing(lifecycle, seed_listing, agent_actor):
    listing = seed_listing(agent_actor.account_id, status="archived")

    with pytest.raises(ListingArchived):
        await lifecycle.update_listing(listing["id"], agent_actor, create_listing_attributes())


@pytest.mark.unit
@pytest.mark.asyncio
async def test_update_never_overwrites_concurrent_archive(lifecycle, memory_store, seed_listing, agent_actor):
    """An archive landing between the read and the write wins."""
    listing = seed_listing(agent_actor.account_id, status="approved")
    original_update_where = memory_store.update_where
    archived = False

    async def archive_first(table, record_id, expected, patch):
        nonlocal archived
        if table == LISTINGS_TABLE and not archived:
            archived = True
            memory_store.tables[LISTINGS_TABLE][record_id]["status"] = "archived"
            memory_store.tables[LISTINGS_TABLE][record_id]["revision"] += 1
        return await original_update_where(table, record_id, expected, patch)

    memory_store.update_where = archive_first

    with pytest.raises(ListingArchived):
        await lifecycle.update_listing(listing["id"], agent_actor, create_listing_attributes(title="Too late"))

    stored = memory_store.tables[LISTINGS_TABLE][listing["id"]]
    assert stored["status"] == "archived"
    assert stored["title"] != "Too late"


@pytest.mark.unit
@pytest.mark.asyncio
async def test_edit_content_applies_commands(lifecycle, seed_listing, agent_actor):
    listing = seed_listing(agent_actor.account_id, amenities=["Gym"])
    first, second = listing["image_urls"]
    new_image = "https://img.test/new.jpg"

    edited = await lifecycle.edit_content(listing["id"], agent_actor, [
        AddImage(url=new_image),
        SetMainImage(url=new_image),
        RemoveImage(url=first),
        ToggleAmenity(label="Pool"),
        ToggleAmenity(label="Gym"),
    ])

    assert edited.image_urls == [second, new_image]
    assert edited.main_image_url == new_image
    assert edited.amenities == ["Pool"]
    assert edited.revision == 1
    assert_content_invariant(edited.image_urls, edited.main_image_url)


@pytest.mark.unit
@pytest.mark.asyncio
async def test_edit_content_image_not_in_list(lifecycle, memory_store, seed_listing, agent_actor):
    listing = seed_listing(agent_actor.account_id)

    with pytest.raises(ImageNotInList):
        await lifecycle.edit_content(listing["id"], agent_actor, [SetMainImage(url="https://img.test/nope.jpg")])

    assert memory_store.tables[LISTINGS_TABLE][listing["id"]]["revision"] == 0


@pytest.mark.unit
@pytest.mark.asyncio
async def test_concurrent_content_edits_both_apply(lifecycle, seed_listing, agent_actor):
    """A lost race re-applies the commands to the fresh snapshot."""
    listing = seed_listing(agent_actor.account_id, amenities=[])

    await asyncio.gather(
        lifecycle.edit_content(listing["id"], agent_actor, [ToggleAmenity(label="Pool")]),
        lifecycle.edit_content(listing["id"], agent_actor, [ToggleAmenity(label="Gym")]),
    )

    stored = await lifecycle.get_listing(listing["id"])
    assert stored.amenities == ["Gym", "Pool"]
    assert stored.revision == 2


@pytest.mark.unit
@pytest.mark.asyncio
async def test_record_view_increments_approved(lifecycle, seed_listing):
    listing = seed_listing("an-agent", status="approved", views_count=4)

    viewed = await lifecycle.record_view(listing["id"])

    assert viewed.views_count == 5


@pytest.mark.unit
@pytest.mark.asyncio
async def test_record_view_ignores_unpublished(lifecycle, seed_listing):
    listing = seed_listing("an-agent", status="pending")

    viewed = await lifecycle.record_view(listing["id"])

    assert viewed.views_count == 0


@pytest.mark.unit
@pytest.mark.asyncio
async def test_concurrent_views_all_counted(lifecycle, seed_listing):
    listing = seed_listing("an-agent", status="approved")

    await asyncio.gather(*(lifecycle.record_view(listing["id"]) for _ in range(4)))

    stored = await lifecycle.get_listing(listing["id"])
    assert stored.views_count == 4


@pytest.mark.unit
@pytest.mark.asyncio
async def test_status_write_exhaustion(memory_store, seed_listing, admin_actor):
    listing = seed_listing("an-agent")
    lifecycle = ListingLifecycle(memory_store, max_attempts=2)
    memory_store.update_where = AsyncMock(return_value=None)

    with pytest.raises(PersistenceUnavailable):
        await lifecycle.transition_status(listing["id"], admin_actor, ListingStatus.APPROVED)

    assert memory_store.update_where.await_count == 2


def _boosting_credits(store, account_id: str) -> int:
    return store.tables[ACCOUNTS_TABLE][account_id]["boosting_credits"]


@pytest.mark.unit
@pytest.mark.asyncio
async def test_boost_listing_features_approved_listing(lifecycle, memory_store, seed_account, seed_listing):
    agent = seed_account(role="agent", boosting_credits=2)
    actor = Actor(account_id=agent["id"], role=Role.AGENT)
    listing = seed_listing(agent["id"], status="approved")

    boosted = await lifecycle.boost_listing(listing["id"], actor)

    assert boosted.is_featured is True
    assert boosted.boost_count == 1
    assert boosted.featured_until is not None
    assert boosted.status == ListingStatus.APPROVED
    assert _boosting_credits(memory_store, agent["id"]) == 1
    tx = next(iter(memory_store.tables[TRANSACTIONS_TABLE].values()))
    assert tx["action_type"] == TransactionAction.PROPERTY_BOOSTED.value
    assert tx["credit_type"] == "boosting"
    assert tx["listing_id"] == listing["id"]


@pytest.mark.unit
@pytest.mark.asyncio
async def test_boost_listing_twice_counts_boosts(lifecycle, memory_store, seed_account, seed_listing):
    agent = seed_account(role="agent", boosting_credits=2)
    actor = Actor(account_id=agent["id"], role=Role.AGENT)
    listing = seed_listing(agent["id"], status="approved")

    await lifecycle.boost_listing(listing["id"], actor)
    boosted = await lifecycle.boost_listing(listing["id"], actor)

    assert boosted.boost_count == 2
    assert _boosting_credits(memory_store, agent["id"]) == 0


@pytest.mark.unit
@pytest.mark.asyncio
@pytest.mark.parametrize("status", ["pending", "rejected", "archived"])
async def test_boost_requires_approved_listing(lifecycle, memory_store, seed_account, seed_listing, status):
    agent = seed_account(role="agent", boosting_credits=1)
    actor = Actor(account_id=agent["id"], role=Role.AGENT)
    listing = seed_listing(agent["id"], status=status)

    with pytest.raises(InvalidTransition):
        await lifecycle.boost_listing(listing["id"], actor)

    assert _boosting_credits(memory_store, agent["id"]) == 1
    assert memory_store.tables[LISTINGS_TABLE][listing["id"]]["is_featured"] is False


@pytest.mark.unit
@pytest.mark.asyncio
async def test_boost_someone_elses_listing(lifecycle, memory_store, seed_account, seed_listing):
    agent = seed_account(role="agent", boosting_credits=1)
    actor = Actor(account_id=agent["id"], role=Role.AGENT)
    listing = seed_listing("another-agent", status="approved")

    with pytest.raises(NotOwner):
        await lifecycle.boost_listing(listing["id"], actor)

    assert _boosting_credits(memory_store, agent["id"]) == 1


@pytest.mark.unit
@pytest.mark.asyncio
async def test_boost_requires_agent(lifecycle, seed_listing, admin_actor):
    listing = seed_listing("some-agent", status="approved")

    with pytest.raises(PermissionDenied):
        await lifecycle.boost_listing(listing["id"], admin_actor)


@pytest.mark.unit
@pytest.mark.asyncio
async def test_boost_without_credits(lifecycle, memory_store, seed_account, seed_listing):
    agent = seed_account(role="agent", boosting_credits=0)
    actor = Actor(account_id=agent["id"], role=Role.AGENT)
    listing = seed_listing(agent["id"], status="approved")

    with pytest.raises(InsufficientBoostingCredits):
        await lifecycle.boost_listing(listing["id"], actor)

    assert memory_store.tables[LISTINGS_TABLE][listing["id"]]["is_featured"] is False


@pytest.mark.unit
@pytest.mark.asyncio
async def test_boost_write_failure_refunds_credit(lifecycle, memory_store, seed_account, seed_listing):
    agent = seed_account(role="agent", boosting_credits=1)
    actor = Actor(account_id=agent["id"], role=Role.AGENT)
    listing = seed_listing(agent["id"], status="approved")
    original_update_where = memory_store.update_where

    async def failing_listing_update(table, record_id, expected, patch):
        if table == LISTINGS_TABLE:
            raise PersistenceUnavailable("properties table unavailable")
        return await original_update_where(table, record_id, expected, patch)

    memory_store.update_where = AsyncMock(side_effect=failing_listing_update)

    with pytest.raises(PersistenceUnavailable):
        await lifecycle.boost_listing(listing["id"], actor)

    assert _boosting_credits(memory_store, agent["id"]) == 1
    assert memory_store.tables[LISTINGS_TABLE][listing["id"]]["is_featured"] is False
    actions = sorted(tx["action_type"] for tx in memory_store.tables[TRANSACTIONS_TABLE].values())
    assert actions == sorted([
        TransactionAction.PROPERTY_BOOSTED.value,
        TransactionAction.PROPERTY_BOOST_REFUND.value,
    ])


@pytest.mark.unit
@pytest.mark.asyncio
async def test_boost_refunds_when_listing_archived_meanwhile(lifecycle, memory_store, seed_account, seed_listing):
    """An archive landing between the credit deduction and the flag write refunds the credit."""
    agent = seed_account(role="agent", boosting_credits=1)
    actor = Actor(account_id=agent["id"], role=Role.AGENT)
    listing = seed_listing(agent["id"], status="approved")
    original_consume = lifecycle.ledger.consume_boosting_credit

    async def consume_then_archive(account_id, listing_id):
        adjustment = await original_consume(account_id, listing_id)
        await lifecycle.transition_status(listing_id, actor, ListingStatus.ARCHIVED)
        return adjustment

    lifecycle.ledger.consume_boosting_credit = consume_then_archive

    with pytest.raises(InvalidTransition):
        await lifecycle.boost_listing(listing["id"], actor)

    stored = memory_store.tables[LISTINGS_TABLE][listing["id"]]
    assert stored["status"] == "archived"
    assert stored["is_featured"] is False
    assert _boosting_credits(memory_store, agent["id"]) == 1


@pytest.mark.unit
@pytest.mark.asyncio
async def test_edit_keeps_featured_flag(lifecycle, seed_account, seed_listing):
    agent = seed_account(role="agent", boosting_credits=1)
    actor = Actor(account_id=agent["id"], role=Role.AGENT)
    listing = seed_listing(agent["id"], status="approved")

    await lifecycle.boost_listing(listing["id"], actor)
    updated = await lifecycle.update_listing(listing["id"], actor, create_listing_attributes(title="Renamed"))

    assert updated.title == "Renamed"
    assert updated.is_featured is True
    assert updated.boost_count == 1
