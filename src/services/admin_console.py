"""Administrator console - account balances, moderation queue and exports."""

import csv
import io
import json
from datetime import datetime, timezone
from typing import Iterable, Optional

from pydantic import BaseModel, Field

from src.models.account import Account, Actor
from src.models.credit_transaction import CreditAdjustment, CreditTransaction, CreditType
from src.models.listing import Listing, ListingStatus
from src.services.credit_ledger import CreditLedger
from src.services.listing_lifecycle import ListingLifecycle
from src.utils.config import MarketplaceConfig
from src.utils.errors import PermissionDenied, ValidationFailed
from src.utils.logging import get_structured_logger, mask_user_id, timed

logger = get_structured_logger(__name__)

ACCOUNT_EXPORT_COLUMNS = ("Email", "Full Name", "Role", "Credits", "Listing Credits", "Created At", "Last Updated")
TRANSACTION_EXPORT_COLUMNS = ("Date", "User Email", "Action Type", "Details", "Performed By")


class CreditSummary(BaseModel):
    """Totals shown at the top of the admin panel."""
    account_count: int = Field(0, ge=0)
    total_credits: int = Field(0, ge=0)
    total_listing_credits: int = Field(0, ge=0)
    total_boosting_credits: int = Field(0, ge=0)
    transaction_count: int = Field(0, ge=0)
    pending_listing_count: int = Field(0, ge=0)


class CsvExport(BaseModel):
    """Rendered CSV document and the file name it should be saved under."""
    filename: str
    content: str
    row_count: int


def export_filename(name: str, today: Optional[datetime] = None) -> str:
    """``{name}_{YYYY-MM-DD}.csv`` using the UTC date."""
    today = today or datetime.now(timezone.utc)
    return f"{name}_{today.strftime('%Y-%m-%d')}.csv"


def render_csv(columns: Iterable[str], rows: Iterable[Iterable]) -> str:
    """Header plus rows; values with commas, quotes or newlines are quoted."""
    buffer = io.StringIO()
    writer = csv.writer(buffer, quoting=csv.QUOTE_MINIMAL, lineterminator="\n")
    writer.writerow(columns)
    for row in rows:
        writer.writerow(["" if value is None else value for value in row])
    return buffer.getvalue()


class AdminConsole:
    """Operations available to an administrator.

    The console is bound to one acting administrator; every ledger or
    lifecycle call it makes carries that actor.
    """

    def __init__(
        self,
        actor: Actor,
        ledger: Optional[CreditLedger] = None,
        lifecycle: Optional[ListingLifecycle] = None,
    ):
        if not actor.is_admin:
            raise PermissionDenied("Admin console requires an administrator")
        self.actor = actor
        self.ledger = ledger or CreditLedger()
        self.lifecycle = lifecycle or ListingLifecycle(self.ledger.store, self.ledger)

    async def list_accounts(self) -> list[Account]:
        return await self.ledger.list_accounts()

    async def adjust_credits(
        self, account_id: str, delta: int, reason: Optional[str] = None
    ) -> CreditAdjustment:
        return await self.ledger.adjust_credits(account_id, delta, self.actor, reason=reason)

    async def grant_listing_credits(
        self, account_id: str, delta: int, reason: Optional[str] = None
    ) -> CreditAdjustment:
        return await self.ledger.adjust_listing_credits(account_id, delta, self.actor, reason=reason)

    async def grant_boosting_credits(
        self, account_id: str, delta: int, reason: Optional[str] = None
    ) -> CreditAdjustment:
        return await self.ledger.adjust_boosting_credits(account_id, delta, self.actor, reason=reason)

    async def adjust_balance(
        self,
        account_id: str,
        delta: int,
        credit_type: CreditType = CreditType.GENERAL,
        reason: Optional[str] = None,
    ) -> CreditAdjustment:
        """Dispatch to the general, listing or boosting balance."""
        try:
            credit_type = CreditType(credit_type)
        except ValueError as e:
            raise ValidationFailed("credit_type", f"Unknown credit type: {credit_type}") from e
        if credit_type == CreditType.LISTING:
            return await self.grant_listing_credits(account_id, delta, reason)
        if credit_type == CreditType.BOOSTING:
            return await self.grant_boosting_credits(account_id, delta, reason)
        return await self.adjust_credits(account_id, delta, reason)

    async def list_transactions(self, account_id: Optional[str] = None) -> list[CreditTransaction]:
        return await self.ledger.list_transactions(account_id)

    async def list_pending_listings(self) -> list[Listing]:
        """Moderation queue."""
        return await self.lifecycle.list_listings(status=ListingStatus.PENDING)

    async def approve_listing(self, listing_id: str) -> Listing:
        return await self.lifecycle.transition_status(listing_id, self.actor, ListingStatus.APPROVED)

    async def reject_listing(self, listing_id: str) -> Listing:
        return await self.lifecycle.transition_status(listing_id, self.actor, ListingStatus.REJECTED)

    async def archive_listing(self, listing_id: str) -> Listing:
        return await self.lifecycle.transition_status(listing_id, self.actor, ListingStatus.ARCHIVED)

    async def credit_summary(self) -> CreditSummary:
        accounts = await self.ledger.list_accounts()
        transactions = await self.ledger.list_transactions()
        pending = await self.lifecycle.list_listings(status=ListingStatus.PENDING)
        return CreditSummary(
            account_count=len(accounts),
            total_credits=sum(a.credits for a in accounts),
            total_listing_credits=sum(a.listing_credits for a in accounts),
            total_boosting_credits=sum(a.boosting_credits for a in accounts),
            transaction_count=len(transactions),
            pending_listing_count=len(pending),
        )

    @timed("export_accounts_csv")
    async def export_accounts_csv(self) -> CsvExport:
        accounts = await self.ledger.list_accounts()
        rows = [
            (
                account.email or "",
                account.full_name or "",
                account.role.value,
                account.credits,
                account.listing_credits,
                account.created_at or "",
                account.updated_at or "N/A",
            )
            for account in accounts
        ]
        logger.info("Accounts exported", actor_id=mask_user_id(self.actor.account_id), row_count=len(rows))
        return CsvExport(
            filename=export_filename("users_export"),
            content=render_csv(ACCOUNT_EXPORT_COLUMNS, rows),
            row_count=len(rows),
        )

    @timed("export_transactions_csv")
    async def export_transactions_csv(self) -> CsvExport:
        transactions = await self.ledger.list_transactions()
        emails = {account.id: account.email for account in await self.ledger.list_accounts()}

        rows = []
        for tx in transactions:
            details = {
                "credit_type": tx.credit_type.value,
                "delta": tx.delta,
                "previous_balance": tx.previous_balance,
                "resulting_balance": tx.resulting_balance,
            }
            if tx.reason:
                details["reason"] = tx.reason
            if tx.listing_id:
                details["listing_id"] = tx.listing_id
            performer = (
                "System"
                if tx.performed_by == MarketplaceConfig.SYSTEM_ACTOR_ID
                else emails.get(tx.performed_by, tx.performed_by)
            )
            rows.append((
                tx.created_at or "",
                emails.get(tx.account_id, "Unknown"),
                tx.action_type.value,
                json.dumps(details),
                performer,
            ))

        logger.info("Transactions exported", actor_id=mask_user_id(self.actor.account_id), row_count=len(rows))
        return CsvExport(
            filename=export_filename("transactions_export"),
            content=render_csv(TRANSACTION_EXPORT_COLUMNS, rows),
            row_count=len(rows),
        )
