"""Credit ledger - atomic, non-negative, audited balance mutations."""

from typing import Optional, Type

from ulid import ULID

from src.models.account import Account, Actor
from src.models.credit_transaction import (
    CreditAdjustment,
    CreditTransaction,
    CreditType,
    TransactionAction,
)
from src.services.store import ACCOUNTS_TABLE, TRANSACTIONS_TABLE, RecordStore, get_store
from src.utils.config import MarketplaceConfig
from src.utils.errors import (
    AccountNotFound,
    InsufficientBalance,
    InsufficientBoostingCredits,
    InsufficientListingCredits,
    PermissionDenied,
    PersistenceUnavailable,
    PropertyAIError,
    ValidationFailed,
)
from src.utils.logging import get_structured_logger, log_timing, mask_user_id
from src.utils.timestamps import utc_now_iso

logger = get_structured_logger(__name__)

BALANCE_COLUMNS = {
    CreditType.GENERAL: "credits",
    CreditType.LISTING: "listing_credits",
    CreditType.BOOSTING: "boosting_credits",
}


def generate_transaction_id() -> str:
    """Generate a text-based transaction ID (ULID format)."""
    return str(ULID())


def _require_delta(delta: int) -> None:
    if isinstance(delta, bool) or not isinstance(delta, int) or delta == 0:
        raise ValidationFailed("delta", "delta must be a non-zero integer")


class CreditLedger:
    """Owns every write to ``credits``, ``listing_credits`` and ``boosting_credits``.

    Balances are changed with a compare-and-swap on the balance column: the
    write only lands if the balance still holds the value that was checked.
    A lost race re-reads and re-checks, so two concurrent deductions can
    never both succeed when only one fits.
    """

    def __init__(self, store: Optional[RecordStore] = None, max_attempts: Optional[int] = None):
        self.store = store or get_store()
        self.max_attempts = max_attempts or MarketplaceConfig.CREDIT_CAS_MAX_ATTEMPTS

    async def get_account(self, account_id: str) -> Account:
        row = await self.store.get(ACCOUNTS_TABLE, account_id)
        if row is None:
            raise AccountNotFound(f"Account not found: {account_id}")
        return Account(**row)

    async def list_accounts(self) -> list[Account]:
        """All accounts, newest first."""
        rows = await self.store.select(ACCOUNTS_TABLE, order_by="created_at", descending=True)
        return [Account(**row) for row in rows]

    async def list_transactions(self, account_id: Optional[str] = None) -> list[CreditTransaction]:
        """Audit trail, newest first."""
        filters = {"account_id": account_id} if account_id else None
        rows = await self.store.select(
            TRANSACTIONS_TABLE, filters=filters, order_by="created_at", descending=True
        )
        return [CreditTransaction(**row) for row in rows]

    async def adjust_credits(
        self,
        account_id: str,
        delta: int,
        actor: Actor,
        reason: Optional[str] = None,
    ) -> CreditAdjustment:
        """Grant (delta > 0) or deduct (delta < 0) general credits."""
        if not actor.is_admin:
            raise PermissionDenied("Only administrators can adjust credits")
        _require_delta(delta)
        action = TransactionAction.CREDIT_ADD if delta > 0 else TransactionAction.CREDIT_DEDUCT
        return await self._adjust(
            account_id, delta, CreditType.GENERAL, action, actor.account_id, reason=reason
        )

    async def adjust_listing_credits(
        self,
        account_id: str,
        delta: int,
        actor: Actor,
        reason: Optional[str] = None,
    ) -> CreditAdjustment:
        """Grant or deduct listing credits by hand."""
        if not actor.is_admin:
            raise PermissionDenied("Only administrators can adjust listing credits")
        _require_delta(delta)
        action = (
            TransactionAction.LISTING_CREDIT_ADD if delta > 0 else TransactionAction.LISTING_CREDIT_DEDUCT
        )
        return await self._adjust(
            account_id, delta, CreditType.LISTING, action, actor.account_id, reason=reason
        )

    async def adjust_boosting_credits(
        self,
        account_id: str,
        delta: int,
        actor: Actor,
        reason: Optional[str] = None,
    ) -> CreditAdjustment:
        if not actor.is_admin:
            raise PermissionDenied("Only administrators can adjust boosting credits")
        _require_delta(delta)
        action = (
            TransactionAction.BOOSTING_CREDIT_ADD if delta > 0 else TransactionAction.BOOSTING_CREDIT_DEDUCT
        )
        return await self._adjust(
            account_id, delta, CreditType.BOOSTING, action, actor.account_id, reason=reason
        )

    async def consume_boosting_credit(self, account_id: str, listing_id: str) -> CreditAdjustment:
        """Deduct the cost of featuring ``listing_id``."""
        return await self._adjust(
            account_id,
            -MarketplaceConfig.BOOSTING_CREDIT_COST,
            CreditType.BOOSTING,
            TransactionAction.PROPERTY_BOOSTED,
            MarketplaceConfig.SYSTEM_ACTOR_ID,
            listing_id=listing_id,
            insufficient=InsufficientBoostingCredits,
        )

    async def refund_boosting_credit(
        self, account_id: str, listing_id: str, reason: Optional[str] = None
    ) -> CreditAdjustment:
        return await self._adjust(
            account_id,
            MarketplaceConfig.BOOSTING_CREDIT_COST,
            CreditType.BOOSTING,
            TransactionAction.PROPERTY_BOOST_REFUND,
            MarketplaceConfig.SYSTEM_ACTOR_ID,
            reason=reason,
            listing_id=listing_id,
        )

    async def consume_listing_credit(self, account_id: str, listing_id: str) -> CreditAdjustment:
        """Deduct the posting cost for a new listing on behalf of the system."""
        return await self._adjust(
            account_id,
            -MarketplaceConfig.LISTING_CREDIT_COST,
            CreditType.LISTING,
            TransactionAction.PROPERTY_POSTED,
            MarketplaceConfig.SYSTEM_ACTOR_ID,
            listing_id=listing_id,
            insufficient=InsufficientListingCredits,
        )

    async def refund_listing_credit(
        self, account_id: str, listing_id: str, reason: Optional[str] = None
    ) -> CreditAdjustment:
        """Give back a listing credit whose listing was never stored."""
        return await self._adjust(
            account_id,
            MarketplaceConfig.LISTING_CREDIT_COST,
            CreditType.LISTING,
            TransactionAction.PROPERTY_POSTING_REFUND,
            MarketplaceConfig.SYSTEM_ACTOR_ID,
            reason=reason,
            listing_id=listing_id,
        )

    async def _adjust(
        self,
        account_id: str,
        delta: int,
        credit_type: CreditType,
        action: TransactionAction,
        performed_by: str,
        reason: Optional[str] = None,
        listing_id: Optional[str] = None,
        insufficient: Type[PropertyAIError] = InsufficientBalance,
    ) -> CreditAdjustment:
        column = BALANCE_COLUMNS[credit_type]

        with log_timing(
            "credit_adjustment",
            logger=logger,
            account_id=mask_user_id(account_id),
            credit_type=credit_type.value,
        ):
            previous, new = await self._swap_balance(account_id, column, delta, insufficient)

            transaction = CreditTransaction(
                id=generate_transaction_id(),
                account_id=account_id,
                credit_type=credit_type,
                action_type=action,
                delta=delta,
                previous_balance=previous,
                resulting_balance=new,
                performed_by=performed_by,
                reason=reason,
                listing_id=listing_id,
                created_at=utc_now_iso(),
            )
            try:
                await self.store.insert(TRANSACTIONS_TABLE, transaction.model_dump(mode="json"))
            except PersistenceUnavailable:
                await self._compensate(account_id, column, -delta)
                raise

        logger.info(
            "Balance adjusted",
            account_id=mask_user_id(account_id),
            credit_type=credit_type.value,
            action_type=action.value,
            delta=delta,
            previous_balance=previous,
            resulting_balance=new,
            performed_by=mask_user_id(performed_by),
            transaction_id=transaction.id,
        )

        return CreditAdjustment(
            account_id=account_id,
            credit_type=credit_type,
            delta=delta,
            previous_balance=previous,
            new_balance=new,
            transaction_id=transaction.id,
        )

    async def _swap_balance(
        self,
        account_id: str,
        column: str,
        delta: int,
        insufficient: Type[PropertyAIError],
    ) -> tuple[int, int]:
        """Compare-and-swap ``column`` by ``delta``; returns (previous, new)."""
        for attempt in range(1, self.max_attempts + 1):
            row = await self.store.get(ACCOUNTS_TABLE, account_id)
            if row is None:
                raise AccountNotFound(f"Account not found: {account_id}")

            current = int(row.get(column) or 0)
            new = current + delta
            if new < 0:
                raise insufficient(
                    f"Insufficient {column.replace('_', ' ')}: balance {current}, requested {abs(delta)}"
                )

            updated = await self.store.update_where(
                ACCOUNTS_TABLE,
                account_id,
                {column: current},
                {column: new, "updated_at": utc_now_iso()},
            )
            if updated is not None:
                return current, new

            logger.debug(
                "Balance changed concurrently, retrying",
                account_id=mask_user_id(account_id),
                balance_column=column,
                attempt=attempt,
            )

        logger.warning(
            "Balance update contention exhausted retries",
            account_id=mask_user_id(account_id),
            balance_column=column,
            attempts=self.max_attempts,
        )
        raise PersistenceUnavailable(
            f"Could not update {column} for {account_id} after {self.max_attempts} attempts"
        )

    async def _compensate(self, account_id: str, column: str, delta: int) -> None:
        """Undo a balance change whose audit record could not be written."""
        try:
            await self._swap_balance(account_id, column, delta, InsufficientBalance)
            logger.warning(
                "Balance change rolled back after audit failure",
                account_id=mask_user_id(account_id),
                balance_column=column,
                delta=delta,
            )
        except PropertyAIError as e:
            logger.error(
                "Failed to roll back balance change",
                account_id=mask_user_id(account_id),
                balance_column=column,
                delta=delta,
                error=str(e),
                exc_info=True,
            )
