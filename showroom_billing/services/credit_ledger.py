"""
Credit Ledger Service - Every balance mutation goes through here.

NO DICTIONARIES - All operations use strongly typed domain models.

All write operations follow the pattern:
1. Claim / lock (unique insert or SELECT ... FOR UPDATE)
2. Mutate balance and append exactly one ledger entry
3. Flush, read back and verify
4. Commit, or roll back the whole unit on any error
"""

from datetime import UTC, datetime, timedelta
from typing import Any
from uuid import UUID, uuid4

from sqlalchemy import or_, select, update
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.ext.asyncio import AsyncSession

from showroom_billing.config import settings
from showroom_billing.db.models import Account, CreditLedgerEntry, ProcessedWebhookEvent
from showroom_billing.exceptions import (
    AccountNotFoundError,
    CreditsExpiredError,
    DataIntegrityError,
    InsufficientCreditsError,
    WriteVerificationError,
)
from showroom_billing.models.api import LedgerReason, PlanCode, WebhookOutcome
from showroom_billing.models.domain import (
    AccountData,
    ActivityReport,
    AdjustmentResult,
    BalanceSnapshot,
    BootstrapResult,
    ConsumptionResult,
    LedgerEntryData,
    ProcessedEventData,
    PurchaseIntent,
    PurchaseResult,
)
from showroom_billing.observability.logging import get_logger
from showroom_billing.observability.metrics import metrics
from showroom_billing.observability.tracing import trace_operation

logger = get_logger(__name__)


def _utc_now() -> datetime:
    """Get current UTC timestamp."""
    return datetime.now(UTC)


def _as_utc(value: datetime | None) -> datetime | None:
    """SQLite hands back naive datetimes; everything stored is UTC."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


def _end_of_current_month(now: datetime) -> datetime:
    """
    Exclusive expiry bound for a purchase made at `now`.

    Credits stay usable through the last day of the month, so the bound is the
    first instant of the following month in UTC.
    """
    now = _as_utc(now)  # type: ignore[assignment]
    if now.month == 12:
        return datetime(now.year + 1, 1, 1, tzinfo=UTC)
    return datetime(now.year, now.month + 1, 1, tzinfo=UTC)


def _is_expired(expire_at: datetime | None, now: datetime) -> bool:
    expire_at = _as_utc(expire_at)
    return expire_at is not None and now >= expire_at


class CreditLedgerService:
    """Credit ledger operations bound to one database session."""

    def __init__(
        self,
        session: AsyncSession,
        trial_credits: int | None = None,
        trial_days: int | None = None,
    ) -> None:
        """Initialize ledger service with database session."""
        self.session = session
        self.trial_credits = settings.trial_credits if trial_credits is None else trial_credits
        self.trial_days = settings.trial_days if trial_days is None else trial_days

    # ========================================================================
    # Purchases
    # ========================================================================

    async def apply_purchase(
        self, intent: PurchaseIntent, now: datetime | None = None
    ) -> PurchaseResult:
        """
        Apply one Gumroad purchase exactly once.

        The processed-event row is inserted first, in the same transaction as
        the balance mutation. A concurrent delivery of the same event blocks on
        that insert and then finds the key taken, so only one mutation commits.

        Additive policy: the pack's credits are added to the live balance,
        the expiry moves to the end of the current month, and the plan becomes
        the pack's plan. A balance already past its expiry is written off first,
        so old credits never come back to life.

        Raises:
            WriteVerificationError: Account or balance missing after write
            DataIntegrityError: Balance read back differs from what was written
        """
        now = _as_utc(now) or _utc_now()
        product = intent.product

        with trace_operation(
            "apply_purchase", event_key=intent.event_key, product=product.slug
        ) as span:
            if await self._find_processed_event(intent.event_key) is not None:
                span.set_attribute("outcome", WebhookOutcome.DUPLICATE.value)
                return PurchaseResult(
                    outcome=WebhookOutcome.DUPLICATE,
                    event_key=intent.event_key,
                    email=intent.email,
                )

            try:
                claimed = await self._claim_event(intent.event_key, now)
                if not claimed:
                    await self.session.rollback()
                    logger.info("gumroad_event_claim_lost", event_key=intent.event_key)
                    span.set_attribute("outcome", WebhookOutcome.DUPLICATE.value)
                    return PurchaseResult(
                        outcome=WebhookOutcome.DUPLICATE,
                        event_key=intent.event_key,
                        email=intent.email,
                    )

                account, created = await self._get_or_create_locked(intent.email, now)
                expired_credits = self._expire_locked(account, now)

                balance_before = account.credits_balance
                balance_after = balance_before + product.credits
                expire_at = _end_of_current_month(now)

                account.credits_balance = balance_after
                account.credits_expire_at = expire_at
                account.plan_code = product.plan_code.value
                account.updated_at = now

                self.session.add(
                    CreditLedgerEntry(
                        id=uuid4(),
                        user_id=account.id,
                        delta=product.credits,
                        reason=LedgerReason.GUMROAD_PURCHASE.value,
                        ref=product.slug,
                        created_at=now,
                    )
                )
                await self.session.flush()
                await self._verify_balance(account.id, balance_after)

                await self.session.commit()
            except BaseException:
                await self.session.rollback()
                raise

            span.set_attribute("outcome", WebhookOutcome.PROCESSED.value)

        metrics.record_credit_grant(product.plan_code.value, product.credits)
        if expired_credits:
            metrics.credits_expired_total.inc(expired_credits)
        if created:
            metrics.record_account_created(LedgerReason.GUMROAD_PURCHASE.value)

        logger.info(
            "gumroad_purchase_applied",
            event_key=intent.event_key,
            account_id=str(account.id),
            product=product.slug,
            credits=product.credits,
            balance_before=balance_before,
            balance_after=balance_after,
            expired_credits=expired_credits,
            account_created=created,
        )

        return PurchaseResult(
            outcome=WebhookOutcome.PROCESSED,
            event_key=intent.event_key,
            account_id=account.id,
            email=account.email,
            credits_applied=product.credits,
            balance_before=balance_before,
            balance_after=balance_after,
            plan_code=product.plan_code,
            credits_expire_at=expire_at,
            account_created=created,
        )

    # ========================================================================
    # Balance reads and usage
    # ========================================================================

    async def get_balance(self, email: str, now: datetime | None = None) -> BalanceSnapshot:
        """
        Balance as the rest of the product must see it.

        Read-only: an expired balance reports zero usable credits but is not
        rewritten here; expire_balances() does that.

        Raises:
            AccountNotFoundError: No account for this email
        """
        now = _as_utc(now) or _utc_now()
        account = await self._find_account_by_email(email)
        if account is None:
            raise AccountNotFoundError(email)

        expired = _is_expired(account.credits_expire_at, now)
        return BalanceSnapshot(
            account_id=account.id,
            email=account.email,
            credits_balance=account.credits_balance,
            usable_credits=0 if expired else account.credits_balance,
            credits_expire_at=_as_utc(account.credits_expire_at),
            plan_code=PlanCode(account.plan_code) if account.plan_code else None,
            expired=expired,
        )

    async def consume_credits(
        self,
        email: str,
        amount: int,
        ref: str | None = None,
        now: datetime | None = None,
    ) -> ConsumptionResult:
        """
        Spend credits with a single conditional UPDATE.

        The decrement only matches while the balance covers the amount and has
        not expired, so concurrent consumers can never drive it negative.

        Raises:
            ValueError: Amount is not positive
            AccountNotFoundError: No account for this email
            CreditsExpiredError: Stored balance is past its expiry
            InsufficientCreditsError: Balance lower than amount
        """
        if amount <= 0:
            raise ValueError(f"Amount must be positive: {amount}")

        now = _as_utc(now) or _utc_now()

        stmt = (
            update(Account)
            .where(
                Account.email == email,
                Account.credits_balance >= amount,
                or_(Account.credits_expire_at.is_(None), Account.credits_expire_at > now),
            )
            .values(credits_balance=Account.credits_balance - amount, updated_at=now)
            .returning(Account.id, Account.credits_balance)
            .execution_options(synchronize_session=False)
        )

        try:
            row = (await self.session.execute(stmt)).one_or_none()
            if row is None:
                await self.session.rollback()
                await self._raise_consumption_refusal(email, amount, now)

            account_id, balance_after = row[0], row[1]
            if balance_after < 0:
                raise DataIntegrityError(f"Balance went negative: {balance_after}")

            self.session.add(
                CreditLedgerEntry(
                    id=uuid4(),
                    user_id=account_id,
                    delta=-amount,
                    reason=LedgerReason.USAGE.value,
                    ref=ref,
                    created_at=now,
                )
            )
            await self.session.flush()
            await self.session.commit()
        except (AccountNotFoundError, CreditsExpiredError, InsufficientCreditsError) as exc:
            metrics.record_consumption(False, amount, type(exc).__name__)
            raise
        except Exception:
            await self.session.rollback()
            raise

        metrics.record_consumption(True, amount)
        logger.info(
            "credits_consumed",
            account_id=str(account_id),
            amount=amount,
            balance_after=balance_after,
            ref=ref,
        )

        return ConsumptionResult(
            account_id=account_id,
            email=email,
            amount=amount,
            balance_before=balance_after + amount,
            balance_after=balance_after,
        )

    async def bootstrap_account(self, email: str, now: datetime | None = None) -> BootstrapResult:
        """
        First sign-in: create the account with the trial grant.

        Existing accounts are returned untouched, so calling this on every
        sign-in is safe.
        """
        now = _as_utc(now) or _utc_now()
        expire_at = now + timedelta(days=self.trial_days)

        try:
            account_id = await self._insert_account(
                email,
                now,
                credits_balance=self.trial_credits,
                credits_expire_at=expire_at,
            )
            created = account_id is not None

            if created and self.trial_credits > 0:
                self.session.add(
                    CreditLedgerEntry(
                        id=uuid4(),
                        user_id=account_id,
                        delta=self.trial_credits,
                        reason=LedgerReason.SIGNUP_TRIAL.value,
                        ref=None,
                        created_at=now,
                    )
                )
                await self.session.flush()

            account = await self._find_account_by_email(email)
            if account is None:
                raise WriteVerificationError(f"Account {email} not found after bootstrap")

            await self.session.commit()
        except Exception:
            await self.session.rollback()
            raise

        if created:
            metrics.record_account_created(LedgerReason.SIGNUP_TRIAL.value)
            logger.info(
                "account_bootstrapped",
                account_id=str(account.id),
                trial_credits=self.trial_credits,
                credits_expire_at=expire_at.isoformat(),
            )

        return BootstrapResult(account=self._account_to_domain(account), created=created)

    # ========================================================================
    # Admin operations
    # ========================================================================

    async def adjust_balance(
        self,
        email: str,
        new_balance: int,
        note: str | None = None,
        now: datetime | None = None,
    ) -> AdjustmentResult:
        """
        Admin override: set the stored balance to an exact value.

        The ledger records the difference, not the new value. Setting the
        balance it already has writes nothing. An expired balance is written
        off first and its expiry cleared, so the override is measured from zero
        and stays usable until the next purchase or sweep sets a new expiry.

        Raises:
            ValueError: New balance is negative
            AccountNotFoundError: No account for this email
        """
        if new_balance < 0:
            raise ValueError(f"Balance cannot be negative: {new_balance}")

        now = _as_utc(now) or _utc_now()

        try:
            account = await self._lock_account_by_email(email)
            if account is None:
                raise AccountNotFoundError(email)

            expired_credits = self._expire_locked(account, now)
            balance_before = account.credits_balance
            delta = new_balance - balance_before

            if delta != 0:
                account.credits_balance = new_balance
                account.updated_at = now
                self.session.add(
                    CreditLedgerEntry(
                        id=uuid4(),
                        user_id=account.id,
                        delta=delta,
                        reason=LedgerReason.ADMIN_CREDIT.value,
                        ref=note,
                        created_at=now,
                    )
                )
                await self.session.flush()
                await self._verify_balance(account.id, new_balance)

            await self.session.commit()
        except Exception:
            await self.session.rollback()
            raise

        metrics.admin_adjustments_total.inc()
        if expired_credits:
            metrics.credits_expired_total.inc(expired_credits)
        logger.info(
            "balance_adjusted",
            account_id=str(account.id),
            balance_before=balance_before,
            balance_after=new_balance,
            delta=delta,
            expired_credits=expired_credits,
        )

        return AdjustmentResult(
            account_id=account.id,
            email=account.email,
            balance_before=balance_before,
            balance_after=new_balance,
        )

    async def expire_balances(self, now: datetime | None = None) -> int:
        """
        Zero every positive balance whose expiry has passed.

        Clears plan and expiry on each swept account and writes one
        credits_expired entry for the amount removed. Returns the number of
        accounts swept.
        """
        now = _as_utc(now) or _utc_now()

        stmt = (
            select(Account)
            .where(
                Account.credits_balance > 0,
                Account.credits_expire_at.is_not(None),
                Account.credits_expire_at <= now,
            )
            .order_by(Account.id)
            .with_for_update()
        )

        try:
            accounts = list((await self.session.execute(stmt)).scalars().all())
            total_removed = 0

            for account in accounts:
                total_removed += self._expire_locked(account, now)

            await self.session.flush()
            await self.session.commit()
        except Exception:
            await self.session.rollback()
            raise

        if accounts:
            metrics.credits_expired_total.inc(total_removed)
        logger.info("balances_expired", accounts=len(accounts), credits_removed=total_removed)
        return len(accounts)

    async def recent_activity(self, limit: int = 20) -> ActivityReport:
        """Latest processed webhook events and ledger entries, newest first."""
        events_stmt = (
            select(ProcessedWebhookEvent)
            .order_by(ProcessedWebhookEvent.created_at.desc())
            .limit(limit)
        )
        events = (await self.session.execute(events_stmt)).scalars().all()

        ledger_stmt = (
            select(CreditLedgerEntry, Account.email)
            .outerjoin(Account, Account.id == CreditLedgerEntry.user_id)
            .order_by(CreditLedgerEntry.created_at.desc())
            .limit(limit)
        )
        ledger_rows = (await self.session.execute(ledger_stmt)).all()

        return ActivityReport(
            processed_events=[
                ProcessedEventData(
                    event_key=event.event_key,
                    created_at=_as_utc(event.created_at),  # type: ignore[arg-type]
                )
                for event in events
            ],
            ledger_entries=[
                LedgerEntryData(
                    entry_id=entry.id,
                    user_id=entry.user_id,
                    email=email,
                    delta=entry.delta,
                    reason=_ledger_reason(entry.reason),
                    ref=entry.ref,
                    created_at=_as_utc(entry.created_at),  # type: ignore[arg-type]
                )
                for entry, email in ledger_rows
            ],
        )

    # ========================================================================
    # Private Helper Methods
    # ========================================================================

    def _insert(self, model: Any) -> Any:
        """Dialect-specific INSERT supporting ON CONFLICT DO NOTHING."""
        if self.session.bind.dialect.name == "sqlite":
            return sqlite.insert(model)
        return postgresql.insert(model)

    async def _find_processed_event(self, event_key: str) -> ProcessedWebhookEvent | None:
        """Find processed event by key."""
        stmt = select(ProcessedWebhookEvent).where(ProcessedWebhookEvent.event_key == event_key)
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def _claim_event(self, event_key: str, now: datetime) -> bool:
        """Insert the event row; False when another delivery already holds the key."""
        stmt = (
            self._insert(ProcessedWebhookEvent)
            .values(id=uuid4(), event_key=event_key, created_at=now)
            .on_conflict_do_nothing(index_elements=["event_key"])
            .returning(ProcessedWebhookEvent.id)
        )
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none() is not None

    async def _insert_account(
        self,
        email: str,
        now: datetime,
        credits_balance: int = 0,
        credits_expire_at: datetime | None = None,
    ) -> UUID | None:
        """Insert an account unless the email exists. Returns the new id, or None."""
        stmt = (
            self._insert(Account)
            .values(
                id=uuid4(),
                email=email,
                credits_balance=credits_balance,
                credits_expire_at=credits_expire_at,
                plan_code=None,
                created_at=now,
                updated_at=now,
            )
            .on_conflict_do_nothing(index_elements=["email"])
            .returning(Account.id)
        )
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def _get_or_create_locked(self, email: str, now: datetime) -> tuple[Account, bool]:
        """Get-or-create by email, returning the row locked for update."""
        created = await self._insert_account(email, now) is not None
        account = await self._lock_account_by_email(email)
        if account is None:
            raise WriteVerificationError(f"Account {email} not found after insert")
        return account, created

    async def _find_account_by_email(self, email: str) -> Account | None:
        """Find account by exact email."""
        stmt = select(Account).where(Account.email == email).execution_options(
            populate_existing=True
        )
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def _lock_account_by_email(self, email: str) -> Account | None:
        """Lock account row for update (SELECT FOR UPDATE)."""
        stmt = (
            select(Account)
            .where(Account.email == email)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    def _expire_locked(self, account: Account, now: datetime) -> int:
        """
        Write off a locked account's balance if its expiry has passed.

        Zeroes the balance, clears plan and expiry, and appends a
        credits_expired entry for a positive amount. Returns the credits removed.
        """
        expired_at = _as_utc(account.credits_expire_at)
        if not _is_expired(expired_at, now):
            return 0

        removed = account.credits_balance
        if removed > 0:
            self.session.add(
                CreditLedgerEntry(
                    id=uuid4(),
                    user_id=account.id,
                    delta=-removed,
                    reason=LedgerReason.CREDITS_EXPIRED.value,
                    ref=expired_at.isoformat(),  # type: ignore[union-attr]
                    created_at=now,
                )
            )
        account.credits_balance = 0
        account.credits_expire_at = None
        account.plan_code = None
        account.updated_at = now
        return removed

    async def _verify_balance(self, account_id: UUID, expected: int) -> None:
        """Read the account back after flush and check the balance."""
        verified = await self.session.get(Account, account_id)
        if verified is None:
            raise WriteVerificationError(f"Account {account_id} disappeared after update")
        if verified.credits_balance != expected:
            raise DataIntegrityError(
                f"Balance mismatch: expected {expected}, got {verified.credits_balance}"
            )

    async def _raise_consumption_refusal(self, email: str, amount: int, now: datetime) -> None:
        """Work out why the conditional decrement matched nothing, and raise it."""
        account = await self._find_account_by_email(email)
        if account is None:
            raise AccountNotFoundError(email)
        if _is_expired(account.credits_expire_at, now):
            raise CreditsExpiredError(email, _as_utc(account.credits_expire_at))  # type: ignore[arg-type]
        raise InsufficientCreditsError(account.credits_balance, amount)

    def _account_to_domain(self, account: Account) -> AccountData:
        """Convert ORM account to domain model."""
        return AccountData(
            account_id=account.id,
            email=account.email,
            credits_balance=account.credits_balance,
            credits_expire_at=_as_utc(account.credits_expire_at),
            plan_code=PlanCode(account.plan_code) if account.plan_code else None,
            created_at=_as_utc(account.created_at),  # type: ignore[arg-type]
            updated_at=_as_utc(account.updated_at),  # type: ignore[arg-type]
        )


def _ledger_reason(value: str) -> LedgerReason | str:
    try:
        return LedgerReason(value)
    except ValueError:
        return value
