"""
Domain Models - Internal business logic models using dataclasses.

All data structures crossing the service boundary are immutable dataclasses.
"""

from dataclasses import dataclass
from datetime import datetime
from uuid import UUID

from showroom_billing.models.api import LedgerReason, PlanCode, WebhookOutcome

EVENT_KEY_MAX_LENGTH = 255


@dataclass(frozen=True)
class Product:
    """A Gumroad product this system sells credits through."""

    slug: str
    credits: int
    plan_code: PlanCode
    name: str

    def __post_init__(self) -> None:
        """Validate product configuration."""
        if not self.slug:
            raise ValueError("Product slug required")
        if self.credits <= 0:
            raise ValueError(f"Credits must be positive: {self.credits}")
        if not self.name:
            raise ValueError("Name required")


@dataclass(frozen=True)
class PurchaseNotification:
    """Fields pulled out of one Gumroad ping, before catalog lookup."""

    email: str
    product_slug: str
    provider_event_id: str | None
    price: str | None


@dataclass(frozen=True)
class PurchaseIntent:
    """A purchase resolved against the catalog, ready to be applied once."""

    email: str
    product: Product
    event_key: str

    def __post_init__(self) -> None:
        """Validate purchase constraints."""
        if not self.email:
            raise ValueError("Email cannot be empty")
        if not self.event_key:
            raise ValueError("Event key cannot be empty")
        if len(self.event_key) > EVENT_KEY_MAX_LENGTH:
            raise ValueError(f"Event key longer than {EVENT_KEY_MAX_LENGTH} characters")


@dataclass(frozen=True)
class PurchaseResult:
    """What apply_purchase did. Balances are None for duplicates."""

    outcome: WebhookOutcome
    event_key: str
    account_id: UUID | None = None
    email: str | None = None
    credits_applied: int = 0
    balance_before: int | None = None
    balance_after: int | None = None
    plan_code: PlanCode | None = None
    credits_expire_at: datetime | None = None
    account_created: bool = False


@dataclass(frozen=True)
class AccountData:
    """Immutable account data snapshot."""

    account_id: UUID
    email: str
    credits_balance: int
    credits_expire_at: datetime | None
    plan_code: PlanCode | None
    created_at: datetime
    updated_at: datetime


@dataclass(frozen=True)
class BalanceSnapshot:
    """
    Balance as a reader must see it.

    credits_balance is the stored integer; usable_credits is zero once the
    expiry has passed, whatever is stored.
    """

    account_id: UUID
    email: str
    credits_balance: int
    usable_credits: int
    credits_expire_at: datetime | None
    plan_code: PlanCode | None
    expired: bool

    def __post_init__(self) -> None:
        """Validate balance constraints."""
        if self.credits_balance < 0:
            raise ValueError(f"Balance cannot be negative: {self.credits_balance}")
        expected = 0 if self.expired else self.credits_balance
        if self.usable_credits != expected:
            raise ValueError(f"Usable credits mismatch: {self.usable_credits} != {expected}")


@dataclass(frozen=True)
class ConsumptionResult:
    """Immutable result of a successful credit consumption."""

    account_id: UUID
    email: str
    amount: int
    balance_before: int
    balance_after: int


@dataclass(frozen=True)
class AdjustmentResult:
    """Immutable result of an admin balance override."""

    account_id: UUID
    email: str
    balance_before: int
    balance_after: int

    @property
    def delta(self) -> int:
        return self.balance_after - self.balance_before


@dataclass(frozen=True)
class BootstrapResult:
    """Account returned by the first-sign-in bootstrap."""

    account: AccountData
    created: bool


@dataclass(frozen=True)
class LedgerEntryData:
    """Immutable credit_ledger row."""

    entry_id: UUID
    user_id: UUID
    email: str | None
    delta: int
    reason: LedgerReason | str
    ref: str | None
    created_at: datetime


@dataclass(frozen=True)
class ProcessedEventData:
    """Immutable processed_webhooks row."""

    event_key: str
    created_at: datetime


@dataclass(frozen=True)
class ActivityReport:
    """Latest webhook and ledger activity for operators."""

    processed_events: list[ProcessedEventData]
    ledger_entries: list[LedgerEntryData]
