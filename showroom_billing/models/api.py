"""
API Models - Pydantic models for request/response validation.

The Gumroad webhook body is deliberately NOT modelled here: it arrives as JSON or
form data with optional, aliased fields and is read leniently by
showroom_billing.services.gumroad_payload.
"""

from enum import Enum
from typing import Literal

from pydantic import BaseModel, Field


class PlanCode(str, Enum):
    """Credit pack tier last purchased by an account."""

    BASIC = "basic"
    STANDARD = "standard"
    PREMIUM = "premium"


class LedgerReason(str, Enum):
    """Reason tags written to credit_ledger.reason."""

    GUMROAD_PURCHASE = "gumroad_purchase"
    ADMIN_CREDIT = "admin_credit"
    USAGE = "usage"
    SIGNUP_TRIAL = "signup_trial"
    CREDITS_EXPIRED = "credits_expired"


class WebhookOutcome(str, Enum):
    """Terminal state of one webhook delivery."""

    PROCESSED = "processed"
    DUPLICATE = "already_processed"
    IGNORED = "ignored"


# ============================================================================
# Webhook Responses
# ============================================================================


class WebhookInfoResponse(BaseModel):
    """GET on the webhook URL - diagnostics only."""

    status: str = "active"
    message: str = "Gumroad webhook endpoint"
    methods: list[str] = Field(default_factory=lambda: ["POST"])
    note: str = "This endpoint only accepts POST requests from Gumroad"


class WebhookResponse(BaseModel):
    """POST response. Gumroad only looks at the status code."""

    status: WebhookOutcome
    email: str | None = None
    credits: int | None = None
    plan: PlanCode | None = None
    balance: int | None = None
    product: str | None = None


# ============================================================================
# Balance Models
# ============================================================================


class BalanceResponse(BaseModel):
    """GET /v1/credits/{email} response."""

    account_id: str
    email: str
    credits_balance: int
    usable_credits: int
    expired: bool
    credits_expire_at: str | None = None
    plan_code: PlanCode | None = None


class ConsumeCreditsRequest(BaseModel):
    """POST /v1/credits/{email}/consume request body."""

    amount: int = Field(..., gt=0, le=100_000)
    ref: str | None = Field(None, max_length=255, description="Correlation id, e.g. generation job id")


class ConsumeCreditsResponse(BaseModel):
    """POST /v1/credits/{email}/consume response."""

    account_id: str
    email: str
    consumed: int
    balance_before: int
    balance_after: int


class BootstrapResponse(BaseModel):
    """POST /v1/credits/{email}/bootstrap response."""

    account_id: str
    email: str
    created: bool
    credits_balance: int
    credits_expire_at: str | None = None


# ============================================================================
# Admin Models
# ============================================================================


class AdjustBalanceRequest(BaseModel):
    """PUT /v1/admin/credits/{email} request body."""

    credits_balance: int = Field(..., ge=0, le=10_000_000)
    note: str | None = Field(None, max_length=255)


class AdjustBalanceResponse(BaseModel):
    """PUT /v1/admin/credits/{email} response."""

    account_id: str
    email: str
    balance_before: int
    balance_after: int
    delta: int


class ExpireBalancesResponse(BaseModel):
    """POST /v1/admin/credits/expire response."""

    expired_accounts: int


class ProcessedEventItem(BaseModel):
    """One processed_webhooks row."""

    event_key: str
    created_at: str


class LedgerEntryItem(BaseModel):
    """One credit_ledger row, joined with the account email."""

    entry_id: str
    user_id: str
    email: str | None = None
    delta: int
    reason: str
    ref: str | None = None
    created_at: str


class ActivityReportResponse(BaseModel):
    """GET /v1/admin/webhooks/recent response."""

    processed_events: list[ProcessedEventItem]
    ledger_entries: list[LedgerEntryItem]


class HealthResponse(BaseModel):
    """GET /health response."""

    status: Literal["healthy", "unhealthy"]
    database: Literal["connected", "disconnected"]
    timestamp: str
