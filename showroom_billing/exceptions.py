"""
Exception Classes - Strongly typed exception hierarchy.

Every exception carries typed attributes so routes can map it to a status code
without parsing messages.
"""

from datetime import datetime


class BillingError(Exception):
    """Base exception for all billing errors."""

    pass


class AccountNotFoundError(BillingError):
    """Raised when no account exists for an email."""

    def __init__(self, email: str) -> None:
        self.email = email
        super().__init__(f"Account not found: {email}")


class InsufficientCreditsError(BillingError):
    """Raised when account has insufficient balance for a consumption."""

    def __init__(self, balance: int, required: int) -> None:
        self.balance = balance
        self.required = required
        super().__init__(f"Insufficient credits. Balance: {balance}, Required: {required}")


class CreditsExpiredError(BillingError):
    """Raised when the stored balance is past its expiry."""

    def __init__(self, email: str, expired_at: datetime) -> None:
        self.email = email
        self.expired_at = expired_at
        super().__init__(f"Credits for {email} expired at {expired_at.isoformat()}")


class WebhookPayloadError(BillingError):
    """Raised when a webhook body lacks a required field."""

    def __init__(self, field: str) -> None:
        self.field = field
        super().__init__(f"Webhook payload missing {field}")


class WriteVerificationError(BillingError):
    """Raised when database write verification fails."""

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(f"Write verification failed: {message}")


class DataIntegrityError(BillingError):
    """Raised when data integrity constraint violated."""

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(f"Data integrity error: {message}")


class CatalogError(BillingError):
    """Raised when the product catalog is malformed."""

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(f"Invalid product catalog: {message}")
