"""
Database Models - SQLAlchemy ORM models with strict typing.

NO DICTIONARIES - All columns use Mapped[] type annotations.
"""

from datetime import UTC, datetime
from uuid import UUID, uuid4

from sqlalchemy import (
    CheckConstraint,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    UniqueConstraint,
    Uuid,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


class Base(DeclarativeBase):
    """Base class for all ORM models."""

    pass


def utc_now() -> datetime:
    """Get current UTC timestamp."""
    return datetime.now(UTC)


class Account(Base):
    """
    ORM model for users table.

    One row per email. credits_balance is only meaningful while
    credits_expire_at is unset or in the future.
    """

    __tablename__ = "users"

    # Primary Key
    id: Mapped[UUID] = mapped_column(Uuid(as_uuid=True), primary_key=True, default=uuid4)

    # Identity - exact string as received, no case folding
    email: Mapped[str] = mapped_column(String(320), nullable=False)

    # Balance
    credits_balance: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    credits_expire_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    plan_code: Mapped[str | None] = mapped_column(String(20), nullable=True)

    # Audit timestamps
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now, onupdate=utc_now
    )

    __table_args__ = (
        CheckConstraint("credits_balance >= 0", name="ck_credits_balance_non_negative"),
        CheckConstraint(
            "plan_code IS NULL OR plan_code IN ('basic', 'standard', 'premium')",
            name="ck_plan_code_valid",
        ),
        UniqueConstraint("email", name="uq_users_email"),
        Index("idx_users_credits_expire_at", "credits_expire_at"),
    )

    def __repr__(self) -> str:
        return (
            f"<Account(id={self.id}, email={self.email}, "
            f"credits_balance={self.credits_balance}, plan_code={self.plan_code})>"
        )


class ProcessedWebhookEvent(Base):
    """
    ORM model for processed_webhooks table.

    The unique event_key is the single source of truth for
    "this delivery has been applied".
    """

    __tablename__ = "processed_webhooks"

    id: Mapped[UUID] = mapped_column(Uuid(as_uuid=True), primary_key=True, default=uuid4)
    event_key: Mapped[str] = mapped_column(String(255), nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now
    )

    __table_args__ = (
        UniqueConstraint("event_key", name="uq_processed_webhooks_event_key"),
        Index("idx_processed_webhooks_created_at", "created_at"),
    )

    def __repr__(self) -> str:
        return f"<ProcessedWebhookEvent(event_key={self.event_key}, created_at={self.created_at})>"


class CreditLedgerEntry(Base):
    """
    ORM model for credit_ledger table.

    Append-only audit trail. Every change to credits_balance writes exactly
    one row whose delta equals the change.
    """

    __tablename__ = "credit_ledger"

    id: Mapped[UUID] = mapped_column(Uuid(as_uuid=True), primary_key=True, default=uuid4)
    user_id: Mapped[UUID] = mapped_column(
        Uuid(as_uuid=True), ForeignKey("users.id", ondelete="RESTRICT"), nullable=False
    )
    delta: Mapped[int] = mapped_column(Integer, nullable=False)
    reason: Mapped[str] = mapped_column(String(50), nullable=False)
    ref: Mapped[str | None] = mapped_column(String(255), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now
    )

    __table_args__ = (
        CheckConstraint("delta <> 0", name="ck_ledger_delta_non_zero"),
        Index("idx_credit_ledger_user_id", "user_id"),
        Index("idx_credit_ledger_created_at", "created_at"),
    )

    def __repr__(self) -> str:
        return (
            f"<CreditLedgerEntry(user_id={self.user_id}, delta={self.delta}, "
            f"reason={self.reason}, ref={self.ref})>"
        )
