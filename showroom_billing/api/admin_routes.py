"""
Admin API Routes - Operator balance overrides and webhook activity.

All routes require the X-Admin-Key header.
"""

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.ext.asyncio import AsyncSession
from structlog import get_logger

from showroom_billing.api.dependencies import require_admin_key
from showroom_billing.db.session import get_read_db, get_write_db
from showroom_billing.exceptions import AccountNotFoundError
from showroom_billing.models.api import (
    ActivityReportResponse,
    AdjustBalanceRequest,
    AdjustBalanceResponse,
    ExpireBalancesResponse,
    LedgerEntryItem,
    ProcessedEventItem,
)
from showroom_billing.services.credit_ledger import CreditLedgerService

logger = get_logger(__name__)

router = APIRouter(prefix="/v1/admin", dependencies=[Depends(require_admin_key)])


@router.put("/credits/{email}", response_model=AdjustBalanceResponse)
async def adjust_balance(
    email: str,
    request: AdjustBalanceRequest,
    db: AsyncSession = Depends(get_write_db),
) -> AdjustBalanceResponse:
    """
    Set an account's stored balance to an exact value.

    The ledger records the difference as an admin_credit entry.
    """
    service = CreditLedgerService(db)

    try:
        result = await service.adjust_balance(email, request.credits_balance, note=request.note)
    except AccountNotFoundError as exc:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Account not found",
        ) from exc

    logger.info(
        "admin_balance_adjusted",
        account_id=str(result.account_id),
        delta=result.delta,
        note=request.note,
    )

    return AdjustBalanceResponse(
        account_id=str(result.account_id),
        email=result.email,
        balance_before=result.balance_before,
        balance_after=result.balance_after,
        delta=result.delta,
    )


@router.post("/credits/expire", response_model=ExpireBalancesResponse)
async def expire_balances(db: AsyncSession = Depends(get_write_db)) -> ExpireBalancesResponse:
    """Zero every balance whose expiry has passed."""
    service = CreditLedgerService(db)
    count = await service.expire_balances()
    return ExpireBalancesResponse(expired_accounts=count)


@router.get("/webhooks/recent", response_model=ActivityReportResponse)
async def recent_webhook_activity(
    limit: int = Query(20, ge=1, le=200),
    db: AsyncSession = Depends(get_read_db),
) -> ActivityReportResponse:
    """Latest processed webhook events and ledger entries, newest first."""
    service = CreditLedgerService(db)
    report = await service.recent_activity(limit=limit)

    return ActivityReportResponse(
        processed_events=[
            ProcessedEventItem(
                event_key=event.event_key,
                created_at=event.created_at.isoformat(),
            )
            for event in report.processed_events
        ],
        ledger_entries=[
            LedgerEntryItem(
                entry_id=str(entry.entry_id),
                user_id=str(entry.user_id),
                email=entry.email,
                delta=entry.delta,
                reason=str(getattr(entry.reason, "value", entry.reason)),
                ref=entry.ref,
                created_at=entry.created_at.isoformat(),
            )
            for entry in report.ledger_entries
        ],
    )
