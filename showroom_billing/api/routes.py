"""
API Routes - Balance operations for the rest of the product, and health.

NO DICTIONARIES - All requests/responses use Pydantic models.
"""

from datetime import UTC, datetime

from fastapi import APIRouter, Depends, HTTPException, Response, status
from sqlalchemy.ext.asyncio import AsyncSession

from showroom_billing.api.dependencies import require_service_key
from showroom_billing.db.session import get_read_db, get_write_db, ping_database
from showroom_billing.exceptions import (
    AccountNotFoundError,
    CreditsExpiredError,
    InsufficientCreditsError,
)
from showroom_billing.models.api import (
    BalanceResponse,
    BootstrapResponse,
    ConsumeCreditsRequest,
    ConsumeCreditsResponse,
    HealthResponse,
)
from showroom_billing.services.credit_ledger import CreditLedgerService

router = APIRouter()


@router.get(
    "/v1/credits/{email}",
    response_model=BalanceResponse,
    dependencies=[Depends(require_service_key)],
)
async def get_balance(
    email: str,
    db: AsyncSession = Depends(get_read_db),
) -> BalanceResponse:
    """
    Get the usable balance for an account.

    usable_credits is zero once credits_expire_at has passed, whatever the
    stored balance says.
    """
    service = CreditLedgerService(db)

    try:
        snapshot = await service.get_balance(email)
    except AccountNotFoundError as exc:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Account not found",
        ) from exc

    return BalanceResponse(
        account_id=str(snapshot.account_id),
        email=snapshot.email,
        credits_balance=snapshot.credits_balance,
        usable_credits=snapshot.usable_credits,
        expired=snapshot.expired,
        credits_expire_at=(
            snapshot.credits_expire_at.isoformat() if snapshot.credits_expire_at else None
        ),
        plan_code=snapshot.plan_code,
    )


@router.post(
    "/v1/credits/{email}/consume",
    response_model=ConsumeCreditsResponse,
    dependencies=[Depends(require_service_key)],
)
async def consume_credits(
    email: str,
    request: ConsumeCreditsRequest,
    db: AsyncSession = Depends(get_write_db),
) -> ConsumeCreditsResponse:
    """
    Spend credits, e.g. for one generation job.

    Write operation - requires primary database.
    """
    service = CreditLedgerService(db)

    try:
        result = await service.consume_credits(email, request.amount, ref=request.ref)
    except AccountNotFoundError as exc:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Account not found",
        ) from exc
    except CreditsExpiredError as exc:
        raise HTTPException(
            status_code=status.HTTP_402_PAYMENT_REQUIRED,
            detail=f"Credits expired at {exc.expired_at.isoformat()}",
        ) from exc
    except InsufficientCreditsError as exc:
        raise HTTPException(
            status_code=status.HTTP_402_PAYMENT_REQUIRED,
            detail=f"Insufficient credits. Balance: {exc.balance}, Required: {exc.required}",
        ) from exc

    return ConsumeCreditsResponse(
        account_id=str(result.account_id),
        email=result.email,
        consumed=result.amount,
        balance_before=result.balance_before,
        balance_after=result.balance_after,
    )


@router.post(
    "/v1/credits/{email}/bootstrap",
    response_model=BootstrapResponse,
    responses={201: {"model": BootstrapResponse}},
    dependencies=[Depends(require_service_key)],
)
async def bootstrap_account(
    email: str,
    response: Response,
    db: AsyncSession = Depends(get_write_db),
) -> BootstrapResponse:
    """
    First sign-in hook: create the account with its trial credits.

    201 when the account was created, 200 when it already existed.
    """
    email = email.strip()
    if not email:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Email required",
        )

    service = CreditLedgerService(db)
    result = await service.bootstrap_account(email)

    if result.created:
        response.status_code = status.HTTP_201_CREATED

    account = result.account
    return BootstrapResponse(
        account_id=str(account.account_id),
        email=account.email,
        created=result.created,
        credits_balance=account.credits_balance,
        credits_expire_at=(
            account.credits_expire_at.isoformat() if account.credits_expire_at else None
        ),
    )


@router.get("/health", response_model=HealthResponse)
async def health_check(db: AsyncSession = Depends(get_read_db)) -> HealthResponse:
    """
    Health check for load balancer.

    Verifies database connectivity.
    """
    try:
        await ping_database(db)

        return HealthResponse(
            status="healthy",
            database="connected",
            timestamp=datetime.now(UTC).isoformat(),
        )

    except Exception as exc:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail={
                "status": "unhealthy",
                "database": "disconnected",
                "error": str(exc),
                "timestamp": datetime.now(UTC).isoformat(),
            },
        ) from exc
