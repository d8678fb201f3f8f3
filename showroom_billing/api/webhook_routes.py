"""
Gumroad Webhook Route - Purchase notifications that top up credit balances.

Gumroad authenticates with a shared secret in the ?key= query parameter and
retries any non-2xx delivery, so every outcome that must not be retried
(ignored product, duplicate) answers 200.
"""

import asyncio
import time

from fastapi import APIRouter, Depends, HTTPException, Query, Request, status
from sqlalchemy.ext.asyncio import AsyncSession
from structlog import get_logger

from showroom_billing.api.dependencies import keys_match
from showroom_billing.config import settings
from showroom_billing.db.session import get_write_db
from showroom_billing.exceptions import WebhookPayloadError
from showroom_billing.models.api import WebhookInfoResponse, WebhookOutcome, WebhookResponse
from showroom_billing.models.domain import PurchaseIntent
from showroom_billing.observability.metrics import metrics
from showroom_billing.services.credit_ledger import CreditLedgerService
from showroom_billing.services.gumroad_payload import (
    derive_event_key,
    parse_notification,
    read_payload,
)
from showroom_billing.services.product_catalog import get_product

logger = get_logger(__name__)

router = APIRouter()

WEBHOOK_PATH = "/v1/webhooks/gumroad"


@router.get(WEBHOOK_PATH, response_model=WebhookInfoResponse)
async def gumroad_webhook_info() -> WebhookInfoResponse:
    """Describe the endpoint. No authentication, no side effects."""
    return WebhookInfoResponse()


@router.post(WEBHOOK_PATH, response_model=WebhookResponse, response_model_exclude_none=True)
async def gumroad_webhook(
    request: Request,
    key: str | None = Query(None, description="Shared webhook secret"),
    db: AsyncSession = Depends(get_write_db),
) -> WebhookResponse:
    """
    Apply a Gumroad purchase notification.

    Responses:
    - 401: secret missing or wrong (body never read)
    - 400: no buyer email or no product permalink
    - 200 ignored: product not in the catalog
    - 200 already_processed: event seen before
    - 200 processed: credits added
    - 500: anything else; the transaction is rolled back and Gumroad retries
    """
    start = time.perf_counter()

    if not keys_match(key, settings.gumroad_webhook_key):
        logger.warning(
            "gumroad_webhook_unauthorized",
            client_host=request.client.host if request.client else "unknown",
        )
        metrics.record_webhook("unauthorized", time.perf_counter() - start)
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Unauthorized",
        )

    try:
        async with asyncio.timeout(settings.webhook_timeout_seconds):
            response = await _process_delivery(request, db)
    except HTTPException:
        raise
    except TimeoutError as exc:
        logger.error(
            "gumroad_webhook_timeout",
            timeout_seconds=settings.webhook_timeout_seconds,
        )
        metrics.record_webhook("error", time.perf_counter() - start)
        metrics.record_error("TimeoutError", "gumroad_webhook")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Webhook processing failed",
        ) from exc
    except Exception as exc:
        logger.exception("gumroad_webhook_failed", error_type=type(exc).__name__)
        metrics.record_webhook("error", time.perf_counter() - start)
        metrics.record_error(type(exc).__name__, "gumroad_webhook")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Webhook processing failed",
        ) from exc

    metrics.record_webhook(response.status.value, time.perf_counter() - start)
    return response


async def _process_delivery(request: Request, db: AsyncSession) -> WebhookResponse:
    payload = await read_payload(request)

    try:
        notification = parse_notification(payload)
    except WebhookPayloadError as exc:
        logger.warning("gumroad_webhook_invalid", missing_field=exc.field)
        metrics.webhook_deliveries_total.labels(outcome="invalid").inc()
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=str(exc),
        ) from exc

    product = get_product(notification.product_slug)
    if product is None:
        logger.info("gumroad_webhook_ignored", product=notification.product_slug)
        return WebhookResponse(status=WebhookOutcome.IGNORED)

    intent = PurchaseIntent(
        email=notification.email,
        product=product,
        event_key=derive_event_key(notification),
    )

    result = await CreditLedgerService(db).apply_purchase(intent)

    if result.outcome == WebhookOutcome.DUPLICATE:
        logger.info("gumroad_webhook_duplicate", event_key=intent.event_key)
        return WebhookResponse(status=WebhookOutcome.DUPLICATE)

    logger.info(
        "gumroad_webhook_processed",
        event_key=intent.event_key,
        product=product.slug,
        credits=product.credits,
        balance=result.balance_after,
    )
    return WebhookResponse(
        status=WebhookOutcome.PROCESSED,
        email=result.email,
        credits=product.credits,
        plan=product.plan_code,
        balance=result.balance_after,
        product=product.slug,
    )
