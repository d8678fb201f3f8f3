"""
Gumroad Payload - Lenient extraction of purchase fields from a webhook ping.

Gumroad sends form-encoded pings, test tools send JSON, and field names vary
between product types. Each field is read by an ordered list of extractor
functions; the first non-empty result wins.
"""

import hashlib
import json
from collections.abc import Callable, Mapping, Sequence
from typing import Any

from starlette.requests import Request

from showroom_billing.exceptions import WebhookPayloadError
from showroom_billing.models.domain import EVENT_KEY_MAX_LENGTH, PurchaseNotification

Payload = Mapping[str, Any]
Extractor = Callable[[Payload], str | None]

SLUG_URL_MARKER = "/l/"


async def read_payload(request: Request) -> dict[str, Any]:
    """
    Parse the request body according to its Content-Type.

    Never raises on bad input: unparseable or non-object bodies become an empty
    dict so the field checks that follow produce the normal 400 responses.
    """
    content_type = request.headers.get("content-type", "").lower()

    if "application/x-www-form-urlencoded" in content_type or "multipart/form-data" in content_type:
        try:
            form = await request.form()
        except Exception:
            return {}
        return {key: value for key, value in form.items() if isinstance(value, str)}

    raw = await request.body()
    try:
        body = json.loads(raw.decode("utf-8")) if raw else {}
    except (UnicodeDecodeError, ValueError):
        return {}

    return body if isinstance(body, dict) else {}


def _clean(value: Any) -> str | None:
    """Normalize a raw field value to a stripped non-empty string."""
    if value is None or isinstance(value, (dict, list, bool)):
        return None
    text = str(value).strip()
    return text or None


def field(name: str) -> Extractor:
    """Extractor for a top-level field."""

    def extract(payload: Payload) -> str | None:
        return _clean(payload.get(name))

    extract.__name__ = f"field_{name}"
    return extract


def nested_field(parent: str, name: str) -> Extractor:
    """Extractor for a field inside a nested object, e.g. purchase.email."""

    def extract(payload: Payload) -> str | None:
        container = payload.get(parent)
        if not isinstance(container, Mapping):
            return None
        return _clean(container.get(name))

    extract.__name__ = f"field_{parent}_{name}"
    return extract


def slug_from_url(value: str) -> str | None:
    """
    Take the path segment after the /l/ marker, without query or fragment.

    "https://x.test/l/temelpaket?x=1" -> "temelpaket"
    """
    if SLUG_URL_MARKER not in value:
        return None
    tail = value.split(SLUG_URL_MARKER, 1)[1]
    for stop in ("?", "#", "/"):
        tail = tail.split(stop, 1)[0]
    return tail.strip() or None


def slug_field(extractor: Extractor) -> Extractor:
    """Accept a bare slug, or a URL from which the slug is derived."""

    def extract(payload: Payload) -> str | None:
        value = extractor(payload)
        if value is None:
            return None
        if SLUG_URL_MARKER in value:
            return slug_from_url(value)
        return value

    extract.__name__ = f"slug_{extractor.__name__}"
    return extract


def url_slug_field(extractor: Extractor) -> Extractor:
    """Only accept URL-shaped values; anything else yields nothing."""

    def extract(payload: Payload) -> str | None:
        value = extractor(payload)
        return slug_from_url(value) if value else None

    extract.__name__ = f"url_slug_{extractor.__name__}"
    return extract


EMAIL_EXTRACTORS: Sequence[Extractor] = (
    field("email"),
    nested_field("purchase", "email"),
    field("buyer_email"),
)

SLUG_EXTRACTORS: Sequence[Extractor] = (
    slug_field(field("permalink")),
    slug_field(field("product_permalink")),
    slug_field(nested_field("purchase", "permalink")),
    url_slug_field(field("short_url")),
)

EVENT_ID_EXTRACTORS: Sequence[Extractor] = (
    field("sale_id"),
    field("purchase_id"),
    field("order_number"),
    field("subscription_id"),
)

PRICE_EXTRACTORS: Sequence[Extractor] = (
    field("price"),
    nested_field("purchase", "price"),
)


def first_present(extractors: Sequence[Extractor], payload: Payload) -> str | None:
    """Run extractors in order and return the first non-empty value."""
    for extractor in extractors:
        value = extractor(payload)
        if value:
            return value
    return None


def parse_notification(payload: Payload) -> PurchaseNotification:
    """
    Pull the purchase fields out of a parsed body.

    Raises:
        WebhookPayloadError: If no email or no product slug can be found
    """
    email = first_present(EMAIL_EXTRACTORS, payload)
    if email is None:
        raise WebhookPayloadError("email")

    slug = first_present(SLUG_EXTRACTORS, payload)
    if slug is None:
        raise WebhookPayloadError("product permalink")

    return PurchaseNotification(
        email=email,
        product_slug=slug,
        provider_event_id=first_present(EVENT_ID_EXTRACTORS, payload),
        price=first_present(PRICE_EXTRACTORS, payload),
    )


def derive_event_key(notification: PurchaseNotification) -> str:
    """
    Idempotency key for a notification.

    Prefers the provider's own sale/order id. Without one, falls back to
    email:slug:price, which collides for identical repeat purchases.
    """
    if notification.provider_event_id:
        key = notification.provider_event_id
    else:
        key = f"{notification.email}:{notification.product_slug}:{notification.price or ''}"

    if len(key) > EVENT_KEY_MAX_LENGTH:
        return "sha256:" + hashlib.sha256(key.encode("utf-8")).hexdigest()
    return key
