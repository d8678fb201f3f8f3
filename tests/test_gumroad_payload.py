"""
Tests for Gumroad payload extraction.

Covers body parsing, each extractor, field precedence and event keys.
"""

import hashlib

import pytest
from starlette.requests import Request

from showroom_billing.exceptions import WebhookPayloadError
from showroom_billing.models.domain import PurchaseNotification
from showroom_billing.services.gumroad_payload import (
    EMAIL_EXTRACTORS,
    SLUG_EXTRACTORS,
    derive_event_key,
    field,
    first_present,
    nested_field,
    parse_notification,
    read_payload,
    slug_field,
    slug_from_url,
    url_slug_field,
)


def make_request(body: bytes, content_type: str | None) -> Request:
    """Build a Starlette request whose receive channel yields one body chunk."""
    headers = []
    if content_type is not None:
        headers.append((b"content-type", content_type.encode()))

    async def receive():
        return {"type": "http.request", "body": body, "more_body": False}

    scope = {
        "type": "http",
        "method": "POST",
        "path": "/v1/webhooks/gumroad",
        "query_string": b"",
        "headers": headers,
    }
    return Request(scope, receive)


class TestReadPayload:
    """Tests for Content-Type dependent body parsing."""

    async def test_json_body(self):
        request = make_request(b'{"email": "a@b.c"}', "application/json")
        assert await read_payload(request) == {"email": "a@b.c"}

    async def test_json_with_charset(self):
        request = make_request(b'{"email": "a@b.c"}', "application/json; charset=utf-8")
        assert await read_payload(request) == {"email": "a@b.c"}

    async def test_form_body(self):
        request = make_request(
            b"email=a%40b.c&permalink=temelpaket", "application/x-www-form-urlencoded"
        )
        assert await read_payload(request) == {"email": "a@b.c", "permalink": "temelpaket"}

    async def test_unknown_content_type_falls_back_to_json(self):
        request = make_request(b'{"sale_id": "s1"}', "text/plain")
        assert await read_payload(request) == {"sale_id": "s1"}

    async def test_missing_content_type_falls_back_to_json(self):
        request = make_request(b'{"sale_id": "s1"}', None)
        assert await read_payload(request) == {"sale_id": "s1"}

    async def test_invalid_json_becomes_empty(self):
        request = make_request(b"{not json", "application/json")
        assert await read_payload(request) == {}

    async def test_non_object_json_becomes_empty(self):
        request = make_request(b'["a", "b"]', "application/json")
        assert await read_payload(request) == {}

    async def test_empty_body_becomes_empty(self):
        request = make_request(b"", "application/json")
        assert await read_payload(request) == {}

    async def test_invalid_utf8_becomes_empty(self):
        request = make_request(b"\xff\xfe\x00", "text/plain")
        assert await read_payload(request) == {}


class TestSlugFromUrl:
    """Tests for URL slug derivation."""

    @pytest.mark.parametrize(
        "url,expected",
        [
            ("https://x.test/l/temelpaket?x=1", "temelpaket"),
            ("https://x.test/l/temelpaket", "temelpaket"),
            ("https://x.test/l/premiumpaket#buy", "premiumpaket"),
            ("https://x.test/l/standartpaket/extra", "standartpaket"),
            ("https://gum.co/l/", None),
            ("https://x.test/p/temelpaket", None),
        ],
    )
    def test_slug_from_url(self, url, expected):
        assert slug_from_url(url) == expected


class TestExtractors:
    """Tests for individual extractor functions."""

    def test_field_strips_whitespace(self):
        assert field("email")({"email": "  a@b.c  "}) == "a@b.c"

    def test_field_empty_is_none(self):
        assert field("email")({"email": "   "}) is None

    def test_field_missing_is_none(self):
        assert field("email")({}) is None

    def test_field_ignores_structured_values(self):
        assert field("email")({"email": {"nested": "x"}}) is None

    def test_field_stringifies_numbers(self):
        assert field("sale_id")({"sale_id": 12345}) == "12345"

    def test_field_keeps_case(self):
        assert field("email")({"email": "Buyer@Test.com"}) == "Buyer@Test.com"

    def test_nested_field(self):
        assert nested_field("purchase", "email")({"purchase": {"email": "n@b.c"}}) == "n@b.c"

    def test_nested_field_parent_not_object(self):
        assert nested_field("purchase", "email")({"purchase": "n@b.c"}) is None

    def test_slug_field_bare_value(self):
        assert slug_field(field("permalink"))({"permalink": "premiumpaket"}) == "premiumpaket"

    def test_slug_field_url_value(self):
        payload = {"permalink": "https://x.test/l/temelpaket?x=1"}
        assert slug_field(field("permalink"))(payload) == "temelpaket"

    def test_url_slug_field_requires_marker(self):
        extractor = url_slug_field(field("short_url"))
        assert extractor({"short_url": "https://x.test/l/temelpaket?x=1"}) == "temelpaket"
        assert extractor({"short_url": "https://x.test/temelpaket"}) is None


class TestPrecedence:
    """Tests for ordered extractor lists."""

    def test_email_precedence(self):
        payload = {
            "buyer_email": "third@b.c",
            "purchase": {"email": "second@b.c"},
            "email": "first@b.c",
        }
        assert first_present(EMAIL_EXTRACTORS, payload) == "first@b.c"

    def test_email_falls_through_empty_values(self):
        payload = {"email": "", "purchase": {"email": " "}, "buyer_email": "third@b.c"}
        assert first_present(EMAIL_EXTRACTORS, payload) == "third@b.c"

    def test_slug_precedence(self):
        payload = {
            "short_url": "https://x.test/l/premiumpaket",
            "product_permalink": "standartpaket",
            "permalink": "temelpaket",
        }
        assert first_present(SLUG_EXTRACTORS, payload) == "temelpaket"

    def test_slug_from_nested_purchase(self):
        payload = {"purchase": {"permalink": "standartpaket"}}
        assert first_present(SLUG_EXTRACTORS, payload) == "standartpaket"

    def test_slug_from_short_url(self):
        payload = {"short_url": "https://x.test/l/temelpaket?x=1"}
        assert first_present(SLUG_EXTRACTORS, payload) == "temelpaket"

    def test_nothing_present(self):
        assert first_present(SLUG_EXTRACTORS, {"short_url": "https://x.test/"}) is None


class TestParseNotification:
    """Tests for turning a payload into a PurchaseNotification."""

    def test_full_payload(self):
        notification = parse_notification(
            {"email": "a@b.c", "permalink": "temelpaket", "sale_id": "s1", "price": "500"}
        )
        assert notification == PurchaseNotification(
            email="a@b.c", product_slug="temelpaket", provider_event_id="s1", price="500"
        )

    def test_missing_email(self):
        with pytest.raises(WebhookPayloadError) as exc_info:
            parse_notification({"permalink": "temelpaket"})
        assert exc_info.value.field == "email"

    def test_missing_slug(self):
        with pytest.raises(WebhookPayloadError) as exc_info:
            parse_notification({"email": "a@b.c"})
        assert exc_info.value.field == "product permalink"

    def test_empty_payload_reports_email_first(self):
        with pytest.raises(WebhookPayloadError, match="email"):
            parse_notification({})

    @pytest.mark.parametrize("id_field", ["sale_id", "purchase_id", "order_number", "subscription_id"])
    def test_event_id_fields(self, id_field):
        notification = parse_notification(
            {"email": "a@b.c", "permalink": "temelpaket", id_field: "evt-1"}
        )
        assert notification.provider_event_id == "evt-1"

    def test_event_id_precedence(self):
        notification = parse_notification(
            {
                "email": "a@b.c",
                "permalink": "temelpaket",
                "subscription_id": "sub",
                "order_number": "ord",
                "sale_id": "sale",
            }
        )
        assert notification.provider_event_id == "sale"


class TestDeriveEventKey:
    """Tests for idempotency key derivation."""

    def test_prefers_provider_id(self):
        notification = PurchaseNotification("a@b.c", "temelpaket", "abc123", "500")
        assert derive_event_key(notification) == "abc123"

    def test_fallback_composite(self):
        notification = PurchaseNotification("a@b.c", "temelpaket", None, "500")
        assert derive_event_key(notification) == "a@b.c:temelpaket:500"

    def test_fallback_without_price(self):
        notification = PurchaseNotification("a@b.c", "temelpaket", None, None)
        assert derive_event_key(notification) == "a@b.c:temelpaket:"

    def test_long_key_is_hashed(self):
        long_id = "x" * 300
        notification = PurchaseNotification("a@b.c", "temelpaket", long_id, None)
        key = derive_event_key(notification)
        assert key == "sha256:" + hashlib.sha256(long_id.encode()).hexdigest()
        assert len(key) <= 255

    def test_key_at_limit_is_kept(self):
        exact = "y" * 255
        notification = PurchaseNotification("a@b.c", "temelpaket", exact, None)
        assert derive_event_key(notification) == exact
