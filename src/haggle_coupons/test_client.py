"""
Unit tests for the Supabase ledger and catalog.

These tests use mocking and don't require internet connectivity.
Run with: pytest -m unit_build
"""

from datetime import datetime, timezone
from decimal import Decimal
from typing import Any
from unittest.mock import Mock, patch

import pytest
import requests

from haggle_coupons.client import (
    SupabaseClient,
    SupabaseOfferLedger,
    SupabaseProductCatalog,
)
from haggle_coupons.ledger import LedgerUnavailableError
from haggle_coupons.models import ChangeEvent, OfferDraft
from haggle_coupons.notifier import ChangeNotifier

NOW = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)


def offer_row(**overrides: Any) -> dict[str, Any]:
    row = {
        "id": "7f7c1c9e-2d1b-4d55-9a55-0d2f8b1c0a01",
        "session_id": "session_1",
        "product_sku": "CAMP-001",
        "product_name": "Campera Americano Negro",
        "product_price": 100000,
        "product_max_discount_percentage": 50,
        "offered_amount": 60000,
        "offer_status": "accepted",
        "acceptance_code": "AB12CD34",
        "attempts_remaining": 3,
        "is_redeemed": False,
        "created_at": "2026-03-01T12:00:00+00:00",
        "updated_at": "2026-03-01T12:00:00+00:00",
        "expires_at": "2026-03-01T13:00:00+00:00",
    }
    row.update(overrides)
    return row


def mock_response(data: Any = None, status_error: Exception | None = None) -> Mock:
    response = Mock()
    response.content = b"" if data is None else b"[]"
    response.json.return_value = data
    response.raise_for_status = Mock(side_effect=status_error)
    return response


@pytest.fixture
def client() -> SupabaseClient:
    return SupabaseClient("https://example.supabase.co/", "anon-key", timeout=5)


@pytest.fixture
def ledger(client: SupabaseClient) -> SupabaseOfferLedger:
    return SupabaseOfferLedger(client, notifier=ChangeNotifier(), clock=lambda: NOW)


@pytest.fixture
def draft() -> OfferDraft:
    return OfferDraft(
        session_id="session_1",
        product_sku="CAMP-001",
        product_name="Campera Americano Negro",
        product_price=Decimal("100000.00"),
        product_max_discount_percentage=50,
        offered_amount=Decimal("60000.00"),
        status="accepted",
        attempts_remaining=3,
    )


@pytest.mark.unit_build
class TestSupabaseClientInit:
    def test_rest_url_strips_trailing_slash(self, client: SupabaseClient) -> None:
        assert client.rest_url == "https://example.supabase.co/rest/v1"

    def test_sets_auth_headers(self, client: SupabaseClient) -> None:
        headers = client._requests.headers
        assert headers["apikey"] == "anon-key"
        assert headers["Authorization"] == "Bearer anon-key"
        assert headers["Content-Type"] == "application/json"


@pytest.mark.unit_build
class TestSupabaseRequest:
    """Test the raw REST call."""

    def test_builds_table_url_and_timeout(self, client: SupabaseClient) -> None:
        with patch.object(client._requests, "request", return_value=mock_response([])) as mock_request:
            client.request("GET", "offer_logs", params={"session_id": "eq.s1"})

            args, kwargs = mock_request.call_args
            assert args == ("GET", "https://example.supabase.co/rest/v1/offer_logs")
            assert kwargs["params"] == {"session_id": "eq.s1"}
            assert kwargs["timeout"] == 5

    def test_return_rows_sets_prefer_header(self, client: SupabaseClient) -> None:
        with patch.object(client._requests, "request", return_value=mock_response([])) as mock_request:
            client.request("POST", "offer_logs", payload={}, return_rows=True)

            assert mock_request.call_args.kwargs["headers"] == {"Prefer": "return=representation"}

    def test_http_error_becomes_ledger_unavailable(self, client: SupabaseClient) -> None:
        response = mock_response(status_error=requests.HTTPError("503 Service Unavailable"))

        with patch.object(client._requests, "request", return_value=response):
            with pytest.raises(LedgerUnavailableError):
                client.request("GET", "offer_logs")

    def test_connection_error_becomes_ledger_unavailable(self, client: SupabaseClient) -> None:
        with patch.object(client._requests, "request", side_effect=requests.ConnectionError("offline")):
            with pytest.raises(LedgerUnavailableError):
                client.request("GET", "offer_logs")

    def test_error_payload_raises(self, client: SupabaseClient) -> None:
        response = mock_response({"code": "42P01", "message": "relation does not exist"})

        with patch.object(client._requests, "request", return_value=response):
            with pytest.raises(LedgerUnavailableError, match="relation does not exist"):
                client.request("GET", "offer_logs")

    def test_empty_body_is_no_rows(self, client: SupabaseClient) -> None:
        response = mock_response()

        with patch.object(client._requests, "request", return_value=response):
            assert client.request("PATCH", "offer_logs") == []


@pytest.mark.unit_build
class TestSupabaseOfferLedger:
    def test_append_posts_row_and_parses_response(self, ledger: SupabaseOfferLedger, draft: OfferDraft) -> None:
        with patch.object(ledger.client, "request", return_value=[offer_row()]) as mock_request:
            attempt = ledger.append(draft)

            args, kwargs = mock_request.call_args
            assert args == ("POST", "offer_logs")
            payload = kwargs["payload"]
            assert payload["offer_status"] == "accepted"
            assert payload["offered_amount"] == "60000.00"
            assert len(payload["acceptance_code"]) == 8
            assert payload["expires_at"] == "2026-03-01T13:00:00+00:00"
            assert kwargs["return_rows"] is True

        assert attempt.acceptance_code == "AB12CD34"
        assert attempt.offered_amount == Decimal("60000.00")
        assert attempt.created_at == NOW

    def test_append_publishes_insert(self, ledger: SupabaseOfferLedger, draft: OfferDraft) -> None:
        events: list[ChangeEvent] = []
        ledger.notifier.subscribe_session("session_1", events.append)

        with patch.object(ledger.client, "request", return_value=[offer_row()]):
            ledger.append(draft)

        assert [e.event_type for e in events] == ["INSERT"]

    def test_append_without_returned_row_raises(self, ledger: SupabaseOfferLedger, draft: OfferDraft) -> None:
        with patch.object(ledger.client, "request", return_value=[]):
            with pytest.raises(LedgerUnavailableError):
                ledger.append(draft)

    def test_list_by_product_filters_and_orders(self, ledger: SupabaseOfferLedger) -> None:
        rows = [offer_row(offer_status="rejected", acceptance_code=None, expires_at=None, attempts_remaining=1)]

        with patch.object(ledger.client, "request", return_value=rows) as mock_request:
            attempts = ledger.list_by_product("session_1", "CAMP-001")

            params = mock_request.call_args.kwargs["params"]
            assert params["session_id"] == "eq.session_1"
            assert params["product_sku"] == "eq.CAMP-001"
            assert params["order"] == "created_at.desc"

        assert attempts[0].status == "rejected"
        assert attempts[0].expires_at is None

    def test_remaining_attempts_uses_latest_row(self, ledger: SupabaseOfferLedger) -> None:
        rows = [
            offer_row(offer_status="rejected", acceptance_code=None, expires_at=None, attempts_remaining=1),
            offer_row(offer_status="rejected", acceptance_code=None, expires_at=None, attempts_remaining=2),
        ]

        with patch.object(ledger.client, "request", return_value=rows):
            assert ledger.remaining_attempts("session_1", "CAMP-001") == 1

    def test_list_accepted_filters_status(self, ledger: SupabaseOfferLedger) -> None:
        with patch.object(ledger.client, "request", return_value=[offer_row()]) as mock_request:
            ledger.list_accepted("session_1")

            assert mock_request.call_args.kwargs["params"]["offer_status"] == "eq.accepted"

    def test_list_all_has_no_filters(self, ledger: SupabaseOfferLedger) -> None:
        with patch.object(ledger.client, "request", return_value=[]) as mock_request:
            ledger.list_all()

            assert mock_request.call_args.kwargs["params"] == {"select": "*", "order": "created_at.desc"}

    def test_malformed_rows_are_skipped(self, ledger: SupabaseOfferLedger) -> None:
        rows = [offer_row(), {"id": "broken"}]

        with patch.object(ledger.client, "request", return_value=rows):
            attempts = ledger.list_by_session("session_1")

        assert len(attempts) == 1

    def test_parses_zulu_timestamps(self, ledger: SupabaseOfferLedger) -> None:
        row = offer_row(created_at="2026-03-01T12:00:00Z", updated_at=None)

        with patch.object(ledger.client, "request", return_value=[row]):
            [attempt] = ledger.list_by_session("session_1")

        assert attempt.created_at == NOW
        assert attempt.updated_at == NOW

    def test_mark_redeemed_patches_by_id(self, ledger: SupabaseOfferLedger) -> None:
        events: list[ChangeEvent] = []
        ledger.notifier.subscribe_global(events.append)

        with patch.object(ledger.client, "request", return_value=[offer_row(is_redeemed=True)]) as mock_request:
            attempt = ledger.mark_redeemed("7f7c1c9e-2d1b-4d55-9a55-0d2f8b1c0a01")

            args, kwargs = mock_request.call_args
            assert args == ("PATCH", "offer_logs")
            assert kwargs["params"] == {"id": "eq.7f7c1c9e-2d1b-4d55-9a55-0d2f8b1c0a01"}
            assert kwargs["payload"]["is_redeemed"] is True

        assert attempt.is_redeemed is True
        assert [e.event_type for e in events] == ["UPDATE"]

    def test_mark_redeemed_unknown_returns_none(self, ledger: SupabaseOfferLedger) -> None:
        with patch.object(ledger.client, "request", return_value=[]):
            assert ledger.mark_redeemed("missing") is None

    def test_get_unknown_returns_none(self, ledger: SupabaseOfferLedger) -> None:
        with patch.object(ledger.client, "request", return_value=[]):
            assert ledger.get("missing") is None


@pytest.mark.unit_build
class TestSupabaseProductCatalog:
    def test_get_product(self, client: SupabaseClient) -> None:
        catalog = SupabaseProductCatalog(client)
        row = {"sku": "CAMP-001", "name": "Campera", "price": 125000, "max_discount_percentage": 40, "image": ""}

        with patch.object(client, "request", return_value=[row]) as mock_request:
            product = catalog.get_product("CAMP-001")

            assert mock_request.call_args.kwargs["params"]["sku"] == "eq.CAMP-001"

        assert product.price == Decimal("125000.00")
        assert product.max_discount_percentage == 40
        assert product.image_url is None

    def test_unknown_product_is_none(self, client: SupabaseClient) -> None:
        with patch.object(client, "request", return_value=[]):
            assert SupabaseProductCatalog(client).get_product("NOPE") is None

    def test_list_products_skips_bad_rows(self, client: SupabaseClient) -> None:
        rows = [{"sku": "A", "name": "A", "price": 10, "max_discount_percentage": 5}, {"name": "no sku"}]

        with patch.object(client, "request", return_value=rows):
            products = SupabaseProductCatalog(client).list_products()

        assert [p.sku for p in products] == ["A"]
