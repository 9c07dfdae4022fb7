import logging
from datetime import datetime
from typing import Any

import requests

from .ledger import Clock, LedgerUnavailableError, OfferLedger, utcnow
from .models import OfferAttempt, Product, format_timestamp, to_money
from .notifier import ChangeNotifier

logger = logging.getLogger(__name__)

OFFER_LOGS_TABLE = "offer_logs"
PRODUCTS_TABLE = "products"


class SupabaseClient:
    """Thin PostgREST client for a Supabase project."""

    def __init__(self, url: str, api_key: str, timeout: float = 10.0):
        """
        Initialize the Supabase client.

        Args:
            url: Project URL, e.g. https://xyz.supabase.co
            api_key: Anonymous (public) API key
            timeout: Seconds to wait for each HTTP request
        """
        self.rest_url = f"{url.rstrip('/')}/rest/v1"
        self.timeout = timeout
        self._requests = requests.Session()
        # PostgREST wants the key both as apikey and as a bearer token
        self._requests.headers.update(
            {
                "apikey": api_key,
                "Authorization": f"Bearer {api_key}",
                "Content-Type": "application/json",
                "Accept": "application/json",
            }
        )

    def request(
        self,
        method: str,
        table: str,
        params: dict[str, str] | None = None,
        payload: dict[str, Any] | None = None,
        return_rows: bool = False,
    ) -> list[dict[str, Any]]:
        """Run one REST call against a table and return the rows in the response."""
        url = f"{self.rest_url}/{table}"
        headers = {"Prefer": "return=representation"} if return_rows else {}
        logger.debug(f"PostgREST {method} {table} params={params}")

        try:
            response = self._requests.request(
                method, url, params=params, json=payload, headers=headers, timeout=self.timeout
            )
            response.raise_for_status()
        except requests.RequestException as e:
            logger.error(f"PostgREST {method} {table} failed: {e}")
            raise LedgerUnavailableError(f"{method} {table} failed: {e}") from e

        if not response.content:
            return []
        data = response.json()
        if isinstance(data, dict):
            # Error payloads come back as a single object with a message
            if "message" in data and "code" in data:
                logger.error(f"PostgREST error: {data}")
                raise LedgerUnavailableError(f"PostgREST error: {data.get('message', 'Unknown error')}")
            return [data]
        return data


def _eq(value: str) -> str:
    return f"eq.{value}"


class SupabaseOfferLedger(OfferLedger):
    """Offer ledger stored in the `offer_logs` table."""

    def __init__(self, client: SupabaseClient, notifier: ChangeNotifier | None = None, clock: Clock = utcnow):
        super().__init__(notifier=notifier, clock=clock)
        self.client = client

    def _parse_rows(self, rows: list[dict[str, Any]]) -> list[OfferAttempt]:
        attempts = []
        for row in rows:
            attempt = self._parse_single_row(row)
            if attempt:
                attempts.append(attempt)
        return attempts

    def _parse_single_row(self, row: dict[str, Any]) -> OfferAttempt | None:
        try:
            return OfferAttempt.from_row(row)
        except (KeyError, TypeError, ValueError, ArithmeticError) as e:
            logger.warning(f"Failed to parse offer row {row.get('id')}: {e}")
            return None

    def _insert(self, attempt: OfferAttempt) -> OfferAttempt:
        rows = self.client.request("POST", OFFER_LOGS_TABLE, payload=attempt.to_row(), return_rows=True)
        stored = self._parse_rows(rows)
        if not stored:
            raise LedgerUnavailableError(f"Insert of offer {attempt.id} returned no row")
        return stored[0]

    def _set_redeemed(self, attempt_id: str, now: datetime) -> OfferAttempt | None:
        rows = self.client.request(
            "PATCH",
            OFFER_LOGS_TABLE,
            params={"id": _eq(attempt_id)},
            payload={"is_redeemed": True, "updated_at": format_timestamp(now)},
            return_rows=True,
        )
        stored = self._parse_rows(rows)
        return stored[0] if stored else None

    def _select(self, **filters: str) -> list[OfferAttempt]:
        params = {"select": "*", "order": "created_at.desc"}
        params.update({column: _eq(value) for column, value in filters.items()})
        return self._parse_rows(self.client.request("GET", OFFER_LOGS_TABLE, params=params))


def _parse_product(row: dict[str, Any]) -> Product | None:
    try:
        return Product(
            sku=row["sku"],
            name=row.get("name", ""),
            price=to_money(row["price"]),
            max_discount_percentage=int(row.get("max_discount_percentage") or 0),
            description=row.get("description") or "",
            image_url=row.get("image") or None,
        )
    except (KeyError, TypeError, ValueError, ArithmeticError) as e:
        logger.warning(f"Failed to parse product {row.get('sku')}: {e}")
        return None


class ProductCatalog:
    """Read-only product lookups."""

    def get_product(self, sku: str) -> Product | None:
        raise NotImplementedError

    def list_products(self) -> list[Product]:
        raise NotImplementedError


class InMemoryProductCatalog(ProductCatalog):
    def __init__(self, products: list[Product] | None = None):
        self._products = {p.sku: p for p in products or []}

    def add(self, product: Product) -> None:
        self._products[product.sku] = product

    def get_product(self, sku: str) -> Product | None:
        return self._products.get(sku)

    def list_products(self) -> list[Product]:
        return sorted(self._products.values(), key=lambda p: p.name)


class SupabaseProductCatalog(ProductCatalog):
    """Products read from the `products` table."""

    def __init__(self, client: SupabaseClient):
        self.client = client

    def get_product(self, sku: str) -> Product | None:
        rows = self.client.request("GET", PRODUCTS_TABLE, params={"select": "*", "sku": _eq(sku), "limit": "1"})
        if not rows:
            logger.info(f"No product with sku {sku}")
            return None
        return _parse_product(rows[0])

    def list_products(self) -> list[Product]:
        rows = self.client.request("GET", PRODUCTS_TABLE, params={"select": "*", "order": "name"})
        return [p for p in (_parse_product(row) for row in rows) if p]
