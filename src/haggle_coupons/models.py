from dataclasses import dataclass
from datetime import datetime
from decimal import ROUND_HALF_UP, Decimal
from typing import Any

STATUS_PENDING = "pending"
STATUS_ACCEPTED = "accepted"
STATUS_REJECTED = "rejected"
OFFER_STATUSES = (STATUS_PENDING, STATUS_ACCEPTED, STATUS_REJECTED)

COUPON_PENDING = "pending"
COUPON_USED = "used"
COUPON_CANCELLED = "cancelled"

EVENT_INSERT = "INSERT"
EVENT_UPDATE = "UPDATE"

CENTS = Decimal("0.01")


def to_money(value: Any) -> Decimal:
    """Coerce a number (or numeric string) to a Decimal rounded to cents."""
    if value is None:
        raise ValueError("Amount is required")
    amount = value if isinstance(value, Decimal) else Decimal(str(value))
    return amount.quantize(CENTS, rounding=ROUND_HALF_UP)


def has_expired(expires_at: datetime | None, now: datetime) -> bool:
    """True once now is strictly past expires_at; at the exact instant it is still valid."""
    return expires_at is not None and now > expires_at


def parse_timestamp(value: str | datetime | None) -> datetime | None:
    """Parse an ISO-8601 timestamp as returned by PostgREST (trailing 'Z' allowed)."""
    if value is None or isinstance(value, datetime):
        return value
    text = value.strip()
    if not text:
        return None
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    return datetime.fromisoformat(text)


def format_timestamp(value: datetime | None) -> str | None:
    return value.isoformat() if value else None


@dataclass(frozen=True)
class Product:
    """A catalog product. The discount ceiling is never shown to the shopper."""

    sku: str
    name: str
    price: Decimal
    max_discount_percentage: int
    description: str = ""
    image_url: str | None = None

    def __str__(self) -> str:
        return f"{self.name} ({self.sku}) - {self.price}"


@dataclass
class OfferDraft:
    """An attempt as decided by the engine, before the ledger stamps it."""

    session_id: str
    product_sku: str
    product_name: str
    product_price: Decimal
    product_max_discount_percentage: int
    offered_amount: Decimal
    status: str
    attempts_remaining: int


@dataclass
class OfferAttempt:
    """One row of the offer ledger."""

    id: str
    session_id: str
    product_sku: str
    product_name: str
    product_price: Decimal
    product_max_discount_percentage: int
    offered_amount: Decimal
    status: str
    acceptance_code: str | None
    attempts_remaining: int
    created_at: datetime
    updated_at: datetime
    expires_at: datetime | None = None
    is_redeemed: bool = False

    @property
    def is_accepted(self) -> bool:
        return self.status == STATUS_ACCEPTED

    def is_expired(self, now: datetime) -> bool:
        return has_expired(self.expires_at, now)

    def to_row(self) -> dict[str, Any]:
        """Serialize using the `offer_logs` column names."""
        return {
            "id": self.id,
            "session_id": self.session_id,
            "product_sku": self.product_sku,
            "product_name": self.product_name,
            "product_price": str(self.product_price),
            "product_max_discount_percentage": self.product_max_discount_percentage,
            "offered_amount": str(self.offered_amount),
            "offer_status": self.status,
            "acceptance_code": self.acceptance_code,
            "attempts_remaining": self.attempts_remaining,
            "is_redeemed": self.is_redeemed,
            "created_at": format_timestamp(self.created_at),
            "updated_at": format_timestamp(self.updated_at),
            "expires_at": format_timestamp(self.expires_at),
        }

    @classmethod
    def from_row(cls, row: dict[str, Any]) -> "OfferAttempt":
        if row["offer_status"] not in OFFER_STATUSES:
            raise ValueError(f"Unknown offer status: {row['offer_status']!r}")
        created_at = parse_timestamp(row["created_at"])
        return cls(
            id=str(row["id"]),
            session_id=row["session_id"],
            product_sku=row["product_sku"],
            product_name=row.get("product_name", ""),
            product_price=to_money(row["product_price"]),
            product_max_discount_percentage=int(row["product_max_discount_percentage"]),
            offered_amount=to_money(row["offered_amount"]),
            status=row["offer_status"],
            acceptance_code=row.get("acceptance_code"),
            attempts_remaining=int(row.get("attempts_remaining") or 0),
            created_at=created_at,
            updated_at=parse_timestamp(row.get("updated_at")) or created_at,
            expires_at=parse_timestamp(row.get("expires_at")),
            is_redeemed=bool(row.get("is_redeemed", False)),
        )


@dataclass
class AcceptedOfferCoupon:
    """Redeemable coupon for an accepted offer."""

    id: str
    session_id: str
    product_sku: str
    product_name: str
    offered_amount: Decimal
    code: str
    created_at: datetime
    expires_at: datetime
    status: str
    is_redeemed: bool = False
    local_only: bool = False

    def is_expired(self, now: datetime) -> bool:
        return has_expired(self.expires_at, now)

    def __str__(self) -> str:
        return f"[{self.status.upper()}] {self.code} {self.product_name} for {self.offered_amount}"


@dataclass
class ConsolationCoupon:
    """Fixed percentage-off coupon granted once the attempt budget runs out."""

    id: str
    session_id: str
    product_sku: str
    product_name: str
    product_price: Decimal
    discount_percentage: int
    discounted_price: Decimal
    code: str
    created_at: datetime
    expires_at: datetime
    status: str
    is_redeemed: bool = False

    def __str__(self) -> str:
        return (
            f"[{self.status.upper()}] {self.code} {self.discount_percentage}% OFF "
            f"{self.product_name} ({self.discounted_price})"
        )


Coupon = AcceptedOfferCoupon | ConsolationCoupon


@dataclass
class PerSkuSummary:
    product_sku: str
    product_name: str
    total_offers: int
    accepted_offers: int
    rejected_offers: int
    acceptance_rate: int
    average_offered_amount: int
    product_price: Decimal | None = None
    average_discount_percentage: int = 0


@dataclass
class OverallStats:
    total_offers: int
    accepted_offers: int
    rejected_offers: int
    acceptance_rate: int


@dataclass
class ChangeEvent:
    """A ledger mutation carrying the full row after the change."""

    event_type: str
    record: OfferAttempt

    @property
    def session_id(self) -> str:
        return self.record.session_id
