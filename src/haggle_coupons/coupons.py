import json
import logging
import uuid
from datetime import datetime, timedelta
from typing import Any

from .ledger import ACCEPTED_OFFER_TTL, generate_acceptance_code
from .models import (
    COUPON_CANCELLED,
    COUPON_PENDING,
    COUPON_USED,
    AcceptedOfferCoupon,
    ConsolationCoupon,
    Coupon,
    OfferAttempt,
    Product,
    format_timestamp,
    parse_timestamp,
    to_money,
)
from .negotiation import CONSOLATION_PERCENTAGE, consolation_price
from .session import KeyValueStorage

logger = logging.getLogger(__name__)

REDEMPTION_WINDOW = timedelta(minutes=30)
CONSOLATION_TTL = timedelta(minutes=30)
LOCAL_COUPONS_KEY = "haggle-coupons"

KIND_ACCEPTED = "accepted"
KIND_CONSOLATION = "consolation"


def coupon_status(created_at: datetime, is_redeemed: bool, now: datetime) -> str:
    """
    Live status of a coupon, recomputed on every read.

    used wins over everything; otherwise an unredeemed coupon is cancelled once
    the redemption window since creation has passed, and pending before that.
    """
    if is_redeemed:
        return COUPON_USED
    if now > created_at + REDEMPTION_WINDOW:
        return COUPON_CANCELLED
    return COUPON_PENDING


def project(attempt: OfferAttempt, now: datetime) -> AcceptedOfferCoupon | None:
    """Coupon view of a ledger row; None unless the offer was accepted."""
    if not attempt.is_accepted:
        return None
    expires_at = attempt.expires_at or attempt.created_at + ACCEPTED_OFFER_TTL
    return AcceptedOfferCoupon(
        id=attempt.id,
        session_id=attempt.session_id,
        product_sku=attempt.product_sku,
        product_name=attempt.product_name,
        offered_amount=attempt.offered_amount,
        code=attempt.acceptance_code or "",
        created_at=attempt.created_at,
        expires_at=expires_at,
        status=coupon_status(attempt.created_at, attempt.is_redeemed, now),
        is_redeemed=attempt.is_redeemed,
    )


def refresh(coupon: Coupon, now: datetime) -> Coupon:
    """Recompute a stored coupon's status for the given read time."""
    coupon.status = coupon_status(coupon.created_at, coupon.is_redeemed, now)
    return coupon


def issue_local_coupon(session_id: str, product: Product, offered_amount: Any, now: datetime) -> AcceptedOfferCoupon:
    """Accepted coupon minted on the device when the ledger append failed."""
    return AcceptedOfferCoupon(
        id=str(uuid.uuid4()),
        session_id=session_id,
        product_sku=product.sku,
        product_name=product.name,
        offered_amount=to_money(offered_amount),
        code=generate_acceptance_code(),
        created_at=now,
        expires_at=now + ACCEPTED_OFFER_TTL,
        status=coupon_status(now, False, now),
        local_only=True,
    )


def issue_consolation(
    session_id: str, product: Product, now: datetime, percentage: int = CONSOLATION_PERCENTAGE
) -> ConsolationCoupon:
    """Fixed-discount coupon for a shopper who used up every attempt."""
    return ConsolationCoupon(
        id=str(uuid.uuid4()),
        session_id=session_id,
        product_sku=product.sku,
        product_name=product.name,
        product_price=to_money(product.price),
        discount_percentage=percentage,
        discounted_price=consolation_price(product.price, percentage),
        code=generate_acceptance_code(),
        created_at=now,
        expires_at=now + CONSOLATION_TTL,
        status=coupon_status(now, False, now),
    )


def coupon_to_record(coupon: Coupon) -> dict[str, Any]:
    """JSON-ready record for device storage. Status is never stored."""
    record: dict[str, Any] = {
        "id": coupon.id,
        "session_id": coupon.session_id,
        "product_sku": coupon.product_sku,
        "product_name": coupon.product_name,
        "code": coupon.code,
        "created_at": format_timestamp(coupon.created_at),
        "expires_at": format_timestamp(coupon.expires_at),
        "is_redeemed": coupon.is_redeemed,
    }
    if isinstance(coupon, AcceptedOfferCoupon):
        record.update(kind=KIND_ACCEPTED, offered_amount=str(coupon.offered_amount))
    elif isinstance(coupon, ConsolationCoupon):
        record.update(
            kind=KIND_CONSOLATION,
            product_price=str(coupon.product_price),
            discount_percentage=coupon.discount_percentage,
            discounted_price=str(coupon.discounted_price),
        )
    else:
        raise TypeError(f"Unknown coupon type: {type(coupon).__name__}")
    return record


def coupon_from_record(record: dict[str, Any], now: datetime) -> Coupon:
    created_at = parse_timestamp(record["created_at"])
    is_redeemed = bool(record.get("is_redeemed", False))
    common = {
        "id": record["id"],
        "session_id": record.get("session_id", ""),
        "product_sku": record.get("product_sku", ""),
        "product_name": record.get("product_name", ""),
        "code": record.get("code", ""),
        "created_at": created_at,
        "expires_at": parse_timestamp(record["expires_at"]),
        "is_redeemed": is_redeemed,
        "status": coupon_status(created_at, is_redeemed, now),
    }
    kind = record.get("kind")
    if kind == KIND_ACCEPTED:
        return AcceptedOfferCoupon(offered_amount=to_money(record["offered_amount"]), local_only=True, **common)
    if kind == KIND_CONSOLATION:
        return ConsolationCoupon(
            product_price=to_money(record["product_price"]),
            discount_percentage=int(record["discount_percentage"]),
            discounted_price=to_money(record["discounted_price"]),
            **common,
        )
    raise ValueError(f"Unknown coupon kind: {kind!r}")


class LocalCouponStore:
    """Coupons kept on the device as one JSON array under a storage key."""

    def __init__(self, storage: KeyValueStorage, key: str = LOCAL_COUPONS_KEY):
        self.storage = storage
        self.key = key

    def _records(self) -> list[dict[str, Any]]:
        raw = self.storage.get_item(self.key)
        if not raw:
            return []
        try:
            records = json.loads(raw)
        except json.JSONDecodeError as e:
            logger.warning(f"Discarding unreadable local coupons: {e}")
            return []
        return records if isinstance(records, list) else []

    def load(self, now: datetime) -> list[Coupon]:
        coupons: list[Coupon] = []
        for record in self._records():
            try:
                coupons.append(coupon_from_record(record, now))
            except (KeyError, TypeError, ValueError) as e:
                logger.warning(f"Skipping malformed local coupon: {e}")
        return coupons

    def save(self, coupon: Coupon) -> None:
        records = [r for r in self._records() if r.get("id") != coupon.id]
        records.append(coupon_to_record(coupon))
        self.storage.set_item(self.key, json.dumps(records))
        logger.info(f"Saved coupon {coupon.code} locally ({type(coupon).__name__})")


def merge_coupons(ledger_coupons: list[Coupon], local_coupons: list[Coupon]) -> list[Coupon]:
    """Union of both sources by id, ledger copy first, newest first."""
    merged: dict[str, Coupon] = {}
    for coupon in [*ledger_coupons, *local_coupons]:
        merged.setdefault(coupon.id, coupon)
    return sorted(merged.values(), key=lambda c: c.created_at, reverse=True)
