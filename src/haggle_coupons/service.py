"""
Negotiation flow for one device.

The service opens a negotiation for a product (capturing its price at that
moment), records each offer in the ledger and hands back a coupon when the
offer is accepted or the attempt budget runs out. When the ledger cannot be
reached, the flow keeps going on device storage alone so an accepted shopper
always leaves with a usable code.
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any

from .client import ProductCatalog
from .coupons import LocalCouponStore, issue_consolation, issue_local_coupon, merge_coupons, project, refresh
from .ledger import LedgerUnavailableError, OfferLedger, remaining_attempts_from
from .models import (
    COUPON_PENDING,
    STATUS_ACCEPTED,
    STATUS_REJECTED,
    AcceptedOfferCoupon,
    ConsolationCoupon,
    Coupon,
    OfferAttempt,
    OfferDraft,
    PerSkuSummary,
    Product,
    to_money,
)
from .negotiation import ATTEMPT_BUDGET, decide
from .notifier import ChangeHandler, Subscription
from .session import KeyValueStorage, get_session_id
from .summary import summarize

logger = logging.getLogger(__name__)


@dataclass
class NegotiationSession:
    """An open negotiation for one product, with the price captured at open time."""

    session_id: str
    product: Product
    attempts_remaining: int
    active_coupon: AcceptedOfferCoupon | None = None
    offline: bool = False

    @property
    def already_approved(self) -> bool:
        return self.active_coupon is not None

    @property
    def exhausted(self) -> bool:
        return self.attempts_remaining == 0


@dataclass
class OfferAccepted:
    attempt: OfferAttempt | None
    coupon: AcceptedOfferCoupon


@dataclass
class OfferRejected:
    attempt: OfferAttempt | None
    attempts_remaining: int


@dataclass
class ConsolationGranted:
    attempt: OfferAttempt | None
    coupon: ConsolationCoupon


@dataclass
class AlreadyApproved:
    coupon: AcceptedOfferCoupon


@dataclass
class AttemptsExhausted:
    attempts_remaining: int = 0


OfferOutcome = OfferAccepted | OfferRejected | ConsolationGranted | AlreadyApproved | AttemptsExhausted


class NegotiationService:
    """Entry point for shopper-side negotiation and coupon listing."""

    def __init__(self, catalog: ProductCatalog, ledger: OfferLedger, storage: KeyValueStorage):
        self.catalog = catalog
        self.ledger = ledger
        self.storage = storage
        self.local_coupons = LocalCouponStore(storage)
        self.session_id = get_session_id(storage)

    def _now(self, now: datetime | None) -> datetime:
        return now or self.ledger.clock()

    def _local_active(self, sku: str, now: datetime) -> AcceptedOfferCoupon | None:
        for coupon in self.local_coupons.load(now):
            if (
                isinstance(coupon, AcceptedOfferCoupon)
                and coupon.session_id == self.session_id
                and coupon.product_sku == sku
                and not coupon.is_expired(now)
            ):
                return coupon
        return None

    def _reread(self, coupon: AcceptedOfferCoupon, now: datetime) -> AcceptedOfferCoupon:
        """Current view of a coupon, picking up redemptions made since it was read."""
        if not coupon.local_only:
            try:
                attempt = self.ledger.get(coupon.id)
            except LedgerUnavailableError as e:
                logger.warning(f"Ledger unavailable, using cached coupon {coupon.code}: {e}")
                attempt = None
            if attempt is not None:
                current = project(attempt, now)
                if current is not None:
                    return current
        return refresh(coupon, now)

    def open_negotiation(self, sku: str, now: datetime | None = None) -> NegotiationSession | None:
        """
        Start negotiating on a product.

        Returns None when the SKU is not in the catalog. If the session already
        holds an unexpired accepted offer for the product, the returned
        negotiation carries it and will not accept further offers.
        """
        now = self._now(now)
        product = self.catalog.get_product(sku)
        if product is None:
            logger.info(f"Cannot negotiate unknown product {sku}")
            return None

        negotiation = NegotiationSession(session_id=self.session_id, product=product, attempts_remaining=ATTEMPT_BUDGET)
        try:
            history = self.ledger.list_by_product(self.session_id, sku)
        except LedgerUnavailableError as e:
            logger.warning(f"Ledger unavailable, negotiating {sku} on device only: {e}")
            negotiation.offline = True
            history = []

        negotiation.attempts_remaining = remaining_attempts_from(history)
        for attempt in history:
            if attempt.is_accepted and not attempt.is_expired(now):
                negotiation.active_coupon = project(attempt, now)
                break
        if negotiation.active_coupon is None:
            negotiation.active_coupon = self._local_active(sku, now)

        logger.info(
            f"Opened negotiation for {product.sku}: attempts_remaining={negotiation.attempts_remaining}, "
            f"already_approved={negotiation.already_approved}"
        )
        return negotiation

    def submit_offer(self, negotiation: NegotiationSession, offered_amount: Any, now: datetime | None = None) -> OfferOutcome:
        """Decide an offer, record it, and return what the shopper gets."""
        now = self._now(now)
        if negotiation.active_coupon is not None:
            coupon = self._reread(negotiation.active_coupon, now)
            if not coupon.is_expired(now):
                negotiation.active_coupon = coupon
                return AlreadyApproved(coupon=coupon)
            logger.info(f"Approved offer {coupon.code} for {coupon.product_sku} expired, negotiating again")
            negotiation.active_coupon = None
        if negotiation.exhausted:
            return AttemptsExhausted()

        product = negotiation.product
        decision = decide(product, offered_amount, negotiation.attempts_remaining)
        draft = OfferDraft(
            session_id=negotiation.session_id,
            product_sku=product.sku,
            product_name=product.name,
            product_price=to_money(product.price),
            product_max_discount_percentage=product.max_discount_percentage,
            offered_amount=to_money(offered_amount),
            status=STATUS_ACCEPTED if decision.accepted else STATUS_REJECTED,
            attempts_remaining=decision.attempts_remaining_after,
        )

        attempt: OfferAttempt | None = None
        try:
            attempt = self.ledger.append(draft)
        except LedgerUnavailableError as e:
            logger.warning(f"Could not record offer for {product.sku}, continuing on device: {e}")
            negotiation.offline = True

        negotiation.attempts_remaining = decision.attempts_remaining_after

        if decision.accepted:
            coupon = project(attempt, now) if attempt else None
            if coupon is None:
                coupon = issue_local_coupon(negotiation.session_id, product, offered_amount, now)
                self.local_coupons.save(coupon)
            negotiation.active_coupon = coupon
            return OfferAccepted(attempt=attempt, coupon=coupon)

        if decision.exhausted:
            consolation = issue_consolation(negotiation.session_id, product, now)
            self.local_coupons.save(consolation)
            logger.info(f"Attempts exhausted for {product.sku}, granted consolation coupon {consolation.code}")
            return ConsolationGranted(attempt=attempt, coupon=consolation)

        return OfferRejected(attempt=attempt, attempts_remaining=decision.attempts_remaining_after)

    def list_coupons(self, now: datetime | None = None) -> list[Coupon]:
        """Every coupon this session holds, from the ledger and from the device."""
        now = self._now(now)
        ledger_coupons: list[Coupon] = []
        try:
            for attempt in self.ledger.list_accepted(self.session_id):
                coupon = project(attempt, now)
                if coupon:
                    ledger_coupons.append(coupon)
        except LedgerUnavailableError as e:
            logger.warning(f"Ledger unavailable, showing device coupons only: {e}")

        local = [c for c in self.local_coupons.load(now) if c.session_id == self.session_id]
        return merge_coupons(ledger_coupons, local)

    def pending_coupons(self, now: datetime | None = None) -> list[Coupon]:
        return [c for c in self.list_coupons(now) if c.status == COUPON_PENDING]

    def redeem(self, attempt_id: str) -> OfferAttempt | None:
        """Administrative redemption of an accepted offer."""
        return self.ledger.mark_redeemed(attempt_id)

    def subscribe(self, on_change: ChangeHandler) -> Subscription:
        """Listen for ledger changes to this session's offers."""
        if self.ledger.notifier is None:
            raise RuntimeError("Ledger has no change notifier")
        return self.ledger.notifier.subscribe_session(self.session_id, on_change)

    def summary(self) -> list[PerSkuSummary]:
        return summarize(self.ledger.list_all())
