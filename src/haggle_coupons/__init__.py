"""
Haggle Coupons - price offers and time-boxed coupons for scanned products.

This package provides tools to:
- Decide a shopper's offer against a product's hidden discount ceiling
- Record every attempt in a shared offer ledger (Supabase or in memory)
- Project accepted offers into redeemable coupons with a live status
- Notify session and admin observers about ledger changes, including
  changes made by other processes
- Summarize offer activity per product
"""

from .coupons import coupon_status, project
from .ledger import InMemoryOfferLedger, LedgerUnavailableError, OfferLedger
from .models import AcceptedOfferCoupon, ConsolationCoupon, OfferAttempt, PerSkuSummary, Product
from .negotiation import Decision, decide
from .notifier import ChangeNotifier, Subscription
from .service import NegotiationService
from .summary import summarize
from .watcher import LedgerWatcher

__all__ = [
    "AcceptedOfferCoupon",
    "ChangeNotifier",
    "ConsolationCoupon",
    "Decision",
    "InMemoryOfferLedger",
    "LedgerUnavailableError",
    "LedgerWatcher",
    "NegotiationService",
    "OfferAttempt",
    "OfferLedger",
    "PerSkuSummary",
    "Product",
    "Subscription",
    "coupon_status",
    "decide",
    "project",
    "summarize",
]
