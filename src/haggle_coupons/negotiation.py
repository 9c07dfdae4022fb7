"""
Offer decision rule.

A shopper's offer is accepted when it is at or above the product price minus
its (hidden) maximum discount. Rejections burn one attempt from a budget of
three; acceptances leave the budget untouched.
"""

from dataclasses import dataclass
from decimal import Decimal
from typing import Any

from .models import Product, to_money

ATTEMPT_BUDGET = 3
CONSOLATION_PERCENTAGE = 15


@dataclass(frozen=True)
class Decision:
    accepted: bool
    attempts_remaining_after: int

    @property
    def exhausted(self) -> bool:
        """True when this rejection used up the last attempt."""
        return not self.accepted and self.attempts_remaining_after == 0


def _minimum_acceptable(product: Product) -> Decimal:
    factor = 1 - Decimal(product.max_discount_percentage) / 100
    return to_money(to_money(product.price) * factor)


def decide(product: Product, offered_amount: Any, attempts_remaining_before: int) -> Decision:
    """
    Accept or reject an offer for a product.

    Args:
        product: Product whose price and discount ceiling apply
        offered_amount: The shopper's proposed price
        attempts_remaining_before: Budget left before this attempt

    Returns:
        Decision with the verdict and the budget after this attempt
    """
    if to_money(product.price) <= 0:
        raise ValueError(f"Product {product.sku} has a non-positive price")
    if not 0 <= product.max_discount_percentage <= 100:
        raise ValueError(f"Product {product.sku} has an invalid discount percentage")
    offered = to_money(offered_amount)
    if offered < 0:
        raise ValueError("Offered amount cannot be negative")

    if offered >= _minimum_acceptable(product):
        return Decision(accepted=True, attempts_remaining_after=attempts_remaining_before)
    return Decision(accepted=False, attempts_remaining_after=max(0, attempts_remaining_before - 1))


def consolation_price(price: Any, percentage: int = CONSOLATION_PERCENTAGE) -> Decimal:
    """Price after the fixed consolation discount."""
    return to_money(to_money(price) * (1 - Decimal(percentage) / 100))
