import logging
from collections import Counter
from datetime import datetime
from decimal import ROUND_HALF_UP, Decimal

from .coupons import coupon_status
from .models import STATUS_ACCEPTED, STATUS_REJECTED, OfferAttempt, OverallStats, PerSkuSummary

logger = logging.getLogger(__name__)
# Separate logger for reports - can be configured with its own file handler
report_logger = logging.getLogger("haggle_coupons.reports")


def _round_half_up(value: Decimal) -> int:
    return int(value.quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def _rate(part: int, total: int) -> int:
    if total == 0:
        return 0
    return _round_half_up(Decimal(part) * 100 / Decimal(total))


def _discount(average: Decimal, price: Decimal) -> int:
    if not price:
        return 0
    return _round_half_up((price - average) * 100 / price)


def summarize(attempts: list[OfferAttempt]) -> list[PerSkuSummary]:
    """Per-SKU offer statistics, busiest SKU first."""
    groups: dict[str, list[OfferAttempt]] = {}
    for attempt in attempts:
        groups.setdefault(attempt.product_sku, []).append(attempt)

    summaries = []
    for sku, group in groups.items():
        total = len(group)
        accepted = sum(1 for a in group if a.status == STATUS_ACCEPTED)
        rejected = sum(1 for a in group if a.status == STATUS_REJECTED)
        average = sum((a.offered_amount for a in group), Decimal(0)) / total
        # Price snapshot of the first row seen; list_all() returns newest first
        price = group[0].product_price
        summaries.append(
            PerSkuSummary(
                product_sku=sku,
                product_name=group[0].product_name,
                total_offers=total,
                accepted_offers=accepted,
                rejected_offers=rejected,
                acceptance_rate=_rate(accepted, total),
                average_offered_amount=_round_half_up(average),
                product_price=price,
                average_discount_percentage=_discount(average, price),
            )
        )
    # sorted() is stable, so equal totals keep first-seen order
    return sorted(summaries, key=lambda s: s.total_offers, reverse=True)


def overall_stats(attempts: list[OfferAttempt]) -> OverallStats:
    total = len(attempts)
    accepted = sum(1 for a in attempts if a.status == STATUS_ACCEPTED)
    rejected = sum(1 for a in attempts if a.status == STATUS_REJECTED)
    return OverallStats(
        total_offers=total,
        accepted_offers=accepted,
        rejected_offers=rejected,
        acceptance_rate=_rate(accepted, total),
    )


def coupon_status_counts(attempts: list[OfferAttempt], now: datetime) -> Counter:
    return Counter(coupon_status(a.created_at, a.is_redeemed, now) for a in attempts if a.status == STATUS_ACCEPTED)


def build_report(attempts: list[OfferAttempt], now: datetime) -> str:
    """Build the text report of offer activity."""
    stats = overall_stats(attempts)
    statuses = coupon_status_counts(attempts, now)

    lines = [
        "Offer Report",
        "=" * 40,
        "",
        f"Total offers: {stats.total_offers}",
        f"Accepted: {stats.accepted_offers}",
        f"Rejected: {stats.rejected_offers}",
        f"Acceptance rate: {stats.acceptance_rate}%",
        "",
        f"Coupons pending: {statuses['pending']}",
        f"Coupons used: {statuses['used']}",
        f"Coupons cancelled: {statuses['cancelled']}",
        "",
    ]

    summaries = summarize(attempts)
    if summaries:
        lines.append("By product:")
        lines.append("-" * 20)
        for s in summaries[:20]:
            lines.append(f"  - {s.product_name} ({s.product_sku})")
            lines.append(
                f"    {s.total_offers} offers, {s.accepted_offers} accepted, "
                f"{s.acceptance_rate}% rate, avg offer {s.average_offered_amount} "
                f"of {s.product_price} ({s.average_discount_percentage}% off)"
            )
        if len(summaries) > 20:
            lines.append(f"  ... and {len(summaries) - 20} more")

    return "\n".join(lines)


def log_report(attempts: list[OfferAttempt], now: datetime) -> str:
    """Log the report to the report logger and return the report text."""
    report = build_report(attempts, now)
    report_logger.info("\n" + report)
    return report
