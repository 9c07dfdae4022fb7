import argparse
import logging
import os
import sys
import threading
from pathlib import Path

from .client import SupabaseClient, SupabaseOfferLedger, SupabaseProductCatalog
from .config import load_settings
from .ledger import utcnow
from .models import EVENT_INSERT, ChangeEvent
from .notifier import ChangeNotifier
from .resources import ledger_schema
from .service import (
    AlreadyApproved,
    AttemptsExhausted,
    ConsolationGranted,
    NegotiationService,
    OfferAccepted,
    OfferOutcome,
    OfferRejected,
)
from .session import JsonFileStorage
from .summary import log_report
from .watcher import DEFAULT_POLL_INTERVAL, LedgerWatcher

# Configure root logger
logger = logging.getLogger(__name__)

# Log directory - can be overridden via HAGGLE_LOG_DIR env var
LOG_DIR = Path(os.environ.get("HAGGLE_LOG_DIR", "logs"))


def setup_logging(verbose: bool = False, log_dir: Path = LOG_DIR) -> None:
    """Configure logging with console and file handlers."""
    log_dir.mkdir(parents=True, exist_ok=True)

    # Root logger level
    root_level = logging.DEBUG if verbose else logging.INFO

    # Console handler
    console_handler = logging.StreamHandler()
    console_handler.setLevel(root_level)
    console_handler.setFormatter(logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s"))

    # File handler for all logs
    file_handler = logging.FileHandler(log_dir / "haggle_coupons.log")
    file_handler.setLevel(logging.DEBUG)
    file_handler.setFormatter(logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s"))

    # Configure root logger
    root_logger = logging.getLogger()
    root_logger.setLevel(logging.DEBUG)
    root_logger.addHandler(console_handler)
    root_logger.addHandler(file_handler)

    # Report logger with its own file
    report_logger = logging.getLogger("haggle_coupons.reports")
    report_handler = logging.FileHandler(log_dir / "reports.log")
    report_handler.setLevel(logging.INFO)
    report_handler.setFormatter(logging.Formatter("%(asctime)s\n%(message)s\n"))
    report_logger.addHandler(report_handler)


def build_service() -> NegotiationService:
    """Wire the Supabase-backed ledger and catalog with device storage."""
    settings = load_settings()
    client = SupabaseClient(settings.supabase_url, settings.supabase_key, timeout=settings.request_timeout)
    ledger = SupabaseOfferLedger(client, notifier=ChangeNotifier())
    return NegotiationService(
        catalog=SupabaseProductCatalog(client),
        ledger=ledger,
        storage=JsonFileStorage(settings.state_dir),
    )


def describe_outcome(outcome: OfferOutcome) -> str:
    if isinstance(outcome, OfferAccepted):
        suffix = " (saved on this device only)" if outcome.coupon.local_only else ""
        return f"Offer accepted! Your code is {outcome.coupon.code}, valid until {outcome.coupon.expires_at:%H:%M}{suffix}"
    if isinstance(outcome, OfferRejected):
        return f"Offer rejected. Attempts remaining: {outcome.attempts_remaining}"
    if isinstance(outcome, ConsolationGranted):
        c = outcome.coupon
        return f"No more attempts. Take {c.discount_percentage}% OFF instead: {c.discounted_price} with code {c.code}"
    if isinstance(outcome, AlreadyApproved):
        return f"You already have an approved offer for this product: {outcome.coupon.code}"
    if isinstance(outcome, AttemptsExhausted):
        return "No attempts left for this product."
    raise TypeError(f"Unknown outcome: {type(outcome).__name__}")


def describe_event(event: ChangeEvent) -> str:
    record = event.record
    if event.event_type == EVENT_INSERT:
        return f"New {record.status} offer {record.offered_amount} for {record.product_sku} (session {record.session_id})"
    if record.is_redeemed:
        return f"Offer {record.id} ({record.acceptance_code}) for {record.product_sku} was redeemed"
    return f"Offer {record.id} for {record.product_sku} was updated"


def watch(service: NegotiationService, all_sessions: bool, interval: float, stop: threading.Event) -> None:
    """Print ledger changes until stop is set."""
    notifier = service.ledger.notifier

    def on_change(event: ChangeEvent) -> None:
        print(describe_event(event))

    if all_sessions:
        subscription = notifier.subscribe_global(on_change)
    else:
        subscription = service.subscribe(on_change)
    session_id = None if all_sessions else service.session_id
    with subscription, LedgerWatcher(service.ledger, notifier, session_id=session_id, interval=interval):
        logger.info(f"Watching {'all sessions' if all_sessions else service.session_id} every {interval}s")
        stop.wait()


def main() -> int:
    parser = argparse.ArgumentParser(description="Price offer negotiation and coupons")
    parser.add_argument(
        "-v",
        "--verbose",
        action="store_true",
        help="Enable debug logging",
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    offer_parser = subparsers.add_parser("offer", help="Propose a price for a product")
    offer_parser.add_argument("--sku", required=True, help="Product SKU (as scanned from the QR code)")
    offer_parser.add_argument("--amount", required=True, help="Offered price")

    subparsers.add_parser("coupons", help="List this device's coupons")

    redeem_parser = subparsers.add_parser("redeem", help="Mark an accepted offer as redeemed")
    redeem_parser.add_argument("offer_id", help="Ledger id of the accepted offer")

    subparsers.add_parser("summary", help="Print per-product offer statistics")

    watch_parser = subparsers.add_parser("watch", help="Print offer changes as they reach the ledger")
    watch_parser.add_argument("--all", action="store_true", help="Watch every session, not just this device")
    watch_parser.add_argument(
        "--interval", type=float, default=DEFAULT_POLL_INTERVAL, help="Seconds between ledger reads"
    )

    subparsers.add_parser("schema", help="Print the SQL for the offer ledger table")

    args = parser.parse_args()

    if args.command == "schema":
        print(ledger_schema())
        return 0

    setup_logging(verbose=args.verbose)

    try:
        service = build_service()
        logger.info(f"Using session {service.session_id}")

        if args.command == "offer":
            negotiation = service.open_negotiation(args.sku)
            if negotiation is None:
                print(f"Product {args.sku} not found")
                return 1
            print(describe_outcome(service.submit_offer(negotiation, args.amount)))

        elif args.command == "coupons":
            coupons = service.list_coupons()
            logger.info(f"Found {len(coupons)} coupons")
            for coupon in coupons:
                print(coupon)

        elif args.command == "redeem":
            attempt = service.redeem(args.offer_id)
            if attempt is None:
                print(f"Offer {args.offer_id} not found")
                return 1
            print(f"Offer {attempt.id} ({attempt.acceptance_code}) marked as redeemed")

        elif args.command == "summary":
            print(log_report(service.ledger.list_all(), utcnow()))

        elif args.command == "watch":
            try:
                watch(service, args.all, args.interval, threading.Event())
            except KeyboardInterrupt:
                logger.info("Stopped watching")

        return 0

    except Exception as e:
        logger.error(f"Error: {e}", exc_info=True)
        return 1


if __name__ == "__main__":
    sys.exit(main())
