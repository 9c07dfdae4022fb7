import logging
import secrets
import string
import threading
import uuid
from collections.abc import Callable
from dataclasses import replace
from datetime import datetime, timedelta, timezone

from .models import EVENT_INSERT, EVENT_UPDATE, STATUS_ACCEPTED, ChangeEvent, OfferAttempt, OfferDraft
from .negotiation import ATTEMPT_BUDGET
from .notifier import ChangeNotifier

logger = logging.getLogger(__name__)

CODE_ALPHABET = string.ascii_uppercase + string.digits
CODE_LENGTH = 8
ACCEPTED_OFFER_TTL = timedelta(hours=1)

Clock = Callable[[], datetime]


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class LedgerUnavailableError(RuntimeError):
    """The durable ledger could not be reached or refused the request."""


def generate_acceptance_code() -> str:
    # Collisions are not checked; 36**8 codes keeps the birthday bound far off.
    return "".join(secrets.choice(CODE_ALPHABET) for _ in range(CODE_LENGTH))


def remaining_attempts_from(history: list[OfferAttempt]) -> int:
    """Budget left given a newest-first history for one (session, sku) pair."""
    if not history:
        return ATTEMPT_BUDGET
    latest = history[0]
    if latest.is_accepted:
        return ATTEMPT_BUDGET
    return max(0, latest.attempts_remaining)


def stamp_attempt(draft: OfferDraft, now: datetime) -> OfferAttempt:
    """Give a draft its id and timestamps, plus code and expiry when accepted."""
    accepted = draft.status == STATUS_ACCEPTED
    return OfferAttempt(
        id=str(uuid.uuid4()),
        session_id=draft.session_id,
        product_sku=draft.product_sku,
        product_name=draft.product_name,
        product_price=draft.product_price,
        product_max_discount_percentage=draft.product_max_discount_percentage,
        offered_amount=draft.offered_amount,
        status=draft.status,
        acceptance_code=generate_acceptance_code() if accepted else None,
        attempts_remaining=draft.attempts_remaining,
        created_at=now,
        updated_at=now,
        expires_at=now + ACCEPTED_OFFER_TTL if accepted else None,
    )


class OfferLedger:
    """
    Append-only record of negotiation attempts.

    Subclasses provide storage through the underscore methods; this class
    owns ordering, the attempt budget and change notification.
    """

    def __init__(self, notifier: ChangeNotifier | None = None, clock: Clock = utcnow):
        self.notifier = notifier
        self.clock = clock

    # Storage hooks

    def _insert(self, attempt: OfferAttempt) -> OfferAttempt:
        raise NotImplementedError

    def _set_redeemed(self, attempt_id: str, now: datetime) -> OfferAttempt | None:
        raise NotImplementedError

    def _select(self, **filters: str) -> list[OfferAttempt]:
        """Rows matching all column filters, newest first."""
        raise NotImplementedError

    # Public contract

    def append(self, draft: OfferDraft) -> OfferAttempt:
        attempt = self._insert(stamp_attempt(draft, self.clock()))
        logger.info(
            f"Recorded {attempt.status} offer {attempt.offered_amount} for {attempt.product_sku} "
            f"(session={attempt.session_id}, attempts_remaining={attempt.attempts_remaining})"
        )
        self._publish(EVENT_INSERT, attempt)
        return attempt

    def mark_redeemed(self, attempt_id: str) -> OfferAttempt | None:
        attempt = self._set_redeemed(attempt_id, self.clock())
        if attempt is None:
            logger.warning(f"Cannot redeem unknown offer {attempt_id}")
            return None
        logger.info(f"Offer {attempt_id} marked as redeemed")
        self._publish(EVENT_UPDATE, attempt)
        return attempt

    def get(self, attempt_id: str) -> OfferAttempt | None:
        rows = self._select(id=attempt_id)
        return rows[0] if rows else None

    def list_by_session(self, session_id: str) -> list[OfferAttempt]:
        return self._select(session_id=session_id)

    def list_by_product(self, session_id: str, sku: str) -> list[OfferAttempt]:
        return self._select(session_id=session_id, product_sku=sku)

    def list_accepted(self, session_id: str) -> list[OfferAttempt]:
        return self._select(session_id=session_id, offer_status=STATUS_ACCEPTED)

    def list_all(self) -> list[OfferAttempt]:
        return self._select()

    def remaining_attempts(self, session_id: str, sku: str) -> int:
        return remaining_attempts_from(self.list_by_product(session_id, sku))

    def active_accepted(self, session_id: str, sku: str, now: datetime | None = None) -> OfferAttempt | None:
        """Newest accepted, unexpired attempt for the pair, if any."""
        now = now or self.clock()
        for attempt in self.list_by_product(session_id, sku):
            if attempt.is_accepted and not attempt.is_expired(now):
                return attempt
        return None

    def _publish(self, event_type: str, attempt: OfferAttempt) -> None:
        if self.notifier is not None:
            self.notifier.publish(ChangeEvent(event_type=event_type, record=attempt))


_COLUMN_ATTRS = {
    "id": "id",
    "session_id": "session_id",
    "product_sku": "product_sku",
    "offer_status": "status",
}


class InMemoryOfferLedger(OfferLedger):
    """
    Ledger held in process memory, safe for concurrent appends.

    Stored rows are never handed out: callers and change events get copies,
    so a row only changes through mark_redeemed.
    """

    def __init__(self, notifier: ChangeNotifier | None = None, clock: Clock = utcnow):
        super().__init__(notifier=notifier, clock=clock)
        self._lock = threading.Lock()
        self._rows: list[OfferAttempt] = []

    def _insert(self, attempt: OfferAttempt) -> OfferAttempt:
        with self._lock:
            self._rows.append(replace(attempt))
        return replace(attempt)

    def _set_redeemed(self, attempt_id: str, now: datetime) -> OfferAttempt | None:
        with self._lock:
            for index, row in enumerate(self._rows):
                if row.id == attempt_id:
                    updated = replace(row, is_redeemed=True, updated_at=now)
                    self._rows[index] = updated
                    return replace(updated)
        return None

    def _select(self, **filters: str) -> list[OfferAttempt]:
        with self._lock:
            rows = list(self._rows)
        matching = [
            row for row in rows if all(getattr(row, _COLUMN_ATTRS[col]) == value for col, value in filters.items())
        ]
        # Insertion order breaks created_at ties so the latest append stays first.
        indexed = sorted(enumerate(matching), key=lambda pair: (pair[1].created_at, pair[0]), reverse=True)
        return [replace(row) for _, row in indexed]
