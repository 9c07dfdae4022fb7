"""
Relay of ledger changes made by other processes.

The ledger publishes its own writes as they happen. Writes made elsewhere
(an admin redeeming a coupon from another machine, another device sharing
the session) only show up by reading the ledger again, so the watcher
re-reads on an interval and publishes what changed since the last read.
"""

import logging
import threading

from .ledger import LedgerUnavailableError, OfferLedger
from .models import EVENT_INSERT, EVENT_UPDATE, ChangeEvent, OfferAttempt
from .notifier import ChangeNotifier

logger = logging.getLogger(__name__)

DEFAULT_POLL_INTERVAL = 5.0


class LedgerWatcher:
    """
    Poll a ledger and publish INSERT/UPDATE events for rows that changed.

    Watches one session when session_id is given, otherwise every row. The
    first read only records a baseline. Delivery is at-least-once: a write
    made by this process may arrive both from the ledger and from here.
    """

    def __init__(
        self,
        ledger: OfferLedger,
        notifier: ChangeNotifier,
        session_id: str | None = None,
        interval: float = DEFAULT_POLL_INTERVAL,
    ):
        self.ledger = ledger
        self.notifier = notifier
        self.session_id = session_id
        self.interval = interval
        self._seen: dict[str, bool] | None = None
        self._stop = threading.Event()
        self._thread: threading.Thread | None = None

    def _read(self) -> list[OfferAttempt]:
        if self.session_id:
            return self.ledger.list_by_session(self.session_id)
        return self.ledger.list_all()

    def poll(self) -> list[ChangeEvent]:
        """Read the ledger once and publish the differences. Returns what was published."""
        try:
            rows = self._read()
        except LedgerUnavailableError as e:
            logger.warning(f"Ledger unavailable, will retry in {self.interval}s: {e}")
            return []

        current = {row.id: row.is_redeemed for row in rows}
        if self._seen is None:
            self._seen = current
            logger.debug(f"Watching {len(current)} offers")
            return []

        events = []
        # Oldest first so subscribers see changes in the order they were made
        for row in reversed(rows):
            if row.id not in self._seen:
                events.append(ChangeEvent(event_type=EVENT_INSERT, record=row))
            elif row.is_redeemed and not self._seen[row.id]:
                events.append(ChangeEvent(event_type=EVENT_UPDATE, record=row))
        self._seen = current

        for event in events:
            logger.info(f"Detected {event.event_type} for offer {event.record.id}")
            self.notifier.publish(event)
        return events

    def _run(self) -> None:
        while not self._stop.wait(self.interval):
            self.poll()

    def start(self) -> None:
        if self._thread is not None and self._thread.is_alive():
            return
        self._stop.clear()
        self.poll()
        self._thread = threading.Thread(target=self._run, name="ledger-watcher", daemon=True)
        self._thread.start()

    def stop(self, timeout: float | None = None) -> None:
        self._stop.set()
        if self._thread is not None:
            self._thread.join(timeout)
            self._thread = None

    def __enter__(self) -> "LedgerWatcher":
        self.start()
        return self

    def __exit__(self, *exc_info) -> None:
        self.stop()
