import logging
import threading
import uuid
from collections.abc import Callable

from .models import ChangeEvent

logger = logging.getLogger(__name__)

ChangeHandler = Callable[[ChangeEvent], None]


class Subscription:
    """Handle returned by the notifier; call unsubscribe() to stop delivery."""

    def __init__(self, notifier: "ChangeNotifier", subscription_id: str, session_id: str | None):
        self._notifier = notifier
        self.id = subscription_id
        self.session_id = session_id

    @property
    def is_global(self) -> bool:
        return self.session_id is None

    @property
    def active(self) -> bool:
        return self._notifier.is_subscribed(self.id)

    def unsubscribe(self) -> None:
        self._notifier._remove(self.id)

    def __enter__(self) -> "Subscription":
        return self

    def __exit__(self, *exc_info) -> None:
        self.unsubscribe()


class ChangeNotifier:
    """
    Fan-out of ledger mutations to session-scoped and global subscribers.

    Delivery is best-effort: handlers run on the publisher's thread, a failing
    handler is logged and skipped, and nothing is replayed. Consumers that miss
    an event re-read the ledger.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._handlers: dict[str, tuple[str | None, ChangeHandler]] = {}

    def subscribe_session(self, session_id: str, on_change: ChangeHandler) -> Subscription:
        """Deliver only mutations of rows belonging to session_id."""
        if not session_id:
            raise ValueError("session_id is required for a session subscription")
        return self._add(session_id, on_change)

    def subscribe_global(self, on_change: ChangeHandler) -> Subscription:
        """Deliver every mutation (admin view, redemption watchers)."""
        return self._add(None, on_change)

    def _add(self, session_id: str | None, on_change: ChangeHandler) -> Subscription:
        subscription_id = str(uuid.uuid4())
        with self._lock:
            self._handlers[subscription_id] = (session_id, on_change)
        logger.debug(f"Subscribed {subscription_id} (session={session_id or '*'})")
        return Subscription(self, subscription_id, session_id)

    def _remove(self, subscription_id: str) -> None:
        with self._lock:
            removed = self._handlers.pop(subscription_id, None)
        if removed:
            logger.debug(f"Unsubscribed {subscription_id}")

    def is_subscribed(self, subscription_id: str) -> bool:
        with self._lock:
            return subscription_id in self._handlers

    @property
    def subscriber_count(self) -> int:
        with self._lock:
            return len(self._handlers)

    def publish(self, event: ChangeEvent) -> int:
        """
        Push an event to every matching subscriber.

        Returns the number of handlers that ran without raising.
        """
        with self._lock:
            targets = [
                handler
                for session_id, handler in self._handlers.values()
                if session_id is None or session_id == event.session_id
            ]

        delivered = 0
        for handler in targets:
            try:
                handler(event)
                delivered += 1
            except Exception as e:
                logger.error(f"Change handler failed for {event.event_type} {event.record.id}: {e}", exc_info=True)
        return delivered
