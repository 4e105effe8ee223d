"""In-process publish/subscribe for ledger change events"""

import logging
import threading
from collections import defaultdict
from datetime import datetime
from typing import Callable, Dict, List, Optional

from crm_ledger.domain.models import PaymentEvent
from crm_ledger.utils.date_utils import utcnow

ADVANCE_PAYMENT_UPDATED = "advancePaymentUpdated"

Handler = Callable[[PaymentEvent], None]

logger = logging.getLogger(__name__)


class EventBus:
    """
    Process-wide signal keyed by event name.

    Views holding a customer's financial state subscribe and refetch when an
    event for that customer arrives. Handlers run synchronously in publish
    order; a failing handler is logged and skipped.
    """

    def __init__(self):
        self._handlers: Dict[str, List[Handler]] = defaultdict(list)
        self._last_published: Dict[str, datetime] = {}
        self._lock = threading.Lock()

    def subscribe(self, event_name: str, handler: Handler) -> Callable[[], None]:
        """Register a handler; returns a callable that removes it"""
        with self._lock:
            self._handlers[event_name].append(handler)

        def unsubscribe() -> None:
            with self._lock:
                if handler in self._handlers[event_name]:
                    self._handlers[event_name].remove(handler)

        return unsubscribe

    def publish(self, event_name: str, event: PaymentEvent) -> int:
        """Deliver to current subscribers; returns how many handled it"""
        if event.occurred_at is None:
            event.occurred_at = utcnow()

        with self._lock:
            handlers = list(self._handlers[event_name])
            self._last_published[event_name] = event.occurred_at

        delivered = 0
        for handler in handlers:
            try:
                handler(event)
                delivered += 1
            except Exception:
                logger.exception(
                    "Event handler failed",
                    extra={"event_name": event_name, "customer_id": event.customer_id},
                )
        return delivered

    def last_published(self, event_name: str) -> Optional[datetime]:
        """When the event was last broadcast; lets pollers detect staleness"""
        return self._last_published.get(event_name)

    def clear(self) -> None:
        with self._lock:
            self._handlers.clear()
            self._last_published.clear()


event_bus = EventBus()
