import logging
import threading
from dataclasses import dataclass, field
from typing import Any, Dict, Optional

logger = logging.getLogger(__name__)

INSERT = 'INSERT'
UPDATE = 'UPDATE'
DELETE = 'DELETE'


@dataclass(frozen=True)
class ChangeEvent:
    table: str
    event_type: str
    exam_id: Optional[str]
    record: Dict[str, Any] = field(default_factory=dict)


class Subscription:
    def __init__(self, feed, table, callback, predicate=None):
        self.feed = feed
        self.table = table
        self.callback = callback
        self.predicate = predicate
        self.active = True

    def matches(self, event):
        if not self.active or event.table != self.table:
            return False
        return self.predicate is None or self.predicate(event)

    def unsubscribe(self):
        self.feed._remove(self)


class ChangeFeed:
    """In-process publish/subscribe of row changes, keyed by table name."""

    def __init__(self):
        self._subscriptions = []
        self._lock = threading.Lock()

    def subscribe(self, table, callback, predicate=None):
        subscription = Subscription(self, table, callback, predicate)
        with self._lock:
            self._subscriptions.append(subscription)
        return subscription

    def _remove(self, subscription):
        with self._lock:
            subscription.active = False
            if subscription in self._subscriptions:
                self._subscriptions.remove(subscription)

    def publish(self, event):
        with self._lock:
            targets = [s for s in self._subscriptions if s.matches(event)]
        for subscription in targets:
            try:
                subscription.callback(event)
            except Exception:
                logger.exception(f"Subscriber to {event.table} failed on {event.event_type}")
        return len(targets)

    def __len__(self):
        with self._lock:
            return len(self._subscriptions)
