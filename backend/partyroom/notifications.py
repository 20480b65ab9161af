"""In-process change feed for the room store.

The store publishes one event per committed change; subscribers register
for a table (``room`` or ``player``), optionally narrowed to a set of
events and to a key (the room id). A subscription registered without a
key receives every event for its table.
"""

import threading
from typing import Any, Callable, Iterable, List, Optional

ROOM_TABLE = 'room'
PLAYER_TABLE = 'player'

INSERT = 'INSERT'
UPDATE = 'UPDATE'
DELETE = 'DELETE'

Callback = Callable[[str, dict], Any]


class Subscription:
    def __init__(self, feed: 'ChangeFeed', table: str, callback: Callback,
                 events: Optional[Iterable[str]] = None, key: Any = None):
        self._feed = feed
        self.table = table
        self.callback = callback
        self.events = frozenset(events) if events else None
        self.key = key
        self.active = True

    def matches(self, table: str, event: str, key: Any) -> bool:
        if not self.active or table != self.table:
            return False
        if self.events is not None and event not in self.events:
            return False
        return self.key is None or self.key == key

    def unsubscribe(self) -> None:
        self.active = False
        self._feed._remove(self)


class ChangeFeed:
    def __init__(self):
        self._lock = threading.Lock()
        self._subscriptions: List[Subscription] = []

    def subscribe(self, table: str, callback: Callback,
                  events: Optional[Iterable[str]] = None, key: Any = None) -> Subscription:
        sub = Subscription(self, table, callback, events=events, key=key)
        with self._lock:
            self._subscriptions.append(sub)
        return sub

    def publish(self, table: str, event: str, row: dict, key: Any = None) -> int:
        """Deliver an event to matching subscribers; returns how many were called."""
        with self._lock:
            targets = [s for s in self._subscriptions if s.matches(table, event, key)]
        delivered = 0
        for sub in targets:
            # A callback may have torn down a later subscription
            if not sub.active:
                continue
            sub.callback(event, row)
            delivered += 1
        return delivered

    def subscriber_count(self) -> int:
        with self._lock:
            return len(self._subscriptions)

    def _remove(self, sub: Subscription) -> None:
        with self._lock:
            try:
                self._subscriptions.remove(sub)
            except ValueError:
                pass


class SubscriptionGroup:
    """Several subscriptions torn down together."""

    def __init__(self, subscriptions: Iterable[Subscription]):
        self.subscriptions = list(subscriptions)

    @property
    def active(self) -> bool:
        return any(s.active for s in self.subscriptions)

    def unsubscribe(self) -> None:
        for sub in self.subscriptions:
            sub.unsubscribe()
