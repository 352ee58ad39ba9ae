"""In-process change feed for committed clock events."""

from __future__ import annotations

import logging
import queue
import threading
import uuid
from dataclasses import dataclass
from typing import Iterator

from sqlalchemy import event
from sqlalchemy.orm import Session

from fichaje.models import ClockEvent, ClockEventType


logger = logging.getLogger(__name__)

_PENDING_KEY = "pending_clock_changes"


@dataclass(frozen=True)
class ChangeNotification:
    user_id: uuid.UUID
    event_id: uuid.UUID
    entry_type: ClockEventType


class Subscription:
    """Infinite lazy sequence of notifications for one user (or all users).

    Iteration blocks until the next notification arrives and stops once the
    subscription is closed. A closed subscription is not reopened; subscribe
    again to restart after a reconnect.
    """

    _CLOSED = object()

    def __init__(self, feed: "ChangeFeed", user_id: uuid.UUID | None) -> None:
        self.feed = feed
        self.user_id = user_id
        self.closed = False
        self._queue: queue.Queue = queue.Queue()

    def matches(self, notification: ChangeNotification) -> bool:
        return self.user_id is None or self.user_id == notification.user_id

    def deliver(self, notification: ChangeNotification) -> None:
        if not self.closed:
            self._queue.put(notification)

    def get(self, timeout: float | None = None) -> ChangeNotification | None:
        """Next notification, or None on timeout or once closed."""
        try:
            item = self._queue.get(timeout=timeout)
        except queue.Empty:
            return None
        if item is self._CLOSED:
            return None
        return item

    def close(self) -> None:
        if self.closed:
            return
        self.closed = True
        self.feed.unsubscribe(self)
        self._queue.put(self._CLOSED)

    def __iter__(self) -> Iterator[ChangeNotification]:
        while True:
            # Notifications queued before close() are still handed out.
            if self.closed and self._queue.empty():
                return
            item = self.get()
            if item is None:
                return
            yield item

    def __enter__(self) -> "Subscription":
        return self

    def __exit__(self, *_exc: object) -> None:
        self.close()


class ChangeFeed:
    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._subscriptions: list[Subscription] = []

    def subscribe(self, user_id: uuid.UUID | None = None) -> Subscription:
        subscription = Subscription(self, user_id)
        with self._lock:
            self._subscriptions.append(subscription)
        return subscription

    def unsubscribe(self, subscription: Subscription) -> None:
        with self._lock:
            if subscription in self._subscriptions:
                self._subscriptions.remove(subscription)

    def publish(self, notification: ChangeNotification) -> None:
        with self._lock:
            targets = [item for item in self._subscriptions if item.matches(notification)]
        for subscription in targets:
            subscription.deliver(notification)

    @property
    def subscriber_count(self) -> int:
        with self._lock:
            return len(self._subscriptions)


change_feed = ChangeFeed()

_listeners_registered = False


def init_change_listeners(feed: ChangeFeed = change_feed) -> None:
    """Publish clock events to ``feed`` once their transaction commits."""
    global _listeners_registered
    if _listeners_registered:
        return

    @event.listens_for(ClockEvent, "after_insert")
    def collect_clock_event(_mapper: object, _connection: object, target: ClockEvent) -> None:
        session = Session.object_session(target)
        if session is None:
            return
        session.info.setdefault(_PENDING_KEY, []).append(
            ChangeNotification(user_id=target.user_id, event_id=target.id, entry_type=target.entry_type)
        )

    @event.listens_for(Session, "after_commit")
    def publish_committed(session: Session) -> None:
        pending = session.info.pop(_PENDING_KEY, [])
        for notification in pending:
            feed.publish(notification)
        if pending:
            logger.debug("Published %d clock change notification(s)", len(pending))

    @event.listens_for(Session, "after_rollback")
    def discard_rolled_back(session: Session) -> None:
        session.info.pop(_PENDING_KEY, None)

    _listeners_registered = True
