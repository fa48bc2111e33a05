"""Hot, replaying snapshot stream.

A new subscriber is called at once with the current value, then with every
later value in publish order. Delivery happens on the publishing thread.
"""

import logging
import threading
from typing import Callable, Generic, List, Optional, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


class StreamSubscription(Generic[T]):
    """Handle for one subscriber of a SnapshotStream."""

    def __init__(
        self,
        stream: "SnapshotStream[T]",
        on_next: Callable[[T], None],
        on_complete: Optional[Callable[[], None]] = None,
    ):
        self._stream = stream
        self.on_next = on_next
        self.on_complete = on_complete
        self.active = True

    def unsubscribe(self) -> None:
        if self.active:
            self.active = False
            self._stream._remove(self)


class SnapshotStream(Generic[T]):
    """Multi-subscriber broadcast of the latest value."""

    def __init__(
        self,
        initial: T,
        name: str = "",
        copier: Optional[Callable[[T], T]] = None,
        lock: Optional[threading.RLock] = None,
    ):
        """Initialize stream.

        Args:
            initial: Value replayed before anything is published
            name: Label used in log messages
            copier: Applied to the value handed to each subscriber, so
                subscribers cannot mutate the stored value
            lock: Re-entrant lock to share with the owner of the value
        """
        self.name = name
        self._value = initial
        self._copier = copier or (lambda value: value)
        self._subscribers: List[StreamSubscription[T]] = []
        self._closed = False
        self._lock = lock or threading.RLock()

    @property
    def value(self) -> T:
        """Latest published value (copied)."""
        with self._lock:
            return self._copier(self._value)

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def subscriber_count(self) -> int:
        with self._lock:
            return len(self._subscribers)

    def subscribe(
        self,
        on_next: Callable[[T], None],
        on_complete: Optional[Callable[[], None]] = None,
    ) -> StreamSubscription[T]:
        """Subscribe and receive the current value immediately.

        Args:
            on_next: Called with each value
            on_complete: Called once when the stream closes

        Returns:
            Subscription handle
        """
        subscription = StreamSubscription(self, on_next, on_complete)
        with self._lock:
            if self._closed:
                subscription.active = False
                self._notify_complete(subscription)
                return subscription
            self._subscribers.append(subscription)
            self._notify(subscription, self._value)
        return subscription

    def publish(self, value: T) -> None:
        """Store ``value`` and hand it to every subscriber, in order."""
        with self._lock:
            if self._closed:
                logger.debug("Ignoring publish on closed stream %s", self.name)
                return
            self._value = value
            for subscription in list(self._subscribers):
                if subscription.active:
                    self._notify(subscription, value)

    def close(self) -> None:
        """Complete the stream; later publishes are ignored."""
        with self._lock:
            if self._closed:
                return
            self._closed = True
            subscribers, self._subscribers = self._subscribers, []
            for subscription in subscribers:
                if subscription.active:
                    subscription.active = False
                    self._notify_complete(subscription)

    def _remove(self, subscription: StreamSubscription[T]) -> None:
        with self._lock:
            if subscription in self._subscribers:
                self._subscribers.remove(subscription)

    def _notify(self, subscription: StreamSubscription[T], value: T) -> None:
        try:
            subscription.on_next(self._copier(value))
        except Exception:
            logger.exception("Subscriber of %s failed", self.name or "stream")

    def _notify_complete(self, subscription: StreamSubscription[T]) -> None:
        if subscription.on_complete is None:
            return
        try:
            subscription.on_complete()
        except Exception:
            logger.exception("Completion handler of %s failed", self.name or "stream")
