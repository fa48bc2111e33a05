"""Change listener: turns row change notifications into full refreshes.

The diff carried by a notification is only logged, never applied; the
refresh it triggers is the source of truth.
"""

import logging
import threading
from typing import Any, Callable, Dict, List, Optional

from ..models.realtime import ChangeEvent
from ..store.realtime import ChangeFeed, ChangeSubscription
from ..utils.error_handling import CineAdminError

logger = logging.getLogger(__name__)


class ChangeListener:
    """Refreshes a cache whenever one of its tables changes."""

    def __init__(
        self,
        name: str,
        feed: ChangeFeed,
        primary_keys: Dict[str, str],
        on_change: Callable[[], Any],
        debounce_seconds: float = 0.0,
    ):
        """Initialize listener.

        Args:
            name: Resource name used in log lines
            feed: Source of change notifications
            primary_keys: Watched tables mapped to their primary key column
            on_change: Refresh callable invoked after a notification
            debounce_seconds: Window collapsing bursts of notifications into
                one refresh; 0 refreshes synchronously once per notification
        """
        self.name = name
        self.feed = feed
        self.primary_keys = dict(primary_keys)
        self.on_change = on_change
        self.debounce_seconds = max(0.0, debounce_seconds)

        self._subscriptions: List[ChangeSubscription] = []
        self._timer: Optional[threading.Timer] = None
        self._lock = threading.Lock()
        self._closed = False

    @property
    def tables(self) -> List[str]:
        return list(self.primary_keys)

    @property
    def active(self) -> bool:
        return bool(self._subscriptions) and not self._closed

    def start(self) -> None:
        """Subscribe to every watched table."""
        if self._subscriptions:
            return
        for table in self.primary_keys:
            self._subscriptions.append(self.feed.subscribe(table, self.handle_event))
        logger.debug("[realtime %s] listening on %s", self.name, ", ".join(self.tables))

    def handle_event(self, event: ChangeEvent) -> None:
        """Log a notification and schedule the refresh.

        Args:
            event: Row change notification
        """
        if self._closed:
            return

        primary_key = self.primary_keys.get(event.table, "id")
        logger.info(
            "[realtime %s] event=%s id=%s",
            self.name,
            event.event_type.value,
            event.affected_id(primary_key),
        )

        if self.debounce_seconds <= 0:
            self._refresh()
            return

        with self._lock:
            if self._timer is not None:
                return
            self._timer = threading.Timer(self.debounce_seconds, self._fire)
            self._timer.daemon = True
            self._timer.start()

    def _fire(self) -> None:
        with self._lock:
            self._timer = None
        if not self._closed:
            self._refresh()

    def _refresh(self) -> None:
        try:
            self.on_change()
        except CineAdminError as e:
            logger.warning(
                "[realtime %s] refresh after notification failed, still listening: %s",
                self.name,
                e.message,
            )

    def flush(self) -> None:
        """Run a pending debounced refresh now instead of waiting."""
        with self._lock:
            timer, self._timer = self._timer, None
        if timer is not None:
            timer.cancel()
            self._refresh()

    def close(self) -> None:
        """Cancel any pending refresh and unsubscribe."""
        self._closed = True
        with self._lock:
            timer, self._timer = self._timer, None
        if timer is not None:
            timer.cancel()
        for subscription in self._subscriptions:
            subscription.unsubscribe()
        self._subscriptions = []
