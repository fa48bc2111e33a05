"""Realtime change feed (Phoenix channels over a websocket).

One channel per table, topic ``realtime:{schema}:{table}``, joined with a
``postgres_changes`` config for all event kinds. The socket runs on a daemon
thread; reconnection is left to websocket-client's ``run_forever`` and every
(re)open rejoins the registered topics.
"""

import json
import logging
import threading
from abc import ABC, abstractmethod
from collections import defaultdict
from typing import Any, Callable, Dict, List, Optional
from urllib.parse import urlencode, urlparse

import websocket

from ..models.realtime import ChangeEvent, ChangeType

logger = logging.getLogger(__name__)

ChangeCallback = Callable[[ChangeEvent], None]


class ChangeSubscription:
    """Handle returned by ChangeFeed.subscribe."""

    def __init__(self, feed: "ChangeFeed", table: str, callback: ChangeCallback):
        self._feed = feed
        self.table = table
        self.callback = callback
        self.active = True

    def unsubscribe(self) -> None:
        """Stop receiving events. Safe to call more than once."""
        if self.active:
            self.active = False
            self._feed.unsubscribe(self)


class ChangeFeed(ABC):
    """Abstract source of per-table row change notifications."""

    @abstractmethod
    def subscribe(self, table: str, callback: ChangeCallback) -> ChangeSubscription:
        """Register a callback for every change on ``table``.

        Args:
            table: Table name
            callback: Called with each ChangeEvent (on the feed's thread)

        Returns:
            Subscription handle
        """
        pass

    @abstractmethod
    def unsubscribe(self, subscription: ChangeSubscription) -> None:
        """Remove a subscription."""
        pass

    @abstractmethod
    def close(self) -> None:
        """Stop delivering events and release the transport."""
        pass


def parse_change_message(message: Dict[str, Any]) -> Optional[ChangeEvent]:
    """Extract a ChangeEvent from a channel message.

    Handles the ``postgres_changes`` envelope (payload.data) and the older
    format where the event name is the change type itself.

    Args:
        message: Decoded websocket message

    Returns:
        ChangeEvent, or None for control messages
    """
    event = message.get("event")
    payload = message.get("payload") or {}

    if event == "postgres_changes":
        data = payload.get("data") or {}
    elif event in ChangeType.__members__:
        data = payload
    else:
        return None

    change_type = data.get("type") or data.get("eventType") or event
    try:
        event_type = ChangeType(str(change_type).upper())
    except ValueError:
        logger.warning("Ignoring unknown change type %r", change_type)
        return None

    return ChangeEvent(
        event_type=event_type,
        table=data.get("table", ""),
        schema_name=data.get("schema", "public"),
        new=data.get("record") or None,
        old=data.get("old_record") or None,
        commit_timestamp=data.get("commit_timestamp"),
    )


class RealtimeChangeFeed(ChangeFeed):
    """Change feed backed by the hosted database's realtime websocket."""

    PROTOCOL_VERSION = "1.0.0"

    def __init__(
        self,
        url: str,
        api_key: str,
        schema: str = "public",
        heartbeat_seconds: float = 25.0,
        reconnect_seconds: int = 5,
        app_factory: Callable[..., Any] = websocket.WebSocketApp,
    ):
        """Initialize realtime feed.

        Args:
            url: Project URL (https scheme is mapped to wss)
            api_key: API key sent as query parameter and access token
            schema: Database schema of the watched tables
            heartbeat_seconds: Interval between Phoenix heartbeats
            reconnect_seconds: Delay before websocket-client reconnects
            app_factory: WebSocketApp constructor (overridable in tests)
        """
        self.url = url.rstrip("/")
        self.api_key = api_key
        self.schema = schema
        self.heartbeat_seconds = heartbeat_seconds
        self.reconnect_seconds = reconnect_seconds
        self._app_factory = app_factory

        self._lock = threading.RLock()
        self._subscriptions: Dict[str, List[ChangeSubscription]] = defaultdict(list)
        self._ref = 0
        self._app: Optional[Any] = None
        self._connected = threading.Event()
        self._stop = threading.Event()
        self._socket_thread: Optional[threading.Thread] = None
        self._heartbeat_thread: Optional[threading.Thread] = None

    @property
    def websocket_url(self) -> str:
        parsed = urlparse(self.url)
        scheme = "ws" if parsed.scheme == "http" else "wss"
        query = urlencode({"apikey": self.api_key, "vsn": self.PROTOCOL_VERSION})
        return f"{scheme}://{parsed.netloc}{parsed.path}/realtime/v1/websocket?{query}"

    @property
    def connected(self) -> bool:
        return self._connected.is_set()

    def topic_for(self, table: str) -> str:
        return f"realtime:{self.schema}:{table}"

    # === Subscriptions ===

    def subscribe(self, table: str, callback: ChangeCallback) -> ChangeSubscription:
        subscription = ChangeSubscription(self, table, callback)
        with self._lock:
            first = not self._subscriptions[table]
            self._subscriptions[table].append(subscription)
        if first and self.connected:
            self._join(table)
        self.start()
        return subscription

    def unsubscribe(self, subscription: ChangeSubscription) -> None:
        with self._lock:
            subs = self._subscriptions.get(subscription.table, [])
            if subscription in subs:
                subs.remove(subscription)
            empty = not subs
            if empty:
                self._subscriptions.pop(subscription.table, None)
        if empty and self.connected:
            self._send(self.topic_for(subscription.table), "phx_leave", {})

    # === Transport lifecycle ===

    def start(self) -> None:
        """Open the websocket on a background thread (idempotent)."""
        with self._lock:
            if self._socket_thread is not None and self._socket_thread.is_alive():
                return
            # Ends this run's heartbeat when its socket thread exits
            stop = threading.Event()
            self._stop = stop
            self._app = self._app_factory(
                self.websocket_url,
                on_open=self._on_open,
                on_message=self._on_message,
                on_error=self._on_error,
                on_close=self._on_close,
            )
            self._socket_thread = threading.Thread(
                target=self._run_socket, args=(self._app, stop), name="realtime-socket", daemon=True
            )
            self._heartbeat_thread = threading.Thread(
                target=self._heartbeat_loop, args=(stop,), name="realtime-heartbeat", daemon=True
            )
            self._socket_thread.start()
            self._heartbeat_thread.start()

    def _run_socket(self, app: Any, stop: threading.Event) -> None:
        try:
            app.run_forever(reconnect=self.reconnect_seconds)
        except Exception:
            logger.exception("Realtime socket stopped unexpectedly")
        finally:
            stop.set()
            self._connected.clear()

    def _heartbeat_loop(self, stop: threading.Event) -> None:
        while not stop.wait(self.heartbeat_seconds):
            if self.connected:
                self._send("phoenix", "heartbeat", {})

    def close(self) -> None:
        self._stop.set()
        with self._lock:
            self._subscriptions.clear()
            app = self._app
        if app is not None:
            app.close()
        for thread in (self._socket_thread, self._heartbeat_thread):
            if thread is not None and thread is not threading.current_thread():
                thread.join(timeout=2)
        self._connected.clear()

    # === Protocol ===

    def _next_ref(self) -> str:
        with self._lock:
            self._ref += 1
            return str(self._ref)

    def _send(self, topic: str, event: str, payload: Dict[str, Any]) -> None:
        ref = self._next_ref()
        message = {"topic": topic, "event": event, "payload": payload, "ref": ref}
        if event == "phx_join":
            message["join_ref"] = ref
        try:
            self._app.send(json.dumps(message))
        except Exception as e:
            # Rejoined by the reconnect path
            logger.warning("Realtime send failed (%s %s): %s", topic, event, e)

    def join_payload(self, table: str) -> Dict[str, Any]:
        return {
            "config": {
                "broadcast": {"self": False},
                "presence": {"key": ""},
                "postgres_changes": [
                    {"event": "*", "schema": self.schema, "table": table}
                ],
            },
            "access_token": self.api_key,
        }

    def _join(self, table: str) -> None:
        logger.debug("Joining %s", self.topic_for(table))
        self._send(self.topic_for(table), "phx_join", self.join_payload(table))

    def _on_open(self, _ws) -> None:
        self._connected.set()
        with self._lock:
            tables = list(self._subscriptions)
        logger.info("Realtime connected, joining %d channel(s)", len(tables))
        for table in tables:
            self._join(table)

    def _on_message(self, _ws, raw: str) -> None:
        self.handle_message(raw)

    def _on_error(self, _ws, error: Exception) -> None:
        logger.warning("Realtime socket error: %s", error)

    def _on_close(self, _ws, status_code=None, reason=None) -> None:
        self._connected.clear()
        if not self._stop.is_set():
            logger.warning("Realtime socket closed (%s %s)", status_code, reason or "")

    def handle_message(self, raw: str) -> None:
        """Decode one websocket frame and dispatch change events.

        Args:
            raw: JSON text frame
        """
        try:
            message = json.loads(raw)
        except json.JSONDecodeError:
            logger.warning("Ignoring malformed realtime frame: %.200s", raw)
            return

        event = message.get("event")
        if event == "phx_reply":
            status = (message.get("payload") or {}).get("status")
            if status not in (None, "ok"):
                logger.warning(
                    "Realtime %s replied %s: %s",
                    message.get("topic"),
                    status,
                    (message.get("payload") or {}).get("response"),
                )
            return
        if event in ("phx_error", "system"):
            logger.info("Realtime %s: %s", event, message.get("payload"))
            return

        change = parse_change_message(message)
        if change is None:
            return

        table = change.table or str(message.get("topic", "")).rsplit(":", 1)[-1]
        with self._lock:
            subscribers = list(self._subscriptions.get(table, []))
        for subscription in subscribers:
            self._deliver(subscription, change)

    @staticmethod
    def _deliver(subscription: ChangeSubscription, change: ChangeEvent) -> None:
        if not subscription.active:
            return
        try:
            subscription.callback(change)
        except Exception:
            # Runs on the socket thread
            logger.exception("Change callback for %s failed", subscription.table)
