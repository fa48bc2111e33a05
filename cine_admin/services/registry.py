"""Composition root: one collection cache per resource, sharing transports."""

import logging
import threading
from typing import Dict, List, Optional

from ..cache.collection import CollectionCache, ResourceSpec
from ..config import Config
from ..models.records import Rental
from ..models.statistics import (
    BoxOfficeStatistics,
    RentalStatistics,
    RoomOccupancy,
    TicketStatistics,
    UserStatistics,
)
from ..store.realtime import ChangeFeed, RealtimeChangeFeed
from ..store.rest import RemoteStore
from . import statistics
from .availability import AvailabilityService
from .billboard import BillboardService
from .rentals import RentalService, search_rentals
from .resources import RESOURCES

logger = logging.getLogger(__name__)


class CacheRegistry:
    """Creates, starts and disposes the collection caches."""

    def __init__(
        self,
        store: RemoteStore,
        change_feed: Optional[ChangeFeed] = None,
        debounce_seconds: float = 0.0,
        resources: Optional[Dict[str, ResourceSpec]] = None,
    ):
        """Initialize registry.

        Args:
            store: REST gateway shared by every cache
            change_feed: Realtime feed shared by every cache (None: no listeners)
            debounce_seconds: Listener debounce window
            resources: Resource catalog (default: every known resource)
        """
        self.store = store
        self.change_feed = change_feed
        self.debounce_seconds = debounce_seconds
        self.resources = dict(resources if resources is not None else RESOURCES)
        self.availability = AvailabilityService(store)
        self.billboard = BillboardService(store)
        self.rentals = RentalService(store)

        self._caches: Dict[str, CollectionCache] = {}
        self._lock = threading.Lock()
        self._closed = False

    @classmethod
    def from_config(cls, config: Config) -> "CacheRegistry":
        """Build the transports described by the configuration."""
        remote = config.remote
        store = RemoteStore(
            remote.url,
            remote.anon_key,
            schema=remote.schema_name,
            timeout=remote.timeout_seconds,
        )
        feed = None
        if config.realtime.enabled:
            feed = RealtimeChangeFeed(
                remote.url,
                remote.anon_key,
                schema=remote.schema_name,
                heartbeat_seconds=config.realtime.heartbeat_seconds,
                reconnect_seconds=config.realtime.reconnect_seconds,
            )
        return cls(store, feed, debounce_seconds=config.realtime.debounce_seconds)

    @property
    def names(self) -> List[str]:
        return list(self.resources)

    def cache(self, name: str) -> CollectionCache:
        """Get the cache of a resource, creating it on first use (not started).

        Raises:
            KeyError: Unknown resource
        """
        with self._lock:
            if self._closed:
                raise RuntimeError("Registry is closed")
            cache = self._caches.get(name)
            if cache is None:
                cache = CollectionCache(
                    self.resources[name],
                    self.store,
                    self.change_feed,
                    debounce_seconds=self.debounce_seconds,
                )
                self._caches[name] = cache
            return cache

    def __getitem__(self, name: str) -> CollectionCache:
        return self.cache(name)

    def start(self, name: str) -> CollectionCache:
        """Get a resource cache and run its initial fetch."""
        return self.cache(name).start()

    def close(self) -> None:
        """Dispose every cache, then the transports."""
        with self._lock:
            if self._closed:
                return
            self._closed = True
            caches = list(self._caches.values())
        for cache in caches:
            cache.close()
        if self.change_feed is not None:
            self.change_feed.close()
        self.store.close()
        logger.debug("Closed %d cache(s)", len(caches))

    def __enter__(self) -> "CacheRegistry":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()

    def snapshot(self, name: str) -> List:
        """Current snapshot of a running cache, or a fresh fetch otherwise.

        Raises:
            FetchError: The cache is not running and the fetch failed
        """
        cache = self.cache(name)
        if cache.started:
            return cache.snapshot
        return cache.refresh()

    # === Statistics over snapshots ===

    def ticket_statistics(self) -> TicketStatistics:
        return statistics.ticket_statistics(self.snapshot("tickets"), self.snapshot("sales"))

    def rental_statistics(self) -> RentalStatistics:
        return statistics.rental_statistics(self.snapshot("rentals"))

    def user_statistics(self) -> UserStatistics:
        return statistics.user_statistics(self.snapshot("users"), self.snapshot("sales"))

    def room_occupancy(self) -> List[RoomOccupancy]:
        return statistics.room_occupancy(self.snapshot("rooms"), self.snapshot("seats"))

    def box_office_statistics(self) -> BoxOfficeStatistics:
        return statistics.box_office_statistics(self.store)

    def search_rentals(self, term: str) -> List[Rental]:
        """Rentals matching ``term`` in the rentals snapshot."""
        return search_rentals(self.snapshot("rentals"), term)
