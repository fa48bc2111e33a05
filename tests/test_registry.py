"""Tests for the cache registry and the live monitor."""

import io
import threading

import pytest
from rich.console import Console

from cine_admin.config import Config
from cine_admin.services.live_monitor import LiveMonitor
from cine_admin.services.registry import CacheRegistry
from cine_admin.store.realtime import RealtimeChangeFeed
from cine_admin.store.rest import RemoteStore


@pytest.fixture
def registry(make_store, feed):
    store = make_store({"sala": [{"sala_id": 1, "nombre": "Room A"}]})
    registry = CacheRegistry(store, feed)
    yield registry
    registry.close()


class TestCacheRegistry:
    """Tests for CacheRegistry."""

    def test_one_cache_per_resource(self, registry):
        assert registry.cache("rooms") is registry["rooms"]
        assert not registry.cache("rooms").started
        assert "box-office" in registry.names

    def test_unknown_resource(self, registry):
        with pytest.raises(KeyError):
            registry.cache("popcorn")

    def test_start_shares_the_feed(self, registry, feed):
        registry.start("rooms")
        registry.start("tickets")
        assert feed.subscriber_count("sala") == 1
        assert feed.subscriber_count("usuario_boleto") == 1

    def test_snapshot_uses_running_cache(self, registry):
        rooms = registry.start("rooms")
        registry.store.tables["sala"].append({"sala_id": 2, "nombre": "Room B"})
        selects = registry.store.count_calls("select")

        assert [r.nombre for r in registry.snapshot("rooms")] == ["Room A"]
        assert registry.store.count_calls("select") == selects
        assert rooms.started

    def test_snapshot_fetches_when_not_running(self, registry):
        assert [r.nombre for r in registry.snapshot("rooms")] == ["Room A"]

    def test_close_disposes_everything(self, registry, feed):
        rooms = registry.start("rooms")
        registry.close()
        registry.close()

        assert rooms.closed
        assert feed.closed
        assert registry.store.closed
        with pytest.raises(RuntimeError):
            registry.cache("rooms")

    def test_statistics(self, registry):
        stats = registry.rental_statistics()
        assert stats.total_rentas == 0

    def test_from_config(self):
        config = Config(
            remote={"url": "https://demo.supabase.co", "anon_key": "key", "schema": "cine"},
            realtime={"debounce_ms": 100},
        )
        registry = CacheRegistry.from_config(config)

        assert isinstance(registry.store, RemoteStore)
        assert registry.store.schema == "cine"
        assert isinstance(registry.change_feed, RealtimeChangeFeed)
        assert registry.change_feed.topic_for("sala") == "realtime:cine:sala"
        assert registry.debounce_seconds == 0.1
        registry.close()

    def test_from_config_without_realtime(self):
        config = Config(
            remote={"url": "https://demo.supabase.co", "anon_key": "key"},
            realtime={"enabled": False},
        )
        registry = CacheRegistry.from_config(config)
        assert registry.change_feed is None
        registry.close()


class TestLiveMonitor:
    """Tests for LiveMonitor."""

    def test_renders_every_published_snapshot(self, registry, feed):
        console = Console(file=io.StringIO(), width=120)
        monitor = LiveMonitor(console)
        cache = registry.cache("rooms")
        stop = threading.Event()

        def changes():
            cache.get_snapshot_stream()
            registry.store.tables["sala"].append({"sala_id": 2, "nombre": "Room B"})
            feed.emit("sala", "INSERT", new={"sala_id": 2})
            cache.close()

        worker = threading.Timer(0.2, changes)
        worker.start()
        rendered = monitor.watch(cache, stop=stop, timeout=5)
        worker.join()

        # Replay of the first snapshot, then the refresh after the notification
        assert rendered == 2
        assert "Room B" in console.file.getvalue()

    def test_timeout_stops_watch(self, registry):
        monitor = LiveMonitor(Console(file=io.StringIO()))
        assert monitor.watch(registry.cache("rooms"), timeout=0.2) == 1

    def test_render_marks_static_caches(self, make_store):
        store = make_store({"sala": []})
        cache = CacheRegistry(store).start("rooms")
        console = Console(file=io.StringIO(), width=120)
        console.print(LiveMonitor(console).render(cache, cache.snapshot))
        assert "static" in console.file.getvalue()
