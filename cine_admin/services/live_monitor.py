"""Live view of one resource, re-rendered on every published snapshot."""

import logging
import threading
import time
from queue import Empty, Queue
from typing import Any, List, Optional

from rich.console import Console
from rich.live import Live
from rich.panel import Panel
from rich.text import Text

from ..cache.collection import CollectionCache
from ..ui.tables import build_record_table

logger = logging.getLogger(__name__)

# Marks the end of the stream in the update queue
_COMPLETED = object()


class LiveMonitor:
    """Service for watching a collection cache in the terminal."""

    def __init__(
        self,
        console: Optional[Console] = None,
        table_style: str = "rich",
        max_rows: Optional[int] = None,
    ):
        """Initialize live monitor.

        Args:
            console: Rich console for output
            table_style: Table style (rich, simple, minimal)
            max_rows: Maximum rows rendered per snapshot
        """
        self.console = console or Console()
        self.table_style = table_style
        self.max_rows = max_rows
        self.updates_rendered = 0

    def render(self, cache: CollectionCache, records: List[Any]) -> Panel:
        """Build the panel shown for one snapshot."""
        table = build_record_table(
            cache.name, records, style=self.table_style, max_rows=self.max_rows
        )
        listening = cache.listener is not None and cache.listener.active
        status = Text.assemble(
            ("live" if listening else "static", "green" if listening else "yellow"),
            f"  generation {cache.generation}",
            f"  updated {time.strftime('%H:%M:%S')}",
            style="dim",
        )
        return Panel(table, title=f"[bold]{cache.name}[/bold]", subtitle=status)

    def watch(
        self,
        cache: CollectionCache,
        stop: Optional[threading.Event] = None,
        timeout: Optional[float] = None,
    ) -> int:
        """Render every snapshot the cache publishes until stopped.

        Snapshots arrive on whichever thread publishes them; they are queued
        and drawn from the calling thread.

        Args:
            cache: Cache to watch (started if needed)
            stop: Event that ends the loop when set
            timeout: Stop after this many seconds

        Returns:
            Number of snapshots rendered
        """
        updates: "Queue[Any]" = Queue()
        stop = stop or threading.Event()
        deadline = time.monotonic() + timeout if timeout is not None else None

        subscription = cache.get_snapshot_stream().subscribe(
            updates.put, on_complete=lambda: updates.put(_COMPLETED)
        )
        self.updates_rendered = 0
        try:
            with Live(
                self.render(cache, cache.snapshot),
                console=self.console,
                refresh_per_second=4,
                transient=False,
            ) as live:
                while not stop.is_set():
                    if deadline is not None and time.monotonic() >= deadline:
                        break
                    try:
                        item = updates.get(timeout=0.1)
                    except Empty:
                        continue
                    if item is _COMPLETED:
                        break
                    live.update(self.render(cache, item))
                    self.updates_rendered += 1
        except KeyboardInterrupt:
            pass
        finally:
            subscription.unsubscribe()
        return self.updates_rendered
