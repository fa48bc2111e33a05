"""Realtime-synchronized collection cache.

One instance per resource. It holds the last successful full materialization
of a table, publishes it on a replaying stream, patches it locally after its
own writes and re-fetches everything whenever the change feed reports a
change on one of its tables.
"""

import logging
import threading
from typing import (
    Any,
    Callable,
    Dict,
    Generic,
    List,
    Optional,
    Tuple,
    Type,
    TypeVar,
)

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from ..models.records import Record
from ..store.realtime import ChangeFeed
from ..store.rest import Filter, RemoteStore
from ..utils.error_handling import FetchError, RemoteStoreError, WriteError
from .listener import ChangeListener
from .stream import SnapshotStream

logger = logging.getLogger(__name__)

R = TypeVar("R", bound=Record)

RowTransform = Callable[[Dict[str, Any]], Dict[str, Any]]
BatchEnricher = Callable[[List[Dict[str, Any]], RemoteStore], List[Dict[str, Any]]]


class ResourceSpec(BaseModel):
    """How one resource is read, shaped and watched."""

    model_config = ConfigDict(arbitrary_types_allowed=True, frozen=True)

    name: str = Field(description="Resource name used by the CLI and logs")
    table: str = Field(description="Backing table")
    model: Type[Record]
    select: str = Field(default="*", description="Select expression with embeds")
    order: List[Tuple[str, bool]] = Field(default_factory=list)
    watch_tables: Dict[str, str] = Field(
        default_factory=dict,
        description="Secondary tables (mapped to their primary key) that also trigger refreshes",
    )
    prepare: Optional[RowTransform] = Field(
        default=None, description="Per-row reshaping (flatten embeds)"
    )
    enrich: Optional[BatchEnricher] = Field(
        default=None, description="Collection annotation (metrics) of fetched or written rows"
    )
    before_create: Optional[RowTransform] = Field(
        default=None, description="Fills defaults into the values of a new row"
    )
    before_write: Optional[RowTransform] = Field(
        default=None, description="Maps written values onto stored columns (inserts and updates)"
    )

    @property
    def primary_key(self) -> str:
        return self.model.PRIMARY_KEY

    @property
    def primary_keys(self) -> Dict[str, str]:
        """Every watched table mapped to its primary key."""
        return {self.table: self.primary_key, **self.watch_tables}


def same_id(left: Any, right: Any) -> bool:
    """Compare primary keys that may arrive as text (CLI) or numbers (rows)."""
    return left == right or str(left) == str(right)


class CollectionCache(Generic[R]):
    """Last known snapshot of one table, kept in sync with the change feed."""

    def __init__(
        self,
        spec: ResourceSpec,
        store: RemoteStore,
        change_feed: Optional[ChangeFeed] = None,
        debounce_seconds: float = 0.0,
    ):
        """Initialize cache.

        Args:
            spec: Resource description
            store: REST gateway
            change_feed: Realtime feed (None disables the change listener)
            debounce_seconds: Listener debounce window
        """
        self.spec = spec
        self.store = store
        self.change_feed = change_feed
        self.debounce_seconds = debounce_seconds

        self._lock = threading.RLock()
        self._records: List[R] = []
        self._generation = 0
        self._writes = 0
        self._started = False
        self._closed = False
        self._listener: Optional[ChangeListener] = None
        self.stream: SnapshotStream[List[R]] = SnapshotStream(
            [], name=spec.name, copier=list, lock=self._lock
        )

    @property
    def name(self) -> str:
        return self.spec.name

    @property
    def snapshot(self) -> List[R]:
        """Copy of the current snapshot."""
        with self._lock:
            return list(self._records)

    @property
    def generation(self) -> int:
        """Last issued refresh generation."""
        with self._lock:
            return self._generation

    @property
    def started(self) -> bool:
        return self._started

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def listener(self) -> Optional[ChangeListener]:
        return self._listener

    # === Lifecycle ===

    def start(self) -> "CollectionCache[R]":
        """Run the initial fetch and open the change listener (once).

        A failed initial fetch is logged; the listener is opened anyway so
        the next notification retries.
        """
        with self._lock:
            if self._started or self._closed:
                return self
            self._started = True

        try:
            self.refresh()
        except FetchError:
            pass

        if self.change_feed is not None:
            self._listener = ChangeListener(
                self.name,
                self.change_feed,
                self.spec.primary_keys,
                self.refresh,
                debounce_seconds=self.debounce_seconds,
            )
            self._listener.start()
        return self

    def get_snapshot_stream(self) -> SnapshotStream[List[R]]:
        """Hot stream of snapshots, starting the cache on first use."""
        self.start()
        return self.stream

    def close(self) -> None:
        """Tear down the listener and complete the stream."""
        with self._lock:
            if self._closed:
                return
            self._closed = True
        if self._listener is not None:
            self._listener.close()
        self.stream.close()

    # === Reads ===

    def get(self, record_id: Any) -> Optional[R]:
        """Find a record of the current snapshot by primary key."""
        with self._lock:
            for record in self._records:
                if same_id(record.pk, record_id):
                    return record
        return None

    def refresh(self) -> List[R]:
        """Re-fetch the whole collection and publish it.

        A result overtaken by a newer refresh is dropped, since that refresh
        publishes. A result overtaken by a local write is fetched again, so
        the published snapshot always comes from a query issued after the
        last local patch.

        Returns:
            The new snapshot, or the current one when this result was
            overtaken by a newer refresh

        Raises:
            FetchError: The query failed; the prior snapshot is kept
        """
        while True:
            with self._lock:
                self._generation += 1
                generation = self._generation
                writes = self._writes

            records = self._fetch()

            with self._lock:
                if self._closed:
                    return list(self._records)
                if generation != self._generation:
                    logger.debug(
                        "[%s] discarding stale refresh (generation %d < %d)",
                        self.name,
                        generation,
                        self._generation,
                    )
                    return list(self._records)
                if writes == self._writes:
                    self._replace(records)
                    return list(records)
            logger.debug("[%s] local write during refresh, fetching again", self.name)

    def _fetch(self) -> List[R]:
        try:
            rows = self.store.select(
                self.spec.table, self.spec.select, order=self.spec.order
            )
            if self.spec.enrich is not None:
                rows = self.spec.enrich(rows, self.store)
            return [self._to_record(row) for row in rows]
        except RemoteStoreError as e:
            logger.error("[%s] refresh failed: %s", self.name, e.message)
            raise FetchError(e.message) from e
        except ValidationError as e:
            logger.error("[%s] refresh returned invalid rows: %s", self.name, e)
            raise FetchError(f"Invalid {self.name} data: {e}") from e

    # === Writes ===

    def create(self, values: Dict[str, Any]) -> R:
        """Insert one row and put it into the snapshot.

        The row replaces a record with the same primary key that a refresh
        triggered by the insert itself already brought in.

        Args:
            values: Column values of the new row

        Returns:
            The row as stored

        Raises:
            WriteError: The insert was rejected; the snapshot is unchanged
        """
        if self.spec.before_create is not None:
            values = self.spec.before_create(dict(values))
        values = self._columns(values)
        rows = self._write(
            "insert",
            lambda: self.store.insert(self.spec.table, values, columns=self.spec.select),
        )
        if not rows:
            raise WriteError(f"Insert into {self.spec.table} returned no row")
        record = self._validate_written(self._written_row(rows[0]))
        with self._lock:
            self._writes += 1
            self._replace(self._upserted(record))
        return record

    def update(self, record_id: Any, patch: Dict[str, Any]) -> R:
        """Write a patch and merge the stored row into the snapshot.

        Args:
            record_id: Primary key of the row
            patch: Columns to change

        Returns:
            The merged record

        Raises:
            WriteError: The update was rejected; the snapshot is unchanged
        """
        patch = self._columns(patch)
        rows = self._write(
            "update",
            lambda: self.store.update(
                self.spec.table,
                patch,
                [self._pk_filter(record_id)],
                columns=self.spec.select,
            ),
        )
        if not rows:
            raise WriteError(f"No {self.name} row with {self.spec.primary_key}={record_id}")
        row = self._written_row(rows[0])

        with self._lock:
            for index, existing in enumerate(self._records):
                if same_id(existing.pk, record_id):
                    merged = self._validate_written({**existing.model_dump(), **row})
                    records = list(self._records)
                    records[index] = merged
                    self._writes += 1
                    self._replace(records)
                    return merged

        # Not in the snapshot (yet); the next refresh brings it in
        return self._validate_written(row)

    def delete(self, record_id: Any) -> None:
        """Delete a row and drop it from the snapshot.

        Raises:
            WriteError: The delete was rejected; the snapshot is unchanged
        """
        self._write(
            "delete",
            lambda: self.store.delete(self.spec.table, [self._pk_filter(record_id)]),
        )
        with self._lock:
            self._writes += 1
            self._replace([r for r in self._records if not same_id(r.pk, record_id)])

    def patch_local(self, record_id: Any, patch: Dict[str, Any]) -> Optional[R]:
        """Apply a patch to the snapshot before the write is confirmed.

        Args:
            record_id: Primary key of the row
            patch: Columns to change

        Returns:
            The record as it was before the patch, or None when the row is
            not in the snapshot or the patch does not validate locally
        """
        patch = self._columns(patch)
        with self._lock:
            for index, existing in enumerate(self._records):
                if same_id(existing.pk, record_id):
                    try:
                        patched = self.spec.model.model_validate(
                            {**existing.model_dump(), **patch}
                        )
                    except ValidationError:
                        return None
                    records = list(self._records)
                    records[index] = patched
                    self._writes += 1
                    self._replace(records)
                    return existing
        return None

    def restore_local(self, previous: R) -> None:
        """Put back a record saved by ``patch_local``."""
        with self._lock:
            self._writes += 1
            self._replace(self._upserted(previous))

    # === Internals ===

    def _write(self, action: str, call: Callable[[], List[Dict[str, Any]]]) -> List[Dict[str, Any]]:
        try:
            return call()
        except RemoteStoreError as e:
            logger.error("[%s] %s failed: %s", self.name, action, e.message)
            raise WriteError(e.message) from e

    def _columns(self, values: Dict[str, Any]) -> Dict[str, Any]:
        return self.spec.before_write(dict(values)) if self.spec.before_write is not None else values

    def _pk_filter(self, record_id: Any) -> Filter:
        return Filter(self.spec.primary_key, "eq", record_id)

    def _prepared(self, row: Dict[str, Any]) -> Dict[str, Any]:
        return self.spec.prepare(row) if self.spec.prepare is not None else row

    def _to_record(self, row: Dict[str, Any]) -> R:
        return self.spec.model.model_validate(self._prepared(row))

    def _validate_written(self, row: Dict[str, Any]) -> R:
        try:
            return self.spec.model.model_validate(row)
        except ValidationError as e:
            raise WriteError(f"Stored {self.name} row is invalid: {e}") from e

    def _written_row(self, row: Dict[str, Any]) -> Dict[str, Any]:
        """Shape a row returned by a write like a fetched one.

        The write already succeeded, so a failed metrics lookup only leaves
        default metrics until the next refresh.
        """
        if self.spec.enrich is not None:
            try:
                row = self.spec.enrich([row], self.store)[0]
            except RemoteStoreError as e:
                logger.warning("[%s] could not annotate written row: %s", self.name, e.message)
        return self._prepared(row)

    def _upserted(self, record: R) -> List[R]:
        # Caller holds the lock
        records = list(self._records)
        for index, existing in enumerate(records):
            if same_id(existing.pk, record.pk):
                records[index] = record
                return records
        records.append(record)
        return records

    def _replace(self, records: List[R]) -> None:
        # Caller holds the lock
        self._records = records
        if not self._closed:
            self.stream.publish(records)
