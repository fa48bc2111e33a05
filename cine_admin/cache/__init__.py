"""Collection cache module for cine-admin.

Provides the realtime-synchronized collection cache with:
- Replaying snapshot streams
- Change listeners that re-fetch on every notification
- Grouped sales metrics computed in DuckDB
- A DuckDB key-value store for local session state
"""

from .stream import SnapshotStream, StreamSubscription
from .listener import ChangeListener
from .collection import CollectionCache, ResourceSpec
from .aggregates import SalesAggregator
from .schema import StateSchema
from .local_state import LocalStateStore

__all__ = [
    "SnapshotStream",
    "StreamSubscription",
    "ChangeListener",
    "CollectionCache",
    "ResourceSpec",
    "SalesAggregator",
    "StateSchema",
    "LocalStateStore",
]
