"""Remote store access for cine-admin.

Provides the hosted database surfaces:
- REST gateway (PostgREST dialect) over requests
- Realtime change feed over a Phoenix websocket
"""

from .rest import Filter, RemoteStore, build_query_params
from .realtime import ChangeFeed, ChangeSubscription, RealtimeChangeFeed

__all__ = [
    "Filter",
    "RemoteStore",
    "build_query_params",
    "ChangeFeed",
    "ChangeSubscription",
    "RealtimeChangeFeed",
]
