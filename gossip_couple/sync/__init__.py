"""Realtime synchronization of the couple's collections."""

from gossip_couple.sync.mappers import (
    map_couple,
    map_event,
    map_goal,
    map_investment,
    map_profile,
    map_task,
    map_transaction,
)
from gossip_couple.sync.reducer import (
    COLLECTION_SPECS,
    ChangeEvent,
    ChangeKind,
    CollectionSpec,
    reduce,
)
from gossip_couple.sync.store import SyncError, SyncStore, open_sync

__all__ = [
    "map_couple",
    "map_event",
    "map_goal",
    "map_investment",
    "map_profile",
    "map_task",
    "map_transaction",
    "COLLECTION_SPECS",
    "ChangeEvent",
    "ChangeKind",
    "CollectionSpec",
    "reduce",
    "SyncError",
    "SyncStore",
    "open_sync",
]
