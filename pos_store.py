"""In-memory cache of the restaurant collections and the reconciler that feeds it.

Only `reconcile` and `reset` write to a LocalStore; everything else reads.
"""
from __future__ import annotations

import copy
import threading
import time
from typing import Any, Callable, Dict, List, Mapping, Optional

from pos_transport import InvalidResponse

LIST_COLLECTIONS = ('tables', 'products', 'orders', 'inventory', 'expenses')
MAPPING_COLLECTIONS = ('stats',)
COLLECTIONS = LIST_COLLECTIONS + MAPPING_COLLECTIONS


class LocalStore:
    def __init__(self, clock: Callable[[], float] = time.time):
        self.clock = clock
        self.lock = threading.RLock()
        self.tables: List[Dict[str, Any]] = []
        self.products: List[Dict[str, Any]] = []
        self.orders: List[Dict[str, Any]] = []
        self.inventory: List[Dict[str, Any]] = []
        self.expenses: List[Dict[str, Any]] = []
        self.stats: Dict[str, Any] = {}
        self.last_sync_at: Optional[float] = None
        self.server_timestamp: Any = None
        self.last_applied_seq: Optional[int] = None

    def get(self, name: str) -> Any:
        if name not in COLLECTIONS:
            raise KeyError(name)
        return getattr(self, name)


def _empty(name: str) -> Any:
    return {} if name in MAPPING_COLLECTIONS else []


def reconcile(store: LocalStore, snapshot: Mapping[str, Any],
              seq: Optional[int] = None, drop_stale: bool = False) -> bool:
    """Merge a (possibly partial) snapshot into the store.

    Collections are replaced whole; keys absent from the snapshot keep their
    current value. Returns True when any collection changed.
    """
    if not isinstance(snapshot, Mapping):
        raise InvalidResponse(f'Snapshot must be an object, got {type(snapshot).__name__}')
    with store.lock:
        if drop_stale and seq is not None and store.last_applied_seq is not None \
                and seq < store.last_applied_seq:
            return False
        changed = False
        for name in COLLECTIONS:
            # null counts as omitted
            if snapshot.get(name) is None:
                continue
            incoming = copy.deepcopy(snapshot[name])
            if getattr(store, name) != incoming:
                changed = True
            setattr(store, name, incoming)
        if snapshot.get('timestamp') is not None:
            store.server_timestamp = snapshot['timestamp']
        store.last_sync_at = store.clock()
        if seq is not None:
            store.last_applied_seq = max(seq, store.last_applied_seq or seq)
        return changed


def reset(store: LocalStore) -> None:
    """Session teardown: forget everything the server told us."""
    with store.lock:
        for name in COLLECTIONS:
            setattr(store, name, _empty(name))
        store.last_sync_at = None
        store.server_timestamp = None
        store.last_applied_seq = None


def snapshot_of(store: LocalStore) -> Dict[str, Any]:
    with store.lock:
        data = {name: copy.deepcopy(getattr(store, name)) for name in COLLECTIONS}
        data['last_sync_at'] = store.last_sync_at
        data['timestamp'] = store.server_timestamp
    return data
