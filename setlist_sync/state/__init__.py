"""
Local working state: the optimistic store and read-only queries.
"""

from setlist_sync.state.store import SetlistStore, StoreEvent
from setlist_sync.state import queries

__all__ = ["SetlistStore", "StoreEvent", "queries"]
