"""
Store module for songrank.

Persists graph snapshots to JSON files or SQLite.
"""

from .snapshot_store import JsonSnapshotStore, SqliteSnapshotStore, make_store

__all__ = ["JsonSnapshotStore", "SqliteSnapshotStore", "make_store"]
