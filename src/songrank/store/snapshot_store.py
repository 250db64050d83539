"""
Durable storage for graph snapshots.

Two backends share the same ``load()`` / ``save(snapshot)`` interface:
- JsonSnapshotStore: one JSON document, replaced atomically on save
- SqliteSnapshotStore: one row per snapshot section in a SQLite database

Both raise :class:`SnapshotError` for unreadable data or failed writes;
callers decide whether that is fatal.
"""

from __future__ import annotations
import contextlib
import json
import os
import sqlite3
import tempfile
from pathlib import Path
from typing import Dict, Any, Optional

from loguru import logger

from songrank.errors import SnapshotError

DEFAULT_JSON_PATH = "data/musicGraph.json"
DEFAULT_SQLITE_PATH = "data/musicGraph.db"


class JsonSnapshotStore:
    """Snapshot kept in a single JSON file."""

    def __init__(self, path: str | Path = DEFAULT_JSON_PATH):
        self.path = Path(path)

    def load(self) -> Optional[Dict[str, Any]]:
        """
        Read the snapshot.

        Returns:
            Snapshot dict, or None if nothing has been saved yet

        Raises:
            SnapshotError: If the file cannot be read or parsed
        """
        if not self.path.exists():
            return None

        try:
            with open(self.path, "r", encoding="utf-8") as f:
                data = json.load(f)
        except (OSError, ValueError) as e:
            raise SnapshotError(f"Could not read {self.path}: {e}") from e

        if not isinstance(data, dict):
            raise SnapshotError(f"{self.path} does not contain a snapshot object")
        return data

    def save(self, snapshot: Dict[str, Any]):
        """
        Write the snapshot, replacing the previous one.

        The data goes to a temporary file in the same directory first so a
        failed write never leaves a truncated snapshot behind.
        """
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp_path = tempfile.mkstemp(dir=self.path.parent, prefix=f".{self.path.name}.")
            try:
                with os.fdopen(fd, "w", encoding="utf-8") as f:
                    json.dump(snapshot, f, indent=2)
                os.replace(tmp_path, self.path)
            except BaseException:
                with contextlib.suppress(OSError):
                    os.unlink(tmp_path)
                raise
        except (OSError, TypeError, ValueError) as e:
            raise SnapshotError(f"Could not write {self.path}: {e}") from e

        logger.debug(f"Snapshot written to {self.path}")


class SqliteSnapshotStore:
    """
    Snapshot kept in a SQLite database.

    Each top-level snapshot key (songGraph, pageRankScores, ...) is stored as
    a JSON payload in its own row. A connection is opened per operation so
    saves can run from a worker thread. The database and its table are
    created on first use, so an unwritable path surfaces as a
    :class:`SnapshotError` from ``load``/``save`` rather than at construction.
    """

    def __init__(self, path: str | Path = DEFAULT_SQLITE_PATH):
        self.path = Path(path)
        self._schema_ready = False

    @contextlib.contextmanager
    def _transaction(self):
        """Context manager for database transactions."""
        conn = sqlite3.connect(str(self.path))
        try:
            cursor = conn.cursor()
            try:
                yield cursor
                conn.commit()
            except Exception:
                conn.rollback()
                raise
        finally:
            conn.close()

    def _ensure_schema(self):
        if self._schema_ready:
            return

        self.path.parent.mkdir(parents=True, exist_ok=True)
        with self._transaction() as cursor:
            cursor.execute("""
                CREATE TABLE IF NOT EXISTS snapshot_sections (
                    section TEXT PRIMARY KEY,
                    payload TEXT NOT NULL,  -- JSON
                    saved_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
                )
            """)
        self._schema_ready = True

    def load(self) -> Optional[Dict[str, Any]]:
        """
        Read the snapshot.

        Returns:
            Snapshot dict, or None if nothing has been saved yet

        Raises:
            SnapshotError: If the database or a payload is unreadable
        """
        try:
            self._ensure_schema()
            with self._transaction() as cursor:
                cursor.execute("SELECT section, payload FROM snapshot_sections")
                rows = cursor.fetchall()
        except (sqlite3.Error, OSError) as e:
            raise SnapshotError(f"Could not read {self.path}: {e}") from e

        if not rows:
            return None

        try:
            return {section: json.loads(payload) for section, payload in rows}
        except ValueError as e:
            raise SnapshotError(f"Corrupt snapshot section in {self.path}: {e}") from e

    def save(self, snapshot: Dict[str, Any]):
        """Replace all snapshot sections in a single transaction."""
        try:
            self._ensure_schema()
            with self._transaction() as cursor:
                cursor.execute("DELETE FROM snapshot_sections")
                for section, value in snapshot.items():
                    cursor.execute("""
                        INSERT INTO snapshot_sections (section, payload, saved_at)
                        VALUES (?, ?, CURRENT_TIMESTAMP)
                    """, (section, json.dumps(value)))
        except (sqlite3.Error, OSError, TypeError, ValueError) as e:
            raise SnapshotError(f"Could not write {self.path}: {e}") from e

        logger.debug(f"Snapshot written to {self.path}")


def make_store(config: Optional[Dict[str, Any]] = None):
    """
    Build the snapshot store described by the ``store`` config section.

    Without a ``path`` each backend uses its own default file.

    Raises:
        ValueError: For an unknown backend
    """
    config = config or {}
    backend = config.get("backend", "json")
    path = config.get("path")

    if backend == "json":
        return JsonSnapshotStore(path or DEFAULT_JSON_PATH)
    if backend == "sqlite":
        return SqliteSnapshotStore(path or DEFAULT_SQLITE_PATH)
    raise ValueError(f"Unknown snapshot store backend: {backend}")
