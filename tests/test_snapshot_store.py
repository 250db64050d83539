"""
Tests for snapshot stores and the score cache.
"""

import shutil
import sqlite3
import tempfile
from pathlib import Path

import pytest

from songrank.cache.score_cache import ScoreCache
from songrank.engine import RankingEngine
from songrank.errors import SnapshotError
from songrank.graph.song_graph import SongGraph
from songrank.store.snapshot_store import JsonSnapshotStore, SqliteSnapshotStore, make_store


def sample_snapshot():
    graph = SongGraph()
    graph.upsert_song("a", {"title": "Song A", "artist": "Artist"})
    graph.add_edge("a", "b", 1.0)
    graph.scores = {"a": 0.15, "b": 0.35}
    graph.last_full_calculation = 1700000000000
    return graph.snapshot()


class TestJsonSnapshotStore:
    """Tests for the JSON file store."""

    def setup_method(self):
        self.temp_dir = tempfile.mkdtemp()
        self.path = Path(self.temp_dir) / "data" / "musicGraph.json"
        self.store = JsonSnapshotStore(self.path)

    def teardown_method(self):
        shutil.rmtree(self.temp_dir, ignore_errors=True)

    def test_missing_file(self):
        """Test that a missing file means no snapshot."""
        assert self.store.load() is None

    def test_round_trip(self):
        """Test save then load, creating the parent directory."""
        snapshot = sample_snapshot()
        self.store.save(snapshot)

        assert self.store.load() == snapshot

    def test_save_replaces_previous(self):
        """Test that a second save overwrites without leftovers."""
        self.store.save({"pageRankScores": {"a": 1.0}})
        self.store.save({"pageRankScores": {"b": 2.0}})

        assert self.store.load() == {"pageRankScores": {"b": 2.0}}
        assert [p.name for p in self.path.parent.iterdir()] == ["musicGraph.json"]

    def test_corrupt_file(self):
        """Test that unparseable content raises SnapshotError."""
        self.path.parent.mkdir(parents=True)
        self.path.write_text("[1, 2")

        with pytest.raises(SnapshotError):
            self.store.load()

    def test_non_object_file(self):
        """Test that a JSON list is rejected."""
        self.path.parent.mkdir(parents=True)
        self.path.write_text("[1, 2]")

        with pytest.raises(SnapshotError):
            self.store.load()

    def test_unserializable_snapshot(self):
        """Test that a failed write keeps the previous snapshot."""
        self.store.save({"pageRankScores": {"a": 1.0}})

        with pytest.raises(SnapshotError):
            self.store.save({"pageRankScores": {"a": object()}})

        assert self.store.load() == {"pageRankScores": {"a": 1.0}}


class TestSqliteSnapshotStore:
    """Tests for the SQLite store."""

    def setup_method(self):
        self.temp_dir = tempfile.mkdtemp()
        self.path = Path(self.temp_dir) / "musicGraph.db"
        self.store = SqliteSnapshotStore(self.path)

    def teardown_method(self):
        shutil.rmtree(self.temp_dir, ignore_errors=True)

    def test_empty_database(self):
        """Test that a fresh database has no snapshot."""
        assert self.store.load() is None

    def test_round_trip(self):
        """Test save then load through SQLite rows."""
        snapshot = sample_snapshot()
        self.store.save(snapshot)

        assert self.store.load() == snapshot

    def test_restore_from_sqlite(self):
        """Test that a graph restores from the stored sections."""
        self.store.save(sample_snapshot())

        graph = SongGraph()
        graph.restore(self.store.load())

        assert graph.outlinks("a") == {"b"}
        assert graph.scores == {"a": 0.15, "b": 0.35}

    def test_corrupt_section(self):
        """Test that a broken payload raises SnapshotError."""
        assert self.store.load() is None
        conn = sqlite3.connect(str(self.path))
        conn.execute("INSERT INTO snapshot_sections (section, payload) VALUES ('songGraph', '{oops')")
        conn.commit()
        conn.close()

        with pytest.raises(SnapshotError):
            self.store.load()

    def test_database_created_on_first_use(self):
        """Test that constructing the store touches nothing on disk."""
        path = Path(self.temp_dir) / "nested" / "graph.db"
        store = SqliteSnapshotStore(path)

        assert not path.parent.exists()
        assert store.load() is None
        assert path.exists()

    def test_unwritable_path(self):
        """Test that a bad location is reported as SnapshotError."""
        blocker = Path(self.temp_dir) / "blocker"
        blocker.write_text("not a directory")
        store = SqliteSnapshotStore(blocker / "graph.db")

        with pytest.raises(SnapshotError):
            store.load()
        with pytest.raises(SnapshotError):
            store.save(sample_snapshot())

    def test_engine_starts_with_unwritable_sqlite_path(self):
        """Test that startup continues with an empty graph."""
        blocker = Path(self.temp_dir) / "blocker"
        blocker.write_text("not a directory")
        config_path = Path(self.temp_dir) / "config.yaml"
        config_path.write_text(
            "store:\n"
            "  backend: sqlite\n"
            f"  path: {blocker / 'graph.db'}\n"
        )

        engine = RankingEngine.from_config(config_path)

        assert engine.graph.song_count == 0
        assert engine.save() is False


class TestMakeStore:
    """Tests for store selection from config."""

    def setup_method(self):
        self.temp_dir = tempfile.mkdtemp()

    def teardown_method(self):
        shutil.rmtree(self.temp_dir, ignore_errors=True)

    def test_default_backend(self):
        store = make_store({"path": str(Path(self.temp_dir) / "g.json")})
        assert isinstance(store, JsonSnapshotStore)

    def test_sqlite_backend(self):
        store = make_store({"backend": "sqlite", "path": str(Path(self.temp_dir) / "g.db")})
        assert isinstance(store, SqliteSnapshotStore)

    def test_default_paths_follow_backend(self):
        """Test that each backend picks its own file when no path is set."""
        assert make_store({}).path == Path("data/musicGraph.json")
        assert make_store({"backend": "sqlite"}).path == Path("data/musicGraph.db")
        assert make_store({"backend": "sqlite", "path": None}).path == Path("data/musicGraph.db")

    def test_unknown_backend(self):
        with pytest.raises(ValueError):
            make_store({"backend": "redis"})


class TestScoreCache:
    """Tests for the TTL score cache."""

    def setup_method(self):
        self.now = 0.0
        self.cache = ScoreCache(ttl_seconds=300, clock=lambda: self.now)

    def test_hit_and_expiry(self):
        """Test that entries expire after the TTL."""
        self.cache.put("a", 0.5)
        self.now = 299
        assert self.cache.get("a") == 0.5

        self.now = 300
        assert self.cache.get("a") is None
        assert "a" not in self.cache

    def test_invalidate_and_clear(self):
        self.cache.put("a", 0.5)
        self.cache.put("b", 0.6)

        self.cache.invalidate("a")
        assert self.cache.get("a") is None
        assert len(self.cache) == 1

        self.cache.clear()
        assert len(self.cache) == 0

    def test_evict_expired(self):
        """Test bulk eviction of stale entries only."""
        self.cache.put("old", 0.1)
        self.now = 200
        self.cache.put("new", 0.2)
        self.now = 301

        assert self.cache.evict_expired() == 1
        assert "new" in self.cache
        assert "old" not in self.cache


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
