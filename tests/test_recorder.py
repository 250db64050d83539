"""
Tests for the relationship recorder.

Covers the three co-occurrence event kinds:
- Playlist: all pairs, both directions (sparse above 50 songs)
- Queue: forward links inside a sliding window
- Search: pairwise links among the top results
"""

import pytest

from songrank.graph.song_graph import SongGraph
from songrank.recorder.relationships import (
    RelationshipRecorder,
    plan_playlist_edges,
    plan_queue_edges,
    plan_search_edges,
)


class TestEdgePlanning:
    """Tests for the pure edge planners."""

    def test_playlist_decay(self):
        """Test distance-decayed weights for a short playlist."""
        edges = {(a, b): w for a, b, w in plan_playlist_edges(["s1", "s2", "s3"])}

        assert edges[("s1", "s2")] == pytest.approx(0.95)
        assert edges[("s2", "s1")] == pytest.approx(0.95)
        assert edges[("s1", "s3")] == pytest.approx(0.9)
        assert edges[("s3", "s1")] == pytest.approx(0.9)
        assert len(edges) == 6

    def test_playlist_weight_floor(self):
        """Test that far-apart songs fall to the 0.1 floor."""
        song_ids = [f"s{i}" for i in range(30)]
        edges = {(a, b): w for a, b, w in plan_playlist_edges(song_ids)}

        assert edges[("s0", "s29")] == pytest.approx(0.1)

    def test_sparse_playlist(self):
        """Test that long playlists only link five forward neighbours."""
        song_ids = [f"s{i}" for i in range(60)]
        edges = plan_playlist_edges(song_ids)
        pairs = {(a, b) for a, b, _ in edges}

        assert len(edges) <= 60 * 5 * 2
        assert ("s0", "s5") in pairs
        assert ("s0", "s6") not in pairs
        assert dict(((a, b), w) for a, b, w in edges)[("s0", "s1")] == pytest.approx(0.85)

    def test_queue_window(self):
        """Test forward-only links within a window of five."""
        edges = {(a, b): w for a, b, w in plan_queue_edges(list("abcdefg"))}

        assert ("a", "e") in edges
        assert ("a", "f") not in edges
        assert ("b", "a") not in edges
        assert edges[("a", "b")] == pytest.approx(0.9)
        assert edges[("a", "e")] == pytest.approx(0.6)

    def test_short_queue_window(self):
        """Test that the window shrinks to the queue length."""
        edges = plan_queue_edges(["a", "b", "c"])
        assert {(a, b) for a, b, _ in edges} == {("a", "b"), ("a", "c"), ("b", "c")}

    def test_search_top_results_only(self):
        """Test that only the top five results are linked."""
        edges = {(a, b): w for a, b, w in plan_search_edges([f"r{i}" for i in range(8)])}

        assert len(edges) == 10
        assert all("r5" not in pair and "r6" not in pair for pair in edges)
        assert edges[("r0", "r1")] == pytest.approx(0.75)
        assert edges[("r3", "r4")] == pytest.approx(0.45)


class TestRelationshipRecorder:
    """Tests for applying events to the graph."""

    def setup_method(self):
        self.graph = SongGraph()
        self.recorder = RelationshipRecorder(self.graph)

    def assert_symmetric(self):
        for song_id in self.graph.song_ids():
            for target in self.graph.outlinks(song_id):
                assert song_id in self.graph.inlinks(target)
            for source in self.graph.inlinks(song_id):
                assert song_id in self.graph.outlinks(source)

    def test_record_playlist(self):
        """Test bidirectional edges between every playlist pair."""
        created = self.recorder.record_playlist(["s1", "s2", "s3"], {"playlist_name": "Mix"})

        assert created == 6
        assert self.graph.outlinks("s1") == {"s2", "s3"}
        assert self.graph.inlinks("s1") == {"s2", "s3"}
        assert self.graph.metadata("s1").play_count == 1
        assert {"s1", "s2", "s3"} <= self.graph.dirty_nodes
        self.assert_symmetric()

    def test_record_sparse_playlist(self):
        """Test bounded edge growth for long playlists."""
        song_ids = [f"s{i}" for i in range(60)]
        self.recorder.record_playlist(song_ids)

        assert self.graph.relationship_count <= 60 * 5 * 2
        assert "s6" not in self.graph.outlinks("s0")
        self.assert_symmetric()

    def test_record_queue(self):
        """Test forward-only queue edges."""
        self.recorder.record_queue(["a", "b", "c"])

        assert self.graph.outlinks("a") == {"b", "c"}
        assert self.graph.outlinks("c") == set()
        assert self.graph.metadata("b").play_count == 1
        self.assert_symmetric()

    def test_record_search(self):
        """Test search links and counters for the top results."""
        results = [f"r{i}" for i in range(7)]
        self.recorder.record_search(results, "lofi")

        assert self.graph.outlinks("r0") == {"r1", "r2", "r3", "r4"}
        assert self.graph.metadata("r0").search_count == 1
        assert not self.graph.has_song("r6")

    def test_short_events_are_ignored(self):
        """Test that events with fewer than two songs do nothing."""
        assert self.recorder.record_playlist([]) == 0
        assert self.recorder.record_queue(["only"]) == 0
        assert self.recorder.record_search(["only"]) == 0
        assert self.graph.song_count == 0

    def test_no_self_loops(self):
        """Test that repeated songs never link to themselves."""
        self.recorder.record_playlist(["a", "a", "b"])

        assert "a" not in self.graph.outlinks("a")
        assert self.graph.outlinks("a") == {"b"}

    def test_type_multiplier_applies_threshold(self):
        """Test that a small event multiplier suppresses edges."""
        recorder = RelationshipRecorder(self.graph, {"weights": {"queue": 0.1}})
        recorder.record_queue(["a", "b", "c"])

        assert self.graph.song_count == 3
        assert self.graph.relationship_count == 0

    def test_enqueue_and_flush(self):
        """Test batched events only reach the graph on flush."""
        self.recorder.enqueue("playlist", ["a", "b"])
        self.recorder.enqueue("queue", ["c", "d"])
        self.recorder.enqueue("search", ["e", "f"], {"query": "test"})

        assert self.recorder.pending_count == 3
        assert self.graph.song_count == 0

        assert self.recorder.flush() == 3

        assert self.recorder.pending_count == 0
        assert "b" in self.graph.outlinks("a")
        assert "d" in self.graph.outlinks("c")
        assert "f" in self.graph.outlinks("e")
        assert self.recorder.flush() == 0

    def test_enqueue_rejects_unknown_type(self):
        """Test validation of event types."""
        with pytest.raises(ValueError):
            self.recorder.enqueue("radio", ["a", "b"])

    def test_order_independence(self):
        """Test that independent events give the same graph in any order."""
        other_graph = SongGraph()
        other = RelationshipRecorder(other_graph)

        self.recorder.record_playlist(["a", "b", "c"])
        self.recorder.record_queue(["c", "d", "e"])
        other.record_queue(["c", "d", "e"])
        other.record_playlist(["a", "b", "c"])

        assert set(self.graph.graph.edges) == set(other_graph.graph.edges)


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
