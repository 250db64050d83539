"""
Relationship recorder: co-occurrence events to graph edges.

Three event kinds feed the graph:
- Playlist co-occurrence: every pair in a playlist, decaying with distance
- Queue co-occurrence: forward-only links inside a sliding window
- Search co-occurrence: pairwise links between the top few results

Events are usually queued with :meth:`RelationshipRecorder.enqueue` and
applied in bulk by :meth:`RelationshipRecorder.flush`, so bursts of searches
do not each pay for graph mutation.
"""

from __future__ import annotations
from typing import Dict, Any, List, Optional, Tuple

from loguru import logger

from songrank.graph.song_graph import SongGraph

PLAYLIST = "playlist"
QUEUE = "queue"
SEARCH = "search"
EVENT_TYPES = (PLAYLIST, QUEUE, SEARCH)

DEFAULT_WEIGHTS = {
    PLAYLIST: 1.0,
    QUEUE: 0.8,
    SEARCH: 0.5,
    # Reserved for edge types that are not recorded yet
    "collaboration": 0.6,
    "similarity": 0.4,
    "interaction": 0.7,
}

SPARSE_PLAYLIST_SIZE = 50
SPARSE_MAX_CONNECTIONS = 5
QUEUE_WINDOW = 5
SEARCH_TOP_RESULTS = 5

PlannedEdge = Tuple[str, str, float]


def playlist_pair_weight(distance: int) -> float:
    return max(0.1, 1.0 - distance * 0.05)


def sparse_playlist_pair_weight(distance: int) -> float:
    return max(0.1, 1.0 - distance * 0.15)


def queue_pair_weight(distance: int) -> float:
    return max(0.2, 1.0 - distance * 0.1)


def search_pair_weight(i: int, j: int) -> float:
    return max(0.1, 0.8 - (i + j) * 0.05)


def plan_playlist_edges(song_ids: List[str]) -> List[PlannedEdge]:
    """
    Edges for one playlist, before the type multiplier.

    Playlists longer than 50 songs only link each song to its next 5
    neighbours so edge count grows linearly.
    """
    edges: List[PlannedEdge] = []
    n = len(song_ids)

    if n > SPARSE_PLAYLIST_SIZE:
        for i in range(n):
            for distance in range(1, min(SPARSE_MAX_CONNECTIONS, n - i - 1) + 1):
                weight = sparse_playlist_pair_weight(distance)
                edges.append((song_ids[i], song_ids[i + distance], weight))
                edges.append((song_ids[i + distance], song_ids[i], weight))
        return edges

    for i in range(n):
        for j in range(i + 1, n):
            weight = playlist_pair_weight(j - i)
            edges.append((song_ids[i], song_ids[j], weight))
            edges.append((song_ids[j], song_ids[i], weight))
    return edges


def plan_queue_edges(song_ids: List[str]) -> List[PlannedEdge]:
    """Forward-only edges inside a sliding window over the queue order."""
    edges: List[PlannedEdge] = []
    n = len(song_ids)
    window = min(QUEUE_WINDOW, n)

    for i in range(n - 1):
        for j in range(i + 1, min(i + window, n)):
            edges.append((song_ids[i], song_ids[j], queue_pair_weight(j - i)))
    return edges


def plan_search_edges(song_ids: List[str]) -> List[PlannedEdge]:
    """Pairwise edges among the top search results only."""
    top = min(SEARCH_TOP_RESULTS, len(song_ids))
    return [
        (song_ids[i], song_ids[j], search_pair_weight(i, j))
        for i in range(top)
        for j in range(i + 1, top)
    ]


class RelationshipRecorder:
    """
    Applies co-occurrence events to a :class:`SongGraph`.

    Owns the pending-update queue drained by the scheduler.
    """

    def __init__(self, graph: SongGraph, config: Optional[Dict[str, Any]] = None):
        """
        Initialize the recorder.

        Args:
            graph: Graph to mutate
            config: ``ranking`` config section; ``weights`` overrides the
                per-event multipliers
        """
        self.graph = graph
        self.config = config or {}
        self.weights = dict(DEFAULT_WEIGHTS)
        self.weights.update(self.config.get("weights") or {})
        self.pending_updates: List[Dict[str, Any]] = []

    def _apply(self, edges: List[PlannedEdge], event_type: str) -> int:
        multiplier = self.weights.get(event_type, 1.0)
        created = 0
        for from_id, to_id, weight in edges:
            if from_id == to_id:
                continue
            if self.graph.add_edge(from_id, to_id, weight * multiplier):
                created += 1
        return created

    def _touch(self, song_ids: List[str], counter: str):
        for song_id in dict.fromkeys(song_ids):
            if not self.graph.has_song(song_id):
                self.graph.upsert_song(song_id)
            self.graph.increment_counter(song_id, counter)
            self.graph.mark_dirty(song_id)

    def record_playlist(self, song_ids: List[str], metadata: Optional[Dict[str, Any]] = None) -> int:
        """
        Link every song in a playlist to the others, both directions.

        Args:
            song_ids: Song ids in playlist order
            metadata: Playlist details (name, id, visibility), logged only

        Returns:
            Number of new edges
        """
        if len(song_ids) < 2:
            return 0

        created = self._apply(plan_playlist_edges(song_ids), PLAYLIST)
        self._touch(song_ids, "play_count")

        name = (metadata or {}).get("playlist_name", "")
        logger.debug(f"Recorded playlist {name!r} ({len(song_ids)} songs): {created} new edges")
        return created

    def record_queue(self, song_ids: List[str]) -> int:
        """Link each queued song to the songs that follow it."""
        if len(song_ids) < 2:
            return 0

        created = self._apply(plan_queue_edges(song_ids), QUEUE)
        self._touch(song_ids, "play_count")

        logger.debug(f"Recorded queue of {len(song_ids)} songs: {created} new edges")
        return created

    def record_search(self, song_ids: List[str], query: str = "") -> int:
        """Link the top results of one search to each other."""
        if len(song_ids) < 2:
            return 0

        created = self._apply(plan_search_edges(song_ids), SEARCH)
        self._touch(song_ids[:SEARCH_TOP_RESULTS], "search_count")

        logger.debug(f"Recorded search {query!r} ({len(song_ids)} results): {created} new edges")
        return created

    # === Batching ===

    def enqueue(self, event_type: str, song_ids: List[str],
                metadata: Optional[Dict[str, Any]] = None):
        """
        Queue an event for the next flush.

        Raises:
            ValueError: For an unknown event type
        """
        if event_type not in EVENT_TYPES:
            raise ValueError(f"Unknown relationship event type: {event_type}")

        self.pending_updates.append({
            "type": event_type,
            "song_ids": list(song_ids),
            "metadata": metadata or {},
        })

    def flush(self) -> int:
        """
        Apply every pending event, grouped by type.

        Returns:
            Number of events applied
        """
        updates, self.pending_updates = self.pending_updates, []
        if not updates:
            return 0

        logger.info(f"Processing {len(updates)} batched relationship updates")

        for update in updates:
            if update["type"] == PLAYLIST:
                self.record_playlist(update["song_ids"], update["metadata"])
        for update in updates:
            if update["type"] == QUEUE:
                self.record_queue(update["song_ids"])
        for update in updates:
            if update["type"] == SEARCH:
                self.record_search(update["song_ids"], update["metadata"].get("query", ""))

        return len(updates)

    @property
    def pending_count(self) -> int:
        return len(self.pending_updates)
