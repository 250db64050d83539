"""
In-memory song relationship graph using NetworkX.

This module holds the graph the ranking engine scores:
- Song nodes keyed by a stable id, with structured metadata
- Directed, unweighted-at-rest edges (song A led to / co-occurred with B)
- An auxiliary artist graph kept for artist-level ranking
- The score table, the dirty set and the last full recompute time

Outlinks of a node are its successors and inlinks its predecessors, so
``B in outlinks(A)`` and ``A in inlinks(B)`` can never disagree.
"""

from __future__ import annotations
from typing import Dict, Any, Optional, Set, List

import networkx as nx
from loguru import logger

from songrank.cache.score_cache import ScoreCache
from songrank.errors import SnapshotError
from songrank.graph.models import SongMetadata, ArtistMetadata, now_ms
from songrank.ids import artist_id


class SongGraph:
    """
    Song graph store with dirty-node bookkeeping.

    Every mutation happens in memory first; persistence only ever reads a
    :meth:`snapshot` of this object.
    """

    def __init__(self, score_cache: Optional[ScoreCache] = None, edge_threshold: float = 0.1):
        """
        Initialize an empty song graph.

        Args:
            score_cache: Cache to invalidate when nodes change
            edge_threshold: Minimum weight for a relationship to become an edge
        """
        self.score_cache = score_cache if score_cache is not None else ScoreCache()
        self.edge_threshold = edge_threshold
        self.reset()

    def reset(self):
        """Drop every node, score and pending dirty mark."""
        self.graph = nx.DiGraph()
        self.artist_graph = nx.DiGraph()
        self.scores: Dict[str, float] = {}
        self.artist_scores: Dict[str, float] = {}
        self.dirty_nodes: Set[str] = set()
        self.last_full_calculation = 0
        self.score_cache.clear()

    # === Nodes ===

    def upsert_song(self, song_id: str, patch: Optional[Dict[str, Any]] = None) -> SongMetadata:
        """
        Create a song node or merge metadata into an existing one.

        Args:
            song_id: Stable song id
            patch: Metadata fields to set; unknown keys land in ``additional``

        Returns:
            The node's metadata record
        """
        now = now_ms()
        if song_id in self.graph:
            node = self.graph.nodes[song_id]
            metadata = node["metadata"]
            metadata.merge(patch)
            node["last_updated"] = now
        else:
            metadata = SongMetadata(added_at=now)
            metadata.merge(patch)
            self.graph.add_node(song_id, metadata=metadata, last_updated=now)

        self.mark_dirty(song_id)

        artist_key = artist_id(metadata.artist)
        if artist_key:
            self.upsert_artist(artist_key, {"name": metadata.artist}, create_only=True)
        return metadata

    def upsert_artist(self, artist_key: str, patch: Optional[Dict[str, Any]] = None,
                      create_only: bool = False) -> ArtistMetadata:
        """Create or update an artist node (not consumed by scoring)."""
        now = now_ms()
        if artist_key in self.artist_graph:
            node = self.artist_graph.nodes[artist_key]
            if not create_only:
                node["metadata"].merge(patch)
                node["last_updated"] = now
            return node["metadata"]

        metadata = ArtistMetadata(added_at=now)
        metadata.merge(patch)
        self.artist_graph.add_node(artist_key, metadata=metadata, last_updated=now)
        return metadata

    def remove_song(self, song_id: str) -> bool:
        """
        Delete a song and detach it from all neighbours.

        Former neighbours are marked dirty since their share of inbound
        score changes.

        Returns:
            False if the song was not in the graph
        """
        if song_id not in self.graph:
            return False

        neighbors = self.neighbors(song_id)
        self.graph.remove_node(song_id)

        for neighbor_id in neighbors:
            self.mark_dirty(neighbor_id)

        self.scores.pop(song_id, None)
        self.score_cache.invalidate(song_id)
        self.dirty_nodes.discard(song_id)
        return True

    def mark_dirty(self, song_id: str):
        """Flag a node and its direct neighbours as needing a recompute."""
        self.dirty_nodes.add(song_id)
        if song_id in self.graph:
            self.dirty_nodes.update(self.graph.predecessors(song_id))
            self.dirty_nodes.update(self.graph.successors(song_id))
        self.score_cache.invalidate(song_id)

    def increment_counter(self, song_id: str, counter: str, amount: int = 1):
        """Bump ``play_count`` or ``search_count`` on an existing song."""
        if song_id not in self.graph:
            return
        metadata = self.graph.nodes[song_id]["metadata"]
        setattr(metadata, counter, (getattr(metadata, counter) or 0) + amount)

    # === Edges ===

    def add_edge(self, from_id: str, to_id: str, weight: float) -> bool:
        """
        Add a directed relationship if its weight is significant.

        Both songs are created if missing. The weight only decides whether
        the edge exists; it is not stored.

        Returns:
            True if a new edge was created
        """
        for song_id in (from_id, to_id):
            if song_id not in self.graph:
                self.upsert_song(song_id)

        if weight <= self.edge_threshold:
            return False
        if self.graph.has_edge(from_id, to_id):
            return False

        self.graph.add_edge(from_id, to_id)
        self.mark_dirty(from_id)
        self.mark_dirty(to_id)
        return True

    # === Queries ===

    def has_song(self, song_id: str) -> bool:
        return song_id in self.graph

    def metadata(self, song_id: str) -> Optional[SongMetadata]:
        if song_id not in self.graph:
            return None
        return self.graph.nodes[song_id]["metadata"]

    def last_updated(self, song_id: str) -> Optional[int]:
        if song_id not in self.graph:
            return None
        return self.graph.nodes[song_id]["last_updated"]

    def outlinks(self, song_id: str) -> Set[str]:
        if song_id not in self.graph:
            return set()
        return set(self.graph.successors(song_id))

    def inlinks(self, song_id: str) -> Set[str]:
        if song_id not in self.graph:
            return set()
        return set(self.graph.predecessors(song_id))

    def neighbors(self, song_id: str) -> Set[str]:
        """Songs connected in either direction."""
        return self.outlinks(song_id) | self.inlinks(song_id)

    def song_ids(self) -> List[str]:
        return list(self.graph.nodes)

    @property
    def song_count(self) -> int:
        return self.graph.number_of_nodes()

    @property
    def relationship_count(self) -> int:
        return self.graph.number_of_edges()

    @property
    def artist_count(self) -> int:
        return self.artist_graph.number_of_nodes()

    def __len__(self) -> int:
        return self.graph.number_of_nodes()

    def __contains__(self, song_id: str) -> bool:
        return song_id in self.graph

    # === Persistence ===

    @staticmethod
    def _serialize_nodes(graph: nx.DiGraph) -> Dict[str, Any]:
        return {
            node_id: {
                "outlinks": list(graph.successors(node_id)),
                "inlinks": list(graph.predecessors(node_id)),
                "metadata": data["metadata"].to_dict(),
                "lastUpdated": data["last_updated"],
            }
            for node_id, data in graph.nodes(data=True)
        }

    def snapshot(self) -> Dict[str, Any]:
        """
        Serialize the full graph, score tables and timestamps.

        Returns:
            JSON-compatible dict in the persisted snapshot layout
        """
        return {
            "songGraph": self._serialize_nodes(self.graph),
            "artistGraph": self._serialize_nodes(self.artist_graph),
            "pageRankScores": dict(self.scores),
            "artistPageRankScores": dict(self.artist_scores),
            "lastFullCalculation": self.last_full_calculation,
            "lastUpdated": now_ms(),
        }

    @staticmethod
    def _deserialize_nodes(nodes: Dict[str, Any], record_cls) -> nx.DiGraph:
        graph = nx.DiGraph()
        for node_id, node in nodes.items():
            graph.add_node(
                node_id,
                metadata=record_cls.from_dict(node.get("metadata") or {}),
                last_updated=node.get("lastUpdated", 0),
            )

        dangling = 0
        for node_id, node in nodes.items():
            for target in node.get("outlinks") or []:
                if target in graph:
                    graph.add_edge(node_id, target)
                else:
                    dangling += 1
            for source in node.get("inlinks") or []:
                if source in graph:
                    graph.add_edge(source, node_id)
                else:
                    dangling += 1

        if dangling:
            logger.warning(f"Dropped {dangling} links to nodes missing from the snapshot")
        return graph

    def restore(self, data: Dict[str, Any]):
        """
        Replace the graph with the contents of a snapshot.

        The current state is only replaced once the whole snapshot has been
        parsed.

        Raises:
            SnapshotError: If the snapshot is malformed
        """
        if not isinstance(data, dict):
            raise SnapshotError(f"Snapshot must be a mapping, got {type(data).__name__}")

        try:
            graph = self._deserialize_nodes(data.get("songGraph") or {}, SongMetadata)
            artist_graph = self._deserialize_nodes(data.get("artistGraph") or {}, ArtistMetadata)
            scores = {str(k): v for k, v in (data.get("pageRankScores") or {}).items()}
            artist_scores = {str(k): v for k, v in (data.get("artistPageRankScores") or {}).items()}
            last_full = int(data.get("lastFullCalculation") or 0)
        except (AttributeError, TypeError, ValueError) as e:
            raise SnapshotError(f"Malformed snapshot: {e}") from e

        for table in (scores, artist_scores):
            for song_id, score in table.items():
                if not isinstance(score, (int, float)) or isinstance(score, bool):
                    raise SnapshotError(f"Score for {song_id} is not a number: {score!r}")

        self.graph = graph
        self.artist_graph = artist_graph
        self.scores = scores
        self.artist_scores = artist_scores
        self.last_full_calculation = last_full
        self.dirty_nodes = set()
        self.score_cache.clear()

        logger.info(f"Restored graph with {self.song_count} songs, "
                    f"{self.relationship_count} relationships and {self.artist_count} artists")
