"""
Ranking engine: the query/enhancement API used by command handlers.

One :class:`RankingEngine` is created at process start and handed to the
command handlers. It owns the song graph, the recorder, the score engine,
the score cache and the snapshot store; the scheduler drives its periodic
work.
"""

from __future__ import annotations
import asyncio
import math
from datetime import datetime, timezone
from pathlib import Path
from typing import Dict, Any, List, Optional

from loguru import logger

from songrank.cache.score_cache import ScoreCache
from songrank.config import load_config, DEFAULTS
from songrank.errors import SnapshotError
from songrank.graph.models import now_ms, MS_PER_DAY
from songrank.graph.song_graph import SongGraph
from songrank.ids import generate_song_id, artist_id
from songrank.ranking.recommend import recommend, optimize_order, ORDER_CRITERIA
from songrank.ranking.score_engine import ScoreEngine
from songrank.recorder.relationships import RelationshipRecorder, PLAYLIST, QUEUE, SEARCH
from songrank.store.snapshot_store import make_store

MAX_SEARCH_BOOST = 75


def search_boost(score: float) -> float:
    """Confidence added to a search result with the given graph score."""
    return min(MAX_SEARCH_BOOST, math.log(score * 2000 + 1) * 12)


def song_metadata(song: Dict[str, Any], context: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
    """Map a song-like dict (search result, queue entry) to a metadata patch."""
    patch: Dict[str, Any] = {
        "title": song.get("title") or "",
        "artist": song.get("artist") or "",
        "source": song.get("source") or "unknown",
    }
    duration = song.get("duration_seconds") or song.get("duration")
    if duration:
        patch["duration_ms"] = int(duration * 1000)
    for key in ("album", "genre", "popularity", "explicit"):
        if song.get(key) is not None:
            patch[key] = song[key]
    if song.get("webpage_url"):
        patch["webpage_url"] = song["webpage_url"]

    if context:
        patch["play_context"] = context.get("type", "manual")
        if context.get("guild_id"):
            patch["guild_id"] = context["guild_id"]
        if context.get("user_id"):
            patch["user_id"] = context["user_id"]
        patch["played_at"] = now_ms()
    return patch


class RankingEngine:
    """
    Song ranking subsystem facade.

    Mutating calls (``record_*``) are cheap: relationship events are queued
    and only reach the graph on the next :meth:`process_batch_updates`.
    Recomputation is asynchronous and cooperative.
    """

    def __init__(self, config: Optional[Dict[str, Any]] = None, store=None):
        """
        Initialize the engine.

        Args:
            config: Full configuration dict (see :func:`songrank.config.load_config`)
            store: Snapshot store; None disables persistence
        """
        self.config = config or DEFAULTS
        ranking_cfg = self.config.get("ranking", {})

        self.score_cache = ScoreCache(ranking_cfg.get("score_cache_ttl_seconds", 300))
        self.graph = SongGraph(self.score_cache, ranking_cfg.get("edge_threshold", 0.1))
        self.recorder = RelationshipRecorder(self.graph, ranking_cfg)
        self.scorer = ScoreEngine(self.graph, ranking_cfg)
        self.store = store

    @classmethod
    def from_config(cls, config_path: Optional[str | Path] = None) -> "RankingEngine":
        """Build an engine from the YAML config and load the saved snapshot."""
        config = load_config(config_path)
        engine = cls(config, make_store(config.get("store")))
        engine.load()
        return engine

    # === Persistence ===

    def load(self) -> bool:
        """
        Restore the graph from the store.

        A malformed snapshot leaves an empty graph instead of failing startup.

        Returns:
            True if a snapshot was restored
        """
        if self.store is None:
            return False

        try:
            data = self.store.load()
            if data is None:
                logger.info("No saved graph found, starting empty")
                return False
            self.graph.restore(data)
        except SnapshotError as e:
            logger.error(f"Error loading graph, starting empty: {e}")
            self.graph.reset()
            return False
        return True

    def save(self) -> bool:
        """
        Persist the current graph.

        Failures are logged and reported as False; the in-memory graph stays
        authoritative and the next persistence tick retries.
        """
        if self.store is None:
            return False

        try:
            self.store.save(self.graph.snapshot())
        except SnapshotError as e:
            logger.error(f"Error saving graph: {e}")
            return False
        logger.success(f"Saved graph with {self.graph.song_count} songs")
        return True

    async def save_async(self) -> bool:
        """Like :meth:`save`, but writes from a worker thread."""
        if self.store is None:
            return False

        snapshot = self.graph.snapshot()
        try:
            await asyncio.to_thread(self.store.save, snapshot)
        except SnapshotError as e:
            logger.error(f"Error saving graph: {e}")
            return False
        logger.success(f"Saved graph with {len(snapshot['songGraph'])} songs")
        return True

    # === Scores ===

    def get_score(self, song_id: str) -> float:
        """Score of a song, 0 for unknown songs. Cached for the cache TTL."""
        cached = self.score_cache.get(song_id)
        if cached is not None:
            return cached

        score = self.graph.scores.get(song_id, 0.0)
        self.score_cache.put(song_id, score)
        return score

    async def recalculate(self, force_full: bool = False) -> Dict[str, Any]:
        """Recompute scores and persist the result."""
        result = await self.scorer.calculate(force_full)
        if result["mode"] in ("full", "incremental"):
            await self.save_async()
        return result

    async def force_recalculation(self) -> Dict[str, Any]:
        logger.info("Forcing full score recalculation")
        return await self.recalculate(force_full=True)

    def evict_expired_scores(self) -> int:
        return self.score_cache.evict_expired()

    # === Recording ===

    def process_batch_updates(self) -> int:
        """Apply queued relationship events to the graph."""
        return self.recorder.flush()

    def record_play(self, song_id: str, metadata: Optional[Dict[str, Any]] = None):
        """Record that a song was played."""
        song = self.graph.upsert_song(song_id, metadata)
        self.graph.increment_counter(song_id, "play_count")
        self.graph.mark_dirty(song_id)

        artist_key = artist_id(song.artist)
        if artist_key:
            artist = self.graph.upsert_artist(artist_key, {"name": song.artist})
            artist.play_count += 1

    def record_song_play(self, song: Dict[str, Any], context: Optional[Dict[str, Any]] = None) -> Optional[str]:
        """
        Record a play of a song-like dict.

        Returns:
            The song id, or None for an empty song
        """
        if not song:
            return None

        song_id = generate_song_id(song)
        self.record_play(song_id, song_metadata(song, context or {}))
        logger.info(f"Recorded play: {song.get('title', song_id)} ({song.get('source', 'unknown')})")
        return song_id

    def record_playlist(self, playlist: Dict[str, Any], songs: List[Dict[str, Any]],
                        context: Optional[Dict[str, Any]] = None):
        """Queue a playlist's co-occurrence for the next batch flush."""
        if not songs or len(songs) < 2:
            return

        context = context or {}
        logger.info(f"Recording playlist: {playlist.get('name', '')} ({len(songs)} songs)")

        song_ids = []
        for song in songs:
            song_id = generate_song_id(song)
            self.graph.upsert_song(song_id, song_metadata(song))
            song_ids.append(song_id)

        self.recorder.enqueue(PLAYLIST, song_ids, {
            "playlist_name": playlist.get("name"),
            "playlist_id": playlist.get("id"),
            "is_public": playlist.get("public"),
            "collaborative": playlist.get("collaborative"),
            "source": playlist.get("source", "discord"),
            "created_by": context.get("user_id"),
            "guild_id": context.get("guild_id"),
        })

    def record_queue_sequence(self, songs: List[Dict[str, Any]], context: Optional[Dict[str, Any]] = None):
        """Queue the play order of a queue or listening session."""
        if not songs or len(songs) < 2:
            return

        logger.info(f"Recording queue sequence of {len(songs)} songs")
        self.recorder.enqueue(QUEUE, [generate_song_id(song) for song in songs], context or {})

    def record_search_interaction(self, query: str, results: List[Dict[str, Any]],
                                  selected: Optional[Dict[str, Any]] = None):
        """Queue search co-occurrence and record the picked result as a play."""
        if not results:
            return

        logger.info(f"Recording search interaction for: {query}")
        result_ids = [generate_song_id(result) for result in results]
        if len(result_ids) > 1:
            self.recorder.enqueue(SEARCH, result_ids, {"query": query})

        if selected:
            self.record_song_play(selected, {"type": "search_selection", "search_query": query})

    # === Query / enhancement ===

    def enhance_results(self, results: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
        """
        Boost search result confidence with graph scores.

        Results are mutated in place: ``confidence`` is raised and
        ``page_rank_score`` / ``page_rank_boost`` are set for songs with a
        positive score. Every result is also recorded in the graph and the
        set is queued as one search co-occurrence event.

        Args:
            results: Search results with ``id``/``webpage_url``/``title``/``source``

        Returns:
            The same list
        """
        if not results:
            return results

        try:
            logger.debug(f"Enhancing {len(results)} search results")

            valid = [result for result in results if not result.get("is_error")]
            song_ids = [generate_song_id(result) for result in valid]
            # Look everything up before recording so this call's upserts
            # cannot influence its own scores
            scores = [self.get_score(song_id) for song_id in song_ids]

            # Nothing is written back until every boost is known
            updates = []
            for result, score in zip(valid, scores):
                if score > 0:
                    boost = search_boost(score)
                    updates.append((result, {
                        "confidence": (result.get("confidence") or 0) + boost,
                        "page_rank_score": score,
                        "page_rank_boost": boost,
                    }))
        except Exception:
            logger.exception("Search enhancement failed, returning results unboosted")
            return results

        for result, fields in updates:
            result.update(fields)

        try:
            for result, song_id in zip(valid, song_ids):
                patch = {"title": result.get("title") or "", "source": result.get("source") or ""}
                if result.get("webpage_url"):
                    patch["webpage_url"] = result["webpage_url"]
                self.graph.upsert_song(song_id, patch)

            if len(song_ids) > 1:
                self.recorder.enqueue(SEARCH, song_ids, {"query": "search"})
        except Exception:
            logger.exception("Recording search results failed")

        return results

    def get_top_songs(self, limit: int = 10) -> List[Dict[str, Any]]:
        ranked = sorted(self.graph.scores.items(), key=lambda item: item[1], reverse=True)[:limit]
        top = []
        for song_id, score in ranked:
            metadata = self.graph.metadata(song_id)
            top.append({
                "song_id": song_id,
                "score": round(score, 6),
                "metadata": metadata.to_dict() if metadata else None,
            })
        return top

    def get_recommendations(self, seed_ids: Optional[List[str]] = None,
                            profile: Optional[Dict[str, Any]] = None,
                            limit: int = 10) -> List[Dict[str, Any]]:
        """
        Recommend songs connected to the seeds.

        Without seeds the three top-scored songs are used.
        """
        seeds = list(seed_ids or [])
        if not seeds:
            seeds = [song["song_id"] for song in self.get_top_songs(3)]

        logger.info(f"Generating {limit} recommendations from {len(seeds)} seed songs")
        try:
            return recommend(self.graph, self.get_score, seeds, profile, limit)
        except Exception:
            logger.exception("Recommendation failed")
            return []

    def optimize_play_order(self, songs: List[Dict[str, Any]], criteria: str = "engagement") -> List[Dict[str, Any]]:
        """Reorder songs by score under the given criteria."""
        if not songs or len(songs) < 2:
            return songs

        if criteria not in ORDER_CRITERIA:
            logger.warning(f"Unknown play order criteria {criteria!r}, using engagement")
            criteria = "engagement"

        logger.info(f"Optimizing play order for {len(songs)} songs ({criteria})")
        return optimize_order(songs, self.get_score, generate_song_id, criteria)

    def get_analytics(self) -> Dict[str, Any]:
        """Read-only status snapshot for status commands."""
        last_full = self.graph.last_full_calculation
        return {
            "song_count": self.graph.song_count,
            "relationship_count": self.graph.relationship_count,
            "artist_count": self.graph.artist_count,
            "top_songs": self.get_top_songs(10),
            "dirty_node_count": len(self.graph.dirty_nodes),
            "last_full_recompute_time": (
                datetime.fromtimestamp(last_full / 1000, tz=timezone.utc).isoformat()
                if last_full else None
            ),
            "pending_update_count": self.recorder.pending_count,
            "cache_size": len(self.score_cache),
        }

    # === Maintenance ===

    def find_stale_songs(self, max_age_days: float = 30, min_play_count: int = 1) -> List[str]:
        """Songs older than ``max_age_days`` that were never searched and barely played."""
        cutoff = now_ms() - max_age_days * MS_PER_DAY
        stale = []
        for song_id in self.graph.song_ids():
            metadata = self.graph.metadata(song_id)
            if ((metadata.added_at or 0) < cutoff
                    and (metadata.play_count or 0) < min_play_count
                    and not metadata.search_count):
                stale.append(song_id)
        return stale

    async def cleanup_graph(self, max_age_days: float = 30, min_play_count: int = 1) -> int:
        """
        Remove stale songs and repair scores with a full recompute.

        Returns:
            Number of songs removed
        """
        stale = self.find_stale_songs(max_age_days, min_play_count)
        if not stale:
            return 0

        logger.info(f"Cleaning up {len(stale)} old song nodes")
        for song_id in stale:
            self.graph.remove_song(song_id)

        await self.recalculate(force_full=True)
        return len(stale)
