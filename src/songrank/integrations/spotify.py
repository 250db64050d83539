"""
Spotify-aware layer over the ranking engine.

Spotify tracks get their own id namespace (``spotify_<id>``) and richer
metadata (album, popularity, explicit flag, duration). This module converts
between the bot's generic song dicts and Spotify track objects, records
Spotify playlists and listening sessions, and re-ranks Spotify search
results with a listener-context multiplier.
"""

from __future__ import annotations
import math
from datetime import datetime, timezone
from typing import Dict, Any, List, Optional

from loguru import logger

from songrank.engine import RankingEngine
from songrank.graph.models import now_ms, MS_PER_DAY
from songrank.ids import title_key
from songrank.recorder.relationships import PLAYLIST, QUEUE, SEARCH

SPOTIFY_PREFIX = "spotify_"
MAX_SPOTIFY_BOOST = 100
MAX_CONTEXT_BOOST = 2.5
SEARCH_PATTERN_RESULTS = 10

PREFERENCE_WEIGHTS = {
    "recent_play": 1.2,
    "frequent_play": 1.5,
    "saved_track": 1.3,
}


def spotify_track_id(track: Dict[str, Any]) -> str:
    """Graph id for a Spotify track: native id, else artist and name."""
    if track.get("id"):
        return f"{SPOTIFY_PREFIX}{track['id']}"

    artists = track.get("artists") or []
    artist_name = title_key(artists[0].get("name", ""), max_length=50) if artists else ""
    return f"{SPOTIFY_PREFIX}{artist_name or 'unknown'}_{title_key(track.get('name', ''))}"


def is_spotify_song(song: Dict[str, Any]) -> bool:
    return song.get("source") == "spotify" or bool(song.get("spotify_uri"))


def to_spotify_track(song: Dict[str, Any]) -> Optional[Dict[str, Any]]:
    """
    Convert a generic song dict into a Spotify-shaped track.

    Titles of the form ``"Name - Artist"`` are split into name and artist.
    """
    if not song:
        return None

    title = song.get("title") or ""
    parts = title.split(" - ")
    name = parts[0] or title
    artist_name = parts[1] if len(parts) > 1 and parts[1] else (song.get("artist") or "Unknown")
    duration = song.get("duration") or song.get("duration_seconds") or 0

    return {
        "id": song.get("id") or song.get("spotify_id"),
        "name": name,
        "artists": [{"name": artist_name}],
        "album": {
            "name": song.get("album") or "",
            "images": [{"url": song["thumbnail"]}] if song.get("thumbnail") else [],
        },
        "popularity": song.get("popularity") or 50,
        "duration_ms": int(duration * 1000),
        "uri": song.get("spotify_uri"),
        "external_urls": {"spotify": song.get("webpage_url") or ""},
        "explicit": bool(song.get("explicit")),
    }


def _artist_names(track: Dict[str, Any]) -> str:
    return ", ".join(a.get("name", "") for a in track.get("artists") or [])


def _first_artist(track: Dict[str, Any]) -> Optional[str]:
    artists = track.get("artists") or []
    return artists[0].get("name") if artists else None


class SpotifyRankingIntegration:
    """Records and re-ranks Spotify tracks through a :class:`RankingEngine`."""

    def __init__(self, engine: RankingEngine):
        self.engine = engine

    def track_metadata(self, track: Dict[str, Any], **extra) -> Dict[str, Any]:
        patch = {
            "title": track.get("name") or "",
            "artist": _artist_names(track),
            "album": (track.get("album") or {}).get("name", ""),
            "source": "spotify",
            "popularity": track.get("popularity") or 0,
            "explicit": bool(track.get("explicit")),
            "duration_ms": track.get("duration_ms") or 0,
            "spotify_id": track.get("id"),
        }
        patch.update(extra)
        return patch

    def record_spotify_track(self, track: Dict[str, Any], context: Optional[Dict[str, Any]] = None) -> str:
        """Upsert one Spotify track into the graph."""
        context = context or {}
        song_id = spotify_track_id(track)
        self.engine.graph.upsert_song(song_id, self.track_metadata(
            track,
            search_context=context.get("search_query", ""),
            user_context=context.get("user_id", ""),
        ))
        return song_id

    def record_spotify_playlist(self, playlist: Dict[str, Any], tracks: List[Dict[str, Any]]):
        """Record a Spotify playlist's tracks and queue its co-occurrence."""
        if not tracks or len(tracks) < 2:
            return

        logger.info(f"Recording Spotify playlist: {playlist.get('name', '')} ({len(tracks)} tracks)")

        playlist_metadata = {
            "source": "spotify",
            "playlist_id": playlist.get("id"),
            "playlist_name": playlist.get("name"),
            "collaborative": playlist.get("collaborative"),
            "public": playlist.get("public"),
            "followers": (playlist.get("followers") or {}).get("total", 0),
        }

        track_ids = []
        for position, track in enumerate(tracks):
            song_id = spotify_track_id(track)
            self.engine.graph.upsert_song(song_id, self.track_metadata(
                track, playlist_position=position, playlist_metadata=playlist_metadata,
            ))
            track_ids.append(song_id)

        self.engine.recorder.enqueue(PLAYLIST, track_ids, playlist_metadata)

    def record_listening_session(self, tracks: List[Dict[str, Any]],
                                 session: Optional[Dict[str, Any]] = None):
        """
        Record a listening session as plays plus queue co-occurrence.

        Earlier tracks in the session carry a lower time weight.
        """
        if not tracks or len(tracks) < 2:
            return

        logger.info(f"Recording Spotify listening session ({len(tracks)} tracks)")

        now = now_ms()
        track_ids = []
        for position, track in enumerate(tracks):
            song_id = spotify_track_id(track)
            self.engine.record_play(song_id, self.track_metadata(
                track,
                session_position=position,
                time_weight=max(0.5, 1.0 - position * 0.05),
                session_metadata=session or {},
                played_at=now - position * 30000,
            ))
            track_ids.append(song_id)

        self.engine.recorder.enqueue(QUEUE, track_ids, session or {})

    def record_songs(self, songs: List[Dict[str, Any]], playlist: Optional[Dict[str, Any]] = None,
                     context: Optional[Dict[str, Any]] = None):
        """
        Forward the Spotify songs of a generic song list.

        Used by command handlers after recording the list with the engine.
        """
        tracks = [to_spotify_track(song) for song in songs if is_spotify_song(song)]
        tracks = [track for track in tracks if track]
        if len(tracks) < 2:
            return

        if playlist is not None:
            self.record_spotify_playlist(playlist, tracks)
        else:
            context = context or {}
            self.record_listening_session(tracks, {
                "session_type": "queue",
                "guild_id": context.get("guild_id"),
                "user_id": context.get("user_id"),
                "timestamp": now_ms(),
            })

    # === Re-ranking ===

    def contextual_boost(self, track: Dict[str, Any], user_context: Optional[Dict[str, Any]]) -> float:
        """
        Multiplier from the listener's recent history, top artists, saved
        tracks and the track's release date. Capped at 2.5.
        """
        user_context = user_context or {}
        boost = 1.0
        artist = _first_artist(track)

        recent = user_context.get("recent_tracks")
        if recent and artist in {_first_artist(t) for t in recent}:
            boost *= PREFERENCE_WEIGHTS["recent_play"]

        top_artists = user_context.get("top_artists")
        if top_artists and artist in {a.get("name") for a in top_artists}:
            boost *= PREFERENCE_WEIGHTS["frequent_play"]

        saved = user_context.get("saved_tracks")
        if saved and any(t.get("id") == track.get("id") for t in saved):
            boost *= PREFERENCE_WEIGHTS["saved_track"]

        release_date = (track.get("album") or {}).get("release_date")
        if release_date:
            try:
                released = datetime.fromisoformat(release_date).replace(tzinfo=timezone.utc)
            except ValueError:
                released = None
            if released is not None:
                age_days = (now_ms() - released.timestamp() * 1000) / MS_PER_DAY
                if age_days < 30:
                    boost *= 1 + (30 - age_days) * 0.01

        return min(boost, MAX_CONTEXT_BOOST)

    def enhance_search_results(self, query: str, tracks: List[Dict[str, Any]],
                               user_context: Optional[Dict[str, Any]] = None) -> List[Dict[str, Any]]:
        """
        Boost and sort Spotify search results by graph score and context.

        Returns:
            The tracks sorted by ``confidence``, highest first
        """
        logger.info(f"Enhancing {len(tracks)} Spotify results for: {query!r}")
        user_context = user_context or {}

        song_ids = [spotify_track_id(track) for track in tracks]
        scores = [self.engine.get_score(song_id) for song_id in song_ids]

        for track, score in zip(tracks, scores):
            if score > 0:
                context_boost = self.contextual_boost(track, user_context)
                total = min(MAX_SPOTIFY_BOOST, math.log(score * 3000 + 1) * 15) * context_boost
                track["confidence"] = (track.get("confidence") or track.get("popularity") or 50) + total
                track["page_rank_score"] = score
                track["page_rank_boost"] = total
                track["contextual_multiplier"] = context_boost

            self.record_spotify_track(track, {"search_query": query, "user_id": user_context.get("user_id", "")})

        pattern_ids = [spotify_track_id(t) for t in tracks if t.get("id")][:SEARCH_PATTERN_RESULTS]
        if len(pattern_ids) > 1:
            self.engine.recorder.enqueue(SEARCH, pattern_ids, {"query": query})

        return sorted(tracks, key=lambda t: t.get("confidence") or 0, reverse=True)

    # === Reporting ===

    def get_spotify_analytics(self) -> Dict[str, Any]:
        graph = self.engine.graph
        spotify_songs = sum(1 for song_id in graph.song_ids() if song_id.startswith(SPOTIFY_PREFIX))

        ranked = sorted(
            ((song_id, score) for song_id, score in graph.scores.items() if song_id.startswith(SPOTIFY_PREFIX)),
            key=lambda item: item[1], reverse=True,
        )[:10]

        top = []
        for song_id, score in ranked:
            metadata = graph.metadata(song_id)
            top.append({
                "track_id": song_id,
                "score": round(score, 6),
                "metadata": metadata.to_dict() if metadata else None,
            })

        analytics = self.engine.get_analytics()
        analytics.update({
            "spotify_songs": spotify_songs,
            "top_spotify_tracks": top,
            "integration_health": "active" if spotify_songs > 0 else "inactive",
        })
        return analytics

    def get_combined_analytics(self) -> Dict[str, Any]:
        general = self.engine.get_analytics()
        spotify = self.get_spotify_analytics()
        return {
            "general": general,
            "spotify": spotify,
            "combined": {
                "total_songs": general["song_count"],
                "total_relationships": general["relationship_count"],
                "spotify_integration": spotify["integration_health"],
                "performance": {
                    "dirty_nodes": general["dirty_node_count"],
                    "pending_updates": general["pending_update_count"],
                    "cache_size": general["cache_size"],
                },
            },
        }
