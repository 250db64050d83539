"""
Recommendations and play-order optimization on top of song scores.
"""

from __future__ import annotations
from typing import Callable, Dict, Any, Iterable, List, Optional

from songrank.graph.models import SongMetadata
from songrank.graph.song_graph import SongGraph

ScoreFn = Callable[[str], float]

MAX_CONNECTION_STRENGTH = 2.0
DEFAULT_POPULARITY = 50
ORDER_CRITERIA = ("engagement", "discovery", "energy")


def connection_strength(graph: SongGraph, from_id: str, to_id: str) -> float:
    """
    How strongly ``to_id`` is tied to ``from_id``.

    Direct edge +1.0, edge in both directions +0.5 more, same artist +0.3,
    capped at 2.0.
    """
    from_meta = graph.metadata(from_id)
    to_meta = graph.metadata(to_id)
    if from_meta is None or to_meta is None:
        return 0.0

    strength = 0.0
    outlinks = graph.outlinks(from_id)
    if to_id in outlinks:
        strength += 1.0
        if to_id in graph.inlinks(from_id):
            strength += 0.5

    if from_meta.artist and from_meta.artist == to_meta.artist:
        strength += 0.3

    return min(strength, MAX_CONNECTION_STRENGTH)


def user_preference_multiplier(metadata: SongMetadata, profile: Optional[Dict[str, Any]]) -> float:
    """
    Adjust a candidate for a listener profile.

    Profile keys (all optional):
        top_genres: genres the listener favours (x1.2 on match)
        explicit_filter: False halves explicit tracks
        preferred_duration: seconds; up to 50% penalty for distant durations
    """
    profile = profile or {}
    multiplier = 1.0

    top_genres = profile.get("top_genres")
    if top_genres and metadata.genre and metadata.genre in top_genres:
        multiplier *= 1.2

    if profile.get("explicit_filter") is False and metadata.explicit:
        multiplier *= 0.5

    preferred = profile.get("preferred_duration")
    if preferred and metadata.duration_ms:
        preferred_ms = preferred * 1000
        penalty = min(0.5, abs(metadata.duration_ms - preferred_ms) / (preferred_ms * 2))
        multiplier *= 1 - penalty

    return multiplier


def recommend(graph: SongGraph, score_fn: ScoreFn, seed_ids: Iterable[str],
              profile: Optional[Dict[str, Any]] = None, limit: int = 10) -> List[Dict[str, Any]]:
    """
    Rank the neighbours of the seed songs.

    Args:
        graph: Song graph
        score_fn: Score lookup (usually the cached ``get_score``)
        seed_ids: Songs to recommend from
        profile: Listener profile for :func:`user_preference_multiplier`
        limit: Maximum recommendations

    Returns:
        Recommendation dicts sorted by score, highest first
    """
    seeds = list(dict.fromkeys(seed_ids))
    seed_set = set(seeds)
    candidates: Dict[str, Dict[str, Any]] = {}

    for seed_id in seeds:
        if not graph.has_song(seed_id):
            continue

        for candidate_id in graph.neighbors(seed_id):
            if candidate_id in seed_set:
                continue

            metadata = graph.metadata(candidate_id)
            score = (score_fn(candidate_id)
                     * connection_strength(graph, seed_id, candidate_id)
                     * user_preference_multiplier(metadata, profile))
            if score <= 0:
                continue

            best = candidates.get(candidate_id)
            if best is None or score > best["score"]:
                candidates[candidate_id] = {
                    "song_id": candidate_id,
                    "score": score,
                    "metadata": metadata.to_dict(),
                    "connected_to": seed_id,
                }

    ranked = sorted(candidates.values(), key=lambda rec: rec["score"], reverse=True)
    return ranked[:limit]


def _popularity(item: Dict[str, Any]) -> float:
    return item.get("popularity") or DEFAULT_POPULARITY


def energy_flow(items: List[Dict[str, Any]], index: int) -> float:
    """
    Reward a popularity jump from the previous item.

    Popularity stands in for energy since audio features are not available.
    """
    if index == 0:
        return 1.0
    return 1.0 + abs(_popularity(items[index]) - _popularity(items[index - 1])) / 100


def optimize_order(items: List[Dict[str, Any]], score_fn: ScoreFn, id_fn: Callable[[Dict[str, Any]], str],
                   criteria: str = "engagement") -> List[Dict[str, Any]]:
    """
    Reorder songs by a criteria-adjusted score.

    Criteria:
        engagement: graph score as is
        discovery: favours less popular tracks
        energy: favours tracks whose popularity differs from the previous one

    Unknown criteria fall back to ``engagement``. Ties keep their input order.

    Returns:
        New list of copies of the input dicts with ``optimized_score`` set
    """
    scored = []
    for index, item in enumerate(items):
        score = score_fn(id_fn(item))
        if criteria == "discovery":
            score *= 1 + 1 / max(_popularity(item), 1)
        elif criteria == "energy":
            score *= energy_flow(items, index)
        scored.append({**item, "optimized_score": score})

    return sorted(scored, key=lambda item: item["optimized_score"], reverse=True)
