"""
Stable identifiers for songs coming from different providers.

A search result, queue entry or playlist track is reduced to one string id
so the same song seen through different commands lands on the same node.
"""

from __future__ import annotations
import hashlib
import re
from typing import Dict, Any, Optional

_STRIP_RE = re.compile(r"[^\w\s-]", re.ASCII)
_SPACE_RE = re.compile(r"\s+")
_DIGEST_LENGTH = 16


def normalize_title(text: str, max_length: int = 100) -> str:
    """Lowercase, drop punctuation and join words with underscores."""
    normalized = _STRIP_RE.sub("", (text or "").lower())
    normalized = _SPACE_RE.sub("_", normalized)
    return normalized[:max_length]


def title_key(text: str, max_length: int = 100) -> str:
    """
    Normalized title, or a digest of the raw text when normalization
    leaves nothing (titles written entirely in non-Latin scripts).
    """
    normalized = normalize_title(text, max_length)
    if normalized:
        return normalized

    raw = (text or "").strip()
    if not raw:
        return ""
    return hashlib.sha1(raw.encode("utf-8")).hexdigest()[:_DIGEST_LENGTH]


def generate_song_id(song: Dict[str, Any]) -> str:
    """
    Derive the graph id for a song-like dict.

    Resolution order: explicit ``id``, then ``webpage_url``, then
    ``<source>_<title key>``.

    Args:
        song: Search result, queue entry or playlist track

    Returns:
        Stable string id
    """
    if song.get("id"):
        return str(song["id"])
    if song.get("webpage_url"):
        return str(song["webpage_url"])

    source = song.get("source") or "unknown"
    return f"{source}_{title_key(song.get('title', ''))}"


def artist_id(artist_name: Optional[str]) -> Optional[str]:
    """Key for the artist graph, or None when the artist is unknown."""
    if not artist_name:
        return None
    return title_key(artist_name, max_length=50) or None
