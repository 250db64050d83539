"""
Node metadata records for the song and artist graphs.
"""

from __future__ import annotations
import time
from dataclasses import dataclass, field
from typing import Dict, Any, Optional

MS_PER_DAY = 24 * 60 * 60 * 1000


def now_ms() -> int:
    """Current wall-clock time in epoch milliseconds."""
    return int(time.time() * 1000)


# Python field name -> key used in persisted snapshots
_SONG_KEYS = {
    "title": "title",
    "artist": "artist",
    "source": "source",
    "album": "album",
    "genre": "genre",
    "play_count": "playCount",
    "search_count": "searchCount",
    "added_at": "addedAt",
    "popularity": "popularity",
    "explicit": "explicit",
    "duration_ms": "durationMs",
}

_ARTIST_KEYS = {
    "name": "name",
    "genre": "genre",
    "play_count": "playCount",
    "added_at": "addedAt",
}


class _Record:
    """Shared merge/serialization for metadata records with an extension map."""

    _keys: Dict[str, str] = {}

    def merge(self, patch: Optional[Dict[str, Any]]):
        """
        Shallow-merge a patch into this record.

        Known field names overwrite fields; anything else, and the contents
        of an ``additional`` entry, go into the extension map.
        """
        if not patch:
            return
        for key, value in patch.items():
            if key == "additional" and isinstance(value, dict):
                self.additional.update(value)
            elif key in self._keys:
                setattr(self, key, value)
            else:
                self.additional[key] = value

    def to_dict(self) -> Dict[str, Any]:
        data = {stored: getattr(self, name) for name, stored in self._keys.items()}
        data["additional"] = dict(self.additional)
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]):
        record = cls()
        reverse = {stored: name for name, stored in cls._keys.items()}
        for key, value in (data or {}).items():
            if key == "additional" and isinstance(value, dict):
                record.additional.update(value)
            elif key in reverse:
                setattr(record, reverse[key], value)
            else:
                # Older snapshots kept provider fields at the top level
                record.additional[key] = value
        return record


@dataclass
class SongMetadata(_Record):
    """Metadata carried by a song node."""

    title: str = ""
    artist: str = ""
    source: str = ""
    album: str = ""
    genre: Optional[str] = None
    play_count: int = 0
    search_count: int = 0
    added_at: int = field(default_factory=now_ms)
    popularity: Optional[int] = None
    explicit: bool = False
    duration_ms: int = 0
    additional: Dict[str, Any] = field(default_factory=dict)

    _keys = _SONG_KEYS

    def age_days(self, now: Optional[int] = None) -> float:
        return ((now if now is not None else now_ms()) - (self.added_at or 0)) / MS_PER_DAY


@dataclass
class ArtistMetadata(_Record):
    """Metadata carried by an artist node."""

    name: str = ""
    genre: Optional[str] = None
    play_count: int = 0
    added_at: int = field(default_factory=now_ms)
    additional: Dict[str, Any] = field(default_factory=dict)

    _keys = _ARTIST_KEYS
