"""
Graph module for songrank.

This module provides the song relationship graph and its node metadata.
"""

from .song_graph import SongGraph
from .models import SongMetadata, ArtistMetadata

__all__ = ["SongGraph", "SongMetadata", "ArtistMetadata"]
