"""
Provider integrations for songrank.
"""

from .spotify import SpotifyRankingIntegration, spotify_track_id, to_spotify_track

__all__ = ["SpotifyRankingIntegration", "spotify_track_id", "to_spotify_track"]
