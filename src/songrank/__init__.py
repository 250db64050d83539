"""
songrank: song-relationship ranking for the music bot.

Keeps a directed graph of songs built from playlist, queue and search
co-occurrence, scores it with a damped power iteration and uses the
scores to re-rank search results and drive recommendations.
"""

from .engine import RankingEngine
from .scheduler import RankingScheduler
from .config import load_config

__all__ = ["RankingEngine", "RankingScheduler", "load_config"]
