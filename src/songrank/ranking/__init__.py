"""
Ranking module for songrank.

Score computation plus the recommendation and play-order helpers built on it.
"""

from .score_engine import ScoreEngine, popularity_boost
from .recommend import recommend, optimize_order

__all__ = ["ScoreEngine", "popularity_boost", "recommend", "optimize_order"]
