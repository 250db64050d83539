"""
Cache module for songrank.

Provides the short-TTL score memo used by the query API.
"""

from .score_cache import ScoreCache

__all__ = ["ScoreCache"]
