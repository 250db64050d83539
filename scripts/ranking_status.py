#!/usr/bin/env python
"""
Show the state of the saved song ranking graph.

Loads the snapshot named in configs/config.yaml (or $SONGRANK_STORE_PATH)
and logs the analytics the bot's status command reports.

Usage:
    python scripts/ranking_status.py
    python scripts/ranking_status.py --config configs/config.yaml --top 5
"""

from __future__ import annotations
import argparse

from loguru import logger

from songrank.engine import RankingEngine


def main():
    parser = argparse.ArgumentParser(description="Report song ranking graph statistics")
    parser.add_argument("--config", default=None, help="Path to config.yaml")
    parser.add_argument("--top", type=int, default=10, help="Number of top songs to list")
    args = parser.parse_args()

    engine = RankingEngine.from_config(args.config)
    stats = engine.get_analytics()

    logger.info("=" * 60)
    logger.info("🎵 Song Ranking Status")
    logger.info("=" * 60)
    logger.info(f"  • Songs: {stats['song_count']:,}")
    logger.info(f"  • Relationships: {stats['relationship_count']:,}")
    logger.info(f"  • Artists: {stats['artist_count']:,}")
    logger.info(f"  • Dirty nodes: {stats['dirty_node_count']:,}")
    logger.info(f"  • Last full recompute: {stats['last_full_recompute_time'] or 'never'}")

    top_songs = engine.get_top_songs(args.top)
    if top_songs:
        logger.info("\n🏆 Top songs:")
        for i, song in enumerate(top_songs, 1):
            metadata = song["metadata"] or {}
            logger.info(f"  {i}. {metadata.get('title') or song['song_id']} "
                        f"({metadata.get('source') or 'unknown'}) score={song['score']:.6f}")
    else:
        logger.info("\nNo scores yet (graph has not been ranked)")


if __name__ == "__main__":
    main()
