#!/usr/bin/env python
"""
Force a full score recompute of the saved graph and write it back.

Usage:
    python scripts/recompute_scores.py
    python scripts/recompute_scores.py --config configs/config.yaml
"""

from __future__ import annotations
import argparse
import asyncio
import sys

from loguru import logger

from songrank.engine import RankingEngine


async def run(config_path: str | None) -> int:
    engine = RankingEngine.from_config(config_path)

    applied = engine.process_batch_updates()
    if applied:
        logger.info(f"Applied {applied} pending updates")

    result = await engine.force_recalculation()
    if result["mode"] == "skipped":
        logger.warning("Graph too small to rank, nothing written")
        return 1

    logger.info(f"Iterations: {result['iterations']} (converged: {result['converged']})")
    logger.info(f"Max change: {result['max_change']:.8f} / threshold {result['threshold']:.8f}")

    if not engine.save():
        logger.error("Could not save the recomputed graph")
        return 1

    logger.success("✅ Scores recomputed and saved")
    return 0


def main():
    parser = argparse.ArgumentParser(description="Recompute song ranking scores")
    parser.add_argument("--config", default=None, help="Path to config.yaml")
    args = parser.parse_args()
    sys.exit(asyncio.run(run(args.config)))


if __name__ == "__main__":
    main()
