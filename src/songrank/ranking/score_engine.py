"""
Damped power-iteration scoring over the song graph.

A PageRank variant with two modes:
- Full recompute: every node, from a uniform start, until the maximum
  per-node change drops below an adaptive threshold
- Incremental recompute: dirty nodes plus their neighbours, seeded from the
  previous scores, a few iterations with a relaxed threshold

Each iteration multiplies a node's score by a popularity/recency boost.
The boost is applied on every iteration rather than once after convergence,
which reinforces popular songs more strongly the longer the run lasts.
"""

from __future__ import annotations
import asyncio
import math
import time
from typing import Dict, Any, List, Optional, Set

from loguru import logger

from songrank.graph.models import SongMetadata, now_ms
from songrank.graph.song_graph import SongGraph

MAX_BOOST = 2.0
RECENT_DAYS = 7


def theoretical_max_iterations(damping_factor: float, convergence_threshold: float) -> int:
    """Iteration bound ceil(ln(1/eps) / (1 - d)) for power iteration."""
    return math.ceil(math.log(1 / convergence_threshold) / (1 - damping_factor))


def popularity_boost(metadata: SongMetadata, now: Optional[int] = None) -> float:
    """
    Multiplicative boost from play/search counts and recency.

    Songs first seen within the last week get up to 7% extra; the result is
    capped at 2.0.
    """
    boost = 1.0

    play_count = metadata.play_count or 0
    if play_count > 0:
        boost += math.log(play_count + 1) * 0.08

    search_count = metadata.search_count or 0
    if search_count > 0:
        boost += math.log(search_count + 1) * 0.04

    age_days = metadata.age_days(now)
    if age_days < RECENT_DAYS:
        boost *= 1 + (RECENT_DAYS - age_days) * 0.01

    return min(boost, MAX_BOOST)


class ScoreEngine:
    """
    Computes and maintains ``graph.scores``.

    Only one computation runs at a time. Requests that arrive while one is
    in flight are merged into a single follow-up run, and every caller that
    asked during the busy period receives that run's stats.
    """

    def __init__(self, graph: SongGraph, config: Optional[Dict[str, Any]] = None):
        """
        Initialize the score engine.

        Args:
            graph: Graph whose score table is maintained
            config: ``ranking`` config section
        """
        self.graph = graph
        self.config = config or {}

        self.damping_factor = self.config.get("damping_factor", 0.85)
        self.convergence_threshold = self.config.get("convergence_threshold", 0.001)
        self.min_graph_size = self.config.get("min_graph_size", 5)
        self.full_interval_ms = self.config.get("full_recompute_interval_hours", 6) * 60 * 60 * 1000
        self.dirty_ratio = self.config.get("dirty_ratio_full_recompute", 0.1)
        self.yield_every = self.config.get("yield_every", 5)

        bound = theoretical_max_iterations(self.damping_factor, self.convergence_threshold)
        configured = self.config.get("max_iterations")
        self.max_iterations = min(configured, bound) if configured else bound
        self.incremental_max_iterations = min(
            self.config.get("incremental_max_iterations", 10), self.max_iterations
        )

        self._calculating = False
        self._pending: Optional[asyncio.Future] = None
        self._pending_force = False
        self.last_result: Optional[Dict[str, Any]] = None

    @property
    def is_calculating(self) -> bool:
        return self._calculating

    def adaptive_threshold(self, node_count: int) -> float:
        """Convergence threshold loosened for large graphs."""
        return max(0.0001, self.convergence_threshold / math.sqrt(max(node_count, 1)))

    def full_recompute_due(self, now: Optional[int] = None) -> bool:
        now = now if now is not None else now_ms()
        if now - self.graph.last_full_calculation > self.full_interval_ms:
            return True
        return len(self.graph.dirty_nodes) > self.graph.song_count * self.dirty_ratio

    # === Public entry point ===

    async def calculate(self, force_full: bool = False) -> Dict[str, Any]:
        """
        Recompute scores, full or incremental as appropriate.

        Args:
            force_full: Run a full recompute regardless of schedule

        Returns:
            Stats for the run that served this request
        """
        if self._calculating:
            self._pending_force = self._pending_force or force_full
            if self._pending is None:
                self._pending = asyncio.get_running_loop().create_future()
            return await self._pending

        self._calculating = True
        try:
            return await self._run(force_full)
        finally:
            try:
                await self._serve_pending()
            finally:
                self._calculating = False

    async def _serve_pending(self):
        while self._pending is not None:
            waiter, self._pending = self._pending, None
            force, self._pending_force = self._pending_force, False
            try:
                result = await self._run(force)
            except Exception as e:
                logger.exception("Coalesced score recompute failed")
                if not waiter.done():
                    waiter.set_exception(e)
            else:
                if not waiter.done():
                    waiter.set_result(result)

    async def _run(self, force_full: bool) -> Dict[str, Any]:
        started = time.perf_counter()
        node_count = self.graph.song_count

        if node_count < self.min_graph_size:
            logger.info(f"Graph too small for scoring ({node_count} < {self.min_graph_size} songs)")
            result = {"mode": "skipped", "iterations": 0, "converged": False,
                      "max_change": 0.0, "threshold": 0.0, "nodes": 0}
        elif force_full or self.full_recompute_due():
            result = await self.calculate_full()
        elif self.graph.dirty_nodes:
            result = await self.calculate_incremental()
        else:
            result = {"mode": "noop", "iterations": 0, "converged": True,
                      "max_change": 0.0, "threshold": 0.0, "nodes": 0}

        result["duration_ms"] = (time.perf_counter() - started) * 1000
        if result["mode"] in ("full", "incremental"):
            logger.success(f"{result['mode'].capitalize()} scoring of {result['nodes']} songs "
                           f"finished in {result['duration_ms']:.0f}ms "
                           f"({result['iterations']} iterations)")
        self.last_result = result
        return result

    # === Iteration ===

    def _iterate(self, nodes: List[str], current: Dict[str, float], total_nodes: int,
                 now: int) -> Dict[str, float]:
        """One synchronous update of ``nodes`` from ``current`` scores."""
        graph = self.graph.graph
        d = self.damping_factor
        teleport = (1 - d) / total_nodes
        updated: Dict[str, float] = {}

        for node_id in nodes:
            if node_id not in graph:
                continue

            score = teleport
            for inlink_id in graph.predecessors(node_id):
                inlink_score = current.get(inlink_id)
                if inlink_score is None:
                    inlink_score = self.graph.scores.get(inlink_id, 0.0)
                if inlink_score > 0:
                    score += d * (inlink_score / max(1, graph.out_degree(inlink_id)))

            score *= popularity_boost(graph.nodes[node_id]["metadata"], now)
            updated[node_id] = score

        return updated

    @staticmethod
    def _max_change(old: Dict[str, float], new: Dict[str, float]) -> float:
        return max((abs(score - old.get(node_id, 0.0)) for node_id, score in new.items()), default=0.0)

    def _take_dirty(self, song_ids: Set[str]):
        """Claim dirty marks for a run; marks added while it yields are kept."""
        self.graph.dirty_nodes.difference_update(song_ids)

    async def calculate_full(self) -> Dict[str, Any]:
        """
        Power iteration over the whole graph from a uniform start.

        Songs added while the run yields keep their dirty mark and get no
        score; songs removed meanwhile are left out of the new table.
        """
        nodes = self.graph.song_ids()
        n = len(nodes)
        logger.info(f"Full score recompute for {n} songs")

        claimed = set(self.graph.dirty_nodes)
        self._take_dirty(claimed)

        scores = {node_id: 1.0 / n for node_id in nodes}
        threshold = self.adaptive_threshold(n)
        now = now_ms()
        max_change = 0.0
        converged = False
        iterations = 0

        try:
            for iteration in range(self.max_iterations):
                updated = self._iterate(nodes, scores, n, now)
                max_change = self._max_change(scores, updated)
                scores.update(updated)
                iterations = iteration + 1

                if max_change < threshold:
                    converged = True
                    logger.debug(f"Full recompute converged after {iterations} iterations "
                                 f"(threshold {threshold:.6f})")
                    break

                if self.yield_every and iteration % self.yield_every == 0:
                    await asyncio.sleep(0)
        except BaseException:
            self.graph.dirty_nodes.update(song_id for song_id in claimed if song_id in self.graph)
            raise

        self.graph.scores = {song_id: score for song_id, score in scores.items() if song_id in self.graph}
        self.graph.last_full_calculation = now_ms()
        self.graph.score_cache.clear()

        return {"mode": "full", "iterations": iterations, "converged": converged,
                "max_change": max_change, "threshold": threshold, "nodes": n}

    async def calculate_incremental(self) -> Dict[str, Any]:
        """Refresh scores of dirty nodes and their one-hop neighbours."""
        dirty = set(self.graph.dirty_nodes)
        if not dirty:
            return {"mode": "noop", "iterations": 0, "converged": True,
                    "max_change": 0.0, "threshold": 0.0, "nodes": 0}

        logger.info(f"Incremental score update for {len(dirty)} dirty songs")

        # Dirty ids whose node was removed in the meantime are dropped too
        self._take_dirty(dirty)

        affected = set()
        for node_id in dirty:
            if self.graph.has_song(node_id):
                affected.add(node_id)
                affected.update(self.graph.neighbors(node_id))

        total = self.graph.song_count
        nodes = list(affected)
        current = {node_id: self.graph.scores.get(node_id) or 1.0 / total for node_id in nodes}
        threshold = self.convergence_threshold * 2
        now = now_ms()
        max_change = 0.0
        converged = False
        iterations = 0

        try:
            for iteration in range(self.incremental_max_iterations):
                updated = self._iterate(nodes, current, total, now)
                max_change = self._max_change(current, updated)
                current.update(updated)
                self.graph.scores.update(updated)
                iterations = iteration + 1

                if max_change < threshold:
                    converged = True
                    logger.debug(f"Incremental recompute converged after {iterations} iterations")
                    break

                if self.yield_every and iteration % self.yield_every == 0:
                    await asyncio.sleep(0)
        except BaseException:
            self.graph.dirty_nodes.update(song_id for song_id in dirty if song_id in self.graph)
            raise

        self.graph.score_cache.clear()

        return {"mode": "incremental", "iterations": iterations, "converged": converged,
                "max_change": max_change, "threshold": threshold, "nodes": len(nodes)}
