"""
Periodic maintenance for the ranking engine.

Runs as asyncio tasks on the bot's event loop:
- flush batched relationship updates (30s)
- incremental recompute when enough nodes are dirty (30min)
- forced full recompute (6h)
- snapshot persistence (5min)
- score cache eviction (15min)
- optional retention sweep of stale songs (daily, off by default)

A failing job is logged and retried on its next tick; it never stops the
other jobs.
"""

from __future__ import annotations
import asyncio
from typing import Awaitable, Callable, Dict, Any, List, Optional, Set

from loguru import logger

from songrank.engine import RankingEngine

Job = Callable[[], Awaitable[Any]]


class RankingScheduler:
    """Owns the periodic tasks that keep a :class:`RankingEngine` fresh."""

    def __init__(self, engine: RankingEngine, config: Optional[Dict[str, Any]] = None):
        """
        Initialize the scheduler.

        Args:
            engine: Engine to maintain
            config: ``scheduler`` config section
        """
        self.engine = engine
        self.config = config or {}

        self.batch_flush_seconds = self.config.get("batch_flush_seconds", 30)
        self.batch_incremental_dirty = self.config.get("batch_incremental_dirty", 10)
        self.debounce_seconds = self.config.get("debounce_seconds", 5)
        self.incremental_seconds = self.config.get("incremental_seconds", 30 * 60)
        self.incremental_min_dirty = self.config.get("incremental_min_dirty", 5)
        self.full_recompute_seconds = self.config.get("full_recompute_seconds", 6 * 60 * 60)
        self.persist_seconds = self.config.get("persist_seconds", 5 * 60)
        self.cache_cleanup_seconds = self.config.get("cache_cleanup_seconds", 15 * 60)
        self.retention = self.config.get("retention") or {}

        self._tasks: List[asyncio.Task] = []
        self._background: Set[asyncio.Task] = set()
        self._debounce_handle: Optional[asyncio.TimerHandle] = None

    @property
    def running(self) -> bool:
        return bool(self._tasks)

    def _jobs(self) -> List[tuple]:
        jobs = [
            ("batch-flush", self.batch_flush_seconds, self.flush_updates),
            ("incremental-recompute", self.incremental_seconds, self.run_incremental),
            ("full-recompute", self.full_recompute_seconds, self.run_full),
            ("persist", self.persist_seconds, self.persist),
            ("cache-eviction", self.cache_cleanup_seconds, self.evict_cache),
        ]
        if self.retention.get("enabled"):
            jobs.append(("retention", self.retention.get("interval_seconds", 86400), self.run_retention))
        return jobs

    def start(self):
        """Start every periodic job on the running event loop."""
        if self._tasks:
            return

        for name, interval, job in self._jobs():
            task = asyncio.create_task(self._every(name, interval, job), name=f"songrank-{name}")
            self._tasks.append(task)

        logger.info(f"Ranking scheduler started with {len(self._tasks)} jobs")

    async def stop(self):
        """Cancel the periodic jobs; an in-flight recompute is left to finish."""
        if self._debounce_handle is not None:
            self._debounce_handle.cancel()
            self._debounce_handle = None

        tasks, self._tasks = self._tasks, []
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)

        if self._background:
            await asyncio.gather(*self._background, return_exceptions=True)

        logger.info("Ranking scheduler stopped")

    async def __aenter__(self):
        self.start()
        return self

    async def __aexit__(self, exc_type, exc, tb):
        await self.stop()

    async def _every(self, name: str, interval: float, job: Job):
        while True:
            await asyncio.sleep(interval)
            await self.run_job(name, job)

    async def run_job(self, name: str, job: Job):
        try:
            await job()
        except asyncio.CancelledError:
            raise
        except Exception:
            logger.exception(f"Scheduled job {name} failed, retrying next tick")

    # === Jobs ===

    async def flush_updates(self):
        applied = self.engine.process_batch_updates()
        if applied and len(self.engine.graph.dirty_nodes) > self.batch_incremental_dirty:
            self.schedule_incremental()

    async def run_incremental(self):
        graph = self.engine.graph
        if (graph.song_count > self.engine.scorer.min_graph_size
                and len(graph.dirty_nodes) > self.incremental_min_dirty):
            await self.engine.recalculate(force_full=False)

    async def run_full(self):
        if self.engine.graph.song_count > self.engine.scorer.min_graph_size:
            await self.engine.recalculate(force_full=True)

    async def persist(self):
        await self.engine.save_async()

    async def evict_cache(self):
        self.engine.evict_expired_scores()

    async def run_retention(self):
        removed = await self.engine.cleanup_graph(
            self.retention.get("max_age_days", 30),
            self.retention.get("min_play_count", 1),
        )
        if removed:
            logger.info(f"Retention sweep removed {removed} songs")

    # === Debounced incremental ===

    def schedule_incremental(self):
        """
        Request an incremental recompute after a quiet period.

        Each call pushes the pending run back by ``debounce_seconds``.
        """
        loop = asyncio.get_running_loop()
        if self._debounce_handle is not None:
            self._debounce_handle.cancel()
        self._debounce_handle = loop.call_later(self.debounce_seconds, self._fire_incremental)

    def _fire_incremental(self):
        self._debounce_handle = None
        if self.engine.scorer.is_calculating or not self.engine.graph.dirty_nodes:
            return

        task = asyncio.create_task(
            self.run_job("debounced-incremental", lambda: self.engine.recalculate(force_full=False))
        )
        self._background.add(task)
        task.add_done_callback(self._background.discard)
