"""
Recurring background tasks.

Each ScheduledTask runs in its own asyncio task: sleep for the interval, then
run the job under its SweepLock. A run that finds the lock held (a previous
run still going here, or another replica holding the Redis lock) is skipped.
Job exceptions are logged and counted; they never end the loop.
"""

import asyncio
import time
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import AsyncIterator, Awaitable, Callable, Optional

import redis.asyncio as redis
from redis.exceptions import RedisError

from ticketing.core.logging import get_logger, log_context
from ticketing.core.metrics import record_sweep_run, redis_lock_errors, sweep_duration

logger = get_logger(__name__)

LOCK_PREFIX = "ticketing:sweep:"


@dataclass(frozen=True)
class ScheduledTask:
    name: str
    interval: float  # seconds
    func: Callable[[], Awaitable[int]]


class SweepLock:
    """
    Non-blocking mutual exclusion for one job.

    Always takes an in-process asyncio.Lock. When a Redis client is given it
    also takes a Redis lock with a TTL, shared by every replica. Redis errors
    fail open: the run proceeds under the in-process lock alone.
    """

    def __init__(self, name: str, redis_client: Optional[redis.Redis] = None, ttl: int = 900):
        self.name = name
        self._local = asyncio.Lock()
        self._redis = redis_client
        self._ttl = ttl

    @asynccontextmanager
    async def hold(self) -> AsyncIterator[bool]:
        """Yield True if this caller owns the lock, False if the run should be skipped."""
        if self._local.locked():
            yield False
            return

        async with self._local:
            redis_lock = None
            if self._redis is not None:
                redis_lock = self._redis.lock(LOCK_PREFIX + self.name, timeout=self._ttl, blocking=False)
                try:
                    owned = await redis_lock.acquire()
                except (RedisError, OSError) as e:
                    redis_lock_errors.inc()
                    logger.warning("sweep_lock_redis_unavailable", job=self.name, error=str(e))
                    owned, redis_lock = True, None
                if not owned:
                    yield False
                    return

            try:
                yield True
            finally:
                if redis_lock is not None:
                    try:
                        await redis_lock.release()
                    except (RedisError, OSError) as e:
                        # Lock expired under us or Redis went away; the TTL cleans up
                        redis_lock_errors.inc()
                        logger.warning("sweep_lock_release_failed", job=self.name, error=str(e))


class Scheduler:
    """Owns the background loops. start() from the app lifespan, stop() on shutdown."""

    def __init__(
        self,
        tasks: list[ScheduledTask],
        redis_client: Optional[redis.Redis] = None,
        lock_ttl: int = 900,
    ):
        self.tasks = tasks
        self._locks = {task.name: SweepLock(task.name, redis_client, lock_ttl) for task in tasks}
        self._running: list[asyncio.Task] = []

    async def run_once(self, task: ScheduledTask) -> Optional[int]:
        """Run one job now. Returns its count, or None if skipped or failed."""
        with log_context(job=task.name):
            return await self._run_locked(task)

    async def _run_locked(self, task: ScheduledTask) -> Optional[int]:
        async with self._locks[task.name].hold() as acquired:
            if not acquired:
                record_sweep_run(task.name, "skipped")
                logger.info("sweep_skipped", reason="lock_held")
                return None

            start = time.perf_counter()
            try:
                count = await task.func()
            except Exception:
                record_sweep_run(task.name, "error")
                logger.exception("sweep_failed")
                return None
            finally:
                sweep_duration.labels(job=task.name).observe(time.perf_counter() - start)

        record_sweep_run(task.name, "ok")
        logger.info("sweep_finished", count=count)
        return count

    async def _loop(self, task: ScheduledTask) -> None:
        while True:
            await asyncio.sleep(task.interval)
            await self.run_once(task)

    def start(self) -> None:
        if self._running:
            return
        for task in self.tasks:
            self._running.append(asyncio.create_task(self._loop(task), name=f"scheduler:{task.name}"))
        logger.info(
            "scheduler_started",
            jobs={task.name: task.interval for task in self.tasks},
        )

    async def stop(self) -> None:
        for running in self._running:
            running.cancel()
        await asyncio.gather(*self._running, return_exceptions=True)
        self._running.clear()
        logger.info("scheduler_stopped")

    @property
    def running(self) -> bool:
        return bool(self._running)
