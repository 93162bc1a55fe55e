"""
Periodic driver for MessageSyncJob.

Runs the job on a cron schedule inside the event loop, retries failed runs
with exponential backoff and keeps cumulative run statistics.
"""
import asyncio
import time
from datetime import datetime, timezone
from typing import Awaitable, Callable, Optional

from croniter import croniter
from pydantic import BaseModel

from errors import VectorStoreError
from models import SyncResult, SyncState

DEFAULT_SCHEDULE = "*/5 * * * *"


class SyncStats(BaseModel):
    """Cumulative since process start. Durations are in seconds."""

    last_run_time: Optional[datetime] = None
    last_success_time: Optional[datetime] = None
    consecutive_failures: int = 0
    total_runs: int = 0
    total_successes: int = 0
    # Every failed attempt inside the retry loop
    total_failures: int = 0
    # sync_now calls that gave up after their last retry
    total_failed_runs: int = 0
    average_run_duration: float = 0.0
    last_run_duration: float = 0.0
    min_run_duration: Optional[float] = None
    max_run_duration: float = 0.0
    total_messages_processed: int = 0
    total_batches_processed: int = 0
    last_batch_size: int = 0


class MessageSyncScheduler:
    """
    Args:
        sync_job: The MessageSyncJob to drive
        backoff_base: Seconds before the first retry; doubles on every retry
        on_success: Awaited with the job's SyncState after each successful
            run, e.g. to checkpoint the watermark
    """

    def __init__(
        self,
        sync_job,
        backoff_base: float = 1.0,
        on_success: Optional[Callable[[SyncState], Awaitable[None]]] = None,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.sync_job = sync_job
        self.backoff_base = backoff_base
        self.on_success = on_success
        self.schedule: Optional[str] = None
        self._clock = clock
        self._sleep = sleep
        self._task: Optional[asyncio.Task] = None
        self._lock = asyncio.Lock()
        self._stats = SyncStats()

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self, schedule: str = DEFAULT_SCHEDULE) -> None:
        """
        Arm the periodic trigger. Must be called from inside a running event loop.

        Raises:
            ValueError: schedule is not a valid cron expression
        """
        if not croniter.is_valid(schedule):
            raise ValueError(f"Invalid cron schedule: {schedule}")

        if self.running:
            print("[Scheduler] WARN: Scheduler already running")
            return

        self.schedule = schedule
        self._task = asyncio.get_running_loop().create_task(self._run_forever(schedule))
        print(f"[Scheduler] Message sync scheduler started with schedule: {schedule}")

    async def stop(self) -> None:
        """Cancel the loop and wait for it, including any sync it is running."""
        if self._task is None:
            return
        task, self._task = self._task, None
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
        print("[Scheduler] Message sync scheduler stopped")

    async def _run_forever(self, schedule: str) -> None:
        times = croniter(schedule, datetime.now(timezone.utc))
        while True:
            next_run = times.get_next(datetime)
            delay = (next_run - datetime.now(timezone.utc)).total_seconds()
            await asyncio.sleep(max(delay, 0))
            try:
                await self.sync_now()
            except Exception as e:
                # Already recorded in the stats; the next tick tries again
                print(f"[Scheduler] Scheduled sync failed: {e}")

    async def sync_now(self, max_retries: int = 3) -> SyncResult:
        """
        Run one sync immediately, retrying failures.

        Retry n (starting at 0) waits backoff_base * 2**n seconds. Runs are
        serialized: a manual call during a scheduled run waits for it.

        Raises:
            The last error once max_retries retries have failed
        """
        async with self._lock:
            started = self._clock()
            self._stats.last_run_time = datetime.now(timezone.utc)
            self._stats.total_runs += 1
            print("[Scheduler] Starting message sync...")

            attempt = 0
            while True:
                try:
                    result = await self.sync_job.sync()
                except Exception as e:
                    self._stats.total_failures += 1
                    self._stats.consecutive_failures += 1
                    if attempt < max_retries:
                        backoff = self.backoff_base * (2 ** attempt)
                        print(f"[Scheduler] WARN: Sync attempt {attempt + 1} failed, retrying in {backoff:g}s: {e}")
                        if backoff > 0:
                            await self._sleep(backoff)
                        attempt += 1
                        continue

                    duration = self._clock() - started
                    self._record_failure(duration)
                    print(f"[Scheduler] ERROR: Message sync failed after {attempt} retries in {duration:.2f}s: {e}")
                    raise

                duration = self._clock() - started
                self._record_success(duration, result)
                print(
                    f"[Scheduler] Message sync completed in {duration:.2f}s "
                    f"messages={result.messages_processed} batches={result.total_batches} "
                    f"average_run_duration={self._stats.average_run_duration:.2f}s "
                    f"total_messages={self._stats.total_messages_processed}"
                )
                await self._checkpoint()
                return result

    async def _checkpoint(self) -> None:
        if self.on_success is None:
            return
        try:
            await self.on_success(self.sync_job.get_sync_state())
        except VectorStoreError as e:
            # The in-memory watermark is still correct; the next success saves it
            print(f"[Scheduler] WARN: Failed to checkpoint sync state: {e}")

    def _record_duration(self, duration: float) -> None:
        stats = self._stats
        stats.last_run_duration = duration
        stats.max_run_duration = max(stats.max_run_duration, duration)
        stats.min_run_duration = duration if stats.min_run_duration is None else min(stats.min_run_duration, duration)
        stats.average_run_duration += (duration - stats.average_run_duration) / stats.total_runs

    def _record_success(self, duration: float, result: SyncResult) -> None:
        stats = self._stats
        self._record_duration(duration)
        stats.last_success_time = datetime.now(timezone.utc)
        stats.total_successes += 1
        stats.consecutive_failures = 0
        stats.total_messages_processed += result.messages_processed
        stats.total_batches_processed += result.total_batches
        stats.last_batch_size = result.last_batch_size

    def _record_failure(self, duration: float) -> None:
        self._record_duration(duration)
        self._stats.total_failed_runs += 1

    def get_stats(self) -> SyncStats:
        return self._stats.model_copy()
