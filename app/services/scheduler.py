from __future__ import annotations

import logging
import random
import threading
import time
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from typing import Callable

from app.config import settings
from app.services.sync_service import SyncResult, SyncType, run_sync


logger = logging.getLogger(__name__)

RATE_LIMIT_MARKERS = ('rate limit', 'too many requests', 'quota exceeded')
RATE_LIMIT_BASE_DELAY_SECONDS = 60.0
RATE_LIMIT_MAX_JITTER_SECONDS = 10.0
MAX_BACKOFF_SECONDS = 30.0


def _now() -> datetime:
    return datetime.now(tz=timezone.utc)


@dataclass
class JobStats:
    total_syncs: int = 0
    successful_syncs: int = 0
    failed_syncs: int = 0
    last_sync: datetime | None = None
    last_success: datetime | None = None
    last_failure: datetime | None = None
    currently_running: bool = False


@dataclass
class ScheduledJob:
    name: str
    interval_seconds: float
    sync_types: tuple[SyncType, ...]
    next_run_at: float = field(default=0.0)


def is_rate_limited(result: SyncResult) -> bool:
    if result.status_code == 429:
        return True
    message = (result.error or result.message or '').lower()
    return any(marker in message for marker in RATE_LIMIT_MARKERS)


def backoff_delay(attempt: int) -> float:
    """Delay before retry number `attempt` (1-based): 1s, 2s, 4s ... capped at 30s."""
    return min(float(2 ** (attempt - 1)), MAX_BACKOFF_SECONDS)


class SyncScheduler:
    def __init__(
        self,
        *,
        runner: Callable[[SyncType], SyncResult] = run_sync,
        customer_interval_seconds: float = 3600,
        catalog_interval_seconds: float = 600,
        initial_delay_seconds: float = 30,
        initial_gap_seconds: float = 5,
        max_retries: int = 3,
        sleep: Callable[[float], None] | None = None,
        clock: Callable[[], float] = time.monotonic,
        jitter: Callable[[], float] = random.random,
    ) -> None:
        self._runner = runner
        self.max_retries = max_retries
        self.initial_delay_seconds = initial_delay_seconds
        self.initial_gap_seconds = initial_gap_seconds
        self._sleep = sleep
        self._clock = clock
        self._jitter = jitter

        self.jobs = [
            ScheduledJob('customers', customer_interval_seconds, (SyncType.CUSTOMERS,)),
            ScheduledJob('catalog', catalog_interval_seconds, (SyncType.PRODUCTS, SyncType.AVAILABILITY)),
        ]
        self.stats: dict[SyncType, JobStats] = {
            SyncType.CUSTOMERS: JobStats(),
            SyncType.PRODUCTS: JobStats(),
            SyncType.AVAILABILITY: JobStats(),
        }
        self._lock = threading.Lock()
        self._stop_event = threading.Event()
        self._thread: threading.Thread | None = None
        self.is_running = False
        self.started_at: datetime | None = None

    @classmethod
    def from_settings(cls) -> SyncScheduler:
        return cls(
            customer_interval_seconds=settings.customer_sync_interval_minutes * 60,
            catalog_interval_seconds=settings.catalog_sync_interval_minutes * 60,
            initial_delay_seconds=settings.initial_sync_delay_seconds,
        )

    def start(self) -> None:
        if self.is_running:
            logger.warning('Scheduler already running')
            return

        logger.info('Starting ERP sync scheduler')
        self._stop_event.clear()
        self._thread = threading.Thread(target=self._run_loop, name='erp-sync-scheduler', daemon=True)
        self.is_running = True
        self.started_at = _now()
        self._thread.start()
        for job in self.jobs:
            logger.info('%s sync: every %.0f minutes', job.name.capitalize(), job.interval_seconds / 60)

    def shutdown(self, timeout: float = 10.0) -> None:
        if not self.is_running:
            logger.warning('Scheduler not running')
            return

        logger.info('Shutting down ERP sync scheduler')
        self._stop_event.set()
        if self._thread and self._thread is not threading.current_thread():
            self._thread.join(timeout=timeout)
        self._thread = None
        self.is_running = False
        logger.info('ERP sync scheduler stopped')

    def _wait(self, seconds: float) -> bool:
        """Sleep for `seconds`; False when shutdown was requested."""
        if seconds <= 0:
            return not self._stop_event.is_set()
        if self._sleep is not None:
            self._sleep(seconds)
            return not self._stop_event.is_set()
        return not self._stop_event.wait(seconds)

    def _run_loop(self) -> None:
        if not self._wait(self.initial_delay_seconds):
            return
        try:
            self.run_initial_sync()
        except Exception:
            logger.exception('Initial sync aborted')

        start = self._clock()
        for job in self.jobs:
            job.next_run_at = start + job.interval_seconds

        while not self._stop_event.is_set():
            try:
                now = self._clock()
                for job in self.jobs:
                    if now >= job.next_run_at:
                        try:
                            self._run_job(job)
                        finally:
                            job.next_run_at = self._clock() + job.interval_seconds
            except Exception:
                logger.exception('Unexpected error in scheduler loop')
            next_due = min(job.next_run_at for job in self.jobs)
            self._stop_event.wait(max(next_due - self._clock(), 0.0))

    def _run_job(self, job: ScheduledJob) -> None:
        for sync_type in job.sync_types:
            if self._stop_event.is_set():
                return
            try:
                self.execute_with_retry(sync_type)
            except Exception:
                logger.exception('Unexpected error in %s sync job', sync_type.value)

    def run_initial_sync(self) -> None:
        logger.info('Running initial system sync')
        order = (SyncType.CUSTOMERS, SyncType.PRODUCTS, SyncType.AVAILABILITY)
        for idx, sync_type in enumerate(order):
            if idx > 0 and not self._wait(self.initial_gap_seconds):
                return
            self.execute_with_retry(sync_type)
        logger.info('Initial sync finished')

    def _tracked_types(self, sync_type: SyncType) -> tuple[SyncType, ...]:
        if sync_type == SyncType.ALL:
            return tuple(self.stats)
        return (sync_type,)

    def _claim(self, sync_types: tuple[SyncType, ...]) -> bool:
        with self._lock:
            busy = [t.value for t in sync_types if self.stats[t].currently_running]
            if busy:
                logger.warning('%s sync already in progress, skipping', ', '.join(busy))
                return False
            for t in sync_types:
                stats = self.stats[t]
                stats.currently_running = True
                stats.total_syncs += 1
                stats.last_sync = _now()
            return True

    def _release(self, sync_types: tuple[SyncType, ...]) -> None:
        with self._lock:
            for t in sync_types:
                self.stats[t].currently_running = False

    def _record_outcome(self, sync_types: tuple[SyncType, ...], success: bool) -> None:
        now = _now()
        for t in sync_types:
            stats = self.stats[t]
            if success:
                stats.successful_syncs += 1
                stats.last_success = now
            else:
                stats.failed_syncs += 1
                stats.last_failure = now

    def _call_runner(self, sync_type: SyncType) -> SyncResult:
        try:
            return self._runner(sync_type)
        except Exception as exc:
            logger.exception('%s sync raised', sync_type.value)
            return SyncResult(
                success=False,
                message=f'{sync_type.value.capitalize()} sync raised an unexpected error',
                error=str(exc) or type(exc).__name__,
            )

    def execute_with_retry(self, sync_type: SyncType) -> bool:
        sync_type = SyncType(sync_type)
        tracked = self._tracked_types(sync_type)
        if not self._claim(tracked):
            return False

        try:
            last_result: SyncResult | None = None
            for attempt in range(self.max_retries + 1):
                if attempt > 0:
                    delay = backoff_delay(attempt)
                    logger.info(
                        'Retrying %s sync in %.0fs (attempt %s/%s)',
                        sync_type.value,
                        delay,
                        attempt + 1,
                        self.max_retries + 1,
                    )
                    if not self._wait(delay):
                        break

                result = self._call_runner(sync_type)
                if result.success:
                    self._record_outcome(tracked, True)
                    logger.info(
                        '%s sync completed: %s (%s records)',
                        sync_type.value,
                        result.message,
                        result.records_processed,
                    )
                    return True

                last_result = result
                logger.warning(
                    '%s sync attempt %s failed: %s',
                    sync_type.value,
                    attempt + 1,
                    result.error or result.message,
                )
                if is_rate_limited(result):
                    delay = self.rate_limit_delay(result)
                    logger.warning('Rate limit detected, waiting %.0fs before retry', delay)
                    if not self._wait(delay):
                        break

            self._record_outcome(tracked, False)
            logger.error(
                '%s sync failed after %s attempts. Last error: %s',
                sync_type.value,
                self.max_retries + 1,
                (last_result.error or last_result.message) if last_result else 'shutdown requested',
            )
            return False
        finally:
            self._release(tracked)

    def rate_limit_delay(self, result: SyncResult) -> float:
        if result.retry_after is not None:
            return float(result.retry_after)
        return RATE_LIMIT_BASE_DELAY_SECONDS + self._jitter() * RATE_LIMIT_MAX_JITTER_SECONDS

    def trigger_sync(self, sync_type: SyncType | str) -> SyncResult:
        """Run one sync now, without retries, sharing the scheduled jobs' running flags."""
        sync_type = SyncType(sync_type)
        logger.info('Manual trigger requested: %s', sync_type.value)
        tracked = self._tracked_types(sync_type)
        if not self._claim(tracked):
            return SyncResult(success=False, message=f'{sync_type.value.capitalize()} sync already running')

        try:
            result = self._call_runner(sync_type)
            self._record_outcome(tracked, result.success)
            return result
        finally:
            self._release(tracked)

    def get_stats(self) -> dict[str, dict]:
        schedules = {
            SyncType.CUSTOMERS: self.jobs[0],
            SyncType.PRODUCTS: self.jobs[1],
            SyncType.AVAILABILITY: self.jobs[1],
        }
        out: dict[str, dict] = {}
        for sync_type, stats in self.stats.items():
            job = schedules[sync_type]
            row = asdict(stats)
            row['job_type'] = sync_type.value
            row['schedule'] = f'Every {job.interval_seconds / 60:.0f} minutes'
            if sync_type == SyncType.AVAILABILITY:
                row['schedule'] += ' (with products)'
            out[sync_type.value] = row
        return out

    def get_health(self) -> dict:
        all_stats = list(self.stats.values())
        total = sum(s.total_syncs for s in all_stats)
        successful = sum(s.successful_syncs for s in all_stats)
        last_activity = max((s.last_sync for s in all_stats if s.last_sync), default=None)
        return {
            'is_running': self.is_running,
            'started_at': self.started_at,
            'total_syncs': total,
            'success_rate': f'{successful / total * 100:.1f}%' if total else '0%',
            'last_activity': last_activity,
        }
