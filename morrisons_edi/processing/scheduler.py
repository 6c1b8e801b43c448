"""
Sync runner.

One run lists the paid invoices issued since the previous run and dispatches
them one after another. Runs never overlap: a trigger that fires while a run
is active is skipped, unless the active run has exceeded the lock timeout.
Failed runs are retried with exponential backoff; the error category decides
the recovery action.
"""
import logging
import threading
import time
from collections import deque
from datetime import datetime, timedelta
from typing import Any, Callable, Deque, Dict, List, Optional

from pydantic import BaseModel

from morrisons_edi.core.models import Invoice
from morrisons_edi.processing.pipeline import DispatchPipeline
from morrisons_edi.utils.decorators import measure_performance

logger = logging.getLogger(__name__)

LOCK_TIMEOUT = timedelta(minutes=10)
MAX_RUN_RETRIES = 3
BASE_RETRY_DELAY = 1.0
MAX_RETRY_DELAY = 30.0
MAX_BACKOFF_MULTIPLIER = 8.0
MAX_CONSECUTIVE_FAILURES = 5
HISTORY_SIZE = 100
SUCCESS_STALE_AFTER = timedelta(hours=2)


class ErrorCategory(BaseModel):
    """Classification of a run failure"""
    category: str  # auth, permission, rate_limit, network, server, unknown
    status: str
    severity: str  # high, medium


def categorize_error(error: BaseException) -> ErrorCategory:
    """Classify an error by its message"""
    message = str(error).lower()

    if '401' in message or 'unauthorized' in message or 'auth' in message:
        return ErrorCategory(category='auth', status='Authentication failed', severity='high')
    if '403' in message or 'forbidden' in message:
        return ErrorCategory(category='permission', status='Access denied', severity='high')
    if '429' in message or 'rate limit' in message:
        return ErrorCategory(category='rate_limit', status='Rate limited', severity='medium')
    if 'network' in message or 'connection' in message or 'timeout' in message:
        return ErrorCategory(category='network', status='Network error', severity='medium')
    if '500' in message or '502' in message or '503' in message:
        return ErrorCategory(category='server', status='Server error', severity='medium')
    return ErrorCategory(category='unknown', status='Failed', severity='high')


class RunRecord(BaseModel):
    """Outcome of one run"""
    timestamp: datetime
    success: bool
    execution_time_ms: float = 0.0
    dispatched: int = 0
    skipped: int = 0
    error: Optional[str] = None
    category: Optional[str] = None


class SyncRunner:
    """
    Periodic invoice sync.

    Args:
        client: Sales API client (``list_invoices``, ``reset_session``)
        pipeline: Dispatch pipeline for single invoices
        state: State store holding the last run date
        registry: Processed-invoice registry; processed invoices are skipped
        store_lookup: Store lookup table, or a callable returning one
        skip_processed: Skip invoices already in the registry
    """

    def __init__(self,
                 client,
                 pipeline: DispatchPipeline,
                 state,
                 registry=None,
                 store_lookup: Any = None,
                 skip_processed: bool = True,
                 max_retries: int = MAX_RUN_RETRIES,
                 base_delay: float = BASE_RETRY_DELAY,
                 max_delay: float = MAX_RETRY_DELAY,
                 lock_timeout: timedelta = LOCK_TIMEOUT,
                 sleep: Callable[[float], None] = time.sleep,
                 clock: Callable[[], datetime] = datetime.now):
        self.client = client
        self.pipeline = pipeline
        self.state = state
        self.registry = registry
        self.store_lookup = store_lookup
        self.skip_processed = skip_processed
        self.max_retries = max_retries
        self.base_delay = base_delay
        self.max_delay = max_delay
        self.lock_timeout = lock_timeout
        self._sleep = sleep
        self._clock = clock

        self._guard = threading.Lock()
        self._active = False
        self._started_at: Optional[datetime] = None
        self._generation = 0

        self.consecutive_failures = 0
        self.backoff_multiplier = 1.0
        self.history: Deque[RunRecord] = deque(maxlen=HISTORY_SIZE)
        self.last_success_time: Optional[datetime] = None
        self.last_failure_time: Optional[datetime] = None

    # Run lock

    def _acquire(self) -> Optional[int]:
        """Take the run lock; returns the holder's token, or None if a run is active"""
        with self._guard:
            if self._active:
                if self._started_at and self._clock() - self._started_at > self.lock_timeout:
                    logger.warning(
                        f"Run active since {self._started_at.isoformat()} exceeded "
                        f"{self.lock_timeout}, resetting lock"
                    )
                else:
                    return None
            self._generation += 1
            self._active = True
            self._started_at = self._clock()
            return self._generation

    def _release(self, token: int):
        """Release only if ``token`` still holds the lock"""
        with self._guard:
            if not self._active or token != self._generation:
                logger.warning(f"Run {token} finished after its lock was taken over")
                return
            self._active = False
            self._started_at = None

    @property
    def is_active(self) -> bool:
        with self._guard:
            return self._active

    def force_reset_lock(self) -> bool:
        """Clear the run lock by hand; returns False if no run was active"""
        with self._guard:
            if not self._active:
                return False
            logger.warning("Manually resetting run lock")
            self._active = False
            self._started_at = None
            return True

    # Running

    def run_once(self) -> Optional[RunRecord]:
        """
        Execute one run. Returns None when skipped because another run holds
        the lock; failures are recorded and returned, not raised.
        """
        token = self._acquire()
        if token is None:
            logger.debug("Run already active, skipping trigger")
            return None

        started = time.perf_counter()
        try:
            if self.consecutive_failures > 2:
                self._reset_client()

            dispatched, skipped = self._execute_with_retry()
            elapsed_ms = (time.perf_counter() - started) * 1000
            return self._record_success(elapsed_ms, dispatched, skipped)

        except Exception as e:
            elapsed_ms = (time.perf_counter() - started) * 1000
            category = categorize_error(e)
            logger.error(f"Run failed ({category.category}): {str(e)}")
            record = self._record_failure(str(e), elapsed_ms, category.category)
            self._recover(category)
            return record

        finally:
            self._release(token)

    def retry_delay(self, attempt: int) -> float:
        """Delay in seconds before retry ``attempt`` (1-based)"""
        delay = self.base_delay * (2 ** (attempt - 1)) * self.backoff_multiplier
        return min(delay, self.max_delay)

    def _execute_with_retry(self):
        attempt = 0
        while True:
            try:
                return self._sync()
            except Exception as e:
                attempt += 1
                if attempt > self.max_retries:
                    raise
                delay = self.retry_delay(attempt)
                logger.warning(
                    f"Run attempt {attempt} failed: {str(e)}; "
                    f"retry {attempt}/{self.max_retries} in {delay:.1f}s"
                )
                self._sleep(delay)

    def _current_lookup(self) -> Any:
        return self.store_lookup() if callable(self.store_lookup) else self.store_lookup

    @measure_performance
    def _sync(self):
        """List invoices since the last run and dispatch them in order"""
        since = self.state.last_run_date()
        logger.info(f"Getting invoices since: {since}")

        invoices = self.client.list_invoices(since)

        run_started = self._clock().isoformat(timespec='seconds')
        self.state.set_last_run_date(run_started)
        logger.info(f"Saved last run date: {run_started}")

        self.pipeline.ledger.sweep_stuck()
        if self.registry is not None:
            self.registry.cleanup()

        lookup = self._current_lookup()
        dispatched = skipped = 0

        for raw in invoices:
            invoice = raw if isinstance(raw, Invoice) else Invoice.model_validate(raw)
            invoice_id = invoice.dispatch_id

            if (self.skip_processed and self.registry is not None
                    and self.registry.is_processed(invoice_id)):
                logger.info(f"Invoice {invoice_id} already processed, skipping")
                skipped += 1
                continue

            self.pipeline.process(invoice_id, invoice, lookup)
            dispatched += 1

        logger.info(f"Run complete: {dispatched} dispatched, {skipped} skipped")
        return dispatched, skipped

    # Bookkeeping

    def _record_success(self, elapsed_ms: float, dispatched: int, skipped: int) -> RunRecord:
        record = RunRecord(timestamp=self._clock(), success=True,
                           execution_time_ms=elapsed_ms,
                           dispatched=dispatched, skipped=skipped)
        self.history.append(record)
        self.last_success_time = record.timestamp
        self.consecutive_failures = 0
        self.backoff_multiplier = 1.0
        return record

    def _record_failure(self, message: str, elapsed_ms: float, category: str) -> RunRecord:
        record = RunRecord(timestamp=self._clock(), success=False,
                           execution_time_ms=elapsed_ms,
                           error=message, category=category)
        self.history.append(record)
        self.last_failure_time = record.timestamp
        self.consecutive_failures += 1

        if self.consecutive_failures >= MAX_CONSECUTIVE_FAILURES:
            self.backoff_multiplier = min(self.backoff_multiplier * 2, MAX_BACKOFF_MULTIPLIER)
            logger.error(
                f"Run has failed {self.consecutive_failures} times in a row. "
                f"Please check credentials and network."
            )
        return record

    def _reset_client(self):
        reset = getattr(self.client, 'reset_session', None)
        if reset is not None:
            reset()

    def _recover(self, category: ErrorCategory):
        if category.category == 'auth':
            self._reset_client()
            if self.consecutive_failures > 3:
                logger.warning("Repeated authentication failures - check credentials manually")
        elif category.category == 'rate_limit':
            self.backoff_multiplier = min(self.backoff_multiplier * 1.5, MAX_BACKOFF_MULTIPLIER)

    def statistics(self) -> Dict[str, Any]:
        runs = list(self.history)
        successes = [r for r in runs if r.success]
        return {
            'totalRuns': len(runs),
            'successfulRuns': len(successes),
            'failedRuns': len(runs) - len(successes),
            'successRate': round(len(successes) / len(runs) * 100, 1) if runs else 0.0,
            'averageExecutionMs': (sum(r.execution_time_ms for r in successes) / len(successes)
                                   if successes else 0.0),
            'lastExecutionMs': runs[-1].execution_time_ms if runs else 0.0,
            'lastSuccessTime': self.last_success_time,
            'lastFailureTime': self.last_failure_time,
            'consecutiveFailures': self.consecutive_failures,
            'backoffMultiplier': self.backoff_multiplier,
            'isActive': self.is_active,
        }

    def health(self) -> Dict[str, Any]:
        now = self._clock()
        issues: List[str] = []
        runs = list(self.history)

        if len(runs) > 5:
            failure_rate = sum(1 for r in runs if not r.success) / len(runs)
            if failure_rate > 0.5:
                issues.append(f"High failure rate: {failure_rate * 100:.1f}%")

        if self.consecutive_failures >= 3:
            issues.append(f"{self.consecutive_failures} consecutive failures")

        if self.last_success_time and now - self.last_success_time > SUCCESS_STALE_AFTER:
            issues.append('No successful runs in over 2 hours')

        with self._guard:
            started = self._started_at if self._active else None
        if started and now - started > self.lock_timeout:
            issues.append('Processing appears stuck')

        return {
            'isHealthy': not issues,
            'issues': issues,
            'stats': self.statistics(),
        }

    def run_forever(self, interval_seconds: float, stop_event: Optional[threading.Event] = None):
        """Trigger a run every ``interval_seconds`` until ``stop_event`` is set"""
        stop_event = stop_event or threading.Event()
        logger.info(f"Scheduler started, interval {interval_seconds}s")
        while not stop_event.is_set():
            self.run_once()
            stop_event.wait(interval_seconds)
        logger.info("Scheduler stopped")
