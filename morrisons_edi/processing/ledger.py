"""
Processing ledger.

Tracks every processing attempt of every invoice as a ProcessingResult with
five ordered steps. The dispatch pipeline drives the transitions; operators
retry, edit, dismiss and clear entries. Observers are notified of each change.
"""
import logging
import threading
from datetime import datetime, timedelta
from typing import Callable, Dict, Iterable, List, Optional

from morrisons_edi.core.models import (
    ERROR,
    NOT_ATTEMPTED,
    PENDING,
    PROCESSING,
    SUCCESS,
    ProcessingResult,
    TransmissionResult,
    ValidationSummary,
)

logger = logging.getLogger(__name__)

MAX_RETRIES = 3
STUCK_TIMEOUT = timedelta(minutes=10)
STUCK_MESSAGE = 'Processing was reset due to stuck state'

# Result categories
CATEGORY_SUCCESS = 'success'
CATEGORY_ERROR = 'error'
CATEGORY_MANUAL = 'manual'
CATEGORIES = (CATEGORY_SUCCESS, CATEGORY_ERROR, CATEGORY_MANUAL)

Observer = Callable[[str, ProcessingResult], None]


def result_category(result: ProcessingResult) -> str:
    """Manual intervention takes precedence over the processing outcome"""
    if result.is_manually_edited or result.manual_transmission_status == SUCCESS:
        return CATEGORY_MANUAL
    if result.status == SUCCESS:
        return CATEGORY_SUCCESS
    return CATEGORY_ERROR


class ProcessingLedger:
    """
    In-memory ledger of processing attempts, safe to share between threads.

    Attempts are keyed by ``{invoice_id}_{start milliseconds}``. Step updates
    address an invoice id and land on its most recent attempt still in
    ``processing``; updates for unknown invoices or steps are logged and ignored.

    Args:
        max_retries: Operator retries allowed per invoice
        stuck_timeout: Age after which a ``processing`` attempt is reclaimed
        purge_previous_attempts: Drop finished attempts of an invoice when a
            new attempt starts, keeping one entry per invoice
        clock: Time source
    """

    def __init__(self,
                 max_retries: int = MAX_RETRIES,
                 stuck_timeout: timedelta = STUCK_TIMEOUT,
                 purge_previous_attempts: bool = True,
                 clock: Callable[[], datetime] = datetime.now):
        self.max_retries = max_retries
        self.stuck_timeout = stuck_timeout
        self.purge_previous_attempts = purge_previous_attempts
        self._clock = clock

        self._results: Dict[str, ProcessingResult] = {}
        self._retry_attempts: Dict[str, int] = {}
        self._observers: List[Observer] = []
        self._sequence = 0
        self._lock = threading.RLock()

    # Observers

    def subscribe(self, observer: Observer) -> Callable[[], None]:
        """Register ``observer(event, result)``; returns an unsubscribe callable"""
        with self._lock:
            self._observers.append(observer)

        def unsubscribe():
            with self._lock:
                if observer in self._observers:
                    self._observers.remove(observer)

        return unsubscribe

    def _notify(self, event: str, result: ProcessingResult):
        with self._lock:
            observers = list(self._observers)
        for observer in observers:
            try:
                observer(event, result)
            except Exception:
                logger.exception(f"Ledger observer failed on {event} for {result.unique_key}")

    # Lookup

    def _latest(self, invoice_id: str, status: Optional[str] = None) -> Optional[ProcessingResult]:
        candidates = [
            r for r in self._results.values()
            if r.invoice_id == invoice_id and (status is None or r.status == status)
        ]
        if not candidates:
            return None
        return max(candidates, key=lambda r: (r.start_time, r.sequence))

    def latest(self, invoice_id, status: Optional[str] = None) -> Optional[ProcessingResult]:
        """Most recent attempt for an invoice, optionally restricted to a status"""
        with self._lock:
            return self._latest(str(invoice_id), status)

    def get(self, unique_key: str) -> Optional[ProcessingResult]:
        with self._lock:
            return self._results.get(unique_key)

    def results(self, categories: Optional[Iterable[str]] = None) -> List[ProcessingResult]:
        """All attempts in start order, optionally filtered by category"""
        with self._lock:
            ordered = sorted(self._results.values(), key=lambda r: (r.start_time, r.sequence))
        if categories is None:
            return ordered
        wanted = set(categories)
        return [r for r in ordered if result_category(r) in wanted]

    def __len__(self) -> int:
        with self._lock:
            return len(self._results)

    @staticmethod
    def category(result: ProcessingResult) -> str:
        return result_category(result)

    # Transitions

    def start(self, invoice_id, invoice_data=None) -> ProcessingResult:
        """Create a new attempt; earlier attempts are kept unless purging is on"""
        invoice_id = str(invoice_id)
        with self._lock:
            if self.purge_previous_attempts:
                self._purge_finished(invoice_id)

            now = self._clock()
            self._sequence += 1
            unique_key = f"{invoice_id}_{int(now.timestamp() * 1000)}"
            if unique_key in self._results:
                unique_key = f"{unique_key}_{self._sequence}"

            result = ProcessingResult(
                invoice_id=invoice_id,
                unique_key=unique_key,
                invoice_data=invoice_data,
                start_time=now,
                sequence=self._sequence,
            )
            self._results[unique_key] = result

        logger.info(f"Started processing for invoice {invoice_id} with key {unique_key}")
        self._notify('start', result)
        return result

    def _purge_finished(self, invoice_id: str):
        stale = [
            key for key, r in self._results.items()
            if r.invoice_id == invoice_id and r.status != PROCESSING
        ]
        for key in stale:
            logger.debug(f"Removing previous attempt {key} for invoice {invoice_id}")
            del self._results[key]
        if stale:
            self._retry_attempts.pop(invoice_id, None)

    def update_step(self, invoice_id, step_id: str, status: str,
                    error: Optional[str] = None,
                    data=None,
                    warning: Optional[str] = None) -> Optional[ProcessingResult]:
        """
        Set one step of the invoice's active attempt.

        An error also fails the attempt and marks every later step
        not-attempted. The attempt succeeds once every step has succeeded.
        """
        invoice_id = str(invoice_id)
        with self._lock:
            result = self._latest(invoice_id, PROCESSING)
            if result is None:
                logger.warning(f"No processing result found for invoice {invoice_id} and step {step_id}")
                return None

            index = next((i for i, s in enumerate(result.steps) if s.id == step_id), None)
            if index is None:
                logger.warning(f"Step {step_id} not found for invoice {invoice_id}")
                return None

            if any(s.status == ERROR for s in result.steps[:index]):
                logger.warning(
                    f"Ignoring {status} for step {step_id} of invoice {invoice_id}: "
                    f"an earlier step failed"
                )
                return None

            step = result.steps[index]
            step.status = status
            if status in (SUCCESS, ERROR):
                step.completed_at = self._clock()

            if status == ERROR:
                step.error = error
                result.status = ERROR
                result.error = error
                result.completed_at = step.completed_at
                # failure propagates forward
                for later in result.steps[index + 1:]:
                    later.status = NOT_ATTEMPTED

            elif status == SUCCESS:
                step.error = None
                step.warning = warning
                step.data = data
                if step_id == 'edi' and data is not None:
                    result.edi_payload = data
                if all(s.status == SUCCESS for s in result.steps):
                    result.status = SUCCESS
                    result.completed_at = step.completed_at

        self._notify('step', result)
        return result

    def complete(self, invoice_id, payload: Optional[str]) -> Optional[ProcessingResult]:
        """Mark the active attempt successful, completing any open steps"""
        invoice_id = str(invoice_id)
        with self._lock:
            result = self._latest(invoice_id, PROCESSING)
            if result is None:
                logger.warning(f"No processing result found for invoice {invoice_id} to complete")
                return None

            now = self._clock()
            for step in result.steps:
                if step.status in (PENDING, PROCESSING):
                    step.status = SUCCESS
                    step.completed_at = now

            result.status = SUCCESS
            result.completed_at = now
            if payload is not None:
                result.edi_payload = payload

        logger.info(f"Invoice {invoice_id} processed successfully")
        self._notify('complete', result)
        return result

    def store_failed_payload(self, invoice_id, payload: str,
                             validation: ValidationSummary) -> Optional[ProcessingResult]:
        """
        Keep a payload that was built with undefined data for operator review.
        The attempt ends in error and the remaining steps are not attempted.
        """
        invoice_id = str(invoice_id)
        with self._lock:
            result = self._latest(invoice_id, PROCESSING)
            if result is None:
                logger.warning(f"No processing result found for invoice {invoice_id} to store failed EDI")
                return None

            now = self._clock()
            for step in result.steps:
                if step.status in (PENDING, PROCESSING):
                    step.status = NOT_ATTEMPTED

            result.edi_payload = payload
            result.validation = validation
            result.status = ERROR
            result.completed_at = now
            result.error = f"EDI validation failed: {validation.invalid_field_count} undefined fields"

        logger.warning(f"Invoice {invoice_id} held for review: {result.error}")
        self._notify('hold', result)
        return result

    def fail(self, invoice_id, step_id: str, message: str) -> Optional[ProcessingResult]:
        """Fail the active attempt at ``step_id``"""
        result = self.update_step(invoice_id, step_id, ERROR, error=message)
        if result is not None:
            logger.error(f"Invoice {invoice_id} failed at step {step_id}: {message}")
        return result

    def retry(self, invoice_id) -> Optional[ProcessingResult]:
        """
        Reopen the latest failed attempt of an invoice.

        Failed and not-attempted steps go back to pending. Returns None when
        the retry limit is reached or the invoice has no failed attempt.
        """
        invoice_id = str(invoice_id)
        with self._lock:
            retries = self._retry_attempts.get(invoice_id, 0)
            if retries >= self.max_retries:
                logger.warning(f"Maximum retries ({self.max_retries}) reached for invoice {invoice_id}")
                return None

            result = self._latest(invoice_id, ERROR)
            if result is None:
                logger.warning(f"No failed result found for invoice {invoice_id} to retry")
                return None

            self._retry_attempts[invoice_id] = retries + 1

            result.status = PROCESSING
            result.error = None
            result.completed_at = None
            for step in result.steps:
                if step.status in (ERROR, NOT_ATTEMPTED):
                    step.status = PENDING
                    step.error = None

        logger.info(f"Retrying invoice {invoice_id} (attempt {retries + 1}/{self.max_retries})")
        self._notify('retry', result)
        return result

    def retry_count(self, invoice_id) -> int:
        with self._lock:
            return self._retry_attempts.get(str(invoice_id), 0)

    def dismiss(self, unique_key: str) -> bool:
        with self._lock:
            result = self._results.pop(unique_key, None)
            if result is None:
                logger.warning(f"Result {unique_key} not found for dismissal")
                return False
            self._retry_attempts.pop(result.invoice_id, None)

        logger.info(f"Dismissed result for invoice {result.invoice_id}")
        self._notify('dismiss', result)
        return True

    def clear(self, categories: Optional[Iterable[str]] = None) -> int:
        """Remove every attempt, or only those in the given categories"""
        with self._lock:
            doomed = self.results(categories)
            for result in doomed:
                del self._results[result.unique_key]
                self._retry_attempts.pop(result.invoice_id, None)

        logger.info(f"Cleared {len(doomed)} processing results")
        for result in doomed:
            self._notify('dismiss', result)
        return len(doomed)

    def sweep_stuck(self, now: Optional[datetime] = None) -> int:
        """Fail attempts that have been processing longer than the timeout"""
        now = now or self._clock()
        swept = []
        with self._lock:
            for result in self._results.values():
                if result.status != PROCESSING:
                    continue
                if now - result.start_time <= self.stuck_timeout:
                    continue

                logger.warning(f"Found stuck processing result, cleaning up: {result.unique_key}")
                failed = False
                for step in result.steps:
                    if failed:
                        step.status = NOT_ATTEMPTED
                    elif step.status in (PENDING, PROCESSING):
                        step.status = ERROR
                        step.error = STUCK_MESSAGE
                        step.completed_at = now
                        failed = True

                result.status = ERROR
                result.error = STUCK_MESSAGE
                result.completed_at = now
                swept.append(result)

        if swept:
            logger.info(f"Cleaned up {len(swept)} stuck processing results")
        for result in swept:
            self._notify('step', result)
        return len(swept)

    # Manual remediation

    def save_edit(self, unique_key: str, payload: str) -> Optional[ProcessingResult]:
        with self._lock:
            result = self._results.get(unique_key)
            if result is None:
                logger.warning(f"No result found for {unique_key}")
                return None
            result.edi_payload = payload
            result.is_manually_edited = True
            result.last_edited_at = self._clock()

        logger.info(f"EDI payload saved for invoice {result.invoice_id}")
        self._notify('edit', result)
        return result

    def begin_manual_transmission(self, unique_key: str) -> Optional[ProcessingResult]:
        with self._lock:
            result = self._results.get(unique_key)
            if result is None:
                logger.warning(f"No result found for {unique_key}")
                return None
            result.manual_transmission_status = PROCESSING
            result.manual_transmission_error = None
            result.manual_transmission_started = self._clock()
            result.manual_transmission_completed = None

        self._notify('manual', result)
        return result

    def finish_manual_transmission(self, unique_key: str,
                                   transmission: TransmissionResult) -> Optional[ProcessingResult]:
        with self._lock:
            result = self._results.get(unique_key)
            if result is None:
                logger.warning(f"No result found for {unique_key}")
                return None
            result.manual_transmission_completed = self._clock()
            result.last_transmission = transmission
            if transmission.success:
                result.manual_transmission_status = SUCCESS
                result.manual_transmission_error = None
            else:
                result.manual_transmission_status = ERROR
                result.manual_transmission_error = transmission.error or 'Manual transmission failed'

        self._notify('manual', result)
        return result

    # Reporting

    def statistics(self) -> Dict[str, object]:
        with self._lock:
            results = list(self._results.values())

        total = len(results)
        counts = {category: 0 for category in CATEGORIES}
        for result in results:
            counts[result_category(result)] += 1

        return {
            'total': total,
            'successful': counts[CATEGORY_SUCCESS],
            'failed': counts[CATEGORY_ERROR],
            'manual': counts[CATEGORY_MANUAL],
            'processing': sum(1 for r in results if r.status == PROCESSING),
            'successRate': round(counts[CATEGORY_SUCCESS] / total * 100, 1) if total else 0.0,
        }
