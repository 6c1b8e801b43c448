"""
Decorators for audit logging, performance monitoring, and transient-failure retry.
Every invoice that touches the builder or the transport leaves an audit trail.
"""
import functools
import logging
import time
from datetime import datetime
from typing import Callable, Tuple, Type

# Audit trail is kept apart from the application logger
audit_logger = logging.getLogger('morrisons_edi.audit')
perf_logger = logging.getLogger('morrisons_edi.performance')

SLOW_CALL_MS = 5000


def _describe_invoice(args, kwargs) -> str:
    """Best-effort extraction of an invoice identifier from call arguments"""
    if 'invoice_id' in kwargs:
        return str(kwargs['invoice_id'])

    candidates = list(args) + list(kwargs.values())
    for candidate in candidates:
        for attr in ('invoice_id', 'sale_order_nice_id'):
            value = getattr(candidate, attr, None)
            if value not in (None, ''):
                return str(value)

    return "N/A"


def audit_log(func: Callable) -> Callable:
    """
    Decorator that logs entry, exit and failure of invoice-level operations.

    Usage:
        @audit_log
        def build(self, sale_order, invoice, items, store_lookup, config):
            ...
    """
    @functools.wraps(func)
    def wrapper(*args, **kwargs):
        func_name = func.__qualname__
        invoice_id = _describe_invoice(args, kwargs)

        audit_logger.info(
            f"CALL | {func_name} | Invoice: {invoice_id} | "
            f"Timestamp: {datetime.now().isoformat()}"
        )

        try:
            result = func(*args, **kwargs)

            status = "PROCESSED"
            validation = getattr(result, 'validation', None)
            if validation is not None:
                status = "VALID" if validation.is_valid else "UNDEFINED_DATA"
            elif getattr(result, 'success', None) is False:
                status = "FAILED"

            audit_logger.info(
                f"SUCCESS | {func_name} | Invoice: {invoice_id} | "
                f"Status: {status}"
            )

            return result

        except Exception as e:
            audit_logger.error(
                f"FAILURE | {func_name} | Invoice: {invoice_id} | "
                f"Error: {str(e)}"
            )
            raise

    return wrapper


def measure_performance(func: Callable) -> Callable:
    """
    Decorator that times a call on the performance logger.

    Results with a ``processing_time_ms`` field get the elapsed time written
    into it. Calls slower than SLOW_CALL_MS are logged at WARNING.
    """
    @functools.wraps(func)
    def wrapper(*args, **kwargs):
        started = time.perf_counter()
        outcome = "failed"
        try:
            result = func(*args, **kwargs)
            outcome = "completed"
        finally:
            elapsed_ms = (time.perf_counter() - started) * 1000
            level = logging.WARNING if elapsed_ms > SLOW_CALL_MS else logging.DEBUG
            perf_logger.log(level, f"{func.__qualname__} {outcome} in {elapsed_ms:.2f}ms")

        if hasattr(result, 'processing_time_ms'):
            result.processing_time_ms = elapsed_ms
        return result

    return wrapper


def retry_on_failure(max_attempts: int = 3,
                     delay_seconds: float = 1.0,
                     exceptions: Tuple[Type[BaseException], ...] = (Exception,),
                     backoff: float = 2.0):
    """
    Decorator for calls that may fail transiently.

    Only ``exceptions`` are retried; anything else propagates at once. The
    wait grows by ``backoff`` after every failed attempt.

    Usage:
        @retry_on_failure(max_attempts=3, delay_seconds=0.2,
                          exceptions=(requests.ConnectionError,))
        def request(self, method, path):
            ...
    """
    def decorator(func: Callable) -> Callable:
        logger = logging.getLogger(func.__module__)

        @functools.wraps(func)
        def wrapper(*args, **kwargs):
            delay = delay_seconds
            for attempt in range(1, max_attempts + 1):
                try:
                    return func(*args, **kwargs)
                except exceptions as e:
                    if attempt == max_attempts:
                        logger.error(f"{func.__qualname__} gave up after {attempt} attempts: {e}")
                        raise
                    logger.warning(
                        f"{func.__qualname__} attempt {attempt}/{max_attempts} failed: {e}; "
                        f"retrying in {delay:.1f}s"
                    )
                    time.sleep(delay)
                    delay *= backoff

        return wrapper

    return decorator
