"""Morrisons EDI - Utilities Package"""

from morrisons_edi.utils.decorators import (
    audit_log,
    measure_performance,
    retry_on_failure,
)

__all__ = [
    'audit_log',
    'measure_performance',
    'retry_on_failure',
]
