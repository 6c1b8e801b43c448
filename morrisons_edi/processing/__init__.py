"""Morrisons EDI - Processing Package"""

from morrisons_edi.processing.ledger import ProcessingLedger
from morrisons_edi.processing.pipeline import DispatchPipeline
from morrisons_edi.processing.scheduler import SyncRunner, categorize_error

__all__ = ['ProcessingLedger', 'DispatchPipeline', 'SyncRunner', 'categorize_error']
