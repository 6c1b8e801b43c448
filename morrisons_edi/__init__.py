"""
Morrisons EDI Dispatcher

Builds EDIFACT INVOIC interchanges for paid sales invoices, holds documents
with missing data for review and delivers the rest to the trading partner.
"""

__version__ = '1.0.0'
__license__ = 'MIT'

from morrisons_edi.core import (
    BuildResult,
    EDIConfig,
    Invoice,
    InvoiceDocumentBuilder,
    ProcessingResult,
    ValidationSummary,
    load_store_lookup,
)

from morrisons_edi.processing import (
    DispatchPipeline,
    ProcessingLedger,
    SyncRunner,
)

from morrisons_edi.storage import (
    ProcessedInvoiceRegistry,
    StateStore,
)

__all__ = [
    'BuildResult',
    'EDIConfig',
    'Invoice',
    'InvoiceDocumentBuilder',
    'ProcessingResult',
    'ValidationSummary',
    'load_store_lookup',
    'DispatchPipeline',
    'ProcessingLedger',
    'SyncRunner',
    'ProcessedInvoiceRegistry',
    'StateStore',
]
