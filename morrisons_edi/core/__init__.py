"""Morrisons EDI - Core Package"""

from morrisons_edi.core.models import (
    BuildResult,
    EDIConfig,
    Invoice,
    LineItem,
    ProcessingResult,
    SaleOrder,
    StoreLookupRow,
    ValidationResult,
    ValidationSummary,
)
from morrisons_edi.core.parsers import StoreLookup, load_invoice_bundle, load_store_lookup
from morrisons_edi.core.validators import SENTINEL, ValidationTracker, sanitize
from morrisons_edi.core.builder import InvoiceDocumentBuilder

__all__ = [
    'BuildResult',
    'EDIConfig',
    'Invoice',
    'LineItem',
    'ProcessingResult',
    'SaleOrder',
    'StoreLookupRow',
    'ValidationResult',
    'ValidationSummary',
    'StoreLookup',
    'load_invoice_bundle',
    'load_store_lookup',
    'SENTINEL',
    'ValidationTracker',
    'sanitize',
    'InvoiceDocumentBuilder',
]
