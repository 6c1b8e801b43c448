"""Morrisons EDI - Persisted state, registry and credentials"""

from morrisons_edi.storage.state import StateStore, StateStoreError
from morrisons_edi.storage.registry import ProcessedInvoiceRegistry
from morrisons_edi.storage.credentials import (
    ApiCredentials,
    CredentialError,
    CredentialStore,
    FtpCredentials,
)

__all__ = [
    'StateStore',
    'StateStoreError',
    'ProcessedInvoiceRegistry',
    'ApiCredentials',
    'CredentialError',
    'CredentialStore',
    'FtpCredentials',
]
