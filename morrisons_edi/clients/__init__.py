"""Morrisons EDI - Upstream API and transport clients"""

from morrisons_edi.clients.api import (
    APIError,
    AuthenticationError,
    RateLimitError,
    StoklyClient,
    TokenBucket,
)
from morrisons_edi.clients.transport import (
    LocalDirectoryTransport,
    Transport,
    TransportError,
    edi_filename,
)

__all__ = [
    'APIError',
    'AuthenticationError',
    'RateLimitError',
    'StoklyClient',
    'TokenBucket',
    'LocalDirectoryTransport',
    'Transport',
    'TransportError',
    'edi_filename',
]
