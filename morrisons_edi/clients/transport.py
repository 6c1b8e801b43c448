"""
Delivery of built interchanges to the trading partner.

A transport takes a filename, the UTF-8 payload and the destination
credentials, and reports a TransmissionResult. It must create the target
directory when missing and confirm the delivered size matches the payload.
"""
import logging
import re
from datetime import datetime
from pathlib import Path
from typing import Any, Optional, Protocol, Union, runtime_checkable

from morrisons_edi.core.models import TransmissionResult
from morrisons_edi.utils.decorators import audit_log, measure_performance

logger = logging.getLogger(__name__)


class TransportError(Exception):
    """Delivery failed before a result could be reported"""
    pass


@runtime_checkable
class Transport(Protocol):
    def transmit(self, filename: str, content: str, credentials: Any) -> TransmissionResult:
        ...


def edi_filename(invoice_id: Any, timestamp: Optional[datetime] = None) -> str:
    """
    ``invoice_{invoiceId}_{timestamp}.edi`` with ``:`` and ``.`` of the ISO
    timestamp replaced so the name is valid on every filesystem.
    """
    timestamp = timestamp or datetime.now()
    stamp = re.sub(r'[:.]', '-', timestamp.isoformat())
    return f"invoice_{invoice_id}_{stamp}.edi"


def _credential(credentials: Any, name: str, default: Any = None) -> Any:
    if credentials is None:
        return default
    if isinstance(credentials, dict):
        return credentials.get(name, default)
    return getattr(credentials, name, default)


class LocalDirectoryTransport:
    """
    Writes interchanges into a local directory.

    Used for dry runs and tests. The destination is ``root`` joined with the
    ``directory`` of the credentials, when one is given.
    """

    protocol = 'LOCAL'

    def __init__(self, root: Union[str, Path]):
        self.root = Path(root)

    def _target_directory(self, credentials: Any) -> Path:
        directory = str(_credential(credentials, 'directory') or '').strip('/\\')
        if '..' in Path(directory).parts:
            raise TransportError(f"Directory {directory!r} is outside the transport root")
        return self.root / directory

    @measure_performance
    @audit_log
    def transmit(self, filename: str, content: str, credentials: Any = None) -> TransmissionResult:
        """
        Write one interchange.

        Raises:
            TransportError: The credential directory leaves the root
        """
        target_dir = self._target_directory(credentials)
        remote_path = target_dir / filename
        payload = content.encode('utf-8')

        try:
            # exist_ok: an existing directory is not an error
            target_dir.mkdir(parents=True, exist_ok=True)
            remote_path.write_bytes(payload)
            uploaded_size = remote_path.stat().st_size

        except OSError as e:
            logger.error(f"Failed to write {remote_path}: {str(e)}")
            return TransmissionResult(
                success=False,
                filename=filename,
                remote_path=str(remote_path),
                size=len(payload),
                protocol=self.protocol,
                error=f"Transmission failed: {str(e)}"
            )

        if uploaded_size != len(payload):
            message = (f"File size mismatch: local={len(payload)} bytes, "
                       f"written={uploaded_size} bytes")
            logger.error(message)
            return TransmissionResult(
                success=False,
                filename=filename,
                remote_path=str(remote_path),
                size=len(payload),
                uploaded_size=uploaded_size,
                protocol=self.protocol,
                error=message
            )

        logger.info(f"Wrote {filename} ({uploaded_size} bytes) to {target_dir}")

        return TransmissionResult(
            success=True,
            filename=filename,
            remote_path=str(remote_path),
            size=len(payload),
            uploaded_size=uploaded_size,
            protocol=self.protocol
        )
