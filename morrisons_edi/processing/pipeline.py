"""
Dispatch pipeline.

Drives one invoice through fetch, build, validation gate and transmission,
recording every step in the processing ledger. Also hosts the operator
remediation actions: retry, save an edited payload, and (re)send a payload.
"""
import logging
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional, Protocol

from morrisons_edi.clients.transport import Transport, edi_filename
from morrisons_edi.core.builder import InvoiceDocumentBuilder
from morrisons_edi.core.models import (
    PROCESSING,
    SUCCESS,
    EDIConfig,
    Invoice,
    ProcessingResult,
    TransmissionResult,
)
from morrisons_edi.processing.ledger import ProcessingLedger
from morrisons_edi.storage.state import StateStoreError
from morrisons_edi.utils.decorators import audit_log

logger = logging.getLogger(__name__)


class InvoiceSource(Protocol):
    """Where line items and sale orders come from (the sales API client)"""

    def get_sale_order_items(self, sale_order_id: Any) -> List[Dict[str, Any]]:
        ...

    def get_sale_order(self, sale_order_id: Any) -> Dict[str, Any]:
        ...


def _describe_undefined(validation) -> str:
    fields = ', '.join(f.field for f in validation.invalid_fields)
    return f"{validation.invalid_field_count} undefined fields: {fields}"


class DispatchPipeline:
    """
    Processes invoices one at a time.

    Every exception raised inside a step becomes a failure of that step in
    the ledger; ``process`` itself does not raise for a failing invoice.

    Args:
        source: Supplies line items and sale orders
        builder: Document builder
        transport: Delivers built interchanges
        ledger: Processing ledger to record steps in
        registry: Processed-invoice registry, updated on every confirmed send
        config: EDIConfig, dict, or a callable returning either
        transport_credentials: Callable returning the destination credentials
    """

    def __init__(self,
                 source: InvoiceSource,
                 builder: InvoiceDocumentBuilder,
                 transport: Transport,
                 ledger: ProcessingLedger,
                 registry=None,
                 config: Any = None,
                 transport_credentials: Optional[Callable[[], Any]] = None,
                 clock: Callable[[], datetime] = datetime.now):
        self.source = source
        self.builder = builder
        self.transport = transport
        self.ledger = ledger
        self.registry = registry
        self.config = config
        self.transport_credentials = transport_credentials
        self._clock = clock
        self._store_lookup: Any = None

    def _current_config(self) -> Any:
        config = self.config() if callable(self.config) else self.config
        return config if config is not None else EDIConfig()

    def _credentials(self) -> Any:
        return self.transport_credentials() if self.transport_credentials else None

    @audit_log
    def process(self, invoice_id: Any, invoice: Any, store_lookup: Any = None) -> ProcessingResult:
        """Start a new ledger attempt for the invoice and run it to the end"""
        invoice = invoice if isinstance(invoice, Invoice) else Invoice.model_validate(invoice or {})
        invoice_id = str(invoice_id)
        self._store_lookup = store_lookup

        self.ledger.start(invoice_id, invoice.model_dump(by_alias=True))
        return self._run(invoice_id, invoice, store_lookup)

    def retry(self, invoice_id: Any, store_lookup: Any = None) -> Optional[ProcessingResult]:
        """Reopen the latest failed attempt and run the pipeline on it again"""
        invoice_id = str(invoice_id)
        result = self.ledger.retry(invoice_id)
        if result is None:
            return None

        invoice = Invoice.model_validate(result.invoice_data or {})
        lookup = store_lookup if store_lookup is not None else self._store_lookup
        return self._run(invoice_id, invoice, lookup)

    def _run(self, invoice_id: str, invoice: Invoice, store_lookup: Any) -> ProcessingResult:
        ledger = self.ledger

        ledger.update_step(invoice_id, 'invoice', SUCCESS,
                           data=invoice.model_dump(by_alias=True))

        ledger.update_step(invoice_id, 'items', PROCESSING)
        try:
            items = self.source.get_sale_order_items(invoice.sale_order_id)
        except Exception as e:
            ledger.fail(invoice_id, 'items', f"Failed to fetch items: {str(e)}")
            return ledger.latest(invoice_id)
        ledger.update_step(invoice_id, 'items', SUCCESS, data=items)

        ledger.update_step(invoice_id, 'saleorder', PROCESSING)
        try:
            sale_order = self.source.get_sale_order(invoice.sale_order_id)
        except Exception as e:
            ledger.fail(invoice_id, 'saleorder', f"Failed to fetch sale order: {str(e)}")
            return ledger.latest(invoice_id)
        ledger.update_step(invoice_id, 'saleorder', SUCCESS, data=sale_order)

        ledger.update_step(invoice_id, 'edi', PROCESSING)
        try:
            build = self.builder.build(sale_order, invoice, items, store_lookup,
                                       self._current_config())
        except Exception as e:
            ledger.fail(invoice_id, 'edi', f"Failed to generate EDI: {str(e)}")
            return ledger.latest(invoice_id)

        validation = build.validation
        if validation.has_undefined_data:
            # Built but not sent: keep the payload for review and editing
            ledger.update_step(invoice_id, 'edi', SUCCESS, data=build.edi_payload,
                               warning=_describe_undefined(validation))
            ledger.store_failed_payload(invoice_id, build.edi_payload, validation)
            return ledger.latest(invoice_id)

        ledger.update_step(invoice_id, 'edi', SUCCESS, data=build.edi_payload,
                           warning='; '.join(validation.warnings) or None)
        attempt = ledger.latest(invoice_id, PROCESSING)
        if attempt is not None:
            attempt.validation = validation

        ledger.update_step(invoice_id, 'transmission', PROCESSING)
        transmission = self._transmit(invoice_id, build.edi_payload)

        if not transmission.success:
            ledger.fail(invoice_id, 'transmission', transmission.error or 'Transmission failed')
            result = ledger.latest(invoice_id)
            if result is not None:
                result.last_transmission = transmission
            return result

        result = ledger.update_step(invoice_id, 'transmission', SUCCESS,
                                    data=transmission.model_dump(mode='json'))
        if result is not None:
            result.last_transmission = transmission
        self._register(invoice_id, result)
        return result

    def _transmit(self, invoice_id: str, payload: str) -> TransmissionResult:
        filename = edi_filename(invoice_id, self._clock())
        try:
            return self.transport.transmit(filename, payload, self._credentials())
        except Exception as e:
            logger.error(f"Transmission of {filename} raised: {str(e)}")
            return TransmissionResult(success=False, filename=filename,
                                      error=f"Transmission failed: {str(e)}")

    def _register(self, invoice_id: str, result: Optional[ProcessingResult] = None):
        """Record a delivered invoice; a registry write failure never undoes the send"""
        if self.registry is None:
            return
        try:
            self.registry.mark_processed(invoice_id)
        except StateStoreError as e:
            message = f"Sent but not registered as processed: {str(e)}"
            logger.error(f"Invoice {invoice_id}: {message}")
            step = result.step('transmission') if result is not None else None
            if step is not None:
                step.warning = message

    # Manual remediation

    def save_only(self, unique_key: str, payload: str) -> Optional[ProcessingResult]:
        """Store an edited payload without sending it"""
        return self.ledger.save_edit(unique_key, payload)

    def save_and_transmit(self, unique_key: str, payload: str) -> Optional[TransmissionResult]:
        """Store an edited payload, then send it as-is"""
        if self.ledger.save_edit(unique_key, payload) is None:
            return None
        return self._transmit_manually(unique_key, payload)

    def resend(self, unique_key: str) -> Optional[TransmissionResult]:
        """Send the stored payload of an attempt again"""
        result = self.ledger.get(unique_key)
        if result is None or not result.edi_payload:
            logger.warning(f"No EDI payload found for result {unique_key}")
            return None
        return self._transmit_manually(unique_key, result.edi_payload)

    def _transmit_manually(self, unique_key: str, payload: str) -> Optional[TransmissionResult]:
        result = self.ledger.begin_manual_transmission(unique_key)
        if result is None:
            return None

        logger.info(f"Manual transmission started for invoice {result.invoice_id}")
        transmission = self._transmit(result.invoice_id, payload)
        self.ledger.finish_manual_transmission(unique_key, transmission)

        if transmission.success:
            logger.info(f"Manual transmission successful for invoice {result.invoice_id}")
            self._register(result.invoice_id)
        else:
            logger.error(
                f"Manual transmission failed for invoice {result.invoice_id}: {transmission.error}"
            )
        return transmission
