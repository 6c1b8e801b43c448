"""
EDIFACT INVOIC document builder.

Maps one invoice, its line items, its sale order and the store lookup table to
a complete interchange. Missing data is replaced by the sentinel and recorded
in the validation summary instead of failing the build.
"""
import logging
from decimal import Decimal
from typing import Any, Callable, Iterable, List, Optional

from morrisons_edi.clients.api import APIError, AuthenticationError
from morrisons_edi.core import segments as seg
from morrisons_edi.core.models import (
    BuildResult,
    EDIConfig,
    Invoice,
    LineItem,
    SaleOrder,
)
from morrisons_edi.core.parsers import StoreLookup
from morrisons_edi.core.validators import SENTINEL, ValidationTracker, is_blank
from morrisons_edi.utils.decorators import audit_log, measure_performance

logger = logging.getLogger(__name__)

# Supplier address layout: name:street:city:county:postcode
SUPPLIER_ADDRESS_COMPONENTS = 5

BarcodeLookup = Callable[[Any], Optional[str]]


def _coerce(model, value):
    if value is None:
        return model()
    if isinstance(value, model):
        return value
    return model.model_validate(value)


class InvoiceDocumentBuilder:
    """
    Builds one INVOIC interchange per invoice.

    Barcodes are resolved one line at a time through ``barcode_lookup``;
    lookups are never issued in parallel so the shared API rate limit holds.
    Without a lookup the line SKU is used as the item code.
    """

    def __init__(self, barcode_lookup: Optional[BarcodeLookup] = None):
        self.barcode_lookup = barcode_lookup

    @measure_performance
    @audit_log
    def build(self,
              sale_order: Any,
              invoice: Any,
              items: Iterable[Any],
              store_lookup: Any,
              config: Any) -> BuildResult:
        """
        Build the interchange.

        Args:
            sale_order: SaleOrder (or its API dict)
            invoice: Invoice (or its API dict)
            items: Line items (models or API dicts)
            store_lookup: StoreLookup, mapping or row list for delivery points
            config: EDIConfig (or dict of settings)

        Returns:
            BuildResult with the payload and the validation summary

        Raises:
            AuthenticationError: barcode lookup could not authenticate
        """
        sale_order = _coerce(SaleOrder, sale_order)
        invoice = _coerce(Invoice, invoice)
        config = _coerce(EDIConfig, config)
        lines = [_coerce(LineItem, item) for item in (items or [])]
        lookup = StoreLookup.coerce(store_lookup)

        tracker = ValidationTracker()

        # Header fields, all validated before anything is emitted
        sender_gln = tracker.validate(config.sender_gln, 'config.senderGLN')
        receiver_gln = tracker.validate(config.receiver_gln, 'config.receiverGLN')
        buyer_gln = tracker.validate(config.buyer_gln, 'config.buyerGLN')
        supplier_vat = tracker.validate(config.supplier_vat, 'config.supplierVAT')
        supplier_address = tracker.validate(config.supplier_address, 'config.supplierAddress')
        internal_vendor = tracker.validate(
            config.internal_vendor_number, 'config.internalVendorNumber'
        )

        issue_date = self._date_value(tracker, invoice.issue_date, 'invoice.issueDate')
        currency = tracker.validate(invoice.currency, 'invoice.currency')
        order_ref = tracker.validate(invoice.sale_order_nice_id, 'invoice.saleOrderNiceId')

        control_source = sale_order.nice_id
        if is_blank(control_source):
            control_source = config.interchange_ref
        control_ref = seg.pad_number(
            tracker.validate(control_source, 'saleOrder.niceId'),
            seg.CONTROL_NUMBER_WIDTH
        )

        delivery_gln, delivery_name, delivery_address = self._resolve_delivery(
            tracker, sale_order, lookup, config
        )

        has_due_date = not is_blank(invoice.due_date)
        payment_terms = None
        if has_due_date:
            payment_terms = tracker.validate(config.payment_terms, 'config.paymentTerms')

        if supplier_address != SENTINEL:
            components = supplier_address.split(':')
            if len(components) < SUPPLIER_ADDRESS_COMPONENTS:
                tracker.warn(
                    f"Supplier address has {len(components)} of "
                    f"{SUPPLIER_ADDRESS_COMPONENTS} components (name:street:city:county:postcode)"
                )

        tax_point = config.tax_point_date if not is_blank(config.tax_point_date) else issue_date

        vendor_source = config.vendor_reference
        if is_blank(vendor_source):
            vendor_source = invoice.sale_order_nice_id

        # Totals
        line_amounts = [self._line_amounts(tracker, idx, line) for idx, line in enumerate(lines)]
        total_net = sum((net for net, _ in line_amounts), Decimal('0'))
        total_tax = sum((tax for _, tax in line_amounts), Decimal('0'))
        total_invoice = total_net + total_tax

        order_number = seg.pad_number(order_ref, seg.ORDER_NUMBER_WIDTH)

        message: List[str] = [seg.unh()]
        message.append(seg.bgm(order_number))
        message.append(seg.dtm(seg.DTM_INVOICE_DATE_QUALIFIER, issue_date,
                               seg.DTM_FORMAT_DATETIME, tracker))
        message.append(seg.dtm(seg.DTM_TAX_POINT_QUALIFIER, tax_point,
                               seg.DTM_FORMAT_DATE, tracker))
        message.append(seg.rff(seg.RFF_ORDER_NUMBER_QUALIFIER, order_number))
        if not is_blank(vendor_source):
            message.append(seg.rff(
                seg.RFF_VENDOR_QUALIFIER,
                seg.pad_number(str(vendor_source).strip(), seg.VENDOR_REFERENCE_WIDTH)
            ))

        # Parties
        message.append(seg.nad(seg.NAD_BUYER_QUALIFIER, buyer_gln,
                               f"{seg.MORRISONS_NAME}:{seg.MORRISONS_ADDRESS}"))
        message.append(seg.rff(seg.RFF_VAT_QUALIFIER, seg.MORRISONS_VAT))

        message.append(seg.nad(
            seg.NAD_DELIVERY_QUALIFIER,
            delivery_gln,
            f"{seg.escape_text(delivery_name)}:{seg.escape_text(delivery_address, keep=':')}"
        ))

        supplier_name = supplier_address.split(':')[0]
        message.append(seg.nad(
            seg.NAD_SUPPLIER_QUALIFIER,
            sender_gln,
            f"{seg.escape_text(supplier_name)}:{seg.escape_text(supplier_address, keep=':')}"
        ))
        message.append(seg.rff(seg.RFF_VAT_QUALIFIER, supplier_vat))
        message.append(seg.rff(seg.RFF_INTERNAL_VENDOR_QUALIFIER, internal_vendor))

        message.append(seg.cux(currency))

        if has_due_date:
            message.append(seg.pat(payment_terms))
            message.append(seg.dtm(seg.DTM_DUE_DATE_QUALIFIER, invoice.due_date,
                                   seg.DTM_FORMAT_DATE, tracker))

        # Detail section, one line at a time
        for idx, line in enumerate(lines):
            net, line_tax = line_amounts[idx]
            barcode = self._resolve_barcode(tracker, idx, line)
            quantity = seg.format_quantity(line.quantity)

            message.append(seg.lin(idx + 1, barcode))

            if quantity is None:
                tracker.mark_invalid(f'items[{idx}].quantity', line.quantity, SENTINEL)
                message.append(seg.qty(SENTINEL))
            else:
                message.append(seg.qty(quantity))

            message.append(seg.moa(seg.MOA_LINE_VALUE, net, tracker))
            message.append(seg.pri(self._unit_price(tracker, idx, net, line.quantity), tracker))
            message.append(seg.tax(net, line_tax, tracker))

        # Summary section
        message.append(seg.uns())
        message.append(seg.cnt(len(lines)))
        message.append(seg.moa(seg.MOA_TOTAL_LINES, total_net, tracker))
        message.append(seg.moa(seg.MOA_TAXABLE_AMOUNT, total_net, tracker))
        message.append(seg.moa(seg.MOA_TAX_AMOUNT, total_tax, tracker))
        message.append(seg.moa(seg.MOA_TOTAL_INVOICE, total_invoice, tracker))
        message.append(seg.tax(total_net, total_tax, tracker))
        message.append(seg.moa(seg.MOA_TAXABLE_AMOUNT, total_net, tracker))
        message.append(seg.moa(seg.MOA_TAX_AMOUNT, total_tax, tracker))

        interchange = [
            seg.unb(sender_gln, receiver_gln,
                    seg.interchange_timestamp(issue_date, tracker), control_ref),
            *message,
        ]
        interchange.append(seg.unt(seg.trailer_segment_count(interchange)))
        interchange.append(seg.unz(control_ref))

        summary = tracker.summary()
        logger.info(
            f"Built INVOIC for order {order_ref}: {len(lines)} lines, "
            f"{len(interchange)} segments, {summary.invalid_field_count} undefined fields"
        )

        return BuildResult(
            edi_payload=seg.render_payload(interchange),
            validation=summary
        )

    @staticmethod
    def _date_value(tracker: ValidationTracker, value: Any, field_name: str) -> Any:
        """Validate presence but keep the original value for date formatting"""
        sanitized = tracker.validate(value, field_name)
        return sanitized if sanitized == SENTINEL else value

    @staticmethod
    def _line_amounts(tracker: ValidationTracker, idx: int, line: LineItem):
        """Line net and tax as numbers; unusable values count as zero"""
        net = seg.to_decimal(line.price)
        if net is None:
            tracker.warn(f"Line {idx + 1}: non-numeric price {line.price!r}, using 0")
            net = Decimal('0')

        line_tax = seg.to_decimal(line.tax)
        if line_tax is None:
            tracker.warn(f"Line {idx + 1}: non-numeric tax {line.tax!r}, using 0")
            line_tax = Decimal('0')

        if net < 0 or line_tax < 0:
            tracker.warn(f"Line {idx + 1}: negative amount (price={net}, tax={line_tax})")

        return net, line_tax

    @staticmethod
    def _unit_price(tracker: ValidationTracker, idx: int, net: Decimal, quantity: Any) -> Decimal:
        qty = seg.to_decimal(quantity)
        if qty is None or qty == 0:
            tracker.warn(f"Line {idx + 1}: cannot derive unit price from quantity {quantity!r}")
            return Decimal('0')
        return net / qty

    def _resolve_barcode(self, tracker: ValidationTracker, idx: int, line: LineItem) -> str:
        field_name = f'items[{idx}].barcode'

        if self.barcode_lookup is None:
            return tracker.validate(line.sku, field_name)

        if is_blank(line.item_id):
            tracker.warn(f"Line {idx + 1}: no item id to look up a barcode")
            return tracker.validate(None, field_name)

        try:
            barcode = self.barcode_lookup(line.item_id)
        except AuthenticationError:
            raise
        except APIError as e:
            tracker.warn(f"Line {idx + 1}: barcode lookup failed for item {line.item_id}: {e}")
            barcode = None

        return tracker.validate(barcode, field_name)

    @staticmethod
    def _resolve_delivery(tracker: ValidationTracker,
                          sale_order: SaleOrder,
                          lookup: StoreLookup,
                          config: EDIConfig):
        """
        Delivery point from the store lookup table, falling back to the
        configured delivery point. The carrier reference doubles as the name
        when nothing better is configured.
        """
        reference = sale_order.carrier_reference
        row = None
        if not is_blank(reference):
            row = lookup.find(reference)
            if row is None:
                tracker.warn(f"No store lookup entry for reference {reference!r}")

        gln = row.gln if row is not None and not is_blank(row.gln) else config.delivery_point_gln
        address = (row.address if row is not None and not is_blank(row.address)
                   else config.delivery_point_address)

        name = config.delivery_point_name
        if is_blank(name) and row is not None:
            name = row.name
        if is_blank(name):
            name = reference

        return (
            tracker.validate(gln, 'deliveryPoint.gln'),
            tracker.validate(name, 'deliveryPoint.name'),
            tracker.validate(address, 'deliveryPoint.address'),
        )
