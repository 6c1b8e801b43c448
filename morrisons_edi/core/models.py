"""
Data models for the invoice dispatch flow.
Using Pydantic for the business objects, the ledger and the validation summary.

Upstream objects are loosely typed on purpose: the document builder decides what
is usable, so every input field accepts whatever the API sent.
"""
from datetime import datetime
from typing import Any, List, Optional

from pydantic import BaseModel, ConfigDict, Field

# Step and result statuses
PENDING = 'pending'
PROCESSING = 'processing'
SUCCESS = 'success'
ERROR = 'error'
NOT_ATTEMPTED = 'not-attempted'

# Ordered processing steps: (id, display name)
STEP_DEFINITIONS = [
    ('invoice', 'Invoice data retrieved'),
    ('items', 'Items data retrieved'),
    ('saleorder', 'Sale order data retrieved'),
    ('edi', 'EDI payload generated'),
    ('transmission', 'EDI transmission'),
]


class _UpstreamModel(BaseModel):
    """Base for objects received from the sales API (camelCase keys)"""
    model_config = ConfigDict(populate_by_name=True, extra='allow')


class Invoice(_UpstreamModel):
    """Sale invoice as listed by the upstream API"""
    invoice_id: Any = Field(None, alias='invoiceId')
    invoice_number: Any = Field(None, alias='niceId')
    issue_date: Any = Field(None, alias='issueDate')
    due_date: Any = Field(None, alias='dueDate')
    currency: Any = None
    status: Any = None
    sale_order_id: Any = Field(None, alias='saleOrderId')
    sale_order_nice_id: Any = Field(None, alias='saleOrderNiceId')

    @property
    def dispatch_id(self) -> str:
        """Identifier used for the ledger and the processed-invoice registry"""
        for value in (self.invoice_id, self.sale_order_nice_id, self.invoice_number):
            if value not in (None, ''):
                return str(value)
        return 'UNKNOWN'


class LineItem(_UpstreamModel):
    """Single sale order line; price is the line net total, tax the line tax"""
    item_id: Any = Field(None, alias='itemId')
    sku: Any = Field(None, alias='itemSku')
    name: Any = None
    quantity: Any = None
    price: Any = None
    tax: Any = None


class SaleOrder(_UpstreamModel):
    """Sale order backing an invoice"""
    sale_order_id: Any = Field(None, alias='saleOrderId')
    nice_id: Any = Field(None, alias='niceId')
    carrier_reference: Any = Field(None, alias='carrierReference')


class StoreLookupRow(BaseModel):
    """Row of the store lookup table, keyed by store number"""
    model_config = ConfigDict(populate_by_name=True)

    store_number: str = Field(..., alias='storeNumber')
    gln: Optional[str] = None
    address: Optional[str] = None
    name: Optional[str] = None


class EDIConfig(BaseModel):
    """
    Operator supplied settings for building documents.

    Every field is optional; the builder validates each one and substitutes
    the sentinel for anything missing.
    """
    model_config = ConfigDict(populate_by_name=True, extra='ignore')

    sender_gln: Any = Field(None, alias='senderGLN')
    receiver_gln: Any = Field(None, alias='receiverGLN')
    buyer_gln: Any = Field(None, alias='buyerGLN')
    delivery_point_gln: Any = Field(None, alias='deliveryPointGLN')
    delivery_point_name: Any = Field(None, alias='deliveryPointName')
    delivery_point_address: Any = Field(None, alias='deliveryPointAddress')
    supplier_vat: Any = Field(None, alias='supplierVAT')
    supplier_address: Any = Field(None, alias='supplierAddress')
    internal_vendor_number: Any = Field(None, alias='internalVendorNumber')
    payment_terms: Any = Field(None, alias='paymentTerms')
    tax_point_date: Any = Field(None, alias='taxPointDate')
    vendor_reference: Any = Field(None, alias='vendorReference')
    interchange_ref: Any = Field(None, alias='interchangeRef')


class ValidationResult(BaseModel):
    """Outcome of sanitizing one field"""
    value: str
    is_valid: bool
    field_name: str
    original_value: Any = None


class InvalidField(BaseModel):
    """A field that was replaced with the sentinel"""
    model_config = ConfigDict(populate_by_name=True)

    field: str
    original_value: Any = Field(None, alias='originalValue')
    replaced_with: str = Field(..., alias='replacedWith')


class ValidationSummary(BaseModel):
    """Aggregated validation state of one built document"""
    model_config = ConfigDict(populate_by_name=True)

    is_valid: bool = Field(True, alias='isValid')
    invalid_field_count: int = Field(0, alias='invalidFieldCount')
    invalid_fields: List[InvalidField] = Field(default_factory=list, alias='invalidFields')
    warnings: List[str] = Field(default_factory=list)
    has_undefined_data: bool = Field(False, alias='hasUndefinedData')


class BuildResult(BaseModel):
    """EDIFACT interchange plus the validation state it was built with"""
    edi_payload: str
    validation: ValidationSummary
    processing_time_ms: Optional[float] = None


class TransmissionResult(BaseModel):
    """Outcome reported by a transport"""
    success: bool
    filename: Optional[str] = None
    remote_path: Optional[str] = None
    size: Optional[int] = None
    uploaded_size: Optional[int] = None
    protocol: Optional[str] = None
    error: Optional[str] = None
    timestamp: datetime = Field(default_factory=datetime.now)


class Step(BaseModel):
    """One named step of a processing attempt"""
    id: str
    name: str
    status: str = PENDING  # pending, processing, success, error, not-attempted
    error: Optional[str] = None
    warning: Optional[str] = None
    data: Any = None
    completed_at: Optional[datetime] = None


def default_steps() -> List[Step]:
    return [Step(id=step_id, name=name) for step_id, name in STEP_DEFINITIONS]


class ProcessingResult(BaseModel):
    """Ledger entry for one processing attempt of one invoice"""
    invoice_id: str
    unique_key: str
    invoice_data: Any = None
    status: str = PROCESSING  # processing, success, error
    start_time: datetime = Field(default_factory=datetime.now)
    sequence: int = 0
    completed_at: Optional[datetime] = None
    steps: List[Step] = Field(default_factory=default_steps)
    edi_payload: Optional[str] = None
    error: Optional[str] = None
    validation: Optional[ValidationSummary] = None

    # Manual edit / transmission state
    is_manually_edited: bool = False
    last_edited_at: Optional[datetime] = None
    manual_transmission_status: Optional[str] = None  # processing, success, error
    manual_transmission_error: Optional[str] = None
    manual_transmission_started: Optional[datetime] = None
    manual_transmission_completed: Optional[datetime] = None
    last_transmission: Optional[TransmissionResult] = None

    def step(self, step_id: str) -> Optional[Step]:
        for step in self.steps:
            if step.id == step_id:
                return step
        return None
