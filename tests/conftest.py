"""
Shared fixtures: a complete valid invoice with two lines, its EDI config,
store lookup table and in-memory collaborators for the pipeline.
"""
from datetime import datetime, timedelta

import pytest

from morrisons_edi.core.models import StoreLookupRow, TransmissionResult
from morrisons_edi.core.parsers import StoreLookup
from morrisons_edi.processing.ledger import ProcessingLedger
from morrisons_edi.storage.registry import ProcessedInvoiceRegistry
from morrisons_edi.storage.state import StateStore


class FakeClock:
    """Controllable time source"""

    def __init__(self, start=datetime(2024, 3, 15, 12, 0, 0)):
        self.now = start

    def __call__(self):
        return self.now

    def advance(self, **kwargs):
        self.now = self.now + timedelta(**kwargs)


class FakeSource:
    """Sales API stand-in for line items and sale orders"""

    def __init__(self, items, sale_order, items_error=None, order_error=None):
        self.items = items
        self.sale_order = sale_order
        self.items_error = items_error
        self.order_error = order_error
        self.calls = []

    def get_sale_order_items(self, sale_order_id):
        self.calls.append(('items', sale_order_id))
        if self.items_error:
            raise self.items_error
        return self.items

    def get_sale_order(self, sale_order_id):
        self.calls.append(('saleorder', sale_order_id))
        if self.order_error:
            raise self.order_error
        return self.sale_order


class FakeTransport:
    """Records transmissions and answers with a preset outcome"""

    def __init__(self, success=True, error=None):
        self.success = success
        self.error = error
        self.sent = []

    def transmit(self, filename, content, credentials):
        self.sent.append((filename, content, credentials))
        if self.success:
            size = len(content.encode('utf-8'))
            return TransmissionResult(success=True, filename=filename, size=size,
                                      uploaded_size=size, protocol='FAKE')
        return TransmissionResult(success=False, filename=filename, error=self.error)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def edi_config():
    """Complete operator configuration"""
    return {
        'senderGLN': '5012345000001',
        'receiverGLN': '5010251000006',
        'buyerGLN': '5010251000006',
        'deliveryPointGLN': '5010251000099',
        'deliveryPointAddress': 'GAIN LANE:BRADFORD::BD3 7DL',
        'supplierVAT': 'GB123456789',
        'supplierAddress': 'ACME FOODS LTD:1 HIGH STREET:LEEDS:WEST YORKSHIRE:LS1 1AA',
        'internalVendorNumber': '98765',
        'paymentTerms': '30',
    }


@pytest.fixture
def invoice_data():
    return {
        'invoiceId': 'inv-001',
        'niceId': 'INV1001',
        'issueDate': '2024-03-15T10:30:00',
        'dueDate': '2024-04-14T00:00:00',
        'currency': 'GBP',
        'status': 'paid',
        'saleOrderId': 'so-001',
        'saleOrderNiceId': '4521',
    }


@pytest.fixture
def sale_order_data():
    return {
        'saleOrderId': 'so-001',
        'niceId': '4521',
        'carrierReference': 'Store 0042',
    }


@pytest.fixture
def items_data():
    """Two lines: 20% VAT and zero-rated"""
    return [
        {'itemId': 'item-1', 'itemSku': 'SKU-1', 'name': 'Apples',
         'quantity': 10, 'price': 20.00, 'tax': 4.00},
        {'itemId': 'item-2', 'itemSku': 'SKU-2', 'name': 'Bread',
         'quantity': 4, 'price': 10.00, 'tax': 0},
    ]


@pytest.fixture
def barcodes():
    return {'item-1': '5000000000011', 'item-2': '5000000000028'}


@pytest.fixture
def store_lookup():
    return StoreLookup([
        StoreLookupRow(store_number='42', gln='5010251000042',
                       address='SOMERVILLE ROAD:LEEDS::LS1 2AB', name='LEEDS STORE'),
        StoreLookupRow(store_number='7', gln='5010251000007',
                       address='MARKET STREET:YORK::YO1 1AA', name='YORK STORE'),
    ])


@pytest.fixture
def state(tmp_path):
    return StateStore(tmp_path / 'state.json')


@pytest.fixture
def registry(state):
    return ProcessedInvoiceRegistry(state)


@pytest.fixture
def ledger(clock):
    return ProcessingLedger(clock=clock)


@pytest.fixture
def source(items_data, sale_order_data):
    return FakeSource(items_data, sale_order_data)


@pytest.fixture
def transport():
    return FakeTransport()
