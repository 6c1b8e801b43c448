"""
Loaders for the inputs that do not come from the sales API:
store lookup tables (CSV) and invoice bundles saved as JSON.
"""
import csv
import json
import logging
import re
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Tuple, Union

from morrisons_edi.core.models import Invoice, LineItem, SaleOrder, StoreLookupRow

logger = logging.getLogger(__name__)

# Accepted header spellings, compared lower-cased without spaces/underscores
STORE_NUMBER_HEADERS = ('storenumber', 'store', 'storeno', 'storeid', 'branch')
GLN_HEADERS = ('gln', 'storegln', 'deliverygln')
ADDRESS_HEADERS = ('address', 'storeaddress', 'deliveryaddress')
NAME_HEADERS = ('name', 'storename')

CSV_DELIMITERS = ',\t|;'
MAX_CSV_BYTES = 10 * 1024 * 1024


class ParserError(Exception):
    """Raised when a lookup table or invoice bundle cannot be read"""
    pass


def _digits_key(reference: Any) -> Optional[str]:
    digits = re.sub(r'\D', '', str(reference))
    if not digits:
        return None
    return digits.lstrip('0') or '0'


class StoreLookup:
    """
    Store lookup table keyed by store number.

    References are matched exactly first, then by their digits with leading
    zeros removed, so "Store 0042" finds the row for store 42.
    """

    def __init__(self, rows: Iterable[StoreLookupRow] = ()):
        self._exact: Dict[str, StoreLookupRow] = {}
        self._digits: Dict[str, StoreLookupRow] = {}
        for row in rows:
            self.add(row)

    def add(self, row: StoreLookupRow):
        self._exact[row.store_number.strip().upper()] = row
        digits = _digits_key(row.store_number)
        if digits is not None:
            self._digits.setdefault(digits, row)

    def find(self, reference: Any) -> Optional[StoreLookupRow]:
        if reference is None:
            return None
        row = self._exact.get(str(reference).strip().upper())
        if row is not None:
            return row
        digits = _digits_key(reference)
        if digits is None:
            return None
        return self._digits.get(digits)

    def rows(self) -> List[StoreLookupRow]:
        return list(self._exact.values())

    def __len__(self) -> int:
        return len(self._exact)

    @classmethod
    def coerce(cls, value: Any) -> 'StoreLookup':
        """Accept a StoreLookup, a mapping of store number to row, or a row list"""
        if value is None:
            return cls()
        if isinstance(value, StoreLookup):
            return value
        if isinstance(value, dict):
            rows = []
            for store_number, row in value.items():
                if isinstance(row, StoreLookupRow):
                    rows.append(row)
                else:
                    rows.append(StoreLookupRow(store_number=str(store_number), **dict(row)))
            return cls(rows)
        return cls(
            row if isinstance(row, StoreLookupRow) else StoreLookupRow.model_validate(row)
            for row in value
        )


def _pick(row: Dict[str, Any], candidates: Tuple[str, ...]) -> Optional[str]:
    for key, value in row.items():
        if key is None:
            continue
        normalized = re.sub(r'[\s_\-]', '', key).lower()
        if normalized in candidates and value not in (None, ''):
            return str(value).strip()
    return None


def parse_store_lookup_csv(text: str) -> StoreLookup:
    """
    Parse store lookup CSV text.

    The delimiter is sniffed from comma, tab, pipe and semicolon. Rows without
    a store number are skipped with a warning.
    """
    if not text.strip():
        raise ParserError("Store lookup CSV is empty")

    try:
        dialect = csv.Sniffer().sniff(text[:4096], delimiters=CSV_DELIMITERS)
    except csv.Error:
        dialect = csv.excel

    reader = csv.DictReader(text.splitlines(), dialect=dialect)
    rows = []
    for line_number, raw in enumerate(reader, start=2):
        store_number = _pick(raw, STORE_NUMBER_HEADERS)
        if not store_number:
            logger.warning(f"Store lookup line {line_number}: no store number, skipped")
            continue
        rows.append(StoreLookupRow(
            store_number=store_number,
            gln=_pick(raw, GLN_HEADERS),
            address=_pick(raw, ADDRESS_HEADERS),
            name=_pick(raw, NAME_HEADERS),
        ))

    if not rows:
        raise ParserError("Store lookup CSV contains no usable rows")

    logger.info(f"Loaded {len(rows)} store lookup rows")
    return StoreLookup(rows)


def load_store_lookup(file_path: Union[str, Path]) -> StoreLookup:
    """Load a store lookup table from a CSV file"""
    path = Path(file_path)

    if not path.exists():
        raise FileNotFoundError(f"Store lookup file not found: {file_path}")
    if path.suffix.lower() != '.csv':
        raise ParserError(f"Unsupported store lookup format: {path.suffix}")
    if path.stat().st_size > MAX_CSV_BYTES:
        raise ParserError("Store lookup file too large (maximum 10MB)")

    return parse_store_lookup_csv(path.read_text(encoding='utf-8-sig'))


def _unwrap(payload: Any) -> Any:
    """API responses wrap their content in a ``data`` member"""
    if isinstance(payload, dict) and set(payload.keys()) == {'data'}:
        return payload['data']
    return payload


def load_invoice_bundle(file_path: Union[str, Path]) -> Tuple[Invoice, List[LineItem], SaleOrder]:
    """
    Load an invoice with its items and sale order from a JSON file.

    Expected shape::

        {"invoice": {...}, "items": [...], "saleOrder": {...}}

    Raises:
        ParserError: If the file is not a usable bundle
    """
    path = Path(file_path)

    if not path.exists():
        raise FileNotFoundError(f"Invoice bundle not found: {file_path}")

    try:
        with open(path, 'r', encoding='utf-8') as f:
            data = json.load(f)

        invoice = Invoice.model_validate(_unwrap(data['invoice']))
        items = [LineItem.model_validate(item) for item in _unwrap(data.get('items') or [])]
        sale_order = SaleOrder.model_validate(_unwrap(data.get('saleOrder') or {}))

    except Exception as e:
        raise ParserError(f"Failed to parse invoice bundle: {str(e)}") from e

    return invoice, items, sale_order
