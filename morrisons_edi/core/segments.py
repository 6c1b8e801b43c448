"""
EDIFACT INVOIC segment codec.

Stateless formatting rules for the D:96A / EAN008 invoice message exchanged
with the retailer. Each helper renders one business concept into a segment
string (without terminator); ``render_payload`` applies terminators.

Formatting helpers accept an optional ``tracker`` which receives advisory
warnings when a value has to be replaced by a fallback.
"""
from datetime import date, datetime
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Any, Iterable, List, Optional

from dateutil import parser as date_parser

from morrisons_edi.core.validators import SENTINEL

# Interchange header
UNB_SYNTAX_IDENTIFIER = 'UNOA:3'
UNB_RECIPIENT_QUALIFIER = ':14'
UNB_APPLICATION_REFERENCE = 'INVOIC'
UNB_PROCESSING_PRIORITY = '++++1'

UNH_MESSAGE_REFERENCE = '1'
UNH_MESSAGE_TYPE = 'INVOIC:D:96A:UN:EAN008'

# Beginning of message
BGM_DOCUMENT_TYPE_INVOICE = '380'
BGM_DOCUMENT_NAME_MERCH = 'MRCHI'
BGM_MESSAGE_FUNCTION = '9'  # new message, not a replacement

# Dates
DTM_INVOICE_DATE_QUALIFIER = '3'
DTM_TAX_POINT_QUALIFIER = '131'
DTM_DUE_DATE_QUALIFIER = '140'
DTM_FORMAT_DATETIME = '204'
DTM_FORMAT_DATE = '102'

# References
RFF_ORDER_NUMBER_QUALIFIER = 'ON'
RFF_VAT_QUALIFIER = 'VA'
RFF_INTERNAL_VENDOR_QUALIFIER = 'IA'
RFF_VENDOR_QUALIFIER = 'VN'

# Parties
NAD_BUYER_QUALIFIER = 'BY'
NAD_DELIVERY_QUALIFIER = 'DP'
NAD_SUPPLIER_QUALIFIER = 'SU'
NAD_EAN_AGENCY = '::9'

CUX_REFERENCE_QUALIFIER = '2'
CUX_INVOICE_QUALIFIER = '4'

PAT_PAYMENT_TYPE = '1'
PAT_TERMS_ID = '6'

# Line items
LIN_BARCODE_OUTER = 'EN'
QTY_INVOICED_QUALIFIER = '47'
QTY_UNIT_EACH = 'EA'
PRI_NET_PRICE = 'AAA'

# Monetary amounts
MOA_LINE_VALUE = '203'
MOA_TOTAL_LINES = '79'
MOA_TAX_AMOUNT = '124'
MOA_TAXABLE_AMOUNT = '125'
MOA_TOTAL_INVOICE = '77'

# Tax
TAX_FUNCTION_QUALIFIER = '7'
TAX_TYPE_VAT = 'VAT'
TAX_CATEGORY_ZERO = 'Z'
TAX_CATEGORY_REDUCED = 'L'
TAX_CATEGORY_STANDARD = 'S'

UNS_SUMMARY_SECTION = 'S'
CNT_LINE_COUNT_QUALIFIER = '2'

# Retailer (buyer) details are fixed
MORRISONS_GLN = '5010251000006'
MORRISONS_NAME = 'WM. MORRISON SUPERMARKETS PLC'
MORRISONS_ADDRESS = 'HILMORE HOUSE:GAIN LANE::BD3 7DL'
MORRISONS_VAT = '343475355'

# Padding widths
ORDER_NUMBER_WIDTH = 8
VENDOR_REFERENCE_WIDTH = 10
CONTROL_NUMBER_WIDTH = 7

SEGMENT_TERMINATOR = "'"
RELEASE_CHARACTER = '?'
SERVICE_CHARACTERS = "?+:'"

FALLBACK_DATE = '19700101'
FALLBACK_TIME = '000000'

TWO_PLACES = Decimal('0.01')


def _warn(tracker, message: str):
    if tracker is not None:
        tracker.warn(message)


def parse_date(value: Any) -> Optional[datetime]:
    """Parse a date-like value; returns None when no calendar date can be read"""
    if isinstance(value, datetime):
        return value
    if isinstance(value, date):
        return datetime(value.year, value.month, value.day)
    if not isinstance(value, str) or not value.strip():
        return None

    text = value.strip()
    try:
        return date_parser.isoparse(text)
    except (ValueError, OverflowError):
        pass

    try:
        return date_parser.parse(text)
    except (ValueError, OverflowError):
        return None


def format_date(value: Any, fmt: str = DTM_FORMAT_DATETIME, tracker=None) -> str:
    """
    Format a date as YYYYMMDDHHmmss (qualifier 204) or YYYYMMDD (qualifier 102).

    The value is rendered in the offset it was given in; no conversion to
    local time takes place. Unreadable dates fall back to 1970-01-01.
    """
    parsed = parse_date(value)

    if parsed is None:
        _warn(tracker, f"Unparseable date {value!r}, using {FALLBACK_DATE}")
        if fmt == DTM_FORMAT_DATETIME:
            return FALLBACK_DATE + FALLBACK_TIME
        return FALLBACK_DATE

    if fmt == DTM_FORMAT_DATETIME:
        return parsed.strftime('%Y%m%d%H%M%S')
    return parsed.strftime('%Y%m%d')


def interchange_timestamp(value: Any, tracker=None) -> str:
    """UNB preparation date/time: YYMMDD:HHMM"""
    full = format_date(value, DTM_FORMAT_DATETIME, tracker)
    return f"{full[2:8]}:{full[8:12]}"


def to_decimal(value: Any) -> Optional[Decimal]:
    """Numeric coercion; None for anything that is not a finite number"""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, Decimal):
        number = value
    elif isinstance(value, (int, float)):
        number = Decimal(str(value))
    elif isinstance(value, str) and value.strip():
        try:
            number = Decimal(value.strip())
        except InvalidOperation:
            return None
    else:
        return None

    if not number.is_finite():
        return None
    return number


def round2(value: Decimal) -> Decimal:
    return value.quantize(TWO_PLACES, rounding=ROUND_HALF_UP)


def format_amount(value: Any, tracker=None) -> str:
    """Fixed two decimal places; non-numeric input renders as 0.00"""
    number = to_decimal(value)
    if number is None:
        _warn(tracker, f"Non-numeric amount {value!r}, using 0.00")
        return '0.00'
    return f"{round2(number):.2f}"


def format_quantity(value: Any) -> Optional[str]:
    """Whole quantities without decimals, fractional ones as given"""
    number = to_decimal(value)
    if number is None:
        return None
    if number == number.to_integral_value():
        return str(int(number))
    return format(number.normalize(), 'f')


def calculate_vat_rate(net_amount: Any, tax_amount: Any, tracker=None) -> str:
    """VAT percentage rounded to two places; zero or unusable net gives 0.00"""
    net = to_decimal(net_amount)
    tax = to_decimal(tax_amount)

    if net is None or tax is None:
        _warn(tracker, f"Cannot derive VAT rate from net={net_amount!r} tax={tax_amount!r}")
        return '0.00'
    if net == 0:
        _warn(tracker, f"Net amount is zero, VAT rate set to 0.00 (tax={tax_amount!r})")
        return '0.00'

    return f"{round2(tax / net * 100):.2f}"


def vat_category(vat_rate: Any) -> str:
    """
    Map a VAT rate to its tax category code.

    Anything other than exactly 0, 5 or 20 (including unparseable rates) maps
    to the standard category.
    """
    rate = to_decimal(vat_rate)
    if rate is None:
        return TAX_CATEGORY_STANDARD
    if rate == 0:
        return TAX_CATEGORY_ZERO
    if rate == 5:
        return TAX_CATEGORY_REDUCED
    if rate == 20:
        return TAX_CATEGORY_STANDARD
    return TAX_CATEGORY_STANDARD


def pad_number(value: Any, width: int) -> str:
    """Left zero-pad a reference; the sentinel is passed through untouched"""
    text = str(value)
    if text == SENTINEL:
        return text
    return text.rjust(width, '0')


def escape_text(value: str, keep: str = '') -> str:
    """Prefix EDIFACT service characters with the release character"""
    escaped = []
    for char in value:
        if char in SERVICE_CHARACTERS and char not in keep:
            escaped.append(RELEASE_CHARACTER)
        escaped.append(char)
    return ''.join(escaped)


# Segment renderers

def unb(sender: str, receiver: str, timestamp: str, control_ref: str) -> str:
    return (
        f"UNB+{UNB_SYNTAX_IDENTIFIER}+{sender}+{receiver}{UNB_RECIPIENT_QUALIFIER}"
        f"+{timestamp}+{control_ref}++{UNB_APPLICATION_REFERENCE}{UNB_PROCESSING_PRIORITY}"
    )


def unh() -> str:
    return f"UNH+{UNH_MESSAGE_REFERENCE}+{UNH_MESSAGE_TYPE}"


def bgm(document_number: str) -> str:
    return (
        f"BGM+{BGM_DOCUMENT_TYPE_INVOICE}:::{BGM_DOCUMENT_NAME_MERCH}"
        f"+{document_number}+{BGM_MESSAGE_FUNCTION}"
    )


def dtm(qualifier: str, value: Any, fmt: str, tracker=None) -> str:
    return f"DTM+{qualifier}:{format_date(value, fmt, tracker)}:{fmt}"


def rff(qualifier: str, reference: str) -> str:
    return f"RFF+{qualifier}:{reference}"


def nad(qualifier: str, gln: str, name_and_address: str) -> str:
    return f"NAD+{qualifier}+{gln}{NAD_EAN_AGENCY}+{name_and_address}"


def cux(currency: str) -> str:
    return f"CUX+{CUX_REFERENCE_QUALIFIER}:{currency}:{CUX_INVOICE_QUALIFIER}"


def pat(payment_terms: str) -> str:
    return f"PAT+{PAT_PAYMENT_TYPE}+{PAT_TERMS_ID}:::{payment_terms}"


def lin(line_number: int, barcode: str) -> str:
    return f"LIN+{line_number}++{barcode}:{LIN_BARCODE_OUTER}"


def qty(quantity: str) -> str:
    return f"QTY+{QTY_INVOICED_QUALIFIER}:{quantity}:{QTY_UNIT_EACH}"


def moa(qualifier: str, amount: Any, tracker=None) -> str:
    return f"MOA+{qualifier}:{format_amount(amount, tracker)}"


def pri(unit_price: Any, tracker=None) -> str:
    return f"PRI+{PRI_NET_PRICE}:{format_amount(unit_price, tracker)}"


def tax(net_amount: Any, tax_amount: Any, tracker=None) -> str:
    """Tax line with the VAT rate and category derived from net and tax"""
    rate = calculate_vat_rate(net_amount, tax_amount, tracker)
    category = vat_category(rate)
    return f"TAX+{TAX_FUNCTION_QUALIFIER}+{TAX_TYPE_VAT}+++:::{rate}+{category}"


def uns() -> str:
    return f"UNS+{UNS_SUMMARY_SECTION}"


def cnt(line_count: int) -> str:
    return f"CNT+{CNT_LINE_COUNT_QUALIFIER}:{line_count}"


def unt(segment_count: int) -> str:
    return f"UNT+{segment_count}+{UNH_MESSAGE_REFERENCE}"


def unz(control_ref: str) -> str:
    return f"UNZ+1+{control_ref}"


# Payload assembly

def render_payload(segments: Iterable[str]) -> str:
    """Terminate every segment and join them one per line"""
    return '\n'.join(segment + SEGMENT_TERMINATOR for segment in segments)


def split_segments(payload: str) -> List[str]:
    """
    Split a payload into segments, honouring the release character.
    Line breaks between segments are ignored.
    """
    segments = []
    current = []
    released = False

    for char in payload:
        if released:
            current.append(char)
            released = False
        elif char == RELEASE_CHARACTER:
            current.append(char)
            released = True
        elif char == SEGMENT_TERMINATOR:
            segments.append(''.join(current).strip('\r\n'))
            current = []
        else:
            current.append(char)

    tail = ''.join(current).strip()
    if tail:
        segments.append(tail)

    return [segment for segment in segments if segment]


def trailer_segment_count(segments: List[str]) -> int:
    """UNT value for an interchange: segments emitted before UNT, plus UNT and UNZ"""
    count = 0
    for segment in segments:
        if segment[:3] == 'UNT':
            break
        count += 1
    return count + 2
