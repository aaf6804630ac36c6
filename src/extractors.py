import numbers
import re
from datetime import date, datetime, timedelta
from typing import Any, Iterable, Optional

from dateutil import parser as date_parser


UPS_RE = re.compile(r"1Z[0-9A-Z]{16,}", re.IGNORECASE)
GENERIC_TRACKING_RE = re.compile(r"[A-Za-z0-9]{10,}")
NON_ALNUM_RE = re.compile(r"[^A-Za-z0-9]")

# Spreadsheet serial day 0. No 1900 leap-year correction is applied.
SERIAL_EPOCH = date(1899, 12, 30)
MAX_SERIAL = 2958465  # 9999-12-31
# serials stored as text; five digits spans roughly 1927 to 2173
SERIAL_TEXT_RE = re.compile(r"^\d{5}(?:\.\d+)?$")

_DEFAULT_A = datetime(1900, 1, 1)
_DEFAULT_B = datetime(1904, 2, 2)

RANGE_RES = [
    re.compile(r"^(?P<first>.+?)\s*[–—]\s*(?P<second>.+)$"),
    re.compile(r"^(?P<first>.+?)\s+to\s+(?P<second>.+)$", re.IGNORECASE),
    re.compile(r"^(?P<first>.+?)\s+-\s+(?P<second>.+)$"),
    re.compile(r"^(?P<first>\d{1,2}/\d{1,2}/\d{2,4})-(?P<second>\d{1,2}/\d{1,2}/\d{2,4})$"),
]


def normalize_tracking(value: Any) -> str:
    if value is None:
        return ""
    return NON_ALNUM_RE.sub("", str(value)).upper()


def find_ups_in_string(text: Any) -> Optional[str]:
    """Find a 1Z tracking number in free text, spaced or hyphenated forms included."""
    if text is None:
        return None
    s = str(text)
    if not s:
        return None

    direct = UPS_RE.search(s)
    if direct:
        return normalize_tracking(direct.group(0))

    squeezed = NON_ALNUM_RE.sub("", s)
    embedded = UPS_RE.search(squeezed)
    if embedded:
        return embedded.group(0).upper()
    return None


def find_generic_tracking(text: Any) -> Optional[str]:
    if text is None:
        return None
    for m in GENERIC_TRACKING_RE.finditer(str(text)):
        token = m.group(0)
        # carrier identifiers always carry digits; a long word is a name
        if any(ch.isdigit() for ch in token):
            return token.upper()
    return None


def scan_cells_for_tracking(values: Iterable[Any], allow_generic: bool = False) -> Optional[str]:
    """Recover a tracking token from a row with no tracking column.

    The carrier pattern is tried on every cell before the generic
    fallback is tried on any of them.
    """
    cells = [v for v in values if v is not None and str(v).strip()]
    for v in cells:
        hit = find_ups_in_string(v)
        if hit:
            return hit
    if not allow_generic:
        return None
    for v in cells:
        hit = find_generic_tracking(v)
        if hit:
            return hit
    return None


def _from_serial(value: float) -> Optional[date]:
    if value < 1 or value > MAX_SERIAL:
        return None
    return SERIAL_EPOCH + timedelta(days=int(value))


def _parse_text(s: str) -> Optional[date]:
    """Free-text date. Text missing a year, month or day is not a date."""
    if not any(ch.isdigit() for ch in s):
        return None
    try:
        # two defaults disagree on every field, so any filled-in part shows up
        a = date_parser.parse(s, default=_DEFAULT_A).date()
        b = date_parser.parse(s, default=_DEFAULT_B).date()
    except (ValueError, OverflowError):
        return None
    return a if a == b else None


def parse_asserted_date(value: Any) -> Optional[date]:
    """Normalize a cell to a calendar date, or None when it is not one.

    Order: native date objects, spreadsheet serials, ranges (first bound
    kept), then free text.
    """
    if value is None or isinstance(value, bool):
        return None

    if isinstance(value, datetime):
        try:
            return value.date()
        except ValueError:
            return None
    if isinstance(value, date):
        return value

    if isinstance(value, numbers.Real):
        if value != value:  # NaN
            return None
        return _from_serial(float(value))

    s = str(value).strip()
    if not s:
        return None
    if SERIAL_TEXT_RE.match(s):
        return _from_serial(float(s))

    for rx in RANGE_RES:
        m = rx.match(s)
        if not m:
            continue
        first = _parse_text(m.group("first").strip())
        if first and _parse_text(m.group("second").strip()):
            return first

    return _parse_text(s)


def to_iso(d: Optional[date]) -> str:
    return d.isoformat() if d else ""
