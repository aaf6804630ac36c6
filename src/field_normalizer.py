"""
Spreadsheet / CSV upload normalization.

Turns the rows of one uploaded file into ``UploadRow`` records:
header aliases are resolved through one declarative table, tracking numbers
are recovered from noisy cells, and dates are normalized to calendar dates.
"""

import io
import logging
import re
from pathlib import Path
from typing import Any, Dict, List, Optional

import pandas as pd

from extractors import normalize_tracking, parse_asserted_date, scan_cells_for_tracking
from recon_models import ParsedFile, SourceMode, UploadRow

logger = logging.getLogger(__name__)


class ParseError(ValueError):
    pass


ORDER, TRACKING, PARTY, DATE = "order", "tracking", "party", "date"

_VENDOR = ["vendor", "vendor name", "supplier", "supplier name", "from"]
_CUSTOMER = ["customer", "customer name", "bill to", "sold to", "ship to", "client", "consignee"]
_PO_NUMBER = [
    "po", "po#", "po number", "po id", "purchase order", "purchase order number",
    "purchase order #", "purchase order id",
]
_SO_NUMBER = ["so", "so#", "so number", "sales order", "sales order number", "sales order #"]

# canonical field -> aliases shared by every role, in tie-break order
SHARED_ALIASES: Dict[str, List[str]] = {
    ORDER: [
        "order number", "order #", "order", "order id", "invoice number", "invoice #",
        "invoice", "document number", "doc number", "doc#", "document",
    ],
    TRACKING: [
        "tracking", "tracking#", "tracking number", "ups tracking", "ups", "trk", "awb",
        "carrier tracking", "carrier tracking number", "package tracking number",
        "shipment tracking", "shipment tracking number", "tracking no.", "tracking id",
    ],
    PARTY: ["party", "party name"] + _VENDOR + _CUSTOMER,
    DATE: [
        "date", "transaction date", "post date", "posted date", "shipment date", "ship date",
        "invoice date", "order date",
    ],
}

# role -> extra aliases tried before the shared ones
ROLE_ALIASES: Dict[str, Dict[str, List[str]]] = {
    SourceMode.PO: {
        ORDER: _PO_NUMBER,
        PARTY: _VENDOR,
        DATE: ["receipt date", "received date", "po date"],
    },
    SourceMode.SO: {
        ORDER: _SO_NUMBER,
        PARTY: _CUSTOMER,
    },
    SourceMode.SHIPDOCS: {
        ORDER: [
            "shipdoc", "ship doc", "ship doc#", "ship doc number", "shipdoc number",
            "shipment doc", "ship document", "shipment document", "shipdoc id", "ship doc id",
        ] + _SO_NUMBER,
        PARTY: _CUSTOMER,
    },
    SourceMode.UPS: {
        ORDER: ["reference", "reference number", "reference 1", "reference no."],
        DATE: ["pickup date", "manifest date"],
    },
}

SUPPORTED_SUFFIXES = {".csv", ".tsv", ".txt", ".xlsx", ".xlsm", ".xls"}
EXCEL_ENGINES = {".xlsx": "openpyxl", ".xlsm": "openpyxl", ".xls": "xlrd"}
# Excel on Windows exports CSV in the ANSI code page
TEXT_ENCODINGS = ("utf-8-sig", "cp1252")


def normalize_header(header: Any) -> str:
    """Case, whitespace and punctuation insensitive header key ('PO #' == 'po number')."""
    s = str(header or "").lower().replace("#", " number ")
    return re.sub(r"[^a-z0-9]+", "", s)


def aliases_for(canonical: str, role: str) -> List[str]:
    """Role aliases followed by the shared list, deduplicated by normalized key."""
    keys: List[str] = []
    for alias in ROLE_ALIASES.get(role, {}).get(canonical, []) + SHARED_ALIASES[canonical]:
        key = normalize_header(alias)
        if key not in keys:
            keys.append(key)
    return keys


def _cell_text(value: Any) -> Optional[str]:
    if value is None:
        return None
    if isinstance(value, float):
        if pd.isna(value):
            return None
        if value.is_integer():
            return str(int(value))
    if value is pd.NaT:
        return None
    text = str(value).strip()
    return text or None


def _pick_first(keyed: Dict[str, Any], keys: List[str]) -> Any:
    for k in keys:
        v = keyed.get(k)
        if _cell_text(v) is not None:
            return v
    return None


def _key_row(raw: Dict[Any, Any]) -> Dict[str, Any]:
    out: Dict[str, Any] = {}
    for header, value in raw.items():
        key = normalize_header(header)
        # duplicate headers: keep the leftmost non-empty
        if key not in out or _cell_text(out[key]) is None:
            out[key] = value
    return out


def normalize_rows(
    records: List[Dict[Any, Any]],
    source_mode: str,
    source_file: str = "",
    require_tracking: bool = False,
) -> List[UploadRow]:
    """Map raw header->cell records of one file to ``UploadRow`` records.

    Rows with neither an order number nor a tracking number are dropped;
    ``row_index`` keeps the original 1-based position.
    """
    alias_keys = {c: aliases_for(c, source_mode) for c in (ORDER, TRACKING, PARTY, DATE)}
    rows: List[UploadRow] = []

    for i, raw in enumerate(records, start=1):
        keyed = _key_row(raw or {})

        order_number = _cell_text(_pick_first(keyed, alias_keys[ORDER]))
        party_name = _cell_text(_pick_first(keyed, alias_keys[PARTY]))
        asserted_date = parse_asserted_date(_pick_first(keyed, alias_keys[DATE]))

        tracking = normalize_tracking(_cell_text(_pick_first(keyed, alias_keys[TRACKING])))
        if not tracking:
            # generic tokens only when the row has no other match key
            allow_generic = require_tracking or not order_number
            consumed = {order_number, party_name}
            cells = [
                v for v in keyed.values()
                if _cell_text(v) is not None and _cell_text(v) not in consumed
            ]
            tracking = scan_cells_for_tracking(cells, allow_generic=allow_generic) or ""

        if not order_number and not tracking:
            continue

        rows.append(UploadRow(
            source_file=source_file,
            source_mode=source_mode,
            row_index=i,
            order_number=order_number,
            tracking_number=tracking or None,
            party_name=party_name,
            asserted_date=asserted_date,
        ))

    return rows


def _read_delimited(data: bytes, **kwargs) -> pd.DataFrame:
    for encoding in TEXT_ENCODINGS[:-1]:
        try:
            return pd.read_csv(
                io.BytesIO(data), encoding=encoding, dtype=str, keep_default_na=False,
                skip_blank_lines=True, **kwargs,
            )
        except UnicodeDecodeError:
            continue
    return pd.read_csv(
        io.BytesIO(data), encoding=TEXT_ENCODINGS[-1], encoding_errors="replace", dtype=str,
        keep_default_na=False, skip_blank_lines=True, **kwargs,
    )


def read_table(data: bytes, filename: str) -> pd.DataFrame:
    """Read the first table of a delimited text file or a spreadsheet workbook."""
    suffix = Path(filename or "").suffix.lower()
    if suffix not in SUPPORTED_SUFFIXES:
        raise ParseError(f"Unsupported file type for '{filename}' (use CSV or XLSX)")

    try:
        if suffix == ".csv":
            return _read_delimited(data, sep=",")
        if suffix in (".tsv", ".txt"):
            return _read_delimited(data, sep=None, engine="python")
        return pd.read_excel(io.BytesIO(data), sheet_name=0, engine=EXCEL_ENGINES[suffix])
    except pd.errors.EmptyDataError:
        return pd.DataFrame()
    except Exception as e:
        raise ParseError(f"Could not read '{filename}': {e}") from e


def parse_upload(
    data: bytes,
    filename: str,
    source_mode: str,
    require_tracking: bool = False,
) -> ParsedFile:
    """Parse one uploaded file. Zero usable rows is not an error here."""
    if source_mode not in SourceMode.ALL:
        raise ParseError(f"Unknown source mode: {source_mode}")

    df = read_table(data, filename)
    headers = [str(c) for c in df.columns]
    records = df.to_dict(orient="records")

    rows = normalize_rows(records, source_mode, source_file=filename, require_tracking=require_tracking)
    logger.info("Parsed %s as %s: %d of %d rows usable", filename, source_mode, len(rows), len(records))
    return ParsedFile(
        source_file=filename,
        source_mode=source_mode,
        headers=headers,
        rows=rows,
        total_rows=len(records),
    )
