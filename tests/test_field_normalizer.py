import io
import os
import sys
import unittest
from datetime import date, datetime
from unittest.mock import patch

import pandas as pd
import pytest

sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), '..', 'src')))

from field_normalizer import (
    ORDER,
    PARTY,
    ParseError,
    aliases_for,
    normalize_header,
    normalize_rows,
    parse_upload,
)
from recon_models import SourceMode


class TestAliases(unittest.TestCase):

    def test_header_normalization_is_punctuation_tolerant(self):
        self.assertEqual(normalize_header("PO #"), "ponumber")
        self.assertEqual(normalize_header(" po number "), "ponumber")
        self.assertEqual(normalize_header("Tracking No."), normalize_header("tracking no."))

    def test_role_aliases_come_first(self):
        self.assertEqual(aliases_for(ORDER, SourceMode.PO)[0], "po")
        self.assertEqual(aliases_for(PARTY, SourceMode.SO)[0], "customer")

    def test_ship_doc_aliases_only_for_shipdocs(self):
        self.assertIn("shipdoc", aliases_for(ORDER, SourceMode.SHIPDOCS))
        self.assertNotIn("shipdoc", aliases_for(ORDER, SourceMode.PO))

    def test_aliases_are_not_duplicated(self):
        keys = aliases_for(PARTY, SourceMode.PO)
        self.assertEqual(len(keys), len(set(keys)))


class TestNormalizeRows(unittest.TestCase):

    def test_maps_rows_and_drops_rows_without_identifiers(self):
        records = [
            {"PO #": "PO-100", "Tracking Number": "1z999aa1-0123456784", "Vendor": "Acme", "Date": "2024-01-05"},
            {"PO #": "", "Tracking Number": "", "Vendor": "Nobody", "Date": ""},
            {"PO #": "PO-101", "Tracking Number": "", "Vendor": "Beta",
             "Notes": "shipped 1Z 999 AA1 012345 6785", "Date": "1/6/2024"},
        ]
        rows = normalize_rows(records, SourceMode.PO, source_file="po.csv")

        self.assertEqual([r.row_index for r in rows], [1, 3])
        first, second = rows
        self.assertEqual(first.order_number, "PO-100")
        self.assertEqual(first.tracking_number, "1Z999AA10123456784")
        self.assertEqual(first.party_name, "Acme")
        self.assertEqual(first.asserted_date, date(2024, 1, 5))
        self.assertEqual(first.source_mode, SourceMode.PO)
        self.assertEqual(second.tracking_number, "1Z999AA10123456785")
        self.assertEqual(second.asserted_date, date(2024, 1, 6))

    def test_declared_alias_order_breaks_ties(self):
        rows = normalize_rows([{"Order Number": "ORD-1", "PO Number": "PO-9"}], SourceMode.PO)
        self.assertEqual(rows[0].order_number, "PO-9")

        rows = normalize_rows([{"Ship Doc": "SD-1", "PO": "PO-9"}], SourceMode.SHIPDOCS)
        self.assertEqual(rows[0].order_number, "SD-1")

    def test_empty_alias_falls_through_to_next(self):
        rows = normalize_rows([{"PO": "", "Purchase Order": "PO-77"}], SourceMode.PO)
        self.assertEqual(rows[0].order_number, "PO-77")

    def test_generic_tracking_when_tracking_is_required(self):
        rows = normalize_rows(
            [{"Ref": "X", "Package": "9400111899223344556677"}], SourceMode.UPS, require_tracking=True
        )
        self.assertEqual(rows[0].tracking_number, "9400111899223344556677")

    def test_no_generic_tracking_when_order_number_is_the_key(self):
        rows = normalize_rows([{"Order": "ORD-7", "Memo": "ACCT 12345678901"}], SourceMode.SO)
        self.assertEqual(rows[0].order_number, "ORD-7")
        self.assertIsNone(rows[0].tracking_number)

    def test_unparseable_date_is_none_not_error(self):
        rows = normalize_rows([{"PO": "PO-1", "Date": "whenever"}], SourceMode.PO)
        self.assertIsNone(rows[0].asserted_date)


def test_parse_csv_upload():
    data = (
        b"PO Number,Tracking,Vendor,Ship Date\n"
        b"PO-1,1Z999AA10123456784,Acme,01/05/2024\n"
        b",,,\n"
    )
    parsed = parse_upload(data, "po.csv", SourceMode.PO)

    assert parsed.headers == ["PO Number", "Tracking", "Vendor", "Ship Date"]
    assert parsed.total_rows == 2
    assert len(parsed.rows) == 1
    assert parsed.rows[0].asserted_date == date(2024, 1, 5)
    assert parsed.rows[0].source_file == "po.csv"


def test_parse_xlsx_upload_with_native_dates():
    buf = io.BytesIO()
    pd.DataFrame({
        "PO": ["PO-1", "PO-2"],
        "Tracking #": ["1Z999AA10123456784", ""],
        "Date": [datetime(2024, 1, 5), datetime(2024, 1, 6)],
    }).to_excel(buf, index=False)

    parsed = parse_upload(buf.getvalue(), "po.xlsx", SourceMode.PO)

    assert [r.order_number for r in parsed.rows] == ["PO-1", "PO-2"]
    assert parsed.rows[0].tracking_number == "1Z999AA10123456784"
    assert parsed.rows[0].asserted_date == date(2024, 1, 5)
    assert parsed.rows[1].tracking_number is None


def test_header_only_file_is_not_fatal():
    parsed = parse_upload(b"PO Number,Tracking\n", "po.csv", SourceMode.PO)
    assert parsed.rows == []
    assert parsed.headers == ["PO Number", "Tracking"]


def test_unsupported_container_is_fatal():
    with pytest.raises(ParseError) as exc:
        parse_upload(b"%PDF-1.4", "orders.pdf", SourceMode.PO)
    assert "Unsupported" in str(exc.value)


def test_corrupt_workbook_is_fatal():
    with pytest.raises(ParseError):
        parse_upload(b"not a workbook", "orders.xlsx", SourceMode.PO)


def test_windows_encoded_csv_keeps_accented_names():
    data = "PO Number,Vendor,Date\nPO-1,Café Ltd,2024-01-05\n".encode("cp1252")
    parsed = parse_upload(data, "po.csv", SourceMode.PO)

    assert len(parsed.rows) == 1
    assert parsed.rows[0].party_name == "Café Ltd"


def test_utf8_bom_is_not_part_of_first_header():
    data = "PO Number,Vendor\nPO-1,Acme\n".encode("utf-8-sig")
    parsed = parse_upload(data, "po.csv", SourceMode.PO)

    assert parsed.headers[0] == "PO Number"
    assert parsed.rows[0].order_number == "PO-1"


def test_serial_dates_in_csv_text():
    parsed = parse_upload(b"PO Number,Date\nPO-1,45296\n", "po.csv", SourceMode.PO)
    assert parsed.rows[0].asserted_date == date(2024, 1, 5)


def test_legacy_xls_is_read_with_xlrd_engine():
    frame = pd.DataFrame({"PO": ["PO-1"], "Date": [datetime(2024, 1, 5)]})
    with patch('field_normalizer.pd.read_excel', return_value=frame) as mock_read:
        parsed = parse_upload(b"\xd0\xcf\x11\xe0", "po.xls", SourceMode.PO)

    assert mock_read.call_args[1]["engine"] == "xlrd"
    assert [r.order_number for r in parsed.rows] == ["PO-1"]
    assert parsed.rows[0].asserted_date == date(2024, 1, 5)
