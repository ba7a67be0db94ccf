from __future__ import annotations

import math
from datetime import datetime

import numpy as np
import pandas as pd
import pytest

import unit_ingest.tabular.workbook as wb
from unit_ingest.models.config_models import ParserConfig
from unit_ingest.tabular.errors import ParseFailureError
from unit_ingest.tabular.workbook import clean_cell, find_header_row, parse_workbook, rows_to_result


def test_clean_cell_conversions():
    assert clean_cell(np.float64(3.0)) == 3
    assert isinstance(clean_cell(np.float64(3.0)), int)
    assert clean_cell(np.float64(2.5)) == 2.5
    assert clean_cell(math.nan) is None
    assert clean_cell(math.nan, blank_as_null=False) == ""
    assert clean_cell("  A1 ") == "A1"
    ts = clean_cell(pd.Timestamp("2024-05-01 10:00"))
    assert isinstance(ts, datetime)
    assert clean_cell(pd.NaT) is None


def test_header_row_is_first_row_with_content():
    rows = [[None, None], ["", None], ["Unit Name", "Price"], ["A1", 5]]
    assert find_header_row(rows) == 2
    assert find_header_row([[None], [None]]) == 0
    # 走査範囲外なら先頭行
    assert find_header_row([[None], [None], ["late"]], scan_rows=2) == 0


def test_rows_to_result_skips_leading_blank_rows():
    rows = [[None, None], ["Unit Name", "Price"], ["A1", 100], [None, None], ["A2", 200]]
    result = rows_to_result(rows)
    assert result.fields == ["Unit Name", "Price"]
    assert result.records == [{"Unit Name": "A1", "Price": 100}, {"Unit Name": "A2", "Price": 200}]
    assert result.row_numbers == [3, 5]


def test_sparse_rows_strictly_above_threshold_are_dropped():
    header = ["Unit Name", "F2", "F3", "F4", "F5", "F6"]
    four_empty = ["A1", "x", None, None, None, None]
    three_empty = ["A2", "x", "y", None, None, None]
    result = rows_to_result([header, four_empty, three_empty])
    assert [r["Unit Name"] for r in result.records] == ["A2"]


def test_sparse_threshold_ignores_columns_beyond_row_length():
    header = ["Unit Name", "F2", "F3", "F4"]
    result = rows_to_result([header, ["A1", "x"]])
    assert result.records == [{"Unit Name": "A1", "F2": "x"}]


def test_labels_are_titlecased_on_workbook_path():
    result = rows_to_result([["unit_name", "LAND area"], ["A1", 5]])
    assert result.field_info["unit_name"].label == "Unit Name"
    assert result.field_info["LAND area"].label == "Land Area"


def test_placeholder_headers_filtered_like_text_path():
    result = rows_to_result([["Unit Name", None, "Unnamed: 2", "Price"], ["A1", "x", "y", 3]])
    assert result.fields == ["Unit Name", "Price"]
    assert result.records == [{"Unit Name": "A1", "Price": 3}]


def test_empty_sheet_rows():
    result = rows_to_result([])
    assert result.records == [] and result.fields == []


def test_parse_xlsx_strict_keeps_types_and_na_strings(make_workbook):
    path = make_workbook(
        "units.xlsx",
        [
            ["Unit Name", "Unit Price", "Unit Status", "Floor"],
            ["A1", 1250000, "N/A", 3],
            ["A2", 990000.5, "Available", None],
        ],
    )
    result = parse_workbook(path.read_bytes())
    assert result.read_strategy == "strict"
    assert result.source_format == "xlsx"
    assert result.records[0] == {"Unit Name": "A1", "Unit Price": 1250000, "Unit Status": "N/A", "Floor": 3}
    assert result.records[1] == {"Unit Name": "A2", "Unit Price": 990000.5, "Unit Status": "Available"}
    assert result.field_info["Unit Price"].is_numeric
    assert result.row_numbers == [2, 3]


def test_relaxed_strategy_used_when_strict_fails(make_workbook, monkeypatch):
    path = make_workbook("units.xlsx", [["Unit Name", "Floor"], ["A1", 3]])
    original = wb.load_first_sheet

    def flaky(data, options=wb.STRICT_READ):
        if options.name == "strict":
            raise ValueError("strict reader exploded")
        return original(data, options)

    monkeypatch.setattr(wb, "load_first_sheet", flaky)
    result = parse_workbook(path.read_bytes())
    assert result.read_strategy == "relaxed"
    # relaxed は文字列で読むが、型推定は数値になる
    assert result.records == [{"Unit Name": "A1", "Floor": "3"}]
    assert result.field_info["Floor"].is_numeric


def test_unreadable_workbook_raises_parse_failure_with_cause():
    with pytest.raises(ParseFailureError) as exc_info:
        parse_workbook(b"definitely not a workbook")
    assert exc_info.value.__cause__ is not None
    assert exc_info.value.error_type == "PARSE_FAILURE"


def test_coerce_numeric_strings_on_workbook_path():
    rows = [["Unit Name", "Unit Price"], ["A1", "1200"]]
    result = rows_to_result(rows, ParserConfig(coerce_numeric_strings=True))
    assert result.records[0]["Unit Price"] == 1200
