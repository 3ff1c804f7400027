"""
Unit tests for the SchemaBuilder (feed readers & output serialisers).
"""

from __future__ import annotations

import csv
import json
from io import StringIO
from pathlib import Path

import pytest

from statement_mapper.config import HistoricalConfig
from statement_mapper.non_banking_mapper import non_banking_mapper
from statement_mapper.schema import CompanyFinancialData, MappingErrorType, MappingResult
from statement_mapper.schema_builder import CSV_COLUMNS, SchemaBuilder


@pytest.fixture
def envelope() -> dict:
    return {
        "data": [
            {"id": "revenue_fy", "value": 1000},
            {"id": "revenue_fy_h", "value": [1000, "900", None, "n/a"]},
            {"id": "net_income_fy_h", "value": [100, 90]},
            {"id": "currency", "value": "INR"},
            {"id": "empty", "value": None},
        ],
        "metadata": {"sector": "Technology", "industry": "IT Services"},
    }


@pytest.fixture
def mapped() -> CompanyFinancialData:
    payload = {
        "revenue_fy": 1000.0,
        "net_income_fy": 100.0,
        "total_assets_fy": 2000.0,
        "total_equity_fy": 800.0,
        "revenue_fy_h": [1000.0, None, 800.0],
    }
    return non_banking_mapper().map_data(payload, symbol="TCS").data


# ======================================================================
# Data-point envelope
# ======================================================================

class TestReadDataPoints:
    def test_flattens(self, envelope: dict) -> None:
        feed = SchemaBuilder.read_data_points(envelope)
        assert feed.payload["revenue_fy"] == 1000.0
        assert feed.payload["revenue_fy_h"] == [1000.0, 900.0, None, None]
        assert feed.payload["currency"] == "INR"
        assert "empty" not in feed.payload
        assert feed.errors == []

    def test_metadata(self, envelope: dict) -> None:
        feed = SchemaBuilder.read_data_points(envelope)
        assert feed.sector == "Technology"
        assert feed.industry == "IT Services"

    def test_truncation(self) -> None:
        doc = {
            "data": [
                {"id": "revenue_fy_h", "value": list(range(30))},
                {"id": "revenue_fq_h", "value": list(range(40))},
            ]
        }
        feed = SchemaBuilder.read_data_points(doc, HistoricalConfig())
        assert len(feed.payload["revenue_fy_h"]) == 20
        assert len(feed.payload["revenue_fq_h"]) == 32

    def test_malformed_item(self) -> None:
        feed = SchemaBuilder.read_data_points({"data": [{"value": 1}, "junk"]})
        assert [e.field for e in feed.errors] == ["data[0]", "data[1]"]
        assert all(e.type is MappingErrorType.API_PARSING_ERROR for e in feed.errors)

    def test_missing_data_array(self) -> None:
        feed = SchemaBuilder.read_data_points({"items": []})
        assert feed.payload == {}
        assert feed.errors[0].field == "root"

    def test_unsupported_value_warns(self) -> None:
        feed = SchemaBuilder.read_data_points({"data": [{"id": "x", "value": {"a": 1}}]})
        assert feed.warnings[0].type is MappingErrorType.INVALID_DATA_TYPE


# ======================================================================
# Dict / JSON readers
# ======================================================================

class TestReadDict:
    def test_plain_copy(self) -> None:
        src = {"revenue_fy": 1.0}
        out = SchemaBuilder.read_dict(src)
        assert out == src
        assert out is not src

    def test_envelope_flattened(self, envelope: dict) -> None:
        assert SchemaBuilder.read_dict(envelope)["sector"] == "Technology"

    def test_rejects_non_mapping(self) -> None:
        with pytest.raises(TypeError):
            SchemaBuilder.read_dict([1, 2])

    def test_read_feed_keeps_parse_errors(self, envelope: dict) -> None:
        envelope["data"].append({"value": 5})
        feed = SchemaBuilder.read_feed(envelope)
        assert feed.payload["revenue_fy"] == 1000.0
        assert [e.field for e in feed.errors] == ["data[5]"]
        assert feed.errors[0].type is MappingErrorType.API_PARSING_ERROR

    def test_read_feed_plain_mapping_is_clean(self) -> None:
        feed = SchemaBuilder.read_feed({"revenue_fy": 1.0})
        assert feed.payload == {"revenue_fy": 1.0}
        assert feed.errors == [] and feed.warnings == []


class TestReadJson:
    def test_string(self) -> None:
        assert SchemaBuilder.read_json('{"revenue_fy": 5}') == {"revenue_fy": 5}

    def test_file(self, tmp_path: Path, envelope: dict) -> None:
        fp = tmp_path / "feed.json"
        fp.write_text(json.dumps(envelope), encoding="utf-8")
        assert SchemaBuilder.read_json(fp)["revenue_fy"] == 1000.0

    def test_array_root_rejected(self) -> None:
        with pytest.raises(ValueError):
            SchemaBuilder.read_json("[1, 2]")


# ======================================================================
# Serialisers
# ======================================================================

class TestSerialisers:
    def test_csv(self, mapped: CompanyFinancialData) -> None:
        rows = list(csv.reader(StringIO(SchemaBuilder.to_csv_string(mapped))))
        assert rows[0] == CSV_COLUMNS
        revenue = next(r for r in rows[1:] if r[2] == "revenue_fy")
        assert revenue[0] == "profit-loss"
        assert revenue[8] == "1000.0;;800.0"

    def test_json(self, mapped: CompanyFinancialData) -> None:
        out = json.loads(SchemaBuilder.to_json(MappingResult(success=True, data=mapped)))
        assert out["success"] is True
        assert out["data"]["symbol"] == "TCS"

    def test_dataframe(self, mapped: CompanyFinancialData) -> None:
        pytest.importorskip("pandas")
        df = SchemaBuilder.to_dataframe(mapped)
        assert list(df.columns) == CSV_COLUMNS
        assert "revenue_fy" in set(df["metric_id"])
