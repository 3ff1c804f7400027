"""
Unit tests for the non-banking mapper variant.
"""

from __future__ import annotations

import pytest

from statement_mapper.base_mapper import DataMapper
from statement_mapper.non_banking_mapper import (
    derive_non_banking_metrics,
    non_banking_mapper,
)
from statement_mapper.schema import CompanyType, MappingErrorType


@pytest.fixture
def mapper() -> DataMapper:
    return non_banking_mapper()


@pytest.fixture
def company_payload() -> dict:
    return {
        "revenue_fy": 1000.0,
        "cost_of_goods_fy": 600.0,
        "net_income_fy": 100.0,
        "total_assets_fy": 2000.0,
        "total_liabilities_fy": 1200.0,
        "total_equity_fy": 800.0,
        "revenue_fy_h": [1000.0, 900.0, 800.0],
        "net_income_fy_h": [100.0, 90.0, 80.0],
        "total_assets_fy_h": [2000.0, 1900.0, 1800.0],
        "total_equity_fy_h": [800.0, 750.0, 700.0],
    }


# ======================================================================
# Derived metrics
# ======================================================================

class TestDerivedMetrics:
    def test_headline_figures_filled(self) -> None:
        derived = derive_non_banking_metrics(
            {
                "revenue_fy": 1000.0,
                "cost_of_goods_fy": -600.0,
                "operating_expenses_fy": 150.0,
                "depreciation_fy": 50.0,
            }
        )
        assert derived["gross_profit_fy"] == pytest.approx(400.0)
        assert derived["oper_income_fy"] == pytest.approx(250.0)
        assert derived["ebitda_fy"] == pytest.approx(300.0)

    def test_balance_sheet_completed(self) -> None:
        derived = derive_non_banking_metrics(
            {"total_assets_fy": 2000.0, "total_liabilities_fy": 1500.0}
        )
        assert derived["total_equity_fy"] == pytest.approx(500.0)
        assert "total_assets_fy" not in derived

    def test_feed_value_wins(self) -> None:
        derived = derive_non_banking_metrics(
            {"revenue_fy": 1000.0, "cost_of_goods_fy": 600.0, "gross_profit_fy": 450.0}
        )
        assert "gross_profit_fy" not in derived

    def test_ratio_series(self, company_payload: dict) -> None:
        derived = derive_non_banking_metrics(company_payload)
        assert derived["net_margin_fy_h"][0] == pytest.approx(10.0)
        assert derived["return_on_equity_fy_h"][0] == pytest.approx(12.5)
        assert derived["return_on_assets_fy_h"][0] == pytest.approx(5.0)
        assert derived["asset_turnover_fy_h"][0] == pytest.approx(0.5)
        assert "debt_to_equity_fy_h" not in derived


# ======================================================================
# map_data()
# ======================================================================

class TestMapData:
    def test_successful_mapping(self, mapper: DataMapper, company_payload: dict) -> None:
        result = mapper.map_data(company_payload, symbol="TCS", sector="Technology")
        assert result.success
        assert result.errors == []
        data = result.data
        assert data.company_type is CompanyType.NON_BANKING
        assert data.metadata.sector == "Technology"
        assert data.metadata.max_historical_years == 3
        assert data.get_metric("gross_profit_fy").current_value == pytest.approx(400.0)
        assert data.get_metric("calculated_gross_margin").current_value == pytest.approx(40.0)
        assert data.get_metric("net_margin_fy").current_value == pytest.approx(10.0)

    def test_sections_only_with_metrics(
        self, mapper: DataMapper, company_payload: dict
    ) -> None:
        data = mapper.map_data(company_payload).data
        assert "cash-flow" not in data.section_ids
        assert {"profit-loss", "balance-sheet", "key-ratios"} <= set(data.section_ids)

    def test_quorum_of_three(self, mapper: DataMapper, company_payload: dict) -> None:
        del company_payload["total_equity_fy"]
        del company_payload["total_equity_fy_h"]
        del company_payload["total_liabilities_fy"]
        assert mapper.map_data(company_payload).success

    def test_quorum_failure(self, mapper: DataMapper) -> None:
        result = mapper.map_data({"revenue_fy": 1000.0, "net_income_fy": 100.0})
        assert not result.success
        assert len(result.errors_of(MappingErrorType.MISSING_REQUIRED_FIELD)) == 2

    def test_unbalanced_sheet_is_error_but_not_fatal(
        self, mapper: DataMapper, company_payload: dict
    ) -> None:
        company_payload["total_liabilities_fy"] = 100.0
        result = mapper.map_data(company_payload)
        assert result.success
        assert any(e.field == "balance_sheet_consistency" for e in result.errors)

    def test_liabilities_above_assets_fatal(
        self, mapper: DataMapper, company_payload: dict
    ) -> None:
        company_payload.update(total_liabilities_fy=2500.0, total_equity_fy=-500.0)
        result = mapper.map_data(company_payload)
        assert not result.success

    def test_non_positive_revenue(self, mapper: DataMapper, company_payload: dict) -> None:
        company_payload["revenue_fy"] = -10.0
        result = mapper.map_data(company_payload)
        assert any(e.field == "revenue_fy" for e in result.errors)

    def test_operating_above_gross_warns(
        self, mapper: DataMapper, company_payload: dict
    ) -> None:
        company_payload["oper_income_fy"] = 450.0
        result = mapper.map_data(company_payload)
        assert any(
            "greater than Gross Profit" in w.message for w in result.warnings
        )

    def test_extreme_revenue_swing(self, mapper: DataMapper, company_payload: dict) -> None:
        company_payload["revenue_fy_h"] = [5000.0, 900.0, 800.0]
        result = mapper.map_data(company_payload)
        swings = [
            w for w in result.warnings
            if w.type is MappingErrorType.HISTORICAL_DATA_MISMATCH
            and w.field == "revenue_fy_h"
        ]
        assert swings

    def test_sparse_history_warns(self, mapper: DataMapper, company_payload: dict) -> None:
        company_payload["net_income_fy_h"] = [100.0, None, None]
        result = mapper.map_data(company_payload)
        assert any("null values" in w.message for w in result.warnings)
