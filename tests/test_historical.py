"""
Unit tests for the HistoricalDataProcessor.
"""

from __future__ import annotations

import pytest

from statement_mapper.config import HistoricalConfig, NullStrategy
from statement_mapper.historical import HistoricalDataProcessor, Trend
from statement_mapper.schema import MappingErrorType, Period


@pytest.fixture
def processor() -> HistoricalDataProcessor:
    return HistoricalDataProcessor()


@pytest.fixture
def interpolating() -> HistoricalDataProcessor:
    return HistoricalDataProcessor(
        HistoricalConfig(null_strategy=NullStrategy.INTERPOLATE)
    )


# ======================================================================
# process()
# ======================================================================

class TestProcess:
    def test_annual_truncated_to_twenty(self, processor: HistoricalDataProcessor) -> None:
        data = list(range(1, 31))
        result = processor.process(data, "revenue_fy_h", Period.FY)
        assert result.processed_data == [float(v) for v in data[:20]]
        assert result.valid_count == 20

    def test_quarterly_truncated_to_thirty_two(
        self, processor: HistoricalDataProcessor
    ) -> None:
        data = list(range(1, 41))
        result = processor.process(data, "revenue_fq_h", Period.FQ)
        assert len(result.processed_data) == 32

    def test_non_array_is_mismatch(self, processor: HistoricalDataProcessor) -> None:
        result = processor.process(123, "revenue_fy_h")
        assert result.processed_data == []
        assert result.errors[0].type is MappingErrorType.HISTORICAL_DATA_MISMATCH
        assert not result.has_data

    def test_invalid_entries_become_null(self, processor: HistoricalDataProcessor) -> None:
        result = processor.process([1, "abc", 3], "revenue_fy_h")
        assert result.processed_data == [1.0, None, 3.0]
        assert result.null_count == 1
        assert any("Invalid value at index 1" in w.message for w in result.warnings)

    def test_skip_strategy_keeps_nulls(self, processor: HistoricalDataProcessor) -> None:
        result = processor.process([1, None, 3], "revenue_fy_h")
        assert result.processed_data == [1.0, None, 3.0]

    def test_zero_strategy(self) -> None:
        proc = HistoricalDataProcessor(HistoricalConfig(null_strategy=NullStrategy.ZERO))
        result = proc.process([1, None, 3], "revenue_fy_h")
        assert result.processed_data == [1.0, 0.0, 3.0]
        assert any("replaced with 0" in w.message for w in result.warnings)

    def test_all_null_warns(self, processor: HistoricalDataProcessor) -> None:
        result = processor.process([None, None], "revenue_fy_h")
        assert any("No valid data points" in w.message for w in result.warnings)


# ======================================================================
# Interpolation
# ======================================================================

class TestInterpolate:
    def test_interior_gap_linear_trailing_left_null(self) -> None:
        assert HistoricalDataProcessor.interpolate([1, None, None, 4, None]) == [
            1, 2.0, 3.0, 4, None,
        ]

    def test_leading_nulls_take_first_known(self) -> None:
        assert HistoricalDataProcessor.interpolate([None, None, 5.0, 7.0]) == [
            5.0, 5.0, 5.0, 7.0,
        ]

    def test_all_null_unchanged(self) -> None:
        assert HistoricalDataProcessor.interpolate([None, None]) == [None, None]

    def test_strategy_reports_filled_points(
        self, interpolating: HistoricalDataProcessor
    ) -> None:
        result = interpolating.process([10, None, 30], "revenue_fy_h")
        assert result.processed_data == [10.0, 20.0, 30.0]
        assert any("interpolated" in w.message for w in result.warnings)


# ======================================================================
# Consistency checks
# ======================================================================

class TestValidateConsistency:
    def test_outlier_flagged(self, processor: HistoricalDataProcessor) -> None:
        warnings = processor.validate_consistency([100, 110, 5000, 90, 105], "revenue_fy_h")
        assert any("Potential outliers" in w.message for w in warnings)

    def test_clean_series_no_warning(self, processor: HistoricalDataProcessor) -> None:
        assert processor.validate_consistency([100, 110, 120], "revenue_fy_h") == []

    def test_negative_revenue_flagged(self, processor: HistoricalDataProcessor) -> None:
        warnings = processor.validate_consistency([100, -5, 120], "revenue_fy_h")
        assert any("should not be negative" in w.message for w in warnings)

    def test_negative_net_income_allowed(self, processor: HistoricalDataProcessor) -> None:
        assert processor.validate_consistency([100, -5, 120], "net_income_fy_h") == []


# ======================================================================
# Value access
# ======================================================================

class TestValueAccess:
    def test_most_recent_and_oldest(self) -> None:
        values = [None, 2.0, 3.0, None]
        assert HistoricalDataProcessor.most_recent_value(values) == 2.0
        assert HistoricalDataProcessor.oldest_value(values) == 3.0

    def test_value_at_prefers_older_neighbour(self) -> None:
        values = [1.0, None, 3.0]
        assert HistoricalDataProcessor.value_at(values, 1) == 3.0

    def test_value_at_falls_back_to_newer(self) -> None:
        values = [1.0, None, None]
        assert HistoricalDataProcessor.value_at(values, 2) == 1.0

    def test_value_at_out_of_range(self) -> None:
        assert HistoricalDataProcessor.value_at([1.0], 5) is None


# ======================================================================
# Growth
# ======================================================================

class TestGrowth:
    def test_growth_rate(self) -> None:
        result = HistoricalDataProcessor.growth_rate(110.0, 100.0)
        assert result.is_valid
        assert result.value == pytest.approx(10.0)

    def test_growth_from_negative_base_uses_abs(self) -> None:
        result = HistoricalDataProcessor.growth_rate(50.0, -100.0)
        assert result.value == pytest.approx(150.0)

    def test_growth_zero_base_invalid(self) -> None:
        result = HistoricalDataProcessor.growth_rate(10.0, 0.0)
        assert not result.is_valid
        assert result.value is None

    def test_yoy_labels(self, processor: HistoricalDataProcessor) -> None:
        results = processor.year_over_year_growth([120.0, 100.0, None])
        assert [r.period for r in results] == ["Year 1 vs Year 2", "Year 2 vs Year 3"]
        assert results[0].value == pytest.approx(20.0)
        assert not results[1].is_valid

    def test_same_quarter_yoy(self, processor: HistoricalDataProcessor) -> None:
        results = processor.same_quarter_yoy_growth([150, 1, 1, 1, 100])
        assert len(results) == 1
        assert results[0].value == pytest.approx(50.0)

    def test_cagr(self, processor: HistoricalDataProcessor) -> None:
        result = processor.cagr([121.0, 110.0, 100.0])
        assert result.is_valid
        assert result.value == pytest.approx(10.0)

    @pytest.mark.parametrize(
        "values",
        [[100.0, 0.0], [100.0, -50.0], [-10.0, 100.0], [None, None], []],
    )
    def test_cagr_invalid_never_nan(
        self, processor: HistoricalDataProcessor, values: list
    ) -> None:
        result = processor.cagr(values)
        assert not result.is_valid
        assert result.value is None


# ======================================================================
# Statistics
# ======================================================================

class TestStatistics:
    def test_moving_average(self, processor: HistoricalDataProcessor) -> None:
        out, warnings = processor.moving_average([1.0, 2.0, 3.0, 4.0], 2)
        assert out == [None, 1.5, 2.5, 3.5]
        assert warnings == []

    def test_moving_average_insufficient_window(
        self, processor: HistoricalDataProcessor
    ) -> None:
        out, warnings = processor.moving_average([1.0, None, None, None], 4)
        assert out[-1] is None
        assert warnings

    def test_moving_average_rejects_bad_window(
        self, processor: HistoricalDataProcessor
    ) -> None:
        with pytest.raises(ValueError):
            processor.moving_average([1.0], 0)

    def test_volatility(self) -> None:
        assert HistoricalDataProcessor.volatility([2.0, 4.0]) == pytest.approx(1.4142, rel=1e-3)
        assert HistoricalDataProcessor.volatility([2.0]) is None

    def test_trend_increasing_over_time(self, processor: HistoricalDataProcessor) -> None:
        # Most-recent-first: the latest value is the largest
        assert processor.trend([40.0, 30.0, 20.0, 10.0]).trend is Trend.INCREASING

    def test_trend_decreasing(self, processor: HistoricalDataProcessor) -> None:
        assert processor.trend([10.0, 20.0, 30.0, 40.0]).trend is Trend.DECREASING

    def test_trend_stable(self, processor: HistoricalDataProcessor) -> None:
        assert processor.trend([100.0, 100.0, 100.0]).trend is Trend.STABLE

    def test_trend_volatile(self, processor: HistoricalDataProcessor) -> None:
        assert processor.trend([10.0, 50.0, 10.0, 50.0, 10.0]).trend is Trend.VOLATILE

    def test_trend_insufficient(self, processor: HistoricalDataProcessor) -> None:
        assert processor.trend([1.0, None]).trend is Trend.INSUFFICIENT_DATA
