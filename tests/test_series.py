"""
Unit tests for index-aligned series arithmetic.
"""

from __future__ import annotations

from statement_mapper.series import (
    combine,
    has_values,
    null_fraction,
    percent,
    ratio,
    read_scalar,
    read_series,
    safe_divide,
)


# ======================================================================
# safe_divide
# ======================================================================

class TestSafeDivide:
    def test_plain_division(self) -> None:
        assert safe_divide(10.0, 4.0) == 2.5

    def test_zero_denominator(self) -> None:
        assert safe_divide(10.0, 0.0) is None
        assert safe_divide(10.0, 0.0, default=0.0) == 0.0

    def test_missing_operand(self) -> None:
        assert safe_divide(None, 2.0) is None
        assert safe_divide(2.0, None) is None


# ======================================================================
# Reading from payload views
# ======================================================================

class TestReaders:
    def test_read_series_cleans_entries(self) -> None:
        view = {"x_fy_h": [1, "2", None, "bad"]}
        assert read_series(view, "x_fy_h") == [1.0, 2.0, None, None]

    def test_read_series_rejects_scalars(self) -> None:
        assert read_series({"x": 5}, "x") is None
        assert read_series({}, "x") is None

    def test_read_scalar(self) -> None:
        assert read_scalar({"x": "1,500"}, "x") == 1500.0
        assert read_scalar({"x": [1]}, "x") is None
        assert read_scalar({}, "x") is None

    def test_has_values(self) -> None:
        assert has_values([None, 1.0])
        assert not has_values([None, None])
        assert not has_values(None)


# ======================================================================
# Element-wise combination
# ======================================================================

class TestCombine:
    def test_null_propagates_per_index(self) -> None:
        out = combine(lambda a, b: a + b, [1.0, None, 3.0], [1.0, 2.0, None])
        assert out == [2.0, None, None]

    def test_common_length(self) -> None:
        out = combine(lambda a, b: a * b, [1.0, 2.0, 3.0], [2.0, 2.0])
        assert out == [2.0, 4.0]

    def test_absent_series_gives_none(self) -> None:
        assert combine(lambda a, b: a + b, [1.0], None) is None

    def test_non_finite_result_is_null(self) -> None:
        out = combine(lambda a: a * float("inf"), [1.0, 0.0])
        assert out == [None, None]

    def test_zero_denominator_is_null_not_zero(self) -> None:
        assert ratio([10.0, 10.0], [2.0, 0.0]) == [5.0, None]

    def test_percent_scales(self) -> None:
        assert percent([1.0], [4.0]) == [25.0]


class TestNullFraction:
    def test_fraction(self) -> None:
        assert null_fraction([None, 1.0, None, 2.0]) == 0.5

    def test_empty(self) -> None:
        assert null_fraction([]) == 0.0
