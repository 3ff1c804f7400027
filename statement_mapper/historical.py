"""
Historical Data Processor.

Cleans, limits and validates the raw historical arrays that accompany most
feed fields (``*_fy_h`` for up to 20 fiscal years, ``*_fq_h`` for up to 32
fiscal quarters), and provides the growth / statistics helpers used on the
cleaned series.

Conventions
-----------
* Every array is ordered **most-recent-first**: index 0 is the latest period.
* ``None`` marks a missing period.  Nulls are kept so that index ``i`` refers
  to the same period across fields.
* Nothing in this module raises on malformed input.  Problems are returned
  as ``MappingError`` values in the result.
"""

from __future__ import annotations

import math
import statistics
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, List, Optional, Sequence, Tuple

from statement_mapper.config import HistoricalConfig, NullStrategy
from statement_mapper.logging_setup import get_logger
from statement_mapper.normalizer import NORMALIZER
from statement_mapper.schema import MappingError, MappingErrorType, Period

logger = get_logger("historical")

Series = List[Optional[float]]


@dataclass
class ProcessedSeries:
    """Result of ``HistoricalDataProcessor.process``."""

    processed_data: Series = field(default_factory=list)
    valid_count: int = 0
    null_count: int = 0
    errors: list[MappingError] = field(default_factory=list)
    warnings: list[MappingError] = field(default_factory=list)

    @property
    def has_data(self) -> bool:
        return self.valid_count > 0


@dataclass(frozen=True)
class GrowthResult:
    """A growth figure in percent, or an explicit invalid marker."""

    value: Optional[float]
    is_valid: bool
    period: str
    reason: Optional[str] = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "value": self.value,
            "is_valid": self.is_valid,
            "period": self.period,
            "reason": self.reason,
        }


class Trend(str, Enum):
    INCREASING = "increasing"
    DECREASING = "decreasing"
    STABLE = "stable"
    VOLATILE = "volatile"
    INSUFFICIENT_DATA = "insufficient-data"


@dataclass(frozen=True)
class TrendResult:
    trend: Trend
    slope: Optional[float] = None
    r_squared: Optional[float] = None


def _valid(values: Sequence[Optional[float]]) -> list[float]:
    return [v for v in values if v is not None]


class HistoricalDataProcessor:
    """Cleans and analyses most-recent-first historical arrays.

    Parameters
    ----------
    config:
        Period limits, null strategy and check thresholds.
    """

    def __init__(self, config: Optional[HistoricalConfig] = None) -> None:
        self._config = config or HistoricalConfig()

    @property
    def config(self) -> HistoricalConfig:
        return self._config

    def max_length(self, period: Period) -> int:
        if period is Period.FQ:
            return self._config.max_quarterly_periods
        return self._config.max_annual_years

    # ------------------------------------------------------------------ #
    # Public API
    # ------------------------------------------------------------------ #

    def process(
        self,
        raw: Any,
        field_name: str,
        period: Period = Period.FY,
    ) -> ProcessedSeries:
        """Truncate, clean, fill and check one raw historical array.

        Parameters
        ----------
        raw:
            The value found in the payload.  Anything other than a list or
            tuple is reported as a ``HISTORICAL_DATA_MISMATCH``.
        field_name:
            Feed field name, used in messages and for the sign check.
        period:
            Selects the length limit (20 annual / 32 quarterly by default).

        Returns
        -------
        ProcessedSeries
        """
        result = ProcessedSeries()

        if not isinstance(raw, (list, tuple)):
            result.errors.append(
                MappingError(
                    type=MappingErrorType.HISTORICAL_DATA_MISMATCH,
                    field=field_name,
                    message=(
                        f"Historical data for '{field_name}' is not an array "
                        f"(got {type(raw).__name__})"
                    ),
                    original_value=raw if raw is None else repr(raw),
                )
            )
            return result

        limited = list(raw[: self.max_length(period)])
        if len(raw) > len(limited):
            logger.debug(
                "Truncated %s from %d to %d points", field_name, len(raw), len(limited)
            )

        cleaned, clean_warnings = self.clean_values(limited, field_name)
        result.warnings.extend(clean_warnings)

        filled, fill_warnings = self.apply_null_strategy(cleaned, field_name)
        result.warnings.extend(fill_warnings)

        if self._config.validate_consistency:
            result.warnings.extend(self.validate_consistency(filled, field_name))

        result.processed_data = filled
        result.valid_count = sum(1 for v in filled if v is not None)
        result.null_count = len(filled) - result.valid_count
        return result

    def clean_values(
        self, values: Sequence[Any], field_name: str
    ) -> Tuple[Series, list[MappingError]]:
        """Coerce each element to ``float | None``."""
        cleaned: Series = []
        warnings: list[MappingError] = []
        for i, raw in enumerate(values):
            if raw is None:
                cleaned.append(None)
                continue
            value = NORMALIZER.to_float(raw)
            if value is None:
                warnings.append(
                    MappingError(
                        type=MappingErrorType.INVALID_DATA_TYPE,
                        field=field_name,
                        message=f"Invalid value at index {i}",
                        original_value=repr(raw),
                        context={"index": i},
                    )
                )
            cleaned.append(value)
        return cleaned, warnings

    def apply_null_strategy(
        self, values: Series, field_name: str
    ) -> Tuple[Series, list[MappingError]]:
        strategy = self._config.null_strategy
        warnings: list[MappingError] = []

        if strategy is NullStrategy.SKIP:
            return list(values), warnings

        if strategy is NullStrategy.ZERO:
            out: Series = []
            for i, v in enumerate(values):
                if v is None:
                    warnings.append(
                        MappingError(
                            type=MappingErrorType.HISTORICAL_DATA_MISMATCH,
                            field=field_name,
                            message=f"Null value at index {i} replaced with 0",
                            context={"index": i, "strategy": strategy.value},
                        )
                    )
                    out.append(0.0)
                else:
                    out.append(v)
            return out, warnings

        filled = self.interpolate(values)
        for i, (before, after) in enumerate(zip(values, filled)):
            if before is None and after is not None:
                warnings.append(
                    MappingError(
                        type=MappingErrorType.HISTORICAL_DATA_MISMATCH,
                        field=field_name,
                        message=f"Null value at index {i} interpolated to {after:.4g}",
                        context={"index": i, "strategy": strategy.value},
                    )
                )
        return filled, warnings

    @staticmethod
    def interpolate(values: Sequence[Optional[float]]) -> Series:
        """Fill nulls from their non-null neighbours.

        Interior gaps are filled linearly.  Nulls before the first known
        value (the most recent periods) take that value; nulls after the
        last known value (the oldest periods) are left as ``None``.

        >>> HistoricalDataProcessor.interpolate([1, None, None, 4, None])
        [1, 2.0, 3.0, 4, None]
        """
        out: Series = list(values)
        known = [i for i, v in enumerate(values) if v is not None]
        if not known:
            return out

        first = known[0]
        for i in range(first):
            out[i] = values[first]

        for left, right in zip(known, known[1:]):
            gap = right - left
            if gap <= 1:
                continue
            lo, hi = values[left], values[right]
            step = (hi - lo) / gap
            for i in range(left + 1, right):
                out[i] = lo + step * (i - left)
        return out

    def validate_consistency(
        self, values: Sequence[Optional[float]], field_name: str
    ) -> list[MappingError]:
        """Outlier and sign checks.  Warning level only."""
        warnings: list[MappingError] = []
        valid = _valid(values)

        if not valid:
            warnings.append(
                MappingError(
                    type=MappingErrorType.HISTORICAL_DATA_MISMATCH,
                    field=field_name,
                    message=f"No valid data points in '{field_name}'",
                )
            )
            return warnings

        ordered = sorted(valid)
        median = ordered[len(ordered) // 2]
        if median > 0:
            limit = self._config.outlier_multiplier * median
            outliers = [v for v in valid if abs(v) > limit]
            if outliers:
                shown = ", ".join(
                    f"{v:g}" for v in outliers[: self._config.outlier_report_limit]
                )
                warnings.append(
                    MappingError(
                        type=MappingErrorType.HISTORICAL_DATA_MISMATCH,
                        field=field_name,
                        message=(
                            f"Potential outliers in '{field_name}': {shown} "
                            f"(median {median:g})"
                        ),
                        context={"outlier_count": len(outliers), "median": median},
                    )
                )

        name = field_name.lower()
        if any(marker in name for marker in self._config.non_negative_markers):
            negatives = [v for v in valid if v < 0]
            if negatives:
                warnings.append(
                    MappingError(
                        type=MappingErrorType.HISTORICAL_DATA_MISMATCH,
                        field=field_name,
                        message=(
                            f"'{field_name}' has {len(negatives)} negative "
                            f"value(s) but should not be negative"
                        ),
                        context={"negative_count": len(negatives)},
                    )
                )
        return warnings

    # ------------------------------------------------------------------ #
    # Value access
    # ------------------------------------------------------------------ #

    @staticmethod
    def most_recent_value(values: Sequence[Optional[float]]) -> Optional[float]:
        for v in values:
            if v is not None:
                return v
        return None

    @staticmethod
    def oldest_value(values: Sequence[Optional[float]]) -> Optional[float]:
        for v in reversed(values):
            if v is not None:
                return v
        return None

    @staticmethod
    def value_at(values: Sequence[Optional[float]], index: int) -> Optional[float]:
        """Value at *index*, else the nearest valid one (older side first)."""
        if index < 0 or index >= len(values):
            return None
        if values[index] is not None:
            return values[index]
        for i in range(index + 1, len(values)):
            if values[i] is not None:
                return values[i]
        for i in range(index - 1, -1, -1):
            if values[i] is not None:
                return values[i]
        return None

    # ------------------------------------------------------------------ #
    # Growth
    # ------------------------------------------------------------------ #

    @staticmethod
    def growth_rate(
        current: Optional[float], base: Optional[float], period: str = ""
    ) -> GrowthResult:
        """Percentage change from *base* to *current*."""
        if current is None or base is None:
            return GrowthResult(None, False, period, "missing value")
        if base == 0:
            if current == 0:
                return GrowthResult(0.0, True, period)
            return GrowthResult(None, False, period, "base value is zero")
        return GrowthResult((current - base) / abs(base) * 100.0, True, period)

    def year_over_year_growth(
        self, values: Sequence[Optional[float]]
    ) -> list[GrowthResult]:
        return [
            self.growth_rate(values[i], values[i + 1], f"Year {i + 1} vs Year {i + 2}")
            for i in range(len(values) - 1)
        ]

    def quarter_over_quarter_growth(
        self, values: Sequence[Optional[float]]
    ) -> list[GrowthResult]:
        return [
            self.growth_rate(values[i], values[i + 1], f"Q{i + 1} vs Q{i + 2}")
            for i in range(len(values) - 1)
        ]

    def same_quarter_yoy_growth(
        self, values: Sequence[Optional[float]]
    ) -> list[GrowthResult]:
        """Quarter ``i`` against the same quarter a year earlier (``i + 4``)."""
        return [
            self.growth_rate(values[i], values[i + 4], f"Q{i + 1} vs Q{i + 5} (YoY)")
            for i in range(len(values) - 4)
        ]

    def cagr(
        self, values: Sequence[Optional[float]], years: Optional[int] = None
    ) -> GrowthResult:
        """Compound annual growth between the latest value and *years* back.

        Never returns NaN or infinity: a non-positive base or span yields an
        invalid result instead.
        """
        if years is None:
            years = len(values) - 1
        label = f"CAGR ({years} years)"
        if not values or years <= 0:
            return GrowthResult(None, False, label, "period must be positive")

        end = self.most_recent_value(values)
        start = self.value_at(values, min(years, len(values) - 1))
        if end is None or start is None:
            return GrowthResult(None, False, label, "missing value")
        if start <= 0:
            return GrowthResult(None, False, label, "base value must be positive")
        if end < 0:
            return GrowthResult(None, False, label, "end value is negative")

        value = ((end / start) ** (1.0 / years) - 1.0) * 100.0
        return GrowthResult(value, True, label)

    # ------------------------------------------------------------------ #
    # Statistics
    # ------------------------------------------------------------------ #

    def moving_average(
        self, values: Sequence[Optional[float]], window: int
    ) -> Tuple[Series, list[MappingError]]:
        if window < 1:
            raise ValueError(f"window must be >= 1, got {window}")

        out: Series = []
        warnings: list[MappingError] = []
        needed = window * self._config.moving_average_min_coverage
        for i in range(len(values)):
            if i < window - 1:
                out.append(None)
                continue
            sample = _valid(values[i - window + 1 : i + 1])
            if len(sample) < needed:
                warnings.append(
                    MappingError(
                        type=MappingErrorType.HISTORICAL_DATA_MISMATCH,
                        field="moving_average",
                        message=(
                            f"Insufficient data for moving average at index {i} "
                            f"({len(sample)}/{window} valid)"
                        ),
                        context={"index": i, "window": window},
                    )
                )
                out.append(None)
                continue
            out.append(sum(sample) / len(sample))
        return out, warnings

    @staticmethod
    def volatility(values: Sequence[Optional[float]]) -> Optional[float]:
        """Sample standard deviation of the valid points."""
        valid = _valid(values)
        if len(valid) < 2:
            return None
        return statistics.stdev(valid)

    def trend(self, values: Sequence[Optional[float]]) -> TrendResult:
        """Least-squares trend over time.

        Positions are chronological (oldest = 0), so ``INCREASING`` means
        the metric grew over time even though arrays are stored
        most-recent-first.
        """
        n_total = len(values)
        points = [
            (float(n_total - 1 - i), v) for i, v in enumerate(values) if v is not None
        ]
        if len(points) < 3:
            return TrendResult(Trend.INSUFFICIENT_DATA)

        n = len(points)
        sum_x = sum(x for x, _ in points)
        sum_y = sum(y for _, y in points)
        sum_xx = sum(x * x for x, _ in points)
        sum_xy = sum(x * y for x, y in points)

        denominator = n * sum_xx - sum_x * sum_x
        if denominator == 0:
            return TrendResult(Trend.STABLE, 0.0, None)

        slope = (n * sum_xy - sum_x * sum_y) / denominator
        intercept = (sum_y - slope * sum_x) / n
        mean_y = sum_y / n

        ss_tot = sum((y - mean_y) ** 2 for _, y in points)
        ss_res = sum((y - (slope * x + intercept)) ** 2 for x, y in points)
        r_squared = 1.0 if ss_tot == 0 else 1.0 - ss_res / ss_tot

        if not math.isfinite(slope):
            return TrendResult(Trend.STABLE, None, None)

        threshold = abs(mean_y) * self._config.trend_slope_fraction
        if r_squared < self._config.trend_min_r_squared:
            trend = Trend.VOLATILE
        elif slope > threshold:
            trend = Trend.INCREASING
        elif slope < -threshold:
            trend = Trend.DECREASING
        else:
            trend = Trend.STABLE
        return TrendResult(trend, slope, r_squared)
