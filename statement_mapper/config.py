"""
Configuration module for Statement Mapper.

All tuneable parameters (thresholds, weights, limits, feature flags) live
here.  Nothing is hard-coded in business logic modules.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum

from statement_mapper.schema import CompanyType


class NullStrategy(str, Enum):
    """How null entries inside a historical array are treated."""

    SKIP = "skip"
    ZERO = "zero"
    INTERPOLATE = "interpolate"


@dataclass(frozen=True)
class HistoricalConfig:
    """Controls cleaning and validation of historical arrays."""

    # Longest series kept per period; longer input is silently truncated
    max_annual_years: int = 20
    max_quarterly_periods: int = 32

    null_strategy: NullStrategy = NullStrategy.SKIP

    # Run the outlier / sign checks after cleaning
    validate_consistency: bool = True

    # |value| above this multiple of the median is reported as an outlier
    outlier_multiplier: float = 10.0

    # How many outlier values are quoted in the warning message
    outlier_report_limit: int = 3

    # Field-name fragments that imply a value can never be negative
    non_negative_markers: tuple[str, ...] = (
        "revenue",
        "total_revenue",
        "total_assets",
        "total_deposits",
        "loans_gross",
    )

    # A moving-average window needs at least this share of valid points
    moving_average_min_coverage: float = 0.5

    # Trend fits below this R² are classified as volatile
    trend_min_r_squared: float = 0.3

    # Slope must exceed this fraction of |mean| to count as a trend
    trend_slope_fraction: float = 0.01


@dataclass(frozen=True)
class DetectionConfig:
    """Weights and thresholds of the banking / non-banking classifier."""

    sector_weight: float = 0.4
    industry_weight: float = 0.2
    field_weight: float = 0.4

    # Sector containing a banking keyword but not on the sector list
    sector_keyword_score: float = 0.7

    # Each industry keyword match adds this much (capped at 1.0)
    industry_match_step: float = 0.3

    # Subtracted from the field ratio per present non-banking indicator
    non_banking_field_penalty: float = 0.1

    # Hard decision cut: banking iff score >= banking_threshold
    banking_threshold: float = 0.5

    # Confidence bands
    high_confidence: float = 0.8
    medium_confidence: float = 0.5

    # Scores inside [ambiguity_low, ambiguity_high] raise a warning only;
    # the band never overrides the banking_threshold decision.
    ambiguity_low: float = 0.4
    ambiguity_high: float = 0.6

    # validate_detection replaces low-confidence results below this score
    fallback_score_floor: float = 0.2

    # rapidfuzz partial_ratio cutoff (0-100) for the sector list match
    sector_match_cutoff: float = 95.0


@dataclass(frozen=True)
class ErrorHandlingConfig:
    """Retry backoff and error-history limits."""

    base_delay_seconds: float = 1.0
    max_delay_seconds: float = 30.0

    # Up to this fraction of the delay is added as random jitter
    jitter_fraction: float = 0.1

    # Aggregations kept per symbol
    history_limit: int = 100


@dataclass(frozen=True)
class CacheConfig:
    """Result cache keyed by request fingerprint."""

    enabled: bool = True
    ttl_seconds: float = 300.0
    max_entries: int = 100

    # Share of the oldest entries evicted when the cache is full
    evict_fraction: float = 0.2

    def __post_init__(self) -> None:
        if self.max_entries < 1:
            raise ValueError(f"max_entries must be >= 1, got {self.max_entries}")
        if not 0.0 < self.evict_fraction <= 1.0:
            raise ValueError(
                f"evict_fraction must be in (0, 1], got {self.evict_fraction}"
            )


@dataclass(frozen=True)
class MapperConfig:
    """Top-level configuration aggregating all sub-configs."""

    historical: HistoricalConfig = field(default_factory=HistoricalConfig)
    detection: DetectionConfig = field(default_factory=DetectionConfig)
    error_handling: ErrorHandlingConfig = field(default_factory=ErrorHandlingConfig)
    cache: CacheConfig = field(default_factory=CacheConfig)

    # Retry the same mapper while the error handler deems it worthwhile
    enable_retry: bool = True
    max_retries: int = 2

    # Type used when detection is too weak to trust
    fallback_company_type: CompanyType = CompanyType.NON_BANKING

    # Logging level for the mapping audit trail
    log_level: int = logging.INFO
