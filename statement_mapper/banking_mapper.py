"""
Banking variant of the statement mapper.

Banks are mapped against ``BANKING_TABLE`` and need at least three of:
interest income, total deposits, net loans (non-zero) and net income.

Derived ratios (all in percent, index-aligned over the ``_fy_h`` arrays)::

    Net NPA             = max(0, (NPL - allowances) / net loans)
    CASA                = demand deposits / total deposits
    Credit-to-deposit   = net loans / total deposits
    Provision coverage  = allowances / NPL
    Efficiency          = non-interest expense
                          / (net interest income + non-interest income)

Net NPA is always computed (the feed has no field for it); the others only
when the feed does not already carry the ratio.
"""

from __future__ import annotations

from typing import Any, Dict, Mapping, Optional

from statement_mapper.base_mapper import (
    DataMapper,
    MapperReport,
    MapperVariant,
    QuorumField,
    check_assets_cover_liabilities,
)
from statement_mapper.historical import HistoricalDataProcessor
from statement_mapper.mapping_tables import BANKING_TABLE
from statement_mapper.schema import CompanyType, MappingErrorType
from statement_mapper.series import (
    combine,
    has_values,
    null_fraction,
    percent,
    read_scalar,
    read_series,
    safe_divide,
)

# Sane bounds for bank ratios, in percent
NIM_RANGE = (0.0, 20.0)
GNPA_RANGE = (0.0, 50.0)

# Allowed spread between the lengths of the core history arrays
MAX_LENGTH_SPREAD = 2

# Share of nulls above which a core history array is reported
MAX_NULL_FRACTION = 0.8

CORE_HISTORY_FIELDS = (
    "interest_income_fy_h",
    "total_deposits_fy_h",
    "loans_net_fy_h",
    "net_income_fy_h",
)

# (current field, history field, label); absence of both is a warning
CRITICAL_METRICS = (
    ("interest_income_fy", "interest_income_fy_h", "Interest Income"),
    ("net_income_fy", "net_income_fy_h", "Net Income"),
    (None, "total_deposits_fy_h", "Total Deposits"),
    (None, "loans_net_fy_h", "Net Loans"),
    (None, "nonperf_loans_fy_h", "Non-Performing Loans"),
    (None, "loan_loss_allowances_fy_h", "Loan Loss Allowances"),
)

ASSET_QUALITY_FIELDS = (
    "nonperf_loans_fy",
    "nonperf_loans_fy_h",
    "nonperf_loans_loans_gross_fy",
    "nonperf_loans_loans_gross_fy_h",
    "nonperf_loans_loans_gross_fq",
)


# ---------------------------------------------------------------------------
# Derived metrics
# ---------------------------------------------------------------------------

def net_npa_series(
    npl: Optional[list], allowances: Optional[list], net_loans: Optional[list]
) -> Optional[list]:
    """``max(0, (npl - allowances) / net_loans × 100)`` per index."""

    def _net_npa(gross: float, provisions: float, loans: float) -> Optional[float]:
        share = safe_divide(gross - provisions, loans)
        return None if share is None else max(0.0, share * 100.0)

    return combine(_net_npa, npl, allowances, net_loans)


def derive_banking_metrics(payload: Mapping[str, Any]) -> Dict[str, Any]:
    derived: Dict[str, Any] = {}

    def _put(key: str, series: Optional[list]) -> None:
        if has_values(series):
            derived[key] = series

    deposits = read_series(payload, "total_deposits_fy_h")
    net_loans = read_series(payload, "loans_net_fy_h")
    npl = read_series(payload, "nonperf_loans_fy_h")
    allowances = read_series(payload, "loan_loss_allowances_fy_h")

    _put("calculated_net_npa_fy_h", net_npa_series(npl, allowances, net_loans))

    if not has_values(read_series(payload, "demand_deposits_total_deposits_fy_h")):
        _put(
            "demand_deposits_total_deposits_fy_h",
            percent(read_series(payload, "demand_deposits_fy_h"), deposits),
        )

    if not has_values(read_series(payload, "loans_net_total_deposits_fy_h")):
        _put("loans_net_total_deposits_fy_h", percent(net_loans, deposits))

    if not has_values(read_series(payload, "loan_loss_coverage_fy_h")):
        _put("loan_loss_coverage_fy_h", percent(allowances, npl))

    if not has_values(read_series(payload, "efficiency_ratio_fy_h")):
        income = combine(
            lambda nii, other: nii + other,
            read_series(payload, "interest_income_net_fy_h"),
            read_series(payload, "non_interest_income_fy_h"),
        )
        _put(
            "efficiency_ratio_fy_h",
            percent(read_series(payload, "non_interest_expense_fy_h"), income),
        )

    return derived


# ---------------------------------------------------------------------------
# Consistency checks
# ---------------------------------------------------------------------------

def _check_scalar_range(
    view: Mapping[str, Any],
    report: MapperReport,
    key: str,
    bounds: tuple[float, float],
    label: str,
) -> None:
    value = read_scalar(view, key)
    lo, hi = bounds
    if value is not None and not lo <= value <= hi:
        report.add_error(
            MappingErrorType.INVALID_DATA_TYPE,
            key,
            f"{label} appears unrealistic: {value}%",
            original_value=value,
        )


def _check_series_range(
    view: Mapping[str, Any],
    report: MapperReport,
    key: str,
    bounds: tuple[float, float],
    label: str,
) -> None:
    lo, hi = bounds
    for index, value in enumerate(read_series(view, key) or []):
        if value is not None and not lo <= value <= hi:
            report.add_error(
                MappingErrorType.INVALID_DATA_TYPE,
                key,
                f"Historical {label} appears unrealistic at index {index}: {value}%",
                original_value=value,
                index=index,
            )


def validate_banking_data(view: Mapping[str, Any], report: MapperReport) -> None:
    _check_scalar_range(view, report, "net_interest_margin_fq", NIM_RANGE,
                        "Net Interest Margin")
    _check_scalar_range(view, report, "nonperf_loans_loans_gross_fq", GNPA_RANGE,
                        "Gross NPA ratio")
    _check_series_range(view, report, "net_interest_margin_fy_h", NIM_RANGE,
                        "Net Interest Margin")
    _check_series_range(view, report, "nonperf_loans_loans_gross_fy_h", GNPA_RANGE,
                        "Gross NPA ratio")

    deposits_fq = read_scalar(view, "total_deposits_fq")
    if deposits_fq is not None and deposits_fq <= 0:
        report.add_error(
            MappingErrorType.INVALID_DATA_TYPE,
            "total_deposits_fq",
            f"Total deposits should be positive: {deposits_fq:g}",
            original_value=deposits_fq,
        )

    check_assets_cover_liabilities(view, report)

    for suffix in ("fq", "fy"):
        gross = read_scalar(view, f"interest_income_{suffix}")
        net = read_scalar(view, f"interest_income_net_{suffix}")
        if gross and net and gross < net:
            report.add_error(
                MappingErrorType.INVALID_DATA_TYPE,
                "interest_income_consistency",
                f"Interest income ({gross:g}) should be greater than or equal to "
                f"net interest income ({net:g})",
                period=suffix.upper(),
            )

    # History shape
    lengths = {
        key: len(view[key])
        for key in CORE_HISTORY_FIELDS
        if isinstance(view.get(key), (list, tuple))
    }
    if len(lengths) > 1:
        shortest, longest = min(lengths.values()), max(lengths.values())
        if longest - shortest > MAX_LENGTH_SPREAD:
            report.add_warning(
                MappingErrorType.HISTORICAL_DATA_MISMATCH,
                "historical_arrays",
                f"Historical data arrays have inconsistent lengths: "
                f"min={shortest}, max={longest}",
                lengths=lengths,
            )

    for key in CORE_HISTORY_FIELDS:
        series = read_series(view, key)
        if series and null_fraction(series) > MAX_NULL_FRACTION:
            report.add_warning(
                MappingErrorType.INVALID_DATA_TYPE,
                key,
                f"Historical data array '{key}' has "
                f"{null_fraction(series) * 100:.1f}% null values",
            )

    for current, historical, label in CRITICAL_METRICS:
        has_current = current is not None and read_scalar(view, current) is not None
        if not has_current and not has_values(read_series(view, historical)):
            report.add_warning(
                MappingErrorType.MISSING_REQUIRED_FIELD,
                historical,
                f"Critical banking metric '{label}' is missing both current "
                f"and historical data",
            )

    if not any(
        has_values(read_series(view, key)) or read_scalar(view, key) is not None
        for key in ASSET_QUALITY_FIELDS
    ):
        report.add_warning(
            MappingErrorType.MISSING_REQUIRED_FIELD,
            "asset_quality",
            "No asset quality data (NPL / GNPA) available; Net NPA cannot be assessed",
        )


# ---------------------------------------------------------------------------
# Variant
# ---------------------------------------------------------------------------

BANKING_VARIANT = MapperVariant(
    company_type=CompanyType.BANKING,
    table=BANKING_TABLE,
    quorum_fields=(
        QuorumField("interest income", "interest_income_fy_h", "interest_income_fy"),
        QuorumField("total deposits", "total_deposits_fy_h"),
        QuorumField("net loans", "loans_net_fy_h", allow_zero=False),
        QuorumField("net income", "net_income_fy_h", "net_income_fy"),
    ),
    quorum_minimum=3,
    derive=derive_banking_metrics,
    validate=validate_banking_data,
    default_sector="Banking",
    default_industry="Banking",
)


def banking_mapper(processor: Optional[HistoricalDataProcessor] = None) -> DataMapper:
    return DataMapper(BANKING_VARIANT, processor)
