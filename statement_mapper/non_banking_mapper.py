"""
Non-banking variant of the statement mapper.

Operating companies are mapped against ``NON_BANKING_TABLE`` and need at
least three of revenue, net income, total assets and total equity.

Missing headline figures are filled in from their neighbours before the
ratios are derived::

    gross profit      = revenue - |cost of goods|
    operating income  = gross profit - |operating expenses|
    EBITDA            = operating income + |depreciation|
    A / L / E         = any one from the other two (A = L + E)

Margins, ROE and ROA are percentages; debt/equity and asset turnover are
plain ratios.  As with banks, a ratio the feed already carries is never
recomputed.
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
from statement_mapper.mapping_tables import NON_BANKING_TABLE
from statement_mapper.schema import CompanyType, MappingErrorType
from statement_mapper.series import (
    has_values,
    null_fraction,
    percent,
    ratio,
    read_scalar,
    read_series,
    safe_divide,
)

GROSS_MARGIN_RANGE = (-50.0, 100.0)
NET_MARGIN_RANGE = (-100.0, 100.0)
EBITDA_MARGIN_RANGE = (-100.0, 100.0)
DEBT_TO_EQUITY_RANGE = (0.0, 20.0)
ASSET_TURNOVER_RANGE = (0.01, 10.0)

# Equity below this share of assets is reported
MIN_EQUITY_TO_ASSETS = -0.5

# A = L + E tolerance: max(share of assets, absolute floor)
BALANCE_TOLERANCE_SHARE = 0.01
BALANCE_TOLERANCE_FLOOR = 1000.0

# |net income - operating income| above this multiple of |OI| is reported
NON_OPERATING_MULTIPLE = 2.0

MAX_NULL_FRACTION = 0.5

# Year-over-year swings (percent) above which a history is flagged
REVENUE_SWING_LIMIT = 200.0
NET_INCOME_SWING_LIMIT = 500.0

KEY_HISTORY_FIELDS = (
    ("revenue_fy_h", "Revenue"),
    ("net_income_fy_h", "Net Income"),
    ("total_assets_fy_h", "Total Assets"),
    ("total_equity_fy_h", "Total Equity"),
)


def _current(view: Mapping[str, Any], key: str) -> Optional[float]:
    """Scalar ``key`` or, failing that, the newest entry of ``key_h``."""
    value = read_scalar(view, key)
    if value is not None:
        return value
    for entry in read_series(view, f"{key}_h") or []:
        if entry is not None:
            return entry
    return None


# ---------------------------------------------------------------------------
# Derived metrics
# ---------------------------------------------------------------------------

def _fill_headline_figures(payload: Mapping[str, Any], derived: Dict[str, Any]) -> None:
    def _get(key: str) -> Optional[float]:
        if key in derived:
            return derived[key]
        return _current(payload, key)

    def _fill(key: str, value: Optional[float]) -> None:
        if value is not None and _get(key) is None:
            derived[key] = value

    revenue = _get("revenue_fy")
    cogs = _get("cost_of_goods_fy")
    if revenue is not None and cogs is not None:
        _fill("gross_profit_fy", revenue - abs(cogs))

    gross_profit = _get("gross_profit_fy")
    opex = _get("operating_expenses_fy")
    if gross_profit is not None and opex is not None:
        _fill("oper_income_fy", gross_profit - abs(opex))

    oper_income = _get("oper_income_fy")
    depreciation = _get("depreciation_fy")
    if oper_income is not None and depreciation is not None:
        _fill("ebitda_fy", oper_income + abs(depreciation))

    assets = _get("total_assets_fy")
    liabilities = _get("total_liabilities_fy")
    equity = _get("total_equity_fy")
    if assets is not None and liabilities is not None:
        _fill("total_equity_fy", assets - liabilities)
    if assets is not None and equity is not None:
        _fill("total_liabilities_fy", assets - equity)
    if liabilities is not None and equity is not None:
        _fill("total_assets_fy", liabilities + equity)


def derive_non_banking_metrics(payload: Mapping[str, Any]) -> Dict[str, Any]:
    derived: Dict[str, Any] = {}
    _fill_headline_figures(payload, derived)

    def _put(key: str, series: Optional[list]) -> None:
        if not has_values(read_series(payload, key)) and has_values(series):
            derived[key] = series

    revenue = read_series(payload, "revenue_fy_h")
    net_income = read_series(payload, "net_income_fy_h")
    assets = read_series(payload, "total_assets_fy_h")
    equity = read_series(payload, "total_equity_fy_h")

    _put("gross_margin_fy_h", percent(read_series(payload, "gross_profit_fy_h"), revenue))
    _put("operating_margin_fy_h", percent(read_series(payload, "oper_income_fy_h"), revenue))
    _put("net_margin_fy_h", percent(net_income, revenue))
    _put("ebitda_margin_fy_h", percent(read_series(payload, "ebitda_fy_h"), revenue))
    _put("return_on_equity_fy_h", percent(net_income, equity))
    _put("return_on_assets_fy_h", percent(net_income, assets))
    _put("debt_to_equity_fy_h", ratio(read_series(payload, "total_debt_fy_h"), equity))
    _put("asset_turnover_fy_h", ratio(revenue, assets))
    return derived


# ---------------------------------------------------------------------------
# Consistency checks
# ---------------------------------------------------------------------------

def _outside(value: Optional[float], bounds: tuple[float, float]) -> bool:
    lo, hi = bounds
    return value is not None and not lo <= value <= hi


def _yoy_swings(series: Optional[list]) -> list[float]:
    """Percent changes between consecutive non-null entries (newest first)."""
    if not series or len(series) < 3:
        return []
    swings = []
    for newer, older in zip(series, series[1:]):
        if newer is None or older is None or older == 0:
            continue
        swings.append((newer - older) / abs(older) * 100.0)
    return swings


def _check_current_values(view: Mapping[str, Any], report: MapperReport) -> None:
    revenue = read_scalar(view, "revenue_fy")
    if revenue is not None and revenue <= 0:
        report.add_error(
            MappingErrorType.INVALID_DATA_TYPE,
            "revenue_fy",
            f"Revenue should be positive: {revenue:g}",
            original_value=revenue,
        )

    assets = read_scalar(view, "total_assets_fy")
    if assets is not None and assets <= 0:
        report.add_error(
            MappingErrorType.INVALID_DATA_TYPE,
            "total_assets_fy",
            f"Total Assets should be positive: {assets:g}",
            original_value=assets,
        )

    equity = read_scalar(view, "total_equity_fy")
    share = safe_divide(equity, assets) if assets else None
    if share is not None and share < MIN_EQUITY_TO_ASSETS:
        report.add_error(
            MappingErrorType.INVALID_DATA_TYPE,
            "total_equity_fy",
            f"Total Equity appears extremely negative relative to assets: "
            f"{equity:g} ({share * 100:.1f}% of assets)",
            original_value=equity,
        )

    net_income = read_scalar(view, "net_income_fy")
    if revenue is not None and revenue > 0 and net_income is not None:
        margin = net_income / revenue * 100.0
        if _outside(margin, NET_MARGIN_RANGE):
            report.add_warning(
                MappingErrorType.INVALID_DATA_TYPE,
                "net_income_fy",
                f"Net margin appears unrealistic: {margin:.1f}%",
                original_value=net_income,
            )


def _check_history_ranges(view: Mapping[str, Any], report: MapperReport) -> None:
    for index, value in enumerate(read_series(view, "gross_margin_fy_h") or []):
        if _outside(value, GROSS_MARGIN_RANGE):
            report.add_error(
                MappingErrorType.INVALID_DATA_TYPE,
                "gross_margin_fy_h",
                f"Historical Gross Margin appears unrealistic at index {index}: {value}%",
                original_value=value,
                index=index,
            )


def _check_balance_sheet(view: Mapping[str, Any], report: MapperReport) -> None:
    assets = read_scalar(view, "total_assets_fy")
    liabilities = read_scalar(view, "total_liabilities_fy")
    equity = read_scalar(view, "total_equity_fy")
    if assets is not None and liabilities is not None and equity is not None:
        difference = abs(assets - (liabilities + equity))
        tolerance = max(assets * BALANCE_TOLERANCE_SHARE, BALANCE_TOLERANCE_FLOOR)
        if difference > tolerance:
            report.add_error(
                MappingErrorType.INVALID_DATA_TYPE,
                "balance_sheet_consistency",
                f"Balance sheet equation doesn't balance: Assets ({assets:g}) != "
                f"Liabilities ({liabilities:g}) + Equity ({equity:g}). "
                f"Difference: {difference:g}",
            )

    check_assets_cover_liabilities(view, report)


def _check_profit_hierarchy(view: Mapping[str, Any], report: MapperReport) -> None:
    revenue = _current(view, "revenue_fy")
    gross_profit = _current(view, "gross_profit_fy")
    oper_income = _current(view, "oper_income_fy")
    net_income = _current(view, "net_income_fy")

    if revenue is not None and gross_profit is not None and gross_profit > revenue:
        report.add_warning(
            MappingErrorType.INVALID_DATA_TYPE,
            "profit_hierarchy_consistency",
            f"Gross Profit ({gross_profit:g}) is greater than Revenue ({revenue:g})",
        )

    if gross_profit is not None and oper_income is not None and oper_income > gross_profit:
        report.add_warning(
            MappingErrorType.INVALID_DATA_TYPE,
            "profit_hierarchy_consistency",
            f"Operating Income ({oper_income:g}) is greater than "
            f"Gross Profit ({gross_profit:g})",
        )

    if oper_income and net_income is not None:
        if abs(net_income - oper_income) > abs(oper_income) * NON_OPERATING_MULTIPLE:
            report.add_warning(
                MappingErrorType.INVALID_DATA_TYPE,
                "profit_hierarchy_consistency",
                f"Large difference between Operating Income ({oper_income:g}) and "
                f"Net Income ({net_income:g}), indicating significant "
                f"non-operating items",
            )


def _check_cross_metric(view: Mapping[str, Any], report: MapperReport) -> None:
    revenue = _current(view, "revenue_fy")
    assets = _current(view, "total_assets_fy")
    equity = _current(view, "total_equity_fy")
    debt = _current(view, "total_debt_fy")
    ebitda = _current(view, "ebitda_fy")

    turnover = safe_divide(revenue, assets) if revenue else None
    if _outside(turnover, ASSET_TURNOVER_RANGE):
        report.add_warning(
            MappingErrorType.INVALID_DATA_TYPE,
            "asset_turnover_relationship",
            f"Asset turnover ratio appears unrealistic: {turnover:.3f} "
            f"(Revenue: {revenue:g}, Assets: {assets:g})",
        )

    leverage = safe_divide(debt, equity) if debt else None
    if _outside(leverage, DEBT_TO_EQUITY_RANGE):
        report.add_warning(
            MappingErrorType.INVALID_DATA_TYPE,
            "debt_to_equity_relationship",
            f"Debt-to-Equity ratio appears unrealistic: {leverage:.2f}",
        )

    margin = safe_divide(ebitda, revenue) if ebitda else None
    if margin is not None and _outside(margin * 100.0, EBITDA_MARGIN_RANGE):
        report.add_warning(
            MappingErrorType.INVALID_DATA_TYPE,
            "ebitda_margin_relationship",
            f"EBITDA margin appears unrealistic: {margin * 100.0:.1f}%",
        )


def _check_completeness(view: Mapping[str, Any], report: MapperReport) -> None:
    for key, label in KEY_HISTORY_FIELDS:
        series = read_series(view, key)
        if series and null_fraction(series) > MAX_NULL_FRACTION:
            report.add_warning(
                MappingErrorType.INVALID_DATA_TYPE,
                key,
                f"{label} historical data has {null_fraction(series) * 100:.1f}% "
                f"null values, which may affect analysis quality",
            )

    for key, label, limit in (
        ("revenue_fy_h", "Revenue", REVENUE_SWING_LIMIT),
        ("net_income_fy_h", "Net Income", NET_INCOME_SWING_LIMIT),
    ):
        extreme = [c for c in _yoy_swings(read_series(view, key)) if abs(c) > limit]
        if extreme:
            report.add_warning(
                MappingErrorType.HISTORICAL_DATA_MISMATCH,
                key,
                f"{label} shows extreme year-over-year changes: "
                f"{', '.join(f'{c:.1f}%' for c in extreme)}",
            )


def validate_non_banking_data(view: Mapping[str, Any], report: MapperReport) -> None:
    _check_current_values(view, report)
    _check_history_ranges(view, report)
    _check_balance_sheet(view, report)
    _check_profit_hierarchy(view, report)
    _check_cross_metric(view, report)
    _check_completeness(view, report)


# ---------------------------------------------------------------------------
# Variant
# ---------------------------------------------------------------------------

NON_BANKING_VARIANT = MapperVariant(
    company_type=CompanyType.NON_BANKING,
    table=NON_BANKING_TABLE,
    quorum_fields=(
        QuorumField("revenue", "revenue_fy_h", "revenue_fy"),
        QuorumField("net income", "net_income_fy_h", "net_income_fy"),
        QuorumField("total assets", "total_assets_fy_h", "total_assets_fy"),
        QuorumField("total equity", "total_equity_fy_h", "total_equity_fy"),
    ),
    quorum_minimum=3,
    derive=derive_non_banking_metrics,
    validate=validate_non_banking_data,
)


def non_banking_mapper(processor: Optional[HistoricalDataProcessor] = None) -> DataMapper:
    return DataMapper(NON_BANKING_VARIANT, processor)
