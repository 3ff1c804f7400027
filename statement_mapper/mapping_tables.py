"""
Declarative field-mapping tables.

One table per company type.  Each table is an ordered list of sections;
each section holds ``FieldMapping`` entries and optionally one level of
named subsections.  The tables are pure data: the mappers walk them, the
tables never call the mappers.

Both tables are checked by ``validate_table`` at import, so a duplicated
feed field or a metric filed under the wrong section fails loudly at
start-up rather than producing a silently wrong statement.

Feed field conventions
----------------------
``<name>_fy``     latest fiscal-year value
``<name>_fy_h``   fiscal-year history, most recent first (≤ 20 points)
``<name>_fq``     latest fiscal-quarter value
``<name>_fq_h``   fiscal-quarter history, most recent first (≤ 32 points)
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Iterator, Mapping, Optional, Sequence, Tuple

from statement_mapper.schema import CompanyType, FieldMapping, Unit
from statement_mapper.series import combine, read_scalar, read_series, safe_divide

CURRENCY = Unit.CURRENCY
PERCENT = Unit.PERCENTAGE
RATIO = Unit.RATIO
COUNT = Unit.COUNT


# ---------------------------------------------------------------------------
# Table structures
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class SubsectionSpec:
    id: str
    name: str
    fields: Tuple[FieldMapping, ...]


@dataclass(frozen=True)
class SectionSpec:
    id: str
    name: str
    fields: Tuple[FieldMapping, ...]
    subsections: Tuple[SubsectionSpec, ...] = ()


@dataclass(frozen=True)
class MappingTable:
    company_type: CompanyType
    sections: Tuple[SectionSpec, ...]

    def iter_fields(self) -> Iterator[FieldMapping]:
        for section in self.sections:
            yield from section.fields
            for sub in section.subsections:
                yield from sub.fields

    def all_fields(self) -> list[FieldMapping]:
        return list(self.iter_fields())

    def required_fields(self) -> list[FieldMapping]:
        return [f for f in self.iter_fields() if f.required]

    def section_ids(self) -> list[str]:
        return [s.id for s in self.sections]

    def lookup(self, api_field: str) -> Optional[FieldMapping]:
        """Return the mapping for *api_field*, or ``None`` if not in the table."""
        return _INDEX.get(self.company_type, {}).get(api_field)


def validate_table(table: MappingTable) -> MappingTable:
    """Check structural invariants of *table*; raise ``ValueError`` if broken."""
    seen_sections: set[str] = set()
    seen_fields: set[str] = set()

    def _check(fm: FieldMapping, section_id: str, subsection_id: Optional[str]) -> None:
        if fm.api_field in seen_fields:
            raise ValueError(
                f"{table.company_type.value} table: duplicate api_field '{fm.api_field}'"
            )
        seen_fields.add(fm.api_field)
        if fm.section != section_id or fm.subsection != subsection_id:
            raise ValueError(
                f"{table.company_type.value} table: '{fm.api_field}' declares "
                f"{fm.section}/{fm.subsection} but is listed under "
                f"{section_id}/{subsection_id}"
            )
        if not isinstance(fm.unit, Unit):
            raise ValueError(f"'{fm.api_field}': unit must be a Unit, got {fm.unit!r}")

    for section in table.sections:
        if section.id in seen_sections:
            raise ValueError(
                f"{table.company_type.value} table: duplicate section '{section.id}'"
            )
        seen_sections.add(section.id)
        for fm in section.fields:
            _check(fm, section.id, None)
        sub_ids: set[str] = set()
        for sub in section.subsections:
            if sub.id in sub_ids:
                raise ValueError(
                    f"Section '{section.id}': duplicate subsection '{sub.id}'"
                )
            sub_ids.add(sub.id)
            for fm in sub.fields:
                _check(fm, section.id, sub.id)
    return table


# ---------------------------------------------------------------------------
# Builders
# ---------------------------------------------------------------------------

def _m(
    api_field: str,
    display_name: str,
    unit: Unit,
    category: str,
    *,
    history: Any = True,
    quarterly: bool = False,
    required: bool = False,
    calculation: Any = None,
    historical_calculation: Any = None,
) -> Dict[str, Any]:
    """Shorthand for one field entry.

    ``history=True`` derives ``<api_field>_h``; a string names the history
    field explicitly; ``None`` means the feed has no history for it.
    ``quarterly=True`` adds the ``_fq`` / ``_fq_h`` siblings of a ``_fy`` field.
    """
    if history is True:
        history = f"{api_field}_h"
    base = api_field[: -len("_fy")] if api_field.endswith("_fy") else api_field
    return {
        "api_field": api_field,
        "display_name": display_name,
        "unit": unit,
        "category": category,
        "historical_field": history or None,
        "quarterly_field": f"{base}_fq" if quarterly else None,
        "quarterly_historical_field": f"{base}_fq_h" if quarterly else None,
        "required": required,
        "calculation": calculation,
        "historical_calculation": historical_calculation,
    }


def _sub(sub_id: str, name: str, entries: Sequence[Dict[str, Any]]) -> Tuple[str, str, Sequence]:
    return sub_id, name, entries


def _section(
    section_id: str,
    name: str,
    entries: Sequence[Dict[str, Any]],
    subsections: Sequence[Tuple[str, str, Sequence[Dict[str, Any]]]] = (),
) -> SectionSpec:
    return SectionSpec(
        id=section_id,
        name=name,
        fields=tuple(FieldMapping(section=section_id, **e) for e in entries),
        subsections=tuple(
            SubsectionSpec(
                id=sub_id,
                name=sub_name,
                fields=tuple(
                    FieldMapping(section=section_id, subsection=sub_id, **e)
                    for e in sub_entries
                ),
            )
            for sub_id, sub_name, sub_entries in subsections
        ),
    )


# ---------------------------------------------------------------------------
# Calculated fields
# ---------------------------------------------------------------------------

def _gross_margin(revenue: float, cogs: float) -> Optional[float]:
    gm = safe_divide(revenue - abs(cogs), revenue)
    return None if gm is None else gm * 100.0


def _calc_gross_margin(view: Mapping[str, Any]) -> Optional[float]:
    revenue = read_scalar(view, "revenue_fy")
    cogs = read_scalar(view, "cost_of_goods_fy")
    if revenue is None or cogs is None:
        return None
    return _gross_margin(revenue, cogs)


def _calc_gross_margin_history(view: Mapping[str, Any]) -> Optional[list]:
    return combine(
        _gross_margin,
        read_series(view, "revenue_fy_h"),
        read_series(view, "cost_of_goods_fy_h"),
    )


def _calc_working_capital(view: Mapping[str, Any]) -> Optional[float]:
    assets = read_scalar(view, "total_current_assets_fy")
    liabilities = read_scalar(view, "total_current_liabilities_fy")
    if assets is None or liabilities is None:
        return None
    return assets - liabilities


def _calc_working_capital_history(view: Mapping[str, Any]) -> Optional[list]:
    return combine(
        lambda assets, liabilities: assets - liabilities,
        read_series(view, "total_current_assets_fy_h"),
        read_series(view, "total_current_liabilities_fy_h"),
    )


# ---------------------------------------------------------------------------
# Banking
# ---------------------------------------------------------------------------

BANKING_TABLE = validate_table(MappingTable(
    company_type=CompanyType.BANKING,
    sections=(
        _section("interest-income", "Interest Income", [
            _m("total_revenue_fy", "Total Revenue", CURRENCY, "profitability", quarterly=True),
            _m("interest_income_fy", "Interest Income", CURRENCY, "profitability",
               quarterly=True, required=True),
            _m("interest_expense_fy", "Interest Expense", CURRENCY, "profitability"),
            _m("interest_income_net_fy", "Net Interest Income (Financing Profit)",
               CURRENCY, "profitability", quarterly=True),
            _m("net_interest_margin_fy", "Net Interest Margin (Financing Margin %)",
               PERCENT, "profitability", quarterly=True),
            _m("non_interest_income_fy", "Other Income (Non-Interest)", CURRENCY,
               "profitability", quarterly=True),
        ], [
            _sub("interest-sources", "Interest Sources", [
                _m("interest_income_loans_fy", "Interest from Loans", CURRENCY, "profitability"),
                _m("interest_income_government_securities_fy",
                   "Interest from Government Securities", CURRENCY, "profitability"),
                _m("interest_income_bank_deposits_fy", "Interest from Bank Deposits",
                   CURRENCY, "profitability"),
            ]),
            _sub("interest-expenses", "Interest Expenses", [
                _m("interest_expense_banks_deposits_fy", "Interest on Customer Deposits",
                   CURRENCY, "profitability"),
                _m("interest_expense_on_debt_fy", "Interest on Borrowings", CURRENCY,
                   "profitability"),
            ]),
        ]),
        _section("deposits", "Deposits", [
            _m("total_deposits_fy", "Total Deposits", CURRENCY, "liquidity",
               quarterly=True, required=True),
            _m("demand_deposits_fy", "Demand Deposits (CASA)", CURRENCY, "liquidity"),
            _m("savings_time_deposits_fy", "Time Deposits (Fixed/Term)", CURRENCY, "liquidity"),
            _m("demand_deposits_total_deposits_fy", "CASA Ratio", PERCENT, "efficiency"),
            _m("increase_in_deposits_fy", "Deposit Growth", CURRENCY, "liquidity"),
        ]),
        _section("loans", "Loans & Advances", [
            _m("loans_gross_fy", "Gross Loans", CURRENCY, "liquidity"),
            _m("loans_net_fy", "Net Loans", CURRENCY, "liquidity", required=True),
            _m("loan_loss_allowances_fy", "Loan Loss Allowances", CURRENCY, "asset-quality"),
            _m("loan_loss_provision_fy", "Loan Loss Provision", CURRENCY, "asset-quality",
               quarterly=True),
            _m("increase_in_loans_fy", "Loan Disbursements (Growth)", CURRENCY, "liquidity"),
            _m("loans_net_total_deposits_fy", "Credit to Deposit Ratio", PERCENT, "efficiency"),
        ], [
            _sub("loan-portfolio", "Loan Portfolio", [
                _m("loans_mortgage_fy", "Real Estate Mortgage Loans", CURRENCY,
                   "liquidity", history=None),
                _m("loans_commercial_fy", "Commercial Loans", CURRENCY, "liquidity",
                   history=None),
                _m("loans_consumer_fy", "Consumer/Retail Loans", CURRENCY, "liquidity",
                   history=None),
                _m("loans_broker_fin_inst_fy", "Loans to Financial Institutions",
                   CURRENCY, "liquidity", history=None),
            ]),
        ]),
        _section("asset-quality", "Asset Quality", [
            _m("nonperf_loans_fy", "Non-Performing Loans (Absolute)", CURRENCY,
               "asset-quality", quarterly=True),
            _m("nonperf_loans_loans_gross_fy", "Gross NPA Ratio (%)", PERCENT,
               "asset-quality", quarterly=True),
            _m("calculated_net_npa", "Net NPA Ratio (%)", PERCENT, "asset-quality",
               history="calculated_net_npa_fy_h"),
            _m("loan_loss_coverage_fy", "Provision Coverage Ratio (%)", PERCENT,
               "asset-quality"),
            _m("loan_losses_act_fy", "Actual Loan Losses (Write-offs)", CURRENCY,
               "asset-quality", history=None),
        ], [
            _sub("risk-metrics", "Risk Metrics", [
                _m("loan_loss_rsrv_total_assets_fy", "Loan Loss Reserves to Total Assets",
                   PERCENT, "asset-quality", history=None),
                _m("loan_loss_rsrv_total_capital_fy", "Loan Loss Reserves to Capital",
                   PERCENT, "asset-quality", history=None),
                _m("nonperf_loan_common_equity_fy", "NPL to Common Equity", PERCENT,
                   "asset-quality", history=None),
            ]),
        ]),
        _section("profitability", "Profitability", [
            _m("total_oper_expense_fy", "Total Operating Expenses", CURRENCY, "profitability"),
            _m("non_interest_expense_fy", "Non-Interest Expenses", CURRENCY, "profitability"),
            _m("pretax_income_fy", "Profit Before Tax", CURRENCY, "profitability"),
            _m("tax_rate_fy", "Effective Tax Rate", PERCENT, "profitability"),
            _m("net_income_fy", "Net Profit (PAT)", CURRENCY, "profitability",
               quarterly=True, required=True),
            _m("earnings_per_share_basic_fy", "Earnings Per Share (Basic)", CURRENCY,
               "profitability", quarterly=True),
            _m("dividend_payout_ratio_fy", "Dividend Payout Ratio", PERCENT, "profitability"),
        ], [
            _sub("key-ratios", "Key Ratios", [
                _m("return_on_assets_fy", "Return on Assets (ROA)", PERCENT, "profitability"),
                _m("return_on_common_equity_fy", "Return on Equity (ROE)", PERCENT,
                   "profitability"),
                _m("efficiency_ratio_fy", "Cost to Income Ratio (Operating Efficiency)",
                   PERCENT, "efficiency"),
            ]),
            _sub("fee-income", "Fee Income", [
                _m("trust_commissions_income_fy", "Trust & Fiduciary Income", CURRENCY,
                   "profitability", history=None),
                _m("underwriting_n_commissions_fy", "Underwriting Commissions", CURRENCY,
                   "profitability", history=None),
                _m("trading_account_income_fy", "Trading Income", CURRENCY,
                   "profitability", history=None),
            ]),
        ]),
        _section("bank-balance-sheet", "Balance Sheet", [
            _m("total_assets_fy", "Total Assets", CURRENCY, "liquidity", quarterly=True),
            _m("total_liabilities_fy", "Total Liabilities", CURRENCY, "solvency",
               quarterly=True),
            _m("total_equity_fy", "Total Shareholders Equity", CURRENCY, "solvency"),
            _m("total_debt_fy", "Total Borrowings", CURRENCY, "solvency"),
        ], [
            _sub("equity-capital", "Equity Capital", [
                _m("common_stock_par_fy", "Equity Capital (Share Capital)", CURRENCY,
                   "solvency"),
                _m("retained_earnings_fy", "Reserves & Retained Earnings", CURRENCY,
                   "solvency"),
            ]),
            _sub("borrowings", "Borrowings", [
                _m("short_term_debt_fy", "Short-term Borrowings", CURRENCY, "solvency"),
                _m("long_term_debt_fy", "Long-term Borrowings", CURRENCY, "solvency"),
            ]),
            _sub("investments", "Investments", [
                _m("long_term_investments_fy", "Total Investments", CURRENCY, "efficiency"),
                _m("treasury_securities_fy", "Government Securities", CURRENCY, "efficiency"),
                _m("equity_securities_investment_fy", "Equity Securities", CURRENCY,
                   "efficiency"),
                _m("trading_account_securities_fy", "Trading Securities", CURRENCY,
                   "efficiency", history=None),
            ]),
            _sub("other-assets", "Other Assets", [
                _m("ppe_total_net_fy", "Fixed Assets (PP&E)", CURRENCY, "efficiency"),
                _m("other_assets_fy", "Other Assets", CURRENCY, "efficiency"),
            ]),
        ]),
        _section("bank-cash-flow", "Cash Flow", [
            _m("cash_f_operating_activities_fy", "Cash from Operating Activities",
               CURRENCY, "liquidity"),
            _m("cash_f_investing_activities_fy", "Cash from Investing Activities",
               CURRENCY, "liquidity"),
            _m("cash_f_financing_activities_fy", "Cash from Financing Activities",
               CURRENCY, "liquidity"),
            _m("free_cash_flow_fy", "Net Cash Flow", CURRENCY, "liquidity"),
        ]),
    ),
))


# ---------------------------------------------------------------------------
# Non-banking
# ---------------------------------------------------------------------------

NON_BANKING_TABLE = validate_table(MappingTable(
    company_type=CompanyType.NON_BANKING,
    sections=(
        _section("profit-loss", "Profit & Loss", [
            _m("revenue_fy", "Sales/Revenue", CURRENCY, "profitability",
               quarterly=True, required=True),
            _m("total_revenue_ttm", "Total Revenue (TTM)", CURRENCY, "profitability",
               history="total_revenue_fy_h"),
            _m("gross_profit_fy", "Gross Profit", CURRENCY, "profitability", quarterly=True),
            _m("oper_income_fy", "Operating Profit", CURRENCY, "profitability",
               quarterly=True),
            _m("non_oper_income_fy", "Other Income", CURRENCY, "profitability",
               quarterly=True),
            _m("non_oper_interest_income_fy", "Interest Income", CURRENCY, "profitability"),
            _m("ebit_fy", "EBIT", CURRENCY, "profitability"),
            _m("ebitda_fy", "EBITDA", CURRENCY, "profitability", quarterly=True),
            _m("pretax_income_fy", "Profit Before Tax", CURRENCY, "profitability"),
            _m("income_tax_fy", "Tax", CURRENCY, "profitability"),
            _m("net_income_fy", "Net Profit", CURRENCY, "profitability",
               quarterly=True, required=True),
            _m("earnings_per_share_basic_fy", "EPS (Basic)", CURRENCY, "profitability",
               quarterly=True),
            _m("dividend_payout_ratio_fy", "Dividend Payout Ratio (%)", PERCENT,
               "profitability"),
        ], [
            _sub("expense-breakdown", "Expense Breakdown", [
                _m("cost_of_goods_fy", "Cost of Goods Sold", CURRENCY, "profitability"),
                _m("operating_expenses_fy", "Operating Expenses (Total)", CURRENCY,
                   "profitability"),
                _m("sell_gen_admin_exp_total_fy", "Selling, General & Administrative",
                   CURRENCY, "profitability"),
                _m("depreciation_fy", "Depreciation & Amortization", CURRENCY,
                   "profitability"),
            ]),
            _sub("profitability-metrics", "Profitability Metrics", [
                _m("gross_margin_fy", "Gross Profit Margin (%)", PERCENT, "profitability"),
                _m("operating_margin_fy", "Operating Profit Margin (%)", PERCENT,
                   "profitability"),
                _m("ebitda_margin_fy", "EBITDA Margin (%)", PERCENT, "profitability",
                   quarterly=True),
                _m("pre_tax_margin_fy", "Pre-tax Profit Margin (%)", PERCENT,
                   "profitability"),
                _m("net_margin_fy", "Net Profit Margin (%)", PERCENT, "profitability",
                   quarterly=True),
                _m("calculated_gross_margin", "Calculated Gross Margin (%)", PERCENT,
                   "profitability", history=None,
                   calculation=_calc_gross_margin,
                   historical_calculation=_calc_gross_margin_history),
            ]),
        ]),
        _section("balance-sheet", "Balance Sheet", [
            _m("total_assets_fy", "Total Assets", CURRENCY, "liquidity",
               quarterly=True, required=True),
            _m("total_liabilities_fy", "Total Liabilities", CURRENCY, "solvency",
               quarterly=True),
            _m("total_equity_fy", "Total Shareholders Equity", CURRENCY, "solvency",
               quarterly=True, required=True),
            _m("calculated_working_capital", "Working Capital (Estimated)", CURRENCY,
               "liquidity", history=None,
               calculation=_calc_working_capital,
               historical_calculation=_calc_working_capital_history),
        ], [
            _sub("equity-capital", "Equity Capital", [
                _m("common_stock_par_fy", "Equity Capital (Share Capital)", CURRENCY,
                   "solvency"),
                _m("retained_earnings_fy", "Reserves & Retained Earnings", CURRENCY,
                   "solvency"),
            ]),
            _sub("debt-breakdown", "Debt Breakdown", [
                _m("total_debt_fy", "Total Borrowings/Debt", CURRENCY, "solvency"),
                _m("long_term_debt_fy", "Long-term Debt", CURRENCY, "solvency"),
                _m("total_current_liabilities_fy", "Current Liabilities", CURRENCY,
                   "solvency"),
            ]),
            _sub("fixed-assets", "Fixed Assets", [
                _m("ppe_total_net_fy", "Property, Plant & Equipment (Net)", CURRENCY,
                   "efficiency"),
                _m("long_term_investments_fy", "Long-term Investments", CURRENCY,
                   "efficiency"),
            ]),
            _sub("current-assets", "Current Assets", [
                _m("total_current_assets_fy", "Total Current Assets", CURRENCY, "liquidity"),
                _m("cash_n_equivalents_fy", "Cash & Cash Equivalents", CURRENCY, "liquidity"),
                _m("total_inventory_fy", "Total Inventory", CURRENCY, "efficiency"),
            ]),
            _sub("other-assets", "Other Assets", [
                _m("other_assets_incl_intang_fy", "Other Assets (including Intangibles)",
                   CURRENCY, "efficiency", history="long_term_other_assets_total_fy_h"),
            ]),
        ]),
        _section("cash-flow", "Cash Flow", [], [
            _sub("operating-cash-flow", "Operating Cash Flow", [
                _m("cash_f_operating_activities_fy", "Cash from Operating Activities",
                   CURRENCY, "liquidity", quarterly=True),
            ]),
            _sub("investing-cash-flow", "Investing Cash Flow", [
                _m("capital_expenditures_fy", "Capital Expenditure (CapEx)", CURRENCY,
                   "efficiency"),
                _m("cash_f_investing_activities_fy", "Cash from Investing Activities",
                   CURRENCY, "liquidity"),
            ]),
            _sub("financing-cash-flow", "Financing Cash Flow", [
                _m("common_dividends_cash_flow_fy", "Dividends Paid", CURRENCY, "liquidity"),
                _m("cash_f_financing_activities_fy", "Cash from Financing Activities",
                   CURRENCY, "liquidity"),
            ]),
            _sub("free-cash-flow", "Free Cash Flow", [
                _m("free_cash_flow_fy", "Free Cash Flow", CURRENCY, "liquidity"),
            ]),
        ]),
        _section("key-ratios", "Key Ratios", [], [
            _sub("profitability-ratios", "Profitability Ratios", [
                _m("return_on_equity_fy", "Return on Equity (ROE %)", PERCENT,
                   "profitability"),
                _m("return_on_assets_fy", "Return on Assets (ROA %)", PERCENT,
                   "profitability"),
            ]),
            _sub("liquidity-ratios", "Liquidity Ratios", [
                _m("current_ratio_fy", "Current Ratio", RATIO, "liquidity"),
                _m("quick_ratio_fy", "Quick Ratio (Acid Test)", RATIO, "liquidity"),
            ]),
            _sub("solvency-ratios", "Solvency Ratios", [
                _m("debt_to_equity_fy", "Debt to Equity Ratio", RATIO, "solvency"),
                _m("debt_to_asset_fy", "Debt to Assets Ratio", RATIO, "solvency"),
            ]),
            _sub("efficiency-ratios", "Efficiency Ratios", [
                _m("asset_turnover_fy", "Asset Turnover Ratio", RATIO, "efficiency"),
                _m("invent_turnover_fy", "Inventory Turnover Ratio", RATIO, "efficiency"),
            ]),
            _sub("market-ratios", "Market Ratios", [
                _m("market_cap_basic", "Market Capitalization", CURRENCY, "efficiency",
                   history="market_cap_basic_fy_h"),
                _m("enterprise_value_fq", "Enterprise Value", CURRENCY, "efficiency",
                   history="enterprise_value_fy_h"),
                _m("price_earnings_fq", "P/E Ratio", RATIO, "efficiency"),
                _m("price_book_fq", "P/B Ratio", RATIO, "efficiency"),
                _m("price_sales_fq", "P/S Ratio", RATIO, "efficiency"),
                _m("enterprise_value_ebitda_fq", "EV/EBITDA Ratio", RATIO, "efficiency"),
                _m("dividends_yield_fq", "Dividend Yield (%)", PERCENT, "profitability",
                   history="dividends_yield_fy_h"),
            ]),
            _sub("per-share-metrics", "Per Share Metrics", [
                _m("book_value_per_share_fy", "Book Value per Share", CURRENCY, "solvency"),
                _m("total_shares_outstanding_fy", "Shares Outstanding", COUNT, "efficiency"),
            ]),
            _sub("operational-metrics", "Operational Metrics", [
                _m("number_of_employees", "Number of Employees", COUNT, "efficiency",
                   history="number_of_employees_fy_h"),
            ]),
        ]),
    ),
))


_TABLES: Dict[CompanyType, MappingTable] = {
    CompanyType.BANKING: BANKING_TABLE,
    CompanyType.NON_BANKING: NON_BANKING_TABLE,
}

_INDEX: Dict[CompanyType, Dict[str, FieldMapping]] = {
    company_type: {fm.api_field: fm for fm in table.iter_fields()}
    for company_type, table in _TABLES.items()
}


def get_mapping_table(company_type: CompanyType) -> MappingTable:
    return _TABLES[company_type]


def get_field_mapping(
    company_type: CompanyType, api_field: str
) -> Optional[FieldMapping]:
    """Optional-returning lookup across either table."""
    return _INDEX[company_type].get(api_field)
