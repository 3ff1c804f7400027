"""
Unit tests for the banking and non-banking mapping tables.
"""

from __future__ import annotations

import pytest

from statement_mapper.mapping_tables import (
    BANKING_TABLE,
    NON_BANKING_TABLE,
    MappingTable,
    SectionSpec,
    get_field_mapping,
    get_mapping_table,
    validate_table,
)
from statement_mapper.schema import CompanyType, FieldMapping, Period, Unit


# ======================================================================
# Table structure
# ======================================================================

class TestTables:
    def test_lookup_by_company_type(self) -> None:
        assert get_mapping_table(CompanyType.BANKING) is BANKING_TABLE
        assert get_mapping_table(CompanyType.NON_BANKING) is NON_BANKING_TABLE

    def test_section_ids_disjoint(self) -> None:
        assert not set(BANKING_TABLE.section_ids()) & set(NON_BANKING_TABLE.section_ids())

    def test_required_fields(self) -> None:
        banking = {f.api_field for f in BANKING_TABLE.required_fields()}
        non_banking = {f.api_field for f in NON_BANKING_TABLE.required_fields()}
        assert {"interest_income_fy", "loans_net_fy", "net_income_fy"} <= banking
        assert non_banking == {
            "revenue_fy", "net_income_fy", "total_assets_fy", "total_equity_fy",
        }

    def test_quarterly_siblings_derived(self) -> None:
        fm = get_field_mapping(CompanyType.NON_BANKING, "revenue_fy")
        assert fm is not None
        assert fm.historical_field == "revenue_fy_h"
        assert fm.quarterly_field == "revenue_fq"
        assert fm.quarterly_historical_field == "revenue_fq_h"
        assert fm.period is Period.FY

    def test_unknown_field_is_none(self) -> None:
        assert get_field_mapping(CompanyType.BANKING, "no_such_field") is None
        assert BANKING_TABLE.lookup("revenue_fy") is None

    def test_every_field_sits_in_its_section(self) -> None:
        for table in (BANKING_TABLE, NON_BANKING_TABLE):
            ids = set(table.section_ids())
            assert all(fm.section in ids for fm in table.iter_fields())


# ======================================================================
# Calculated fields
# ======================================================================

class TestCalculations:
    def test_gross_margin(self) -> None:
        fm = get_field_mapping(CompanyType.NON_BANKING, "calculated_gross_margin")
        view = {
            "revenue_fy": 1000.0,
            "cost_of_goods_fy": 600.0,
            "revenue_fy_h": [1000.0, 500.0],
            "cost_of_goods_fy_h": [600.0, None],
        }
        assert fm.calculation(view) == pytest.approx(40.0)
        assert fm.historical_calculation(view) == [pytest.approx(40.0), None]

    def test_gross_margin_missing_input(self) -> None:
        fm = get_field_mapping(CompanyType.NON_BANKING, "calculated_gross_margin")
        assert fm.calculation({"revenue_fy": 1000.0}) is None

    def test_working_capital(self) -> None:
        fm = get_field_mapping(CompanyType.NON_BANKING, "calculated_working_capital")
        view = {"total_current_assets_fy": 500.0, "total_current_liabilities_fy": 200.0}
        assert fm.calculation(view) == pytest.approx(300.0)


# ======================================================================
# validate_table()
# ======================================================================

def _field(api_field: str, section: str) -> FieldMapping:
    return FieldMapping(
        api_field=api_field,
        display_name=api_field,
        unit=Unit.CURRENCY,
        category="profitability",
        section=section,
    )


class TestValidateTable:
    def test_duplicate_field_rejected(self) -> None:
        table = MappingTable(
            CompanyType.NON_BANKING,
            (
                SectionSpec("a", "A", (_field("x_fy", "a"),)),
                SectionSpec("b", "B", (_field("x_fy", "b"),)),
            ),
        )
        with pytest.raises(ValueError, match="duplicate api_field"):
            validate_table(table)

    def test_duplicate_section_rejected(self) -> None:
        table = MappingTable(
            CompanyType.NON_BANKING,
            (SectionSpec("a", "A", ()), SectionSpec("a", "A again", ())),
        )
        with pytest.raises(ValueError, match="duplicate section"):
            validate_table(table)

    def test_misfiled_field_rejected(self) -> None:
        table = MappingTable(
            CompanyType.NON_BANKING,
            (SectionSpec("a", "A", (_field("x_fy", "elsewhere"),)),),
        )
        with pytest.raises(ValueError, match="is listed under"):
            validate_table(table)

    def test_valid_table_returned(self) -> None:
        table = MappingTable(
            CompanyType.NON_BANKING, (SectionSpec("a", "A", (_field("x_fy", "a"),)),)
        )
        assert validate_table(table) is table
