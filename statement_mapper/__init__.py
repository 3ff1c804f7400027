"""
Statement Mapper: Company-Type-Aware Financial Statement Mapping.

Turns a flat market-data feed payload into a section-organised financial
statement, picking the banking or non-banking layout automatically.

Every result carries structured errors and warnings. Problems with
individual fields never abort a mapping; only a missing core quorum, a
broken balance sheet or an empty statement do.
"""

__version__ = "1.0.0"
__author__ = "Statement Mapper Team"

from statement_mapper.orchestrator import FinancialDataMapper, MapperContext  # noqa: F401
