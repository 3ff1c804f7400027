"""
Financial statement data model.

Defines the enums and typed data structures carried through the mapping
pipeline: field mappings (the declarative tables), the section-organised
output model, and the structured errors that accompany every result.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, Mapping, Optional, Tuple


# ---------------------------------------------------------------------------
# Enumerations
# ---------------------------------------------------------------------------

class CompanyType(str, Enum):
    """The two statement layouts the pipeline knows how to map."""

    BANKING = "banking"
    NON_BANKING = "non-banking"

    def opposite(self) -> "CompanyType":
        if self is CompanyType.BANKING:
            return CompanyType.NON_BANKING
        return CompanyType.BANKING


class Period(str, Enum):
    FY = "FY"
    FQ = "FQ"
    TTM = "TTM"


class Unit(str, Enum):
    CURRENCY = "currency"
    PERCENTAGE = "percentage"
    RATIO = "ratio"
    COUNT = "count"


class Confidence(str, Enum):
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


class MappingErrorType(str, Enum):
    """Taxonomy of problems reported by the mapping pipeline.

    Severity, recoverability and retryability are *not* stored here; they
    are derived from the type by ``error_handler.DataMappingErrorHandler``.
    """

    MISSING_REQUIRED_FIELD = "MISSING_REQUIRED_FIELD"
    INVALID_DATA_TYPE = "INVALID_DATA_TYPE"
    CALCULATION_ERROR = "CALCULATION_ERROR"
    COMPANY_TYPE_DETECTION_FAILED = "COMPANY_TYPE_DETECTION_FAILED"
    API_PARSING_ERROR = "API_PARSING_ERROR"
    HISTORICAL_DATA_MISMATCH = "HISTORICAL_DATA_MISMATCH"


def period_for_field(field_name: str) -> Period:
    """Infer the reporting period from a feed field suffix."""
    name = field_name.lower()
    if name.endswith("_fq") or "_fq_" in name:
        return Period.FQ
    if name.endswith("_ttm"):
        return Period.TTM
    return Period.FY


# ---------------------------------------------------------------------------
# Declarative mapping
# ---------------------------------------------------------------------------

# Callbacks receive a read-only view of the payload (raw fields layered
# under the derived ones) and return a scalar or a most-recent-first list.
ValueCalculation = Callable[[Mapping[str, Any]], Optional[float]]
SeriesCalculation = Callable[[Mapping[str, Any]], Optional[list]]


@dataclass(frozen=True)
class FieldMapping:
    """One logical metric and where to find it in the feed payload."""

    api_field: str
    display_name: str
    unit: Unit
    category: str
    section: str
    subsection: Optional[str] = None
    historical_field: Optional[str] = None
    quarterly_field: Optional[str] = None
    quarterly_historical_field: Optional[str] = None
    required: bool = False
    calculation: Optional[ValueCalculation] = field(
        default=None, compare=False, repr=False
    )
    historical_calculation: Optional[SeriesCalculation] = field(
        default=None, compare=False, repr=False
    )

    @property
    def metric_id(self) -> str:
        return self.api_field

    @property
    def period(self) -> Period:
        return period_for_field(self.api_field)

    def to_dict(self) -> dict[str, Any]:
        return {
            "api_field": self.api_field,
            "historical_field": self.historical_field,
            "quarterly_field": self.quarterly_field,
            "quarterly_historical_field": self.quarterly_historical_field,
            "display_name": self.display_name,
            "unit": self.unit.value,
            "category": self.category,
            "section": self.section,
            "subsection": self.subsection,
            "required": self.required,
            "calculated": self.calculation is not None
            or self.historical_calculation is not None,
        }


# ---------------------------------------------------------------------------
# Output model
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class FinancialMetric:
    """A single extracted metric.

    ``historical_values`` is ordered most-recent-first and keeps ``None``
    entries so that index ``i`` means the same period across metrics.
    """

    id: str
    display_name: str
    current_value: Optional[float]
    historical_values: Tuple[Optional[float], ...]
    unit: Unit
    category: str
    period: Period
    section: str
    subsection: Optional[str] = None
    quarterly_value: Optional[float] = None
    quarterly_values: Tuple[Optional[float], ...] = ()

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "display_name": self.display_name,
            "current_value": self.current_value,
            "historical_values": list(self.historical_values),
            "quarterly_value": self.quarterly_value,
            "quarterly_values": list(self.quarterly_values),
            "unit": self.unit.value,
            "category": self.category,
            "period": self.period.value,
            "section": self.section,
            "subsection": self.subsection,
        }


@dataclass(frozen=True)
class FinancialSection:
    """A display section; subsections are sections without subsections."""

    id: str
    name: str
    metrics: Tuple[FinancialMetric, ...] = ()
    subsections: Tuple["FinancialSection", ...] = ()

    def all_metrics(self) -> list[FinancialMetric]:
        out = list(self.metrics)
        for sub in self.subsections:
            out.extend(sub.metrics)
        return out

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "metrics": [m.to_dict() for m in self.metrics],
            "subsections": [s.to_dict() for s in self.subsections],
        }


@dataclass(frozen=True)
class DataMetadata:
    sector: Optional[str]
    industry: Optional[str]
    max_historical_years: int = 0
    max_quarterly_periods: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "sector": self.sector,
            "industry": self.industry,
            "max_historical_years": self.max_historical_years,
            "max_quarterly_periods": self.max_quarterly_periods,
        }


@dataclass(frozen=True)
class CompanyFinancialData:
    """The mapped, classified, section-organised statement for one company.

    Immutable: re-classifying a company means running the pipeline again.
    """

    company_type: CompanyType
    symbol: str
    sections: Tuple[FinancialSection, ...]
    last_updated: str
    metadata: DataMetadata

    @property
    def section_ids(self) -> list[str]:
        return [s.id for s in self.sections]

    def get_section(self, section_id: str) -> Optional[FinancialSection]:
        for section in self.sections:
            if section.id == section_id:
                return section
        return None

    def get_metric(self, metric_id: str) -> Optional[FinancialMetric]:
        for section in self.sections:
            for metric in section.all_metrics():
                if metric.id == metric_id:
                    return metric
        return None

    def to_dict(self) -> dict[str, Any]:
        return {
            "company_type": self.company_type.value,
            "symbol": self.symbol,
            "sections": [s.to_dict() for s in self.sections],
            "last_updated": self.last_updated,
            "metadata": self.metadata.to_dict(),
        }


# ---------------------------------------------------------------------------
# Errors and results
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class MappingError:
    """A structured problem report.  Warnings use the same shape."""

    type: MappingErrorType
    field: str
    message: str
    original_value: Any = None
    context: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {
            "type": self.type.value,
            "field": self.field,
            "message": self.message,
        }
        if self.original_value is not None:
            out["original_value"] = self.original_value
        if self.context:
            out["context"] = dict(self.context)
        return out


@dataclass
class MappingResult:
    """Outcome of one mapper pass or one full orchestrated request."""

    success: bool
    data: Optional[CompanyFinancialData] = None
    errors: list[MappingError] = field(default_factory=list)
    warnings: list[MappingError] = field(default_factory=list)
    from_cache: bool = False

    def errors_of(self, error_type: MappingErrorType) -> list[MappingError]:
        return [e for e in self.errors if e.type is error_type]

    def to_dict(self) -> dict[str, Any]:
        return {
            "success": self.success,
            "from_cache": self.from_cache,
            "data": self.data.to_dict() if self.data is not None else None,
            "errors": [e.to_dict() for e in self.errors],
            "warnings": [w.to_dict() for w in self.warnings],
        }


@dataclass(frozen=True)
class CacheEntry:
    data: CompanyFinancialData
    timestamp: float
