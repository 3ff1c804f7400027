"""
Table-driven statement mapper.

A mapper turns one flat feed payload into ``CompanyFinancialData`` by
walking a ``MappingTable``.  Everything company-type specific lives in a
``MapperVariant``:

* the table to walk,
* the critical fields that must reach quorum before mapping is attempted,
* a ``derive`` callback producing ratio series the feed may omit,
* a ``validate`` callback with cross-field consistency checks.

The variant set is closed ({banking, non-banking}, see ``banking_mapper``
and ``non_banking_mapper``); ``DataMapper`` holds the shared pipeline:

    payload check → quorum → derive → validate → extract → sections

Derived series are layered *over* the payload with ``ChainMap`` so the
caller's dict is never mutated and a field the feed does provide always
wins over a value the variant would compute (variants only derive what
is missing).
"""

from __future__ import annotations

import math
from collections import ChainMap
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence, Tuple

from statement_mapper.historical import HistoricalDataProcessor
from statement_mapper.logging_setup import get_logger
from statement_mapper.mapping_tables import MappingTable
from statement_mapper.normalizer import NORMALIZER
from statement_mapper.schema import (
    CompanyFinancialData,
    CompanyType,
    DataMetadata,
    FieldMapping,
    FinancialMetric,
    FinancialSection,
    MappingError,
    MappingErrorType,
    MappingResult,
    Period,
    period_for_field,
)
from statement_mapper.series import combine, read_scalar, read_series

logger = get_logger("mapper")


class MapperReport:
    """Accumulates errors and warnings during one mapper pass."""

    def __init__(self, company_type: CompanyType) -> None:
        self.company_type = company_type
        self.errors: list[MappingError] = []
        self.warnings: list[MappingError] = []

    @property
    def has_critical(self) -> bool:
        return any(e.context.get("critical") for e in self.errors)

    def add_error(
        self,
        error_type: MappingErrorType,
        field: str,
        message: str,
        original_value: Any = None,
        critical: bool = False,
        **context: Any,
    ) -> None:
        context["company_type"] = self.company_type.value
        if critical:
            context["critical"] = True
        self.errors.append(
            MappingError(error_type, field, message, original_value, context)
        )
        logger.error("Mapping ERROR [%s] %s: %s", error_type.value, field, message)

    def add_warning(
        self,
        error_type: MappingErrorType,
        field: str,
        message: str,
        original_value: Any = None,
        **context: Any,
    ) -> None:
        context["company_type"] = self.company_type.value
        self.warnings.append(
            MappingError(error_type, field, message, original_value, context)
        )
        logger.warning("Mapping WARNING [%s] %s: %s", error_type.value, field, message)

    def extend(self, errors: Sequence[MappingError], warnings: Sequence[MappingError]) -> None:
        self.errors.extend(errors)
        self.warnings.extend(warnings)


DeriveFn = Callable[[Mapping[str, Any]], Dict[str, Any]]
ValidateFn = Callable[[Mapping[str, Any], MapperReport], None]


@dataclass(frozen=True)
class QuorumField:
    """A critical field that counts towards the variant's quorum."""

    label: str
    historical: str
    current: Optional[str] = None
    allow_zero: bool = True


@dataclass(frozen=True)
class MapperVariant:
    company_type: CompanyType
    table: MappingTable
    quorum_fields: Tuple[QuorumField, ...]
    quorum_minimum: int
    derive: DeriveFn
    validate: ValidateFn
    default_sector: Optional[str] = None
    default_industry: Optional[str] = None


# ---------------------------------------------------------------------------
# Shared extraction functions
# ---------------------------------------------------------------------------

def _usable(value: Optional[float], allow_zero: bool) -> bool:
    return value is not None and math.isfinite(value) and (allow_zero or value != 0)


def quorum_field_present(payload: Mapping[str, Any], qf: QuorumField) -> bool:
    if qf.current is not None:
        current = NORMALIZER.to_float(payload.get(qf.current))
        if _usable(current, qf.allow_zero):
            return True
    history = payload.get(qf.historical)
    if isinstance(history, (list, tuple)):
        return any(
            v is not None and _usable(NORMALIZER.to_float(v), qf.allow_zero)
            for v in history
        )
    return False


def check_quorum(
    variant: MapperVariant, payload: Mapping[str, Any], report: MapperReport
) -> bool:
    """Return True when enough critical fields are present.

    Below quorum one ``MISSING_REQUIRED_FIELD`` error is recorded per missing
    critical field.  Above quorum nothing is recorded here; the per-field
    ``required`` flags report the stragglers during extraction.
    """
    missing = [qf for qf in variant.quorum_fields if not quorum_field_present(payload, qf)]
    present = len(variant.quorum_fields) - len(missing)
    if present >= variant.quorum_minimum:
        return True

    for qf in missing:
        report.add_error(
            MappingErrorType.MISSING_REQUIRED_FIELD,
            qf.current or qf.historical,
            f"Required {variant.company_type.value} field '{qf.label}' is missing or invalid",
            quorum_present=present,
            quorum_minimum=variant.quorum_minimum,
        )
    return False


def _process_history(
    raw: Any,
    field_name: str,
    processor: HistoricalDataProcessor,
    report: MapperReport,
) -> List[Optional[float]]:
    processed = processor.process(raw, field_name, period_for_field(field_name))
    report.extend(processed.errors, processed.warnings)
    return processed.processed_data


def _read_current(
    view: Mapping[str, Any], field_name: Optional[str], report: MapperReport
) -> Optional[float]:
    if field_name is None:
        return None
    raw = view.get(field_name)
    if raw is None:
        return None
    value, notes = NORMALIZER.normalize_value(raw)
    if value is None:
        report.add_warning(
            MappingErrorType.INVALID_DATA_TYPE,
            field_name,
            f"Unusable value for '{field_name}': {'; '.join(notes)}",
            original_value=repr(raw),
        )
    return value


def extract_metric(
    fm: FieldMapping,
    view: Mapping[str, Any],
    processor: HistoricalDataProcessor,
    report: MapperReport,
) -> Optional[FinancialMetric]:
    """Build one ``FinancialMetric`` from *view*, or ``None`` if it has no data."""
    try:
        if fm.calculation is not None:
            current = fm.calculation(view)
        else:
            current = _read_current(view, fm.api_field, report)

        history: List[Optional[float]] = []
        if fm.historical_calculation is not None:
            raw_history = fm.historical_calculation(view)
            if raw_history is not None:
                history = _process_history(
                    raw_history, f"{fm.api_field}_h", processor, report
                )
        elif fm.historical_field and view.get(fm.historical_field) is not None:
            history = _process_history(
                view[fm.historical_field], fm.historical_field, processor, report
            )

        quarterly_value = _read_current(view, fm.quarterly_field, report)
        quarterly: List[Optional[float]] = []
        if (
            fm.quarterly_historical_field
            and view.get(fm.quarterly_historical_field) is not None
        ):
            quarterly = _process_history(
                view[fm.quarterly_historical_field],
                fm.quarterly_historical_field,
                processor,
                report,
            )
    except (ArithmeticError, TypeError, ValueError) as exc:
        report.add_error(
            MappingErrorType.CALCULATION_ERROR,
            fm.api_field,
            f"Failed to extract '{fm.display_name}': {exc}",
        )
        return None

    if current is None:
        current = processor.most_recent_value(history)

    has_history = any(v is not None for v in history)
    has_quarterly = quarterly_value is not None or any(v is not None for v in quarterly)

    if current is None and not has_history and not has_quarterly:
        if fm.required:
            report.add_error(
                MappingErrorType.MISSING_REQUIRED_FIELD,
                fm.api_field,
                f"Required field '{fm.api_field}' is missing or null",
            )
        return None

    return FinancialMetric(
        id=fm.api_field,
        display_name=fm.display_name,
        current_value=current,
        historical_values=tuple(history),
        unit=fm.unit,
        category=fm.category,
        period=fm.period,
        section=fm.section,
        subsection=fm.subsection,
        quarterly_value=quarterly_value,
        quarterly_values=tuple(quarterly),
    )


def build_sections(
    table: MappingTable,
    view: Mapping[str, Any],
    processor: HistoricalDataProcessor,
    report: MapperReport,
) -> list[FinancialSection]:
    """Walk *table* and keep only sections / subsections that received metrics."""
    sections: list[FinancialSection] = []
    for spec in table.sections:
        metrics = [
            m for m in (extract_metric(fm, view, processor, report) for fm in spec.fields)
            if m is not None
        ]
        subsections: list[FinancialSection] = []
        for sub in spec.subsections:
            sub_metrics = [
                m for m in (extract_metric(fm, view, processor, report) for fm in sub.fields)
                if m is not None
            ]
            if sub_metrics:
                subsections.append(
                    FinancialSection(id=sub.id, name=sub.name, metrics=tuple(sub_metrics))
                )
        if metrics or subsections:
            sections.append(
                FinancialSection(
                    id=spec.id,
                    name=spec.name,
                    metrics=tuple(metrics),
                    subsections=tuple(subsections),
                )
            )
    return sections


def max_historical_length(
    view: Mapping[str, Any], period: Period, processor: HistoricalDataProcessor
) -> int:
    """Longest ``_fy_h`` / ``_fq_h`` array in *view*, capped at the period limit."""
    suffix = "_fq_h" if period is Period.FQ else "_fy_h"
    longest = 0
    for key, value in view.items():
        if isinstance(key, str) and key.endswith(suffix) and isinstance(value, (list, tuple)):
            longest = max(longest, len(value))
    return min(longest, processor.max_length(period))


def check_assets_cover_liabilities(
    view: Mapping[str, Any], report: MapperReport
) -> None:
    """Assets below liabilities break the accounting identity; always critical."""
    for suffix in ("fq", "fy"):
        assets = read_scalar(view, f"total_assets_{suffix}")
        liabilities = read_scalar(view, f"total_liabilities_{suffix}")
        if assets and liabilities and assets < liabilities:
            report.add_error(
                MappingErrorType.INVALID_DATA_TYPE,
                "balance_sheet_consistency",
                f"Total assets ({assets:g}) should be greater than or equal to "
                f"total liabilities ({liabilities:g})",
                critical=True,
                period=suffix.upper(),
            )

    below = combine(
        lambda assets, liabilities: 1.0 if assets < liabilities else 0.0,
        read_series(view, "total_assets_fy_h"),
        read_series(view, "total_liabilities_fy_h"),
    )
    bad = [i for i, flag in enumerate(below or []) if flag]
    if bad:
        report.add_error(
            MappingErrorType.INVALID_DATA_TYPE,
            "balance_sheet_consistency",
            f"Historical total assets below total liabilities at index(es) {bad}",
            critical=True,
            indices=bad,
        )


def _metadata_text(*candidates: Any) -> Optional[str]:
    for c in candidates:
        if isinstance(c, str) and c.strip():
            return c.strip()
    return None


# ---------------------------------------------------------------------------
# Mapper
# ---------------------------------------------------------------------------

class DataMapper:
    """Maps a feed payload with one ``MapperVariant``.

    Parameters
    ----------
    variant:
        ``BANKING_VARIANT`` or ``NON_BANKING_VARIANT``.
    processor:
        Shared historical processor; a default one is created if omitted.
    """

    def __init__(
        self,
        variant: MapperVariant,
        processor: Optional[HistoricalDataProcessor] = None,
    ) -> None:
        self._variant = variant
        self._processor = processor or HistoricalDataProcessor()

    @property
    def company_type(self) -> CompanyType:
        return self._variant.company_type

    @property
    def variant(self) -> MapperVariant:
        return self._variant

    def map_data(
        self,
        payload: Any,
        symbol: Optional[str] = None,
        sector: Optional[str] = None,
        industry: Optional[str] = None,
    ) -> MappingResult:
        """Map one payload.  Never raises for malformed input."""
        variant = self._variant
        report = MapperReport(variant.company_type)

        if not isinstance(payload, Mapping) or not payload:
            report.add_error(
                MappingErrorType.INVALID_DATA_TYPE,
                "payload",
                "Payload is empty or not a key-value object",
                original_value=type(payload).__name__,
            )
            return self._failure(report)

        if not check_quorum(variant, payload, report):
            return self._failure(report)

        try:
            derived = variant.derive(payload)
        except (ArithmeticError, TypeError, ValueError) as exc:
            report.add_error(
                MappingErrorType.CALCULATION_ERROR,
                "derived_metrics",
                f"{variant.company_type.value} derived metric calculation failed: {exc}",
            )
            return self._failure(report)

        view: Mapping[str, Any] = ChainMap(derived, payload)

        variant.validate(view, report)
        sections = build_sections(variant.table, view, self._processor, report)

        if report.has_critical:
            return self._failure(report)

        if not sections:
            report.add_error(
                MappingErrorType.MISSING_REQUIRED_FIELD,
                "sections",
                f"No valid {variant.company_type.value} sections could be built "
                f"from the provided data",
            )
            return self._failure(report)

        data = CompanyFinancialData(
            company_type=variant.company_type,
            symbol=_metadata_text(symbol, payload.get("symbol")) or "UNKNOWN",
            sections=tuple(sections),
            last_updated=datetime.now(timezone.utc).isoformat(),
            metadata=DataMetadata(
                sector=_metadata_text(sector, payload.get("sector")) or variant.default_sector,
                industry=_metadata_text(industry, payload.get("industry"))
                or variant.default_industry,
                max_historical_years=max_historical_length(view, Period.FY, self._processor),
                max_quarterly_periods=max_historical_length(view, Period.FQ, self._processor),
            ),
        )

        logger.info(
            "MAPPED: %s as %s: sections=%d, metrics=%d, errors=%d, warnings=%d",
            data.symbol,
            variant.company_type.value,
            len(sections),
            sum(len(s.all_metrics()) for s in sections),
            len(report.errors),
            len(report.warnings),
        )
        return MappingResult(
            success=True,
            data=data,
            errors=list(report.errors),
            warnings=list(report.warnings),
        )

    def _failure(self, report: MapperReport) -> MappingResult:
        logger.info(
            "Mapping as %s failed: errors=%d, warnings=%d",
            report.company_type.value,
            len(report.errors),
            len(report.warnings),
        )
        return MappingResult(
            success=False,
            errors=list(report.errors),
            warnings=list(report.warnings),
        )
