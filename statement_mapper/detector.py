"""
Company Type Detection.

Banks report a fundamentally different statement (interest income, deposits,
loan book, NPAs) from operating companies (revenue, COGS, inventory), and
the feed does not say which one it is sending.  The detector combines three
weak signals into one score:

    score = 0.4 × sector evidence + 0.2 × industry evidence
          + 0.4 × banking-field evidence

Sector text is matched against a fixed list of banking sector names with
rapidfuzz ``partial_ratio`` (containment in either direction), the industry
against a keyword list, and the payload against ~30 bank-only historical
fields.  The classification is ``banking`` iff the rounded score reaches
``DetectionConfig.banking_threshold``.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from typing import Any, Mapping, Optional

from rapidfuzz import fuzz, process

from statement_mapper.config import DetectionConfig
from statement_mapper.logging_setup import get_logger
from statement_mapper.schema import (
    CompanyType,
    Confidence,
    MappingError,
    MappingErrorType,
)

logger = get_logger("detector")


BANKING_SECTORS: tuple[str, ...] = (
    "Banks",
    "Banking",
    "Financial Services",
    "Private Sector Bank",
    "Public Sector Bank",
    "Cooperative Bank",
    "Regional Rural Bank",
    "Small Finance Bank",
    "Payments Bank",
    "Development Bank",
    "Investment Bank",
    "Commercial Bank",
)

SECTOR_KEYWORDS: tuple[str, ...] = ("bank", "financial", "finance", "credit", "lending")

INDUSTRY_KEYWORDS: tuple[str, ...] = (
    "banking",
    "bank",
    "financial services",
    "finance",
    "credit",
    "lending",
    "deposits",
    "loans",
    "mortgage",
    "investment banking",
)

BANKING_INDICATOR_FIELDS: tuple[str, ...] = (
    # Interest
    "interest_income_fy_h",
    "interest_income_fq_h",
    "interest_expense_fy_h",
    "interest_expense_fq_h",
    "interest_income_net_fy_h",
    "interest_income_net_fq_h",
    "net_interest_margin_fy_h",
    "net_interest_margin_fq_h",
    # Deposits
    "total_deposits_fy_h",
    "total_deposits_fq_h",
    "demand_deposits_fy_h",
    "savings_time_deposits_fy_h",
    # Loan book and asset quality
    "loans_net_fy_h",
    "loans_net_fq_h",
    "loans_gross_fy_h",
    "loans_gross_fq_h",
    "nonperf_loans_fy_h",
    "nonperf_loans_fq_h",
    "nonperf_loans_loans_gross_fy_h",
    "nonperf_loans_loans_gross_fq_h",
    "loan_loss_provision_fy_h",
    "loan_loss_provision_fq_h",
    "loan_loss_allowances_fy_h",
    "loan_loss_allowances_fq_h",
    "loan_loss_coverage_fy_h",
    # Bank ratios
    "efficiency_ratio_fy_h",
    "demand_deposits_total_deposits_fy_h",
    "loans_net_total_deposits_fy_h",
)

NON_BANKING_INDICATOR_FIELDS: tuple[str, ...] = (
    "cost_of_goods_fy_h",
    "cost_of_goods_fq_h",
    "inventory_fy_h",
    "inventory_fq_h",
    "accounts_receivable_fy_h",
    "accounts_payable_fy_h",
)

_SECTORS_LOWER = [s.lower() for s in BANKING_SECTORS]


def has_valid_series(value: Any) -> bool:
    """True if *value* is an array holding at least one non-null entry."""
    return isinstance(value, (list, tuple)) and any(v is not None for v in value)


@dataclass
class DetectionResult:
    company_type: CompanyType
    confidence: Confidence
    score: float
    reasons: list[str] = field(default_factory=list)
    warnings: list[MappingError] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "company_type": self.company_type.value,
            "confidence": self.confidence.value,
            "score": self.score,
            "reasons": list(self.reasons),
            "warnings": [w.to_dict() for w in self.warnings],
        }


class CompanyTypeDetector:
    """Weighted-evidence banking / non-banking classifier.

    Parameters
    ----------
    config:
        Evidence weights, decision threshold and confidence bands.
    """

    def __init__(self, config: Optional[DetectionConfig] = None) -> None:
        self._config = config or DetectionConfig()

    # ------------------------------------------------------------------ #
    # Public API
    # ------------------------------------------------------------------ #

    def detect(
        self,
        sector: Optional[str],
        industry: Optional[str],
        data: Optional[Mapping[str, Any]],
    ) -> DetectionResult:
        """Classify a company from its sector, industry and payload fields.

        Returns
        -------
        DetectionResult
            ``score`` is rounded to two decimals and the decision is taken
            on the rounded value, so a ``banking`` result never carries a
            score below the threshold.
        """
        cfg = self._config
        reasons: list[str] = []
        warnings: list[MappingError] = []

        sector_score = self._sector_score(sector, reasons)
        industry_score = self._industry_score(industry, reasons)
        field_score = self._field_score(data or {}, reasons, warnings)

        raw = (
            cfg.sector_weight * sector_score
            + cfg.industry_weight * industry_score
            + cfg.field_weight * field_score
        )
        score = round(min(max(raw, 0.0), 1.0), 2)

        company_type = (
            CompanyType.BANKING
            if score >= cfg.banking_threshold
            else CompanyType.NON_BANKING
        )
        confidence = self.confidence_for(score)

        if cfg.ambiguity_low <= score <= cfg.ambiguity_high:
            warnings.append(
                MappingError(
                    type=MappingErrorType.COMPANY_TYPE_DETECTION_FAILED,
                    field="company_type",
                    message=(
                        f"Ambiguous company type: score {score:.2f} is inside "
                        f"[{cfg.ambiguity_low}, {cfg.ambiguity_high}]; "
                        f"classified as {company_type.value}"
                    ),
                    context={"score": score, "reasons": list(reasons)},
                )
            )

        logger.info(
            "DETECTED: %s score=%.2f confidence=%s (sector=%.2f industry=%.2f fields=%.2f)",
            company_type.value,
            score,
            confidence.value,
            sector_score,
            industry_score,
            field_score,
        )
        return DetectionResult(company_type, confidence, score, reasons, warnings)

    def validate_detection(
        self,
        result: DetectionResult,
        fallback: CompanyType = CompanyType.NON_BANKING,
    ) -> DetectionResult:
        """Replace a near-zero-evidence result with *fallback*.

        Results with usable evidence are returned unchanged, which makes the
        call idempotent.
        """
        if not (
            result.confidence is Confidence.LOW
            and result.score < self._config.fallback_score_floor
        ):
            return result

        if result.company_type is fallback and result.score == 0.0:
            return result

        logger.warning(
            "Detection score %.2f too weak; falling back to %s",
            result.score,
            fallback.value,
        )
        warning = MappingError(
            type=MappingErrorType.COMPANY_TYPE_DETECTION_FAILED,
            field="company_type",
            message=(
                f"Detection evidence too weak (score {result.score:.2f}); "
                f"using fallback type {fallback.value}"
            ),
            context={"original_type": result.company_type.value, "score": result.score},
        )
        return replace(
            result,
            company_type=fallback,
            score=0.0,
            confidence=Confidence.LOW,
            reasons=list(result.reasons),
            warnings=[*result.warnings, warning],
        )

    def confidence_for(self, score: float) -> Confidence:
        if score >= self._config.high_confidence:
            return Confidence.HIGH
        if score >= self._config.medium_confidence:
            return Confidence.MEDIUM
        return Confidence.LOW

    def detection_stats(self, data: Optional[Mapping[str, Any]]) -> dict[str, Any]:
        """Indicator coverage of a payload, for debug reports."""
        data = data or {}
        banking = [f for f in BANKING_INDICATOR_FIELDS if has_valid_series(data.get(f))]
        non_banking = [
            f for f in NON_BANKING_INDICATOR_FIELDS if has_valid_series(data.get(f))
        ]
        return {
            "total_fields": len(data),
            "non_null_fields": sum(1 for v in data.values() if v is not None),
            "banking_indicators_present": banking,
            "banking_indicator_ratio": round(
                len(banking) / len(BANKING_INDICATOR_FIELDS), 4
            ),
            "non_banking_indicators_present": non_banking,
        }

    # ------------------------------------------------------------------ #
    # Evidence
    # ------------------------------------------------------------------ #

    def _sector_score(self, sector: Optional[str], reasons: list[str]) -> float:
        if not sector or not sector.strip():
            reasons.append("No sector information available")
            return 0.0

        text = sector.strip().lower()
        match = None
        if len(text) >= 3:
            match = process.extractOne(
                text,
                _SECTORS_LOWER,
                scorer=fuzz.partial_ratio,
                score_cutoff=self._config.sector_match_cutoff,
            )
        if match is not None:
            _, score, index = match
            reasons.append(
                f"Sector '{sector}' matches banking sector "
                f"'{BANKING_SECTORS[index]}' (score={score:.1f})"
            )
            return 1.0

        hits = [k for k in SECTOR_KEYWORDS if k in text]
        if hits:
            reasons.append(
                f"Sector '{sector}' contains banking keyword(s): {', '.join(hits)}"
            )
            return self._config.sector_keyword_score

        reasons.append(f"Sector '{sector}' is not a banking sector")
        return 0.0

    def _industry_score(self, industry: Optional[str], reasons: list[str]) -> float:
        if not industry or not industry.strip():
            return 0.0

        text = industry.strip().lower()
        matches = [k for k in INDUSTRY_KEYWORDS if k in text or text in k]
        if not matches:
            return 0.0

        reasons.append(
            f"Industry '{industry}' matches {len(matches)} banking keyword(s)"
        )
        return min(len(matches) * self._config.industry_match_step, 1.0)

    def _field_score(
        self,
        data: Mapping[str, Any],
        reasons: list[str],
        warnings: list[MappingError],
    ) -> float:
        if not any(v is not None for v in data.values()):
            warnings.append(
                MappingError(
                    type=MappingErrorType.INVALID_DATA_TYPE,
                    field="data",
                    message="No non-null fields available for company type detection",
                )
            )
            return 0.0

        present = sum(1 for f in BANKING_INDICATOR_FIELDS if has_valid_series(data.get(f)))
        non_banking = sum(
            1 for f in NON_BANKING_INDICATOR_FIELDS if has_valid_series(data.get(f))
        )

        ratio = present / len(BANKING_INDICATOR_FIELDS)
        score = max(0.0, ratio - non_banking * self._config.non_banking_field_penalty)

        if present:
            reasons.append(
                f"Banking indicator fields present: {present}/"
                f"{len(BANKING_INDICATOR_FIELDS)}"
            )
        if non_banking:
            reasons.append(f"Non-banking indicator fields present: {non_banking}")
        return score

