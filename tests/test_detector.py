"""
Unit tests for the CompanyTypeDetector.
"""

from __future__ import annotations

import pytest

from statement_mapper.detector import (
    BANKING_INDICATOR_FIELDS,
    CompanyTypeDetector,
    DetectionResult,
    has_valid_series,
)
from statement_mapper.schema import CompanyType, Confidence, MappingErrorType


@pytest.fixture
def detector() -> CompanyTypeDetector:
    return CompanyTypeDetector()


@pytest.fixture
def bank_payload() -> dict:
    return {name: [100.0, 90.0] for name in BANKING_INDICATOR_FIELDS}


# ======================================================================
# Classification
# ======================================================================

class TestDetect:
    def test_full_bank_is_high_confidence(
        self, detector: CompanyTypeDetector, bank_payload: dict
    ) -> None:
        result = detector.detect("Private Sector Bank", "Banking", bank_payload)
        assert result.company_type is CompanyType.BANKING
        assert result.confidence is Confidence.HIGH
        assert result.score == pytest.approx(0.98)
        assert result.warnings == []

    def test_operating_company(self, detector: CompanyTypeDetector) -> None:
        payload = {"revenue_fy_h": [10.0], "cost_of_goods_fy_h": [6.0]}
        result = detector.detect("Technology", "Software", payload)
        assert result.company_type is CompanyType.NON_BANKING
        assert result.confidence is Confidence.LOW
        assert result.score == 0.0

    def test_sector_and_industry_with_one_field(self, detector: CompanyTypeDetector) -> None:
        result = detector.detect("Banks", "Banking", {"total_deposits_fy_h": [5.0]})
        # 0.4 sector + 0.18 industry + 0.014 fields
        assert result.score == pytest.approx(0.59)
        assert result.company_type is CompanyType.BANKING
        assert result.confidence is Confidence.MEDIUM
        assert any("Ambiguous" in w.message for w in result.warnings)

    def test_sector_alone_is_ambiguous_non_banking(
        self, detector: CompanyTypeDetector
    ) -> None:
        result = detector.detect("Banks", None, {"revenue_fy_h": [1.0]})
        assert result.score == pytest.approx(0.4)
        assert result.company_type is CompanyType.NON_BANKING
        assert result.warnings[0].type is MappingErrorType.COMPANY_TYPE_DETECTION_FAILED

    def test_sector_keyword_scores_partially(self, detector: CompanyTypeDetector) -> None:
        result = detector.detect("Lending Platforms", None, {"revenue_fy_h": [1.0]})
        assert result.score == pytest.approx(0.28)
        assert any("keyword" in r for r in result.reasons)

    def test_short_sector_ignored_by_fuzzy_match(
        self, detector: CompanyTypeDetector
    ) -> None:
        result = detector.detect("Ba", None, {"revenue_fy_h": [1.0]})
        assert result.score == 0.0

    def test_missing_sector_recorded(self, detector: CompanyTypeDetector) -> None:
        result = detector.detect(None, None, {"revenue_fy_h": [1.0]})
        assert "No sector information available" in result.reasons

    def test_non_banking_fields_penalise(
        self, detector: CompanyTypeDetector, bank_payload: dict
    ) -> None:
        plain = detector.detect(None, None, bank_payload).score
        bank_payload["inventory_fy_h"] = [1.0]
        bank_payload["cost_of_goods_fy_h"] = [1.0]
        assert detector.detect(None, None, bank_payload).score < plain

    def test_empty_payload_warns(self, detector: CompanyTypeDetector) -> None:
        result = detector.detect("Technology", None, {})
        assert any(
            w.type is MappingErrorType.INVALID_DATA_TYPE for w in result.warnings
        )

    def test_all_null_array_not_counted(self) -> None:
        assert not has_valid_series([None, None])
        assert not has_valid_series(5.0)
        assert has_valid_series([None, 1.0])


# ======================================================================
# Fallback
# ======================================================================

class TestValidateDetection:
    def test_weak_result_falls_back(self, detector: CompanyTypeDetector) -> None:
        weak = DetectionResult(CompanyType.BANKING, Confidence.LOW, 0.1)
        result = detector.validate_detection(weak)
        assert result.company_type is CompanyType.NON_BANKING
        assert result.score == 0.0
        assert result.warnings[-1].type is MappingErrorType.COMPANY_TYPE_DETECTION_FAILED

    def test_idempotent(self, detector: CompanyTypeDetector) -> None:
        weak = DetectionResult(CompanyType.BANKING, Confidence.LOW, 0.1)
        once = detector.validate_detection(weak)
        twice = detector.validate_detection(once)
        assert twice is once

    def test_confident_result_unchanged(self, detector: CompanyTypeDetector) -> None:
        strong = DetectionResult(CompanyType.BANKING, Confidence.HIGH, 0.9)
        assert detector.validate_detection(strong) is strong

    @pytest.mark.parametrize(
        "score,expected",
        [(0.95, Confidence.HIGH), (0.8, Confidence.HIGH), (0.5, Confidence.MEDIUM),
         (0.49, Confidence.LOW)],
    )
    def test_confidence_bands(
        self, detector: CompanyTypeDetector, score: float, expected: Confidence
    ) -> None:
        assert detector.confidence_for(score) is expected


# ======================================================================
# Stats
# ======================================================================

class TestDetectionStats:
    def test_counts_indicators(self, detector: CompanyTypeDetector) -> None:
        stats = detector.detection_stats(
            {"total_deposits_fy_h": [1.0], "inventory_fy_h": [2.0], "sector": None}
        )
        assert stats["total_fields"] == 3
        assert stats["non_null_fields"] == 2
        assert stats["banking_indicators_present"] == ["total_deposits_fy_h"]
        assert stats["non_banking_indicators_present"] == ["inventory_fy_h"]
