"""
Error classification, aggregation, retry policy and recovery planning.

Mappers report problems as plain ``MappingError`` values.  This module
attaches the operational meaning of each error type (how severe it is,
whether the pipeline can work around it, whether trying again could help)
without touching the original error, and keeps a bounded per-symbol
history for diagnostics.

Severity / retry profile per type::

    MISSING_REQUIRED_FIELD         HIGH     not retryable
    CALCULATION_ERROR              HIGH     retryable
    API_PARSING_ERROR              HIGH     retryable
    INVALID_DATA_TYPE              MEDIUM   not retryable
    COMPANY_TYPE_DETECTION_FAILED  MEDIUM   not retryable
    HISTORICAL_DATA_MISMATCH       LOW      not retryable

An error whose context carries ``critical=True`` is escalated to CRITICAL.
"""

from __future__ import annotations

import random
import threading
import time
from collections import Counter, deque
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable, Deque, Dict, Iterable, List, Optional, Sequence

from statement_mapper.config import ErrorHandlingConfig
from statement_mapper.logging_setup import get_logger
from statement_mapper.schema import MappingError, MappingErrorType

logger = get_logger("error_handler")


class ErrorSeverity(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


_CRITICAL_SEVERITIES = (ErrorSeverity.HIGH, ErrorSeverity.CRITICAL)


@dataclass(frozen=True)
class _ErrorProfile:
    severity: ErrorSeverity
    retryable: bool
    recoverable: bool
    # ``{field}`` is substituted with the error's field name
    suggestions: tuple[str, ...]


_PROFILES: Dict[MappingErrorType, _ErrorProfile] = {
    MappingErrorType.MISSING_REQUIRED_FIELD: _ErrorProfile(
        ErrorSeverity.HIGH,
        retryable=False,
        recoverable=True,
        suggestions=(
            "Check if field '{field}' exists with different naming",
            "Verify API response structure",
            "Consider using fallback values",
        ),
    ),
    MappingErrorType.CALCULATION_ERROR: _ErrorProfile(
        ErrorSeverity.HIGH,
        retryable=True,
        recoverable=True,
        suggestions=(
            "Review calculation logic for field '{field}'",
            "Check for division by zero or invalid operations",
            "Add input validation before calculations",
        ),
    ),
    MappingErrorType.API_PARSING_ERROR: _ErrorProfile(
        ErrorSeverity.HIGH,
        retryable=True,
        recoverable=True,
        suggestions=(
            "Verify the feed response is well-formed",
            "Retry the request once the upstream feed is available",
        ),
    ),
    MappingErrorType.INVALID_DATA_TYPE: _ErrorProfile(
        ErrorSeverity.MEDIUM,
        retryable=False,
        recoverable=True,
        suggestions=(
            "Validate data type for field '{field}'",
            "Check for null or undefined values",
            "Implement data type conversion",
        ),
    ),
    MappingErrorType.COMPANY_TYPE_DETECTION_FAILED: _ErrorProfile(
        ErrorSeverity.MEDIUM,
        retryable=False,
        recoverable=True,
        suggestions=(
            "Provide explicit company type",
            "Check sector and industry information",
            "Review detection criteria",
        ),
    ),
    MappingErrorType.HISTORICAL_DATA_MISMATCH: _ErrorProfile(
        ErrorSeverity.LOW,
        retryable=False,
        recoverable=True,
        suggestions=(
            "Validate historical data array consistency",
            "Check for missing time periods",
            "Implement data interpolation for gaps",
        ),
    ),
}

# Recovery plan entries: (recovery step, fallback option, data-quality issue)
_RECOVERY: Dict[MappingErrorType, tuple[Optional[str], Optional[str], Optional[str]]] = {
    MappingErrorType.MISSING_REQUIRED_FIELD: (
        "Check if field '{field}' exists in alternative formats",
        "Use historical data or calculated values for '{field}'",
        None,
    ),
    MappingErrorType.INVALID_DATA_TYPE: (
        "Validate and convert data type for field '{field}'",
        None,
        "Data type mismatch in field '{field}'",
    ),
    MappingErrorType.CALCULATION_ERROR: (
        "Review calculation logic for field '{field}'",
        "Use raw values instead of calculated values for '{field}'",
        None,
    ),
    MappingErrorType.COMPANY_TYPE_DETECTION_FAILED: (
        "Try manual company type specification",
        "Use fallback company type mapping",
        None,
    ),
    MappingErrorType.HISTORICAL_DATA_MISMATCH: (
        "Validate historical data array lengths",
        None,
        "Inconsistent historical data structure",
    ),
    MappingErrorType.API_PARSING_ERROR: (
        "Re-fetch the raw feed response for '{field}'",
        None,
        "Malformed feed item '{field}'",
    ),
}


def _dedupe(items: Iterable[str]) -> List[str]:
    return list(dict.fromkeys(items))


# ---------------------------------------------------------------------------
# Result types
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class EnhancedMappingError:
    """A ``MappingError`` plus derived operational attributes.

    The wrapped error is never modified; ``context`` is the error's own
    context merged with the caller's.
    """

    error: MappingError
    timestamp: str
    context: Dict[str, Any]

    @property
    def type(self) -> MappingErrorType:
        return self.error.type

    @property
    def field(self) -> str:
        return self.error.field

    @property
    def message(self) -> str:
        return self.error.message

    @property
    def _profile(self) -> _ErrorProfile:
        return _PROFILES[self.error.type]

    @property
    def severity(self) -> ErrorSeverity:
        if self.context.get("critical"):
            return ErrorSeverity.CRITICAL
        return self._profile.severity

    @property
    def recoverable(self) -> bool:
        return self._profile.recoverable

    @property
    def retryable(self) -> bool:
        return self._profile.retryable

    @property
    def suggestions(self) -> List[str]:
        return [s.format(field=self.field) for s in self._profile.suggestions]

    def to_dict(self) -> dict[str, Any]:
        out = self.error.to_dict()
        out.update(
            {
                "severity": self.severity.value,
                "recoverable": self.recoverable,
                "retryable": self.retryable,
                "suggestions": self.suggestions,
                "timestamp": self.timestamp,
                "context": dict(self.context),
            }
        )
        return out


@dataclass
class ErrorAggregation:
    total_errors: int
    total_warnings: int
    errors_by_type: Dict[MappingErrorType, int]
    errors_by_severity: Dict[ErrorSeverity, int]
    critical_errors: List[EnhancedMappingError]
    recoverable_errors: List[EnhancedMappingError]
    retryable_errors: List[EnhancedMappingError]
    suggestions: List[str]

    def to_dict(self) -> dict[str, Any]:
        return {
            "total_errors": self.total_errors,
            "total_warnings": self.total_warnings,
            "errors_by_type": {t.value: n for t, n in self.errors_by_type.items()},
            "errors_by_severity": {s.value: n for s, n in self.errors_by_severity.items()},
            "critical_errors": [e.to_dict() for e in self.critical_errors],
            "recoverable_count": len(self.recoverable_errors),
            "retryable_count": len(self.retryable_errors),
            "suggestions": list(self.suggestions),
        }


@dataclass(frozen=True)
class RetryDecision:
    should_retry: bool
    reason: str
    delay_seconds: Optional[float] = None
    modifications: tuple[str, ...] = ()

    def __bool__(self) -> bool:
        return self.should_retry


@dataclass
class RecoveryPlan:
    """Advisory only; nothing in the pipeline executes these steps."""

    can_recover: bool
    recovery_steps: List[str]
    fallback_options: List[str]
    data_quality_issues: List[str]

    def to_dict(self) -> dict[str, Any]:
        return {
            "can_recover": self.can_recover,
            "recovery_steps": list(self.recovery_steps),
            "fallback_options": list(self.fallback_options),
            "data_quality_issues": list(self.data_quality_issues),
        }


# ---------------------------------------------------------------------------
# Handler
# ---------------------------------------------------------------------------

class DataMappingErrorHandler:
    """Classifies mapping errors and decides on retries.

    Parameters
    ----------
    config:
        Backoff and history settings.
    rng:
        Source of jitter; anything with a ``random()`` method.
    clock:
        Returns epoch seconds; used for error timestamps.
    """

    def __init__(
        self,
        config: Optional[ErrorHandlingConfig] = None,
        rng: Optional[random.Random] = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._config = config or ErrorHandlingConfig()
        self._rng = rng or random.Random()
        self._clock = clock
        self._history: Dict[str, Deque[EnhancedMappingError]] = {}
        self._lock = threading.Lock()

    # ------------------------------------------------------------------ #
    # Classification
    # ------------------------------------------------------------------ #

    def enhance(
        self, error: MappingError, context: Optional[Dict[str, Any]] = None
    ) -> EnhancedMappingError:
        merged = dict(error.context)
        if context:
            merged.update({k: v for k, v in context.items() if v is not None})
        timestamp = datetime.fromtimestamp(self._clock(), tz=timezone.utc).isoformat()
        return EnhancedMappingError(error=error, timestamp=timestamp, context=merged)

    def aggregate(
        self,
        errors: Sequence[MappingError],
        warnings: Sequence[MappingError] = (),
        symbol: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None,
    ) -> ErrorAggregation:
        """Summarise one result's errors and record them in the history.

        Counts by type and severity cover errors and warnings alike; the
        critical / recoverable / retryable subsets and the suggestions are
        drawn from errors only.
        """
        ctx = dict(context or {})
        if symbol:
            ctx.setdefault("symbol", symbol)
        enhanced_errors = [self.enhance(e, ctx) for e in errors]
        enhanced_warnings = [self.enhance(w, ctx) for w in warnings]

        by_type: Counter = Counter({t: 0 for t in MappingErrorType})
        by_severity: Counter = Counter({s: 0 for s in ErrorSeverity})
        for issue in (*enhanced_errors, *enhanced_warnings):
            by_type[issue.type] += 1
            by_severity[issue.severity] += 1

        aggregation = ErrorAggregation(
            total_errors=len(enhanced_errors),
            total_warnings=len(enhanced_warnings),
            errors_by_type=dict(by_type),
            errors_by_severity=dict(by_severity),
            critical_errors=[e for e in enhanced_errors if e.severity in _CRITICAL_SEVERITIES],
            recoverable_errors=[e for e in enhanced_errors if e.recoverable],
            retryable_errors=[e for e in enhanced_errors if e.retryable],
            suggestions=_dedupe(s for e in enhanced_errors for s in e.suggestions),
        )

        if symbol:
            self._record(symbol, [*enhanced_errors, *enhanced_warnings])
        for issue in aggregation.critical_errors:
            logger.warning(
                "[%s] %s: %s", issue.severity.value.upper(), issue.type.value, issue.message
            )
        return aggregation

    # ------------------------------------------------------------------ #
    # Retry policy
    # ------------------------------------------------------------------ #

    def backoff_delay(self, attempt: int) -> float:
        """Exponential backoff with up to ``jitter_fraction`` extra, in seconds."""
        cfg = self._config
        delay = min(cfg.base_delay_seconds * 2 ** max(attempt - 1, 0), cfg.max_delay_seconds)
        return delay + self._rng.random() * cfg.jitter_fraction * delay

    def should_retry(
        self, errors: Sequence[MappingError], attempt: int, max_attempts: int
    ) -> RetryDecision:
        if not errors:
            return RetryDecision(False, "No errors present")
        if attempt >= max_attempts:
            return RetryDecision(False, "Maximum retry attempts reached")

        enhanced = [self.enhance(e) for e in errors]
        blocking = [
            e for e in enhanced if e.severity in _CRITICAL_SEVERITIES and not e.retryable
        ]
        if blocking:
            return RetryDecision(
                False,
                "Non-retryable critical errors: " + ", ".join(e.field for e in blocking),
            )

        retryable = [e for e in enhanced if e.retryable]
        if retryable:
            return RetryDecision(
                True,
                f"{len(retryable)} retryable errors found",
                delay_seconds=self.backoff_delay(attempt),
                modifications=tuple(_dedupe(s for e in retryable for s in e.suggestions)),
            )
        return RetryDecision(False, "No retryable errors found")

    # ------------------------------------------------------------------ #
    # Recovery and reporting
    # ------------------------------------------------------------------ #

    def create_recovery_plan(
        self, errors: Sequence[MappingError], warnings: Sequence[MappingError] = ()
    ) -> RecoveryPlan:
        steps: List[str] = []
        fallbacks: List[str] = []
        issues: List[str] = []
        recoverable = [self.enhance(e) for e in errors]
        recoverable = [e for e in recoverable if e.recoverable]

        for error in recoverable:
            step, fallback, issue = _RECOVERY[error.type]
            for template, bucket in ((step, steps), (fallback, fallbacks), (issue, issues)):
                if template is not None:
                    bucket.append(template.format(field=error.field))

        if len(errors) > len(warnings):
            fallbacks.append("Switch to alternative company type mapping")
            fallbacks.append("Use partial data with missing field indicators")

        return RecoveryPlan(
            can_recover=bool(recoverable),
            recovery_steps=_dedupe(steps),
            fallback_options=_dedupe(fallbacks),
            data_quality_issues=_dedupe(issues),
        )

    def generate_error_report(
        self,
        aggregation: ErrorAggregation,
        symbol: Optional[str] = None,
        company_type: Optional[str] = None,
        operation: Optional[str] = None,
    ) -> str:
        timestamp = datetime.fromtimestamp(self._clock(), tz=timezone.utc).isoformat()
        lines = [
            "=== Data Mapping Error Report ===",
            f"Timestamp: {timestamp}",
            f"Symbol: {symbol or 'Unknown'}",
            f"Company Type: {company_type or 'Unknown'}",
            f"Operation: {operation or 'Unknown'}",
            "",
            "Summary:",
            f"  Total Errors: {aggregation.total_errors}",
            f"  Total Warnings: {aggregation.total_warnings}",
            f"  Critical Issues: {len(aggregation.critical_errors)}",
            f"  Recoverable Issues: {len(aggregation.recoverable_errors)}",
            f"  Retryable Issues: {len(aggregation.retryable_errors)}",
            "",
            "Errors by Type:",
        ]
        lines += [
            f"  {t.value}: {n}" for t, n in aggregation.errors_by_type.items() if n
        ]
        lines += ["", "Errors by Severity:"]
        lines += [
            f"  {s.value.upper()}: {n}" for s, n in aggregation.errors_by_severity.items() if n
        ]
        if aggregation.critical_errors:
            lines += ["", "Critical Errors:"]
            for i, error in enumerate(aggregation.critical_errors, 1):
                lines.append(f"  {i}. {error.field}: {error.message}")
                if error.suggestions:
                    lines.append(f"     Suggestions: {', '.join(error.suggestions)}")
        if aggregation.suggestions:
            lines += ["", "Recommendations:"]
            lines += [f"  {i}. {s}" for i, s in enumerate(aggregation.suggestions, 1)]
        return "\n".join(lines)

    # ------------------------------------------------------------------ #
    # History
    # ------------------------------------------------------------------ #

    def _record(self, symbol: str, issues: Sequence[EnhancedMappingError]) -> None:
        with self._lock:
            history = self._history.get(symbol)
            if history is None:
                history = deque(maxlen=self._config.history_limit)
                self._history[symbol] = history
            history.extend(issues)

    def error_history(self, symbol: str) -> List[EnhancedMappingError]:
        with self._lock:
            return list(self._history.get(symbol, ()))

    def clear_history(self, symbol: Optional[str] = None) -> None:
        with self._lock:
            if symbol is None:
                self._history.clear()
            else:
                self._history.pop(symbol, None)

    def error_statistics(self) -> Dict[str, Any]:
        with self._lock:
            snapshot = {s: list(h) for s, h in self._history.items()}

        by_type: Counter = Counter()
        by_severity: Counter = Counter()
        for issues in snapshot.values():
            for issue in issues:
                by_type[issue.type.value] += 1
                by_severity[issue.severity.value] += 1

        most_affected = sorted(snapshot.items(), key=lambda kv: len(kv[1]), reverse=True)
        return {
            "symbols_tracked": len(snapshot),
            "total_issues": sum(len(v) for v in snapshot.values()),
            "issues_by_type": dict(by_type),
            "issues_by_severity": dict(by_severity),
            "most_affected_symbols": [
                {"symbol": s, "issues": len(v)} for s, v in most_affected[:5]
            ],
        }
