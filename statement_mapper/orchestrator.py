"""
Financial Data Mapper orchestrator.

The public entry point.  One request runs through an explicit state
machine::

    START ─▶ CACHE_CHECK ─hit─▶ DONE
      │          │miss
      └─────────▶ DETECT ─▶ SELECT_MAPPER ─▶ MAP ─ok─▶ CACHE_STORE ─▶ DONE
                                             ▲  │fail
                                 RETRY_WAIT ◀┤  └─▶ MAYBE_FALLBACK ─▶ MAP | DONE
                                     └───────┘

Usage
-----
>>> from statement_mapper import FinancialDataMapper
>>>
>>> with FinancialDataMapper() as mapper:
...     result = mapper.map_financial_data(payload, symbol="HDFCBANK",
...                                        sector="Banks")
...     print(result.to_dict())
"""

from __future__ import annotations

import random
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable, Dict, List, Mapping, Optional, Union

from statement_mapper.banking_mapper import banking_mapper
from statement_mapper.base_mapper import DataMapper
from statement_mapper.cache import ResultCache, fingerprint
from statement_mapper.config import MapperConfig
from statement_mapper.detector import CompanyTypeDetector, DetectionResult
from statement_mapper.error_handler import DataMappingErrorHandler
from statement_mapper.historical import HistoricalDataProcessor
from statement_mapper.logging_setup import configure_logging, get_logger, symbol_logger
from statement_mapper.non_banking_mapper import non_banking_mapper
from statement_mapper.schema import (
    CompanyType,
    Confidence,
    MappingError,
    MappingErrorType,
    MappingResult,
)

logger = get_logger("orchestrator")

# More MISSING_REQUIRED_FIELD errors than this hints at the wrong layout
FALLBACK_MISSING_FIELD_LIMIT = 3


class MapperState(str, Enum):
    START = "start"
    CACHE_CHECK = "cache_check"
    DETECT = "detect"
    SELECT_MAPPER = "select_mapper"
    MAP = "map"
    RETRY_WAIT = "retry_wait"
    MAYBE_FALLBACK = "maybe_fallback"
    CACHE_STORE = "cache_store"
    DONE = "done"


@dataclass(frozen=True)
class MappingRequest:
    payload: Any
    symbol: Optional[str] = None
    sector: Optional[str] = None
    industry: Optional[str] = None
    force_company_type: Optional[CompanyType] = None

    @property
    def payload_usable(self) -> bool:
        return isinstance(self.payload, Mapping) and bool(self.payload)

    def payload_text(self, key: str) -> Optional[str]:
        if not isinstance(self.payload, Mapping):
            return None
        value = self.payload.get(key)
        return value if isinstance(value, str) and value.strip() else None


@dataclass
class _Run:
    """Mutable bookkeeping for one request."""

    request: MappingRequest
    state: MapperState = MapperState.START
    cache_key: Optional[str] = None
    detection: Optional[DetectionResult] = None
    company_type: Optional[CompanyType] = None
    mapper: Optional[DataMapper] = None
    attempt: int = 0
    retry_delay: float = 0.0
    in_fallback: bool = False
    last: Optional[MappingResult] = None
    errors: List[MappingError] = field(default_factory=list)
    warnings: List[MappingError] = field(default_factory=list)
    result: Optional[MappingResult] = None


@dataclass(frozen=True)
class ApiValidation:
    is_valid: bool
    errors: List[MappingError]
    warnings: List[MappingError]

    def to_dict(self) -> dict[str, Any]:
        return {
            "is_valid": self.is_valid,
            "errors": [e.to_dict() for e in self.errors],
            "warnings": [w.to_dict() for w in self.warnings],
        }


class MapperContext:
    """Long-lived collaborators shared by mapping requests.

    Owns the result cache and the error handler, plus the clock, sleep and
    random source they depend on.  Tests pass deterministic replacements.
    """

    def __init__(
        self,
        config: Optional[MapperConfig] = None,
        clock: Callable[[], float] = time.time,
        sleep: Callable[[float], None] = time.sleep,
        rng: Optional[random.Random] = None,
    ) -> None:
        cfg = config or MapperConfig()
        self.clock = clock
        self.sleep = sleep
        self.rng = rng or random.Random()
        self.cache = ResultCache(cfg.cache, clock=clock)
        self.error_handler = DataMappingErrorHandler(
            cfg.error_handling, rng=self.rng, clock=clock
        )
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def close(self) -> None:
        self.cache.clear()
        self.error_handler.clear_history()
        self._closed = True

    def __enter__(self) -> "MapperContext":
        return self

    def __exit__(self, *exc: Any) -> None:
        self.close()


def _warning(message: str, error_type: MappingErrorType, field_name: str, **context: Any) -> MappingError:
    return MappingError(error_type, field_name, message, context=context)


class FinancialDataMapper:
    """Detects the company type, maps the payload, retries and falls back.

    Parameters
    ----------
    config:
        All tuneable knobs.
    context:
        Shared cache / error handler.  A private one is created when
        omitted and closed together with the mapper.
    """

    def __init__(
        self,
        config: Optional[MapperConfig] = None,
        context: Optional[MapperContext] = None,
    ) -> None:
        self._config = config or MapperConfig()

        configure_logging(level=self._config.log_level)

        self._owns_context = context is None
        self._context = context or MapperContext(self._config)
        self._detector = CompanyTypeDetector(self._config.detection)
        processor = HistoricalDataProcessor(self._config.historical)
        self._mappers: Dict[CompanyType, DataMapper] = {
            CompanyType.BANKING: banking_mapper(processor),
            CompanyType.NON_BANKING: non_banking_mapper(processor),
        }
        self._handlers: Dict[MapperState, Callable[[_Run], MapperState]] = {
            MapperState.START: self._on_start,
            MapperState.CACHE_CHECK: self._on_cache_check,
            MapperState.DETECT: self._on_detect,
            MapperState.SELECT_MAPPER: self._on_select_mapper,
            MapperState.MAP: self._on_map,
            MapperState.RETRY_WAIT: self._on_retry_wait,
            MapperState.MAYBE_FALLBACK: self._on_maybe_fallback,
            MapperState.CACHE_STORE: self._on_cache_store,
        }

        logger.info(
            "Mapper initialised: cache=%s, retry=%s (max_retries=%d), fallback=%s",
            self._context.cache.enabled,
            self._config.enable_retry,
            self._config.max_retries,
            self._config.fallback_company_type.value,
        )

    @property
    def context(self) -> MapperContext:
        return self._context

    def close(self) -> None:
        if self._owns_context:
            self._context.close()

    def __enter__(self) -> "FinancialDataMapper":
        return self

    def __exit__(self, *exc: Any) -> None:
        self.close()

    # ------------------------------------------------------------------ #
    # Public API
    # ------------------------------------------------------------------ #

    def map_financial_data(
        self,
        payload: Any,
        symbol: Optional[str] = None,
        sector: Optional[str] = None,
        industry: Optional[str] = None,
        force_company_type: Union[CompanyType, str, None] = None,
    ) -> MappingResult:
        """Map one feed payload.

        Raises
        ------
        ValueError
            If *force_company_type* is not a known company type.
        """
        forced = CompanyType(force_company_type) if force_company_type else None
        return self.map_request(
            MappingRequest(
                payload=payload,
                symbol=symbol,
                sector=sector,
                industry=industry,
                force_company_type=forced,
            )
        )

    def map_request(self, request: MappingRequest) -> MappingResult:
        run = _Run(request=request)
        while run.state is not MapperState.DONE:
            previous = run.state
            run.state = self._handlers[previous](run)
            logger.debug("State %s -> %s", previous.value, run.state.value)

        result = run.result
        if result is None:
            result = self._final_result(run)
        return result

    def detect_company_type(
        self,
        payload: Any,
        sector: Optional[str] = None,
        industry: Optional[str] = None,
    ) -> DetectionResult:
        data = payload if isinstance(payload, Mapping) else None
        detection = self._detector.detect(sector, industry, data)
        return self._detector.validate_detection(
            detection, self._config.fallback_company_type
        )

    def validate_api_response(self, payload: Any) -> ApiValidation:
        errors: List[MappingError] = []
        warnings: List[MappingError] = []

        if not isinstance(payload, Mapping):
            errors.append(
                MappingError(
                    MappingErrorType.INVALID_DATA_TYPE,
                    "root",
                    "API response is null or not an object",
                )
            )
            return ApiValidation(False, errors, warnings)

        if not any(v is not None for v in payload.values()):
            errors.append(
                MappingError(
                    MappingErrorType.INVALID_DATA_TYPE,
                    "root",
                    "API response contains no valid data",
                )
            )
            return ApiValidation(False, errors, warnings)

        if not any(
            isinstance(k, str) and (k.endswith("_fy_h") or k.endswith("_fq_h"))
            for k in payload
        ):
            warnings.append(
                MappingError(
                    MappingErrorType.HISTORICAL_DATA_MISMATCH,
                    "historical_data",
                    "No historical data arrays found in API response",
                )
            )
        return ApiValidation(True, errors, warnings)

    def generate_debug_report(
        self,
        symbol: str,
        payload: Any,
        sector: Optional[str] = None,
        industry: Optional[str] = None,
        result: Optional[MappingResult] = None,
    ) -> str:
        """Plain-text diagnostics for one payload.

        Maps the payload first unless a *result* is supplied.
        """
        if result is None:
            result = self.map_financial_data(payload, symbol, sector, industry)
        handler = self._context.error_handler
        validation = self.validate_api_response(payload)
        fields = payload if isinstance(payload, Mapping) else {}
        detection = self.detect_company_type(payload, sector, industry)
        stats = self._detector.detection_stats(fields)
        now = datetime.fromtimestamp(self._context.clock(), tz=timezone.utc)

        lines = [
            "=== Financial Data Mapper Debug Report ===",
            f"Symbol: {symbol}",
            f"Timestamp: {now.isoformat()}",
            f"Success: {result.success}",
            f"From Cache: {result.from_cache}",
            "",
            "API Response Analysis:",
            f"  Valid: {validation.is_valid}",
            f"  Total Fields: {stats['total_fields']}",
            f"  Non-null Fields: {stats['non_null_fields']}",
            f"  Banking Indicators: {len(stats['banking_indicators_present'])}",
            "",
            "Company Type Detection:",
            f"  Detected Type: {detection.company_type.value}",
            f"  Confidence: {detection.confidence.value} ({detection.score})",
            f"  Reasons: {', '.join(detection.reasons) or 'None'}",
        ]

        if result.errors or result.warnings:
            aggregation = handler.aggregate(
                result.errors, result.warnings, context={"operation": "debug_report"}
            )
            lines += [
                "",
                "Error Analysis:",
                f"  Total Errors: {aggregation.total_errors}",
                f"  Total Warnings: {aggregation.total_warnings}",
                f"  Critical Errors: {len(aggregation.critical_errors)}",
                f"  Recoverable Errors: {len(aggregation.recoverable_errors)}",
            ]
            if aggregation.suggestions:
                lines += ["", "Suggestions:"]
                lines += [f"  {i}. {s}" for i, s in enumerate(aggregation.suggestions, 1)]

        cache = self.cache_stats()
        lines += [
            "",
            "Cache Statistics:",
            f"  Size: {cache['size']}/{cache['max_entries']}",
            f"  Hit Rate: {cache['hit_rate']}",
        ]
        return "\n".join(lines)

    def cache_stats(self) -> Dict[str, Any]:
        return self._context.cache.stats()

    def clear_cache(self) -> None:
        self._context.cache.clear()
        logger.info("Cache cleared")

    def error_statistics(self, symbol: Optional[str] = None) -> Dict[str, Any]:
        handler = self._context.error_handler
        stats = handler.error_statistics()
        if symbol:
            stats["recent_errors"] = [e.to_dict() for e in handler.error_history(symbol)[-10:]]
        return stats

    # ------------------------------------------------------------------ #
    # State handlers
    # ------------------------------------------------------------------ #

    def _log(self, run: _Run):
        return symbol_logger(logger, run.request.symbol or "UNKNOWN")

    def _on_start(self, run: _Run) -> MapperState:
        if self._context.cache.enabled:
            return MapperState.CACHE_CHECK
        return MapperState.DETECT

    def _on_cache_check(self, run: _Run) -> MapperState:
        req = run.request
        try:
            run.cache_key = fingerprint(
                req.symbol,
                req.payload,
                req.sector,
                req.industry,
                req.force_company_type.value if req.force_company_type else None,
            )
        except (TypeError, ValueError) as exc:
            self._log(run).warning("Payload cannot be fingerprinted, skipping cache: %s", exc)
            return MapperState.DETECT

        data = self._context.cache.get(run.cache_key)
        if data is None:
            return MapperState.DETECT

        self._log(run).info("Cache hit")
        run.result = MappingResult(
            success=True,
            data=data,
            errors=[],
            warnings=[
                _warning(
                    "Data retrieved from cache",
                    MappingErrorType.API_PARSING_ERROR,
                    "cache",
                )
            ],
            from_cache=True,
        )
        return MapperState.DONE

    def _on_detect(self, run: _Run) -> MapperState:
        req = run.request
        if req.force_company_type is not None:
            run.company_type = req.force_company_type
            run.warnings.append(
                _warning(
                    f"Company type forced to: {req.force_company_type.value}",
                    MappingErrorType.COMPANY_TYPE_DETECTION_FAILED,
                    "company_type",
                )
            )
            return MapperState.SELECT_MAPPER

        detection = self.detect_company_type(
            req.payload,
            req.sector or req.payload_text("sector"),
            req.industry or req.payload_text("industry"),
        )
        run.detection = detection
        run.company_type = detection.company_type
        run.warnings.extend(detection.warnings)

        if detection.confidence is Confidence.LOW:
            run.warnings.append(
                _warning(
                    f"Low confidence company type detection ({detection.score}): "
                    f"{', '.join(detection.reasons)}",
                    MappingErrorType.COMPANY_TYPE_DETECTION_FAILED,
                    "company_type",
                    score=detection.score,
                )
            )
        return MapperState.SELECT_MAPPER

    def _on_select_mapper(self, run: _Run) -> MapperState:
        run.mapper = self._mappers[run.company_type]
        run.attempt = 0
        self._log(run).info("Mapping as %s", run.company_type.value)
        return MapperState.MAP

    def _on_map(self, run: _Run) -> MapperState:
        req = run.request
        run.attempt += 1
        result = run.mapper.map_data(req.payload, req.symbol, req.sector, req.industry)
        run.last = result
        run.errors.extend(result.errors)
        run.warnings.extend(result.warnings)

        if result.success:
            if run.attempt > 1:
                run.warnings.append(
                    _warning(
                        f"Mapping succeeded on attempt {run.attempt}",
                        MappingErrorType.API_PARSING_ERROR,
                        "retry",
                        attempt=run.attempt,
                    )
                )
            if run.in_fallback:
                run.warnings.append(
                    _warning(
                        f"Fallback to {run.company_type.value} mapping succeeded",
                        MappingErrorType.COMPANY_TYPE_DETECTION_FAILED,
                        "company_type",
                    )
                )
            return MapperState.CACHE_STORE

        if run.in_fallback or not self._config.enable_retry:
            return MapperState.MAYBE_FALLBACK

        max_attempts = self._config.max_retries + 1
        decision = self._context.error_handler.should_retry(
            result.errors, run.attempt, max_attempts
        )
        if decision:
            run.retry_delay = decision.delay_seconds or 0.0
            self._log(run).info(
                "Retrying (attempt %d of %d) in %.2fs: %s",
                run.attempt + 1,
                max_attempts,
                run.retry_delay,
                decision.reason,
            )
            return MapperState.RETRY_WAIT

        if run.attempt >= max_attempts:
            run.errors.append(
                MappingError(
                    MappingErrorType.CALCULATION_ERROR,
                    "retry_exhausted",
                    f"All {max_attempts} mapping attempts failed",
                    context={
                        "company_type": run.company_type.value,
                        "total_attempts": max_attempts,
                    },
                )
            )
        return MapperState.MAYBE_FALLBACK

    def _on_retry_wait(self, run: _Run) -> MapperState:
        if run.retry_delay > 0:
            self._context.sleep(run.retry_delay)
        return MapperState.MAP

    def _on_maybe_fallback(self, run: _Run) -> MapperState:
        if (
            run.in_fallback
            or run.request.force_company_type is not None
            or not run.request.payload_usable
            or not self._fallback_warranted(run)
        ):
            return MapperState.DONE

        target = run.company_type.opposite()
        self._log(run).warning(
            "Primary mapping as %s failed; falling back to %s",
            run.company_type.value,
            target.value,
        )
        run.warnings.append(
            _warning(
                f"Primary mapping failed, attempting fallback to {target.value}",
                MappingErrorType.COMPANY_TYPE_DETECTION_FAILED,
                "company_type",
                primary=run.company_type.value,
            )
        )
        run.in_fallback = True
        run.company_type = target
        run.mapper = self._mappers[target]
        run.attempt = 0
        return MapperState.MAP

    def _fallback_warranted(self, run: _Run) -> bool:
        if run.detection is not None and run.detection.confidence is Confidence.LOW:
            return True
        errors = run.last.errors if run.last is not None else []
        aggregation = self._context.error_handler.aggregate(errors)
        missing = aggregation.errors_by_type.get(MappingErrorType.MISSING_REQUIRED_FIELD, 0)
        if missing > FALLBACK_MISSING_FIELD_LIMIT:
            return True
        return any(
            e.type
            in (
                MappingErrorType.MISSING_REQUIRED_FIELD,
                MappingErrorType.COMPANY_TYPE_DETECTION_FAILED,
            )
            for e in aggregation.critical_errors
        )

    def _on_cache_store(self, run: _Run) -> MapperState:
        if run.cache_key is not None and run.last is not None and run.last.data is not None:
            self._context.cache.put(run.cache_key, run.last.data)
        return MapperState.DONE

    # ------------------------------------------------------------------ #
    # Result assembly
    # ------------------------------------------------------------------ #

    def _final_result(self, run: _Run) -> MappingResult:
        last = run.last
        success = last is not None and last.success
        result = MappingResult(
            success=success,
            data=last.data if success else None,
            errors=list(run.errors),
            warnings=list(run.warnings),
        )

        handler = self._context.error_handler
        symbol = run.request.symbol or "UNKNOWN"
        context = {
            "company_type": run.company_type.value if run.company_type else None,
            "operation": "financial_data_mapping",
        }
        aggregation = handler.aggregate(result.errors, result.warnings, symbol, context)

        log = self._log(run)
        if success:
            log.info(
                "Mapped as %s: errors=%d, warnings=%d",
                result.data.company_type.value,
                len(result.errors),
                len(result.warnings),
            )
        else:
            log.error(
                "Mapping failed: errors=%d, warnings=%d",
                len(result.errors),
                len(result.warnings),
            )
            log.debug(
                "%s",
                handler.generate_error_report(
                    aggregation, symbol, context["company_type"], context["operation"]
                ),
            )
        return result
