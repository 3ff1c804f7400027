"""
Index-aligned series arithmetic.

Derived metrics (margins, NPA ratios, ROE, ...) are computed element-wise
over most-recent-first historical arrays.  A missing operand at an index
yields ``None`` at that index, never ``0``: a gap in the source data must
stay visible as a gap in the derived figure.
"""

from __future__ import annotations

import math
from typing import Any, Callable, List, Mapping, Optional, Sequence

from statement_mapper.normalizer import NORMALIZER

Series = List[Optional[float]]


def safe_divide(
    numerator: Optional[float],
    denominator: Optional[float],
    default: Optional[float] = None,
) -> Optional[float]:
    """Divide two numbers, returning *default* when the result is undefined."""
    if numerator is None or denominator is None:
        return default
    if denominator == 0:
        return default
    result = numerator / denominator
    if math.isnan(result) or math.isinf(result):
        return default
    return result


def read_series(view: Mapping[str, Any], key: str) -> Optional[Series]:
    """Fetch *key* as a cleaned float series, or ``None`` if it is not one."""
    raw = view.get(key)
    if not isinstance(raw, (list, tuple)):
        return None
    return [None if v is None else NORMALIZER.to_float(v) for v in raw]


def read_scalar(view: Mapping[str, Any], key: str) -> Optional[float]:
    raw = view.get(key)
    if isinstance(raw, (list, tuple)):
        return None
    return NORMALIZER.to_float(raw) if raw is not None else None


def has_values(series: Optional[Sequence[Optional[float]]]) -> bool:
    return series is not None and any(v is not None for v in series)


def combine(
    fn: Callable[..., Optional[float]],
    *series: Optional[Sequence[Optional[float]]],
) -> Optional[Series]:
    """Apply *fn* element-wise over the common length of *series*.

    Returns ``None`` if any input series is absent.  At an index where any
    operand is ``None``, or *fn* produces a non-finite value, the output is
    ``None``.
    """
    if any(s is None for s in series):
        return None
    length = min(len(s) for s in series)
    out: Series = []
    for i in range(length):
        operands = [s[i] for s in series]
        if any(v is None for v in operands):
            out.append(None)
            continue
        value = fn(*operands)
        if value is None or not math.isfinite(value):
            out.append(None)
        else:
            out.append(value)
    return out


def ratio(
    numerator: Optional[Sequence[Optional[float]]],
    denominator: Optional[Sequence[Optional[float]]],
    scale: float = 1.0,
) -> Optional[Series]:
    """``numerator / denominator × scale``; zero denominators give ``None``."""

    def _div(n: float, d: float) -> Optional[float]:
        q = safe_divide(n, d)
        return None if q is None else q * scale

    return combine(_div, numerator, denominator)


def percent(
    numerator: Optional[Sequence[Optional[float]]],
    denominator: Optional[Sequence[Optional[float]]],
) -> Optional[Series]:
    return ratio(numerator, denominator, scale=100.0)


def null_fraction(series: Sequence[Optional[float]]) -> float:
    if not series:
        return 0.0
    return sum(1 for v in series if v is None) / len(series)
