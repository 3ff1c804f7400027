"""
Value Normalization Layer.

Feed payloads are loosely typed: the same metric may arrive as ``1234.5``,
``"1,234.5"``, ``"₹1234"``, ``"(1234)"`` or ``"12.5%"``.  This module turns a
single raw value into ``float | None`` and reports, but never raises on,
anything it cannot read.

Transformations applied (in order):
1. Reject booleans and non-scalar types
2. Strip whitespace and currency symbols
3. Parenthetical negative ``(1234)`` → ``-1234``
4. Remove thousands separators
5. Strip a trailing percent sign (with a warning)
6. Reject NaN / infinity
"""

from __future__ import annotations

import math
import re
from typing import Any, Optional, Tuple

from statement_mapper.logging_setup import get_logger

logger = get_logger("normalizer")


class ValueNormalizer:
    """Stateless value normaliser.  All methods are pure functions."""

    # Currency symbols / prefixes to strip from values
    _CURRENCY_RE = re.compile(r"[₹$€£¥]")

    # Parenthetical negative: ``(1234)`` → ``-1234``
    _PAREN_NEG_RE = re.compile(r"^\((.+)\)$")

    # ------------------------------------------------------------------ #
    # Public API
    # ------------------------------------------------------------------ #

    def normalize_value(self, raw: Any) -> Tuple[Optional[float], list[str]]:
        """Attempt to parse a numeric financial value.

        Returns
        -------
        tuple[float | None, list[str]]
            (parsed_value, list_of_warnings).  ``None`` if parsing fails.
        """
        warnings: list[str] = []

        if raw is None:
            warnings.append("Value is None")
            return None, warnings

        # bool is an int subclass but never a financial figure
        if isinstance(raw, bool):
            warnings.append("Unexpected value type: bool")
            return None, warnings

        if isinstance(raw, (int, float)):
            value = float(raw)
            if not math.isfinite(value):
                warnings.append(f"Non-finite value: {raw!r}")
                return None, warnings
            return value, warnings

        if not isinstance(raw, str):
            warnings.append(f"Unexpected value type: {type(raw).__name__}")
            return None, warnings

        text = raw.strip()
        if not text:
            warnings.append("Value is empty string")
            return None, warnings

        text = self._CURRENCY_RE.sub("", text).strip()

        m = self._PAREN_NEG_RE.match(text)
        if m:
            text = "-" + m.group(1)

        text = text.replace(",", "")

        if text.endswith("%"):
            text = text[:-1].strip()
            warnings.append("Percent symbol stripped; raw value treated as number")

        try:
            value = float(text)
        except ValueError:
            warnings.append(f"Cannot parse numeric value from: {raw!r}")
            return None, warnings

        if not math.isfinite(value):
            warnings.append(f"Non-finite value: {raw!r}")
            return None, warnings

        logger.debug("normalize_value: %r → %s (warnings=%s)", raw, value, warnings)
        return value, warnings

    def to_float(self, raw: Any) -> Optional[float]:
        """Parse *raw* and drop the warnings."""
        value, _ = self.normalize_value(raw)
        return value

    def is_number(self, raw: Any) -> bool:
        return self.to_float(raw) is not None


# Module-level instance; the class holds no state.
NORMALIZER = ValueNormalizer()
