"""
Schema Builder.

Readers turn the supported input shapes into the flat payload dict the
mapper consumes:

* a plain dict of ``field -> value | [values]``,
* a JSON file or JSON string holding either that dict or the feed's
  data-point envelope,
* the data-point envelope itself::

      {"data": [{"id": "revenue_fy_h", "value": [...]}, ...],
       "metadata": {"sector": "...", "industry": "..."}}

Serialisers render a ``MappingResult`` / ``CompanyFinancialData`` as JSON,
CSV text or (optionally) a pandas DataFrame.
"""

from __future__ import annotations

import csv
import json
from dataclasses import dataclass, field
from io import StringIO
from pathlib import Path
from typing import Any, Dict, Iterator, List, Mapping, Optional, Union

from statement_mapper.config import HistoricalConfig
from statement_mapper.logging_setup import get_logger
from statement_mapper.normalizer import NORMALIZER
from statement_mapper.schema import (
    CompanyFinancialData,
    FinancialMetric,
    MappingError,
    MappingErrorType,
    MappingResult,
)

logger = get_logger("schema_builder")

CSV_COLUMNS = [
    "section",
    "subsection",
    "metric_id",
    "display_name",
    "unit",
    "period",
    "current_value",
    "quarterly_value",
    "historical_values",
]


@dataclass
class ParsedFeed:
    """A flattened feed payload plus whatever went wrong reading it."""

    payload: Dict[str, Any] = field(default_factory=dict)
    errors: List[MappingError] = field(default_factory=list)
    warnings: List[MappingError] = field(default_factory=list)

    @property
    def sector(self) -> Optional[str]:
        return self.payload.get("sector")

    @property
    def industry(self) -> Optional[str]:
        return self.payload.get("industry")


def _is_data_point_envelope(doc: Any) -> bool:
    return isinstance(doc, Mapping) and isinstance(doc.get("data"), list)


def _iter_metrics(data: CompanyFinancialData) -> Iterator[FinancialMetric]:
    for section in data.sections:
        yield from section.all_metrics()


class SchemaBuilder:
    """Reads feed payloads and serialises mapping output."""

    # ------------------------------------------------------------------ #
    # Input readers, producing the flat payload dict
    # ------------------------------------------------------------------ #

    @staticmethod
    def read_feed(data: Mapping[str, Any]) -> ParsedFeed:
        """Read from a plain mapping, keeping the envelope's parse issues."""
        if not isinstance(data, Mapping):
            raise TypeError(f"Expected a mapping, got {type(data).__name__}")
        if _is_data_point_envelope(data):
            return SchemaBuilder.read_data_points(data)
        return ParsedFeed(payload=dict(data))

    @staticmethod
    def read_dict(data: Mapping[str, Any]) -> Dict[str, Any]:
        """Read from a plain mapping (data-point envelopes are flattened).

        Skipped data points are logged; use ``read_feed`` to get them back.
        """
        feed = SchemaBuilder.read_feed(data)
        for issue in feed.errors + feed.warnings:
            logger.warning("Skipped data point %s: %s", issue.field, issue.message)
        return feed.payload

    @staticmethod
    def read_json(source: Union[str, Path]) -> Dict[str, Any]:
        """Read from a JSON file or JSON string.

        Raises
        ------
        ValueError
            If the document root is not an object.
        """
        if isinstance(source, Path) or (
            isinstance(source, str) and not source.lstrip().startswith(("{", "["))
        ):
            with open(Path(source), encoding="utf-8") as fh:
                doc = json.load(fh)
        else:
            doc = json.loads(source)

        if not isinstance(doc, dict):
            raise ValueError(f"Unsupported JSON root type: {type(doc).__name__}")
        return SchemaBuilder.read_dict(doc)

    @staticmethod
    def read_data_points(
        doc: Any, config: Optional[HistoricalConfig] = None
    ) -> ParsedFeed:
        """Flatten the feed's ``{data: [{id, value}], metadata}`` envelope.

        ``_fq_h`` arrays are cut to ``max_quarterly_periods`` and ``_fy_h``
        arrays to ``max_annual_years``; unreadable array entries become
        ``None`` so indices stay aligned.  Malformed items are skipped with
        an ``API_PARSING_ERROR``.
        """
        cfg = config or HistoricalConfig()
        feed = ParsedFeed()

        if not _is_data_point_envelope(doc):
            feed.errors.append(
                MappingError(
                    MappingErrorType.API_PARSING_ERROR,
                    "root",
                    "Feed response has no 'data' array",
                    original_value=type(doc).__name__,
                )
            )
            return feed

        for index, item in enumerate(doc["data"]):
            if not isinstance(item, Mapping) or not isinstance(item.get("id"), str):
                feed.errors.append(
                    MappingError(
                        MappingErrorType.API_PARSING_ERROR,
                        f"data[{index}]",
                        "Data point must be an object with a string 'id'",
                        original_value=repr(item)[:200],
                    )
                )
                continue

            name, value = item["id"], item.get("value")
            if value is None:
                continue

            if isinstance(value, (list, tuple)):
                cleaned = [NORMALIZER.to_float(v) if v is not None else None for v in value]
                if name.endswith("_fq_h"):
                    cleaned = cleaned[: cfg.max_quarterly_periods]
                elif name.endswith("_fy_h"):
                    cleaned = cleaned[: cfg.max_annual_years]
                feed.payload[name] = cleaned
            elif isinstance(value, (int, float)) and not isinstance(value, bool):
                feed.payload[name] = NORMALIZER.to_float(value)
            elif isinstance(value, str):
                feed.payload[name] = value
            else:
                feed.warnings.append(
                    MappingError(
                        MappingErrorType.INVALID_DATA_TYPE,
                        name,
                        f"Unsupported data point value type: {type(value).__name__}",
                        original_value=repr(value)[:200],
                    )
                )

        metadata = doc.get("metadata")
        if isinstance(metadata, Mapping):
            for key in ("sector", "industry"):
                if isinstance(metadata.get(key), str):
                    feed.payload[key] = metadata[key]

        logger.info(
            "Read %d data points (%d errors, %d warnings)",
            len(feed.payload),
            len(feed.errors),
            len(feed.warnings),
        )
        return feed

    # ------------------------------------------------------------------ #
    # Serialisers
    # ------------------------------------------------------------------ #

    @staticmethod
    def to_json(result: MappingResult, indent: int = 2) -> str:
        return json.dumps(result.to_dict(), indent=indent, ensure_ascii=False)

    @staticmethod
    def _rows(data: CompanyFinancialData) -> List[Dict[str, Any]]:
        return [
            {
                "section": m.section,
                "subsection": m.subsection or "",
                "metric_id": m.id,
                "display_name": m.display_name,
                "unit": m.unit.value,
                "period": m.period.value,
                "current_value": m.current_value,
                "quarterly_value": m.quarterly_value,
                "historical_values": list(m.historical_values),
            }
            for m in _iter_metrics(data)
        ]

    @staticmethod
    def to_csv_string(data: CompanyFinancialData) -> str:
        """One row per metric; history is ``;``-joined, blanks for nulls."""
        buf = StringIO()
        writer = csv.writer(buf)
        writer.writerow(CSV_COLUMNS)
        for row in SchemaBuilder._rows(data):
            row["historical_values"] = ";".join(
                "" if v is None else repr(v) for v in row["historical_values"]
            )
            writer.writerow(
                ["" if row[c] is None else row[c] for c in CSV_COLUMNS]
            )
        return buf.getvalue()

    @staticmethod
    def to_dataframe(data: CompanyFinancialData) -> Any:
        """Return a pandas DataFrame with one row per metric.

        Requires the optional ``pandas`` dependency.
        """
        try:
            import pandas as pd
        except ImportError as exc:
            raise ImportError(
                "pandas is required to use to_dataframe "
                "(pip install statement-mapper[dataframe])"
            ) from exc

        return pd.DataFrame(SchemaBuilder._rows(data), columns=CSV_COLUMNS)
