"""
Statement Mapper JSON API.

POST a feed payload, get back the mapped, section-organised statement
together with every error and warning the pipeline raised.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, Optional, Tuple

from flask import Flask, request

from statement_mapper import __version__
from statement_mapper.config import MapperConfig
from statement_mapper.orchestrator import FinancialDataMapper
from statement_mapper.schema import MappingResult
from statement_mapper.schema_builder import ParsedFeed, SchemaBuilder

# -------------------------------------------------------
# App Setup
# -------------------------------------------------------

app = Flask(__name__)

app.config["MAX_CONTENT_LENGTH"] = 16 * 1024 * 1024

logger = logging.getLogger(__name__)

# -------------------------------------------------------
# Mapper Setup
# -------------------------------------------------------

mapper = FinancialDataMapper(config=MapperConfig(log_level=logging.WARNING))

# -------------------------------------------------------
# Helpers
# -------------------------------------------------------


def parse_map_request() -> Tuple[ParsedFeed, Optional[str], Optional[str], Optional[str]]:
    """Pull ``(feed, sector, industry, force_company_type)`` from the body.

    The payload may be sent flat under ``payload`` or as the feed's
    data-point envelope under ``data``.

    Raises
    ------
    ValueError
        If the body is not a JSON object or carries no payload.
    """
    body = request.get_json(silent=True)
    if not isinstance(body, dict):
        raise ValueError("Request body must be a JSON object")

    if isinstance(body.get("payload"), dict):
        feed = SchemaBuilder.read_feed(body["payload"])
    elif isinstance(body.get("data"), list):
        feed = SchemaBuilder.read_data_points(body)
    else:
        raise ValueError("Request body needs a 'payload' object or a 'data' array")

    sector = body.get("sector")
    industry = body.get("industry")
    force = body.get("force_company_type")
    for name, value in (("sector", sector), ("industry", industry), ("force_company_type", force)):
        if value is not None and not isinstance(value, str):
            raise TypeError(f"'{name}' must be a string")
    return feed, sector, industry, force


def bad_request(exc: Exception) -> Tuple[Dict[str, Any], int]:
    return {"success": False, "error": str(exc)}, 400


def with_feed_issues(result: MappingResult, feed: ParsedFeed) -> MappingResult:
    """Put the data points the reader skipped ahead of the mapper's own issues."""
    result.errors[:0] = feed.errors
    result.warnings[:0] = feed.warnings
    return result


# -------------------------------------------------------
# API
# -------------------------------------------------------

@app.route("/api/map/<symbol>", methods=["POST"])
def api_map(symbol: str):
    try:
        feed, sector, industry, force = parse_map_request()
        payload = feed.payload
        result = mapper.map_financial_data(
            payload,
            symbol=symbol.upper(),
            sector=sector,
            industry=industry,
            force_company_type=force,
        )
    except (ValueError, TypeError) as exc:
        return bad_request(exc)

    result = with_feed_issues(result, feed)
    return result.to_dict(), 200 if result.success else 422


@app.route("/api/debug/<symbol>", methods=["POST"])
def api_debug(symbol: str):
    try:
        feed, sector, industry, force = parse_map_request()
        payload = feed.payload
        result = mapper.map_financial_data(
            payload,
            symbol=symbol.upper(),
            sector=sector,
            industry=industry,
            force_company_type=force,
        )
    except (ValueError, TypeError) as exc:
        return bad_request(exc)

    result = with_feed_issues(result, feed)
    report = mapper.generate_debug_report(
        symbol.upper(), payload, sector, industry, result=result
    )
    return {
        "success": result.success,
        "report": report,
        "validation": mapper.validate_api_response(payload).to_dict(),
        "detection": mapper.detect_company_type(payload, sector, industry).to_dict(),
        "result": result.to_dict(),
    }, 200


@app.route("/api/cache/stats", methods=["GET"])
def api_cache_stats():
    return {"success": True, "cache": mapper.cache_stats()}, 200


@app.route("/api/cache", methods=["DELETE"])
def api_clear_cache():
    mapper.clear_cache()
    return {"success": True}, 200


@app.route("/api/errors/stats", methods=["GET"])
def api_error_stats():
    return {
        "success": True,
        "errors": mapper.error_statistics(request.args.get("symbol")),
    }, 200


@app.route("/api/health", methods=["GET"])
def api_health():
    return {
        "status": "online",
        "version": __version__,
        "endpoints": [
            "/api/map/<symbol>",
            "/api/debug/<symbol>",
            "/api/cache/stats",
            "/api/cache",
            "/api/errors/stats",
        ],
    }, 200


# -------------------------------------------------------
# Main
# -------------------------------------------------------

if __name__ == "__main__":
    print("=" * 60)
    print("Statement Mapper API running")
    print("http://localhost:5000")
    print("=" * 60)

    app.run(host="0.0.0.0", port=5000, debug=True)
