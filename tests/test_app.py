"""
Unit tests for the Flask JSON API.
"""

from __future__ import annotations

import pytest

import app as api


@pytest.fixture
def client():
    api.app.config["TESTING"] = True
    api.mapper.clear_cache()
    with api.app.test_client() as c:
        yield c


@pytest.fixture
def company_payload() -> dict:
    return {
        "revenue_fy": 1000.0,
        "net_income_fy": 100.0,
        "total_assets_fy": 2000.0,
        "total_equity_fy": 800.0,
        "revenue_fy_h": [1000.0, 900.0],
        "net_income_fy_h": [100.0, 90.0],
    }


# ======================================================================
# /api/map
# ======================================================================

class TestMapEndpoint:
    def test_success(self, client, company_payload: dict) -> None:
        resp = client.post("/api/map/tcs", json={"payload": company_payload})
        assert resp.status_code == 200
        body = resp.get_json()
        assert body["success"] is True
        assert body["data"]["symbol"] == "TCS"
        assert body["data"]["company_type"] == "non-banking"

    def test_envelope_body(self, client) -> None:
        body = {
            "data": [
                {"id": "revenue_fy", "value": 1000},
                {"id": "net_income_fy", "value": 100},
                {"id": "total_assets_fy", "value": 2000},
            ],
            "metadata": {"sector": "Technology"},
        }
        resp = client.post("/api/map/infy", json=body)
        assert resp.status_code == 200
        assert resp.get_json()["data"]["metadata"]["sector"] == "Technology"

    def test_envelope_parse_errors_reported(self, client) -> None:
        body = {
            "data": [
                {"id": "revenue_fy", "value": 1000},
                {"id": "net_income_fy", "value": 100},
                {"id": "total_assets_fy", "value": 2000},
                {"id": "total_equity_fy", "value": 800},
                {"value": 5},
            ],
        }
        resp = client.post("/api/map/infy", json=body)
        errors = resp.get_json()["errors"]
        assert errors[0]["type"] == "API_PARSING_ERROR"
        assert errors[0]["field"] == "data[4]"

    def test_nested_envelope_parse_errors_reported(self, client) -> None:
        body = {"payload": {"data": [{"id": "revenue_fy", "value": 1000}, "junk"]}}
        resp = client.post("/api/map/infy", json=body)
        fields = [e["field"] for e in resp.get_json()["errors"]]
        assert "data[1]" in fields

    def test_failed_mapping_is_422(self, client) -> None:
        resp = client.post("/api/map/thin", json={"payload": {"revenue_fy": 1.0}})
        assert resp.status_code == 422
        assert resp.get_json()["success"] is False
        assert resp.get_json()["errors"]

    def test_missing_payload(self, client) -> None:
        resp = client.post("/api/map/x", json={"foo": 1})
        assert resp.status_code == 400
        assert resp.get_json()["success"] is False

    def test_non_json_body(self, client) -> None:
        resp = client.post("/api/map/x", data="not json", content_type="text/plain")
        assert resp.status_code == 400

    def test_bad_force_type(self, client, company_payload: dict) -> None:
        resp = client.post(
            "/api/map/tcs",
            json={"payload": company_payload, "force_company_type": "insurer"},
        )
        assert resp.status_code == 400

    def test_non_string_sector(self, client, company_payload: dict) -> None:
        resp = client.post("/api/map/tcs", json={"payload": company_payload, "sector": 5})
        assert resp.status_code == 400


# ======================================================================
# Diagnostics
# ======================================================================

class TestDiagnosticEndpoints:
    def test_debug(self, client, company_payload: dict) -> None:
        resp = client.post("/api/debug/tcs", json={"payload": company_payload})
        assert resp.status_code == 200
        body = resp.get_json()
        assert body["report"].startswith("=== Financial Data Mapper Debug Report ===")
        assert body["validation"]["is_valid"] is True
        assert body["detection"]["company_type"] == "non-banking"

    def test_cache_stats_and_clear(self, client, company_payload: dict) -> None:
        client.post("/api/map/tcs", json={"payload": company_payload})
        stats = client.get("/api/cache/stats").get_json()
        assert stats["cache"]["size"] == 1
        assert client.delete("/api/cache").status_code == 200
        assert client.get("/api/cache/stats").get_json()["cache"]["size"] == 0

    def test_error_stats(self, client) -> None:
        client.post("/api/map/thin", json={"payload": {"revenue_fy": 1.0}})
        body = client.get("/api/errors/stats?symbol=THIN").get_json()
        assert body["success"] is True
        assert body["errors"]["recent_errors"]

    def test_health(self, client) -> None:
        body = client.get("/api/health").get_json()
        assert body["status"] == "online"
        assert "/api/map/<symbol>" in body["endpoints"]
