"""Integration tests for the FastAPI REST API.

Uses FastAPI TestClient with real SQLite storage and bulk files; the
provider is only reached through respx.
"""

from __future__ import annotations

import httpx
import pytest
import respx
from fastapi.testclient import TestClient

from fintra_ingest.api.app import create_app

pytestmark = pytest.mark.integration

AUTH = {"Authorization": "Bearer integration-secret"}


@pytest.fixture
def client(integration_config):
    with TestClient(create_app(config=integration_config)) as c:
        yield c


class TestCronChain:
    def test_jobs_then_reads(self, client):
        for path in (
            "/api/cron/bulk-update",
            "/api/cron/financials-bulk",
            "/api/cron/valuation-bulk",
            "/api/cron/sector-growth-aggregator",
        ):
            resp = client.get(path, headers=AUTH)
            assert resp.status_code == 200, path
            body = resp.json()
            assert body["success"] is True
            assert body["error_count"] == 0, (path, body["errors"])

        health = client.get("/api/health").json()
        assert health["database"] is True
        assert health["bulk_snapshot_loaded"] is True

        financials = client.get("/api/financials/NVDA").json()
        assert financials["snapshot"]["sector"] == "Technology"
        assert len(financials["periods"]) == 5

        growth = {row["sector"]: row for row in client.get("/api/sectors/growth").json()["items"]}
        assert growth["Technology"]["ticker_count"] == 3
        assert growth["Technology"]["revenue_growth"] == pytest.approx(0.2)

    def test_paginated_bulk_update(self, client):
        first = client.get("/api/cron/bulk-update?limit=2", headers=AUTH).json()
        rest = client.get("/api/cron/bulk-update?limit=10&offset=2", headers=AUTH).json()
        assert first["processed_count"] == 2
        assert rest["processed_count"] == 3

    def test_sector_jobs_against_provider(self, client):
        with respx.mock(base_url="https://fmp.test") as mock:
            mock.get("/api/v3/sectors-performance").mock(
                return_value=httpx.Response(
                    200,
                    json=[
                        {"sector": "Technology", "changesPercentage": "0.81%"},
                        {"sector": "Energy", "changesPercentage": "-1.02%"},
                    ],
                )
            )
            pe_route = mock.get("/stable/sector-pe-snapshot").mock(
                return_value=httpx.Response(
                    200,
                    json=[
                        {"sector": "Technology", "exchange": "NASDAQ", "pe": 38.4},
                        {"sector": "Technology", "exchange": "NYSE", "pe": 31.9},
                        {"sector": "Energy", "exchange": "NYSE", "pe": 12.2},
                    ],
                )
            )
            perf = client.get("/api/cron/sector-performance-aggregator", headers=AUTH)
            pe = client.get("/api/cron/sector-pe-aggregator", headers=AUTH)

        assert perf.json()["processed_count"] == 2
        assert pe.json()["processed_count"] == 2
        assert "apikey" in str(pe_route.calls.last.request.url)

    def test_unauthorized_request_touches_nothing(self, client):
        resp = client.get("/api/cron/bulk-update")
        assert resp.status_code == 401
        assert client.get("/api/financials/AAPL").status_code == 404
