"""Tests for fintra_ingest.ingestion.client (FmpClient)."""

from __future__ import annotations

from datetime import date

import httpx
import pytest
import respx

from fintra_ingest.core.config import FmpConfig
from fintra_ingest.core.exceptions import DataError, ProviderError
from fintra_ingest.core.models import ProfileRecord
from fintra_ingest.ingestion.client import FmpClient

BASE = "https://fmp.test"


# --- Fixtures ---


@pytest.fixture
def fmp_config() -> FmpConfig:
    return FmpConfig(api_key="test-key", base_url=BASE, rate_limit=50, request_timeout=5)


@pytest.fixture
async def client(fmp_config: FmpConfig) -> FmpClient:
    async with FmpClient(fmp_config) as c:
        yield c


# --- fetch ---


class TestFetch:
    @respx.mock
    async def test_returns_json_and_sends_api_key(self, client: FmpClient):
        route = respx.get(f"{BASE}/stable/profile").mock(
            return_value=httpx.Response(200, json=[{"symbol": "AAPL"}])
        )

        result = await client.fetch("/stable/profile", {"symbol": "AAPL"})
        assert result == [{"symbol": "AAPL"}]
        request = route.calls.last.request
        assert request.url.params["apikey"] == "test-key"
        assert request.url.params["symbol"] == "AAPL"

    @respx.mock
    async def test_none_params_dropped(self, client: FmpClient):
        route = respx.get(f"{BASE}/stable/quote").mock(
            return_value=httpx.Response(200, json=[])
        )

        await client.fetch("/stable/quote", {"symbol": "AAPL", "exchange": None})
        assert "exchange" not in route.calls.last.request.url.params

    @respx.mock
    async def test_non_2xx_raises_without_retry(self, client: FmpClient):
        route = respx.get(f"{BASE}/stable/profile").mock(
            return_value=httpx.Response(503)
        )

        with pytest.raises(ProviderError, match="HTTP 503") as exc_info:
            await client.fetch("/stable/profile", {"symbol": "AAPL"})
        assert route.call_count == 1
        assert exc_info.value.context["status_code"] == 503

    @respx.mock
    async def test_error_context_hides_api_key(self, client: FmpClient):
        respx.get(f"{BASE}/stable/profile").mock(return_value=httpx.Response(403))

        with pytest.raises(ProviderError) as exc_info:
            await client.fetch("/stable/profile")
        assert exc_info.value.context["url"] == f"{BASE}/stable/profile"
        assert "test-key" not in str(exc_info.value)

    @respx.mock
    async def test_invalid_json_raises(self, client: FmpClient):
        respx.get(f"{BASE}/stable/profile").mock(
            return_value=httpx.Response(200, text="<html>not json</html>")
        )

        with pytest.raises(ProviderError, match="Invalid JSON"):
            await client.fetch("/stable/profile")

    @respx.mock
    async def test_transport_error_wrapped(self, client: FmpClient):
        respx.get(f"{BASE}/stable/profile").mock(
            side_effect=httpx.ConnectError("connection refused")
        )

        with pytest.raises(ProviderError, match="failed"):
            await client.fetch("/stable/profile")

    @respx.mock
    async def test_fetch_text(self, client: FmpClient):
        respx.get(f"{BASE}/stable/profile-bulk").mock(
            return_value=httpx.Response(200, text="symbol,price\nAAPL,190.5\n")
        )

        body = await client.fetch_text("/stable/profile-bulk", {"part": 0})
        assert body.startswith("symbol,price")


# --- Typed endpoints ---


class TestTypedEndpoints:
    @respx.mock
    async def test_get_profile(self, client: FmpClient):
        route = respx.get(f"{BASE}/stable/profile").mock(
            return_value=httpx.Response(
                200, json=[{"symbol": "AAPL", "sector": "Technology", "price": 190.5}]
            )
        )

        profile = await client.get_profile("aapl")
        assert isinstance(profile, ProfileRecord)
        assert profile.get("sector") == "Technology"
        assert route.calls.last.request.url.params["symbol"] == "AAPL"

    @respx.mock
    async def test_empty_list_is_none(self, client: FmpClient):
        respx.get(f"{BASE}/stable/key-metrics-ttm").mock(
            return_value=httpx.Response(200, json=[])
        )

        assert await client.get_key_metrics_ttm("AAPL") is None

    @respx.mock
    async def test_ratios_and_quote(self, client: FmpClient):
        respx.get(f"{BASE}/stable/ratios-ttm").mock(
            return_value=httpx.Response(200, json=[{"symbol": "AAPL", "peRatioTTM": 28.5}])
        )
        respx.get(f"{BASE}/stable/quote").mock(
            return_value=httpx.Response(200, json=[{"symbol": "AAPL", "pe": 27.0}])
        )

        ratios = await client.get_ratios_ttm("AAPL")
        quote = await client.get_quote("AAPL")
        assert ratios.get("peRatioTTM") == 28.5
        assert quote.get("pe") == 27.0

    @respx.mock
    async def test_malformed_payload_raises_data_error(self, client: FmpClient):
        respx.get(f"{BASE}/stable/profile").mock(
            return_value=httpx.Response(200, json=["just a string"])
        )

        with pytest.raises(DataError):
            await client.get_profile("AAPL")

    @respx.mock
    async def test_sectors_performance(self, client: FmpClient):
        respx.get(f"{BASE}/api/v3/sectors-performance").mock(
            return_value=httpx.Response(
                200,
                json=[
                    {"sector": "Technology", "changesPercentage": "1.25%"},
                    {"sector": "Energy", "changesPercentage": "-0.40%"},
                ],
            )
        )

        rows = await client.get_sectors_performance()
        assert [r["sector"] for r in rows] == ["Technology", "Energy"]

    @respx.mock
    async def test_sectors_performance_requires_list(self, client: FmpClient):
        respx.get(f"{BASE}/api/v3/sectors-performance").mock(
            return_value=httpx.Response(200, json={"Error Message": "Limit reached"})
        )

        with pytest.raises(DataError, match="Expected a list"):
            await client.get_sectors_performance()

    @respx.mock
    async def test_sector_pe_snapshot_sends_date(self, client: FmpClient):
        route = respx.get(f"{BASE}/stable/sector-pe-snapshot").mock(
            return_value=httpx.Response(200, json=[{"sector": "Energy", "pe": 11.2}])
        )

        rows = await client.get_sector_pe_snapshot(date(2024, 6, 3))
        assert rows == [{"sector": "Energy", "pe": 11.2}]
        assert route.calls.last.request.url.params["date"] == "2024-06-03"

    @respx.mock
    async def test_industry_performance_snapshot_sends_date(self, client: FmpClient):
        route = respx.get(f"{BASE}/stable/industry-performance-snapshot").mock(
            return_value=httpx.Response(200, json=[{"industry": "Banks", "averageChange": -0.2}])
        )

        rows = await client.get_industry_performance_snapshot(date(2024, 5, 31))
        assert rows[0]["industry"] == "Banks"
        assert route.calls.last.request.url.params["date"] == "2024-05-31"


class TestHistoryEndpoints:
    @respx.mock
    async def test_eod_bulk_is_csv_text(self, client: FmpClient):
        route = respx.get(f"{BASE}/stable/eod-bulk").mock(
            return_value=httpx.Response(200, text="symbol,date,close\nAAPL,2024-06-03,190.5\n")
        )

        body = await client.get_eod_bulk(date(2024, 6, 3))
        assert body.startswith("symbol,date,close")
        params = route.calls.last.request.url.params
        assert params["date"] == "2024-06-03"
        assert params["datatype"] == "csv"

    @respx.mock
    async def test_dividend_history_unwraps_historical(self, client: FmpClient):
        route = respx.get(f"{BASE}/api/v3/historical-price-full/stock_dividend/KO").mock(
            return_value=httpx.Response(
                200,
                json={"symbol": "KO", "historical": [{"date": "2023-11-30", "dividend": 0.46}]},
            )
        )

        rows = await client.get_dividend_history("ko", date(2014, 1, 1), date(2024, 6, 3))
        assert rows == [{"date": "2023-11-30", "dividend": 0.46}]
        params = route.calls.last.request.url.params
        assert params["from"] == "2014-01-01"
        assert params["to"] == "2024-06-03"

    @respx.mock
    async def test_price_history_accepts_bare_list_and_empty_object(self, client: FmpClient):
        respx.get(f"{BASE}/api/v3/historical-price-full/KO").mock(
            side_effect=[
                httpx.Response(200, json=[{"date": "2023-01-03", "close": 59.0}]),
                httpx.Response(200, json={}),
            ]
        )

        first = await client.get_price_history("KO", date(2023, 1, 1), date(2023, 12, 31))
        second = await client.get_price_history("KO", date(2023, 1, 1), date(2023, 12, 31))
        assert first == [{"date": "2023-01-03", "close": 59.0}]
        assert second == []

    @respx.mock
    async def test_annual_ratios_params(self, client: FmpClient):
        route = respx.get(f"{BASE}/api/v3/ratios/KO").mock(
            return_value=httpx.Response(200, json=[{"date": "2023-12-31", "payoutRatio": 0.74}])
        )

        rows = await client.get_annual_ratios("KO")
        assert rows[0]["payoutRatio"] == 0.74
        params = route.calls.last.request.url.params
        assert params["period"] == "annual"
        assert params["limit"] == "10"
