"""Tests for fintra_ingest.ingestion.normalizer."""

from datetime import date, datetime, timezone

import pytest

from fintra_ingest.core.exceptions import DataError
from fintra_ingest.core.models import PeriodType, ProfileRecord, RatiosRecord
from fintra_ingest.ingestion.normalizer import (
    lookup_number,
    normalize,
    normalize_statement_period,
    normalize_valuation,
    parse_profile,
    parse_quote,
    parse_ratios,
    period_label_for,
    to_float,
    utc_now,
)


class TestToFloat:
    @pytest.mark.parametrize(
        "value,expected",
        [
            (28.5, 28.5),
            (3, 3.0),
            ("12.5", 12.5),
            (" 1,234.5 ", 1234.5),
            ("-0.75%", -0.75),
        ],
    )
    def test_numeric(self, value, expected):
        assert to_float(value) == expected

    @pytest.mark.parametrize(
        "value",
        [None, "", "N/A", "nan", float("nan"), float("inf"), "-inf", "abc", True, [1]],
    )
    def test_missing_or_non_finite(self, value):
        assert to_float(value) is None


class TestLookup:
    def test_first_variant_wins(self):
        data = {"peRatioTTM": "20", "priceEarningsRatioTTM": "30"}
        assert lookup_number(data, ("peRatioTTM", "priceEarningsRatioTTM")) == 20.0

    def test_falls_through_empty_values(self):
        data = {"peRatioTTM": "", "priceEarningsRatioTTM": "30"}
        assert lookup_number(data, ("peRatioTTM", "priceEarningsRatioTTM")) == 30.0

    def test_case_insensitive_fallback(self):
        assert lookup_number({"PERATIOTTM": 18}, ("peRatioTTM",)) == 18.0

    def test_absent(self):
        assert lookup_number({"other": 1}, ("peRatioTTM",)) is None
        assert lookup_number(None, ("peRatioTTM",)) is None


class TestParse:
    def test_mapping(self):
        rec = parse_profile({"symbol": "AAPL", "sector": "Technology"})
        assert isinstance(rec, ProfileRecord)
        assert rec.symbol == "AAPL"
        assert rec.get("sector") == "Technology"

    def test_single_element_list_unwrapped(self):
        rec = parse_ratios([{"symbol": "AAPL", "peRatioTTM": 28.5}], ticker="AAPL")
        assert isinstance(rec, RatiosRecord)
        assert rec.get("peRatioTTM") == 28.5

    def test_empty_list_is_absent(self):
        assert parse_quote([], ticker="AAPL") is None

    def test_none_is_absent(self):
        assert parse_profile(None) is None

    def test_symbol_falls_back_to_ticker(self):
        assert parse_profile({"sector": "Energy"}, ticker="xom").symbol == "XOM"

    def test_wrong_shape_raises(self):
        with pytest.raises(DataError) as exc_info:
            parse_profile("not a record", ticker="AAPL")
        assert exc_info.value.context["dataset"] == "profile"
        assert exc_info.value.context["ticker"] == "AAPL"

    def test_list_of_non_mappings_raises(self):
        with pytest.raises(DataError):
            parse_ratios([1, 2, 3], ticker="AAPL")


class TestNormalize:
    def test_reference_example(self):
        record = normalize(
            "AAPL",
            {"sector": "Tech"},
            {"peRatioTTM": 28.5},
            {"roicTTM": 0.22},
            None,
        )
        assert record is not None
        assert record.ticker == "AAPL"
        assert record.sector == "Tech"
        assert record.pe_ttm == 28.5
        assert record.roic == 0.22
        assert record.roe is None
        assert record.debt_to_equity is None

    @pytest.mark.parametrize("missing", ["profile", "ratios", "metrics"])
    def test_none_when_required_input_absent(self, missing):
        inputs = {"profile": {"sector": "Tech"}, "ratios": {}, "metrics": {}}
        inputs[missing] = None
        assert normalize("AAPL", **inputs) is None

    def test_empty_records_still_normalize(self):
        record = normalize("msft", {}, {}, {})
        assert record is not None
        assert record.ticker == "MSFT"
        assert record.pe_ttm is None

    def test_ticker_is_stripped_and_upper_cased(self):
        record = normalize(" brk.b ", {}, {}, {})
        assert record.ticker == "BRK.B"

    def test_field_variants(self):
        record = normalize(
            "AAPL",
            {"Sector": "Technology", "Industry": "Consumer Electronics"},
            {
                "priceEarningsRatioTTM": "31.2",
                "debtToEquityRatioTTM": "1.5",
                "returnOnInvestedCapitalTTM": 0.4,
                "grossProfitMarginTTM": 0.45,
                "operatingProfitMarginTTM": "30%",
            },
            {"roeTTM": 1.6},
        )
        assert record.sector == "Technology"
        assert record.industry == "Consumer Electronics"
        assert record.pe_ttm == 31.2
        assert record.debt_to_equity == 1.5
        assert record.roe == 1.6
        assert record.roic == 0.4
        assert record.operating_margin == 30.0

    def test_quote_pe_fallback(self):
        record = normalize("AAPL", {}, {"peRatioTTM": "N/A"}, {}, {"pe": 27.0})
        assert record.pe_ttm == 27.0

    def test_ratios_pe_preferred_over_quote(self):
        record = normalize("AAPL", {}, {"peRatioTTM": 28.0}, {}, {"pe": 27.0})
        assert record.pe_ttm == 28.0

    def test_non_finite_becomes_none(self):
        record = normalize("AAPL", {}, {"peRatioTTM": float("inf")}, {"roicTTM": "NaN"})
        assert record.pe_ttm is None
        assert record.roic is None

    def test_accepts_validated_records(self):
        record = normalize(
            "AAPL",
            parse_profile({"sector": "Tech"}),
            parse_ratios({"peRatioTTM": 10}),
            {},
        )
        assert record.pe_ttm == 10.0

    def test_source_and_timestamp(self):
        before = datetime.now(timezone.utc)
        record = normalize("AAPL", {}, {}, {}, source="fmp_api")
        assert record.source == "fmp_api"
        assert record.normalized_at >= before
        assert record.normalized_at.tzinfo is not None


class TestUtcNow:
    def test_non_decreasing(self):
        stamps = [utc_now() for _ in range(50)]
        assert stamps == sorted(stamps)


class TestStatementPeriods:
    INCOME = {
        "symbol": "AAPL",
        "date": "2023-09-30",
        "calendarYear": "2023",
        "period": "FY",
        "revenue": "383285000000",
        "grossProfit": "169148000000",
        "operatingIncome": "114301000000",
        "netIncome": "96995000000",
        "ebitda": "125820000000",
    }

    def test_period_label_fy(self):
        assert period_label_for(self.INCOME) == (PeriodType.FY, "2023")

    def test_period_label_quarter(self):
        income = {**self.INCOME, "period": "Q3", "date": "2024-06-29", "calendarYear": "2024"}
        assert period_label_for(income) == (PeriodType.QUARTER, "2024Q3")

    def test_full_row(self):
        row = normalize_statement_period(
            "AAPL",
            self.INCOME,
            {"totalDebt": "111088000000", "totalStockholdersEquity": "62146000000"},
            {"freeCashFlow": "99584000000"},
        )
        assert row.period_type == PeriodType.FY
        assert row.period_label == "2023"
        assert row.period_end_date == date(2023, 9, 30)
        assert row.revenue == 383285000000.0
        assert row.gross_margin == pytest.approx(169148 / 383285)
        assert row.net_margin == pytest.approx(96995 / 383285)
        assert row.debt_to_equity == pytest.approx(111088 / 62146)
        assert row.free_cash_flow == 99584000000.0
        assert row.ebitda == 125820000000.0

    def test_provider_ratio_preferred(self):
        row = normalize_statement_period(
            "AAPL", {**self.INCOME, "grossProfitRatio": "0.44"}, None, None
        )
        assert row.gross_margin == 0.44

    def test_fcf_derived_from_operating_cash_flow(self):
        row = normalize_statement_period(
            "AAPL", self.INCOME, None,
            {"operatingCashFlow": 100.0, "capitalExpenditure": -30.0},
        )
        assert row.free_cash_flow == 70.0

    def test_negative_equity_leaves_debt_to_equity_none(self):
        row = normalize_statement_period(
            "AAPL", self.INCOME,
            {"totalDebt": 10.0, "totalStockholdersEquity": -5.0}, None,
        )
        assert row.debt_to_equity is None

    def test_missing_income_or_date(self):
        assert normalize_statement_period("AAPL", None, {}, {}) is None
        assert normalize_statement_period("AAPL", {"revenue": 1}, {}, {}) is None


class TestValuation:
    PROFILE = {"symbol": "AAPL", "price": "190.5", "mktCap": "2950000000000", "sector": "Technology"}

    def test_builds_row(self):
        row = normalize_valuation(
            "AAPL",
            self.PROFILE,
            {"pegRatioTTM": "2.1", "priceToFreeCashFlowsRatioTTM": "27"},
            {"peRatioTTM": "29.5", "evToEBITDATTM": "22", "enterpriseValueTTM": "2990000000000"},
            valuation_date=date(2024, 6, 3),
        )
        assert row.price == 190.5
        assert row.market_cap == 2950000000000.0
        assert row.pe_ratio == 29.5
        assert row.ev_ebitda == 22.0
        assert row.price_to_fcf == 27.0
        assert row.peg_ratio == 2.1
        assert row.pe_percentile is None

    def test_p_fcf_from_yield(self):
        row = normalize_valuation(
            "AAPL", self.PROFILE, {}, {"freeCashFlowYieldTTM": "0.04"},
            valuation_date=date(2024, 6, 3),
        )
        assert row.price_to_fcf == pytest.approx(25.0)

    @pytest.mark.parametrize(
        "profile",
        [
            None,
            {"price": "190.5"},
            {"price": "0", "sector": "Technology"},
            {"price": "", "sector": "Technology"},
        ],
    )
    def test_requires_sector_and_positive_price(self, profile):
        assert normalize_valuation("AAPL", profile, {}, {}, valuation_date=date(2024, 6, 3)) is None
