"""Tests for fintra_ingest.pipeline.growth."""

import pytest

from fintra_ingest.core.models import PeriodType
from fintra_ingest.pipeline.growth import compute_growth_rows, rolling_average


class TestRollingAverage:
    def test_fewer_than_three_rows_is_none(self):
        rows = [{"fiscalYear": 2023, "rev": 10}, {"fiscalYear": 2022, "rev": 8}]
        assert rolling_average(rows, "rev", 5) is None

    def test_mean_of_available_rows(self):
        rows = [{"fiscalYear": y, "rev": v} for y, v in [(2023, 0.1), (2022, 0.2), (2021, 0.3)]]
        assert rolling_average(rows, "rev") == pytest.approx(0.2)

    def test_window_keeps_most_recent_years(self):
        rows = [{"fiscal_year": 2015 + i, "g": float(i)} for i in range(8)]
        # 2018..2022 -> values 3..7
        assert rolling_average(rows, "g", window_years=5) == pytest.approx(5.0)

    def test_short_window_still_averages(self):
        rows = [{"fiscalYear": y, "g": v} for y, v in [(2023, 1.0), (2022, 3.0), (2021, 5.0), (2020, 7.0)]]
        assert rolling_average(rows, "g", window_years=2) == pytest.approx(2.0)
        assert rolling_average(rows, "g", window_years=1) == pytest.approx(1.0)

    def test_short_window_needs_three_usable_rows(self):
        rows = [{"fiscalYear": 2023, "g": 1.0}, {"fiscalYear": 2022, "g": 3.0}]
        assert rolling_average(rows, "g", window_years=2) is None

    def test_missing_and_non_finite_values_dropped(self):
        rows = [
            {"year": 2023, "g": 0.1},
            {"year": 2022, "g": None},
            {"year": 2021, "g": float("nan")},
            {"year": 2020, "g": 0.3},
        ]
        assert rolling_average(rows, "g") is None
        rows.append({"year": 2019, "g": 0.2})
        assert rolling_average(rows, "g") == pytest.approx(0.2)

    def test_rows_without_year_ignored(self):
        rows = [{"g": 1.0}, {"g": 2.0}, {"calendarYear": "2020", "g": 3.0}]
        assert rolling_average(rows, "g") is None

    def test_accepts_models(self, make_period):
        growth = compute_growth_rows(
            [make_period(year=y, revenue=100.0 * (1.1 ** (y - 2019))) for y in range(2019, 2024)]
        )
        assert rolling_average(growth, "growth_revenue") == pytest.approx(0.1)


class TestComputeGrowthRows:
    def test_yoy_newest_first(self, make_period):
        history = [
            make_period(year=2021, revenue=100.0, net_income=10.0, free_cash_flow=5.0),
            make_period(year=2023, revenue=150.0, net_income=-6.0, free_cash_flow=None),
            make_period(year=2022, revenue=120.0, net_income=-4.0, free_cash_flow=6.0),
        ]
        growth = compute_growth_rows(history)
        assert [g.fiscal_year for g in growth] == [2023, 2022]
        assert growth[0].growth_revenue == pytest.approx(0.25)
        assert growth[1].growth_revenue == pytest.approx(0.2)
        # negative base uses the absolute value
        assert growth[0].growth_net_income == pytest.approx(-0.5)
        assert growth[0].growth_free_cash_flow is None

    def test_zero_previous_gives_none(self, make_period):
        growth = compute_growth_rows(
            [make_period(year=2022, revenue=0.0), make_period(year=2023, revenue=50.0)]
        )
        assert growth[0].growth_revenue is None

    def test_quarters_ignored(self, make_period):
        history = [
            make_period(year=2023),
            make_period(
                year=2024, period_type=PeriodType.QUARTER, period_label="2024Q1", revenue=999.0
            ),
        ]
        assert compute_growth_rows(history) == []
