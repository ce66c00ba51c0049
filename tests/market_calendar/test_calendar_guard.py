"""
Tests for trading-day lookups.
"""

import json
from datetime import date

import pytest

from market_calendar.calendar_guard import CalendarGuard
from market_calendar.models import MarketStatus


@pytest.fixture
def calendar_dir(tmp_path):
    holidays = {
        "markets": {
            "TWSE": {"holidays": [
                {"date": "2026-02-16", "status": "CLOSED", "reason": "Lunar New Year"},
                {"date": "2026-02-13", "status": "SETTLEMENT_ONLY", "reason": "Settlement"},
            ]},
            "XNYS": {"holidays": [
                {"date": "2026-11-27", "status": "EARLY_CLOSE", "reason": "Day after Thanksgiving"},
            ]},
        }
    }
    (tmp_path / "holidays-2026.json").write_text(json.dumps(holidays), encoding="utf-8")
    return tmp_path


@pytest.fixture
def guard(calendar_dir):
    return CalendarGuard(calendar_dir)


class TestIsTradingDay:

    def test_regular_weekday_is_open(self, guard):
        context = guard.is_trading_day("TWSE", "2026-01-15")

        assert context.is_trading_day is True
        assert context.status == MarketStatus.OPEN
        assert context.reason is None

    def test_weekend_is_closed(self, guard):
        context = guard.is_trading_day("XNYS", date(2026, 1, 17))

        assert context.is_trading_day is False
        assert context.status == MarketStatus.CLOSED
        assert context.reason == "weekend"

    def test_holiday_is_closed(self, guard):
        context = guard.is_trading_day("TWSE", "2026-02-16")

        assert context.is_trading_day is False
        assert context.reason == "Lunar New Year"

    def test_settlement_only_is_not_trading(self, guard):
        context = guard.is_trading_day("TWSE", "2026-02-13")

        assert context.is_trading_day is False
        assert context.status == MarketStatus.SETTLEMENT_ONLY

    def test_early_close_is_trading(self, guard):
        context = guard.is_trading_day("XNYS", "2026-11-27")

        assert context.is_trading_day is True
        assert context.status == MarketStatus.EARLY_CLOSE

    def test_holidays_are_per_market(self, guard):
        assert guard.is_trading_day("XNYS", "2026-02-16").is_trading_day is True

    def test_missing_year_file_means_open(self, guard):
        assert guard.is_trading_day("TWSE", "2030-01-15").status == MarketStatus.OPEN

    def test_malformed_file_means_open(self, tmp_path):
        (tmp_path / "holidays-2026.json").write_text('{"markets": 5}', encoding="utf-8")
        guard = CalendarGuard(tmp_path)

        assert guard.is_trading_day("TWSE", "2026-02-16").is_trading_day is True


class TestMarketContext:

    def test_get_market_context(self, guard):
        contexts = guard.get_market_context("2026-02-16")

        assert set(contexts) == {"TWSE", "XNYS"}
        assert contexts["TWSE"].is_trading_day is False
        assert contexts["XNYS"].is_trading_day is True
        assert contexts["TWSE"].to_dict() == {
            "market": "TWSE",
            "isTradingDay": False,
            "status": "CLOSED",
            "reason": "Lunar New Year",
        }


class TestSearch:

    def test_prev_trading_day_skips_weekend_and_holiday(self, guard):
        # Tue 17th -> Mon 16th holiday -> weekend -> Fri 13th settlement -> Thu 12th
        assert guard.get_prev_trading_day("TWSE", "2026-02-17") == "2026-02-12"

    def test_next_trading_day(self, guard):
        assert guard.get_next_trading_day("TWSE", "2026-02-13") == "2026-02-17"

    def test_search_crosses_year_boundary(self):
        guard = CalendarGuard()

        assert guard.get_prev_trading_day("TWSE", "2026-01-02") == "2025-12-31"


class TestHolidayHash:

    def test_hash_is_stable_and_changes_with_table(self, guard, calendar_dir):
        first = guard.get_holidays_hash("TWSE", 2026)
        assert first == guard.get_holidays_hash("TWSE", 2026)

        path = calendar_dir / "holidays-2026.json"
        data = json.loads(path.read_text(encoding="utf-8"))
        data["markets"]["TWSE"]["holidays"].append(
            {"date": "2026-05-01", "status": "CLOSED", "reason": "Labor Day"}
        )
        path.write_text(json.dumps(data), encoding="utf-8")

        # cached until cleared
        assert guard.get_holidays_hash("TWSE", 2026) == first
        guard.clear_cache()
        assert guard.get_holidays_hash("TWSE", 2026) != first


class TestBundledCalendar:

    def test_bundled_tables_load(self):
        guard = CalendarGuard()

        assert guard.is_trading_day("TWSE", "2026-01-01").is_trading_day is False
        assert guard.is_trading_day("XNYS", "2026-12-24").status == MarketStatus.EARLY_CLOSE
