"""
Market Calendar - Calendar Guard.

============================================================
RESPONSIBILITY
============================================================
Answers "is this market trading on this date?" from static
per-year holiday files.

- Weekends are always CLOSED
- A date missing from the holiday table is OPEN
- EARLY_CLOSE counts as a trading day
- CLOSED / SETTLEMENT_ONLY are non-trading days
- Holiday tables are loaded once per (market, year) and cached

============================================================
HOLIDAY FILES
============================================================
<calendar_dir>/holidays-YYYY.json

    {"markets": {"TWSE": {"holidays": [
        {"date": "2026-02-16", "status": "CLOSED", "reason": "..."}
    ]}}}

A missing or malformed file is logged and treated as an empty
table (every weekday OPEN).

============================================================
"""

import hashlib
import json
import logging
import threading
from datetime import date, timedelta
from pathlib import Path
from typing import Dict, Iterable, Optional, Tuple, Union

from pydantic import ValidationError

from core.clock import parse_date
from market_calendar.models import (
    HolidayEntry,
    HolidayFile,
    MarketContext,
    MarketStatus,
)


logger = logging.getLogger(__name__)


DEFAULT_CALENDAR_DIR = Path(__file__).parent / "data"
DEFAULT_MARKETS = ("TWSE", "XNYS")
MAX_SEARCH_DAYS = 30


DateLike = Union[str, date]


class CalendarGuard:
    """Trading-day lookups backed by cached holiday tables."""

    def __init__(self, calendar_dir: Optional[Union[str, Path]] = None):
        self._calendar_dir = Path(calendar_dir) if calendar_dir else DEFAULT_CALENDAR_DIR
        self._cache: Dict[Tuple[str, int], Dict[date, HolidayEntry]] = {}
        self._lock = threading.Lock()

    @property
    def calendar_dir(self) -> Path:
        return self._calendar_dir

    # ============================================================
    # QUERIES
    # ============================================================

    def is_trading_day(self, market: str, day: DateLike) -> MarketContext:
        """Trading status of market on day."""
        day = parse_date(day)

        if day.weekday() >= 5:
            return MarketContext(market, False, MarketStatus.CLOSED, "weekend")

        holiday = self._load_calendar(market, day.year).get(day)
        if holiday is None:
            return MarketContext(market, True, MarketStatus.OPEN, None)

        if holiday.status == MarketStatus.EARLY_CLOSE:
            return MarketContext(market, True, MarketStatus.EARLY_CLOSE, holiday.reason)

        return MarketContext(market, False, holiday.status, holiday.reason)

    def get_market_context(
        self,
        day: DateLike,
        markets: Iterable[str] = DEFAULT_MARKETS,
    ) -> Dict[str, MarketContext]:
        """Status of every market on day, keyed by market code."""
        return {market: self.is_trading_day(market, day) for market in markets}

    def get_prev_trading_day(self, market: str, from_day: DateLike) -> Optional[str]:
        return self._search(market, parse_date(from_day), -1)

    def get_next_trading_day(self, market: str, from_day: DateLike) -> Optional[str]:
        return self._search(market, parse_date(from_day), 1)

    def _search(self, market: str, start: date, step: int) -> Optional[str]:
        current = start
        for _ in range(MAX_SEARCH_DAYS):
            current = current + timedelta(days=step)
            if self.is_trading_day(market, current).is_trading_day:
                return current.isoformat()
        return None

    def get_holidays_hash(self, market: str, year: int) -> str:
        """MD5 of the normalized holiday table, for change detection."""
        holidays = self._load_calendar(market, int(year))
        lines = sorted(
            f"{h.date.isoformat()}|{h.status.value}|{h.reason}"
            for h in holidays.values()
        )
        return hashlib.md5("\n".join(lines).encode("utf-8")).hexdigest()

    def clear_cache(self) -> None:
        with self._lock:
            self._cache.clear()

    # ============================================================
    # LOADING
    # ============================================================

    def _load_calendar(self, market: str, year: int) -> Dict[date, HolidayEntry]:
        key = (market, year)
        with self._lock:
            cached = self._cache.get(key)
            if cached is not None:
                return cached

            table: Dict[date, HolidayEntry] = {}
            path = self._calendar_dir / f"holidays-{year}.json"

            if not path.exists():
                logger.warning(f"Calendar file not found: {path}")
            else:
                try:
                    with open(path, "r", encoding="utf-8") as f:
                        parsed = HolidayFile.model_validate(json.load(f))
                    market_holidays = parsed.markets.get(market)
                    if market_holidays:
                        table = {h.date: h for h in market_holidays.holidays}
                    logger.debug(f"Loaded {len(table)} holidays for {market} {year}")
                except (OSError, ValueError, ValidationError) as e:
                    logger.error(f"Failed to load calendar {path}: {e}")

            self._cache[key] = table
            return table
