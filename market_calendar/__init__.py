"""
Market Calendar Package.

Trading-day lookups and the calendar-aware fallback policy
applied when a source returns no data.
"""

from market_calendar.calendar_guard import CalendarGuard
from market_calendar.fallback_policy import FallbackPolicy
from market_calendar.models import (
    DataQuality,
    FallbackAction,
    FallbackDecision,
    MarketContext,
    MarketStatus,
)


__all__ = [
    "CalendarGuard",
    "FallbackPolicy",
    "DataQuality",
    "FallbackAction",
    "FallbackDecision",
    "MarketContext",
    "MarketStatus",
]
