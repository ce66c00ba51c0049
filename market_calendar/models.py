"""
Market Calendar - Models.

Market status, per-market trading context and the data-quality
labels produced by the fallback policy. Holiday files are parsed
through the pydantic schemas at the bottom of this module.
"""

from dataclasses import dataclass
import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field


# =============================================================
# ENUMS
# =============================================================

class MarketStatus(str, Enum):
    OPEN = "OPEN"
    CLOSED = "CLOSED"
    SETTLEMENT_ONLY = "SETTLEMENT_ONLY"
    EARLY_CLOSE = "EARLY_CLOSE"
    UNKNOWN = "UNKNOWN"


NON_TRADING_STATUSES = frozenset({MarketStatus.CLOSED, MarketStatus.SETTLEMENT_ONLY})


class DataQuality(str, Enum):
    """Quality label attached to a collector result after fallback handling."""
    OK = "OK"
    PARTIAL = "PARTIAL"
    FALLBACK = "FALLBACK"
    NO_MARKET_DATA = "NO_MARKET_DATA"


class FallbackAction(str, Enum):
    ACCEPT = "accept"
    OK = "ok"
    FALLBACK = "fallback"


# =============================================================
# VALUE OBJECTS
# =============================================================

@dataclass(frozen=True)
class MarketContext:
    """Trading status of one market on one date."""

    market: str
    is_trading_day: bool
    status: MarketStatus
    reason: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "market": self.market,
            "isTradingDay": self.is_trading_day,
            "status": self.status.value,
            "reason": self.reason,
        }


@dataclass(frozen=True)
class FallbackDecision:
    """Outcome of FallbackPolicy.handle_no_data."""

    action: FallbackAction
    quality: DataQuality
    reason: Optional[str] = None
    data: Any = None
    prev_date: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "action": self.action.value,
            "quality": self.quality.value,
            "reason": self.reason,
            "prevDate": self.prev_date,
        }


# =============================================================
# HOLIDAY FILE SCHEMA
# =============================================================

class HolidayEntry(BaseModel):
    """One non-regular session."""
    date: datetime.date
    status: MarketStatus = MarketStatus.CLOSED
    reason: Optional[str] = None


class MarketHolidays(BaseModel):
    holidays: List[HolidayEntry] = Field(default_factory=list)


class HolidayFile(BaseModel):
    """holidays-YYYY.json: {"markets": {"TWSE": {"holidays": [...]}}}"""
    markets: Dict[str, MarketHolidays] = Field(default_factory=dict)
