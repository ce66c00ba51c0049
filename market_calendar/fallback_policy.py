"""
Market Calendar - Fallback Policy.

============================================================
RESPONSIBILITY
============================================================
Decides what an empty collector response means.

    market CLOSED / SETTLEMENT_ONLY -> accept   (NO_MARKET_DATA)
    trading day, retry returns data -> ok       (OK)
    trading day, retries exhausted  -> fallback (FALLBACK, prev_date)

UNKNOWN and EARLY_CLOSE follow the trading-day path.
handle_no_data never raises.

============================================================
"""

import asyncio
import logging
from typing import Any, Awaitable, Callable, Optional, Sequence

from market_calendar.calendar_guard import CalendarGuard, DateLike
from market_calendar.models import (
    NON_TRADING_STATUSES,
    DataQuality,
    FallbackAction,
    FallbackDecision,
)


logger = logging.getLogger(__name__)


RETRY_DELAYS = (1.0, 3.0, 10.0)


class FallbackPolicy:
    """Calendar-aware handling of "the source returned nothing"."""

    def __init__(
        self,
        calendar: CalendarGuard,
        retry_delays: Sequence[float] = RETRY_DELAYS,
        sleep: Optional[Callable[[float], Awaitable[None]]] = None,
    ):
        self._calendar = calendar
        self._retry_delays = tuple(retry_delays)
        self._sleep = sleep or asyncio.sleep

    @property
    def calendar(self) -> CalendarGuard:
        return self._calendar

    async def handle_no_data(
        self,
        market: str,
        day: DateLike,
        retry_fn: Optional[Callable[[], Awaitable[Any]]] = None,
    ) -> FallbackDecision:
        """
        Classify an empty response for market on day.

        Args:
            market: Calendar market code (TWSE, XNYS, ...)
            day: Session date
            retry_fn: Optional coroutine factory re-fetching the data;
                a truthy result ends the retries
        """
        context = self._calendar.is_trading_day(market, day)

        if not context.is_trading_day and context.status in NON_TRADING_STATUSES:
            logger.info(
                f"{market} {day} is {context.status.value} ({context.reason}), "
                f"accepting no data"
            )
            return FallbackDecision(
                action=FallbackAction.ACCEPT,
                quality=DataQuality.NO_MARKET_DATA,
                reason=context.reason,
            )

        if retry_fn is not None:
            for i, delay in enumerate(self._retry_delays, start=1):
                await self._sleep(delay)
                try:
                    data = await retry_fn()
                except asyncio.CancelledError:
                    raise
                except Exception as e:
                    logger.warning(f"{market} retry {i} failed: {e}")
                    continue

                if data:
                    logger.info(f"{market} retry {i} succeeded")
                    return FallbackDecision(
                        action=FallbackAction.OK,
                        quality=DataQuality.OK,
                        data=data,
                    )

        prev_date = self._calendar.get_prev_trading_day(market, day)
        logger.warning(
            f"{market} {day}: all retries failed, falling back to {prev_date or 'none'}"
        )
        return FallbackDecision(
            action=FallbackAction.FALLBACK,
            quality=DataQuality.FALLBACK,
            reason=f"no data on trading day, previous session {prev_date or 'N/A'}",
            prev_date=prev_date,
        )
